import hashlib
import json
from datetime import datetime, timezone

import pytest
from asn1crypto import cms
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from memomancer.credentials import CredentialBundle
from memomancer.errors import SigningError
from memomancer.manifest import Manifest, ManifestBuilder
from memomancer.packaging import BundlePackager
from memomancer.signing import PassSigner
from tests.conftest import build_pki

FILES = {
    'pass.json': b'{"formatVersion": 1}',
    'icon.png': b'\x89PNG icon',
    'icon@2x.png': b'\x89PNG icon, but bigger',
}


def test_manifest_digests():
    manifest = ManifestBuilder().build(FILES)
    assert len(manifest) == 3
    for name, content in FILES.items():
        assert manifest.digests[name] == hashlib.sha1(content).hexdigest()
    assert manifest.verify(FILES)


def test_manifest_dump_is_canonical():
    manifest = ManifestBuilder().build(FILES)
    reordered = ManifestBuilder().build(dict(reversed(list(FILES.items()))))
    assert manifest.dump() == reordered.dump()
    assert list(json.loads(manifest.dump())) == sorted(FILES)
    assert Manifest.load(manifest.dump()) == manifest


def test_manifest_verify_detects_changes():
    manifest = ManifestBuilder().build(FILES)
    assert not manifest.verify({**FILES, 'icon.png': b'tampered'})
    assert not manifest.verify({**FILES, 'logo.png': b'extra'})
    missing = dict(FILES)
    del missing['icon.png']
    assert not manifest.verify(missing)
    # manifest and signature entries of a bundle are not listed
    assert manifest.verify(
        {**FILES, 'manifest.json': manifest.dump(), 'signature': b'sig'}
    )


@pytest.mark.parametrize('reserved', ['manifest.json', 'signature'])
def test_manifest_rejects_reserved_names(reserved):
    with pytest.raises(ValueError):
        ManifestBuilder().build({**FILES, reserved: b''})


def _signer_info(signature: bytes):
    content_info = cms.ContentInfo.load(signature)
    assert content_info['content_type'].native == 'signed_data'
    signed_data = content_info['content']
    return signed_data, signed_data['signer_infos'][0]


def test_signature_structure(credentials):
    manifest_bytes = ManifestBuilder().build(FILES).dump()
    signature = PassSigner(credentials.bundle).sign(manifest_bytes)
    signed_data, signer_info = _signer_info(signature)

    assert signed_data['version'].native == 'v1'
    encap = signed_data['encap_content_info']
    assert encap['content_type'].native == 'data'
    assert encap['content'].native is None

    certs = [c.chosen for c in signed_data['certificates']]
    bundle = credentials.bundle
    # SET OF: asn1crypto sorts the members by their encoding
    assert {c.dump() for c in certs} \
        == {bundle.signer_cert.dump(), bundle.wwdr_cert.dump()}

    sid = signer_info['sid'].chosen
    assert sid['issuer'] == bundle.signer_cert.issuer
    assert sid['serial_number'].native == bundle.signer_cert.serial_number
    assert signer_info['digest_algorithm']['algorithm'].native == 'sha256'

    attrs = {
        attr['type'].native: attr['values'][0]
        for attr in signer_info['signed_attrs']
    }
    assert set(attrs) == {'content_type', 'signing_time', 'message_digest'}
    assert attrs['content_type'].native == 'data'
    assert attrs['message_digest'].native \
        == hashlib.sha256(manifest_bytes).digest()


def test_signature_verifies_against_chain(credentials, pki):
    manifest_bytes = ManifestBuilder().build(FILES).dump()
    signature = PassSigner(credentials.bundle).sign(manifest_bytes)
    _, signer_info = _signer_info(signature)

    signed_attrs = signer_info['signed_attrs'].untag().dump()
    pki.leaf_cert.public_key().verify(
        signer_info['signature'].native, signed_attrs,
        padding.PKCS1v15(), hashes.SHA256()
    )
    pki.leaf_cert.verify_directly_issued_by(pki.wwdr_cert)
    pki.wwdr_cert.verify_directly_issued_by(pki.root_cert)


def test_fixed_signing_time(credentials):
    dt = datetime(2021, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    signer = PassSigner(credentials.bundle, fixed_dt=dt)
    first = signer.sign(b'{}')
    assert first == signer.sign(b'{}')

    _, signer_info = _signer_info(first)
    attrs = {
        attr['type'].native: attr['values'][0]
        for attr in signer_info['signed_attrs']
    }
    assert attrs['signing_time'].native == dt


def test_signing_failure_is_wrapped(credentials):
    signer = PassSigner(credentials.bundle, md_algorithm='no_such_digest')
    with pytest.raises(SigningError):
        signer.sign(b'{}')


def test_signing_with_unrelated_key(credentials, pki):
    other = build_pki()
    cred_bundle = CredentialBundle(
        signer_cert=credentials.bundle.signer_cert,
        signer_key=other.asn1_key(),
        wwdr_cert=credentials.bundle.wwdr_cert,
    )
    # signing works, but the result does not verify against the certificate
    signature = PassSigner(cred_bundle).sign(b'{}')
    _, signer_info = _signer_info(signature)
    signed_attrs = signer_info['signed_attrs'].untag().dump()
    with pytest.raises(InvalidSignature):
        pki.leaf_cert.public_key().verify(
            signer_info['signature'].native, signed_attrs,
            padding.PKCS1v15(), hashes.SHA256()
        )


def test_package_flat(credentials):
    manifest = ManifestBuilder().build(FILES)
    signature = PassSigner(credentials.bundle).sign(manifest.dump())
    data = BundlePackager.package(FILES, manifest.dump(), signature)
    entries = BundlePackager.unpack(data)
    assert set(entries) == set(FILES) | {'manifest.json', 'signature'}
    assert entries['signature'] == signature
    assert Manifest.load(entries['manifest.json']).verify(entries)


def test_package_rejects_nested_names():
    with pytest.raises(ValueError, match='top-level'):
        BundlePackager.package({'en.lproj/pass.strings': b''}, b'{}', b'')
