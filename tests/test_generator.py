import hashlib
import json
import logging
import re
from datetime import timedelta

import pytest
from asn1crypto import cms
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import Encoding

from memomancer.config import MemomancerConfig
from memomancer.config_utils import ConfigurationError
from memomancer.errors import NotFoundError, SynthesisError, ValidationError
from memomancer.generator import PassGenerator
from memomancer.manifest import Manifest
from memomancer.packaging import BundlePackager
from memomancer.pending import PendingPassStore
from memomancer.template import PassRequest
from tests.conftest import PASS_TYPE_ID, TEAM_ID

ASSET_NAMES = {
    'background.png', 'background@2x.png', 'icon.png', 'icon@2x.png',
    'logo.png', 'logo@2x.png',
}
SERIAL_REGEX = re.compile(r'memo-\d+-[a-z0-9]{9}')


def _unpack(bundle: bytes):
    entries = BundlePackager.unpack(bundle)
    descriptor = json.loads(entries['pass.json'].decode('utf8'))
    return entries, descriptor


def test_buy_milk(generator):
    bundle = generator.generate(PassRequest(color='blue', text='Buy milk'))
    entries, descriptor = _unpack(bundle)

    assert set(entries) == ASSET_NAMES | {
        'pass.json', 'manifest.json', 'signature'
    }
    manifest = Manifest.load(entries['manifest.json'])
    # template files (none) + six assets + pass.json
    assert len(manifest) == len(generator.template.files) + 6 + 1
    assert manifest.verify(entries)

    assert descriptor['eventTicket']['primaryFields'][0]['value'] \
        == 'Buy milk'
    assert descriptor['backgroundColor'] == 'rgb(157, 213, 238)'
    assert descriptor['foregroundColor'] == 'rgb(34, 34, 34)'
    assert descriptor['passTypeIdentifier'] == PASS_TYPE_ID
    assert descriptor['teamIdentifier'] == TEAM_ID
    assert SERIAL_REGEX.fullmatch(descriptor['serialNumber'])

    content_info = cms.ContentInfo.load(entries['signature'])
    assert content_info['content_type'].native == 'signed_data'


def test_bundle_signature_covers_manifest(generator, pki):
    bundle = generator.generate(PassRequest(color='blue', text='Buy milk'))
    entries = BundlePackager.unpack(bundle)
    signed_data = cms.ContentInfo.load(entries['signature'])['content']
    signer_info = signed_data['signer_infos'][0]

    attrs = {
        attr['type'].native: attr['values'][0].native
        for attr in signer_info['signed_attrs']
    }
    assert attrs['message_digest'] \
        == hashlib.sha256(entries['manifest.json']).digest()

    pki.leaf_cert.public_key().verify(
        signer_info['signature'].native,
        signer_info['signed_attrs'].untag().dump(),
        padding.PKCS1v15(), hashes.SHA256()
    )

    embedded = {c.chosen.dump() for c in signed_data['certificates']}
    assert embedded == {
        pki.leaf_cert.public_bytes(Encoding.DER),
        pki.wwdr_cert.public_bytes(Encoding.DER),
    }
    pki.leaf_cert.verify_directly_issued_by(pki.wwdr_cert)
    pki.wwdr_cert.verify_directly_issued_by(pki.root_cert)


def test_build_keeps_intermediate_results(generator):
    result = generator.build(PassRequest(color='pink'))
    assert result.manifest.verify(result.files)
    assert result.descriptor['serialNumber'] == result.serial_number
    assert result.descriptor['backgroundColor'] == 'rgb(228, 184, 192)'
    # no text: the template value stays
    assert result.descriptor['eventTicket']['primaryFields'][0]['value'] \
        == 'Empty note'
    entries = BundlePackager.unpack(result.bundle)
    assert entries['signature'] == result.signature


def test_fresh_serial_numbers(generator):
    request = PassRequest(color='yellow', text='Same request')
    first_entries, first = _unpack(generator.generate(request))
    second_entries, second = _unpack(generator.generate(request))
    assert first['serialNumber'] != second['serialNumber']
    first_manifest = Manifest.load(first_entries['manifest.json'])
    second_manifest = Manifest.load(second_entries['manifest.json'])
    assert set(first_manifest.digests) == set(second_manifest.digests)


def test_prepare_retrieve(generator):
    request = PassRequest(color='blue', text='Buy milk')
    token = generator.prepare(request)
    retrieved_entries, retrieved = _unpack(generator.retrieve(token))
    direct_entries, direct = _unpack(generator.generate(request))

    assert set(retrieved_entries) == set(direct_entries)
    del retrieved['serialNumber'], direct['serialNumber']
    assert retrieved == direct

    with pytest.raises(NotFoundError):
        generator.retrieve(token)


def test_prepare_validates(generator):
    with pytest.raises(ValidationError):
        generator.prepare(PassRequest(color='green'))
    assert len(generator.pending_store) == 0


@pytest.mark.parametrize('request_kwargs, err', [
    ({'color': 'green'}, 'Unknown color'),
    ({'color': ['blue']}, 'Color'),
    ({'color': 'blue', 'text': 'x' * 501}, 'exceeds 500'),
    ({'color': 'blue', 'text': 42}, 'string'),
    ({'color': 'blue', 'drawing': 'data:image/png;base64,AAAA'}, 'binary'),
])
def test_validation(generator, request_kwargs, err):
    with pytest.raises(ValidationError, match=err):
        generator.generate(PassRequest(**request_kwargs))


def test_drawing_too_big(credentials):
    cfg = MemomancerConfig({'max-drawing-bytes': 100}, env={})
    generator = cfg.build_generator(credentials=credentials)
    with pytest.raises(ValidationError, match='exceeds 100 bytes'):
        generator.generate(PassRequest(color='blue', drawing=b'x' * 101))


def test_drawing(generator, make_noise_png):
    result = generator.build(
        PassRequest(color='blue', drawing=make_noise_png((200, 100)))
    )
    assert ASSET_NAMES <= set(result.files)


def test_bad_drawing_soft_fails(generator, caplog):
    with caplog.at_level(logging.WARNING, logger='memomancer'):
        bundle = generator.generate(
            PassRequest(color='blue', drawing=b'not an image' * 200)
        )
    entries, _ = _unpack(bundle)
    assert ASSET_NAMES <= set(entries)
    assert 'without the drawing' in caplog.text


def test_bad_drawing_strict(credentials):
    cfg = MemomancerConfig({'strict-drawing': True}, env={})
    generator = cfg.build_generator(credentials=credentials)
    with pytest.raises(SynthesisError):
        generator.generate(
            PassRequest(color='blue', drawing=b'not an image' * 200)
        )


def test_config_from_yaml(credentials):
    cfg = MemomancerConfig.from_yaml(
        'pending:\n'
        '  ttl: PT1M\n'
        'template:\n'
        '  identifiers-from-certificate: false\n'
        'max-text-length: 10\n'
        'assets:\n'
        '  background:\n'
        '    overlay: cover\n'
        '    speckle: false\n',
        env={}
    )
    generator = cfg.build_generator(credentials=credentials)
    assert generator.pending_store.ttl == timedelta(minutes=1)
    assert generator.synthesizer.specs['background'].overlay == 'cover'
    assert generator.synthesizer.specs['background'].size == (360, 440)
    assert generator.template.descriptor['passTypeIdentifier'] \
        == 'pass.com.example.walletmemo'
    with pytest.raises(ValidationError):
        generator.generate(PassRequest(color='blue', text='x' * 11))


def test_shared_pending_store(credentials, generator):
    store = PendingPassStore(ttl=timedelta(seconds=30))
    assert len(store) == 0
    other = PassGenerator(
        credentials, generator.template, pending_store=store
    )
    assert other.pending_store is store
    token = other.prepare(PassRequest(color='blue'))
    assert len(store) == 1
    other.retrieve(token)


@pytest.mark.parametrize('yaml_str', [
    'colour: blue\n',
    'pending:\n  ttl: P1M\n',
    'pending:\n  ttl: 300\n',
    'pending:\n  lifetime: PT5M\n',
    'assets:\n  background:\n    fill: sparkly\n',
    'template:\n  text-field: nope\n',
    "strict-drawing: 'false'\n",
])
def test_config_errors(yaml_str, credentials):
    with pytest.raises(ConfigurationError):
        cfg = MemomancerConfig.from_yaml(yaml_str, env={})
        cfg.build_generator(credentials=credentials)
