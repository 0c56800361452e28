import datetime
import random
from dataclasses import dataclass
from io import BytesIO

import pytest
from asn1crypto import keys
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from PIL import Image

from memomancer.config import MemomancerConfig
from memomancer.credentials import CredentialConfig, CredentialStore

P12_PASSWORD = 'secret'
PASS_TYPE_ID = 'pass.com.example.testing'
TEAM_ID = 'TEAM123456'


@dataclass
class PKIMaterial:
    root_cert: x509.Certificate
    wwdr_cert: x509.Certificate
    leaf_cert: x509.Certificate
    leaf_key: rsa.RSAPrivateKey
    p12_bytes: bytes

    @property
    def wwdr_pem(self) -> str:
        return self.wwdr_cert.public_bytes(
            serialization.Encoding.PEM
        ).decode('ascii')

    def asn1(self, cert: x509.Certificate) -> asn1_x509.Certificate:
        return asn1_x509.Certificate.load(
            cert.public_bytes(serialization.Encoding.DER)
        )

    def asn1_key(self) -> keys.PrivateKeyInfo:
        return keys.PrivateKeyInfo.load(
            self.leaf_key.private_bytes(
                serialization.Encoding.DER,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )


def _issue(subject, issuer, public_key, issuer_key, ca):
    not_before = datetime.datetime(2020, 1, 1, tzinfo=datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + datetime.timedelta(days=365 * 30))
        .add_extension(
            x509.BasicConstraints(ca=ca, path_length=None), critical=True
        )
    )
    return builder.sign(issuer_key, hashes.SHA256())


def _new_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def build_pki(password=P12_PASSWORD) -> PKIMaterial:
    root_key, wwdr_key, leaf_key = _new_key(), _new_key(), _new_key()
    root_name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, 'Testing Root CA'),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'Memomancer Testing'),
    ])
    wwdr_name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, 'Testing WWDR CA'),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'Memomancer Testing'),
    ])
    leaf_name = x509.Name([
        x509.NameAttribute(NameOID.USER_ID, PASS_TYPE_ID),
        x509.NameAttribute(
            NameOID.COMMON_NAME, f'Pass Type ID: {PASS_TYPE_ID}'
        ),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, TEAM_ID),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, 'Memomancer Testing'),
    ])
    root_cert = _issue(
        root_name, root_name, root_key.public_key(), root_key, ca=True
    )
    wwdr_cert = _issue(
        wwdr_name, root_name, wwdr_key.public_key(), root_key, ca=True
    )
    leaf_cert = _issue(
        leaf_name, wwdr_name, leaf_key.public_key(), wwdr_key, ca=False
    )
    p12_bytes = pkcs12.serialize_key_and_certificates(
        name=b'pass', key=leaf_key, cert=leaf_cert, cas=[wwdr_cert],
        encryption_algorithm=serialization.BestAvailableEncryption(
            password.encode('utf8')
        )
    )
    return PKIMaterial(
        root_cert=root_cert, wwdr_cert=wwdr_cert, leaf_cert=leaf_cert,
        leaf_key=leaf_key, p12_bytes=p12_bytes
    )


def noise_png(size, seed=0) -> bytes:
    """A drawing that compresses badly, so it clears any size threshold."""
    w, h = size
    rng = random.Random(seed)
    n = w * h * 4
    raw = rng.getrandbits(n * 8).to_bytes(n, 'little')
    img = Image.frombytes('RGBA', (w, h), raw)
    buf = BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def solid_png(size, color=(255, 0, 0, 255)) -> bytes:
    buf = BytesIO()
    Image.new('RGBA', size, color).save(buf, format='PNG')
    return buf.getvalue()


@pytest.fixture(scope='session')
def pki():
    return build_pki()


@pytest.fixture(scope='session')
def credential_config(pki):
    return CredentialConfig(
        p12_data=pki.p12_bytes, p12_password=P12_PASSWORD,
        wwdr_pem=pki.wwdr_pem
    )


@pytest.fixture(scope='session')
def credentials(credential_config):
    return CredentialStore.load(credential_config)


@pytest.fixture
def cred_dir(tmp_path, pki):
    (tmp_path / 'pass.p12').write_bytes(pki.p12_bytes)
    (tmp_path / 'wwdr.pem').write_text(pki.wwdr_pem)
    return tmp_path


@pytest.fixture
def config_file(cred_dir):
    cfg_path = cred_dir / 'memomancer.yml'
    cfg_path.write_text(
        'credentials:\n'
        '  p12-path: pass.p12\n'
        f'  p12-password: {P12_PASSWORD}\n'
        '  wwdr-path: wwdr.pem\n'
        'pending:\n'
        '  ttl: PT5M\n'
    )
    return cfg_path


@pytest.fixture
def generator(credentials):
    cfg = MemomancerConfig({}, env={})
    return cfg.build_generator(
        credentials=credentials, rng=random.Random(1)
    )


@pytest.fixture
def make_noise_png():
    return noise_png


@pytest.fixture
def make_solid_png():
    return solid_png
