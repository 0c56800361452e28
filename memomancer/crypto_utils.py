import logging
from typing import List, Optional, Tuple

from asn1crypto import algos, keys, pem, x509
from cryptography.hazmat.primitives import serialization

logger = logging.getLogger(__name__)


class CryptoBackend:
    def load_pkcs12(
        self, pfx_bytes: bytes, password: Optional[bytes]
    ) -> Tuple[
        Optional[x509.Certificate],
        Optional[keys.PrivateKeyInfo],
        List[x509.Certificate],
    ]:
        raise NotImplementedError

    def generic_sign(
        self,
        private_key: keys.PrivateKeyInfo,
        tbs_bytes: bytes,
        sd_algo: algos.SignedDigestAlgorithm,
    ) -> bytes:
        raise NotImplementedError

    def keys_match(
        self, private_key: keys.PrivateKeyInfo, public_key: keys.PublicKeyInfo
    ) -> bool:
        raise NotImplementedError


class PycaCryptographyBackend(CryptoBackend):
    def load_pkcs12(
        self, pfx_bytes: bytes, password: Optional[bytes]
    ) -> Tuple[
        Optional[x509.Certificate],
        Optional[keys.PrivateKeyInfo],
        List[x509.Certificate],
    ]:
        from cryptography.hazmat.primitives.serialization import pkcs12

        # pyca/cryptography objects are converted to asn1crypto ones
        # through their DER encoding
        private_key, cert, additional = pkcs12.load_key_and_certificates(
            pfx_bytes, password
        )
        key_info = None
        if private_key is not None:
            key_info = keys.PrivateKeyInfo.load(
                private_key.private_bytes(
                    serialization.Encoding.DER,
                    serialization.PrivateFormat.PKCS8,
                    serialization.NoEncryption(),
                )
            )
        leaf = None
        if cert is not None:
            leaf = x509.Certificate.load(
                cert.public_bytes(serialization.Encoding.DER)
            )
        others = [
            x509.Certificate.load(c.public_bytes(serialization.Encoding.DER))
            for c in additional
        ]
        return leaf, key_info, others

    def generic_sign(
        self,
        private_key: keys.PrivateKeyInfo,
        tbs_bytes: bytes,
        sd_algo: algos.SignedDigestAlgorithm,
    ) -> bytes:
        from cryptography.hazmat.primitives import hashes
        from cryptography.hazmat.primitives.asymmetric import (
            ec,
            ed25519,
            padding,
            rsa,
        )

        priv_key = serialization.load_der_private_key(
            private_key.dump(), password=None
        )
        sig_algo = sd_algo.signature_algo
        if sig_algo == 'ed25519':
            if not isinstance(priv_key, ed25519.Ed25519PrivateKey):
                raise TypeError("ed25519 signing requires an ed25519 key")
            return priv_key.sign(tbs_bytes)

        hash_algo = getattr(hashes, sd_algo.hash_algo.upper())()
        if sig_algo == 'rsassa_pkcs1v15':
            if not isinstance(priv_key, rsa.RSAPrivateKey):
                raise TypeError(f"{sig_algo} signing requires an RSA key")
            return priv_key.sign(tbs_bytes, padding.PKCS1v15(), hash_algo)
        elif sig_algo == 'ecdsa':
            if not isinstance(priv_key, ec.EllipticCurvePrivateKey):
                raise TypeError("ECDSA signing requires an EC key")
            return priv_key.sign(
                tbs_bytes, signature_algorithm=ec.ECDSA(hash_algo)
            )
        else:
            raise NotImplementedError(
                f"The signature algorithm {sig_algo} is unsupported"
            )

    def keys_match(
        self, private_key: keys.PrivateKeyInfo, public_key: keys.PublicKeyInfo
    ) -> bool:
        priv_key = serialization.load_der_private_key(
            private_key.dump(), password=None
        )
        derived = priv_key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return derived == public_key.dump()


CRYPTO_BACKEND: CryptoBackend = PycaCryptographyBackend()


def generic_sign(
    private_key: keys.PrivateKeyInfo,
    tbs_bytes: bytes,
    signature_algo: algos.SignedDigestAlgorithm,
) -> bytes:
    return CRYPTO_BACKEND.generic_sign(private_key, tbs_bytes, signature_algo)


def load_pkcs12(pfx_bytes: bytes, password: Optional[bytes]):
    return CRYPTO_BACKEND.load_pkcs12(pfx_bytes, password)


def keys_match(
    private_key: keys.PrivateKeyInfo, public_key: keys.PublicKeyInfo
) -> bool:
    return CRYPTO_BACKEND.keys_match(private_key, public_key)


def load_certs_from_pemder_data(cert_bytes: bytes):
    """
    Load PEM/DER-encoded certificates from a byte string.

    :param cert_bytes:
        Certificate data. PEM data may contain several certificates.
    :return:
        A generator producing :class:`.asn1crypto.x509.Certificate` objects.
    """
    if pem.detect(cert_bytes):
        for type_name, _, der in pem.unarmor(cert_bytes, multiple=True):
            if type_name is None or type_name.lower() == 'certificate':
                yield x509.Certificate.load(der)
            else:
                logger.debug(
                    f'Skipping PEM block of type {type_name} in '
                    f'certificate data.'
                )
    else:
        yield x509.Certificate.load(cert_bytes)


def load_cert_from_pemder_data(cert_bytes: bytes) -> x509.Certificate:
    """
    Load a single PEM/DER-encoded certificate.

    :raises ValueError:
        if the data does not contain exactly one certificate.
    """
    certs = list(load_certs_from_pemder_data(cert_bytes))
    if len(certs) != 1:
        raise ValueError(
            f"Expected exactly one certificate, found {len(certs)}"
        )
    # force a full parse so that corrupt data is caught here
    certs[0].native
    return certs[0]
