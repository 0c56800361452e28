import hashlib
import logging
from datetime import datetime
from typing import Optional

import tzlocal
from asn1crypto import algos, cms, core, keys
from cryptography.exceptions import UnsupportedAlgorithm

from .credentials import CredentialBundle
from .crypto_utils import generic_sign
from .errors import SigningError

__all__ = ['PassSigner', 'choose_signed_digest', 'simple_cms_attribute']

logger = logging.getLogger(__name__)


def simple_cms_attribute(attr_type, value):
    """
    Convenience method to quickly construct a CMS attribute object with
    one value.

    :param attr_type:
        The attribute type, as a string or OID.
    :param value:
        The value.
    :return:
        A :class:`.cms.CMSAttribute` object.
    """
    return cms.CMSAttribute({
        'type': cms.CMSAttributeType(attr_type),
        'values': (value,)
    })


def choose_signed_digest(digest_algo: str, pub_key: keys.PublicKeyInfo) \
        -> algos.SignedDigestAlgorithm:
    key_algo = pub_key.algorithm
    if key_algo == 'rsa':
        signature_algo = digest_algo + '_rsa'
    elif key_algo == 'ec':
        signature_algo = digest_algo + '_ecdsa'
    elif key_algo == 'ed25519':
        signature_algo = 'ed25519'
    else:
        raise SigningError(f"Unsupported signing key algorithm {key_algo}")
    return algos.SignedDigestAlgorithm({'algorithm': signature_algo})


class PassSigner:
    """
    Produce detached CMS signatures over pass manifests.

    The signature embeds both the signer's certificate and the intermediate
    certificate, so verifiers need nothing but the trust root.

    :param credentials:
        The signing material.
    :param md_algorithm:
        Message digest algorithm for the signature.
    :param fixed_dt:
        Signing time to use instead of the current time.
    """

    def __init__(self, credentials: CredentialBundle,
                 md_algorithm='sha256', fixed_dt: datetime = None):
        self.credentials = credentials
        self.md_algorithm = md_algorithm
        self.fixed_dt = fixed_dt

    def sign(self, data: bytes, signing_time: Optional[datetime] = None) \
            -> bytes:
        """
        Sign manifest bytes.

        :return:
            A DER-encoded ``ContentInfo`` holding the ``SignedData``.
        :raises SigningError:
            if any cryptographic operation fails.
        """
        try:
            return self._sign(data, signing_time).dump()
        except SigningError:
            raise
        except (ValueError, TypeError, NotImplementedError,
                UnsupportedAlgorithm) as e:
            raise SigningError(f"Failed to sign manifest: {e}") from e

    def _sign(self, data: bytes, signing_time) -> cms.ContentInfo:
        signer_cert = self.credentials.signer_cert
        md_algorithm = self.md_algorithm
        signature_algo = choose_signed_digest(
            md_algorithm, signer_cert.public_key
        )
        digest_algorithm_obj = algos.DigestAlgorithm({
            'algorithm': md_algorithm
        })
        dt = (
            signing_time or self.fixed_dt
            or datetime.now(tz=tzlocal.get_localzone())
        )
        message_digest = getattr(hashlib, md_algorithm)(data).digest()
        signed_attrs = cms.CMSAttributes([
            simple_cms_attribute('content_type', 'data'),
            simple_cms_attribute(
                'signing_time', cms.Time({'utc_time': core.UTCTime(dt)})
            ),
            simple_cms_attribute('message_digest', message_digest),
        ])
        signature = generic_sign(
            self.credentials.signer_key, signed_attrs.dump(), signature_algo
        )
        sig_info = cms.SignerInfo({
            'version': 'v1',
            'sid': cms.SignerIdentifier({
                'issuer_and_serial_number': cms.IssuerAndSerialNumber({
                    'issuer': signer_cert.issuer,
                    'serial_number': signer_cert.serial_number,
                })
            }),
            'digest_algorithm': digest_algorithm_obj,
            'signature_algorithm': signature_algo,
            'signed_attrs': signed_attrs,
            'signature': signature
        })
        signed_data = {
            'version': 'v1',
            'digest_algorithms': cms.DigestAlgorithms((digest_algorithm_obj,)),
            # detached: the content type is declared, the content omitted
            'encap_content_info': cms.ContentInfo({
                'content_type': cms.ContentType('data'),
            }),
            'certificates': [
                cms.CertificateChoices({'certificate': c})
                for c in self.credentials.chain
            ],
            'signer_infos': [sig_info]
        }
        logger.debug(
            f"Signed {len(data)} bytes of manifest data with "
            f"{signature_algo['algorithm'].native}"
        )
        return cms.ContentInfo({
            'content_type': cms.ContentType('signed_data'),
            'content': cms.SignedData(signed_data)
        })
