"""
Signing credentials: the pass type certificate with its private key
(shipped in a password-protected PKCS#12 container) and the intermediate
authority certificate (WWDR) that completes the chain.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from asn1crypto import keys, x509

from .config_utils import ConfigurableMixin, ConfigurationError, SearchDir
from .crypto_utils import keys_match, load_cert_from_pemder_data, load_pkcs12
from .errors import CredentialError

__all__ = ['CredentialConfig', 'CredentialBundle', 'CredentialStore']

logger = logging.getLogger(__name__)

ENV_P12_BASE64 = 'MEMOMANCER_P12_BASE64'
ENV_P12_PATH = 'MEMOMANCER_P12_PATH'
ENV_P12_PASSWORD = 'MEMOMANCER_P12_PASSWORD'
ENV_WWDR_PEM = 'MEMOMANCER_WWDR_PEM'
ENV_WWDR_PATH = 'MEMOMANCER_WWDR_PATH'


@dataclass(frozen=True)
class CredentialConfig(ConfigurableMixin):
    """
    Where to find the signing material. Inline data takes precedence over
    file paths.
    """

    p12_path: Optional[str] = None
    """Path to the PKCS#12 container."""

    p12_password: Optional[str] = None
    """Passphrase of the PKCS#12 container."""

    p12_data: Optional[bytes] = None
    """Raw PKCS#12 container bytes."""

    wwdr_path: Optional[str] = None
    """Path to the intermediate certificate (PEM or DER)."""

    wwdr_pem: Optional[str] = None
    """Intermediate certificate as PEM text."""

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        # binary data can't be put in Yaml directly, so we accept base64
        try:
            p12_b64 = config_dict.pop('p12_data')
        except KeyError:
            return
        if isinstance(p12_b64, str):
            try:
                config_dict['p12_data'] = base64.b64decode(p12_b64)
            except (binascii.Error, ValueError) as e:
                raise ConfigurationError(
                    "p12-data must be base64-encoded"
                ) from e
        else:
            config_dict['p12_data'] = p12_b64

    def resolve_paths(self, search_dir: SearchDir) -> 'CredentialConfig':
        def _res(path):
            return search_dir.locate(path) if path is not None else None

        return CredentialConfig(
            p12_path=_res(self.p12_path),
            p12_password=self.p12_password,
            p12_data=self.p12_data,
            wwdr_path=_res(self.wwdr_path),
            wwdr_pem=self.wwdr_pem,
        )

    def with_environment(self, env: Mapping[str, str]) -> 'CredentialConfig':
        """
        Overlay credential settings from environment variables.
        A complete set of inline environment values (base64 container and
        PEM text) wins over anything else, as is customary for hosted
        deployments.
        """
        if env.get(ENV_P12_BASE64) and env.get(ENV_WWDR_PEM):
            try:
                p12_data = base64.b64decode(env[ENV_P12_BASE64])
            except (binascii.Error, ValueError) as e:
                raise ConfigurationError(
                    f"{ENV_P12_BASE64} must be base64-encoded"
                ) from e
            return CredentialConfig(
                p12_data=p12_data,
                p12_password=env.get(ENV_P12_PASSWORD, self.p12_password),
                wwdr_pem=env[ENV_WWDR_PEM],
            )
        return CredentialConfig(
            p12_path=env.get(ENV_P12_PATH, self.p12_path),
            p12_password=env.get(ENV_P12_PASSWORD, self.p12_password),
            p12_data=self.p12_data,
            wwdr_path=env.get(ENV_WWDR_PATH, self.wwdr_path),
            wwdr_pem=self.wwdr_pem,
        )

    @classmethod
    def from_environment(cls, env=None) -> 'CredentialConfig':
        return cls().with_environment(os.environ if env is None else env)

    def missing_material(self):
        """
        List the pieces of required material that are not configured,
        or cannot be found on disk.
        """
        missing = []
        if self.p12_data is None and not (
            self.p12_path and os.path.isfile(self.p12_path)
        ):
            missing.append('PKCS#12 container')
        if self.wwdr_pem is None and not (
            self.wwdr_path and os.path.isfile(self.wwdr_path)
        ):
            missing.append('intermediate certificate')
        return missing

    def read_p12(self) -> bytes:
        if self.p12_data is not None:
            return self.p12_data
        with open(self.p12_path, 'rb') as inf:
            return inf.read()

    def read_wwdr(self) -> bytes:
        if self.wwdr_pem is not None:
            return self.wwdr_pem.encode('ascii')
        with open(self.wwdr_path, 'rb') as inf:
            return inf.read()


@dataclass(frozen=True)
class CredentialBundle:
    """Decoded signing material. Never mutated after loading."""

    signer_cert: x509.Certificate
    signer_key: keys.PrivateKeyInfo
    wwdr_cert: x509.Certificate

    @property
    def chain(self):
        return [self.signer_cert, self.wwdr_cert]


class CredentialStore:
    """
    Holds the credential bundle for the lifetime of the process.
    Load it once at startup with :meth:`load`; the bundle is shared
    read-only by all requests.
    """

    def __init__(self, bundle: CredentialBundle):
        self._bundle = bundle

    @property
    def bundle(self) -> CredentialBundle:
        return self._bundle

    @staticmethod
    def check(config: CredentialConfig) -> bool:
        """Check whether all required material is present (not decoded)."""
        missing = config.missing_material()
        for item in missing:
            logger.warning(f"Missing signing material: {item}")
        return not missing

    @classmethod
    def load(cls, config: CredentialConfig) -> 'CredentialStore':
        """
        Decode the signing material.

        :raises ConfigurationError:
            if required material is absent.
        :raises CredentialError:
            if the container cannot be decoded with the given passphrase,
            or if its contents are unusable.
        """
        missing = config.missing_material()
        if missing:
            raise ConfigurationError(
                f"Signing credentials are incomplete; missing "
                f"{' and '.join(missing)}."
            )
        try:
            pfx_bytes = config.read_p12()
            wwdr_bytes = config.read_wwdr()
        except IOError as e:
            raise ConfigurationError(
                f"Failed to read signing credentials: {e}"
            ) from e

        password = config.p12_password
        try:
            cert, key, _ = load_pkcs12(
                pfx_bytes, password.encode('utf8') if password else None
            )
        except (ValueError, TypeError) as e:
            raise CredentialError(
                "Could not decode the PKCS#12 container; is the passphrase "
                "correct?"
            ) from e
        if cert is None or key is None:
            raise CredentialError(
                "The PKCS#12 container must hold both a certificate and "
                "its private key."
            )
        if not keys_match(key, cert.public_key):
            raise CredentialError(
                "The private key in the PKCS#12 container does not match "
                "its certificate."
            )

        try:
            wwdr = load_cert_from_pemder_data(wwdr_bytes)
        except (ValueError, TypeError) as e:
            raise CredentialError(
                f"Could not decode the intermediate certificate: {e}"
            ) from e

        if cert.issuer != wwdr.subject:
            logger.warning(
                f"Signer certificate issuer '{cert.issuer.human_friendly}' "
                f"does not match intermediate certificate subject "
                f"'{wwdr.subject.human_friendly}'."
            )
        logger.info(
            f"Loaded signing certificate for "
            f"'{cert.subject.human_friendly}'."
        )
        return cls(
            CredentialBundle(signer_cert=cert, signer_key=key, wwdr_cert=wwdr)
        )
