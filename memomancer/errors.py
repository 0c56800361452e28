from .config_utils import ConfigurationError

__all__ = [
    'MemomancerError',
    'ConfigurationError',
    'CredentialError',
    'ValidationError',
    'SynthesisError',
    'SigningError',
    'NotFoundError',
    'ExpiredError',
]


class MemomancerError(Exception):
    """Base class for errors raised while producing passes."""
    pass


class CredentialError(MemomancerError):
    """
    The signing credentials could not be decoded (bad passphrase, corrupt
    container, key/certificate mismatch).
    """
    pass


class ValidationError(MemomancerError):
    """A pass request is malformed or exceeds the configured limits."""
    pass


class SynthesisError(MemomancerError):
    """A user-supplied drawing could not be decoded."""
    pass


class SigningError(MemomancerError):
    """Signing the manifest failed. No partial output is ever produced."""
    pass


class NotFoundError(MemomancerError):
    """The token is unknown or has already been consumed."""
    pass


class ExpiredError(NotFoundError):
    """The token existed, but its time-to-live has elapsed."""
    pass
