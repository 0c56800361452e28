from .config import MemomancerConfig
from .credentials import CredentialConfig, CredentialStore
from .generator import GeneratedPass, PassGenerator
from .manifest import Manifest, ManifestBuilder
from .packaging import BundlePackager
from .palette import PaletteTable
from .pending import PendingPassStore
from .signing import PassSigner
from .synthesis import AssetSynthesizer
from .template import PassRequest, PassTemplate, TemplateMerger

__all__ = [
    'MemomancerConfig',
    'CredentialConfig',
    'CredentialStore',
    'PassGenerator',
    'GeneratedPass',
    'PassRequest',
    'PassTemplate',
    'TemplateMerger',
    'PaletteTable',
    'AssetSynthesizer',
    'Manifest',
    'ManifestBuilder',
    'PassSigner',
    'BundlePackager',
    'PendingPassStore',
]
