import hashlib
import json
from dataclasses import dataclass
from typing import Dict, Mapping

from .template import MANIFEST_FILENAME, SIGNATURE_FILENAME

__all__ = ['Manifest', 'ManifestBuilder']


@dataclass(frozen=True)
class Manifest:
    """
    Content digests of every file in a pass, keyed by file name.
    The manifest never lists itself or the signature.
    """

    digests: Mapping[str, str]
    md_algorithm: str = 'sha1'

    def dump(self) -> bytes:
        """Canonical serialisation; these are the bytes that get signed."""
        return json.dumps(
            dict(self.digests), sort_keys=True, indent=2
        ).encode('utf8')

    @classmethod
    def load(cls, data: bytes, md_algorithm='sha1') -> 'Manifest':
        return cls(json.loads(data.decode('utf8')), md_algorithm=md_algorithm)

    def verify(self, files: Mapping[str, bytes]) -> bool:
        """
        Check that the manifest lists exactly the given files, with
        matching digests.
        """
        files = {
            k: v for k, v in files.items()
            if k not in (MANIFEST_FILENAME, SIGNATURE_FILENAME)
        }
        if set(files) != set(self.digests):
            return False
        md = getattr(hashlib, self.md_algorithm)
        return all(
            md(content).hexdigest() == self.digests[name]
            for name, content in files.items()
        )

    def __len__(self):
        return len(self.digests)


class ManifestBuilder:
    """
    Compute the manifest of a finished file set. Any later change to one
    of the files requires building a new manifest from scratch.
    """

    def __init__(self, md_algorithm='sha1'):
        self.md_algorithm = md_algorithm

    def build(self, files: Mapping[str, bytes]) -> Manifest:
        md = getattr(hashlib, self.md_algorithm)
        digests: Dict[str, str] = {}
        for name, content in files.items():
            if name in (MANIFEST_FILENAME, SIGNATURE_FILENAME):
                raise ValueError(f"'{name}' cannot be listed in a manifest")
            digests[name] = md(content).hexdigest()
        return Manifest(digests, md_algorithm=self.md_algorithm)
