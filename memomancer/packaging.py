from io import BytesIO
from typing import Mapping
from zipfile import ZIP_DEFLATED, ZipFile

from .template import MANIFEST_FILENAME, SIGNATURE_FILENAME

__all__ = ['BundlePackager', 'PKPASS_MIME_TYPE', 'PKPASS_FILENAME']

PKPASS_MIME_TYPE = 'application/vnd.apple.pkpass'
PKPASS_FILENAME = 'walletmemo.pkpass'


class BundlePackager:
    """Write a pass bundle: a ZIP archive with flat top-level entries."""

    @staticmethod
    def package(files: Mapping[str, bytes], manifest: bytes,
                signature: bytes) -> bytes:
        for name in files:
            if '/' in name or '\\' in name:
                raise ValueError(
                    f"Pass bundle entries must be top-level, got '{name}'"
                )
        buf = BytesIO()
        with ZipFile(buf, 'w', ZIP_DEFLATED) as zip_file:
            for name, data in files.items():
                zip_file.writestr(name, data)
            zip_file.writestr(MANIFEST_FILENAME, manifest)
            zip_file.writestr(SIGNATURE_FILENAME, signature)
        return buf.getvalue()

    @staticmethod
    def unpack(data: bytes) -> dict:
        """Read all entries of a pass bundle into a dictionary."""
        with ZipFile(BytesIO(data)) as zip_file:
            return {
                name: zip_file.read(name) for name in zip_file.namelist()
            }
