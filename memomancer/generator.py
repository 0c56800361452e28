import json
import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Callable, Dict

from .config_utils import LabelString
from .credentials import CredentialStore
from .errors import SynthesisError, ValidationError
from .manifest import Manifest, ManifestBuilder
from .packaging import BundlePackager
from .palette import PaletteTable
from .pending import PendingPassStore
from .signing import PassSigner
from .synthesis import AssetSynthesizer
from .template import DESCRIPTOR_FILENAME, PassRequest, PassTemplate, \
    TemplateMerger

__all__ = ['PassGenerator', 'GeneratedPass', 'SerialNumberFactory']

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEXT_LENGTH = 500
DEFAULT_MAX_DRAWING_BYTES = 8 * 1024 * 1024


class SerialNumberFactory:
    """
    Produce serial numbers of the form ``memo-<millis>-<9 random chars>``.
    """

    ALPHABET = string.ascii_lowercase + string.digits

    def __init__(self, prefix='memo', rng: random.Random = None,
                 clock: Callable[[], float] = time.time):
        self.prefix = prefix
        self.rng = rng or random.SystemRandom()
        self.clock = clock

    def __call__(self) -> str:
        suffix = ''.join(self.rng.choice(self.ALPHABET) for _ in range(9))
        return f'{self.prefix}-{int(self.clock() * 1000)}-{suffix}'


@dataclass(frozen=True)
class GeneratedPass:
    """Everything that went into a pass bundle."""

    serial_number: str
    descriptor: dict
    files: Dict[str, bytes]
    manifest: Manifest
    signature: bytes
    bundle: bytes


class PassGenerator:
    """
    Turn pass requests into signed pass bundles.

    All collaborators passed in here are shared between requests and must
    not be modified after construction; the only shared mutable state is
    the pending pass store, which does its own locking.
    """

    def __init__(self, credentials: CredentialStore,
                 template: PassTemplate,
                 palettes: PaletteTable = None,
                 synthesizer: AssetSynthesizer = None,
                 pending_store: PendingPassStore = None,
                 signer: PassSigner = None,
                 manifest_builder: ManifestBuilder = None,
                 serial_factory: Callable[[], str] = None,
                 strict_drawing: bool = False,
                 max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
                 max_drawing_bytes: int = DEFAULT_MAX_DRAWING_BYTES):
        self.credentials = credentials
        self.template = template
        self.palettes = palettes if palettes is not None else PaletteTable()
        self.synthesizer = (
            synthesizer if synthesizer is not None else AssetSynthesizer()
        )
        self.pending_store = (
            pending_store if pending_store is not None
            else PendingPassStore()
        )
        self.signer = (
            signer if signer is not None else PassSigner(credentials.bundle)
        )
        self.manifest_builder = (
            manifest_builder if manifest_builder is not None
            else ManifestBuilder()
        )
        self.serial_factory = (
            serial_factory if serial_factory is not None
            else SerialNumberFactory()
        )
        self.strict_drawing = strict_drawing
        self.max_text_length = max_text_length
        self.max_drawing_bytes = max_drawing_bytes

    def validate(self, request: PassRequest):
        """
        :raises ValidationError:
            if the request is malformed or exceeds the configured limits.
        """
        if request.text is not None:
            if not isinstance(request.text, str):
                raise ValidationError("Pass text must be a string")
            if len(request.text) > self.max_text_length:
                raise ValidationError(
                    f"Pass text exceeds {self.max_text_length} characters"
                )
        if request.drawing is not None:
            if not isinstance(request.drawing, bytes):
                raise ValidationError("Drawing must be binary image data")
            if len(request.drawing) > self.max_drawing_bytes:
                raise ValidationError(
                    f"Drawing exceeds {self.max_drawing_bytes} bytes"
                )
        if not isinstance(request.color, (str, LabelString)):
            raise ValidationError("Color must be given as a string")
        # raises ValidationError for unknown colors
        self.palettes[request.color]

    def _synthesize(self, request: PassRequest, palette):
        try:
            return self.synthesizer.render_all(palette, request.drawing)
        except SynthesisError as e:
            if self.strict_drawing:
                raise
            logger.warning(f"{e}; rendering pass without the drawing.")
            return self.synthesizer.render_all(palette, None)

    def build(self, request: PassRequest) -> GeneratedPass:
        """
        Run the full pipeline for a request and keep the intermediate
        results around.
        """
        self.validate(request)
        palette = self.palettes[request.color]
        serial_number = self.serial_factory()

        descriptor, files = TemplateMerger.merge(
            self.template, request, serial_number, palette
        )
        files.update(self._synthesize(request, palette))
        files[DESCRIPTOR_FILENAME] = json.dumps(
            descriptor, ensure_ascii=False, indent=2
        ).encode('utf8')

        # no file may change past this point
        manifest = self.manifest_builder.build(files)
        manifest_bytes = manifest.dump()
        signature = self.signer.sign(manifest_bytes)
        bundle = BundlePackager.package(files, manifest_bytes, signature)
        logger.info(
            f"Generated pass {serial_number} ({len(files)} files, "
            f"{len(bundle)} bytes)"
        )
        return GeneratedPass(
            serial_number=serial_number, descriptor=descriptor, files=files,
            manifest=manifest, signature=signature, bundle=bundle
        )

    def generate(self, request: PassRequest) -> bytes:
        """Produce a signed pass bundle for a request."""
        return self.build(request).bundle

    def prepare(self, request: PassRequest) -> str:
        """
        Validate and store a request for later retrieval.

        :return:
            An opaque single-use token.
        """
        self.validate(request)
        return self.pending_store.put(request)

    def retrieve(self, token: str) -> bytes:
        """
        Consume a token and produce the pass for the stored request.

        :raises NotFoundError:
            if the token is unknown or was used before.
        :raises ExpiredError:
            if the token expired.
        """
        return self.generate(self.pending_store.get_and_consume(token))
