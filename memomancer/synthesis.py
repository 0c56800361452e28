"""
Procedural raster assets for passes.

Every asset kind is rendered once at its ``@2x`` size and downscaled for
the ``@1x`` variant. The background carries an optional paper-like speckle
texture and the user's drawing, the icon shows a small "memo" glyph, and
the logo renders the configured wordmark.
"""

import logging
import random
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from .config_utils import ConfigurableMixin, ConfigurationError
from .errors import SynthesisError
from .palette import ColorPalette

__all__ = [
    'AssetSpec', 'AssetSynthesizer', 'DEFAULT_ASSET_SPECS',
    'contain_box', 'cover_box', 'cover_crop',
    'FILL_GRADIENT', 'FILL_FLAT', 'FILL_TRANSPARENT',
    'OVERLAY_CONTAIN', 'OVERLAY_COVER',
]

logger = logging.getLogger(__name__)

FILL_GRADIENT = 'gradient'
FILL_FLAT = 'flat'
FILL_TRANSPARENT = 'transparent'
OVERLAY_CONTAIN = 'contain'
OVERLAY_COVER = 'cover'

Box = Tuple[int, int, int, int]

# Decompression bomb guard for user drawings
MAX_DRAWING_PIXELS = 4096 * 4096

# Unit grid in which the icon glyph is designed
ICON_GRID = 87


@dataclass(frozen=True)
class AssetSpec(ConfigurableMixin):
    """Rendering policy for one asset kind."""

    kind: str
    """Asset kind, also the base of the output file names."""

    size: Tuple[int, int]
    """Canvas size of the ``@2x`` variant, in pixels."""

    fill: str = FILL_GRADIENT
    """One of ``gradient``, ``flat`` or ``transparent``."""

    overlay: Optional[str] = None
    """
    Placement policy for the user's drawing: ``contain``, ``cover``,
    or ``None`` to never composite the drawing onto this asset.
    """

    margin: float = 0.9
    """Fraction of the canvas that a contained drawing may occupy."""

    speckle: bool = False
    """Apply the paper texture."""

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        if 'size' in config_dict:
            try:
                w, h = config_dict['size']
                config_dict['size'] = (int(w), int(h))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    "Asset size must be a pair of integers"
                ) from e
        fill = config_dict.get('fill', FILL_GRADIENT)
        if fill not in (FILL_GRADIENT, FILL_FLAT, FILL_TRANSPARENT):
            raise ConfigurationError(f"Unknown fill policy '{fill}'")
        overlay = config_dict.get('overlay', None)
        if overlay not in (None, OVERLAY_CONTAIN, OVERLAY_COVER):
            raise ConfigurationError(f"Unknown overlay policy '{overlay}'")
        margin = config_dict.get('margin', 0.9)
        if not 0 < margin <= 1:
            raise ConfigurationError("Overlay margin must be in (0, 1]")

    @property
    def variants(self):
        """Output file names with their scale relative to the canvas."""
        return (
            (f'{self.kind}.png', 0.5),
            (f'{self.kind}@2x.png', 1.0),
        )


DEFAULT_ASSET_SPECS: Dict[str, AssetSpec] = {
    'background': AssetSpec(
        kind='background', size=(360, 440), fill=FILL_GRADIENT,
        overlay=OVERLAY_CONTAIN, margin=0.9, speckle=True
    ),
    'icon': AssetSpec(kind='icon', size=(174, 174), fill=FILL_GRADIENT),
    'logo': AssetSpec(kind='logo', size=(320, 100), fill=FILL_TRANSPARENT),
}


def contain_box(src_size, canvas_size, margin: float = 1.0) -> Box:
    """
    Place an image so that it fits entirely within ``margin`` times the
    canvas, preserving its aspect ratio and centered on both axes.

    :return:
        A tuple ``(x, y, width, height)``.
    """
    sw, sh = src_size
    cw, ch = canvas_size
    if sw / sh > cw / ch:
        w = cw * margin
        h = w * sh / sw
    else:
        h = ch * margin
        w = h * sw / sh
    w, h = max(1, round(w)), max(1, round(h))
    return round((cw - w) / 2), round((ch - h) / 2), w, h


def cover_box(src_size, canvas_size) -> Box:
    """
    Scale an image to fill the canvas completely, preserving its aspect
    ratio. The overflow is split evenly on both sides, so ``x`` and ``y``
    are zero or negative.

    :return:
        A tuple ``(x, y, width, height)``.
    """
    sw, sh = src_size
    cw, ch = canvas_size
    scale = max(cw / sw, ch / sh)
    w, h = max(cw, round(sw * scale)), max(ch, round(sh * scale))
    return (cw - w) // 2, (ch - h) // 2, w, h


def cover_crop(src_size, canvas_size):
    """
    The region of the source image that remains visible when it is scaled
    to cover the canvas, as a ``(left, top, right, bottom)`` box in source
    coordinates.
    """
    sw, sh = src_size
    cw, ch = canvas_size
    scale = max(cw / sw, ch / sh)
    crop_w, crop_h = min(sw, cw / scale), min(sh, ch / scale)
    left, top = (sw - crop_w) / 2, (sh - crop_h) / 2
    return left, top, left + crop_w, top + crop_h


def _composites_drawing(spec: AssetSpec) -> bool:
    return spec.overlay is not None and spec.kind not in ('icon', 'logo')


class AssetSynthesizer:
    """
    Render pass images from a color palette and an optional drawing.

    :param specs:
        Rendering policy per asset kind. Defaults to
        :const:`DEFAULT_ASSET_SPECS`.
    :param rng:
        Random source for the speckle texture.
    :param min_drawing_bytes:
        Drawings of at most this many bytes are treated as blank
        canvases and ignored.
    """

    def __init__(self, specs: Dict[str, AssetSpec] = None,
                 rng: random.Random = None, min_drawing_bytes: int = 1024,
                 logo_text: str = 'Wallet Memo',
                 font_path: Optional[str] = None,
                 speckle_density: float = 0.05,
                 speckle_opacity: float = 0.04):
        self.specs = dict(DEFAULT_ASSET_SPECS if specs is None else specs)
        self.rng = rng or random.Random()
        self.min_drawing_bytes = min_drawing_bytes
        self.logo_text = logo_text
        self.font_path = font_path
        self.speckle_density = speckle_density
        self.speckle_opacity = speckle_opacity
        if font_path is not None:
            try:
                ImageFont.truetype(font_path, 12)
            except OSError as e:
                raise ConfigurationError(
                    f"Could not load font from {font_path}"
                ) from e

    @property
    def filenames(self):
        return [
            name for spec in self.specs.values() for name, _ in spec.variants
        ]

    def decode_drawing(self, data: Optional[bytes]) -> Optional[Image.Image]:
        """
        Decode a user drawing.

        :return:
            An RGBA image, or ``None`` if there is no drawing or it is
            too small to contain anything.
        :raises SynthesisError:
            if the data cannot be decoded as an image.
        """
        if not data or len(data) <= self.min_drawing_bytes:
            if data:
                logger.debug(
                    f"Ignoring drawing of {len(data)} bytes; treating it "
                    f"as blank."
                )
            return None
        try:
            img = Image.open(BytesIO(data))
            if img.width * img.height > MAX_DRAWING_PIXELS:
                raise SynthesisError(
                    f"Drawing too large: {img.width}x{img.height}"
                )
            img.load()
        except (OSError, ValueError, SyntaxError,
                Image.DecompressionBombError) as e:
            raise SynthesisError(f"Could not decode drawing: {e}") from e
        return img.convert('RGBA')

    def render(self, kind: str, palette: ColorPalette,
               drawing: Optional[bytes] = None) -> bytes:
        """
        Render one asset at its full (``@2x``) size.

        :return:
            PNG-encoded image bytes.
        """
        spec = self.specs[kind]
        decoded = (
            self.decode_drawing(drawing) if _composites_drawing(spec)
            else None
        )
        img = self._render_canvas(spec, palette, decoded)
        return _encode_png(img)

    def render_all(self, palette: ColorPalette,
                   drawing: Optional[bytes] = None) -> Dict[str, bytes]:
        """
        Render every configured asset kind in all resolution variants.

        :return:
            A mapping of file names to PNG-encoded image bytes.
        """
        decoded = None
        if any(_composites_drawing(s) for s in self.specs.values()):
            decoded = self.decode_drawing(drawing)
        assets = {}
        for spec in self.specs.values():
            canvas = self._render_canvas(spec, palette, decoded)
            for name, scale in spec.variants:
                if scale == 1.0:
                    img = canvas
                else:
                    img = canvas.resize(
                        (max(1, round(canvas.width * scale)),
                         max(1, round(canvas.height * scale))),
                        Image.Resampling.LANCZOS
                    )
                assets[name] = _encode_png(img)
        return assets

    def _render_canvas(self, spec: AssetSpec, palette: ColorPalette,
                       drawing: Optional[Image.Image]) -> Image.Image:
        if spec.kind == 'icon':
            return self._render_icon(spec, palette)
        elif spec.kind == 'logo':
            return self._render_logo(spec, palette)

        canvas = self._fill(spec, palette)
        if spec.speckle:
            canvas = self._apply_speckle(canvas)
        if drawing is not None and spec.overlay is not None:
            self._composite(canvas, drawing, spec)
        return canvas.convert('RGB') if spec.fill != FILL_TRANSPARENT \
            else canvas

    def _fill(self, spec: AssetSpec, palette: ColorPalette,
              icon=False) -> Image.Image:
        w, h = spec.size
        if spec.fill == FILL_TRANSPARENT:
            return Image.new('RGBA', (w, h), (0, 0, 0, 0))
        elif spec.fill == FILL_FLAT:
            return Image.new('RGBA', (w, h), palette.background + (255,))
        return vertical_gradient(palette, (w, h), icon=icon)

    def _apply_speckle(self, canvas: Image.Image) -> Image.Image:
        w, h = canvas.size
        alpha = round(255 * self.speckle_opacity)
        texture = Image.new('RGBA', (w, h), (0, 0, 0, 0))
        draw = ImageDraw.Draw(texture)
        rng = self.rng
        for _ in range(int(w * h * self.speckle_density)):
            shade = 255 if rng.random() > 0.5 else 0
            draw.point(
                (rng.randrange(w), rng.randrange(h)),
                fill=(shade, shade, shade, alpha)
            )
        return Image.alpha_composite(canvas, texture)

    @staticmethod
    def _composite(canvas: Image.Image, drawing: Image.Image,
                   spec: AssetSpec):
        if spec.overlay == OVERLAY_COVER:
            scaled = drawing.resize(
                canvas.size, Image.Resampling.LANCZOS,
                box=cover_crop(drawing.size, canvas.size)
            )
            canvas.alpha_composite(scaled)
            return
        x, y, w, h = contain_box(drawing.size, canvas.size, spec.margin)
        scaled = drawing.resize((w, h), Image.Resampling.LANCZOS)
        layer = Image.new('RGBA', canvas.size, (0, 0, 0, 0))
        layer.paste(scaled, (x, y))
        canvas.alpha_composite(layer)

    def _render_icon(self, spec: AssetSpec, palette: ColorPalette):
        w, h = spec.size
        s = min(w, h) / ICON_GRID
        canvas = Image.new('RGBA', (w, h), (0, 0, 0, 0))
        mask = Image.new('L', (w, h), 0)
        ImageDraw.Draw(mask).rounded_rectangle(
            (4 * s, 4 * s, (ICON_GRID - 4) * s, (ICON_GRID - 4) * s),
            radius=16 * s, fill=255
        )
        canvas.paste(self._fill(spec, palette, icon=True), (0, 0), mask)

        glyph = Image.new('RGBA', (w, h), (0, 0, 0, 0))
        draw = ImageDraw.Draw(glyph)
        width = max(1, round(3 * s))
        for x_end, y in ((65, 30), (55, 44), (45, 58)):
            # same color on one layer, so the round caps don't double up
            start, end = (22 * s, y * s), (x_end * s, y * s)
            draw.line((start, end), fill=(0, 0, 0, 77), width=width)
            for cx, cy in (start, end):
                r = width / 2
                draw.ellipse(
                    (cx - r, cy - r, cx + r, cy + r), fill=(0, 0, 0, 77)
                )
        return Image.alpha_composite(canvas, glyph)

    def _render_logo(self, spec: AssetSpec, palette: ColorPalette):
        w, h = spec.size
        s = h / 50
        canvas = self._fill(spec, palette)
        size = round(24 * s)
        if self.font_path is not None:
            font = ImageFont.truetype(self.font_path, size)
        else:
            font = ImageFont.load_default(size=size)
        draw = ImageDraw.Draw(canvas)
        if isinstance(font, ImageFont.FreeTypeFont):
            draw.text(
                (5 * s, 34 * s), self.logo_text, font=font,
                fill=(0, 0, 0, 128), anchor='ls'
            )
        else:
            draw.text((5 * s, 10 * s), self.logo_text, font=font,
                      fill=(0, 0, 0, 128))
        return canvas


def vertical_gradient(palette: ColorPalette, size, icon=False) -> Image.Image:
    """
    Fill a canvas with the palette's gradient. The first stop sits at the
    bottom row, the last stop at the top row.
    """
    w, h = size
    column = Image.new('RGBA', (1, h))
    span = max(1, h - 1)
    column.putdata([
        palette.color_at((h - 1 - y) / span, icon=icon) + (255,)
        for y in range(h)
    ])
    return column.resize((w, h), Image.Resampling.NEAREST)


def _encode_png(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()
