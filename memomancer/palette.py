from dataclasses import dataclass
from typing import Dict, Mapping, NamedTuple, Tuple

from PIL import ImageColor

from .config_utils import (
    ConfigurableMixin,
    ConfigurationError,
    LabelString,
    check_config_keys,
)
from .errors import ValidationError

__all__ = [
    'ColorLabel', 'GradientStop', 'ColorPalette', 'PaletteTable',
    'DEFAULT_PALETTES', 'rgb_string',
]

RGB = Tuple[int, int, int]


class ColorLabel(LabelString):
    """Label referring to an entry in the palette table."""
    pass


class GradientStop(NamedTuple):
    position: float
    """Offset along the gradient, from 0 (bottom) to 1 (top)."""

    color: RGB


def _parse_color(value) -> RGB:
    if isinstance(value, (list, tuple)) and len(value) == 3:
        return tuple(int(x) for x in value)
    try:
        return ImageColor.getrgb(value)[:3]
    except (ValueError, AttributeError) as e:
        raise ConfigurationError(f"Could not parse color {value!r}") from e


def _parse_stops(stops) -> Tuple[GradientStop, ...]:
    if isinstance(stops, dict):
        stops = [{'pos': k, 'color': v} for k, v in stops.items()]
    result = []
    for stop in stops:
        if isinstance(stop, GradientStop):
            result.append(stop)
            continue
        check_config_keys('GradientStop', ('pos', 'color'), stop)
        pos = float(stop['pos'])
        if not 0 <= pos <= 1:
            raise ConfigurationError(
                f"Gradient stop position {pos} is outside [0, 1]"
            )
        result.append(GradientStop(pos, _parse_color(stop['color'])))
    if len(result) < 2:
        raise ConfigurationError("A gradient needs at least two stops")
    result.sort(key=lambda s: s.position)
    return tuple(result)


def rgb_string(color: RGB) -> str:
    """Format a color the way pass descriptors expect it."""
    return 'rgb(%d, %d, %d)' % color


@dataclass(frozen=True)
class ColorPalette(ConfigurableMixin):
    """
    Colors for one selectable note color.
    Gradient stops are ordered from the bottom of the canvas to the top.
    """

    stops: Tuple[GradientStop, ...]
    icon_stops: Tuple[GradientStop, ...]
    background: RGB
    foreground: RGB = (34, 34, 34)
    label: RGB = (85, 85, 85)

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        for k in ('stops', 'icon_stops'):
            if k in config_dict:
                config_dict[k] = _parse_stops(config_dict[k])
        for k in ('background', 'foreground', 'label'):
            if k in config_dict:
                config_dict[k] = _parse_color(config_dict[k])

    def color_at(self, position: float, icon=False) -> RGB:
        """Interpolate the gradient linearly at a position in [0, 1]."""
        stops = self.icon_stops if icon else self.stops
        if position <= stops[0].position:
            return stops[0].color
        for lo, hi in zip(stops, stops[1:]):
            if position <= hi.position:
                span = hi.position - lo.position
                t = (position - lo.position) / span if span else 1.0
                return tuple(
                    round(a + (b - a) * t) for a, b in zip(lo.color, hi.color)
                )
        return stops[-1].color


def _palette(stops, icon_stops, background):
    return ColorPalette(
        stops=_parse_stops(
            [{'pos': p, 'color': c} for p, c in stops]
        ),
        icon_stops=_parse_stops(
            [{'pos': p, 'color': c} for p, c in icon_stops]
        ),
        background=_parse_color(background),
    )


DEFAULT_PALETTES: Dict[str, ColorPalette] = {
    'blue': _palette(
        [(0, '#7AC0DC'), (0.3, '#9DD5EE'), (0.6, '#A8DCF0'),
         (0.85, '#B8E3F3'), (1, '#D0F0FA')],
        [(0, '#9DD5EE'), (1, '#C4E9F5')],
        'rgb(157, 213, 238)',
    ),
    'yellow': _palette(
        [(0, '#C4B43A'), (0.3, '#D4C44A'), (0.6, '#E2D060'),
         (0.85, '#EFDE7C'), (1, '#FAF0A0')],
        [(0, '#D4C44A'), (1, '#F5E58A')],
        'rgb(226, 208, 96)',
    ),
    'pink': _palette(
        [(0, '#C8909A'), (0.3, '#D9A8B2'), (0.6, '#E4B8C0'),
         (0.85, '#EEC8D0'), (1, '#F8E0E8')],
        [(0, '#D9A8B2'), (1, '#F3D0D8')],
        'rgb(228, 184, 192)',
    ),
}


class PaletteTable:
    """Read-only lookup table of color palettes, keyed by color label."""

    def __init__(self, palettes: Mapping[str, ColorPalette] = None):
        palettes = DEFAULT_PALETTES if palettes is None else palettes
        if not palettes:
            raise ConfigurationError("The palette table must not be empty")
        self._dict = {ColorLabel(str(k)): v for k, v in palettes.items()}

    @classmethod
    def from_config(cls, config) -> 'PaletteTable':
        """
        Build a palette table from configuration. Entries override (or add
        to) the default palettes.
        """
        palettes = dict(DEFAULT_PALETTES)
        for label, cfg in config.items():
            palettes[label] = ColorPalette.from_config(cfg)
        return cls(palettes)

    def __getitem__(self, label) -> ColorPalette:
        try:
            return self._dict[label]
        except KeyError as e:
            raise ValidationError(
                f"Unknown color '{label}'; expected one of "
                f"{', '.join(self.labels)}."
            ) from e

    def __contains__(self, label):
        return label in self._dict

    @property
    def labels(self):
        return [str(k) for k in self._dict.keys()]
