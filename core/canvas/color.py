"""
Color helpers and named palettes for animation producers.
"""

from dataclasses import dataclass
from typing import Dict, Sequence, Tuple, Union

import numpy as np

RGB = Tuple[int, int, int]

BLACK: RGB = (0, 0, 0)
WHITE: RGB = (255, 255, 255)
RED: RGB = (255, 0, 0)


def clamp_byte(value: float) -> int:
    return max(0, min(255, int(value)))


def parse_color(value: Union[str, Sequence[int], int]) -> RGB:
    """
    Parse '#RRGGBB', 'RRGGBB', an [r, g, b] sequence or a 0xRRGGBB int.

    Raises:
        ValueError: If the value cannot be interpreted as a color
    """
    if isinstance(value, str):
        text = value.strip().lstrip("#")
        if len(text) != 6:
            raise ValueError(f"Invalid color string: {value!r}")
        try:
            packed = int(text, 16)
        except ValueError:
            raise ValueError(f"Invalid color string: {value!r}")
        return (packed >> 16) & 0xFF, (packed >> 8) & 0xFF, packed & 0xFF
    if isinstance(value, int):
        return (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF
    if len(value) < 3:
        raise ValueError(f"Color needs 3 components, got {value!r}")
    return clamp_byte(value[0]), clamp_byte(value[1]), clamp_byte(value[2])


def to_hex(color: Sequence[int]) -> str:
    return "#{:02X}{:02X}{:02X}".format(*(clamp_byte(c) for c in color[:3]))


def hsv_to_rgb(h: float, s: float, v: float) -> Tuple[float, float, float]:
    """Convert HSV (0-1) to RGB (0-1)"""
    if s == 0:
        return v, v, v

    h = (h % 1.0) * 6
    i = int(h)
    f = h - i
    p = v * (1 - s)
    q = v * (1 - s * f)
    t = v * (1 - s * (1 - f))

    if i == 0:
        return v, t, p
    elif i == 1:
        return q, v, p
    elif i == 2:
        return p, v, t
    elif i == 3:
        return p, q, v
    elif i == 4:
        return t, p, v
    else:
        return v, p, q


def hue_array_to_rgb(hue: np.ndarray) -> np.ndarray:
    """Vectorised full-saturation hue (0-1) -> (N, 3) RGB bytes"""
    h = (hue % 1.0) * 6.0
    r = np.clip(np.abs(h - 3.0) - 1.0, 0.0, 1.0)
    g = np.clip(2.0 - np.abs(h - 2.0), 0.0, 1.0)
    b = np.clip(2.0 - np.abs(h - 4.0), 0.0, 1.0)
    return np.stack([r, g, b], axis=-1) * 255.0


def lerp_color(a: Sequence[int], b: Sequence[int], t: float) -> RGB:
    t = max(0.0, min(1.0, t))
    return (
        clamp_byte(a[0] + (b[0] - a[0]) * t),
        clamp_byte(a[1] + (b[1] - a[1]) * t),
        clamp_byte(a[2] + (b[2] - a[2]) * t),
    )


def scale_color(color: Sequence[int], factor: float) -> RGB:
    """Scale all channels by factor (0.0-1.0)"""
    factor = max(0.0, min(1.0, factor))
    return clamp_byte(color[0] * factor), clamp_byte(color[1] * factor), clamp_byte(color[2] * factor)


# ============================================================
# Palettes
# ============================================================

@dataclass(frozen=True)
class Palette:
    """Named list of colors sampled by index or normalized position"""
    name: str
    colors: Tuple[RGB, ...]

    def get_color(self, index: int) -> RGB:
        """Color at index, wrapping in both directions"""
        if not self.colors:
            return BLACK
        return self.colors[index % len(self.colors)]

    def color_at(self, position: float) -> RGB:
        """Color at normalized position (0.0-1.0)"""
        if not self.colors:
            return BLACK
        position = max(0.0, min(1.0, position))
        index = min(int(position * len(self.colors)), len(self.colors) - 1)
        return self.colors[index]

    def interpolate(self, positions: np.ndarray) -> np.ndarray:
        """Vectorised smooth sampling; positions wrap around 1.0"""
        table = np.asarray(self.colors or (BLACK,), dtype=np.float64)
        n = len(table)
        scaled = (positions % 1.0) * n
        lo = np.floor(scaled).astype(int) % n
        hi = (lo + 1) % n
        t = (scaled - np.floor(scaled))[:, None]
        return table[lo] * (1.0 - t) + table[hi] * t

    def to_dict(self) -> Dict:
        return {"name": self.name, "colors": [to_hex(c) for c in self.colors]}


PALETTES: Dict[str, Palette] = {
    "Rainbow": Palette("Rainbow", (
        (255, 0, 0), (255, 127, 0), (255, 255, 0), (127, 255, 0),
        (0, 255, 0), (0, 255, 127), (0, 255, 255), (0, 127, 255),
        (0, 0, 255), (127, 0, 255), (255, 0, 255), (255, 0, 127),
    )),
    "Party": Palette("Party", (
        (255, 0, 0), (255, 0, 255), (0, 0, 255), (0, 255, 255),
        (0, 255, 0), (255, 255, 0), (255, 127, 0), (255, 0, 0),
    )),
    "Ocean": Palette("Ocean", (
        (0, 0, 128), (0, 0, 255), (0, 127, 255), (0, 255, 255),
        (64, 224, 208), (0, 255, 255), (0, 127, 255), (0, 0, 255),
    )),
    "Fire": Palette("Fire", (
        (0, 0, 0), (128, 0, 0), (255, 0, 0), (255, 96, 0),
        (255, 160, 0), (255, 255, 0), (255, 255, 128),
    )),
    "Forest": Palette("Forest", (
        (0, 64, 0), (0, 100, 0), (34, 139, 34), (85, 107, 47),
        (107, 142, 35), (50, 205, 50), (0, 128, 0),
    )),
}

DEFAULT_PALETTE_NAME = "Rainbow"


def get_palette(name: str) -> Palette:
    """
    Raises:
        KeyError: If no palette has that name
    """
    try:
        return PALETTES[name]
    except KeyError:
        raise KeyError(f"Unknown palette: {name}")
