"""
Frame Buffer - RGBA pixel grid backing the shared canvas

Pixel (i, j) of the buffer represents world point
(origin_x + i, origin_y + j). The buffer is owned by the engine and is
only touched while the engine lock is held.
"""

import logging
from typing import Tuple

import numpy as np

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]

BLACK: Color = (0, 0, 0)

# Largest canvas the engine will allocate (256 MB of RGBA)
MAX_BUFFER_PIXELS = 64 * 1024 * 1024


class FrameBuffer:
    """
    2D RGBA pixel buffer sized to the render bounds.

    Reallocated (never resized in place) when the requested size
    changes; non-positive sizes clamp to 1x1. Sizes above
    MAX_BUFFER_PIXELS raise ValueError and keep the current buffer.
    """

    CHANNELS = 4

    def __init__(self, width: int = 1, height: int = 1):
        self._pixels = self._allocate(max(1, int(width)), max(1, int(height)))
        self._generation = 0

    @classmethod
    def _allocate(cls, width: int, height: int) -> np.ndarray:
        if width * height > MAX_BUFFER_PIXELS:
            raise ValueError(f"Frame buffer {width}x{height} exceeds {MAX_BUFFER_PIXELS} pixels")
        pixels = np.zeros((height, width, cls.CHANNELS), dtype=np.uint8)
        pixels[:, :, 3] = 255
        return pixels

    # ─────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def pixels(self) -> np.ndarray:
        """Live pixel array (height x width x RGBA); engine-internal"""
        return self._pixels

    @property
    def generation(self) -> int:
        """Number of reallocations so far"""
        return self._generation

    # ─────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────

    def ensure_size(self, width: int, height: int) -> bool:
        """
        Reallocate the backing buffer if the requested size differs.

        Returns:
            True if a new buffer was allocated
        """
        width = max(1, int(width))
        height = max(1, int(height))
        if (width, height) == self.size:
            return False

        logger.debug(f"Frame buffer realloc {self.width}x{self.height} -> {width}x{height}")
        self._pixels = self._allocate(width, height)
        self._generation += 1
        return True

    def clear(self, color: Color = BLACK) -> None:
        self._pixels[:, :, 0] = color[0]
        self._pixels[:, :, 1] = color[1]
        self._pixels[:, :, 2] = color[2]
        self._pixels[:, :, 3] = 255

    def get_pixel(self, x: int, y: int) -> Color:
        """RGB at (x, y); black for out-of-range reads"""
        if not (0 <= x < self.width and 0 <= y < self.height):
            return BLACK
        r, g, b = self._pixels[y, x, :3]
        return int(r), int(g), int(b)

    def snapshot(self) -> np.ndarray:
        """Read-only copy of the current pixels"""
        copy = self._pixels.copy()
        copy.setflags(write=False)
        return copy
