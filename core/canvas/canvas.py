"""
Canvas - Drawing context over the frame buffer

Provides the explicit transform + clip stack the compositor wraps around
each region, and the raster primitives animation producers draw with.

Coordinates passed to primitives are in the current local space. The
current matrix maps local space to buffer pixel space; every clip is a
rectangle remembered in the local space that was current when it was
set. A buffer pixel (i, j) is treated as the point (i, j), and shape
edges are inclusive, so a shape that exactly covers a device footprint
also covers the device's edge sample points.

Rasterisation is vectorised with numpy: the candidate pixel window is
mapped back into local space in one pass and masked by the shape and
by every active clip.

Usage:
    canvas = Canvas(frame_buffer)
    canvas.translate(-origin_x, -origin_y)
    saved = canvas.save()
    try:
        canvas.rotate(30, cx, cy)
        canvas.clip_rect(left, top, right, bottom)
        canvas.fill_circle(10, 10, 5, (255, 0, 0))
    finally:
        canvas.restore_to_count(saved)
"""

import math
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .framebuffer import FrameBuffer
from .types import Rect

# (a, b, c, d, e, f): x' = a*x + b*y + c, y' = d*x + e*y + f
Matrix = Tuple[float, float, float, float, float, float]

IDENTITY: Matrix = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)

# Inclusive-edge tolerance in local units
CLIP_EPSILON = 1e-4

ColorLike = Sequence[int]


def _concat(m: Matrix, n: Matrix) -> Matrix:
    """m then n applied in local space (m * n)"""
    a, b, c, d, e, f = m
    na, nb, nc, nd, ne, nf = n
    return (
        a * na + b * nd,
        a * nb + b * ne,
        a * nc + b * nf + c,
        d * na + e * nd,
        d * nb + e * ne,
        d * nc + e * nf + f,
    )


def _invert(m: Matrix) -> Optional[Matrix]:
    a, b, c, d, e, f = m
    det = a * e - b * d
    if abs(det) < 1e-12:
        return None
    ia = e / det
    ib = -b / det
    id_ = -d / det
    ie = a / det
    return (ia, ib, -(ia * c + ib * f), id_, ie, -(id_ * c + ie * f))


def _apply(m: Matrix, x, y):
    a, b, c, d, e, f = m
    return a * x + b * y + c, d * x + e * y + f


class CanvasStateError(RuntimeError):
    """restore() called without a matching save()"""
    pass


class _Clip:
    __slots__ = ("forward", "inverse", "rect")

    def __init__(self, forward: Matrix, inverse: Matrix, rect: Rect):
        self.forward = forward
        self.inverse = inverse
        self.rect = rect


class Canvas:
    """Drawing context with an explicit save/restore stack"""

    def __init__(self, buffer: FrameBuffer):
        self._buffer = buffer
        self._matrix: Matrix = IDENTITY
        self._clips: Tuple[_Clip, ...] = ()
        self._empty_clip = False
        self._stack: List[Tuple[Matrix, Tuple[_Clip, ...], bool]] = []

    # ─────────────────────────────────────────────────────────
    # State stack
    # ─────────────────────────────────────────────────────────

    @property
    def save_count(self) -> int:
        return len(self._stack)

    @property
    def matrix(self) -> Matrix:
        return self._matrix

    @property
    def width(self) -> int:
        return self._buffer.width

    @property
    def height(self) -> int:
        return self._buffer.height

    def save(self) -> int:
        """
        Push the current transform and clip.

        Returns:
            The save count before pushing; pass it to restore_to_count()
        """
        count = len(self._stack)
        self._stack.append((self._matrix, self._clips, self._empty_clip))
        return count

    def restore(self) -> None:
        if not self._stack:
            raise CanvasStateError("restore() without matching save()")
        self._matrix, self._clips, self._empty_clip = self._stack.pop()

    def restore_to_count(self, count: int) -> None:
        """Pop saved states until save_count == count"""
        count = max(0, count)
        while len(self._stack) > count:
            self._matrix, self._clips, self._empty_clip = self._stack.pop()

    # ─────────────────────────────────────────────────────────
    # Transforms
    # ─────────────────────────────────────────────────────────

    def translate(self, dx: float, dy: float) -> None:
        self._matrix = _concat(self._matrix, (1.0, 0.0, float(dx), 0.0, 1.0, float(dy)))

    def rotate(self, degrees: float, px: float = 0.0, py: float = 0.0) -> None:
        """Rotate clockwise (y-down) by degrees about (px, py)"""
        if not degrees:
            return
        rad = math.radians(degrees)
        cos_a = math.cos(rad)
        sin_a = math.sin(rad)
        self.translate(px, py)
        self._matrix = _concat(self._matrix, (cos_a, -sin_a, 0.0, sin_a, cos_a, 0.0))
        self.translate(-px, -py)

    def scale(self, sx: float, sy: Optional[float] = None, px: float = 0.0, py: float = 0.0) -> None:
        sy = sx if sy is None else sy
        self.translate(px, py)
        self._matrix = _concat(self._matrix, (float(sx), 0.0, 0.0, 0.0, float(sy), 0.0))
        self.translate(-px, -py)

    def map_point(self, x: float, y: float) -> Tuple[float, float]:
        """Local point -> buffer pixel coordinates"""
        return _apply(self._matrix, x, y)

    # ─────────────────────────────────────────────────────────
    # Clipping
    # ─────────────────────────────────────────────────────────

    def clip_rect(self, left: float, top: float, right: float, bottom: float) -> None:
        """Intersect the clip with a rectangle in current local space"""
        inverse = _invert(self._matrix)
        if inverse is None or right < left or bottom < top:
            self._empty_clip = True
            return
        self._clips = self._clips + (_Clip(self._matrix, inverse, Rect(left, top, right, bottom)),)

    # ─────────────────────────────────────────────────────────
    # Rasterisation
    # ─────────────────────────────────────────────────────────

    def _pixel_window(self, forward: Matrix, rect: Rect) -> Optional[Tuple[int, int, int, int]]:
        """Buffer pixel window covering rect mapped through forward"""
        xs, ys = _apply(
            forward,
            np.array([rect.left, rect.right, rect.right, rect.left]),
            np.array([rect.top, rect.top, rect.bottom, rect.bottom]),
        )
        x0 = max(0, int(math.floor(float(xs.min()) - CLIP_EPSILON)))
        y0 = max(0, int(math.floor(float(ys.min()) - CLIP_EPSILON)))
        x1 = min(self.width - 1, int(math.ceil(float(xs.max()) + CLIP_EPSILON)))
        y1 = min(self.height - 1, int(math.ceil(float(ys.max()) + CLIP_EPSILON)))
        if x0 > x1 or y0 > y1:
            return None
        return x0, y0, x1, y1

    def _raster(self, local_rect: Optional[Rect]):
        """
        Candidate pixels for a shape inside local_rect (None = whole clip).

        Returns:
            (px, py, lx, ly) flat arrays of buffer indices and their local
            coordinates that pass every clip, or None when nothing is visible
        """
        if self._empty_clip:
            return None
        inverse = _invert(self._matrix)
        if inverse is None:
            return None

        window = (0, 0, self.width - 1, self.height - 1)
        if local_rect is not None:
            window = self._intersect(window, self._pixel_window(self._matrix, local_rect))
        for clip in self._clips:
            window = self._intersect(window, self._pixel_window(clip.forward, clip.rect))
        if window is None:
            return None

        x0, y0, x1, y1 = window
        grid_y, grid_x = np.mgrid[y0:y1 + 1, x0:x1 + 1]
        px = grid_x.ravel()
        py = grid_y.ravel()
        fx = px.astype(np.float64)
        fy = py.astype(np.float64)

        mask = np.ones(px.shape, dtype=bool)
        for clip in self._clips:
            cx, cy = _apply(clip.inverse, fx, fy)
            r = clip.rect
            mask &= ((cx >= r.left - CLIP_EPSILON) & (cx <= r.right + CLIP_EPSILON) &
                     (cy >= r.top - CLIP_EPSILON) & (cy <= r.bottom + CLIP_EPSILON))
        if not mask.any():
            return None

        px = px[mask]
        py = py[mask]
        lx, ly = _apply(inverse, fx[mask], fy[mask])
        return px, py, lx, ly

    @staticmethod
    def _intersect(a, b):
        if a is None or b is None:
            return None
        x0 = max(a[0], b[0])
        y0 = max(a[1], b[1])
        x1 = min(a[2], b[2])
        y1 = min(a[3], b[3])
        if x0 > x1 or y0 > y1:
            return None
        return x0, y0, x1, y1

    def _blend(self, px: np.ndarray, py: np.ndarray, color) -> None:
        if px.size == 0:
            return
        pixels = self._buffer.pixels
        if isinstance(color, np.ndarray) and color.ndim == 2:
            rgb = np.clip(color[:, :3], 0, 255)
            alpha = color[:, 3:4] / 255.0 if color.shape[1] > 3 else None
        else:
            rgb = np.clip(np.asarray(color[:3], dtype=np.float64), 0, 255)
            alpha = color[3] / 255.0 if len(color) > 3 else None

        if alpha is None or np.all(np.asarray(alpha) >= 1.0):
            pixels[py, px, :3] = rgb
        else:
            dst = pixels[py, px, :3].astype(np.float64)
            pixels[py, px, :3] = np.clip(rgb * alpha + dst * (1.0 - alpha), 0, 255)
        pixels[py, px, 3] = 255

    # ─────────────────────────────────────────────────────────
    # Primitives
    # ─────────────────────────────────────────────────────────

    def fill(self, color: ColorLike) -> None:
        """Fill the whole current clip"""
        hit = self._raster(None)
        if hit is not None:
            self._blend(hit[0], hit[1], color)

    def set_pixel(self, x: float, y: float, color: ColorLike) -> None:
        """Set the buffer pixel nearest to local point (x, y), if visible"""
        bx, by = self.map_point(x, y)
        px = int(math.floor(bx + 0.5))
        py = int(math.floor(by + 0.5))
        if not (0 <= px < self.width and 0 <= py < self.height) or self._empty_clip:
            return
        for clip in self._clips:
            cx, cy = _apply(clip.inverse, float(px), float(py))
            if not clip.rect.contains(cx, cy, CLIP_EPSILON):
                return
        self._blend(np.array([px]), np.array([py]), color)

    def fill_rect(self, left: float, top: float, right: float, bottom: float, color: ColorLike) -> None:
        if right < left or bottom < top:
            return
        hit = self._raster(Rect(left, top, right, bottom))
        if hit is None:
            return
        px, py, lx, ly = hit
        inside = ((lx >= left - CLIP_EPSILON) & (lx <= right + CLIP_EPSILON) &
                  (ly >= top - CLIP_EPSILON) & (ly <= bottom + CLIP_EPSILON))
        self._blend(px[inside], py[inside], color)

    def fill_circle(self, cx: float, cy: float, radius: float, color: ColorLike) -> None:
        if radius <= 0:
            return
        hit = self._raster(Rect(cx - radius, cy - radius, cx + radius, cy + radius))
        if hit is None:
            return
        px, py, lx, ly = hit
        inside = (lx - cx) ** 2 + (ly - cy) ** 2 <= radius * radius + CLIP_EPSILON
        self._blend(px[inside], py[inside], color)

    def draw_line(self, x0: float, y0: float, x1: float, y1: float,
                  color: ColorLike, width: float = 1.0) -> None:
        """Segment with round caps, width in local units"""
        half = max(width, 0.0) / 2.0
        bbox = Rect(min(x0, x1) - half, min(y0, y1) - half, max(x0, x1) + half, max(y0, y1) + half)
        hit = self._raster(bbox)
        if hit is None:
            return
        px, py, lx, ly = hit
        dx = x1 - x0
        dy = y1 - y0
        length_sq = dx * dx + dy * dy
        if length_sq == 0:
            t = np.zeros(lx.shape)
        else:
            t = np.clip(((lx - x0) * dx + (ly - y0) * dy) / length_sq, 0.0, 1.0)
        dist_sq = (lx - (x0 + t * dx)) ** 2 + (ly - (y0 + t * dy)) ** 2
        inside = dist_sq <= max(half * half, 0.25) + CLIP_EPSILON
        self._blend(px[inside], py[inside], color)

    def shade(self, fn: Callable[[np.ndarray, np.ndarray], np.ndarray],
              left: float = 0.0, top: float = 0.0,
              right: Optional[float] = None, bottom: Optional[float] = None) -> None:
        """
        Per-pixel colour from a vectorised function of local coordinates.

        fn(lx, ly) receives flat float arrays and returns an (N, 3) or
        (N, 4) array of colours. Without right/bottom the whole clip is
        shaded.
        """
        if right is None or bottom is None:
            hit = self._raster(None)
        else:
            hit = self._raster(Rect(left, top, right, bottom))
        if hit is None:
            return
        px, py, lx, ly = hit
        if right is not None and bottom is not None:
            inside = ((lx >= left - CLIP_EPSILON) & (lx <= right + CLIP_EPSILON) &
                      (ly >= top - CLIP_EPSILON) & (ly <= bottom + CLIP_EPSILON))
            px, py, lx, ly = px[inside], py[inside], lx[inside], ly[inside]
        if px.size == 0:
            return
        colors = np.asarray(fn(lx, ly), dtype=np.float64)
        if colors.ndim == 1:
            colors = np.broadcast_to(colors, (px.size, colors.shape[0]))
        self._blend(px, py, colors)
