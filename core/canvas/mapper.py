"""
Device Pixel Mapper - Samples the composited canvas for each device

Each device is a rotated rectangle in world space. Its pixels are laid
out either as a linear strip along the horizontal centre line or as a
row-major matrix (optionally serpentine) spanning the full footprint.
Every pixel's world coordinate is sampled from the frame buffer and
packed as R, G, B bytes in physical pixel-index order:

    byte[i*3 + 0] = R of pixel i
    byte[i*3 + 1] = G of pixel i
    byte[i*3 + 2] = B of pixel i

There is no reordering downstream; this order is what goes on the wire.

TOPOLOGY:
    segment_width > 0      -> matrix with that many columns
    segment_width == 0     -> strip
    segment_width is None  -> infer_is_matrix() heuristic (fallback only)

Sample points are rounded half-up and clamped into the buffer, so a
device outside all drawn content reads the buffer edge instead of failing.
"""

import logging
import math
from typing import Dict, Optional, Tuple

import numpy as np

from .framebuffer import FrameBuffer
from .types import Bounds, Device, Topology, TopologyKind

logger = logging.getLogger(__name__)

# ============================================================
# Topology inference thresholds (fallback when segment_width is unset)
# ============================================================

# A footprint this elongated or flatter is treated as a strip
MATRIX_MAX_ASPECT_LARGE = 6.0     # for pixel_count > MATRIX_MIN_PIXELS_LARGE
MATRIX_MIN_PIXELS_LARGE = 30
MATRIX_MAX_ASPECT_SMALL = 2.0     # for pixel_count > MATRIX_MIN_PIXELS_SMALL
MATRIX_MIN_PIXELS_SMALL = 9
# Aspect ratio assumed for footprints with (almost) no height
FLAT_ASPECT_RATIO = 100.0
# Tolerance for accepting a square root as an integer
SQRT_TOLERANCE = 0.01


def aspect_ratio(width: float, height: float) -> float:
    return width / height if height > 1.0 else FLAT_ASPECT_RATIO


def infer_is_matrix(pixel_count: int, width: float, height: float) -> bool:
    """
    Guess whether an unconfigured device is a matrix.

    More than 30 pixels in a footprint with aspect < 6, or more than 9
    pixels with aspect < 2, is taken as a matrix; anything else as a strip.
    """
    aspect = aspect_ratio(width, height)
    return ((pixel_count > MATRIX_MIN_PIXELS_LARGE and aspect < MATRIX_MAX_ASPECT_LARGE) or
            (pixel_count > MATRIX_MIN_PIXELS_SMALL and aspect < MATRIX_MAX_ASPECT_SMALL))


def infer_columns(pixel_count: int, aspect: float) -> int:
    """Exact integer square root if there is one, else round(sqrt(count * aspect)); minimum 1"""
    if pixel_count <= 0:
        return 1
    root = math.sqrt(pixel_count)
    if abs(root - round(root)) < SQRT_TOLERANCE:
        return max(1, int(round(root)))
    return max(1, int(round(math.sqrt(pixel_count * aspect))))


def resolve_topology(device: Device) -> Topology:
    """Strip or matrix layout for a device, preferring explicit configuration"""
    count = max(0, device.pixel_count)
    segment_width = device.segment_width

    if segment_width == 0:
        return Topology(TopologyKind.STRIP, columns=max(1, count), rows=1)

    if segment_width is not None and segment_width > 0:
        columns = segment_width
        inferred = False
    elif device.is_2d and device.matrix_width > 0:
        columns = device.matrix_width
        inferred = False
    elif infer_is_matrix(count, device.width, device.height):
        columns = infer_columns(count, aspect_ratio(device.width, device.height))
        inferred = True
    else:
        return Topology(TopologyKind.STRIP, columns=max(1, count), rows=1, inferred=True)

    rows = max(1, (count + columns - 1) // columns)
    return Topology(TopologyKind.MATRIX, columns=columns, rows=rows,
                    serpentine=device.serpentine, inferred=inferred)


def grid_cell(index: int, columns: int, serpentine: bool = False) -> Tuple[int, int]:
    """(col, row) of pixel index in a row-major matrix"""
    columns = max(1, columns)
    row = index // columns
    col = index % columns
    if serpentine and row % 2 == 1:
        col = columns - 1 - col
    return col, row


def _grid_cells(count: int, topology: Topology) -> Tuple[np.ndarray, np.ndarray]:
    indices = np.arange(count)
    columns = max(1, topology.columns)
    rows = indices // columns
    cols = indices % columns
    if topology.serpentine:
        odd = rows % 2 == 1
        cols = np.where(odd, columns - 1 - cols, cols)
    return cols, rows


def local_offsets(device: Device, topology: Optional[Topology] = None) -> np.ndarray:
    """
    Unrotated offsets of every pixel from the device centre.

    Returns:
        (pixel_count, 2) float array
    """
    count = max(0, device.pixel_count)
    if count == 0:
        return np.zeros((0, 2))
    topology = topology or resolve_topology(device)

    if topology.kind == TopologyKind.MATRIX:
        cols, rows = _grid_cells(count, topology)
        step_x = device.width / (topology.columns - 1) if topology.columns > 1 else 0.0
        step_y = device.height / (topology.rows - 1) if topology.rows > 1 else 0.0
        lx = -device.width / 2.0 + cols * step_x
        ly = -device.height / 2.0 + rows * step_y
        return np.stack([lx.astype(np.float64), ly.astype(np.float64)], axis=1)

    # a single-pixel strip sits on the device centre
    if count == 1:
        return np.zeros((1, 2))
    step = device.width / (count - 1)
    lx = -device.width / 2.0 + np.arange(count) * step
    return np.stack([lx, np.zeros(count)], axis=1)


def pixel_world_positions(device: Device, topology: Optional[Topology] = None) -> np.ndarray:
    """World coordinates of every pixel, (pixel_count, 2)"""
    offsets = local_offsets(device, topology)
    rad = math.radians(device.rotation)
    cos_a = math.cos(rad)
    sin_a = math.sin(rad)
    lx = offsets[:, 0]
    ly = offsets[:, 1]
    wx = lx * cos_a - ly * sin_a + device.center_x
    wy = lx * sin_a + ly * cos_a + device.center_y
    return np.stack([wx, wy], axis=1)


def sample_points(device: Device, bounds: Bounds, width: int, height: int,
                  topology: Optional[Topology] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Buffer indices sampled for each pixel: world - origin, rounded half-up, clamped"""
    positions = pixel_world_positions(device, topology)
    sx = np.floor(positions[:, 0] - bounds.origin_x + 0.5).astype(np.int64)
    sy = np.floor(positions[:, 1] - bounds.origin_y + 0.5).astype(np.int64)
    np.clip(sx, 0, max(0, width - 1), out=sx)
    np.clip(sy, 0, max(0, height - 1), out=sy)
    return sx, sy


class DevicePixelMapper:
    """
    Converts the composited buffer into per-device RGB byte buffers.

    One bytearray is kept per device id and reused while the pixel count
    is unchanged.
    """

    def __init__(self):
        self._buffers: Dict[str, bytearray] = {}

    def buffer_for(self, device: Device) -> bytearray:
        size = max(0, device.pixel_count) * 3
        existing = self._buffers.get(device.id)
        if existing is not None and len(existing) == size:
            return existing
        data = bytearray(size)
        self._buffers[device.id] = data
        return data

    def forget(self, device_id: str) -> None:
        self._buffers.pop(device_id, None)

    def retain(self, device_ids) -> None:
        """Drop cached buffers of devices no longer registered"""
        keep = set(device_ids)
        for device_id in list(self._buffers):
            if device_id not in keep:
                del self._buffers[device_id]

    def map_device(self, device: Device, buffer: FrameBuffer, bounds: Bounds) -> bytearray:
        data = self.buffer_for(device)
        if not data:
            return data

        sx, sy = sample_points(device, bounds, buffer.width, buffer.height)
        rgb = buffer.pixels[sy, sx, :3]
        data[:] = np.ascontiguousarray(rgb, dtype=np.uint8).tobytes()
        return data
