"""
Canvas Geometry - Bounds calculation and rotation math

All rotations are in degrees about the shape's own centre, using the
y-down screen convention (positive angles turn clockwise on screen):

    x' = dx * cos(a) - dy * sin(a) + cx
    y' = dx * sin(a) + dy * cos(a) + cy

The same convention is used by the compositor, the device mapper and the
input router, so a region and a device with equal geometry line up
exactly.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .types import Bounds, Device, Region

# Padding added on every side of the render bounds (world units)
DEFAULT_PADDING = 100.0

Point = Tuple[float, float]


def rotate_point(dx: float, dy: float, degrees: float, cx: float = 0.0, cy: float = 0.0) -> Point:
    """Rotate the offset (dx, dy) by degrees and translate by (cx, cy)"""
    rad = math.radians(degrees)
    cos_a = math.cos(rad)
    sin_a = math.sin(rad)
    return (dx * cos_a - dy * sin_a + cx, dx * sin_a + dy * cos_a + cy)


def rotated_corners(cx: float, cy: float, width: float, height: float, degrees: float) -> List[Point]:
    """Corners of a width x height rectangle centred on (cx, cy) rotated by degrees"""
    w2 = width / 2.0
    h2 = height / 2.0
    return [
        rotate_point(dx, dy, degrees, cx, cy)
        for dx, dy in ((-w2, -h2), (w2, -h2), (w2, h2), (-w2, h2))
    ]


def device_corners(device: Device) -> List[Point]:
    return rotated_corners(device.center_x, device.center_y, device.width, device.height, device.rotation)


def region_corners(region: Region) -> List[Point]:
    rect = region.rect
    return rotated_corners(rect.center_x, rect.center_y, rect.width, rect.height, region.rotation)


def recompute_bounds(
    base_width: float,
    base_height: float,
    devices: Iterable[Device],
    regions: Iterable[Region],
    padding: float = DEFAULT_PADDING,
) -> Bounds:
    """
    Minimal padded bounding box of the base canvas, every device and
    every region footprint.

    Pure function of its inputs; calling it twice with the same input
    yields equal bounds.
    """
    min_x = 0.0
    min_y = 0.0
    max_x = float(base_width)
    max_y = float(base_height)

    corners: List[Point] = []
    for device in devices:
        corners.extend(device_corners(device))
    for region in regions:
        corners.extend(region_corners(region))

    for x, y in corners:
        if x < min_x:
            min_x = x
        if y < min_y:
            min_y = y
        if x > max_x:
            max_x = x
        if y > max_y:
            max_y = y

    return Bounds(min_x - padding, min_y - padding, max_x + padding, max_y + padding)


def world_to_region_unrotated(region: Region, x: float, y: float) -> Point:
    """Undo the region's rotation about its centre (result is still world space)"""
    rect = region.rect
    cx = rect.center_x
    cy = rect.center_y
    return rotate_point(x - cx, y - cy, -region.rotation, cx, cy)


def world_to_region_local(region: Region, x: float, y: float) -> Optional[Point]:
    """
    Convert a world point into the region's local space.

    Returns None when the point lies outside the region's rectangle;
    otherwise (0, 0) is the region's top-left corner.
    """
    rx, ry = world_to_region_unrotated(region, x, y)
    if not region.rect.contains(rx, ry):
        return None
    return (rx - region.rect.left, ry - region.rect.top)


def region_local_to_world(region: Region, lx: float, ly: float) -> Point:
    rect = region.rect
    cx = rect.center_x
    cy = rect.center_y
    return rotate_point(rect.left + lx - cx, rect.top + ly - cy, region.rotation, cx, cy)


# ============================================================
# Viewport - screen space <-> world space
# ============================================================

@dataclass
class Viewport:
    """
    Camera onto the world used by a screen-space consumer.

    The installation is fitted into the screen (base scale), then
    multiplied by zoom; (center_x, center_y) is the world point shown at
    the centre of the screen.
    """
    screen_width: float
    screen_height: float
    world_width: float = 1000.0
    world_height: float = 1000.0
    center_x: Optional[float] = None
    center_y: Optional[float] = None
    zoom: float = 1.0

    @property
    def scale(self) -> float:
        if self.world_width <= 0 or self.world_height <= 0:
            return max(self.zoom, 1e-6)
        fit = min(self.screen_width / self.world_width, self.screen_height / self.world_height)
        return max(fit * self.zoom, 1e-6)

    def _center(self) -> Point:
        cx = self.world_width / 2.0 if self.center_x is None else self.center_x
        cy = self.world_height / 2.0 if self.center_y is None else self.center_y
        return cx, cy

    def screen_to_world(self, sx: float, sy: float) -> Point:
        cx, cy = self._center()
        scale = self.scale
        return ((sx - self.screen_width / 2.0) / scale + cx,
                (sy - self.screen_height / 2.0) / scale + cy)

    def world_to_screen(self, wx: float, wy: float) -> Point:
        cx, cy = self._center()
        scale = self.scale
        return ((wx - cx) * scale + self.screen_width / 2.0,
                (wy - cy) * scale + self.screen_height / 2.0)
