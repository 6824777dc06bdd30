"""
Canvas Type Definitions - Dataclasses for the Shared Canvas Engine

This module contains the data structures shared by every part of the
canvas engine. They are plain containers; geometry math lives in
geometry.py and rendering in compositor.py / mapper.py.

Classes:
    Rect: Axis-aligned float rectangle in world space
    Bounds: Padded render extent of the shared canvas
    Device: One physical LED controller (strip or matrix)
    Region: Rotated rectangle bound to one animation producer
    AnimationCapabilities: Editable properties a producer exposes
    PreviewFrame: Read-only composited frame for observers
    TopologyKind / Topology: Resolved pixel layout of a device
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional

import numpy as np


# Tolerance for inclusive edge tests in world units
EDGE_EPSILON = 1e-6


def _finite(owner: str, name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{owner} {name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"{owner} {name} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ValueError(f"{owner} {name} must be finite, got {number}")
    return number


def _whole_number(name: str, value: Any) -> int:
    """Integer field; integral floats such as 64.0 are accepted"""
    number = _finite("Device", name, value)
    if not number.is_integer():
        raise ValueError(f"Device {name} must be a whole number, got {value!r}")
    return int(number)


# ============================================================
# Rect / Bounds
# ============================================================

@dataclass(frozen=True)
class Rect:
    """
    Axis-aligned rectangle in world coordinates.

    Edges are inclusive: a point lying exactly on the right or bottom
    edge is inside the rectangle.
    """
    left: float
    top: float
    right: float
    bottom: float

    def __post_init__(self):
        for name in ("left", "top", "right", "bottom"):
            object.__setattr__(self, name, _finite("Rect", name, getattr(self, name)))

    @classmethod
    def from_xywh(cls, x: float, y: float, width: float, height: float) -> "Rect":
        return cls(float(x), float(y), float(x) + float(width), float(y) + float(height))

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_x(self) -> float:
        return (self.left + self.right) / 2.0

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2.0

    def contains(self, x: float, y: float, eps: float = EDGE_EPSILON) -> bool:
        return (self.left - eps <= x <= self.right + eps and
                self.top - eps <= y <= self.bottom + eps)

    def to_dict(self) -> Dict[str, float]:
        return {
            "left": self.left,
            "top": self.top,
            "right": self.right,
            "bottom": self.bottom,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rect":
        """Accepts either left/top/right/bottom or x/y/width/height keys."""
        if "left" in data:
            return cls(float(data["left"]), float(data["top"]),
                       float(data["right"]), float(data["bottom"]))
        return cls.from_xywh(data.get("x", 0.0), data.get("y", 0.0),
                             data.get("width", 0.0), data.get("height", 0.0))


@dataclass(frozen=True)
class Bounds:
    """
    Render bounds of the shared canvas (world space).

    Derived from the installation, devices and regions; never
    authoritative. The frame buffer origin equals (min_x, min_y).
    """
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def origin_x(self) -> float:
        return self.min_x

    @property
    def origin_y(self) -> float:
        return self.min_y

    @property
    def pixel_width(self) -> int:
        return max(1, int(math.ceil(self.max_x - self.min_x)))

    @property
    def pixel_height(self) -> int:
        return max(1, int(math.ceil(self.max_y - self.min_y)))

    def contains_point(self, x: float, y: float, eps: float = EDGE_EPSILON) -> bool:
        return (self.min_x - eps <= x <= self.max_x + eps and
                self.min_y - eps <= y <= self.max_y + eps)

    def to_dict(self) -> Dict[str, float]:
        return {
            "min_x": self.min_x,
            "min_y": self.min_y,
            "max_x": self.max_x,
            "max_y": self.max_y,
            "origin_x": self.origin_x,
            "origin_y": self.origin_y,
            "pixel_width": self.pixel_width,
            "pixel_height": self.pixel_height,
        }


# ============================================================
# Device
# ============================================================

@dataclass
class Device:
    """
    One physical LED controller placed in world space.

    Attributes:
        id: Stable identity key (MAC address when known)
        ip: Network address frames are sent to
        name: Human readable name
        pixel_count: Number of addressable pixels
        x, y: Top-left corner in world units
        width, height: Footprint size in world units
        rotation: Degrees about the device's own centre
        segment_width: None = unset (topology is inferred),
                       0 = linear strip, >0 = matrix column count
        serpentine: Odd matrix rows run in reverse column order
        is_2d: Controller reports itself as a 2D matrix
        matrix_width, matrix_height: Matrix dimensions reported by the controller
        port: Optional per-device UDP port override
    """
    ip: str
    pixel_count: int
    x: float = 0.0
    y: float = 0.0
    width: float = 200.0
    height: float = 50.0
    rotation: float = 0.0
    segment_width: Optional[int] = None
    serpentine: bool = False
    is_2d: bool = False
    matrix_width: int = 0
    matrix_height: int = 0
    name: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    port: Optional[int] = None

    def __post_init__(self):
        """Validate configuration"""
        if not isinstance(self.ip, str) or not self.ip.strip():
            raise ValueError(f"Device ip must be a non-empty string, got {self.ip!r}")
        self.ip = self.ip.strip()
        self.pixel_count = _whole_number("pixel_count", self.pixel_count)
        if self.pixel_count < 0:
            raise ValueError(f"pixel_count must be >= 0, got {self.pixel_count}")
        if self.segment_width is not None:
            self.segment_width = _whole_number("segment_width", self.segment_width)
            if self.segment_width < 0:
                raise ValueError(f"segment_width must be >= 0, got {self.segment_width}")
        self.matrix_width = _whole_number("matrix_width", self.matrix_width)
        self.matrix_height = _whole_number("matrix_height", self.matrix_height)
        if self.port is not None:
            self.port = _whole_number("port", self.port)
            if not 0 < self.port < 65536:
                raise ValueError(f"Device port must be 1-65535, got {self.port}")
        for attr in ("x", "y", "width", "height", "rotation"):
            value = _finite("Device", attr, getattr(self, attr))
            setattr(self, attr, value)
        if not self.name:
            self.name = self.ip

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2.0

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0

    def copy(self, **changes: Any) -> "Device":
        """Return a copy with the given fields replaced"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ip": self.ip,
            "name": self.name,
            "pixel_count": self.pixel_count,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "rotation": self.rotation,
            "segment_width": self.segment_width,
            "serpentine": self.serpentine,
            "is_2d": self.is_2d,
            "matrix_width": self.matrix_width,
            "matrix_height": self.matrix_height,
            "port": self.port,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Device":
        kwargs: Dict[str, Any] = {
            "ip": data["ip"],
            "pixel_count": data.get("pixel_count", 0),
            "x": data.get("x", 0.0),
            "y": data.get("y", 0.0),
            "width": data.get("width", 200.0),
            "height": data.get("height", 50.0),
            "rotation": data.get("rotation", 0.0),
            "segment_width": data.get("segment_width"),
            "serpentine": bool(data.get("serpentine", False)),
            "is_2d": bool(data.get("is_2d", False)),
            "matrix_width": data.get("matrix_width", 0),
            "matrix_height": data.get("matrix_height", 0),
            "name": data.get("name", ""),
            "port": data.get("port"),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


# ============================================================
# Topology
# ============================================================

class TopologyKind(Enum):
    """Physical pixel layout of a device"""
    STRIP = "strip"
    MATRIX = "matrix"


@dataclass(frozen=True)
class Topology:
    """Resolved layout used by the mapper"""
    kind: TopologyKind
    columns: int
    rows: int
    serpentine: bool = False
    inferred: bool = False


# ============================================================
# Animation capabilities
# ============================================================

@dataclass
class AnimationCapabilities:
    """
    Editable properties an animation producer exposes to editing UIs.

    Captured once when the producer is registered; the render path never
    reads it. Each supported property carries a getter/setter pair.
    """
    primary_color: bool = False
    secondary_color: bool = False
    palette: bool = False
    speed: bool = False
    text: bool = False
    get_primary_color: Optional[Callable[[], Any]] = None
    set_primary_color: Optional[Callable[[Any], None]] = None
    get_secondary_color: Optional[Callable[[], Any]] = None
    set_secondary_color: Optional[Callable[[Any], None]] = None
    get_palette: Optional[Callable[[], Any]] = None
    set_palette: Optional[Callable[[Any], None]] = None
    get_speed: Optional[Callable[[], Any]] = None
    set_speed: Optional[Callable[[Any], None]] = None
    get_text: Optional[Callable[[], Any]] = None
    set_text: Optional[Callable[[Any], None]] = None

    PROPERTIES = ("primary_color", "secondary_color", "palette", "speed", "text")

    def supported(self):
        """Names of the supported properties"""
        return [name for name in self.PROPERTIES if getattr(self, name)]

    def get_value(self, name: str) -> Any:
        if name not in self.PROPERTIES or not getattr(self, name):
            raise KeyError(f"Unsupported capability: {name}")
        getter = getattr(self, f"get_{name}")
        return getter() if getter else None

    def set_value(self, name: str, value: Any) -> None:
        if name not in self.PROPERTIES or not getattr(self, name):
            raise KeyError(f"Unsupported capability: {name}")
        setter = getattr(self, f"set_{name}")
        if setter is None:
            raise KeyError(f"Capability {name} is read-only")
        setter(value)

    def to_dict(self) -> Dict[str, Any]:
        """Flags plus current values of the supported properties"""
        result: Dict[str, Any] = {name: getattr(self, name) for name in self.PROPERTIES}
        result["values"] = {name: self.get_value(name) for name in self.supported()}
        return result


# ============================================================
# Region
# ============================================================

@dataclass(frozen=True)
class Region:
    """
    A rotated rectangle composited with one animation producer.

    Frozen so that geometry updates replace the whole entry; readers
    holding a snapshot never observe half-applied geometry.
    """
    rect: Rect
    animation: Any
    rotation: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    animation_type: str = ""
    capabilities: AnimationCapabilities = field(default_factory=AnimationCapabilities)

    def __post_init__(self):
        object.__setattr__(self, "rotation", _finite("Region", "rotation", self.rotation))

    def with_geometry(self, rect: Rect, rotation: float) -> "Region":
        return replace(self, rect=rect, rotation=rotation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "animation_type": self.animation_type,
            "rect": self.rect.to_dict(),
            "rotation": self.rotation,
            "capabilities": self.capabilities.supported(),
        }


# ============================================================
# Preview
# ============================================================

@dataclass(frozen=True)
class PreviewFrame:
    """Read-only copy of one composited frame plus its world origin"""
    pixels: np.ndarray
    origin_x: float
    origin_y: float
    frame_number: int = 0
    timestamp: float = 0.0

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])
