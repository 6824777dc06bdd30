"""
LUMEN Canvas Module - Shared virtual canvas for addressable LED controllers

Several animation producers draw into rotated regions of one world-space
canvas; the engine composites them, samples the result at every physical
pixel of every placed controller and streams RGB frames over UDP.

Key Components:
- CanvasEngine: Owns all render state behind one lock
- Compositor / Canvas: Per-region transform, clip and raster primitives
- DevicePixelMapper: Canvas pixels -> physical pixel order per device
- FrameScheduler: Fixed-rate frame loop
- DeviceTransport: UDP raw / DDP frame output
- InputRouter: Front-to-back touch and gesture dispatch

Usage:
    from core.canvas import CanvasEngine, Device, Rect, create_animation

    engine = CanvasEngine()
    engine.add_device(Device(ip="192.168.1.50", pixel_count=64, segment_width=8,
                             width=100, height=100))
    engine.add_region(Rect.from_xywh(0, 0, 1000, 1000), create_animation("rainbow"))
    engine.start()

Version: 0.1.0
"""

from .types import (
    Rect,
    Bounds,
    Device,
    Region,
    Topology,
    TopologyKind,
    AnimationCapabilities,
    PreviewFrame,
)

from .transport import (
    DeviceTransport,
    UdpRawTransport,
    DdpTransport,
    TransportError,
    AddressResolutionError,
    create_transport,
)
from .geometry import Viewport, recompute_bounds, world_to_region_local
from .framebuffer import FrameBuffer
from .canvas import Canvas, CanvasStateError
from .registry import RegionRegistry, DeviceRegistry
from .compositor import Compositor, CompositeResult
from .mapper import DevicePixelMapper, resolve_topology
from .scheduler import FrameScheduler, SchedulerState
from .input_router import InputRouter
from .animations import Animation, ANIMATION_TYPES, create_animation, list_animation_types
from .installation import Installation, InstallationStore, SavedAnimation
from .wled import WledClient, build_device
from .config import EngineConfig
from .engine import CanvasEngine

__all__ = [
    # Types
    "Rect",
    "Bounds",
    "Device",
    "Region",
    "Topology",
    "TopologyKind",
    "AnimationCapabilities",
    "PreviewFrame",
    # Transport
    "DeviceTransport",
    "UdpRawTransport",
    "DdpTransport",
    "TransportError",
    "AddressResolutionError",
    "create_transport",
    # Geometry / rendering
    "Viewport",
    "recompute_bounds",
    "world_to_region_local",
    "FrameBuffer",
    "Canvas",
    "CanvasStateError",
    "RegionRegistry",
    "DeviceRegistry",
    "Compositor",
    "CompositeResult",
    "DevicePixelMapper",
    "resolve_topology",
    "FrameScheduler",
    "SchedulerState",
    "InputRouter",
    # Animations
    "Animation",
    "ANIMATION_TYPES",
    "create_animation",
    "list_animation_types",
    # Installation / devices
    "Installation",
    "InstallationStore",
    "SavedAnimation",
    "WledClient",
    "build_device",
    # Engine
    "EngineConfig",
    "CanvasEngine",
]

__version__ = "0.1.0"
