"""
Canvas Engine - Shared virtual canvas driving many LED controllers

The engine owns every piece of mutable render state and guards it with
one re-entrant lock:

    RegionRegistry  z-ordered regions (animation producers)
    DeviceRegistry  placed controllers
    Bounds          padded extent of base canvas + devices + regions
    FrameBuffer     RGBA grid sized to the bounds

Every registry mutation recomputes the bounds and resizes the buffer
before it returns, so a producer's first frame is never sampled against
stale bounds.

FRAME (one FrameScheduler tick):
    with lock:
        composite regions -> buffer
        map buffer -> per-device RGB bytes
        copy buffer -> PreviewFrame
    send bytes to each device           (outside the lock)
    publish PreviewFrame to listeners   (outside the lock)

Known limitation: a producer whose paint() never returns stalls the
whole pipeline; there is no per-producer timeout.

Usage:
    engine = CanvasEngine(installation, config=EngineConfig.from_env())
    engine.add_region(Rect.from_xywh(0, 0, 1000, 1000), create_animation("rainbow"))
    engine.start()
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .compositor import Compositor
from .config import EngineConfig
from .framebuffer import FrameBuffer
from .geometry import Viewport, recompute_bounds
from .input_router import InputRouter
from .installation import Installation, SavedAnimation
from .mapper import DevicePixelMapper
from .registry import DeviceRegistry, RegionRegistry
from .scheduler import FrameScheduler
from .transport import DeviceTransport, TransportError, create_transport
from .types import AnimationCapabilities, Bounds, Device, PreviewFrame, Rect, Region

logger = logging.getLogger(__name__)

PreviewListener = Callable[[PreviewFrame], None]
Payloads = List[Tuple[Device, bytearray]]


class CanvasEngine:
    """Single owner of the shared canvas state"""

    def __init__(self, installation: Optional[Installation] = None,
                 transport: Optional[DeviceTransport] = None,
                 config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        installation = installation or Installation()

        self._lock = threading.RLock()
        # Serialises render+send so reused device buffers are not
        # overwritten while a send is still reading them
        self._frame_lock = threading.Lock()

        self._installation = installation
        self._base_width = installation.width
        self._base_height = installation.height
        self._padding = self.config.bounds_padding

        self._regions = RegionRegistry(self._lock, self._recompute_bounds)
        self._devices = DeviceRegistry(self._lock, self._recompute_bounds)
        self._bounds = recompute_bounds(self._base_width, self._base_height, (), (), self._padding)
        self._buffer = FrameBuffer(self._bounds.pixel_width, self._bounds.pixel_height)

        self._compositor = Compositor()
        self._mapper = DevicePixelMapper()
        self._router = InputRouter(self._regions.snapshot)
        self._transport = transport or create_transport(self.config.protocol,
                                                        port=self.config.resolved_device_port)
        self._scheduler = FrameScheduler(self.tick, self.config.target_fps)

        self._preview: Optional[PreviewFrame] = None
        self._preview_listeners: List[PreviewListener] = []
        self._listener_lock = threading.Lock()

        # Stats
        self._frame_number = 0
        self._frames_sent = 0
        self._send_errors = 0
        self._last_composite_ms = 0.0
        self._last_failed_regions: List[str] = []
        self._failed_devices: Set[str] = set()
        self._map_errors = 0

        self._devices.set_all(list(installation.devices))

    # ─────────────────────────────────────────────────────────
    # Bounds
    # ─────────────────────────────────────────────────────────

    def _recompute_bounds(self) -> None:
        """Registry hook; always called with the lock held"""
        with self._lock:
            bounds = recompute_bounds(
                self._base_width, self._base_height,
                self._devices.snapshot(), self._regions.snapshot(),
                self._padding,
            )
            # Size the buffer first so a failure leaves the old bounds in place
            self._buffer.ensure_size(bounds.pixel_width, bounds.pixel_height)
            if bounds != self._bounds:
                logger.debug(f"Bounds {self._bounds.to_dict()} -> {bounds.to_dict()}")
            self._bounds = bounds

    @property
    def bounds(self) -> Bounds:
        with self._lock:
            return self._bounds

    @property
    def buffer_size(self) -> Tuple[int, int]:
        with self._lock:
            return self._buffer.size

    # ─────────────────────────────────────────────────────────
    # Regions
    # ─────────────────────────────────────────────────────────

    def add_region(self, rect: Rect, animation: Any, rotation: float = 0.0,
                   region_id: Optional[str] = None, animation_type: Optional[str] = None) -> Region:
        """
        Place an animation producer on top of the existing regions.

        Raises:
            ValueError: If region_id is already registered
        """
        capabilities = animation.capabilities() if hasattr(animation, "capabilities") else AnimationCapabilities()
        kwargs: Dict[str, Any] = {
            "rect": rect,
            "animation": animation,
            "rotation": float(rotation),
            "animation_type": animation_type or getattr(animation, "type_name", "") or type(animation).__name__,
            "capabilities": capabilities,
        }
        if region_id:
            kwargs["id"] = region_id
        return self._regions.add(Region(**kwargs))

    def update_region(self, region_id: str, rect: Rect, rotation: float) -> Optional[Region]:
        return self._regions.update(region_id, rect, rotation)

    def remove_region(self, region_id: str) -> bool:
        with self._lock:
            removed = self._regions.remove(region_id)
            if removed:
                self._compositor.forget(region_id)
        return removed

    def bring_to_front(self, region_id: str) -> bool:
        return self._regions.bring_to_front(region_id)

    def clear_regions(self) -> int:
        return self._regions.clear()

    def get_regions(self) -> Tuple[Region, ...]:
        return self._regions.snapshot()

    def get_region(self, region_id: str) -> Optional[Region]:
        return self._regions.get(region_id)

    # ─────────────────────────────────────────────────────────
    # Devices / installation
    # ─────────────────────────────────────────────────────────

    def set_devices(self, devices: List[Device]) -> None:
        with self._lock:
            self._devices.set_all(devices)
            self._mapper.retain(d.id for d in devices)

    def add_device(self, device: Device) -> Device:
        """
        Raises:
            ValueError: If a device with the same id is registered
        """
        return self._devices.add(device)

    def update_device(self, device_id: str, **changes: Any) -> Optional[Device]:
        """
        Raises:
            ValueError: If the changes produce an invalid device
        """
        return self._devices.update(device_id, **changes)

    def remove_device(self, device_id: str) -> bool:
        with self._lock:
            removed = self._devices.remove(device_id)
            if removed:
                self._mapper.forget(device_id)
                self._failed_devices.discard(device_id)
        return removed

    def get_devices(self) -> Tuple[Device, ...]:
        return self._devices.snapshot()

    def get_device(self, device_id: str) -> Optional[Device]:
        return self._devices.get(device_id)

    def update_installation(self, installation: Installation) -> None:
        """Adopt a new base canvas size and device list; regions are kept"""
        with self._lock:
            self._installation = installation
            self._base_width = installation.width
            self._base_height = installation.height
            self.set_devices(list(installation.devices))
        logger.info(f"Installation '{installation.name}' applied "
                    f"({installation.width:g}x{installation.height:g}, {len(installation.devices)} devices)")

    def to_installation(self) -> Installation:
        """Current devices and regions as a saveable Installation"""
        with self._lock:
            current = self._installation
            return Installation(
                name=current.name,
                width=self._base_width,
                height=self._base_height,
                devices=list(self._devices.snapshot()),
                animations=[SavedAnimation.from_region(r) for r in self._regions.snapshot()],
                camera_x=current.camera_x,
                camera_y=current.camera_y,
                camera_zoom=current.camera_zoom,
                id=current.id,
            )

    # ─────────────────────────────────────────────────────────
    # Frame pipeline
    # ─────────────────────────────────────────────────────────

    def render_frame(self) -> Payloads:
        """
        Composite and map one frame under the lock.

        Returns:
            (device, payload) pairs; payload buffers are reused by the
            next frame
        """
        with self._lock:
            bounds = self._bounds
            result = self._compositor.composite(self._buffer, bounds, self._regions.snapshot())
            self._last_composite_ms = result.duration_ms
            self._last_failed_regions = result.failed

            payloads: Payloads = []
            for device in self._devices.snapshot():
                try:
                    payload = self._mapper.map_device(device, self._buffer, bounds)
                except Exception:
                    self._map_errors += 1
                    if device.id not in self._failed_devices:
                        self._failed_devices.add(device.id)
                        logger.exception(f"Mapping failed for device {device.name} ({device.ip}); skipping it")
                    continue
                self._failed_devices.discard(device.id)
                payloads.append((device, payload))

            self._frame_number += 1
            self._preview = PreviewFrame(
                pixels=self._buffer.snapshot(),
                origin_x=bounds.origin_x,
                origin_y=bounds.origin_y,
                frame_number=self._frame_number,
                timestamp=time.time(),
            )
            return payloads

    def _send(self, payloads: Payloads) -> int:
        sent = 0
        for device, payload in payloads:
            if not payload:
                continue
            try:
                self._transport.send(device.ip, payload, device.port)
                sent += 1
            except TransportError as e:
                self._send_errors += 1
                logger.debug(f"Send to {device.name} ({device.ip}) failed: {e}")
        self._frames_sent += sent
        return sent

    def tick(self) -> None:
        """One full frame: render under the lock, then send and publish"""
        with self._frame_lock:
            payloads = self.render_frame()
            self._send(payloads)
        self._publish_preview(self._preview)

    # ─────────────────────────────────────────────────────────
    # Preview
    # ─────────────────────────────────────────────────────────

    @property
    def latest_preview(self) -> Optional[PreviewFrame]:
        return self._preview

    def add_preview_listener(self, listener: PreviewListener) -> None:
        with self._listener_lock:
            self._preview_listeners.append(listener)

    def remove_preview_listener(self, listener: PreviewListener) -> bool:
        with self._listener_lock:
            try:
                self._preview_listeners.remove(listener)
                return True
            except ValueError:
                return False

    def _publish_preview(self, frame: Optional[PreviewFrame]) -> None:
        if frame is None:
            return
        with self._listener_lock:
            listeners = list(self._preview_listeners)
        for listener in listeners:
            try:
                listener(frame)
            except Exception:
                logger.exception("Preview listener failed")

    # ─────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────

    def route_touch(self, world_x: float, world_y: float) -> bool:
        return self._router.route_touch(world_x, world_y)

    def route_transform(self, target_x: float, target_y: float, pan_x: float, pan_y: float,
                        zoom: float, rotation: float) -> bool:
        return self._router.route_transform(target_x, target_y, pan_x, pan_y, zoom, rotation)

    def route_screen_touch(self, viewport: Viewport, screen_x: float, screen_y: float) -> bool:
        return self._router.route_screen_touch(viewport, screen_x, screen_y)

    def route_interaction_end(self) -> int:
        return self._router.route_interaction_end()

    def hit_test(self, world_x: float, world_y: float) -> Optional[Region]:
        return self._router.hit_test(world_x, world_y)

    def viewport(self, screen_width: float, screen_height: float) -> Viewport:
        """Viewport over the base canvas using the installation camera"""
        with self._lock:
            current = self._installation
            return Viewport(
                screen_width=screen_width,
                screen_height=screen_height,
                world_width=self._base_width,
                world_height=self._base_height,
                center_x=current.camera_x,
                center_y=current.camera_y,
                zoom=current.camera_zoom,
            )

    # ─────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────

    def start(self) -> bool:
        return self._scheduler.start()

    def stop(self) -> bool:
        return self._scheduler.stop()

    @property
    def is_running(self) -> bool:
        return self._scheduler.is_running

    def shutdown(self) -> None:
        """Stop the loop, tear down every producer and close the transport"""
        self.stop()
        removed = self.clear_regions()
        self._transport.close()
        logger.info(f"Canvas engine shut down ({removed} regions torn down)")

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            bounds = self._bounds
            width, height = self._buffer.size
            status = {
                "running": self.is_running,
                "installation": self._installation.name,
                "regions": len(self._regions),
                "devices": len(self._devices),
                "bounds": bounds.to_dict(),
                "buffer": {"width": width, "height": height},
                "frame_number": self._frame_number,
                "last_composite_ms": round(self._last_composite_ms, 2),
                "failed_regions": list(self._last_failed_regions),
                "region_errors": self._compositor.error_counts,
                "failed_devices": sorted(self._failed_devices),
                "map_errors": self._map_errors,
            }
        status["scheduler"] = self._scheduler.get_status()
        status["transport"] = self._transport.get_status()
        status["frames_sent"] = self._frames_sent
        status["send_errors"] = self._send_errors
        return status
