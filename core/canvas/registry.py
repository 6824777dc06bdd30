"""
Canvas Registries - Z-ordered regions and the device list

Both registries share the engine's lock. Every geometry mutation calls
the on_change hook while the lock is still held, so the engine can
recompute bounds before any other thread sees the new state. If the hook
raises, add() and update() put the previous entry back and re-raise.

Z-order: later entries paint later, i.e. on top. add() appends and
bring_to_front() moves an entry to the end.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from .types import Device, Rect, Region

logger = logging.getLogger(__name__)


def _noop() -> None:
    pass


class RegionRegistry:
    """Ordered collection of draw regions (last = topmost)"""

    def __init__(self, lock: Optional[threading.RLock] = None,
                 on_change: Callable[[], None] = _noop):
        self._lock = lock or threading.RLock()
        self._on_change = on_change
        self._regions: List[Region] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._regions)

    def _index_of(self, region_id: str) -> int:
        for index, region in enumerate(self._regions):
            if region.id == region_id:
                return index
        return -1

    def add(self, region: Region) -> Region:
        """
        Append a region on top of the others.

        Raises:
            ValueError: If a region with the same id is registered
        """
        with self._lock:
            if self._index_of(region.id) != -1:
                raise ValueError(f"Region already registered: {region.id}")
            self._regions.append(region)
            try:
                self._on_change()
            except Exception:
                self._regions.pop()
                raise
        logger.debug(f"Region added: {region.id} ({region.animation_type or type(region.animation).__name__})")
        return region

    def update(self, region_id: str, rect: Rect, rotation: float) -> Optional[Region]:
        """Replace a region's geometry in place; None if unknown"""
        with self._lock:
            index = self._index_of(region_id)
            if index == -1:
                return None
            previous = self._regions[index]
            updated = previous.with_geometry(rect, rotation)
            self._regions[index] = updated
            try:
                self._on_change()
            except Exception:
                self._regions[index] = previous
                raise
            return updated

    def remove(self, region_id: str) -> bool:
        """Tear down the region's animation and drop the entry"""
        with self._lock:
            index = self._index_of(region_id)
            if index == -1:
                return False
            region = self._regions.pop(index)
            self._teardown(region)
            self._on_change()
        logger.debug(f"Region removed: {region_id}")
        return True

    def clear(self) -> int:
        """Tear down and drop every region; returns how many were removed"""
        with self._lock:
            regions = self._regions
            self._regions = []
            for region in regions:
                self._teardown(region)
            self._on_change()
            return len(regions)

    def bring_to_front(self, region_id: str) -> bool:
        """Move a region to the end of the paint order"""
        with self._lock:
            index = self._index_of(region_id)
            if index == -1:
                return False
            self._regions.append(self._regions.pop(index))
            return True

    def get(self, region_id: str) -> Optional[Region]:
        with self._lock:
            index = self._index_of(region_id)
            return self._regions[index] if index != -1 else None

    def snapshot(self) -> Tuple[Region, ...]:
        """Immutable copy of the current paint order"""
        with self._lock:
            return tuple(self._regions)

    @staticmethod
    def _teardown(region: Region) -> None:
        try:
            region.animation.teardown()
        except Exception:
            logger.exception(f"Teardown failed for region {region.id}")


class DeviceRegistry:
    """Devices of the current installation, keyed by identity"""

    def __init__(self, lock: Optional[threading.RLock] = None,
                 on_change: Callable[[], None] = _noop):
        self._lock = lock or threading.RLock()
        self._on_change = on_change
        self._devices: Dict[str, Device] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def set_all(self, devices: List[Device]) -> None:
        with self._lock:
            self._devices = {device.id: device for device in devices}
            self._on_change()

    def add(self, device: Device) -> Device:
        """
        Raises:
            ValueError: If a device with the same id is registered
        """
        with self._lock:
            if device.id in self._devices:
                raise ValueError(f"Device already registered: {device.id}")
            self._devices[device.id] = device
            try:
                self._on_change()
            except Exception:
                del self._devices[device.id]
                raise
        return device

    def update(self, device_id: str, **changes) -> Optional[Device]:
        """Replace fields of a device (position, size, rotation, topology, ...)"""
        with self._lock:
            current = self._devices.get(device_id)
            if current is None:
                return None
            changes.pop("id", None)
            updated = current.copy(**changes)
            self._devices[device_id] = updated
            try:
                self._on_change()
            except Exception:
                self._devices[device_id] = current
                raise
            return updated

    def remove(self, device_id: str) -> bool:
        with self._lock:
            if self._devices.pop(device_id, None) is None:
                return False
            self._on_change()
            return True

    def get(self, device_id: str) -> Optional[Device]:
        with self._lock:
            return self._devices.get(device_id)

    def find_by_ip(self, ip: str) -> Optional[Device]:
        with self._lock:
            for device in self._devices.values():
                if device.ip == ip:
                    return device
            return None

    def snapshot(self) -> Tuple[Device, ...]:
        with self._lock:
            return tuple(self._devices.values())
