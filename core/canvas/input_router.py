"""
Input Router - Front-to-back hit testing of pointer events

Regions are visited in reverse paint order (topmost first). A world
point is mapped into each region's local space with the inverse of the
compositor transform; the first producer whose region contains the point
and which reports the event as handled ends the search.

The router iterates an immutable registry snapshot and calls producers
without holding the engine lock, so a slow on_touch() cannot stall the
frame loop or registry mutations.
"""

import logging
from typing import Callable, Iterable, Optional, Tuple

from .geometry import Viewport, world_to_region_local
from .types import Region

logger = logging.getLogger(__name__)


class InputRouter:
    """Dispatches touch and transform gestures to animation producers"""

    def __init__(self, snapshot_fn: Callable[[], Iterable[Region]]):
        self._snapshot = snapshot_fn

    def _front_to_back(self) -> Tuple[Region, ...]:
        return tuple(reversed(tuple(self._snapshot())))

    def hit_test(self, world_x: float, world_y: float) -> Optional[Region]:
        """Topmost region containing the world point, ignoring handlers"""
        for region in self._front_to_back():
            if world_to_region_local(region, world_x, world_y) is not None:
                return region
        return None

    def route_touch(self, world_x: float, world_y: float) -> bool:
        """
        Deliver a touch to the topmost region that handles it.

        Returns:
            True if some producer handled the event
        """
        for region in self._front_to_back():
            local = world_to_region_local(region, world_x, world_y)
            if local is None:
                continue
            handler = getattr(region.animation, "on_touch", None)
            if handler is None:
                continue
            try:
                handled = handler(local[0], local[1])
            except Exception:
                logger.exception(f"on_touch failed for region {region.id}")
                continue
            if handled:
                logger.debug(f"Touch ({world_x:.1f}, {world_y:.1f}) handled by region {region.id}")
                return True
        return False

    def route_transform(self, target_x: float, target_y: float, pan_x: float, pan_y: float,
                        zoom: float, rotation: float) -> bool:
        """
        Deliver a pan/zoom/rotate gesture centred on (target_x, target_y).

        Pan, zoom and rotation are passed through unchanged; only the
        target point is used for hit testing.
        """
        for region in self._front_to_back():
            if world_to_region_local(region, target_x, target_y) is None:
                continue
            handler = getattr(region.animation, "on_transform", None)
            if handler is None:
                continue
            try:
                handled = handler(pan_x, pan_y, zoom, rotation)
            except Exception:
                logger.exception(f"on_transform failed for region {region.id}")
                continue
            if handled:
                return True
        return False

    def route_screen_touch(self, viewport: Viewport, screen_x: float, screen_y: float) -> bool:
        """Convert a screen point through the viewport, then route it"""
        world_x, world_y = viewport.screen_to_world(screen_x, screen_y)
        return self.route_touch(world_x, world_y)

    def route_interaction_end(self) -> int:
        """
        Tell every producer the pointer was lifted.

        Not hit tested: a drag may end outside the region it started in.

        Returns:
            Number of producers notified
        """
        notified = 0
        for region in self._front_to_back():
            handler = getattr(region.animation, "on_interaction_end", None)
            if handler is None:
                continue
            try:
                handler()
            except Exception:
                logger.exception(f"on_interaction_end failed for region {region.id}")
                continue
            notified += 1
        return notified
