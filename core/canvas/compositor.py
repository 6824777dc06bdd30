"""
Compositor - Paints every region into the shared frame buffer

Once per frame the buffer is cleared to black and each region, in
registry order, gets a local coordinate space:

    1. translate world -> buffer pixels (-origin_x, -origin_y)
    2. rotate by region.rotation about the region centre
    3. clip to the region rectangle
    4. translate so the region's top-left becomes local (0, 0)

and its animation paints into [0, width] x [0, height]. The state is
pushed before and popped after every region, so a producer that raises
(or leaves unbalanced saves behind) cannot disturb the regions after it.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .canvas import Canvas
from .framebuffer import FrameBuffer
from .types import Bounds, Region

logger = logging.getLogger(__name__)

# Seconds between repeated tracebacks for the same failing region
ERROR_LOG_INTERVAL = 5.0


@dataclass
class CompositeResult:
    """Outcome of one composite pass"""
    painted: int = 0
    failed: List[str] = field(default_factory=list)
    duration_ms: float = 0.0


class Compositor:
    """Stateless per-frame painter, apart from error-log throttling"""

    def __init__(self):
        self._last_error_log: Dict[str, float] = {}
        self._error_counts: Dict[str, int] = {}

    @property
    def error_counts(self) -> Dict[str, int]:
        """Region id -> number of failed paints"""
        return dict(self._error_counts)

    def forget(self, region_id: str) -> None:
        self._last_error_log.pop(region_id, None)
        self._error_counts.pop(region_id, None)

    def composite(self, buffer: FrameBuffer, bounds: Bounds, regions: Iterable[Region]) -> CompositeResult:
        start = time.monotonic()
        result = CompositeResult()

        buffer.clear()
        canvas = Canvas(buffer)
        canvas.translate(-bounds.origin_x, -bounds.origin_y)

        for region in regions:
            if self._paint_region(canvas, region):
                result.painted += 1
            else:
                result.failed.append(region.id)

        result.duration_ms = (time.monotonic() - start) * 1000.0
        return result

    def _paint_region(self, canvas: Canvas, region: Region) -> bool:
        rect = region.rect
        saved = canvas.save()
        try:
            canvas.rotate(region.rotation, rect.center_x, rect.center_y)
            canvas.clip_rect(rect.left, rect.top, rect.right, rect.bottom)
            canvas.translate(rect.left, rect.top)
            region.animation.paint(canvas, rect.width, rect.height)
            return True
        except Exception:
            self._report_failure(region)
            return False
        finally:
            canvas.restore_to_count(saved)

    def _report_failure(self, region: Region) -> None:
        self._error_counts[region.id] = self._error_counts.get(region.id, 0) + 1
        now = time.monotonic()
        last = self._last_error_log.get(region.id)
        if last is None or now - last >= ERROR_LOG_INTERVAL:
            self._last_error_log[region.id] = now
            logger.exception(
                f"Animation paint failed for region {region.id} "
                f"({self._error_counts[region.id]} failures); skipping region this frame"
            )
