"""
Animation Producers - Built-in region content for the shared canvas

Every producer paints into its own local space [0, width] x [0, height];
the compositor has already rotated, clipped and translated the canvas, so
producers know nothing about world placement or other regions.

Classes:
    Animation: Base class with no-op input handlers and no capabilities
    SolidColorAnimation: Fill with the primary color
    RainbowAnimation: Scrolling palette gradient
    PulseAnimation: Sinusoidal blend between primary and secondary color
    BouncingBallAnimation: Ball bouncing off the region edges; drag, throw or repel by touch
    SpinnerAnimation: Rotating bar, spun by transform gestures

Usage:
    animation = create_animation("rainbow", palette="Ocean", speed=0.5)
    engine.add_region(Rect.from_xywh(0, 0, 400, 200), animation)
"""

import logging
import math
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple, Type

import numpy as np

from .color import (
    BLACK, RED, WHITE, DEFAULT_PALETTE_NAME, Palette,
    get_palette, lerp_color, parse_color, to_hex,
)
from .types import AnimationCapabilities

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


# ============================================================
# Base class
# ============================================================

class Animation:
    """
    Animation producer contract.

    Subclasses override paint() and, where they support them, the input
    handlers (on_touch, on_transform, on_interaction_end) and
    capabilities(). teardown() is called exactly once when the owning
    region is removed.
    """

    type_name = ""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or time.monotonic
        self._start_time = self._clock()
        self.torn_down = False

    @property
    def elapsed(self) -> float:
        """Seconds since the producer was created"""
        return self._clock() - self._start_time

    def paint(self, canvas, width: float, height: float) -> None:
        raise NotImplementedError

    def on_touch(self, x: float, y: float) -> bool:
        return False

    def on_transform(self, pan_x: float, pan_y: float, zoom: float, rotation: float) -> bool:
        return False

    def on_interaction_end(self) -> None:
        """The pointer was lifted; ends any gesture in progress"""
        pass

    def teardown(self) -> None:
        self.torn_down = True

    def capabilities(self) -> AnimationCapabilities:
        return AnimationCapabilities()

    def get_params(self) -> Dict[str, Any]:
        """Parameters that recreate this producer through create_animation()"""
        return {}


# ============================================================
# Registry
# ============================================================

ANIMATION_TYPES: Dict[str, Type[Animation]] = {}


def register_animation(name: str):
    """Class decorator adding a producer type to the factory"""
    def decorator(cls):
        cls.type_name = name
        ANIMATION_TYPES[name] = cls
        return cls
    return decorator


def create_animation(animation_type: str, **params: Any) -> Animation:
    """
    Instantiate a producer by type name.

    Raises:
        ValueError: If the type is unknown or a parameter is invalid
    """
    cls = ANIMATION_TYPES.get(animation_type)
    if cls is None:
        raise ValueError(f"Unknown animation type: {animation_type}")
    try:
        return cls(**params)
    except (TypeError, KeyError) as e:
        raise ValueError(f"Invalid parameters for {animation_type}: {e}")


def list_animation_types():
    return sorted(ANIMATION_TYPES)


# ============================================================
# Built-in producers
# ============================================================

@register_animation("solid")
class SolidColorAnimation(Animation):
    """Fills the whole region with one color"""

    def __init__(self, color: Any = WHITE, clock: Optional[Clock] = None):
        super().__init__(clock)
        self.color = parse_color(color)

    def paint(self, canvas, width: float, height: float) -> None:
        canvas.fill_rect(0.0, 0.0, width, height, self.color)

    def capabilities(self) -> AnimationCapabilities:
        return AnimationCapabilities(
            primary_color=True,
            get_primary_color=lambda: to_hex(self.color),
            set_primary_color=self._set_color,
        )

    def _set_color(self, value: Any) -> None:
        self.color = parse_color(value)

    def get_params(self) -> Dict[str, Any]:
        return {"color": to_hex(self.color)}


@register_animation("rainbow")
class RainbowAnimation(Animation):
    """Horizontal palette gradient scrolling at `speed` cycles per second"""

    def __init__(self, palette: str = DEFAULT_PALETTE_NAME, speed: float = 0.2,
                 clock: Optional[Clock] = None):
        super().__init__(clock)
        self.palette: Palette = get_palette(palette)
        self.speed = float(speed)

    def paint(self, canvas, width: float, height: float) -> None:
        span = max(width, 1.0)
        offset = self.elapsed * self.speed
        palette = self.palette
        canvas.shade(lambda lx, ly: palette.interpolate(lx / span + offset),
                     0.0, 0.0, width, height)

    def capabilities(self) -> AnimationCapabilities:
        return AnimationCapabilities(
            palette=True,
            speed=True,
            get_palette=lambda: self.palette.name,
            set_palette=self._set_palette,
            get_speed=lambda: self.speed,
            set_speed=self._set_speed,
        )

    def _set_palette(self, name: str) -> None:
        self.palette = get_palette(name)

    def _set_speed(self, value: Any) -> None:
        self.speed = float(value)

    def get_params(self) -> Dict[str, Any]:
        return {"palette": self.palette.name, "speed": self.speed}


@register_animation("pulse")
class PulseAnimation(Animation):
    """Smooth sinusoidal blend between the primary and secondary color"""

    def __init__(self, color: Any = RED, secondary_color: Any = BLACK, speed: float = 1.0,
                 clock: Optional[Clock] = None):
        super().__init__(clock)
        self.color = parse_color(color)
        self.secondary_color = parse_color(secondary_color)
        self.speed = float(speed)  # Hz

    def current_color(self):
        phase = (self.elapsed * self.speed) % 1.0
        value = (math.sin(phase * 2 * math.pi) + 1) / 2
        return lerp_color(self.secondary_color, self.color, value)

    def paint(self, canvas, width: float, height: float) -> None:
        canvas.fill_rect(0.0, 0.0, width, height, self.current_color())

    def capabilities(self) -> AnimationCapabilities:
        return AnimationCapabilities(
            primary_color=True,
            secondary_color=True,
            speed=True,
            get_primary_color=lambda: to_hex(self.color),
            set_primary_color=lambda value: setattr(self, "color", parse_color(value)),
            get_secondary_color=lambda: to_hex(self.secondary_color),
            set_secondary_color=lambda value: setattr(self, "secondary_color", parse_color(value)),
            get_speed=lambda: self.speed,
            set_speed=lambda value: setattr(self, "speed", float(value)),
        )

    def get_params(self) -> Dict[str, Any]:
        return {
            "color": to_hex(self.color),
            "secondary_color": to_hex(self.secondary_color),
            "speed": self.speed,
        }


@register_animation("bouncing_ball")
class BouncingBallAnimation(Animation):
    """
    A ball moving `speed` local units per frame, reflecting off the edges.

    Touching inside the ball grabs it and subsequent touches drag it;
    touching near it (within 3 radii) knocks it away from the touch point
    while keeping its speed. When the interaction ends the ball is thrown
    with the velocity of the last FLING_WINDOW seconds of dragging, or
    resumes at its configured speed if it was held still.
    """

    REPEL_RADIUS_FACTOR = 3.0
    MIN_SPEED = 0.1
    # Drag history used for the throw velocity (seconds)
    FLING_WINDOW = 0.2
    MIN_FLING_DT = 0.01
    # Units per second -> units per frame
    FLING_SCALE = 0.04
    MAX_FLING_SPEED = 50.0

    def __init__(self, color: Any = RED, radius: float = 30.0, speed: float = 5.0,
                 clock: Optional[Clock] = None):
        super().__init__(clock)
        self.color = parse_color(color)
        self.radius = float(radius)
        self.speed = float(speed)
        self.x = 50.0
        self.y = 50.0
        self.dx = self.speed
        self.dy = self.speed
        self.dragging = False
        self._drag_offset = (0.0, 0.0)
        self._drag_history: Deque[Tuple[float, float, float]] = deque()

    def step(self, width: float, height: float) -> None:
        """Advance one frame and bounce off the region edges"""
        if self.dragging:
            return
        r = self.radius
        self.x += self.dx
        self.y += self.dy

        if self.x - r < 0:
            self.x = r
            self.dx = abs(self.dx)
        elif self.x + r > width:
            self.x = width - r
            self.dx = -abs(self.dx)

        if self.y - r < 0:
            self.y = r
            self.dy = abs(self.dy)
        elif self.y + r > height:
            self.y = height - r
            self.dy = -abs(self.dy)

    def paint(self, canvas, width: float, height: float) -> None:
        self.step(width, height)
        canvas.fill_circle(self.x, self.y, self.radius, self.color)

    def _record_drag(self) -> None:
        now = self._clock()
        self._drag_history.append((now, self.x, self.y))
        while self._drag_history and now - self._drag_history[0][0] > self.FLING_WINDOW:
            self._drag_history.popleft()

    def on_touch(self, x: float, y: float) -> bool:
        if self.dragging:
            self.x = x + self._drag_offset[0]
            self.y = y + self._drag_offset[1]
            self._record_drag()
            return True

        dx = x - self.x
        dy = y - self.y
        dist_sq = dx * dx + dy * dy
        if dist_sq < self.radius * self.radius:
            self.dragging = True
            self.dx = self.dy = 0.0
            self._drag_offset = (self.x - x, self.y - y)
            self._drag_history.clear()
            self._record_drag()
            return True

        reach = self.radius * self.REPEL_RADIUS_FACTOR
        if dist_sq > reach * reach:
            return False

        length = math.sqrt(dist_sq)
        if length > 0.001:
            speed = math.hypot(self.dx, self.dy)
            target = self.speed if speed < self.MIN_SPEED else speed
            self.dx = -dx / length * target
            self.dy = -dy / length * target
        return True

    def on_interaction_end(self) -> None:
        """Let go of a dragged ball and throw it"""
        if not self.dragging:
            return
        self.dragging = False

        vx = vy = 0.0
        if len(self._drag_history) >= 2:
            t0, x0, y0 = self._drag_history[0]
            t1, x1, y1 = self._drag_history[-1]
            dt = t1 - t0
            if dt > self.MIN_FLING_DT:
                vx = (x1 - x0) / dt * self.FLING_SCALE
                vy = (y1 - y0) / dt * self.FLING_SCALE
        self._drag_history.clear()

        if math.hypot(vx, vy) < self.MIN_SPEED:
            self.dx = self.dy = self.speed
            return
        limit = self.MAX_FLING_SPEED
        self.dx = min(max(vx, -limit), limit)
        self.dy = min(max(vy, -limit), limit)

    def capabilities(self) -> AnimationCapabilities:
        return AnimationCapabilities(
            primary_color=True,
            speed=True,
            get_primary_color=lambda: to_hex(self.color),
            set_primary_color=lambda value: setattr(self, "color", parse_color(value)),
            get_speed=lambda: self.speed,
            set_speed=self._set_speed,
        )

    def _set_speed(self, value: Any) -> None:
        speed = float(value)
        current = math.hypot(self.dx, self.dy)
        if current > 0:
            self.dx = self.dx / current * speed * math.sqrt(2)
            self.dy = self.dy / current * speed * math.sqrt(2)
        self.speed = speed

    def get_params(self) -> Dict[str, Any]:
        return {"color": to_hex(self.color), "radius": self.radius, "speed": self.speed}


@register_animation("spinner")
class SpinnerAnimation(Animation):
    """
    A bar rotating about the region centre at `speed` turns per second.

    Rotation gestures add to the angle; zoom gestures scale the bar length.
    """

    def __init__(self, color: Any = WHITE, secondary_color: Any = BLACK, speed: float = 0.25,
                 thickness: float = 10.0, clock: Optional[Clock] = None):
        super().__init__(clock)
        self.color = parse_color(color)
        self.secondary_color = parse_color(secondary_color)
        self.speed = float(speed)
        self.thickness = float(thickness)
        self.angle_offset = 0.0
        self.length_scale = 1.0

    @property
    def angle(self) -> float:
        """Current angle in degrees"""
        return (self.elapsed * self.speed * 360.0 + self.angle_offset) % 360.0

    def paint(self, canvas, width: float, height: float) -> None:
        if self.secondary_color != BLACK:
            canvas.fill_rect(0.0, 0.0, width, height, self.secondary_color)
        cx = width / 2.0
        cy = height / 2.0
        half = min(width, height) / 2.0 * self.length_scale
        rad = math.radians(self.angle)
        ex = math.cos(rad) * half
        ey = math.sin(rad) * half
        canvas.draw_line(cx - ex, cy - ey, cx + ex, cy + ey, self.color, self.thickness)

    def on_transform(self, pan_x: float, pan_y: float, zoom: float, rotation: float) -> bool:
        self.angle_offset = (self.angle_offset + rotation) % 360.0
        if zoom > 0:
            self.length_scale = float(np.clip(self.length_scale * zoom, 0.1, 4.0))
        return True

    def capabilities(self) -> AnimationCapabilities:
        return AnimationCapabilities(
            primary_color=True,
            secondary_color=True,
            speed=True,
            get_primary_color=lambda: to_hex(self.color),
            set_primary_color=lambda value: setattr(self, "color", parse_color(value)),
            get_secondary_color=lambda: to_hex(self.secondary_color),
            set_secondary_color=lambda value: setattr(self, "secondary_color", parse_color(value)),
            get_speed=lambda: self.speed,
            set_speed=lambda value: setattr(self, "speed", float(value)),
        )

    def get_params(self) -> Dict[str, Any]:
        return {
            "color": to_hex(self.color),
            "secondary_color": to_hex(self.secondary_color),
            "speed": self.speed,
            "thickness": self.thickness,
        }
