"""
Unit Tests for the Input Router
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from core.canvas.geometry import Viewport
from core.canvas.input_router import InputRouter
from core.canvas.types import Rect, Region


class TouchRecorder:
    def __init__(self, handles=True):
        self.handles = handles
        self.touches = []
        self.transforms = []

    def paint(self, canvas, width, height):
        pass

    def on_touch(self, x, y):
        self.touches.append((x, y))
        return self.handles

    def on_transform(self, pan_x, pan_y, zoom, rotation):
        self.transforms.append((pan_x, pan_y, zoom, rotation))
        return self.handles


class RaisingTouch(TouchRecorder):
    def on_touch(self, x, y):
        raise RuntimeError("touch failed")


class PaintOnly:
    def paint(self, canvas, width, height):
        pass


def _router(*regions):
    return InputRouter(lambda: regions)


class TestRouteTouch:
    """Tests for InputRouter.route_touch()."""

    def test_topmost_region_handles(self):
        """Test the last-painted region receives the touch first."""
        bottom = TouchRecorder()
        top = TouchRecorder()
        router = _router(Region(Rect.from_xywh(0, 0, 100, 100), bottom),
                         Region(Rect.from_xywh(0, 0, 100, 100), top))
        assert router.route_touch(50, 50) is True
        assert top.touches == [(50, 50)]
        assert bottom.touches == []

    def test_falls_through_unhandled(self):
        """Test an unhandled touch reaches the region below."""
        bottom = TouchRecorder()
        top = TouchRecorder(handles=False)
        router = _router(Region(Rect.from_xywh(0, 0, 100, 100), bottom),
                         Region(Rect.from_xywh(0, 0, 100, 100), top))
        assert router.route_touch(10, 10) is True
        assert len(top.touches) == 1
        assert len(bottom.touches) == 1

    def test_exception_treated_as_unhandled(self):
        """Test a raising handler does not stop routing."""
        bottom = TouchRecorder()
        router = _router(Region(Rect.from_xywh(0, 0, 100, 100), bottom),
                         Region(Rect.from_xywh(0, 0, 100, 100), RaisingTouch()))
        assert router.route_touch(10, 10) is True
        assert len(bottom.touches) == 1

    def test_regions_without_handler_are_skipped(self):
        """Test producers without on_touch never handle."""
        router = _router(Region(Rect.from_xywh(0, 0, 100, 100), PaintOnly()))
        assert router.route_touch(10, 10) is False

    def test_outside_every_region(self):
        """Test a miss returns False without calling producers."""
        recorder = TouchRecorder()
        router = _router(Region(Rect.from_xywh(0, 0, 100, 100), recorder))
        assert router.route_touch(500, 500) is False
        assert recorder.touches == []

    def test_local_coordinates(self):
        """Test producers receive region-local coordinates."""
        recorder = TouchRecorder()
        router = _router(Region(Rect.from_xywh(100, 100, 200, 100), recorder))
        router.route_touch(150, 120)
        assert recorder.touches == [(50, 20)]

    def test_rotated_region(self):
        """Test hit testing follows the rotated footprint."""
        recorder = TouchRecorder()
        # 200x20 bar centred on (100, 100), rotated to vertical
        region = Region(Rect(0, 90, 200, 110), recorder, rotation=90)
        router = _router(region)

        assert router.route_touch(30, 100) is False
        assert router.route_touch(100, 30) is True
        lx, ly = recorder.touches[0]
        assert lx == pytest.approx(30.0)
        assert ly == pytest.approx(10.0)

    def test_hit_test(self):
        """Test hit_test() ignores handlers and returns the topmost region."""
        a = Region(Rect.from_xywh(0, 0, 100, 100), PaintOnly())
        b = Region(Rect.from_xywh(50, 50, 100, 100), PaintOnly())
        router = _router(a, b)
        assert router.hit_test(75, 75) is b
        assert router.hit_test(10, 10) is a
        assert router.hit_test(500, 500) is None


class TestRouteTransform:
    """Tests for InputRouter.route_transform()."""

    def test_values_pass_through(self):
        """Test pan, zoom and rotation reach the producer unchanged."""
        recorder = TouchRecorder()
        router = _router(Region(Rect.from_xywh(100, 100, 100, 100), recorder, rotation=45))
        assert router.route_transform(150, 150, 3.0, -4.0, 1.5, 30.0) is True
        assert recorder.transforms == [(3.0, -4.0, 1.5, 30.0)]

    def test_target_outside(self):
        """Test the target point decides which region is addressed."""
        recorder = TouchRecorder()
        router = _router(Region(Rect.from_xywh(100, 100, 100, 100), recorder))
        assert router.route_transform(0, 0, 0, 0, 1.0, 0) is False
        assert recorder.transforms == []


class TestScreenTouch:
    """Tests for screen-space routing through a viewport."""

    def test_screen_to_world(self):
        """Test a screen touch is converted before routing."""
        recorder = TouchRecorder()
        router = _router(Region(Rect.from_xywh(0, 0, 1000, 1000), recorder))
        viewport = Viewport(500, 500, world_width=1000, world_height=1000)
        # screen centre maps to world centre
        assert router.route_screen_touch(viewport, 250, 250) is True
        lx, ly = recorder.touches[0]
        assert lx == pytest.approx(500.0)
        assert ly == pytest.approx(500.0)


class EndRecorder(TouchRecorder):
    def __init__(self, handles=True):
        super().__init__(handles)
        self.ended = 0

    def on_interaction_end(self):
        self.ended += 1


class RaisingEnd(EndRecorder):
    def on_interaction_end(self):
        raise RuntimeError("release failed")


class TestRouteInteractionEnd:
    """Tests for InputRouter.route_interaction_end()."""

    def test_every_region_notified(self):
        """Test all regions hear the release, wherever they are."""
        left = EndRecorder()
        right = EndRecorder()
        router = _router(Region(Rect.from_xywh(0, 0, 10, 10), left),
                         Region(Rect.from_xywh(500, 500, 10, 10), right))
        assert router.route_interaction_end() == 2
        assert left.ended == 1
        assert right.ended == 1

    def test_regions_without_handler_are_skipped(self):
        """Test producers without on_interaction_end are not counted."""
        recorder = EndRecorder()
        router = _router(Region(Rect.from_xywh(0, 0, 10, 10), PaintOnly()),
                         Region(Rect.from_xywh(0, 0, 10, 10), recorder))
        assert router.route_interaction_end() == 1
        assert recorder.ended == 1

    def test_exception_does_not_stop_others(self):
        """Test a raising handler is isolated from the regions below it."""
        bottom = EndRecorder()
        router = _router(Region(Rect.from_xywh(0, 0, 10, 10), bottom),
                         Region(Rect.from_xywh(0, 0, 10, 10), RaisingEnd()))
        assert router.route_interaction_end() == 1
        assert bottom.ended == 1

    def test_no_regions(self):
        """Test an empty canvas notifies nobody."""
        assert _router().route_interaction_end() == 0
