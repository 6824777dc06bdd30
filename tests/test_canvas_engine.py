"""
LUMEN Canvas Engine - Integration Tests

Tests cover the full frame pipeline:
1. Regions composited and sampled per device (incl. rotated devices)
2. Bounds and buffer kept in sync with every mutation
3. Per-device send isolation
4. Preview publication
5. Lifecycle and concurrency
"""

import threading
import time
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.canvas import (
    CanvasEngine,
    Device,
    DeviceTransport,
    EngineConfig,
    Installation,
    Rect,
    TransportError,
    create_animation,
)


class RecordingTransport(DeviceTransport):
    """Records payloads instead of sending them; listed IPs fail"""

    protocol = "test"

    def __init__(self, failing=()):
        super().__init__(port=9)
        self.failing = set(failing)
        self.sent = []

    def send(self, address, payload, port=None):
        if address in self.failing:
            self.send_errors += 1
            raise TransportError(f"unreachable: {address}")
        self.sent.append((address, bytes(payload)))
        self.frames_sent += 1


class GradientAnimation:
    """Paints each pixel with its own local coordinates as R and G"""

    def paint(self, canvas, width, height):
        import numpy as np
        canvas.shade(lambda lx, ly: np.stack([lx, ly, np.zeros_like(lx)], axis=1),
                     0, 0, width, height)


class BrokenAnimation:
    def paint(self, canvas, width, height):
        raise RuntimeError("broken producer")


class TrackingAnimation:
    def __init__(self):
        self.teardowns = 0
        self.paints = 0

    def paint(self, canvas, width, height):
        self.paints += 1
        canvas.fill((0, 0, 255))

    def teardown(self):
        self.teardowns += 1


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def engine(transport):
    engine = CanvasEngine(Installation(width=400, height=400), transport=transport,
                          config=EngineConfig(target_fps=100))
    yield engine
    engine.shutdown()


def _matrix(ip="10.0.0.10", **kwargs):
    params = dict(ip=ip, pixel_count=64, x=100, y=100, width=100, height=100, segment_width=8)
    params.update(kwargs)
    return Device(**params)


# ============================================================
# Frame pipeline
# ============================================================

class TestFramePipeline:
    """End-to-end composite -> map -> send."""

    def test_red_region_reaches_device(self, engine, transport):
        """Test a full-canvas red region sends 64 red pixels."""
        engine.add_device(_matrix())
        engine.add_region(Rect.from_xywh(0, 0, 400, 400), create_animation("solid", color="#FF0000"))

        engine.tick()

        assert len(transport.sent) == 1
        address, payload = transport.sent[0]
        assert address == "10.0.0.10"
        assert len(payload) == 192
        assert payload == bytes([255, 0, 0]) * 64

    def test_full_canvas_red_scenario(self, transport):
        """Test the 1000x1000 canvas with an 8x8 matrix at the origin."""
        engine = CanvasEngine(Installation(width=1000, height=1000), transport=transport)
        try:
            engine.add_device(_matrix(x=0, y=0))
            engine.add_region(Rect.from_xywh(0, 0, 1000, 1000), create_animation("solid", color="#FF0000"))
            engine.tick()
        finally:
            engine.shutdown()

        assert transport.sent == [("10.0.0.10", bytes([255, 0, 0]) * 64)]

    def test_white_round_trip_on_rotated_device(self, engine, transport):
        """Test a region exactly covering a rotated device lights every pixel."""
        engine.add_device(_matrix(x=0, y=0, rotation=90))
        engine.add_region(Rect.from_xywh(0, 0, 100, 100), create_animation("solid", color="#FFFFFF"))

        engine.tick()

        assert transport.sent[0][1] == bytes([255]) * 192

    def test_rotated_device_samples_rotated_grid(self, engine, transport):
        """Test each pixel of a 90 degree matrix reads its rotated position."""
        engine.add_device(Device(ip="10.0.0.11", pixel_count=12, x=50, y=50, width=100, height=40,
                                 segment_width=4, rotation=90))
        engine.add_region(Rect.from_xywh(0, 0, 250, 250), GradientAnimation())

        engine.tick()

        payload = transport.sent[0][1]
        cx, cy = 100.0, 70.0
        for index in range(12):
            col, row = index % 4, index // 4
            lx = -50.0 + col * 100.0 / 3
            ly = -20.0 + row * 20.0
            expected = (int(cx - ly + 0.5), int(cy + lx + 0.5), 0)
            assert tuple(payload[index * 3:index * 3 + 3]) == expected

    def test_topmost_region_wins(self, engine, transport):
        """Test later regions cover earlier ones."""
        engine.add_device(_matrix())
        engine.add_region(Rect.from_xywh(0, 0, 400, 400), create_animation("solid", color="#FF0000"))
        engine.add_region(Rect.from_xywh(0, 0, 400, 400), create_animation("solid", color="#00FF00"))

        engine.tick()

        assert transport.sent[0][1] == bytes([0, 255, 0]) * 64

    def test_bring_to_front(self, engine, transport):
        """Test bring_to_front() changes which region is visible."""
        engine.add_device(_matrix())
        red = engine.add_region(Rect.from_xywh(0, 0, 400, 400), create_animation("solid", color="#FF0000"))
        engine.add_region(Rect.from_xywh(0, 0, 400, 400), create_animation("solid", color="#00FF00"))

        assert engine.bring_to_front(red.id) is True
        engine.tick()

        assert transport.sent[0][1] == bytes([255, 0, 0]) * 64

    def test_broken_region_is_skipped(self, engine, transport):
        """Test a raising producer does not block other regions."""
        engine.add_device(_matrix())
        engine.add_region(Rect.from_xywh(0, 0, 400, 400), create_animation("solid", color="#FF0000"))
        broken = engine.add_region(Rect.from_xywh(0, 0, 400, 400), BrokenAnimation())

        engine.tick()

        assert transport.sent[0][1] == bytes([255, 0, 0]) * 64
        status = engine.get_status()
        assert status["failed_regions"] == [broken.id]
        assert status["region_errors"] == {broken.id: 1}

    def test_removed_region_no_longer_painted(self, engine, transport):
        """Test remove_region() tears down once and stops compositing."""
        engine.add_device(_matrix())
        animation = TrackingAnimation()
        region = engine.add_region(Rect.from_xywh(0, 0, 400, 400), animation)
        engine.tick()

        assert engine.remove_region(region.id) is True
        assert engine.remove_region(region.id) is False
        engine.tick()

        assert animation.teardowns == 1
        assert animation.paints == 1
        assert transport.sent[-1][1] == bytes(192)

    def test_update_region_moves_content(self, engine, transport):
        """Test new geometry is used from the next frame on."""
        engine.add_device(_matrix())
        region = engine.add_region(Rect.from_xywh(0, 0, 50, 50), create_animation("solid", color="#FF0000"))
        engine.tick()
        assert transport.sent[-1][1] == bytes(192)

        engine.update_region(region.id, Rect.from_xywh(0, 0, 400, 400), 0)
        engine.tick()
        assert transport.sent[-1][1] == bytes([255, 0, 0]) * 64


# ============================================================
# Bounds
# ============================================================

class TestBounds:
    """Bounds and buffer follow every mutation synchronously."""

    def test_initial_bounds(self, engine):
        """Test the base canvas plus padding."""
        bounds = engine.bounds
        assert (bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y) == (-100, -100, 500, 500)
        assert engine.buffer_size == (600, 600)

    def test_region_grows_bounds_before_returning(self, engine):
        """Test add_region() resizes the buffer immediately."""
        engine.add_region(Rect.from_xywh(2000, 0, 100, 100), create_animation("solid"))
        assert engine.bounds.max_x == 2200
        assert engine.buffer_size == (2300, 600)

    def test_device_changes_bounds(self, engine):
        """Test device add/update/remove recompute bounds."""
        device = engine.add_device(_matrix(x=-500))
        assert engine.bounds.min_x == -600
        engine.update_device(device.id, x=0.0)
        assert engine.bounds.min_x == -100
        engine.update_device(device.id, y=900.0)
        assert engine.bounds.max_y == 1100
        engine.remove_device(device.id)
        assert engine.bounds.max_y == 500

    def test_unrenderable_region_rolled_back(self, engine):
        """Test a region too large to allocate is refused and the canvas stays editable."""
        before = engine.bounds
        with pytest.raises(ValueError):
            engine.add_region(Rect.from_xywh(0, 0, 1e300, 10), create_animation("solid"))
        assert engine.get_regions() == ()
        assert engine.bounds == before

        region = engine.add_region(Rect.from_xywh(0, 0, 100, 100), create_animation("solid"))
        assert len(engine.get_regions()) == 1
        with pytest.raises(ValueError):
            engine.update_region(region.id, Rect.from_xywh(0, 0, 1e300, 10), 0.0)
        assert engine.get_region(region.id).rect == Rect.from_xywh(0, 0, 100, 100)
        engine.remove_region(region.id)
        assert engine.bounds == before

    def test_preview_origin_matches_bounds(self, engine):
        """Test the preview carries the buffer origin."""
        frames = []
        engine.add_preview_listener(frames.append)
        engine.add_region(Rect.from_xywh(-300, -50, 10, 10), create_animation("solid"))

        engine.tick()

        assert len(frames) == 1
        assert (frames[0].origin_x, frames[0].origin_y) == (-400, -150)
        assert (frames[0].width, frames[0].height) == engine.buffer_size


# ============================================================
# Output
# ============================================================

class TestOutput:
    """Per-device send behaviour."""

    def test_failed_device_does_not_block_others(self):
        """Test a TransportError on one device still sends to the rest."""
        transport = RecordingTransport(failing={"10.0.0.1"})
        engine = CanvasEngine(Installation(width=400, height=400), transport=transport)
        try:
            engine.add_device(_matrix(ip="10.0.0.1"))
            engine.add_device(_matrix(ip="10.0.0.2"))
            engine.tick()
            engine.tick()
        finally:
            engine.shutdown()

        assert [address for address, _ in transport.sent] == ["10.0.0.2", "10.0.0.2"]
        status = engine.get_status()
        assert status["send_errors"] == 2
        assert status["frames_sent"] == 2

    @pytest.mark.parametrize("protocol, device_port, expected", [
        ("raw", None, 19446),
        ("ddp", None, 4048),
        ("ddp", 5000, 5000),
    ])
    def test_default_transport_uses_configured_port(self, protocol, device_port, expected):
        """Test the engine's own transport sends to the configured device port."""
        config = EngineConfig(protocol=protocol, device_port=device_port)
        engine = CanvasEngine(Installation(), config=config)
        try:
            status = engine.get_status()["transport"]
        finally:
            engine.shutdown()
        assert status["protocol"] == protocol
        assert status["port"] == expected

    def test_unmappable_device_does_not_block_others(self, engine, transport):
        """Test a device whose mapping raises is skipped and reported."""
        bad = engine.add_device(_matrix(ip="10.0.0.1"))
        engine.add_device(_matrix(ip="10.0.0.2"))
        map_device = engine._mapper.map_device

        def failing_map(device, buffer, bounds):
            if device.id == bad.id:
                raise TypeError("cannot map device")
            return map_device(device, buffer, bounds)

        engine._mapper.map_device = failing_map
        engine.tick()
        engine.tick()

        assert [address for address, _ in transport.sent] == ["10.0.0.2", "10.0.0.2"]
        status = engine.get_status()
        assert status["failed_devices"] == [bad.id]
        assert status["map_errors"] == 2

    def test_invalid_device_update_keeps_output_running(self, engine, transport):
        """Test a fractional pixel count or bad port is refused before it can break a frame."""
        device = engine.add_device(_matrix(ip="10.0.0.1"))
        engine.add_device(_matrix(ip="10.0.0.2"))
        with pytest.raises(ValueError):
            engine.update_device(device.id, pixel_count=5.5)
        with pytest.raises(ValueError):
            engine.update_device(device.id, port=70000)
        with pytest.raises(ValueError):
            engine.update_device(device.id, ip=1234)

        engine.tick()

        assert sorted(address for address, _ in transport.sent) == ["10.0.0.1", "10.0.0.2"]

    def test_empty_device_skipped(self, engine, transport):
        """Test devices without pixels are not sent to."""
        engine.add_device(Device(ip="10.0.0.3", pixel_count=0))
        engine.tick()
        assert transport.sent == []

    def test_per_device_port(self, engine):
        """Test the device port override reaches the transport."""
        calls = []
        engine._transport.send = lambda address, payload, port=None: calls.append(port)
        engine.add_device(_matrix(port=21324))
        engine.tick()
        assert calls == [21324]

    def test_installation_devices_loaded(self, transport):
        """Test devices of the installation are registered at construction."""
        installation = Installation(devices=[_matrix(ip="10.0.0.7")])
        engine = CanvasEngine(installation, transport=transport)
        try:
            engine.tick()
        finally:
            engine.shutdown()
        assert transport.sent[0][0] == "10.0.0.7"


# ============================================================
# Preview listeners
# ============================================================

class TestPreview:
    """Preview publication after each frame."""

    def test_latest_preview(self, engine):
        """Test latest_preview is None before the first frame."""
        assert engine.latest_preview is None
        engine.tick()
        assert engine.latest_preview.frame_number == 1

    def test_raising_listener_isolated(self, engine):
        """Test one failing listener does not stop the others."""
        frames = []

        def broken(frame):
            raise RuntimeError("listener failed")

        engine.add_preview_listener(broken)
        engine.add_preview_listener(frames.append)
        engine.tick()
        assert len(frames) == 1

    def test_remove_listener(self, engine):
        """Test removed listeners get no frames."""
        frames = []
        engine.add_preview_listener(frames.append)
        assert engine.remove_preview_listener(frames.append) is True
        assert engine.remove_preview_listener(frames.append) is False
        engine.tick()
        assert frames == []

    def test_preview_is_a_copy(self, engine):
        """Test later frames do not change an earlier preview."""
        engine.add_region(Rect.from_xywh(0, 0, 400, 400), create_animation("solid", color="#FF0000"))
        engine.tick()
        first = engine.latest_preview
        engine.clear_regions()
        engine.tick()
        assert tuple(first.pixels[200, 200, :3]) == (255, 0, 0)


# ============================================================
# Input
# ============================================================

class TestInput:
    """Touch routing through the engine."""

    def test_touch_reaches_ball(self, engine):
        """Test a touch on the ball grabs it."""
        ball = create_animation("bouncing_ball", radius=30)
        engine.add_region(Rect.from_xywh(100, 100, 200, 200), ball)
        assert engine.route_touch(150, 150) is True
        assert ball.dragging is True

    def test_interaction_end_releases_ball(self, engine):
        """Test lifting the pointer lets the ball move again and frees touches below it."""
        touches = []

        class TouchRecorder:
            def paint(self, canvas, width, height):
                pass

            def on_touch(self, x, y):
                touches.append((x, y))
                return True

        engine.add_region(Rect.from_xywh(0, 0, 400, 400), TouchRecorder())
        ball = create_animation("bouncing_ball", radius=30, speed=5)
        engine.add_region(Rect.from_xywh(0, 0, 400, 400), ball)

        assert engine.route_touch(50, 50) is True
        for _ in range(10):
            engine.tick()
        assert (ball.x, ball.y) == (50.0, 50.0)

        assert engine.route_interaction_end() == 1
        assert ball.dragging is False
        for _ in range(10):
            engine.tick()
        assert (ball.x, ball.y) == (100.0, 100.0)

        assert engine.route_touch(390, 390) is True
        assert touches == [(390.0, 390.0)]

    def test_transform_reaches_spinner(self, engine):
        """Test transform gestures reach the spinner under the target."""
        spinner = create_animation("spinner", speed=0)
        engine.add_region(Rect.from_xywh(0, 0, 100, 100), spinner)
        assert engine.route_transform(50, 50, 0, 0, 2.0, 90) is True
        assert spinner.length_scale == 2.0

    def test_viewport_uses_camera(self, transport):
        """Test the viewport is centred on the installation camera."""
        installation = Installation(width=1000, height=1000, camera_x=250.0, camera_y=250.0)
        engine = CanvasEngine(installation, transport=transport)
        viewport = engine.viewport(500, 500)
        assert viewport.screen_to_world(250, 250) == (250.0, 250.0)


# ============================================================
# Lifecycle
# ============================================================

class TestLifecycle:
    """Start/stop, shutdown, persistence snapshot and concurrency."""

    def test_start_stop(self, engine, transport):
        """Test the scheduler drives frames while running."""
        engine.add_device(_matrix())
        assert engine.start() is True
        deadline = time.monotonic() + 2.0
        while engine.get_status()["frame_number"] < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert engine.stop() is True
        assert engine.get_status()["frame_number"] >= 3
        assert engine.is_running is False

    def test_shutdown_tears_down(self, transport):
        """Test shutdown() tears down every producer."""
        engine = CanvasEngine(transport=transport)
        animations = [TrackingAnimation(), TrackingAnimation()]
        for animation in animations:
            engine.add_region(Rect.from_xywh(0, 0, 10, 10), animation)
        engine.shutdown()
        assert [a.teardowns for a in animations] == [1, 1]
        assert engine.get_regions() == ()

    def test_to_installation(self, engine):
        """Test the saveable snapshot contains devices and regions."""
        device = engine.add_device(_matrix())
        region = engine.add_region(Rect.from_xywh(0, 0, 50, 50),
                                   create_animation("rainbow", palette="Ocean"), rotation=10)
        installation = engine.to_installation()

        assert [d.id for d in installation.devices] == [device.id]
        saved = installation.animations[0]
        assert (saved.id, saved.type, saved.rotation) == (region.id, "rainbow", 10.0)
        assert saved.params["palette"] == "Ocean"

    def test_update_installation_keeps_regions(self, engine):
        """Test a new installation replaces devices and base size only."""
        engine.add_region(Rect.from_xywh(0, 0, 50, 50), create_animation("solid"))
        engine.update_installation(Installation(width=2000, height=1000,
                                                devices=[_matrix(ip="10.0.0.99")]))
        assert len(engine.get_regions()) == 1
        assert [d.ip for d in engine.get_devices()] == ["10.0.0.99"]
        assert engine.bounds.max_x == 2100

    def test_duplicate_region_id(self, engine):
        """Test region ids are unique."""
        engine.add_region(Rect.from_xywh(0, 0, 10, 10), create_animation("solid"), region_id="a")
        with pytest.raises(ValueError):
            engine.add_region(Rect.from_xywh(0, 0, 10, 10), create_animation("solid"), region_id="a")

    def test_concurrent_mutation_and_render(self, engine, transport):
        """Test regions added from other threads while frames render."""
        engine.add_device(_matrix())
        errors = []

        def add_regions():
            try:
                for i in range(50):
                    engine.add_region(Rect.from_xywh(i * 10, i * 10, 40, 40), create_animation("solid"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=add_regions) for _ in range(4)]
        for t in threads:
            t.start()
        for _ in range(20):
            engine.tick()
        for t in threads:
            t.join()

        assert errors == []
        assert len(engine.get_regions()) == 200
        assert engine.get_status()["failed_regions"] == []
