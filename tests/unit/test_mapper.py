"""
Unit Tests for the Device Pixel Mapper

Tests for:
- Topology resolution and the matrix inference fallback
- Pixel world positions (strip, matrix, serpentine, rotation)
- Byte order and buffer reuse of DevicePixelMapper
"""

import math
import numpy as np
import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from core.canvas.framebuffer import FrameBuffer
from core.canvas.mapper import (
    DevicePixelMapper,
    grid_cell,
    infer_columns,
    infer_is_matrix,
    pixel_world_positions,
    resolve_topology,
)
from core.canvas.types import Bounds, Device, TopologyKind


def _gradient_buffer(width, height):
    """Buffer where pixel (x, y) holds (x, y, 0)"""
    buffer = FrameBuffer(width, height)
    xs, ys = np.meshgrid(np.arange(width), np.arange(height))
    buffer.pixels[:, :, 0] = xs
    buffer.pixels[:, :, 1] = ys
    return buffer


class TestTopology:
    """Tests for topology resolution."""

    def test_grid_cell(self):
        """Test row-major cell lookup with and without serpentine."""
        assert grid_cell(5, 4) == (1, 1)
        assert grid_cell(5, 4, serpentine=True) == (2, 1)
        assert grid_cell(3, 4, serpentine=True) == (3, 0)

    @pytest.mark.parametrize("count,width,height,expected", [
        (64, 100, 100, True),
        (60, 200, 50, True),
        (30, 200, 10, False),
        (10, 100, 100, True),
        (5, 100, 100, False),
        (300, 1000, 0.5, False),
    ])
    def test_infer_is_matrix(self, count, width, height, expected):
        """Test the matrix heuristic thresholds."""
        assert infer_is_matrix(count, width, height) is expected

    def test_infer_columns(self):
        """Test exact square roots win over the aspect estimate."""
        assert infer_columns(64, 1.0) == 8
        assert infer_columns(64, 4.0) == 8
        assert infer_columns(50, 2.0) == 10
        assert infer_columns(0, 1.0) == 1

    def test_explicit_strip(self):
        """Test segment_width=0 forces a strip."""
        device = Device(ip="a", pixel_count=64, width=100, height=100, segment_width=0)
        topology = resolve_topology(device)
        assert topology.kind == TopologyKind.STRIP
        assert topology.inferred is False

    def test_explicit_matrix(self):
        """Test segment_width>0 sets the column count."""
        device = Device(ip="a", pixel_count=30, width=200, height=10, segment_width=10,
                        serpentine=True)
        topology = resolve_topology(device)
        assert topology.kind == TopologyKind.MATRIX
        assert (topology.columns, topology.rows) == (10, 3)
        assert topology.serpentine is True

    def test_inferred_matrix(self):
        """Test inference for a device with no configured segment width."""
        device = Device(ip="a", pixel_count=60, width=200, height=50)
        topology = resolve_topology(device)
        assert topology.kind == TopologyKind.MATRIX
        assert (topology.columns, topology.rows) == (15, 4)
        assert topology.inferred is True

    def test_reported_2d_matrix(self):
        """Test the controller-reported matrix width is used when unset."""
        device = Device(ip="a", pixel_count=32, width=200, height=10,
                        is_2d=True, matrix_width=16, matrix_height=2)
        topology = resolve_topology(device)
        assert (topology.columns, topology.rows) == (16, 2)


class TestPixelPositions:
    """Tests for pixel_world_positions()."""

    def test_single_pixel_strip_at_centre(self):
        """Test a one-pixel strip sits on the device centre."""
        device = Device(ip="a", pixel_count=1, x=100, y=100, width=200, height=50, segment_width=0)
        positions = pixel_world_positions(device)
        assert positions.tolist() == [[200.0, 125.0]]

    def test_strip_spans_width(self):
        """Test strip pixels run edge to edge along the centre line."""
        device = Device(ip="a", pixel_count=3, x=100, y=100, width=200, height=50, segment_width=0)
        positions = pixel_world_positions(device)
        assert positions[:, 0].tolist() == [100.0, 200.0, 300.0]
        assert positions[:, 1].tolist() == [125.0, 125.0, 125.0]

    def test_matrix_cell_position(self):
        """Test matrix pixels span the full footprint."""
        device = Device(ip="a", pixel_count=16, x=0, y=0, width=30, height=30, segment_width=4)
        positions = pixel_world_positions(device)
        assert positions[0].tolist() == [0.0, 0.0]
        assert positions[5].tolist() == [10.0, 10.0]
        assert positions[15].tolist() == [30.0, 30.0]

    def test_serpentine_reverses_odd_rows(self):
        """Test serpentine wiring mirrors odd rows."""
        device = Device(ip="a", pixel_count=16, x=0, y=0, width=30, height=30,
                        segment_width=4, serpentine=True)
        positions = pixel_world_positions(device)
        assert positions[5].tolist() == [20.0, 10.0]
        assert positions[4].tolist() == [30.0, 10.0]

    def test_rotation_about_centre(self):
        """Test rotation turns the strip about the device centre."""
        device = Device(ip="a", pixel_count=3, x=0, y=0, width=100, height=20,
                        segment_width=0, rotation=90)
        positions = pixel_world_positions(device)
        # centre (50, 10); the strip becomes vertical
        np.testing.assert_allclose(positions[:, 0], [50.0, 50.0, 50.0], atol=1e-9)
        np.testing.assert_allclose(positions[:, 1], [-40.0, 10.0, 60.0], atol=1e-9)


class TestDevicePixelMapper:
    """Tests for DevicePixelMapper.map_device()."""

    def test_byte_order_follows_pixel_index(self):
        """Test R, G, B of pixel i land at bytes 3i..3i+2."""
        bounds = Bounds(0, 0, 400, 300)
        buffer = FrameBuffer(bounds.pixel_width, bounds.pixel_height)
        buffer.pixels[125, 100, :3] = (1, 2, 3)
        buffer.pixels[125, 200, :3] = (4, 5, 6)
        buffer.pixels[125, 300, :3] = (7, 8, 9)
        device = Device(ip="a", pixel_count=3, x=100, y=100, width=200, height=50, segment_width=0)

        data = DevicePixelMapper().map_device(device, buffer, bounds)

        assert list(data) == [1, 2, 3, 4, 5, 6, 7, 8, 9]

    def test_origin_offset(self):
        """Test world coordinates are shifted by the buffer origin."""
        bounds = Bounds(-50, -50, 50, 50)
        buffer = FrameBuffer(bounds.pixel_width, bounds.pixel_height)
        buffer.pixels[50, 50, :3] = (9, 9, 9)  # world (0, 0)
        device = Device(ip="a", pixel_count=1, x=-10, y=-5, width=20, height=10, segment_width=0)

        data = DevicePixelMapper().map_device(device, buffer, bounds)

        assert list(data) == [9, 9, 9]

    def test_rotated_matrix_matches_manual_grid(self):
        """Test a 90 degree matrix samples the rotated grid positions."""
        bounds = Bounds(-100, -100, 100, 100)
        buffer = _gradient_buffer(bounds.pixel_width, bounds.pixel_height)
        device = Device(ip="a", pixel_count=8, x=0, y=0, width=40, height=20,
                        segment_width=4, rotation=90)

        data = DevicePixelMapper().map_device(device, buffer, bounds)

        cx, cy = 20.0, 10.0
        for index in range(8):
            col, row = index % 4, index // 4
            lx = -20.0 + col * 40.0 / 3
            ly = -10.0 + row * 20.0
            wx = cx - ly
            wy = cy + lx
            expected_x = math.floor(wx + 100 + 0.5)
            expected_y = math.floor(wy + 100 + 0.5)
            assert tuple(data[index * 3:index * 3 + 3]) == (expected_x, expected_y, 0)

    def test_samples_are_clamped(self):
        """Test a device outside the buffer reads the nearest edge."""
        bounds = Bounds(0, 0, 100, 100)
        buffer = _gradient_buffer(bounds.pixel_width, bounds.pixel_height)
        device = Device(ip="a", pixel_count=1, x=500, y=-500, width=10, height=10, segment_width=0)

        data = DevicePixelMapper().map_device(device, buffer, bounds)

        assert list(data) == [99, 0, 0]

    def test_buffer_reused_per_device(self):
        """Test the same bytearray is returned while the pixel count is unchanged."""
        bounds = Bounds(0, 0, 10, 10)
        buffer = FrameBuffer(10, 10)
        mapper = DevicePixelMapper()
        device = Device(ip="a", pixel_count=4, width=10, height=2, segment_width=0)

        first = mapper.map_device(device, buffer, bounds)
        second = mapper.map_device(device, buffer, bounds)
        resized = mapper.map_device(device.copy(pixel_count=5), buffer, bounds)

        assert first is second
        assert len(resized) == 15
        assert resized is not first

    def test_zero_pixels(self):
        """Test a device with no pixels maps to an empty payload."""
        device = Device(ip="a", pixel_count=0)
        data = DevicePixelMapper().map_device(device, FrameBuffer(4, 4), Bounds(0, 0, 4, 4))
        assert len(data) == 0

    def test_retain_drops_unknown_devices(self):
        """Test retain() forgets buffers of removed devices."""
        mapper = DevicePixelMapper()
        keep = Device(ip="a", pixel_count=2)
        drop = Device(ip="b", pixel_count=2)
        kept_buffer = mapper.buffer_for(keep)
        mapper.buffer_for(drop)
        mapper.retain([keep.id])
        assert mapper.buffer_for(keep) is kept_buffer
        assert len(mapper._buffers) == 1
