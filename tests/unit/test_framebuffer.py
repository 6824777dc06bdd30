"""
Unit Tests for the Frame Buffer
"""

import numpy as np
import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from core.canvas.framebuffer import FrameBuffer


class TestFrameBuffer:
    """Tests for allocation, clearing and reads."""

    def test_initial_black_opaque(self):
        """Test a new buffer is black with full alpha."""
        buffer = FrameBuffer(4, 3)
        assert buffer.size == (4, 3)
        assert buffer.pixels.shape == (3, 4, 4)
        assert buffer.get_pixel(0, 0) == (0, 0, 0)
        assert (buffer.pixels[:, :, 3] == 255).all()

    def test_ensure_size_noop_when_unchanged(self):
        """Test ensure_size keeps the same array for equal dimensions."""
        buffer = FrameBuffer(10, 10)
        before = buffer.pixels
        assert buffer.ensure_size(10, 10) is False
        assert buffer.pixels is before
        assert buffer.generation == 0

    def test_ensure_size_reallocates(self):
        """Test ensure_size allocates a new array on change."""
        buffer = FrameBuffer(10, 10)
        before = buffer.pixels
        assert buffer.ensure_size(20, 5) is True
        assert buffer.pixels is not before
        assert buffer.size == (20, 5)
        assert buffer.generation == 1

    def test_non_positive_sizes_clamp(self):
        """Test zero or negative sizes clamp to 1x1."""
        buffer = FrameBuffer(10, 10)
        buffer.ensure_size(0, -5)
        assert buffer.size == (1, 1)
        assert FrameBuffer(-3, 0).size == (1, 1)

    def test_oversized_buffer_rejected(self):
        """Test a size above the pixel limit raises and keeps the old buffer."""
        buffer = FrameBuffer(10, 10)
        before = buffer.pixels
        with pytest.raises(ValueError):
            buffer.ensure_size(10 ** 6, 10 ** 6)
        assert buffer.pixels is before
        assert buffer.size == (10, 10)

    def test_clear_to_color(self):
        """Test clear fills every pixel."""
        buffer = FrameBuffer(3, 3)
        buffer.clear((10, 20, 30))
        assert buffer.get_pixel(2, 2) == (10, 20, 30)

    def test_get_pixel_out_of_range_is_black(self):
        """Test out-of-range reads return black."""
        buffer = FrameBuffer(3, 3)
        buffer.clear((255, 255, 255))
        assert buffer.get_pixel(-1, 0) == (0, 0, 0)
        assert buffer.get_pixel(3, 0) == (0, 0, 0)
        assert buffer.get_pixel(0, 99) == (0, 0, 0)

    def test_snapshot_is_read_only_copy(self):
        """Test snapshot is detached from later writes."""
        buffer = FrameBuffer(2, 2)
        buffer.clear((1, 2, 3))
        snap = buffer.snapshot()
        buffer.clear((9, 9, 9))
        assert tuple(snap[0, 0, :3]) == (1, 2, 3)
        assert not snap.flags.writeable
        assert isinstance(snap, np.ndarray)
