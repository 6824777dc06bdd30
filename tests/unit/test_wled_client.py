"""
Unit Tests for the WLED metadata client and device building
"""

import requests
from unittest.mock import MagicMock

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from core.canvas.types import Device
from core.canvas.wled import (
    WledClient,
    build_device,
    find_free_slot,
    parse_panel_config,
)


def _response(status=200, payload=None):
    response = MagicMock()
    response.status_code = status
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class TestWledClient:
    """Tests for WledClient HTTP calls."""

    def test_get_info(self):
        """Test /json/info is fetched with the client timeout."""
        session = MagicMock()
        session.get.return_value = _response(payload={"leds": {"count": 30}})
        client = WledClient(session=session, timeout=1.5)

        assert client.get_info("10.0.0.2") == {"leds": {"count": 30}}
        session.get.assert_called_once_with("http://10.0.0.2/json/info", timeout=1.5)

    def test_request_error_returns_none(self):
        """Test network failures give None."""
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        assert WledClient(session=session).get_config("10.0.0.2") is None

    def test_bad_status_returns_none(self):
        """Test non-200 responses give None."""
        session = MagicMock()
        session.get.return_value = _response(status=500)
        assert WledClient(session=session).get_info("10.0.0.2") is None

    def test_bad_json_returns_none(self):
        """Test unparseable bodies give None."""
        session = MagicMock()
        session.get.return_value = _response(payload=ValueError("no json"))
        assert WledClient(session=session).get_info("10.0.0.2") is None

    def test_ping(self):
        """Test ping() reports reachability."""
        session = MagicMock()
        session.get.return_value = _response()
        client = WledClient(session=session)
        assert client.ping("10.0.0.2") is True
        session.get.side_effect = requests.Timeout()
        assert client.ping("10.0.0.2") is False

    def test_reboot(self):
        """Test reboot() posts the reboot flag."""
        session = MagicMock()
        session.post.return_value = _response()
        assert WledClient(session=session).reboot("10.0.0.2") is True
        assert session.post.call_args[1]["json"] == {"rb": True}


class TestBuildDevice:
    """Tests for build_device()."""

    def test_reported_matrix(self):
        """Test a 2D controller keeps its aspect ratio."""
        info = {"name": "Panel", "leds": {"count": 512, "w": 32, "h": 16}}
        device = build_device("10.0.0.3", info)
        assert (device.width, device.height) == (200.0, 100.0)
        assert device.segment_width == 32
        assert device.is_2d is True
        assert device.name == "Panel"

    def test_square_count(self):
        """Test a perfect-square pixel count becomes a square matrix."""
        device = build_device("10.0.0.3", {"leds": {"count": 64}})
        assert (device.width, device.height) == (200.0, 200.0)
        assert device.segment_width == 8
        assert device.is_2d is False

    def test_strip(self):
        """Test other counts become an explicit strip."""
        device = build_device("10.0.0.3", {"leds": {"count": 150}})
        assert (device.width, device.height) == (200.0, 50.0)
        assert device.segment_width == 0

    def test_unreachable_defaults(self):
        """Test missing metadata falls back to 100 pixels (a 10x10 square)."""
        device = build_device("10.0.0.3")
        assert device.pixel_count == 100
        assert device.segment_width == 10
        assert device.name == "10.0.0.3"

    def test_panel_serpentine(self):
        """Test panel wiring from /json/cfg."""
        config = {"hw": {"led": {"matrix": {"panels": [{"w": 16, "s": True}]}}}}
        assert parse_panel_config(config) == (16, True)
        device = build_device("10.0.0.3", {"leds": {"count": 48}}, config)
        assert device.segment_width == 16
        assert device.serpentine is True

    def test_panel_config_missing(self):
        """Test configs without panels are ignored."""
        assert parse_panel_config({"hw": {}}) == (0, False)
        assert parse_panel_config(None) == (0, False)

    def test_placement_avoids_overlap(self):
        """Test new devices step diagonally past existing ones."""
        existing = [Device(ip="a", pixel_count=10, x=50, y=50, width=200, height=50)]
        assert find_free_slot(200, 50, []) == (50.0, 50.0)
        assert find_free_slot(200, 50, existing) == (110.0, 110.0)
        device = build_device("10.0.0.3", {"leds": {"count": 150}}, existing=existing)
        assert (device.x, device.y) == (110.0, 110.0)
