"""
WLED Client - HTTP metadata for placing controllers on the canvas

The engine never talks HTTP itself; this client answers the questions
needed before a controller can be added: how many pixels it has, whether
it is a 2D matrix, and how its panel is wired.

Endpoints:
    GET  /json/info   -> {"name": ..., "leds": {"count": N, "w": W, "h": H}}
    GET  /json/cfg    -> {"hw": {"led": {"matrix": {"panels": [{"w": W, "s": bool}]}}}}
    GET  /json/state  -> reachability check
    POST /json/state  {"rb": true} -> reboot

Usage:
    client = WledClient()
    info = client.get_info("192.168.1.50")
    device = build_device("192.168.1.50", info, client.get_config("192.168.1.50"), existing)
"""

import logging
import math
from typing import Any, Dict, Iterable, Optional, Tuple

import requests

from .types import Device

logger = logging.getLogger(__name__)

# Seconds for metadata requests
REQUEST_TIMEOUT = 2.0
PING_TIMEOUT = 1.0

# Default pixel count when the controller cannot be queried
DEFAULT_PIXEL_COUNT = 100

# Footprint of a newly placed device in world units
PLACEMENT_WIDTH = 200.0
STRIP_HEIGHT = 50.0
PLACEMENT_START = (50.0, 50.0)
PLACEMENT_STEP = 20.0
PLACEMENT_MAX_ATTEMPTS = 500


class WledClient:
    """Small requests-based client for the WLED JSON API"""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = REQUEST_TIMEOUT):
        self.session = session or requests.Session()
        self.timeout = timeout

    @staticmethod
    def _url(ip: str, path: str) -> str:
        return f"http://{ip}{path}"

    def _get_json(self, ip: str, path: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.session.get(self._url(ip, path), timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"WLED {ip}{path} request failed: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"WLED {ip}{path} returned HTTP {response.status_code}")
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"WLED {ip}{path} returned invalid JSON: {e}")
            return None

    def get_info(self, ip: str) -> Optional[Dict[str, Any]]:
        """/json/info, or None if the controller did not answer"""
        return self._get_json(ip, "/json/info")

    def get_config(self, ip: str) -> Optional[Dict[str, Any]]:
        """/json/cfg, or None if the controller did not answer"""
        return self._get_json(ip, "/json/cfg")

    def ping(self, ip: str) -> bool:
        try:
            response = self.session.get(self._url(ip, "/json/state"), timeout=PING_TIMEOUT)
        except requests.RequestException:
            return False
        return response.status_code == 200

    def reboot(self, ip: str) -> bool:
        try:
            response = self.session.post(self._url(ip, "/json/state"), json={"rb": True},
                                         timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"WLED {ip} reboot failed: {e}")
            return False
        return response.status_code == 200

    def close(self) -> None:
        self.session.close()


# ============================================================
# Device building
# ============================================================

def _perfect_square_root(count: int) -> int:
    """Integer root if count is a perfect square, else 0"""
    if count <= 0:
        return 0
    root = math.isqrt(count)
    return root if root * root == count else 0


def parse_matrix_info(info: Optional[Dict[str, Any]]) -> Tuple[int, int]:
    """(w, h) reported in /json/info leds, (0, 0) for strips"""
    leds = (info or {}).get("leds") or {}
    return int(leds.get("w") or 0), int(leds.get("h") or 0)


def parse_panel_config(config: Optional[Dict[str, Any]]) -> Tuple[int, bool]:
    """(panel width, serpentine) of the first matrix panel in /json/cfg"""
    try:
        panels = config["hw"]["led"]["matrix"]["panels"]
        panel = panels[0]
    except (KeyError, IndexError, TypeError):
        return 0, False
    return int(panel.get("w") or 0), bool(panel.get("s", False))


def _overlaps(x: float, y: float, width: float, height: float, device: Device) -> bool:
    return (device.x < x + width and device.x + device.width > x and
            device.y < y + height and device.y + device.height > y)


def find_free_slot(width: float, height: float, existing: Iterable[Device]) -> Tuple[float, float]:
    """Walk diagonally from (50, 50) in 20-unit steps until nothing overlaps"""
    devices = list(existing)
    x, y = PLACEMENT_START
    for _ in range(PLACEMENT_MAX_ATTEMPTS):
        if not any(_overlaps(x, y, width, height, d) for d in devices):
            break
        x += PLACEMENT_STEP
        y += PLACEMENT_STEP
    return x, y


def build_device(ip: str, info: Optional[Dict[str, Any]] = None,
                 config: Optional[Dict[str, Any]] = None,
                 existing: Iterable[Device] = (), name: str = "") -> Device:
    """
    Create a Device sized and placed the way the layout editor does.

    A controller reporting a 2D size becomes a 200-wide matrix with the
    reported aspect ratio; a perfect-square pixel count becomes a 200x200
    matrix; anything else a 200x50 strip.
    """
    info = info or {}
    leds = info.get("leds") or {}
    pixel_count = int(leds.get("count") or DEFAULT_PIXEL_COUNT)
    matrix_w, matrix_h = parse_matrix_info(info)
    panel_w, serpentine = parse_panel_config(config)
    square_root = _perfect_square_root(pixel_count)

    if matrix_w > 0 and matrix_h > 0:
        width = PLACEMENT_WIDTH
        height = PLACEMENT_WIDTH * matrix_h / matrix_w
    elif square_root:
        width = height = PLACEMENT_WIDTH
    else:
        width, height = PLACEMENT_WIDTH, STRIP_HEIGHT

    if matrix_w > 0:
        segment_width = matrix_w
    elif panel_w > 0:
        segment_width = panel_w
    elif square_root:
        segment_width = square_root
    else:
        segment_width = 0

    x, y = find_free_slot(width, height, existing)
    device = Device(
        ip=ip,
        name=name or info.get("name") or ip,
        pixel_count=pixel_count,
        x=x,
        y=y,
        width=width,
        height=height,
        segment_width=segment_width,
        serpentine=serpentine,
        is_2d=matrix_w > 0 and matrix_h > 0,
        matrix_width=matrix_w,
        matrix_height=matrix_h,
    )
    logger.info(
        f"Built device {device.name} ({ip}): {pixel_count} px, "
        f"{'matrix ' + str(segment_width) + ' cols' if segment_width else 'strip'} at ({x:.0f}, {y:.0f})"
    )
    return device
