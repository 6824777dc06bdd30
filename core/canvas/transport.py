"""
Device Transport - Real-time pixel frames to LED controllers over UDP

Classes:
    DeviceTransport: Abstract base class for frame transports
    UdpRawTransport: One headerless datagram of RGB triples per frame
    DdpTransport: DDP v1 framing, chunked, push flag on the last chunk

Protocol (raw):
    payload = pixel_count * 3 bytes, R G B per pixel in physical order.
    No header, no acknowledgment, no sequence numbering: the latest frame
    wins and frames are dropped on congestion.

Protocol (DDP):
    10-byte header + up to 480 pixels of RGB data per datagram:
        [0]   flags  0x40 (v1) | 0x01 (push, last chunk only)
        [1]   sequence (0 = unused)
        [2]   data type 0x01 (RGB, 8 bit)
        [3]   destination id 0x01 (display)
        [4:8] data offset in bytes, big-endian
        [8:10] data length in bytes, big-endian

Sends are fire-and-forget. Failures raise TransportError; the engine
catches them per device and simply re-sends current state next frame.

Example:
    transport = create_transport("raw")
    transport.send("192.168.1.50", payload)
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
import logging
import socket
import struct
import threading
import time

logger = logging.getLogger(__name__)

# WLED UDP raw realtime port
UDP_RAW_PORT = 19446
# DDP (Distributed Display Protocol) port
DDP_PORT = 4048

DDP_HEADER_SIZE = 10
DDP_MAX_PIXELS_PER_PACKET = 480
DDP_FLAG_VER1 = 0x40
DDP_FLAG_PUSH = 0x01
DDP_TYPE_RGB = 0x01
DDP_ID_DISPLAY = 0x01

# Seconds before a failed hostname lookup is attempted again
RESOLVE_RETRY_INTERVAL = 30.0


class TransportError(OSError):
    """Base exception for device transport errors."""
    pass


class AddressResolutionError(TransportError):
    """Device address could not be resolved."""
    pass


class DeviceTransport(ABC):
    """
    Abstract base class for device frame transports.

    Implementations must never block for long: they are called once per
    device per frame from the frame scheduler thread.
    """

    default_port: int = 0
    protocol: str = ""

    def __init__(self, port: Optional[int] = None):
        self.port = port or self.default_port
        self._address_cache: Dict[str, str] = {}
        self._failed_lookups: Dict[str, Tuple[float, str]] = {}
        self.resolve_retry_interval = RESOLVE_RETRY_INTERVAL
        self._cache_lock = threading.Lock()
        self._sock: Optional[socket.socket] = None
        self._sock_lock = threading.Lock()
        self.frames_sent = 0
        self.send_errors = 0

    def _socket(self) -> socket.socket:
        with self._sock_lock:
            if self._sock is None:
                self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
                self._sock.setblocking(False)
            return self._sock

    def resolve(self, address: str) -> str:
        """
        Resolve a hostname once and cache the result.

        A failed lookup is remembered for resolve_retry_interval seconds;
        until then the address fails fast instead of blocking the frame
        thread on the resolver again.

        Raises:
            AddressResolutionError: If the name cannot be resolved
        """
        if not isinstance(address, str) or not address:
            raise AddressResolutionError(f"Invalid device address: {address!r}")
        with self._cache_lock:
            cached = self._address_cache.get(address)
            failure = self._failed_lookups.get(address)
        if cached:
            return cached
        now = time.monotonic()
        if failure is not None and now < failure[0]:
            raise AddressResolutionError(f"Cannot resolve {address}: {failure[1]} "
                                         f"(retry in {failure[0] - now:.1f}s)")
        try:
            resolved = socket.gethostbyname(address)
        except (socket.gaierror, UnicodeError, ValueError) as e:
            with self._cache_lock:
                self._failed_lookups[address] = (now + self.resolve_retry_interval, str(e))
            logger.warning(f"Cannot resolve {address}: {e}; retrying in {self.resolve_retry_interval:g}s")
            raise AddressResolutionError(f"Cannot resolve {address}: {e}")
        with self._cache_lock:
            self._address_cache[address] = resolved
            self._failed_lookups.pop(address, None)
        return resolved

    def _sendto(self, datagram: bytes, target: Tuple[str, int]) -> None:
        try:
            self._socket().sendto(datagram, target)
        except (OSError, OverflowError, TypeError) as e:
            self.send_errors += 1
            raise TransportError(f"Failed to send to {target[0]}:{target[1]}: {e}")

    @abstractmethod
    def send(self, address: str, payload: bytes, port: Optional[int] = None) -> None:
        """
        Send one frame of RGB data to a device.

        Args:
            address: Device IP address or hostname
            payload: pixel_count * 3 bytes, RGB in physical pixel order
            port: Optional per-device port override

        Raises:
            TransportError: If the frame could not be handed to the network
        """
        pass

    def close(self) -> None:
        with self._sock_lock:
            if self._sock is not None:
                self._sock.close()
                self._sock = None

    def get_status(self) -> Dict[str, Any]:
        return {
            "protocol": self.protocol,
            "port": self.port,
            "frames_sent": self.frames_sent,
            "send_errors": self.send_errors,
        }


class UdpRawTransport(DeviceTransport):
    """Headerless RGB datagrams"""

    default_port = UDP_RAW_PORT
    protocol = "raw"

    def send(self, address: str, payload: bytes, port: Optional[int] = None) -> None:
        target = (self.resolve(address), port or self.port)
        self._sendto(bytes(payload), target)
        self.frames_sent += 1


class DdpTransport(DeviceTransport):
    """
    DDP v1 transport.

    Frames larger than one packet are split; only the final chunk carries
    the push flag so the controller shows the frame once it is complete.
    """

    default_port = DDP_PORT
    protocol = "ddp"

    def __init__(self, port: Optional[int] = None,
                 max_pixels_per_packet: int = DDP_MAX_PIXELS_PER_PACKET):
        super().__init__(port)
        self.max_pixels_per_packet = max(1, max_pixels_per_packet)

    @staticmethod
    def build_header(offset: int, length: int, push: bool) -> bytes:
        flags = DDP_FLAG_VER1 | (DDP_FLAG_PUSH if push else 0)
        return struct.pack(">BBBBIH", flags, 0, DDP_TYPE_RGB, DDP_ID_DISPLAY, offset, length)

    def build_packets(self, payload: bytes):
        """Split one frame into DDP datagrams"""
        data = bytes(payload)
        chunk_size = self.max_pixels_per_packet * 3
        if not data:
            return [self.build_header(0, 0, True)]
        packets = []
        for offset in range(0, len(data), chunk_size):
            chunk = data[offset:offset + chunk_size]
            last = offset + chunk_size >= len(data)
            packets.append(self.build_header(offset, len(chunk), last) + chunk)
        return packets

    def send(self, address: str, payload: bytes, port: Optional[int] = None) -> None:
        target = (self.resolve(address), port or self.port)
        for packet in self.build_packets(payload):
            self._sendto(packet, target)
        self.frames_sent += 1


# ============================================================
# Factory Function
# ============================================================

def create_transport(protocol: str = "raw", **kwargs: Any) -> DeviceTransport:
    """
    Create a device transport instance.

    Args:
        protocol: Transport protocol ("raw" or "ddp")
        **kwargs: Transport-specific options

    Returns:
        DeviceTransport instance

    Raises:
        ValueError: If protocol unknown
    """
    if protocol == "raw":
        return UdpRawTransport(**kwargs)
    if protocol == "ddp":
        return DdpTransport(**kwargs)

    raise ValueError(f"Unknown transport protocol: {protocol}")
