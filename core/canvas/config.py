"""
Engine Configuration - Environment-based with sensible defaults

    LUMEN_TARGET_FPS          frame rate of the scheduler (30)
    LUMEN_BOUNDS_PADDING      world units added around the canvas (100)
    LUMEN_PROTOCOL            device transport, "raw" or "ddp" (raw)
    LUMEN_DEVICE_PORT         UDP port override (protocol default)
    LUMEN_API_PORT            REST / Socket.IO port (8892)
    LUMEN_INSTALLATION_FILE   installation JSON (~/lumen-installation.json)
    LUMEN_PREVIEW_EMIT_FPS    max Socket.IO preview rate (10)
    LUMEN_CORS_ORIGINS        extra comma-separated CORS origins
    LUMEN_LOG_LEVEL           root log level (INFO)
    LUMEN_LOG_DIR             audit log directory (~/lumen-logs)
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .transport import DDP_PORT, UDP_RAW_PORT

PROTOCOL_PORTS = {
    "raw": UDP_RAW_PORT,
    "ddp": DDP_PORT,
}

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8892",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8892",
]


def _split_origins(value: str) -> List[str]:
    origins = list(DEFAULT_CORS_ORIGINS)
    for origin in value.split(","):
        origin = origin.strip()
        if origin and origin not in origins:
            origins.append(origin)
    return origins


@dataclass
class EngineConfig:
    """Runtime settings of the canvas engine and its API"""
    target_fps: int = 30
    bounds_padding: float = 100.0
    protocol: str = "raw"
    device_port: Optional[int] = None
    api_port: int = 8892
    installation_file: str = "~/lumen-installation.json"
    preview_emit_fps: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"
    log_dir: str = "~/lumen-logs"

    def __post_init__(self):
        """Validate configuration"""
        if self.target_fps <= 0:
            raise ValueError(f"target_fps must be > 0, got {self.target_fps}")
        if self.bounds_padding < 0:
            raise ValueError(f"bounds_padding must be >= 0, got {self.bounds_padding}")
        if self.protocol not in PROTOCOL_PORTS:
            raise ValueError(f"protocol must be one of {sorted(PROTOCOL_PORTS)}, got {self.protocol!r}")
        if self.device_port is not None and not 0 < self.device_port < 65536:
            raise ValueError(f"device_port out of range: {self.device_port}")
        if not 0 < self.api_port < 65536:
            raise ValueError(f"api_port out of range: {self.api_port}")
        if self.preview_emit_fps <= 0:
            raise ValueError(f"preview_emit_fps must be > 0, got {self.preview_emit_fps}")
        level = logging.getLevelName(self.log_level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {self.log_level}")
        self.log_level = self.log_level.upper()

    @property
    def resolved_device_port(self) -> int:
        return self.device_port or PROTOCOL_PORTS[self.protocol]

    @property
    def installation_path(self) -> str:
        return os.path.expanduser(self.installation_file)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a config from LUMEN_* environment variables.

        Raises:
            ValueError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        device_port = env.get("LUMEN_DEVICE_PORT", "")
        return cls(
            target_fps=int(env.get("LUMEN_TARGET_FPS", 30)),
            bounds_padding=float(env.get("LUMEN_BOUNDS_PADDING", 100.0)),
            protocol=env.get("LUMEN_PROTOCOL", "raw").strip().lower(),
            device_port=int(device_port) if device_port else None,
            api_port=int(env.get("LUMEN_API_PORT", 8892)),
            installation_file=env.get("LUMEN_INSTALLATION_FILE", "~/lumen-installation.json"),
            preview_emit_fps=float(env.get("LUMEN_PREVIEW_EMIT_FPS", 10.0)),
            cors_origins=_split_origins(env.get("LUMEN_CORS_ORIGINS", "")),
            log_level=env.get("LUMEN_LOG_LEVEL", "INFO"),
            log_dir=env.get("LUMEN_LOG_DIR", "~/lumen-logs"),
        )
