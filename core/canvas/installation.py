"""
Installation - Persistent layout of devices and animation regions

An installation is the base canvas size, the placed devices, the saved
camera, and the animation regions that were active when it was saved.
It is stored as one JSON document:

    {
        "id": "...", "name": "Living room",
        "width": 1000.0, "height": 1000.0,
        "camera_x": null, "camera_y": null, "camera_zoom": 1.0,
        "devices": [{...Device.to_dict()...}],
        "animations": [{"id": "...", "type": "rainbow",
                        "rect": {...}, "rotation": 0.0,
                        "params": {"palette": "Ocean", "speed": 0.2}}]
    }

Saved animations are recreated through animations.create_animation().
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .animations import Animation, create_animation
from .types import Device, Rect, Region

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1000.0
DEFAULT_HEIGHT = 1000.0


@dataclass
class SavedAnimation:
    """Serialised region: geometry plus producer type and parameters"""
    type: str
    rect: Rect
    rotation: float = 0.0
    params: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_region(cls, region: Region) -> "SavedAnimation":
        animation = region.animation
        animation_type = region.animation_type or getattr(animation, "type_name", "")
        params = animation.get_params() if hasattr(animation, "get_params") else {}
        return cls(type=animation_type, rect=region.rect, rotation=region.rotation,
                   params=dict(params), id=region.id)

    def create(self) -> Animation:
        """
        Raises:
            ValueError: If the type is unknown or the parameters invalid
        """
        return create_animation(self.type, **self.params)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "rect": self.rect.to_dict(),
            "rotation": self.rotation,
            "params": self.params,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedAnimation":
        return cls(
            type=data["type"],
            rect=Rect.from_dict(data.get("rect", {})),
            rotation=float(data.get("rotation", 0.0)),
            params=dict(data.get("params") or {}),
            id=data.get("id") or uuid.uuid4().hex,
        )


@dataclass
class Installation:
    """Base canvas, devices and saved regions"""
    name: str = "Installation"
    width: float = DEFAULT_WIDTH
    height: float = DEFAULT_HEIGHT
    devices: List[Device] = field(default_factory=list)
    animations: List[SavedAnimation] = field(default_factory=list)
    camera_x: Optional[float] = None
    camera_y: Optional[float] = None
    camera_zoom: float = 1.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        """Validate configuration"""
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Installation size must be positive, got {self.width}x{self.height}")
        if self.camera_zoom <= 0:
            raise ValueError(f"camera_zoom must be > 0, got {self.camera_zoom}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "camera_x": self.camera_x,
            "camera_y": self.camera_y,
            "camera_zoom": self.camera_zoom,
            "devices": [d.to_dict() for d in self.devices],
            "animations": [a.to_dict() for a in self.animations],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Installation":
        kwargs: Dict[str, Any] = {
            "name": data.get("name", "Installation"),
            "width": float(data.get("width", DEFAULT_WIDTH)),
            "height": float(data.get("height", DEFAULT_HEIGHT)),
            "devices": [Device.from_dict(d) for d in data.get("devices", [])],
            "animations": [SavedAnimation.from_dict(a) for a in data.get("animations", [])],
            "camera_x": data.get("camera_x"),
            "camera_y": data.get("camera_y"),
            "camera_zoom": float(data.get("camera_zoom", 1.0)),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


class InstallationStore:
    """Loads and saves one installation JSON file"""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Installation:
        """
        Load the installation, or a default one if the file is missing.

        Raises:
            ValueError: If the file exists but is not a valid installation
        """
        if not self.exists():
            logger.info(f"No installation at {self.path}, starting with an empty canvas")
            return Installation()
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            installation = Installation.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Invalid installation file {self.path}: {e}")
        logger.info(
            f"Loaded installation '{installation.name}' "
            f"({len(installation.devices)} devices, {len(installation.animations)} animations)"
        )
        return installation

    def save(self, installation: Installation) -> None:
        """Write atomically through a temporary file next to the target"""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(installation.to_dict(), f, indent=2)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved installation to {self.path}")
