from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


class CameraState(enum.IntEnum):
    IDLE = 0
    EXPOSING = 1
    READING = 2
    ERROR = 3


OPERATION_IDLE = "Idle"
OPERATION_SLEWING = "Slewing"
OPERATION_TRACKING = "Tracking"
OPERATION_PARKING = "Parking"
OPERATION_UNPARKING = "Unparking"
OPERATION_INITIALIZING = "Initializing"

# Alt/Az are not derived from encoder data yet; these are reported as-is.
PLACEHOLDER_ALTITUDE = 45.0
PLACEHOLDER_AZIMUTH = 180.0


@dataclass(frozen=True)
class TelescopeStatus:
    """Snapshot of the mount as last observed; replaced on every change."""

    alt_position: float = 0.0
    az_position: float = 0.0
    ra_position: float = 0.0
    dec_position: float = 0.0
    is_connected: bool = False
    is_logically_connected: bool = False
    is_camera_logically_connected: bool = False
    is_slewing: bool = False
    is_tracking: bool = False
    is_parked: bool = False
    is_aligned: bool = False
    current_operation: str = OPERATION_IDLE
    temperature: float = 20.0

    def __post_init__(self) -> None:
        if not self.is_connected and (self.is_logically_connected or self.is_camera_logically_connected):
            raise ValueError("logical connection requires a physical connection")


@dataclass
class ExposureRecord:
    duration: float = 0.0
    gain: int = 200
    start_time: Optional[str] = None
    data: bytes = field(default=b"", repr=False)
    image_format: Optional[str] = None


@dataclass(frozen=True)
class ImageNotificationMetadata:
    file_path: str = ""
    ra: float = 0.0
    dec: float = 0.0
    exposure: float = 0.0


@dataclass(frozen=True)
class CommandError:
    command: str
    code: int
    message: str
    sequence_id: Optional[int] = None
