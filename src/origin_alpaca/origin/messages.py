from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

TYPE_COMMAND = "Command"
TYPE_RESPONSE = "Response"
TYPE_NOTIFICATION = "Notification"

DEST_MOUNT = "Mount"
DEST_CAMERA = "Camera"
DEST_ENVIRONMENT = "Environment"
DEST_TASK_CONTROLLER = "TaskController"
DEST_LIVE_STREAM = "LiveStream"

SOURCE_IMAGE_SERVER = "ImageServer"

CMD_GOTO_RA_DEC = "GotoRaDec"
CMD_SYNC_TO_RA_DEC = "SyncToRaDec"
CMD_ABORT_AXIS_MOVEMENT = "AbortAxisMovement"
CMD_PARK = "Park"
CMD_UNPARK = "Unpark"
CMD_RUN_INITIALIZE = "RunInitialize"
CMD_MOVE_AXIS = "MoveAxis"
CMD_START_TRACKING = "StartTracking"
CMD_STOP_TRACKING = "StopTracking"
CMD_GET_STATUS = "GetStatus"
CMD_RUN_SAMPLE_CAPTURE = "RunSampleCapture"
CMD_RUN_IMAGING = "RunImaging"
CMD_CANCEL_IMAGING = "CancelImaging"
CMD_ABORT_EXPOSURE = "AbortExposure"
CMD_SET_CAPTURE_PARAMETERS = "SetCaptureParameters"
CMD_GET_CAPTURE_PARAMETERS = "GetCaptureParameters"
CMD_SET_ENABLE_MANUAL = "SetEnableManual"
CMD_SET_ENABLE_AUTO = "SetEnableAuto"
CMD_GET_ENABLE_MANUAL = "GetEnableManual"
CMD_GET_CAMERA_INFO = "GetCameraInfo"
CMD_NEW_IMAGE_READY = "NewImageReady"

CAMERA_MODE_COMMANDS = frozenset({CMD_GET_ENABLE_MANUAL, CMD_SET_ENABLE_MANUAL, CMD_SET_ENABLE_AUTO})

_ENVELOPE_KEYS = ("Command", "Destination", "SequenceID", "Source", "Type")


def build_command(
    command: str,
    destination: str,
    sequence_id: int,
    *,
    source: str,
    params: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Assemble an outgoing command envelope with parameters merged at top level."""
    envelope: dict[str, Any] = {
        "Command": command,
        "Destination": destination,
        "SequenceID": sequence_id,
        "Source": source,
        "Type": TYPE_COMMAND,
    }
    for key, value in (params or {}).items():
        if key in _ENVELOPE_KEYS:
            raise ValueError(f"Parameter {key!r} collides with an envelope field")
        envelope[key] = value
    return envelope


def encode_command(envelope: Mapping[str, Any]) -> str:
    return json.dumps(envelope, separators=(",", ":"))


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    return default


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


@dataclass(frozen=True)
class InboundMessage:
    """A decoded device frame, either a Response or a Notification."""

    command: str
    type: str
    source: str
    error_code: int = 0
    error_message: str = ""
    sequence_id: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_response(self) -> bool:
        return self.type == TYPE_RESPONSE

    @property
    def is_notification(self) -> bool:
        return self.type == TYPE_NOTIFICATION

    @property
    def failed(self) -> bool:
        return self.is_response and self.error_code != 0

    def has(self, key: str) -> bool:
        return key in self.payload

    def get_float(self, key: str, default: float = 0.0) -> float:
        return _as_float(self.payload.get(key), default)

    def get_int(self, key: str, default: int = 0) -> int:
        return _as_int(self.payload.get(key), default)

    def get_str(self, key: str, default: str = "") -> str:
        return _as_str(self.payload.get(key), default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.payload.get(key)
        return value if isinstance(value, bool) else default


def parse_message(raw: str | bytes) -> InboundMessage | None:
    """Decode an inbound frame; anything that is not a JSON object yields None."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    raw_sequence = data.get("SequenceID")
    sequence_id = _as_int(raw_sequence, -1) if raw_sequence is not None else None
    if sequence_id is not None and sequence_id < 0:
        sequence_id = None

    return InboundMessage(
        command=_as_str(data.get("Command")),
        type=_as_str(data.get("Type")),
        source=_as_str(data.get("Source")),
        error_code=_as_int(data.get("ErrorCode")),
        error_message=_as_str(data.get("ErrorMessage")),
        sequence_id=sequence_id,
        payload=data,
    )


__all__ = [
    "InboundMessage",
    "build_command",
    "encode_command",
    "parse_message",
]
