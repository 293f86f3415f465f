"""Aggregation of mount and environment status payloads.

Both ``GetStatus`` responses and the unsolicited status notifications carry the
same flat fields. Only fields present in a payload overwrite the cached values.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional

import structlog

from .messages import DEST_ENVIRONMENT, DEST_MOUNT, InboundMessage

logger = structlog.get_logger(__name__)

_MOUNT_FIELDS = {
    "IsTracking": ("is_tracking", bool),
    "IsGotoOver": ("is_goto_over", bool),
    "IsAligned": ("is_aligned", bool),
    "Enc0": ("enc0", float),
    "Enc1": ("enc1", float),
}

_ENVIRONMENT_FIELDS = {
    "AmbientTemperature": ("ambient_temperature", float),
    "CameraTemperature": ("camera_temperature", float),
    "Humidity": ("humidity", float),
    "DewPoint": ("dew_point", float),
}


@dataclass(frozen=True)
class MountTelemetry:
    is_tracking: bool = False
    is_goto_over: bool = True
    is_aligned: bool = False
    enc0: float = 0.0
    enc1: float = 0.0


@dataclass(frozen=True)
class EnvironmentTelemetry:
    ambient_temperature: float = 20.0
    camera_temperature: Optional[float] = None
    humidity: Optional[float] = None
    dew_point: Optional[float] = None


@dataclass(frozen=True)
class TelemetrySnapshot:
    mount: MountTelemetry = field(default_factory=MountTelemetry)
    environment: EnvironmentTelemetry = field(default_factory=EnvironmentTelemetry)


def _extract(payload: dict[str, Any], fields: dict[str, tuple[str, type]]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for key, (attribute, kind) in fields.items():
        if key not in payload:
            continue
        value = payload[key]
        if kind is bool:
            if isinstance(value, bool):
                changes[attribute] = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            changes[attribute] = float(value)
    return changes


class TelemetryProcessor:
    def __init__(self) -> None:
        self._snapshot = TelemetrySnapshot()

    @property
    def snapshot(self) -> TelemetrySnapshot:
        return self._snapshot

    def process(self, message: InboundMessage) -> bool:
        """Fold a status payload into the snapshot; True when it carried known fields."""
        if message.source == DEST_MOUNT:
            changes = _extract(message.payload, _MOUNT_FIELDS)
            if not changes:
                return False
            self._snapshot = replace(self._snapshot, mount=replace(self._snapshot.mount, **changes))
            logger.debug("origin.telemetry.mount", **changes)
            return True

        if message.source == DEST_ENVIRONMENT:
            changes = _extract(message.payload, _ENVIRONMENT_FIELDS)
            if not changes:
                return False
            self._snapshot = replace(
                self._snapshot,
                environment=replace(self._snapshot.environment, **changes),
            )
            logger.debug("origin.telemetry.environment", **changes)
            return True

        return False

    def reset(self) -> None:
        self._snapshot = TelemetrySnapshot()


__all__ = [
    "EnvironmentTelemetry",
    "MountTelemetry",
    "TelemetryProcessor",
    "TelemetrySnapshot",
]
