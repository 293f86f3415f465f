from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import numpy as np
import structlog

from ..config.settings import Settings
from . import messages
from .camera import CameraStateMachine
from .commands import CommandDispatcher
from .events import (
    CameraInfoReceived,
    CameraModeChanged,
    CaptureParametersChanged,
    CommandFailed,
    Connected,
    Disconnected,
    EventBus,
    ExposureComplete,
    ExposureStarted,
    ImageReady,
    LiveImageDownloaded,
    SnapshotRequested,
    StatusUpdated,
)
from .http_client import OriginHttpClient
from .images import ImagePipeline
from .messages import InboundMessage, parse_message
from .polling import StatusPoller
from .state import (
    OPERATION_IDLE,
    OPERATION_INITIALIZING,
    OPERATION_PARKING,
    OPERATION_SLEWING,
    OPERATION_TRACKING,
    OPERATION_UNPARKING,
    PLACEHOLDER_ALTITUDE,
    PLACEHOLDER_AZIMUTH,
    CameraState,
    CommandError,
    ExposureRecord,
    ImageNotificationMetadata,
    TelescopeStatus,
)
from .telemetry import TelemetryProcessor
from .units import degrees_to_radians, hours_to_radians, radians_to_degrees, radians_to_hours
from .ws_client import OriginWsClient

logger = structlog.get_logger(__name__)

# direction code -> (axis, direction)
_MOVE_DIRECTIONS = {
    0: ("Dec", "Positive"),
    1: ("Dec", "Negative"),
    2: ("Ra", "Positive"),
    3: ("Ra", "Negative"),
}


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class OriginSession:
    """Coordinates the Origin websocket, status model, camera and image downloads.

    Every operation that talks to the device returns False without side effects
    when the socket is down, and True as soon as the command has been written.
    Results of the device's work arrive later as events on ``self.events``.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.events = EventBus()
        self._ws_client = OriginWsClient(
            path=settings.origin_ws_path,
            ping_interval=settings.ws_ping_interval_seconds,
        )
        self._ws_client.register_message_handler(self._handle_frame)
        self._ws_client.register_close_handler(self._handle_transport_closed)
        self._dispatcher = CommandDispatcher(
            self._ws_client,
            source=settings.command_source,
            sequence_base=settings.sequence_id_base,
            pending_limit=settings.pending_command_limit,
        )
        self._poller = StatusPoller(self._dispatcher, interval=settings.status_poll_interval_seconds)
        self._http_client = OriginHttpClient(
            settings.origin_host,
            image_path=settings.origin_image_path,
            timeout=settings.http_timeout_seconds,
        )
        self._images = ImagePipeline(self._http_client, self.events)
        self._telemetry = TelemetryProcessor()
        self.camera = CameraStateMachine(self.events)

        self._status = TelescopeStatus()
        self.exposure = ExposureRecord(gain=settings.default_iso)
        self.image_metadata = ImageNotificationMetadata()
        self.last_error: Optional[CommandError] = None
        self._connected_host: Optional[str] = None
        self._camera_manual_mode = False
        self._current_exposure = settings.default_exposure_seconds
        self._current_iso = settings.default_iso
        self._imaging_session: Optional[str] = None
        self._imaging_active = False
        self._download_tasks: set[asyncio.Task[None]] = set()

    # --- Connection ----------------------------------------------------------------

    async def connect(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> bool:
        """Open the control socket, waiting at most ``timeout`` seconds for it."""
        if self.is_connected():
            logger.debug("origin.session.already_connected", host=self._connected_host)
            return True

        host = host or self.settings.origin_host
        port = port if port is not None else self.settings.origin_port
        if timeout is None:
            timeout = self.settings.connect_timeout_seconds

        if not await self._ws_client.connect(host, port, timeout=timeout):
            return False

        self._connected_host = host
        await self._http_client.set_host(host)
        self._update_status(is_connected=True)
        self._poller.start()
        await self.send_command(messages.CMD_GET_STATUS, messages.DEST_MOUNT)
        logger.info("origin.session.connected", host=host, port=port)
        self.events.emit(Connected(host=host, port=port))
        return self.is_connected()

    async def disconnect(self) -> None:
        await self._poller.stop()
        await self._ws_client.close()
        self._clear_connection()
        logger.info("origin.session.disconnected", host=self._connected_host)
        self.events.emit(Disconnected(reason="requested"))

    async def _handle_transport_closed(self, reason: str) -> None:
        await self._poller.stop()
        self._clear_connection()
        logger.warning("origin.session.connection_lost", host=self._connected_host, reason=reason)
        self.events.emit(Disconnected(reason=reason))

    def _clear_connection(self) -> None:
        self._update_status(
            is_connected=False,
            is_logically_connected=False,
            is_camera_logically_connected=False,
        )

    def is_connected(self) -> bool:
        return self._ws_client.connected

    def is_logically_connected(self) -> bool:
        return self.is_connected() and self._status.is_logically_connected

    def set_connected(self, connected: bool) -> bool:
        if connected and not (self.is_connected() and self._status.is_connected):
            logger.warning("origin.session.logical_connect_rejected", reason="not_connected")
            return False
        self._update_status(is_logically_connected=connected)
        logger.debug("origin.session.logical_connection", connected=connected)
        return True

    def set_camera_connected(self, connected: bool) -> bool:
        if connected and not (self.is_connected() and self._status.is_connected):
            logger.warning("origin.camera.logical_connect_rejected", reason="not_connected")
            return False
        self._update_status(is_camera_logically_connected=connected)
        logger.debug("origin.camera.logical_connection", connected=connected)
        return True

    @property
    def connected_host(self) -> Optional[str]:
        return self._connected_host

    async def shutdown(self) -> None:
        tasks = list(self._download_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._download_tasks.clear()
        if self.is_connected() or self._status.is_connected:
            await self.disconnect()
        await self._http_client.aclose()

    # --- Commands ------------------------------------------------------------------

    async def send_command(
        self,
        command: str,
        destination: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Optional[int]:
        return await self._dispatcher.send(command, destination, params)

    async def _send(
        self,
        command: str,
        destination: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        return await self.send_command(command, destination, params) is not None

    @property
    def pending_commands(self) -> dict[int, str]:
        return self._dispatcher.pending

    # --- Status --------------------------------------------------------------------

    @property
    def status(self) -> TelescopeStatus:
        return self._status

    @property
    def temperature(self) -> float:
        return self._status.temperature

    @property
    def is_tracking(self) -> bool:
        return self._status.is_tracking

    def _update_status(self, **changes: Any) -> None:
        self._status = replace(self._status, **changes)
        self.events.emit(StatusUpdated(self._status))

    def _apply_telemetry(self) -> None:
        snapshot = self._telemetry.snapshot
        mount = snapshot.mount
        is_slewing = not mount.is_goto_over
        if is_slewing:
            operation = OPERATION_SLEWING
        elif mount.is_tracking:
            operation = OPERATION_TRACKING
        else:
            operation = OPERATION_IDLE
        self._update_status(
            is_tracking=mount.is_tracking,
            is_slewing=is_slewing,
            is_aligned=mount.is_aligned,
            ra_position=radians_to_hours(mount.enc0),
            dec_position=radians_to_degrees(mount.enc1),
            alt_position=PLACEHOLDER_ALTITUDE,
            az_position=PLACEHOLDER_AZIMUTH,
            temperature=snapshot.environment.ambient_temperature,
            current_operation=operation,
        )

    # --- Message routing -----------------------------------------------------------

    async def _handle_frame(self, payload: str) -> None:
        message = parse_message(payload)
        if message is None:
            logger.debug("origin.message.discarded", size=len(payload))
            return

        if message.is_response:
            sent_command = self._dispatcher.resolve(message.sequence_id)
            if message.failed:
                self._handle_command_error(message, sent_command)
                return

        if self._telemetry.process(message):
            self._apply_telemetry()

        if message.is_notification and message.command == messages.CMD_NEW_IMAGE_READY:
            self._handle_new_image_ready(message)
        elif message.is_response:
            self._handle_response(message)

    def _handle_command_error(self, message: InboundMessage, sent_command: Optional[str]) -> None:
        command = message.command or sent_command or ""
        error = CommandError(
            command=command,
            code=message.error_code,
            message=message.error_message,
            sequence_id=message.sequence_id,
        )
        self.last_error = error
        logger.warning(
            "origin.command.error",
            command=command,
            code=message.error_code,
            error_message=message.error_message,
            sequence_id=message.sequence_id,
        )
        self.events.emit(
            CommandFailed(
                command=command,
                code=error.code,
                message=error.message,
                sequence_id=error.sequence_id,
            )
        )

    def _handle_response(self, message: InboundMessage) -> None:
        command = message.command
        if command == messages.CMD_RUN_SAMPLE_CAPTURE:
            logger.debug("origin.camera.capture_acknowledged", sequence_id=message.sequence_id)
        elif command == messages.CMD_GET_CAPTURE_PARAMETERS:
            self._current_exposure = message.get_float("Exposure")
            self._current_iso = message.get_int("ISO")
            self.events.emit(CaptureParametersChanged(self._current_exposure, self._current_iso))
        elif command in messages.CAMERA_MODE_COMMANDS:
            if message.has("IsManual"):
                self._camera_manual_mode = message.get_bool("IsManual")
                logger.info("origin.camera.mode", manual=self._camera_manual_mode)
                self.events.emit(CameraModeChanged(self._camera_manual_mode))
        elif command == messages.CMD_GET_CAMERA_INFO:
            camera_id = message.get_str("CameraID")
            model = message.get_str("CameraModel")
            logger.info("origin.camera.info", camera_id=camera_id, model=model)
            self.events.emit(CameraInfoReceived(camera_id, model))

    def _handle_new_image_ready(self, message: InboundMessage) -> None:
        file_path = message.get_str("FileLocation")
        if not file_path:
            logger.debug("origin.image.notification_without_path", source=message.source)
            return

        metadata = ImageNotificationMetadata(
            file_path=file_path,
            ra=message.get_float("Ra"),
            dec=message.get_float("Dec"),
            exposure=message.get_float("ExposureTime"),
        )
        self.image_metadata = metadata

        # An exposure result is taken whatever its format; only plain live frames are filtered.
        exposure_driven = self.camera.image_available()
        if not exposure_driven and self._images.should_suppress(file_path):
            logger.debug("origin.image.live_frame_skipped", path=file_path, reason="snapshot_in_flight")
            return

        logger.info(
            "origin.image.ready",
            path=file_path,
            ra_hours=radians_to_hours(metadata.ra),
            dec_degrees=radians_to_degrees(metadata.dec),
            exposure=metadata.exposure,
            exposure_driven=exposure_driven,
        )
        if exposure_driven:
            self.events.emit(ExposureComplete(file_path))
        self._start_download(metadata, exposure_driven=exposure_driven)

    def _start_download(self, metadata: ImageNotificationMetadata, *, exposure_driven: bool) -> None:
        task = asyncio.create_task(self._acquire_image(metadata, exposure_driven=exposure_driven))
        self._download_tasks.add(task)
        task.add_done_callback(self._download_tasks.discard)

    async def _acquire_image(self, metadata: ImageNotificationMetadata, *, exposure_driven: bool) -> None:
        result = await self._images.download(metadata, suppress_live=exposure_driven)
        if not exposure_driven:
            return
        if result is None:
            self.camera.download_failed()
            return
        self.exposure.data = result.content
        self.exposure.image_format = result.image_format.value
        self._images.image_ready = True
        self.camera.download_succeeded()
        self.events.emit(ImageReady(metadata.file_path))

    # --- Telescope -----------------------------------------------------------------

    async def goto_position(self, ra_hours: float, dec_degrees: float) -> bool:
        params = {
            "Ra": hours_to_radians(ra_hours),
            "Dec": degrees_to_radians(dec_degrees),
        }
        if not await self._send(messages.CMD_GOTO_RA_DEC, messages.DEST_MOUNT, params):
            logger.warning("origin.telescope.goto_rejected", reason="not_connected")
            return False
        logger.info("origin.telescope.goto", ra_hours=ra_hours, dec_degrees=dec_degrees)
        self._update_status(is_slewing=True, current_operation=OPERATION_SLEWING)
        return True

    async def sync_position(self, ra_hours: float, dec_degrees: float) -> bool:
        params = {
            "Ra": hours_to_radians(ra_hours),
            "Dec": degrees_to_radians(dec_degrees),
        }
        if not await self._send(messages.CMD_SYNC_TO_RA_DEC, messages.DEST_MOUNT, params):
            logger.warning("origin.telescope.sync_rejected", reason="not_connected")
            return False
        logger.info("origin.telescope.sync", ra_hours=ra_hours, dec_degrees=dec_degrees)
        return True

    async def abort_motion(self) -> bool:
        if not await self._send(messages.CMD_ABORT_AXIS_MOVEMENT, messages.DEST_MOUNT):
            return False
        self._update_status(is_slewing=False, current_operation=OPERATION_IDLE)
        return True

    async def park_mount(self) -> bool:
        if not await self._send(messages.CMD_PARK, messages.DEST_MOUNT):
            return False
        self._update_status(is_parked=True, current_operation=OPERATION_PARKING)
        return True

    async def unpark_mount(self) -> bool:
        if not await self._send(messages.CMD_UNPARK, messages.DEST_MOUNT):
            return False
        self._update_status(is_parked=False, current_operation=OPERATION_UNPARKING)
        return True

    async def initialize_telescope(self) -> bool:
        now = datetime.now(timezone.utc)
        params = {
            "Date": now.strftime("%d %m %Y"),
            "Time": now.strftime("%H:%M:%S"),
            "TimeZone": self.settings.site_timezone,
            "Latitude": degrees_to_radians(self.settings.site_latitude_degrees),
            "Longitude": degrees_to_radians(self.settings.site_longitude_degrees),
            "FakeInitialize": False,
        }
        if not await self._send(messages.CMD_RUN_INITIALIZE, messages.DEST_TASK_CONTROLLER, params):
            return False
        self._update_status(current_operation=OPERATION_INITIALIZING)
        return True

    async def move_direction(self, direction: int, speed: int) -> bool:
        """Nudge the mount: 0 north, 1 south, 2 east, 3 west; speed is 0-100."""
        if not self.is_connected():
            return False
        mapping = _MOVE_DIRECTIONS.get(direction)
        if mapping is None:
            logger.warning("origin.telescope.move_invalid_direction", direction=direction)
            return False
        axis, sense = mapping
        params = {"Axis": axis, "Direction": sense, "Speed": speed}
        return await self._send(messages.CMD_MOVE_AXIS, messages.DEST_MOUNT, params)

    async def set_tracking(self, enabled: bool) -> bool:
        command = messages.CMD_START_TRACKING if enabled else messages.CMD_STOP_TRACKING
        if not await self._send(command, messages.DEST_MOUNT):
            return False
        self._update_status(is_tracking=enabled)
        return True

    # --- Camera --------------------------------------------------------------------

    @property
    def camera_state(self) -> CameraState:
        return self.camera.state

    @property
    def snapshot_in_progress(self) -> bool:
        return self._images.snapshot_in_flight

    @property
    def is_camera_exposing(self) -> bool:
        return self.camera.is_exposing

    @property
    def is_exposing(self) -> bool:
        return self.camera.is_exposing or self._imaging_active

    @property
    def is_image_ready(self) -> bool:
        return self._images.image_ready

    @property
    def last_image(self) -> Optional[np.ndarray]:
        return self._images.last_image

    @property
    def exposure_record(self) -> ExposureRecord:
        return self.exposure

    @property
    def last_image_data(self) -> bytes:
        return self.exposure.data

    @property
    def last_image_format(self) -> Optional[str]:
        return self.exposure.image_format

    @property
    def last_exposure_duration(self) -> float:
        return self.exposure.duration

    @property
    def last_exposure_start_time(self) -> Optional[str]:
        return self.exposure.start_time

    @property
    def current_gain(self) -> int:
        return self.exposure.gain

    @property
    def camera_manual_mode(self) -> bool:
        return self._camera_manual_mode

    @property
    def capture_parameters(self) -> tuple[float, int]:
        return self._current_exposure, self._current_iso

    def set_image_ready(self, ready: bool) -> None:
        self._images.image_ready = ready

    async def start_exposure(self, duration: float, iso: Optional[int] = None) -> bool:
        if iso is None:
            iso = self.settings.default_iso
        if not self.is_logically_connected():
            logger.warning("origin.camera.exposure_rejected", reason="not_connected")
            return False
        if not self.camera.is_idle:
            logger.warning("origin.camera.exposure_rejected", reason="busy", state=self.camera.state.name)
            return False

        params = {"ExposureTime": duration, "ISO": iso}
        if not await self._send(messages.CMD_RUN_SAMPLE_CAPTURE, messages.DEST_TASK_CONTROLLER, params):
            return False

        self.exposure = ExposureRecord(duration=duration, gain=iso, start_time=_utc_timestamp())
        self._images.image_ready = False
        self.camera.begin_exposure()
        logger.info("origin.camera.exposure_started", duration=duration, iso=iso)
        self.events.emit(ExposureStarted(duration, iso))
        return True

    async def abort_exposure(self) -> bool:
        if not self.camera.is_exposing:
            return False
        if not await self._send(messages.CMD_ABORT_EXPOSURE, messages.DEST_CAMERA):
            return False
        self.camera.abort_exposure()
        logger.info("origin.camera.exposure_aborted")
        return True

    def reset_camera(self) -> bool:
        return self.camera.reset()

    async def set_gain(self, gain: int) -> bool:
        if not self.is_logically_connected():
            return False
        self.exposure.gain = gain
        params = {"ISO": gain, "Exposure": self.exposure.duration}
        if not await self._send(messages.CMD_SET_CAPTURE_PARAMETERS, messages.DEST_CAMERA, params):
            return False
        logger.info("origin.camera.gain", gain=gain)
        return True

    async def take_snapshot(self, exposure: float, iso: int) -> bool:
        if not self.is_connected():
            logger.debug("origin.camera.snapshot_rejected", reason="not_connected")
            return False
        self._images.snapshot_in_flight = True
        params = {"ExposureTime": exposure, "ISO": iso}
        if not await self._send(messages.CMD_RUN_SAMPLE_CAPTURE, messages.DEST_TASK_CONTROLLER, params):
            self._images.snapshot_in_flight = False
            return False
        logger.info("origin.camera.snapshot_requested", exposure=exposure, iso=iso)
        self.events.emit(SnapshotRequested(exposure, iso))
        return True

    async def take_single_snapshot(self) -> bool:
        return await self.take_snapshot(self._current_exposure, self._current_iso)

    async def set_camera_manual_mode(self) -> bool:
        return await self._send(messages.CMD_SET_ENABLE_MANUAL, messages.DEST_LIVE_STREAM)

    async def set_camera_auto_mode(self) -> bool:
        return await self._send(messages.CMD_SET_ENABLE_AUTO, messages.DEST_LIVE_STREAM)

    async def get_camera_mode(self) -> bool:
        return await self._send(messages.CMD_GET_ENABLE_MANUAL, messages.DEST_LIVE_STREAM)

    async def get_capture_parameters(self) -> bool:
        return await self._send(messages.CMD_GET_CAPTURE_PARAMETERS, messages.DEST_CAMERA)

    async def set_capture_parameters(self, exposure: float, iso: int) -> bool:
        params = {"Exposure": exposure, "ISO": iso}
        return await self._send(messages.CMD_SET_CAPTURE_PARAMETERS, messages.DEST_CAMERA, params)

    async def set_camera_exposure(self, seconds: float) -> bool:
        return await self.set_capture_parameters(seconds, self._current_iso)

    async def set_camera_iso(self, iso: int) -> bool:
        return await self.set_capture_parameters(self._current_exposure, iso)

    async def get_camera_info(self) -> bool:
        return await self._send(messages.CMD_GET_CAMERA_INFO, messages.DEST_CAMERA)

    async def start_imaging(self, name: Optional[str] = None) -> bool:
        if not self.is_connected():
            return False
        session_id = str(uuid.uuid4())
        if name is None:
            name = f"AlpacaCapture_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        params = {"Name": name, "Uuid": session_id, "SaveRawImage": True}
        if not await self._send(messages.CMD_RUN_IMAGING, messages.DEST_TASK_CONTROLLER, params):
            return False
        self._imaging_session = session_id
        logger.info("origin.camera.imaging_started", name=name, uuid=session_id)
        return True

    async def cancel_imaging(self) -> bool:
        if self._imaging_session is None:
            return False
        params = {"Uuid": self._imaging_session}
        if not await self._send(messages.CMD_CANCEL_IMAGING, messages.DEST_TASK_CONTROLLER, params):
            return False
        logger.info("origin.camera.imaging_cancelled", uuid=self._imaging_session)
        self._imaging_session = None
        return True

    async def single_shot(self, gain: int, binning: int, exposure_us: int) -> Optional[np.ndarray]:
        """Run one imaging pass and return the next live frame, or None on timeout."""
        if not self.is_connected():
            logger.warning("origin.camera.single_shot_rejected", reason="not_connected")
            return None

        exposure_seconds = exposure_us / 1_000_000.0
        params = {"ISO": gain, "Binning": binning, "Exposure": exposure_seconds}
        if not await self._send(messages.CMD_SET_CAPTURE_PARAMETERS, messages.DEST_CAMERA, params):
            return None
        await asyncio.sleep(self.settings.single_shot_settle_seconds)

        timeout = exposure_seconds + self.settings.single_shot_timeout_margin_seconds
        waiter = asyncio.ensure_future(self.events.wait_for(LiveImageDownloaded, timeout=timeout))
        await asyncio.sleep(0)
        self._imaging_active = True
        self._images.image_ready = False
        try:
            if not await self.start_imaging():
                waiter.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await waiter
                return None
            try:
                event = await waiter
            except asyncio.TimeoutError:
                logger.warning("origin.camera.single_shot_timeout", timeout=timeout)
                return None
            return event.image
        finally:
            self._imaging_active = False


_session: OriginSession | None = None
_session_lock = asyncio.Lock()
_session_settings: Settings | None = None


def configure_session(settings: Settings) -> None:
    global _session_settings
    _session_settings = settings
    if _session is not None:
        _session.settings = settings
        _session._ws_client.path = settings.origin_ws_path
        _session._ws_client.ping_interval = settings.ws_ping_interval_seconds
        _session._poller.interval = settings.status_poll_interval_seconds
        _session._http_client.image_path = settings.origin_image_path
        _session._http_client.timeout = settings.http_timeout_seconds


async def get_session() -> OriginSession:
    global _session
    if _session is None:
        async with _session_lock:
            if _session is None:
                settings = _session_settings or Settings()
                _session = OriginSession(settings)
    return _session


async def shutdown_session() -> None:
    global _session
    if _session is None:
        return
    await _session.shutdown()
    _session = None


__all__ = [
    "OriginSession",
    "configure_session",
    "get_session",
    "shutdown_session",
]
