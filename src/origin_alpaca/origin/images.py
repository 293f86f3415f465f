from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import structlog

from .events import EventBus, LiveImageDownloaded, SnapshotImageDownloaded
from .http_client import OriginHttpClient
from .state import ImageNotificationMetadata

logger = structlog.get_logger(__name__)

_TIFF_SUFFIXES = (".tif", ".tiff")
_JPEG_SUFFIXES = (".jpg", ".jpeg")


class ImageFormat(str, enum.Enum):
    JPEG = "JPEG"
    TIFF = "TIFF"
    RAW = "RAW"


def image_format_for(file_path: str) -> ImageFormat:
    lower = file_path.strip().lower()
    if lower.endswith(_TIFF_SUFFIXES):
        return ImageFormat.TIFF
    if lower.endswith(_JPEG_SUFFIXES):
        return ImageFormat.JPEG
    return ImageFormat.RAW


def is_snapshot_path(file_path: str) -> bool:
    return image_format_for(file_path) is ImageFormat.TIFF


def decode_live_frame(content: bytes) -> np.ndarray:
    import cv2  # type: ignore

    array = np.frombuffer(content, dtype=np.uint8)
    frame = cv2.imdecode(array, cv2.IMREAD_UNCHANGED)
    if frame is None:
        raise ValueError("decode_failed")
    return frame


@dataclass
class DownloadResult:
    metadata: ImageNotificationMetadata
    content: bytes = field(repr=False)
    image_format: ImageFormat
    image: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def is_snapshot(self) -> bool:
        return self.image_format is ImageFormat.TIFF


class ImagePipeline:
    """Fetches images announced by ``NewImageReady`` and publishes the results.

    TIFF files are snapshots. Everything else is a live-stream frame, which is
    ignored while a snapshot is in flight and otherwise decoded before it is
    published.
    """

    def __init__(self, http_client: OriginHttpClient, events: EventBus) -> None:
        self._http_client = http_client
        self._events = events
        self.snapshot_in_flight = False
        self.last_image: Optional[np.ndarray] = None
        self.image_ready = False

    def should_suppress(self, file_path: str) -> bool:
        return self.snapshot_in_flight and not is_snapshot_path(file_path)

    async def download(
        self,
        metadata: ImageNotificationMetadata,
        *,
        suppress_live: bool = False,
    ) -> Optional[DownloadResult]:
        """Fetch ``metadata.file_path``; returns None when the transfer fails.

        With ``suppress_live`` a non-TIFF result is handed back undecoded and no
        live-image event is published.
        """
        image_format = image_format_for(metadata.file_path)
        try:
            url = self._http_client.build_image_url(metadata.file_path)
            logger.info("origin.image.download_started", url=url, format=image_format.value)
            content = await self._http_client.fetch_image(metadata.file_path)
        except Exception as exc:
            logger.warning(
                "origin.image.download_failed",
                path=metadata.file_path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self.snapshot_in_flight = False
            return None

        logger.info(
            "origin.image.downloaded",
            path=metadata.file_path,
            size=len(content),
            format=image_format.value,
        )
        result = DownloadResult(metadata=metadata, content=content, image_format=image_format)

        if result.is_snapshot:
            self.snapshot_in_flight = False
            logger.info("origin.image.snapshot_complete", path=metadata.file_path)
            self._events.emit(
                SnapshotImageDownloaded(
                    file_path=metadata.file_path,
                    data=content,
                    ra=metadata.ra,
                    dec=metadata.dec,
                    exposure=metadata.exposure,
                )
            )
            return result

        if suppress_live:
            return result

        try:
            frame = decode_live_frame(content)
        except Exception as exc:
            logger.warning(
                "origin.image.live_decode_failed",
                path=metadata.file_path,
                size=len(content),
                error=str(exc),
            )
            return result

        result.image = frame
        self.last_image = frame
        self.image_ready = True
        self._events.emit(
            LiveImageDownloaded(
                file_path=metadata.file_path,
                data=content,
                image=frame,
                ra=metadata.ra,
                dec=metadata.dec,
                exposure=metadata.exposure,
            )
        )
        return result


__all__ = [
    "DownloadResult",
    "ImageFormat",
    "ImagePipeline",
    "decode_live_frame",
    "image_format_for",
    "is_snapshot_path",
]
