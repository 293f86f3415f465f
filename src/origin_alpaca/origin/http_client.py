from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import httpx
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_IMAGE_PATH = "/SmartScope-1.0/dev2/"

_IMAGE_HEADERS = {
    "Cache-Control": "no-cache",
    "Accept": "*/*",
}


@dataclass(slots=True)
class OriginHttpClient:
    """Async HTTP client for the Origin image server.

    Images announced over the websocket are served as plain files under
    ``/SmartScope-1.0/dev2/`` on the same host. Requests are not retried.
    """

    host: str
    image_path: str = DEFAULT_IMAGE_PATH
    timeout: float = 30.0
    scheme: Literal["http", "https"] = "http"
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "OriginHttpClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"

    async def _ensure_client(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def set_host(self, host: str) -> None:
        if host == self.host:
            return
        # base_url is bound when the client is built; the next request rebuilds it.
        await self.aclose()
        self.host = host

    def _normalize_image_path(self, file_path: str) -> str:
        if not file_path or not file_path.strip():
            raise ValueError("file_path must be provided")
        prefix = "/" + self.image_path.strip("/") + "/"
        return prefix + file_path.strip().lstrip("/")

    def build_image_url(self, file_path: str) -> str:
        return f"{self.base_url}{self._normalize_image_path(file_path)}"

    async def fetch_image(self, file_path: str) -> bytes:
        path = self._normalize_image_path(file_path)
        await self._ensure_client()
        assert self._client
        logger.debug("origin.http.image_request", url=f"{self.base_url}{path}")
        response = await self._client.get(path, headers=_IMAGE_HEADERS)
        response.raise_for_status()
        return response.content


__all__ = ["DEFAULT_IMAGE_PATH", "OriginHttpClient"]
