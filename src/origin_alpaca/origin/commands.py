from __future__ import annotations

from collections import OrderedDict
from typing import Any, Mapping, Optional

import structlog

from .messages import build_command, encode_command
from .ws_client import OriginConnectionError, OriginWsClient

logger = structlog.get_logger(__name__)

DEFAULT_SEQUENCE_BASE = 2000
DEFAULT_SOURCE = "AlpacaServer"


class CommandDispatcher:
    """Builds, sends and remembers outgoing commands.

    Sequence ids come from one counter shared by every command and are never
    reused. The pending map is a bounded ring: the oldest entries are dropped
    once ``pending_limit`` is exceeded, and entries are resolved when the
    device echoes their id in a response.
    """

    def __init__(
        self,
        ws_client: OriginWsClient,
        *,
        source: str = DEFAULT_SOURCE,
        sequence_base: int = DEFAULT_SEQUENCE_BASE,
        pending_limit: int = 256,
    ) -> None:
        self._ws_client = ws_client
        self.source = source
        self._next_sequence_id = sequence_base
        self._pending_limit = max(1, pending_limit)
        self._pending: "OrderedDict[int, str]" = OrderedDict()

    @property
    def connected(self) -> bool:
        return self._ws_client.connected

    @property
    def next_sequence_id(self) -> int:
        return self._next_sequence_id

    @property
    def pending(self) -> dict[int, str]:
        return dict(self._pending)

    async def send(
        self,
        command: str,
        destination: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Optional[int]:
        """Send a command; returns its sequence id, or None if nothing was sent."""
        if not self._ws_client.connected:
            logger.warning("origin.command.not_connected", command=command, destination=destination)
            return None

        sequence_id = self._next_sequence_id
        self._next_sequence_id = sequence_id + 1
        envelope = build_command(
            command,
            destination,
            sequence_id,
            source=self.source,
            params=params,
        )
        message = encode_command(envelope)
        try:
            await self._ws_client.send_text(message)
        except OriginConnectionError:
            logger.warning("origin.command.not_connected", command=command, destination=destination)
            return None
        except Exception as exc:
            logger.warning(
                "origin.command.send_failed",
                command=command,
                destination=destination,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        self._remember(sequence_id, command)
        logger.debug(
            "origin.command.sent",
            command=command,
            destination=destination,
            sequence_id=sequence_id,
        )
        return sequence_id

    def resolve(self, sequence_id: Optional[int]) -> Optional[str]:
        if sequence_id is None:
            return None
        return self._pending.pop(sequence_id, None)

    def _remember(self, sequence_id: int, command: str) -> None:
        self._pending[sequence_id] = command
        while len(self._pending) > self._pending_limit:
            evicted_id, evicted_command = self._pending.popitem(last=False)
            logger.debug(
                "origin.command.pending_evicted",
                sequence_id=evicted_id,
                command=evicted_command,
            )


__all__ = ["CommandDispatcher", "DEFAULT_SEQUENCE_BASE", "DEFAULT_SOURCE"]
