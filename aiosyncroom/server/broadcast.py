"""Fan-out of server messages to room members."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Protocol

from aiosyncroom.models import ServerMessage

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Handle through which the server reaches a single client.

    ``send_message`` only enqueues and must never block, so it is safe to call while
    a room lock is held.
    """

    @property
    def connection_id(self) -> str:
        """Opaque identity of the underlying transport connection."""
        ...

    def send_message(self, message: ServerMessage | bytes) -> None:
        """Enqueue a JSON message or a binary frame for this client."""
        ...


def broadcast(message: ServerMessage | bytes, recipients: Iterable[Connection]) -> int:
    """
    Enqueue the same message for every recipient.

    A failure for one recipient is logged and does not affect the others.

    Returns:
        The number of recipients the message was queued for.
    """
    delivered = 0
    for connection in recipients:
        try:
            connection.send_message(message)
        except asyncio.QueueFull:
            logger.warning(
                "Outgoing queue full for connection %s, dropping %s",
                connection.connection_id,
                "binary frame" if isinstance(message, bytes) else type(message).__name__,
            )
        except (ConnectionError, RuntimeError) as err:
            logger.debug("Failed to queue message for %s: %s", connection.connection_id, err)
        else:
            delivered += 1
    return delivered
