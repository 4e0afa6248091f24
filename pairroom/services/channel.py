"""In-memory message channel with named groups."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Set

SendCallable = Callable[[dict], Awaitable[None]]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChannelConnection:
    """Connection wrapper for channel participants."""

    connection_id: str
    send: SendCallable


class ChannelHub:
    """Track live connections and fan out messages to one, a group, or a group minus the sender."""

    def __init__(self) -> None:
        self._connections: Dict[str, ChannelConnection] = {}
        self._groups: Dict[str, Set[str]] = {}

    def register(self, connection: ChannelConnection) -> None:
        self._connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> None:
        """Forget a connection and drop it from every group it belonged to."""

        self._connections.pop(connection_id, None)
        for group in [name for name, members in self._groups.items() if connection_id in members]:
            self.remove_from_group(group, connection_id)

    def add_to_group(self, group: str, connection_id: str) -> None:
        self._groups.setdefault(group, set()).add(connection_id)

    def remove_from_group(self, group: str, connection_id: str) -> None:
        members = self._groups.get(group)
        if not members:
            return
        members.discard(connection_id)
        if not members:
            self._groups.pop(group, None)

    def group_members(self, group: str) -> frozenset[str]:
        return frozenset(self._groups.get(group, ()))

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    async def send_to(self, connection_id: str, message: dict) -> None:
        """Send a message to a single connection, if it is still live."""

        await self._deliver([connection_id], message)

    async def send_to_group(self, group: str, message: dict) -> None:
        """Send a message to every connection in the group."""

        await self._deliver(sorted(self._groups.get(group, ())), message)

    async def broadcast(self, group: str, sender_id: str, message: dict) -> None:
        """Send a message to all connections in the group except the sender."""

        recipients = sorted(member for member in self._groups.get(group, ()) if member != sender_id)
        await self._deliver(recipients, message)

    async def _deliver(self, connection_ids: Iterable[str], message: dict) -> None:
        connections = [self._connections[cid] for cid in connection_ids if cid in self._connections]
        if not connections:
            return

        results = await asyncio.gather(
            *(connection.send(message) for connection in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Dropping %s message for %s: %s",
                    message.get("type"),
                    connection.connection_id,
                    result,
                )


hub = ChannelHub()
