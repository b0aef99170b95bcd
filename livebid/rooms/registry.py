"""Connection and room bookkeeping."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Protocol

from ..bidding.errors import Unauthenticated
from ..bidding.models import Identity, auction_channel


class Connection(Protocol):
    connection_id: str
    identity: Identity | None

    async def send(self, message: dict[str, Any]) -> None: ...


class RoomRegistry:
    """Many-to-many map between live connections and channels.

    Auction rooms are named ``auction:<id>``; every registered connection is
    also a member of its private ``user:<id>`` channel.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._channels: dict[str, set[str]] = defaultdict(set)
        self._memberships: dict[str, set[str]] = defaultdict(set)

    def connect(self, connection: Connection) -> None:
        identity = self._require_identity(connection)
        self._connections[connection.connection_id] = connection
        self._join(connection.connection_id, identity.channel)

    def disconnect(self, connection: Connection) -> list[str]:
        """Drop the connection and return the auction ids it was subscribed to."""
        connection_id = connection.connection_id
        self._connections.pop(connection_id, None)
        channels = self._memberships.pop(connection_id, set())
        auctions = []
        for channel in channels:
            self._leave(connection_id, channel)
            if channel.startswith("auction:"):
                auctions.append(channel.split(":", 1)[1])
        return sorted(auctions)

    def subscribe(self, connection: Connection, auction_id: str) -> bool:
        self._require_registered(connection)
        return self._join(connection.connection_id, auction_channel(auction_id))

    def unsubscribe(self, connection: Connection, auction_id: str) -> bool:
        self._require_registered(connection)
        channel = auction_channel(auction_id)
        if channel not in self._memberships[connection.connection_id]:
            return False
        self._memberships[connection.connection_id].discard(channel)
        self._leave(connection.connection_id, channel)
        return True

    def members_of(self, auction_id: str) -> set[Connection]:
        return self._members(auction_channel(auction_id))

    def connections_of(self, identity_id: str) -> set[Connection]:
        return self._members(f"user:{identity_id}")

    def is_subscribed(self, connection: Connection, auction_id: str) -> bool:
        return auction_channel(auction_id) in self._memberships.get(connection.connection_id, ())

    def room_sizes(self) -> dict[str, int]:
        return {
            channel.split(":", 1)[1]: len(members)
            for channel, members in self._channels.items()
            if channel.startswith("auction:")
        }

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _members(self, channel: str) -> set[Connection]:
        return {
            self._connections[connection_id]
            for connection_id in self._channels.get(channel, ())
            if connection_id in self._connections
        }

    def _join(self, connection_id: str, channel: str) -> bool:
        if channel in self._memberships[connection_id]:
            return False
        self._memberships[connection_id].add(channel)
        self._channels[channel].add(connection_id)
        return True

    def _leave(self, connection_id: str, channel: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._channels[channel]

    def _require_identity(self, connection: Connection) -> Identity:
        if connection.identity is None:
            raise Unauthenticated("connection has no identity")
        return connection.identity

    def _require_registered(self, connection: Connection) -> None:
        self._require_identity(connection)
        if connection.connection_id not in self._connections:
            raise Unauthenticated("connection is not registered")
