"""Socket gateway translating inbound frames into registry and broker calls."""

from __future__ import annotations

import logging
from typing import Any

import orjson

from ..bidding.broker import BidBroker
from ..bidding.errors import AuctionNotOpen, BiddingError, Conflict, InvalidEvent, Unauthenticated
from ..bidding.models import Identity
from ..fanout.broadcaster import Broadcaster
from ..identity.tokens import Authenticator
from ..rooms.registry import Connection, RoomRegistry
from ..storage import AuctionStore, StoreError
from ..transport.canonical_json import loads
from ..validation.validator import SchemaRegistry
from .messages import (
    BidError,
    BidPlaced,
    BidderJoined,
    BidderLeft,
    InboundEvent,
    JoinAuction,
    LeaveAuction,
    PlaceBid,
    parse_inbound,
)

logger = logging.getLogger(__name__)


class SocketGateway:
    def __init__(
        self,
        authenticator: Authenticator,
        rooms: RoomRegistry,
        broadcaster: Broadcaster,
        broker: BidBroker,
        store: AuctionStore,
        schemas: SchemaRegistry,
    ) -> None:
        self._authenticator = authenticator
        self._rooms = rooms
        self._broadcaster = broadcaster
        self._broker = broker
        self._store = store
        self._schemas = schemas

    def connect(self, connection: Connection, token: str | None) -> Identity:
        """Authenticate and register; raises ``Unauthenticated``."""
        identity = self._authenticator.authenticate(token)
        connection.identity = identity
        self._rooms.connect(connection)
        logger.info(
            "connection %s authenticated as %s",
            connection.connection_id,
            identity.identity_id,
        )
        return identity

    async def disconnect(self, connection: Connection) -> None:
        auctions = self._rooms.disconnect(connection)
        logger.info("connection %s closed", connection.connection_id)
        if connection.identity is None:
            return
        for auction_id in auctions:
            await self._broadcaster.notify_room(
                auction_id, BidderLeft(auction_id, connection.identity)
            )

    async def handle_frame(self, connection: Connection, raw: str | bytes) -> None:
        ref = None
        try:
            frame = loads(raw)
            if isinstance(frame, dict) and isinstance(frame.get("ref"), str):
                ref = frame["ref"]
            event, ref = parse_inbound(frame, self._schemas)
        except orjson.JSONDecodeError:
            await self._reject(connection, InvalidEvent("frame is not valid JSON"), ref)
            return
        except InvalidEvent as exc:
            await self._reject(connection, exc, ref)
            return
        await self.dispatch(connection, event, ref)

    async def dispatch(self, connection: Connection, event: InboundEvent, ref: str | None = None) -> None:
        try:
            if isinstance(event, JoinAuction):
                await self.join(connection, event.auction_id)
            elif isinstance(event, LeaveAuction):
                await self.leave(connection, event.auction_id)
            elif isinstance(event, PlaceBid):
                await self.place_bid(connection, event, ref)
        except BiddingError as exc:
            await self._reject(connection, exc, ref, **_scope(event))

    async def join(self, connection: Connection, auction_id: str) -> None:
        identity = _identity_of(connection)
        try:
            await self._store.get_auction(auction_id)
        except KeyError as exc:
            raise AuctionNotOpen(f"auction {auction_id} does not exist") from exc
        except StoreError as exc:
            logger.exception("store failure while joining auction %s", auction_id)
            raise Conflict("auction could not be loaded, please retry") from exc
        if not self._rooms.subscribe(connection, auction_id):
            return
        logger.info("user %s joined auction:%s", identity.identity_id, auction_id)
        await self._broadcaster.notify_room(
            auction_id, BidderJoined(auction_id, identity), exclude=connection
        )

    async def leave(self, connection: Connection, auction_id: str) -> None:
        identity = _identity_of(connection)
        if not self._rooms.unsubscribe(connection, auction_id):
            return
        logger.info("user %s left auction:%s", identity.identity_id, auction_id)
        await self._broadcaster.notify_room(
            auction_id, BidderLeft(auction_id, identity), exclude=connection
        )

    async def place_bid(self, connection: Connection, event: PlaceBid, ref: str | None = None) -> None:
        decision = await self._broker.place_bid(
            _identity_of(connection),
            event.auction_id,
            event.vehicle_id,
            event.amount,
            event.currency,
        )
        await self._broadcaster.notify_connection(connection, BidPlaced(decision.bid), ref=ref)

    async def _reject(
        self,
        connection: Connection,
        error: BiddingError,
        ref: str | None,
        **scope: Any,
    ) -> None:
        await self._broadcaster.notify_connection(
            connection,
            BidError(kind=error.kind, message=error.message, **scope),
            ref=ref,
        )


def _identity_of(connection: Connection) -> Identity:
    if connection.identity is None:
        raise Unauthenticated("connection has no identity")
    return connection.identity


def _scope(event: InboundEvent) -> dict[str, Any]:
    scope: dict[str, Any] = {"auction_id": event.auction_id}
    if isinstance(event, PlaceBid):
        scope["vehicle_id"] = event.vehicle_id
    return scope
