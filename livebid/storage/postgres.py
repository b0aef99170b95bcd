"""Postgres auction state store leveraging asyncpg.

The high-bid compare-and-set runs in one transaction holding the lot row lock
(``SELECT ... FOR UPDATE``) and a share lock on the owning auction row, so the
auction cannot end or be cancelled between the status check and the commit.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator

import asyncpg

from ..bidding.fsm import AuctionStatus, BidEvent, BidStatus, transition_bid
from ..bidding.models import Auction, Bid, HighBid, VehicleLot
from ..transport.canonical_json import dumps_text, loads
from .errors import StoreError

_SCHEMA = """
CREATE TABLE IF NOT EXISTS auctions (
    auction_id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    data JSONB NOT NULL
);
CREATE TABLE IF NOT EXISTS vehicle_lots (
    vehicle_id TEXT PRIMARY KEY,
    auction_id TEXT NOT NULL REFERENCES auctions(auction_id),
    sequence INTEGER NOT NULL DEFAULT 0,
    data JSONB NOT NULL
);
CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    vehicle_id TEXT NOT NULL REFERENCES vehicle_lots(vehicle_id),
    sequence INTEGER NOT NULL,
    data JSONB NOT NULL,
    UNIQUE (vehicle_id, sequence)
);
"""


class PostgresStore:
    def __init__(self, *, dsn: str | None = None, **connect_kwargs: Any) -> None:
        if not dsn and not connect_kwargs:
            raise ValueError("postgres connection details missing")
        self._dsn = dsn
        self._connect_kwargs = connect_kwargs
        self._pool: asyncpg.Pool | None = None

    def _decode(self, value: Any) -> dict[str, Any]:
        if isinstance(value, (bytes, bytearray, str)):
            return loads(value)
        return value

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(dsn=self._dsn, **self._connect_kwargs)
            async with self._pool.acquire() as conn:
                await conn.execute(_SCHEMA)
        return self._pool

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreError(f"postgres {action} failed: {exc}") from exc

    async def create_auction(self, auction: Auction, lots: list[VehicleLot]) -> Auction:
        async with self._connection("create_auction") as conn:
            try:
                async with conn.transaction():
                    await conn.execute(
                        """INSERT INTO auctions(auction_id, version, data) VALUES($1, $2, $3)""",
                        auction.auction_id,
                        auction.version,
                        dumps_text(auction.to_dict()),
                    )
                    await conn.executemany(
                        """INSERT INTO vehicle_lots(vehicle_id, auction_id, sequence, data)
                           VALUES($1, $2, $3, $4)""",
                        [
                            (lot.vehicle_id, lot.auction_id, lot.sequence, dumps_text(lot.to_dict()))
                            for lot in lots
                        ],
                    )
            except asyncpg.UniqueViolationError as exc:
                raise ValueError(f"auction {auction.auction_id} or one of its vehicles already exists") from exc
        return auction

    async def get_auction(self, auction_id: str) -> Auction:
        async with self._connection("get_auction") as conn:
            row = await conn.fetchrow(
                """SELECT data FROM auctions WHERE auction_id=$1""",
                auction_id,
            )
        if not row:
            raise KeyError(f"auction {auction_id} not found")
        return Auction.from_dict(self._decode(row["data"]))

    async def list_auctions(self) -> list[Auction]:
        async with self._connection("list_auctions") as conn:
            rows = await conn.fetch("SELECT data FROM auctions ORDER BY auction_id")
        return [Auction.from_dict(self._decode(row["data"])) for row in rows]

    async def get_status(self, auction_id: str) -> AuctionStatus:
        return (await self.get_auction(auction_id)).status

    async def replace_auction(self, auction: Auction, expected_version: int) -> bool:
        updated = replace(auction, version=expected_version + 1)
        async with self._connection("replace_auction") as conn:
            result = await conn.execute(
                """UPDATE auctions SET data=$3, version=$2 + 1
                   WHERE auction_id=$1 AND version=$2""",
                auction.auction_id,
                expected_version,
                dumps_text(updated.to_dict()),
            )
            if result == "UPDATE 0":
                exists = await conn.fetchval(
                    """SELECT 1 FROM auctions WHERE auction_id=$1""",
                    auction.auction_id,
                )
                if not exists:
                    raise KeyError(f"auction {auction.auction_id} not found")
                return False
        return True

    async def get_lot(self, vehicle_id: str) -> VehicleLot:
        async with self._connection("get_lot") as conn:
            row = await conn.fetchrow(
                """SELECT data FROM vehicle_lots WHERE vehicle_id=$1""",
                vehicle_id,
            )
        if not row:
            raise KeyError(f"vehicle {vehicle_id} not found")
        return VehicleLot.from_dict(self._decode(row["data"]))

    async def get_high_bid(self, vehicle_id: str) -> HighBid | None:
        return (await self.get_lot(vehicle_id)).high_bid

    async def compare_and_set_high_bid(
        self, vehicle_id: str, expected_prior_sequence: int, bid: Bid
    ) -> bool:
        if bid.sequence != expected_prior_sequence + 1:
            raise ValueError(
                f"bid {bid.bid_id} carries sequence {bid.sequence}, "
                f"expected {expected_prior_sequence + 1}"
            )
        async with self._connection("compare_and_set_high_bid") as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """SELECT auction_id, sequence, data FROM vehicle_lots
                       WHERE vehicle_id=$1 FOR UPDATE""",
                    vehicle_id,
                )
                if not row:
                    raise KeyError(f"vehicle {vehicle_id} not found")
                if row["sequence"] != expected_prior_sequence:
                    return False
                status = await conn.fetchval(
                    """SELECT data->>'status' FROM auctions WHERE auction_id=$1 FOR SHARE""",
                    row["auction_id"],
                )
                if status != AuctionStatus.ACTIVE.value:
                    return False
                lot = VehicleLot.from_dict(self._decode(row["data"]))
                if lot.high_bid is not None:
                    prior_row = await conn.fetchrow(
                        """SELECT data FROM bids WHERE bid_id=$1""",
                        lot.high_bid.bid_id,
                    )
                    if prior_row:
                        prior = Bid.from_dict(self._decode(prior_row["data"]))
                        prior.status = transition_bid(prior.status, BidEvent.OUTBID)
                        await conn.execute(
                            """UPDATE bids SET data=$2 WHERE bid_id=$1""",
                            prior.bid_id,
                            dumps_text(prior.to_dict()),
                        )
                await conn.execute(
                    """INSERT INTO bids(bid_id, vehicle_id, sequence, data) VALUES($1, $2, $3, $4)""",
                    bid.bid_id,
                    vehicle_id,
                    bid.sequence,
                    dumps_text(replace(bid, status=BidStatus.WINNING).to_dict()),
                )
                updated = replace(lot, high_bid=bid.as_high_bid(), bid_count=lot.bid_count + 1)
                await conn.execute(
                    """UPDATE vehicle_lots SET sequence=$2, data=$3 WHERE vehicle_id=$1""",
                    vehicle_id,
                    updated.sequence,
                    dumps_text(updated.to_dict()),
                )
        return True

    async def list_bids(self, vehicle_id: str) -> list[Bid]:
        async with self._connection("list_bids") as conn:
            rows = await conn.fetch(
                """SELECT data FROM bids WHERE vehicle_id=$1 ORDER BY sequence""",
                vehicle_id,
            )
        return [Bid.from_dict(self._decode(row["data"])) for row in rows]

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
