"""Redis auction state store using redis-py asyncio client.

Compare-and-set operations use WATCH/MULTI optimistic transactions, so any
number of broker processes can share one Redis instance.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator

from redis import asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from ..bidding.fsm import AuctionStatus, BidEvent, BidStatus, transition_bid
from ..bidding.models import Auction, Bid, HighBid, VehicleLot
from ..transport.canonical_json import dumps, loads
from .errors import StoreError


class RedisStore:
    def __init__(self, *, url: str, prefix: str = "livebid") -> None:
        if not url:
            raise ValueError("redis url missing")
        self._redis = aioredis.from_url(url)
        self._prefix = prefix.rstrip(":")

    def _auction_key(self, auction_id: str) -> str:
        return f"{self._prefix}:auction:{auction_id}"

    def _auction_index_key(self) -> str:
        return f"{self._prefix}:auctions"

    def _lot_key(self, vehicle_id: str) -> str:
        return f"{self._prefix}:lot:{vehicle_id}"

    def _bids_key(self, vehicle_id: str) -> str:
        return f"{self._prefix}:bids:{vehicle_id}"

    @asynccontextmanager
    async def _guard(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except RedisError as exc:
            raise StoreError(f"redis {action} failed: {exc}") from exc

    async def create_auction(self, auction: Auction, lots: list[VehicleLot]) -> Auction:
        auction_key = self._auction_key(auction.auction_id)
        lot_keys = [self._lot_key(lot.vehicle_id) for lot in lots]
        async with self._guard("create_auction"):
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(auction_key, *lot_keys)
                if await pipe.exists(auction_key):
                    raise ValueError(f"auction {auction.auction_id} already exists")
                for lot, key in zip(lots, lot_keys):
                    if await pipe.exists(key):
                        raise ValueError(f"vehicle {lot.vehicle_id} is already offered")
                pipe.multi()
                pipe.set(auction_key, dumps(auction.to_dict()))
                pipe.sadd(self._auction_index_key(), auction.auction_id)
                for lot, key in zip(lots, lot_keys):
                    pipe.set(key, dumps(lot.to_dict()))
                try:
                    await pipe.execute()
                except WatchError as exc:
                    raise ValueError(f"auction {auction.auction_id} was created concurrently") from exc
        return auction

    async def get_auction(self, auction_id: str) -> Auction:
        async with self._guard("get_auction"):
            raw = await self._redis.get(self._auction_key(auction_id))
        if raw is None:
            raise KeyError(f"auction {auction_id} not found")
        return Auction.from_dict(loads(raw))

    async def list_auctions(self) -> list[Auction]:
        async with self._guard("list_auctions"):
            auction_ids = await self._redis.smembers(self._auction_index_key())
            if not auction_ids:
                return []
            keys = [self._auction_key(_decode(auction_id)) for auction_id in auction_ids]
            values = await self._redis.mget(keys)
        return [Auction.from_dict(loads(value)) for value in values if value]

    async def get_status(self, auction_id: str) -> AuctionStatus:
        return (await self.get_auction(auction_id)).status

    async def replace_auction(self, auction: Auction, expected_version: int) -> bool:
        key = self._auction_key(auction.auction_id)
        async with self._guard("replace_auction"):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise KeyError(f"auction {auction.auction_id} not found")
                    if Auction.from_dict(loads(raw)).version != expected_version:
                        return False
                    updated = replace(auction, version=expected_version + 1)
                    pipe.multi()
                    pipe.set(key, dumps(updated.to_dict()))
                    await pipe.execute()
                    return True
                except WatchError:
                    return False

    async def get_lot(self, vehicle_id: str) -> VehicleLot:
        async with self._guard("get_lot"):
            raw = await self._redis.get(self._lot_key(vehicle_id))
        if raw is None:
            raise KeyError(f"vehicle {vehicle_id} not found")
        return VehicleLot.from_dict(loads(raw))

    async def get_high_bid(self, vehicle_id: str) -> HighBid | None:
        return (await self.get_lot(vehicle_id)).high_bid

    async def compare_and_set_high_bid(
        self, vehicle_id: str, expected_prior_sequence: int, bid: Bid
    ) -> bool:
        lot_key = self._lot_key(vehicle_id)
        bids_key = self._bids_key(vehicle_id)
        async with self._guard("compare_and_set_high_bid"):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(lot_key)
                    raw_lot = await pipe.get(lot_key)
                    if raw_lot is None:
                        raise KeyError(f"vehicle {vehicle_id} not found")
                    lot = VehicleLot.from_dict(loads(raw_lot))
                    if lot.sequence != expected_prior_sequence:
                        return False
                    auction_key = self._auction_key(lot.auction_id)
                    await pipe.watch(auction_key)
                    raw_auction = await pipe.get(auction_key)
                    if raw_auction is None:
                        return False
                    if Auction.from_dict(loads(raw_auction)).status is not AuctionStatus.ACTIVE:
                        return False
                    if bid.sequence != expected_prior_sequence + 1:
                        raise ValueError(
                            f"bid {bid.bid_id} carries sequence {bid.sequence}, "
                            f"expected {expected_prior_sequence + 1}"
                        )
                    displaced = None
                    if lot.high_bid is not None:
                        raw_prior = await pipe.lindex(bids_key, -1)
                        if raw_prior is not None:
                            prior = Bid.from_dict(loads(raw_prior))
                            if prior.bid_id == lot.high_bid.bid_id:
                                prior.status = transition_bid(prior.status, BidEvent.OUTBID)
                                displaced = prior
                    updated = replace(lot, high_bid=bid.as_high_bid(), bid_count=lot.bid_count + 1)
                    pipe.multi()
                    if displaced is not None:
                        pipe.lset(bids_key, -1, dumps(displaced.to_dict()))
                    pipe.rpush(bids_key, dumps(replace(bid, status=BidStatus.WINNING).to_dict()))
                    pipe.set(lot_key, dumps(updated.to_dict()))
                    await pipe.execute()
                    return True
                except WatchError:
                    return False

    async def list_bids(self, vehicle_id: str) -> list[Bid]:
        async with self._guard("list_bids"):
            values = await self._redis.lrange(self._bids_key(vehicle_id), 0, -1)
        return [Bid.from_dict(loads(value)) for value in values]

    async def close(self) -> None:
        await self._redis.aclose()


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value
