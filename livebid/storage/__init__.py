"""Auction state store protocol and backend factory."""

from __future__ import annotations

from typing import Protocol

from ..bidding.fsm import AuctionStatus
from ..bidding.models import Auction, Bid, HighBid, VehicleLot
from ..config import StoreConfig
from .errors import StoreError
from .in_memory import InMemoryStore
from .postgres import PostgresStore
from .redis import RedisStore

__all__ = ["AuctionStore", "StoreError", "build_store"]


class AuctionStore(Protocol):
    async def create_auction(self, auction: Auction, lots: list[VehicleLot]) -> Auction: ...

    async def get_auction(self, auction_id: str) -> Auction: ...

    async def list_auctions(self) -> list[Auction]: ...

    async def get_status(self, auction_id: str) -> AuctionStatus: ...

    async def replace_auction(self, auction: Auction, expected_version: int) -> bool:
        """Persist ``auction`` with ``expected_version + 1`` iff the stored version matches."""
        ...

    async def get_lot(self, vehicle_id: str) -> VehicleLot: ...

    async def get_high_bid(self, vehicle_id: str) -> HighBid | None: ...

    async def compare_and_set_high_bid(
        self, vehicle_id: str, expected_prior_sequence: int, bid: Bid
    ) -> bool:
        """Make ``bid`` the high bid iff the stored sequence is still ``expected_prior_sequence``
        and the owning auction is active. Appends the bid to history and marks the
        displaced bid outbid in the same atomic step."""
        ...

    async def list_bids(self, vehicle_id: str) -> list[Bid]: ...

    async def close(self) -> None: ...


def build_store(config: StoreConfig) -> AuctionStore:
    backend = config.backend
    options = dict(config.options)
    if backend == "in_memory":
        return InMemoryStore()
    if backend == "redis":
        return RedisStore(**options)
    if backend == "postgres":
        return PostgresStore(**options)
    raise ValueError(f"unknown store backend {backend}")
