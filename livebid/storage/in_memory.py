"""In-memory auction state store; one lock serialises every write."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from copy import deepcopy
from dataclasses import replace

from ..bidding.fsm import AuctionStatus, BidEvent, BidStatus, transition_bid
from ..bidding.models import Auction, Bid, HighBid, VehicleLot


class InMemoryStore:
    def __init__(self) -> None:
        self._auctions: dict[str, Auction] = {}
        self._lots: dict[str, VehicleLot] = {}
        self._bids: dict[str, list[Bid]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def create_auction(self, auction: Auction, lots: list[VehicleLot]) -> Auction:
        async with self._lock:
            if auction.auction_id in self._auctions:
                raise ValueError(f"auction {auction.auction_id} already exists")
            for lot in lots:
                if lot.vehicle_id in self._lots:
                    raise ValueError(f"vehicle {lot.vehicle_id} is already offered")
            self._auctions[auction.auction_id] = auction
            for lot in lots:
                self._lots[lot.vehicle_id] = lot
            return auction

    async def get_auction(self, auction_id: str) -> Auction:
        try:
            return self._auctions[auction_id]
        except KeyError as exc:
            raise KeyError(f"auction {auction_id} not found") from exc

    async def list_auctions(self) -> list[Auction]:
        return list(self._auctions.values())

    async def get_status(self, auction_id: str) -> AuctionStatus:
        return (await self.get_auction(auction_id)).status

    async def replace_auction(self, auction: Auction, expected_version: int) -> bool:
        async with self._lock:
            current = await self.get_auction(auction.auction_id)
            if current.version != expected_version:
                return False
            self._auctions[auction.auction_id] = replace(auction, version=expected_version + 1)
            return True

    async def get_lot(self, vehicle_id: str) -> VehicleLot:
        try:
            return self._lots[vehicle_id]
        except KeyError as exc:
            raise KeyError(f"vehicle {vehicle_id} not found") from exc

    async def get_high_bid(self, vehicle_id: str) -> HighBid | None:
        return (await self.get_lot(vehicle_id)).high_bid

    async def compare_and_set_high_bid(
        self, vehicle_id: str, expected_prior_sequence: int, bid: Bid
    ) -> bool:
        async with self._lock:
            lot = await self.get_lot(vehicle_id)
            if lot.sequence != expected_prior_sequence:
                return False
            auction = self._auctions.get(lot.auction_id)
            if auction is None or auction.status is not AuctionStatus.ACTIVE:
                return False
            if bid.sequence != expected_prior_sequence + 1:
                raise ValueError(
                    f"bid {bid.bid_id} carries sequence {bid.sequence}, "
                    f"expected {expected_prior_sequence + 1}"
                )
            history = self._bids[vehicle_id]
            if lot.high_bid is not None:
                for stored in reversed(history):
                    if stored.bid_id == lot.high_bid.bid_id:
                        stored.status = transition_bid(stored.status, BidEvent.OUTBID)
                        break
            history.append(deepcopy(replace(bid, status=BidStatus.WINNING)))
            self._lots[vehicle_id] = replace(
                lot,
                high_bid=bid.as_high_bid(),
                bid_count=lot.bid_count + 1,
            )
            return True

    async def list_bids(self, vehicle_id: str) -> list[Bid]:
        return [deepcopy(bid) for bid in self._bids.get(vehicle_id, [])]

    async def close(self) -> None:
        return None
