"""Operational stats endpoint."""

from __future__ import annotations

from collections import Counter
from typing import Any

from fastapi import APIRouter, Depends, Request

from ..rooms.registry import RoomRegistry
from ..storage import AuctionStore

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_store(request: Request) -> AuctionStore:
    return request.app.state.store


def _get_rooms(request: Request) -> RoomRegistry:
    return request.app.state.rooms


@router.get("/stats")
async def stats(
    store: AuctionStore = Depends(_get_store),
    rooms: RoomRegistry = Depends(_get_rooms),
) -> dict[str, Any]:
    auctions = await store.list_auctions()
    auctions_by_status: Counter[str] = Counter(auction.status.value for auction in auctions)

    total_lots = 0
    total_bids = 0
    lots_with_bids = 0
    extensions = 0
    for auction in auctions:
        extensions += auction.extension_count
        for vehicle_id in auction.vehicle_ids:
            lot = await store.get_lot(vehicle_id)
            total_lots += 1
            total_bids += lot.bid_count
            if lot.high_bid is not None:
                lots_with_bids += 1

    no_bid_rate = ((total_lots - lots_with_bids) / total_lots) if total_lots else 0.0
    return {
        "total_auctions": len(auctions),
        "auctions_by_status": dict(auctions_by_status),
        "total_lots": total_lots,
        "total_bids": total_bids,
        "no_bid_rate": round(no_bid_rate, 4),
        "extensions": extensions,
        "connections": rooms.connection_count,
        "rooms": len(rooms.room_sizes()),
    }
