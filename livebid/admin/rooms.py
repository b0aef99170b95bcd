"""Expose live room membership."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..rooms.registry import RoomRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_rooms(request: Request) -> RoomRegistry:
    return request.app.state.rooms


@router.get("/rooms")
async def rooms(registry: RoomRegistry = Depends(_get_rooms)) -> dict[str, object]:
    sizes = registry.room_sizes()
    return {
        "connections": registry.connection_count,
        "rooms": [
            {"channel": f"auction:{auction_id}", "auction_id": auction_id, "members": size}
            for auction_id, size in sorted(sizes.items())
        ],
    }
