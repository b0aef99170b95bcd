"""Shared auction data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from ..transport.timestamps import format_timestamp, parse_timestamp
from .fsm import AuctionStatus, BidStatus


@dataclass(frozen=True)
class Identity:
    identity_id: str
    name: str
    email: str = ""
    role: str = "bidder"
    company: str | None = None

    @property
    def channel(self) -> str:
        return f"user:{self.identity_id}"

    def public_view(self) -> dict[str, Any]:
        return {"id": self.identity_id, "name": self.name, "company": self.company}


def auction_channel(auction_id: str) -> str:
    return f"auction:{auction_id}"


@dataclass(frozen=True)
class Auction:
    auction_id: str
    status: AuctionStatus
    start_time: datetime
    end_time: datetime
    currency: str = "EUR"
    extend_window: timedelta = timedelta(0)
    extend_by: timedelta = timedelta(0)
    vehicle_ids: tuple[str, ...] = ()
    title: str = ""
    max_extensions: int | None = None
    extension_count: int = 0
    extended_for: tuple[str, ...] = ()
    settled_vehicle_ids: tuple[str, ...] = ()
    version: int = 0

    @property
    def is_settled(self) -> bool:
        return set(self.vehicle_ids) <= set(self.settled_vehicle_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "title": self.title,
            "status": self.status.value,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "currency": self.currency,
            "extend_window_seconds": self.extend_window.total_seconds(),
            "extend_by_seconds": self.extend_by.total_seconds(),
            "vehicle_ids": list(self.vehicle_ids),
            "max_extensions": self.max_extensions,
            "extension_count": self.extension_count,
            "extended_for": list(self.extended_for),
            "settled_vehicle_ids": list(self.settled_vehicle_ids),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Auction":
        return cls(
            auction_id=data["auction_id"],
            title=data.get("title", ""),
            status=AuctionStatus(data["status"]),
            start_time=parse_timestamp(data["start_time"]),
            end_time=parse_timestamp(data["end_time"]),
            currency=data.get("currency", "EUR"),
            extend_window=timedelta(seconds=float(data.get("extend_window_seconds", 0))),
            extend_by=timedelta(seconds=float(data.get("extend_by_seconds", 0))),
            vehicle_ids=tuple(data.get("vehicle_ids", ())),
            max_extensions=data.get("max_extensions"),
            extension_count=int(data.get("extension_count", 0)),
            extended_for=tuple(data.get("extended_for", ())),
            settled_vehicle_ids=tuple(data.get("settled_vehicle_ids", ())),
            version=int(data.get("version", 0)),
        )


@dataclass(frozen=True)
class HighBid:
    bid_id: str
    bidder_id: str
    amount: Decimal
    currency: str
    sequence: int
    placed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "bid_id": self.bid_id,
            "bidder_id": self.bidder_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "sequence": self.sequence,
            "placed_at": format_timestamp(self.placed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HighBid":
        return cls(
            bid_id=data["bid_id"],
            bidder_id=data["bidder_id"],
            amount=Decimal(str(data["amount"])),
            currency=data["currency"],
            sequence=int(data["sequence"]),
            placed_at=parse_timestamp(data["placed_at"]),
        )


@dataclass(frozen=True)
class VehicleLot:
    vehicle_id: str
    auction_id: str
    starting_price: Decimal
    min_increment: Decimal
    reserve_price: Decimal | None = None
    high_bid: HighBid | None = None
    bid_count: int = 0

    @property
    def sequence(self) -> int:
        return self.high_bid.sequence if self.high_bid else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "auction_id": self.auction_id,
            "starting_price": str(self.starting_price),
            "min_increment": str(self.min_increment),
            "reserve_price": str(self.reserve_price) if self.reserve_price is not None else None,
            "high_bid": self.high_bid.to_dict() if self.high_bid else None,
            "bid_count": self.bid_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VehicleLot":
        reserve = data.get("reserve_price")
        high_bid = data.get("high_bid")
        return cls(
            vehicle_id=data["vehicle_id"],
            auction_id=data["auction_id"],
            starting_price=Decimal(str(data["starting_price"])),
            min_increment=Decimal(str(data["min_increment"])),
            reserve_price=Decimal(str(reserve)) if reserve is not None else None,
            high_bid=HighBid.from_dict(high_bid) if high_bid else None,
            bid_count=int(data.get("bid_count", 0)),
        )


@dataclass
class Bid:
    bid_id: str
    bidder_id: str
    vehicle_id: str
    auction_id: str
    amount: Decimal
    currency: str
    submitted_at: datetime
    sequence: int | None = None
    status: BidStatus = BidStatus.PENDING
    bidder: dict[str, Any] = field(default_factory=dict)

    def as_high_bid(self) -> HighBid:
        if self.sequence is None:
            raise ValueError(f"bid {self.bid_id} has no sequence")
        return HighBid(
            bid_id=self.bid_id,
            bidder_id=self.bidder_id,
            amount=self.amount,
            currency=self.currency,
            sequence=self.sequence,
            placed_at=self.submitted_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "bid_id": self.bid_id,
            "bidder_id": self.bidder_id,
            "vehicle_id": self.vehicle_id,
            "auction_id": self.auction_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "submitted_at": format_timestamp(self.submitted_at),
            "sequence": self.sequence,
            "status": self.status.value,
            "bidder": dict(self.bidder),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bid":
        return cls(
            bid_id=data["bid_id"],
            bidder_id=data["bidder_id"],
            vehicle_id=data["vehicle_id"],
            auction_id=data["auction_id"],
            amount=Decimal(str(data["amount"])),
            currency=data["currency"],
            submitted_at=parse_timestamp(data["submitted_at"]),
            sequence=data.get("sequence"),
            status=BidStatus(data.get("status", BidStatus.PENDING.value)),
            bidder=dict(data.get("bidder") or {}),
        )


@dataclass(frozen=True)
class BidDecision:
    """An accepted bid together with the high bid it displaced."""

    bid: Bid
    previous: HighBid | None
    auction: Auction
