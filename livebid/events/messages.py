"""Closed set of socket events, one tagged variant per event name.

Frames are JSON objects ``{"event": <name>, "data": {...}, "ref": <optional>}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Union

from ..bidding.errors import InvalidEvent
from ..bidding.models import Auction, Bid, HighBid, Identity, VehicleLot
from ..transport.timestamps import format_timestamp
from ..validation.validator import SchemaRegistry

# Inbound --------------------------------------------------------------------


@dataclass(frozen=True)
class JoinAuction:
    name: ClassVar[str] = "join-auction"
    auction_id: str


@dataclass(frozen=True)
class LeaveAuction:
    name: ClassVar[str] = "leave-auction"
    auction_id: str


@dataclass(frozen=True)
class PlaceBid:
    name: ClassVar[str] = "place-bid"
    auction_id: str
    vehicle_id: str
    amount: Decimal
    currency: str


InboundEvent = Union[JoinAuction, LeaveAuction, PlaceBid]

INBOUND_SCHEMAS = {
    JoinAuction.name: "join_auction",
    LeaveAuction.name: "leave_auction",
    PlaceBid.name: "place_bid",
}


def parse_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidEvent(f"amount {value!r} is not a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidEvent("amount must be a positive number")
    return amount


def parse_inbound(frame: Any, schemas: SchemaRegistry) -> tuple[InboundEvent, str | None]:
    """Validate a decoded frame against its event schema and build the variant."""
    if not isinstance(frame, dict):
        raise InvalidEvent("frame must be a JSON object")
    name = frame.get("event")
    schema = INBOUND_SCHEMAS.get(name) if isinstance(name, str) else None
    if schema is None:
        raise InvalidEvent(f"unknown event {name!r}")
    schemas.check(schema, frame)
    data = frame["data"]
    ref = frame.get("ref")
    if name == JoinAuction.name:
        return JoinAuction(auction_id=data["auctionId"]), ref
    if name == LeaveAuction.name:
        return LeaveAuction(auction_id=data["auctionId"]), ref
    return (
        PlaceBid(
            auction_id=data["auctionId"],
            vehicle_id=data["vehicleId"],
            amount=parse_amount(data["amount"]),
            currency=data["currency"].upper(),
        ),
        ref,
    )


# Outbound -------------------------------------------------------------------


class OutboundEvent:
    name: ClassVar[str]

    def payload(self) -> dict[str, Any]:  # pragma: no cover - protocol
        raise NotImplementedError

    def to_message(self, ref: str | None = None) -> dict[str, Any]:
        message: dict[str, Any] = {"event": self.name, "data": self.payload()}
        if ref is not None:
            message["ref"] = ref
        return message


def _bid_view(bid: Bid) -> dict[str, Any]:
    return {
        "auctionId": bid.auction_id,
        "vehicleId": bid.vehicle_id,
        "bidId": bid.bid_id,
        "amount": str(bid.amount),
        "currency": bid.currency,
        "sequence": bid.sequence,
        "timestamp": format_timestamp(bid.submitted_at),
    }


def _auction_view(auction: Auction) -> dict[str, Any]:
    return {
        "auctionId": auction.auction_id,
        "status": auction.status.value,
        "startTime": format_timestamp(auction.start_time),
        "endTime": format_timestamp(auction.end_time),
    }


@dataclass(frozen=True)
class BidderJoined(OutboundEvent):
    name: ClassVar[str] = "bidder-joined"
    auction_id: str
    identity: Identity

    def payload(self) -> dict[str, Any]:
        return {
            "auctionId": self.auction_id,
            "userId": self.identity.identity_id,
            "userName": self.identity.name,
            "company": self.identity.company,
        }


@dataclass(frozen=True)
class BidderLeft(OutboundEvent):
    name: ClassVar[str] = "bidder-left"
    auction_id: str
    identity: Identity

    def payload(self) -> dict[str, Any]:
        return {
            "auctionId": self.auction_id,
            "userId": self.identity.identity_id,
            "userName": self.identity.name,
        }


@dataclass(frozen=True)
class NewBid(OutboundEvent):
    name: ClassVar[str] = "new-bid"
    bid: Bid

    def payload(self) -> dict[str, Any]:
        return {**_bid_view(self.bid), "bidder": dict(self.bid.bidder)}


@dataclass(frozen=True)
class BidPlaced(OutboundEvent):
    name: ClassVar[str] = "bid-placed"
    bid: Bid

    def payload(self) -> dict[str, Any]:
        return {"success": True, **_bid_view(self.bid), "status": self.bid.status.value}


@dataclass(frozen=True)
class BidError(OutboundEvent):
    name: ClassVar[str] = "bid-error"
    kind: str
    message: str
    auction_id: str | None = None
    vehicle_id: str | None = None

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.auction_id is not None:
            data["auctionId"] = self.auction_id
        if self.vehicle_id is not None:
            data["vehicleId"] = self.vehicle_id
        return data


@dataclass(frozen=True)
class BidOutbid(OutboundEvent):
    name: ClassVar[str] = "bid-outbid"
    previous: HighBid
    bid: Bid

    def payload(self) -> dict[str, Any]:
        return {
            "auctionId": self.bid.auction_id,
            "vehicleId": self.bid.vehicle_id,
            "bidId": self.previous.bid_id,
            "amount": str(self.previous.amount),
            "currency": self.previous.currency,
            "newAmount": str(self.bid.amount),
            "sequence": self.bid.sequence,
        }


@dataclass(frozen=True)
class AuctionStarted(OutboundEvent):
    name: ClassVar[str] = "auction-started"
    auction: Auction

    def payload(self) -> dict[str, Any]:
        return _auction_view(self.auction)


@dataclass(frozen=True)
class AuctionEnded(OutboundEvent):
    name: ClassVar[str] = "auction-ended"
    auction: Auction

    def payload(self) -> dict[str, Any]:
        return _auction_view(self.auction)


@dataclass(frozen=True)
class AuctionCancelled(OutboundEvent):
    name: ClassVar[str] = "auction-cancelled"
    auction: Auction

    def payload(self) -> dict[str, Any]:
        return _auction_view(self.auction)


@dataclass(frozen=True)
class AuctionExtended(OutboundEvent):
    name: ClassVar[str] = "auction-extended"
    auction: Auction
    bid_id: str

    def payload(self) -> dict[str, Any]:
        return {
            **_auction_view(self.auction),
            "bidId": self.bid_id,
            "extensionCount": self.auction.extension_count,
        }


@dataclass(frozen=True)
class VehicleSold(OutboundEvent):
    name: ClassVar[str] = "vehicle-sold"
    lot: VehicleLot
    winning: HighBid

    def payload(self) -> dict[str, Any]:
        return {
            "auctionId": self.lot.auction_id,
            "vehicleId": self.lot.vehicle_id,
            "bidId": self.winning.bid_id,
            "winnerId": self.winning.bidder_id,
            "amount": str(self.winning.amount),
            "currency": self.winning.currency,
            "bidCount": self.lot.bid_count,
        }


@dataclass(frozen=True)
class VehicleNotSold(OutboundEvent):
    name: ClassVar[str] = "vehicle-not-sold"
    lot: VehicleLot

    def payload(self) -> dict[str, Any]:
        high_bid = self.lot.high_bid
        return {
            "auctionId": self.lot.auction_id,
            "vehicleId": self.lot.vehicle_id,
            "highestAmount": str(high_bid.amount) if high_bid else None,
            "reserveMet": False,
            "bidCount": self.lot.bid_count,
        }
