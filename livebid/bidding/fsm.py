"""Auction and bid finite state machines."""

from __future__ import annotations

from enum import Enum


class AuctionStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (AuctionStatus.ENDED, AuctionStatus.CANCELLED)


class AuctionEvent(str, Enum):
    START = "start"
    END = "end"
    CANCEL = "cancel"


class BidStatus(str, Enum):
    PENDING = "pending"
    WINNING = "accepted-winning"
    OUTBID = "accepted-outbid"
    REJECTED = "rejected"


class BidEvent(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    OUTBID = "outbid"


_AUCTION_TRANSITIONS = {
    (AuctionStatus.UPCOMING, AuctionEvent.START): AuctionStatus.ACTIVE,
    (AuctionStatus.ACTIVE, AuctionEvent.END): AuctionStatus.ENDED,
    (AuctionStatus.UPCOMING, AuctionEvent.CANCEL): AuctionStatus.CANCELLED,
    (AuctionStatus.ACTIVE, AuctionEvent.CANCEL): AuctionStatus.CANCELLED,
}

_BID_TRANSITIONS = {
    (BidStatus.PENDING, BidEvent.ACCEPT): BidStatus.WINNING,
    (BidStatus.PENDING, BidEvent.REJECT): BidStatus.REJECTED,
    (BidStatus.WINNING, BidEvent.OUTBID): BidStatus.OUTBID,
}


def transition(current: AuctionStatus, event: AuctionEvent) -> AuctionStatus:
    try:
        return _AUCTION_TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"invalid transition from {current.value} via {event.value}") from exc


def transition_bid(current: BidStatus, event: BidEvent) -> BidStatus:
    try:
        return _BID_TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"invalid bid transition from {current.value} via {event.value}") from exc
