"""Error taxonomy reported to bidders through ``bid-error`` acknowledgments."""

from __future__ import annotations


class BiddingError(Exception):
    """Base class; ``kind`` is the machine-readable tag sent on the wire."""

    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class Unauthenticated(BiddingError):
    kind = "unauthenticated"


class AuctionNotOpen(BiddingError):
    kind = "auction-not-open"


class CurrencyMismatch(BiddingError):
    kind = "currency-mismatch"


class BidTooLow(BiddingError):
    kind = "bid-too-low"


class SelfOutbid(BiddingError):
    kind = "self-outbid"


class Conflict(BiddingError):
    kind = "conflict"


class InvalidEvent(BiddingError):
    kind = "invalid-event"
