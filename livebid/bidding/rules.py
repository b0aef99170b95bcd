"""Pure bidding rules evaluated before every commit."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from .errors import AuctionNotOpen, BidTooLow, CurrencyMismatch, SelfOutbid
from .fsm import AuctionEvent, AuctionStatus, transition
from .models import Auction, Bid, VehicleLot


def minimum_acceptable(lot: VehicleLot) -> Decimal:
    if lot.high_bid is None:
        return lot.starting_price
    return lot.high_bid.amount + lot.min_increment


def next_sequence(lot: VehicleLot) -> int:
    return lot.sequence + 1


def is_open(auction: Auction, now: datetime) -> bool:
    return auction.status is AuctionStatus.ACTIVE and now < auction.end_time


def validate_bid(
    auction: Auction,
    lot: VehicleLot,
    bid: Bid,
    now: datetime,
    *,
    allow_self_outbid: bool = False,
) -> None:
    """Raise the first rule the bid violates; checks run in a fixed order."""
    if not is_open(auction, now):
        raise AuctionNotOpen(f"auction {auction.auction_id} is {auction.status.value}")
    if lot.auction_id != auction.auction_id:
        raise AuctionNotOpen(
            f"vehicle {lot.vehicle_id} is not offered in auction {auction.auction_id}"
        )
    if bid.currency != auction.currency:
        raise CurrencyMismatch(
            f"auction {auction.auction_id} trades in {auction.currency}, got {bid.currency}"
        )
    floor = minimum_acceptable(lot)
    if bid.amount < floor:
        raise BidTooLow(f"bid must be at least {floor} {auction.currency}")
    if (
        not allow_self_outbid
        and lot.high_bid is not None
        and lot.high_bid.bidder_id == bid.bidder_id
    ):
        raise SelfOutbid("bidder already holds the high bid")


def can_extend(auction: Auction) -> bool:
    if auction.extend_by.total_seconds() <= 0:
        return False
    return auction.max_extensions is None or auction.extension_count < auction.max_extensions


def should_extend(auction: Auction, now: datetime) -> bool:
    return can_extend(auction) and auction.end_time - now <= auction.extend_window


def pending_extension(auction: Auction, lots: Iterable[VehicleLot]) -> str | None:
    """Id of a high bid placed inside the extend window that has not pushed the close back yet."""
    if not can_extend(auction):
        return None
    window_opens = auction.end_time - auction.extend_window
    for lot in lots:
        high_bid = lot.high_bid
        if high_bid is None or high_bid.bid_id in auction.extended_for:
            continue
        if window_opens <= high_bid.placed_at < auction.end_time:
            return high_bid.bid_id
    return None


def apply_extension(auction: Auction, bid_id: str) -> Auction:
    return replace(
        auction,
        end_time=auction.end_time + auction.extend_by,
        extension_count=auction.extension_count + 1,
        extended_for=auction.extended_for + (bid_id,),
    )


def due_transitions(auction: Auction, now: datetime) -> list[AuctionEvent]:
    """Lifecycle events a sweep at ``now`` should apply, in order."""
    events: list[AuctionEvent] = []
    status = auction.status
    if status is AuctionStatus.UPCOMING and now >= auction.start_time:
        events.append(AuctionEvent.START)
        status = transition(status, AuctionEvent.START)
    if status is AuctionStatus.ACTIVE and now >= auction.end_time:
        events.append(AuctionEvent.END)
    return events


def reserve_met(lot: VehicleLot) -> bool:
    if lot.high_bid is None:
        return False
    return lot.reserve_price is None or lot.high_bid.amount >= lot.reserve_price
