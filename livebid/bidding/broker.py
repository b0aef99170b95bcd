"""Bid broker: the single authority deciding whether a bid is accepted."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import uuid4

from ..events.messages import BidOutbid
from ..fanout.broadcaster import Broadcaster
from ..storage import AuctionStore, StoreError
from ..transport.timestamps import utcnow
from . import rules
from .errors import AuctionNotOpen, BiddingError, Conflict
from .fsm import BidEvent, BidStatus, transition_bid
from .models import Auction, Bid, BidDecision, Identity, VehicleLot
from .scheduler import AuctionScheduler

logger = logging.getLogger(__name__)


class BidBroker:
    """Validates bids against a store snapshot and commits them by compare-and-set.

    A bid that loses the compare-and-set race is re-validated once against the
    fresh state; losing a second time reports ``Conflict``. Accepted bids get
    sequence ``prior + 1``, so the total order per vehicle is commit order.
    """

    def __init__(
        self,
        store: AuctionStore,
        broadcaster: Broadcaster,
        scheduler: AuctionScheduler,
        *,
        allow_self_outbid: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._scheduler = scheduler
        self._allow_self_outbid = allow_self_outbid
        self._clock = clock

    async def place_bid(
        self,
        identity: Identity,
        auction_id: str,
        vehicle_id: str,
        amount: Decimal,
        currency: str,
    ) -> BidDecision:
        now = self._clock()
        bid = Bid(
            bid_id=f"bid_{uuid4().hex}",
            bidder_id=identity.identity_id,
            vehicle_id=vehicle_id,
            auction_id=auction_id,
            amount=amount,
            currency=currency,
            submitted_at=now,
            bidder=identity.public_view(),
        )
        try:
            decision = await self._decide(bid, now)
        except BiddingError as exc:
            bid.status = transition_bid(bid.status, BidEvent.REJECT)
            logger.info(
                "bid rejected auction=%s vehicle=%s bidder=%s amount=%s kind=%s: %s",
                auction_id,
                vehicle_id,
                identity.identity_id,
                amount,
                exc.kind,
                exc.message,
            )
            raise
        except StoreError as exc:
            logger.exception("store failure while placing bid on vehicle %s", vehicle_id)
            raise Conflict("bid could not be recorded, please retry") from exc
        logger.info(
            "bid accepted auction=%s vehicle=%s bidder=%s amount=%s sequence=%s",
            auction_id,
            vehicle_id,
            identity.identity_id,
            amount,
            decision.bid.sequence,
        )
        await self._after_accept(decision, now)
        return decision

    async def _decide(self, bid: Bid, now: datetime) -> BidDecision:
        for attempt in range(2):
            auction, lot = await self._snapshot(bid.auction_id, bid.vehicle_id)
            rules.validate_bid(
                auction, lot, bid, now, allow_self_outbid=self._allow_self_outbid
            )
            prior_sequence = lot.sequence
            candidate = replace(
                bid,
                sequence=rules.next_sequence(lot),
                status=transition_bid(BidStatus.PENDING, BidEvent.ACCEPT),
            )
            async with self._broadcaster.ordering(bid.vehicle_id):
                accepted = await self._store.compare_and_set_high_bid(
                    bid.vehicle_id, prior_sequence, candidate
                )
                if accepted:
                    decision = BidDecision(bid=candidate, previous=lot.high_bid, auction=auction)
                    self._broadcaster.publish_decision(decision)
                    return decision
            logger.warning(
                "compare-and-set lost on vehicle %s at sequence %d (attempt %d)",
                bid.vehicle_id,
                prior_sequence,
                attempt + 1,
            )
        raise Conflict("another bid was accepted first, please retry")

    async def _snapshot(self, auction_id: str, vehicle_id: str) -> tuple[Auction, VehicleLot]:
        try:
            auction = await self._store.get_auction(auction_id)
        except KeyError as exc:
            raise AuctionNotOpen(f"auction {auction_id} does not exist") from exc
        try:
            lot = await self._store.get_lot(vehicle_id)
        except KeyError as exc:
            raise AuctionNotOpen(f"vehicle {vehicle_id} is not offered") from exc
        return auction, lot

    async def _after_accept(self, decision: BidDecision, now: datetime) -> None:
        # extension commits before any fan-out await
        if rules.should_extend(decision.auction, now):
            try:
                await self._scheduler.extend(decision.auction.auction_id, decision.bid.bid_id, now)
            except (Conflict, StoreError):
                logger.exception(
                    "auto-extension failed for auction %s after bid %s",
                    decision.auction.auction_id,
                    decision.bid.bid_id,
                )
        previous = decision.previous
        if previous is not None and previous.bidder_id != decision.bid.bidder_id:
            await self._broadcaster.notify_user(previous.bidder_id, BidOutbid(previous, decision.bid))
