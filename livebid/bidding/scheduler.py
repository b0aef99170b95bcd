"""Auction lifecycle: periodic sweep, cancel command and auto-extension."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from ..fanout.broadcaster import Broadcaster
from ..events.messages import (
    AuctionCancelled,
    AuctionEnded,
    AuctionExtended,
    AuctionStarted,
    VehicleNotSold,
    VehicleSold,
)
from ..storage import AuctionStore, StoreError
from ..transport.timestamps import utcnow
from . import rules
from .errors import AuctionNotOpen, Conflict
from .fsm import AuctionEvent, AuctionStatus, transition
from .models import Auction, VehicleLot

logger = logging.getLogger(__name__)

Mutator = Callable[[Auction], "Auction | None"]


class AuctionScheduler:
    def __init__(
        self,
        store: AuctionStore,
        broadcaster: Broadcaster,
        *,
        sweep_interval_ms: int,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 5,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._interval = sweep_interval_ms / 1000
        self._clock = clock
        self._max_retries = max_retries
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # Periodic sweep ---------------------------------------------------------

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="auction-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run(self) -> None:
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("auction sweep failed; retrying next tick")
            await asyncio.sleep(self._interval)

    async def sweep(self, now: datetime | None = None) -> list[Auction]:
        """Apply every due transition and return the auctions that changed.

        Ended auctions with lots still unsettled are settled again.
        """
        now = now or self._clock()
        changed = []
        for auction in await self._store.list_auctions():
            if auction.status is AuctionStatus.ENDED and not auction.is_settled:
                try:
                    await self._settle(auction)
                except (Conflict, StoreError):
                    logger.exception("could not settle auction %s", auction.auction_id)
                continue
            if auction.status.is_terminal or not rules.due_transitions(auction, now):
                continue
            try:
                updated = await self._advance(auction.auction_id, now)
            except (Conflict, StoreError):
                logger.exception("could not advance auction %s", auction.auction_id)
                continue
            if updated is not None:
                changed.append(updated)
        return changed

    async def refresh(self, auction_id: str, now: datetime | None = None) -> Auction:
        """Apply any transition already due for one auction and return its current state."""
        updated = await self._advance(auction_id, now or self._clock())
        return updated or await self._store.get_auction(auction_id)

    async def _advance(self, auction_id: str, now: datetime) -> Auction | None:
        snapshot = await self._store.get_auction(auction_id)
        lots: list[VehicleLot] = []
        if AuctionEvent.END in rules.due_transitions(snapshot, now):
            lots = [await self._store.get_lot(vehicle_id) for vehicle_id in snapshot.vehicle_ids]

        def _mutate(current: Auction) -> Auction | None:
            status = current.status
            for event in rules.due_transitions(current, now):
                if event is AuctionEvent.END:
                    # a bid accepted inside the window keeps the auction open
                    bid_id = rules.pending_extension(current, lots)
                    if bid_id is not None:
                        return rules.apply_extension(replace(current, status=status), bid_id)
                status = transition(status, event)
            if status is current.status:
                return None
            return replace(current, status=status)

        result = await self._update(auction_id, _mutate)
        if result is None:
            return None
        before, after = result
        if before.status is AuctionStatus.UPCOMING:
            logger.info("auction %s started", auction_id)
            await self._broadcaster.notify_room(auction_id, AuctionStarted(after))
        if after.extension_count > before.extension_count:
            bid_id = after.extended_for[-1]
            logger.info(
                "auction %s close deferred to %s by bid %s",
                auction_id,
                after.end_time.isoformat(),
                bid_id,
            )
            await self._broadcaster.notify_room(auction_id, AuctionExtended(after, bid_id))
        if after.status is AuctionStatus.ENDED:
            logger.info("auction %s ended", auction_id)
            await self._broadcaster.notify_room(auction_id, AuctionEnded(after))
            await self._settle(after)
        return after

    async def _settle(self, auction: Auction) -> None:
        for vehicle_id in auction.vehicle_ids:
            if vehicle_id not in auction.settled_vehicle_ids:
                await self._settle_vehicle(auction.auction_id, vehicle_id)
            await self._broadcaster.retire(vehicle_id)

    async def _settle_vehicle(self, auction_id: str, vehicle_id: str) -> None:
        """Record the lot as settled, then announce its outcome.

        The outcome is announced only by the caller whose update recorded it.
        """
        lot = await self._store.get_lot(vehicle_id)

        def _mutate(current: Auction) -> Auction | None:
            if vehicle_id in current.settled_vehicle_ids:
                return None
            return replace(current, settled_vehicle_ids=current.settled_vehicle_ids + (vehicle_id,))

        if await self._update(auction_id, _mutate) is None:
            return
        high_bid = lot.high_bid
        event: VehicleSold | VehicleNotSold
        if high_bid is not None and rules.reserve_met(lot):
            event = VehicleSold(lot, high_bid)
        else:
            event = VehicleNotSold(lot)
        logger.info("vehicle %s settled as %s", vehicle_id, event.name)
        await self._broadcaster.notify_room(auction_id, event)

    # Commands ---------------------------------------------------------------

    async def cancel(self, auction_id: str) -> Auction:
        def _mutate(current: Auction) -> Auction:
            if current.status.is_terminal:
                raise AuctionNotOpen(f"auction {auction_id} is already {current.status.value}")
            return replace(current, status=transition(current.status, AuctionEvent.CANCEL))

        result = await self._update(auction_id, _mutate)
        if result is None:
            raise AuctionNotOpen(f"auction {auction_id} could not be cancelled")
        _, after = result
        logger.info("auction %s cancelled", auction_id)
        await self._broadcaster.notify_room(auction_id, AuctionCancelled(after))
        for vehicle_id in after.vehicle_ids:
            await self._broadcaster.retire(vehicle_id)
        return after

    async def extend(self, auction_id: str, bid_id: str, now: datetime) -> Auction | None:
        """Push back the close time for a bid that landed inside the extend window.

        At most one extension per bid; returns None when nothing changed.
        """
        def _mutate(current: Auction) -> Auction | None:
            if bid_id in current.extended_for:
                return None
            if current.status is not AuctionStatus.ACTIVE:
                return None
            if not rules.should_extend(current, now):
                return None
            return rules.apply_extension(current, bid_id)

        result = await self._update(auction_id, _mutate)
        if result is None:
            return None
        _, after = result
        logger.info(
            "auction %s extended to %s by bid %s",
            auction_id,
            after.end_time.isoformat(),
            bid_id,
        )
        await self._broadcaster.notify_room(auction_id, AuctionExtended(after, bid_id))
        return after

    async def _update(self, auction_id: str, mutator: Mutator) -> tuple[Auction, Auction] | None:
        """Read-modify-write an auction with version-guarded retry.

        ``mutator`` returns the new auction or None for "nothing to do". On a
        version mismatch the helper re-reads and retries with exponential
        backoff (10 ms, 20 ms, 40 ms, ...).
        """
        backoff_ms = 10
        for attempt in range(self._max_retries + 1):
            current = await self._store.get_auction(auction_id)
            updated = mutator(current)
            if updated is None:
                return None
            if await self._store.replace_auction(updated, current.version):
                return current, replace(updated, version=current.version + 1)
            if attempt < self._max_retries:
                await asyncio.sleep(backoff_ms / 1000)
                backoff_ms *= 2
        raise Conflict(f"concurrent update conflict on auction {auction_id}")
