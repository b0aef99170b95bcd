"""Room and private-channel delivery of socket events."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from typing import Iterable

from ..bidding.models import BidDecision
from ..events.messages import NewBid, OutboundEvent
from ..rooms.registry import Connection, RoomRegistry

logger = logging.getLogger(__name__)


class Broadcaster:
    """Best-effort, at-most-once delivery to currently connected subscribers.

    Accepted-bid decisions go through ``publish_decision``: one queue and one
    worker task per vehicle, so ``new-bid`` broadcasts for a vehicle leave in
    sequence order no matter how many coroutines publish concurrently. The
    queue and worker live until ``retire`` is called for the vehicle.
    """

    def __init__(self, rooms: RoomRegistry, *, send_timeout_ms: int = 2000) -> None:
        self._rooms = rooms
        self._send_timeout = send_timeout_ms / 1000
        self._queues: dict[str, asyncio.Queue[BidDecision]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._delivered: dict[str, int] = defaultdict(int)
        self._ordering: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._closed = False

    async def notify_room(
        self,
        auction_id: str,
        event: OutboundEvent,
        *,
        exclude: Connection | None = None,
    ) -> int:
        members = self._rooms.members_of(auction_id)
        if exclude is not None:
            members.discard(exclude)
        delivered = await self._deliver(members, event)
        logger.debug(
            "room auction:%s event=%s delivered=%d/%d",
            auction_id,
            event.name,
            delivered,
            len(members),
        )
        return delivered

    async def notify_connection(
        self, connection: Connection, event: OutboundEvent, *, ref: str | None = None
    ) -> bool:
        return await self._send(connection, event.to_message(ref))

    async def notify_user(self, identity_id: str, event: OutboundEvent) -> int:
        return await self._deliver(self._rooms.connections_of(identity_id), event)

    def publish_decision(self, decision: BidDecision) -> None:
        if self._closed:
            raise RuntimeError("broadcaster is closed")
        vehicle_id = decision.bid.vehicle_id
        queue = self._queues.get(vehicle_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[vehicle_id] = queue
            self._workers[vehicle_id] = asyncio.create_task(
                self._drain_vehicle(vehicle_id, queue),
                name=f"fanout:{vehicle_id}",
            )
        queue.put_nowait(decision)

    def ordering(self, vehicle_id: str) -> asyncio.Lock:
        """Lock held while a vehicle's decision is committed and published."""
        return self._ordering[vehicle_id]

    @property
    def active_vehicles(self) -> frozenset[str]:
        return frozenset(self._workers)

    def last_delivered(self, vehicle_id: str) -> int:
        return self._delivered.get(vehicle_id, 0)

    async def drain(self) -> None:
        """Wait until every queued decision has been broadcast."""
        await asyncio.gather(*(queue.join() for queue in list(self._queues.values())))

    async def retire(self, vehicle_id: str) -> None:
        """Flush a vehicle's pending broadcasts and release its worker, queue and lock.

        Called once the vehicle's auction is over and no further bids can commit.
        """
        queue = self._queues.get(vehicle_id)
        if queue is not None:
            await queue.join()
        self._queues.pop(vehicle_id, None)
        worker = self._workers.pop(vehicle_id, None)
        if worker is not None:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker
        self._delivered.pop(vehicle_id, None)
        self._ordering.pop(vehicle_id, None)
        logger.debug("retired fanout for vehicle %s", vehicle_id)

    async def close(self) -> None:
        self._closed = True
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()

    async def _drain_vehicle(self, vehicle_id: str, queue: asyncio.Queue[BidDecision]) -> None:
        while True:
            decision = await queue.get()
            try:
                sequence = decision.bid.sequence or 0
                if sequence <= self._delivered[vehicle_id]:
                    logger.warning(
                        "dropping stale decision vehicle=%s sequence=%d last=%d",
                        vehicle_id,
                        sequence,
                        self._delivered[vehicle_id],
                    )
                    continue
                self._delivered[vehicle_id] = sequence
                await self.notify_room(decision.bid.auction_id, NewBid(decision.bid))
            except Exception:
                logger.exception("broadcast failed for vehicle %s", vehicle_id)
            finally:
                queue.task_done()

    async def _deliver(self, connections: Iterable[Connection], event: OutboundEvent) -> int:
        message = event.to_message()
        results = await asyncio.gather(*(self._send(conn, message) for conn in connections))
        return sum(1 for ok in results if ok)

    async def _send(self, connection: Connection, message: dict) -> bool:
        try:
            await asyncio.wait_for(connection.send(message), timeout=self._send_timeout)
        except Exception as exc:
            logger.warning(
                "delivery of %s to connection %s failed: %s",
                message.get("event"),
                connection.connection_id,
                exc,
            )
            return False
        return True
