"""Status change notifications for oversight dashboards.

Lifecycle components report transitions through the ``StatusObserver``
interface and never talk to a transport directly. ``NotificationBroadcaster``
is the in-process implementation: each owner has a room of subscriber
queues, and ``publish`` drops events into those queues without waiting.

Delivery is best-effort and at-most-once. There is no retry and no durable
queue; a subscriber whose queue is full misses the event, and an owner with
no subscribers is a silent no-op. Dashboards reconcile full state on
(re)connect.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict

from examclock.database.models.window import WindowStatus
from examclock.errors import TransportUnavailable

logger = structlog.get_logger(__name__)

STATUS_CHANGE_EVENT = "status_change"


class StatusChange(BaseModel):
    """A single applied lifecycle transition.

    Attributes:
        window_id: Window that transitioned.
        owner_id: Owner of the window, used for routing.
        previous_state: State before the transition.
        new_state: State after the transition.
        timestamp: Instant the transition was computed for.
    """

    model_config = ConfigDict(frozen=True)

    window_id: UUID
    owner_id: UUID
    previous_state: WindowStatus
    new_state: WindowStatus
    timestamp: datetime

    def to_wire(self) -> dict[str, Any]:
        """Abbreviated form sent to subscribers (ids and states only)."""
        return {
            "id": str(self.window_id),
            "new_state": self.new_state.value,
            "timestamp": self.timestamp.isoformat(),
        }


class StatusObserver(Protocol):
    """Receiver of applied transitions, grouped by owner."""

    async def notify_status_change(
        self, owner_id: UUID, changes: Sequence[StatusChange]
    ) -> None:
        """Handle transitions of windows owned by ``owner_id``.

        Implementations must not raise and must not block the caller.
        """
        ...


class NullObserver:
    """Observer that discards every notification."""

    async def notify_status_change(
        self, owner_id: UUID, changes: Sequence[StatusChange]
    ) -> None:
        return None


@dataclass
class StatusEvent:
    """Event delivered to a subscriber, ready for SSE transmission."""

    event: str
    data: dict[str, Any]
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary format for SSE transmission."""
        result: dict[str, Any] = {
            "event": self.event,
            "data": json.dumps(self.data),
        }
        if self.id is not None:
            result["id"] = self.id
        return result


def build_payload(changes: Sequence[StatusChange]) -> dict[str, Any]:
    """Build the minimal wire payload for a batch of changes."""
    return {
        "type": STATUS_CHANGE_EVENT,
        "changes": [change.to_wire() for change in changes],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class NotificationBroadcaster:
    """Fans status changes out to the subscribers of each owner's room.

    Attributes:
        queue_size: Maximum pending events per subscriber.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._rooms: dict[UUID, set[asyncio.Queue[StatusEvent | None]]] = {}
        self._sequence = itertools.count(1)
        self._closed = False
        self._logger = logger.bind(component="NotificationBroadcaster")

    async def subscribe(self, owner_id: UUID) -> AsyncIterator[StatusEvent]:
        """Join the room of ``owner_id`` and yield events as they arrive.

        The iterator ends when the broadcaster is closed.
        """
        queue: asyncio.Queue[StatusEvent | None] = asyncio.Queue(maxsize=self.queue_size)
        self._rooms.setdefault(owner_id, set()).add(queue)
        self._logger.info(
            "subscriber_joined",
            owner_id=str(owner_id),
            room_size=len(self._rooms[owner_id]),
        )
        try:
            while not self._closed:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            room = self._rooms.get(owner_id)
            if room is not None:
                room.discard(queue)
                if not room:
                    del self._rooms[owner_id]
            self._logger.info("subscriber_left", owner_id=str(owner_id))

    def _room(self, owner_id: UUID) -> set[asyncio.Queue[StatusEvent | None]]:
        room = self._rooms.get(owner_id)
        if not room:
            raise TransportUnavailable(owner_id)
        return room

    def publish(self, owner_id: UUID, changes: Sequence[StatusChange]) -> int:
        """Deliver ``changes`` to every subscriber of ``owner_id``.

        Never raises and never waits.

        Args:
            owner_id: Owner whose room receives the event.
            changes: Ordered transitions of that owner's windows.

        Returns:
            Number of subscribers the event was queued for.
        """
        if not changes:
            return 0

        try:
            room = self._room(owner_id)
        except TransportUnavailable:
            self._logger.debug(
                "notification_dropped",
                owner_id=str(owner_id),
                reason="no_subscribers",
                change_count=len(changes),
            )
            return 0

        event = StatusEvent(
            event=STATUS_CHANGE_EVENT,
            data=build_payload(changes),
            id=str(next(self._sequence)),
        )

        delivered = 0
        for queue in list(room):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self._logger.warning(
                    "subscriber_queue_full",
                    owner_id=str(owner_id),
                    event_id=event.id,
                )

        self._logger.debug(
            "status_change_broadcast",
            owner_id=str(owner_id),
            change_count=len(changes),
            subscriber_count=delivered,
        )
        return delivered

    async def notify_status_change(
        self, owner_id: UUID, changes: Sequence[StatusChange]
    ) -> None:
        """StatusObserver implementation; see ``publish``."""
        self.publish(owner_id, changes)

    def subscriber_count(self, owner_id: UUID | None = None) -> int:
        """Number of subscribers for one owner, or across all rooms."""
        if owner_id is not None:
            return len(self._rooms.get(owner_id, ()))
        return sum(len(room) for room in self._rooms.values())

    async def close(self) -> None:
        """End every subscriber stream."""
        self._closed = True
        for room in list(self._rooms.values()):
            for queue in list(room):
                # Drain one slot if needed so the shutdown marker always fits
                if queue.full():
                    queue.get_nowait()
                queue.put_nowait(None)
        self._logger.info("broadcaster_closed")
