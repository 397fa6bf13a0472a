"""Fan-out of relay events to connected observers.

The hub owns the membership set. Each joined observer gets an
``ObserverChannel`` with its own bounded queue and a pump task that hands
events to the transport's ``sender`` one at a time, so:

- a slow or failing observer never blocks ``broadcast`` or other observers;
- events reach any single observer in the order they were broadcast;
- a sender that raises, or a queue that overflows, removes the observer.

Transports implement ``sender``: deliver this event, raise if the connection
is gone. A transport that stays open on its own (a WebSocket) also passes a
``closer``; it runs once the observer is removed for any reason, so a removed
observer is never left connected and silent.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

LOGGER = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]
Closer = Callable[[], Awaitable[Any]]

EVENT_COMMAND = "command"
EVENT_STATUS = "status"
EVENT_SNAPSHOT = "snapshot"


@dataclass(frozen=True, slots=True)
class RelayEvent:
    event_type: str
    device_id: Optional[str]
    data: Mapping[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = 0

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.event_type,
            "data": self.data,
            "emittedAt": self.emitted_at.isoformat(timespec="milliseconds"),
            "sequence": self.sequence,
        }
        if self.device_id is not None:
            payload["deviceId"] = self.device_id
        return payload


class ObserverChannel:
    """A live subscriber registered with a ``BroadcastHub``."""

    def __init__(
        self,
        hub: "BroadcastHub",
        sender: Sender,
        *,
        name: str,
        max_pending: int,
        closer: Optional[Closer] = None,
    ) -> None:
        self.name = name
        self._hub = hub
        self._sender = sender
        self._closer = closer
        self._close_task: Optional[asyncio.Task[None]] = None
        self._queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(
            maxsize=max_pending
        )
        self._closed = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: Dict[str, Any]) -> bool:
        """Queue ``event`` without waiting; False when the channel cannot take it."""

        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued event was handed to the sender."""

        await self._queue.join()

    def _start(self) -> None:
        self._task = asyncio.create_task(self._pump(), name=f"observer:{self.name}")

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            failure: Optional[Exception] = None
            try:
                await self._sender(event)
            except Exception as exc:
                failure = exc
            finally:
                self._queue.task_done()

            if failure is not None:
                LOGGER.warning(
                    "Dropping observer %s after send failure: %s", self.name, failure
                )
                await self._hub.leave(self)
                return

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()

    async def _shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._discard_pending()
        if self._closer is not None:
            # detached; broadcast never waits on a close handshake
            self._close_task = asyncio.create_task(
                self._close_transport(), name=f"observer-close:{self.name}"
            )

    async def _close_transport(self) -> None:
        assert self._closer is not None
        try:
            await self._closer()
        except Exception as exc:
            LOGGER.debug("Closing observer %s failed: %s", self.name, exc)


class BroadcastHub:
    """Registry of observer channels plus the broadcast primitive."""

    def __init__(self, *, max_pending_events: int = 100) -> None:
        self._max_pending = max(1, max_pending_events)
        self._channels: Dict[int, ObserverChannel] = {}
        self._lock = asyncio.Lock()
        self._sequence = itertools.count(1)
        self._names = itertools.count(1)

    @property
    def observer_count(self) -> int:
        return len(self._channels)

    async def join(
        self,
        sender: Sender,
        *,
        name: Optional[str] = None,
        greeting: Optional[Callable[[], RelayEvent]] = None,
        closer: Optional[Closer] = None,
    ) -> ObserverChannel:
        """Register a new observer.

        ``greeting`` is evaluated while membership is locked and queued ahead
        of any broadcast, so an observer that is greeted with a state
        snapshot receives every change made after that snapshot.
        """

        channel = ObserverChannel(
            self,
            sender,
            name=name or f"observer-{next(self._names)}",
            max_pending=self._max_pending,
            closer=closer,
        )
        async with self._lock:
            if greeting is not None:
                channel.offer(self._stamp(greeting()).as_dict())
            self._channels[id(channel)] = channel
            channel._start()
            count = len(self._channels)
        LOGGER.info("Observer %s joined (%d connected)", channel.name, count)
        return channel

    async def leave(self, channel: ObserverChannel) -> None:
        """Deregister ``channel``; safe to call more than once."""

        async with self._lock:
            removed = self._channels.pop(id(channel), None)
            count = len(self._channels)
        await channel._shutdown()
        if removed is not None:
            LOGGER.info("Observer %s left (%d connected)", channel.name, count)

    async def broadcast(self, event: RelayEvent) -> int:
        """Queue ``event`` for every current observer.

        Returns the number of observers the event was queued for. Observers
        whose queue is full are removed instead of stalling the broadcast.
        """

        async with self._lock:
            stamped = self._stamp(event)
            members = list(self._channels.values())
            message = stamped.as_dict()
            delivered = 0
            overflowed: List[ObserverChannel] = []
            for channel in members:
                if channel.offer(message):
                    delivered += 1
                elif not channel.closed:
                    overflowed.append(channel)

        for channel in overflowed:
            LOGGER.warning("Observer %s fell behind; disconnecting", channel.name)
            await self.leave(channel)

        LOGGER.debug(
            "Broadcast %s #%d to %d observer(s)",
            stamped.event_type,
            stamped.sequence,
            delivered,
        )
        return delivered

    async def close(self) -> None:
        async with self._lock:
            members = list(self._channels.values())
        for channel in members:
            await self.leave(channel)

    def _stamp(self, event: RelayEvent) -> RelayEvent:
        return RelayEvent(
            event_type=event.event_type,
            device_id=event.device_id,
            data=event.data,
            emitted_at=event.emitted_at,
            sequence=next(self._sequence),
        )
