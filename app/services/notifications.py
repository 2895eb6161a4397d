"""In-process change notifications for students, bids and selections.

Subscribers register on channels such as ``opportunity:<id>``; events are
typed (``Inserted``, ``Updated``, ``Deleted``) so consumers never inspect raw
payload dicts. Delivery is best-effort: a failing subscriber is logged and
skipped, and clients must still be able to re-fetch state on demand.
"""

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Union

from pydantic_core import to_jsonable_python

from core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Inserted:
    table: str
    record: Any


@dataclass(frozen=True)
class Updated:
    table: str
    record: Any


@dataclass(frozen=True)
class Deleted:
    table: str
    record_id: str


ChangeEvent = Union[Inserted, Updated, Deleted]
Subscriber = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


def class_channel(class_id: str) -> str:
    return f"class:{class_id}"


def opportunity_channel(opportunity_id: str) -> str:
    return f"opportunity:{opportunity_id}"


def student_channel(student_id: str) -> str:
    return f"student:{student_id}"


class ChangeNotifier:
    """Channel-keyed publish/subscribe hub."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, channel: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` on ``channel``; returns an unsubscribe function."""
        self._subscribers[channel].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(channel)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[channel]

        return unsubscribe

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    async def publish(self, channels: Iterable[str], event: ChangeEvent) -> int:
        """Deliver ``event`` to every subscriber of ``channels``; returns deliveries made."""
        delivered = 0
        for channel in channels:
            for callback in list(self._subscribers.get(channel, ())):
                try:
                    result = callback(event)
                    if inspect.isawaitable(result):
                        await result
                    delivered += 1
                except Exception as e:
                    logger.warning(
                        f"Subscriber on {channel} failed for {type(event).__name__} "
                        f"on {event.table}: {e}"
                    )
        return delivered

    async def listen(self, channel: str, max_pending: int = 100) -> AsyncIterator[ChangeEvent]:
        """
        Yield events published on ``channel`` until the consumer stops.

        Events beyond ``max_pending`` unread ones are dropped with a warning;
        clients recover by re-fetching state.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)

        def enqueue(event: ChangeEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Listener on {channel} is behind; dropped {type(event).__name__}")

        unsubscribe = self.subscribe(channel, enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()


def event_payload(event: ChangeEvent) -> Dict[str, Any]:
    """JSON-ready form of an event: ``{"type", "table", "record" | "record_id"}``."""
    payload: Dict[str, Any] = {"type": type(event).__name__.lower(), "table": event.table}
    if isinstance(event, Deleted):
        payload["record_id"] = event.record_id
    else:
        payload["record"] = to_jsonable_python(event.record)
    return payload


# Shared hub for the running application
notifier = ChangeNotifier()
