import copy
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable
from uuid import uuid4

from evalqueue.api.v1.metrics import LISTENER_ERRORS
from evalqueue.domain.models import QueueEvent
from evalqueue.domain.states import QueueEventType

logger = logging.getLogger(__name__)

Listener = Callable[[QueueEvent], None]

@dataclass(frozen=True)
class Subscription:
    id: str
    event_types: frozenset[QueueEventType]
    callback: Listener

class EventBus:
    """
    In-process publish/subscribe for queue lifecycle events.

    Delivery is synchronous, in subscription order, on the publisher's
    stack. Each callback gets its own copy of the event and is isolated: an
    exception is logged and counted, and delivery continues with the next
    subscriber.
    """

    def __init__(self):
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.RLock()

    def subscribe(self, event_types: Iterable[QueueEventType | str], callback: Listener) -> str:
        if not callable(callback):
            raise TypeError("callback must be callable")
        subscription = Subscription(
            id=f"listener_{uuid4().hex}",
            event_types=frozenset(QueueEventType(t) for t in event_types),
            callback=callback,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscription {subscription.id} registered for {sorted(subscription.event_types)}")
        return subscription.id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def publish(self, event: QueueEvent) -> int:
        """
        Delivers `event` to every matching subscriber.
        Returns the number of callbacks that completed without raising.
        """
        with self._lock:
            targets = [s for s in self._subscriptions.values() if event.type in s.event_types]

        delivered = 0
        for subscription in targets:
            try:
                subscription.callback(copy.deepcopy(event))
                delivered += 1
            except Exception:
                LISTENER_ERRORS.labels(event_type=event.type).inc()
                logger.exception(
                    "Queue listener %s failed handling %s for item %s",
                    subscription.id,
                    event.type,
                    event.item_id or "-",
                )
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)
