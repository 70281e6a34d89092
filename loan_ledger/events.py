"""
Event System Module

Publish/subscribe hand-off to notification and receipt collaborators. Payloads
are plain data (ledger state and payment record as dicts); formatting them into
messages or printer bytes happens in the subscribers.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class LedgerEvent(Enum):
    """Events emitted by the loan service"""
    LOAN_CREATED = "loan.created"
    PAYMENT_RECORDED = "loan.payment_recorded"
    PAYMENT_UNDONE = "loan.payment_undone"
    LOAN_SETTLED = "loan.settled"
    LOAN_FORECLOSED = "loan.foreclosed"
    LOAN_DEFAULTED = "loan.defaulted"


@dataclass
class EventPayload:
    """Payload for ledger events"""
    event_type: LedgerEvent
    loan_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'loan_id': self.loan_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


Handler = Callable[[EventPayload], None]


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[LedgerEvent, List[Handler]] = {}
        self._global_handlers: List[Handler] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("loan_ledger.events")

    def subscribe(self, event_type: LedgerEvent, handler: Handler) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Handler) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_name(handler)}")

    def unsubscribe(self, event_type: LedgerEvent, handler: Handler) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for loan {event.loan_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # A failing receipt printer must not undo a recorded payment
                self.logger.error(f"Error in event handler {_name(handler)} for {event.event_type.value}: {e}")

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[LedgerEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


def _name(handler: Handler) -> str:
    return getattr(handler, "__name__", repr(handler))
