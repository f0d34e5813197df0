"""
Event System Module

Observability sink for the ledger core. Services publish domain events to an
injected EventDispatcher after their atomic unit has committed or failed;
subscribers (metrics, logging, tests) react to them. Events are notifications
and never part of the correctness contract: a failing handler is logged and
the operation that published the event still succeeds.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock

from .amounts import format_amount


class DomainEvent(Enum):
    """Domain events that can occur in the ledger"""

    # Account events
    ACCOUNT_CREATED = "account.created"
    BALANCE_UPDATED = "account.balance_updated"

    # Ledger entry events
    TRANSACTION_RECORDED = "transaction.recorded"

    # Transfer events
    TRANSFER_COMPLETED = "transfer.completed"
    TRANSFER_FAILED = "transfer.failed"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: Optional[str]
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


Handler = Callable[[EventPayload], None]


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Handler]] = {}
        self._global_handlers: List[Handler] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("transfer_ledger.events")

    def subscribe(self, event_type: DomainEvent, handler: Handler) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Handler) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: DomainEvent, handler: Handler) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}"
                )

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


def _handler_name(handler: Handler) -> str:
    return getattr(handler, '__name__', repr(handler))


def create_account_event(event_type: DomainEvent, account) -> EventPayload:
    """Create an account-related event"""
    return EventPayload(
        event_type=event_type,
        entity_type="account",
        entity_id=str(account.id),
        data={
            "account_number": account.account_number,
            "balance": format_amount(account.balance),
        }
    )


def create_transaction_event(transaction) -> EventPayload:
    """Create an event for a newly recorded ledger entry"""
    return EventPayload(
        event_type=DomainEvent.TRANSACTION_RECORDED,
        entity_type="transaction",
        entity_id=str(transaction.id),
        data={
            "account_id": transaction.account_id,
            "kind": transaction.kind.value,
            "amount": format_amount(transaction.amount),
            "reference": transaction.reference,
        }
    )


def create_transfer_completed_event(transfer) -> EventPayload:
    """Create a success event carrying both post-transfer balances"""
    return EventPayload(
        event_type=DomainEvent.TRANSFER_COMPLETED,
        entity_type="transfer",
        entity_id=str(transfer.id),
        data={
            "status": "success",
            "amount": format_amount(transfer.amount),
            "reference": transfer.reference,
            "from_account_number": transfer.from_account.account_number,
            "to_account_number": transfer.to_account.account_number,
            "from_balance": format_amount(transfer.from_account.balance),
            "to_balance": format_amount(transfer.to_account.balance),
        }
    )


def create_transfer_failed_event(
    error: Exception,
    from_account_number: str,
    to_account_number: str,
    amount: Any
) -> EventPayload:
    """Create a failure event keyed by the error kind"""
    return EventPayload(
        event_type=DomainEvent.TRANSFER_FAILED,
        entity_type="transfer",
        entity_id=None,
        data={
            "status": "failed",
            "error_kind": getattr(error, 'kind', type(error).__name__),
            "error": str(error),
            "amount": str(amount),
            "from_account_number": from_account_number,
            "to_account_number": to_account_number,
        }
    )
