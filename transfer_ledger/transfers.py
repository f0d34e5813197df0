"""
Transfer Engine Module

Moves value between two accounts as one all-or-nothing unit. A successful
transfer debits the source, credits the destination, writes one Transfer
record and two ledger entries sharing the reference TRF-<transfer id> with
amounts -X and +X. Any failure leaves balances, entries and transfer records
exactly as they were.

The engine holds no locks of its own. Isolation of the "check balance, then
decrement" sequence comes from the store's atomic unit.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import threading
import time

from .accounts import Account, AccountRepository
from .amounts import AmountLike, format_amount, parse_positive_amount
from .errors import (
    AccountNotFoundError, InsufficientFundsError, LedgerError, NotFoundError,
    SameAccountError, StorageFailureError, TransferCancelledError
)
from .events import (
    EventDispatcher, create_transfer_completed_event, create_transfer_failed_event
)
from .logging_config import get_logger, log_action
from .storage import StorageError, StorageInterface, StorageRecord
from .transactions import Transaction, TransactionKind, TransactionRepository


@dataclass
class Transfer(StorageRecord):
    """
    Transfer record

    from_account and to_account are snapshots attached on return and are
    not persisted with the record.
    """
    from_account_id: int
    to_account_id: int
    amount: Decimal
    description: str = ""
    from_account: Optional[Account] = None
    to_account: Optional[Account] = None

    transient_fields = ('from_account', 'to_account')

    @property
    def reference(self) -> str:
        """Correlation reference shared by the transfer's two ledger entries"""
        return f"TRF-{self.id}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transfer':
        data = cls._parse_common(data)
        data['amount'] = Decimal(data['amount'])
        return cls(**data)


class TransferRepository:
    """Typed accessor for transfer rows"""

    table_name = "transfers"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.storage.ensure_table(self.table_name)

    def create(self, from_account_id: int, to_account_id: int, amount: Decimal, description: str) -> Transfer:
        now = datetime.now(timezone.utc)
        transfer = Transfer(
            id=None,
            created_at=now,
            updated_at=now,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            description=description
        )
        try:
            transfer.id = self.storage.insert(self.table_name, transfer.to_dict())
        except StorageError as e:
            raise StorageFailureError(f"Failed to create transfer record: {e}") from e
        return transfer

    def get(self, transfer_id: int) -> Optional[Transfer]:
        try:
            data = self.storage.load(self.table_name, transfer_id)
        except StorageError as e:
            raise StorageFailureError(str(e)) from e
        if data:
            return Transfer.from_dict(data)
        return None

    def count(self) -> int:
        try:
            return self.storage.count(self.table_name)
        except StorageError as e:
            raise StorageFailureError(str(e)) from e


class Cancellation:
    """Caller-supplied cancel signal and/or deadline, checked between steps"""

    def __init__(self, cancel_event: Optional[threading.Event] = None, timeout: Optional[float] = None):
        self.cancel_event = cancel_event
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def check(self, step: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise TransferCancelledError(f"Transfer cancelled before {step}")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise TransferCancelledError(f"Transfer timed out before {step}")


class TransferEngine:
    """
    Executes and looks up transfers

    Outcomes are published to the injected event dispatcher after the atomic
    unit has finished, so subscribers never observe uncommitted state.
    """

    def __init__(self, storage: StorageInterface, event_dispatcher: Optional[EventDispatcher] = None):
        self.storage = storage
        self.accounts = AccountRepository(storage)
        self.transactions = TransactionRepository(storage)
        self.transfers = TransferRepository(storage)
        self.logger = get_logger("transfer_ledger.transfers")
        self._event_dispatcher = event_dispatcher

    def _publish(self, event) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(event)

    def execute(
        self,
        from_account_number: str,
        to_account_number: str,
        amount: AmountLike,
        description: str = "",
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None
    ) -> Transfer:
        """
        Transfer amount from one account to another

        Preconditions are checked in order: positive amount, source exists,
        destination exists, distinct accounts, sufficient source balance.

        Args:
            from_account_number: Source account number
            to_account_number: Destination account number
            amount: Strictly positive amount in minor units precision
            description: Free text stored on the transfer record
            cancel_event: When set, the in-flight unit is rolled back
            timeout: Seconds after which the in-flight unit is rolled back

        Returns:
            Transfer with post-transfer snapshots of both accounts

        Raises:
            InvalidAmountError, AccountNotFoundError, SameAccountError,
            InsufficientFundsError, TransferCancelledError, StorageFailureError
        """
        cancellation = Cancellation(cancel_event, timeout)
        try:
            value = parse_positive_amount(amount)
            cancellation.check("acquiring the store")
            transfer = self.storage.run_in_transaction(
                self._transfer_unit,
                from_account_number, to_account_number, value, description or "", cancellation
            )
        except LedgerError as e:
            self._record_failure(e, from_account_number, to_account_number, amount)
            raise
        except StorageError as e:
            failure = StorageFailureError(f"Transfer failed: {e}")
            self._record_failure(failure, from_account_number, to_account_number, amount)
            raise failure from e

        log_action(
            self.logger, "info", "Transfer completed",
            action="execute_transfer", resource=f"transfer:{transfer.id}",
            correlation_id=transfer.reference,
            extra={
                "from_account": from_account_number,
                "to_account": to_account_number,
                "amount": format_amount(transfer.amount),
                "from_balance": format_amount(transfer.from_account.balance),
                "to_balance": format_amount(transfer.to_account.balance)
            }
        )
        self._publish(create_transfer_completed_event(transfer))
        return transfer

    def _transfer_unit(
        self,
        from_account_number: str,
        to_account_number: str,
        amount: Decimal,
        description: str,
        cancellation: Cancellation
    ) -> Transfer:
        cancellation.check("resolving accounts")

        source = self.accounts.get_by_number(from_account_number)
        if not source:
            raise AccountNotFoundError(from_account_number, "source")

        destination = self.accounts.get_by_number(to_account_number)
        if not destination:
            raise AccountNotFoundError(to_account_number, "destination")

        # Compare identities so two numbers aliasing one row are still rejected
        if source.id == destination.id:
            raise SameAccountError()

        if source.balance < amount:
            raise InsufficientFundsError(source.account_number, source.balance, amount)

        source.debit(amount)
        destination.credit(amount)

        cancellation.check("persisting balances")
        self.accounts.save(source)
        self.accounts.save(destination)

        transfer = self.transfers.create(source.id, destination.id, amount, description)

        cancellation.check("recording ledger entries")
        self.transactions.create(
            account_id=source.id,
            kind=TransactionKind.TRANSFER,
            amount=-amount,
            reference=transfer.reference,
            description=f"Transfer to {destination.account_number}"
        )
        self.transactions.create(
            account_id=destination.id,
            kind=TransactionKind.TRANSFER,
            amount=amount,
            reference=transfer.reference,
            description=f"Transfer from {source.account_number}"
        )

        cancellation.check("commit")
        transfer.from_account = source
        transfer.to_account = destination
        return transfer

    def _record_failure(self, error: LedgerError, from_account_number: str, to_account_number: str, amount: Any) -> None:
        level = "error" if isinstance(error, StorageFailureError) else "warning"
        log_action(
            self.logger, level, f"Transfer failed: {error.message}",
            action="execute_transfer", resource="transfer",
            extra={
                "error_kind": error.kind,
                "from_account": from_account_number,
                "to_account": to_account_number,
                "amount": str(amount)
            }
        )
        self._publish(create_transfer_failed_event(error, from_account_number, to_account_number, amount))

    def get_transfer(self, transfer_id: int) -> Transfer:
        """
        Look up a transfer with both account snapshots

        Raises:
            NotFoundError: If no such transfer exists
        """
        transfer = self.transfers.get(transfer_id)
        if not transfer:
            raise NotFoundError("transfer", transfer_id)
        transfer.from_account = self.accounts.get(transfer.from_account_id, include_deleted=True)
        transfer.to_account = self.accounts.get(transfer.to_account_id, include_deleted=True)
        return transfer

    def get_transfer_entries(self, transfer_id: int) -> List[Transaction]:
        """The two ledger entries written by a transfer, debit first"""
        transfer = self.get_transfer(transfer_id)
        return self.transactions.list_by_reference(transfer.reference)
