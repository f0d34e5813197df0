"""
Ledger Entry Module

A Transaction is one signed, immutable movement against exactly one account:
positive amounts are credits, negative amounts are debits. The repository
only creates and reads entries; there is no update or delete path.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum

from .amounts import quantize_amount
from .errors import StorageFailureError
from .storage import StorageInterface, StorageRecord, StorageError


class TransactionKind(Enum):
    """Kinds of ledger entries"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


@dataclass
class Transaction(StorageRecord):
    """Ledger entry against a single account"""
    account_id: int
    kind: TransactionKind
    amount: Decimal
    reference: str = ""
    description: str = ""

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    @property
    def is_debit(self) -> bool:
        return self.amount < 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        data = cls._parse_common(data)
        data['kind'] = TransactionKind(data['kind'])
        data['amount'] = Decimal(data['amount'])
        return cls(**data)


class TransactionRepository:
    """Typed accessor for ledger entry rows"""

    table_name = "transactions"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.storage.ensure_table(self.table_name)

    def create(
        self,
        account_id: int,
        kind: TransactionKind,
        amount: Decimal,
        reference: str = "",
        description: str = ""
    ) -> Transaction:
        """Insert a new ledger entry and return it with its assigned id"""
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=None,
            created_at=now,
            updated_at=now,
            account_id=account_id,
            kind=kind,
            amount=quantize_amount(amount),
            reference=reference,
            description=description
        )
        try:
            transaction.id = self.storage.insert(self.table_name, transaction.to_dict())
        except StorageError as e:
            raise StorageFailureError(f"Failed to create {kind.value} entry: {e}") from e
        return transaction

    def get(self, transaction_id: int) -> Optional[Transaction]:
        data = self._call(self.storage.load, self.table_name, transaction_id)
        if data:
            return Transaction.from_dict(data)
        return None

    def list_for_account(self, account_id: int) -> List[Transaction]:
        """All entries for an account, newest first"""
        rows = self._call(self.storage.find, self.table_name, {"account_id": account_id})
        transactions = [Transaction.from_dict(row) for row in rows]
        transactions.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return transactions

    def list_by_reference(self, reference: str) -> List[Transaction]:
        """Entries sharing a correlation reference, in insertion order"""
        rows = self._call(self.storage.find, self.table_name, {"reference": reference})
        return [Transaction.from_dict(row) for row in rows]

    def count(self) -> int:
        return self._call(self.storage.count, self.table_name)

    @staticmethod
    def _call(fn, *args):
        try:
            return fn(*args)
        except StorageError as e:
            raise StorageFailureError(str(e)) from e
