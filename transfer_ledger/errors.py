"""
Ledger Error Taxonomy

Every failure carries a stable, machine-checkable ``kind`` plus a
human-readable message. Validation errors are terminal for the call;
storage failures are surfaced as StorageFailureError and never retried here.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger failures"""

    kind = "LedgerError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidAmountError(LedgerError):
    kind = "InvalidAmount"


class NotFoundError(LedgerError):
    """Generic lookup failure"""

    kind = "NotFound"

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(message or f"{entity.capitalize()} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class AccountNotFoundError(NotFoundError):
    """An account reference did not resolve; ``role`` is source or destination"""

    kind = "AccountNotFound"

    def __init__(self, account_number: str, role: Optional[str] = None):
        if role:
            message = f"{role.capitalize()} account {account_number} not found"
        else:
            message = f"Account {account_number} not found"
        super().__init__("account", account_number, message)
        self.account_number = account_number
        self.role = role


class SameAccountError(LedgerError):
    kind = "SameAccount"

    def __init__(self, message: str = "Cannot transfer to the same account"):
        super().__init__(message)


class InsufficientFundsError(LedgerError):
    kind = "InsufficientFunds"

    def __init__(self, account_number: str, available: Decimal, requested: Decimal):
        super().__init__(
            f"Insufficient balance in account {account_number}: "
            f"available {available}, requested {requested}"
        )
        self.account_number = account_number
        self.available = available
        self.requested = requested


class DuplicateAccountNumberError(LedgerError):
    kind = "DuplicateAccountNumber"

    def __init__(self, account_number: str):
        super().__init__(f"Account number {account_number} already exists")
        self.account_number = account_number


class StorageFailureError(LedgerError):
    """Wraps any underlying store error (connection loss, conflicts, constraints)"""

    kind = "StorageFailure"


class TransferCancelledError(LedgerError):
    kind = "Cancelled"


class InvalidAccountNumberError(LedgerError):
    kind = "InvalidAccountNumber"
