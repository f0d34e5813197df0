"""
Account Management Module

Accounts carry an external account number, unique and immutable, and a
Decimal balance that always equals the sum of the account's ledger entries.
Balances change only through the transfer engine or the deposit/withdrawal
operations on AccountService, each inside one atomic storage unit.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from .amounts import (
    AmountLike, ZERO, add_amounts, format_amount, parse_amount, parse_positive_amount
)
from .errors import (
    AccountNotFoundError, DuplicateAccountNumberError, InsufficientFundsError,
    InvalidAccountNumberError, InvalidAmountError, LedgerError, NotFoundError, StorageFailureError
)
from .events import (
    DomainEvent, EventDispatcher, create_account_event, create_transaction_event
)
from .logging_config import get_logger, log_action
from .storage import DuplicateKeyError, StorageError, StorageInterface, StorageRecord
from .transactions import Transaction, TransactionKind, TransactionRepository


@dataclass
class Account(StorageRecord):
    """Ledger account"""
    account_number: str
    balance: Decimal = ZERO
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def credit(self, amount: Decimal) -> None:
        self.balance = add_amounts(self.balance, amount)
        self.updated_at = datetime.now(timezone.utc)

    def debit(self, amount: Decimal) -> None:
        self.balance = add_amounts(self.balance, -amount)
        self.updated_at = datetime.now(timezone.utc)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        data = cls._parse_common(data)
        data['balance'] = Decimal(data['balance'])
        if data.get('deleted_at'):
            data['deleted_at'] = datetime.fromisoformat(data['deleted_at'])
        return cls(**data)


class AccountRepository:
    """Typed accessor for account rows; soft-deleted rows never resolve"""

    table_name = "accounts"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.storage.ensure_table(self.table_name)
        self.storage.ensure_unique(self.table_name, "account_number")

    def create(self, account_number: str, balance: Decimal = ZERO) -> Account:
        """Insert a new account row; raises DuplicateAccountNumberError"""
        now = datetime.now(timezone.utc)
        account = Account(
            id=None,
            created_at=now,
            updated_at=now,
            account_number=account_number,
            balance=balance
        )
        try:
            account.id = self.storage.insert(self.table_name, account.to_dict())
        except DuplicateKeyError as e:
            raise DuplicateAccountNumberError(account_number) from e
        except StorageError as e:
            raise StorageFailureError(f"Failed to create account: {e}") from e
        return account

    def get(self, account_id: int, include_deleted: bool = False) -> Optional[Account]:
        try:
            data = self.storage.load(self.table_name, account_id)
        except StorageError as e:
            raise StorageFailureError(str(e)) from e
        if data:
            account = Account.from_dict(data)
            if include_deleted or not account.is_deleted:
                return account
        return None

    def get_by_number(self, account_number: str) -> Optional[Account]:
        """Resolve an account by its external key"""
        rows = self._find({"account_number": account_number.strip(), "deleted_at": None})
        if rows:
            return Account.from_dict(rows[0])
        return None

    def list(self) -> List[Account]:
        return [Account.from_dict(row) for row in self._find({"deleted_at": None})]

    def save(self, account: Account) -> None:
        """Full-row upsert"""
        try:
            self.storage.save(self.table_name, account.id, account.to_dict())
        except StorageError as e:
            raise StorageFailureError(f"Failed to update account {account.account_number}: {e}") from e

    def _find(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return self.storage.find(self.table_name, filters)
        except StorageError as e:
            raise StorageFailureError(str(e)) from e


class AccountService:
    """
    Account lifecycle: create, read, list, list entries, deposit, withdraw
    """

    def __init__(
        self,
        storage: StorageInterface,
        event_dispatcher: Optional[EventDispatcher] = None,
        best_effort_initial_deposit: bool = False
    ):
        self.storage = storage
        self.accounts = AccountRepository(storage)
        self.transactions = TransactionRepository(storage)
        self.best_effort_initial_deposit = best_effort_initial_deposit
        self.logger = get_logger("transfer_ledger.accounts")

        # Event dispatcher for publishing domain events
        self._event_dispatcher = event_dispatcher

    def _publish(self, event) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(event)

    def create_account(self, account_number: str, initial_balance: AmountLike = 0) -> Account:
        """
        Create a new account

        A positive initial balance is recorded as an "Initial deposit" entry
        with reference INIT-<account id>. By default the entry is written in
        the same atomic unit as the account. With best_effort_initial_deposit
        the entry is written after the account commits, and a failure is
        logged instead of raised.

        Args:
            account_number: External account number, globally unique;
                surrounding whitespace is stripped
            initial_balance: Opening balance, zero or positive

        Returns:
            Created Account object

        Raises:
            InvalidAmountError: If the initial balance is negative or malformed
            DuplicateAccountNumberError: If the number is already taken
        """
        account_number = (account_number or "").strip()
        if not account_number:
            raise InvalidAccountNumberError("Account number is required")
        opening = parse_amount(initial_balance)
        if opening < ZERO:
            raise InvalidAmountError(f"Initial balance cannot be negative, got {opening}")

        try:
            with self.storage.atomic():
                account = self.accounts.create(account_number, opening)
                if opening > ZERO and not self.best_effort_initial_deposit:
                    self._record_initial_deposit(account, opening)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Account creation failed: {e.message}",
                action="create_account", resource=f"account:{account_number}",
                extra={"error_kind": e.kind}
            )
            raise

        if opening > ZERO and self.best_effort_initial_deposit:
            try:
                self._record_initial_deposit(account, opening)
            except LedgerError:
                log_action(
                    self.logger, "error", "Initial deposit entry could not be recorded",
                    action="create_account", resource=f"account:{account.id}",
                    extra={"account_number": account_number, "amount": format_amount(opening)},
                    exc_info=True
                )

        log_action(
            self.logger, "info", "Account created",
            action="create_account", resource=f"account:{account.id}",
            extra={"account_number": account_number, "initial_balance": format_amount(opening)}
        )
        self._publish(create_account_event(DomainEvent.ACCOUNT_CREATED, account))
        return account

    def _record_initial_deposit(self, account: Account, amount: Decimal) -> Transaction:
        return self.transactions.create(
            account_id=account.id,
            kind=TransactionKind.DEPOSIT,
            amount=amount,
            reference=f"INIT-{account.id}",
            description="Initial deposit"
        )

    def get_account(self, account_id: int) -> Account:
        """Get account by ID"""
        account = self.accounts.get(account_id)
        if not account:
            raise NotFoundError("account", account_id)
        return account

    def get_account_by_number(self, account_number: str) -> Account:
        """Get account by account number"""
        account = self.accounts.get_by_number(account_number)
        if not account:
            raise AccountNotFoundError(account_number)
        return account

    def list_accounts(self) -> List[Account]:
        return self.accounts.list()

    def list_account_transactions(self, account_id: int) -> List[Transaction]:
        """Ledger entries for an account, newest first"""
        self.get_account(account_id)
        return self.transactions.list_for_account(account_id)

    def deposit(self, account_id: int, amount: AmountLike, description: str = "Deposit") -> Transaction:
        """Credit an account with one deposit entry"""
        value = parse_positive_amount(amount)
        with self.storage.atomic():
            account = self.get_account(account_id)
            account.credit(value)
            self.accounts.save(account)
            transaction = self.transactions.create(
                account_id=account.id,
                kind=TransactionKind.DEPOSIT,
                amount=value,
                reference=f"DEP-{uuid.uuid4().hex[:8].upper()}",
                description=description
            )

        self._after_balance_change("deposit", account, transaction)
        return transaction

    def withdraw(self, account_id: int, amount: AmountLike, description: str = "Withdrawal") -> Transaction:
        """Debit an account with one withdrawal entry; never goes below zero"""
        value = parse_positive_amount(amount)
        with self.storage.atomic():
            account = self.get_account(account_id)
            if account.balance < value:
                raise InsufficientFundsError(account.account_number, account.balance, value)
            account.debit(value)
            self.accounts.save(account)
            transaction = self.transactions.create(
                account_id=account.id,
                kind=TransactionKind.WITHDRAWAL,
                amount=-value,
                reference=f"WDR-{uuid.uuid4().hex[:8].upper()}",
                description=description
            )

        self._after_balance_change("withdraw", account, transaction)
        return transaction

    def _after_balance_change(self, action: str, account: Account, transaction: Transaction) -> None:
        log_action(
            self.logger, "info", f"Account {action} recorded",
            action=action, resource=f"account:{account.id}",
            correlation_id=transaction.reference,
            extra={"amount": format_amount(transaction.amount), "balance": format_amount(account.balance)}
        )
        self._publish(create_transaction_event(transaction))
        self._publish(create_account_event(DomainEvent.BALANCE_UPDATED, account))
