"""
Pydantic schemas for API requests and responses

Amounts are accepted as strings or JSON numbers and always returned as
decimal strings.
"""

from datetime import datetime
from typing import Optional, Union
from pydantic import BaseModel, Field

from ..accounts import Account
from ..amounts import format_amount
from ..transactions import Transaction
from ..transfers import Transfer


AmountField = Union[str, int, float]


class CreateAccountRequest(BaseModel):
    account_number: str = Field(..., min_length=1)
    initial_balance: AmountField = Field("0", description="Opening balance, decimal string preferred")


class CreateTransferRequest(BaseModel):
    from_account_number: str = Field(..., min_length=1)
    to_account_number: str = Field(..., min_length=1)
    amount: AmountField = Field(..., description="Positive amount, decimal string preferred")
    description: str = ""


class AccountResponse(BaseModel):
    id: int
    account_number: str
    balance: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            id=account.id,
            account_number=account.account_number,
            balance=format_amount(account.balance),
            created_at=account.created_at,
            updated_at=account.updated_at
        )


class TransactionResponse(BaseModel):
    id: int
    account_id: int
    type: str
    amount: str
    reference: str
    description: str
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionResponse':
        return cls(
            id=transaction.id,
            account_id=transaction.account_id,
            type=transaction.kind.value,
            amount=format_amount(transaction.amount),
            reference=transaction.reference,
            description=transaction.description,
            created_at=transaction.created_at
        )


class TransferResponse(BaseModel):
    id: int
    from_account_id: int
    to_account_id: int
    amount: str
    description: str
    reference: str
    created_at: datetime
    from_account: Optional[AccountResponse] = None
    to_account: Optional[AccountResponse] = None

    @classmethod
    def from_transfer(cls, transfer: Transfer) -> 'TransferResponse':
        return cls(
            id=transfer.id,
            from_account_id=transfer.from_account_id,
            to_account_id=transfer.to_account_id,
            amount=format_amount(transfer.amount),
            description=transfer.description,
            reference=transfer.reference,
            created_at=transfer.created_at,
            from_account=AccountResponse.from_account(transfer.from_account) if transfer.from_account else None,
            to_account=AccountResponse.from_account(transfer.to_account) if transfer.to_account else None
        )


class ErrorDetail(BaseModel):
    kind: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail
