"""
Account management endpoints
"""

from typing import List
from fastapi import APIRouter, Depends, status

from .deps import get_ledger_system
from .schemas import AccountResponse, CreateAccountRequest, ErrorResponse, TransactionResponse
from ..system import LedgerSystem


router = APIRouter()

NOT_FOUND = {404: {"model": ErrorResponse}}


@router.get("", response_model=List[AccountResponse])
def list_accounts(system: LedgerSystem = Depends(get_ledger_system)):
    """List all accounts"""
    return [AccountResponse.from_account(a) for a in system.account_service.list_accounts()]


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}
)
def create_account(
    request: CreateAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a new account"""
    account = system.account_service.create_account(
        account_number=request.account_number,
        initial_balance=request.initial_balance
    )
    return AccountResponse.from_account(account)


@router.get("/{account_id}", response_model=AccountResponse, responses=NOT_FOUND)
def get_account(account_id: int, system: LedgerSystem = Depends(get_ledger_system)):
    """Get account details"""
    return AccountResponse.from_account(system.account_service.get_account(account_id))


@router.get("/{account_id}/transactions", response_model=List[TransactionResponse], responses=NOT_FOUND)
def get_account_transactions(account_id: int, system: LedgerSystem = Depends(get_ledger_system)):
    """Get transaction history for account, newest first"""
    transactions = system.account_service.list_account_transactions(account_id)
    return [TransactionResponse.from_transaction(t) for t in transactions]
