"""
Transfer endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_ledger_system
from .schemas import CreateTransferRequest, ErrorResponse, TransferResponse
from ..system import LedgerSystem


router = APIRouter()


@router.post(
    "",
    response_model=TransferResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid amount or same account"},
        404: {"model": ErrorResponse, "description": "Account not found"},
        422: {"model": ErrorResponse, "description": "Insufficient funds"},
        503: {"model": ErrorResponse, "description": "Transfer cancelled or timed out"},
    }
)
def create_transfer(
    request: CreateTransferRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Transfer money between accounts"""
    transfer = system.transfer_engine.execute(
        from_account_number=request.from_account_number,
        to_account_number=request.to_account_number,
        amount=request.amount,
        description=request.description,
        timeout=system.config.transfer_timeout_seconds
    )
    return TransferResponse.from_transfer(transfer)


@router.get("/{transfer_id}", response_model=TransferResponse, responses={404: {"model": ErrorResponse}})
def get_transfer(transfer_id: int, system: LedgerSystem = Depends(get_ledger_system)):
    """Get a single transfer by its ID"""
    return TransferResponse.from_transfer(system.transfer_engine.get_transfer(transfer_id))
