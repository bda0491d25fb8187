from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import get_ledger
from app.models.user import User
from app.routers.auth_deps import ensure_self_or_hr, get_current_user, require_admin
from app.schemas.leave import (
    BalanceAdjustment,
    LeaveBalanceResponse,
    LeaveTransactionResponse,
    TransactionPage,
)
from app.services.ledger import LedgerService

router = APIRouter(prefix="/pto/balances", tags=["PTO Balances"])


@router.get("/{user_id}/{leave_type_id}/{year}", response_model=LeaveBalanceResponse)
def get_balance(
    user_id: int,
    leave_type_id: int,
    year: int,
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger)
):
    ensure_self_or_hr(current_user, user_id)
    return ledger.get_balance(user_id, leave_type_id, year)


@router.get("/{user_id}/{leave_type_id}/{year}/transactions", response_model=TransactionPage)
def list_transactions(
    user_id: int,
    leave_type_id: int,
    year: int,
    after_id: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=1),
    current_user: User = Depends(get_current_user),
    ledger: LedgerService = Depends(get_ledger)
):
    """Ledger entries in id order. Pass `next_after_id` back until a page comes back empty."""
    ensure_self_or_hr(current_user, user_id)
    items = ledger.list_transactions(user_id, leave_type_id, year, after_id=after_id, limit=limit)
    return TransactionPage(
        items=[LeaveTransactionResponse.model_validate(t) for t in items],
        next_after_id=items[-1].id if items else None,
    )


@router.post("/adjust", response_model=LeaveTransactionResponse, status_code=status.HTTP_201_CREATED)
def adjust_balance(
    payload: BalanceAdjustment,
    current_user: User = Depends(require_admin()),
    ledger: LedgerService = Depends(get_ledger)
):
    return ledger.adjust(
        payload.user_id,
        payload.leave_type_id,
        payload.year,
        payload.amount,
        actor=current_user,
        description=payload.description,
        effective_date=payload.effective_date,
    )
