from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from app.models.leave_request import DayPortion

class LeaveRequestCreate(BaseModel):
    leave_type_id: int
    start_date: date
    end_date: date
    start_portion: DayPortion = DayPortion.FULL_DAY
    end_portion: DayPortion = DayPortion.FULL_DAY
    reason: Optional[str] = Field(None, max_length=2000)
    emergency_override: bool = False
    override_reason: Optional[str] = None
    acknowledge_warnings: bool = False

class LeaveApprovalResponse(BaseModel):
    id: int
    request_id: int
    approver_id: int
    level: int
    sequence: int
    is_required: bool
    is_parallel: bool
    status: str
    delegated_to_id: Optional[int] = None
    delegated_from_id: Optional[int] = None
    acted_by_id: Optional[int] = None
    comment: Optional[str] = None
    responded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class LeaveRequestResponse(BaseModel):
    id: int
    employee_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    start_portion: str
    end_portion: str
    total_days: float
    total_hours: float
    reason: Optional[str] = None
    status: str
    reservation_id: Optional[int] = None
    blackout_conflicts: Optional[List[Dict[str, Any]]] = None
    blackout_warnings: Optional[List[Dict[str, Any]]] = None
    warnings_acknowledged_at: Optional[datetime] = None
    is_emergency_override: bool = False
    override_required: bool = False
    override_approved_by_id: Optional[int] = None
    override_approved_at: Optional[datetime] = None
    override_denied_at: Optional[datetime] = None
    denial_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    decided_at: Optional[datetime] = None
    approvals: List[LeaveApprovalResponse] = []

    model_config = ConfigDict(from_attributes=True)

class ApprovalResolve(BaseModel):
    decision: Literal["approved", "denied", "delegate"]
    comment: Optional[str] = None
    delegate_to_id: Optional[int] = None

class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)

class OverrideDecision(BaseModel):
    approved: bool
    reason: Optional[str] = None

class LeaveBalanceResponse(BaseModel):
    user_id: int
    leave_type_id: int
    year: int
    balance: float
    pending_balance: float
    available_balance: float
    used_balance: float
    accrued_balance: float
    rollover_balance: float
    initial_balance: float
    bonus_balance: float
    adjusted_balance: float
    forfeited_balance: float
    carried_forward_balance: float
    last_accrual_date: Optional[date] = None
    rolled_over_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class LeaveTransactionResponse(BaseModel):
    id: int
    type: str
    amount: float
    balance_before: float
    balance_after: float
    effective_date: date
    request_id: Optional[int] = None
    description: Optional[str] = None
    created_by_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

class TransactionPage(BaseModel):
    items: List[LeaveTransactionResponse]
    next_after_id: Optional[int] = None

class BalanceAdjustment(BaseModel):
    user_id: int
    leave_type_id: int
    year: int
    amount: float
    description: str = Field(..., min_length=1, max_length=500)
    effective_date: Optional[date] = None
