from pydantic import BaseModel, ConfigDict, Field
from datetime import date
from typing import List, Optional

from app.models.leave_policy import AccrualFrequency


class LeaveTypeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50, pattern="^[A-Z0-9_]+$")
    name: str = Field(..., min_length=1, max_length=100)
    multi_level_approval: bool = False
    disable_hierarchy_approval: bool = False
    uses_balance: bool = True
    negative_allowed: bool = False
    carryover_allowed: bool = True
    specific_approver_ids: List[int] = []


class LeaveTypeUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50, pattern="^[A-Z0-9_]+$")
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    multi_level_approval: Optional[bool] = None
    disable_hierarchy_approval: Optional[bool] = None
    uses_balance: Optional[bool] = None
    negative_allowed: Optional[bool] = None
    carryover_allowed: Optional[bool] = None
    is_active: Optional[bool] = None
    specific_approver_ids: Optional[List[int]] = None


class LeaveTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    multi_level_approval: bool
    disable_hierarchy_approval: bool
    uses_balance: bool
    negative_allowed: bool
    carryover_allowed: bool
    is_active: bool
    specific_approver_ids: List[int] = []


class PolicyCreate(BaseModel):
    """Assigning a policy end-dates the user's current one for the same type."""
    user_id: int
    leave_type_id: int
    effective_date: date
    initial_days: float = Field(0, ge=0)
    annual_accrual_amount: float = Field(0, ge=0)
    bonus_days_per_year: float = Field(0, ge=0)
    years_for_bonus: Optional[int] = Field(None, ge=0)
    accrual_frequency: AccrualFrequency = AccrualFrequency.MONTHLY
    rollover_enabled: bool = False
    max_rollover_days: Optional[float] = Field(None, ge=0)
    max_negative_balance: float = Field(0, ge=0)
    prorate_first_year: bool = False


class PolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    leave_type_id: int
    initial_days: float
    annual_accrual_amount: float
    bonus_days_per_year: float
    years_for_bonus: Optional[int] = None
    accrual_frequency: str
    rollover_enabled: bool
    max_rollover_days: Optional[float] = None
    max_negative_balance: float
    prorate_first_year: bool
    effective_date: date
    end_date: Optional[date] = None


class AccrualRun(BaseModel):
    as_of: date
    user_id: Optional[int] = None
    leave_type_id: Optional[int] = None


class AccrualRunResult(BaseModel):
    user_id: int
    leave_type_id: int
    periods: int
    credited: float


class RolloverRun(BaseModel):
    year: int
    user_id: Optional[int] = None
    leave_type_id: Optional[int] = None


class RolloverResult(BaseModel):
    user_id: int
    leave_type_id: int
    year: int
    carried: float
    forfeited: float
    skipped: bool
