from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date
from typing import Any, Dict, List, Optional

from app.models.blackout import (
    BlackoutScope,
    CompanyWide,
    DepartmentScope,
    PositionScope,
    RestrictionType,
    ScopeKind,
    UserScope,
)


class ScopeIn(BaseModel):
    kind: ScopeKind = ScopeKind.COMPANY
    ids: List[int] = []

    @model_validator(mode="after")
    def check_ids(self):
        if self.kind != ScopeKind.COMPANY and not self.ids:
            raise ValueError(f"Scope '{self.kind.value}' needs at least one id")
        return self

    def to_scope(self) -> BlackoutScope:
        if self.kind == ScopeKind.COMPANY:
            return CompanyWide()
        ids = frozenset(self.ids)
        if self.kind == ScopeKind.DEPARTMENTS:
            return DepartmentScope(ids)
        if self.kind == ScopeKind.POSITIONS:
            return PositionScope(ids)
        return UserScope(ids)


class BlackoutCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    recurring_days: Optional[List[int]] = None
    recurring_start_date: Optional[date] = None
    recurring_end_date: Optional[date] = None
    scope: ScopeIn = ScopeIn()
    leave_type_ids: Optional[List[int]] = None
    restriction_type: RestrictionType = RestrictionType.FULL_BLOCK
    max_requests_allowed: Optional[int] = Field(None, ge=1)
    allow_emergency_override: bool = False
    is_strict: bool = False


class BlackoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    recurring_days: Optional[List[int]] = None
    recurring_start_date: Optional[date] = None
    recurring_end_date: Optional[date] = None
    scope_kind: str
    scope_ids: Optional[List[int]] = None
    leave_type_ids: Optional[List[int]] = None
    restriction_type: str
    max_requests_allowed: Optional[int] = None
    allow_emergency_override: bool
    is_strict: bool
    is_active: bool


class BlackoutPreviewRequest(BaseModel):
    leave_type_id: int
    start_date: date
    end_date: date
    emergency_override: bool = False
    user_id: Optional[int] = None  # HR may preview on behalf of another user


class BlackoutPreviewResponse(BaseModel):
    has_conflicts: bool
    has_warnings: bool
    conflicts: List[Dict[str, Any]]
    warnings: List[Dict[str, Any]]
    can_submit: bool
    requires_acknowledgment: bool
    requires_override: bool
