"""
Blackout periods: fixed date ranges or weekly recurring days during which
leave is restricted for some scope of users.
"""
from dataclasses import dataclass
from typing import FrozenSet, Union
import enum

from sqlalchemy import Column, Integer, String, Date, Boolean, DateTime, Text, JSON
from sqlalchemy.sql import func

from app.database import Base


class RestrictionType(str, enum.Enum):
    FULL_BLOCK = "full_block"
    LIMIT_REQUESTS = "limit_requests"
    WARNING_ONLY = "warning_only"


class ScopeKind(str, enum.Enum):
    COMPANY = "company"
    DEPARTMENTS = "departments"
    POSITIONS = "positions"
    USERS = "users"


@dataclass(frozen=True)
class CompanyWide:
    pass


@dataclass(frozen=True)
class DepartmentScope:
    ids: FrozenSet[int]


@dataclass(frozen=True)
class PositionScope:
    ids: FrozenSet[int]


@dataclass(frozen=True)
class UserScope:
    ids: FrozenSet[int]


BlackoutScope = Union[CompanyWide, DepartmentScope, PositionScope, UserScope]

_SCOPE_BY_KIND = {
    ScopeKind.DEPARTMENTS.value: DepartmentScope,
    ScopeKind.POSITIONS.value: PositionScope,
    ScopeKind.USERS.value: UserScope,
}

WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class Blackout(Base):
    __tablename__ = "pto_blackouts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    # Fixed range
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    # Weekly pattern (0=Sunday..6=Saturday) bounded by an optional effective range
    recurring_days = Column(JSON, nullable=True)
    recurring_start_date = Column(Date, nullable=True)
    recurring_end_date = Column(Date, nullable=True)

    scope_kind = Column(String(20), default=ScopeKind.COMPANY.value, nullable=False)
    scope_ids = Column(JSON, nullable=True)
    leave_type_ids = Column(JSON, nullable=True)  # empty/null = all types

    restriction_type = Column(String(20), default=RestrictionType.FULL_BLOCK.value, nullable=False)
    max_requests_allowed = Column(Integer, nullable=True)
    allow_emergency_override = Column(Boolean, default=False, nullable=False)
    is_strict = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurring_days)

    @property
    def scope(self) -> BlackoutScope:
        if self.scope_kind == ScopeKind.COMPANY.value:
            return CompanyWide()
        try:
            scope_cls = _SCOPE_BY_KIND[self.scope_kind]
        except KeyError:
            raise ValueError(f"Unknown blackout scope kind: {self.scope_kind}")
        return scope_cls(frozenset(self.scope_ids or []))

    @scope.setter
    def scope(self, value: BlackoutScope) -> None:
        if isinstance(value, CompanyWide):
            self.scope_kind = ScopeKind.COMPANY.value
            self.scope_ids = None
            return
        for kind, scope_cls in _SCOPE_BY_KIND.items():
            if isinstance(value, scope_cls):
                self.scope_kind = kind
                self.scope_ids = sorted(value.ids)
                return
        raise ValueError(f"Unsupported blackout scope: {value!r}")

    def recurring_day_names(self) -> list[str]:
        return [WEEKDAY_NAMES[d] for d in sorted(self.recurring_days or []) if 0 <= d <= 6]

    def formatted_range(self) -> str:
        if self.is_recurring:
            effective = ""
            if self.recurring_start_date or self.recurring_end_date:
                start = self.recurring_start_date.strftime("%b %d, %Y") if self.recurring_start_date else "Beginning"
                end = self.recurring_end_date.strftime("%b %d, %Y") if self.recurring_end_date else "Ongoing"
                effective = f" (Effective: {start} - {end})"
            return f"Every {', '.join(self.recurring_day_names())}{effective}"
        if self.start_date == self.end_date:
            return self.start_date.strftime("%b %d, %Y")
        return f"{self.start_date.strftime('%b %d, %Y')} - {self.end_date.strftime('%b %d, %Y')}"
