"""
Blackout Conflict Resolver

Evaluates a proposed leave range against active blackout rules and sorts the
hits into blocking conflicts and advisory warnings. Results are plain dicts so
they can be snapshotted verbatim onto the request.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationFailedError
from app.models.blackout import (
    Blackout,
    BlackoutScope,
    CompanyWide,
    DepartmentScope,
    PositionScope,
    RestrictionType,
    UserScope,
)
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.user import User

logger = logging.getLogger(__name__)

ACTIVE_REQUEST_STATUSES = (LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value)


@dataclass
class BlackoutEvaluation:
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def requires_override(self) -> bool:
        return any(w.get("requires_override_approval") for w in self.warnings)

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "has_conflicts": self.has_conflicts,
            "has_warnings": self.has_warnings,
            "conflicts": self.conflicts,
            "warnings": self.warnings,
            "can_submit": not self.has_conflicts,
            "requires_acknowledgment": self.has_warnings,
            "requires_override": self.requires_override,
        }


def blackout_weekday(d: date) -> int:
    """Weekday in blackout numbering, 0=Sunday..6=Saturday."""
    return (d.weekday() + 1) % 7


def _days(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def scope_matches(scope: BlackoutScope, user: User) -> bool:
    if isinstance(scope, CompanyWide):
        return True
    if isinstance(scope, DepartmentScope):
        return user.department_id is not None and user.department_id in scope.ids
    if isinstance(scope, PositionScope):
        return user.position_id is not None and user.position_id in scope.ids
    if isinstance(scope, UserScope):
        return user.id in scope.ids
    raise ValueError(f"Unsupported blackout scope: {scope!r}")


def blocked_dates(blackout: Blackout, start: date, end: date) -> List[date]:
    """Dates in [start, end] covered by the blackout."""
    if blackout.is_recurring:
        lo = max(start, blackout.recurring_start_date) if blackout.recurring_start_date else start
        hi = min(end, blackout.recurring_end_date) if blackout.recurring_end_date else end
        weekdays = set(blackout.recurring_days or [])
        return [d for d in _days(lo, hi) if blackout_weekday(d) in weekdays]

    if blackout.start_date is None or blackout.end_date is None:
        return []
    lo = max(start, blackout.start_date)
    hi = min(end, blackout.end_date)
    return list(_days(lo, hi))


class BlackoutResolver:

    def __init__(self, db: Session):
        self.db = db

    def _candidates(self, start: date, end: date) -> List[Blackout]:
        active = self.db.query(Blackout).filter(Blackout.is_active.is_(True)).order_by(Blackout.id).all()
        return [
            b for b in active
            if b.is_recurring or (
                b.start_date is not None and b.end_date is not None
                and b.start_date <= end and b.end_date >= start
            )
        ]

    def _requests_in_scope(self, blackout: Blackout):
        query = self.db.query(LeaveRequest).join(User, LeaveRequest.employee_id == User.id).filter(
            LeaveRequest.status.in_(ACTIVE_REQUEST_STATUSES)
        )
        if blackout.leave_type_ids:
            query = query.filter(LeaveRequest.leave_type_id.in_(blackout.leave_type_ids))

        scope = blackout.scope
        if isinstance(scope, DepartmentScope):
            query = query.filter(User.department_id.in_(scope.ids))
        elif isinstance(scope, PositionScope):
            query = query.filter(User.position_id.in_(scope.ids))
        elif isinstance(scope, UserScope):
            query = query.filter(User.id.in_(scope.ids))
        return query

    def _count_existing(self, blackout: Blackout, start: date, end: date) -> int:
        query = self._requests_in_scope(blackout)
        if not blackout.is_recurring:
            return query.filter(
                LeaveRequest.start_date <= blackout.end_date,
                LeaveRequest.end_date >= blackout.start_date
            ).count()

        # Recurring: other requests that also land on a blocked weekday inside the requested range
        overlapping = query.filter(
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start
        ).all()
        return sum(
            1 for req in overlapping
            if blocked_dates(blackout, max(start, req.start_date), min(end, req.end_date))
        )

    def _describe(self, blackout: Blackout, hit_dates: List[date]) -> Dict[str, Any]:
        return {
            "blackout_id": blackout.id,
            "blackout_name": blackout.name,
            "restriction_type": blackout.restriction_type,
            "period": blackout.formatted_range(),
            "is_recurring": blackout.is_recurring,
            "is_strict": blackout.is_strict,
            "conflicting_dates": [d.isoformat() for d in hit_dates],
        }

    def _classify(
        self,
        blackout: Blackout,
        hit_dates: List[date],
        start: date,
        end: date,
        emergency: bool
    ) -> Dict[str, Any]:
        item = self._describe(blackout, hit_dates)
        restriction = blackout.restriction_type

        if restriction == RestrictionType.WARNING_ONLY.value:
            item.update(
                type="warning",
                message=f"Your request falls during a restricted period: {blackout.name} ({item['period']})",
            )
            return item

        if restriction == RestrictionType.LIMIT_REQUESTS.value:
            limit = blackout.max_requests_allowed or 0
            count = self._count_existing(blackout, start, end)
            item.update(current_count=count, max_allowed=limit, can_override=blackout.allow_emergency_override)
            if count >= limit:
                item.update(
                    type="conflict",
                    remaining_slots=0,
                    message=f"Maximum number of requests ({limit}) already reached for {blackout.name}",
                )
            else:
                item.update(
                    type="warning",
                    remaining_slots=limit - count,
                    message=f"Limited requests during {blackout.name}. {count}/{limit} requests used.",
                )
            return item

        # full_block, and any unknown restriction fails closed
        if emergency and blackout.allow_emergency_override:
            item.update(
                type="warning",
                can_override=True,
                requires_override_approval=True,
                message=f"Emergency override applied for blackout period: {blackout.name}",
            )
            return item
        item.update(
            type="conflict",
            can_override=blackout.allow_emergency_override,
            message=f"Requests are blocked during: {blackout.name} ({item['period']})",
        )
        return item

    def evaluate(
        self,
        user_id: int,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        emergency: bool = False
    ) -> BlackoutEvaluation:
        if end_date < start_date:
            raise ValidationFailedError("End date must be on or after start date")
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        evaluation = BlackoutEvaluation()
        for blackout in self._candidates(start_date, end_date):
            if blackout.leave_type_ids and leave_type_id not in blackout.leave_type_ids:
                continue
            if not scope_matches(blackout.scope, user):
                continue
            hit_dates = blocked_dates(blackout, start_date, end_date)
            if not hit_dates:
                continue

            item = self._classify(blackout, hit_dates, start_date, end_date, emergency)
            if item["type"] == "conflict":
                evaluation.conflicts.append(item)
            else:
                evaluation.warnings.append(item)

        if evaluation.has_conflicts or evaluation.has_warnings:
            logger.info(
                f"Blackout evaluation for user {user_id}: "
                f"{len(evaluation.conflicts)} conflicts, {len(evaluation.warnings)} warnings"
            )
        return evaluation


def _validate_blackout_shape(blackout: Blackout) -> None:
    if blackout.is_recurring:
        if any(d not in range(7) for d in blackout.recurring_days):
            raise ValidationFailedError("Recurring days must be between 0 (Sunday) and 6 (Saturday)")
        if (
            blackout.recurring_start_date and blackout.recurring_end_date
            and blackout.recurring_end_date < blackout.recurring_start_date
        ):
            raise ValidationFailedError("Recurring end date must be on or after recurring start date")
    else:
        if blackout.start_date is None or blackout.end_date is None:
            raise ValidationFailedError("Fixed blackouts need both a start and an end date")
        if blackout.end_date < blackout.start_date:
            raise ValidationFailedError("End date must be on or after start date")
    if blackout.restriction_type == RestrictionType.LIMIT_REQUESTS.value and not blackout.max_requests_allowed:
        raise ValidationFailedError("limit_requests blackouts need max_requests_allowed")


def create_blackout(db: Session, scope: BlackoutScope, **fields: Any) -> Blackout:
    restriction = fields.get("restriction_type", RestrictionType.FULL_BLOCK.value)
    fields["restriction_type"] = getattr(restriction, "value", restriction)
    blackout = Blackout(**fields)
    blackout.scope = scope
    _validate_blackout_shape(blackout)
    db.add(blackout)
    db.commit()
    db.refresh(blackout)
    logger.info(f"Blackout created: {blackout.name}", extra={"blackout_id": blackout.id})
    return blackout


def deactivate_blackout(db: Session, blackout_id: int) -> Blackout:
    blackout: Optional[Blackout] = db.get(Blackout, blackout_id)
    if blackout is None:
        raise NotFoundError("Blackout", blackout_id)
    blackout.is_active = False
    db.commit()
    db.refresh(blackout)
    return blackout
