"""
Policy Catalog

Leave-type registry and per-user policy assignments. Policies are resolved
through an effective-dated lookup so historical dates stay reproducible.
"""
import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PolicyNotFoundError,
    ValidationFailedError,
)
from app.models.leave_policy import AccrualFrequency, LeavePolicy
from app.models.leave_transaction import LeaveTransaction
from app.models.leave_type import LeaveType
from app.models.user import User

logger = logging.getLogger(__name__)

# Flags an admin may flip after the type has ledger history
MUTABLE_LEAVE_TYPE_FIELDS = {
    "name",
    "multi_level_approval",
    "disable_hierarchy_approval",
    "uses_balance",
    "negative_allowed",
    "carryover_allowed",
    "is_active",
}


def get_leave_type(db: Session, leave_type_id: int) -> LeaveType:
    leave_type = db.get(LeaveType, leave_type_id)
    if not leave_type:
        raise NotFoundError("LeaveType", leave_type_id)
    return leave_type


def _load_users(db: Session, user_ids: Iterable[int]) -> List[User]:
    ids = sorted(set(user_ids))
    if not ids:
        return []
    users = db.query(User).filter(User.id.in_(ids)).all()
    missing = set(ids) - {u.id for u in users}
    if missing:
        raise ValidationFailedError(f"Unknown approver ids: {sorted(missing)}")
    return users


def create_leave_type(
    db: Session,
    code: str,
    name: str,
    specific_approver_ids: Iterable[int] = (),
    **flags: Any
) -> LeaveType:
    if db.query(LeaveType).filter(LeaveType.code == code).first():
        raise ValidationFailedError(f"Leave type code '{code}' already exists")
    unknown = set(flags) - MUTABLE_LEAVE_TYPE_FIELDS
    if unknown:
        raise ValidationFailedError(f"Unknown leave type fields: {sorted(unknown)}")

    leave_type = LeaveType(code=code, name=name, **flags)
    leave_type.specific_approvers = _load_users(db, specific_approver_ids)
    db.add(leave_type)
    db.commit()
    db.refresh(leave_type)
    logger.info(f"Leave type created: {code}")
    return leave_type


def update_leave_type(
    db: Session,
    leave_type_id: int,
    changes: Dict[str, Any],
    specific_approver_ids: Optional[Iterable[int]] = None
) -> LeaveType:
    """
    Apply admin edits. The code is frozen once any ledger transaction
    references the type; flags may always change.
    """
    leave_type = get_leave_type(db, leave_type_id)

    if "code" in changes and changes["code"] != leave_type.code:
        referenced = db.query(LeaveTransaction.id).filter(
            LeaveTransaction.leave_type_id == leave_type_id
        ).first()
        if referenced:
            raise InvalidTransitionError("Leave type code cannot change once transactions reference it")
        leave_type.code = changes["code"]

    for field, value in changes.items():
        if field == "code":
            continue
        if field not in MUTABLE_LEAVE_TYPE_FIELDS:
            raise ValidationFailedError(f"Field '{field}' cannot be updated")
        setattr(leave_type, field, value)

    if specific_approver_ids is not None:
        leave_type.specific_approvers = _load_users(db, specific_approver_ids)

    db.commit()
    db.refresh(leave_type)
    return leave_type


def policy_as_of(db: Session, user_id: int, leave_type_id: int, on_date: date) -> Optional[LeavePolicy]:
    """Return the policy in force for a user/type on a given date, if any."""
    return db.query(LeavePolicy).filter(
        LeavePolicy.user_id == user_id,
        LeavePolicy.leave_type_id == leave_type_id,
        LeavePolicy.effective_date <= on_date,
        (LeavePolicy.end_date.is_(None)) | (LeavePolicy.end_date >= on_date)
    ).order_by(LeavePolicy.effective_date.desc()).first()


def require_policy(db: Session, user_id: int, leave_type_id: int, on_date: date) -> LeavePolicy:
    policy = policy_as_of(db, user_id, leave_type_id, on_date)
    if policy is None:
        raise PolicyNotFoundError(user_id, leave_type_id, on_date)
    return policy


def policies_for(db: Session, user_id: int, leave_type_id: int) -> List[LeavePolicy]:
    return db.query(LeavePolicy).filter(
        LeavePolicy.user_id == user_id,
        LeavePolicy.leave_type_id == leave_type_id
    ).order_by(LeavePolicy.effective_date).all()


def assign_policy(
    db: Session,
    user_id: int,
    leave_type_id: int,
    effective_date: date,
    created_by_id: Optional[int] = None,
    **terms: Any
) -> LeavePolicy:
    """
    Create a policy, end-dating the currently open one the day before the new
    one takes effect. Policies are superseded, never deleted.
    """
    if not db.get(User, user_id):
        raise NotFoundError("User", user_id)
    get_leave_type(db, leave_type_id)

    frequency = terms.get("accrual_frequency", AccrualFrequency.MONTHLY.value)
    if hasattr(frequency, "value"):
        frequency = frequency.value
    if frequency not in {f.value for f in AccrualFrequency}:
        raise ValidationFailedError(f"Unsupported accrual frequency: {frequency}")
    terms["accrual_frequency"] = frequency

    current = db.query(LeavePolicy).filter(
        LeavePolicy.user_id == user_id,
        LeavePolicy.leave_type_id == leave_type_id,
        LeavePolicy.end_date.is_(None)
    ).first()
    if current is not None:
        if current.effective_date >= effective_date:
            raise ValidationFailedError(
                "New policy must take effect after the current policy's effective date",
                details={"current_effective_date": current.effective_date.isoformat()}
            )
        current.end_date = effective_date - timedelta(days=1)
        # End-date first so the open-policy unique index never sees two rows
        db.flush()

    policy = LeavePolicy(
        user_id=user_id,
        leave_type_id=leave_type_id,
        effective_date=effective_date,
        created_by_id=created_by_id,
        **terms
    )
    db.add(policy)
    db.commit()
    db.refresh(policy)
    logger.info(
        f"Policy {policy.id} assigned to user {user_id} for leave type {leave_type_id}",
        extra={"superseded_policy_id": current.id if current else None}
    )
    return policy
