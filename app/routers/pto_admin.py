"""
PTO administration: catalog maintenance and scheduler hooks.
"""
import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_ledger, get_notification_dispatcher, get_orchestrator
from app.models.user import User
from app.routers.auth_deps import require_admin, require_hr
from app.schemas.blackout import BlackoutCreate, BlackoutResponse
from app.schemas.policy import (
    AccrualRun,
    AccrualRunResult,
    LeaveTypeCreate,
    LeaveTypeResponse,
    LeaveTypeUpdate,
    PolicyCreate,
    PolicyResponse,
    RolloverResult,
    RolloverRun,
)
from app.services import blackout_resolver, policy_catalog
from app.services.audit import AuditService
from app.services.leave_orchestrator import LeaveOrchestrator
from app.services.ledger import LedgerService
from app.services.notification import NotificationDispatcher, dispatch_events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pto/admin", tags=["PTO Administration"])


# --- Leave types ---

@router.post("/leave-types", response_model=LeaveTypeResponse, status_code=status.HTTP_201_CREATED)
def create_leave_type(
    payload: LeaveTypeCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    flags = payload.model_dump(exclude={"code", "name", "specific_approver_ids"})
    leave_type = policy_catalog.create_leave_type(
        db, payload.code, payload.name, payload.specific_approver_ids, **flags
    )
    AuditService.log(
        db, "LEAVE_TYPE_CREATED", "LeaveType", leave_type.id, current_user.id, current_user.role,
        {"code": leave_type.code}
    )
    db.commit()
    return leave_type


@router.patch("/leave-types/{leave_type_id}", response_model=LeaveTypeResponse)
def update_leave_type(
    leave_type_id: int,
    payload: LeaveTypeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    changes = payload.model_dump(exclude_unset=True)
    approver_ids = changes.pop("specific_approver_ids", None)
    leave_type = policy_catalog.update_leave_type(db, leave_type_id, changes, approver_ids)
    AuditService.log(
        db, "LEAVE_TYPE_UPDATED", "LeaveType", leave_type.id, current_user.id, current_user.role,
        {"changes": changes, "specific_approver_ids": approver_ids}
    )
    db.commit()
    return leave_type


# --- Policies ---

@router.post("/policies", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
def assign_policy(
    payload: PolicyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin())
):
    terms = payload.model_dump(exclude={"user_id", "leave_type_id", "effective_date"})
    policy = policy_catalog.assign_policy(
        db,
        payload.user_id,
        payload.leave_type_id,
        payload.effective_date,
        created_by_id=current_user.id,
        **terms
    )
    AuditService.log(
        db, "LEAVE_POLICY_ASSIGNED", "LeavePolicy", policy.id, current_user.id, current_user.role,
        {"user_id": policy.user_id, "leave_type_id": policy.leave_type_id},
        after_state=terms
    )
    db.commit()
    return policy


# --- Blackouts ---

@router.post("/blackouts", response_model=BlackoutResponse, status_code=status.HTTP_201_CREATED)
def create_blackout(
    payload: BlackoutCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    fields = payload.model_dump(exclude={"scope"})
    blackout = blackout_resolver.create_blackout(db, payload.scope.to_scope(), **fields)
    AuditService.log(
        db, "BLACKOUT_CREATED", "Blackout", blackout.id, current_user.id, current_user.role,
        {"name": blackout.name, "restriction_type": blackout.restriction_type}
    )
    db.commit()
    return blackout


@router.post("/blackouts/{blackout_id}/deactivate", response_model=BlackoutResponse)
def deactivate_blackout(
    blackout_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    blackout = blackout_resolver.deactivate_blackout(db, blackout_id)
    AuditService.log(
        db, "BLACKOUT_DEACTIVATED", "Blackout", blackout.id, current_user.id, current_user.role, {}
    )
    db.commit()
    return blackout


# --- Scheduler hooks ---

@router.post("/accruals/run", response_model=List[AccrualRunResult])
def run_accruals(
    payload: AccrualRun,
    current_user: User = Depends(require_admin()),
    ledger: LedgerService = Depends(get_ledger)
):
    logger.info(f"Accrual run requested by user {current_user.id} as of {payload.as_of}")
    return ledger.run_accrual(payload.as_of, user_id=payload.user_id, leave_type_id=payload.leave_type_id)


@router.post("/rollovers/run", response_model=List[RolloverResult])
def run_rollovers(
    payload: RolloverRun,
    current_user: User = Depends(require_admin()),
    ledger: LedgerService = Depends(get_ledger)
):
    if payload.user_id is not None and payload.leave_type_id is not None:
        return [ledger.rollover_year_end(payload.user_id, payload.leave_type_id, payload.year, actor_id=current_user.id)]
    return ledger.rollover_all(payload.year, actor_id=current_user.id)


@router.post("/reminders/run")
def run_reminders(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_hr()),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    count = orchestrator.collect_reminders()
    dispatch_events(background_tasks, dispatcher, orchestrator.outbox)
    return {"success": True, "reminders": count}
