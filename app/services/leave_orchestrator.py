"""
Request Lifecycle Orchestrator

The only entry point other subsystems use for leave requests. Sequences
blackout validation, balance reservation and approval routing on submission,
and turns the approval outcome into a ledger commit or release.

Notification events produced by a call are collected in `outbox`; the caller
hands them to the dispatcher once the response is on its way.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from app.core.config import settings
from app.core.exceptions import (
    AccessDeniedError,
    AlreadyResolvedError,
    BlackoutViolationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from app.models.leave_approval import ApprovalStatus, LeaveApproval
from app.models.leave_request import DayPortion, LeaveRequest, LeaveStatus
from app.models.user import User
from app.services import notification as events
from app.services.accrual import quantize
from app.services.approval_workflow import (
    OUTCOME_APPROVED,
    OUTCOME_DENIED,
    ApprovalWorkflow,
    request_lock,
)
from app.services.audit import AuditService
from app.services.base import BaseService
from app.services.blackout_resolver import BlackoutResolver
from app.services.hierarchy import HierarchyOracle, SqlHierarchyOracle
from app.services.ledger import LedgerService
from app.services.policy_catalog import get_leave_type

DELEGATE = "delegate"

_SAME_DAY_PORTIONS = {
    (DayPortion.FULL_DAY.value, DayPortion.FULL_DAY.value): Decimal("1"),
    (DayPortion.MORNING.value, DayPortion.MORNING.value): Decimal("0.5"),
    (DayPortion.AFTERNOON.value, DayPortion.AFTERNOON.value): Decimal("0.5"),
    (DayPortion.MORNING.value, DayPortion.AFTERNOON.value): Decimal("1"),
}


def compute_total_days(
    start_date: date,
    end_date: date,
    start_portion: str = DayPortion.FULL_DAY.value,
    end_portion: str = DayPortion.FULL_DAY.value
) -> Decimal:
    """
    Day count for a request.

    A same-day request is valued by its portion pair. Across several days the
    first and last days count by portion (an afternoon start or a morning end
    is half a day) and weekend days in between are skipped.
    """
    valid = {p.value for p in DayPortion}
    if start_portion not in valid or end_portion not in valid:
        raise ValidationFailedError("Portions must be one of full_day, morning, afternoon")
    if end_date < start_date:
        raise ValidationFailedError("End date must be on or after start date")

    if start_date == end_date:
        total = _SAME_DAY_PORTIONS.get((start_portion, end_portion))
        if total is None:
            raise ValidationFailedError(
                f"Invalid half-day combination for a single day: {start_portion} to {end_portion}"
            )
        return quantize(total)

    total = Decimal("0.5") if start_portion == DayPortion.AFTERNOON.value else Decimal("1")
    current = start_date + timedelta(days=1)
    while current < end_date:
        if current.weekday() < 5:
            total += 1
        current += timedelta(days=1)
    total += Decimal("0.5") if end_portion == DayPortion.MORNING.value else Decimal("1")
    return quantize(total)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LeaveOrchestrator(BaseService):

    def __init__(self, db, oracle: Optional[HierarchyOracle] = None):
        super().__init__(db)
        self.ledger = LedgerService(db)
        self.workflow = ApprovalWorkflow(db, oracle or SqlHierarchyOracle(db))
        self.resolver = BlackoutResolver(db)
        self.audit = AuditService(db)
        self.outbox: List[events.PtoEvent] = []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def request_query(self, request_id: int, for_update: bool = False):
        query = self.db.query(LeaveRequest).filter(LeaveRequest.id == request_id).populate_existing()
        if for_update:
            # Serializes approvers across worker processes; request_lock only covers this one
            query = query.with_for_update()
        return query

    def _load_request(self, request_id: int, for_update: bool = False) -> LeaveRequest:
        request = self.request_query(request_id, for_update).first()
        if request is None:
            raise NotFoundError("LeaveRequest", request_id)
        return request

    def _snapshot(self, request: LeaveRequest) -> dict:
        return {
            "status": request.status,
            "total_days": request.total_days,
            "reservation_id": request.reservation_id,
        }

    def _notify_actionable(self, request: LeaveRequest, exclude_ids=()) -> None:
        for approval in self.workflow.actionable(request.id):
            if approval.id not in exclude_ids:
                self.outbox.append(events.approval_requested(approval, request))

    def _finalize_approved(self, request: LeaveRequest, actor_id: Optional[int]) -> None:
        request.status = LeaveStatus.APPROVED.value
        request.decided_at = _now()
        self.workflow.cancel_remaining(request.id)
        if request.reservation_id:
            # The ledger unit commits the request state with the usage entry
            self.ledger.commit(
                request.reservation_id,
                request_id=request.id,
                effective_date=request.start_date,
                actor_id=actor_id,
            )
        else:
            self.db.commit()
        self.outbox.append(events.request_approved(request))
        self.log_info(f"Leave request {request.id} approved", employee_id=request.employee_id)

    def _finalize_released(self, request: LeaveRequest, status: str) -> None:
        request.status = status
        request.decided_at = _now()
        self.workflow.cancel_remaining(request.id)
        if request.reservation_id:
            self.ledger.release(request.reservation_id)
        else:
            self.db.commit()
        self.log_info(f"Leave request {request.id} {status}", employee_id=request.employee_id)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        actor: User,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        start_portion: str = DayPortion.FULL_DAY.value,
        end_portion: str = DayPortion.FULL_DAY.value,
        reason: Optional[str] = None,
        emergency_override: bool = False,
        override_reason: Optional[str] = None,
        acknowledge_warnings: bool = False
    ) -> LeaveRequest:
        leave_type = get_leave_type(self.db, leave_type_id)
        if not leave_type.is_active:
            raise ValidationFailedError(f"Leave type {leave_type.code} is not active")

        total_days = compute_total_days(start_date, end_date, start_portion, end_portion)
        if total_days <= 0:
            raise ValidationFailedError("Request does not cover any working time")
        total_hours = quantize(total_days * Decimal(str(settings.pto.hours_per_day)))

        evaluation = self.resolver.evaluate(actor.id, leave_type_id, start_date, end_date, emergency=emergency_override)
        if evaluation.has_conflicts:
            self.log_warning(
                f"Submission blocked by blackout for user {actor.id}",
                blackout_ids=[c["blackout_id"] for c in evaluation.conflicts]
            )
            raise BlackoutViolationError(evaluation.conflicts)

        reservation = None
        if leave_type.uses_balance:
            reservation = self.ledger.reserve(actor.id, leave_type_id, total_days, start_date)

        try:
            request = LeaveRequest(
                employee_id=actor.id,
                leave_type_id=leave_type_id,
                start_date=start_date,
                end_date=end_date,
                start_portion=start_portion,
                end_portion=end_portion,
                total_days=total_days,
                total_hours=total_hours,
                reason=reason,
                status=LeaveStatus.PENDING.value,
                reservation_id=reservation.id if reservation else None,
                blackout_conflicts=evaluation.conflicts,
                blackout_warnings=evaluation.warnings,
                blackout_snapshot=evaluation.to_snapshot(),
                warnings_acknowledged_at=_now() if acknowledge_warnings and evaluation.has_warnings else None,
                is_emergency_override=emergency_override,
                override_required=evaluation.requires_override,
                override_reason=override_reason if evaluation.requires_override else None,
            )
            self.db.add(request)
            self.db.flush()

            chain = self.workflow.build_chain(request, leave_type)
            self.audit.log_action(
                action="LEAVE_REQUEST_SUBMITTED",
                entity_type="LeaveRequest",
                entity_id=request.id,
                user_id=actor.id,
                user_role=actor.role,
                details={
                    "leave_type_id": leave_type_id,
                    "total_days": total_days,
                    "approvers": [row.approver_id for row in chain],
                    "blackout_warnings": len(evaluation.warnings),
                },
                after_state=self._snapshot(request),
            )

            if not chain and not request.override_pending:
                self._finalize_approved(request, actor.id)
            else:
                self.db.commit()
        except Exception as exc:
            self.db.rollback()
            if reservation is not None:
                reservation_id = reservation.id
                try:
                    self.ledger.release(reservation_id)
                except Exception:
                    self._logger.exception(
                        f"Could not release reservation {reservation_id} after failed submission",
                        extra={"submission_error": repr(exc)}
                    )
            raise

        self.outbox.insert(0, events.request_submitted(request))
        if request.status == LeaveStatus.PENDING.value:
            self._notify_actionable(request)
        self.log_info(
            f"Leave request {request.id} submitted",
            employee_id=actor.id, total_days=float(total_days), approvers=len(chain)
        )
        return request

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def resolve_approval(
        self,
        approval_id: int,
        actor: User,
        decision: str,
        comment: Optional[str] = None,
        delegate_to_id: Optional[int] = None
    ) -> LeaveRequest:
        approval = self.db.get(LeaveApproval, approval_id)
        if approval is None:
            raise NotFoundError("Approval", approval_id)
        request_id = approval.request_id

        with request_lock(request_id):
            try:
                request = self._load_request(request_id, for_update=True)
                if request.is_terminal:
                    raise AlreadyResolvedError(approval_id)
                if request.employee_id == actor.id:
                    raise AccessDeniedError("You cannot act on approvals for your own request")
                before = {row.id for row in self.workflow.actionable(request_id)}

                if decision == DELEGATE:
                    if delegate_to_id is None:
                        raise ValidationFailedError("delegate_to_id is required to delegate")
                    replacement = self.workflow.delegate(
                        approval_id, actor.id, delegate_to_id, comment, on_behalf=actor.is_hr
                    )
                    self.audit.log_action(
                        action="LEAVE_APPROVAL_DELEGATED",
                        entity_type="LeaveApproval",
                        entity_id=approval_id,
                        user_id=actor.id,
                        user_role=actor.role,
                        details={"request_id": request_id, "delegate_to_id": delegate_to_id},
                    )
                    self.db.commit()
                    self.outbox.append(events.approval_delegated(replacement, request))
                    return request

                row = self.workflow.resolve(approval_id, actor.id, decision, comment, on_behalf=actor.is_hr)
                self.audit.log_action(
                    action=f"LEAVE_APPROVAL_{decision.upper()}",
                    entity_type="LeaveApproval",
                    entity_id=approval_id,
                    user_id=actor.id,
                    user_role=actor.role,
                    details={"request_id": request_id, "level": row.level, "comment": comment},
                )

                outcome = self.workflow.outcome(request_id)
                if outcome == OUTCOME_DENIED:
                    request.denial_reason = comment
                    self._finalize_released(request, LeaveStatus.DENIED.value)
                    self.outbox.append(events.request_denied(request))
                elif outcome == OUTCOME_APPROVED and not request.override_pending:
                    self._finalize_approved(request, actor.id)
                else:
                    self.db.commit()
                    self._notify_actionable(request, exclude_ids=before)
            except Exception:
                self.db.rollback()
                raise
        return request

    def approve_override(
        self,
        request_id: int,
        actor: User,
        approved: bool,
        reason: Optional[str] = None
    ) -> LeaveRequest:
        """Sign off (or refuse) the emergency override on a blackout-affected request."""
        with request_lock(request_id):
            try:
                request = self._load_request(request_id, for_update=True)
                if not request.override_required:
                    raise InvalidTransitionError("No emergency override was requested for this request")
                if request.override_approved_at is not None or request.override_denied_at is not None:
                    raise InvalidTransitionError("Emergency override has already been decided")
                if request.is_terminal:
                    raise InvalidTransitionError(f"Request is already {request.status}")
                if request.employee_id == actor.id:
                    raise AccessDeniedError("You cannot decide the override on your own request")
                if not (actor.is_hr or self.workflow.is_chain_approver(request_id, actor.id)):
                    raise AccessDeniedError("Only an approver on this request or HR can decide the override")

                self.audit.log_action(
                    action="EMERGENCY_OVERRIDE_APPROVED" if approved else "EMERGENCY_OVERRIDE_DENIED",
                    entity_type="LeaveRequest",
                    entity_id=request_id,
                    user_id=actor.id,
                    user_role=actor.role,
                    details={"reason": reason},
                    before_state=self._snapshot(request),
                )

                if approved:
                    request.override_approved_by_id = actor.id
                    request.override_approved_at = _now()
                    if self.workflow.outcome(request_id) == OUTCOME_APPROVED:
                        self._finalize_approved(request, actor.id)
                    else:
                        self.db.commit()
                else:
                    request.override_denied_at = _now()
                    request.denial_reason = reason or "Emergency override denied due to blackout conflicts."
                    self._finalize_released(request, LeaveStatus.DENIED.value)
                    self.outbox.append(events.request_denied(request))
            except Exception:
                self.db.rollback()
                raise
        return request

    # ------------------------------------------------------------------
    # Withdraw / cancel
    # ------------------------------------------------------------------

    def withdraw(self, request_id: int, actor: User) -> LeaveRequest:
        with request_lock(request_id):
            try:
                request = self._load_request(request_id, for_update=True)
                if request.employee_id != actor.id:
                    raise AccessDeniedError("Only the requester can withdraw a request")
                if request.status != LeaveStatus.PENDING.value:
                    raise InvalidTransitionError(f"Cannot withdraw a request that is {request.status}")

                notified = [
                    row.approver_id for row in self.workflow.approvals_for(request_id)
                    if row.status == ApprovalStatus.PENDING.value
                ]
                self.audit.log_action(
                    action="LEAVE_REQUEST_WITHDRAWN",
                    entity_type="LeaveRequest",
                    entity_id=request_id,
                    user_id=actor.id,
                    user_role=actor.role,
                    details={},
                    before_state=self._snapshot(request),
                )
                self._finalize_released(request, LeaveStatus.WITHDRAWN.value)
                self.outbox.extend(events.request_withdrawn(request, notified))
            except Exception:
                self.db.rollback()
                raise
        return request

    def cancel(self, request_id: int, actor: User, reason: Optional[str] = None) -> LeaveRequest:
        if not actor.is_hr:
            raise AccessDeniedError("Only HR can cancel a request")
        with request_lock(request_id):
            try:
                request = self._load_request(request_id, for_update=True)
                if request.status != LeaveStatus.PENDING.value:
                    raise InvalidTransitionError(f"Cannot cancel a request that is {request.status}")

                request.cancellation_reason = reason
                self.audit.log_action(
                    action="LEAVE_REQUEST_CANCELLED",
                    entity_type="LeaveRequest",
                    entity_id=request_id,
                    user_id=actor.id,
                    user_role=actor.role,
                    details={"reason": reason},
                    before_state=self._snapshot(request),
                )
                self._finalize_released(request, LeaveStatus.CANCELLED.value)
                self.outbox.append(events.request_cancelled(request))
            except Exception:
                self.db.rollback()
                raise
        return request

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: int, actor: User) -> LeaveRequest:
        request = self._load_request(request_id)
        if not (
            request.employee_id == actor.id
            or actor.is_hr
            or self.workflow.is_chain_approver(request_id, actor.id)
        ):
            raise AccessDeniedError("You cannot view this request")
        return request

    def collect_reminders(self, now: Optional[datetime] = None) -> int:
        due = self.workflow.collect_due_reminders(now)
        for approval in due:
            self.outbox.append(events.reminder_due(approval, approval.request))
        return len(due)
