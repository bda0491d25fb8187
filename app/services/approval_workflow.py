"""
Approval Workflow State Machine

Builds the approval chain for a request and advances individual approval
rows. Each row leaves `pending` exactly once, through a conditional UPDATE,
so concurrent resolvers cannot both win.
"""
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

from app.core.config import settings
from app.core.exceptions import (
    AccessDeniedError,
    AlreadyResolvedError,
    InvalidChainError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from app.models.leave_approval import ApprovalStatus, LeaveApproval
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.leave_type import LeaveType
from app.models.user import User
from app.services.base import BaseService
from app.services.hierarchy import HierarchyOracle

OUTCOME_PENDING = "pending"
OUTCOME_APPROVED = "approved"
OUTCOME_DENIED = "denied"

DECISIONS = {ApprovalStatus.APPROVED.value, ApprovalStatus.DENIED.value}

_registry_guard = threading.Lock()
_request_locks: Dict[int, threading.RLock] = {}


@contextmanager
def request_lock(request_id: int) -> Iterator[None]:
    """Serialize workflow transitions for one request within this process."""
    with _registry_guard:
        lock = _request_locks.setdefault(request_id, threading.RLock())
    with lock:
        yield


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ApprovalWorkflow(BaseService):

    def __init__(self, db, oracle: HierarchyOracle):
        super().__init__(db)
        self.oracle = oracle

    # ------------------------------------------------------------------
    # Chain construction
    # ------------------------------------------------------------------

    def build_chain(self, request: LeaveRequest, leave_type: LeaveType) -> List[LeaveApproval]:
        """
        Create the approval rows for a freshly submitted request.

        Rows are added to the session but not committed. An empty list means
        no approval is needed.
        """
        specific = [uid for uid in leave_type.specific_approver_ids if uid != request.employee_id]
        if specific:
            rows = [
                LeaveApproval(
                    request_id=request.id,
                    approver_id=approver_id,
                    level=1,
                    sequence=index,
                    is_required=True,
                    is_parallel=True,
                    status=ApprovalStatus.PENDING.value,
                )
                for index, approver_id in enumerate(specific, start=1)
            ]
        elif leave_type.disable_hierarchy_approval:
            return []
        else:
            supervisors = self.oracle.supervisor_chain(request.employee_id, request.start_date)
            if not supervisors:
                raise InvalidChainError(f"User {request.employee_id} has no supervisor to approve this request")

            chosen = []
            for index, link in enumerate(supervisors):
                chosen.append(link)
                if link.covers(request.leave_type_id, request.total_days):
                    if leave_type.multi_level_approval and index + 1 < len(supervisors):
                        chosen.append(supervisors[index + 1])
                    break

            rows = [
                LeaveApproval(
                    request_id=request.id,
                    approver_id=link.user_id,
                    level=level,
                    sequence=1,
                    is_required=True,
                    is_parallel=False,
                    status=ApprovalStatus.PENDING.value,
                )
                for level, link in enumerate(chosen, start=1)
            ]

        self.db.add_all(rows)
        self.db.flush()
        self.log_info(
            f"Approval chain built for request {request.id}",
            approvers=[r.approver_id for r in rows], levels=max(r.level for r in rows)
        )
        return rows

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def approvals_for(self, request_id: int) -> List[LeaveApproval]:
        return self.db.query(LeaveApproval).filter(
            LeaveApproval.request_id == request_id
        ).order_by(LeaveApproval.level, LeaveApproval.sequence, LeaveApproval.id).populate_existing().all()

    @staticmethod
    def _counts(row: LeaveApproval) -> bool:
        return row.status not in (ApprovalStatus.DELEGATED.value, ApprovalStatus.CANCELLED.value)

    def is_actionable(self, approval: LeaveApproval, rows: List[LeaveApproval]) -> bool:
        if not approval.is_pending:
            return False
        for row in rows:
            if row.id == approval.id or not self._counts(row):
                continue
            if row.level < approval.level and row.is_required and row.status != ApprovalStatus.APPROVED.value:
                return False
            if (
                row.level == approval.level
                and not approval.is_parallel
                and row.sequence < approval.sequence
                and row.status != ApprovalStatus.APPROVED.value
            ):
                return False
        return True

    def actionable(self, request_id: int) -> List[LeaveApproval]:
        rows = self.approvals_for(request_id)
        return [row for row in rows if self.is_actionable(row, rows)]

    def outcome(self, request_id: int) -> str:
        rows = [row for row in self.approvals_for(request_id) if self._counts(row)]
        required = [row for row in rows if row.is_required]
        if any(row.status == ApprovalStatus.DENIED.value for row in required):
            return OUTCOME_DENIED
        if all(row.status == ApprovalStatus.APPROVED.value for row in required):
            return OUTCOME_APPROVED
        return OUTCOME_PENDING

    def pending_for(self, approver_id: int) -> List[LeaveApproval]:
        """Approvals the approver can act on right now."""
        candidates = self.db.query(LeaveApproval).join(
            LeaveRequest, LeaveApproval.request_id == LeaveRequest.id
        ).filter(
            LeaveApproval.approver_id == approver_id,
            LeaveApproval.status == ApprovalStatus.PENDING.value,
            LeaveRequest.status == LeaveStatus.PENDING.value
        ).order_by(LeaveApproval.created_at, LeaveApproval.id).all()

        result = []
        for approval in candidates:
            if self.is_actionable(approval, self.approvals_for(approval.request_id)):
                result.append(approval)
        return result

    def is_chain_approver(self, request_id: int, user_id: int) -> bool:
        return self.db.query(LeaveApproval.id).filter(
            LeaveApproval.request_id == request_id,
            LeaveApproval.approver_id == user_id,
            LeaveApproval.status != ApprovalStatus.DELEGATED.value
        ).first() is not None

    # ------------------------------------------------------------------
    # Transitions (caller holds request_lock and commits)
    # ------------------------------------------------------------------

    def _load(self, approval_id: int) -> LeaveApproval:
        approval = self.db.query(LeaveApproval).filter(
            LeaveApproval.id == approval_id
        ).populate_existing().first()
        if approval is None:
            raise NotFoundError("Approval", approval_id)
        return approval

    def _swap_from_pending(self, approval_id: int, values: dict) -> None:
        updated = self.db.query(LeaveApproval).filter(
            LeaveApproval.id == approval_id,
            LeaveApproval.status == ApprovalStatus.PENDING.value
        ).update(values, synchronize_session=False)
        if updated == 0:
            raise AlreadyResolvedError(approval_id)

    def _check_can_act(self, approval: LeaveApproval, actor_id: int, on_behalf: bool = False) -> None:
        if not approval.is_pending:
            raise AlreadyResolvedError(approval.id)
        if approval.approver_id != actor_id and not on_behalf:
            raise AccessDeniedError("Only the assigned approver can act on this approval")
        rows = self.approvals_for(approval.request_id)
        if not self.is_actionable(approval, rows):
            raise InvalidTransitionError("Earlier approvals in the chain are still outstanding")

    def resolve(
        self,
        approval_id: int,
        actor_id: int,
        decision: str,
        comment: Optional[str] = None,
        on_behalf: bool = False
    ) -> LeaveApproval:
        if decision not in DECISIONS:
            raise ValidationFailedError(f"Decision must be one of {sorted(DECISIONS)}")
        approval = self._load(approval_id)
        self._check_can_act(approval, actor_id, on_behalf)

        self._swap_from_pending(approval_id, {
            "status": decision,
            "acted_by_id": actor_id,
            "comment": comment,
            "responded_at": datetime.now(timezone.utc),
        })
        approval = self._load(approval_id)
        self.log_info(f"Approval {approval_id} resolved as {decision}", request_id=approval.request_id)
        return approval

    def delegation_depth(self, approval: LeaveApproval) -> int:
        depth = 0
        current = approval
        while current.delegated_from_id is not None:
            depth += 1
            current = self._load(current.delegated_from_id)
        return depth

    def delegate(
        self,
        approval_id: int,
        actor_id: int,
        delegate_to_id: int,
        comment: Optional[str] = None,
        on_behalf: bool = False
    ) -> LeaveApproval:
        approval = self._load(approval_id)
        self._check_can_act(approval, actor_id, on_behalf)

        request = self.db.get(LeaveRequest, approval.request_id)
        if delegate_to_id == actor_id:
            raise InvalidTransitionError("Cannot delegate an approval to yourself")
        if delegate_to_id == request.employee_id:
            raise InvalidTransitionError("Cannot delegate an approval to the requester")
        delegate = self.db.get(User, delegate_to_id)
        if delegate is None or not delegate.is_active:
            raise NotFoundError("User", delegate_to_id)
        already_at_level = self.db.query(LeaveApproval.id).filter(
            LeaveApproval.request_id == approval.request_id,
            LeaveApproval.level == approval.level,
            LeaveApproval.approver_id == delegate_to_id
        ).first()
        if already_at_level:
            raise InvalidTransitionError("Delegate already holds an approval at this level")
        if self.delegation_depth(approval) >= settings.pto.max_delegation_depth:
            raise InvalidTransitionError("Delegation depth limit reached")

        self._swap_from_pending(approval_id, {
            "status": ApprovalStatus.DELEGATED.value,
            "delegated_to_id": delegate_to_id,
            "acted_by_id": actor_id,
            "comment": comment,
            "responded_at": datetime.now(timezone.utc),
        })
        replacement = LeaveApproval(
            request_id=approval.request_id,
            approver_id=delegate_to_id,
            level=approval.level,
            sequence=approval.sequence,
            is_required=approval.is_required,
            is_parallel=approval.is_parallel,
            status=ApprovalStatus.PENDING.value,
            delegated_from_id=approval.id,
        )
        self.db.add(replacement)
        self.db.flush()
        self.log_info(
            f"Approval {approval_id} delegated to user {delegate_to_id}",
            request_id=approval.request_id, replacement_id=replacement.id
        )
        return replacement

    def cancel_remaining(self, request_id: int) -> int:
        """Close out rows still pending once the request has reached a terminal state."""
        return self.db.query(LeaveApproval).filter(
            LeaveApproval.request_id == request_id,
            LeaveApproval.status == ApprovalStatus.PENDING.value
        ).update({
            "status": ApprovalStatus.CANCELLED.value,
            "responded_at": datetime.now(timezone.utc),
        }, synchronize_session=False)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def collect_due_reminders(self, now: Optional[datetime] = None) -> List[LeaveApproval]:
        """
        Stamp `reminder_sent_at` on actionable approvals pending longer than
        the configured threshold. Each row is stamped at most once.
        """
        now = _as_utc(now) or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=settings.pto.reminder_after_hours)

        candidates = self.db.query(LeaveApproval).join(
            LeaveRequest, LeaveApproval.request_id == LeaveRequest.id
        ).filter(
            LeaveApproval.status == ApprovalStatus.PENDING.value,
            LeaveApproval.reminder_sent_at.is_(None),
            LeaveRequest.status == LeaveStatus.PENDING.value
        ).order_by(LeaveApproval.id).all()

        due = []
        for approval in candidates:
            created = _as_utc(approval.created_at)
            if created is None or created > cutoff:
                continue
            if not self.is_actionable(approval, self.approvals_for(approval.request_id)):
                continue
            stamped = self.db.query(LeaveApproval).filter(
                LeaveApproval.id == approval.id,
                LeaveApproval.reminder_sent_at.is_(None)
            ).update({"reminder_sent_at": now}, synchronize_session=False)
            if stamped:
                due.append(approval)
        self.db.commit()
        for approval in due:
            self.db.refresh(approval)
        if due:
            self.log_info(f"Collected {len(due)} approval reminders")
        return due
