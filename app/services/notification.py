"""
Notification dispatch.

The orchestrator only produces events; delivery happens after the response is
sent, through FastAPI background tasks. Delivery failures are logged and
never reach the caller.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from app.models.leave_approval import LeaveApproval
from app.models.leave_request import LeaveRequest
from app.models.notification import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PtoEvent:
    name: str
    recipient_id: int
    title: str
    message: str
    request_id: Optional[int] = None
    approval_id: Optional[int] = None
    type: str = "info"


def _range(request: LeaveRequest) -> str:
    if request.start_date == request.end_date:
        return request.start_date.isoformat()
    return f"{request.start_date.isoformat()} to {request.end_date.isoformat()}"


def request_submitted(request: LeaveRequest) -> PtoEvent:
    return PtoEvent(
        name="RequestSubmitted",
        recipient_id=request.employee_id,
        title="Leave request submitted",
        message=f"Your request for {request.total_days} days ({_range(request)}) was submitted.",
        request_id=request.id,
    )


def approval_requested(approval: LeaveApproval, request: LeaveRequest) -> PtoEvent:
    return PtoEvent(
        name="ApprovalRequested",
        recipient_id=approval.approver_id,
        title="Leave approval needed",
        message=f"A leave request for {_range(request)} is waiting for your decision.",
        request_id=request.id,
        approval_id=approval.id,
        type="action",
    )


def request_approved(request: LeaveRequest) -> PtoEvent:
    return PtoEvent(
        name="RequestApproved",
        recipient_id=request.employee_id,
        title="Leave request approved",
        message=f"Your leave for {_range(request)} was approved.",
        request_id=request.id,
        type="success",
    )


def request_denied(request: LeaveRequest) -> PtoEvent:
    reason = f" Reason: {request.denial_reason}" if request.denial_reason else ""
    return PtoEvent(
        name="RequestDenied",
        recipient_id=request.employee_id,
        title="Leave request denied",
        message=f"Your leave for {_range(request)} was denied.{reason}",
        request_id=request.id,
        type="warning",
    )


def request_withdrawn(request: LeaveRequest, approver_ids: Iterable[int]) -> List[PtoEvent]:
    return [
        PtoEvent(
            name="RequestWithdrawn",
            recipient_id=approver_id,
            title="Leave request withdrawn",
            message=f"The leave request for {_range(request)} was withdrawn by the employee.",
            request_id=request.id,
        )
        for approver_id in sorted(set(approver_ids))
    ]


def request_cancelled(request: LeaveRequest) -> PtoEvent:
    reason = f" Reason: {request.cancellation_reason}" if request.cancellation_reason else ""
    return PtoEvent(
        name="RequestCancelled",
        recipient_id=request.employee_id,
        title="Leave request cancelled",
        message=f"Your leave request for {_range(request)} was cancelled.{reason}",
        request_id=request.id,
        type="warning",
    )


def approval_delegated(approval: LeaveApproval, request: LeaveRequest) -> PtoEvent:
    return PtoEvent(
        name="ApprovalDelegated",
        recipient_id=approval.approver_id,
        title="Leave approval delegated to you",
        message=f"A leave request for {_range(request)} was delegated to you.",
        request_id=request.id,
        approval_id=approval.id,
        type="action",
    )


def reminder_due(approval: LeaveApproval, request: LeaveRequest) -> PtoEvent:
    return PtoEvent(
        name="ReminderDue",
        recipient_id=approval.approver_id,
        title="Reminder: leave approval pending",
        message=f"The leave request for {_range(request)} is still waiting for your decision.",
        request_id=request.id,
        approval_id=approval.id,
        type="action",
    )


class NotificationDispatcher(Protocol):
    def dispatch(self, events: Sequence[PtoEvent]) -> None:
        ...


class InboxDispatcher:
    """Default dispatcher: writes one in-app notification row per event."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def dispatch(self, events: Sequence[PtoEvent]) -> None:
        db = self.session_factory()
        try:
            for event in events:
                db.add(Notification(
                    user_id=event.recipient_id,
                    event=event.name,
                    title=event.title,
                    message=event.message,
                    type=event.type,
                    request_id=event.request_id,
                    approval_id=event.approval_id,
                ))
            db.commit()
            logger.info(f"Delivered {len(events)} notifications")
        except Exception as e:
            db.rollback()
            logger.warning(f"Notification delivery failed: {e}", extra={"events": [ev.name for ev in events]})
        finally:
            db.close()


def dispatch_events(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher,
    events: Sequence[PtoEvent]
) -> None:
    if events:
        background_tasks.add_task(dispatcher.dispatch, list(events))
