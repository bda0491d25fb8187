from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends

from app.dependencies import get_notification_dispatcher, get_orchestrator
from app.models.user import User
from app.routers.auth_deps import get_current_user
from app.routers.pto_requests import to_response
from app.schemas.leave import ApprovalResolve, LeaveApprovalResponse, LeaveRequestResponse
from app.services.leave_orchestrator import LeaveOrchestrator
from app.services.notification import NotificationDispatcher, dispatch_events

router = APIRouter(prefix="/pto/approvals", tags=["PTO Approvals"])


@router.post("/{approval_id}/resolve", response_model=LeaveRequestResponse)
def resolve_approval(
    approval_id: int,
    payload: ApprovalResolve,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    """Approve, deny or delegate one approval step. Returns the parent request."""
    leave_request = orchestrator.resolve_approval(
        approval_id,
        current_user,
        payload.decision,
        comment=payload.comment,
        delegate_to_id=payload.delegate_to_id,
    )
    dispatch_events(background_tasks, dispatcher, orchestrator.outbox)
    return to_response(leave_request)


@router.get("/pending", response_model=List[LeaveApprovalResponse])
def pending_approvals(
    current_user: User = Depends(get_current_user),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator)
):
    return orchestrator.workflow.pending_for(current_user.id)
