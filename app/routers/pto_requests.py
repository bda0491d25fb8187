from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.limiter import limiter
from app.database import get_db
from app.dependencies import get_notification_dispatcher, get_orchestrator
from app.models.leave_request import LeaveRequest
from app.models.user import User
from app.routers.auth_deps import ensure_self_or_hr, get_current_user
from app.schemas.blackout import BlackoutPreviewRequest, BlackoutPreviewResponse
from app.schemas.leave import CancelRequest, LeaveRequestCreate, LeaveRequestResponse, OverrideDecision
from app.services.blackout_resolver import BlackoutResolver
from app.services.leave_orchestrator import LeaveOrchestrator
from app.services.notification import NotificationDispatcher, dispatch_events

router = APIRouter(prefix="/pto", tags=["PTO Requests"])


def to_response(request: LeaveRequest) -> LeaveRequestResponse:
    response = LeaveRequestResponse.model_validate(request)
    response.approvals.sort(key=lambda a: (a.level, a.sequence, a.id))
    return response


@router.post("/requests", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.pto.submit_rate_limit)
def submit_request(
    request: Request,
    payload: LeaveRequestCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    leave_request = orchestrator.submit(
        actor=current_user,
        leave_type_id=payload.leave_type_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        start_portion=payload.start_portion.value,
        end_portion=payload.end_portion.value,
        reason=payload.reason,
        emergency_override=payload.emergency_override,
        override_reason=payload.override_reason,
        acknowledge_warnings=payload.acknowledge_warnings,
    )
    dispatch_events(background_tasks, dispatcher, orchestrator.outbox)
    return to_response(leave_request)


@router.get("/requests/{request_id}", response_model=LeaveRequestResponse)
def get_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator)
):
    return to_response(orchestrator.get_request(request_id, current_user))


@router.post("/requests/{request_id}/withdraw", response_model=LeaveRequestResponse)
def withdraw_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    leave_request = orchestrator.withdraw(request_id, current_user)
    dispatch_events(background_tasks, dispatcher, orchestrator.outbox)
    return to_response(leave_request)


@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestResponse)
def cancel_request(
    request_id: int,
    payload: CancelRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    leave_request = orchestrator.cancel(request_id, current_user, payload.reason)
    dispatch_events(background_tasks, dispatcher, orchestrator.outbox)
    return to_response(leave_request)


@router.post("/requests/{request_id}/override", response_model=LeaveRequestResponse)
def decide_override(
    request_id: int,
    payload: OverrideDecision,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    orchestrator: LeaveOrchestrator = Depends(get_orchestrator),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher)
):
    leave_request = orchestrator.approve_override(request_id, current_user, payload.approved, payload.reason)
    dispatch_events(background_tasks, dispatcher, orchestrator.outbox)
    return to_response(leave_request)


@router.post("/blackouts/preview", response_model=BlackoutPreviewResponse)
def preview_blackouts(
    payload: BlackoutPreviewRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Evaluate a prospective range without submitting anything."""
    user_id = payload.user_id or current_user.id
    ensure_self_or_hr(current_user, user_id)
    evaluation = BlackoutResolver(db).evaluate(
        user_id,
        payload.leave_type_id,
        payload.start_date,
        payload.end_date,
        emergency=payload.emergency_override,
    )
    return evaluation.to_snapshot()
