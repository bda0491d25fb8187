"""
Service wiring for the PTO routers.

Collaborators (hierarchy oracle, notification dispatcher) are resolved through
dependencies so deployments and tests can swap them with
`app.dependency_overrides`.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import SessionLocal, get_db
from app.services.hierarchy import HierarchyOracle, SqlHierarchyOracle
from app.services.leave_orchestrator import LeaveOrchestrator
from app.services.ledger import LedgerService
from app.services.notification import InboxDispatcher, NotificationDispatcher


def get_hierarchy_oracle(db: Session = Depends(get_db)) -> HierarchyOracle:
    return SqlHierarchyOracle(db)


def get_notification_dispatcher() -> NotificationDispatcher:
    return InboxDispatcher(SessionLocal)


def get_orchestrator(
    db: Session = Depends(get_db),
    oracle: HierarchyOracle = Depends(get_hierarchy_oracle)
) -> LeaveOrchestrator:
    return LeaveOrchestrator(db, oracle)


def get_ledger(db: Session = Depends(get_db)) -> LedgerService:
    return LedgerService(db)
