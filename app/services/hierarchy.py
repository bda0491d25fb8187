"""
Org hierarchy oracle.

The PTO core only consumes the supervisor chain; maintaining reporting lines
belongs to the HR directory.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.hierarchy import ApprovalLimit, SupervisorAssignment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupervisorLink:
    user_id: int
    # leave_type_id -> max days; a missing type or None value means unlimited
    limits_by_type: Dict[int, Optional[Decimal]] = field(default_factory=dict)

    def covers(self, leave_type_id: int, days: Decimal) -> bool:
        limit = self.limits_by_type.get(leave_type_id)
        return limit is None or Decimal(str(days)) <= limit


class HierarchyOracle(Protocol):
    def supervisor_chain(self, user_id: int, as_of: date) -> List[SupervisorLink]:
        ...


class SqlHierarchyOracle:
    """Walks effective-dated supervisor assignments upward from a user."""

    def __init__(self, db: Session, max_depth: Optional[int] = None):
        self.db = db
        self.max_depth = max_depth or settings.pto.max_hierarchy_depth

    def _direct_supervisor(self, user_id: int, as_of: date) -> Optional[int]:
        assignment = self.db.query(SupervisorAssignment).filter(
            SupervisorAssignment.user_id == user_id,
            SupervisorAssignment.effective_from <= as_of,
            (SupervisorAssignment.effective_to.is_(None)) | (SupervisorAssignment.effective_to >= as_of)
        ).order_by(SupervisorAssignment.effective_from.desc()).first()
        return assignment.supervisor_id if assignment else None

    def _limits(self, approver_id: int) -> Dict[int, Optional[Decimal]]:
        rows = self.db.query(ApprovalLimit).filter(ApprovalLimit.approver_id == approver_id).all()
        return {row.leave_type_id: row.max_days for row in rows}

    def supervisor_chain(self, user_id: int, as_of: date) -> List[SupervisorLink]:
        chain: List[SupervisorLink] = []
        seen = {user_id}
        current = user_id
        while len(chain) < self.max_depth:
            supervisor_id = self._direct_supervisor(current, as_of)
            if supervisor_id is None:
                break
            if supervisor_id in seen:
                logger.warning(
                    f"Supervisor cycle detected above user {user_id}",
                    extra={"user_id": user_id, "repeated_supervisor_id": supervisor_id}
                )
                break
            seen.add(supervisor_id)
            chain.append(SupervisorLink(user_id=supervisor_id, limits_by_type=self._limits(supervisor_id)))
            current = supervisor_id
        return chain
