"""
Org-chart data consumed by the hierarchy oracle.
Maintained by the HR directory; the PTO core never writes these tables.
"""
from sqlalchemy import Column, Integer, Date, Numeric, ForeignKey, UniqueConstraint, Index
from app.database import Base


class SupervisorAssignment(Base):
    __tablename__ = "supervisor_assignments"
    __table_args__ = (
        Index("ix_supervisor_assignment_user_from", "user_id", "effective_from"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    supervisor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date, nullable=True)  # inclusive; null = open-ended


class ApprovalLimit(Base):
    """Per-type day-count ceiling a supervisor may approve on their own."""
    __tablename__ = "approval_limits"
    __table_args__ = (
        UniqueConstraint("approver_id", "leave_type_id", name="uq_approval_limit_approver_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    approver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id", ondelete="CASCADE"), nullable=False)
    max_days = Column(Numeric(8, 2), nullable=True)  # null = unlimited
