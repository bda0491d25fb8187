from sqlalchemy import Column, Integer, String, Date, Numeric, Boolean, ForeignKey, DateTime, Text, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base
import enum

class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    WITHDRAWN = "withdrawn"

TERMINAL_STATUSES = frozenset({
    LeaveStatus.APPROVED.value,
    LeaveStatus.DENIED.value,
    LeaveStatus.CANCELLED.value,
    LeaveStatus.WITHDRAWN.value,
})

class DayPortion(str, enum.Enum):
    FULL_DAY = "full_day"
    MORNING = "morning"
    AFTERNOON = "afternoon"

class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    start_portion = Column(String(20), default=DayPortion.FULL_DAY.value, nullable=False)
    end_portion = Column(String(20), default=DayPortion.FULL_DAY.value, nullable=False)
    total_days = Column(Numeric(10, 2), nullable=False)
    total_hours = Column(Numeric(10, 2), nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default=LeaveStatus.PENDING.value, nullable=False, index=True)

    reservation_id = Column(Integer, ForeignKey("balance_reservations.id"), nullable=True)

    # Blackout evaluation captured at submission; never recomputed
    blackout_conflicts = Column(JSON, nullable=True)
    blackout_warnings = Column(JSON, nullable=True)
    blackout_snapshot = Column(JSON, nullable=True)
    warnings_acknowledged_at = Column(DateTime(timezone=True), nullable=True)

    # Emergency override of a full-block blackout
    is_emergency_override = Column(Boolean, default=False, nullable=False)
    override_required = Column(Boolean, default=False, nullable=False)
    override_reason = Column(Text, nullable=True)
    override_approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    override_approved_at = Column(DateTime(timezone=True), nullable=True)
    override_denied_at = Column(DateTime(timezone=True), nullable=True)

    denial_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("User", foreign_keys=[employee_id])
    leave_type = relationship("LeaveType")
    approvals = relationship(
        "LeaveApproval",
        back_populates="request",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def override_pending(self) -> bool:
        return self.override_required and self.override_approved_at is None
