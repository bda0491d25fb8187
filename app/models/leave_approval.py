from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base
import enum


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    DELEGATED = "delegated"
    CANCELLED = "cancelled"  # left pending when the request reached a terminal state


class LeaveApproval(Base):
    __tablename__ = "leave_approvals"
    __table_args__ = (
        UniqueConstraint("request_id", "approver_id", "level", name="uq_leave_approval_request_approver_level"),
    )

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    level = Column(Integer, nullable=False)       # 1 = first
    sequence = Column(Integer, default=1, nullable=False)  # tie-break within a level
    is_required = Column(Boolean, default=True, nullable=False)
    is_parallel = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False, index=True)

    delegated_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    delegated_from_id = Column(Integer, ForeignKey("leave_approvals.id"), nullable=True)
    acted_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # differs from approver_id when HR acts on behalf
    comment = Column(Text, nullable=True)

    responded_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    request = relationship("LeaveRequest", back_populates="approvals")
    approver = relationship("User", foreign_keys=[approver_id])

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING.value
