from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Table
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base

leave_type_approvers = Table(
    "leave_type_approvers",
    Base.metadata,
    Column("leave_type_id", Integer, ForeignKey("leave_types.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class LeaveType(Base):
    __tablename__ = "leave_types"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)  # e.g., "VAC", "SICK"
    name = Column(String, nullable=False)

    # Approval routing flags
    multi_level_approval = Column(Boolean, default=False, nullable=False)
    disable_hierarchy_approval = Column(Boolean, default=False, nullable=False)

    # Balance behaviour
    uses_balance = Column(Boolean, default=True, nullable=False)
    negative_allowed = Column(Boolean, default=False, nullable=False)
    carryover_allowed = Column(Boolean, default=True, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    specific_approvers = relationship("User", secondary=leave_type_approvers, lazy="selectin")

    @property
    def specific_approver_ids(self) -> list[int]:
        return sorted(u.id for u in self.specific_approvers)

    def __repr__(self):
        return f"<LeaveType {self.code}>"
