from sqlalchemy import Column, Integer, String, Numeric, Boolean, Date, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class AccrualFrequency(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class LeavePolicy(Base):
    """
    Accrual and balance rules for one user and one leave type.

    Replacing a policy end-dates the previous row; rows are never deleted so
    historical dates stay reproducible.
    """
    __tablename__ = "leave_policies"
    __table_args__ = (
        # One open-ended policy per user/type
        Index(
            "uq_leave_policy_open",
            "user_id",
            "leave_type_id",
            unique=True,
            sqlite_where=text("end_date IS NULL"),
            postgresql_where=text("end_date IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False, index=True)

    initial_days = Column(Numeric(10, 2), default=0, nullable=False)
    annual_accrual_amount = Column(Numeric(10, 2), default=0, nullable=False)
    bonus_days_per_year = Column(Numeric(10, 2), default=0, nullable=False)
    years_for_bonus = Column(Integer, nullable=True)
    accrual_frequency = Column(String(20), default=AccrualFrequency.MONTHLY.value, nullable=False)

    rollover_enabled = Column(Boolean, default=False, nullable=False)
    max_rollover_days = Column(Numeric(10, 2), nullable=True)  # null = uncapped
    max_negative_balance = Column(Numeric(10, 2), default=0, nullable=False)
    prorate_first_year = Column(Boolean, default=False, nullable=False)

    effective_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # inclusive

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    leave_type = relationship("LeaveType")

    def is_effective_on(self, on_date) -> bool:
        return self.effective_date <= on_date and (self.end_date is None or self.end_date >= on_date)
