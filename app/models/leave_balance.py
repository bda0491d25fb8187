from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class LeaveBalance(Base):
    """
    Current-balance snapshot for one (user, leave type, year).

    `balance` is authoritative and always equals
    initial + accrued + rollover + bonus + adjusted - used - forfeited - carried_forward,
    which is also the running sum of the year's ledger transactions.
    `pending_balance` is a liability marker only and never appears in the ledger.
    """
    __tablename__ = "leave_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "leave_type_id", "year", name="uq_leave_balance_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)

    balance = Column(Numeric(10, 2), default=0, nullable=False)
    pending_balance = Column(Numeric(10, 2), default=0, nullable=False)
    used_balance = Column(Numeric(10, 2), default=0, nullable=False)
    accrued_balance = Column(Numeric(10, 2), default=0, nullable=False)
    rollover_balance = Column(Numeric(10, 2), default=0, nullable=False)  # carried in from the prior year

    initial_balance = Column(Numeric(10, 2), default=0, nullable=False)
    bonus_balance = Column(Numeric(10, 2), default=0, nullable=False)
    adjusted_balance = Column(Numeric(10, 2), default=0, nullable=False)
    forfeited_balance = Column(Numeric(10, 2), default=0, nullable=False)
    carried_forward_balance = Column(Numeric(10, 2), default=0, nullable=False)  # rolled out to next year

    last_accrual_date = Column(Date, nullable=True)
    rolled_over_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    leave_type = relationship("LeaveType")

    @property
    def available_balance(self):
        return self.balance - self.pending_balance

    def expected_balance(self):
        return (
            self.initial_balance
            + self.accrued_balance
            + self.rollover_balance
            + self.bonus_balance
            + self.adjusted_balance
            - self.used_balance
            - self.forfeited_balance
            - self.carried_forward_balance
        )


class ReservationStatus(str, enum.Enum):
    HELD = "held"
    COMMITTED = "committed"
    RELEASED = "released"


class BalanceReservation(Base):
    """Provisional hold backing a share of `pending_balance`."""
    __tablename__ = "balance_reservations"

    id = Column(Integer, primary_key=True, index=True)
    balance_id = Column(Integer, ForeignKey("leave_balances.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False)
    year = Column(Integer, nullable=False)
    days = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default=ReservationStatus.HELD.value, nullable=False)
    usage_transaction_id = Column(Integer, nullable=True)  # leave_transactions.id of the usage entry

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    balance = relationship("LeaveBalance")
