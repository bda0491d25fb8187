from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, Text, Index, event
from sqlalchemy.sql import func
from app.core.exceptions import LedgerInvariantError
from app.database import Base
import enum


class TransactionType(str, enum.Enum):
    ACCRUAL = "accrual"
    USAGE = "usage"
    ADJUSTMENT = "adjustment"
    RESET = "reset"
    ROLLOVER = "rollover"
    BONUS = "bonus"
    FORFEITURE = "forfeiture"


class LeaveTransaction(Base):
    """
    Append-only ledger entry. Rows are inserted once and never updated.
    For a (user, type, year) key, rows ordered by id form a prefix-sum chain
    whose last balance_after equals the LeaveBalance row.
    """
    __tablename__ = "leave_transactions"
    __table_args__ = (
        Index("ix_leave_transaction_key", "user_id", "leave_type_id", "year", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False)
    year = Column(Integer, nullable=False)
    request_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=True, index=True)

    type = Column(String(20), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    balance_before = Column(Numeric(10, 2), nullable=False)
    balance_after = Column(Numeric(10, 2), nullable=False)
    effective_date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


@event.listens_for(LeaveTransaction, "before_update")
@event.listens_for(LeaveTransaction, "before_delete")
def _reject_ledger_mutation(mapper, connection, target):
    raise LedgerInvariantError(f"Ledger transaction {target.id} is immutable")
