# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    user, department, hierarchy,
    leave_type, leave_policy, leave_balance, leave_transaction,
    leave_request, leave_approval, blackout,
    notification, audit_log
)

# Explicit class exports for cleaner imports
from .user import User, UserRole
from .department import Department, Position
from .hierarchy import SupervisorAssignment, ApprovalLimit
from .leave_type import LeaveType
from .leave_policy import LeavePolicy, AccrualFrequency
from .leave_balance import LeaveBalance, BalanceReservation, ReservationStatus
from .leave_transaction import LeaveTransaction, TransactionType
from .leave_request import LeaveRequest, LeaveStatus, DayPortion
from .leave_approval import LeaveApproval, ApprovalStatus
from .blackout import Blackout, RestrictionType
from .notification import Notification
from .audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "Department",
    "Position",
    "SupervisorAssignment",
    "ApprovalLimit",
    "LeaveType",
    "LeavePolicy",
    "AccrualFrequency",
    "LeaveBalance",
    "BalanceReservation",
    "ReservationStatus",
    "LeaveTransaction",
    "TransactionType",
    "LeaveRequest",
    "LeaveStatus",
    "DayPortion",
    "LeaveApproval",
    "ApprovalStatus",
    "Blackout",
    "RestrictionType",
    "Notification",
    "AuditLog",
]
