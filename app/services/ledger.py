"""
Balance Ledger & Accrual Engine

Owns the (user, leave type, year) balance snapshots and the append-only
transaction history behind them. Every mutation of a balance key happens
inside `_atomic`: a process-local re-entrant lock for the key plus
SELECT ... FOR UPDATE on the balance row, with the commit issued before the
lock is released.
"""
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func

from app.core.config import settings
from app.core.exceptions import (
    InsufficientBalanceError,
    LedgerInvariantError,
    NotFoundError,
    ValidationFailedError,
)
from app.models.leave_balance import BalanceReservation, LeaveBalance, ReservationStatus
from app.models.leave_policy import LeavePolicy
from app.models.leave_transaction import LeaveTransaction, TransactionType
from app.models.user import User
from app.services import accrual
from app.services.audit import AuditService
from app.services.base import BaseService
from app.services.policy_catalog import get_leave_type, policies_for, policy_as_of, require_policy

BalanceKey = Tuple[int, int, int]

_registry_guard = threading.Lock()
_key_locks: Dict[BalanceKey, threading.RLock] = {}


def _lock_for(key: BalanceKey) -> threading.RLock:
    with _registry_guard:
        lock = _key_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _key_locks[key] = lock
        return lock


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService(BaseService):

    def __init__(self, db):
        super().__init__(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Atomic units
    # ------------------------------------------------------------------

    @contextmanager
    def _atomic(self, *keys: BalanceKey) -> Iterator[None]:
        # Sorted acquisition keeps multi-key units (rollover) deadlock free
        locks = [_lock_for(k) for k in sorted(set(keys))]
        for lock in locks:
            lock.acquire()
        try:
            try:
                yield
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        finally:
            for lock in reversed(locks):
                lock.release()

    def _locked_balance(self, key: BalanceKey) -> Optional[LeaveBalance]:
        user_id, leave_type_id, year = key
        return self.db.query(LeaveBalance).filter(
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year
        ).populate_existing().with_for_update().first()

    def _seed_policy(self, user_id: int, leave_type_id: int, year: int, on_date: Optional[date] = None) -> Optional[LeavePolicy]:
        if on_date is not None:
            policy = policy_as_of(self.db, user_id, leave_type_id, on_date)
            if policy is not None:
                return policy
        for policy in policies_for(self.db, user_id, leave_type_id):
            if policy.is_effective_on(date(year, 1, 1)) or policy.effective_date.year == year:
                return policy
        return None

    def _open_balance(self, key: BalanceKey, on_date: Optional[date] = None) -> LeaveBalance:
        """Lock the balance row, creating it (with its `reset` seed) when absent."""
        balance = self._locked_balance(key)
        if balance is not None:
            return balance

        user_id, leave_type_id, year = key
        policy = self._seed_policy(user_id, leave_type_id, year, on_date)
        initial = accrual.quantize(policy.initial_days if policy else 0)

        balance = LeaveBalance(
            user_id=user_id,
            leave_type_id=leave_type_id,
            year=year,
            balance=Decimal("0.00"),
            pending_balance=Decimal("0.00"),
            used_balance=Decimal("0.00"),
            accrued_balance=Decimal("0.00"),
            rollover_balance=Decimal("0.00"),
            initial_balance=Decimal("0.00"),
            bonus_balance=Decimal("0.00"),
            adjusted_balance=Decimal("0.00"),
            forfeited_balance=Decimal("0.00"),
            carried_forward_balance=Decimal("0.00"),
        )
        self.db.add(balance)
        self.db.flush()
        self._post(
            balance,
            TransactionType.RESET,
            initial,
            component="initial_balance",
            effective_date=date(year, 1, 1),
            description=f"Opening balance for {year}",
        )
        self.log_info(f"Balance opened for user {user_id}, type {leave_type_id}, year {year}", initial=float(initial))
        return balance

    def _post(
        self,
        balance: LeaveBalance,
        txn_type: TransactionType,
        amount: Decimal,
        component: str,
        effective_date: date,
        description: Optional[str] = None,
        request_id: Optional[int] = None,
        created_by_id: Optional[int] = None,
    ) -> LeaveTransaction:
        """Append one ledger entry and move the balance and one component by it."""
        amount = accrual.quantize(amount)
        before = accrual.quantize(balance.balance)
        after = before + amount

        # Outflow components are stored as positive totals
        delta = -amount if component in ("used_balance", "forfeited_balance", "carried_forward_balance") else amount
        setattr(balance, component, accrual.quantize(getattr(balance, component) or 0) + delta)
        balance.balance = after

        if accrual.quantize(balance.expected_balance()) != after:
            raise LedgerInvariantError(
                f"Balance {balance.id} components do not sum to {after} after {txn_type.value}"
            )

        txn = LeaveTransaction(
            user_id=balance.user_id,
            leave_type_id=balance.leave_type_id,
            year=balance.year,
            request_id=request_id,
            type=txn_type.value,
            amount=amount,
            balance_before=before,
            balance_after=after,
            effective_date=effective_date,
            description=description,
            created_by_id=created_by_id,
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        user_id: int,
        leave_type_id: int,
        days,
        on_date: date
    ) -> BalanceReservation:
        """
        Place a hold of `days` against the balance for `on_date`'s year.

        Only `pending_balance` moves; nothing is written to the ledger.
        Raises InsufficientBalanceError when the hold would push
        balance - pending below the policy floor.
        """
        leave_type = get_leave_type(self.db, leave_type_id)
        if not leave_type.uses_balance:
            raise ValidationFailedError(f"Leave type {leave_type.code} does not track a balance")
        days = accrual.quantize(days)
        if days <= 0:
            raise ValidationFailedError("Reserved days must be positive")

        policy = require_policy(self.db, user_id, leave_type_id, on_date)
        floor = -accrual.quantize(policy.max_negative_balance or 0) if leave_type.negative_allowed else Decimal("0.00")
        key = (user_id, leave_type_id, on_date.year)

        with self._atomic(key):
            balance = self._open_balance(key, on_date)
            available = accrual.quantize(balance.balance) - accrual.quantize(balance.pending_balance)
            if available - days < floor:
                raise InsufficientBalanceError(
                    requested=float(days), available=float(available), floor=float(floor)
                )
            balance.pending_balance = accrual.quantize(balance.pending_balance) + days
            reservation = BalanceReservation(
                balance_id=balance.id,
                user_id=user_id,
                leave_type_id=leave_type_id,
                year=on_date.year,
                days=days,
                status=ReservationStatus.HELD.value,
            )
            self.db.add(reservation)
            self.db.flush()

        self.log_info(
            f"Reserved {days} days for user {user_id}",
            reservation_id=reservation.id, leave_type_id=leave_type_id, year=on_date.year
        )
        return reservation

    def _locked_reservation(self, reservation_id: int) -> Tuple[BalanceReservation, BalanceKey]:
        reservation = self.db.get(BalanceReservation, reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation, (reservation.user_id, reservation.leave_type_id, reservation.year)

    def commit(
        self,
        reservation_id: int,
        request_id: Optional[int] = None,
        effective_date: Optional[date] = None,
        actor_id: Optional[int] = None
    ) -> LeaveTransaction:
        """Turn a held reservation into a permanent `usage` entry. Safe to repeat."""
        reservation, key = self._locked_reservation(reservation_id)

        with self._atomic(key):
            balance = self._locked_balance(key)
            self.db.refresh(reservation)
            if reservation.status == ReservationStatus.COMMITTED.value:
                return self.db.get(LeaveTransaction, reservation.usage_transaction_id)
            if reservation.status == ReservationStatus.RELEASED.value:
                raise LedgerInvariantError(f"Reservation {reservation_id} was released and cannot be committed")
            if balance is None:
                raise LedgerInvariantError(f"Reservation {reservation_id} has no balance row")

            balance.pending_balance = accrual.quantize(balance.pending_balance) - accrual.quantize(reservation.days)
            txn = self._post(
                balance,
                TransactionType.USAGE,
                -accrual.quantize(reservation.days),
                component="used_balance",
                effective_date=effective_date or date.today(),
                description="Approved leave",
                request_id=request_id,
                created_by_id=actor_id,
            )
            reservation.status = ReservationStatus.COMMITTED.value
            reservation.usage_transaction_id = txn.id
            reservation.resolved_at = _now()

        self.log_info(f"Committed reservation {reservation_id}", transaction_id=txn.id)
        return txn

    def release(self, reservation_id: int) -> BalanceReservation:
        """Drop a held reservation. Releasing twice is a no-op."""
        reservation, key = self._locked_reservation(reservation_id)

        with self._atomic(key):
            balance = self._locked_balance(key)
            self.db.refresh(reservation)
            if reservation.status == ReservationStatus.RELEASED.value:
                return reservation
            if reservation.status == ReservationStatus.COMMITTED.value:
                raise LedgerInvariantError(f"Reservation {reservation_id} was committed and cannot be released")
            if balance is None:
                raise LedgerInvariantError(f"Reservation {reservation_id} has no balance row")

            balance.pending_balance = accrual.quantize(balance.pending_balance) - accrual.quantize(reservation.days)
            if balance.pending_balance < 0:
                raise LedgerInvariantError(f"Pending balance for balance {balance.id} would go negative")
            reservation.status = ReservationStatus.RELEASED.value
            reservation.resolved_at = _now()

        self.log_info(f"Released reservation {reservation_id}")
        return reservation

    # ------------------------------------------------------------------
    # Manual corrections
    # ------------------------------------------------------------------

    def adjust(
        self,
        user_id: int,
        leave_type_id: int,
        year: int,
        amount,
        actor: User,
        description: str,
        effective_date: Optional[date] = None
    ) -> LeaveTransaction:
        amount = accrual.quantize(amount)
        if amount == 0:
            raise ValidationFailedError("Adjustment amount must be non-zero")
        get_leave_type(self.db, leave_type_id)
        if not self.db.get(User, user_id):
            raise NotFoundError("User", user_id)

        key = (user_id, leave_type_id, year)
        with self._atomic(key):
            balance = self._open_balance(key, effective_date)
            before_state = {"balance": balance.balance}
            txn = self._post(
                balance,
                TransactionType.ADJUSTMENT,
                amount,
                component="adjusted_balance",
                effective_date=effective_date or date.today(),
                description=description,
                created_by_id=actor.id,
            )
            self.audit.log_action(
                action="BALANCE_ADJUSTED",
                entity_type="LeaveBalance",
                entity_id=balance.id,
                user_id=actor.id,
                user_role=actor.role,
                details={"amount": amount, "description": description, "transaction_id": txn.id},
                before_state=before_state,
                after_state={"balance": balance.balance},
            )
        return txn

    # ------------------------------------------------------------------
    # Accrual
    # ------------------------------------------------------------------

    def _accrual_cursor(self, user_id: int, leave_type_id: int) -> Optional[date]:
        return self.db.query(func.max(LeaveBalance.last_accrual_date)).filter(
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type_id == leave_type_id
        ).scalar()

    def _accrue_period(
        self,
        policy: LeavePolicy,
        period_open: date,
        boundary: date,
        service_start: date
    ) -> Decimal:
        """Materialize one closed period. Returns the amount credited (0 if already applied)."""
        last_day = boundary - timedelta(days=1)
        key = (policy.user_id, policy.leave_type_id, last_day.year)
        credited = Decimal("0.00")

        with self._atomic(key):
            balance = self._open_balance(key, last_day)
            if balance.last_accrual_date is not None and balance.last_accrual_date >= boundary:
                return credited

            amount = accrual.per_period_amount(policy.annual_accrual_amount, policy.accrual_frequency)
            if policy.prorate_first_year and period_open == policy.effective_date:
                fraction = accrual.proration_fraction(period_open, boundary, policy.accrual_frequency)
                amount = accrual.quantize(amount * fraction)

            if amount > 0:
                self._post(
                    balance,
                    TransactionType.ACCRUAL,
                    amount,
                    component="accrued_balance",
                    effective_date=last_day,
                    description=f"{policy.accrual_frequency.capitalize()} accrual through {last_day.isoformat()}",
                )
                credited += amount

            bonus = accrual.quantize(policy.bonus_days_per_year or 0)
            if (
                bonus > 0
                and policy.years_for_bonus is not None
                and accrual.quantize(balance.bonus_balance or 0) == 0
                and accrual.years_of_service(service_start, last_day) >= policy.years_for_bonus
            ):
                self._post(
                    balance,
                    TransactionType.BONUS,
                    bonus,
                    component="bonus_balance",
                    effective_date=last_day,
                    description=f"Service bonus after {policy.years_for_bonus} years",
                )
                credited += bonus

            balance.last_accrual_date = boundary
        return credited

    def _accrue_pair(self, user_id: int, leave_type_id: int, as_of: date) -> Dict[str, object]:
        policies = [p for p in policies_for(self.db, user_id, leave_type_id) if p.effective_date <= as_of]
        result = {"user_id": user_id, "leave_type_id": leave_type_id, "periods": 0, "credited": Decimal("0.00")}
        if not policies:
            return result

        user = self.db.get(User, user_id)
        service_start = (user.hire_date if user and user.hire_date else None) or policies[0].effective_date
        cursor = self._accrual_cursor(user_id, leave_type_id)

        for policy in policies:
            start = policy.effective_date if cursor is None else max(cursor, policy.effective_date)
            for period_open, boundary in accrual.iter_boundaries(start, as_of, policy.accrual_frequency, policy.end_date):
                credited = self._accrue_period(policy, period_open, boundary, service_start)
                if credited:
                    result["periods"] += 1
                result["credited"] += credited
                cursor = boundary
        return result

    def run_accrual(
        self,
        as_of: date,
        user_id: Optional[int] = None,
        leave_type_id: Optional[int] = None
    ) -> List[Dict[str, object]]:
        """
        Materialize every accrual period that closed on or before `as_of`.
        Re-running with the same `as_of` changes nothing.
        """
        query = self.db.query(LeavePolicy.user_id, LeavePolicy.leave_type_id).filter(
            LeavePolicy.effective_date <= as_of
        )
        if user_id is not None:
            query = query.filter(LeavePolicy.user_id == user_id)
        if leave_type_id is not None:
            query = query.filter(LeavePolicy.leave_type_id == leave_type_id)
        pairs = sorted(set(query.all()))

        results = []
        for pair_user_id, pair_type_id in pairs:
            if not get_leave_type(self.db, pair_type_id).uses_balance:
                continue
            results.append(self._accrue_pair(pair_user_id, pair_type_id, as_of))

        self.log_info(
            f"Accrual run through {as_of.isoformat()}",
            pairs=len(results), periods=sum(r["periods"] for r in results)
        )
        return results

    # ------------------------------------------------------------------
    # Year end
    # ------------------------------------------------------------------

    def rollover_year_end(
        self,
        user_id: int,
        leave_type_id: int,
        year: int,
        actor_id: Optional[int] = None
    ) -> Dict[str, object]:
        """
        Close `year` for one user/type: carry what the policy allows into
        `year + 1`, forfeit the rest. Runs once per key.
        """
        leave_type = get_leave_type(self.db, leave_type_id)
        old_key = (user_id, leave_type_id, year)
        new_key = (user_id, leave_type_id, year + 1)
        result = {
            "user_id": user_id,
            "leave_type_id": leave_type_id,
            "year": year,
            "carried": Decimal("0.00"),
            "forfeited": Decimal("0.00"),
            "skipped": False,
        }

        with self._atomic(old_key, new_key):
            old = self._locked_balance(old_key)
            if old is None:
                raise NotFoundError("LeaveBalance", f"{user_id}/{leave_type_id}/{year}")
            if old.rolled_over_at is not None:
                result["skipped"] = True
                return result

            year_end = date(year, 12, 31)
            next_start = date(year + 1, 1, 1)
            policy = policy_as_of(self.db, user_id, leave_type_id, year_end) or self._seed_policy(
                user_id, leave_type_id, year
            )

            rollable = accrual.quantize(old.balance) - accrual.quantize(old.pending_balance)
            carry = Decimal("0.00")
            forfeit = Decimal("0.00")
            if rollable > 0:
                if policy is not None and policy.rollover_enabled and leave_type.carryover_allowed:
                    carry = rollable
                    if policy.max_rollover_days is not None:
                        carry = min(rollable, accrual.quantize(policy.max_rollover_days))
                forfeit = rollable - carry

            if forfeit > 0:
                self._post(
                    old,
                    TransactionType.FORFEITURE,
                    -forfeit,
                    component="forfeited_balance",
                    effective_date=year_end,
                    description=f"Forfeited at {year} year end",
                    created_by_id=actor_id,
                )

            new = self._open_balance(new_key, next_start)
            if carry > 0:
                self._post(
                    old,
                    TransactionType.ROLLOVER,
                    -carry,
                    component="carried_forward_balance",
                    effective_date=year_end,
                    description=f"Carried forward to {year + 1}",
                    created_by_id=actor_id,
                )
                self._post(
                    new,
                    TransactionType.ROLLOVER,
                    carry,
                    component="rollover_balance",
                    effective_date=next_start,
                    description=f"Carried over from {year}",
                    created_by_id=actor_id,
                )

            old.rolled_over_at = _now()
            result["carried"] = carry
            result["forfeited"] = forfeit

        self.log_info(
            f"Rolled over {year} for user {user_id}, type {leave_type_id}",
            carried=float(carry), forfeited=float(forfeit)
        )
        return result

    def rollover_all(self, year: int, actor_id: Optional[int] = None) -> List[Dict[str, object]]:
        keys = self.db.query(LeaveBalance.user_id, LeaveBalance.leave_type_id).filter(
            LeaveBalance.year == year,
            LeaveBalance.rolled_over_at.is_(None)
        ).order_by(LeaveBalance.user_id, LeaveBalance.leave_type_id).all()
        return [self.rollover_year_end(u, t, year, actor_id=actor_id) for u, t in keys]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, user_id: int, leave_type_id: int, year: int) -> LeaveBalance:
        balance = self.db.query(LeaveBalance).filter(
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year
        ).first()
        if balance is None:
            raise NotFoundError("LeaveBalance", f"{user_id}/{leave_type_id}/{year}")
        return balance

    def list_transactions(
        self,
        user_id: int,
        leave_type_id: int,
        year: int,
        after_id: Optional[int] = None,
        limit: Optional[int] = None
    ) -> List[LeaveTransaction]:
        page_size = settings.pto.transactions_page_size
        limit = page_size if not limit else min(limit, page_size)
        query = self.db.query(LeaveTransaction).filter(
            LeaveTransaction.user_id == user_id,
            LeaveTransaction.leave_type_id == leave_type_id,
            LeaveTransaction.year == year
        )
        if after_id is not None:
            query = query.filter(LeaveTransaction.id > after_id)
        return query.order_by(LeaveTransaction.id).limit(limit).all()

    def verify(self, user_id: int, leave_type_id: int, year: int) -> bool:
        """Check the transaction chain reconciles to the balance row."""
        balance = self.get_balance(user_id, leave_type_id, year)
        running = Decimal("0.00")
        txns = self.db.query(LeaveTransaction).filter(
            LeaveTransaction.user_id == user_id,
            LeaveTransaction.leave_type_id == leave_type_id,
            LeaveTransaction.year == year
        ).order_by(LeaveTransaction.id).all()
        for txn in txns:
            before = accrual.quantize(txn.balance_before)
            after = accrual.quantize(txn.balance_after)
            if before != running or after != before + accrual.quantize(txn.amount):
                raise LedgerInvariantError(f"Ledger chain broken at transaction {txn.id}")
            running = after
        if running != accrual.quantize(balance.balance):
            raise LedgerInvariantError(
                f"Balance {balance.id} is {balance.balance} but ledger sums to {running}"
            )
        if accrual.quantize(balance.expected_balance()) != running:
            raise LedgerInvariantError(f"Balance {balance.id} components do not reconcile")
        return True
