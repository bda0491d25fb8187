import pytest
from datetime import date
from decimal import Decimal

from app.core.exceptions import ValidationFailedError
from app.models.blackout import CompanyWide, DepartmentScope, UserScope
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.services.blackout_resolver import (
    BlackoutResolver,
    blackout_weekday,
    create_blackout,
    deactivate_blackout,
)

MON = date(2025, 6, 2)
THU = date(2025, 6, 5)
FRI = date(2025, 6, 6)


@pytest.fixture
def resolver(db_session):
    return BlackoutResolver(db_session)


def _fixed(db, scope=None, **fields):
    fields.setdefault("name", "Quarter close")
    fields.setdefault("start_date", date(2025, 6, 4))
    fields.setdefault("end_date", date(2025, 6, 10))
    return create_blackout(db, scope or CompanyWide(), **fields)


def test_weekday_numbering_starts_sunday():
    assert blackout_weekday(date(2025, 6, 1)) == 0
    assert blackout_weekday(MON) == 1
    assert blackout_weekday(date(2025, 6, 7)) == 6


def test_full_block_conflict(resolver, db_session, org, vacation):
    blackout = _fixed(db_session)
    result = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI)

    assert result.has_conflicts
    assert not result.has_warnings
    conflict = result.conflicts[0]
    assert conflict["blackout_id"] == blackout.id
    assert conflict["type"] == "conflict"
    assert conflict["restriction_type"] == "full_block"
    assert conflict["conflicting_dates"] == ["2025-06-04", "2025-06-05", "2025-06-06"]
    assert conflict["period"] == "Jun 04, 2025 - Jun 10, 2025"
    assert conflict["can_override"] is False


def test_no_overlap_no_hits(resolver, db_session, org, vacation):
    _fixed(db_session)
    result = resolver.evaluate(org["employee"].id, vacation.id, MON, date(2025, 6, 3))
    assert not result.has_conflicts and not result.has_warnings


def test_leave_type_filter(resolver, db_session, org, vacation):
    _fixed(db_session, leave_type_ids=[vacation.id + 100])
    assert not resolver.evaluate(org["employee"].id, vacation.id, MON, FRI).has_conflicts


def test_department_scope(resolver, db_session, org, vacation):
    _fixed(db_session, DepartmentScope(frozenset({org["department"].id})))
    assert resolver.evaluate(org["employee"].id, vacation.id, MON, FRI).has_conflicts
    # HR admin sits outside the department
    assert not resolver.evaluate(org["hr_admin"].id, vacation.id, MON, FRI).has_conflicts


def test_user_scope(resolver, db_session, org, vacation):
    _fixed(db_session, UserScope(frozenset({org["manager"].id})))
    assert resolver.evaluate(org["manager"].id, vacation.id, MON, FRI).has_conflicts
    assert not resolver.evaluate(org["employee"].id, vacation.id, MON, FRI).has_conflicts


def test_warning_only(resolver, db_session, org, vacation):
    _fixed(db_session, restriction_type="warning_only")
    result = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI)
    assert not result.has_conflicts
    assert result.warnings[0]["type"] == "warning"
    assert not result.requires_override


def test_emergency_override_downgrades_full_block(resolver, db_session, org, vacation):
    _fixed(db_session, allow_emergency_override=True)

    plain = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI)
    assert plain.has_conflicts
    assert plain.conflicts[0]["can_override"] is True

    emergency = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI, emergency=True)
    assert not emergency.has_conflicts
    assert emergency.warnings[0]["requires_override_approval"] is True
    assert emergency.requires_override


def test_emergency_ignored_when_not_allowed(resolver, db_session, org, vacation):
    _fixed(db_session)
    assert resolver.evaluate(org["employee"].id, vacation.id, MON, FRI, emergency=True).has_conflicts


def test_limit_requests(resolver, db_session, org, vacation):
    _fixed(db_session, restriction_type="limit_requests", max_requests_allowed=1)

    first = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI)
    assert not first.has_conflicts
    assert first.warnings[0]["remaining_slots"] == 1
    assert first.warnings[0]["current_count"] == 0

    db_session.add(LeaveRequest(
        employee_id=org["manager"].id,
        leave_type_id=vacation.id,
        start_date=date(2025, 6, 9),
        end_date=date(2025, 6, 9),
        total_days=Decimal("1"),
        total_hours=Decimal("8"),
        status=LeaveStatus.APPROVED.value,
    ))
    db_session.commit()

    second = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI)
    assert second.has_conflicts
    assert second.conflicts[0]["current_count"] == 1
    assert second.conflicts[0]["remaining_slots"] == 0


def test_limit_requests_ignores_closed_requests(resolver, db_session, org, vacation):
    _fixed(db_session, restriction_type="limit_requests", max_requests_allowed=1)
    db_session.add(LeaveRequest(
        employee_id=org["manager"].id,
        leave_type_id=vacation.id,
        start_date=date(2025, 6, 9),
        end_date=date(2025, 6, 9),
        total_days=Decimal("1"),
        total_hours=Decimal("8"),
        status=LeaveStatus.WITHDRAWN.value,
    ))
    db_session.commit()
    assert not resolver.evaluate(org["employee"].id, vacation.id, MON, FRI).has_conflicts


def test_recurring_weekday(resolver, db_session, org, vacation):
    create_blackout(db_session, CompanyWide(), name="Release Fridays", recurring_days=[5])

    hit = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI)
    assert hit.conflicts[0]["conflicting_dates"] == ["2025-06-06"]
    assert hit.conflicts[0]["is_recurring"] is True
    assert hit.conflicts[0]["period"] == "Every Friday"

    assert not resolver.evaluate(org["employee"].id, vacation.id, MON, THU).has_conflicts


def test_recurring_effective_window(resolver, db_session, org, vacation):
    create_blackout(
        db_session, CompanyWide(), name="Summer Fridays",
        recurring_days=[5], recurring_start_date=date(2025, 7, 1), recurring_end_date=date(2025, 8, 31)
    )
    assert not resolver.evaluate(org["employee"].id, vacation.id, MON, FRI).has_conflicts
    assert resolver.evaluate(org["employee"].id, vacation.id, date(2025, 7, 7), date(2025, 7, 11)).has_conflicts


def test_inactive_blackout_ignored(resolver, db_session, org, vacation):
    blackout = _fixed(db_session)
    deactivate_blackout(db_session, blackout.id)
    assert not resolver.evaluate(org["employee"].id, vacation.id, MON, FRI).has_conflicts


def test_snapshot_shape(resolver, db_session, org, vacation):
    _fixed(db_session, restriction_type="warning_only")
    snapshot = resolver.evaluate(org["employee"].id, vacation.id, MON, FRI).to_snapshot()
    assert snapshot["can_submit"] is True
    assert snapshot["requires_acknowledgment"] is True
    assert snapshot["requires_override"] is False
    assert len(snapshot["warnings"]) == 1


@pytest.mark.parametrize("fields", [
    {"name": "No end", "start_date": date(2025, 6, 1)},
    {"name": "Backwards", "start_date": date(2025, 6, 5), "end_date": date(2025, 6, 1)},
    {"name": "Bad day", "recurring_days": [7]},
    {"name": "No cap", "start_date": date(2025, 6, 1), "end_date": date(2025, 6, 2), "restriction_type": "limit_requests"},
])
def test_create_blackout_validation(db_session, fields):
    with pytest.raises(ValidationFailedError):
        create_blackout(db_session, CompanyWide(), **fields)
