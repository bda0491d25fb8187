import pytest
import os
from datetime import date
from typing import List

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import app.models  # noqa: F401
from app.database import Base, get_db
from app.main import app
from app.core.limiter import limiter
from app.dependencies import get_notification_dispatcher
from fastapi.testclient import TestClient


class RecordingDispatcher:
    """Collects dispatched events instead of delivering them."""

    def __init__(self):
        self.events = []

    def dispatch(self, events):
        self.events.extend(events)

    def names(self) -> List[str]:
        return [e.name for e in self.events]


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database per test; services commit, so no outer rollback."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture(scope="function")
def client(db_session, dispatcher):
    """TestClient bound to the test session, with notifications captured."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# --- Org fixtures ---

@pytest.fixture(scope="function")
def make_user(db_session):
    from app.models.user import User, UserRole

    counter = {"n": 0}

    def _make_user(role=UserRole.EMPLOYEE, department_id=None, position_id=None, hire_date=None, name=None):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            full_name=name or f"User {counter['n']}",
            role=role,
            department_id=department_id,
            position_id=position_id,
            hire_date=hire_date,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture(scope="function")
def department(db_session):
    from app.models.department import Department
    dept = Department(name="Engineering", code="ENG")
    db_session.add(dept)
    db_session.commit()
    return dept


@pytest.fixture(scope="function")
def org(db_session, make_user, department):
    """
    hr_admin
    director <- manager <- employee
    """
    from app.models.user import UserRole
    from app.models.hierarchy import SupervisorAssignment

    hr_admin = make_user(UserRole.HR_ADMIN, name="Hannah HR")
    director = make_user(UserRole.MANAGER, department_id=department.id, name="Dana Director")
    manager = make_user(UserRole.MANAGER, department_id=department.id, name="Morgan Manager")
    employee = make_user(
        UserRole.EMPLOYEE, department_id=department.id, hire_date=date(2020, 3, 1), name="Eli Employee"
    )
    db_session.add_all([
        SupervisorAssignment(user_id=employee.id, supervisor_id=manager.id, effective_from=date(2020, 1, 1)),
        SupervisorAssignment(user_id=manager.id, supervisor_id=director.id, effective_from=date(2020, 1, 1)),
    ])
    db_session.commit()
    return {
        "hr_admin": hr_admin,
        "director": director,
        "manager": manager,
        "employee": employee,
        "department": department,
    }


@pytest.fixture(scope="function")
def vacation(db_session):
    from app.services.policy_catalog import create_leave_type
    return create_leave_type(db_session, "VAC", "Vacation")


@pytest.fixture(scope="function")
def vacation_policy(db_session, org, vacation):
    """Ten opening days, no accrual, no negative balance."""
    from app.services.policy_catalog import assign_policy
    return assign_policy(
        db_session,
        org["employee"].id,
        vacation.id,
        date(2025, 1, 1),
        initial_days=10,
        annual_accrual_amount=0,
        max_negative_balance=0,
    )
