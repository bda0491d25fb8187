"""
Seed a small demo org: HR admin, director, manager and employee, a Vacation
leave type and a monthly-accruing policy for the employee.

Run from the repo root: python -m scripts.seed_users
"""
from datetime import date

from app.database import SessionLocal, init_db
from app.models.department import Department
from app.models.hierarchy import SupervisorAssignment
from app.models.leave_type import LeaveType
from app.models.user import User, UserRole
from app.services.policy_catalog import assign_policy, create_leave_type

init_db()
db = SessionLocal()


def create_user(email, full_name, role, department=None, hire_date=None):
    # Check if user already exists to avoid unique constraint errors
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        print(f"User {email} already exists. Skipping.")
        return existing_user

    user = User(
        email=email,
        full_name=full_name,
        role=role,
        department_id=department.id if department else None,
        hire_date=hire_date,
        is_active=True
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    print(f"Created {role.value} -> {email} (id={user.id})")
    return user


def report_to(user, supervisor):
    exists = db.query(SupervisorAssignment).filter(SupervisorAssignment.user_id == user.id).first()
    if exists:
        return
    db.add(SupervisorAssignment(user_id=user.id, supervisor_id=supervisor.id, effective_from=date(2020, 1, 1)))
    db.commit()


engineering = db.query(Department).filter(Department.code == "ENG").first()
if not engineering:
    engineering = Department(name="Engineering", code="ENG")
    db.add(engineering)
    db.commit()

hr = create_user("hr@example.com", "Hannah HR", UserRole.HR_ADMIN)
director = create_user("director@example.com", "Dana Director", UserRole.MANAGER, engineering)
manager = create_user("manager@example.com", "Morgan Manager", UserRole.MANAGER, engineering)
employee = create_user("employee@example.com", "Eli Employee", UserRole.EMPLOYEE, engineering, date(2020, 3, 1))

report_to(manager, director)
report_to(employee, manager)

vacation = db.query(LeaveType).filter(LeaveType.code == "VAC").first()
if not vacation:
    vacation = create_leave_type(db, "VAC", "Vacation")
    assign_policy(
        db,
        employee.id,
        vacation.id,
        date(date.today().year, 1, 1),
        created_by_id=hr.id,
        initial_days=5,
        annual_accrual_amount=15,
        accrual_frequency="monthly",
        rollover_enabled=True,
        max_rollover_days=5,
    )
    print("Created VAC leave type and employee policy")

db.close()
