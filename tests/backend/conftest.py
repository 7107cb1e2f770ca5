import os
from types import SimpleNamespace

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('RATE_LIMIT_ENABLED', 'false')

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from backend.auth.jwt_handler import create_access_token  # noqa: E402
from backend.database import Base, ensure_database_ready, get_db  # noqa: E402
from backend.main import app  # noqa: E402
from backend.models.availability import Availability  # noqa: E402
from backend.models.department import Department  # noqa: E402
from backend.models.faculty import Faculty  # noqa: E402
from backend.models.student import Student  # noqa: E402
from backend.models.user import User  # noqa: E402


@pytest.fixture
def db_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sent_emails(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str, str]]:
    sent: list[tuple[str, str, str]] = []

    def fake_send_email(to_email: str, subject: str, body: str) -> None:
        sent.append((to_email, subject, body))

    monkeypatch.setattr('backend.services.notifications.send_email', fake_send_email)
    return sent


def add_user(db, email: str, role: str) -> User:
    user = User(email=email, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_student(db, email: str, name: str) -> Student:
    user = add_user(db, email, 'student')
    student = Student(
        user_id=user.id,
        name=name,
        registration_number=f'REG-{user.id:04d}',
        course='B.Tech',
        branch='CSE',
        current_year=2,
        current_semester=3,
        phone_number='9876543210',
    )
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


def add_faculty(db, email: str, name: str, department: Department | None = None) -> Faculty:
    user = add_user(db, email, 'faculty')
    faculty = Faculty(
        user_id=user.id,
        name=name,
        phone_number='9123456780',
        department_id=department.id if department else None,
    )
    db.add(faculty)
    db.commit()
    db.refresh(faculty)
    return faculty


def add_slot(
    db,
    faculty: Faculty,
    start_time: str = '09:00',
    end_time: str = '10:00',
    day: str = 'Monday',
    is_active: bool = True,
) -> Availability:
    slot = Availability(
        faculty_id=faculty.id,
        day=day,
        start_time=start_time,
        end_time=end_time,
        is_active=is_active,
        is_booked=False,
    )
    db.add(slot)
    db.commit()
    db.refresh(slot)
    return slot


@pytest.fixture
def world(db):
    department = Department(name='Computer Science')
    db.add(department)
    db.commit()
    db.refresh(department)

    faculty = add_faculty(db, 'turing@faculty.edu', 'Alan Turing', department)
    other_faculty = add_faculty(db, 'hopper@faculty.edu', 'Grace Hopper', department)
    student = add_student(db, 'ada@student.edu', 'Ada Lovelace')
    other_student = add_student(db, 'edsger@student.edu', 'Edsger Dijkstra')
    admin = add_user(db, 'registrar@admin.edu', 'admin')

    return SimpleNamespace(
        department=department,
        faculty=faculty,
        other_faculty=other_faculty,
        student=student,
        other_student=other_student,
        admin=admin,
        slot=add_slot(db, faculty, '09:00', '10:00'),
        afternoon_slot=add_slot(db, faculty, '14:00', '15:00'),
        other_faculty_slot=add_slot(db, other_faculty, '11:00', '12:00'),
    )


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(subject=str(user.id), role=user.role)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[ensure_database_ready] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make(db):
    return SimpleNamespace(
        user=lambda email, role: add_user(db, email, role),
        student=lambda email, name: add_student(db, email, name),
        faculty=lambda email, name, department=None: add_faculty(db, email, name, department),
        slot=lambda faculty, **kwargs: add_slot(db, faculty, **kwargs),
    )


@pytest.fixture
def headers():
    return auth_headers
