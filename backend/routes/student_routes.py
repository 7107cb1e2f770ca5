from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from backend.auth.dependencies import require_role
from backend.core.errors import DATABASE_UNAVAILABLE_MESSAGE, NotFoundError, UnavailableError
from backend.database import get_db
from backend.models.department import Department
from backend.models.faculty import Faculty
from backend.models.student import Student
from backend.models.user import ROLE_STUDENT, User
from backend.routes.availability_routes import AvailabilitySlotResponse
from backend.routes.department_routes import DepartmentResponse
from backend.routes.faculty_routes import PHONE_NUMBER_PATTERN
from backend.services import availability_service

router = APIRouter(tags=['students'])


class StudentProfileRequest(BaseModel):
    name: str
    registration_number: str | None = None
    course: str | None = None
    branch: str | None = None
    current_year: int | None = Field(default=None, ge=1, le=6)
    current_semester: int | None = Field(default=None, ge=1, le=12)
    phone_number: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Please provide your full name.')
        return normalized

    @field_validator('phone_number')
    @classmethod
    def validate_phone_number(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not PHONE_NUMBER_PATTERN.match(normalized):
            raise ValueError('Please provide a valid 10-digit phone number.')
        return normalized


class StudentProfileResponse(BaseModel):
    id: int
    user_id: int
    name: str
    registration_number: str | None = None
    course: str | None = None
    branch: str | None = None
    current_year: int | None = None
    current_semester: int | None = None
    phone_number: str | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class FacultyListingResponse(BaseModel):
    id: int
    name: str
    phone_number: str | None = None
    department_id: int | None = None
    department_name: str | None = None


@router.get('/profile', response_model=StudentProfileResponse)
def get_student_profile(
    current_user: User = Depends(require_role(ROLE_STUDENT)),
    db: Session = Depends(get_db),
):
    student = db.query(Student).filter(Student.user_id == current_user.id).first()
    if student is None:
        raise NotFoundError('Student not found')
    return student


@router.put('/profile', response_model=StudentProfileResponse)
def update_student_profile(
    data: StudentProfileRequest,
    current_user: User = Depends(require_role(ROLE_STUDENT)),
    db: Session = Depends(get_db),
):
    student = db.query(Student).filter(Student.user_id == current_user.id).first()
    if student is None:
        student = Student(user_id=current_user.id)
        db.add(student)

    for field_name, value in data.model_dump().items():
        setattr(student, field_name, value)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc

    db.refresh(student)
    return student


@router.get('/faculty', response_model=list[FacultyListingResponse])
def list_faculty(
    department_id: int | None = None,
    current_user: User = Depends(require_role(ROLE_STUDENT)),
    db: Session = Depends(get_db),
):
    query = db.query(Faculty).options(joinedload(Faculty.department))
    if department_id is not None:
        query = query.filter(Faculty.department_id == department_id)

    return [
        FacultyListingResponse(
            id=faculty.id,
            name=faculty.name,
            phone_number=faculty.phone_number,
            department_id=faculty.department_id,
            department_name=faculty.department.name if faculty.department else None,
        )
        for faculty in query.order_by(Faculty.name.asc()).all()
    ]


@router.get('/faculty/{faculty_id}/availability', response_model=list[AvailabilitySlotResponse])
def get_faculty_availability(
    faculty_id: int,
    current_user: User = Depends(require_role(ROLE_STUDENT)),
    db: Session = Depends(get_db),
):
    return availability_service.list_bookable_slots(db, faculty_id)


@router.get('/departments', response_model=list[DepartmentResponse])
def list_departments(
    current_user: User = Depends(require_role(ROLE_STUDENT)),
    db: Session = Depends(get_db),
):
    return db.query(Department).order_by(Department.name.asc()).all()
