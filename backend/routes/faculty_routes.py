import re
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_role
from backend.core.errors import DATABASE_UNAVAILABLE_MESSAGE, NotFoundError, UnavailableError
from backend.database import get_db
from backend.models.department import Department
from backend.models.faculty import Faculty
from backend.models.user import ROLE_FACULTY, User

router = APIRouter(tags=['faculty'])

PHONE_NUMBER_PATTERN = re.compile(r'^\d{10}$')


class FacultyProfileRequest(BaseModel):
    name: str
    phone_number: str | None = None
    department_id: int

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


class FacultyProfileResponse(BaseModel):
    id: int
    user_id: int
    name: str
    email: str
    phone_number: str | None = None
    department_id: int | None = None
    department_name: str | None = None
    updated_at: datetime | None = None


def to_profile_response(faculty: Faculty) -> FacultyProfileResponse:
    return FacultyProfileResponse(
        id=faculty.id,
        user_id=faculty.user_id,
        name=faculty.name,
        email=faculty.user.email,
        phone_number=faculty.phone_number,
        department_id=faculty.department_id,
        department_name=faculty.department.name if faculty.department else None,
        updated_at=faculty.updated_at,
    )


@router.get('/profile', response_model=FacultyProfileResponse)
def get_faculty_profile(
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = db.query(Faculty).filter(Faculty.user_id == current_user.id).first()
    if faculty is None:
        raise NotFoundError('Faculty not found')
    return to_profile_response(faculty)


@router.put('/profile', response_model=FacultyProfileResponse)
def update_faculty_profile(
    data: FacultyProfileRequest,
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    if db.get(Department, data.department_id) is None:
        raise NotFoundError('Department not found')

    faculty = db.query(Faculty).filter(Faculty.user_id == current_user.id).first()
    if faculty is None:
        faculty = Faculty(user_id=current_user.id)
        db.add(faculty)

    faculty.name = data.name
    faculty.phone_number = data.phone_number
    faculty.department_id = data.department_id

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc

    db.refresh(faculty)
    return to_profile_response(faculty)
