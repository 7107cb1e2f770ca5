from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_role
from backend.database import ensure_database_ready, get_db
from backend.models.user import ROLE_FACULTY, User
from backend.services import availability_service
from backend.services.appointment_service import get_faculty_profile

router = APIRouter(tags=['availability'], dependencies=[Depends(ensure_database_ready)])


class CreateAvailabilityRequest(BaseModel):
    day: str
    start_time: str
    end_time: str
    is_active: bool = True

    @field_validator('day')
    @classmethod
    def validate_day(cls, value: str) -> str:
        return value.strip().capitalize()

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        normalized = value.strip()
        if not availability_service.TIME_PATTERN.match(normalized):
            raise ValueError('Please provide time in HH:MM format')
        return normalized


class UpdateAvailabilityRequest(BaseModel):
    day: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    is_active: bool | None = None


class AvailabilitySlotResponse(BaseModel):
    id: int
    faculty_id: int
    day: str
    start_time: str
    end_time: str
    is_active: bool
    is_booked: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


@router.get('', response_model=list[AvailabilitySlotResponse])
def list_my_availability(
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = get_faculty_profile(db, current_user)
    return availability_service.list_faculty_slots(db, faculty)


@router.post('', response_model=AvailabilitySlotResponse, status_code=status.HTTP_201_CREATED)
def add_availability_slot(
    data: CreateAvailabilityRequest,
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = get_faculty_profile(db, current_user)
    return availability_service.create_slot(
        db,
        faculty,
        day=data.day,
        start_time=data.start_time,
        end_time=data.end_time,
        is_active=data.is_active,
    )


@router.put('/{availability_id}', response_model=AvailabilitySlotResponse)
def update_availability_slot(
    availability_id: int,
    data: UpdateAvailabilityRequest,
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = get_faculty_profile(db, current_user)
    return availability_service.update_slot(
        db,
        faculty,
        availability_id,
        day=data.day,
        start_time=data.start_time,
        end_time=data.end_time,
        is_active=data.is_active,
    )


@router.delete('/{availability_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability_slot(
    availability_id: int,
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = get_faculty_profile(db, current_user)
    availability_service.delete_slot(db, faculty, availability_id)
