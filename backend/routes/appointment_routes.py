from datetime import date, datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_role
from backend.database import ensure_database_ready, get_db
from backend.models.appointment import MAX_CANCEL_REASON_LENGTH, MAX_PURPOSE_LENGTH, Appointment
from backend.models.user import ROLE_FACULTY, ROLE_STUDENT, User
from backend.services import appointment_service

router = APIRouter(tags=['appointments'], dependencies=[Depends(ensure_database_ready)])


class BookAppointmentRequest(BaseModel):
    faculty_id: int
    availability_id: int
    date: date
    purpose: str

    @field_validator('purpose')
    @classmethod
    def validate_purpose(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Please provide purpose of appointment.')
        if len(normalized) > MAX_PURPOSE_LENGTH:
            raise ValueError(f'Purpose cannot be more than {MAX_PURPOSE_LENGTH} characters.')
        return normalized


class UpdateAppointmentStatusRequest(BaseModel):
    status: str
    reason: str | None = None


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_CANCEL_REASON_LENGTH:
            raise ValueError(f'Cancel reason cannot be more than {MAX_CANCEL_REASON_LENGTH} characters.')

        return normalized


class AppointmentResponse(BaseModel):
    id: int
    student_id: int
    faculty_id: int
    availability_id: int | None = None
    date: date
    start_time: str
    end_time: str
    purpose: str
    status: str
    cancelled_by: str | None = None
    cancel_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class StudentAppointmentResponse(AppointmentResponse):
    faculty_name: str
    faculty_phone_number: str | None = None
    department_name: str | None = None


class FacultyAppointmentResponse(AppointmentResponse):
    student_name: str
    registration_number: str | None = None
    course: str | None = None
    branch: str | None = None
    current_year: int | None = None
    current_semester: int | None = None
    student_phone_number: str | None = None


def to_student_view(appointment: Appointment) -> StudentAppointmentResponse:
    faculty = appointment.faculty
    base = AppointmentResponse.model_validate(appointment).model_dump()
    return StudentAppointmentResponse(
        **base,
        faculty_name=faculty.name,
        faculty_phone_number=faculty.phone_number,
        department_name=faculty.department.name if faculty.department else None,
    )


def to_faculty_view(appointment: Appointment) -> FacultyAppointmentResponse:
    student = appointment.student
    base = AppointmentResponse.model_validate(appointment).model_dump()
    return FacultyAppointmentResponse(
        **base,
        student_name=student.name,
        registration_number=student.registration_number,
        course=student.course,
        branch=student.branch,
        current_year=student.current_year,
        current_semester=student.current_semester,
        student_phone_number=student.phone_number,
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    current_user: User = Depends(require_role(ROLE_STUDENT)),
    db: Session = Depends(get_db),
):
    student = appointment_service.get_student_profile(db, current_user)
    return appointment_service.book_appointment(
        db,
        student=student,
        faculty_id=data.faculty_id,
        availability_id=data.availability_id,
        appointment_date=data.date,
        purpose=data.purpose,
    )


@router.get('/student', response_model=list[StudentAppointmentResponse])
def list_student_appointments(
    current_user: User = Depends(require_role(ROLE_STUDENT)),
    db: Session = Depends(get_db),
):
    student = appointment_service.get_student_profile(db, current_user)
    return [to_student_view(appointment) for appointment in appointment_service.list_student_appointments(db, student)]


@router.get('/faculty', response_model=list[FacultyAppointmentResponse])
def list_faculty_appointments(
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = appointment_service.get_faculty_profile(db, current_user)
    return [to_faculty_view(appointment) for appointment in appointment_service.list_faculty_appointments(db, faculty)]


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateAppointmentStatusRequest,
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = appointment_service.get_faculty_profile(db, current_user)
    return appointment_service.update_appointment_status(
        db,
        faculty=faculty,
        appointment_id=appointment_id,
        new_status=data.status,
        reason=data.reason,
    )


@router.put('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    current_user: User = Depends(require_role(ROLE_STUDENT, ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    return appointment_service.cancel_appointment(
        db,
        actor=current_user,
        appointment_id=appointment_id,
        reason=data.reason if data else None,
    )


@router.put('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(require_role(ROLE_FACULTY)),
    db: Session = Depends(get_db),
):
    faculty = appointment_service.get_faculty_profile(db, current_user)
    return appointment_service.complete_appointment(db, faculty=faculty, appointment_id=appointment_id)
