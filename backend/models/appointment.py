"""Appointment model definitions."""

import enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from backend.database import Base
from backend.models.availability import Availability
from backend.models.faculty import Faculty
from backend.models.student import Student

MAX_PURPOSE_LENGTH = 200
MAX_CANCEL_REASON_LENGTH = 200


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that hold the referenced slot.
ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.ACCEPTED.value)
TERMINAL_STATUSES = (
    AppointmentStatus.REJECTED.value,
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.COMPLETED.value,
)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING.value: {
        AppointmentStatus.ACCEPTED.value,
        AppointmentStatus.REJECTED.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.ACCEPTED.value: {
        AppointmentStatus.COMPLETED.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.REJECTED.value: set(),
    AppointmentStatus.CANCELLED.value: set(),
    AppointmentStatus.COMPLETED.value: set(),
}

_ACTIVE_SLOT_CLAUSE = text("status IN ('pending', 'accepted')")


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class Appointment(Base):
    """Booking of one availability slot by a student."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_student_date", "student_id", "date"),
        Index("idx_appointments_faculty_date", "faculty_id", "date"),
        Index(
            "uq_appointments_active_slot",
            "availability_id",
            unique=True,
            sqlite_where=_ACTIVE_SLOT_CLAUSE,
            postgresql_where=_ACTIVE_SLOT_CLAUSE,
        ),
    )

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    faculty_id = Column(Integer, ForeignKey("faculty.id"), nullable=False)
    # Nulled when the slot is deleted; start/end below keep the booked window.
    availability_id = Column(Integer, ForeignKey("availability.id"), nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    purpose = Column(String(MAX_PURPOSE_LENGTH), nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING.value)
    cancelled_by = Column(String(20))  # student/faculty
    cancel_reason = Column(String(MAX_CANCEL_REASON_LENGTH))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    student = relationship(Student)
    faculty = relationship(Faculty)
    availability = relationship(Availability)
