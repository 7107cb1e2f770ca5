"""Appointment lifecycle engine.

Owns every Appointment status change and keeps ``Availability.is_booked`` in
step with it. Each operation writes in a single transaction: the slot claim in
``book_appointment`` is a conditional update on ``is_booked`` and every status
change is a conditional update on the current ``status``, so two requests
racing on the same slot or appointment cannot both succeed.

Notifications go out after commit and never fail the operation.
"""

import logging
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from backend.core import config
from backend.core.errors import (
    DATABASE_UNAVAILABLE_MESSAGE,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)
from backend.models.appointment import (
    ACTIVE_STATUSES,
    MAX_CANCEL_REASON_LENGTH,
    MAX_PURPOSE_LENGTH,
    Appointment,
    AppointmentStatus,
    can_transition,
)
from backend.models.availability import Availability
from backend.models.faculty import Faculty
from backend.models.student import Student
from backend.models.user import ROLE_FACULTY, ROLE_STUDENT, User
from backend.services import notifications

logger = logging.getLogger(__name__)

FACULTY_DECISIONS = (AppointmentStatus.ACCEPTED.value, AppointmentStatus.REJECTED.value)
SLOT_TAKEN_MESSAGE = 'Availability slot is already booked'
BOOKING_CHANGED_MESSAGE = 'Booking details changed while saving. Reload and try again.'


def get_student_profile(db: Session, user: User) -> Student:
    student = db.query(Student).filter(Student.user_id == user.id).first()
    if student is None:
        raise NotFoundError('Student not found')
    return student


def get_faculty_profile(db: Session, user: User) -> Faculty:
    faculty = db.query(Faculty).filter(Faculty.user_id == user.id).first()
    if faculty is None:
        raise NotFoundError('Faculty not found')
    return faculty


def clean_text(value: str | None, label: str, max_length: int, required: bool = False) -> str | None:
    normalized = (value or '').strip()
    if not normalized:
        if required:
            raise InvalidArgumentError(f'{label} is required.')
        return None
    if len(normalized) > max_length:
        raise InvalidArgumentError(f'{label} cannot be more than {max_length} characters.')
    return normalized


def ensure_slot_mutable(slot: Availability) -> None:
    """Refuse to change or remove a slot that an active appointment holds."""
    if slot.is_booked:
        raise ConflictError('Availability slot has an active booking and cannot be changed')


def _get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError('Appointment not found')
    return appointment


def _format_date(value: date) -> str:
    return value.strftime('%a %b %d %Y')


def _notify(to_email: str | None, subject: str, body: str) -> None:
    if not to_email:
        logger.warning('No email address for notification "%s"; skipping', subject)
        return
    try:
        notifications.send_email(to_email, subject, body)
    except Exception:
        logger.exception('Failed to send notification "%s" to %s', subject, to_email)


def _find_student_conflict(
    db: Session,
    student: Student,
    appointment_date: date,
    slot: Availability,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.student_id == student.id,
        Appointment.date == appointment_date,
        Appointment.status.in_(ACTIVE_STATUSES),
    )
    if config.STUDENT_BOOKING_GUARD == config.STUDENT_BOOKING_GUARD_OVERLAPPING_TIME:
        # HH:MM strings are zero padded, so string order is time order.
        query = query.filter(
            Appointment.start_time < slot.end_time,
            Appointment.end_time > slot.start_time,
        )
    return query.first()


def _claim_slot(db: Session, slot_id: int) -> bool:
    result = db.execute(
        update(Availability)
        .where(
            Availability.id == slot_id,
            Availability.is_active.is_(True),
            Availability.is_booked.is_(False),
        )
        .values(is_booked=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _slot_has_active_appointment(db: Session, slot_id: int) -> bool:
    return db.query(Appointment.id).filter(
        Appointment.availability_id == slot_id,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).first() is not None


def _release_slot(db: Session, slot_id: int | None) -> None:
    if slot_id is None:
        return
    db.execute(
        update(Availability)
        .where(Availability.id == slot_id)
        .values(is_booked=False)
        .execution_options(synchronize_session=False)
    )


def _apply_transition(
    db: Session,
    appointment: Appointment,
    target: str,
    release_slot: bool,
    **values,
) -> Appointment:
    current = appointment.status
    slot_id = appointment.availability_id
    if not can_transition(current, target):
        raise ConflictError(f'Appointment cannot move from {current} to {target}')

    try:
        result = db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status == current)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ConflictError('Appointment was changed by another request. Reload and try again.')
        if release_slot:
            _release_slot(db, slot_id)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc

    db.refresh(appointment)
    logger.info('Appointment %s moved from %s to %s', appointment.id, current, target)
    return appointment


def book_appointment(
    db: Session,
    student: Student,
    faculty_id: int,
    availability_id: int,
    appointment_date: date,
    purpose: str,
) -> Appointment:
    purpose = clean_text(purpose, 'Purpose', MAX_PURPOSE_LENGTH, required=True)

    faculty = db.get(Faculty, faculty_id)
    if faculty is None:
        raise NotFoundError('Faculty not found')

    slot = db.get(Availability, availability_id)
    if slot is None:
        raise NotFoundError('Availability slot not found')
    if slot.faculty_id != faculty.id:
        raise InvalidArgumentError('Availability slot does not belong to this faculty')
    if appointment_date < date.today():
        raise InvalidArgumentError('Appointments cannot be booked for a past date')
    if appointment_date.strftime('%A') != slot.day:
        raise InvalidArgumentError(f'Availability slot is only offered on {slot.day}')
    if not slot.is_active:
        raise ConflictError('Availability slot is not active')
    if slot.is_booked:
        raise ConflictError(SLOT_TAKEN_MESSAGE)
    # Plain read: two concurrent requests by one student for different slots can
    # both pass. Only the per-slot claim below is atomic.
    if _find_student_conflict(db, student, appointment_date, slot) is not None:
        raise ConflictError('You already have an appointment at this time')

    appointment = Appointment(
        student_id=student.id,
        faculty_id=faculty.id,
        availability_id=slot.id,
        date=appointment_date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        purpose=purpose,
        status=AppointmentStatus.PENDING.value,
    )

    try:
        if not _claim_slot(db, slot.id):
            db.rollback()
            raise ConflictError(SLOT_TAKEN_MESSAGE)
        db.add(appointment)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _slot_has_active_appointment(db, slot.id):
            raise ConflictError(SLOT_TAKEN_MESSAGE) from exc
        logger.warning('Booking for slot %s failed an integrity check: %s', slot.id, exc.orig)
        raise ConflictError(BOOKING_CHANGED_MESSAGE) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc

    db.refresh(appointment)
    logger.info(
        'Student %s booked slot %s with faculty %s on %s (appointment %s)',
        student.id, slot.id, faculty.id, appointment_date, appointment.id,
    )

    when = f'{_format_date(appointment.date)} at {appointment.start_time}'
    _notify(
        student.user.email,
        'Appointment Request Submitted',
        f'Your appointment request with {faculty.name} on {when} has been submitted and is pending approval.',
    )
    _notify(
        faculty.user.email,
        'New Appointment Request',
        f'You have a new appointment request from {student.name} on {when}.',
    )
    return appointment


def update_appointment_status(
    db: Session,
    faculty: Faculty,
    appointment_id: int,
    new_status: str,
    reason: str | None = None,
) -> Appointment:
    appointment = _get_appointment(db, appointment_id)
    if appointment.faculty_id != faculty.id:
        raise ForbiddenError('Not authorized to update this appointment')
    if appointment.status != AppointmentStatus.PENDING.value:
        raise ConflictError(f'Appointment is already {appointment.status}')

    normalized_status = (new_status or '').strip().lower()
    if normalized_status not in FACULTY_DECISIONS:
        raise InvalidArgumentError('Invalid status. Status must be accepted or rejected')

    reason = clean_text(reason, 'Reason', MAX_CANCEL_REASON_LENGTH)
    rejected = normalized_status == AppointmentStatus.REJECTED.value
    values = {'cancel_reason': reason} if rejected and reason else {}

    _apply_transition(db, appointment, normalized_status, release_slot=rejected, **values)

    reason_text = f' Reason: {reason}' if reason else ''
    _notify(
        appointment.student.user.email,
        f'Appointment {normalized_status.capitalize()}',
        f'Your appointment with {faculty.name} on {_format_date(appointment.date)} at '
        f'{appointment.start_time} has been {normalized_status}.{reason_text}',
    )
    return appointment


def _resolve_cancelling_party(db: Session, actor: User, appointment: Appointment) -> str:
    if actor.role == ROLE_STUDENT:
        student = get_student_profile(db, actor)
        if appointment.student_id != student.id:
            raise ForbiddenError('Not authorized to cancel this appointment')
        return ROLE_STUDENT

    if actor.role == ROLE_FACULTY:
        faculty = get_faculty_profile(db, actor)
        if appointment.faculty_id != faculty.id:
            raise ForbiddenError('Not authorized to cancel this appointment')
        return ROLE_FACULTY

    raise ForbiddenError('Only the student or faculty member on this appointment can cancel it')


def cancel_appointment(
    db: Session,
    actor: User,
    appointment_id: int,
    reason: str | None = None,
) -> Appointment:
    appointment = _get_appointment(db, appointment_id)
    if appointment.status == AppointmentStatus.CANCELLED.value:
        raise ConflictError('Appointment is already cancelled')
    if appointment.status == AppointmentStatus.REJECTED.value:
        raise ConflictError('Cannot cancel a rejected appointment')
    if appointment.status == AppointmentStatus.COMPLETED.value:
        raise ConflictError('Cannot cancel a completed appointment')

    cancelled_by = _resolve_cancelling_party(db, actor, appointment)
    reason = clean_text(reason, 'Cancel reason', MAX_CANCEL_REASON_LENGTH)
    values = {'cancelled_by': cancelled_by}
    if reason:
        values['cancel_reason'] = reason

    _apply_transition(db, appointment, AppointmentStatus.CANCELLED.value, release_slot=True, **values)

    student = appointment.student
    faculty = appointment.faculty
    cancelled_by_name = student.name if cancelled_by == ROLE_STUDENT else faculty.name
    when = f'{_format_date(appointment.date)} at {appointment.start_time}'
    reason_text = f' Reason: {reason}' if reason else ''
    _notify(
        student.user.email,
        'Appointment Cancelled',
        f'Your appointment with {faculty.name} on {when} has been cancelled by {cancelled_by_name}.{reason_text}',
    )
    _notify(
        faculty.user.email,
        'Appointment Cancelled',
        f'Your appointment with {student.name} on {when} has been cancelled by {cancelled_by_name}.{reason_text}',
    )
    return appointment


def complete_appointment(db: Session, faculty: Faculty, appointment_id: int) -> Appointment:
    appointment = _get_appointment(db, appointment_id)
    if appointment.faculty_id != faculty.id:
        raise ForbiddenError('Not authorized to complete this appointment')
    if appointment.status != AppointmentStatus.ACCEPTED.value:
        raise ConflictError(
            'Appointment must be accepted before it can be completed. '
            f'Current status: {appointment.status}'
        )

    _apply_transition(db, appointment, AppointmentStatus.COMPLETED.value, release_slot=True)

    _notify(
        appointment.student.user.email,
        'Appointment Completed',
        f'Your appointment with {faculty.name} on {_format_date(appointment.date)} at '
        f'{appointment.start_time} has been marked as completed.',
    )
    return appointment


def list_student_appointments(db: Session, student: Student) -> list[Appointment]:
    return (
        db.query(Appointment)
        .options(
            joinedload(Appointment.faculty).joinedload(Faculty.department),
            joinedload(Appointment.availability),
        )
        .filter(Appointment.student_id == student.id)
        .order_by(Appointment.date.asc(), Appointment.start_time.asc())
        .all()
    )


def list_faculty_appointments(db: Session, faculty: Faculty) -> list[Appointment]:
    return (
        db.query(Appointment)
        .options(
            joinedload(Appointment.student),
            joinedload(Appointment.availability),
        )
        .filter(Appointment.faculty_id == faculty.id)
        .order_by(Appointment.date.asc(), Appointment.start_time.asc())
        .all()
    )
