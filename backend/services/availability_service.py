"""Faculty availability slots.

Slot edits go through ``ensure_slot_mutable`` and are written as conditional
updates on ``is_booked`` so a booking that lands between the check and the
write still blocks the change.
"""

import logging
import re

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.errors import (
    DATABASE_UNAVAILABLE_MESSAGE,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)
from backend.models.appointment import TERMINAL_STATUSES, Appointment
from backend.models.availability import WEEKDAYS, Availability
from backend.models.faculty import Faculty
from backend.services.appointment_service import ensure_slot_mutable

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')
SLOT_BOOKED_MESSAGE = 'Availability slot has an active booking and cannot be changed'


def normalize_day(value: str) -> str:
    normalized = (value or '').strip().capitalize()
    if normalized not in WEEKDAYS:
        raise InvalidArgumentError(f'Day must be one of {", ".join(WEEKDAYS)}.')
    return normalized


def validate_time(value: str, label: str) -> str:
    normalized = (value or '').strip()
    if not TIME_PATTERN.match(normalized):
        raise InvalidArgumentError(f'{label} must be in HH:MM format.')
    return normalized


def validate_slot_times(start_time: str, end_time: str) -> tuple[str, str]:
    start = validate_time(start_time, 'Start time')
    end = validate_time(end_time, 'End time')
    if end <= start:
        raise InvalidArgumentError('End time must be after start time.')
    return start, end


def get_owned_slot(db: Session, faculty: Faculty, slot_id: int) -> Availability:
    slot = db.get(Availability, slot_id)
    if slot is None or slot.faculty_id != faculty.id:
        raise NotFoundError('Availability slot not found')
    return slot


def list_faculty_slots(db: Session, faculty: Faculty) -> list[Availability]:
    slots = db.query(Availability).filter(Availability.faculty_id == faculty.id).all()
    return sorted(slots, key=lambda slot: (WEEKDAYS.index(slot.day), slot.start_time))


def list_bookable_slots(db: Session, faculty_id: int) -> list[Availability]:
    if db.get(Faculty, faculty_id) is None:
        raise NotFoundError('Faculty not found')
    slots = db.query(Availability).filter(
        Availability.faculty_id == faculty_id,
        Availability.is_active.is_(True),
        Availability.is_booked.is_(False),
    ).all()
    return sorted(slots, key=lambda slot: (WEEKDAYS.index(slot.day), slot.start_time))


def ensure_no_overlap(
    db: Session,
    faculty: Faculty,
    day: str,
    start_time: str,
    end_time: str,
    exclude_slot_id: int | None = None,
) -> None:
    query = db.query(Availability).filter(
        Availability.faculty_id == faculty.id,
        Availability.day == day,
        Availability.start_time < end_time,
        Availability.end_time > start_time,
    )
    if exclude_slot_id is not None:
        query = query.filter(Availability.id != exclude_slot_id)
    if query.first() is not None:
        raise ConflictError('This slot overlaps an existing availability slot.')


def create_slot(
    db: Session,
    faculty: Faculty,
    day: str,
    start_time: str,
    end_time: str,
    is_active: bool = True,
) -> Availability:
    day = normalize_day(day)
    start_time, end_time = validate_slot_times(start_time, end_time)

    ensure_no_overlap(db, faculty, day, start_time, end_time)

    slot = Availability(
        faculty_id=faculty.id,
        day=day,
        start_time=start_time,
        end_time=end_time,
        is_active=is_active,
        is_booked=False,
    )
    try:
        db.add(slot)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc

    db.refresh(slot)
    logger.info('Faculty %s added slot %s (%s %s-%s)', faculty.id, slot.id, day, start_time, end_time)
    return slot


def update_slot(
    db: Session,
    faculty: Faculty,
    slot_id: int,
    day: str | None = None,
    start_time: str | None = None,
    end_time: str | None = None,
    is_active: bool | None = None,
) -> Availability:
    slot = get_owned_slot(db, faculty, slot_id)
    ensure_slot_mutable(slot)

    values = {}
    if day is not None:
        values['day'] = normalize_day(day)
    if start_time is not None or end_time is not None:
        values['start_time'], values['end_time'] = validate_slot_times(
            start_time if start_time is not None else slot.start_time,
            end_time if end_time is not None else slot.end_time,
        )
    if is_active is not None:
        values['is_active'] = is_active
    if not values:
        return slot

    if 'day' in values or 'start_time' in values:
        ensure_no_overlap(
            db,
            faculty,
            values.get('day', slot.day),
            values.get('start_time', slot.start_time),
            values.get('end_time', slot.end_time),
            exclude_slot_id=slot.id,
        )

    try:
        result = db.execute(
            update(Availability)
            .where(Availability.id == slot.id, Availability.is_booked.is_(False))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ConflictError(SLOT_BOOKED_MESSAGE)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc

    db.refresh(slot)
    return slot


def delete_slot(db: Session, faculty: Faculty, slot_id: int) -> None:
    slot = get_owned_slot(db, faculty, slot_id)
    ensure_slot_mutable(slot)

    try:
        # Finished appointments keep their time snapshot but lose the slot link.
        db.execute(
            update(Appointment)
            .where(Appointment.availability_id == slot.id, Appointment.status.in_(TERMINAL_STATUSES))
            .values(availability_id=None)
            .execution_options(synchronize_session=False)
        )
        result = db.execute(
            delete(Availability)
            .where(Availability.id == slot.id, Availability.is_booked.is_(False))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise ConflictError(SLOT_BOOKED_MESSAGE)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc

    logger.info('Faculty %s deleted slot %s', faculty.id, slot_id)
