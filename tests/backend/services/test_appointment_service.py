import logging
from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from backend.core import config
from backend.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)
from backend.models.appointment import ACTIVE_STATUSES, Appointment, can_transition
from backend.models.availability import Availability
from backend.models.user import User
from backend.services.appointment_service import (
    book_appointment,
    cancel_appointment,
    complete_appointment,
    ensure_slot_mutable,
    list_faculty_appointments,
    list_student_appointments,
    update_appointment_status,
)

MONDAY = date(2030, 1, 7)
NEXT_MONDAY = date(2030, 1, 14)


def book(db, world, student=None, slot=None, appointment_date=MONDAY, purpose='Project discussion'):
    slot = slot or world.slot
    return book_appointment(
        db,
        student=student or world.student,
        faculty_id=slot.faculty_id,
        availability_id=slot.id,
        appointment_date=appointment_date,
        purpose=purpose,
    )


def assert_slots_consistent(db) -> None:
    db.expire_all()
    for slot in db.query(Availability).all():
        holders = db.query(Appointment).filter(
            Appointment.availability_id == slot.id,
            Appointment.status.in_(ACTIVE_STATUSES),
        ).count()
        assert holders <= 1
        assert slot.is_booked == (holders == 1)


def user_of(db, profile) -> User:
    return db.get(User, profile.user_id)


def test_state_machine_allows_only_documented_transitions() -> None:
    assert can_transition('pending', 'accepted')
    assert can_transition('pending', 'rejected')
    assert can_transition('pending', 'cancelled')
    assert can_transition('accepted', 'completed')
    assert can_transition('accepted', 'cancelled')
    assert not can_transition('pending', 'completed')
    assert not can_transition('accepted', 'rejected')
    for terminal in ('rejected', 'cancelled', 'completed'):
        for target in ('pending', 'accepted', 'rejected', 'cancelled', 'completed'):
            assert not can_transition(terminal, target)


def test_book_creates_pending_appointment_and_claims_slot(db, world, sent_emails) -> None:
    appointment = book(db, world)

    assert appointment.id is not None
    assert appointment.status == 'pending'
    assert appointment.start_time == '09:00'
    assert appointment.end_time == '10:00'
    assert appointment.date == MONDAY
    assert appointment.cancelled_by is None
    assert appointment.created_at is not None
    assert db.get(Availability, world.slot.id).is_booked is True

    assert [(to_email, subject) for to_email, subject, _ in sent_emails] == [
        ('ada@student.edu', 'Appointment Request Submitted'),
        ('turing@faculty.edu', 'New Appointment Request'),
    ]
    assert 'Mon Jan 07 2030 at 09:00' in sent_emails[0][2]
    assert_slots_consistent(db)


def test_book_derives_owner_lists_from_appointments(db, world, sent_emails) -> None:
    book(db, world, slot=world.afternoon_slot, appointment_date=NEXT_MONDAY)
    book(db, world)

    student_rows = list_student_appointments(db, world.student)
    faculty_rows = list_faculty_appointments(db, world.faculty)

    assert [row.date for row in student_rows] == [MONDAY, NEXT_MONDAY]
    assert [row.id for row in faculty_rows] == [row.id for row in student_rows]
    assert student_rows[0].faculty.department.name == 'Computer Science'
    assert faculty_rows[0].student.registration_number == world.student.registration_number
    assert list_student_appointments(db, world.other_student) == []


def test_book_rejects_unknown_faculty(db, world, sent_emails) -> None:
    with pytest.raises(NotFoundError, match='Faculty not found'):
        book_appointment(db, world.student, 999, world.slot.id, MONDAY, 'Help')


def test_book_rejects_unknown_slot(db, world, sent_emails) -> None:
    with pytest.raises(NotFoundError, match='Availability slot not found'):
        book_appointment(db, world.student, world.faculty.id, 999, MONDAY, 'Help')


def test_book_rejects_slot_of_another_faculty(db, world, sent_emails) -> None:
    with pytest.raises(InvalidArgumentError, match='does not belong'):
        book_appointment(db, world.student, world.faculty.id, world.other_faculty_slot.id, MONDAY, 'Help')


def test_book_rejects_date_on_another_weekday(db, world, sent_emails) -> None:
    wednesday = MONDAY + timedelta(days=2)

    with pytest.raises(InvalidArgumentError, match='only offered on Monday'):
        book(db, world, appointment_date=wednesday)

    assert db.query(Appointment).count() == 0
    assert db.get(Availability, world.slot.id).is_booked is False


def test_book_rejects_past_date(db, world, sent_emails) -> None:
    with pytest.raises(InvalidArgumentError, match='past date'):
        book(db, world, appointment_date=date(2000, 1, 3))

    assert db.query(Appointment).count() == 0


def test_book_rejects_inactive_slot(db, world, make, sent_emails) -> None:
    inactive = make.slot(world.faculty, start_time='16:00', end_time='17:00', is_active=False)

    with pytest.raises(ConflictError, match='not active'):
        book(db, world, slot=inactive)

    assert db.query(Appointment).count() == 0


def test_book_rejects_already_booked_slot(db, world, sent_emails) -> None:
    book(db, world)

    with pytest.raises(ConflictError, match='already booked'):
        book(db, world, student=world.other_student)

    assert db.query(Appointment).count() == 1


@pytest.mark.parametrize(('purpose', 'message'), [('   ', 'Purpose is required'), ('x' * 201, 'more than 200')])
def test_book_validates_purpose(db, world, sent_emails, purpose: str, message: str) -> None:
    with pytest.raises(InvalidArgumentError, match=message):
        book(db, world, purpose=purpose)

    assert db.get(Availability, world.slot.id).is_booked is False


def test_same_day_guard_blocks_second_booking_on_that_date(db, world, sent_emails) -> None:
    book(db, world)

    with pytest.raises(ConflictError, match='already have an appointment'):
        book(db, world, slot=world.afternoon_slot)

    # A different date is fine.
    book(db, world, slot=world.afternoon_slot, appointment_date=NEXT_MONDAY)


def test_overlapping_time_guard_only_blocks_overlaps(db, world, make, sent_emails, monkeypatch) -> None:
    monkeypatch.setattr(config, 'STUDENT_BOOKING_GUARD', config.STUDENT_BOOKING_GUARD_OVERLAPPING_TIME)
    overlapping = make.slot(world.other_faculty, start_time='09:30', end_time='10:30')

    book(db, world)
    book(db, world, slot=world.afternoon_slot)

    with pytest.raises(ConflictError, match='already have an appointment'):
        book(db, world, slot=overlapping)


def test_guard_ignores_finished_appointments(db, world, sent_emails) -> None:
    appointment = book(db, world)
    cancel_appointment(db, user_of(db, world.student), appointment.id)

    book(db, world, slot=world.afternoon_slot)


def test_accept_keeps_slot_booked_and_notifies_student(db, world, sent_emails) -> None:
    appointment = book(db, world)
    sent_emails.clear()

    updated = update_appointment_status(db, world.faculty, appointment.id, 'accepted')

    assert updated.status == 'accepted'
    assert db.get(Availability, world.slot.id).is_booked is True
    assert [(to_email, subject) for to_email, subject, _ in sent_emails] == [
        ('ada@student.edu', 'Appointment Accepted'),
    ]


def test_reject_releases_slot_and_allows_rebooking(db, world, sent_emails) -> None:
    appointment = book(db, world)
    assert db.get(Availability, world.slot.id).is_booked is True

    rejected = update_appointment_status(db, world.faculty, appointment.id, 'rejected', reason='conflict')

    assert rejected.status == 'rejected'
    assert rejected.cancel_reason == 'conflict'
    assert db.get(Availability, world.slot.id).is_booked is False
    assert sent_emails[-1][1] == 'Appointment Rejected'
    assert sent_emails[-1][2].endswith('has been rejected. Reason: conflict')

    rebooked = book(db, world)
    assert rebooked.status == 'pending'
    assert db.get(Availability, world.slot.id).is_booked is True
    assert_slots_consistent(db)


@pytest.mark.parametrize('first_decision', ['accepted', 'rejected'])
def test_update_status_on_processed_appointment_fails_without_change(
    db, world, sent_emails, first_decision: str
) -> None:
    appointment = book(db, world)
    update_appointment_status(db, world.faculty, appointment.id, first_decision)
    slot_booked = db.get(Availability, world.slot.id).is_booked
    sent_emails.clear()

    with pytest.raises(ConflictError, match=f'Appointment is already {first_decision}'):
        update_appointment_status(db, world.faculty, appointment.id, 'accepted')

    db.expire_all()
    assert db.get(Appointment, appointment.id).status == first_decision
    assert db.get(Availability, world.slot.id).is_booked is slot_booked
    assert sent_emails == []


def test_update_status_rejects_unknown_status(db, world, sent_emails) -> None:
    appointment = book(db, world)

    with pytest.raises(InvalidArgumentError, match='accepted or rejected'):
        update_appointment_status(db, world.faculty, appointment.id, 'completed')

    assert db.get(Appointment, appointment.id).status == 'pending'


def test_update_status_requires_owning_faculty(db, world, sent_emails) -> None:
    appointment = book(db, world)

    with pytest.raises(ForbiddenError):
        update_appointment_status(db, world.other_faculty, appointment.id, 'accepted')


def test_update_status_reports_missing_appointment(db, world) -> None:
    with pytest.raises(NotFoundError, match='Appointment not found'):
        update_appointment_status(db, world.faculty, 12345, 'accepted')


def test_student_cancels_pending_appointment(db, world, sent_emails) -> None:
    appointment = book(db, world)
    sent_emails.clear()

    cancelled = cancel_appointment(db, user_of(db, world.student), appointment.id, reason='Feeling unwell')

    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_by == 'student'
    assert cancelled.cancel_reason == 'Feeling unwell'
    assert db.get(Availability, world.slot.id).is_booked is False
    assert [to_email for to_email, _, _ in sent_emails] == ['ada@student.edu', 'turing@faculty.edu']
    assert all('cancelled by Ada Lovelace' in body for _, _, body in sent_emails)
    assert_slots_consistent(db)


def test_faculty_cancels_accepted_appointment(db, world, sent_emails) -> None:
    appointment = book(db, world)
    update_appointment_status(db, world.faculty, appointment.id, 'accepted')

    cancelled = cancel_appointment(db, user_of(db, world.faculty), appointment.id)

    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_by == 'faculty'
    assert cancelled.cancel_reason is None
    assert db.get(Availability, world.slot.id).is_booked is False
    assert 'cancelled by Alan Turing' in sent_emails[-1][2]


def test_cancel_rejected_appointment_fails(db, world, sent_emails) -> None:
    appointment = book(db, world)
    update_appointment_status(db, world.faculty, appointment.id, 'rejected')

    with pytest.raises(ConflictError, match='Cannot cancel a rejected appointment'):
        cancel_appointment(db, user_of(db, world.student), appointment.id)


def test_cancel_twice_fails(db, world, sent_emails) -> None:
    appointment = book(db, world)
    cancel_appointment(db, user_of(db, world.student), appointment.id)

    with pytest.raises(ConflictError, match='already cancelled'):
        cancel_appointment(db, user_of(db, world.faculty), appointment.id)


def test_cancel_completed_appointment_fails(db, world, sent_emails) -> None:
    appointment = book(db, world)
    update_appointment_status(db, world.faculty, appointment.id, 'accepted')
    complete_appointment(db, world.faculty, appointment.id)

    with pytest.raises(ConflictError, match='completed'):
        cancel_appointment(db, user_of(db, world.student), appointment.id)


def test_cancel_requires_party_to_appointment(db, world, sent_emails) -> None:
    appointment = book(db, world)

    with pytest.raises(ForbiddenError):
        cancel_appointment(db, user_of(db, world.other_student), appointment.id)
    with pytest.raises(ForbiddenError):
        cancel_appointment(db, user_of(db, world.other_faculty), appointment.id)
    with pytest.raises(ForbiddenError):
        cancel_appointment(db, world.admin, appointment.id)

    assert db.get(Appointment, appointment.id).status == 'pending'
    assert db.get(Availability, world.slot.id).is_booked is True


def test_cancel_by_student_without_profile_is_not_found(db, world, make, sent_emails) -> None:
    appointment = book(db, world)
    orphan = make.user('orphan@student.edu', 'student')

    with pytest.raises(NotFoundError, match='Student not found'):
        cancel_appointment(db, orphan, appointment.id)


def test_complete_from_pending_reports_current_status(db, world, sent_emails) -> None:
    appointment = book(db, world)

    with pytest.raises(ConflictError, match='Current status: pending'):
        complete_appointment(db, world.faculty, appointment.id)

    assert db.get(Appointment, appointment.id).status == 'pending'


def test_complete_requires_owning_faculty(db, world, sent_emails) -> None:
    appointment = book(db, world)
    update_appointment_status(db, world.faculty, appointment.id, 'accepted')

    with pytest.raises(ForbiddenError):
        complete_appointment(db, world.other_faculty, appointment.id)


def test_book_accept_complete_round_trip_frees_slot(db, world, sent_emails) -> None:
    appointment = book(db, world)
    sent_emails.clear()

    update_appointment_status(db, world.faculty, appointment.id, 'accepted')
    completed = complete_appointment(db, world.faculty, appointment.id)

    assert completed.status == 'completed'
    assert db.get(Availability, world.slot.id).is_booked is False
    assert [(to_email, subject) for to_email, subject, _ in sent_emails] == [
        ('ada@student.edu', 'Appointment Accepted'),
        ('ada@student.edu', 'Appointment Completed'),
    ]
    assert_slots_consistent(db)


def test_notification_failure_does_not_abort_booking(db, world, monkeypatch, caplog) -> None:
    def broken_send_email(to_email: str, subject: str, body: str) -> None:
        raise ConnectionRefusedError('smtp down')

    monkeypatch.setattr('backend.services.notifications.send_email', broken_send_email)

    with caplog.at_level(logging.ERROR, logger='backend.services.appointment_service'):
        appointment = book(db, world)

    assert appointment.status == 'pending'
    assert db.get(Availability, world.slot.id).is_booked is True
    assert 'Failed to send notification' in caplog.text


def test_book_rolls_back_slot_claim_when_commit_fails(db, world, sent_emails, monkeypatch) -> None:
    slot_id = world.slot.id

    def failing_commit() -> None:
        raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(UnavailableError):
        book(db, world)

    assert db.query(Appointment).count() == 0
    assert db.get(Availability, slot_id).is_booked is False
    assert sent_emails == []


def test_book_reports_taken_slot_when_unique_index_fires(db, world, sent_emails) -> None:
    # Slot flag out of step with an active appointment: only the index catches it.
    db.add(
        Appointment(
            student_id=world.other_student.id,
            faculty_id=world.faculty.id,
            availability_id=world.slot.id,
            date=MONDAY,
            start_time='09:00',
            end_time='10:00',
            purpose='Existing',
            status='pending',
        )
    )
    db.commit()

    with pytest.raises(ConflictError, match='already booked'):
        book(db, world)

    assert db.query(Appointment).count() == 1
    assert db.get(Availability, world.slot.id).is_booked is False


def test_book_reports_other_integrity_failures_separately(db, world, sent_emails, monkeypatch) -> None:
    slot_id = world.slot.id

    def failing_commit() -> None:
        raise IntegrityError('INSERT', {}, Exception('FOREIGN KEY constraint failed'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(ConflictError, match='Booking details changed') as exception_info:
        book(db, world)

    assert 'already booked' not in exception_info.value.message
    assert db.get(Availability, slot_id).is_booked is False
    assert sent_emails == []


def test_ensure_slot_mutable_blocks_booked_slot(db, world, sent_emails) -> None:
    ensure_slot_mutable(world.slot)
    book(db, world)

    with pytest.raises(ConflictError):
        ensure_slot_mutable(db.get(Availability, world.slot.id))
