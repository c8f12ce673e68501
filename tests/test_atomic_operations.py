"""
Test atomic Redis operations

Runs the Lua-backed tracker and appointment store against a real Redis
(database 15) to verify check-and-set transitions and index maintenance.
"""
from datetime import datetime, timedelta

import pytest
import pytz

from notify_cascade.scheduling.models import (
    Appointment, AppointmentStatus, Channel, MessageStatus, MessageType, Patient, ScheduledMessage
)
from notify_cascade.scheduling.tracker import MessageTracker
from notify_cascade.shared.appointments import AppointmentStore

BASE = datetime(2025, 3, 3, 15, 0, tzinfo=pytz.UTC)


@pytest.fixture
def redis_tracker(redis_test_db):
    return MessageTracker(redis_test_db, key_prefix="test:messages")


@pytest.fixture
def store(redis_test_db):
    return AppointmentStore(redis_test_db, key_prefix="test")


def make_message(message_id, minutes=0, message_type=MessageType.CONFIRMATION_SMS, appointment_id="appt-123"):
    return ScheduledMessage(
        id=message_id,
        appointment_id=appointment_id,
        patient_id="patient-456",
        message_type=message_type,
        channel=Channel.SMS,
        scheduled_for=BASE + timedelta(minutes=minutes),
        job_handle=message_id,
    )


class TestAtomicTracker:
    """Test atomic tracker transitions"""

    def test_create_and_get(self, redis_tracker):
        redis_tracker.create(make_message("atomic-1"))

        row = redis_tracker.get("atomic-1")

        assert row.status == MessageStatus.PENDING
        assert row.job_handle == "atomic-1"
        assert row.error is None
        assert row.scheduled_for == BASE

    def test_transition_only_from_expected_status(self, redis_tracker):
        redis_tracker.create(make_message("atomic-1"))

        assert redis_tracker.transition("atomic-1", [MessageStatus.PENDING], MessageStatus.QUEUED)
        # Already QUEUED, so a second PENDING -> QUEUED claim fails
        assert not redis_tracker.transition("atomic-1", [MessageStatus.PENDING], MessageStatus.QUEUED)
        assert redis_tracker.get("atomic-1").status == MessageStatus.QUEUED

    def test_transition_missing_row(self, redis_tracker):
        assert not redis_tracker.transition("nope", [MessageStatus.PENDING], MessageStatus.CANCELLED)

    def test_transition_records_fields(self, redis_tracker):
        redis_tracker.create(make_message("atomic-1"))
        redis_tracker.transition("atomic-1", [MessageStatus.PENDING], MessageStatus.QUEUED)

        redis_tracker.transition(
            "atomic-1", [MessageStatus.QUEUED], MessageStatus.FAILED,
            error="timeout", job_handle="atomic-1-attempt-2", attempt=2
        )
        row = redis_tracker.get("atomic-1")
        assert row.error == "timeout"
        assert row.job_handle == "atomic-1-attempt-2"
        assert row.attempt == 2

        sent_at = BASE + timedelta(minutes=1)
        redis_tracker.transition("atomic-1", [MessageStatus.FAILED], MessageStatus.SENT, sent_at=sent_at)
        assert redis_tracker.get("atomic-1").sent_at == sent_at

    def test_active_index_follows_status(self, redis_tracker):
        redis_tracker.create(make_message("atomic-1", minutes=0))
        redis_tracker.create(make_message("atomic-2", minutes=30))
        redis_tracker.create(make_message("atomic-3", minutes=90))

        due = redis_tracker.list_active(due_before=BASE + timedelta(minutes=60))
        assert [m.id for m in due] == ["atomic-1", "atomic-2"]

        redis_tracker.transition("atomic-1", [MessageStatus.PENDING], MessageStatus.CANCELLED)
        assert [m.id for m in redis_tracker.list_active()] == ["atomic-2", "atomic-3"]

        # Back to an active status rejoins the index
        redis_tracker.transition("atomic-2", [MessageStatus.PENDING], MessageStatus.FAILED)
        redis_tracker.transition("atomic-2", [MessageStatus.FAILED], MessageStatus.QUEUED)
        assert [m.id for m in redis_tracker.list_active()] == ["atomic-2", "atomic-3"]

    def test_list_for_appointment_filters(self, redis_tracker):
        redis_tracker.create(make_message("atomic-1", 0, MessageType.CONFIRMATION_SMS))
        redis_tracker.create(make_message("atomic-2", 35, MessageType.NO_SHOW_INITIAL_SMS))
        redis_tracker.create(make_message("atomic-3", 5, MessageType.CONFIRMATION_SMS, appointment_id="appt-999"))
        redis_tracker.transition("atomic-1", [MessageStatus.PENDING], MessageStatus.SENT)

        assert [m.id for m in redis_tracker.list_for_appointment("appt-123")] == ["atomic-1", "atomic-2"]
        assert [m.id for m in redis_tracker.list_for_appointment(
            "appt-123", statuses=[MessageStatus.PENDING]
        )] == ["atomic-2"]
        assert [m.id for m in redis_tracker.list_for_appointment(
            "appt-123", types=[MessageType.CONFIRMATION_SMS]
        )] == ["atomic-1"]
        assert redis_tracker.status_counts("appt-123") == {"SENT": 1, "PENDING": 1}
        assert redis_tracker.find_by_job_handle("appt-123", "atomic-2").id == "atomic-2"


class TestAppointmentStore:
    """Test the appointment read model"""

    def test_save_and_get(self, store):
        patient = store.save_patient(Patient(id="patient-456", name="Jane Doe", phone="+15551234567"))
        appointment = store.save_appointment(Appointment(
            id="appt-123", patient_id=patient.id, scheduled_at=BASE, booking_ref="cal-uid-1"
        ))

        assert store.get_patient("patient-456").first_name == "Jane"
        loaded = store.get_appointment("appt-123")
        assert loaded.scheduled_at == BASE
        assert loaded.consult_link is None
        assert store.find_by_booking_ref("cal-uid-1").id == appointment.id
        assert store.find_by_booking_ref("unknown") is None

    def test_conditional_status_update(self, store):
        store.save_appointment(Appointment(id="appt-123", patient_id="patient-456", scheduled_at=BASE))

        assert store.update_status("appt-123", AppointmentStatus.NO_SHOW, expected=[AppointmentStatus.SCHEDULED])
        assert not store.update_status(
            "appt-123", AppointmentStatus.NO_SHOW, expected=[AppointmentStatus.SCHEDULED]
        )
        assert store.update_status("appt-123", AppointmentStatus.COMPLETED)
        assert store.get_appointment("appt-123").status == AppointmentStatus.COMPLETED

    def test_update_missing_appointment(self, store):
        assert not store.update_status("missing", AppointmentStatus.CANCELLED)
