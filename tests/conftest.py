"""
Pytest configuration and fixtures for notification cascade tests
"""
from datetime import datetime, timedelta

import pytest
import pytz
import redis

from notify_cascade.channels.base import MockChannelAdapter
from notify_cascade.channels.chatbot import StaticChatbot
from notify_cascade.channels.templates import TemplateResolver
from notify_cascade.config.settings import Settings
from notify_cascade.scheduling.cancellation import CancellationEngine
from notify_cascade.scheduling.dispatcher import MessageDispatcher
from notify_cascade.scheduling.errors import QueueUnavailableError
from notify_cascade.scheduling.models import (
    Appointment, AppointmentStatus, Channel, Patient, ScheduledMessage
)
from notify_cascade.scheduling.scheduler import CascadeScheduler
from notify_cascade.utils.time_utils import now_utc


class FakeTracker:
    """In-memory MessageTracker with the same check-and-set semantics"""

    def __init__(self):
        self.rows = {}

    def create(self, message):
        self.rows[message.id] = message.to_dict()
        return message

    def get(self, message_id):
        data = self.rows.get(message_id)
        return ScheduledMessage.from_dict(data) if data else None

    def list_for_appointment(self, appointment_id, statuses=None, types=None):
        status_filter = set(statuses) if statuses is not None else None
        type_filter = set(types) if types is not None else None
        messages = []
        for data in self.rows.values():
            message = ScheduledMessage.from_dict(data)
            if message.appointment_id != appointment_id:
                continue
            if status_filter is not None and message.status not in status_filter:
                continue
            if type_filter is not None and message.message_type not in type_filter:
                continue
            messages.append(message)
        return sorted(messages, key=lambda m: m.scheduled_for)

    def find_by_job_handle(self, appointment_id, job_handle):
        for message in self.list_for_appointment(appointment_id):
            if message.job_handle == job_handle:
                return message
        return None

    def list_active(self, due_before=None, limit=500):
        messages = [
            ScheduledMessage.from_dict(data) for data in self.rows.values()
            if ScheduledMessage.from_dict(data).is_active
        ]
        if due_before is not None:
            messages = [m for m in messages if m.scheduled_for <= due_before]
        return sorted(messages, key=lambda m: m.scheduled_for)[:limit]

    def transition(self, message_id, from_statuses, to_status, error=None, sent_at=None,
                   job_handle=None, attempt=None):
        data = self.rows.get(message_id)
        if data is None:
            return False
        if data["status"] not in {s.value for s in from_statuses}:
            return False
        data["status"] = to_status.value
        data["updated_at"] = now_utc().isoformat()
        if error:
            data["error"] = error
        if sent_at:
            data["sent_at"] = sent_at.isoformat()
        if job_handle:
            data["job_handle"] = job_handle
        if attempt is not None:
            data["attempt"] = attempt
        return True

    def status_counts(self, appointment_id):
        counts = {}
        for message in self.list_for_appointment(appointment_id):
            counts[message.status.value] = counts.get(message.status.value, 0) + 1
        return counts

    def statuses(self):
        return {message_id: data["status"] for message_id, data in self.rows.items()}


class FakeQueue:
    """In-memory DelayedQueue; jobs stay 'scheduled' until fired or removed"""

    def __init__(self):
        self.jobs = {}
        self.fail_enqueue = False

    def enqueue(self, kind, payload, delay_ms, job_id):
        if self.fail_enqueue:
            raise QueueUnavailableError(f"Failed to enqueue {kind} job {job_id}: connection refused")
        self.jobs[job_id] = {
            "kind": kind,
            "payload": dict(payload),
            "delay_ms": delay_ms,
            "status": "scheduled",
        }
        return job_id

    def remove(self, handle):
        job = self.jobs.get(handle)
        if job is None or job["status"] != "scheduled":
            return False
        job["status"] = "removed"
        return True

    def is_live(self, handle):
        job = self.jobs.get(handle)
        return job is not None and job["status"] in ("scheduled", "started")

    def fire(self, handle):
        """Mark a job as claimed by a worker and return its payload"""
        job = self.jobs[handle]
        job["status"] = "started"
        return job["payload"]

    def live_handles(self):
        return [h for h, job in self.jobs.items() if job["status"] == "scheduled"]


class FakeAppointmentStore:
    """In-memory AppointmentStore"""

    def __init__(self):
        self.appointments = {}
        self.patients = {}
        self.booking_index = {}
        self.status_updates = []

    def save_patient(self, patient):
        self.patients[patient.id] = patient
        return patient

    def get_patient(self, patient_id):
        return self.patients.get(patient_id)

    def save_appointment(self, appointment):
        self.appointments[appointment.id] = appointment
        if appointment.booking_ref:
            self.booking_index[appointment.booking_ref] = appointment.id
        return appointment

    def get_appointment(self, appointment_id):
        return self.appointments.get(appointment_id)

    def find_by_booking_ref(self, booking_ref):
        appointment_id = self.booking_index.get(booking_ref)
        return self.appointments.get(appointment_id) if appointment_id else None

    def update_status(self, appointment_id, new_status, expected=None):
        appointment = self.appointments.get(appointment_id)
        if appointment is None:
            return False
        if expected and appointment.status not in expected:
            return False
        appointment.status = new_status
        self.status_updates.append((appointment_id, new_status))
        return True


@pytest.fixture
def now():
    """Fixed scheduling time: Monday 2025-03-03 15:00 UTC (10:00 US/Eastern)"""
    return datetime(2025, 3, 3, 15, 0, 0, tzinfo=pytz.UTC)


@pytest.fixture
def settings():
    return Settings(
        clinic_name="Valley Clinic",
        clinic_timezone="US/Eastern",
        base_url="https://clinic.example.com",
        consult_link="https://meet.example.com/default",
        reschedule_link="https://clinic.example.com/reschedule",
        escalation_phone="+15550009999",
        escalation_email="ops@clinic.example.com",
        channels_dry_run=True,
    )


@pytest.fixture
def tracker():
    return FakeTracker()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def appointment_store():
    return FakeAppointmentStore()


@pytest.fixture
def adapters():
    return {
        Channel.SMS: MockChannelAdapter("sms"),
        Channel.VOICE: MockChannelAdapter("voice"),
        Channel.EMAIL: MockChannelAdapter("email"),
    }


@pytest.fixture
def chatbot():
    return StaticChatbot("Valley Clinic")


@pytest.fixture
def cascade_scheduler(tracker, queue):
    return CascadeScheduler(tracker, queue, clinic_timezone="US/Eastern")


@pytest.fixture
def cancellation_engine(tracker, queue):
    return CancellationEngine(tracker, queue)


@pytest.fixture
def dispatcher(tracker, appointment_store, queue, adapters, chatbot, settings):
    return MessageDispatcher(
        tracker=tracker,
        appointments=appointment_store,
        queue=queue,
        adapters=adapters,
        chatbot=chatbot,
        templates=TemplateResolver(settings.clinic_name),
        settings=settings
    )


@pytest.fixture
def sample_patient():
    return Patient(id="patient-456", name="Jane Doe", phone="+15551234567", email="jane@example.com")


@pytest.fixture
def sample_appointment(now, sample_patient, appointment_store):
    """Appointment 48h out, stored with its patient"""
    appointment = Appointment(
        id="appt-123",
        patient_id=sample_patient.id,
        scheduled_at=now + timedelta(hours=48),
        status=AppointmentStatus.SCHEDULED,
        consult_link="https://meet.example.com/appt-123",
    )
    appointment_store.save_patient(sample_patient)
    appointment_store.save_appointment(appointment)
    return appointment


@pytest.fixture
def redis_test_db():
    """
    Real Redis connection for integration tests.
    Uses database 15 to avoid conflicts with development data.
    """
    try:
        client = redis.Redis(host='localhost', port=6379, db=15, decode_responses=True)
        client.ping()  # Test connection
    except redis.ConnectionError:
        pytest.skip("Redis not available for integration tests")

    # Clear the test database before each test
    client.flushdb()

    yield client

    # Clean up after test
    client.flushdb()
    client.close()
