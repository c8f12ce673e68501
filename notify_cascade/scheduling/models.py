"""
Data models for the appointment notification cascade
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
import uuid

from ..utils.time_utils import now_utc, parse_iso_to_utc


class MessageStatus(Enum):
    """Lifecycle status of a tracked notification"""
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Rows in these statuses still own a live job handle
ACTIVE_STATUSES = frozenset({MessageStatus.PENDING, MessageStatus.QUEUED})


class Channel(Enum):
    """Delivery medium"""
    SMS = "SMS"
    VOICE = "VOICE"
    EMAIL = "EMAIL"
    CHATBOT = "CHATBOT"
    INTERNAL = "INTERNAL"


class AppointmentStatus(Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


class LifecycleEvent(Enum):
    """Appointment events that produce a cascade"""
    BOOKING_CREATED = "BOOKING_CREATED"
    APPOINTMENT_COMPLETED = "APPOINTMENT_COMPLETED"


class MessageType(Enum):
    """Every notification kind the cascade can emit"""
    # Immediately after booking
    CONFIRMATION_SMS = "CONFIRMATION_SMS"
    CHATBOT_INTRO_SMS = "CHATBOT_INTRO_SMS"
    CONFIRMATION_EMAIL = "CONFIRMATION_EMAIL"
    # Before the consult
    PRE_CONSULT_REMINDER_SMS = "PRE_CONSULT_REMINDER_SMS"
    DAY_OF_VOICE_CALL = "DAY_OF_VOICE_CALL"
    TWO_HOUR_REMINDER_SMS = "TWO_HOUR_REMINDER_SMS"
    TWO_HOUR_REMINDER_EMAIL = "TWO_HOUR_REMINDER_EMAIL"
    TEN_MIN_REMINDER_SMS = "TEN_MIN_REMINDER_SMS"
    # After completion
    POST_CONSULT_THANK_YOU_SMS = "POST_CONSULT_THANK_YOU_SMS"
    POST_CONSULT_SUMMARY_EMAIL = "POST_CONSULT_SUMMARY_EMAIL"
    POST_CONSULT_CHATBOT_SMS = "POST_CONSULT_CHATBOT_SMS"
    # No-show recovery
    NO_SHOW_INITIAL_SMS = "NO_SHOW_INITIAL_SMS"
    NO_SHOW_INITIAL_EMAIL = "NO_SHOW_INITIAL_EMAIL"
    NO_SHOW_VOICE_CALL = "NO_SHOW_VOICE_CALL"
    NO_SHOW_NEXT_DAY_SMS = "NO_SHOW_NEXT_DAY_SMS"
    NO_SHOW_NEXT_DAY_EMAIL = "NO_SHOW_NEXT_DAY_EMAIL"
    NO_SHOW_CHATBOT_SMS = "NO_SHOW_CHATBOT_SMS"
    NO_SHOW_ESCALATION = "NO_SHOW_ESCALATION"

    @property
    def is_no_show(self) -> bool:
        return self in NO_SHOW_TYPES


NO_SHOW_TYPES = frozenset({
    MessageType.NO_SHOW_INITIAL_SMS,
    MessageType.NO_SHOW_INITIAL_EMAIL,
    MessageType.NO_SHOW_VOICE_CALL,
    MessageType.NO_SHOW_NEXT_DAY_SMS,
    MessageType.NO_SHOW_NEXT_DAY_EMAIL,
    MessageType.NO_SHOW_CHATBOT_SMS,
    MessageType.NO_SHOW_ESCALATION,
})


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    # Redis stores missing values as empty strings
    return parse_iso_to_utc(value) if value else None


@dataclass
class ScheduledMessage:
    """
    Tracker row for one scheduled notification.

    ``scheduled_for`` is computed once when the cascade is planned and never
    recomputed. ``job_handle`` references the delayed-queue job that will fire
    this message; rows are never deleted, only moved to a terminal status.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    appointment_id: str = ""
    patient_id: str = ""
    message_type: MessageType = MessageType.CONFIRMATION_SMS
    channel: Channel = Channel.SMS
    scheduled_for: datetime = field(default_factory=now_utc)
    status: MessageStatus = MessageStatus.PENDING
    job_handle: Optional[str] = None
    attempt: int = 1
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for Redis hash storage"""
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "patient_id": self.patient_id,
            "message_type": self.message_type.value,
            "channel": self.channel.value,
            "scheduled_for": self.scheduled_for.isoformat(),
            "scheduled_ts": self.scheduled_for.timestamp(),
            "status": self.status.value,
            "job_handle": self.job_handle,
            "attempt": self.attempt,
            "error": self.error,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledMessage":
        """Create from dictionary"""
        return cls(
            id=data["id"],
            appointment_id=data["appointment_id"],
            patient_id=data.get("patient_id", ""),
            message_type=MessageType(data["message_type"]),
            channel=Channel(data["channel"]),
            scheduled_for=parse_iso_to_utc(data["scheduled_for"]),
            status=MessageStatus(data["status"]),
            job_handle=data.get("job_handle") or None,
            attempt=int(data.get("attempt") or 1),
            error=data.get("error") or None,
            sent_at=_optional_datetime(data.get("sent_at")),
            created_at=parse_iso_to_utc(data["created_at"]),
            updated_at=parse_iso_to_utc(data["updated_at"])
        )


@dataclass
class Patient:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    phone: str = ""
    email: str = ""

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "phone": self.phone, "email": self.email}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Patient":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            phone=data.get("phone", ""),
            email=data.get("email", "")
        )


@dataclass
class Appointment:
    """
    Appointment as seen by the cascade.

    Owned by the appointment-management side; the cascade only reads it and
    writes ``status``.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    patient_id: str = ""
    scheduled_at: datetime = field(default_factory=now_utc)
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    booking_ref: Optional[str] = None
    consult_link: Optional[str] = None
    reschedule_link: Optional[str] = None
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "scheduled_at": self.scheduled_at.isoformat(),
            "status": self.status.value,
            "booking_ref": self.booking_ref,
            "consult_link": self.consult_link,
            "reschedule_link": self.reschedule_link,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Appointment":
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            scheduled_at=parse_iso_to_utc(data["scheduled_at"]),
            status=AppointmentStatus(data["status"]),
            booking_ref=data.get("booking_ref") or None,
            consult_link=data.get("consult_link") or None,
            reschedule_link=data.get("reschedule_link") or None,
            created_at=parse_iso_to_utc(data["created_at"]),
            updated_at=parse_iso_to_utc(data["updated_at"])
        )
