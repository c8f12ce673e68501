"""
CascadeScheduler - turns lifecycle events into tracked, queued notifications
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from ..utils.time_utils import now_utc
from .cascade import CascadeEntry, plan_cascade
from .errors import QueueUnavailableError, SchedulingInputError
from .models import LifecycleEvent, MessageStatus, ScheduledMessage
from .queue import DelayedQueue
from .registry import MESSAGE_SPECS
from .tracker import MessageTracker

logger = logging.getLogger("cascade-scheduler")


def build_job_payload(message: ScheduledMessage, delivered: Optional[List[str]] = None) -> dict:
    """Data carried by a dispatch job"""
    payload = {
        "message_id": message.id,
        "appointment_id": message.appointment_id,
        "patient_id": message.patient_id,
        "message_type": message.message_type.value,
        "channel": message.channel.value,
        "attempt": message.attempt,
    }
    if delivered:
        payload["delivered"] = list(delivered)
    return payload


class CascadeScheduler:
    """
    Schedules the notification cascade for a lifecycle event.

    Handles:
    - Planning the offset table for the event
    - Persisting one PENDING tracker row per entry
    - Submitting the matching delayed job, keyed by the row id
    """

    def __init__(self, tracker: MessageTracker, queue: DelayedQueue, clinic_timezone: str = "UTC"):
        self.tracker = tracker
        self.queue = queue
        self.clinic_timezone = clinic_timezone

    def schedule_cascade(
        self,
        event: LifecycleEvent,
        appointment_id: str,
        patient_id: str,
        anchor_time: datetime,
        now: Optional[datetime] = None
    ) -> List[ScheduledMessage]:
        """
        Plan and schedule every notification for a lifecycle event

        Args:
            event: BOOKING_CREATED (anchor is the consult time) or
                APPOINTMENT_COMPLETED (anchor is the completion time)
            appointment_id: Owning appointment
            patient_id: Patient the messages are about
            anchor_time: Time the cascade offsets are measured from
            now: Scheduling time (defaults to the current UTC time)

        Returns:
            Tracker rows created for this cascade
        """
        now = now or now_utc()
        entries = plan_cascade(event, now, anchor_time, self.clinic_timezone)

        created = []
        for entry in entries:
            try:
                message = self.schedule_entry(entry, appointment_id, patient_id, now)
            except SchedulingInputError as e:
                logger.error(f"Skipping cascade entry for appointment {appointment_id}: {e}")
                continue
            created.append(message)

        logger.info(
            f"Scheduled {len(created)}/{len(entries)} {event.value} messages "
            f"for appointment {appointment_id}"
        )
        return created

    def schedule_pre_consult(self, appointment_id: str, patient_id: str, consult_time: datetime,
                             now: Optional[datetime] = None) -> List[ScheduledMessage]:
        return self.schedule_cascade(
            LifecycleEvent.BOOKING_CREATED, appointment_id, patient_id, consult_time, now
        )

    def schedule_post_consult(self, appointment_id: str, patient_id: str,
                              completed_at: Optional[datetime] = None) -> List[ScheduledMessage]:
        now = now_utc()
        return self.schedule_cascade(
            LifecycleEvent.APPOINTMENT_COMPLETED, appointment_id, patient_id, completed_at or now, now
        )

    def schedule_entry(
        self,
        entry: CascadeEntry,
        appointment_id: str,
        patient_id: str,
        now: datetime
    ) -> ScheduledMessage:
        """
        Track and enqueue one cascade entry

        The row is written first with a pre-generated handle, then the job is
        submitted under that handle. If the queue rejects the job the row is
        marked FAILED, so a PENDING row always has a job behind it.

        Raises:
            SchedulingInputError: If the entry's type has no dispatch spec
        """
        spec = MESSAGE_SPECS.get(entry.message_type)
        if spec is None:
            raise SchedulingInputError(f"Unsupported message type: {entry.message_type}")
        if spec.channel != entry.channel:
            raise SchedulingInputError(
                f"{entry.message_type.value} planned on {entry.channel.value}, "
                f"expected {spec.channel.value}"
            )

        handle = str(uuid.uuid4())
        message = ScheduledMessage(
            id=handle,
            appointment_id=appointment_id,
            patient_id=patient_id,
            message_type=entry.message_type,
            channel=entry.channel,
            scheduled_for=now + entry.delay,
            status=MessageStatus.PENDING,
            job_handle=handle,
        )
        self.tracker.create(message)

        try:
            self.queue.enqueue(
                entry.message_type.value,
                build_job_payload(message),
                entry.delay_ms,
                job_id=handle
            )
        except QueueUnavailableError as e:
            logger.error(f"Failed to queue {entry.message_type.value} {message.id}: {e}")
            self.tracker.transition(
                message.id, [MessageStatus.PENDING], MessageStatus.FAILED, error=str(e)
            )
            message.status = MessageStatus.FAILED
            message.error = str(e)
            return message

        logger.debug(
            f"Queued {entry.message_type.value} {message.id} in {entry.delay_ms}ms "
            f"for appointment {appointment_id}"
        )
        return message
