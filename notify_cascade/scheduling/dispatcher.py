"""
MessageDispatcher - runs a due notification job

For each job the dispatcher re-reads the tracker row and the appointment,
applies the skip policy, delivers through the channel adapter named by the
dispatch table and records the outcome on the tracker row. Transient
failures are retried by enqueueing a new job for the same row with
exponential backoff; nothing here relies on RQ's own retry.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from ..channels.base import ChannelAdapter, DeliveryResult
from ..channels.templates import TemplateResolver, build_template_data
from ..config.settings import Settings
from ..shared.appointments import AppointmentStore
from ..utils.time_utils import now_utc
from .errors import (
    AppointmentNotFound, PermanentDeliveryError, QueueUnavailableError,
    StaleAppointmentState, TransientDeliveryError
)
from .models import (
    Appointment, AppointmentStatus, Channel, MessageStatus, Patient, ScheduledMessage
)
from .queue import DelayedQueue
from .registry import ContentSource, MessageSpec, PostEffect, Recipient, get_spec
from .scheduler import build_job_payload
from .tracker import MessageTracker

logger = logging.getLogger("message-dispatcher")

# Statuses a row may be dispatched (or skipped) from
DISPATCHABLE_STATUSES = (MessageStatus.PENDING, MessageStatus.FAILED)

# Appointment statuses that cancel every outstanding message
CLOSED_APPOINTMENT_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED)

VOICE_SCRIPT_PATH = "/api/voice/{context}-twiml"


class DispatchOutcome(Enum):
    SENT = "sent"
    SKIPPED = "skipped"                  # stale appointment state, row CANCELLED
    DROPPED = "dropped"                  # nothing to do for this job
    RETRY_SCHEDULED = "retry_scheduled"  # transient failure, new job queued
    FAILED = "failed"                    # permanent failure or attempts exhausted


def check_skip_policy(message: ScheduledMessage, appointment: Appointment) -> None:
    """
    Raise StaleAppointmentState if the appointment no longer wants this message

    No-show recovery stops once the appointment is COMPLETED. A cancelled or
    rescheduled appointment stops everything.
    """
    if message.message_type.is_no_show and appointment.status == AppointmentStatus.COMPLETED:
        raise StaleAppointmentState(appointment.id, appointment.status, message.message_type)
    if appointment.status in CLOSED_APPOINTMENT_STATUSES:
        raise StaleAppointmentState(appointment.id, appointment.status, message.message_type)


class MessageDispatcher:
    """
    Consumer-side logic for one dispatch job.

    Collaborators are passed in explicitly so tests can run the whole
    decision path against in-memory fakes and mock adapters.
    """

    def __init__(
        self,
        tracker: MessageTracker,
        appointments: AppointmentStore,
        queue: DelayedQueue,
        adapters: Dict[Channel, ChannelAdapter],
        chatbot,
        templates: TemplateResolver,
        settings: Settings
    ):
        """
        Args:
            tracker: Message tracker store
            appointments: Appointment/patient read model
            queue: Delayed queue used for retries
            adapters: Channel adapters keyed by Channel.SMS, Channel.VOICE and
                Channel.EMAIL (chatbot follow-ups go out over SMS)
            chatbot: Object with ``generate_proactive_message(first_name, context)``
            templates: Template resolver for patient-facing content
            settings: Runtime settings (links, escalation contacts, retry policy)
        """
        self.tracker = tracker
        self.appointments = appointments
        self.queue = queue
        self.adapters = adapters
        self.chatbot = chatbot
        self.templates = templates
        self.settings = settings

    def dispatch(self, payload: Dict[str, Any]) -> DispatchOutcome:
        """
        Handle one due job

        Args:
            payload: Job data built by ``build_job_payload``

        Returns:
            What happened to the job
        """
        message_id = payload["message_id"]
        message = self.tracker.get(message_id)

        if message is None:
            logger.warning(f"Message {message_id} not tracked, dropping job")
            return DispatchOutcome.DROPPED

        if message.status in (MessageStatus.SENT, MessageStatus.CANCELLED):
            logger.info(f"Message {message_id} already {message.status.value}, dropping job")
            return DispatchOutcome.DROPPED

        if int(payload.get("attempt", 1)) != message.attempt:
            logger.info(
                f"Stale job for message {message_id} (job attempt {payload.get('attempt')}, "
                f"row attempt {message.attempt}), dropping"
            )
            return DispatchOutcome.DROPPED

        try:
            appointment = self._load_appointment(message.appointment_id)
            check_skip_policy(message, appointment)
        except AppointmentNotFound as e:
            logger.warning(f"{e}, dropping {message.message_type.value} {message_id}")
            self.tracker.transition(
                message_id, DISPATCHABLE_STATUSES, MessageStatus.FAILED, error="appointment not found"
            )
            return DispatchOutcome.DROPPED
        except StaleAppointmentState as e:
            logger.info(str(e))
            self.tracker.transition(message_id, DISPATCHABLE_STATUSES, MessageStatus.CANCELLED)
            return DispatchOutcome.SKIPPED

        if not self.tracker.transition(message_id, DISPATCHABLE_STATUSES, MessageStatus.QUEUED):
            logger.info(f"Message {message_id} claimed or cancelled elsewhere, dropping job")
            return DispatchOutcome.DROPPED

        try:
            result = self._deliver(message, appointment, payload.get("delivered") or [])
        except Exception as e:
            logger.error(f"Unexpected error dispatching message {message_id}: {e}", exc_info=True)
            self.tracker.transition(
                message_id, [MessageStatus.QUEUED], MessageStatus.FAILED, error=f"Unexpected error: {e}"
            )
            raise

        if result.success:
            return self._record_sent(message, result)
        return self._record_failure(message, result)

    def _load_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.appointments.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def _deliver(
        self,
        message: ScheduledMessage,
        appointment: Appointment,
        already_delivered: List[str]
    ) -> DeliveryResult:
        spec = get_spec(message.message_type)

        patient = self.appointments.get_patient(appointment.patient_id)
        if patient is None:
            return DeliveryResult.permanent(f"Patient {appointment.patient_id} not found")

        if spec.post_effect == PostEffect.MARK_NO_SHOW:
            # Only the system's first detection of the miss flips the status
            self.appointments.update_status(
                appointment.id, AppointmentStatus.NO_SHOW, expected=[AppointmentStatus.SCHEDULED]
            )

        if spec.recipient == Recipient.OPERATOR:
            return self._send_escalation(patient, already_delivered)

        try:
            content = self._build_content(message, spec, appointment, patient)
        except TransientDeliveryError as e:
            return DeliveryResult.transient(str(e))
        except PermanentDeliveryError as e:
            return DeliveryResult.permanent(str(e))

        if spec.channel == Channel.EMAIL:
            recipient = patient.email
        else:
            recipient = patient.phone

        adapter = self._adapter_for(spec.channel)
        if adapter is None:
            return DeliveryResult.permanent(f"No adapter configured for {spec.channel.value}")

        logger.info(
            f"Dispatching {message.message_type.value} {message.id} "
            f"(attempt {message.attempt}) via {adapter.name}"
        )
        return adapter.send(recipient, content)

    def _build_content(
        self,
        message: ScheduledMessage,
        spec: MessageSpec,
        appointment: Appointment,
        patient: Patient
    ):
        if spec.content == ContentSource.VOICE_SCRIPT:
            path = VOICE_SCRIPT_PATH.format(context=spec.context)
            return f"{self.settings.base_url}{path}?appointmentId={appointment.id}"

        if spec.content == ContentSource.CHATBOT:
            return self.chatbot.generate_proactive_message(patient.first_name or "there", spec.context)

        data = build_template_data(
            appointment,
            patient,
            self.settings.clinic_timezone,
            self.settings.consult_link,
            self.settings.reschedule_link
        )
        return self.templates.render(message.message_type, data)

    def _adapter_for(self, channel: Channel) -> Optional[ChannelAdapter]:
        if channel == Channel.CHATBOT:
            channel = Channel.SMS
        return self.adapters.get(channel)

    def _send_escalation(self, patient: Patient, already_delivered: List[str]) -> DeliveryResult:
        """
        Alert the internal operator by SMS and email

        Legs named in ``already_delivered`` went out on an earlier attempt and
        are not sent again. A failed result lists every leg delivered so far,
        so the retry job only repeats the failed one.
        """
        sends = []
        if self.settings.escalation_phone:
            sends.append((Channel.SMS, self.settings.escalation_phone, self.templates.escalation_sms(patient)))
        if self.settings.escalation_email:
            sends.append((Channel.EMAIL, self.settings.escalation_email, self.templates.escalation_email(patient)))

        if not sends:
            return DeliveryResult.permanent("No escalation contact configured")

        logger.info(f"Escalating patient {patient.id} to operator")
        delivered = list(already_delivered)
        delivery_ids = []
        failures: List[DeliveryResult] = []
        for channel, recipient, content in sends:
            if channel.value in delivered:
                continue
            adapter = self._adapter_for(channel)
            if adapter is None:
                failures.append(DeliveryResult.permanent(f"No adapter configured for {channel.value}"))
                continue
            result = adapter.send(recipient, content)
            if result.success:
                delivered.append(channel.value)
                delivery_ids.append(result.delivery_id or "")
            else:
                failures.append(result)

        if not failures:
            return DeliveryResult.sent(",".join(delivery_ids))

        failure = next((f for f in failures if f.retryable), failures[0])
        failure.delivered = delivered
        return failure

    def _record_sent(self, message: ScheduledMessage, result: DeliveryResult) -> DispatchOutcome:
        moved = self.tracker.transition(
            message.id, [MessageStatus.QUEUED], MessageStatus.SENT, sent_at=now_utc()
        )
        if moved:
            logger.info(f"Sent {message.message_type.value} {message.id} ({result.delivery_id})")
        else:
            # Cancelled while the send was in flight; the row keeps CANCELLED
            logger.warning(
                f"{message.message_type.value} {message.id} delivered ({result.delivery_id}) "
                "after it was cancelled"
            )
        return DispatchOutcome.SENT

    def _record_failure(self, message: ScheduledMessage, result: DeliveryResult) -> DispatchOutcome:
        error = result.error_message or "Unknown delivery error"

        if not result.retryable:
            self.tracker.transition(message.id, [MessageStatus.QUEUED], MessageStatus.FAILED, error=error)
            logger.error(f"{message.message_type.value} {message.id} failed permanently: {error}")
            return DispatchOutcome.FAILED

        if message.attempt >= self.settings.max_attempts:
            self.tracker.transition(
                message.id, [MessageStatus.QUEUED], MessageStatus.FAILED,
                error=f"Max attempts reached: {error}"
            )
            logger.error(
                f"{message.message_type.value} {message.id} failed after "
                f"{message.attempt} attempts: {error}"
            )
            return DispatchOutcome.FAILED

        return self._schedule_retry(message, error, result.delivered)

    def _schedule_retry(
        self,
        message: ScheduledMessage,
        error: str,
        delivered: Optional[List[str]] = None
    ) -> DispatchOutcome:
        next_attempt = message.attempt + 1
        retry_handle = f"{message.id}-attempt-{next_attempt}"
        delay_seconds = self.settings.retry_delay_seconds(message.attempt)

        # The row owns the retry handle before the job exists, so the job
        # always finds its own attempt number on the row
        if not self.tracker.transition(
            message.id, [MessageStatus.QUEUED], MessageStatus.FAILED,
            error=error, job_handle=retry_handle, attempt=next_attempt
        ):
            logger.warning(f"Message {message.id} changed during delivery, not retrying")
            return DispatchOutcome.FAILED

        message.attempt = next_attempt
        message.job_handle = retry_handle
        try:
            self.queue.enqueue(
                message.message_type.value,
                build_job_payload(message, delivered),
                delay_seconds * 1000,
                job_id=retry_handle
            )
        except QueueUnavailableError as e:
            logger.error(f"Could not queue retry for message {message.id}: {e}")
            self.tracker.transition(
                message.id, [MessageStatus.FAILED], MessageStatus.FAILED,
                error=f"{error}; retry not queued: {e}"
            )
            return DispatchOutcome.FAILED

        logger.warning(
            f"{message.message_type.value} {message.id} failed (attempt {next_attempt - 1}/"
            f"{self.settings.max_attempts}), retrying in {delay_seconds}s: {error}"
        )
        return DispatchOutcome.RETRY_SCHEDULED
