"""
Appointment lifecycle orchestration

Connects booking events and staff actions to the cascade: every status
change on an appointment is paired with the scheduling or cancellation it
implies.
"""
import logging
from datetime import datetime
from typing import Optional

import redis

from .config.redis import create_redis_connection
from .config.settings import Settings, load_settings
from .scheduling.cancellation import CancellationEngine
from .scheduling.errors import AppointmentNotFound
from .scheduling.models import Appointment, AppointmentStatus, Patient
from .scheduling.queue import DelayedQueue
from .scheduling.scheduler import CascadeScheduler
from .scheduling.tracker import MessageTracker
from .shared.appointments import AppointmentStore
from .utils.time_utils import now_utc, to_utc

logger = logging.getLogger("appointment-lifecycle")

# Staff may complete an appointment the system already marked NO_SHOW
COMPLETABLE_STATUSES = [AppointmentStatus.SCHEDULED, AppointmentStatus.NO_SHOW]


class AppointmentLifecycle:
    """
    Handles booking created / cancelled / rescheduled and consult completion
    """

    def __init__(
        self,
        appointments: AppointmentStore,
        scheduler: CascadeScheduler,
        cancellation: CancellationEngine
    ):
        self.appointments = appointments
        self.scheduler = scheduler
        self.cancellation = cancellation

    def _require(self, appointment_id: str) -> Appointment:
        appointment = self.appointments.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def booking_created(
        self,
        patient: Patient,
        scheduled_at: datetime,
        booking_ref: Optional[str] = None,
        consult_link: Optional[str] = None,
        reschedule_link: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Appointment:
        """
        Store a new booking and schedule its cascade

        A booking reference that already belongs to a SCHEDULED appointment is
        treated as a repeated delivery of the same event and returns that
        appointment. A reference left on a closed appointment books anew.
        """
        if booking_ref:
            existing = self.appointments.find_by_booking_ref(booking_ref)
            if existing is not None and existing.status == AppointmentStatus.SCHEDULED:
                logger.info(f"Booking {booking_ref} already stored as appointment {existing.id}")
                return existing

        return self._book(patient, scheduled_at, booking_ref, consult_link, reschedule_link, now)

    def _book(
        self,
        patient: Patient,
        scheduled_at: datetime,
        booking_ref: Optional[str],
        consult_link: Optional[str],
        reschedule_link: Optional[str],
        now: Optional[datetime]
    ) -> Appointment:
        # Saving re-points the booking reference index at this appointment
        self.appointments.save_patient(patient)
        appointment = Appointment(
            patient_id=patient.id,
            scheduled_at=to_utc(scheduled_at),
            status=AppointmentStatus.SCHEDULED,
            booking_ref=booking_ref,
            consult_link=consult_link,
            reschedule_link=reschedule_link,
        )
        self.appointments.save_appointment(appointment)
        logger.info(
            f"Booking created: appointment {appointment.id} for patient {patient.id} "
            f"at {appointment.scheduled_at.isoformat()}"
        )

        self.scheduler.schedule_pre_consult(appointment.id, patient.id, appointment.scheduled_at, now)
        return appointment

    def booking_cancelled(self, appointment_id: str) -> int:
        """
        Cancel an appointment and every outstanding notification

        Returns:
            Number of messages cancelled
        """
        self._require(appointment_id)
        self.appointments.update_status(appointment_id, AppointmentStatus.CANCELLED)
        return self.cancellation.cancel_all_pending(appointment_id)

    def booking_rescheduled(
        self,
        appointment_id: str,
        new_scheduled_at: datetime,
        booking_ref: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Appointment:
        """
        Close the old appointment and book a new one with a fresh cascade

        Returns:
            The new appointment
        """
        old = self._require(appointment_id)
        self.appointments.update_status(appointment_id, AppointmentStatus.RESCHEDULED)
        self.cancellation.cancel_all_pending(appointment_id)

        patient = self.appointments.get_patient(old.patient_id)
        if patient is None:
            raise ValueError(f"Patient {old.patient_id} for appointment {appointment_id} not found")

        logger.info(f"Appointment {appointment_id} rescheduled to {new_scheduled_at.isoformat()}")
        return self._book(
            patient,
            new_scheduled_at,
            booking_ref or old.booking_ref,
            old.consult_link,
            old.reschedule_link,
            now
        )

    def mark_completed(self, appointment_id: str, completed_at: Optional[datetime] = None) -> bool:
        """
        Record a completed consult

        Stops the no-show recovery cascade and schedules the post-consult
        follow-ups. Only a SCHEDULED or NO_SHOW appointment can be
        completed; anything else is left as it is.

        Returns:
            True if the appointment was completed by this call
        """
        appointment = self._require(appointment_id)
        if not self.appointments.update_status(
            appointment_id, AppointmentStatus.COMPLETED, expected=COMPLETABLE_STATUSES
        ):
            logger.info(f"Appointment {appointment_id} is {appointment.status.value}, not completing")
            return False

        self.cancellation.cancel_no_show_cascade(appointment_id)
        self.scheduler.schedule_post_consult(
            appointment_id, appointment.patient_id, completed_at or now_utc()
        )
        return True


def build_lifecycle(
    settings: Optional[Settings] = None,
    store_connection: Optional[redis.Redis] = None,
    queue_connection: Optional[redis.Redis] = None
) -> AppointmentLifecycle:
    """
    Wire the producer side: appointment store, scheduler and cancellation

    Args:
        settings: Runtime settings (loaded from the environment if omitted)
        store_connection: Decoded connection for the tracker and read model
        queue_connection: Undecoded connection for RQ
    """
    settings = settings or load_settings()
    store_connection = store_connection or create_redis_connection(decode_responses=True)
    queue_connection = queue_connection or create_redis_connection(decode_responses=False)

    tracker = MessageTracker(store_connection)
    queue = DelayedQueue(queue_connection, settings.queue_name)
    return AppointmentLifecycle(
        appointments=AppointmentStore(store_connection),
        scheduler=CascadeScheduler(tracker, queue, clinic_timezone=settings.clinic_timezone),
        cancellation=CancellationEngine(tracker, queue)
    )
