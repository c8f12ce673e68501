"""
CancellationEngine - withdraws an appointment's outstanding notifications
"""
import logging
from typing import Iterable, Optional

from .models import ACTIVE_STATUSES, NO_SHOW_TYPES, MessageStatus, MessageType
from .queue import DelayedQueue
from .tracker import MessageTracker

logger = logging.getLogger("cancellation-engine")

CANCELLABLE_STATUSES = ACTIVE_STATUSES | {MessageStatus.FAILED}


class CancellationEngine:
    """
    Cancels PENDING/QUEUED rows and removes their queued jobs.

    Both operations are idempotent: SENT and CANCELLED rows are never
    touched, and a FAILED row is only cancelled while a retry job is still
    waiting for it, so calling them again cancels nothing new. A job a
    worker has already claimed cannot be withdrawn; the worker's own status
    checks catch most of those.
    """

    def __init__(self, tracker: MessageTracker, queue: DelayedQueue):
        self.tracker = tracker
        self.queue = queue

    def cancel_no_show_cascade(self, appointment_id: str) -> int:
        """
        Cancel the no-show recovery messages (on completion)

        Returns:
            Number of rows moved to CANCELLED
        """
        count = self._cancel(appointment_id, NO_SHOW_TYPES)
        logger.info(f"Cancelled {count} no-show messages for appointment {appointment_id}")
        return count

    def cancel_all_pending(self, appointment_id: str) -> int:
        """
        Cancel every outstanding message (on booking cancellation or reschedule)

        Returns:
            Number of rows moved to CANCELLED
        """
        count = self._cancel(appointment_id)
        logger.info(f"Cancelled ALL {count} pending messages for appointment {appointment_id}")
        return count

    def _cancel(self, appointment_id: str, types: Optional[Iterable[MessageType]] = None) -> int:
        candidates = self.tracker.list_for_appointment(
            appointment_id, statuses=CANCELLABLE_STATUSES, types=types
        )

        cancelled = 0
        for message in candidates:
            removed = bool(message.job_handle) and self.queue.remove(message.job_handle)

            if message.status == MessageStatus.FAILED:
                # A FAILED row is only still in flight while its retry job waits
                if not removed:
                    continue
                from_statuses = [MessageStatus.FAILED]
            else:
                if message.job_handle and not removed:
                    logger.debug(f"Job {message.job_handle} for message {message.id} already gone")
                from_statuses = ACTIVE_STATUSES

            if self.tracker.transition(message.id, from_statuses, MessageStatus.CANCELLED):
                cancelled += 1

        return cancelled
