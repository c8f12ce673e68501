"""
MessageTracker - Redis-backed store of scheduled notification rows

One hash per row, a set per appointment and a sorted set of rows that are
still PENDING or QUEUED. All status changes go through a conditional
transition so a row only moves from the statuses the caller expects.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import redis

from ..utils.redis_atomic import (
    TRANSITION_APPLIED, TRANSITION_MISSING, AtomicTrackerOperations
)
from ..utils.time_utils import now_utc
from .models import MessageStatus, MessageType, ScheduledMessage

logger = logging.getLogger("message-tracker")


class MessageTracker:
    """
    Tracker store for ScheduledMessage rows.

    Handles:
    - Creating rows with their appointment and active indexes
    - Querying rows by id, appointment, handle or due time
    - Atomic check-and-set status transitions
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "cascade:messages"):
        self.redis_client = redis_client
        self.atomic_ops = AtomicTrackerOperations(redis_client, key_prefix=key_prefix)

    def create(self, message: ScheduledMessage) -> ScheduledMessage:
        """Persist a new row"""
        self.atomic_ops.create(message.to_dict(), active=message.is_active)
        logger.debug(
            f"Tracked {message.message_type.value} {message.id} for appointment "
            f"{message.appointment_id} at {message.scheduled_for.isoformat()}"
        )
        return message

    def get(self, message_id: str) -> Optional[ScheduledMessage]:
        """Fetch a row by id"""
        data = self.redis_client.hgetall(self.atomic_ops.message_key(message_id))
        if not data:
            return None
        return ScheduledMessage.from_dict(data)

    def list_for_appointment(
        self,
        appointment_id: str,
        statuses: Optional[Iterable[MessageStatus]] = None,
        types: Optional[Iterable[MessageType]] = None
    ) -> List[ScheduledMessage]:
        """
        Get rows for an appointment, optionally filtered

        Args:
            appointment_id: Owning appointment
            statuses: Only rows in these statuses
            types: Only rows of these message types

        Returns:
            Matching rows ordered by scheduled_for
        """
        status_filter = set(statuses) if statuses is not None else None
        type_filter = set(types) if types is not None else None

        message_ids = self.redis_client.smembers(self.atomic_ops.appointment_key(appointment_id))

        messages = []
        for message_id in message_ids:
            message = self.get(message_id)
            if message is None:
                logger.warning(f"Index references missing message {message_id}")
                continue
            if status_filter is not None and message.status not in status_filter:
                continue
            if type_filter is not None and message.message_type not in type_filter:
                continue
            messages.append(message)

        return sorted(messages, key=lambda m: m.scheduled_for)

    def find_by_job_handle(self, appointment_id: str, job_handle: str) -> Optional[ScheduledMessage]:
        """Find the row that currently owns a job handle"""
        for message in self.list_for_appointment(appointment_id):
            if message.job_handle == job_handle:
                return message
        return None

    def list_active(self, due_before: Optional[datetime] = None, limit: int = 500) -> List[ScheduledMessage]:
        """Get PENDING/QUEUED rows, optionally only those due before a time"""
        max_score = due_before.timestamp() if due_before else "+inf"
        message_ids = self.redis_client.zrangebyscore(
            self.atomic_ops.active_key, 0, max_score, start=0, num=limit
        )

        messages = []
        for message_id in message_ids:
            message = self.get(message_id)
            if message is not None and message.is_active:
                messages.append(message)
        return messages

    def transition(
        self,
        message_id: str,
        from_statuses: Iterable[MessageStatus],
        to_status: MessageStatus,
        error: Optional[str] = None,
        sent_at: Optional[datetime] = None,
        job_handle: Optional[str] = None,
        attempt: Optional[int] = None
    ) -> bool:
        """
        Atomically update a row's status only if its current status is expected

        Returns:
            True if the row moved, False on status mismatch or missing row
        """
        from_statuses = list(from_statuses)
        result = self.atomic_ops.conditional_transition(
            message_id,
            [s.value for s in from_statuses],
            to_status.value,
            now_utc().isoformat(),
            error=error,
            sent_at=sent_at.isoformat() if sent_at else None,
            job_handle=job_handle,
            attempt=attempt
        )

        if result == TRANSITION_APPLIED:
            logger.info(f"Message {message_id} -> {to_status.value}")
            return True
        if result == TRANSITION_MISSING:
            logger.warning(f"Message {message_id} not found for transition to {to_status.value}")
        else:
            logger.info(
                f"Message {message_id} not moved to {to_status.value}: status not in "
                f"{[s.value for s in from_statuses]}"
            )
        return False

    def status_counts(self, appointment_id: str) -> Dict[str, int]:
        """Count an appointment's rows per status"""
        counts = Counter(m.status.value for m in self.list_for_appointment(appointment_id))
        return dict(counts)

