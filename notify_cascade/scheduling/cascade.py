"""
Offset tables for lifecycle cascades

Pure computation: given a lifecycle event, the current time and the anchor
time, produce the list of notifications with the delay each one should fire
after. Nothing here touches Redis or the queue.

Two inclusion policies are used and deliberately kept apart:

- ``InclusionPolicy.CLAMP``: unconditional entries. A non-positive delay is
  clamped to zero and the entry is still sent.
- ``InclusionPolicy.IF_FUTURE``: conditional entries. A non-positive delay
  means the moment has already passed and the entry is omitted.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from ..utils.time_utils import local_time_on_date
from .models import Channel, LifecycleEvent, MessageType

logger = logging.getLogger("cascade-plan")

ZERO = timedelta(0)

# Booking cascade offsets
CHATBOT_INTRO_DELAY = timedelta(minutes=3)
CONFIRMATION_EMAIL_DELAY = timedelta(seconds=30)
PRE_CONSULT_LEAD = timedelta(hours=24)
DAY_OF_CALL_HOUR = 9
TWO_HOUR_LEAD = timedelta(hours=2)
TEN_MIN_LEAD = timedelta(minutes=10)

# No-show cascade offsets, relative to the consult time
NO_SHOW_INITIAL_OFFSET = timedelta(minutes=35)
NO_SHOW_CALL_OFFSET = timedelta(hours=2)
NO_SHOW_NEXT_DAY_OFFSET = timedelta(hours=24)
NO_SHOW_CHATBOT_OFFSET = timedelta(hours=24, minutes=30)
NO_SHOW_ESCALATION_OFFSET = timedelta(hours=48)

# Post-consult offsets, relative to completion
SUMMARY_EMAIL_DELAY = timedelta(minutes=1)
POST_CONSULT_CHATBOT_DELAY = timedelta(minutes=15)


class InclusionPolicy(Enum):
    CLAMP = "clamp"
    IF_FUTURE = "if_future"


@dataclass(frozen=True)
class CascadeEntry:
    """One planned notification and the delay after ``now`` it should fire"""
    message_type: MessageType
    channel: Channel
    delay: timedelta

    @property
    def delay_ms(self) -> int:
        return int(self.delay.total_seconds() * 1000)


def _apply_policy(
    message_type: MessageType,
    channel: Channel,
    delay: timedelta,
    policy: InclusionPolicy
) -> Optional[CascadeEntry]:
    if policy is InclusionPolicy.CLAMP:
        return CascadeEntry(message_type, channel, max(delay, ZERO))

    if delay > ZERO:
        return CascadeEntry(message_type, channel, delay)

    logger.debug(f"Omitting {message_type.value}: fire time already passed")
    return None


def _collect(candidates) -> List[CascadeEntry]:
    entries = []
    for message_type, channel, delay, policy in candidates:
        entry = _apply_policy(message_type, channel, delay, policy)
        if entry is not None:
            entries.append(entry)
    return entries


def plan_booking_cascade(
    now: datetime,
    consult_time: datetime,
    clinic_timezone: str = "UTC"
) -> List[CascadeEntry]:
    """
    Plan every notification for a freshly created booking

    Args:
        now: Scheduling time
        consult_time: Consult start (the anchor ``T``)
        clinic_timezone: Timezone that defines the consult's calendar day for
            the morning-of voice call

    Returns:
        Entries in schedule order: immediate set, reminders, no-show cascade
    """
    lead = consult_time - now
    morning_of = local_time_on_date(consult_time, DAY_OF_CALL_HOUR, clinic_timezone)

    clamp = InclusionPolicy.CLAMP
    if_future = InclusionPolicy.IF_FUTURE

    candidates = [
        (MessageType.CONFIRMATION_SMS, Channel.SMS, ZERO, clamp),
        (MessageType.CHATBOT_INTRO_SMS, Channel.CHATBOT, CHATBOT_INTRO_DELAY, clamp),
        (MessageType.CONFIRMATION_EMAIL, Channel.EMAIL, CONFIRMATION_EMAIL_DELAY, clamp),
        # Positive only when the lead time exceeds 24h
        (MessageType.PRE_CONSULT_REMINDER_SMS, Channel.SMS, lead - PRE_CONSULT_LEAD, if_future),
        (MessageType.DAY_OF_VOICE_CALL, Channel.VOICE, morning_of - now, if_future),
        (MessageType.TWO_HOUR_REMINDER_SMS, Channel.SMS, lead - TWO_HOUR_LEAD, if_future),
        (MessageType.TWO_HOUR_REMINDER_EMAIL, Channel.EMAIL, lead - TWO_HOUR_LEAD, if_future),
        (MessageType.TEN_MIN_REMINDER_SMS, Channel.SMS, lead - TEN_MIN_LEAD, if_future),
    ]
    candidates += plan_no_show_candidates(lead)

    return _collect(candidates)


def plan_no_show_candidates(lead: timedelta):
    """No-show recovery entries; always scheduled, anchored to the consult time"""
    clamp = InclusionPolicy.CLAMP
    return [
        (MessageType.NO_SHOW_INITIAL_SMS, Channel.SMS, lead + NO_SHOW_INITIAL_OFFSET, clamp),
        (MessageType.NO_SHOW_INITIAL_EMAIL, Channel.EMAIL, lead + NO_SHOW_INITIAL_OFFSET, clamp),
        (MessageType.NO_SHOW_VOICE_CALL, Channel.VOICE, lead + NO_SHOW_CALL_OFFSET, clamp),
        (MessageType.NO_SHOW_NEXT_DAY_SMS, Channel.SMS, lead + NO_SHOW_NEXT_DAY_OFFSET, clamp),
        (MessageType.NO_SHOW_NEXT_DAY_EMAIL, Channel.EMAIL, lead + NO_SHOW_NEXT_DAY_OFFSET, clamp),
        (MessageType.NO_SHOW_CHATBOT_SMS, Channel.CHATBOT, lead + NO_SHOW_CHATBOT_OFFSET, clamp),
        (MessageType.NO_SHOW_ESCALATION, Channel.INTERNAL, lead + NO_SHOW_ESCALATION_OFFSET, clamp),
    ]


def plan_post_consult_cascade(now: datetime, completed_at: Optional[datetime] = None) -> List[CascadeEntry]:
    """Plan the follow-up sent once a consult is completed (anchored to completion)"""
    offset = (completed_at - now) if completed_at is not None else ZERO
    clamp = InclusionPolicy.CLAMP
    return _collect([
        (MessageType.POST_CONSULT_THANK_YOU_SMS, Channel.SMS, offset, clamp),
        (MessageType.POST_CONSULT_SUMMARY_EMAIL, Channel.EMAIL, offset + SUMMARY_EMAIL_DELAY, clamp),
        (MessageType.POST_CONSULT_CHATBOT_SMS, Channel.CHATBOT, offset + POST_CONSULT_CHATBOT_DELAY, clamp),
    ])


def plan_cascade(
    event: LifecycleEvent,
    now: datetime,
    anchor_time: datetime,
    clinic_timezone: str = "UTC"
) -> List[CascadeEntry]:
    """Plan the cascade for any lifecycle event"""
    if event is LifecycleEvent.BOOKING_CREATED:
        return plan_booking_cascade(now, anchor_time, clinic_timezone)
    if event is LifecycleEvent.APPOINTMENT_COMPLETED:
        return plan_post_consult_cascade(now, anchor_time)
    raise ValueError(f"Unsupported lifecycle event: {event}")
