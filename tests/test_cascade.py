"""
Tests for the cascade offset tables
"""
from datetime import datetime, timedelta

import pytest
import pytz

from notify_cascade.scheduling.cascade import (
    CascadeEntry, InclusionPolicy, _apply_policy, plan_booking_cascade, plan_cascade,
    plan_post_consult_cascade
)
from notify_cascade.scheduling.models import (
    NO_SHOW_TYPES, Channel, LifecycleEvent, MessageType
)


def by_type(entries):
    return {entry.message_type: entry for entry in entries}


class TestInclusionPolicy:
    """Tests for the two inclusion policies"""

    def test_clamp_keeps_negative_delay_at_zero(self):
        entry = _apply_policy(
            MessageType.CONFIRMATION_SMS, Channel.SMS, timedelta(seconds=-5), InclusionPolicy.CLAMP
        )
        assert entry == CascadeEntry(MessageType.CONFIRMATION_SMS, Channel.SMS, timedelta(0))

    def test_if_future_omits_zero_and_negative_delay(self):
        for delay in (timedelta(0), timedelta(minutes=-1)):
            entry = _apply_policy(
                MessageType.TEN_MIN_REMINDER_SMS, Channel.SMS, delay, InclusionPolicy.IF_FUTURE
            )
            assert entry is None

    def test_if_future_keeps_positive_delay(self):
        entry = _apply_policy(
            MessageType.TEN_MIN_REMINDER_SMS, Channel.SMS, timedelta(seconds=1), InclusionPolicy.IF_FUTURE
        )
        assert entry.delay_ms == 1000


class TestBookingCascade:
    """Tests for plan_booking_cascade"""

    def test_booking_48_hours_ahead(self, now):
        """Booking 48h before the consult schedules the full cascade"""
        consult = now + timedelta(hours=48)
        entries = by_type(plan_booking_cascade(now, consult, "US/Eastern"))

        assert len(entries) == 15
        assert entries[MessageType.CONFIRMATION_SMS].delay_ms == 0
        assert entries[MessageType.CHATBOT_INTRO_SMS].delay_ms == 180000
        assert entries[MessageType.CONFIRMATION_EMAIL].delay_ms == 30000
        assert entries[MessageType.PRE_CONSULT_REMINDER_SMS].delay == timedelta(hours=24)
        assert entries[MessageType.TWO_HOUR_REMINDER_SMS].delay == timedelta(hours=46)
        assert entries[MessageType.TWO_HOUR_REMINDER_EMAIL].delay == timedelta(hours=46)
        assert entries[MessageType.TEN_MIN_REMINDER_SMS].delay == timedelta(hours=47, minutes=50)

        # Consult is 10:00 EST on March 5, so the call is 09:00 EST (14:00 UTC) that day
        day_of = entries[MessageType.DAY_OF_VOICE_CALL]
        assert now + day_of.delay == datetime(2025, 3, 5, 14, 0, tzinfo=pytz.UTC)
        assert day_of.channel == Channel.VOICE

        assert NO_SHOW_TYPES <= set(entries)

    def test_booking_one_hour_ahead(self, now):
        """Short lead time drops the reminders that already passed"""
        consult = now + timedelta(hours=1)
        entries = by_type(plan_booking_cascade(now, consult, "US/Eastern"))

        assert MessageType.PRE_CONSULT_REMINDER_SMS not in entries
        assert MessageType.TWO_HOUR_REMINDER_SMS not in entries
        assert MessageType.TWO_HOUR_REMINDER_EMAIL not in entries
        # 09:00 local already passed (now is 10:00 EST)
        assert MessageType.DAY_OF_VOICE_CALL not in entries
        assert entries[MessageType.TEN_MIN_REMINDER_SMS].delay == timedelta(minutes=50)
        assert NO_SHOW_TYPES <= set(entries)

    @pytest.mark.parametrize("lead_hours,expected", [
        (24, False),
        (23.5, False),
        (24.01, True),
        (72, True),
    ])
    def test_pre_consult_reminder_requires_lead_over_24h(self, now, lead_hours, expected):
        consult = now + timedelta(hours=lead_hours)
        entries = by_type(plan_booking_cascade(now, consult))

        assert (MessageType.PRE_CONSULT_REMINDER_SMS in entries) is expected
        if expected:
            assert now + entries[MessageType.PRE_CONSULT_REMINDER_SMS].delay == consult - timedelta(hours=24)

    @pytest.mark.parametrize("lead", [timedelta(hours=2), timedelta(minutes=90)])
    def test_no_two_hour_reminder_when_lead_at_most_2h(self, now, lead):
        entries = by_type(plan_booking_cascade(now, now + lead))
        assert MessageType.TWO_HOUR_REMINDER_SMS not in entries
        assert MessageType.TWO_HOUR_REMINDER_EMAIL not in entries

    @pytest.mark.parametrize("lead", [timedelta(minutes=10), timedelta(minutes=4), timedelta(0)])
    def test_no_ten_minute_reminder_when_lead_at_most_10min(self, now, lead):
        entries = by_type(plan_booking_cascade(now, now + lead))
        assert MessageType.TEN_MIN_REMINDER_SMS not in entries

    @pytest.mark.parametrize("lead", [timedelta(days=7), timedelta(hours=3), timedelta(minutes=5)])
    def test_no_show_cascade_always_anchored_to_consult(self, now, lead):
        consult = now + lead
        entries = by_type(plan_booking_cascade(now, consult))

        expected = {
            MessageType.NO_SHOW_INITIAL_SMS: timedelta(minutes=35),
            MessageType.NO_SHOW_INITIAL_EMAIL: timedelta(minutes=35),
            MessageType.NO_SHOW_VOICE_CALL: timedelta(hours=2),
            MessageType.NO_SHOW_NEXT_DAY_SMS: timedelta(hours=24),
            MessageType.NO_SHOW_NEXT_DAY_EMAIL: timedelta(hours=24),
            MessageType.NO_SHOW_CHATBOT_SMS: timedelta(hours=24, minutes=30),
            MessageType.NO_SHOW_ESCALATION: timedelta(hours=48),
        }
        for message_type, offset in expected.items():
            assert now + entries[message_type].delay == consult + offset

        assert entries[MessageType.NO_SHOW_ESCALATION].channel == Channel.INTERNAL
        assert entries[MessageType.NO_SHOW_CHATBOT_SMS].channel == Channel.CHATBOT

    def test_consult_in_the_past_clamps_immediate_set(self, now):
        """A late-arriving booking still confirms immediately"""
        consult = now - timedelta(hours=1)
        entries = by_type(plan_booking_cascade(now, consult))

        assert entries[MessageType.CONFIRMATION_SMS].delay_ms == 0
        assert entries[MessageType.CHATBOT_INTRO_SMS].delay_ms == 180000
        # T+35min already passed: clamped, not omitted
        assert entries[MessageType.NO_SHOW_INITIAL_SMS].delay_ms == 0
        assert entries[MessageType.NO_SHOW_VOICE_CALL].delay == timedelta(hours=1)

    def test_day_of_call_uses_clinic_timezone(self, now):
        """9:00 is local to the clinic, not UTC"""
        consult = datetime(2025, 3, 6, 22, 0, tzinfo=pytz.UTC)  # 17:00 EST March 6
        entries = by_type(plan_booking_cascade(now, consult, "US/Eastern"))

        fire_at = now + entries[MessageType.DAY_OF_VOICE_CALL].delay
        assert fire_at == datetime(2025, 3, 6, 14, 0, tzinfo=pytz.UTC)


class TestPostConsultCascade:
    """Tests for plan_post_consult_cascade"""

    def test_post_consult_delays(self, now):
        entries = plan_post_consult_cascade(now)

        assert [(e.message_type, e.delay_ms) for e in entries] == [
            (MessageType.POST_CONSULT_THANK_YOU_SMS, 0),
            (MessageType.POST_CONSULT_SUMMARY_EMAIL, 60000),
            (MessageType.POST_CONSULT_CHATBOT_SMS, 900000),
        ]

    def test_post_consult_anchored_to_earlier_completion(self, now):
        entries = by_type(plan_post_consult_cascade(now, now - timedelta(minutes=5)))

        assert entries[MessageType.POST_CONSULT_THANK_YOU_SMS].delay_ms == 0
        assert entries[MessageType.POST_CONSULT_CHATBOT_SMS].delay == timedelta(minutes=10)


class TestPlanCascade:
    """Tests for event dispatch in plan_cascade"""

    def test_booking_event(self, now):
        entries = plan_cascade(LifecycleEvent.BOOKING_CREATED, now, now + timedelta(hours=48), "US/Eastern")
        assert len(entries) == 15

    def test_completed_event(self, now):
        entries = plan_cascade(LifecycleEvent.APPOINTMENT_COMPLETED, now, now)
        assert len(entries) == 3

    def test_unknown_event(self, now):
        with pytest.raises(ValueError):
            plan_cascade("NOT_AN_EVENT", now, now)
