"""
Scheduling module for the appointment notification cascade

Contains the components that plan, track, cancel and deliver notifications:
- ScheduledMessage: Tracker row for one notification
- CascadeScheduler: Plans a lifecycle event's cascade and queues its jobs
- CancellationEngine: Withdraws outstanding jobs when an appointment changes
- MessageDispatcher (dispatcher.py): Delivers a due job after re-checking state
- RQ Tasks / Worker: Queue entry point, worker pool and reconciliation sweep
"""

from .cancellation import CancellationEngine
from .models import (
    AppointmentStatus, Channel, LifecycleEvent, MessageStatus, MessageType, ScheduledMessage
)
from .scheduler import CascadeScheduler

__all__ = [
    "AppointmentStatus",
    "CancellationEngine",
    "CascadeScheduler",
    "Channel",
    "LifecycleEvent",
    "MessageStatus",
    "MessageType",
    "ScheduledMessage"
]
