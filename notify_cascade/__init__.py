"""
Appointment notification cascade

Schedules, cancels and delivers the SMS, voice, email and chatbot messages
tied to an appointment's lifecycle.
"""

from .lifecycle import AppointmentLifecycle, build_lifecycle

__version__ = "0.1.0"

__all__ = [
    "AppointmentLifecycle",
    "build_lifecycle"
]
