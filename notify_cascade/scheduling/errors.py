"""
Exceptions raised by the cascade scheduler, cancellation engine and dispatcher
"""


class CascadeError(Exception):
    """Base class for cascade errors"""


class AppointmentNotFound(CascadeError):
    """The appointment no longer exists when a job fires or an event arrives"""

    def __init__(self, appointment_id: str):
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found")


class StaleAppointmentState(CascadeError):
    """The appointment's current status precludes sending this message"""

    def __init__(self, appointment_id: str, status, message_type):
        self.appointment_id = appointment_id
        self.status = status
        self.message_type = message_type
        super().__init__(
            f"{message_type.value} skipped for appointment {appointment_id} "
            f"(status {status.value})"
        )


class TransientDeliveryError(CascadeError):
    """A channel provider failed in a way worth retrying"""


class PermanentDeliveryError(CascadeError):
    """A channel provider rejected the message; retrying will not help"""


class SchedulingInputError(CascadeError):
    """A cascade entry cannot be scheduled (unknown or unsupported type)"""


class QueueUnavailableError(CascadeError):
    """The delayed queue refused or failed to accept a job"""
