"""
Appointment and patient read model stored in Redis

The booking side writes appointments and patients here; the cascade reads
them when a job fires and only ever writes the appointment status.
"""
import logging
from typing import Iterable, Optional

import redis

from ..scheduling.models import Appointment, AppointmentStatus, Patient
from ..utils.time_utils import now_utc

logger = logging.getLogger("appointment-store")

# Set status only if the current status is in the allowed list (empty list = any)
SET_STATUS_SCRIPT = """
local current_status = redis.call('HGET', KEYS[1], 'status')
if not current_status then
    return -1
end
if ARGV[1] ~= '' then
    local allowed = false
    for status in string.gmatch(ARGV[1], '[^,]+') do
        if status == current_status then
            allowed = true
            break
        end
    end
    if not allowed then
        return 0
    end
end
redis.call('HSET', KEYS[1], 'status', ARGV[2], 'updated_at', ARGV[3])
return 1
"""


class AppointmentStore:
    """Redis-backed appointment/patient lookups"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "cascade"):
        self.redis_client = redis_client
        self.appointments_key = f"{key_prefix}:appointments"
        self.patients_key = f"{key_prefix}:patients"
        self._set_status_script = self.redis_client.register_script(SET_STATUS_SCRIPT)

    def _appointment_key(self, appointment_id: str) -> str:
        return f"{self.appointments_key}:{appointment_id}"

    def _patient_key(self, patient_id: str) -> str:
        return f"{self.patients_key}:{patient_id}"

    def save_patient(self, patient: Patient) -> Patient:
        self.redis_client.hset(self._patient_key(patient.id), mapping=patient.to_dict())
        return patient

    def get_patient(self, patient_id: str) -> Optional[Patient]:
        data = self.redis_client.hgetall(self._patient_key(patient_id))
        return Patient.from_dict(data) if data else None

    def save_appointment(self, appointment: Appointment) -> Appointment:
        data = {k: (v if v is not None else "") for k, v in appointment.to_dict().items()}
        pipe = self.redis_client.pipeline()
        pipe.hset(self._appointment_key(appointment.id), mapping=data)
        if appointment.booking_ref:
            pipe.set(f"{self.appointments_key}:booking:{appointment.booking_ref}", appointment.id)
        pipe.execute()
        return appointment

    def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        data = self.redis_client.hgetall(self._appointment_key(appointment_id))
        return Appointment.from_dict(data) if data else None

    def find_by_booking_ref(self, booking_ref: str) -> Optional[Appointment]:
        appointment_id = self.redis_client.get(f"{self.appointments_key}:booking:{booking_ref}")
        return self.get_appointment(appointment_id) if appointment_id else None

    def update_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        expected: Optional[Iterable[AppointmentStatus]] = None
    ) -> bool:
        """
        Set an appointment's status, optionally only from expected statuses

        Returns:
            True if updated, False if missing or in an unexpected status
        """
        allowed = ",".join(s.value for s in expected) if expected else ""
        result = int(self._set_status_script(
            keys=[self._appointment_key(appointment_id)],
            args=[allowed, new_status.value, now_utc().isoformat()]
        ))

        if result == 1:
            logger.info(f"Appointment {appointment_id} -> {new_status.value}")
            return True
        if result == -1:
            logger.warning(f"Appointment {appointment_id} not found for status update")
        return False
