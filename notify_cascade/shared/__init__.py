"""
Shared stores used by the cascade
"""

from .appointments import AppointmentStore

__all__ = ["AppointmentStore"]
