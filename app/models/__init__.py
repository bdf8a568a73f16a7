"""Database models."""

from app.models.appointments import appointments
from app.models.practitioners import practitioner_availability, practitioners

__all__ = [
    "appointments",
    "practitioner_availability",
    "practitioners",
]
