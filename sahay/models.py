"""Domain records read from and written to the backing store.

Field names match the Supabase column names so rows can be validated
straight into these models.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DOCTORS_TABLE = "doctors"
APPOINTMENTS_TABLE = "appointments"

PROVIDER_COLUMNS = "id,name,specialty,working_hours_start,working_hours_end"
BOOKING_COLUMNS = "id,doctor_id,patient_name,phone,appointment_date,appointment_time,status"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Provider(BaseModel):
    """A doctor.  Maintained outside this service; read-only here."""

    model_config = ConfigDict(extra="ignore")

    id: int | str
    name: str
    specialty: str = ""
    working_hours_start: str = Field(..., description="HH:MM or HH:MM:SS")
    working_hours_end: str = Field(..., description="HH:MM or HH:MM:SS")

    def summary(self) -> dict[str, str]:
        return {
            "name": self.name,
            "specialty": self.specialty,
            "working_hours": f"{self.working_hours_start[:5]}-{self.working_hours_end[:5]}",
        }


class Booking(BaseModel):
    """An appointment row.  Cancellation is a status change, never a delete."""

    model_config = ConfigDict(extra="ignore")

    id: int | str
    doctor_id: int | str
    patient_name: str
    phone: str | None = None
    appointment_date: str
    appointment_time: str
    status: BookingStatus = BookingStatus.CONFIRMED

    @property
    def time(self) -> str:
        return self.appointment_time[:5]

    def summary(self) -> dict[str, str]:
        return {
            "patient_name": self.patient_name,
            "date": self.appointment_date,
            "time": self.time,
            "status": self.status.value,
        }
