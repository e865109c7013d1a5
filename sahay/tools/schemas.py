"""Capability catalog: one pydantic request model per tool.

The models double as the declarative catalog sent to the reasoning
service (:func:`tool_definitions`) and as the boundary validator for the
tool calls it sends back (:func:`parse_invocation`).  A tool call is
accepted only if it names a known capability *and* its arguments
validate against that capability's model.
"""

from __future__ import annotations

import inspect
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sahay.errors import InvalidInputError

Period = Literal["morning", "afternoon", "evening"]


class CapabilityRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    capability: ClassVar[str]


class FindProvider(CapabilityRequest):
    """Search the hospital's doctor directory by doctor name and/or specialty.

    Partial names, typos and honorifics are tolerated. Always call this
    before suggesting a doctor; never invent doctor names.
    """

    capability: ClassVar[str] = "find_provider"

    name: str | None = Field(None, description="Full or partial doctor name, e.g. 'Aditya'.")
    specialty: str | None = Field(None, description="Specialty or department, e.g. 'Cardiology'.")


class ListAvailability(CapabilityRequest):
    """Check a doctor's free 30-minute slots on a date.

    Without ``period`` the result lists which parts of the day (morning,
    afternoon, evening) still have slots; ask the patient which they prefer
    and call again with ``period`` to get the concrete times.
    """

    capability: ClassVar[str] = "list_availability"

    doctor_name: str = Field(..., min_length=1, description="Doctor name as returned by find_provider.")
    date: str = Field(..., min_length=1, description="YYYY-MM-DD, DD/MM/YYYY, 'today' or 'tomorrow'.")
    period: Period | None = Field(None, description="morning (<12:00), afternoon (12-17) or evening (>=17:00).")

    @field_validator("period", mode="before")
    @classmethod
    def _lower_period(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) and value.strip() else value or None


class CreateBooking(CapabilityRequest):
    """Book an appointment. Call ONLY after the patient has confirmed the summary."""

    capability: ClassVar[str] = "create_booking"

    doctor_name: str = Field(..., min_length=1)
    patient_name: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1, description="Appointment date, YYYY-MM-DD preferred.")
    time: str = Field(..., min_length=1, description="Slot start time, HH:MM (24h).")
    phone: str = Field(..., min_length=1, description="Patient's contact number.")


class RescheduleBooking(CapabilityRequest):
    """Move an existing confirmed appointment to a new date and time.

    Call first with the patient, doctor and current date to locate the
    appointment; once the patient has picked a new slot, call again with
    ``new_date`` and ``new_time`` to apply the change.
    """

    capability: ClassVar[str] = "reschedule_booking"

    patient_name: str = Field(..., min_length=1)
    doctor_name: str = Field(..., min_length=1)
    old_date: str = Field(..., min_length=1, description="Current appointment date.")
    new_date: str | None = Field(None, description="New appointment date.")
    new_time: str | None = Field(None, description="New slot start time, HH:MM.")
    old_time: str | None = Field(None, description="Current time, only needed to tell two appointments apart.")


class CancelBooking(CapabilityRequest):
    """Cancel an existing confirmed appointment."""

    capability: ClassVar[str] = "cancel_booking"

    doctor_name: str = Field(..., min_length=1)
    patient_name: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1, description="Appointment date.")
    time: str | None = Field(None, description="Appointment time, only needed to tell two appointments apart.")


class ListSpecialties(CapabilityRequest):
    """List every medical specialty available at the hospital."""

    capability: ClassVar[str] = "list_specialties"


CAPABILITIES: dict[str, type[CapabilityRequest]] = {
    model.capability: model
    for model in (
        FindProvider,
        ListAvailability,
        CreateBooking,
        RescheduleBooking,
        CancelBooking,
        ListSpecialties,
    )
}


def tool_definitions() -> list[dict[str, Any]]:
    """Return the catalog in the reasoning service's tool format."""
    definitions = []
    for name, model in CAPABILITIES.items():
        schema = model.model_json_schema()
        schema.pop("title", None)
        schema.pop("description", None)
        definitions.append({
            "name": name,
            "description": inspect.cleandoc(model.__doc__ or name),
            "input_schema": schema,
        })
    return definitions


def _describe(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "arguments"
        problems.append(f"{field}: {err['msg']}")
    return "; ".join(problems)


def parse_invocation(name: str, args: dict[str, Any] | None) -> CapabilityRequest:
    """Validate a tool call against the catalog.

    Raises:
        InvalidInputError: unknown capability or arguments of the wrong shape.
    """
    model = CAPABILITIES.get(name)
    if model is None:
        raise InvalidInputError(
            f"Unknown capability '{name}'.", available=sorted(CAPABILITIES),
        )
    try:
        return model.model_validate(args or {})
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid arguments for {name}: {_describe(exc)}") from exc
