"""Capability handlers for the scheduling workflow.

Each public method of :class:`SchedulingService` implements one capability
from :mod:`sahay.tools.schemas` and returns a JSON-serialisable dict with
``success`` and ``message``; failures add an ``error_type``.  The dicts are
written for the reasoning service to read, not for the patient.

All store access goes through the :class:`DataGateway`; all name/date
interpretation goes through :mod:`sahay.services.resolver`.
"""

from __future__ import annotations

import functools
import logging
import re
from datetime import date
from typing import Any, Callable

from pydantic import ValidationError

from sahay.config import CLINIC_NAME
from sahay.errors import (
    ConflictError,
    GatewayTimeoutError,
    InvalidInputError,
    NotFoundError,
    SchedulingError,
)
from sahay.models import (
    APPOINTMENTS_TABLE,
    BOOKING_COLUMNS,
    DOCTORS_TABLE,
    Booking,
    BookingStatus,
    Provider,
)
from sahay.services.gateway import DataGateway
from sahay.services.notifier import Notifier, notify_safely
from sahay.services.resolver import (
    ProviderResolver,
    normalize_date,
    normalize_phone,
    normalize_time,
)
from sahay.tools.schemas import CapabilityRequest, parse_invocation

logger = logging.getLogger(__name__)

SLOT_MINUTES = 30
NOON = 12 * 60
EVENING = 17 * 60
PERIODS = ("morning", "afternoon", "evening")


# ── Slot arithmetic ─────────────────────────────────────────────────


def _to_minutes(clock: str) -> int:
    hours, minutes = clock.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def generate_slots(start: str, end: str, step: int = SLOT_MINUTES) -> list[str]:
    """Every slot start in ``[start, end)`` at *step*-minute granularity."""
    first, last = _to_minutes(start), _to_minutes(end)
    if first >= last:
        logger.warning("Empty working-hours window %s-%s", start, end)
        return []
    return [f"{t // 60:02d}:{t % 60:02d}" for t in range(first, last, step)]


def partition_slots(slots: list[str]) -> dict[str, list[str]]:
    """Split slot times into morning (<12:00), afternoon (<17:00) and evening."""
    parts: dict[str, list[str]] = {period: [] for period in PERIODS}
    for slot in slots:
        minutes = _to_minutes(slot)
        if minutes < NOON:
            parts["morning"].append(slot)
        elif minutes < EVENING:
            parts["afternoon"].append(slot)
        else:
            parts["evening"].append(slot)
    return parts


def _patient_term(name: str) -> str:
    return " ".join(re.sub(r"[^\w ]", " ", name or "").split())


def _capability(func: Callable[..., dict[str, Any]]) -> Callable[..., dict[str, Any]]:
    """Turn :class:`SchedulingError` into a structured failure result."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs) -> dict[str, Any]:
        try:
            return func(self, *args, **kwargs)
        except SchedulingError as exc:
            logger.info("%s failed (%s): %s", func.__name__, exc.error_type.value, exc.message)
            return exc.to_result()

    return wrapper


class SchedulingService:
    """Find doctors, list availability, and book/reschedule/cancel appointments."""

    def __init__(
        self,
        gateway: DataGateway,
        *,
        notifier: Notifier | None = None,
        today: Callable[[], date] = date.today,
    ):
        self._gateway = gateway
        self._resolver = ProviderResolver(gateway)
        self._notifier = notifier
        self._today = today

    # ── Dispatch ─────────────────────────────────────────────────────

    def run(self, request: CapabilityRequest) -> dict[str, Any]:
        """Execute an already-validated capability request."""
        handler = getattr(self, request.capability)
        return handler(**request.model_dump())

    def invoke(self, name: str, args: dict[str, Any] | None) -> dict[str, Any]:
        """Validate and execute a raw tool call."""
        try:
            request = parse_invocation(name, args)
        except SchedulingError as exc:
            return exc.to_result()
        return self.run(request)

    # ── Shared lookups ───────────────────────────────────────────────

    def _date(self, text: str, *, allow_past: bool = False) -> str:
        day = normalize_date(text, self._today())
        if not allow_past and day < self._today().isoformat():
            raise InvalidInputError(f"{day} is in the past. Ask the patient for an upcoming date.")
        return day

    def _bookable_time(self, provider: Provider, text: str) -> str:
        slot = normalize_time(text)
        if slot not in generate_slots(provider.working_hours_start, provider.working_hours_end):
            raise InvalidInputError(
                f"{slot} is not a bookable slot for {provider.name}. Appointments start "
                f"every {SLOT_MINUTES} minutes between {provider.working_hours_start[:5]} "
                f"and {provider.working_hours_end[:5]}.",
            )
        return slot

    def _confirmed_on(self, provider: Provider, day: str, **filters: Any) -> list[Booking]:
        rows = self._gateway.select(
            APPOINTMENTS_TABLE,
            columns=BOOKING_COLUMNS,
            match={
                "doctor_id": provider.id,
                "appointment_date": day,
                "status": BookingStatus.CONFIRMED.value,
            },
            **filters,
        )
        bookings = []
        for row in rows:
            try:
                bookings.append(Booking.model_validate(row))
            except ValidationError:
                logger.warning("Skipping malformed appointment row: %r", row)
        return bookings

    def _slot_holder(self, provider: Provider, day: str, slot: str) -> Booking | None:
        for booking in self._confirmed_on(provider, day):
            if booking.time == slot:
                return booking
        return None

    def _booking_by_id(self, booking_id: int | str) -> Booking | None:
        rows = self._gateway.select(
            APPOINTMENTS_TABLE, columns=BOOKING_COLUMNS, match={"id": booking_id}, limit=1,
        )
        for row in rows:
            try:
                return Booking.model_validate(row)
            except ValidationError:
                logger.warning("Skipping malformed appointment row: %r", row)
        return None

    def _find_confirmed(
        self, provider: Provider, day: str, patient_name: str, slot: str | None = None,
    ) -> Booking:
        """Locate one confirmed booking by doctor, date and fuzzy patient name."""
        term = _patient_term(patient_name)
        if not term:
            raise InvalidInputError("The patient's name is required.")

        bookings = self._confirmed_on(provider, day, ilike={"patient_name": term})
        first_name = term.split()[0]
        if not bookings and first_name != term:
            bookings = self._confirmed_on(provider, day, ilike={"patient_name": first_name})
        if slot:
            bookings = [b for b in bookings if b.time == slot]

        if not bookings:
            raise NotFoundError(
                f"There is no confirmed appointment for {patient_name} with "
                f"{provider.name} on {day}. Ask the patient to check the details."
            )
        if len(bookings) > 1:
            raise ConflictError(
                f"{patient_name} has {len(bookings)} appointments with {provider.name} "
                f"on {day}. Ask which time they mean.",
                appointments=[b.summary() for b in bookings],
            )
        return bookings[0]

    # ── Capabilities ─────────────────────────────────────────────────

    @_capability
    def find_provider(self, name: str | None = None, specialty: str | None = None) -> dict[str, Any]:
        providers = self._resolver.search_providers(name=name, specialty=specialty)
        if not providers:
            return {
                "success": True,
                "count": 0,
                "providers": [],
                "message": "No doctors matched. Ask the patient for the correct name or specialty.",
            }
        return {
            "success": True,
            "count": len(providers),
            "providers": [p.summary() for p in providers],
            "message": f"Found {len(providers)} matching doctor(s). Only mention these names.",
        }

    @_capability
    def list_specialties(self) -> dict[str, Any]:
        rows = self._gateway.select(DOCTORS_TABLE, columns="specialty")
        specialties = sorted({(row.get("specialty") or "").strip() for row in rows} - {""})
        return {
            "success": True,
            "count": len(specialties),
            "specialties": specialties,
            "message": (
                f"{CLINIC_NAME} offers {len(specialties)} specialties."
                if specialties else "No specialties are listed yet."
            ),
        }

    @_capability
    def list_availability(
        self, doctor_name: str, date: str, period: str | None = None,
    ) -> dict[str, Any]:
        provider = self._resolver.resolve_provider(doctor_name)
        day = self._date(date)

        booked = {b.time for b in self._confirmed_on(provider, day)}
        free = [
            slot
            for slot in generate_slots(provider.working_hours_start, provider.working_hours_end)
            if slot not in booked
        ]
        parts = partition_slots(free)
        result: dict[str, Any] = {"success": True, "doctor": provider.name, "date": day}

        if period is None:
            periods = [{"period": p, "count": len(parts[p])} for p in PERIODS if parts[p]]
            result.update(
                periods=periods,
                has_slots=bool(periods),
                message=(
                    "Tell the patient which parts of the day have slots and ask for their preference."
                    if periods else
                    f"No slots are available with {provider.name} on {day}. Suggest another date."
                ),
            )
            return result

        key = period.strip().lower()
        if key not in parts:
            raise InvalidInputError(f"Unknown period '{period}'. Use morning, afternoon or evening.")
        slots = parts[key]
        result.update(
            period=key,
            slots=slots,
            message=(
                f"List the available {key} times and ask the patient to pick one."
                if slots else
                f"No {key} slots are left on {day}. Offer another part of the day or another date."
            ),
        )
        return result

    @_capability
    def create_booking(
        self, doctor_name: str, patient_name: str, date: str, time: str, phone: str,
    ) -> dict[str, Any]:
        patient = " ".join((patient_name or "").split())
        if not patient:
            raise InvalidInputError("The patient's name is required.")
        contact = normalize_phone(phone)
        provider = self._resolver.resolve_provider(doctor_name)
        day = self._date(date)
        slot = self._bookable_time(provider, time)

        if self._slot_holder(provider, day, slot) is not None:
            raise ConflictError(
                f"{slot} on {day} with {provider.name} was just taken. "
                "Ask the patient to pick a different time.",
                date=day,
                time=slot,
            )

        def already_booked() -> dict[str, Any] | None:
            holder = self._slot_holder(provider, day, slot)
            if holder is None:
                return None
            if holder.patient_name == patient and holder.phone == contact:
                return holder.model_dump(mode="json")
            raise ConflictError(
                f"{slot} on {day} with {provider.name} was just taken. "
                "Ask the patient to pick a different time.",
                date=day,
                time=slot,
            )

        values = {
            "doctor_id": provider.id,
            "patient_name": patient,
            "phone": contact,
            "appointment_date": day,
            "appointment_time": slot,
            "status": BookingStatus.CONFIRMED.value,
        }
        try:
            row = self._gateway.insert(APPOINTMENTS_TABLE, values, recover=already_booked)
        except GatewayTimeoutError:
            # the abandoned insert may still have landed
            try:
                row = already_booked()
            except SchedulingError:
                row = None
            if row is None:
                raise
        logger.info("Booked %s with %s on %s at %s", patient, provider.name, day, slot)

        notify_safely(
            self._notifier, contact,
            f"{CLINIC_NAME}: your appointment with {provider.name} is confirmed "
            f"for {day} at {slot}.",
        )
        return {
            "success": True,
            "message": f"Appointment booked for {patient} with {provider.name} on {day} at {slot}.",
            "booking": {
                "id": row.get("id"),
                "doctor": provider.name,
                "patient_name": patient,
                "phone": contact,
                "date": day,
                "time": slot,
                "status": BookingStatus.CONFIRMED.value,
            },
        }

    @_capability
    def reschedule_booking(
        self,
        patient_name: str,
        doctor_name: str,
        old_date: str,
        new_date: str | None = None,
        new_time: str | None = None,
        old_time: str | None = None,
    ) -> dict[str, Any]:
        provider = self._resolver.resolve_provider(doctor_name)
        current_day = self._date(old_date, allow_past=True)
        current_slot = normalize_time(old_time) if old_time else None
        booking = self._find_confirmed(provider, current_day, patient_name, current_slot)

        if not new_date or not new_time:
            return {
                "success": True,
                "action_required": "new_date_and_time",
                "doctor": provider.name,
                "booking": booking.summary(),
                "message": (
                    f"Found the appointment on {booking.appointment_date} at {booking.time}. "
                    "Ask the patient for the new date and time before rescheduling."
                ),
            }

        day = self._date(new_date)
        slot = self._bookable_time(provider, new_time)
        holder = self._slot_holder(provider, day, slot)
        if holder is not None:
            if str(holder.id) == str(booking.id):
                return {
                    "success": True,
                    "doctor": provider.name,
                    "booking": booking.summary(),
                    "message": f"The appointment is already on {day} at {slot}; nothing changed.",
                }
            raise ConflictError(
                f"{slot} on {day} with {provider.name} is already taken. "
                "Ask the patient to pick a different time.",
                date=day,
                time=slot,
            )

        updated = self._gateway.update(
            APPOINTMENTS_TABLE,
            {"appointment_date": day, "appointment_time": slot},
            match={"id": booking.id, "status": BookingStatus.CONFIRMED.value},
        )
        if not updated:
            raise NotFoundError(
                "That appointment is no longer active, so it could not be rescheduled."
            )
        logger.info(
            "Rescheduled booking %s from %s %s to %s %s",
            booking.id, booking.appointment_date, booking.time, day, slot,
        )

        notify_safely(
            self._notifier, booking.phone,
            f"{CLINIC_NAME}: your appointment with {provider.name} has moved to {day} at {slot}.",
        )
        return {
            "success": True,
            "doctor": provider.name,
            "booking": {**booking.summary(), "date": day, "time": slot},
            "message": f"Rescheduled {booking.patient_name}'s appointment to {day} at {slot}.",
        }

    @_capability
    def cancel_booking(
        self, doctor_name: str, patient_name: str, date: str, time: str | None = None,
    ) -> dict[str, Any]:
        provider = self._resolver.resolve_provider(doctor_name)
        day = self._date(date, allow_past=True)
        slot = normalize_time(time) if time else None
        booking = self._find_confirmed(provider, day, patient_name, slot)

        updated = self._gateway.update(
            APPOINTMENTS_TABLE,
            {"status": BookingStatus.CANCELLED.value},
            match={"id": booking.id, "status": BookingStatus.CONFIRMED.value},
        )
        if not updated:
            current = self._booking_by_id(booking.id)
            if current is None or current.status is not BookingStatus.CANCELLED:
                raise NotFoundError("That appointment is no longer active.")
            logger.info("Booking %s was already cancelled by an earlier attempt", booking.id)
        logger.info("Cancelled booking %s (%s on %s)", booking.id, provider.name, day)

        notify_safely(
            self._notifier, booking.phone,
            f"{CLINIC_NAME}: your appointment with {provider.name} on {day} "
            f"at {booking.time} has been cancelled.",
        )
        return {
            "success": True,
            "doctor": provider.name,
            "booking": {**booking.summary(), "status": BookingStatus.CANCELLED.value},
            "message": f"Cancelled {booking.patient_name}'s appointment on {day} at {booking.time}.",
        }
