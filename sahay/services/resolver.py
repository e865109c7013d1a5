"""Entity resolution: free-form text → canonical dates, times and doctors.

Patients (and the model relaying them) say "tomorrow", "23/01/26",
"Dr. Adithya" or "cardio".  The functions here turn that into
``YYYY-MM-DD``, ``HH:MM`` and a single :class:`~sahay.models.Provider`.
Nothing in this module writes to the store.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta

from pydantic import ValidationError

from sahay.config import DEFAULT_COUNTRY_CODE
from sahay.errors import (
    AmbiguousProviderError,
    InvalidDateError,
    InvalidInputError,
    NotFoundError,
)
from sahay.models import DOCTORS_TABLE, PROVIDER_COLUMNS, Provider
from sahay.services.gateway import DataGateway

logger = logging.getLogger(__name__)

_DAY_OF_MONTH = re.compile(r"^\d{1,2}$")
_SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

_CLOCK_TIME = re.compile(r"^(\d{1,2})(?:[:.](\d{2}))?(?::(\d{2}))?\s*([ap]\.?m\.?)?$", re.IGNORECASE)

_HONORIFIC = re.compile(r"\b(?:dr|doctor)\b\.?", re.IGNORECASE)
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9 ]")

STEM_LENGTH = 5
BROAD_STEM_LENGTH = 3
DEFAULT_DIRECTORY_PAGE = 5
BROAD_MATCH_LIMIT = 3


# ── Dates and times ─────────────────────────────────────────────────


def _build_date(year: int, month: int, day: int, raw: str) -> str:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        raise InvalidDateError(f"'{raw}' is not a valid calendar date.") from None


def normalize_date(text: str, today: date | None = None) -> str:
    """Normalise a date expression to ``YYYY-MM-DD``.

    Accepts ``today``/``tomorrow``, a bare day of the current month,
    ``D/M/Y`` (a two-digit year gets a ``20`` prefix) and ISO dates.

    Raises:
        InvalidDateError: nothing matched, or the date does not exist.
    """
    raw = (text or "").strip()
    value = raw.lower()
    today = today or date.today()

    if value == "today":
        return today.isoformat()
    if value == "tomorrow":
        return (today + timedelta(days=1)).isoformat()

    if _DAY_OF_MONTH.match(value):
        return _build_date(today.year, today.month, int(value), raw)

    m = _SLASH_DATE.match(value)
    if m:
        day, month, year = m.groups()
        if len(year) == 2:
            year = f"20{year}"
        return _build_date(int(year), int(month), int(day), raw)

    m = _ISO_DATE.match(value)
    if m:
        year, month, day = (int(g) for g in m.groups())
        return _build_date(year, month, day, raw)

    raise InvalidDateError(
        f"I couldn't understand the date '{raw}'. Use a format like YYYY-MM-DD, "
        "DD/MM/YYYY, 'today' or 'tomorrow'."
    )


def normalize_time(text: str) -> str:
    """Normalise a clock time (``10:30``, ``10.30``, ``2 pm``, ``14:00:00``) to ``HH:MM``."""
    raw = (text or "").strip()
    m = _CLOCK_TIME.match(raw)
    if not m:
        raise InvalidInputError(f"I couldn't understand the time '{raw}'. Use HH:MM.")

    hour, minute = int(m.group(1)), int(m.group(2) or 0)
    meridiem = (m.group(4) or "").lower().replace(".", "")
    if meridiem:
        if not 1 <= hour <= 12:
            raise InvalidInputError(f"'{raw}' is not a valid time.")
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        raise InvalidInputError(f"'{raw}' is not a valid time.")
    return f"{hour:02d}:{minute:02d}"


def normalize_phone(text: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Normalise a contact number to ``+<country code><subscriber number>``.

    ``+`` and ``00`` prefixes are kept as international; a national number
    (optionally with a trunk ``0``) gets *country_code* prepended.
    """
    raw = (text or "").strip()
    digits = re.sub(r"\D", "", raw)
    if raw.startswith("+"):
        international = digits
    elif digits.startswith("00"):
        international = digits[2:]
    elif len(digits) == 10:
        international = country_code + digits
    elif len(digits) == 11 and digits.startswith("0"):
        international = country_code + digits[1:]
    elif digits.startswith(country_code) and len(digits) == len(country_code) + 10:
        international = digits
    else:
        international = ""

    if not 8 <= len(international) <= 15:
        raise InvalidInputError(
            f"'{raw}' doesn't look like a valid phone number. Ask the patient to repeat it."
        )
    return f"+{international}"


# ── Names ───────────────────────────────────────────────────────────


def clean_term(term: str) -> str:
    """Strip honorifics and punctuation, collapse whitespace."""
    text = _HONORIFIC.sub(" ", term or "")
    text = _NON_ALNUM.sub(" ", text)
    return " ".join(text.split())


def stem(term: str) -> str:
    """Short prefix of the cleaned term, tolerant of typos in the tail."""
    cleaned = clean_term(term)
    return cleaned[:STEM_LENGTH] if len(cleaned) > STEM_LENGTH - 1 else cleaned


class ProviderResolver:
    """Looks doctors up by partial name or specialty through the gateway."""

    def __init__(self, gateway: DataGateway):
        self._gateway = gateway

    def _query(self, **filters) -> list[Provider]:
        rows = self._gateway.select(DOCTORS_TABLE, columns=PROVIDER_COLUMNS, **filters)
        providers = []
        for row in rows:
            try:
                providers.append(Provider.model_validate(row))
            except ValidationError:
                logger.warning("Skipping malformed doctor row: %r", row)
        return providers

    def search_providers(
        self, name: str | None = None, specialty: str | None = None,
    ) -> list[Provider]:
        """Return every doctor matching the name and/or specialty fragments.

        The narrow search matches a 5-character stem; when it finds nothing
        a 3-character stem is tried against name *or* specialty.  With no
        fragments at all, the first page of the directory is returned.
        """
        name_stem = stem(name) if name else ""
        specialty_stem = stem(specialty) if specialty else ""

        if not name_stem and not specialty_stem:
            return self._query(order="name.asc", limit=DEFAULT_DIRECTORY_PAGE)

        ilike = {}
        if name_stem:
            ilike["name"] = name_stem
        if specialty_stem:
            ilike["specialty"] = specialty_stem
        logger.debug("Provider search: %s", ilike)
        matches = self._query(ilike=ilike, order="name.asc")
        if matches:
            return matches

        broad = clean_term(name or specialty or "")[:BROAD_STEM_LENGTH]
        if len(broad) < 2:
            return []
        logger.info("No providers for %s; retrying with broad stem %r", ilike, broad)
        return self._query(
            any_ilike={"name": broad, "specialty": broad},
            order="name.asc",
            limit=BROAD_MATCH_LIMIT,
        )

    def resolve_provider(self, term: str) -> Provider:
        """Resolve *term* to exactly one doctor.

        Raises:
            InvalidInputError: the term is empty after cleaning.
            NotFoundError: nothing matched.
            AmbiguousProviderError: several doctors matched and the full
                query singles out none of them.
        """
        query = clean_term(term).lower()
        if not query:
            raise InvalidInputError("A doctor's name is required.")

        candidates = self.search_providers(name=term)
        if not candidates:
            raise NotFoundError(
                f"I couldn't find a doctor in our records matching '{term}'."
            )
        if len(candidates) == 1:
            return candidates[0]

        exact = [p for p in candidates if query in clean_term(p.name).lower()]
        if len(exact) == 1:
            return exact[0]

        raise AmbiguousProviderError(term, [p.name for p in (exact or candidates)])
