"""HTTP client for the Supabase PostgREST API.

Supabase exposes every table under ``{SUPABASE_URL}/rest/v1/<table>``;
filters travel as query parameters (``col=eq.value``,
``col=ilike.*text*``, ``or=(a.ilike.*x*,b.ilike.*x*)``).  All requests
carry the project key both as ``apikey`` and as a Bearer token.

Each method performs exactly one HTTP request.  Retrying, backoff and
failure classification belong to :class:`sahay.services.gateway.DataGateway`;
this client only turns non-2xx responses into :class:`StoreError` and lets
transport errors (``httpx.ConnectError`` etc.) propagate untouched.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from sahay.config import STORE_TIMEOUT_SECONDS, SUPABASE_KEY, SUPABASE_URL

logger = logging.getLogger(__name__)

# Characters PostgREST treats as syntax inside or=(...) expressions
_RESERVED = re.compile(r"[,.:()\s\"]")


class StoreError(Exception):
    """Raised when the store answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


def _quote(value: str) -> str:
    if _RESERVED.search(value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def _substring(text: str) -> str:
    """PostgREST accepts ``*`` as the LIKE wildcard in URLs."""
    return f"*{text}*"


class SupabaseClient:
    """Thin wrapper around the PostgREST endpoints of one Supabase project."""

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        *,
        timeout: float | None = None,
    ):
        self._base_url = f"{(url or SUPABASE_URL).rstrip('/')}/rest/v1"
        key = key or SUPABASE_KEY
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
            timeout=timeout or STORE_TIMEOUT_SECONDS,
        )

    def close(self) -> None:
        self._client.close()

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = self._client.request(
            method, f"/{table}", params=params, json=json_body, headers=headers,
        )
        if response.status_code >= 400:
            code = None
            message = response.text
            try:
                payload = response.json()
                code = payload.get("code")
                message = payload.get("message") or message
            except ValueError:
                pass
            raise StoreError(
                f"Store error {response.status_code} on {method} {table}: {message}",
                status_code=response.status_code,
                code=code,
            )
        if not response.content:
            return []
        return response.json()

    @staticmethod
    def _filters(
        match: dict[str, Any] | None = None,
        ilike: dict[str, str] | None = None,
        any_ilike: dict[str, str] | None = None,
    ) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        for column, value in (match or {}).items():
            params.append((column, f"eq.{value}"))
        for column, text in (ilike or {}).items():
            params.append((column, f"ilike.{_substring(text)}"))
        if any_ilike:
            clauses = ",".join(
                f"{column}.ilike.{_quote(_substring(text))}"
                for column, text in any_ilike.items()
            )
            params.append(("or", f"({clauses})"))
        return params

    # ── Public API ───────────────────────────────────────────────────

    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        match: dict[str, Any] | None = None,
        ilike: dict[str, str] | None = None,
        any_ilike: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching every filter.

        Args:
            match: column → value, exact equality.
            ilike: column → text, case-insensitive substring (ANDed).
            any_ilike: column → text, case-insensitive substring (ORed).
            order: PostgREST order expression, e.g. ``"name.asc"``.
        """
        params = [("select", columns)]
        params += self._filters(match, ilike, any_ilike)
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))
        return self._request("GET", table, params=params)

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored."""
        rows = self._request(
            "POST", table,
            json_body=row,
            headers={"Prefer": "return=representation"},
        )
        return rows[0] if rows else row

    def update(
        self,
        table: str,
        values: dict[str, Any],
        *,
        match: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Update every row matching *match*; return the updated rows."""
        if not match:
            raise ValueError("update() requires at least one match filter")
        return self._request(
            "PATCH", table,
            params=self._filters(match),
            json_body=values,
            headers={"Prefer": "return=representation"},
        )
