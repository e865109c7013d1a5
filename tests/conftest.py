"""Shared test fixtures for the Sahay test suite."""

from __future__ import annotations

import itertools
import os
from datetime import date
from typing import Any
from unittest.mock import MagicMock, patch

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
    os.environ.setdefault("SUPABASE_KEY", "test-supabase-key-456")
    os.environ.setdefault("METRICS_ENABLED", "false")


TODAY = date(2026, 1, 20)

DOCTORS = [
    {
        "id": 1, "name": "K. S. S. Aditya", "specialty": "Cardiology",
        "working_hours_start": "09:00:00", "working_hours_end": "13:00:00",
    },
    {
        "id": 2, "name": "Dr. Mahesh Sampath", "specialty": "Neurology",
        "working_hours_start": "09:00:00", "working_hours_end": "18:00:00",
    },
    {
        "id": 3, "name": "Dr. Priya Sharma", "specialty": "Dermatology",
        "working_hours_start": "10:00", "working_hours_end": "16:00",
    },
    {
        "id": 4, "name": "Dr. Rahul Sharma", "specialty": "Orthopedics",
        "working_hours_start": "14:00", "working_hours_end": "19:00",
    },
]


class FakeStore:
    """In-memory store with the same method surface as ``SupabaseClient``."""

    def __init__(self, doctors: list[dict] | None = None, appointments: list[dict] | None = None):
        self.tables: dict[str, list[dict[str, Any]]] = {
            "doctors": [dict(r) for r in (doctors if doctors is not None else DOCTORS)],
            "appointments": [dict(r) for r in (appointments or [])],
        }
        self.calls: list[tuple[str, str]] = []
        self._ids = itertools.count(100)

    @staticmethod
    def _matches(row, match=None, ilike=None, any_ilike=None) -> bool:
        for column, value in (match or {}).items():
            if str(row.get(column)) != str(value):
                return False
        for column, text in (ilike or {}).items():
            if text.lower() not in str(row.get(column) or "").lower():
                return False
        if any_ilike:
            return any(
                text.lower() in str(row.get(column) or "").lower()
                for column, text in any_ilike.items()
            )
        return True

    def select(self, table, *, columns="*", match=None, ilike=None, any_ilike=None,
               order=None, limit=None):
        self.calls.append(("select", table))
        rows = [r for r in self.tables[table] if self._matches(r, match, ilike, any_ilike)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: str(r.get(column)), reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        if columns == "*":
            return [dict(r) for r in rows]
        wanted = columns.split(",")
        return [{c: r.get(c) for c in wanted} for r in rows]

    def insert(self, table, row):
        self.calls.append(("insert", table))
        stored = {"id": next(self._ids), **row}
        self.tables[table].append(stored)
        return dict(stored)

    def update(self, table, values, *, match):
        self.calls.append(("update", table))
        updated = []
        for row in self.tables[table]:
            if self._matches(row, match):
                row.update(values)
                updated.append(dict(row))
        return updated

    def close(self):
        pass

    def confirmed(self, **match) -> list[dict]:
        return [
            r for r in self.tables["appointments"]
            if r.get("status") == "confirmed" and self._matches(r, match)
        ]


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def no_sleep():
    with patch("sahay.services.gateway.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def metrics_client():
    from sahay.services.metrics import MetricsClient

    with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
        return MetricsClient()


@pytest.fixture
def gateway(store, no_sleep, metrics_client):
    from sahay.services.gateway import DataGateway

    return DataGateway(store, deadline=None, metrics=metrics_client)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def service(gateway, notifier):
    from sahay.tools.scheduling import SchedulingService

    return SchedulingService(gateway, notifier=notifier, today=lambda: TODAY)
