"""Builders for calsync domain objects used across the test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from calsync.sync.models import (
    BindingConfiguration,
    CalendarBinding,
    CalendarEvent,
    Credential,
    TokenStatus,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
SOURCE_CALENDAR = "work-calendar"
TARGET_CALENDAR = "personal-calendar"


def make_credential(name: str, **overrides: Any) -> Credential:
    fields: dict[str, Any] = {
        "name": name,
        "token_status": TokenStatus.valid,
        "status_data": b"serialized-token-cache",
        "token_expires_at": NOW + timedelta(hours=1),
    }
    fields.update(overrides)
    return Credential(**fields)


def make_binding(
    source: Credential,
    target: Credential,
    configuration: BindingConfiguration | None = None,
    **overrides: Any,
) -> CalendarBinding:
    fields: dict[str, Any] = {
        "name": "Work to Personal",
        "source_credential_id": source.id,
        "source_calendar_external_id": SOURCE_CALENDAR,
        "target_credential_id": target.id,
        "target_calendar_external_id": TARGET_CALENDAR,
        "configuration": configuration or BindingConfiguration.default(),
    }
    fields.update(overrides)
    return CalendarBinding(**fields)


def make_event(external_id: str, subject: str = "Meeting", **overrides: Any) -> CalendarEvent:
    start = overrides.pop("start", NOW + timedelta(hours=2))
    fields: dict[str, Any] = {
        "external_id": external_id,
        "subject": subject,
        "start": start,
        "end": overrides.pop("end", start + timedelta(minutes=30)),
        "body": "Agenda",
        "location": "Room 4",
        "organizer": "lead@example.com",
        "required_attendees": ("a@example.com", "b@example.com"),
        "reminder_minutes_before_start": 15,
    }
    fields.update(overrides)
    return CalendarEvent(**fields)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* on the running loop until it holds or *timeout* expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)
