"""Domain models shared by the reconciliation engine and its collaborators."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Default source window: a week back, a month ahead.
DEFAULT_PAST_DAYS = 7
DEFAULT_SYNC_DAYS_FORWARD = 30


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class TitleHandling(StrEnum):
    """How the subject of a copied event is derived from the original."""

    clone = "clone"
    rename = "rename"
    hide = "hide"


class ReminderHandling(StrEnum):
    """Whether copies keep the source reminder."""

    copy = "copy"
    disable = "disable"


class RsvpResponse(StrEnum):
    """RSVP response recorded on an event."""

    none = "none"
    yes = "yes"
    maybe = "maybe"
    no = "no"


class EventStatus(StrEnum):
    """Free/busy status shown for an event."""

    free = "free"
    busy = "busy"
    tentative = "tentative"
    out_of_office = "out_of_office"
    working_elsewhere = "working_elsewhere"


class BodyType(StrEnum):
    text = "text"
    html = "html"


class TokenStatus(StrEnum):
    """Lifecycle state of a credential's cached token."""

    not_acquired = "not_acquired"
    valid = "valid"
    invalid = "invalid"
    expired = "expired"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class SyncInterval(BaseModel):
    """How often a binding is reconciled.

    The next run is due ``minutes`` after the last one.  A ``cron_expression``
    is opt-in: when set, the next run is the first cron boundary after the
    last one instead.  The presets are plain intervals.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    minutes: int = Field(ge=1)
    cron_expression: str | None = None

    @field_validator("cron_expression")
    @classmethod
    def _validate_cron(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        if not croniter.is_valid(normalized):
            raise ValueError(f"invalid cron expression: {value!r}")
        return normalized

    @classmethod
    def every_15_minutes(cls) -> SyncInterval:
        return cls(minutes=15)

    @classmethod
    def every_30_minutes(cls) -> SyncInterval:
        return cls(minutes=30)

    @classmethod
    def hourly(cls) -> SyncInterval:
        return cls(minutes=60)

    @classmethod
    def custom(cls, minutes: int, cron_expression: str | None = None) -> SyncInterval:
        return cls(minutes=minutes, cron_expression=cron_expression)

    def next_after(self, last: datetime) -> datetime:
        """Return the next due time after *last*."""
        if self.cron_expression:
            anchor = last if last.tzinfo is not None else last.replace(tzinfo=UTC)
            next_run = croniter(self.cron_expression, anchor).get_next(datetime)
            if next_run.tzinfo is None:
                next_run = next_run.replace(tzinfo=UTC)
            return next_run
        return last + timedelta(minutes=self.minutes)


def _parse_exclusion_set(value: Any) -> Any:
    """Accept the comma-separated storage form (``"no,maybe"``) as well as iterables."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset(part.strip().lower() for part in value.split(",") if part.strip())
    return value


class BindingConfiguration(BaseModel):
    """Declarative sync rules for one binding.  Replaced wholesale on edit."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title_handling: TitleHandling = TitleHandling.clone
    custom_title: str | None = None
    copy_description: bool = True
    copy_participants: bool = True
    copy_location: bool = True
    copy_attachments: bool = False
    copy_conference_link: bool = True
    target_category: str | None = None
    target_status: EventStatus | None = None
    reminder_handling: ReminderHandling = ReminderHandling.copy
    mark_as_private: bool = False
    custom_tag: str | None = None
    custom_tag_in_title: bool = True
    rsvp_exclusion: frozenset[RsvpResponse] = frozenset()
    status_exclusion: frozenset[EventStatus] = frozenset()
    interval: SyncInterval = Field(default_factory=SyncInterval.every_30_minutes)
    sync_days_forward: int = Field(default=DEFAULT_SYNC_DAYS_FORWARD, ge=1)

    @field_validator("rsvp_exclusion", "status_exclusion", mode="before")
    @classmethod
    def _normalize_exclusions(cls, value: Any) -> Any:
        return _parse_exclusion_set(value)

    @classmethod
    def default(cls) -> BindingConfiguration:
        """Copy every field, sync every 30 minutes."""
        return cls()

    @classmethod
    def privacy_focused(cls) -> BindingConfiguration:
        """Mirror only busy blocks: hidden titles, no details, private copies."""
        return cls(
            title_handling=TitleHandling.hide,
            custom_title="Busy",
            copy_description=False,
            copy_participants=False,
            copy_location=False,
            copy_attachments=False,
            copy_conference_link=False,
            mark_as_private=True,
            target_status=EventStatus.busy,
        )

    def serialized_rsvp_exclusion(self) -> str:
        return ",".join(sorted(self.rsvp_exclusion))

    def serialized_status_exclusion(self) -> str:
        return ",".join(sorted(self.status_exclusion))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class SyncWindow(BaseModel):
    """Time range fetched from the source calendar."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @classmethod
    def around(
        cls,
        now: datetime,
        *,
        past_days: int = DEFAULT_PAST_DAYS,
        forward_days: int = DEFAULT_SYNC_DAYS_FORWARD,
    ) -> SyncWindow:
        return cls(start=now - timedelta(days=past_days), end=now + timedelta(days=forward_days))

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class CalendarEvent(BaseModel):
    """One event occurrence on either side of a binding.

    ``original_event_id`` and ``source_binding_id`` are correlation metadata;
    they are only present on events this engine created in a target calendar.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    external_id: str = ""
    subject: str
    body: str | None = None
    body_type: BodyType = BodyType.text
    start: datetime
    end: datetime
    location: str | None = None
    is_online_meeting: bool = False
    is_meeting: bool = False
    conference_link: str | None = None
    organizer: str | None = None
    is_all_day: bool = False
    is_recurring: bool = False
    status: EventStatus = EventStatus.busy
    rsvp_status: RsvpResponse = RsvpResponse.none
    required_attendees: tuple[str, ...] = ()
    optional_attendees: tuple[str, ...] = ()
    categories: str | None = None
    is_private: bool = False
    has_attachments: bool = False
    reminder_minutes_before_start: int | None = None
    original_event_id: str | None = None
    source_binding_id: str | None = None

    @property
    def is_copy(self) -> bool:
        """True when this event was produced by a binding."""
        return bool(self.original_event_id and self.original_event_id.strip())

    def with_binding(self, binding_id: str) -> CalendarEvent:
        return self.model_copy(update={"source_binding_id": binding_id})


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class Credential(BaseModel):
    """Opaque auth session for one account.

    ``status_data`` is the serialized token cache owned by the provider's
    auth layer; adapters call :meth:`update_status_data` whenever it refreshes
    tokens so the new cache can be persisted after the run.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    name: str
    token_status: TokenStatus = TokenStatus.not_acquired
    status_data: bytes | None = None
    token_expires_at: datetime | None = None
    updated_at: datetime | None = None

    def is_token_valid(self, now: datetime | None = None) -> bool:
        """Return True when the token is valid; downgrade it when past expiry."""
        if self.token_status != TokenStatus.valid:
            return False
        current = now or _utcnow()
        if self.token_expires_at is not None and self.token_expires_at <= current:
            self.mark_expired()
            return False
        return True

    def has_status_data(self) -> bool:
        return bool(self.status_data)

    def acquire(self, status_data: bytes, *, expires_at: datetime | None = None) -> None:
        if not status_data:
            raise ValueError("status_data must be non-empty")
        self.status_data = status_data
        self.token_expires_at = expires_at
        self.token_status = TokenStatus.valid
        self.updated_at = _utcnow()

    def update_status_data(self, status_data: bytes) -> None:
        self.status_data = status_data
        self.updated_at = _utcnow()

    def mark_invalid(self) -> None:
        self.token_status = TokenStatus.invalid
        self.updated_at = _utcnow()

    def mark_expired(self) -> None:
        self.token_status = TokenStatus.expired
        self.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# Bindings
# ---------------------------------------------------------------------------


class CalendarBinding(BaseModel):
    """One directed sync pair from a source calendar to a target calendar."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    name: str = Field(min_length=1)
    source_credential_id: str
    source_calendar_external_id: str = Field(min_length=1)
    target_credential_id: str
    target_calendar_external_id: str = Field(min_length=1)
    configuration: BindingConfiguration = Field(default_factory=BindingConfiguration.default)
    is_enabled: bool = True
    last_sync_at: datetime | None = None
    last_sync_event_count: int = 0
    last_sync_error: str | None = None

    def enable(self) -> None:
        self.is_enabled = True

    def disable(self) -> None:
        self.is_enabled = False

    def rename(self, new_name: str) -> None:
        if not new_name or not new_name.strip():
            raise ValueError("binding name must be a non-empty string")
        self.name = new_name.strip()

    def update_configuration(self, configuration: BindingConfiguration) -> None:
        self.configuration = configuration

    def record_successful_sync(self, event_count: int, *, at: datetime | None = None) -> None:
        if event_count < 0:
            raise ValueError("event_count must not be negative")
        self.last_sync_at = at or _utcnow()
        self.last_sync_event_count = event_count
        self.last_sync_error = None

    def record_failed_sync(self, error_message: str, *, at: datetime | None = None) -> None:
        if not error_message or not error_message.strip():
            raise ValueError("error_message must be a non-empty string")
        self.last_sync_at = at or _utcnow()
        self.last_sync_error = error_message

    def next_sync_at(self, now: datetime) -> datetime:
        """Return when this binding is next due; ``now`` when it never synced."""
        if self.last_sync_at is None:
            return now
        return self.configuration.interval.next_after(self.last_sync_at)

    def is_valid_binding(
        self,
        source_credential_id: str,
        source_external_id: str,
        target_credential_id: str,
        target_external_id: str,
    ) -> bool:
        """Check that a proposed pair is not self-referential nor a duplicate of this one."""
        if (
            source_credential_id == target_credential_id
            and source_external_id == target_external_id
        ):
            return False
        return not (
            self.source_credential_id == source_credential_id
            and self.source_calendar_external_id == source_external_id
            and self.target_credential_id == target_credential_id
            and self.target_calendar_external_id == target_external_id
        )

    def is_reverse_of(self, other: CalendarBinding) -> bool:
        return (
            self.source_credential_id == other.target_credential_id
            and self.source_calendar_external_id == other.target_calendar_external_id
            and self.target_credential_id == other.source_credential_id
            and self.target_calendar_external_id == other.source_calendar_external_id
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Outcome of one binding's reconciliation run.

    ``items_synced`` counts the target mutations (creates, updates and
    deletes) applied during the run; ``eligible`` is the number of source
    originals that passed the exclusion rules.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    items_synced: int = 0
    error: str | None = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    eligible: int = 0

    @classmethod
    def ok(
        cls,
        *,
        created: int = 0,
        updated: int = 0,
        deleted: int = 0,
        failed: int = 0,
        eligible: int = 0,
    ) -> SyncResult:
        return cls(
            success=True,
            items_synced=created + updated + deleted,
            created=created,
            updated=updated,
            deleted=deleted,
            failed=failed,
            eligible=eligible,
        )

    @classmethod
    def failure(cls, error: str) -> SyncResult:
        return cls(success=False, items_synced=0, error=error)


class CalendarsSyncResult(BaseModel):
    """Aggregate outcome of syncing every enabled binding."""

    model_config = ConfigDict(frozen=True)

    success: bool
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    copied: int = 0
    errors: list[str] = Field(default_factory=list)
