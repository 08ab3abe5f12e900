"""Filtering and field-mapping rules applied to source events.

Everything here is a pure function of the event and the binding
configuration; nothing touches the network or shared state.
"""

from __future__ import annotations

import uuid

from calsync.sync.models import (
    BindingConfiguration,
    CalendarBinding,
    CalendarEvent,
    ReminderHandling,
    TitleHandling,
)

HIDDEN_TITLE_TEMPLATE = "Event from {source_name}"

# Fields whose difference between the desired copy and the existing copy
# triggers an in-place update.  Attendee lists compare as ordered sequences.
COMPARED_FIELDS: tuple[str, ...] = (
    "subject",
    "start",
    "end",
    "location",
    "is_online_meeting",
    "is_meeting",
    "conference_link",
    "body",
    "body_type",
    "organizer",
    "is_all_day",
    "is_recurring",
    "status",
    "rsvp_status",
    "is_private",
    "categories",
    "required_attendees",
    "optional_attendees",
    "has_attachments",
    "reminder_minutes_before_start",
)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def should_sync(event: CalendarEvent, config: BindingConfiguration) -> bool:
    """Return False when any exclusion rule matches *event*."""
    if event.rsvp_status in config.rsvp_exclusion:
        return False
    if event.status in config.status_exclusion:
        return False
    return True


def transform_title(subject: str, config: BindingConfiguration, source_name: str) -> str:
    """Apply the title handling mode (tag placement is handled separately)."""
    match config.title_handling:
        case TitleHandling.rename:
            if _is_blank(config.custom_title):
                return subject
            return f"{config.custom_title} {subject}"
        case TitleHandling.hide:
            if _is_blank(config.custom_title):
                return HIDDEN_TITLE_TEMPLATE.format(source_name=source_name)
            return config.custom_title
        case _:
            return subject


def transform_body(event: CalendarEvent, config: BindingConfiguration) -> str | None:
    if not config.copy_description:
        return None

    body = event.body
    if not _is_blank(config.custom_tag) and not config.custom_tag_in_title:
        body = config.custom_tag if _is_blank(body) else f"{config.custom_tag}\n\n{body}"
    return body


def transform_reminder(event: CalendarEvent, config: BindingConfiguration) -> int | None:
    if config.reminder_handling is ReminderHandling.disable:
        return None
    return event.reminder_minutes_before_start


def transform(
    event: CalendarEvent,
    binding: CalendarBinding,
    new_external_id: str,
) -> CalendarEvent:
    """Shape the copy of *event* that *binding* writes to its target calendar.

    Disabled copy toggles null the corresponding field instead of dropping
    it, so the target always receives a complete event.  The copy carries
    correlation metadata pointing back at the original.
    """
    config = binding.configuration

    subject = transform_title(event.subject, config, binding.name)
    if not _is_blank(config.custom_tag) and config.custom_tag_in_title:
        subject = f"{config.custom_tag} {subject}"

    return CalendarEvent(
        id=str(uuid.uuid4()),
        external_id=new_external_id,
        subject=subject,
        body=transform_body(event, config),
        body_type=event.body_type,
        start=event.start,
        end=event.end,
        location=event.location if config.copy_location else None,
        is_online_meeting=config.copy_location and event.is_online_meeting,
        is_meeting=config.copy_location and event.is_meeting,
        conference_link=event.conference_link if config.copy_conference_link else None,
        organizer=event.organizer if config.copy_participants else None,
        is_all_day=event.is_all_day,
        is_recurring=event.is_recurring,
        status=config.target_status or event.status,
        rsvp_status=event.rsvp_status,
        required_attendees=event.required_attendees if config.copy_participants else (),
        optional_attendees=event.optional_attendees if config.copy_participants else (),
        categories=config.target_category or event.categories,
        is_private=config.mark_as_private or event.is_private,
        has_attachments=config.copy_attachments and event.has_attachments,
        reminder_minutes_before_start=transform_reminder(event, config),
        original_event_id=event.external_id,
        source_binding_id=binding.id,
    )


def changed_fields(desired: CalendarEvent, existing: CalendarEvent) -> list[str]:
    """Return the names of compared fields that differ between two copies."""
    return [
        name for name in COMPARED_FIELDS if getattr(desired, name) != getattr(existing, name)
    ]


def has_changed(desired: CalendarEvent, existing: CalendarEvent) -> bool:
    return bool(changed_fields(desired, existing))
