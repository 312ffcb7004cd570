"""Event intake: map client-reported ``{name, ts, props}`` records onto the log.

Well-known ``props`` keys (snake_case or camelCase) are lifted into event
columns; the whole ``props`` bag is kept as the payload.
"""

from __future__ import annotations

import logging
from typing import Any

from stagewise import event_log
from stagewise.defaults import MAX_INTAKE_BATCH
from stagewise.errors import PayloadTooLarge, ValidationError
from stagewise.models import Event, now_ms, parse_ts, to_iso

log = logging.getLogger("stagewise.intake")


def _prop(props: dict[str, Any], snake: str, camel: str | None = None) -> str | None:
    value = props.get(snake)
    if not value and camel:
        value = props.get(camel)
    return str(value) if value else None


def to_event(raw: dict[str, Any], *, default_ts: int | None = None) -> Event:
    """Convert one intake record into an ``Event`` (not yet appended)."""
    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise ValidationError("Each event needs a name")
    props = raw.get("props") or {}
    if not isinstance(props, dict):
        raise ValidationError(f"Event {name!r}: props must be an object")
    raw_ts = raw.get("ts")
    ts = parse_ts(raw_ts)
    if ts is None:
        if raw_ts not in (None, ""):
            raise ValidationError(f"Event {name!r}: invalid ts {raw_ts!r}")
        ts = default_ts if default_ts is not None else now_ms()
    return Event(
        event_type=name,
        payload=props,
        workspace_id=_prop(props, "workspace_id", "workspaceId"),
        role_id=_prop(props, "role_id", "roleId"),
        user_id=_prop(props, "user_id", "userId"),
        company=_prop(props, "company"),
        timestamp=to_iso(ts),
    )


def ingest(events: Any) -> int:
    """Validate and append a batch; returns the number of events stored.

    The whole batch is validated before anything is written.
    """
    if not isinstance(events, list) or not events:
        raise ValidationError("No events")
    if len(events) > MAX_INTAKE_BATCH:
        raise PayloadTooLarge("Too many events in one request")

    received_at = now_ms()
    converted = []
    for raw in events:
        if not isinstance(raw, dict):
            raise ValidationError("Each event must be an object")
        converted.append(to_event(raw, default_ts=received_at))
    for event in converted:
        event_log.append(event)
    log.info("Stored %d intake event(s)", len(converted))
    return len(converted)
