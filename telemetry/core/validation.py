# ==============================================================================
# Event Normalizer & Validator - Pure Domain Logic
# ==============================================================================
"""
Turns untyped client payloads into CanonicalEvent records.

normalize_event() coerces and defaults a raw event and rejects anything that
cannot become a trustworthy record. validate_event() re-checks the same
invariants on a record that already exists, so a record built elsewhere (or
modified after construction) is checked again before it is stored.

Both are pure functions: no I/O, no logging, no mutation of their input.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from telemetry.core.models import (
    ANON_ID_PATTERN,
    DEFAULT_OS,
    DEFAULT_VERSION,
    EPOCH,
    EVENT_NAMES,
    MAX_FIELD_LENGTH,
    SUPPORTED_SCHEMA,
    CanonicalEvent,
    EventMetadata,
)

# Timestamps below this are taken to be in seconds. Anything legitimately
# before 2001-09-09 is misread, which no client clock can produce.
SECONDS_THRESHOLD = 1e12

# Largest timestamp representable as a datetime (9999-12-31T23:59:59.999Z)
MAX_TIMESTAMP_MS = 253402300799999


def validate_envelope(body: Any) -> bool:
    """Check that a request body is an object carrying the supported schema tag."""
    return isinstance(body, dict) and body.get("schema") == SUPPORTED_SCHEMA


def coerce_timestamp(value: Any) -> Optional[int]:
    """
    Convert a client timestamp to epoch milliseconds.

    Accepts numbers, numeric strings and ISO-8601 strings. Numeric values
    below 1e12 are treated as seconds and scaled by 1000; values already in
    milliseconds are never rescaled.

    Returns:
        Integer epoch milliseconds, or None if the value is unusable
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, str):
        text = value.strip()
        try:
            number = float(text)
        except ValueError:
            parsed = _parse_iso_timestamp(text)
            if parsed is None or not 0 <= parsed <= MAX_TIMESTAMP_MS:
                return None
            return parsed
    elif isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    if number < SECONDS_THRESHOLD:
        number *= 1000
    if number < 0 or number > MAX_TIMESTAMP_MS:
        return None
    return int(number)


def _parse_iso_timestamp(text: str) -> Optional[int]:
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int((parsed - EPOCH).total_seconds() * 1000)


def _bounded(value: str) -> bool:
    return len(value) <= MAX_FIELD_LENGTH


def normalize_event(raw: Any) -> Optional[CanonicalEvent]:
    """
    Normalize one raw client event.

    Steps, in order:
    1. Coerce "t" to epoch milliseconds (seconds heuristic included)
    2. Default missing "os"/"ext"/"vscode" values
    3. Reject a malformed "anon", an unknown "evt", or an oversized field
    4. Parse "m" into typed metadata (an uncoercible typed field rejects)

    Args:
        raw: Untrusted, client-controlled value

    Returns:
        CanonicalEvent with empty geography, or None if the event is rejected
    """
    if not isinstance(raw, dict):
        return None

    timestamp_ms = coerce_timestamp(raw.get("t"))
    if timestamp_ms is None:
        return None

    os_name = raw.get("os") if isinstance(raw.get("os"), str) else DEFAULT_OS
    ext = raw.get("ext") if isinstance(raw.get("ext"), str) else DEFAULT_VERSION
    vscode = raw.get("vscode") if isinstance(raw.get("vscode"), str) else DEFAULT_VERSION

    anon = raw.get("anon")
    if not isinstance(anon, str) or not ANON_ID_PATTERN.fullmatch(anon):
        return None
    evt = raw.get("evt")
    if not isinstance(evt, str) or evt not in EVENT_NAMES:
        return None
    if not (_bounded(os_name) and _bounded(ext) and _bounded(vscode)):
        return None

    m = dict(raw["m"]) if isinstance(raw.get("m"), dict) else {}
    # Some clients send the session id next to the event rather than in m
    if "sessionId" not in m and raw.get("sessionId") is not None:
        m["sessionId"] = raw["sessionId"]

    try:
        metadata = EventMetadata.model_validate(m)
    except ValidationError:
        return None

    return CanonicalEvent(
        anon_id=anon,
        event_name=evt,
        timestamp_ms=timestamp_ms,
        os=os_name,
        ext_version=ext,
        host_app_version=vscode,
        metadata=metadata,
    )


def validate_event(event: Any) -> bool:
    """
    Re-check canonical invariants on an already-normalized record.

    Pydantic does not re-validate on attribute assignment, so a record can
    drift from its invariants after construction; this check does not trust
    the model type alone.
    """
    if not isinstance(event, CanonicalEvent):
        return False
    if event.schema_version != SUPPORTED_SCHEMA:
        return False
    if isinstance(event.timestamp_ms, bool) or not isinstance(event.timestamp_ms, int):
        return False
    if not 0 <= event.timestamp_ms <= MAX_TIMESTAMP_MS:
        return False
    if not isinstance(event.anon_id, str) or not ANON_ID_PATTERN.fullmatch(event.anon_id):
        return False
    name = getattr(event.event_name, "value", event.event_name)
    if not isinstance(name, str) or name not in EVENT_NAMES:
        return False
    for value in (event.os, event.ext_version, event.host_app_version):
        if not isinstance(value, str) or not _bounded(value):
            return False
    return True
