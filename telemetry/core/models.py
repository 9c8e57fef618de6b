# ==============================================================================
# Telemetry Domain Models
# ==============================================================================
"""
Pydantic models for canonical telemetry events and derived sessions.

These models are used for:
- Typing events after normalization and before storage
- Rebuilding events read back from the store
- Type safety throughout ingestion and aggregation

This module is part of the core domain layer and has no external dependencies
beyond Pydantic.
"""

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

SUPPORTED_SCHEMA = "jwc.v1"

ANON_ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")
MAX_FIELD_LENGTH = 30

DEFAULT_OS = "unknown"
DEFAULT_VERSION = "0.0.0"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class EventName(str, Enum):
    """The closed set of recognized event names."""

    LIFECYCLE_ACTIVATE = "lifecycle.activate"
    LIFECYCLE_DEACTIVATE = "lifecycle.deactivate"
    EXTENSION_UPGRADED = "extension.upgraded"
    RUN_STARTED = "java.run.started"
    RUN_COMPLETED = "java.run.completed"
    RUN_ERROR = "java.run.error"
    WEBVIEW_OPEN = "feature.webview.open"
    THEME_CHANGE = "feature.theme.change"
    CUSTOM_CSS_ENABLE = "feature.customCss.enable"
    CUSTOM_CSS_DISABLE = "feature.customCss.disable"
    SETTINGS_CHANGED = "settings.changed"
    ERROR_UNHANDLED = "error.unhandled"
    TELEMETRY_OPTOUT = "telemetry.optout"
    TELEMETRY_OPTIN = "telemetry.optin"
    TEST_PING = "test.ping"
    INSTALL_CREATED = "install.created"


EVENT_NAMES = frozenset(e.value for e in EventName)


class EventMetadata(BaseModel):
    """
    Optional per-event metrics.

    Fields the aggregator depends on are typed; any other key the client sends
    is kept as a pydantic extra and round-trips through storage untouched.
    Older clients use different spellings for some keys, accepted here as
    validation aliases.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    duration_ms: Optional[int] = Field(None, alias="durationMs")
    wait_ms_total: Optional[int] = Field(None, alias="waitMsTotal")
    exit_code: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("exitCode", "exit"),
        serialization_alias="exitCode",
    )
    session_id: Optional[str] = Field(None, alias="sessionId")
    output_bytes_bucket: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("outputBytesBucket", "cumulativeBytesBucket"),
        serialization_alias="outputBytesBucket",
    )
    scanner_usage: Optional[bool] = Field(None, alias="scannerUsage")
    truncated_output: Optional[bool] = Field(None, alias="truncatedOutput")
    error_phase: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("errorPhase", "phase"),
        serialization_alias="errorPhase",
    )
    exception_hash: Optional[str] = Field(None, alias="exceptionHash")

    @field_validator("scanner_usage", "truncated_output", mode="before")
    @classmethod
    def _strict_flag(cls, value: Any) -> Optional[bool]:
        """Only real booleans count; anything else is treated as absent."""
        return value if isinstance(value, bool) else None

    @field_validator(
        "session_id", "output_bytes_bucket", "error_phase", "exception_hash", mode="before"
    )
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(value)
        return value

    def to_json(self) -> dict[str, Any]:
        """Serialize with client-facing key names, dropping absent fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class GeoLocation(BaseModel):
    """Geography attached at ingestion time. Empty strings mean unknown."""

    model_config = ConfigDict(frozen=True)

    country: str = ""
    region: str = ""


class CanonicalEvent(BaseModel):
    """
    A validated, normalized telemetry record.

    Attributes:
        schema_version: Always "jwc.v1"
        anon_id: Client-generated pseudonymous id, 32 lowercase hex chars
        event_name: One of EventName
        timestamp_ms: Unix timestamp in milliseconds
        os: Client operating system (bounded length)
        ext_version: Extension version (bounded length)
        host_app_version: Host editor version (bounded length)
        metadata: Typed metrics plus unknown keys
        geo: Country/region resolved from the request
    """

    schema_version: str = Field(SUPPORTED_SCHEMA, description="Envelope schema tag")
    anon_id: str = Field(..., description="Anonymous visitor identifier")
    event_name: EventName = Field(..., description="Event name")
    timestamp_ms: int = Field(..., description="Unix timestamp in milliseconds")
    os: str = Field(DEFAULT_OS, description="Operating system")
    ext_version: str = Field(DEFAULT_VERSION, description="Extension version")
    host_app_version: str = Field(DEFAULT_VERSION, description="Host application version")
    metadata: EventMetadata = Field(default_factory=EventMetadata)
    geo: GeoLocation = Field(default_factory=GeoLocation)

    @property
    def event_time(self) -> datetime:
        """Convert timestamp to an aware UTC datetime."""
        return EPOCH + timedelta(milliseconds=self.timestamp_ms)

    @property
    def session_id(self) -> Optional[str]:
        return self.metadata.session_id

    def to_db_record(self) -> dict:
        """Convert event to database record format."""
        m = self.metadata
        metadata_json = m.to_json()
        return {
            "t": self.event_time,
            "anon": self.anon_id,
            "evt": self.event_name.value,
            "os": self.os,
            "ext": self.ext_version,
            "vscode": self.host_app_version,
            "country": self.geo.country or None,
            "region": self.geo.region or None,
            "duration_ms": m.duration_ms,
            "wait_ms_total": m.wait_ms_total,
            "exit_code": m.exit_code,
            "session_id": m.session_id,
            "out_bytes_bucket": m.output_bytes_bucket,
            "scanner_usage": m.scanner_usage,
            "truncated_output": m.truncated_output,
            "error_phase": m.error_phase,
            "exception_hash": m.exception_hash,
            "m": metadata_json or None,
        }

    @classmethod
    def from_db_record(cls, row: dict) -> "CanonicalEvent":
        """Rebuild an event from a stored row."""
        t: datetime = row["t"]
        return cls(
            anon_id=row["anon"],
            event_name=row["evt"],
            timestamp_ms=(t - EPOCH) // timedelta(milliseconds=1),
            os=row.get("os") or DEFAULT_OS,
            ext_version=row.get("ext") or DEFAULT_VERSION,
            host_app_version=row.get("vscode") or DEFAULT_VERSION,
            metadata=EventMetadata.model_validate(row.get("m") or {}),
            geo=GeoLocation(country=row.get("country") or "", region=row.get("region") or ""),
        )


class SessionState(str, Enum):
    """Lifecycle state inferred for a session."""

    STARTED = "started"
    ACTIVE = "active"
    COMPLETED = "completed"


class Session(BaseModel):
    """
    A run session reconstructed from events sharing a session id.

    Sessions are never stored; they are folded from the event stream on
    every query.

    Attributes:
        session_id: Grouping key taken from event metadata
        anon_id: Visitor that produced the session
        started_at: Earliest event timestamp (ms)
        last_at: Latest event timestamp (ms)
        completed: Whether a run-completed event was observed
        exit_code: Exit code from the completion event, if any
        duration_ms: Duration from the completion event, if any
        interactive: Whether the run read from stdin (scannerUsage)
    """

    session_id: str
    anon_id: str = ""
    started_at: int
    last_at: int
    completed: bool = False
    exit_code: Optional[int] = None
    duration_ms: Optional[int] = None
    interactive: Optional[bool] = None

    def state(self, now_ms: int, activity_threshold_ms: int) -> SessionState:
        """Infer the lifecycle state as of now_ms."""
        if self.completed:
            return SessionState.COMPLETED
        if now_ms - self.last_at <= activity_threshold_ms:
            return SessionState.ACTIVE
        return SessionState.STARTED
