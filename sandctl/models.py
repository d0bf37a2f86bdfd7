from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from sandctl.exceptions import ValidationError
from sandctl.names import normalize_name


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """
    Lifecycle state of a session.

    Transitions only move forward:
        provisioning -> running | failed
        running      -> stopped | failed
    stopped and failed are terminal.
    """

    PROVISIONING = "provisioning"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.PROVISIONING, SessionStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.STOPPED, SessionStatus.FAILED)

    def can_transition_to(self, target: "SessionStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: Dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PROVISIONING: frozenset(
        {SessionStatus.RUNNING, SessionStatus.FAILED}
    ),
    SessionStatus.RUNNING: frozenset({SessionStatus.STOPPED, SessionStatus.FAILED}),
    SessionStatus.STOPPED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


# Go-style durations ("1h30m0s") keep older session files readable.
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_FRACTION_OVERFLOW = re.compile(r"(\.\d{6})\d+")


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """
    Parse a duration such as "2h", "1h30m0s" or "45s".

    Bare numbers are nanoseconds, matching how older session files were
    written.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(microseconds=value / 1000)

    text = value.strip()
    if text == "0":
        return timedelta(0)
    sign = 1
    if text[:1] in ("-", "+"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=sign * total)


def format_duration(value: timedelta) -> str:
    """Format a timedelta the way parse_duration reads it back ("2h0m0s")."""
    total_us = value // timedelta(microseconds=1)
    if total_us == 0:
        return "0s"
    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)
    hours, rem = divmod(total_us, 3_600_000_000)
    minutes, rem = divmod(rem, 60_000_000)
    seconds, micros = divmod(rem, 1_000_000)
    sec_text = str(seconds) if not micros else f"{seconds}.{micros:06d}".rstrip("0")
    if hours:
        return f"{sign}{hours}h{minutes}m{sec_text}s"
    if minutes:
        return f"{sign}{minutes}m{sec_text}s"
    return f"{sign}{sec_text}s"


class Session(BaseModel):
    """
    Local record tracking one remote sandbox VM.

    Use ProviderSession for records created by current sandctl and
    LegacySession for records without provider attribution; parse_session()
    picks the right one when loading from disk.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    status: SessionStatus = SessionStatus.PROVISIONING
    created_at: datetime = Field(default_factory=utc_now)
    timeout: Optional[timedelta] = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_name(value)
        return value

    @field_validator("created_at", mode="before")
    @classmethod
    def _trim_fraction(cls, value: Any) -> Any:
        # Timestamps written with nanosecond precision.
        if isinstance(value, str):
            return _FRACTION_OVERFLOW.sub(r"\1", value)
        return value

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return parse_duration(value)

    @field_serializer("timeout")
    def _serialize_timeout(self, value: Optional[timedelta]) -> Optional[str]:
        return format_duration(value) if value is not None else None

    @property
    def is_legacy(self) -> bool:
        return True

    def validate_for_persist(self) -> None:
        """Raise ValidationError if the record is missing required fields."""
        if not self.id:
            raise ValidationError("session ID is required", field="id")

    def with_status(self, status: SessionStatus) -> "Session":
        return self.model_copy(update={"status": status})

    def timeout_remaining(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Time left before auto-destroy, or None if the session has no timeout."""
        if self.timeout is None:
            return None
        now = now or utc_now()
        remaining = self.created_at + self.timeout - now
        return max(remaining, timedelta(0))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        remaining = self.timeout_remaining(now)
        return remaining is not None and remaining <= timedelta(0)

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utc_now()) - self.created_at

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready dict in the on-disk field naming."""
        return self.model_dump(mode="json", by_alias=True)


class ProviderSession(Session):
    """Session owned by a provider backend."""

    provider_name: str = Field(alias="provider", min_length=1)
    provider_id: str = ""
    network_address: str = Field(default="", alias="ip_address")

    @field_validator("provider_id", "network_address", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_legacy(self) -> bool:
        return False

    def validate_for_persist(self) -> None:
        super().validate_for_persist()
        if self.status == SessionStatus.RUNNING:
            if not self.provider_id:
                raise ValidationError(
                    f"running session '{self.id}' requires a provider ID",
                    field="provider_id",
                )
            if not self.network_address:
                raise ValidationError(
                    f"running session '{self.id}' requires an IP address",
                    field="ip_address",
                )


class LegacySession(Session):
    """Record from an older sandctl with no provider attribution.

    Only eligible for local removal.
    """


AnySession = Union[ProviderSession, LegacySession]


def parse_session(record: Mapping[str, Any]) -> AnySession:
    """Build the right session variant from an on-disk record."""
    if record.get("provider"):
        return ProviderSession.model_validate(record)
    return LegacySession.model_validate(record)


class VMStatus(str, Enum):
    """Provider-agnostic state of a virtual machine."""

    PROVISIONING = "provisioning"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DELETING = "deleting"
    FAILED = "failed"


class VM(BaseModel):
    """A virtual machine as reported by a provider."""

    id: str
    name: str = ""
    status: VMStatus = VMStatus.PROVISIONING
    address: str = ""
    created_at: Optional[datetime] = None
    region: str = ""
    server_type: str = ""


class CreateOptions(BaseModel):
    """Options for creating a new VM. Unset fields use provider defaults."""

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    ssh_key_id: Optional[str] = None
    region: Optional[str] = None
    server_type: Optional[str] = None
    image: Optional[str] = None
    user_data: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
