"""
Pydantic models for API request/response schemas.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from sandctl.models import AnySession, parse_duration, utc_now


# =============================================================================
# Session Endpoint Schemas
# =============================================================================


class CreateSessionRequest(BaseModel):
    """Request body for POST /v1/sessions."""

    provider: Optional[str] = Field(None, description="Provider name")
    timeout: Optional[timedelta] = Field(
        None, description="Auto-destroy timeout, e.g. '30m' or '2h'"
    )
    region: Optional[str] = Field(None, description="Provider region override")
    server_type: Optional[str] = Field(None, description="Server type override")
    image: Optional[str] = Field(None, description="Image override")
    wait_for_boot: Optional[bool] = Field(
        None, description="Wait for cloud-init setup (defaults to server setting)"
    )

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: Optional[timedelta]) -> Optional[timedelta]:
        if value is not None and value <= timedelta(0):
            raise ValueError("timeout must be positive")
        return value


class SessionResponse(BaseModel):
    """A stored session."""

    id: str
    status: str
    provider: Optional[str] = None
    provider_id: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime
    timeout: Optional[str] = None
    timeout_remaining_seconds: Optional[float] = None
    legacy: bool = False

    @classmethod
    def from_session(cls, session: AnySession) -> "SessionResponse":
        record = session.to_record()
        remaining = session.timeout_remaining(utc_now())
        return cls(
            id=session.id,
            status=session.status.value,
            provider=record.get("provider"),
            provider_id=record.get("provider_id") or None,
            ip_address=record.get("ip_address") or None,
            created_at=session.created_at,
            timeout=record.get("timeout"),
            timeout_remaining_seconds=(
                remaining.total_seconds() if remaining is not None else None
            ),
            legacy=session.is_legacy,
        )


class SessionListResponse(BaseModel):
    """Response body for GET /v1/sessions."""

    sessions: List[SessionResponse]


class DestroySessionResponse(BaseModel):
    """Response body for DELETE /v1/sessions/{id}."""

    id: str
    remote_deleted: bool
    local_removed: bool


# =============================================================================
# Health & Error Schemas
# =============================================================================


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="sandctl version")
    providers: List[str] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Error detail structure."""

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    kind: Optional[str] = Field(None, description="sandctl error kind")
    request_id: Optional[str] = Field(None, description="Request ID for debugging")
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail
