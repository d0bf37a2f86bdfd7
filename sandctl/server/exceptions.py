"""
HTTP exception types for the API server.
"""

from typing import Dict, Optional

from sandctl.exceptions import ErrorKind, SandctlError


class APIError(Exception):
    """Base exception for API errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, request_id: Optional[str] = None) -> None:
        self.message = message
        self.request_id = request_id
        super().__init__(message)


class AuthenticationError(APIError):
    """Invalid or missing authentication credentials."""

    status_code = 401
    code = "authentication_error"


class BadRequestError(APIError):
    """Request is well-formed but cannot be served as asked."""

    status_code = 400
    code = "bad_request"


KIND_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE_ID: 409,
    ErrorKind.VALIDATION: 422,
    ErrorKind.PROVISIONING: 502,
    ErrorKind.READINESS_TIMEOUT: 504,
    ErrorKind.STORE_IO: 500,
    ErrorKind.POOL_EXHAUSTED: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.LEGACY_SESSION: 409,
    ErrorKind.CANCELLED: 409,
    ErrorKind.CONFIRMATION_REQUIRED: 400,
    ErrorKind.CONFIG: 500,
    ErrorKind.PROVIDER: 502,
    ErrorKind.REMOTE_NOT_FOUND: 404,
    ErrorKind.PROVIDER_AUTH: 502,
    ErrorKind.QUOTA_EXCEEDED: 503,
    ErrorKind.PROVISION_FAILED: 502,
    ErrorKind.REMOTE_DELETE: 502,
    ErrorKind.INTERNAL: 500,
}


def status_for(exc: SandctlError) -> int:
    """HTTP status code for a sandctl error."""
    return KIND_STATUS.get(exc.kind, 500)
