"""
sandctl - Provision, track and tear down sandbox VMs.

Provisioning a session:
    from sandctl import SessionStore, TeardownHandler, ProvisioningWorkflow
    from sandctl.providers import ProviderResolver

    store = SessionStore("~/.sandctl/sessions.json")
    resolver = ProviderResolver()
    workflow = ProvisioningWorkflow(store, TeardownHandler(store, resolver))
    session = workflow.provision(resolver("hetzner"), ready_timeout=300)

Destroying it:
    TeardownHandler(store, resolver).destroy(session.id, force_confirm=True)

Error handling:
    from sandctl import ErrorKind, is_error_kind

    if is_error_kind(exc, ErrorKind.READINESS_TIMEOUT):
        ...
"""

__version__ = "0.3.0"

# =============================================================================
# Core API
# =============================================================================
from sandctl.store import SessionStore  # noqa: F401, E402
from sandctl.workflow import (  # noqa: F401, E402
    ProvisioningContext,
    ProvisioningWorkflow,
    Step,
)
from sandctl.teardown import TeardownHandler, TeardownResult  # noqa: F401, E402
from sandctl.readiness import ReadinessPoller  # noqa: F401, E402
from sandctl.names import NAME_POOL, generate_name, normalize_name  # noqa: F401, E402

# =============================================================================
# Data types
# =============================================================================
from sandctl.models import (  # noqa: F401, E402
    VM,
    CreateOptions,
    LegacySession,
    ProviderSession,
    Session,
    SessionStatus,
    VMStatus,
    parse_session,
)

# =============================================================================
# Errors
# =============================================================================
from sandctl.exceptions import (  # noqa: F401, E402
    ConfirmationRequiredError,
    DuplicateIDError,
    ErrorKind,
    InvalidTransitionError,
    LegacySessionError,
    NotFoundError,
    OperationCancelledError,
    PoolExhaustedError,
    ProviderError,
    ProvisioningError,
    ReadinessTimeoutError,
    SandctlError,
    StoreIOError,
    ValidationError,
    is_error_kind,
)

__all__ = [
    "__version__",
    "SessionStore",
    "ProvisioningContext",
    "ProvisioningWorkflow",
    "Step",
    "TeardownHandler",
    "TeardownResult",
    "ReadinessPoller",
    "NAME_POOL",
    "generate_name",
    "normalize_name",
    "VM",
    "CreateOptions",
    "LegacySession",
    "ProviderSession",
    "Session",
    "SessionStatus",
    "VMStatus",
    "parse_session",
    "ConfirmationRequiredError",
    "DuplicateIDError",
    "ErrorKind",
    "InvalidTransitionError",
    "LegacySessionError",
    "NotFoundError",
    "OperationCancelledError",
    "PoolExhaustedError",
    "ProviderError",
    "ProvisioningError",
    "ReadinessTimeoutError",
    "SandctlError",
    "StoreIOError",
    "ValidationError",
    "is_error_kind",
]
