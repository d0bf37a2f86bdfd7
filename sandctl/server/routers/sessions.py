"""
Session management endpoints.

GET /v1/sessions - List sessions (active only unless ?all=true)
POST /v1/sessions - Reserve a session and provision it in the background
GET /v1/sessions/{id} - Get one session
DELETE /v1/sessions/{id} - Destroy a session and its VM
"""
import logging
import threading
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from sandctl.exceptions import ProvisioningError
from sandctl.models import ProviderSession
from sandctl.providers.base import BaseProvider
from sandctl.providers.registry import list_providers
from sandctl.server.auth import get_api_key
from sandctl.server.exceptions import BadRequestError
from sandctl.server.schemas import (
    CreateSessionRequest,
    DestroySessionResponse,
    SessionListResponse,
    SessionResponse,
)
from sandctl.service import Services, boot_check_for, create_options_for
from sandctl.workflow import Step

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


def get_services(request: Request) -> Services:
    return request.app.state.services


def _provision(
    services: Services,
    session: ProviderSession,
    steps: List[Step],
    provider: BaseProvider,
    cancel: threading.Event,
) -> None:
    try:
        services.workflow.run(session, steps, provider=provider, cancel=cancel)
    except ProvisioningError as exc:
        logger.warning("Provisioning of session %s failed: %s", session.id, exc)


@router.get("", response_model=SessionListResponse)
def list_sessions(
    include_all: bool = Query(False, alias="all"),
    services: Services = Depends(get_services),
    api_key: str = Depends(get_api_key),
) -> SessionListResponse:
    """List sessions. Stopped and failed sessions are included with ?all=true."""
    sessions = services.store.list() if include_all else services.store.list_active()
    return SessionListResponse(
        sessions=[SessionResponse.from_session(s) for s in sessions]
    )


@router.post("", response_model=SessionResponse, status_code=202)
def create_session(
    request_body: CreateSessionRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    services: Services = Depends(get_services),
    api_key: str = Depends(get_api_key),
) -> SessionResponse:
    """
    Reserve a new session.

    The session is returned in the provisioning state; poll
    GET /v1/sessions/{id} until it is running or failed.
    """
    settings = services.settings
    provider_name = request_body.provider or settings.default_provider
    if provider_name not in list_providers():
        raise BadRequestError(f"Unknown provider: {provider_name}")

    provider = services.resolver(provider_name)
    options = create_options_for(
        provider,
        settings,
        region=request_body.region,
        server_type=request_body.server_type,
        image=request_body.image,
    )
    steps = services.workflow.build_steps(
        provider,
        options,
        ready_timeout=settings.ready_timeout,
        boot_check=boot_check_for(settings, wait_for_boot=request_body.wait_for_boot),
        boot_timeout=settings.boot_timeout,
    )

    session = services.workflow.intake(provider_name, timeout=request_body.timeout)
    background_tasks.add_task(
        _provision, services, session, steps, provider, request.app.state.cancel
    )
    return SessionResponse.from_session(session)


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    services: Services = Depends(get_services),
    api_key: str = Depends(get_api_key),
) -> SessionResponse:
    """Get one session by name (case-insensitive)."""
    return SessionResponse.from_session(services.store.get(session_id))


@router.delete("/{session_id}", response_model=DestroySessionResponse)
def destroy_session(
    session_id: str,
    services: Services = Depends(get_services),
    api_key: str = Depends(get_api_key),
) -> DestroySessionResponse:
    """
    Destroy a session: delete its VM, then the local record.

    Legacy sessions are only removed locally.
    """
    result = services.teardown.destroy(session_id, force_confirm=True)
    return DestroySessionResponse(
        id=result.session_id,
        remote_deleted=result.remote_deleted,
        local_removed=result.local_removed,
    )
