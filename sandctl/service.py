"""
Wiring shared by the CLI and the HTTP server.

Builds the store, provider resolver, teardown handler and workflow from one
Settings object, plus the per-run create options and boot check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sandctl.config import Settings
from sandctl.models import CreateOptions
from sandctl.providers.base import BaseProvider
from sandctl.providers.registry import ProviderResolver
from sandctl.readiness import ReadinessPoller
from sandctl.remote import boot_finished
from sandctl.store import SessionStore
from sandctl.teardown import TeardownHandler
from sandctl.workflow import ProvisioningWorkflow

logger = logging.getLogger(__name__)

SSH_KEY_NAME = "sandctl"


@dataclass
class Services:
    settings: Settings
    store: SessionStore
    resolver: ProviderResolver
    teardown: TeardownHandler
    workflow: ProvisioningWorkflow

    def close(self) -> None:
        self.resolver.close()


def build_services(
    settings: Settings,
    *,
    store: Optional[SessionStore] = None,
    resolver: Optional[ProviderResolver] = None,
) -> Services:
    store = store or SessionStore(settings.sessions_path)
    resolver = resolver or ProviderResolver(settings)
    teardown = TeardownHandler(store, resolver)
    workflow = ProvisioningWorkflow(
        store, teardown, poller=ReadinessPoller(interval=settings.poll_interval)
    )
    return Services(settings, store, resolver, teardown, workflow)


def create_options_for(
    provider: BaseProvider,
    settings: Settings,
    *,
    region: Optional[str] = None,
    server_type: Optional[str] = None,
    image: Optional[str] = None,
) -> CreateOptions:
    """
    Create options for a new VM on provider.

    Registers the configured SSH public key with the provider when it
    supports key management.
    """
    ssh_key_id = None
    public_key = settings.read_ssh_public_key()
    ensure_ssh_key = getattr(provider, "ensure_ssh_key", None)
    if public_key and ensure_ssh_key is not None:
        ssh_key_id = ensure_ssh_key(SSH_KEY_NAME, public_key)
    elif not public_key:
        logger.warning(
            "SANDCTL_SSH_PUBLIC_KEY is not set; the VM will not accept your SSH key"
        )
    return CreateOptions(
        ssh_key_id=ssh_key_id,
        region=region,
        server_type=server_type,
        image=image,
        user_data=settings.read_user_data(),
    )


def boot_check_for(
    settings: Settings, *, wait_for_boot: Optional[bool] = None
) -> Optional[Callable[[str], bool]]:
    """Boot-finished predicate, or None when waiting for setup is disabled."""
    if wait_for_boot is None:
        wait_for_boot = settings.wait_for_boot
    if not wait_for_boot:
        return None

    def check(address: str) -> bool:
        return boot_finished(
            address, user=settings.ssh_user, private_key=settings.ssh_private_key
        )

    return check
