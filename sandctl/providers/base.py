from __future__ import annotations

import threading
from typing import List, Optional

from sandctl.models import VM, CreateOptions


class BaseProvider:
    """
    Interface every VM backend implements.

    Methods raise ProviderError subclasses: RemoteNotFoundError when the VM
    does not exist, ProviderAuthError for bad credentials,
    QuotaExceededError and ProvisionFailedError from create().
    """

    name = "base"

    def create(self, options: CreateOptions) -> VM:
        raise NotImplementedError

    def get(self, provider_id: str) -> VM:
        raise NotImplementedError

    def delete(self, provider_id: str) -> None:
        """Delete a VM. Deleting a VM that no longer exists succeeds."""
        raise NotImplementedError

    def list(self) -> List[VM]:
        """VMs managed by sandctl."""
        raise NotImplementedError

    def wait_ready(
        self,
        provider_id: str,
        timeout: float,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Block until the VM is running and reachable."""
        raise NotImplementedError

    def close(self) -> None:
        """Release client resources."""
