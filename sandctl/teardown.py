"""
Destroying sessions: remote VM first, then the local record.

A failed remote delete is verified with one follow-up lookup. If the VM is
gone the delete counts as done; otherwise RemoteDeleteError is raised and the
local record is kept so the user can retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sandctl import telemetry
from sandctl.exceptions import (
    ConfirmationRequiredError,
    LegacySessionError,
    ProviderError,
    RemoteDeleteError,
    RemoteNotFoundError,
    SandctlError,
)
from sandctl.models import ProviderSession
from sandctl.providers.base import BaseProvider
from sandctl.store import SessionStore

logger = logging.getLogger(__name__)

ProviderLookup = Callable[[str], BaseProvider]


@dataclass(frozen=True)
class TeardownResult:
    session_id: str
    remote_deleted: bool
    local_removed: bool


class TeardownHandler:
    """
    Removes sessions and the VMs behind them.

    Args:
        store: Session registry
        resolve_provider: Maps a provider name to a provider instance
    """

    def __init__(self, store: SessionStore, resolve_provider: ProviderLookup) -> None:
        self.store = store
        self.resolve_provider = resolve_provider

    def destroy(self, session_id: str, *, force_confirm: bool = False) -> TeardownResult:
        """
        Destroy a session.

        Raises:
            NotFoundError: Unknown session id.
            LegacySessionError: Legacy record without force_confirm.
            ConfirmationRequiredError: force_confirm not given.
            RemoteDeleteError: The VM could not be deleted and still exists.
        """
        session = self.store.get(session_id)

        if session.is_legacy:
            if not force_confirm:
                raise LegacySessionError(session.id)
            self.store.remove(session.id)
            logger.info("Removed legacy session %s locally", session.id)
            return TeardownResult(session.id, remote_deleted=False, local_removed=True)

        if not force_confirm:
            raise ConfirmationRequiredError(session.id)

        with telemetry.span(
            "sandctl.destroy",
            session_id=session.id,
            provider=session.provider_name,
        ):
            remote_deleted = False
            if session.provider_id:
                remote_deleted = self._delete_remote(session)
            else:
                logger.info("Session %s has no VM to delete", session.id)

            local_removed = True
            try:
                self.store.remove(session.id)
            except SandctlError as exc:
                local_removed = False
                logger.warning(
                    "VM for session %s was deleted but the local record could "
                    "not be removed: %s",
                    session.id,
                    exc,
                )

        return TeardownResult(session.id, remote_deleted, local_removed)

    def _delete_remote(self, session: ProviderSession) -> bool:
        provider = self.resolve_provider(session.provider_name)
        provider_id = session.provider_id
        try:
            provider.delete(provider_id)
        except RemoteNotFoundError:
            logger.info("VM %s for session %s was already gone", provider_id, session.id)
            return True
        except ProviderError as exc:
            if self._confirm_absent(provider, provider_id):
                logger.info(
                    "Delete of VM %s reported %s but the VM is gone", provider_id, exc
                )
                return True
            raise RemoteDeleteError(
                f"failed to delete VM {provider_id} for session '{session.id}': "
                f"{exc.message}",
                provider=provider.name,
                status_code=exc.status_code,
                details={"id": session.id, "provider_id": provider_id},
            ) from exc
        logger.info("Deleted VM %s for session %s", provider_id, session.id)
        return True

    @staticmethod
    def _confirm_absent(provider: BaseProvider, provider_id: str) -> bool:
        try:
            provider.get(provider_id)
        except RemoteNotFoundError:
            return True
        except ProviderError as exc:
            logger.debug("Could not verify deletion of %s: %s", provider_id, exc)
        return False

    def rollback(self, provider: BaseProvider, provider_id: str) -> bool:
        """Best-effort delete of a half-provisioned VM. Never raises."""
        try:
            provider.delete(provider_id)
        except RemoteNotFoundError:
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to clean up VM %s: %s", provider_id, exc)
            return False
        logger.info("Cleaned up VM %s", provider_id)
        return True
