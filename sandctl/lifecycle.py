"""
Lifecycle maintenance for stored sessions.

- sync_sessions: bring local status and addresses in line with what the
  providers report
- reap_expired: destroy sessions whose auto-destroy timeout has elapsed
- LifecycleMonitor: run both periodically on a daemon thread

Usage:
    monitor = LifecycleMonitor(store, teardown, resolver, interval=60)
    monitor.start()
    ...
    monitor.stop()
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from sandctl import telemetry
from sandctl.exceptions import NotFoundError, SandctlError
from sandctl.models import VM, ProviderSession, SessionStatus, VMStatus, utc_now
from sandctl.store import SessionStore
from sandctl.teardown import ProviderLookup, TeardownHandler

logger = logging.getLogger(__name__)

_VM_TO_SESSION = {
    VMStatus.RUNNING: SessionStatus.RUNNING,
    VMStatus.PROVISIONING: SessionStatus.PROVISIONING,
    VMStatus.STARTING: SessionStatus.PROVISIONING,
    VMStatus.STOPPING: SessionStatus.STOPPED,
    VMStatus.STOPPED: SessionStatus.STOPPED,
    VMStatus.DELETING: SessionStatus.STOPPED,
    VMStatus.FAILED: SessionStatus.FAILED,
}


def status_from_vm(vm_status: VMStatus) -> SessionStatus:
    """Session status corresponding to a provider VM status."""
    return _VM_TO_SESSION.get(vm_status, SessionStatus.FAILED)


def _reconcile(session: ProviderSession, vm: Optional[VM]) -> Optional[ProviderSession]:
    """The corrected record for session, or None if nothing changes."""
    if vm is None:
        if session.status == SessionStatus.RUNNING:
            target = SessionStatus.STOPPED
        elif session.status == SessionStatus.PROVISIONING:
            target = SessionStatus.FAILED
        else:
            return None
        return session.with_status(target)

    target = status_from_vm(vm.status)
    address = vm.address or session.network_address
    if target == SessionStatus.RUNNING and not address:
        target = session.status
    if target != session.status and not session.status.can_transition_to(target):
        target = session.status

    update = {}
    if target != session.status:
        update["status"] = target
    if address != session.network_address and session.status.is_active:
        update["network_address"] = address
    if not update:
        return None
    return session.model_copy(update=update)


def sync_sessions(store: SessionStore, resolve_provider: ProviderLookup) -> List[ProviderSession]:
    """
    Refresh active provider sessions from their providers.

    A session whose VM no longer exists moves Running -> Stopped or
    Provisioning -> Failed. Legacy records are left alone. A provider that
    cannot be listed is skipped with a warning.

    Returns the records that changed.
    """
    by_provider: Dict[str, List[ProviderSession]] = {}
    for session in store.list_active():
        if session.is_legacy:
            continue
        by_provider.setdefault(session.provider_name, []).append(session)

    changed: List[ProviderSession] = []
    for provider_name, sessions in by_provider.items():
        try:
            vms = resolve_provider(provider_name).list()
        except SandctlError as exc:
            logger.warning("Could not list VMs from %s: %s", provider_name, exc)
            continue
        vms_by_id = {vm.id: vm for vm in vms}

        for session in sessions:
            # No VM id yet: intake only, nothing to compare against.
            if not session.provider_id:
                continue
            updated = _reconcile(session, vms_by_id.get(session.provider_id))
            if updated is None:
                continue
            try:
                changed.append(store.update_session(updated))
            except SandctlError as exc:
                logger.warning("Could not sync session %s: %s", session.id, exc)
                continue
            logger.info(
                "Synced session %s: %s -> %s",
                session.id,
                session.status.value,
                updated.status.value,
            )
    return changed


def reap_expired(
    store: SessionStore,
    teardown: TeardownHandler,
    now: Optional[datetime] = None,
) -> List[str]:
    """Destroy active provider sessions past their timeout. Returns their ids."""
    now = now or utc_now()
    destroyed: List[str] = []
    for session in store.list_active():
        if session.is_legacy or not session.is_expired(now):
            continue
        try:
            teardown.destroy(session.id, force_confirm=True)
        except NotFoundError:
            continue
        except SandctlError as exc:
            logger.error("Failed to destroy expired session %s: %s", session.id, exc)
            continue
        telemetry.log(
            "info",
            "destroyed expired session",
            session_id=session.id,
            age_seconds=session.age(now).total_seconds(),
        )
        destroyed.append(session.id)
    return destroyed


class LifecycleMonitor:
    """
    Runs sync_sessions and reap_expired every interval seconds.

    Thread-safe start/stop. The worker is a daemon thread and wakes early
    when stop() is called.
    """

    def __init__(
        self,
        store: SessionStore,
        teardown: TeardownHandler,
        resolve_provider: ProviderLookup,
        interval: float,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._store = store
        self._teardown = teardown
        self._resolve_provider = resolve_provider
        self._interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._loop, name="sandctl-lifecycle", daemon=True
            )
            self._thread.start()
        logger.info("Lifecycle monitor started (interval=%.1fs)", self._interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None:
            thread.join(timeout)
        logger.info("Lifecycle monitor stopped")

    def run_once(self) -> None:
        """One sync + reap pass."""
        try:
            sync_sessions(self._store, self._resolve_provider)
            reap_expired(self._store, self._teardown)
        except SandctlError as exc:
            logger.error("Lifecycle pass failed: %s", exc)

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self._interval)
