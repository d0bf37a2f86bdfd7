from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from sandctl.lifecycle import LifecycleMonitor, reap_expired, status_from_vm, sync_sessions
from sandctl.models import ProviderSession, SessionStatus, VMStatus
from sandctl.store import SessionStore
from sandctl.teardown import TeardownHandler
from tests.providers.fake_provider import FakeProvider, provider_error


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions.json")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


def _resolver(provider: FakeProvider):
    return lambda name: provider


def _add(store: SessionStore, name: str, status: SessionStatus, provider_id: str = "",
         address: str = "", **kwargs) -> None:
    store.add(
        ProviderSession(
            id=name,
            provider_name="fake",
            status=status,
            provider_id=provider_id,
            network_address=address,
            **kwargs,
        )
    )


@pytest.mark.parametrize(
    "vm_status, expected",
    [
        (VMStatus.RUNNING, SessionStatus.RUNNING),
        (VMStatus.PROVISIONING, SessionStatus.PROVISIONING),
        (VMStatus.STARTING, SessionStatus.PROVISIONING),
        (VMStatus.STOPPING, SessionStatus.STOPPED),
        (VMStatus.STOPPED, SessionStatus.STOPPED),
        (VMStatus.DELETING, SessionStatus.STOPPED),
        (VMStatus.FAILED, SessionStatus.FAILED),
    ],
)
def test_status_from_vm(vm_status: VMStatus, expected: SessionStatus) -> None:
    assert status_from_vm(vm_status) == expected


def test_sync_marks_vanished_vms(store: SessionStore, provider: FakeProvider) -> None:
    _add(store, "alice", SessionStatus.RUNNING, "1", "10.0.0.1")
    _add(store, "bob", SessionStatus.PROVISIONING, "2")

    changed = sync_sessions(store, _resolver(provider))

    assert {s.id for s in changed} == {"alice", "bob"}
    assert store.get("alice").status == SessionStatus.STOPPED
    assert store.get("bob").status == SessionStatus.FAILED


def test_sync_follows_vm_status_and_address(store: SessionStore, provider: FakeProvider) -> None:
    stopped = provider.add_vm(VMStatus.STOPPED)
    moved = provider.add_vm(VMStatus.RUNNING, address="10.0.0.99")
    booted = provider.add_vm(VMStatus.RUNNING, address="10.0.0.7")
    _add(store, "alice", SessionStatus.RUNNING, stopped.id, "10.0.0.1")
    _add(store, "bob", SessionStatus.RUNNING, moved.id, "10.0.0.2")
    _add(store, "carol", SessionStatus.PROVISIONING, booted.id)

    sync_sessions(store, _resolver(provider))

    assert store.get("alice").status == SessionStatus.STOPPED
    assert store.get("bob").status == SessionStatus.RUNNING
    assert store.get("bob").network_address == "10.0.0.99"
    assert store.get("carol").status == SessionStatus.RUNNING
    assert store.get("carol").network_address == "10.0.0.7"


def test_sync_never_moves_backwards(store: SessionStore, provider: FakeProvider) -> None:
    vm = provider.add_vm(VMStatus.STARTING)
    _add(store, "alice", SessionStatus.RUNNING, vm.id, "10.0.0.1")
    assert sync_sessions(store, _resolver(provider)) == []
    assert store.get("alice").status == SessionStatus.RUNNING


def test_sync_skips_intake_and_legacy_records(store: SessionStore, provider: FakeProvider) -> None:
    _add(store, "alice", SessionStatus.PROVISIONING)
    data = json.loads(store.path.read_text())
    data["sessions"].append({"id": "old", "status": "running",
                             "created_at": "2024-01-01T00:00:00Z"})
    store.path.write_text(json.dumps(data))

    assert sync_sessions(store, _resolver(provider)) == []
    assert store.get("alice").status == SessionStatus.PROVISIONING
    assert store.get("old").status == SessionStatus.RUNNING


def test_sync_tolerates_provider_errors(
    store: SessionStore, caplog: pytest.LogCaptureFixture
) -> None:
    provider = FakeProvider(list_error=provider_error("api down"))
    _add(store, "alice", SessionStatus.RUNNING, "1", "10.0.0.1")
    assert sync_sessions(store, _resolver(provider)) == []
    assert store.get("alice").status == SessionStatus.RUNNING
    assert "api down" in caplog.text


def test_reap_expired_destroys_only_expired(store: SessionStore, provider: FakeProvider) -> None:
    now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    old = provider.add_vm()
    young = provider.add_vm()
    _add(store, "alice", SessionStatus.RUNNING, old.id, old.address,
         created_at=now - timedelta(hours=3), timeout=timedelta(hours=2))
    _add(store, "bob", SessionStatus.RUNNING, young.id, young.address,
         created_at=now - timedelta(minutes=30), timeout=timedelta(hours=2))
    _add(store, "carol", SessionStatus.FAILED,
         created_at=now - timedelta(days=3), timeout=timedelta(hours=1))

    teardown = TeardownHandler(store, _resolver(provider))
    destroyed = reap_expired(store, teardown, now=now)

    assert destroyed == ["alice"]
    assert old.id not in provider.vms
    assert young.id in provider.vms
    assert [s.id for s in store.list()] == ["bob", "carol"]


def test_monitor_runs_in_background(store: SessionStore, provider: FakeProvider) -> None:
    _add(store, "alice", SessionStatus.RUNNING, "1", "10.0.0.1")
    teardown = TeardownHandler(store, _resolver(provider))
    monitor = LifecycleMonitor(store, teardown, _resolver(provider), interval=0.01)

    monitor.start()
    try:
        deadline = time.monotonic() + 5
        while store.get("alice").status != SessionStatus.STOPPED:
            assert time.monotonic() < deadline, "monitor never synced"
            time.sleep(0.01)
        assert monitor.running
    finally:
        monitor.stop()
    assert not monitor.running


def test_monitor_interval_must_be_positive(store: SessionStore, provider: FakeProvider) -> None:
    with pytest.raises(ValueError):
        LifecycleMonitor(store, TeardownHandler(store, _resolver(provider)),
                         _resolver(provider), interval=0)
