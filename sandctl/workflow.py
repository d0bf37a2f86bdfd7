"""
ProvisioningWorkflow: turns a new session into a running VM.

A run is an ordered list of labelled steps. The first failing step stops the
run; any VM that was already created is deleted once, the record is marked
failed and a ProvisioningError naming the step is raised from the underlying
error.

Usage:
    workflow = ProvisioningWorkflow(store, teardown)
    session = workflow.provision(
        provider,
        CreateOptions(ssh_key_id=key_id),
        ready_timeout=300,
        boot_check=lambda address: boot_finished(address, user="agent"),
    )
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, List, Optional, Sequence

from sandctl import telemetry
from sandctl.exceptions import (
    DuplicateIDError,
    InvalidTransitionError,
    LegacySessionError,
    OperationCancelledError,
    ProvisioningError,
    SandctlError,
)
from sandctl.models import VM, AnySession, CreateOptions, ProviderSession, SessionStatus
from sandctl.names import generate_name
from sandctl.providers.base import BaseProvider
from sandctl.readiness import ReadinessPoller
from sandctl.store import SessionStore
from sandctl.teardown import TeardownHandler

logger = logging.getLogger(__name__)

STEP_CREATE = "Provisioning VM"
STEP_WAIT_READY = "Waiting for VM to be ready"
STEP_WAIT_BOOT = "Waiting for setup to complete"
STEP_FINALIZE = "finalize"

# Name races with a concurrent process are retried this many times.
INTAKE_ATTEMPTS = 3


@dataclass
class ProvisioningContext:
    """Mutable state shared by the steps of one run."""

    session: ProviderSession
    provider: BaseProvider
    cancel: threading.Event
    provider_id: str = ""
    network_address: str = ""
    vm: Optional[VM] = None

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise OperationCancelledError(
                f"provisioning of session '{self.session.id}' was cancelled"
            )


@dataclass(frozen=True)
class Step:
    label: str
    action: Callable[[ProvisioningContext], None]


class ProvisioningWorkflow:
    """
    Drives sessions from Provisioning to Running (or Failed).

    Args:
        store: Session registry
        teardown: Used for rollback and to resolve providers by name
        poller: Readiness poller for boot checks
        rng: Random source for name generation
    """

    def __init__(
        self,
        store: SessionStore,
        teardown: TeardownHandler,
        *,
        poller: Optional[ReadinessPoller] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.teardown = teardown
        self.poller = poller or ReadinessPoller()
        self._rng = rng

    def intake(
        self, provider_name: str, *, timeout: Optional[timedelta] = None
    ) -> ProviderSession:
        """Reserve a fresh name and store a Provisioning record for it."""
        attempt = 0
        while True:
            attempt += 1
            name = generate_name(self.store.get_used_names(), rng=self._rng)
            session = ProviderSession(
                id=name,
                provider_name=provider_name,
                status=SessionStatus.PROVISIONING,
                timeout=timeout,
            )
            try:
                stored = self.store.add(session)
            except DuplicateIDError:
                if attempt >= INTAKE_ATTEMPTS:
                    raise
                logger.debug("Name %s was taken concurrently, retrying", name)
                continue
            logger.info("Reserved session %s on %s", stored.id, provider_name)
            return stored

    def run(
        self,
        session: AnySession,
        steps: Sequence[Step],
        *,
        provider: Optional[BaseProvider] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ProviderSession:
        """
        Execute steps for a Provisioning session.

        Returns the Running record on success.

        Raises:
            LegacySessionError: session is a legacy record.
            InvalidTransitionError: session is not Provisioning.
            ProvisioningError: A step failed; .session holds the Failed record.
        """
        if session.is_legacy:
            raise LegacySessionError(session.id)
        if session.status != SessionStatus.PROVISIONING:
            raise InvalidTransitionError(
                session.id, session.status.value, SessionStatus.RUNNING.value
            )

        provider = provider or self.teardown.resolve_provider(session.provider_name)
        ctx = ProvisioningContext(
            session=session,
            provider=provider,
            cancel=cancel or threading.Event(),
            provider_id=session.provider_id,
            network_address=session.network_address,
        )

        with telemetry.span(
            "sandctl.provision", session_id=session.id, provider=provider.name
        ):
            for step in steps:
                try:
                    ctx.check_cancelled()
                    logger.info("[%s] %s...", session.id, step.label)
                    with telemetry.span("sandctl.provision.step", step=step.label):
                        step.action(ctx)
                except Exception as exc:
                    raise self._fail(ctx, step.label, exc) from exc

            try:
                running = self.store.update_session(
                    ctx.session.model_copy(
                        update={
                            "status": SessionStatus.RUNNING,
                            "provider_id": ctx.provider_id,
                            "network_address": ctx.network_address,
                        }
                    )
                )
            except Exception as exc:
                raise self._fail(ctx, STEP_FINALIZE, exc) from exc

        logger.info("Session %s is running at %s", running.id, running.network_address)
        return running

    def _fail(
        self, ctx: ProvisioningContext, label: str, exc: BaseException
    ) -> ProvisioningError:
        session_id = ctx.session.id
        logger.error("[%s] %s failed: %s", session_id, label, exc)

        if ctx.provider_id:
            self.teardown.rollback(ctx.provider, ctx.provider_id)

        failed: Optional[ProviderSession] = None
        try:
            failed = self.store.update_session(
                ctx.session.model_copy(
                    update={
                        "status": SessionStatus.FAILED,
                        "provider_id": ctx.provider_id,
                        "network_address": ctx.network_address,
                    }
                )
            )
        except SandctlError as mark_exc:
            logger.warning(
                "Could not mark session %s as failed: %s", session_id, mark_exc
            )
        return ProvisioningError(label, exc, session=failed)

    def build_steps(
        self,
        provider: BaseProvider,
        options: CreateOptions,
        *,
        ready_timeout: float,
        boot_check: Optional[Callable[[str], bool]] = None,
        boot_timeout: float = 600.0,
        extra_steps: Iterable[Step] = (),
    ) -> List[Step]:
        """The standard create / wait-ready / wait-for-setup step list."""

        def create(ctx: ProvisioningContext) -> None:
            opts = options
            if not opts.name:
                opts = opts.model_copy(update={"name": ctx.session.id})
            vm = provider.create(opts)
            ctx.vm = vm
            ctx.provider_id = vm.id
            ctx.network_address = vm.address
            # The VM id is stored before any waiting.
            ctx.session = self.store.update_session(
                ctx.session.model_copy(
                    update={"provider_id": vm.id, "network_address": vm.address}
                )
            )

        def wait_ready(ctx: ProvisioningContext) -> None:
            provider.wait_ready(ctx.provider_id, ready_timeout, cancel=ctx.cancel)
            vm = provider.get(ctx.provider_id)
            ctx.vm = vm
            if vm.address:
                ctx.network_address = vm.address

        steps = [Step(STEP_CREATE, create), Step(STEP_WAIT_READY, wait_ready)]

        if boot_check is not None:

            def wait_boot(ctx: ProvisioningContext) -> None:
                self.poller.wait_until_ready(
                    lambda: boot_check(ctx.network_address),
                    boot_timeout,
                    cancel=ctx.cancel,
                    description=f"setup of session '{ctx.session.id}'",
                )

            steps.append(Step(STEP_WAIT_BOOT, wait_boot))

        steps.extend(extra_steps)
        return steps

    def provision(
        self,
        provider: BaseProvider,
        options: Optional[CreateOptions] = None,
        *,
        timeout: Optional[timedelta] = None,
        ready_timeout: float = 300.0,
        boot_check: Optional[Callable[[str], bool]] = None,
        boot_timeout: float = 600.0,
        extra_steps: Iterable[Step] = (),
        cancel: Optional[threading.Event] = None,
    ) -> ProviderSession:
        """Intake a new session and run the standard steps for it."""
        session = self.intake(provider.name, timeout=timeout)
        steps = self.build_steps(
            provider,
            options or CreateOptions(),
            ready_timeout=ready_timeout,
            boot_check=boot_check,
            boot_timeout=boot_timeout,
            extra_steps=extra_steps,
        )
        return self.run(session, steps, provider=provider, cancel=cancel)
