"""
Hetzner Cloud provider.

Talks to the Hetzner Cloud REST API directly with httpx. Every server created
by sandctl carries the label managed-by=sandctl; list() only returns those.

Usage:
    provider = HetznerProvider(token="...")
    key_id = provider.ensure_ssh_key("sandctl", public_key)
    vm = provider.create(CreateOptions(name="alice", ssh_key_id=key_id))
    provider.wait_ready(vm.id, timeout=300)
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import httpx

from sandctl.config import Settings
from sandctl.exceptions import (
    ConfigError,
    ProviderAuthError,
    ProviderError,
    ProvisionFailedError,
    QuotaExceededError,
    RemoteNotFoundError,
)
from sandctl.models import VM, CreateOptions, VMStatus
from sandctl.providers.base import BaseProvider
from sandctl.readiness import ReadinessPoller
from sandctl.remote import SSH_PORT, port_open

logger = logging.getLogger(__name__)

API_URL = "https://api.hetzner.cloud/v1"
MANAGED_LABEL = ("managed-by", "sandctl")
SSH_CHECK_TIMEOUT = 5.0
PAGE_SIZE = 50

DEFAULT_REGION = "ash"
DEFAULT_SERVER_TYPE = "cpx31"
DEFAULT_IMAGE = "ubuntu-24.04"

# First-boot setup: Docker and common development tools, then the
# boot-finished marker that remote.boot_finished() polls for.
CLOUD_INIT_SCRIPT = """#!/bin/bash
set -e

apt-get update

apt-get install -y docker.io
systemctl enable docker
systemctl start docker
usermod -aG docker root

apt-get install -y git nodejs npm python3 python3-pip
apt-get install -y curl wget jq htop vim

apt-get autoremove -y
apt-get clean

touch /var/lib/cloud/instance/boot-finished
echo "sandctl setup complete" >> /var/log/cloud-init-output.log
"""

_STATUS_MAP = {
    "initializing": VMStatus.PROVISIONING,
    "starting": VMStatus.STARTING,
    "running": VMStatus.RUNNING,
    "stopping": VMStatus.STOPPING,
    "off": VMStatus.STOPPED,
    "deleting": VMStatus.DELETING,
}


def map_server_status(status: Optional[str]) -> VMStatus:
    """Map a Hetzner server status to VMStatus. Unknown states are failures."""
    return _STATUS_MAP.get(status or "", VMStatus.FAILED)


def ssh_key_fingerprint(public_key: str) -> str:
    """MD5 fingerprint of an OpenSSH public key, as colon-separated hex pairs."""
    parts = public_key.split()
    if len(parts) < 2:
        raise ValueError("invalid public key format")
    try:
        key_data = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"failed to decode public key: {exc}") from exc
    digest = hashlib.md5(key_data).hexdigest()  # noqa: S324
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def _server_to_vm(server: Dict[str, Any]) -> VM:
    public_net = server.get("public_net") or {}
    ipv4 = public_net.get("ipv4") or {}
    datacenter = server.get("datacenter") or {}
    location = datacenter.get("location") or {}
    server_type = server.get("server_type") or {}
    return VM(
        id=str(server["id"]),
        name=server.get("name") or "",
        status=map_server_status(server.get("status")),
        address=ipv4.get("ip") or "",
        created_at=server.get("created"),
        region=location.get("name") or "",
        server_type=server_type.get("name") or "",
    )


class HetznerProvider(BaseProvider):
    name = "hetzner"

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        region: str = DEFAULT_REGION,
        server_type: str = DEFAULT_SERVER_TYPE,
        image: str = DEFAULT_IMAGE,
        timeout: float = 30.0,
        poll_interval: float = 5.0,
        client: Optional[httpx.Client] = None,
        poller: Optional[ReadinessPoller] = None,
        port_check: Optional[Callable[[str, int, float], bool]] = None,
    ) -> None:
        if client is None:
            if not token:
                raise ConfigError(
                    "Hetzner API token is not set (SANDCTL_HETZNER_TOKEN or HCLOUD_TOKEN)"
                )
            client = httpx.Client(
                base_url=API_URL,
                headers={"Authorization": f"Bearer {token}"},
                timeout=timeout,
            )
        self._client = client
        self.region = region
        self.server_type = server_type
        self.image = image
        self._poller = poller or ReadinessPoller(interval=poll_interval)
        self._port_check = port_check or port_open

    @classmethod
    def from_settings(cls, settings: Settings) -> "HetznerProvider":
        return cls(
            settings.hetzner_token,
            region=settings.hetzner_region,
            server_type=settings.hetzner_server_type,
            image=settings.hetzner_image,
            timeout=settings.http_timeout,
            poll_interval=settings.poll_interval,
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"Hetzner API request failed: {exc}", provider=self.name
            ) from exc

        if response.status_code >= 400:
            raise self._map_error(response)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                "Hetzner API returned invalid JSON",
                provider=self.name,
                status_code=response.status_code,
            ) from exc

    def _map_error(self, response: httpx.Response) -> ProviderError:
        code = ""
        message = response.reason_phrase or "request failed"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            code = body["error"].get("code") or ""
            message = body["error"].get("message") or message

        status = response.status_code
        text = f"Hetzner API error ({status}): {message}"
        kwargs: Dict[str, Any] = {
            "provider": self.name,
            "status_code": status,
            "code": code or None,
        }
        if status == 404 or code == "not_found":
            return RemoteNotFoundError(text, **kwargs)
        # Limit errors arrive as 403, so check the code before the status.
        if code == "resource_limit_exceeded":
            return QuotaExceededError(text, **kwargs)
        if status in (401, 403) or code in ("unauthorized", "forbidden"):
            return ProviderAuthError(text, **kwargs)
        return ProviderError(text, **kwargs)

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    def create(self, options: CreateOptions) -> VM:
        payload: Dict[str, Any] = {
            "name": options.name,
            "server_type": options.server_type or self.server_type,
            "image": options.image or self.image,
            "location": options.region or self.region,
            "user_data": options.user_data or CLOUD_INIT_SCRIPT,
            "labels": {**options.labels, MANAGED_LABEL[0]: MANAGED_LABEL[1]},
        }
        if options.ssh_key_id:
            try:
                payload["ssh_keys"] = [int(options.ssh_key_id)]
            except ValueError as exc:
                raise ProvisionFailedError(
                    f"invalid SSH key ID: {options.ssh_key_id!r}", provider=self.name
                ) from exc

        try:
            data = self._request("POST", "/servers", json=payload)
        except (ProviderAuthError, QuotaExceededError):
            raise
        except ProviderError as exc:
            raise ProvisionFailedError(
                f"failed to create server: {exc.message}",
                provider=self.name,
                status_code=exc.status_code,
            ) from exc

        vm = _server_to_vm(data["server"])
        logger.info("Created Hetzner server %s (%s)", vm.id, vm.name)
        return vm.model_copy(
            update={
                "region": vm.region or payload["location"],
                "server_type": vm.server_type or payload["server_type"],
            }
        )

    def get(self, provider_id: str) -> VM:
        data = self._request("GET", f"/servers/{provider_id}")
        return _server_to_vm(data["server"])

    def delete(self, provider_id: str) -> None:
        try:
            self._request("DELETE", f"/servers/{provider_id}")
        except RemoteNotFoundError:
            logger.debug("Server %s already deleted", provider_id)
            return
        logger.info("Deleted Hetzner server %s", provider_id)

    def list(self) -> List[VM]:
        vms: List[VM] = []
        page: Optional[int] = 1
        while page:
            data = self._request(
                "GET",
                "/servers",
                params={
                    "label_selector": f"{MANAGED_LABEL[0]}={MANAGED_LABEL[1]}",
                    "page": page,
                    "per_page": PAGE_SIZE,
                },
            )
            vms.extend(_server_to_vm(server) for server in data.get("servers") or [])
            pagination = (data.get("meta") or {}).get("pagination") or {}
            page = pagination.get("next_page")
        return vms

    def wait_ready(
        self,
        provider_id: str,
        timeout: float,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        def ready() -> bool:
            try:
                vm = self.get(provider_id)
            except RemoteNotFoundError as exc:
                raise ProvisionFailedError(
                    f"server {provider_id} disappeared while starting",
                    provider=self.name,
                ) from exc
            except ProviderAuthError:
                raise
            except ProviderError as exc:
                logger.debug("Transient error polling server %s: %s", provider_id, exc)
                return False

            if vm.status == VMStatus.FAILED:
                raise ProvisionFailedError(
                    f"server {provider_id} entered a failed state", provider=self.name
                )
            if vm.status != VMStatus.RUNNING or not vm.address:
                return False
            return self._port_check(vm.address, SSH_PORT, SSH_CHECK_TIMEOUT)

        self._poller.wait_until_ready(
            ready,
            timeout,
            cancel=cancel,
            description=f"Hetzner server {provider_id}",
        )

    def ensure_ssh_key(self, name: str, public_key: str) -> str:
        """
        Make sure public_key is registered and return its Hetzner key id.

        An existing key with the same fingerprint is reused.
        """
        try:
            fingerprint = ssh_key_fingerprint(public_key)
        except ValueError as exc:
            raise ConfigError(f"failed to calculate SSH key fingerprint: {exc}") from exc

        data = self._request("GET", "/ssh_keys", params={"fingerprint": fingerprint})
        existing = data.get("ssh_keys") or []
        if existing:
            return str(existing[0]["id"])

        data = self._request(
            "POST",
            "/ssh_keys",
            json={
                "name": name,
                "public_key": public_key.strip(),
                "labels": {MANAGED_LABEL[0]: MANAGED_LABEL[1]},
            },
        )
        key_id = str(data["ssh_key"]["id"])
        logger.info("Registered SSH key %s as %s", fingerprint, key_id)
        return key_id

    def close(self) -> None:
        self._client.close()
