"""Fly Machines client — apps, volumes, IPs, staged secrets and machines over REST.

Uses the Machines API (https://fly.io/docs/machines/api/). Every call needs
an API token; a missing token is a configuration error and is never retried.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

from ...config import Settings, settings as default_settings
from ...errors import ConfigurationError
from ..base import ControlPlane, HttpApiClient
from ..types import MachineConfig, MachineGuest, RemoteInstanceSnapshot, VolumeInfo

logger = logging.getLogger(__name__)


def _seg(value: str) -> str:
    return quote(value, safe="")


class MachinesClient(HttpApiClient, ControlPlane):
    """Typed client for the machine-control API."""

    def __init__(
        self,
        token: Optional[str],
        org: Optional[str],
        base_url: str = "https://api.machines.dev",
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, **kwargs)
        self._token = token
        self._org = org

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings, **kwargs: Any) -> "MachinesClient":
        return cls(
            cfg.machines_api_token,
            cfg.machines_org,
            base_url=cfg.machines_api_url,
            max_attempts=cfg.retry_attempts,
            backoff_seconds=cfg.retry_backoff_seconds,
            **kwargs,
        )

    @property
    def provider_type(self) -> str:
        return "fly"

    async def _auth_headers(self) -> dict[str, str]:
        if not self._token:
            raise ConfigurationError(
                "Machines API token not configured (set STRATUS_MACHINES_API_TOKEN)"
            )
        return {"Authorization": f"Bearer {self._token}"}

    # ── Apps ──────────────────────────────────────────────────────────────

    async def create_app(self, app_name: str) -> None:
        if not self._org:
            raise ConfigurationError("Machines organisation not configured (set STRATUS_MACHINES_ORG)")
        await self._request("POST", "/v1/apps", {"app_name": app_name, "org_slug": self._org})
        logger.info("Created app %s in org %s", app_name, self._org)

    async def destroy_app(self, app_name: str) -> None:
        await self._request("DELETE", f"/v1/apps/{_seg(app_name)}")
        logger.info("Destroyed app %s", app_name)

    # ── Volumes ───────────────────────────────────────────────────────────

    async def create_volume(
        self, app_name: str, name: str, size_gb: int, region: str, compute: MachineGuest,
    ) -> VolumeInfo:
        """Create a volume placed on a host that can also run *compute*."""
        resp = await self._request(
            "POST",
            f"/v1/apps/{_seg(app_name)}/volumes",
            {"name": name, "size_gb": size_gb, "region": region, "compute": compute.to_api()},
        )
        return VolumeInfo.from_api(resp.json())

    async def delete_volume(self, app_name: str, volume_id: str) -> None:
        await self._request("DELETE", f"/v1/apps/{_seg(app_name)}/volumes/{_seg(volume_id)}")

    # ── Network identity and secrets ──────────────────────────────────────

    async def allocate_ip(self, app_name: str) -> None:
        await self._request("POST", f"/v1/apps/{_seg(app_name)}/ips", {"type": "shared_v4"})

    async def stage_secrets(self, app_name: str, values: dict[str, str]) -> None:
        """Stage secrets so they apply when the next machine starts."""
        if not values:
            return
        await self._request(
            "POST",
            f"/v1/apps/{_seg(app_name)}/secrets",
            {"values": dict(values), "stage": True},
        )

    # ── Machines ──────────────────────────────────────────────────────────

    async def create_machine(
        self, app_name: str, config: MachineConfig, region: Optional[str] = None,
    ) -> RemoteInstanceSnapshot:
        body: dict[str, Any] = {"config": config.to_api()}
        if region:
            body["region"] = region
        resp = await self._request("POST", f"/v1/apps/{_seg(app_name)}/machines", body)
        return RemoteInstanceSnapshot.from_api(resp.json())

    async def list_machines(self, app_name: str) -> list[RemoteInstanceSnapshot]:
        resp = await self._request("GET", f"/v1/apps/{_seg(app_name)}/machines")
        return [RemoteInstanceSnapshot.from_api(m) for m in resp.json() or []]

    async def get_machine(self, app_name: str, machine_id: str) -> Optional[RemoteInstanceSnapshot]:
        resp = await self._request(
            "GET", f"/v1/apps/{_seg(app_name)}/machines/{_seg(machine_id)}", allow_404=True,
        )
        if resp is None:
            return None
        return RemoteInstanceSnapshot.from_api(resp.json())

    async def stop_machine(self, app_name: str, machine_id: str) -> None:
        await self._request("POST", f"/v1/apps/{_seg(app_name)}/machines/{_seg(machine_id)}/stop")
