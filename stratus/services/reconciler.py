"""Status reconciler — combines remote machine state with an application-level probe.

Infrastructure "running" is necessary but not sufficient: the workspace
process may still be booting. Whenever the control plane claims the machine
is up, the public URL is probed and only a live answer counts as running.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..models.resource import KIND_WORKSPACE, ManagedResource
from ..providers.base import ControlPlane
from ..providers.types import MachineState
from .membership import find_membership, list_memberships
from .resilience import error_tracker

logger = logging.getLogger(__name__)

STATUS_NOT_FOUND = "not_found"
STATUS_CREATING = "creating"
STATUS_STARTING = "starting"
STATUS_RUNNING = "running"
STATUS_STOPPED = "stopped"
STATUS_ERROR = "error"
STATUS_UNKNOWN = "unknown"


class HealthProbe:
    """Plain HTTP GET against a workspace URL.

    Any answer below 500 means the application process is serving; timeouts,
    connection errors and 5xx mean it is not ready yet.
    """

    def __init__(
        self,
        path: str = "/",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.path = path
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings, **kwargs: Any) -> "HealthProbe":
        return cls(path=cfg.health_path, timeout=cfg.health_timeout_seconds, **kwargs)

    def url_for(self, external_url: str) -> str:
        return external_url.rstrip("/") + "/" + self.path.lstrip("/")

    async def is_alive(self, external_url: str) -> bool:
        url = self.url_for(external_url)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                resp = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug("Health probe %s failed: %s", url, e)
            return False
        return resp.status_code < 500


async def resolve_status(
    db: Session,
    control_plane: ControlPlane,
    probe: HealthProbe,
    resource_id: int,
) -> dict[str, Any]:
    """Return ``{"status", "url"}`` for a workspace; never raises for remote failures."""
    resource = db.get(ManagedResource, resource_id)
    if resource is None:
        return {"status": STATUS_NOT_FOUND}

    url = resource.external_url
    try:
        machines = await control_plane.list_machines(resource.remote_name)
    except Exception as e:
        logger.warning("Machine check failed for %s: %s", resource.remote_name, e)
        return {"status": STATUS_ERROR, "url": url, "error": str(e)}

    if not machines:
        return {"status": STATUS_CREATING, "url": url}

    machine = machines[0]
    logger.debug("%s: machine %s state=%s", resource.remote_name, machine.id, machine.raw_state)

    if machine.state.is_up:
        if url and await probe.is_alive(url):
            _record_running(db, resource)
            return {"status": STATUS_RUNNING, "url": url}
        return {"status": STATUS_STARTING, "url": url}

    if machine.state in (MachineState.STOPPED, MachineState.SUSPENDED):
        return {"status": STATUS_STOPPED, "url": url}

    if machine.state in (MachineState.CREATED, MachineState.STARTING):
        return {"status": STATUS_STARTING, "url": url}

    # Pass through states we do not model
    return {"status": machine.raw_state or STATUS_UNKNOWN, "url": url}


def _record_running(db: Session, resource: ManagedResource) -> None:
    """Opportunistic write-back; a failure here never fails the status call."""
    try:
        resource.status = STATUS_RUNNING
        resource.updated_at = datetime.now(timezone.utc)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Could not persist running status for %s: %s", resource.remote_name, e)
        error_tracker.record(source="reconciler", error=e, context={"remote_name": resource.remote_name})


async def workspace_status(
    db: Session,
    control_plane: ControlPlane,
    probe: HealthProbe,
    principal_id: str,
    logical_name: str,
) -> dict[str, Any]:
    """Status as seen by a member; non-members see ``not_found``."""
    found = find_membership(db, principal_id, KIND_WORKSPACE, logical_name)
    if found is None:
        return {"status": STATUS_NOT_FOUND}
    resource, _ = found
    return await resolve_status(db, control_plane, probe, resource.id)


async def list_workspaces(
    db: Session,
    control_plane: ControlPlane,
    principal_id: str,
) -> list[dict[str, Any]]:
    """Every workspace the principal belongs to, with live remote state."""
    rows = list_memberships(db, principal_id, KIND_WORKSPACE)

    async def remote_state(remote_name: str) -> str:
        try:
            machines = await control_plane.list_machines(remote_name)
        except Exception as e:
            logger.debug("Live state unavailable for %s: %s", remote_name, e)
            return STATUS_UNKNOWN
        return machines[0].raw_state if machines else STATUS_UNKNOWN

    states = await asyncio.gather(*(remote_state(r.remote_name) for r, _ in rows))
    return [
        {
            "name": resource.logical_name,
            "remote_name": resource.remote_name,
            "url": resource.external_url,
            "role": membership.role,
            "local_identity": membership.local_identity,
            "remote_state": state,
            "created_at": resource.created_at.isoformat() if resource.created_at else None,
        }
        for (resource, membership), state in zip(rows, states)
    ]
