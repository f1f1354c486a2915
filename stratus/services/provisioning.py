"""Provisioning orchestrator — the create path for cloud dev workspaces.

One logical "provision a workspace for user X" request becomes an ordered
sequence of control-plane calls:

    IDLE -> NAME_ALLOCATED -> APP_CREATED -> VOLUME_CREATED
         -> NETWORK_ALLOCATED -> SECRETS_STAGED -> INSTANCE_CREATED -> COMMITTED

The local row is written last, so a row always has a confirmed remote
counterpart. Repeating a create for the same ``(owner, name)`` returns the
stored URL without touching the control plane. Attempts are not resumable
across restarts; a failed attempt may leave remote sub-resources behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..errors import ConflictError, ProvisioningError, RemoteApiError, StratusError
from ..models.membership import ROLE_OWNER, Membership
from ..models.resource import KIND_WORKSPACE, ManagedResource
from ..providers.base import ControlPlane, RemoteAppHost
from ..providers.types import MachineConfig, MachineGuest, MachineService, VolumeMount
from .membership import find_owned
from .naming import allocate_name, external_url, local_identity, reserve_id
from .resilience import error_tracker

logger = logging.getLogger(__name__)

VOLUME_NAME = "app_data"
VOLUME_MOUNT_PATH = "/data"
WORKSPACE_GUEST = MachineGuest(cpu_kind="shared", cpus=2, memory_mb=2048)


class ProvisioningState(str, Enum):
    IDLE = "idle"
    NAME_ALLOCATED = "name_allocated"
    APP_CREATED = "app_created"
    VOLUME_CREATED = "volume_created"
    NETWORK_ALLOCATED = "network_allocated"
    SECRETS_STAGED = "secrets_staged"
    INSTANCE_CREATED = "instance_created"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED_PARTIAL = "failed_partial"


@dataclass
class ProvisioningAttempt:
    """What one create call has done so far. Lives only as long as the request."""

    owner_id: str
    logical_name: str
    state: ProvisioningState = ProvisioningState.IDLE
    resource_id: Optional[int] = None
    remote_name: Optional[str] = None
    volume_id: Optional[str] = None
    machine_id: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def advance(self, state: ProvisioningState) -> None:
        logger.debug("%s: %s -> %s", self.remote_name or self.logical_name, self.state.value, state.value)
        self.state = state

    def warn(self, step: str, error: Exception) -> None:
        message = f"{step} failed: {error}"
        logger.warning("[%s] %s", self.remote_name, message)
        error_tracker.record(
            source="provisioning",
            error=error,
            context={"remote_name": self.remote_name, "step": step},
        )
        self.warnings.append(message)


def workspace_machine_config(volume_id: str, cfg: Settings = default_settings) -> MachineConfig:
    return MachineConfig(
        image=cfg.workspace_image,
        guest=WORKSPACE_GUEST,
        services=(MachineService(internal_port=cfg.workspace_internal_port),),
        mounts=(VolumeMount(volume=volume_id, path=VOLUME_MOUNT_PATH),),
    )


def _result(resource: ManagedResource, warnings: list[str]) -> dict[str, Any]:
    return {"url": resource.external_url, "remote_name": resource.remote_name, "warnings": warnings}


async def provision_workspace(
    db: Session,
    control_plane: ControlPlane,
    owner_id: str,
    logical_name: str,
    env_vars: Optional[dict[str, str]] = None,
    *,
    cfg: Settings = default_settings,
) -> dict[str, Any]:
    """Create a workspace for *owner_id*, or return the one that already exists.

    Returns ``{"url", "remote_name", "warnings"}``. ``warnings`` lists
    best-effort steps (IP allocation, secret staging) that failed without
    failing the request.
    """
    # 1. Idempotency check
    existing = find_owned(db, owner_id, KIND_WORKSPACE, logical_name)
    if existing is not None:
        logger.info("Workspace %s/%s already exists as %s", owner_id, logical_name, existing.remote_name)
        return _result(existing, [])

    attempt = ProvisioningAttempt(owner_id=owner_id, logical_name=logical_name)

    # 2. Name allocation
    attempt.resource_id = reserve_id(db)
    attempt.remote_name = allocate_name(cfg.workspace_prefix)
    attempt.advance(ProvisioningState.NAME_ALLOCATED)
    app_name = attempt.remote_name
    identity = local_identity(owner_id)
    logger.info("Provisioning workspace %s for %s/%s", app_name, owner_id, logical_name)

    # 3. Application: nothing to undo if this fails
    try:
        await control_plane.create_app(app_name)
    except RemoteApiError as e:
        raise ProvisioningError("create_app", app_name, e) from e
    attempt.advance(ProvisioningState.APP_CREATED)

    # 4. Volume: compensate by destroying the app
    try:
        volume = await control_plane.create_volume(
            app_name, VOLUME_NAME, cfg.workspace_volume_gb, cfg.machines_region, WORKSPACE_GUEST,
        )
    except Exception as e:
        await _compensate_app(control_plane, attempt)
        raise ProvisioningError("create_volume", app_name, e, rolled_back=True) from e
    attempt.volume_id = volume.id
    attempt.advance(ProvisioningState.VOLUME_CREATED)

    # 5. Network identity, best effort
    try:
        await control_plane.allocate_ip(app_name)
    except Exception as e:
        attempt.warn("allocate_ip", e)
    attempt.advance(ProvisioningState.NETWORK_ALLOCATED)

    # 6. Secrets staged for the first boot, best effort
    secrets = {**(env_vars or {}), "APP_NAME": logical_name, "DEV_USER": identity}
    try:
        await control_plane.stage_secrets(app_name, secrets)
    except Exception as e:
        attempt.warn("stage_secrets", e)
    attempt.advance(ProvisioningState.SECRETS_STAGED)

    # 7. Instance: app and volume stay in place on failure so a retry can reuse them
    try:
        machine = await control_plane.create_machine(app_name, workspace_machine_config(volume.id, cfg))
    except Exception as e:
        attempt.advance(ProvisioningState.FAILED_PARTIAL)
        logger.error(
            "Machine creation failed for %s; app and volume %s left in place for reuse or operator cleanup",
            app_name, volume.id,
        )
        raise ProvisioningError("create_machine", app_name, e) from e
    attempt.machine_id = machine.id
    attempt.advance(ProvisioningState.INSTANCE_CREATED)
    logger.info("Machine %s created for %s", machine.id, app_name)

    # 8. Commit local state
    resource, created = commit_resource(
        db,
        resource_id=attempt.resource_id,
        kind=KIND_WORKSPACE,
        owner_id=owner_id,
        logical_name=logical_name,
        remote_name=app_name,
        url=external_url(app_name, cfg.app_domain),
        identity=identity,
    )
    if not created:
        # A concurrent create won; this attempt's app is now an orphan
        await _discard_redundant_app(control_plane, attempt)
        return _result(resource, [])

    attempt.advance(ProvisioningState.COMMITTED)
    return _result(resource, attempt.warnings)


def commit_resource(
    db: Session,
    *,
    resource_id: int,
    kind: str,
    owner_id: str,
    logical_name: str,
    remote_name: str,
    url: Optional[str],
    identity: str,
    database_name: Optional[str] = None,
) -> tuple[ManagedResource, bool]:
    """Insert the resource and its owner membership in one transaction.

    Returns ``(resource, created)``. When the ``(kind, owner, name)`` unique
    constraint fires, someone else finished first: the winner is re-read and
    returned with ``created=False``.
    """
    resource = ManagedResource(
        id=resource_id,
        kind=kind,
        logical_name=logical_name,
        remote_name=remote_name,
        database_name=database_name,
        external_url=url,
        owner_id=owner_id,
    )
    resource.memberships.append(
        Membership(principal_id=owner_id, role=ROLE_OWNER, local_identity=identity)
    )
    db.add(resource)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        winner = find_owned(db, owner_id, kind, logical_name)
        if winner is None:
            raise ConflictError(f"Could not record '{logical_name}': {e.orig}") from e
        logger.info(
            "Concurrent create for %s/%s won by %s; discarding %s",
            owner_id, logical_name, winner.remote_name, remote_name,
        )
        return winner, False
    db.refresh(resource)
    logger.info("Committed %s %s (id=%d) for %s", kind, remote_name, resource.id, owner_id)
    return resource, True


async def _compensate_app(control_plane: RemoteAppHost, attempt: ProvisioningAttempt) -> None:
    try:
        await control_plane.destroy_app(attempt.remote_name)
        attempt.advance(ProvisioningState.ROLLED_BACK)
        logger.info("Rolled back app %s", attempt.remote_name)
    except StratusError as e:
        attempt.advance(ProvisioningState.FAILED_PARTIAL)
        logger.error("Rollback of app %s failed: %s", attempt.remote_name, e)
        error_tracker.record(
            source="provisioning", error=e,
            context={"remote_name": attempt.remote_name, "step": "rollback"},
        )


async def _discard_redundant_app(control_plane: RemoteAppHost, attempt: ProvisioningAttempt) -> None:
    try:
        await control_plane.destroy_app(attempt.remote_name)
    except StratusError as e:
        logger.warning("Could not discard redundant app %s: %s", attempt.remote_name, e)
        error_tracker.record(
            source="provisioning", error=e,
            context={"remote_name": attempt.remote_name, "step": "discard_redundant"},
        )
