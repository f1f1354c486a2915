"""Teardown coordinator — stop and destroy paths for managed resources."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from ..errors import ConfigurationError
from ..models.resource import KIND_WORKSPACE
from ..providers.base import ControlPlane, RemoteAppHost
from .membership import require_membership
from .resilience import error_tracker

logger = logging.getLogger(__name__)


async def stop_workspace(
    db: Session,
    control_plane: ControlPlane,
    principal_id: str,
    logical_name: str,
) -> dict[str, Any]:
    """Stop every running or starting machine of a workspace. Any member may stop.

    Status is derived live, so nothing is written locally.
    """
    resource, _ = require_membership(db, principal_id, KIND_WORKSPACE, logical_name)

    stopped: list[str] = []
    for machine in await control_plane.list_machines(resource.remote_name):
        if machine.state.is_stoppable:
            await control_plane.stop_machine(resource.remote_name, machine.id)
            stopped.append(machine.id)

    logger.info("Stopped %d machine(s) for %s", len(stopped), resource.remote_name)
    return {"status": "stopped", "stopped": stopped}


async def destroy_resource(
    db: Session,
    remote: RemoteAppHost,
    principal_id: str,
    kind: str,
    logical_name: str,
) -> dict[str, Any]:
    """Destroy the remote application and forget the resource. Owner only.

    Non-owners get the same not-found error as a missing resource. Remote
    errors do not block local cleanup: the app may already be gone and the
    control plane converges on its own. A configuration error means no
    request was sent, so the row is kept.
    """
    resource, _ = require_membership(db, principal_id, kind, logical_name, owner_only=True)
    remote_name = resource.remote_name

    try:
        await remote.destroy_app(remote_name)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.warning("Remote destroy of %s reported an error, continuing: %s", remote_name, e)
        error_tracker.record(
            source=f"teardown.{remote.provider_type}",
            error=e,
            context={"remote_name": remote_name},
        )

    # Memberships go with it (ORM cascade, ON DELETE CASCADE in the schema)
    db.delete(resource)
    db.commit()
    logger.info("Destroyed %s %s for %s", kind, remote_name, principal_id)
    return {"status": "destroyed"}
