"""Deployment service — prepare, upload, status and logs on the managed platform.

Same shape as workspace provisioning: *prepare* reserves an id, derives
``{prefix}-{id}`` names, and runs idempotent sub-steps (link database,
register application) before committing the local row; *upload* submits
the packaged artifact; *status* polls the platform and writes back the URL.
Every sub-step checks for its effect first so prepare can be re-run safely.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, settings as default_settings
from ..errors import ConflictError, ProvisioningError, RemoteApiError
from ..models.resource import KIND_DEPLOYMENT
from ..providers.base import DeployPlatform
from .builds import BuildRegistry
from .membership import find_membership, find_owned, require_membership
from .naming import allocate_name, local_identity, reserve_id
from .provisioning import commit_resource
from .resilience import error_tracker

logger = logging.getLogger(__name__)


async def ensure_database_linked(
    platform: DeployPlatform, name: str, hostname: str, port: int, password: str,
) -> bool:
    """Link *name* unless it already is. Returns True when a link was made."""
    if name in await platform.list_databases():
        return False
    await platform.link_database(name, hostname, port, password)
    return True


async def ensure_app_registered(platform: DeployPlatform, app_name: str, database_name: str) -> bool:
    """Register *app_name* unless the platform already knows it."""
    if await platform.get_application(app_name) is not None:
        return False
    await platform.register_application(app_name, database_name)
    return True


async def prepare_deployment(
    db: Session,
    platform: DeployPlatform,
    owner_id: str,
    logical_name: str,
    env_vars: Optional[dict[str, str]] = None,
    *,
    cfg: Settings = default_settings,
) -> dict[str, Any]:
    existing = find_owned(db, owner_id, KIND_DEPLOYMENT, logical_name)
    if existing is not None:
        return {"url": existing.external_url, "remote_name": existing.remote_name, "warnings": []}

    deployment_id = reserve_id(db)
    app_name = allocate_name(cfg.deploy_prefix, deployment_id)
    db_name = allocate_name(cfg.deploy_prefix, deployment_id)
    logger.info("Preparing deployment %s for %s/%s", app_name, owner_id, logical_name)

    try:
        await ensure_database_linked(
            platform, db_name, cfg.deploy_db_host, cfg.deploy_db_port, cfg.deploy_db_password,
        )
    except RemoteApiError as e:
        raise ProvisioningError("link_database", app_name, e) from e

    try:
        await ensure_app_registered(platform, app_name, db_name)
    except RemoteApiError as e:
        raise ProvisioningError("register_application", app_name, e) from e

    resource, created = commit_resource(
        db,
        resource_id=deployment_id,
        kind=KIND_DEPLOYMENT,
        owner_id=owner_id,
        logical_name=logical_name,
        remote_name=app_name,
        url=None,  # the platform reports the URL once the app is live
        identity=local_identity(owner_id),
        database_name=db_name,
    )
    if not created:
        return {"url": resource.external_url, "remote_name": resource.remote_name, "warnings": []}

    warnings: list[str] = []
    if env_vars:
        try:
            await platform.set_secrets(app_name, env_vars)
        except Exception as e:
            logger.warning("[%s] secret staging failed: %s", app_name, e)
            error_tracker.record(source="deployments", error=e, context={"remote_name": app_name})
            warnings.append(f"set_secrets failed: {e}")

    return {"url": resource.external_url, "remote_name": resource.remote_name, "warnings": warnings}


async def upload_deployment(
    db: Session,
    platform: DeployPlatform,
    builds: BuildRegistry,
    principal_id: str,
    logical_name: str,
    archive: str,
) -> dict[str, Any]:
    """Submit *archive* (base64 zip) as the new version of a prepared deployment."""
    resource, _ = require_membership(db, principal_id, KIND_DEPLOYMENT, logical_name)
    remote_name = resource.remote_name

    record = builds.start(remote_name, platform.deploy_archive(remote_name, archive))
    try:
        # Shielded so a caller timing out does not abort the upload mid-flight
        version = await asyncio.shield(record.task)
    except asyncio.CancelledError:
        if record.task.cancelled():
            raise ConflictError(f"Upload for '{logical_name}' was superseded by a newer upload")
        raise

    resource.status = "deployed"
    db.commit()
    logger.info("Uploaded %s version %s", remote_name, version)
    return {"version": version}


async def deployment_status(
    db: Session,
    platform: DeployPlatform,
    builds: BuildRegistry,
    principal_id: str,
    logical_name: str,
) -> dict[str, Any]:
    found = find_membership(db, principal_id, KIND_DEPLOYMENT, logical_name)
    if found is None:
        return {"status": "not_found"}
    resource, _ = found

    build = builds.get(resource.remote_name)
    build_info = build.as_dict() if build is not None else None

    try:
        app = await platform.get_application(resource.remote_name)
    except Exception as e:
        logger.warning("Status check failed for %s: %s", resource.remote_name, e)
        return {"status": "error", "error": str(e), "url": resource.external_url, "build": build_info}

    if app is None:
        return {"status": "not_found", "url": resource.external_url, "build": build_info}

    if app.url and app.url != resource.external_url:
        try:
            resource.external_url = app.url
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Could not persist URL for %s: %s", resource.remote_name, e)

    return {"status": app.status, "url": app.url, "version": app.version, "build": build_info}


async def deployment_logs(
    db: Session,
    platform: DeployPlatform,
    principal_id: str,
    logical_name: str,
) -> dict[str, Any]:
    resource, _ = require_membership(db, principal_id, KIND_DEPLOYMENT, logical_name)
    return {"logs": await platform.get_logs(resource.remote_name)}
