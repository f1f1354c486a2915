"""Deployment API — prepare, upload, status, logs, destroy."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.resource import KIND_DEPLOYMENT
from ..providers.base import DeployPlatform
from ..services.builds import BuildRegistry
from ..services.deployments import (
    deployment_logs,
    deployment_status,
    prepare_deployment,
    upload_deployment,
)
from ..services.membership import find_membership
from ..services.teardown import destroy_resource
from .deps import get_builds, get_platform, get_principal
from .schemas import CreateResult, DeploymentPrepare, DeploymentUpload

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.post("", response_model=CreateResult)
async def prepare(
    body: DeploymentPrepare,
    principal: str = Depends(get_principal),
    platform: DeployPlatform = Depends(get_platform),
    db: Session = Depends(get_db),
):
    """Link the database and register the application; safe to repeat."""
    return await prepare_deployment(db, platform, principal, body.name, body.env_vars)


@router.post("/{name}/upload")
async def upload(
    name: str,
    body: DeploymentUpload,
    principal: str = Depends(get_principal),
    platform: DeployPlatform = Depends(get_platform),
    builds: BuildRegistry = Depends(get_builds),
    db: Session = Depends(get_db),
):
    return await upload_deployment(db, platform, builds, principal, name, body.archive)


@router.get("/{name}/status")
async def status(
    name: str,
    principal: str = Depends(get_principal),
    platform: DeployPlatform = Depends(get_platform),
    builds: BuildRegistry = Depends(get_builds),
    db: Session = Depends(get_db),
):
    return await deployment_status(db, platform, builds, principal, name)


@router.get("/{name}/logs")
async def logs(
    name: str,
    principal: str = Depends(get_principal),
    platform: DeployPlatform = Depends(get_platform),
    db: Session = Depends(get_db),
):
    return await deployment_logs(db, platform, principal, name)


@router.delete("/{name}")
async def destroy(
    name: str,
    principal: str = Depends(get_principal),
    platform: DeployPlatform = Depends(get_platform),
    builds: BuildRegistry = Depends(get_builds),
    db: Session = Depends(get_db),
):
    found = find_membership(db, principal, KIND_DEPLOYMENT, name, owner_only=True)
    result = await destroy_resource(db, platform, principal, KIND_DEPLOYMENT, name)
    if found is not None:
        builds.cleanup(found[0].remote_name)
    return result
