"""Workspace API — create, list, status, stop, destroy, and membership."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.resource import KIND_WORKSPACE
from ..providers.base import ControlPlane
from ..services import membership as membership_service
from ..services.provisioning import provision_workspace
from ..services.reconciler import HealthProbe, list_workspaces, workspace_status
from ..services.teardown import destroy_resource, stop_workspace
from .deps import get_control_plane, get_principal, get_probe
from .schemas import CreateResult, MemberAdd, MemberOut, StatusOut, WorkspaceCreate, WorkspaceOut

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


@router.post("", response_model=CreateResult)
async def create_workspace(
    body: WorkspaceCreate,
    principal: str = Depends(get_principal),
    control_plane: ControlPlane = Depends(get_control_plane),
    db: Session = Depends(get_db),
):
    """Provision a workspace, or return the caller's existing one with the same name."""
    return await provision_workspace(db, control_plane, principal, body.name, body.env_vars)


@router.get("", response_model=list[WorkspaceOut])
async def list_my_workspaces(
    principal: str = Depends(get_principal),
    control_plane: ControlPlane = Depends(get_control_plane),
    db: Session = Depends(get_db),
):
    return await list_workspaces(db, control_plane, principal)


@router.get("/{name}/status", response_model=StatusOut)
async def get_workspace_status(
    name: str,
    principal: str = Depends(get_principal),
    control_plane: ControlPlane = Depends(get_control_plane),
    probe: HealthProbe = Depends(get_probe),
    db: Session = Depends(get_db),
):
    return await workspace_status(db, control_plane, probe, principal, name)


@router.post("/{name}/stop")
async def stop(
    name: str,
    principal: str = Depends(get_principal),
    control_plane: ControlPlane = Depends(get_control_plane),
    db: Session = Depends(get_db),
):
    return await stop_workspace(db, control_plane, principal, name)


@router.delete("/{name}")
async def destroy(
    name: str,
    principal: str = Depends(get_principal),
    control_plane: ControlPlane = Depends(get_control_plane),
    db: Session = Depends(get_db),
):
    """Destroy the workspace. Only an owner may do this."""
    return await destroy_resource(db, control_plane, principal, KIND_WORKSPACE, name)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.post("/{name}/members", response_model=MemberOut, status_code=201)
def add_member(
    name: str,
    body: MemberAdd,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return membership_service.add_member(db, principal, KIND_WORKSPACE, name, body.principal_id, role=body.role)


@router.delete("/{name}/members/{member_id}", status_code=204)
def remove_member(
    name: str,
    member_id: str,
    principal: str = Depends(get_principal),
    db: Session = Depends(get_db),
):
    membership_service.remove_member(db, principal, KIND_WORKSPACE, name, member_id)
