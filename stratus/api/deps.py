"""Request dependencies shared by the routers."""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request

from ..providers.base import ControlPlane, DeployPlatform
from ..services.builds import BuildRegistry
from ..services.reconciler import HealthProbe


def get_principal(x_principal_id: Optional[str] = Header(None)) -> str:
    """The calling principal, asserted by the upstream auth proxy."""
    if not x_principal_id or not x_principal_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Principal-Id header")
    return x_principal_id.strip()


def get_control_plane(request: Request) -> ControlPlane:
    return request.app.state.control_plane


def get_platform(request: Request) -> DeployPlatform:
    return request.app.state.platform


def get_probe(request: Request) -> HealthProbe:
    return request.app.state.probe


def get_builds(request: Request) -> BuildRegistry:
    return request.app.state.builds
