"""Pydantic schemas for API request/response — decoupled from SQLAlchemy models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"


# ---------------------------------------------------------------------------
# Workspace schemas
# ---------------------------------------------------------------------------


class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=64, pattern=_NAME_PATTERN)
    env_vars: dict[str, str] = Field(default_factory=dict)


class CreateResult(BaseModel):
    url: Optional[str] = None
    remote_name: str
    warnings: list[str] = Field(default_factory=list)


class WorkspaceOut(BaseModel):
    name: str
    remote_name: str
    url: Optional[str] = None
    role: str
    local_identity: str
    remote_state: str
    created_at: Optional[datetime] = None


class StatusOut(BaseModel):
    status: str
    url: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Membership schemas
# ---------------------------------------------------------------------------


class MemberAdd(BaseModel):
    principal_id: str = Field(..., min_length=1, max_length=128)
    role: Literal["owner", "member"] = "member"


class MemberOut(BaseModel):
    principal_id: str
    role: str
    local_identity: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Deployment schemas
# ---------------------------------------------------------------------------


class DeploymentPrepare(BaseModel):
    name: str = Field(..., min_length=1, max_length=64, pattern=_NAME_PATTERN)
    env_vars: dict[str, str] = Field(default_factory=dict)


class DeploymentUpload(BaseModel):
    archive: str = Field(..., min_length=1, description="Base64-encoded zip of the application")
