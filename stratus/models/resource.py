"""Managed resource model — one remote compute environment (workspace or deployment)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db import Base

if TYPE_CHECKING:
    from .membership import Membership

KIND_WORKSPACE = "workspace"
KIND_DEPLOYMENT = "deployment"


class ManagedResource(Base):
    __tablename__ = "managed_resources"
    __table_args__ = (
        UniqueConstraint("kind", "owner_id", "logical_name", name="uq_managed_resources_owner_name"),
    )

    # Reserved from resource_sequences before any remote call, never autoincremented
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # workspace, deployment
    logical_name: Mapped[str] = mapped_column(String(128), nullable=False)
    remote_name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    database_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    external_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), default="provisioned")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    memberships: Mapped[list["Membership"]] = relationship(
        back_populates="resource",
        cascade="all, delete-orphan",
    )
