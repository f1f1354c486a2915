"""Membership service — who may see, stop, or destroy a managed resource."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError
from ..models.membership import ROLE_MEMBER, ROLE_OWNER, ROLES, Membership
from ..models.resource import ManagedResource
from .naming import local_identity

logger = logging.getLogger(__name__)


def find_membership(
    db: Session,
    principal_id: str,
    kind: str,
    logical_name: str,
    owner_only: bool = False,
) -> Optional[tuple[ManagedResource, Membership]]:
    """Return ``(resource, membership)`` if *principal_id* belongs to the named resource.

    ``logical_name`` is resolved within the memberships of the caller, so a
    member can address a resource by the name its owner gave it.
    """
    stmt = (
        select(ManagedResource, Membership)
        .join(Membership, Membership.resource_id == ManagedResource.id)
        .where(
            Membership.principal_id == principal_id,
            ManagedResource.kind == kind,
            ManagedResource.logical_name == logical_name,
        )
        .order_by(ManagedResource.created_at)
    )
    if owner_only:
        stmt = stmt.where(Membership.role == ROLE_OWNER)
    row = db.execute(stmt).first()
    if row is None:
        return None
    return row[0], row[1]


def require_membership(
    db: Session,
    principal_id: str,
    kind: str,
    logical_name: str,
    owner_only: bool = False,
) -> tuple[ManagedResource, Membership]:
    """Like ``find_membership`` but raises ``NotFoundError``.

    Missing role and missing resource look the same to the caller so
    non-owners cannot probe which names exist.
    """
    found = find_membership(db, principal_id, kind, logical_name, owner_only=owner_only)
    if found is None:
        if owner_only:
            raise NotFoundError(f"'{logical_name}' not found or you are not the owner")
        raise NotFoundError(f"'{logical_name}' not found")
    return found


def find_owned(db: Session, owner_id: str, kind: str, logical_name: str) -> Optional[ManagedResource]:
    """Lookup used by the create paths' idempotency check."""
    return db.execute(
        select(ManagedResource).where(
            ManagedResource.kind == kind,
            ManagedResource.owner_id == owner_id,
            ManagedResource.logical_name == logical_name,
        )
    ).scalar_one_or_none()


def list_memberships(db: Session, principal_id: str, kind: str) -> list[tuple[ManagedResource, Membership]]:
    rows = db.execute(
        select(ManagedResource, Membership)
        .join(Membership, Membership.resource_id == ManagedResource.id)
        .where(Membership.principal_id == principal_id, ManagedResource.kind == kind)
        .order_by(ManagedResource.created_at.desc())
    ).all()
    return [(r, m) for r, m in rows]


def add_member(
    db: Session,
    owner_id: str,
    kind: str,
    logical_name: str,
    principal_id: str,
    role: str = ROLE_MEMBER,
) -> Membership:
    """Grant *principal_id* a role on a resource owned by *owner_id*."""
    if role not in ROLES:
        raise ValueError(f"Unknown role '{role}'. Expected one of {ROLES}")
    resource, _ = require_membership(db, owner_id, kind, logical_name, owner_only=True)

    membership = Membership(
        resource_id=resource.id,
        principal_id=principal_id,
        role=role,
        local_identity=local_identity(principal_id),
    )
    db.add(membership)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"'{principal_id}' is already a member of '{logical_name}'")
    db.refresh(membership)
    logger.info("Granted %s role %s on %s", principal_id, role, resource.remote_name)
    return membership


def remove_member(db: Session, owner_id: str, kind: str, logical_name: str, principal_id: str) -> None:
    resource, _ = require_membership(db, owner_id, kind, logical_name, owner_only=True)
    membership = db.get(Membership, (resource.id, principal_id))
    if membership is None:
        raise NotFoundError(f"'{principal_id}' is not a member of '{logical_name}'")

    if membership.role == ROLE_OWNER:
        owners = db.execute(
            select(func.count()).select_from(Membership).where(
                Membership.resource_id == resource.id, Membership.role == ROLE_OWNER,
            )
        ).scalar_one()
        if owners <= 1:
            raise ConflictError(f"Cannot remove the last owner of '{logical_name}'")

    db.delete(membership)
    db.commit()
    logger.info("Removed %s from %s", principal_id, resource.remote_name)
