"""Naming service — remote resource names, reserved ids, and sandbox account names."""

from __future__ import annotations

import logging
import re
import secrets
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.sequence import ResourceSequence

logger = logging.getLogger(__name__)

DEFAULT_SEQUENCE = "managed_resources"
TOKEN_BYTES = 4
LOCAL_IDENTITY_MAX = 16


def allocate_name(prefix: str, resource_id: Optional[int] = None) -> str:
    """Return a remote name: ``{prefix}-{id}`` or ``{prefix}-{hex}``.

    Sequential mode (``resource_id`` given) is used where the name may be
    predictable. Random mode uses 4 random bytes so names cannot be
    enumerated. Every call draws a fresh name, so a retried create never
    collides with an app orphaned by an earlier attempt.

    Uniqueness is enforced by the control plane rejecting duplicates.
    """
    if resource_id is not None:
        return f"{prefix}-{resource_id}"
    return f"{prefix}-{secrets.token_hex(TOKEN_BYTES)}"


def reserve_id(db: Session, sequence: str = DEFAULT_SEQUENCE) -> int:
    """Reserve the next value of *sequence* and commit it.

    Reserved ids are never handed out twice, so they can be baked into
    remote names before the local row exists. Gaps are expected.
    """
    for _ in range(2):
        row = db.get(ResourceSequence, sequence, with_for_update=True)
        if row is None:
            row = ResourceSequence(name=sequence, next_value=1)
            db.add(row)
        value = row.next_value
        row.next_value = value + 1
        try:
            db.commit()
        except IntegrityError:
            # Another session created the counter row first
            db.rollback()
            continue
        logger.debug("Reserved %s id %d", sequence, value)
        return value
    raise RuntimeError(f"Could not reserve an id from sequence '{sequence}'")


def local_identity(principal_id: str) -> str:
    """Sandbox-scoped account name derived from a principal id."""
    cleaned = re.sub(r"[^a-zA-Z0-9]", "", principal_id)[:LOCAL_IDENTITY_MAX]
    return f"user-{cleaned}"


def external_url(remote_name: str, domain: Optional[str] = None) -> str:
    """Public endpoint for *remote_name* under the platform's well-known domain."""
    return f"https://{remote_name}.{domain or settings.app_domain}/"
