"""Tests for stratus.services.membership — lookup scoping and role management."""

import pytest

from stratus.errors import ConflictError, NotFoundError
from stratus.models.membership import Membership
from stratus.models.resource import KIND_DEPLOYMENT, KIND_WORKSPACE, ManagedResource
from stratus.services.membership import (
    add_member,
    find_membership,
    list_memberships,
    remove_member,
    require_membership,
)


def _resource(db, rid, owner, name, kind=KIND_WORKSPACE):
    resource = ManagedResource(
        id=rid, kind=kind, logical_name=name, remote_name=f"r-{rid}", owner_id=owner,
    )
    resource.memberships.append(Membership(principal_id=owner, role="owner", local_identity=f"user-{owner}"))
    db.add(resource)
    db.commit()
    return resource


class TestFind:
    def test_owner_and_member_lookup(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob")

        resource, membership = find_membership(db_session, "bob", KIND_WORKSPACE, "blog")
        assert resource.id == 1
        assert membership.role == "member"
        assert membership.local_identity == "user-bob"
        assert find_membership(db_session, "bob", KIND_WORKSPACE, "blog", owner_only=True) is None
        assert find_membership(db_session, "alice", KIND_WORKSPACE, "blog", owner_only=True) is not None

    def test_kind_is_part_of_the_key(self, db_session):
        _resource(db_session, 1, "alice", "blog", kind=KIND_DEPLOYMENT)
        assert find_membership(db_session, "alice", KIND_WORKSPACE, "blog") is None

    def test_require_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            require_membership(db_session, "alice", KIND_WORKSPACE, "nope")

    def test_list_is_scoped_to_principal_and_kind(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        _resource(db_session, 2, "alice", "shop")
        _resource(db_session, 3, "alice", "api", kind=KIND_DEPLOYMENT)
        _resource(db_session, 4, "bob", "blog")

        names = {r.logical_name for r, _ in list_memberships(db_session, "alice", KIND_WORKSPACE)}
        assert names == {"blog", "shop"}


class TestAddRemove:
    def test_only_owner_can_add(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob")
        with pytest.raises(NotFoundError):
            add_member(db_session, "bob", KIND_WORKSPACE, "blog", "carol")

    def test_duplicate_member_conflicts(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob")
        with pytest.raises(ConflictError):
            add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob")

    def test_unknown_role_rejected(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        with pytest.raises(ValueError):
            add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob", role="admin")

    def test_co_owner_can_destroy_scope(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob", role="owner")
        assert find_membership(db_session, "bob", KIND_WORKSPACE, "blog", owner_only=True) is not None

    def test_remove_member(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob")
        remove_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob")
        assert find_membership(db_session, "bob", KIND_WORKSPACE, "blog") is None

    def test_remove_unknown_member(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        with pytest.raises(NotFoundError):
            remove_member(db_session, "alice", KIND_WORKSPACE, "blog", "nobody")

    def test_last_owner_cannot_be_removed(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        with pytest.raises(ConflictError):
            remove_member(db_session, "alice", KIND_WORKSPACE, "blog", "alice")

    def test_owner_removable_when_another_owner_remains(self, db_session):
        _resource(db_session, 1, "alice", "blog")
        add_member(db_session, "alice", KIND_WORKSPACE, "blog", "bob", role="owner")
        remove_member(db_session, "bob", KIND_WORKSPACE, "blog", "alice")
        assert find_membership(db_session, "alice", KIND_WORKSPACE, "blog") is None
