"""Tests for the workspace create path — ordering, idempotency, rollback, concurrency."""

import asyncio

import pytest
from sqlalchemy import func, select

from conftest import remote_error
from stratus.config import Settings
from stratus.errors import ProvisioningError
from stratus.models.membership import Membership
from stratus.models.resource import KIND_WORKSPACE, ManagedResource
from stratus.services import naming
from stratus.services.provisioning import provision_workspace
from stratus.services.resilience import error_tracker

CFG = Settings(
    machines_org="personal",
    app_domain="example.dev",
    workspace_prefix="stratus-dev",
    workspace_image="registry.example/dev:latest",
)


def _row_count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def _pin_hex(monkeypatch, *values):
    """Make random name allocation return *values* in order."""
    pending = list(values)
    monkeypatch.setattr(naming.secrets, "token_hex", lambda nbytes: pending.pop(0))


@pytest.fixture(autouse=True)
def _clear_tracker():
    error_tracker.clear()
    yield
    error_tracker.clear()


@pytest.mark.asyncio
async def test_end_to_end_create(db_session, control_plane, monkeypatch):
    _pin_hex(monkeypatch, "1a2b3c4d")
    result = await provision_workspace(db_session, control_plane, "alice", "blog", {"FOO": "bar"}, cfg=CFG)

    assert result == {
        "url": "https://stratus-dev-1a2b3c4d.example.dev/",
        "remote_name": "stratus-dev-1a2b3c4d",
        "warnings": [],
    }
    assert control_plane.names() == [
        "create_app", "create_volume", "allocate_ip", "stage_secrets", "create_machine",
    ]

    secrets = control_plane.calls[3][1][1]
    assert secrets == {"FOO": "bar", "APP_NAME": "blog", "DEV_USER": "user-alice"}

    resource = db_session.execute(select(ManagedResource)).scalar_one()
    assert resource.kind == KIND_WORKSPACE
    assert resource.owner_id == "alice"
    assert [(m.principal_id, m.role) for m in resource.memberships] == [("alice", "owner")]


@pytest.mark.asyncio
async def test_machine_config_policy(db_session, control_plane, monkeypatch):
    _pin_hex(monkeypatch, "00000001")
    await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    config = control_plane.last_config.to_api()
    assert config["image"] == "registry.example/dev:latest"
    assert config["guest"] == {"cpu_kind": "shared", "cpus": 2, "memory_mb": 2048}
    service = config["services"][0]
    assert service["internal_port"] == 4173
    assert service["autostop"] == "stop"
    assert service["autostart"] is True
    assert {p["port"] for p in service["ports"]} == {443, 80}
    assert config["mounts"] == [{"volume": "vol-stratus-dev-00000001", "path": "/data"}]

    volume_args = control_plane.calls[1][1]
    assert volume_args == ("stratus-dev-00000001", "app_data", 10, "iad")


@pytest.mark.asyncio
async def test_repeat_create_is_idempotent(db_session, control_plane):
    first = await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)
    calls_after_first = len(control_plane.calls)

    second = await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    assert second["url"] == first["url"]
    assert second["remote_name"] == first["remote_name"]
    assert len(control_plane.calls) == calls_after_first
    assert _row_count(db_session, ManagedResource) == 1


@pytest.mark.asyncio
async def test_same_name_different_owner_is_a_separate_workspace(db_session, control_plane):
    a = await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)
    b = await provision_workspace(db_session, control_plane, "bob", "blog", cfg=CFG)
    assert a["remote_name"] != b["remote_name"]
    assert _row_count(db_session, ManagedResource) == 2


@pytest.mark.asyncio
async def test_concurrent_creates_converge_on_one_row(db_session, control_plane):
    results = await asyncio.gather(
        provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG),
        provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG),
    )

    assert results[0]["url"] == results[1]["url"]
    assert _row_count(db_session, ManagedResource) == 1
    assert _row_count(db_session, Membership) == 1

    # Both raced to the control plane; the loser discards its own app
    created = [args[0] for name, args in control_plane.calls if name == "create_app"]
    destroyed = [args[0] for name, args in control_plane.calls if name == "destroy_app"]
    assert len(created) == 2
    assert len(destroyed) == 1
    assert destroyed[0] != results[0]["remote_name"]
    assert destroyed[0] in created


@pytest.mark.asyncio
async def test_create_app_failure_has_nothing_to_undo(db_session, control_plane):
    control_plane.failures["create_app"] = remote_error(422, "name taken")

    with pytest.raises(ProvisioningError) as exc:
        await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    assert exc.value.step == "create_app"
    assert control_plane.names() == ["create_app"]
    assert _row_count(db_session, ManagedResource) == 0


@pytest.mark.asyncio
async def test_volume_failure_rolls_back_app(db_session, control_plane, monkeypatch):
    control_plane.failures["create_volume"] = remote_error(500, "no capacity")
    _pin_hex(monkeypatch, "deadbeef")

    with pytest.raises(ProvisioningError) as exc:
        await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    assert exc.value.step == "create_volume"
    assert exc.value.rolled_back is True
    assert control_plane.names() == ["create_app", "create_volume", "destroy_app"]
    assert control_plane.calls[-1][1] == ("stratus-dev-deadbeef",)
    assert _row_count(db_session, ManagedResource) == 0


@pytest.mark.asyncio
async def test_machine_failure_leaves_app_and_volume(db_session, control_plane):
    control_plane.failures["create_machine"] = remote_error(500, "image pull failed")

    with pytest.raises(ProvisioningError) as exc:
        await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    assert exc.value.step == "create_machine"
    assert exc.value.rolled_back is False
    assert "destroy_app" not in control_plane.names()
    assert "delete_volume" not in control_plane.names()
    assert _row_count(db_session, ManagedResource) == 0


@pytest.mark.asyncio
async def test_retry_after_machine_failure_uses_a_fresh_name(db_session, control_plane, monkeypatch):
    _pin_hex(monkeypatch, "cafebabe", "0badf00d")
    control_plane.failures["create_machine"] = remote_error(500, "image pull failed")
    with pytest.raises(ProvisioningError):
        await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    del control_plane.failures["create_machine"]
    result = await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    assert result["remote_name"] == "stratus-dev-0badf00d"
    created = [args[0] for name, args in control_plane.calls if name == "create_app"]
    assert created == ["stratus-dev-cafebabe", "stratus-dev-0badf00d"]
    assert _row_count(db_session, ManagedResource) == 1


@pytest.mark.asyncio
async def test_best_effort_failures_become_warnings(db_session, control_plane):
    control_plane.failures["allocate_ip"] = remote_error(500, "no ips")
    control_plane.failures["stage_secrets"] = remote_error(500, "vault down")

    result = await provision_workspace(db_session, control_plane, "alice", "blog", cfg=CFG)

    assert len(result["warnings"]) == 2
    assert result["warnings"][0].startswith("allocate_ip failed")
    assert result["warnings"][1].startswith("stage_secrets failed")
    assert "create_machine" in control_plane.names()
    assert _row_count(db_session, ManagedResource) == 1
    assert {e["context"]["step"] for e in error_tracker.get_errors(source="provisioning")} == {
        "allocate_ip", "stage_secrets",
    }

