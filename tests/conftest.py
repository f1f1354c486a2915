"""Shared pytest fixtures — in-memory database and recording stubs for remote APIs."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import sessionmaker

from stratus.db import Base
from stratus.errors import RemoteApiError
from stratus.providers.base import ControlPlane, DeployPlatform
from stratus.providers.types import (
    MachineConfig,
    MachineGuest,
    MachineState,
    PlatformApplication,
    RemoteInstanceSnapshot,
    VolumeInfo,
)


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()


def make_machine(state: str, machine_id: str = "m-1") -> RemoteInstanceSnapshot:
    return RemoteInstanceSnapshot(
        id=machine_id, name=machine_id, state=MachineState.parse(state), raw_state=state, region="iad",
    )


class _Recorder:
    """Records every call; raises whatever is queued in ``failures`` for that method."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: dict[str, Exception] = {}

    async def _call(self, method: str, *args: Any) -> None:
        # Yield to the loop so concurrent callers really interleave
        await asyncio.sleep(0)
        self.calls.append((method, args))
        if method in self.failures:
            raise self.failures[method]

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def count(self, method: str) -> int:
        return self.names().count(method)


class StubControlPlane(_Recorder, ControlPlane):
    def __init__(self) -> None:
        super().__init__()
        self.machines: dict[str, list[RemoteInstanceSnapshot]] = {}
        self.last_config: Optional[MachineConfig] = None

    @property
    def provider_type(self) -> str:
        return "stub"

    async def create_app(self, app_name: str) -> None:
        await self._call("create_app", app_name)

    async def destroy_app(self, app_name: str) -> None:
        await self._call("destroy_app", app_name)
        self.machines.pop(app_name, None)

    async def create_volume(
        self, app_name: str, name: str, size_gb: int, region: str, compute: MachineGuest,
    ) -> VolumeInfo:
        await self._call("create_volume", app_name, name, size_gb, region)
        return VolumeInfo(id=f"vol-{app_name}", name=name, region=region, size_gb=size_gb)

    async def delete_volume(self, app_name: str, volume_id: str) -> None:
        await self._call("delete_volume", app_name, volume_id)

    async def allocate_ip(self, app_name: str) -> None:
        await self._call("allocate_ip", app_name)

    async def stage_secrets(self, app_name: str, values: dict[str, str]) -> None:
        await self._call("stage_secrets", app_name, dict(values))

    async def create_machine(
        self, app_name: str, config: MachineConfig, region: Optional[str] = None,
    ) -> RemoteInstanceSnapshot:
        await self._call("create_machine", app_name)
        self.last_config = config
        machine = make_machine("created", f"m-{app_name}")
        self.machines.setdefault(app_name, []).append(machine)
        return machine

    async def list_machines(self, app_name: str) -> list[RemoteInstanceSnapshot]:
        await self._call("list_machines", app_name)
        return list(self.machines.get(app_name, []))

    async def get_machine(self, app_name: str, machine_id: str) -> Optional[RemoteInstanceSnapshot]:
        await self._call("get_machine", app_name, machine_id)
        return next((m for m in self.machines.get(app_name, []) if m.id == machine_id), None)

    async def stop_machine(self, app_name: str, machine_id: str) -> None:
        await self._call("stop_machine", app_name, machine_id)


class StubPlatform(_Recorder, DeployPlatform):
    def __init__(self) -> None:
        super().__init__()
        self.databases: list[str] = []
        self.apps: dict[str, PlatformApplication] = {}
        self.deploy_gate: Optional[asyncio.Event] = None
        self._version = 0

    @property
    def provider_type(self) -> str:
        return "stub-platform"

    async def list_databases(self) -> list[str]:
        await self._call("list_databases")
        return list(self.databases)

    async def link_database(self, name: str, hostname: str, port: int, password: str) -> None:
        await self._call("link_database", name, hostname, port)
        self.databases.append(name)

    async def get_application(self, app_name: str) -> Optional[PlatformApplication]:
        await self._call("get_application", app_name)
        return self.apps.get(app_name)

    async def register_application(self, app_name: str, database_name: str) -> None:
        await self._call("register_application", app_name, database_name)
        self.apps[app_name] = PlatformApplication(name=app_name, status="REGISTERED")

    async def set_secrets(self, app_name: str, values: dict[str, str]) -> None:
        await self._call("set_secrets", app_name, dict(values))

    async def deploy_archive(self, app_name: str, archive: str) -> str:
        await self._call("deploy_archive", app_name, archive)
        if self.deploy_gate is not None:
            await self.deploy_gate.wait()
        self._version += 1
        return f"v{self._version}"

    async def get_logs(self, app_name: str) -> Any:
        await self._call("get_logs", app_name)
        return [{"message": f"{app_name} started"}]

    async def destroy_app(self, app_name: str) -> None:
        await self._call("destroy_app", app_name)
        self.apps.pop(app_name, None)


@pytest.fixture()
def control_plane() -> StubControlPlane:
    return StubControlPlane()


@pytest.fixture()
def platform() -> StubPlatform:
    return StubPlatform()


def remote_error(status: int, body: str = "boom") -> RemoteApiError:
    return RemoteApiError(status, body, method="POST", path="/test")
