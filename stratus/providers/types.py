"""Typed structures for control-plane requests and responses.

Remote payloads are parsed into these once, at the client boundary, so the
services never poke at raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MachineState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    STARTED = "started"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SUSPENDING = "suspending"
    SUSPENDED = "suspended"
    REPLACING = "replacing"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    FAILED = "failed"
    UNKNOWN = "unknown"  # anything the control plane reports that we do not model

    @classmethod
    def parse(cls, raw: Optional[str]) -> "MachineState":
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_up(self) -> bool:
        return self in (MachineState.STARTED, MachineState.RUNNING)

    @property
    def is_stoppable(self) -> bool:
        return self in (MachineState.STARTED, MachineState.RUNNING, MachineState.STARTING)


@dataclass(frozen=True)
class MachineEvent:
    type: str
    status: str
    timestamp: int


@dataclass(frozen=True)
class RemoteInstanceSnapshot:
    """Point-in-time view of one compute instance. Never persisted."""

    id: str
    name: str
    state: MachineState
    raw_state: str
    region: str
    events: tuple[MachineEvent, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteInstanceSnapshot":
        raw = str(data.get("state") or "")
        events = tuple(
            MachineEvent(
                type=str(e.get("type", "")),
                status=str(e.get("status", "")),
                timestamp=int(e.get("timestamp") or 0),
            )
            for e in data.get("events") or []
        )
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            state=MachineState.parse(raw),
            raw_state=raw.strip().lower() or "unknown",
            region=str(data.get("region", "")),
            events=events,
        )


@dataclass(frozen=True)
class VolumeInfo:
    id: str
    name: str
    region: str
    size_gb: int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "VolumeInfo":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            region=str(data.get("region", "")),
            size_gb=int(data.get("size_gb") or 0),
        )


@dataclass(frozen=True)
class MachineGuest:
    cpu_kind: str = "shared"
    cpus: int = 2
    memory_mb: int = 2048

    def to_api(self) -> dict[str, Any]:
        return {"cpu_kind": self.cpu_kind, "cpus": self.cpus, "memory_mb": self.memory_mb}


@dataclass(frozen=True)
class ServicePort:
    port: int
    handlers: tuple[str, ...]


@dataclass(frozen=True)
class MachineService:
    """Inbound traffic definition routed to ``internal_port`` on the instance."""

    internal_port: int
    ports: tuple[ServicePort, ...] = (
        ServicePort(443, ("tls", "http")),
        ServicePort(80, ("http",)),
    )
    protocol: str = "tcp"
    autostop: str = "stop"  # off, stop, suspend
    autostart: bool = True
    min_machines_running: int = 0

    def to_api(self) -> dict[str, Any]:
        return {
            "ports": [{"port": p.port, "handlers": list(p.handlers)} for p in self.ports],
            "protocol": self.protocol,
            "internal_port": self.internal_port,
            "autostop": self.autostop,
            "autostart": self.autostart,
            "min_machines_running": self.min_machines_running,
        }


@dataclass(frozen=True)
class VolumeMount:
    volume: str
    path: str


@dataclass(frozen=True)
class MachineConfig:
    image: str
    guest: MachineGuest = field(default_factory=MachineGuest)
    services: tuple[MachineService, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    mounts: tuple[VolumeMount, ...] = ()
    auto_destroy: bool = False

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "image": self.image,
            "guest": self.guest.to_api(),
            "services": [s.to_api() for s in self.services],
            "mounts": [{"volume": m.volume, "path": m.path} for m in self.mounts],
            "auto_destroy": self.auto_destroy,
        }
        if self.env:
            body["env"] = dict(self.env)
        return body


@dataclass(frozen=True)
class PlatformApplication:
    """Application as reported by the managed deploy platform."""

    name: str
    status: str
    url: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PlatformApplication":
        return cls(
            name=str(data.get("Name") or data.get("name") or ""),
            status=str(data.get("Status") or "UNKNOWN"),
            url=data.get("AppURL") or None,
            version=data.get("ApplicationVersion") or None,
        )
