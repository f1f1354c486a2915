"""Abstract interfaces for remote control planes, plus shared HTTP plumbing."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..errors import RemoteApiError
from ..services.resilience import send_with_retry
from .types import (
    MachineConfig,
    MachineGuest,
    PlatformApplication,
    RemoteInstanceSnapshot,
    VolumeInfo,
)

logger = logging.getLogger(__name__)


class RemoteAppHost(ABC):
    """Anything that hosts applications the teardown coordinator can destroy."""

    @property
    @abstractmethod
    def provider_type(self) -> str:
        """Return the provider type identifier (e.g. 'fly', 'dbos')."""
        ...

    @abstractmethod
    async def destroy_app(self, app_name: str) -> None:
        """Destroy an application; the remote side cascades to its children."""
        ...


class ControlPlane(RemoteAppHost):
    """Machine-control API: apps, volumes, network identity, secrets, machines."""

    @abstractmethod
    async def create_app(self, app_name: str) -> None: ...

    @abstractmethod
    async def create_volume(
        self, app_name: str, name: str, size_gb: int, region: str, compute: MachineGuest,
    ) -> VolumeInfo: ...

    @abstractmethod
    async def delete_volume(self, app_name: str, volume_id: str) -> None: ...

    @abstractmethod
    async def allocate_ip(self, app_name: str) -> None: ...

    @abstractmethod
    async def stage_secrets(self, app_name: str, values: dict[str, str]) -> None: ...

    @abstractmethod
    async def create_machine(
        self, app_name: str, config: MachineConfig, region: Optional[str] = None,
    ) -> RemoteInstanceSnapshot: ...

    @abstractmethod
    async def list_machines(self, app_name: str) -> list[RemoteInstanceSnapshot]: ...

    @abstractmethod
    async def get_machine(self, app_name: str, machine_id: str) -> Optional[RemoteInstanceSnapshot]:
        """Return the machine, or None when the control plane answers 404."""
        ...

    @abstractmethod
    async def stop_machine(self, app_name: str, machine_id: str) -> None: ...


class DeployPlatform(RemoteAppHost):
    """Managed execution platform used for application deployments."""

    @abstractmethod
    async def list_databases(self) -> list[str]:
        """Names of databases already linked to the platform account."""
        ...

    @abstractmethod
    async def link_database(self, name: str, hostname: str, port: int, password: str) -> None: ...

    @abstractmethod
    async def get_application(self, app_name: str) -> Optional[PlatformApplication]: ...

    @abstractmethod
    async def register_application(self, app_name: str, database_name: str) -> None: ...

    @abstractmethod
    async def set_secrets(self, app_name: str, values: dict[str, str]) -> None: ...

    @abstractmethod
    async def deploy_archive(self, app_name: str, archive: str) -> str:
        """Submit a base64 packaged artifact; returns the new application version."""
        ...

    @abstractmethod
    async def get_logs(self, app_name: str) -> Any: ...


class HttpApiClient:
    """Shared httpx plumbing: auth header, 502/503 retry, error translation.

    Subclasses implement ``_auth_headers`` and build paths; everything that
    goes over the wire passes through ``_request``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        max_attempts: int = 5,
        backoff_seconds: float = 3.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def _auth_headers(self) -> dict[str, str]:
        raise NotImplementedError

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url, transport=self._transport, timeout=self._timeout,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        *,
        allow_404: bool = False,
    ) -> Optional[httpx.Response]:
        """Send one logical request; returns None on 404 when *allow_404*."""
        # Auth is resolved first so a missing token fails before any network I/O
        headers = await self._auth_headers()
        client = self._http()
        label = f"{method} {path}"

        async def send() -> httpx.Response:
            try:
                return await client.request(method, path, json=json, headers=headers)
            except httpx.HTTPError as e:
                raise RemoteApiError(None, str(e) or type(e).__name__, method=method, path=path) from e

        retry_kwargs: dict[str, Any] = {
            "label": label,
            "max_attempts": self._max_attempts,
            "backoff_seconds": self._backoff_seconds,
        }
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        response = await send_with_retry(send, **retry_kwargs)

        if allow_404 and response.status_code == 404:
            return None
        if response.is_success:
            return response

        logger.error("%s API error %s: %d %s", type(self).__name__, label, response.status_code, response.text)
        raise RemoteApiError(response.status_code, response.text, method=method, path=path)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
