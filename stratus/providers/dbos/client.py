"""DBOS Cloud client — the managed platform that hosts application deployments.

All user applications live under one platform account and organisation.
The platform token never leaves the server: it is either configured
directly or minted from a refresh token and cached until shortly before
its JWT ``exp``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx
import jwt

from ...config import Settings, settings as default_settings
from ...errors import ConfigurationError, RemoteApiError
from ..base import DeployPlatform, HttpApiClient
from ..types import PlatformApplication

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN = 60  # seconds


def decode_jwt_exp(token: str) -> float:
    """Return the ``exp`` claim of a JWT without verifying it, or 0."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError:
        return 0
    exp = claims.get("exp")
    return float(exp) if isinstance(exp, (int, float)) else 0


class DbosCloudClient(HttpApiClient, DeployPlatform):
    """Typed client for the deploy platform, scoped to one organisation."""

    def __init__(
        self,
        org: Optional[str],
        *,
        token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        auth_url: str = "",
        client_id: str = "",
        base_url: str = "https://cloud.dbos.dev",
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, **kwargs)
        self._org = org
        self._static_token = token
        self._refresh_token = refresh_token
        self._auth_url = auth_url
        self._client_id = client_id
        self._cached_token: Optional[str] = None
        self._cached_exp: float = 0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings, **kwargs: Any) -> "DbosCloudClient":
        return cls(
            cfg.deploy_org,
            token=cfg.deploy_api_token,
            refresh_token=cfg.deploy_refresh_token,
            auth_url=cfg.deploy_auth_url,
            client_id=cfg.deploy_client_id,
            base_url=cfg.deploy_api_url,
            max_attempts=cfg.retry_attempts,
            backoff_seconds=cfg.retry_backoff_seconds,
            **kwargs,
        )

    @property
    def provider_type(self) -> str:
        return "dbos"

    # ── Auth ──────────────────────────────────────────────────────────────

    async def _auth_headers(self) -> dict[str, str]:
        if not self._org:
            raise ConfigurationError("Deploy organisation not configured (set STRATUS_DEPLOY_ORG)")
        token = await self._access_token()
        return {"Authorization": f"Bearer {token}"}

    async def _access_token(self) -> str:
        if self._static_token:
            return self._static_token
        if not self._refresh_token:
            raise ConfigurationError(
                "Deploy credentials not configured "
                "(set STRATUS_DEPLOY_API_TOKEN or STRATUS_DEPLOY_REFRESH_TOKEN)"
            )
        async with self._token_lock:
            if self._cached_token and time.time() < self._cached_exp - TOKEN_EXPIRY_MARGIN:
                return self._cached_token

            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                resp = await client.post(self._auth_url, data={
                    "grant_type": "refresh_token",
                    "client_id": self._client_id,
                    "refresh_token": self._refresh_token,
                })
            if not resp.is_success:
                raise RemoteApiError(resp.status_code, resp.text, method="POST", path="oauth/token")

            self._cached_token = resp.json()["access_token"]
            self._cached_exp = decode_jwt_exp(self._cached_token)
            logger.info("Refreshed deploy platform token")
            return self._cached_token

    def _path(self, suffix: str) -> str:
        return f"/v1alpha1/{self._org}{suffix}"

    # ── Databases ─────────────────────────────────────────────────────────

    async def list_databases(self) -> list[str]:
        resp = await self._request("GET", self._path("/databases"))
        return [d.get("PostgresInstanceName", "") for d in self._json(resp) or []]

    async def link_database(self, name: str, hostname: str, port: int, password: str) -> None:
        await self._request("POST", self._path("/databases/byod"), {
            "Name": name,
            "HostName": hostname,
            "Port": port,
            "Password": password,
            "captureProvenance": False,
        })
        logger.info("Linked database %s (%s:%d)", name, hostname, port)

    # ── Applications ──────────────────────────────────────────────────────

    async def get_application(self, app_name: str) -> Optional[PlatformApplication]:
        resp = await self._request("GET", self._path(f"/applications/{app_name}"), allow_404=True)
        if resp is None:
            return None
        data = self._json(resp)
        if not isinstance(data, dict):
            return PlatformApplication(name=app_name, status="UNKNOWN")
        return PlatformApplication.from_api(data)

    async def register_application(self, app_name: str, database_name: str) -> None:
        await self._request("PUT", self._path("/applications"), {
            "name": app_name,
            "database": database_name,
            "language": "node",
            "provenancedb": "",
        })
        logger.info("Registered application %s on database %s", app_name, database_name)

    async def set_secrets(self, app_name: str, values: dict[str, str]) -> None:
        if not values:
            return
        await asyncio.gather(*(
            self._request("POST", self._path("/applications/secrets"), {
                "ApplicationName": app_name,
                "SecretName": key,
                "ClearSecretValue": value,
            })
            for key, value in values.items()
        ))

    async def deploy_archive(self, app_name: str, archive: str) -> str:
        resp = await self._request(
            "POST", self._path(f"/applications/{app_name}"), {"application_archive": archive},
        )
        data = self._json(resp)
        version = data.get("ApplicationVersion") if isinstance(data, dict) else None
        return version or "unknown"

    async def get_logs(self, app_name: str) -> Any:
        resp = await self._request("GET", self._path(f"/applications/{app_name}/logs"))
        return self._json(resp)

    async def destroy_app(self, app_name: str) -> None:
        await self._request("DELETE", self._path(f"/applications/{app_name}"))
        logger.info("Deleted application %s", app_name)
