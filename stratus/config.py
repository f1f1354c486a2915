"""Stratus configuration — loads from environment and local config files."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _find_repo_root() -> Path:
    """Walk up from this file to find the repo root (where pyproject.toml lives)."""
    p = Path(__file__).resolve().parent
    while p != p.parent:
        if (p / "pyproject.toml").exists():
            return p
        p = p.parent
    return Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings — populated from env vars or .env file."""

    # App
    app_name: str = "Stratus"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # Database
    database_url: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Auth — set STRATUS_API_KEY to enable API key auth
    api_key: Optional[str] = None

    # Machine control plane
    machines_api_url: str = "https://api.machines.dev"
    machines_api_token: Optional[str] = None
    machines_org: Optional[str] = None
    machines_region: str = "iad"
    app_domain: str = "fly.dev"

    # Workspaces
    workspace_prefix: str = "stratus-dev"
    workspace_image: str = "registry.fly.io/stratus-dev-image:latest"
    workspace_volume_gb: int = 10
    workspace_internal_port: int = 4173

    # Retry policy for 502/503 from remote APIs
    retry_attempts: int = 5
    retry_backoff_seconds: float = 3.0

    # Application-level health probe
    health_path: str = "/"
    health_timeout_seconds: float = 5.0

    # Deploy platform
    deploy_api_url: str = "https://cloud.dbos.dev"
    deploy_auth_url: str = "https://login.dbos.dev/oauth/token"
    deploy_client_id: str = ""
    deploy_org: Optional[str] = None
    deploy_api_token: Optional[str] = None
    deploy_refresh_token: Optional[str] = None
    deploy_prefix: str = "stratus"

    # Backing database linked to each deployment
    deploy_db_host: str = ""
    deploy_db_port: int = 5432
    deploy_db_password: str = ""

    # Paths
    repo_root: Path = _find_repo_root()

    model_config = {"env_prefix": "STRATUS_", "env_file": ".env"}

    @property
    def local_dir(self) -> Path:
        return self.repo_root / "local"

    @property
    def data_dir(self) -> Path:
        d = self.local_dir / "data"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'stratus.db'}"


settings = Settings()
