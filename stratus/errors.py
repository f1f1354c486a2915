"""Error hierarchy shared by services, provider clients and the API layer.

Every error carries the HTTP status the API should answer with, so routers
never have to translate exceptions one by one.
"""

from __future__ import annotations


class StratusError(Exception):
    """Base class for errors surfaced to callers as a single message."""

    status_code: int = 500


class ConfigurationError(StratusError):
    """Required configuration (API token, organisation) is missing. Never retried."""

    status_code = 500


class NotFoundError(StratusError):
    """Resource missing — also used when the caller lacks the required role."""

    status_code = 404


class ConflictError(StratusError):
    status_code = 409


class RemoteApiError(StratusError):
    """Non-2xx response (or transport failure) from a remote control plane."""

    status_code = 502

    def __init__(self, status: int | None, body: str, *, method: str = "", path: str = "") -> None:
        self.status = status
        self.body = body
        self.method = method
        self.path = path
        where = f"{method} {path} " if method else ""
        code = status if status is not None else "network error"
        super().__init__(f"{where}failed ({code}): {body}")

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class ProvisioningError(StratusError):
    """A provisioning step failed; ``step`` names it, ``remote_name`` the app involved."""

    status_code = 502

    def __init__(self, step: str, remote_name: str, cause: Exception, *, rolled_back: bool = False) -> None:
        self.step = step
        self.remote_name = remote_name
        self.cause = cause
        self.rolled_back = rolled_back
        suffix = " (rolled back)" if rolled_back else ""
        super().__init__(f"Create failed at {step} for '{remote_name}'{suffix}: {cause}")
