"""Identity providers: memoized factories for authenticated clients.

A provider is a single-assignment cell. The first successful construction
is kept for the life of the provider object (hold one per process for
process-wide reuse). A failed construction is not cached; the next call
builds from scratch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
import jwt

from repochain.errors import ConfigurationError, CredentialError
from repochain.github.client import GitHubClient
from repochain.result import Failure, Success, describe_failure

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from repochain.config import Settings
    from repochain.result import Result

logger = logging.getLogger(__name__)

# GitHub rejects app JWTs that live longer than ten minutes.
APP_JWT_TTL_S = 540
# Backdate issue time to tolerate clock drift.
APP_JWT_SKEW_S = 60


class ClientProvider:
    """Lazily construct and cache one authenticated client."""

    def __init__(
        self, factory: Callable[[], Awaitable[GitHubClient]], *, name: str = "client"
    ) -> None:
        self._factory = factory
        self._name = name
        self._client: GitHubClient | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        state = "ready" if self._client is not None else "empty"
        return f"ClientProvider(name={self._name!r}, state={state})"

    @property
    def cached(self) -> GitHubClient | None:
        return self._client

    async def __call__(self) -> Result[GitHubClient, CredentialError]:
        if self._client is not None:
            return Success(self._client)

        async with self._lock:
            if self._client is not None:
                return Success(self._client)
            try:
                client = await self._factory()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Failed to create %s: %s", self._name, describe_failure(exc), exc_info=exc
                )
                err = CredentialError(
                    "Failed to create GitHub client.",
                    hint="Check the configured credentials; the next call retries.",
                )
                err.__cause__ = exc
                return Failure(err)
            self._client = client
            return Success(client)


def create_app_jwt(app_id: str | int, private_key: str, *, now: float | None = None) -> str:
    """Sign the short-lived RS256 JWT that authenticates as the app itself."""
    issued = int(now if now is not None else time.time())
    payload = {
        "iat": issued - APP_JWT_SKEW_S,
        "exp": issued + APP_JWT_TTL_S,
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


def create_user_client_provider(
    access_token: str,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ClientProvider:
    """Provider for a client acting as the user who owns *access_token*."""
    if not isinstance(access_token, str) or not access_token.strip():
        raise ConfigurationError(
            "access_token must be a non-empty string", hint="Set GITHUB_TOKEN."
        )

    async def _factory() -> GitHubClient:
        return GitHubClient(access_token, settings=settings, transport=transport)

    return ClientProvider(_factory, name="user client")


def create_app_client_provider(
    app_id: str | int,
    private_key: str,
    installation_id: int,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ClientProvider:
    """Provider for a client acting as an app installation.

    The installation token is minted once, when the client is first built.
    """
    if not app_id or not private_key or not installation_id:
        raise ConfigurationError(
            "app_id, private_key and installation_id are required",
            hint="Set GITHUB_APP_ID, GITHUB_PRIVATE_KEY and GITHUB_INSTALLATION_ID.",
        )

    async def _factory() -> GitHubClient:
        app_token = create_app_jwt(app_id, private_key)
        async with GitHubClient(app_token, settings=settings, transport=transport) as app:
            response = await app.request(
                "POST /app/installations/{installation_id}/access_tokens",
                {"installation_id": installation_id},
            )
        data: Any = response.data
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise CredentialError("Installation token response carried no token.")
        return GitHubClient(token, settings=settings, transport=transport)

    return ClientProvider(_factory, name="app installation client")


def provider_from_settings(
    settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
) -> ClientProvider:
    """Pick the app identity when configured, otherwise the user token."""
    key = settings.private_key
    if settings.app_id and key is not None and settings.installation_id:
        return create_app_client_provider(
            settings.app_id,
            key.get_secret_value(),
            settings.installation_id,
            settings=settings,
            transport=transport,
        )
    if settings.access_token is not None:
        return create_user_client_provider(
            settings.access_token.get_secret_value(),
            settings=settings,
            transport=transport,
        )
    raise ConfigurationError(
        "No GitHub identity configured",
        hint="Set GITHUB_TOKEN, or GITHUB_APP_ID/GITHUB_PRIVATE_KEY/GITHUB_INSTALLATION_ID.",
    )
