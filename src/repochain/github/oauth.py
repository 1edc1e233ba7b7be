"""OAuth credential exchange: authorization codes and refresh tokens."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from repochain.errors import CredentialError
from repochain.request import create_request
from repochain.result import Failure, Success, capture_failure

if TYPE_CHECKING:
    from repochain.github.client import GitHubClient
    from repochain.result import Result
    from repochain.retry import RetryPolicy

logger = logging.getLogger(__name__)

OAUTH_HEADERS = {"accept": "application/json"}


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh token pair returned by the OAuth endpoint."""

    access_token: str
    refresh_token: str | None = None

    def __repr__(self) -> str:
        refresh = "'[REDACTED]'" if self.refresh_token else None
        return f"TokenPair(access_token='[REDACTED]', refresh_token={refresh})"

    __str__ = __repr__


def _token_pair(data: Any, failure: str) -> TokenPair:
    if not isinstance(data, dict):
        raise CredentialError(f"{failure} Unexpected response payload.")
    if data.get("error"):
        description = data.get("error_description") or data["error"]
        raise CredentialError(
            f"{failure} {description}",
            hint="Authorization codes are single-use and expire after ten minutes.",
        )
    access_token = data.get("access_token")
    if not access_token:
        raise CredentialError(f"{failure} Response carried no access_token.")
    return TokenPair(access_token=access_token, refresh_token=data.get("refresh_token"))


async def _exchange(
    client: GitHubClient,
    parameters: dict[str, Any],
    *,
    failure: str,
    oauth_url: str | None,
    policy: RetryPolicy | None,
) -> Result[TokenPair, CredentialError]:
    url = oauth_url or client.settings.oauth_url
    request = create_request(
        f"POST {url}", {**parameters, "headers": OAUTH_HEADERS}, policy=policy
    )
    result = await request.run_with(client)

    if isinstance(result, Failure):
        err = CredentialError(failure, hint="Check the OAuth client id and secret.")
        err.__cause__ = result.error
        return capture_failure(err, message=failure)

    try:
        return Success(_token_pair(result.value, failure))
    except CredentialError as exc:
        return capture_failure(exc, message=failure)


async def get_access_token_from_code(
    client: GitHubClient,
    client_id: str,
    client_secret: str,
    code: str,
    *,
    oauth_url: str | None = None,
    policy: RetryPolicy | None = None,
) -> Result[TokenPair, CredentialError]:
    """Exchange an authorization code for a token pair."""
    logger.info("Creating initial OAuth token.")
    return await _exchange(
        client,
        {"client_id": client_id, "client_secret": client_secret, "code": code},
        failure="Failed to create token.",
        oauth_url=oauth_url,
        policy=policy,
    )


async def get_access_token_from_refresh_token(
    client: GitHubClient,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    oauth_url: str | None = None,
    policy: RetryPolicy | None = None,
) -> Result[TokenPair, CredentialError]:
    """Trade a refresh token for a fresh token pair."""
    logger.info("Refreshing OAuth token.")
    return await _exchange(
        client,
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        },
        failure="Failed to refresh token.",
        oauth_url=oauth_url,
        policy=policy,
    )
