"""Identity providers and app JWT signing."""

from __future__ import annotations

import asyncio

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
import httpx
import jwt
import pytest

from repochain.config import Settings
from repochain.errors import ConfigurationError, CredentialError
from repochain.github.auth import (
    APP_JWT_SKEW_S,
    APP_JWT_TTL_S,
    ClientProvider,
    create_app_client_provider,
    create_app_jwt,
    create_user_client_provider,
    provider_from_settings,
)
from repochain.github.client import GitHubClient
from repochain.result import Failure, Success

pytestmark = pytest.mark.unit


@pytest.fixture(scope="module")
def rsa_key() -> tuple[str, str]:
    """Return a throwaway (private_pem, public_pem) pair."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = (
        key.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode()
    )
    return private_pem, public_pem


def test_app_jwt_claims(rsa_key: tuple[str, str]) -> None:
    private_pem, public_pem = rsa_key

    token = create_app_jwt(12345, private_pem, now=1_700_000_000)

    claims = jwt.decode(
        token, public_pem, algorithms=["RS256"], options={"verify_exp": False, "verify_iat": False}
    )
    assert claims == {
        "iat": 1_700_000_000 - APP_JWT_SKEW_S,
        "exp": 1_700_000_000 + APP_JWT_TTL_S,
        "iss": "12345",
    }


@pytest.mark.asyncio
async def test_provider_caches_the_first_success() -> None:
    built = 0

    async def factory() -> GitHubClient:
        nonlocal built
        built += 1
        return GitHubClient("t")

    provider = ClientProvider(factory, name="test client")

    first = await provider()
    second = await provider()

    assert isinstance(first, Success)
    assert second.value is first.value
    assert provider.cached is first.value
    assert built == 1
    await first.value.aclose()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_construction() -> None:
    built = 0

    async def factory() -> GitHubClient:
        nonlocal built
        built += 1
        await asyncio.sleep(0)
        return GitHubClient("t")

    provider = ClientProvider(factory)
    results = await asyncio.gather(*(provider() for _ in range(5)))

    assert built == 1
    assert len({id(r.value) for r in results}) == 1
    await results[0].value.aclose()


@pytest.mark.asyncio
async def test_failures_are_not_cached() -> None:
    attempts = 0

    async def factory() -> GitHubClient:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("bad key")
        return GitHubClient("t")

    provider = ClientProvider(factory)

    failed = await provider()
    assert isinstance(failed, Failure)
    assert isinstance(failed.error, CredentialError)
    assert str(failed.error) == "Failed to create GitHub client."
    assert isinstance(failed.error.__cause__, RuntimeError)
    assert provider.cached is None

    recovered = await provider()
    assert isinstance(recovered, Success)
    assert attempts == 2
    await recovered.value.aclose()


@pytest.mark.asyncio
async def test_user_provider_uses_the_token(fake_github) -> None:
    fake_github.on("GET", "/repos/o/r", {"id": 1})
    provider = create_user_client_provider("user-token", transport=fake_github.transport)

    result = await provider()
    async with result.value as client:
        await client.get_repo("o", "r")

    assert fake_github.calls[0].headers["authorization"] == "Bearer user-token"


@pytest.mark.parametrize("token", ["", "   ", None])
def test_user_provider_requires_a_token(token: object) -> None:
    with pytest.raises(ConfigurationError):
        create_user_client_provider(token)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_app_provider_exchanges_jwt_for_installation_token(
    fake_github, rsa_key: tuple[str, str]
) -> None:
    private_pem, public_pem = rsa_key
    fake_github.on(
        "POST",
        "/app/installations/77/access_tokens",
        httpx.Response(201, json={"token": "inst-token"}),
    )
    fake_github.on("GET", "/repos/o/r", {"id": 1})
    provider = create_app_client_provider("12", private_pem, 77, transport=fake_github.transport)

    result = await provider()
    async with result.value as client:
        await client.get_repo("o", "r")

    exchange, repo_call = fake_github.calls
    app_jwt = exchange.headers["authorization"].removeprefix("Bearer ")
    claims = jwt.decode(app_jwt, public_pem, algorithms=["RS256"])
    assert claims["iss"] == "12"
    assert repo_call.headers["authorization"] == "Bearer inst-token"


@pytest.mark.asyncio
async def test_app_provider_failure_is_reported(fake_github, rsa_key: tuple[str, str]) -> None:
    fake_github.on("POST", "/app/installations/77/access_tokens", 401)
    provider = create_app_client_provider(
        "12", rsa_key[0], 77, transport=fake_github.transport
    )

    result = await provider()

    assert isinstance(result, Failure)
    assert isinstance(result.error, CredentialError)
    assert provider.cached is None


def test_app_provider_requires_every_credential() -> None:
    with pytest.raises(ConfigurationError):
        create_app_client_provider("12", "", 77)


def test_provider_from_settings_prefers_the_app_identity(rsa_key: tuple[str, str]) -> None:
    settings = Settings(
        app_id="12", private_key=rsa_key[0], installation_id=77, access_token="user"
    )
    assert "app installation" in repr(provider_from_settings(settings))

    user_only = Settings(access_token="user")
    assert "user client" in repr(provider_from_settings(user_only))

    with pytest.raises(ConfigurationError):
        provider_from_settings(Settings())
