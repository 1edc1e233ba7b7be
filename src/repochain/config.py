"""Configuration: a validated, immutable settings payload.

Resolution precedence is ``defaults < environment (.env included) < overrides``.
Secrets are held as ``SecretStr`` and redacted from string forms.

Example:
    settings = resolve_settings(overrides={"max_retries": 5})
    policy = settings.retry_policy()
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)

from repochain.errors import ConfigurationError
from repochain.retry import DEFAULT_INTERVAL_MS, DEFAULT_MAX_RETRIES, MAX_RETRIES_LIMIT, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_OAUTH_URL = "https://github.com/login/oauth/access_token"

# Environment variable → settings field
ENV_VARS: dict[str, str] = {
    "REPOCHAIN_API_URL": "api_url",
    "REPOCHAIN_OAUTH_URL": "oauth_url",
    "REPOCHAIN_TIMEOUT_S": "timeout_s",
    "REPOCHAIN_USER_AGENT": "user_agent",
    "REPOCHAIN_MAX_RETRIES": "max_retries",
    "REPOCHAIN_INTERVAL_MS": "interval_ms",
    "GITHUB_APP_ID": "app_id",
    "GITHUB_PRIVATE_KEY": "private_key",
    "GITHUB_INSTALLATION_ID": "installation_id",
    "GITHUB_CLIENT_ID": "client_id",
    "GITHUB_CLIENT_SECRET": "client_secret",
    "GITHUB_TOKEN": "access_token",
}

_SECRET_FIELDS = frozenset({"private_key", "client_secret", "access_token"})

_DOTENV_LOADED: bool = False


class Settings(BaseModel):
    """Settings schema: the single source of field types, defaults and rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    api_url: str = Field(default=DEFAULT_API_URL, min_length=1)
    oauth_url: str = Field(default=DEFAULT_OAUTH_URL, min_length=1)
    timeout_s: float = Field(default=30.0, gt=0)
    user_agent: str = Field(default="repochain", min_length=1)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, le=MAX_RETRIES_LIMIT)
    interval_ms: float = Field(default=DEFAULT_INTERVAL_MS, ge=0)

    # Installed-application identity
    app_id: str | None = None
    private_key: SecretStr | None = None
    installation_id: int | None = None

    # OAuth application credentials
    client_id: str | None = None
    client_secret: SecretStr | None = None

    # User identity
    access_token: SecretStr | None = None

    @field_validator("api_url", "oauth_url", mode="before")
    @classmethod
    def normalize_url(cls, v: Any) -> Any:
        """Trim whitespace and trailing slashes from endpoint URLs."""
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v

    @field_validator("app_id", "client_id", mode="before")
    @classmethod
    def normalize_identifier(cls, v: Any) -> Any:
        """Accept numeric ids; map blank strings to None."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            s = v.strip()
            return s or None
        return v

    @field_validator("private_key", "client_secret", "access_token", mode="before")
    @classmethod
    def normalize_secret(cls, v: Any) -> Any:
        """Trim secrets and map empty values to None."""
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if isinstance(v, str):
            s = v.strip()
            # Private keys pasted into env files often carry literal "\n".
            s = s.replace("\\n", "\n")
            return SecretStr(s) if s else None
        return v

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.app_id and self.private_key and self.installation_id)

    @property
    def has_oauth_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def retry_policy(self) -> RetryPolicy:
        """Default request retry policy derived from these settings."""
        return RetryPolicy(max_retries=self.max_retries, interval_ms=self.interval_ms)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        fields = []
        for name in type(self).model_fields:
            value = getattr(self, name)
            if name in _SECRET_FIELDS and value is not None:
                fields.append(f"{name}='[REDACTED]'")
            else:
                fields.append(f"{name}={value!r}")
        return f"Settings({', '.join(fields)})"

    __repr__ = __str__


def _try_load_dotenv() -> None:
    """Load a project ``.env`` once per process."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    from dotenv import load_dotenv

    load_dotenv()
    _DOTENV_LOADED = True


def load_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Read known settings from environment variables."""
    env = os.environ if environ is None else environ
    return {field: env[key] for key, field in ENV_VARS.items() if env.get(key)}


def resolve_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve settings from defaults, environment, and *overrides*.

    Raises:
        ConfigurationError: If validation fails.
    """
    if environ is None:
        _try_load_dotenv()

    merged = {**load_env(environ), **dict(overrides or {})}
    try:
        return Settings.model_validate(merged)
    except ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(p) for p in err.get("loc", ())) or "settings"
        msg = err.get("msg") or "invalid value"
        # Pydantic wraps custom validator messages
        if msg.startswith("Value error, "):
            msg = msg[13:]
        env_key = next((k for k, f in ENV_VARS.items() if f == loc), None)
        hint = f"Check {env_key} or the '{loc}' override." if env_key else None
        raise ConfigurationError(
            f"Configuration validation failed for {loc}: {msg}", hint=hint
        ) from e
