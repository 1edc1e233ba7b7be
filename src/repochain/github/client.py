"""Authenticated GitHub REST client.

``request`` accepts method-and-path routes (``"GET /repos/{owner}/{repo}"`` or
``"POST https://github.com/login/oauth/access_token"``) plus a parameter
mapping. Path placeholders are filled from the parameters, a ``headers``
entry becomes request headers, and the rest is sent as the query string
(GET/HEAD/DELETE) or JSON body (everything else).
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass, field
import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from repochain._http import RETRYABLE_STATUS_CODES
from repochain.errors import (
    APIError,
    ConfigurationError,
    NotFoundError,
    RateLimitError,
    walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from repochain.config import Settings

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"

_ROUTE_RE = re.compile(r"^\s*([A-Za-z]+)\s+(\S+)\s*$")
_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")
_QUERY_METHODS = frozenset({"GET", "HEAD", "DELETE"})


@dataclass(frozen=True)
class Response:
    """Decoded response from a successful call."""

    status: int
    data: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    url: str = ""


def parse_route(route: str) -> tuple[str, str]:
    """Split ``"METHOD /path"`` into its method and URL template."""
    match = _ROUTE_RE.match(route) if isinstance(route, str) else None
    if match is None:
        raise ConfigurationError(
            f"Malformed route: {route!r}",
            hint='Routes look like "GET /repos/{owner}/{repo}".',
        )
    return match.group(1).upper(), match.group(2)


def expand_route(template: str, parameters: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """Fill ``{placeholders}`` from *parameters*; return the URL and leftovers."""
    remaining = dict(parameters)
    missing: list[str] = []

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in remaining or remaining[name] is None:
            missing.append(name)
            return match.group(0)
        return quote(str(remaining.pop(name)), safe="/")

    url = _PLACEHOLDER_RE.sub(_sub, template)
    if missing:
        raise ConfigurationError(
            f"Missing route parameters for {template!r}: {', '.join(missing)}"
        )
    return url, remaining


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def wrap_http_error(
    exc: BaseException | None = None,
    *,
    response: httpx.Response | None = None,
    route: str | None = None,
) -> APIError:
    """Map an HTTP failure into ``APIError`` with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc
    if isinstance(exc, APIError):
        if exc.route is None:
            exc.route = route
        return exc

    if response is None and exc is not None:
        response = getattr(exc, "response", None)

    status_code: int | None = None
    data: Any = None
    if isinstance(response, httpx.Response):
        status_code = response.status_code
        data = _decode_body(response)

    retryable = isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES
    if status_code is None and exc is not None:
        retryable = any(
            isinstance(e, (httpx.TimeoutException, httpx.TransportError))
            for e in walk_exception_chain(exc)
        )

    err_cls: type[APIError] = APIError
    hint: str | None = None
    if status_code == 404:
        err_cls = NotFoundError
        hint = "Check the owner, repository and path, and that the token can see them."
    elif status_code == 429 or (
        status_code == 403
        and isinstance(response, httpx.Response)
        and response.headers.get("x-ratelimit-remaining") == "0"
    ):
        err_cls = RateLimitError
        retryable = True
        hint = "Rate limit exceeded; wait and retry."
    elif status_code in {401, 403}:
        hint = "Check credentials and the permissions granted to the token."

    detail = data.get("message") if isinstance(data, dict) else None
    cause = detail or (str(exc) if exc is not None else "")
    status_note = f" (status={status_code})" if status_code is not None else ""
    msg = f"{route or 'request'} failed{status_note}"
    return err_cls(
        f"{msg}: {cause}" if cause else msg,
        hint=hint,
        status_code=status_code,
        response_data=data,
        retryable=retryable,
        route=route,
    )


class GitHubClient:
    """Thin async client over ``httpx.AsyncClient``.

    Example:
        async with GitHubClient(token) as client:
            repo = await client.get_repo("octo", "hello")
            print(repo.data["id"])
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        settings: Settings | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if settings is None:
            from repochain.config import Settings

            settings = Settings()
        self.settings = settings
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": settings.user_agent,
            "X-GitHub-Api-Version": API_VERSION,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url or settings.api_url,
            headers=headers,
            timeout=settings.timeout_s,
            transport=transport,
        )
        if http_client is not None:
            self._http.headers.update(headers)

    def __repr__(self) -> str:
        return f"GitHubClient(base_url={str(self._http.base_url)!r})"

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def request(
        self, route: str, parameters: Mapping[str, Any] | None = None
    ) -> Response:
        """Issue *route* with *parameters*; raise ``APIError`` on failure."""
        method, template = parse_route(route)
        url, remaining = expand_route(template, parameters or {})
        headers = dict(remaining.pop("headers", None) or {})

        kwargs: dict[str, Any] = {"headers": headers}
        if method in _QUERY_METHODS:
            kwargs["params"] = {k: v for k, v in remaining.items() if v is not None}
        elif remaining:
            kwargs["json"] = remaining

        logger.debug("%s %s", method, url)
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise wrap_http_error(exc, route=route) from exc

        if response.is_error:
            raise wrap_http_error(response=response, route=route)

        return Response(
            status=response.status_code,
            data=_decode_body(response),
            headers=dict(response.headers),
            url=str(response.url),
        )

    # --- Bound operations ---

    async def get_repo(self, owner: str, repo: str) -> Response:
        return await self.request("GET /repos/{owner}/{repo}", {"owner": owner, "repo": repo})

    async def get_repo_by_id(self, repository_id: int) -> Response:
        return await self.request(
            "GET /repositories/{repository_id}", {"repository_id": repository_id}
        )

    async def get_repo_public_key(self, owner: str, repo: str) -> Response:
        """Key used to seal Actions secrets (``key`` and ``key_id``)."""
        return await self.request(
            "GET /repos/{owner}/{repo}/actions/secrets/public-key",
            {"owner": owner, "repo": repo},
        )

    async def create_or_update_repo_secret(
        self,
        owner: str,
        repo: str,
        secret_name: str,
        encrypted_value: str,
        key_id: str,
    ) -> Response:
        return await self.request(
            "PUT /repos/{owner}/{repo}/actions/secrets/{secret_name}",
            {
                "owner": owner,
                "repo": repo,
                "secret_name": secret_name,
                "encrypted_value": encrypted_value,
                "key_id": key_id,
            },
        )

    async def get_content(
        self, owner: str, repo: str, path: str, ref: str | None = None
    ) -> Response:
        return await self.request(
            "GET /repos/{owner}/{repo}/contents/{path}",
            {"owner": owner, "repo": repo, "path": path, "ref": ref},
        )

    async def create_or_update_file_contents(
        self,
        owner: str,
        repo: str,
        path: str,
        message: str,
        content: str | bytes,
        branch: str | None = None,
        sha: str | None = None,
    ) -> Response:
        """Write a file; pass the blob ``sha`` when replacing an existing file."""
        raw = content.encode("utf-8") if isinstance(content, str) else content
        params: dict[str, Any] = {
            "owner": owner,
            "repo": repo,
            "path": path,
            "message": message,
            "content": base64.b64encode(raw).decode("ascii"),
        }
        if branch is not None:
            params["branch"] = branch
        if sha is not None:
            params["sha"] = sha
        return await self.request("PUT /repos/{owner}/{repo}/contents/{path}", params)

    async def get_ref(self, owner: str, repo: str, ref: str) -> Response:
        """Look up a ref such as ``heads/main``."""
        return await self.request(
            "GET /repos/{owner}/{repo}/git/ref/{ref}",
            {"owner": owner, "repo": repo, "ref": ref},
        )

    async def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> Response:
        """Create a ref; *ref* must be fully qualified (``refs/heads/name``)."""
        return await self.request(
            "POST /repos/{owner}/{repo}/git/refs",
            {"owner": owner, "repo": repo, "ref": ref, "sha": sha},
        )
