"""Repository operations composed from requests and task chains."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from repochain.chain import Task, TaskChain, TaskEvent, TaskInput, TaskSignal
from repochain.errors import EncryptionError, MissingFieldError, NotFoundError
from repochain.github.sodium import encrypt_secret
from repochain.request import create_request
from repochain.result import Failure, Success, capture_failure
from repochain.retry import DEFAULT_INTERVAL_MS, DEFAULT_MAX_RETRIES

if TYPE_CHECKING:
    from collections.abc import Iterable

    from repochain.chain import ExecutionContext
    from repochain.github.client import GitHubClient
    from repochain.github.sodium import SodiumProvider
    from repochain.result import Result
    from repochain.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecretData:
    """A named Actions secret in plaintext."""

    key: str
    value: str

    def __repr__(self) -> str:
        return f"SecretData(key={self.key!r}, value='[REDACTED]')"


async def get_repo_id(
    client: GitHubClient, owner: str, repo: str, *, policy: RetryPolicy | None = None
) -> Result[int, BaseException]:
    """Look up the numeric id of ``owner/repo``."""
    return await (
        create_request("GET /repos/{owner}/{repo}", {"owner": owner, "repo": repo}, policy=policy)
        .with_field("id")
        .run_with(client)
    )


def _missing_key_field(payload: Any) -> str | None:
    for name in ("key_id", "key"):
        if not isinstance(payload, dict) or name not in payload:
            return name
    return None


async def update_secrets(
    client: GitHubClient,
    owner: str,
    repo: str,
    secrets: Iterable[SecretData],
    *,
    sodium: SodiumProvider | None = None,
    policy: RetryPolicy | None = None,
) -> Result[list[str], BaseException]:
    """Seal and store each secret; return the names stored.

    Stops at the first failure. Secrets stored before it stay stored.
    """
    key_result = await create_request(
        "GET /repos/{owner}/{repo}/actions/secrets/public-key",
        {"owner": owner, "repo": repo},
        policy=policy,
    ).run_with(client)
    if isinstance(key_result, Failure):
        return key_result
    public_key: dict[str, Any] = key_result.value
    missing = _missing_key_field(public_key)
    if missing is not None:
        return capture_failure(
            MissingFieldError(missing), message=f"Malformed public key for {repo}:"
        )

    logger.info("Attempting to store secrets for %s.", repo)
    store = create_request(
        "PUT /repos/{owner}/{repo}/actions/secrets/{secret_name}",
        {"owner": owner, "repo": repo, "key_id": public_key["key_id"]},
        policy=policy,
    )

    stored: list[str] = []
    for secret in secrets:
        try:
            encrypted = await encrypt_secret(public_key["key"], secret.value, sodium=sodium)
        except EncryptionError as exc:
            return capture_failure(exc, message=f"Failed to encrypt {secret.key}:")
        result = await store.with_parameters(
            secret_name=secret.key, encrypted_value=encrypted
        ).run_with(client)
        if isinstance(result, Failure):
            return result
        stored.append(secret.key)
    return Success(stored)


def build_secret_sync_chain(
    client: GitHubClient,
    *,
    sodium: SodiumProvider | None = None,
    retries: int = DEFAULT_MAX_RETRIES,
    interval: float = DEFAULT_INTERVAL_MS,
) -> TaskChain:
    """Chain: look up the repository, fetch its public key, store secrets.

    Inputs: ``owner``, ``repo`` and ``secrets`` (a list of ``SecretData``).
    """

    async def repository(context: ExecutionContext) -> dict[str, Any]:
        inputs = context.inputs
        response = await client.get_repo(inputs["owner"], inputs["repo"])
        return response.data

    async def public_key(context: ExecutionContext) -> dict[str, Any]:
        inputs = context.inputs
        response = await client.get_repo_public_key(inputs["owner"], inputs["repo"])
        missing = _missing_key_field(response.data)
        if missing is not None:
            raise MissingFieldError(missing)
        return response.data

    async def store_secrets(context: ExecutionContext) -> list[str]:
        inputs = context.inputs
        key = context.step_value("public-key")
        stored = []
        for secret in inputs["secrets"]:
            encrypted = await encrypt_secret(key["key"], secret.value, sodium=sodium)
            await client.create_or_update_repo_secret(
                inputs["owner"], inputs["repo"], secret.key, encrypted, key["key_id"]
            )
            stored.append(secret.key)
        return stored

    retry_kwargs = {"retries": retries, "interval": interval}
    return TaskChain(
        [
            Task(
                "repository",
                repository,
                inputs=[TaskInput("owner", is_template=False), TaskInput("repo", is_template=False)],
                **retry_kwargs,
            ),
            Task("public-key", public_key, **retry_kwargs),
            Task("secrets", store_secrets, inputs=[TaskInput("secrets", [])], **retry_kwargs),
        ]
    )


def _tolerate_missing_file(event: TaskEvent) -> None:
    if isinstance(event.context.get("error"), NotFoundError):
        event.break_chain(False)


def build_file_update_chain(
    client: GitHubClient,
    *,
    retries: int = DEFAULT_MAX_RETRIES,
    interval: float = DEFAULT_INTERVAL_MS,
) -> TaskChain:
    """Chain: resolve the base ref, branch off it, then create or replace a file.

    Inputs: ``owner``, ``repo``, ``path``, ``content``, ``message``,
    ``base`` (default ``"main"``) and ``branch`` (``None`` writes to ``base``).
    A missing file does not abort the chain; it is created instead.
    """

    async def base_ref(context: ExecutionContext) -> dict[str, Any]:
        i = context.inputs
        response = await client.get_ref(i["owner"], i["repo"], f"heads/{i['base']}")
        return response.data

    async def branch(context: ExecutionContext) -> dict[str, Any] | None:
        i = context.inputs
        if not i.get("branch") or i["branch"] == i["base"]:
            return None
        sha = context.step_value("base-ref")["object"]["sha"]
        response = await client.create_ref(i["owner"], i["repo"], f"refs/heads/{i['branch']}", sha)
        return response.data

    async def existing_file(context: ExecutionContext) -> dict[str, Any]:
        i = context.inputs
        response = await client.get_content(
            i["owner"], i["repo"], i["path"], ref=i.get("branch") or i["base"]
        )
        return response.data

    async def write_file(context: ExecutionContext) -> dict[str, Any]:
        i = context.inputs
        existing = context.steps.get("existing-file")
        sha = existing.value.get("sha") if isinstance(existing, Success) else None
        response = await client.create_or_update_file_contents(
            i["owner"],
            i["repo"],
            i["path"],
            i["message"],
            i["content"],
            branch=i.get("branch") or i["base"],
            sha=sha,
        )
        return response.data

    retry_kwargs = {"retries": retries, "interval": interval}
    lookup = Task(
        "existing-file",
        existing_file,
        inputs=[TaskInput("path", is_template=False)],
        **retry_kwargs,
    )
    lookup.subscribe(TaskSignal.ERROR, _tolerate_missing_file)
    return TaskChain(
        [
            Task(
                "base-ref",
                base_ref,
                inputs=[
                    TaskInput("owner", is_template=False),
                    TaskInput("repo", is_template=False),
                    TaskInput("base", "main", is_template=False),
                ],
                **retry_kwargs,
            ),
            Task("branch", branch, inputs=[TaskInput("branch", is_template=False)], **retry_kwargs),
            lookup,
            Task(
                "write-file",
                write_file,
                inputs=[
                    TaskInput("content", is_template=False),
                    TaskInput("message", is_template=False),
                ],
                **retry_kwargs,
            ),
        ]
    )
