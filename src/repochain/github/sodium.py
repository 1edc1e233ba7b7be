"""Sealed-box encryption for Actions secrets.

GitHub stores repository secrets sealed with the repository's public key
(libsodium ``crypto_box_seal``). The sodium bindings are prepared once per
process on first use.
"""

from __future__ import annotations

import asyncio
import base64
import importlib
import logging
from typing import TYPE_CHECKING

from repochain.errors import EncryptionError

if TYPE_CHECKING:
    from types import ModuleType

logger = logging.getLogger(__name__)


class SodiumProvider:
    """Memoized, asynchronous "become ready" for the sodium bindings."""

    def __init__(self, module_name: str = "nacl.public") -> None:
        self._module_name = module_name
        self._module: ModuleType | None = None
        self._lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._module is not None

    async def __call__(self) -> ModuleType:
        if self._module is not None:
            return self._module
        async with self._lock:
            if self._module is None:
                logger.info("Preparing sodium")
                # Loading the native library can block; keep it off the loop.
                self._module = await asyncio.to_thread(
                    importlib.import_module, self._module_name
                )
                logger.info("sodium ready")
        return self._module


get_sodium = SodiumProvider()


async def encrypt_secret(
    public_key: str, value: str, *, sodium: SodiumProvider | None = None
) -> str:
    """Seal *value* for *public_key* (both base64, standard alphabet).

    Raises:
        EncryptionError: If the key is malformed or sealing fails.
    """
    nacl_public = await (sodium or get_sodium)()
    try:
        key = nacl_public.PublicKey(base64.b64decode(public_key, validate=True))
        sealed = nacl_public.SealedBox(key).encrypt(value.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise EncryptionError(
            f"Failed to encrypt secret: {exc}",
            hint="The public key must be the base64 'key' from the repository public-key endpoint.",
        ) from exc
    return base64.b64encode(sealed).decode("ascii")
