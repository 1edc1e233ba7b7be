from __future__ import annotations

import base64

from nacl.public import PrivateKey, SealedBox
import pytest

from repochain.errors import EncryptionError
from repochain.github.sodium import SodiumProvider, encrypt_secret

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_sealed_value_opens_with_the_private_key() -> None:
    private = PrivateKey.generate()
    public_b64 = base64.b64encode(bytes(private.public_key)).decode()

    sealed = await encrypt_secret(public_b64, "s3cr3t")

    opened = SealedBox(private).decrypt(base64.b64decode(sealed))
    assert opened == b"s3cr3t"


@pytest.mark.asyncio
async def test_sealing_is_randomized() -> None:
    public_b64 = base64.b64encode(bytes(PrivateKey.generate().public_key)).decode()

    assert await encrypt_secret(public_b64, "v") != await encrypt_secret(public_b64, "v")


@pytest.mark.parametrize("bad_key", ["not base64!", base64.b64encode(b"short").decode()])
@pytest.mark.asyncio
async def test_malformed_keys_raise_encryption_error(bad_key: str) -> None:
    with pytest.raises(EncryptionError):
        await encrypt_secret(bad_key, "value")


@pytest.mark.asyncio
async def test_provider_is_ready_once_and_memoized() -> None:
    provider = SodiumProvider()
    assert provider.ready is False

    first = await provider()
    second = await provider()

    assert provider.ready is True
    assert first is second
    assert hasattr(first, "SealedBox")
