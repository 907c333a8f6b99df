"""Pluggable byte-level token storage backends.

The engine serializes its token record itself; a store only keeps one
opaque blob in a single well-known slot. Provides the TokenStorage ABC
and in-memory, file, OS keyring and Redis implementations.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .config import TokenSettings


logger = logging.getLogger("authflow.tokens")


class TokenStorage(ABC):
    """Abstract persistent slot for the serialized token record.

    All methods are async to support both local and network-backed stores.
    """

    @abstractmethod
    async def save(self, data: bytes) -> None:
        """Replace the stored blob with ``data``."""

    @abstractmethod
    async def load(self) -> bytes | None:
        """Return the stored blob, or None if the slot is empty."""

    @abstractmethod
    async def clear(self) -> None:
        """Empty the slot. A no-op when it is already empty."""


class MemoryTokenStorage(TokenStorage):
    """In-process storage for tests and short-lived scripts."""

    def __init__(self) -> None:
        """Initialize the memory storage."""
        self._data: bytes | None = None
        self._lock = asyncio.Lock()

    async def save(self, data: bytes) -> None:
        """Keep the blob in memory."""
        async with self._lock:
            self._data = bytes(data)

    async def load(self) -> bytes | None:
        """Return the blob kept in memory."""
        async with self._lock:
            return self._data

    async def clear(self) -> None:
        """Drop the blob."""
        async with self._lock:
            self._data = None


class FileTokenStorage(TokenStorage):
    """Single-file storage with atomic replacement.

    The blob is written to a temporary file in the same directory and
    moved over the target, so readers see either the old or the new
    record. The file is created with owner-only permissions.

    Parameters
    ----------
    path : str or Path
        Target file; ``~`` is expanded.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the file storage."""
        self.path = Path(path).expanduser()

    def _write(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    def _read(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None

    async def save(self, data: bytes) -> None:
        """Atomically replace the token file."""
        await asyncio.get_running_loop().run_in_executor(None, self._write, data)

    async def load(self) -> bytes | None:
        """Read the token file."""
        return await asyncio.get_running_loop().run_in_executor(None, self._read)

    async def clear(self) -> None:
        """Delete the token file if present."""
        await asyncio.get_running_loop().run_in_executor(
            None, lambda: self.path.unlink(missing_ok=True)
        )


class KeyringTokenStorage(TokenStorage):
    """OS keyring-backed storage for persistent native credentials.

    Requires the ``keyring`` package: ``pip install authflow[keyring]``

    Parameters
    ----------
    service_name : str
        Keyring service name (default "authflow").
    username : str
        Keyring entry name for the single token slot.
    """

    def __init__(self, service_name: str = "authflow", username: str = "token") -> None:
        """Initialize the keyring storage."""
        try:
            import keyring as _keyring
            import keyring.errors as _keyring_errors
        except ImportError:
            msg = "Install keyring for persistent token storage: pip install authflow[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._username = username
        self._keyring = _keyring
        self._errors = _keyring_errors

    async def save(self, data: bytes) -> None:
        """Save the blob to the OS keyring."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self._keyring.set_password,
            self._service_name,
            self._username,
            data.decode("utf-8"),
        )

    async def load(self) -> bytes | None:
        """Load the blob from the OS keyring."""
        loop = asyncio.get_running_loop()
        value = await loop.run_in_executor(
            None, self._keyring.get_password, self._service_name, self._username
        )
        return value.encode("utf-8") if value is not None else None

    async def clear(self) -> None:
        """Delete the keyring entry if present."""
        loop = asyncio.get_running_loop()
        with contextlib.suppress(self._errors.PasswordDeleteError):
            await loop.run_in_executor(
                None, self._keyring.delete_password, self._service_name, self._username
            )


class RedisTokenStorage(TokenStorage):
    """Redis-backed storage for tokens shared by several processes.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    key : str
        Key holding the blob (default "authflow:token").
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", key: str = "authflow:token") -> None:
        """Initialize the Redis storage."""
        try:
            from redis.asyncio import Redis as RedisClient
        except ImportError:
            msg = "Redis backend requires the 'redis' package. Install with: pip install authflow[redis]"
            raise ImportError(msg) from None

        self._key = key
        self._redis: Any = RedisClient.from_url(redis_url)

    async def save(self, data: bytes) -> None:
        """SET replaces the value atomically."""
        await self._redis.set(self._key, data)

    async def load(self) -> bytes | None:
        """Load the blob from Redis."""
        return await self._redis.get(self._key)

    async def clear(self) -> None:
        """Delete the key."""
        await self._redis.delete(self._key)


def get_token_storage(backend: str = "memory", **kwargs: Any) -> TokenStorage:
    """Build a token storage backend.

    Parameters
    ----------
    backend : str
        "memory", "file", "keyring" or "redis".
    **kwargs : Any
        Backend options: ``path`` (file), ``service_name`` (keyring),
        ``redis_url`` and ``key`` (redis).

    Returns
    -------
    TokenStorage
        A new storage instance; callers own it.
    """
    if backend == "memory":
        return MemoryTokenStorage()
    if backend == "file":
        return FileTokenStorage(kwargs.get("path", "~/.config/authflow/token.json"))
    if backend == "keyring":
        return KeyringTokenStorage(service_name=kwargs.get("service_name", "authflow"))
    if backend == "redis":
        return RedisTokenStorage(
            redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
            key=kwargs.get("key", "authflow:token"),
        )
    msg = f"Unknown token storage backend: {backend}"
    raise ValueError(msg)


def storage_from_settings(settings: TokenSettings) -> TokenStorage:
    """Build the backend selected by :class:`~authflow.config.TokenSettings`."""
    logger.debug("Using %s token storage", settings.store_backend)
    return get_token_storage(
        settings.store_backend,
        path=settings.file_path,
        service_name=settings.keyring_service,
        redis_url=settings.redis_url,
        key=settings.redis_key,
    )
