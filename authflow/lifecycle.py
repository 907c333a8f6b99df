"""Ownership of the current token record.

The lifecycle manager is the only component that writes the token
record. Every write replaces the record wholesale under one lock, so
concurrent readers observe either the previous record or the new one.
Reads always go back to the persistent store, so managers in other
processes or cores sharing that store see each other's writes.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING

from .models import TokenRecord
from .token_store import MemoryTokenStorage


if TYPE_CHECKING:
    from .token_store import TokenStorage


logger = logging.getLogger("authflow.tokens")


class TokenLifecycleManager:
    """Persists, exposes and clears the single active token record.

    Parameters
    ----------
    storage : TokenStorage, optional
        Byte-level persistent store (in-memory when omitted).
    """

    def __init__(self, storage: TokenStorage | None = None) -> None:
        """Initialize the lifecycle manager."""
        self.storage = storage or MemoryTokenStorage()
        self._record: TokenRecord | None = None
        self._data: bytes | None = None
        self._lock = asyncio.Lock()

    async def save(self, record: TokenRecord) -> None:
        """Replace any previous record with ``record``."""
        async with self._lock:
            data = record.to_bytes()
            await self.storage.save(data)
            self._record = record
            self._data = data
        logger.debug("Token record saved, expires at %d", record.expires_at)

    async def get(self) -> TokenRecord | None:
        """Return the record currently in storage.

        Unchanged bytes reuse the previously decoded record.

        Raises
        ------
        MalformedResponse
            If the persisted bytes are not a token record.
        """
        async with self._lock:
            data = await self.storage.load()
            if data is None:
                self._record = None
                self._data = None
            elif data != self._data:
                self._record = TokenRecord.from_bytes(data)
                self._data = data
            return self._record

    async def access_token(self) -> str | None:
        record = await self.get()
        return record.access_token if record else None

    async def refresh_token(self) -> str | None:
        record = await self.get()
        return record.refresh_token if record else None

    async def id_token(self) -> str | None:
        record = await self.get()
        return record.id_token if record else None

    async def is_expired(self, now: float) -> bool:
        """Whether the access token is unusable at ``now``.

        ``now >= expires_at`` counts as expired, and so does having no
        record at all.
        """
        record = await self.get()
        return record is None or record.is_expired(now)

    async def clear(self) -> None:
        """Remove the record. Safe to call when there is none."""
        async with self._lock:
            await self.storage.clear()
            self._record = None
            self._data = None
        logger.debug("Token record cleared")
