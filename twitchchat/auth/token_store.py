"""Token cache with write-through to secret storage."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from pydantic import ValidationError

from ..constants import TOKEN_EXPIRY_BUFFER_SECONDS, TOKEN_STORAGE_KEY
from .models import TokenData


class SecretStorage(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemorySecretStorage:
    """Process-local ``SecretStorage``; nothing survives a restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class TokenStore:
    def __init__(
        self,
        storage: SecretStorage | None = None,
        key: str = TOKEN_STORAGE_KEY,
        expiry_buffer_seconds: int = TOKEN_EXPIRY_BUFFER_SECONDS,
    ) -> None:
        self.storage: SecretStorage = storage or MemorySecretStorage()
        self.key = key
        self.expiry_buffer = timedelta(seconds=expiry_buffer_seconds)
        self._cache: TokenData | None = None
        self._loaded = False

    async def store_tokens(self, token: TokenData) -> None:
        self._cache = token
        self._loaded = True
        await self.storage.set(self.key, token.model_dump_json())
        logging.debug(f"💾 Stored token expiring at {token.expires_at.isoformat()}")

    async def get_stored_tokens(self) -> TokenData | None:
        """Cached token, loading it from storage on first use.

        Unreadable stored data is logged and treated as absent.
        """
        if self._loaded:
            return self._cache
        raw = await self.storage.get(self.key)
        self._loaded = True
        if not raw:
            self._cache = None
            return None
        try:
            self._cache = TokenData.model_validate_json(raw)
        except ValidationError as e:
            logging.warning(f"⚠️ Stored token data is corrupt, ignoring it: {e.error_count()} error(s)")
            self._cache = None
        return self._cache

    def is_token_expired(self, token: TokenData | None = None) -> bool:
        """True once ``now >= expires_at - buffer``; also True with no token.

        Without an argument this checks the cached token, which is only
        known after ``get_stored_tokens()`` or ``store_tokens()`` ran.

        Raises:
            RuntimeError: Called without a token before the cache was loaded.
        """
        if token is None:
            if not self._loaded:
                raise RuntimeError("Token cache not loaded; await get_stored_tokens() first")
            token = self._cache
        if token is None:
            return True
        return datetime.now(UTC) >= token.expires_at - self.expiry_buffer

    async def get_access_token(self) -> str | None:
        token = await self.get_stored_tokens()
        if token is None or self.is_token_expired(token):
            return None
        return token.access_token

    async def get_refresh_token(self) -> str | None:
        token = await self.get_stored_tokens()
        return token.refresh_token if token else None

    async def has_valid_token(self) -> bool:
        return await self.get_access_token() is not None

    async def clear_tokens(self) -> None:
        self._cache = None
        self._loaded = True
        await self.storage.delete(self.key)
        logging.debug("🗑️ Cleared stored tokens")

    async def get_token_info(self) -> dict[str, Any] | None:
        token = await self.get_stored_tokens()
        if token is None:
            return None
        remaining = (token.expires_at - datetime.now(UTC)).total_seconds()
        return {
            "scopes": list(token.scope),
            "expires_at": token.expires_at,
            "expires_in_seconds": max(int(remaining), 0),
            "is_expired": self.is_token_expired(token),
            "has_refresh_token": bool(token.refresh_token),
        }


__all__ = ["MemorySecretStorage", "SecretStorage", "TokenStore"]
