from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ..constants import DEFAULT_REDIRECT_URI, DEFAULT_SCOPES


def _split_scopes(v: Any) -> Any:
    if isinstance(v, str):
        return [s for s in v.replace(",", " ").split() if s]
    return v


class TwitchConfig(BaseModel):
    """OAuth application settings.

    Attributes:
        client_id: Twitch application client ID.
        client_secret: Twitch application client secret.
        redirect_uri: Where Twitch sends the browser after consent; the local
            callback listener binds to its host and port.
        scopes: Requested OAuth scopes.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: tuple[str, ...] = DEFAULT_SCOPES

    @field_validator("client_id", "client_secret", "redirect_uri", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, v: Any) -> Any:
        return _split_scopes(v)


class TokenData(BaseModel):
    """Issued OAuth token set.

    ``expires_at`` is derived from ``issued_at + expires_in`` and therefore
    can never disagree with them.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int = Field(ge=0)
    scope: list[str] = Field(default_factory=list)
    token_type: str = "bearer"
    issued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("scope", mode="before")
    @classmethod
    def split_scope(cls, v: Any) -> Any:
        if v is None:
            return []
        return _split_scopes(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        *,
        fallback_refresh_token: str | None = None,
        issued_at: datetime | None = None,
    ) -> TokenData:
        """Map a Twitch token endpoint JSON body.

        Raises:
            ValueError: ``access_token`` or ``expires_in`` missing or invalid.
        """
        access = payload.get("access_token")
        if not access:
            raise ValueError("Missing access_token in token response")
        expires_in = payload.get("expires_in")
        if expires_in is None:
            raise ValueError("Missing expires_in in token response")
        return cls(
            access_token=access,
            refresh_token=payload.get("refresh_token") or fallback_refresh_token,
            expires_in=int(expires_in),
            scope=payload.get("scope") or [],
            token_type=payload.get("token_type") or "bearer",
            issued_at=issued_at or datetime.now(UTC),
        )


@dataclass(frozen=True)
class CallbackResult:
    code: str
    state: str


@dataclass(frozen=True)
class AuthResult:
    success: bool
    token: TokenData | None = None
    error: str | None = None


@dataclass
class ConfigValidation:
    """Outcome of ``AuthManager.validate_config``.

    ``missing_fields`` and ``errors`` make the config invalid; ``warnings``
    are informational only.
    """

    is_valid: bool
    missing_fields: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


__all__ = ["AuthResult", "CallbackResult", "ConfigValidation", "TokenData", "TwitchConfig"]
