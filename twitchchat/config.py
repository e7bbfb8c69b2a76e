"""Configuration providers for the chat client."""

from __future__ import annotations

import os
from typing import Protocol

from .auth.models import TwitchConfig
from .constants import DEFAULT_REDIRECT_URI, DEFAULT_SCOPES


class ConfigProvider(Protocol):
    def get_twitch_config(self) -> TwitchConfig: ...

    def get_username(self) -> str | None: ...


class EnvConfigProvider:
    """Reads settings from the environment on every call.

    Variables: ``TWITCH_CLIENT_ID``, ``TWITCH_CLIENT_SECRET``,
    ``TWITCH_REDIRECT_URI``, ``TWITCH_USERNAME``, ``TWITCH_SCOPES``
    (space or comma separated).
    """

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        self._environ = environ

    @property
    def environ(self):
        return self._environ if self._environ is not None else os.environ

    def get_twitch_config(self) -> TwitchConfig:
        env = self.environ
        return TwitchConfig(
            client_id=env.get("TWITCH_CLIENT_ID", ""),
            client_secret=env.get("TWITCH_CLIENT_SECRET", ""),
            redirect_uri=env.get("TWITCH_REDIRECT_URI", DEFAULT_REDIRECT_URI),
            scopes=env.get("TWITCH_SCOPES") or DEFAULT_SCOPES,
        )

    def get_username(self) -> str | None:
        value = self.environ.get("TWITCH_USERNAME", "").strip().lower()
        return value or None


class StaticConfigProvider:
    """Fixed settings, for embedding applications and tests."""

    def __init__(self, config: TwitchConfig, username: str | None = None) -> None:
        self.config = config
        self.username = username

    def get_twitch_config(self) -> TwitchConfig:
        return self.config

    def get_username(self) -> str | None:
        return self.username.strip().lower() if self.username else None


__all__ = ["ConfigProvider", "EnvConfigProvider", "StaticConfigProvider"]
