"""Local HTTP listener capturing the OAuth redirect."""

from __future__ import annotations

import asyncio
import html
import logging
import webbrowser
from collections.abc import Callable
from typing import Any, Protocol
from urllib.parse import urlsplit

from aiohttp import web

from ..constants import DEFAULT_CALLBACK_PORT
from ..errors.internal import AuthenticationError
from .models import CallbackResult

_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 4em;">
<h1>{title}</h1>
<p>{body}</p>
</body>
</html>
"""


class AuthorizationTransport(Protocol):
    async def open_authorization_url(self, url: str) -> None: ...

    async def await_callback(self, timeout: float) -> CallbackResult: ...

    async def close(self) -> None: ...


def _page(title: str, body: str, status: int = 200) -> web.Response:
    return web.Response(
        text=_PAGE.format(title=html.escape(title), body=html.escape(body)),
        content_type="text/html",
        status=status,
    )


class LocalCallbackTransport:
    """One-shot aiohttp server bound to the redirect URI's host and port.

    The first request on the redirect path settles the wait; any later
    request gets an informational page. Other paths answer 404.
    """

    def __init__(
        self,
        redirect_uri: str,
        opener: Callable[[str], Any] | None = None,
    ) -> None:
        parts = urlsplit(redirect_uri)
        self.host = parts.hostname or "localhost"
        self.port = parts.port if parts.port is not None else DEFAULT_CALLBACK_PORT
        self.path = parts.path or "/"
        self._opener = opener or webbrowser.open
        self.app = web.Application()
        self.app.router.add_get(self.path, self.handle_callback)
        self.runner: web.AppRunner | None = None
        self._result: asyncio.Future[CallbackResult] | None = None

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (differs from ``port`` when bound to 0)."""
        if self.runner is None or not self.runner.addresses:
            return None
        return self.runner.addresses[0][1]

    async def start(self) -> None:
        if self.runner is not None:
            return
        self._result = asyncio.get_running_loop().create_future()
        self.runner = web.AppRunner(self.app, access_log=None)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        try:
            await site.start()
        except OSError as e:
            await self.close()
            raise AuthenticationError(
                f"Could not listen for the Twitch login on port {self.port}.",
                f"Callback listener bind {self.host}:{self.port} failed: {e}",
            ) from e
        logging.info(f"🌐 Waiting for OAuth callback on http://{self.host}:{self.bound_port}{self.path}")

    async def open_authorization_url(self, url: str) -> None:
        await self.start()
        logging.info("🌐 Opening browser for Twitch authorization")
        try:
            self._opener(url)
        except Exception as e:  # noqa: BLE001
            # Browser failures are not fatal, the URL can be opened manually.
            logging.warning(f"⚠️ Could not open browser ({e}); open this URL manually: {url}")

    async def await_callback(self, timeout: float) -> CallbackResult:
        if self._result is None:
            await self.start()
        assert self._result is not None
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout=timeout)
        except TimeoutError as e:
            raise AuthenticationError(
                "Authorization timed out. Please try again.",
                f"No OAuth callback within {timeout}s",
            ) from e

    async def handle_callback(self, request: web.Request) -> web.Response:
        result = self._result
        if result is None or result.done():
            return _page("Already handled", "You can close this window.")
        query = request.query
        error = query.get("error")
        if error:
            description = query.get("error_description") or error
            result.set_exception(
                AuthenticationError(
                    f"Authorization was denied: {description}",
                    f"OAuth callback error={error} description={description}",
                )
            )
            return _page("Authorization failed", description, status=400)
        code = query.get("code")
        state = query.get("state")
        if not code or not state:
            result.set_exception(
                AuthenticationError(
                    "Authorization failed: Twitch returned an incomplete response.",
                    "OAuth callback missing code or state",
                )
            )
            return _page("Authorization failed", "Missing code or state.", status=400)
        result.set_result(CallbackResult(code=code, state=state))
        return _page(
            "Authorization successful",
            "You can close this window and return to the application.",
        )

    async def close(self) -> None:
        runner, self.runner = self.runner, None
        result, self._result = self._result, None
        if result is not None and not result.done():
            result.cancel()
        elif result is not None and not result.cancelled():
            # Mark a stored exception as retrieved.
            result.exception()
        if runner is not None:
            await runner.cleanup()
            logging.debug("🌐 OAuth callback listener stopped")


__all__ = ["AuthorizationTransport", "LocalCallbackTransport"]
