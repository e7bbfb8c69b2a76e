"""Byte-level transport for IRC-over-WebSocket."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import websockets

from ..constants import TWITCH_IRC_WEBSOCKET_URL


class TransportClosed(Exception):
    """Raised by ``ChatTransport.recv`` once the socket is closed."""

    def __init__(self, code: int = 1006, reason: str = "") -> None:
        super().__init__(f"transport closed: code={code} reason={reason}")
        self.code = code
        self.reason = reason


class ChatTransport(Protocol):
    async def send(self, data: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[str], Awaitable[ChatTransport]]


class WebSocketTransport:
    """``ChatTransport`` backed by a ``websockets`` client connection."""

    def __init__(self, ws: Any, url: str) -> None:
        self.ws = ws
        self.url = url

    @classmethod
    async def open(cls, url: str = TWITCH_IRC_WEBSOCKET_URL) -> WebSocketTransport:
        logging.debug(f"🔌 Opening WebSocket {url}")
        try:
            # Keepalive is done at the IRC level (PING :keepalive).
            ws = await websockets.connect(url, ping_interval=None)
        except (OSError, websockets.WebSocketException) as e:
            raise TransportClosed(1006, str(e)) from e
        return cls(ws, url)

    async def send(self, data: str) -> None:
        try:
            await self.ws.send(data)
        except websockets.ConnectionClosed as e:
            raise TransportClosed(*_close_details(e)) from e

    async def recv(self) -> str:
        try:
            data = await self.ws.recv()
        except websockets.ConnectionClosed as e:
            raise TransportClosed(*_close_details(e)) from e
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data

    async def close(self) -> None:
        try:
            await self.ws.close(code=1000)
        except (OSError, websockets.WebSocketException) as e:
            logging.warning(f"⚠️ WebSocket close error: {str(e)}")


def _close_details(e: websockets.ConnectionClosed) -> tuple[int, str]:
    if e.rcvd is not None:
        return e.rcvd.code, e.rcvd.reason
    return 1006, ""


async def open_websocket_transport(url: str) -> ChatTransport:
    return await WebSocketTransport.open(url)


__all__ = [
    "ChatTransport",
    "TransportClosed",
    "TransportFactory",
    "WebSocketTransport",
    "open_websocket_transport",
]
