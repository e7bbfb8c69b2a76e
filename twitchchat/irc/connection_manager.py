"""IRC session state machine: connect, heartbeat, reconnect and channel tracking."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from ..constants import (
    CONNECT_TIMEOUT_SECONDS,
    HEARTBEAT_INTERVAL_SECONDS,
    MAX_MESSAGE_LENGTH,
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY_SECONDS,
    RECONNECT_DEBOUNCE_SECONDS,
    TWITCH_IRC_WEBSOCKET_URL,
)
from ..errors.internal import (
    AuthenticationError,
    ChannelError,
    ChatClientError,
    ChatConnectionError,
    MessageError,
)
from ..events import EventEmitter
from ..logging_config import redact_secrets
from ..logs.logger import logger
from .models import ConnectionState, IRCMessage
from .parser import (
    format_auth_message,
    format_capability_request,
    format_join_message,
    format_part_message,
    format_ping_message,
    format_pong_message,
    format_privmsg,
    normalize_channel,
    parse_irc_message,
    split_frame,
)
from .transport import (
    ChatTransport,
    TransportClosed,
    TransportFactory,
    open_websocket_transport,
)

AUTH_FAILURE_PHRASES = (
    "login authentication failed",
    "login unsuccessful",
    "improperly formatted auth",
    "invalid nick",
)

_ACTIVE_STATES = (
    ConnectionState.CONNECTING,
    ConnectionState.AUTHENTICATING,
    ConnectionState.CONNECTED,
)


class _InFlightConnect:
    """The single outstanding connect operation; settled at most once."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.future: asyncio.Future[None] = loop.create_future()

    def resolve(self) -> None:
        if not self.future.done():
            self.future.set_result(None)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class IRCConnectionManager:
    """Owns the single chat transport and its session state.

    Observers subscribe through ``on_message`` (every parsed line),
    ``on_state_change`` and ``on_error`` (reconnect exhaustion and server side
    authentication failures outside of a connect call).
    """

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        url: str = TWITCH_IRC_WEBSOCKET_URL,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.url = url
        self._transport_factory = transport_factory or open_websocket_transport
        self.clock = clock or time.monotonic
        self.heartbeat_interval = HEARTBEAT_INTERVAL_SECONDS
        self.connect_timeout = CONNECT_TIMEOUT_SECONDS
        self.reconnect_base_delay = RECONNECT_BASE_DELAY_SECONDS
        self.max_reconnect_attempts = MAX_RECONNECT_ATTEMPTS
        self.reconnect_debounce = RECONNECT_DEBOUNCE_SECONDS

        self.on_message: EventEmitter[IRCMessage] = EventEmitter("irc_message")
        self.on_state_change: EventEmitter[ConnectionState] = EventEmitter(
            "connection_state"
        )
        self.on_error: EventEmitter[ChatClientError] = EventEmitter("irc_error")

        self._state = ConnectionState.DISCONNECTED
        self._transport: ChatTransport | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._heartbeat_stop: asyncio.Event | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_pending = False
        self._in_flight: _InFlightConnect | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self._token: str | None = None
        self._username: str | None = None
        # Insertion ordered; keys are bare lower-case channel names.
        self._joined: dict[str, None] = {}
        self._reconnect_attempts = 0
        self._last_reconnect_scheduled_at: float | None = None
        self._was_connected = False

    # --- accessors ------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def joined_channels(self) -> tuple[str, ...]:
        return tuple(self._joined)

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def username(self) -> str | None:
        return self._username

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def update_token(self, token: str) -> None:
        """Replace the token used by subsequent (re)connects."""
        self._token = token
        logger.log_event("irc", "token_updated", level=logging.DEBUG, user=self._username)

    # --- lifecycle --------------------------------------------------------

    async def connect(self, token: str, username: str) -> None:
        """Open a session and wait for the welcome reply.

        No-op while a session is connecting or connected.

        Raises:
            AuthenticationError: The server rejected the credentials.
            ChatConnectionError: Transport failure or no answer in time.
        """
        if self._state in _ACTIVE_STATES:
            logger.log_event(
                "irc", "connect_skipped", level=logging.DEBUG, user=username,
                state=self._state.value,
            )
            return
        self._cancel_reconnect()
        self._token = token
        self._username = username.lower()
        self._reconnect_attempts = 0
        self._was_connected = False
        self._last_reconnect_scheduled_at = None
        try:
            await self._open_session()
        except ChatClientError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        await self._rejoin_channels()

    async def disconnect(self) -> None:
        """Stop every background task and close the transport.

        State is DISCONNECTED (and channels cleared) before the transport
        close is awaited.
        """
        self._cancel_reconnect()
        if self._in_flight is not None:
            self._in_flight.reject(
                ChatConnectionError(
                    "Disconnected.", "Connect aborted by disconnect()", retryable=False
                )
            )
        transport = self._detach_transport()
        self._joined.clear()
        self._reconnect_attempts = 0
        self._last_reconnect_scheduled_at = None
        self._was_connected = False
        self._set_state(ConnectionState.DISCONNECTED)
        if transport is not None:
            await transport.close()
            logger.log_event("irc", "disconnected", user=self._username)

    async def _open_session(self) -> None:
        if self._token is None or self._username is None:
            raise AuthenticationError(technical_message="connect() called without credentials")
        self._set_state(ConnectionState.CONNECTING)
        logger.log_event("irc", "connect_start", user=self._username, url=self.url)
        loop = asyncio.get_running_loop()
        in_flight = _InFlightConnect(loop)
        self._in_flight = in_flight
        try:
            try:
                transport = await self._transport_factory(self.url)
            except (TransportClosed, OSError) as e:
                raise ChatConnectionError(
                    technical_message=f"Failed to open {self.url}: {e}", retryable=True
                ) from e
            self._transport = transport
            self._reader_task = loop.create_task(self._read_loop(transport))
            await self._send_raw(format_capability_request())
            await self._send_raw(format_auth_message(self._token, self._username))
            self._set_state(ConnectionState.AUTHENTICATING)
            self._start_heartbeat()
            try:
                await asyncio.wait_for(in_flight.future, timeout=self.connect_timeout)
            except TimeoutError as e:
                logger.log_event(
                    "irc", "connect_timeout", level=logging.WARNING,
                    user=self._username, timeout=self.connect_timeout,
                )
                raise ChatConnectionError(
                    "Connection timed out. Please try again.",
                    f"No welcome or failure notice within {self.connect_timeout}s",
                    retryable=True,
                ) from e
        except ChatClientError:
            await self._abort_session()
            raise
        finally:
            if self._in_flight is in_flight:
                self._in_flight = None

    async def _abort_session(self) -> None:
        transport = self._detach_transport()
        if transport is not None:
            await transport.close()

    def _detach_transport(self) -> ChatTransport | None:
        transport, self._transport = self._transport, None
        self._stop_heartbeat()
        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        return transport

    # --- reading ------------------------------------------------------------

    async def _read_loop(self, transport: ChatTransport) -> None:
        try:
            while transport is self._transport:
                data = await transport.recv()
                for line in split_frame(data):
                    if transport is not self._transport:
                        return
                    await self._handle_line(line)
        except TransportClosed as e:
            if transport is self._transport:
                logger.log_event(
                    "irc", "connection_lost", level=logging.WARNING,
                    user=self._username, code=e.code, reason=e.reason,
                )
                self._handle_connection_lost(f"closed code={e.code} reason={e.reason}")
        except (ChatConnectionError, OSError) as e:
            if transport is self._transport:
                logger.log_event(
                    "irc", "transport_error", level=logging.WARNING,
                    user=self._username, error=str(e),
                )
                self._handle_connection_lost(str(e))

    async def _handle_line(self, line: str) -> None:
        msg = parse_irc_message(line)
        if msg.command is None:
            logger.log_event("irc", "parse_skipped", level=logging.DEBUG, raw=line[:80])
            return
        command = msg.command
        if command == "PING":
            await self._send_raw(format_pong_message(msg.trailing or "tmi.twitch.tv"))
            logger.log_event("irc", "pong_sent", level=logging.DEBUG, user=self._username)
        elif command == "001":
            self._on_welcome()
        elif command == "NOTICE":
            self._on_notice(msg)
        elif command == "CAP" and len(msg.params) >= 2 and msg.params[1] == "ACK":
            logger.log_event(
                "irc", "cap_ack", level=logging.DEBUG, user=self._username,
                capabilities=msg.trailing,
            )
        elif command in ("JOIN", "PART"):
            if msg.nick and msg.nick.lower() == self._username and msg.params:
                logger.log_event(
                    "irc", "joined" if command == "JOIN" else "parted",
                    level=logging.DEBUG, user=self._username, channel=msg.params[0],
                )
        elif command == "RECONNECT":
            logger.log_event(
                "irc", "server_reconnect", level=logging.WARNING, user=self._username
            )
            self.on_message.emit(msg)
            self._handle_connection_lost("server requested reconnect")
            return
        self.on_message.emit(msg)

    def _on_welcome(self) -> None:
        self._reconnect_attempts = 0
        self._was_connected = True
        self._set_state(ConnectionState.CONNECTED)
        logger.log_event("irc", "welcome", user=self._username)
        if self._in_flight is not None:
            self._in_flight.resolve()

    def _on_notice(self, msg: IRCMessage) -> None:
        text = msg.trailing
        lowered = text.lower()
        if not any(phrase in lowered for phrase in AUTH_FAILURE_PHRASES):
            return
        logger.log_event(
            "irc", "auth_failed", level=logging.ERROR, user=self._username, notice=text
        )
        error = AuthenticationError(
            "Authentication failed. Please re-authenticate with Twitch.",
            f"Server rejected login: {text}",
        )
        if self._in_flight is not None:
            self._in_flight.reject(error)
        else:
            self.on_error.emit(error)

    def _handle_connection_lost(self, reason: str) -> None:
        transport = self._detach_transport()
        if transport is not None:
            self._spawn(transport.close())
        if self._in_flight is not None:
            self._in_flight.reject(
                ChatConnectionError(
                    technical_message=f"Connection lost while connecting: {reason}",
                    retryable=True,
                )
            )
            return
        if self._was_connected:
            self._schedule_reconnect()
        else:
            self._set_state(ConnectionState.DISCONNECTED)

    # --- reconnection ---------------------------------------------------------

    def _schedule_reconnect(self, *, chained: bool = False) -> None:
        if self._reconnect_pending:
            logger.log_event(
                "irc", "reconnect_ignored", level=logging.DEBUG, user=self._username
            )
            return
        now = self.clock()
        hold = 0.0
        if not chained and self._last_reconnect_scheduled_at is not None:
            hold = self._last_reconnect_scheduled_at + self.reconnect_debounce - now
        if hold > 0:
            logger.log_event(
                "irc", "reconnect_debounced", level=logging.DEBUG, user=self._username
            )
            if self._transport is not None:
                return
            # Session already lost: defer to the end of the window.
        if self._reconnect_attempts >= self.max_reconnect_attempts:
            self._set_state(ConnectionState.ERROR)
            logger.log_event(
                "irc", "reconnect_exhausted", level=logging.ERROR,
                user=self._username, attempts=self._reconnect_attempts,
            )
            self.on_error.emit(
                ChatConnectionError(
                    "Lost connection to Twitch chat. Please reconnect.",
                    f"Gave up after {self._reconnect_attempts} reconnect attempts",
                    retryable=False,
                )
            )
            return
        self._reconnect_attempts += 1
        attempt = self._reconnect_attempts
        delay = max(self.reconnect_delay(attempt), hold)
        self._last_reconnect_scheduled_at = now
        self._set_state(ConnectionState.RECONNECTING)
        logger.log_event(
            "irc", "reconnect_scheduled", level=logging.WARNING,
            user=self._username, attempt=attempt, delay=delay,
        )
        self._reconnect_pending = True
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay, attempt)
        )

    def reconnect_delay(self, attempt: int) -> float:
        return self.reconnect_base_delay * (2 ** (attempt - 1))

    async def _reconnect_after(self, delay: float, attempt: int) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            self._reconnect_pending = False
        logger.log_event("irc", "reconnect_attempt", user=self._username, attempt=attempt)
        try:
            await self._open_session()
        except AuthenticationError as e:
            self._set_state(ConnectionState.ERROR)
            self.on_error.emit(e)
            return
        except ChatClientError as e:
            logger.log_event(
                "irc", "reconnect_failed", level=logging.WARNING,
                user=self._username, attempt=attempt, error=e.technical_message,
            )
            self._schedule_reconnect(chained=True)
            return
        logger.log_event("irc", "reconnect_success", user=self._username, attempt=attempt)
        await self._rejoin_channels()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        self._reconnect_pending = False
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _rejoin_channels(self) -> None:
        for channel in list(self._joined):
            try:
                await self._send_raw(format_join_message(channel))
            except ChatConnectionError as e:
                logger.log_event(
                    "irc", "rejoin_failed", level=logging.WARNING,
                    user=self._username, channel=channel, error=e.technical_message,
                )
                return
            logger.log_event("irc", "rejoin", user=self._username, channel=channel)

    # --- heartbeat ------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        stop = asyncio.Event()
        self._heartbeat_stop = stop
        self._heartbeat_task = asyncio.get_running_loop().create_task(
            self._heartbeat_loop(stop)
        )

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_stop is not None:
            self._heartbeat_stop.set()
            self._heartbeat_stop = None
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.heartbeat_interval)
                return
            except TimeoutError:
                pass
            try:
                await self._send_raw(format_ping_message())
            except ChatConnectionError:
                # The reader notices the closed socket and drives reconnection.
                return
            logger.log_event("irc", "heartbeat_sent", level=logging.DEBUG, user=self._username)

    # --- channels & messages --------------------------------------------------

    async def join_channel(self, channel: str) -> None:
        name = self._channel_name(channel)
        self._require_connected_for(name)
        if name in self._joined:
            return
        try:
            await self._send_raw(format_join_message(name))
        except ChatConnectionError as e:
            raise ChannelError(name, technical_message=f"JOIN #{name} failed: {e.technical_message}") from e
        self._joined[name] = None
        logger.log_event("irc", "join_sent", user=self._username, channel=name)

    async def leave_channel(self, channel: str) -> None:
        name = self._channel_name(channel)
        self._require_connected_for(name)
        try:
            await self._send_raw(format_part_message(name))
        except ChatConnectionError as e:
            raise ChannelError(
                name,
                f'Failed to leave channel "{name}".',
                f"PART #{name} failed: {e.technical_message}",
            ) from e
        self._joined.pop(name, None)
        logger.log_event("irc", "part_sent", user=self._username, channel=name)

    async def switch_to_channel(self, channel: str) -> None:
        """Leave every joined channel, then join ``channel`` on the same transport.

        Raises:
            ChannelError: naming the channel whose PART or JOIN failed; the
                joined set reflects exactly the operations that succeeded.
        """
        target = self._channel_name(channel)
        self._require_connected_for(target)
        logger.log_event(
            "irc", "switch_channel", user=self._username, channel=target,
            leaving=",".join(self._joined) or "-",
        )
        try:
            for joined in list(self._joined):
                if joined != target:
                    await self.leave_channel(joined)
            await self.join_channel(target)
        except ChannelError as e:
            logger.log_event(
                "irc", "switch_failed", level=logging.WARNING, user=self._username,
                channel=e.channel_name, joined=",".join(self._joined) or "-",
            )
            raise

    async def send_message(self, channel: str, text: str) -> None:
        """Write a PRIVMSG. Twitch does not echo it back to the sender."""
        validate_message_text(text)
        if not self.is_connected():
            raise ChatConnectionError(
                "Not connected to chat.",
                f"send_message in state {self._state.value}",
                retryable=False,
            )
        name = self._channel_name(channel)
        try:
            await self._send_raw(format_privmsg(name, text))
        except ChatConnectionError as e:
            raise MessageError(technical_message=f"PRIVMSG failed: {e.technical_message}") from e
        logger.log_event(
            "irc", "privmsg_sent", level=logging.DEBUG, user=self._username,
            channel=name, length=len(text),
        )

    def _require_connected_for(self, channel: str) -> None:
        if not self.is_connected():
            raise ChannelError(
                channel,
                "Not connected to chat.",
                f"Channel operation on #{channel} in state {self._state.value}",
            )

    @staticmethod
    def _channel_name(channel: str) -> str:
        try:
            return normalize_channel(channel)[1:]
        except ValueError as e:
            raise ChannelError(channel, "Channel name cannot be empty.") from e

    # --- plumbing -------------------------------------------------------------

    async def _send_raw(self, line: str) -> None:
        transport = self._transport
        if transport is None:
            raise ChatConnectionError(
                "Not connected to chat.", "No active transport", retryable=True
            )
        try:
            await transport.send(line)
        except (TransportClosed, OSError) as e:
            raise ChatConnectionError(
                technical_message=f"Send failed: {e}", retryable=True
            ) from e
        logging.debug(f"➡️ {redact_secrets(line.rstrip())}")

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        logger.log_event(
            "irc", "state_change", level=logging.DEBUG, user=self._username,
            previous=previous.value, state=state.value,
        )
        self.on_state_change.emit(state)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def validate_message_text(text: str) -> None:
    """Raise ``MessageError`` for empty, multi-line or over-long chat text."""
    if not text or not text.strip():
        raise MessageError("Message cannot be empty.", "Empty chat message")
    if "\r" in text or "\n" in text:
        raise MessageError(
            "Message cannot contain line breaks.", "CR/LF in chat message"
        )
    if len(text) > MAX_MESSAGE_LENGTH:
        raise MessageError(
            f"Message is too long (max {MAX_MESSAGE_LENGTH} characters).",
            f"Chat message length {len(text)} > {MAX_MESSAGE_LENGTH}",
        )


__all__ = ["AUTH_FAILURE_PHRASES", "IRCConnectionManager", "validate_message_text"]
