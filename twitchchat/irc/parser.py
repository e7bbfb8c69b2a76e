"""IRC wire codec: parse raw lines, extract Twitch chat payloads, format commands."""

from __future__ import annotations

import re
import secrets
from datetime import UTC, datetime

from ..constants import IRC_CAPABILITIES
from .models import Badge, ChatMessage, Emote, EmotePosition, IRCMessage, UserType

_LINE_SPLIT = re.compile(r"\r?\n")
_TAG_ESCAPES = {":": ";", "s": " ", "\\": "\\", "r": "\r", "n": "\n"}
# Checked in this order against the raw badges tag.
_ROLE_PRECEDENCE: tuple[tuple[str, UserType], ...] = (
    ("broadcaster", UserType.BROADCASTER),
    ("moderator", UserType.MODERATOR),
    ("vip", UserType.VIP),
    ("subscriber", UserType.SUBSCRIBER),
)


def split_frame(data: str) -> list[str]:
    """Split one WebSocket text frame into its non-empty IRC lines."""
    return [line for line in _LINE_SPLIT.split(data) if line]


def parse_irc_message(raw_line: str) -> IRCMessage:
    """Parse one IRC line. Never raises; malformed input yields ``command=None``."""
    original = raw_line
    line = raw_line.rstrip("\r\n")
    tags: dict[str, str] = {}
    prefix: str | None = None

    if line.startswith("@"):
        tags_part, sep, line = line.partition(" ")
        if not sep:
            return IRCMessage(raw=original, prefix=None, command=None)
        tags = _parse_tags(tags_part[1:])

    line = line.lstrip(" ")
    if line.startswith(":"):
        prefix, _, line = line[1:].partition(" ")
        prefix = prefix or None

    line = line.lstrip(" ")
    if not line or line.startswith(":"):
        return IRCMessage(raw=original, prefix=prefix, command=None)

    command, _, rest = line.partition(" ")
    params: list[str] = []
    while rest:
        if rest.startswith(":"):
            params.append(rest[1:])
            break
        token, _, rest = rest.partition(" ")
        if token:
            params.append(token)

    return IRCMessage(
        raw=original,
        prefix=prefix,
        command=command.upper(),
        params=tuple(params),
        tags=tags,
    )


def _parse_tags(raw_tags: str) -> dict[str, str]:
    tags: dict[str, str] = {}
    for tag in raw_tags.split(";"):
        if not tag:
            continue
        k, _, v = tag.partition("=")
        tags[k] = _unescape_tag_value(v)
    return tags


def _unescape_tag_value(value: str) -> str:
    if "\\" not in value:
        return value
    out: list[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\":
            if i + 1 < len(value):
                nxt = value[i + 1]
                out.append(_TAG_ESCAPES.get(nxt, nxt))
            # a lone trailing backslash is dropped
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def parse_privmsg(parsed: IRCMessage) -> ChatMessage | None:
    """Build a ``ChatMessage`` from a parsed PRIVMSG; ``None`` for anything else."""
    if parsed.command != "PRIVMSG" or len(parsed.params) < 2:
        return None
    tags = parsed.tags
    text = parsed.params[-1]
    channel = parsed.params[0].lstrip("#").lower()

    display_tag = tags.get("display-name", "").strip()
    username = (display_tag or parsed.nick or "unknown").lower()

    return ChatMessage(
        id=tags.get("id") or _generate_message_id(),
        channel=channel,
        username=username,
        display_name=display_tag or username,
        message=text,
        timestamp=_parse_timestamp(tags.get("tmi-sent-ts")),
        badges=parse_badges(tags.get("badges", "")),
        emotes=parse_emotes(tags.get("emotes", ""), text),
        color=tags.get("color") or None,
        user_type=resolve_user_type(tags.get("badges", "")),
    )


def resolve_user_type(badges_tag: str) -> UserType:
    for marker, user_type in _ROLE_PRECEDENCE:
        if marker in badges_tag:
            return user_type
    return UserType.VIEWER


def parse_badges(badges_tag: str) -> tuple[Badge, ...]:
    badges: list[Badge] = []
    for item in badges_tag.split(","):
        name, _, version = item.partition("/")
        if name:
            badges.append(Badge(name=name, version=version or "1"))
    return tuple(badges)


def parse_emotes(emotes_tag: str, text: str) -> tuple[Emote, ...]:
    """Parse ``id:s-e,s-e/id:s-e``.

    Malformed or out-of-range ranges are skipped, as is any range that
    overlaps an earlier-starting one (across all ids). An emote id left
    with no usable range is dropped. Result is sorted by the first start
    offset.
    """
    groups: list[tuple[str, str]] = []
    candidates: list[tuple[EmotePosition, int]] = []
    for group in emotes_tag.split("/"):
        emote_id, sep, ranges = group.partition(":")
        if not emote_id or not sep:
            continue
        index = len(groups)
        name = ""
        for rng in ranges.split(","):
            pos = _parse_range(rng, len(text))
            if pos is None:
                continue
            if not name:
                name = text[pos.start : pos.end + 1]
            candidates.append((pos, index))
        groups.append((emote_id, name))

    kept: dict[int, list[EmotePosition]] = {}
    last_end = -1
    for pos, index in sorted(candidates, key=lambda c: (c[0].start, c[1])):
        if pos.start <= last_end:
            continue  # overlaps an accepted range
        kept.setdefault(index, []).append(pos)
        last_end = pos.end

    emotes = [
        Emote(id=groups[index][0], name=groups[index][1], positions=tuple(positions))
        for index, positions in kept.items()
    ]
    emotes.sort(key=lambda e: e.positions[0].start)
    return tuple(emotes)


def _parse_range(rng: str, text_length: int) -> EmotePosition | None:
    start_s, sep, end_s = rng.partition("-")
    if not sep:
        return None
    try:
        start, end = int(start_s), int(end_s)
    except ValueError:
        return None
    if start < 0 or end < start or end >= text_length:
        return None
    return EmotePosition(start=start, end=end)


def _parse_timestamp(value: str | None) -> datetime:
    if value:
        try:
            return datetime.fromtimestamp(int(value) / 1000, UTC)
        except (ValueError, OverflowError, OSError):
            pass
    return datetime.now(UTC)


def _generate_message_id() -> str:
    return f"local-{secrets.token_hex(8)}"


# --- formatting -------------------------------------------------------------


def normalize_channel(channel: str) -> str:
    """Return ``#name`` lower-cased; raises ``ValueError`` for an empty name."""
    name = channel.strip().lstrip("#").lower()
    if not name:
        raise ValueError("channel name is empty")
    return f"#{name}"


def format_pass_message(token: str) -> str:
    if token.startswith("oauth:"):
        token = token[len("oauth:") :]
    return f"PASS oauth:{token}\r\n"


def format_nick_message(username: str) -> str:
    return f"NICK {username.lower()}\r\n"


def format_auth_message(token: str, username: str) -> str:
    return format_pass_message(token) + format_nick_message(username)


def format_capability_request(capabilities: tuple[str, ...] = IRC_CAPABILITIES) -> str:
    return f"CAP REQ :{' '.join(capabilities)}\r\n"


def format_join_message(channel: str) -> str:
    return f"JOIN {normalize_channel(channel)}\r\n"


def format_part_message(channel: str) -> str:
    return f"PART {normalize_channel(channel)}\r\n"


def format_privmsg(channel: str, text: str) -> str:
    return f"PRIVMSG {normalize_channel(channel)} :{text}\r\n"


def format_pong_message(server: str = "tmi.twitch.tv") -> str:
    return f"PONG :{server}\r\n"


def format_ping_message(payload: str = "keepalive") -> str:
    return f"PING :{payload}\r\n"


__all__ = [
    "format_auth_message",
    "format_capability_request",
    "format_join_message",
    "format_nick_message",
    "format_part_message",
    "format_pass_message",
    "format_ping_message",
    "format_pong_message",
    "format_privmsg",
    "normalize_channel",
    "parse_badges",
    "parse_emotes",
    "parse_irc_message",
    "parse_privmsg",
    "resolve_user_type",
    "split_frame",
]
