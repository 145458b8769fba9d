"""Runtime configuration for the project rollup.

Secrets (bot token, API key) come from .env; everything else has a sensible
default so the bot can start with only the ids it needs.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_LOG = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_CALL_TIMEOUT = 60.0
DEFAULT_TIMEZONE = "America/Chicago"
DEFAULT_OPT_OUT_EMOJI = ("📵", "🚫📱", "no_mobile_phones")


def _parse_channel_id(raw: str | None) -> int | None:
    raw = (raw or "").strip()
    if raw.isdigit():
        return int(raw)
    return None


def _parse_names(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(token.strip() for token in raw.split(",") if token.strip())


def _env_number(name: str, default: float, cast=float):
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        _LOG.warning("Invalid value for %s (%r); using default %s", name, raw, default)
        return default


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        _LOG.warning("Unknown time zone %r; falling back to %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


@dataclass(frozen=True)
class RollupSettings:
    """Everything the rollup pipeline reads from the environment."""

    forum_channel_id: int | None = None
    general_channel_id: int | None = None
    openai_api_key: str | None = None
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    openai_base_url: str | None = None
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    timezone: str = DEFAULT_TIMEZONE
    rollup_hour: int = 8
    rollup_minute: int = 0
    manual_window_hours: float = 24.0
    opt_out_emoji: tuple[str, ...] = field(default=DEFAULT_OPT_OUT_EMOJI)

    @classmethod
    def from_env(cls) -> RollupSettings:
        forum_id = _parse_channel_id(os.getenv("PROJECT_FORUM_CHANNEL_ID")) or _parse_channel_id(
            os.getenv("PROJECT_FORUM_ID")
        )
        return cls(
            forum_channel_id=forum_id,
            general_channel_id=_parse_channel_id(os.getenv("GENERAL_CHANNEL_ID")),
            openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            model=(os.getenv("ROLLUP_MODEL") or "").strip() or DEFAULT_MODEL,
            temperature=_env_number("ROLLUP_TEMPERATURE", DEFAULT_TEMPERATURE),
            openai_base_url=(os.getenv("OPENAI_BASE_URL") or "").strip() or None,
            call_timeout=_env_number("ROLLUP_CALL_TIMEOUT", DEFAULT_CALL_TIMEOUT),
            timezone=(os.getenv("ROLLUP_TIMEZONE") or "").strip() or DEFAULT_TIMEZONE,
            rollup_hour=_env_number("ROLLUP_HOUR", 8, int),
            rollup_minute=_env_number("ROLLUP_MINUTE", 0, int),
            manual_window_hours=_env_number("ROLLUP_MANUAL_WINDOW_HOURS", 24.0),
            opt_out_emoji=_parse_names(os.getenv("ROLLUP_OPT_OUT_EMOJI")) or DEFAULT_OPT_OUT_EMOJI,
        )

    @property
    def rollup_time(self) -> time:
        """Wall-clock time of the daily rollup, in the configured zone."""
        hour = min(max(self.rollup_hour, 0), 23)
        minute = min(max(self.rollup_minute, 0), 59)
        return time(hour=hour, minute=minute, tzinfo=_zone(self.timezone))

    def missing(self, *, explicit_target: bool = False) -> list[str]:
        """Names of required settings that are not configured."""
        problems: list[str] = []
        if self.forum_channel_id is None:
            problems.append("PROJECT_FORUM_CHANNEL_ID")
        if self.general_channel_id is None and not explicit_target:
            problems.append("GENERAL_CHANNEL_ID")
        if not self.openai_api_key:
            problems.append("OPENAI_API_KEY")
        return problems
