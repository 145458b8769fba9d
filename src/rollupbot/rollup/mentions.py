"""Rewrite usernames in summary text into Discord mention tokens."""

from __future__ import annotations

import re
from collections.abc import Mapping

# Existing user mentions: <@123> or <@!123>
_MENTION_RE = re.compile(r"(<@!?\d+>)")


def _sub_outside_mentions(pattern: re.Pattern[str], repl: str, text: str) -> str:
    # re.split with a capturing group puts the mention tokens at odd indices
    parts = _MENTION_RE.split(text)
    for i in range(0, len(parts), 2):
        parts[i] = pattern.sub(repl, parts[i])
    return "".join(parts)


def mentionize_summary(text: str, user_map: Mapping[str, int | str] | None) -> str:
    """Replace ``@name`` and bare ``name`` tokens with ``<@id>``.

    ``user_map`` maps lowercased usernames to user ids. Longer names are
    handled first so a name that is a substring of another cannot break it,
    and text inside existing mention tokens is never touched, so running the
    function twice gives the same result as running it once.
    """
    if not text or not user_map:
        return text

    out = text
    entries = sorted(user_map.items(), key=lambda kv: (-len(kv[0].strip()), kv[0].strip().lower()))
    for username, user_id in entries:
        name = username.strip()
        if not name:
            continue
        escaped = re.escape(name)
        token = f"<@{user_id}>"
        at_pattern = re.compile(rf"(?<!\w)!?@{escaped}(?!\w)", re.IGNORECASE)
        bare_pattern = re.compile(rf"(?<![\w@]){escaped}(?!\w)", re.IGNORECASE)
        out = _sub_outside_mentions(at_pattern, token, out)
        out = _sub_outside_mentions(bare_pattern, token, out)
    return out
