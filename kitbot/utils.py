"""Small helpers shared by the bot entry point and the kit modules."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional, Set, TypeVar

import discord

logger = logging.getLogger("kitbot.utils")

T = TypeVar("T")

DEFAULT_ADMIN_ROLES = ("admin", "kit admin")


def _from_env(name: str, default: T, cast: Callable[[str], T], label: str) -> T:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning("Invalid %s for %s=%s. Falling back to %s.", label, name, raw, default)
        return default


def int_from_env(name: str, default: int) -> int:
    return _from_env(name, default, int, "integer")


def float_from_env(name: str, default: float) -> float:
    return _from_env(name, default, float, "float")


def path_from_env(name: str) -> Optional[Path]:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return Path(value).expanduser()


def parse_channel_ids(raw: str) -> Set[int]:
    """Parse a comma or whitespace separated list of Discord channel ids."""
    ids: Set[int] = set()
    for chunk in re.split(r"[,\s]+", raw or ""):
        if not chunk:
            continue
        if chunk.isdigit():
            ids.add(int(chunk))
        else:
            logger.warning("Ignoring invalid channel id %s", chunk)
    return ids


def is_admin(member: discord.abc.User, role_names: Iterable[str] = DEFAULT_ADMIN_ROLES) -> bool:
    """Server administrators and holders of an admin role may manage kits."""
    if not isinstance(member, discord.Member):
        return False
    if member.guild_permissions.administrator:
        return True
    wanted = {name.lower() for name in role_names}
    return any(role.name.lower() in wanted for role in getattr(member, "roles", []))


def format_duration(seconds: float) -> str:
    """Render a cooldown length as e.g. ``1h 05m`` or ``42s``."""
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "DEFAULT_ADMIN_ROLES",
    "float_from_env",
    "format_duration",
    "int_from_env",
    "is_admin",
    "parse_channel_ids",
    "path_from_env",
    "utc_now",
]
