"""KitBot package providing kit selection, cooldown-gated grants and the RCON/Discord glue."""

from . import admin, config, cooldowns, events, grant, models, rcon, selection, service, state, utils  # noqa: F401

__all__ = [
    "admin",
    "config",
    "cooldowns",
    "events",
    "grant",
    "models",
    "rcon",
    "selection",
    "service",
    "state",
    "utils",
]
