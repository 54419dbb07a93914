"""Kit configuration loading, validation and default generation."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

import yaml

from .models import (
    GiveawayCommand,
    GiveawayItem,
    Kit,
    KitConfig,
    KitSet,
    RandomItemPool,
    SelectionPolicy,
)
from .selection import InvalidSelectionInput

logger = logging.getLogger("kitbot.config")

YAML_SUFFIXES = {".yml", ".yaml"}

# Keys are compared after _normalize_key, so "MinAmount", "min_amount" and
# "min-amount" are the same field.
_LEGACY_MARKERS = {
    "commandstorunonrespawn",
    "itemstoaddtoinventoryonrespawn",
    "commandstorunonspawn",
    "itemstoaddtoinventoryonspawn",
}


class ConfigurationLoadFailure(Exception):
    """Raised when a kit configuration file cannot be read or understood."""


def _normalize_key(value: str) -> str:
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]", "", value.lower())


def _normalized(mapping: Mapping) -> Dict[str, object]:
    return {_normalize_key(str(key)): value for key, value in mapping.items()}


def _lookup(entry: Mapping[str, object], *names: str, default: object = None) -> object:
    for name in names:
        key = _normalize_key(name)
        if key in entry and entry[key] is not None:
            return entry[key]
    return default


def _as_bool(value: object, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
    raise ConfigurationLoadFailure(f"{field} must be a boolean, got {value!r}")


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationLoadFailure(f"{field} must be an integer, got {value!r}")
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigurationLoadFailure(f"{field} must be an integer, got {value!r}") from exc


def _as_float(value: object, *, field: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationLoadFailure(f"{field} must be a number, got {value!r}")
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigurationLoadFailure(f"{field} must be a number, got {value!r}") from exc


def _as_list(value: object, *, field: str) -> Sequence[object]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return value
    raise ConfigurationLoadFailure(f"{field} must be a list, got {type(value).__name__}")


def _parse_command(raw: object, *, field: str) -> GiveawayCommand:
    if isinstance(raw, str):
        text = raw.strip()
        cooldown = 0
    elif isinstance(raw, Mapping):
        entry = _normalized(raw)
        text = str(_lookup(entry, "text", "command", default="")).strip()
        cooldown = _as_int(
            _lookup(entry, "cooldown_seconds", "CoolDownPeriodInSeconds", "cooldown", default=0),
            field=f"{field}.cooldown_seconds",
        )
    else:
        raise ConfigurationLoadFailure(f"{field} must be a string or an object")
    if not text:
        raise ConfigurationLoadFailure(f"{field} has no command text")
    return GiveawayCommand(text=text, cooldown_seconds=cooldown)


def _parse_item(raw: object, *, field: str) -> GiveawayItem:
    if isinstance(raw, str):
        raw = {"shortcode": raw}
    if not isinstance(raw, Mapping):
        raise ConfigurationLoadFailure(f"{field} must be an object")
    entry = _normalized(raw)
    shortcode = str(_lookup(entry, "shortcode", "item", default="")).strip()
    if not shortcode:
        raise ConfigurationLoadFailure(f"{field} has no shortcode")
    amount = _lookup(entry, "amount")
    min_amount = _as_int(_lookup(entry, "min_amount", default=amount if amount is not None else 1), field=f"{field}.min_amount")
    max_amount = _as_int(_lookup(entry, "max_amount", default=min_amount), field=f"{field}.max_amount")
    attachments = tuple(
        str(value).strip()
        for value in _as_list(_lookup(entry, "attachments"), field=f"{field}.attachments")
        if str(value).strip()
    )
    return GiveawayItem(
        shortcode=shortcode,
        min_amount=min_amount,
        max_amount=max_amount,
        cooldown_seconds=_as_int(
            _lookup(entry, "cooldown_seconds", "CoolDownPeriodInSeconds", "cooldown", default=0),
            field=f"{field}.cooldown_seconds",
        ),
        attachments=attachments,
        weight=_as_float(_lookup(entry, "weight", default=1.0), field=f"{field}.weight"),
    )


def _parse_pool(raw: object, *, field: str) -> Optional[RandomItemPool]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ConfigurationLoadFailure(f"{field} must be an object")
    entry = _normalized(raw)
    items = tuple(
        _parse_item(value, field=f"{field}.items[{index}]")
        for index, value in enumerate(_as_list(_lookup(entry, "items"), field=f"{field}.items"))
    )
    min_amount = _as_int(_lookup(entry, "min_amount", default=1), field=f"{field}.min_amount")
    return RandomItemPool(
        items=items,
        min_amount=min_amount,
        max_amount=_as_int(_lookup(entry, "max_amount", default=min_amount), field=f"{field}.max_amount"),
        can_have_duplicates=_as_bool(
            _lookup(entry, "can_have_duplicates", default=False), field=f"{field}.can_have_duplicates"
        ),
        enabled=_as_bool(_lookup(entry, "enabled", default=True), field=f"{field}.enabled"),
    )


def _parse_kit(raw: object, *, field: str) -> Kit:
    if not isinstance(raw, Mapping):
        raise ConfigurationLoadFailure(f"{field} must be an object")
    entry = _normalized(raw)
    name = str(_lookup(entry, "name", default="")).strip()
    if not name:
        raise ConfigurationLoadFailure(f"{field} has no name")
    field = f"{field} ({name})"
    commands = tuple(
        _parse_command(value, field=f"{field}.commands[{index}]")
        for index, value in enumerate(_as_list(_lookup(entry, "commands"), field=f"{field}.commands"))
    )
    items = tuple(
        _parse_item(value, field=f"{field}.items[{index}]")
        for index, value in enumerate(_as_list(_lookup(entry, "items"), field=f"{field}.items"))
    )
    return Kit(
        name=name,
        enabled=_as_bool(_lookup(entry, "enabled", default=True), field=f"{field}.enabled"),
        weight=_as_float(_lookup(entry, "weight", default=1.0), field=f"{field}.weight"),
        commands=commands,
        items=items,
        random_pool=_parse_pool(_lookup(entry, "random_pool", "random_items"), field=f"{field}.random_pool"),
        commands_enabled=_as_bool(_lookup(entry, "commands_enabled", default=True), field=f"{field}.commands_enabled"),
        items_enabled=_as_bool(_lookup(entry, "items_enabled", default=True), field=f"{field}.items_enabled"),
        show_message=_as_bool(
            _lookup(entry, "show_message", "show_respawn_message", default=False), field=f"{field}.show_message"
        ),
        message=str(_lookup(entry, "message", "respawn_message", default="")),
        remove_existing_inventory=_as_bool(
            _lookup(entry, "remove_existing_inventory", default=False),
            field=f"{field}.remove_existing_inventory",
        ),
    )


def _parse_kit_set(raw: object, *, field: str) -> KitSet:
    if isinstance(raw, list):
        raw = {"kits": raw}
    if not isinstance(raw, Mapping):
        raise ConfigurationLoadFailure(f"{field} must be an object or a list of kits")
    entry = _normalized(raw)
    try:
        policy = SelectionPolicy.parse(_lookup(entry, "policy", "selection_policy", default="random"))
    except ValueError as exc:
        raise ConfigurationLoadFailure(f"{field}.policy: {exc}") from exc
    kits = tuple(
        _parse_kit(value, field=f"{field}.kits[{index}]")
        for index, value in enumerate(_as_list(_lookup(entry, "kits"), field=f"{field}.kits"))
    )
    return KitSet(kits=kits, policy=policy)


def _parse_legacy(entry: Mapping[str, object]) -> KitConfig:
    """Convert the single-kit plugin layout into a one-kit configuration."""
    shared = {
        "show_message": _lookup(entry, "show_respawn_message", default=False),
        "message": _lookup(entry, "respawn_message", default=""),
        "remove_existing_inventory": _lookup(entry, "remove_existing_inventory", default=False),
    }

    def _legacy_kit(name: str, suffix: str) -> Optional[Kit]:
        commands = _lookup(entry, f"commands_to_run_on_{suffix}")
        items = _lookup(entry, f"items_to_add_to_inventory_on_{suffix}")
        if commands is None and items is None:
            return None
        return _parse_kit(
            {
                "name": name,
                "commands": commands or [],
                "commands_enabled": _lookup(entry, f"commands_to_run_on_{suffix}_enabled", default=False),
                "items": items or [],
                "items_enabled": _lookup(entry, f"items_to_add_to_inventory_on_{suffix}_enabled", default=False),
                **shared,
            },
            field=f"legacy {suffix} kit",
        )

    respawn_kit = _legacy_kit("respawn", "respawn")
    spawn_kit = _legacy_kit("spawn", "spawn")
    return KitConfig(
        enabled=_as_bool(_lookup(entry, "enabled", default=False), field="enabled"),
        respawn=KitSet(kits=(respawn_kit,) if respawn_kit else ()),
        spawn=KitSet(kits=(spawn_kit,)) if spawn_kit else None,
    )


def parse_kit_config(payload: object) -> KitConfig:
    """Build a ``KitConfig`` from decoded JSON/YAML data."""
    if payload is None:
        return KitConfig()
    if not isinstance(payload, Mapping):
        raise ConfigurationLoadFailure("Kit configuration must be a JSON/YAML object.")
    entry = _normalized(payload)
    if _LEGACY_MARKERS & set(entry):
        return _parse_legacy(entry)

    enabled = _as_bool(_lookup(entry, "enabled", default=False), field="enabled")
    if "kits" in entry:
        return KitConfig(enabled=enabled, respawn=_parse_kit_set(entry, field="kits"))
    respawn = _lookup(entry, "respawn")
    spawn = _lookup(entry, "spawn")
    return KitConfig(
        enabled=enabled,
        respawn=_parse_kit_set(respawn, field="respawn") if respawn is not None else KitSet(),
        spawn=_parse_kit_set(spawn, field="spawn") if spawn is not None else None,
    )


def _validate_kit_set(kit_set: KitSet, *, label: str) -> None:
    seen: Dict[str, str] = {}
    for kit in kit_set.kits:
        lowered = kit.name.lower()
        if lowered in seen:
            raise InvalidSelectionInput(f"{label}: duplicate kit name '{kit.name}'.")
        seen[lowered] = kit.name
        if kit.weight < 0:
            raise InvalidSelectionInput(f"{label}: kit '{kit.name}' has negative weight {kit.weight}.")
        pool = kit.random_pool
        if pool is None or not pool.enabled or (pool.max_amount <= 0 and pool.min_amount <= 0):
            continue
        if not pool.items:
            raise InvalidSelectionInput(f"{label}: kit '{kit.name}' has an enabled random pool with no items.")
        if any(item.weight < 0 for item in pool.items):
            raise InvalidSelectionInput(f"{label}: kit '{kit.name}' has a random pool item with negative weight.")
        if sum(item.weight for item in pool.items) <= 0:
            raise InvalidSelectionInput(f"{label}: kit '{kit.name}' random pool weights sum to zero.")

    enabled = kit_set.enabled_kits()
    if kit_set.policy is SelectionPolicy.RANDOM and enabled and sum(kit.weight for kit in enabled) <= 0:
        raise InvalidSelectionInput(f"{label}: random policy needs at least one enabled kit with positive weight.")


def validate_kit_config(config: KitConfig) -> None:
    """Reject configurations that would make selection fail at grant time."""
    _validate_kit_set(config.respawn, label="respawn")
    if config.spawn is not None:
        _validate_kit_set(config.spawn, label="spawn")


def _dump_item(item: GiveawayItem) -> Dict[str, object]:
    data: Dict[str, object] = {
        "shortcode": item.shortcode,
        "min_amount": item.min_amount,
        "max_amount": item.max_amount,
        "cooldown_seconds": item.cooldown_seconds,
    }
    if item.attachments:
        data["attachments"] = list(item.attachments)
    if item.weight != 1.0:
        data["weight"] = item.weight
    return data


def _dump_kit(kit: Kit) -> Dict[str, object]:
    data: Dict[str, object] = {
        "name": kit.name,
        "enabled": kit.enabled,
        "weight": kit.weight,
        "commands_enabled": kit.commands_enabled,
        "commands": [{"text": cmd.text, "cooldown_seconds": cmd.cooldown_seconds} for cmd in kit.commands],
        "items_enabled": kit.items_enabled,
        "items": [_dump_item(item) for item in kit.items],
        "show_message": kit.show_message,
        "message": kit.message,
        "remove_existing_inventory": kit.remove_existing_inventory,
    }
    pool = kit.random_pool
    if pool is not None:
        data["random_pool"] = {
            "enabled": pool.enabled,
            "min_amount": pool.min_amount,
            "max_amount": pool.max_amount,
            "can_have_duplicates": pool.can_have_duplicates,
            "items": [_dump_item(item) for item in pool.items],
        }
    return data


def _dump_kit_set(kit_set: KitSet) -> Dict[str, object]:
    return {"policy": kit_set.policy.value, "kits": [_dump_kit(kit) for kit in kit_set.kits]}


def dump_kit_config(config: KitConfig) -> Dict[str, object]:
    data: Dict[str, object] = {"enabled": config.enabled, "respawn": _dump_kit_set(config.respawn)}
    if config.spawn is not None:
        data["spawn"] = _dump_kit_set(config.spawn)
    return data


def _read_payload(path: Path) -> object:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in YAML_SUFFIXES:
        return yaml.safe_load(text)
    return json.loads(text)


def write_kit_config(path: Path, config: KitConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = dump_kit_config(config)
    if path.suffix.lower() in YAML_SUFFIXES:
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def load_kit_config(path: Optional[Path], *, strict: bool = False) -> KitConfig:
    """Load and validate the kit configuration at ``path``.

    A missing file is created with the disabled default. An unreadable or
    malformed file is logged and the disabled default is returned, so the
    bot keeps running without granting anything. With ``strict`` (reloads)
    both cases raise ``ConfigurationLoadFailure`` instead. Validation errors
    (``InvalidSelectionInput``) always propagate to the caller.
    """
    if path is None:
        if strict:
            raise ConfigurationLoadFailure("No kit config path configured.")
        return KitConfig()
    if not path.exists():
        if strict:
            raise ConfigurationLoadFailure(f"Kit config {path} not found.")
        logger.warning("Kit config %s not found; writing disabled default.", path)
        try:
            write_kit_config(path, KitConfig())
        except OSError as exc:
            logger.warning("Unable to write default kit config %s: %s", path, exc)
        return KitConfig()
    try:
        try:
            payload = _read_payload(path)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationLoadFailure(f"Failed to read {path}: {exc}") from exc
        config = parse_kit_config(payload)
    except ConfigurationLoadFailure as exc:
        if strict:
            raise
        logger.error("Kit configuration unusable, kits disabled: %s", exc)
        return KitConfig()
    validate_kit_config(config)
    logger.info(
        "Loaded kit config %s: enabled=%s respawn=%d kit(s) (%s) spawn=%s",
        path,
        config.enabled,
        len(config.respawn.kits),
        config.respawn.policy.value,
        "inherits respawn" if config.spawn is None else f"{len(config.spawn.kits)} kit(s)",
    )
    return config


__all__ = [
    "ConfigurationLoadFailure",
    "dump_kit_config",
    "load_kit_config",
    "parse_kit_config",
    "validate_kit_config",
    "write_kit_config",
]
