"""
draft-orchestrator — runtime config loader.

File: src/draft_orchestrator/config/loader.py

Purpose
- Build the effective configuration from four layers and materialize ``Settings``.

What should be included in this file
- Layering: built-in defaults, then ``draft_orchestrator.toml``, then ``DRAFT_*``
  environment variables, then CLI overrides (last wins).
- Environment variable names derived from config paths, typed by the default value
  found at that path (``batch.parallel_requests`` -> ``DRAFT_BATCH_PARALLEL_REQUESTS``).
- JSON dump of the effective config with sensitive keys redacted.

Functional requirements
- Every layer is re-validated; embedded secrets and unknown keys are rejected.
- A config file passed explicitly must exist; the default file is optional.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from draft_orchestrator.config.schema import (
    Settings,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    settings_from_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "draft_orchestrator.toml"
ENV_PREFIX: Final[str] = "DRAFT_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

# Sections whose values are never taken from the environment.
_ENV_EXCLUDED_SECTIONS: Final[frozenset[str]] = frozenset({"meta"})

_Coercer = Callable[[str], object]


class ConfigLoadError(ValueError):
    """Config file or override value could not be read or converted."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config mapping."""

    explicit = config_path is not None
    path = Path(config_path).expanduser() if explicit else Path.cwd() / DEFAULT_CONFIG_FILE
    env = os.environ if environ is None else environ

    layered = assert_valid_config(merge_config(default_config(), _read_toml(path, explicit)))
    for overlay in (_env_layer(layered, env), _cli_layer(cli_overrides or {})):
        layered = merge_config(layered, overlay)
    return assert_valid_config(layered)


def load_settings(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    return settings_from_config(
        load_config(config_path, cli_overrides=cli_overrides, environ=environ)
    )


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Redacted, key-sorted JSON rendering used by ``draft config``."""

    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def _read_toml(path: Path, explicit: bool) -> dict[str, Any]:
    resolved = path.resolve()
    if not resolved.is_file():
        if explicit:
            raise ConfigLoadError(f"config file not found: {resolved}")
        return {}
    try:
        return tomllib.loads(resolved.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {resolved}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {resolved}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for env_name, path, coerce in _env_bindings(config):
        raw = environ.get(env_name)
        if raw is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(path)} {exc}") from exc
        _assign(layer, path, value)
    return layer


def _env_bindings(
    config: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[str, tuple[str, ...], _Coercer]]:
    """Yield ``(ENV_NAME, path, coercer)`` for every scalar leaf, sorted by path."""

    for key in sorted(config):
        path = (*prefix, key)
        if not prefix and key in _ENV_EXCLUDED_SECTIONS:
            continue
        value = config[key]
        if isinstance(value, Mapping):
            yield from _env_bindings(value, path)
            continue
        coerce = _coercer_for(value)
        if coerce is not None:
            yield ENV_PREFIX + "_".join(part.upper() for part in path), path, coerce


def _coercer_for(default: object) -> _Coercer | None:
    # bool first; it subclasses int.
    if isinstance(default, bool):
        return _parse_bool
    if isinstance(default, int):
        return _numeric(int, "an integer")
    if isinstance(default, float):
        return _numeric(float, "a number")
    if isinstance(default, str):
        return str
    return None


def _numeric(kind: Callable[[str], object], expected: str) -> _Coercer:
    def coerce(raw: str) -> object:
        try:
            return kind(raw)
        except ValueError:
            raise ValueError(f"must be {expected}") from None

    return coerce


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _cli_layer(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand dotted ``section.key`` overrides; ``None`` means "not given"."""

    layer: dict[str, Any] = {}
    for dotted, value in sorted(cli_overrides.items()):
        if value is None:
            continue
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(layer, path, value)
    return layer


def _assign(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    node = target
    for part in path[:-1]:
        child = node.setdefault(part, {})
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[path[-1]] = value


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "load_settings",
]
