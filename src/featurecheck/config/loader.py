"""Load the effective config: CLI > environment (``FEATURECHECK_``) > file > defaults."""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from featurecheck.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from featurecheck.constants import DEFAULT_CONFIG_FILE
from featurecheck.errors import FeatureCheckError

ENV_PREFIX: Final[str] = "FEATURECHECK_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(FeatureCheckError, ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    A missing default ``featurecheck.toml`` is fine; an explicitly named file
    must exist. ``cli_overrides`` keys are dotted paths (``"paths.state_file"``)
    and ``None`` values are ignored. Relative paths are resolved against the
    config file's directory.
    """
    if config_path is None:
        source = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
        from_file = _read_toml(source) if source.exists() else {}
    else:
        source = Path(config_path).expanduser().resolve()
        if not source.exists():
            raise ConfigLoadError(f"config file not found: {source}")
        from_file = _read_toml(source)

    effective = merge_config(default_config(), from_file)
    for layer in (
        _env_layer(os.environ if environ is None else environ),
        _cli_layer(cli_overrides or {}),
    ):
        effective = merge_config(effective, layer)
    return normalize_paths(assert_valid_config(effective), base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path fields relative to ``base_dir``; empty values stay empty."""
    resolved = merge_config({}, config)
    for section, key in PATH_FIELDS:
        block = resolved.get(section)
        if not isinstance(block, dict):
            continue
        raw = block.get(key)
        if isinstance(raw, str) and raw:
            candidate = Path(os.path.expandvars(raw)).expanduser()
            if not candidate.is_absolute():
                candidate = base_dir / candidate
            block[key] = Path(os.path.normpath(candidate)).as_posix()
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Deterministic JSON dump of the redacted effective config."""
    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    """Overrides for every default leaf whose ``FEATURECHECK_*`` variable is set.

    The value is coerced to the type of the default it replaces.
    """
    layer: dict[str, Any] = {}
    for path, default in _leaves(default_config()):
        name = env_name_for_path(path)
        if name not in environ:
            continue
        coerce = _COERCERS.get(type(default))
        if coerce is None:
            continue
        try:
            value = coerce(environ[name].strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(path)} {exc}") from exc
        _assign(layer, path, value)
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        if value is None:
            continue
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(layer, path, value)
    return layer


def _leaves(
    tree: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key, value in tree.items():
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _assign(tree: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    *parents, leaf = path
    for part in parents:
        tree = tree.setdefault(part, {})
    tree[leaf] = value


def _as_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _as_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _as_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _as_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


_COERCERS: Final[dict[type, Callable[[str], object]]] = {
    bool: _as_bool,
    int: _as_int,
    float: _as_float,
    str: str,
    list: _as_list,
}


__all__ = [
    "ENV_PREFIX",
    "ConfigLoadError",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
