"""Turn layered grainup settings into one validated configuration.

Sources are applied in increasing priority: built-in defaults, the YAML file,
``GRAINUP__SECTION__KEY`` environment variables and finally command-line
overrides. Once validated, the watch and processed folders are anchored to
absolute paths so every consumer sees the same directories.
"""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterable, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import GrainupConfig

ENV_PREFIX = "GRAINUP__"
SECTIONS = frozenset(GrainupConfig.model_fields)

# Secrets are masked whenever configuration is displayed.
SECRET_KEYS = frozenset({("credentials", "password"), ("email", "password")})
# Values that must reach the model exactly as typed. YAML would turn a
# password such as ``0123`` or ``yes`` into a number or a boolean.
VERBATIM_KEYS = SECRET_KEYS | {
    ("credentials", "email"),
    ("email", "username"),
    ("email", "sender"),
    ("email", "recipient"),
}
MASK = "********"


def resolve_with_precedence(
    *,
    defaults: GrainupConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> GrainupConfig:
    """Merge configuration sources: defaults < file < environment < CLI.

    Raises:
        ConfigError: If a source is malformed or the merged values are invalid.
    """
    merged = defaults.model_dump(mode="json")
    for name, source in (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    ):
        if source:
            merged = _deep_merge(merged, _expand_dotted(source, source_name=name))

    try:
        config = GrainupConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc
    return anchor_folders(config)


def anchor_folders(config: GrainupConfig) -> GrainupConfig:
    """Return ``config`` with absolute watch and processed folders.

    A processed folder is only derived when a watch folder is configured,
    so an unset folder stays unset.
    """
    watch = config.watch
    if watch.folder is None and watch.processed_folder is None:
        return config
    anchored = watch.model_copy(
        update={
            "folder": watch.resolved_folder(),
            "processed_folder": watch.resolved_processed_folder(),
        }
    )
    return config.model_copy(update={"watch": anchored})


def parse_value(path: Iterable[str], raw: str) -> Any:
    """Parse a textual override for the dotted ``path``.

    Identity and secret fields are kept verbatim; everything else is read as
    a YAML literal so ``true`` or ``[.mp4, .wav]`` become typed values.
    """
    if tuple(path) in VERBATIM_KEYS:
        return raw
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def overrides_from_env(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``GRAINUP__SECTION__KEY`` variables into a nested mapping.

    Raises:
        ConfigError: If a variable names a section grainup does not have.
    """
    overrides: dict[str, Any] = {}
    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = [segment.lower() for segment in name[len(ENV_PREFIX) :].split("__")]
        if len(path) < 2 or not all(path):
            continue
        if path[0] not in SECTIONS:
            known = ", ".join(sorted(SECTIONS))
            raise ConfigError(f"{name} does not match a configuration section ({known}).")
        _assign(overrides, path, parse_value(path, raw), source_name="environment")
    return overrides


def redact(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of dumped settings with configured secrets masked."""
    masked = deepcopy(dict(data))
    for section, key in SECRET_KEYS:
        values = masked.get(section)
        if isinstance(values, dict) and values.get(key):
            values[key] = MASK
    return masked


def flatten_for_env(config: GrainupConfig, *, reveal_secrets: bool = False) -> Dict[str, str]:
    """Render ``config`` as ``GRAINUP__SECTION__KEY`` assignments.

    Secrets are masked unless ``reveal_secrets`` is set. Lists use YAML flow
    style and unset values render as ``null`` so the output can be pasted
    back into an environment file.
    """
    data = config.model_dump(mode="json")
    if not reveal_secrets:
        data = redact(data)

    flat: Dict[str, str] = {}
    pending: list[tuple[list[str], Any]] = [([section], data[section]) for section in data]
    while pending:
        path, value = pending.pop(0)
        if isinstance(value, dict):
            pending.extend((path + [key], child) for key, child in value.items())
            continue
        if isinstance(value, list):
            rendered = yaml.safe_dump(value, default_flow_style=True).strip()
        else:
            rendered = "null" if value is None else str(value)
        flat[ENV_PREFIX + "__".join(part.upper() for part in path)] = rendered
    return flat


def _expand_dotted(source: Mapping[str, Any], *, source_name: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    result: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        if isinstance(value, MappingABC):
            value = _expand_dotted(value, source_name=source_name)
        _assign(result, key.split("."), value, source_name=source_name)
    return result


def _assign(target: dict[str, Any], path: list[str], value: Any, *, source_name: str) -> None:
    node = target
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} conflicts with existing value."
            )
        node = child
    leaf = path[-1]
    if isinstance(value, dict) and isinstance(node.get(leaf), dict):
        node[leaf] = _deep_merge(node[leaf], value)
    else:
        node[leaf] = value


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "ENV_PREFIX",
    "MASK",
    "SECRET_KEYS",
    "anchor_folders",
    "flatten_for_env",
    "overrides_from_env",
    "parse_value",
    "redact",
    "resolve_with_precedence",
]
