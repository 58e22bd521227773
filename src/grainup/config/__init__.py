"""Configuration management for grainup.

The configuration file lives at ``~/.grainup/config.yaml``. It can hold the
Grain account and SMTP passwords, so grainup writes it readable by the owner
only and warns when an existing file is exposed to other users.
"""

from __future__ import annotations

import logging
import os
import stat
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import GrainupConfig
from .resolver import (
    ENV_PREFIX,
    SECRET_KEYS,
    flatten_for_env,
    overrides_from_env,
    redact,
    resolve_with_precedence,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.grainup/config.yaml")
_CONFIG_HEADER = textwrap.dedent(
    f"""\
    # grainup configuration file
    # Generated automatically; manage via `grainup config set` or edit by hand.
    # Passwords may be left out here and supplied as {ENV_PREFIX}CREDENTIALS__PASSWORD
    # and {ENV_PREFIX}EMAIL__PASSWORD environment variables instead.
    """
)
_OWNER_ONLY = stat.S_IRUSR | stat.S_IWUSR


class ConfigManager:
    """Read and write the grainup configuration file.

    Args:
        config_path: Location of the YAML file. Defaults to
            ``~/.grainup/config.yaml``.
        env: Environment consulted for ``GRAINUP__`` overrides. Defaults to
            ``os.environ``.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> GrainupConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Dotted keys from the command line; highest priority.
            include_env: Whether ``GRAINUP__`` variables are applied.
            ensure_file: Create the default file first when it is missing.
            env_overrides: Environment to read instead of the manager's own.

        Returns:
            GrainupConfig: Validated settings with absolute folders.

        Raises:
            ConfigError: If the file or an override is invalid.
        """
        if ensure_file:
            self.ensure_exists()

        env_data: dict[str, Any] | None = None
        if include_env:
            env_data = overrides_from_env(env_overrides if env_overrides is not None else self._env)

        return resolve_with_precedence(
            defaults=GrainupConfig(),
            file_overrides=self._read_file(),
            env_overrides=env_data,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def read_text(self) -> str:
        """Return the raw configuration file contents, or an empty string."""
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    def save(self, config: GrainupConfig | Mapping[str, Any]) -> None:
        """Persist ``config`` to disk with owner-only permissions."""
        if isinstance(config, GrainupConfig):
            data = config.model_dump(mode="json")
        else:
            data = dict(config)
        self._write_file(data)

    def ensure_exists(self) -> Path:
        """Create a configuration file with defaults if one does not exist."""
        path = self._config_path
        if not path.exists():
            self._write_file(GrainupConfig().model_dump(mode="json"))
        return path

    # Internal helpers -------------------------------------------------

    def _read_file(self) -> dict[str, Any]:
        path = self._config_path
        if not path.exists():
            return {}

        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")

        if _stores_secrets(raw) and path.stat().st_mode & (stat.S_IRWXG | stat.S_IRWXO):
            LOGGER.warning(
                "%s contains passwords and is readable by other users; run `chmod 600 %s`",
                path,
                path,
            )
        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        path = self._config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        body = yaml.safe_dump(dict(data), sort_keys=False)
        path.write_text(f"{_CONFIG_HEADER}# Last updated: {stamp}\n{body}", encoding="utf-8")
        path.chmod(_OWNER_ONLY)


def _stores_secrets(data: Mapping[str, Any]) -> bool:
    for section, key in SECRET_KEYS:
        values = data.get(section)
        if isinstance(values, Mapping) and values.get(key):
            return True
    return False


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "GrainupConfig",
    "ConfigError",
    "flatten_for_env",
    "redact",
    "resolve_with_precedence",
]
