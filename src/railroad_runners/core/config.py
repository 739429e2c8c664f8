"""Launcher configuration.

Settings are resolved once at startup into a :class:`LauncherConfig` and then
passed explicitly to the supervisor and the game driver.

Resolution order for each setting (first wins):
1. Command-line option
2. Environment variable (``RAILROAD_RUNNERS_MIPSY_PATH``, ``RAILROAD_RUNNERS_SPEED``)
3. YAML config file (``--config`` or the per-user config directory)
4. Built-in default

Config file format::

    mipsy_path: /opt/mipsy/bin/mipsy
    speed_multiplier: 1.5
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from platformdirs import user_config_dir
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .constants import (
    APP_NAME,
    CONFIG_FILENAME,
    DEFAULT_MIPSY_PATH,
    DEFAULT_SPEED_MULTIPLIER,
    ENV_MIPSY_PATH,
    ENV_SPEED,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LauncherConfig:
    """Resolved launcher settings.

    Attributes:
        mipsy_path: Interpreter executable to launch
        speed_multiplier: Tick pacing factor, higher is slower
        mipsy_path_is_default: True when no source overrode the built-in path
        config_file: Config file that was read, if any
    """

    mipsy_path: Path = DEFAULT_MIPSY_PATH
    speed_multiplier: float = DEFAULT_SPEED_MULTIPLIER
    mipsy_path_is_default: bool = True
    config_file: Optional[Path] = None


def default_config_path() -> Path:
    """Return the per-user config file location."""
    return Path(user_config_dir(APP_NAME)) / CONFIG_FILENAME


def load_config_file(config_file: Path) -> dict[str, Any]:
    """Read the YAML config file.

    A missing file yields an empty mapping. Unparseable YAML or a document
    that is not a mapping raises :class:`ConfigError`.
    """
    if not config_file.exists():
        logger.debug("Config file not found: %s", config_file)
        return {}

    yaml = YAML(typ="safe")
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.load(f)
    except (OSError, YAMLError) as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}", path=config_file) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid config in {config_file}: expected a mapping at the top level",
            path=config_file,
        )
    return dict(data)


def _parse_speed(value: Any, source: str, config_file: Optional[Path] = None) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid speed multiplier from {source}: {value!r}", path=config_file)
    try:
        speed = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid speed multiplier from {source}: {value!r}", path=config_file
        ) from e
    if not math.isfinite(speed) or speed <= 0:
        raise ConfigError(
            f"Speed multiplier from {source} must be a positive finite number, got {speed}",
            path=config_file,
        )
    return speed


def resolve_config(
    mipsy_path: Optional[Path] = None,
    speed_multiplier: Optional[float] = None,
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> LauncherConfig:
    """Merge command-line values, environment, config file and defaults.

    Args:
        mipsy_path: ``--mipsy-path`` value, if given
        speed_multiplier: ``--speed`` value, if given
        config_file: ``--config`` value; the per-user file is used when omitted
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        LauncherConfig with every field resolved

    Raises:
        ConfigError: If the config file or any value is invalid
    """
    env = os.environ if environ is None else environ
    explicit_file = config_file is not None
    config_file = config_file if explicit_file else default_config_path()

    if explicit_file and not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}", path=config_file)

    file_data = load_config_file(config_file)
    used_file = config_file if file_data else None

    resolved_path = DEFAULT_MIPSY_PATH
    is_default = True
    if mipsy_path is not None:
        resolved_path, is_default = Path(mipsy_path), False
    elif env.get(ENV_MIPSY_PATH):
        resolved_path, is_default = Path(env[ENV_MIPSY_PATH]), False
    elif file_data.get("mipsy_path") is not None:
        raw = file_data["mipsy_path"]
        if not isinstance(raw, str) or not raw.strip():
            raise ConfigError(
                f"Invalid mipsy_path in {config_file}: expected a path string", path=config_file
            )
        resolved_path, is_default = Path(raw).expanduser(), False

    if speed_multiplier is not None:
        speed = _parse_speed(speed_multiplier, "--speed")
    elif env.get(ENV_SPEED):
        speed = _parse_speed(env[ENV_SPEED], ENV_SPEED)
    elif file_data.get("speed_multiplier") is not None:
        speed = _parse_speed(file_data["speed_multiplier"], str(config_file), config_file)
    else:
        speed = DEFAULT_SPEED_MULTIPLIER

    unknown = sorted(set(file_data) - {"mipsy_path", "speed_multiplier"})
    if unknown:
        logger.warning("Ignoring unknown key(s) in %s: %s", config_file, ", ".join(unknown))

    config = LauncherConfig(
        mipsy_path=resolved_path,
        speed_multiplier=speed,
        mipsy_path_is_default=is_default,
        config_file=used_file,
    )
    logger.debug("Resolved launcher config: %s", config)
    return config


__all__ = [
    "LauncherConfig",
    "default_config_path",
    "load_config_file",
    "resolve_config",
]
