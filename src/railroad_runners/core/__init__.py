"""Core configuration, constants and error types."""

from .config import LauncherConfig, default_config_path, load_config_file, resolve_config
from .constants import (
    DEFAULT_MIPSY_PATH,
    DEFAULT_SPEED_MULTIPLIER,
    LAUNCH_FAILURE_EXIT_CODE,
    SUPERVISION_FAILURE_EXIT_CODE,
)
from .errors import ConfigError, LaunchError, RailroadRunnersError, SupervisionError

__all__ = [
    "DEFAULT_MIPSY_PATH",
    "DEFAULT_SPEED_MULTIPLIER",
    "LAUNCH_FAILURE_EXIT_CODE",
    "SUPERVISION_FAILURE_EXIT_CODE",
    "LauncherConfig",
    "default_config_path",
    "load_config_file",
    "resolve_config",
    "RailroadRunnersError",
    "LaunchError",
    "SupervisionError",
    "ConfigError",
]
