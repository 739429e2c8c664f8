"""Shared constants for the railroad-runners launcher."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "railroad-runners"

# Lab machine location of mipsy; anywhere else needs --mipsy-path.
DEFAULT_MIPSY_PATH = Path("/home/cs1521/bin/mipsy")

# The higher the number, the slower the game.
DEFAULT_SPEED_MULTIPLIER = 1.2
TICK_LOG_BASE = 10.0
MAX_TICK_INTERVAL = 1.0
TICK_LINE = "'\n"
VALID_KEYS = frozenset("wasdq")

# Seconds a child gets between SIGTERM and SIGKILL during cleanup.
TERMINATE_GRACE_SECONDS = 2.0

# Exit codes reserved for the launcher itself, kept apart from the child's.
LAUNCH_FAILURE_EXIT_CODE = 125
SUPERVISION_FAILURE_EXIT_CODE = 126
SIGNAL_EXIT_BASE = 128

ENV_MIPSY_PATH = "RAILROAD_RUNNERS_MIPSY_PATH"
ENV_SPEED = "RAILROAD_RUNNERS_SPEED"
CONFIG_FILENAME = "config.yaml"

__all__ = [
    "APP_NAME",
    "DEFAULT_MIPSY_PATH",
    "DEFAULT_SPEED_MULTIPLIER",
    "TICK_LOG_BASE",
    "MAX_TICK_INTERVAL",
    "TICK_LINE",
    "VALID_KEYS",
    "TERMINATE_GRACE_SECONDS",
    "LAUNCH_FAILURE_EXIT_CODE",
    "SUPERVISION_FAILURE_EXIT_CODE",
    "SIGNAL_EXIT_BASE",
    "ENV_MIPSY_PATH",
    "ENV_SPEED",
    "CONFIG_FILENAME",
]
