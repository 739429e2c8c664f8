"""Exception types raised by the launcher."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class RailroadRunnersError(RuntimeError):
    """Base class for launcher failures."""


class LaunchError(RailroadRunnersError):
    """Raised when the interpreter cannot be started against the program."""

    def __init__(self, path: Path | str, reason: str, hint: Optional[str] = None) -> None:
        self.path = Path(path)
        self.reason = reason
        self.hint = hint
        super().__init__(f"{reason}: {self.path}")


class SupervisionError(RailroadRunnersError):
    """Raised when a spawned child can no longer be monitored."""

    def __init__(self, message: str, pid: Optional[int] = None) -> None:
        self.pid = pid
        super().__init__(message)


class ConfigError(RailroadRunnersError):
    """Raised when launcher configuration cannot be parsed or validated."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        self.path = path
        super().__init__(message)


__all__ = ["RailroadRunnersError", "LaunchError", "SupervisionError", "ConfigError"]
