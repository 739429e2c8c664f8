from __future__ import annotations

import stat
from pathlib import Path
from typing import Callable

import pytest

from railroad_runners.core import config as config_module
from railroad_runners.core.constants import ENV_MIPSY_PATH, ENV_SPEED


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep the user's real config file and environment out of every test."""
    user_config = tmp_path / "user-config" / "config.yaml"
    monkeypatch.setattr(config_module, "default_config_path", lambda: user_config)
    monkeypatch.delenv(ENV_MIPSY_PATH, raising=False)
    monkeypatch.delenv(ENV_SPEED, raising=False)
    return user_config


@pytest.fixture()
def program_file(tmp_path: Path) -> Path:
    program = tmp_path / "railroad_runners.s"
    program.write_text("main:\n\tjr\t$ra\n", encoding="utf-8")
    return program


@pytest.fixture()
def make_interpreter(tmp_path: Path) -> Callable[[str], Path]:
    """Write an executable /bin/sh script standing in for mipsy."""
    counter = {"n": 0}

    def _make(body: str) -> Path:
        counter["n"] += 1
        script = tmp_path / f"fake-mipsy-{counter['n']}"
        script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make

