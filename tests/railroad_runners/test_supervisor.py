"""Tests for the interpreter process supervisor."""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from railroad_runners.core.errors import LaunchError, SupervisionError
from railroad_runners.supervisor import (
    InvocationRequest,
    InvocationResult,
    StdinMode,
    Supervisor,
    resolve_interpreter,
    run,
)

pytestmark = pytest.mark.skipif(os.name != "posix", reason="requires a POSIX process model")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def _process_state(pid: int) -> str:
    stat = Path(f"/proc/{pid}/stat").read_text(encoding="utf-8")
    return stat.rsplit(")", 1)[1].split()[0]


def _wait_for_state(pid: int, wanted: str, timeout: float = 2.0) -> str:
    deadline = time.monotonic() + timeout
    state = _process_state(pid)
    while state != wanted and time.monotonic() < deadline:
        time.sleep(0.01)
        state = _process_state(pid)
    return state


class TestInvocationResult:
    def test_normal_exit(self) -> None:
        result = InvocationResult.from_returncode(3, pid=10)
        assert result.exit_code == 3
        assert result.signal is None
        assert not result.terminated_by_signal
        assert result.shell_exit_code == 3

    def test_signal_is_not_an_exit_code(self) -> None:
        result = InvocationResult.from_returncode(-signal.SIGKILL)
        assert result.exit_code is None
        assert result.signal == signal.SIGKILL
        assert result.terminated_by_signal
        assert result.signal_name == "SIGKILL"
        assert result.shell_exit_code == 128 + signal.SIGKILL

    def test_unknown_signal_number_still_named(self) -> None:
        result = InvocationResult(signal=250)
        assert result.signal_name == "signal 250"


class TestValidation:
    def test_nonexistent_interpreter_spawns_nothing(self, program_file: Path) -> None:
        with patch("railroad_runners.supervisor.subprocess.Popen") as popen:
            with pytest.raises(LaunchError) as exc_info:
                run("/nonexistent/tool", program_file)

        popen.assert_not_called()
        assert exc_info.value.path == Path("/nonexistent/tool")
        assert "/nonexistent/tool" in str(exc_info.value)

    def test_interpreter_not_executable(self, tmp_path: Path, program_file: Path) -> None:
        interpreter = tmp_path / "mipsy"
        interpreter.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        interpreter.chmod(0o644)

        with pytest.raises(LaunchError, match="not executable"):
            run(interpreter, program_file)

    def test_interpreter_is_directory(self, tmp_path: Path, program_file: Path) -> None:
        with pytest.raises(LaunchError, match="directory"):
            run(tmp_path, program_file)

    def test_missing_program(self, tmp_path: Path, make_interpreter) -> None:
        interpreter = make_interpreter("exit 0")
        missing = tmp_path / "nope.s"

        with pytest.raises(LaunchError) as exc_info:
            run(interpreter, missing)

        assert exc_info.value.path == missing
        assert "Program not found" in str(exc_info.value)

    def test_program_is_directory(self, tmp_path: Path, make_interpreter) -> None:
        with pytest.raises(LaunchError, match="directory"):
            run(make_interpreter("exit 0"), tmp_path)

    def test_bare_name_resolved_on_path(self) -> None:
        assert resolve_interpreter(Path("sh")) == Path(shutil.which("sh"))

    def test_spawn_failure_becomes_launch_error(self, program_file: Path, make_interpreter) -> None:
        interpreter = make_interpreter("exit 0")
        with patch(
            "railroad_runners.supervisor.subprocess.Popen",
            side_effect=OSError(8, "Exec format error"),
        ):
            with pytest.raises(LaunchError, match="Exec format error"):
                run(interpreter, program_file)


class TestExitStatus:
    def test_echo_hello(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "hello").write_text("", encoding="utf-8")

        result = run(interpreter="/bin/echo", program="hello")

        assert result.exit_code == 0
        assert not result.terminated_by_signal

    @pytest.mark.parametrize("code", [0, 1, 42, 255])
    def test_exit_code_mirrors_child(self, code: int, program_file: Path, make_interpreter) -> None:
        result = run(make_interpreter(f"exit {code}"), program_file)
        assert result.exit_code == code
        assert result.shell_exit_code == code

    def test_program_path_passed_as_argument(
        self, tmp_path: Path, program_file: Path, make_interpreter
    ) -> None:
        record = tmp_path / "argv.txt"
        interpreter = make_interpreter(f'printf "%s\\n" "$@" > "{record}"')

        request = InvocationRequest(
            interpreter_path=interpreter, program_path=program_file, extra_args=("--extra",)
        )
        Supervisor().run(request)

        assert record.read_text(encoding="utf-8").splitlines() == [str(program_file), "--extra"]

    def test_killed_child_reported_as_signal(self, program_file: Path, make_interpreter) -> None:
        result = run(make_interpreter("kill -KILL $$"), program_file)

        assert result.terminated_by_signal
        assert result.signal == signal.SIGKILL
        assert result.exit_code is None
        assert result.shell_exit_code != 0

    def test_piped_stdin_reaches_child(
        self, tmp_path: Path, program_file: Path, make_interpreter
    ) -> None:
        out = tmp_path / "stdin.txt"
        interpreter = make_interpreter(f'head -n 1 > "{out}"')

        def feed(process: subprocess.Popen) -> None:
            process.stdin.write(b"hello mipsy\n")
            process.stdin.flush()

        result = Supervisor().run(
            InvocationRequest(interpreter, program_file), stdin_mode=StdinMode.PIPE, on_start=feed
        )

        assert result.exit_code == 0
        assert out.read_text(encoding="utf-8") == "hello mipsy\n"


class TestCleanup:
    def test_failing_on_start_still_reaps_child(self, program_file: Path, make_interpreter) -> None:
        interpreter = make_interpreter("exec sleep 30")
        seen: list[subprocess.Popen] = []

        def explode(process: subprocess.Popen) -> None:
            seen.append(process)
            raise RuntimeError("driver crashed")

        with pytest.raises(RuntimeError, match="driver crashed"):
            Supervisor(grace_period=0.5).run(
                InvocationRequest(interpreter, program_file), on_start=explode
            )

        assert seen[0].returncode is not None
        assert not _pid_alive(seen[0].pid)

    def test_escalates_to_sigkill(
        self, tmp_path: Path, program_file: Path, make_interpreter
    ) -> None:
        ready = tmp_path / "ready"
        interpreter = make_interpreter(
            f"trap '' TERM\n: > \"{ready}\"\nwhile :; do sleep 0.1; done"
        )
        seen: list[subprocess.Popen] = []

        def explode(process: subprocess.Popen) -> None:
            seen.append(process)
            deadline = time.monotonic() + 5
            while not ready.exists() and time.monotonic() < deadline:
                time.sleep(0.01)
            raise RuntimeError("stop")

        with pytest.raises(RuntimeError):
            Supervisor(grace_period=0.3).run(
                InvocationRequest(interpreter, program_file), on_start=explode
            )

        assert seen[0].returncode == -signal.SIGKILL

    def test_interrupt_during_cleanup_still_kills_child(
        self, tmp_path: Path, program_file: Path, make_interpreter
    ) -> None:
        ready = tmp_path / "ready"
        interpreter = make_interpreter(
            f"trap '' TERM INT\n: > \"{ready}\"\nwhile :; do sleep 0.1; done"
        )
        seen: list[subprocess.Popen] = []
        timers: list[threading.Timer] = []

        def explode(process: subprocess.Popen) -> None:
            seen.append(process)
            deadline = time.monotonic() + 5
            while not ready.exists() and time.monotonic() < deadline:
                time.sleep(0.01)
            # Lands while the supervisor waits out the SIGTERM grace period.
            timer = threading.Timer(0.3, os.kill, args=(os.getpid(), signal.SIGINT))
            timers.append(timer)
            timer.start()
            raise RuntimeError("stop")

        with pytest.raises(RuntimeError, match="stop"):
            Supervisor(grace_period=1.0).run(
                InvocationRequest(interpreter, program_file), on_start=explode
            )
        timers[0].join()

        assert seen[0].returncode == -signal.SIGKILL
        assert not _pid_alive(seen[0].pid)

    def test_signal_handlers_restored(self, program_file: Path, make_interpreter) -> None:
        watched = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP, signal.SIGTSTP)
        before = {s: signal.getsignal(s) for s in watched}

        run(make_interpreter("exit 0"), program_file)

        after = {s: signal.getsignal(s) for s in before}
        assert after == before

    def test_wait_failure_is_supervision_error(self, program_file: Path, make_interpreter) -> None:
        interpreter = make_interpreter("exec sleep 30")

        def break_wait(process: subprocess.Popen) -> None:
            real_wait = process.wait

            def wait(timeout=None):
                if timeout is None and not getattr(wait, "failed", False):
                    wait.failed = True
                    raise ChildProcessError("no child processes")
                return real_wait(timeout=timeout)

            process.wait = wait

        with pytest.raises(SupervisionError) as exc_info:
            Supervisor(grace_period=0.5).run(
                InvocationRequest(interpreter, program_file), on_start=break_wait
            )

        assert exc_info.value.pid is not None
        assert not _pid_alive(exc_info.value.pid)


class TestSignalForwarding:
    def test_sigterm_to_supervisor_reaches_child(self, program_file: Path, make_interpreter) -> None:
        interpreter = make_interpreter("exec sleep 30")

        def interrupt_self(process: subprocess.Popen) -> None:
            os.kill(os.getpid(), signal.SIGTERM)

        result = Supervisor().run(InvocationRequest(interpreter, program_file), on_start=interrupt_self)

        assert result.signal == signal.SIGTERM

    def test_child_runs_in_its_own_session(self, program_file: Path, make_interpreter) -> None:
        interpreter = make_interpreter("sleep 1")
        groups: list[tuple[int, int, int]] = []

        def record(process: subprocess.Popen) -> None:
            groups.append((process.pid, os.getpgid(process.pid), os.getsid(process.pid)))

        Supervisor().run(InvocationRequest(interpreter, program_file), on_start=record)

        pid, pgid, sid = groups[0]
        assert pgid == pid
        assert sid == pid
        assert os.getpgrp() != pgid

    @pytest.mark.skipif(not Path("/proc/self/stat").exists(), reason="requires /proc")
    def test_ctrl_z_stops_and_resumes_child(
        self, program_file: Path, make_interpreter, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        interpreter = make_interpreter("exec sleep 1")
        seen: list[subprocess.Popen] = []
        states: list[str] = []

        def record_child_state() -> None:
            states.append(_wait_for_state(seen[0].pid, "T"))

        monkeypatch.setattr("railroad_runners.supervisor._suspend_self", record_child_state)

        def press_ctrl_z(process: subprocess.Popen) -> None:
            seen.append(process)
            os.kill(os.getpid(), signal.SIGTSTP)

        result = Supervisor().run(InvocationRequest(interpreter, program_file), on_start=press_ctrl_z)

        assert states == ["T"]
        assert result.exit_code == 0
