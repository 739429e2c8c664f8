"""Process supervisor for the external MIPS interpreter.

This module handles:
    - Validating the interpreter and program paths before anything is spawned
    - Spawning the interpreter in its own process group
    - Pass-through of stdin/stdout/stderr (stdin may be handed to a driver instead)
    - Forwarding SIGINT/SIGTERM/SIGHUP to the child while it runs
    - Stopping and resuming the child along with the launcher (Ctrl-Z)
    - Reaping the child on every exit path, escalating to SIGKILL if needed
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .core.constants import SIGNAL_EXIT_BASE, TERMINATE_GRACE_SECONDS
from .core.errors import LaunchError, SupervisionError

logger = logging.getLogger(__name__)

FORWARDED_SIGNALS: Tuple[str, ...] = ("SIGINT", "SIGTERM", "SIGHUP")


def _is_windows() -> bool:
    """Return True when running on Windows."""
    return os.name == "nt"


class StdinMode(str, Enum):
    """Who owns the child's standard input."""

    INHERIT = "inherit"
    PIPE = "pipe"


@dataclass(frozen=True)
class InvocationRequest:
    """One interpreter launch.

    Attributes:
        interpreter_path: Interpreter executable (mipsy)
        program_path: Program handed to the interpreter as its first argument
        extra_args: Additional arguments appended after the program path
    """

    interpreter_path: Path
    program_path: Path
    extra_args: Tuple[str, ...] = ()

    def argv(self, interpreter: Optional[Path] = None) -> List[str]:
        exe = interpreter if interpreter is not None else self.interpreter_path
        return [str(exe), str(self.program_path), *self.extra_args]


@dataclass(frozen=True)
class InvocationResult:
    """How the child terminated.

    Exactly one of ``exit_code`` and ``signal`` is set. A child that was
    terminated by a signal has ``signal`` set and no exit code; see
    :attr:`terminated_by_signal`.
    """

    exit_code: Optional[int] = None
    signal: Optional[int] = None
    pid: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: int, pid: Optional[int] = None) -> "InvocationResult":
        # Popen reports death by signal N as -N on POSIX.
        if returncode < 0:
            return cls(signal=-returncode, pid=pid)
        return cls(exit_code=returncode, pid=pid)

    @property
    def terminated_by_signal(self) -> bool:
        return self.signal is not None

    @property
    def signal_name(self) -> Optional[str]:
        if self.signal is None:
            return None
        try:
            return signal.Signals(self.signal).name
        except ValueError:
            return f"signal {self.signal}"

    @property
    def shell_exit_code(self) -> int:
        """Exit status a shell would report for this result."""
        if self.signal is not None:
            return SIGNAL_EXIT_BASE + self.signal
        assert self.exit_code is not None
        return self.exit_code


def resolve_interpreter(interpreter_path: Path) -> Path:
    """Locate the interpreter executable.

    Bare command names (no directory part) are looked up on ``PATH`` when no
    such file exists relative to the working directory.

    Raises:
        LaunchError: If the interpreter is missing, a directory, or not executable
    """
    candidate = Path(interpreter_path)
    if not candidate.exists() and candidate.parent == Path("."):
        found = shutil.which(str(candidate))
        if found:
            logger.debug("Resolved interpreter %s on PATH: %s", candidate, found)
            return Path(found)

    if not candidate.exists():
        raise LaunchError(candidate, "Interpreter not found")
    if candidate.is_dir():
        raise LaunchError(candidate, "Interpreter path is a directory")
    if not os.access(candidate, os.X_OK):
        raise LaunchError(candidate, "Interpreter is not executable")
    return candidate


def validate_request(request: InvocationRequest) -> Path:
    """Check both paths of ``request`` and return the interpreter to run.

    Raises:
        LaunchError: If either path is unusable
    """
    interpreter = resolve_interpreter(request.interpreter_path)

    program = Path(request.program_path)
    if not program.exists():
        raise LaunchError(program, "Program not found")
    if program.is_dir():
        raise LaunchError(program, "Program path is a directory")
    if not os.access(program, os.R_OK):
        raise LaunchError(program, "Program is not readable")
    return interpreter


def _get_popen_creation_flags() -> Dict[str, Any]:
    """Return platform-specific process-group flags for subprocess.Popen."""
    if _is_windows():
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    # A new session keeps terminal-generated signals away from the child;
    # the supervisor forwards them explicitly.
    return {"start_new_session": True}


def signal_process_group(process: subprocess.Popen, signum: int) -> bool:
    """Deliver ``signum`` to the child's process group.

    Returns False when the child has already exited.
    """
    if process.poll() is not None:
        return False
    try:
        if _is_windows():
            if signum == signal.SIGINT:
                process.send_signal(signal.CTRL_BREAK_EVENT)
            else:
                process.terminate()
        else:
            os.killpg(process.pid, signum)
    except ProcessLookupError:
        return False
    return True


def kill_process_group(process: subprocess.Popen) -> bool:
    """Forcefully end the child's process group."""
    if _is_windows():
        if process.poll() is not None:
            return False
        process.kill()
        return True
    return signal_process_group(process, signal.SIGKILL)


def _suspend_self() -> None:
    """Stop the launcher until the shell sends SIGCONT."""
    os.kill(os.getpid(), signal.SIGSTOP)


class Supervisor:
    """Launch the interpreter, wait for it, and never leave it behind."""

    def __init__(
        self,
        grace_period: float = TERMINATE_GRACE_SECONDS,
        forward_signals: Sequence[str] = FORWARDED_SIGNALS,
        job_control: bool = True,
    ) -> None:
        self.grace_period = grace_period
        self.job_control = job_control
        self.forward_signals = tuple(
            getattr(signal, name) for name in forward_signals if hasattr(signal, name)
        )

    def run(
        self,
        request: InvocationRequest,
        stdin_mode: StdinMode = StdinMode.INHERIT,
        on_start: Optional[Callable[[subprocess.Popen], None]] = None,
    ) -> InvocationResult:
        """Run one invocation to completion.

        Args:
            request: Interpreter and program to launch
            stdin_mode: INHERIT for full pass-through, PIPE to let ``on_start``
                own the child's stdin
            on_start: Called with the live process right after spawning

        Returns:
            InvocationResult describing the child's termination

        Raises:
            LaunchError: If the child could not be started
            SupervisionError: If the child could not be waited on
        """
        interpreter = validate_request(request)

        # Handlers stay installed through the reap so an interrupt during
        # cleanup cannot skip the SIGKILL escalation.
        children: List[subprocess.Popen] = []
        with self._forwarding_signals(children) as pending:
            try:
                children.append(self._spawn(request, interpreter, stdin_mode))
                process = children[0]
                if pending:
                    signal_process_group(process, pending[0])
                if on_start is not None:
                    on_start(process)
                returncode = self._wait(process)
            finally:
                if children:
                    self._reap(children[0])

        result = InvocationResult.from_returncode(returncode, pid=process.pid)
        if result.terminated_by_signal:
            logger.info("Interpreter (PID %s) terminated by %s", process.pid, result.signal_name)
        else:
            logger.info("Interpreter (PID %s) exited with code %s", process.pid, result.exit_code)
        return result

    def _spawn(
        self, request: InvocationRequest, interpreter: Path, stdin_mode: StdinMode
    ) -> subprocess.Popen:
        argv = request.argv(interpreter)
        logger.debug("Spawning interpreter: %s", argv)
        stdin = subprocess.PIPE if stdin_mode is StdinMode.PIPE else None
        try:
            # stdout/stderr stay attached to ours; nothing is captured.
            process = subprocess.Popen(
                argv,
                stdin=stdin,
                stdout=None,
                stderr=None,
                bufsize=0,
                **_get_popen_creation_flags(),
            )
        except FileNotFoundError as e:
            raise LaunchError(interpreter, "Interpreter not found") from e
        except PermissionError as e:
            raise LaunchError(interpreter, "Interpreter is not executable") from e
        except OSError as e:
            raise LaunchError(interpreter, f"Failed to launch interpreter ({e.strerror or e})") from e

        logger.info("Interpreter started with PID %s", process.pid)
        return process

    @contextmanager
    def _forwarding_signals(self, children: List[subprocess.Popen]) -> Iterator[List[int]]:
        """Forward termination signals to the child for the duration of the block.

        ``children`` is filled in once the child is spawned. Signals that arrive
        before then are yielded back so the caller can deliver them.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; signal forwarding disabled")
            yield []
            return

        received: list[int] = []

        def handler(signum, frame):
            name = signal.Signals(signum).name
            if not children:
                logger.info("%s received before the interpreter started", name)
                received.append(signum)
                return
            process = children[0]
            if received:
                # Second signal - stop waiting politely
                logger.warning("Repeated %s, killing interpreter", name)
                kill_process_group(process)
                return
            received.append(signum)
            logger.info("Forwarding %s to interpreter (PID %s)", name, process.pid)
            signal_process_group(process, signum)

        def suspend(signum, frame):
            if not children:
                _suspend_self()
                return
            process = children[0]
            logger.debug("Suspending interpreter (PID %s) with the launcher", process.pid)
            signal_process_group(process, signal.SIGSTOP)
            _suspend_self()
            logger.debug("Resuming interpreter (PID %s)", process.pid)
            signal_process_group(process, signal.SIGCONT)

        handlers = {signum: handler for signum in self.forward_signals}
        if self.job_control and hasattr(signal, "SIGTSTP") and not _is_windows():
            handlers[signal.SIGTSTP] = suspend

        original = {signum: signal.getsignal(signum) for signum in handlers}
        for signum, fn in handlers.items():
            signal.signal(signum, fn)
        try:
            yield received
        finally:
            for signum, previous in original.items():
                signal.signal(signum, previous)

    def _wait(self, process: subprocess.Popen) -> int:
        try:
            return process.wait()
        except (ChildProcessError, OSError) as e:
            raise SupervisionError(
                f"Failed to wait on interpreter (PID {process.pid}): {e}", pid=process.pid
            ) from e

    def _reap(self, process: subprocess.Popen) -> None:
        """Make sure the child is gone and its pipes are closed."""
        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError:
                pass

        if process.poll() is not None:
            return

        logger.warning("Interpreter (PID %s) still running, terminating", process.pid)
        try:
            signal_process_group(process, signal.SIGTERM)
            process.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.warning("Interpreter (PID %s) ignored SIGTERM, killing", process.pid)
        finally:
            if process.poll() is None:
                kill_process_group(process)
                try:
                    process.wait()
                except (ChildProcessError, OSError) as e:
                    logger.error("Failed to reap interpreter (PID %s): %s", process.pid, e)


def run(
    interpreter: Path | str,
    program: Path | str,
    stdin_mode: StdinMode = StdinMode.INHERIT,
) -> InvocationResult:
    """Convenience wrapper: supervise ``interpreter program`` once."""
    request = InvocationRequest(interpreter_path=Path(interpreter), program_path=Path(program))
    return Supervisor().run(request, stdin_mode=stdin_mode)


__all__ = [
    "FORWARDED_SIGNALS",
    "InvocationRequest",
    "InvocationResult",
    "StdinMode",
    "Supervisor",
    "kill_process_group",
    "resolve_interpreter",
    "run",
    "signal_process_group",
    "validate_request",
]
