"""Real-time driver for the railroad-runners game.

The game reads everything from stdin: a seed first, then one line per move.
Time only advances when it reads a tick line, so the driver owns the child's
stdin and feeds it from two threads:

    - a tick thread that writes ``'`` at a pace that speeds up over time
    - a key relay thread that forwards single keystrokes (w/a/s/d/q)

Both stop as soon as the interpreter exits.
"""

from __future__ import annotations

import logging
import math
import random
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Callable, Optional

import readchar

from .core.constants import (
    DEFAULT_SPEED_MULTIPLIER,
    MAX_TICK_INTERVAL,
    TICK_LINE,
    TICK_LOG_BASE,
    VALID_KEYS,
)
from .supervisor import signal_process_group

logger = logging.getLogger(__name__)

SEED_MIN = -(2**31)
SEED_MAX = 2**31 - 1


def tick_interval(elapsed: float, multiplier: float = DEFAULT_SPEED_MULTIPLIER) -> float:
    """Seconds to wait before the next tick after ``elapsed`` seconds of play.

    Flat at the cap for the first ``TICK_LOG_BASE`` seconds, then shrinks
    with the logarithm of elapsed time.
    """
    num = math.log(max(elapsed, TICK_LOG_BASE), TICK_LOG_BASE)
    return min(MAX_TICK_INTERVAL, multiplier / num)


def random_seed() -> int:
    """Pick a seed in the signed 32-bit range the game accepts."""
    return random.randint(SEED_MIN, SEED_MAX)


@dataclass(frozen=True)
class GameSettings:
    seed: int
    speed_multiplier: float = DEFAULT_SPEED_MULTIPLIER
    valid_keys: frozenset[str] = field(default=VALID_KEYS)


class ChildInput:
    """Serialized writer for the interpreter's stdin."""

    def __init__(self, stream: IO[bytes]) -> None:
        self._stream = stream
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write_line(self, text: str) -> bool:
        """Write ``text`` (newline included) and flush.

        Returns False once the pipe is gone, which just means the game ended.
        """
        with self._lock:
            if self._closed:
                return False
            try:
                self._stream.write(text.encode("utf-8"))
                self._stream.flush()
            except (BrokenPipeError, ValueError, OSError) as e:
                logger.debug("Interpreter stdin closed: %s", e)
                self._closed = True
                return False
            return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._stream.close()
            except OSError:
                pass


class GameDriver:
    """Feed seed, ticks and keystrokes to a running interpreter.

    Pass :meth:`attach` as the supervisor's ``on_start`` callback and call
    :meth:`finish` once the supervisor returns.
    """

    def __init__(
        self,
        settings: GameSettings,
        read_key: Optional[Callable[[], str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._read_key = read_key or (lambda: readchar.readchar())
        self._clock = clock
        self._stop = threading.Event()
        self._process: Optional[subprocess.Popen] = None
        self._input: Optional[ChildInput] = None
        self._tick_thread: Optional[threading.Thread] = None
        self._key_thread: Optional[threading.Thread] = None
        self.ticks_sent = 0

    def attach(self, process: subprocess.Popen) -> None:
        """Send the seed and start the tick and key relay threads."""
        if process.stdin is None:
            raise ValueError("GameDriver needs the interpreter's stdin piped")

        self._process = process
        self._input = ChildInput(process.stdin)
        if not self._input.write_line(f"{self.settings.seed}\n"):
            logger.warning("Interpreter exited before the seed could be sent")
            return

        self._tick_thread = threading.Thread(target=self._tick_loop, name="rr-tick", daemon=True)
        self._key_thread = threading.Thread(target=self._key_loop, name="rr-keys", daemon=True)
        self._tick_thread.start()
        self._key_thread.start()

    def _running(self) -> bool:
        return (
            not self._stop.is_set()
            and self._process is not None
            and self._process.poll() is None
        )

    def _tick_loop(self) -> None:
        assert self._input is not None
        start = self._clock()
        while self._running():
            if not self._input.write_line(TICK_LINE):
                break
            self.ticks_sent += 1

            elapsed = self._clock() - start
            interval = tick_interval(elapsed, self.settings.speed_multiplier)
            logger.debug("tick %d at %.2fs, next in %.3fs", self.ticks_sent, elapsed, interval)
            if self._stop.wait(interval):
                break

    def _key_loop(self) -> None:
        assert self._input is not None and self._process is not None
        while self._running():
            try:
                key = self._read_key()
            except Exception as e:
                # stdin is not a terminal (or went away); ticks keep going.
                logger.warning("Keyboard input unavailable, key relay stopped: %s", e)
                return
            # The terminal is in raw mode while reading, so Ctrl-C arrives as a key.
            if key == readchar.key.CTRL_C:
                logger.info("Ctrl-C pressed, interrupting interpreter")
                signal_process_group(self._process, signal.SIGINT)
                continue
            if not self._running():
                break
            if key in self.settings.valid_keys:
                if not self._input.write_line(f"{key}\n"):
                    break

    def finish(self, on_wait: Optional[Callable[[], None]] = None) -> None:
        """Stop the threads once the interpreter has exited.

        The key relay may still be blocked on a keystroke; ``on_wait`` is
        called before waiting for it so the caller can prompt the user.
        """
        self._stop.set()
        if self._tick_thread is not None:
            self._tick_thread.join()
        if self._key_thread is not None and self._key_thread.is_alive():
            if on_wait is not None:
                on_wait()
            self._key_thread.join()
        if self._input is not None:
            self._input.close()


__all__ = [
    "ChildInput",
    "GameDriver",
    "GameSettings",
    "random_seed",
    "tick_interval",
]
