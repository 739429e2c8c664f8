"""railroad-runners - play the railroad-runners MIPS assignment in real time.

Usage:
    railroad-runners railroad_runners.s
    railroad-runners railroad_runners.s --mipsy-path /path/to/mipsy
    railroad-runners railroad_runners.s --realtime --seed 42
"""

from importlib.metadata import PackageNotFoundError, version

from .supervisor import InvocationRequest, InvocationResult, StdinMode, Supervisor, run

try:
    __version__ = version("railroad-runners")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "InvocationRequest",
    "InvocationResult",
    "StdinMode",
    "Supervisor",
    "run",
    "__version__",
]
