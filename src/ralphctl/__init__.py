"""ralphctl - drive an autonomous coding agent in a build or investigation loop."""

from importlib.metadata import PackageNotFoundError, version

from ralphctl.schemas import ControlSignal, IterationOutcome, LoopResult

__all__ = ["ControlSignal", "IterationOutcome", "LoopResult"]

try:
    __version__ = version("ralphctl")
except PackageNotFoundError:
    __version__ = "0.0.0"
