"""Exceptions raised by the iterax engine.

Every run-fatal error derives from `EngineError`. When an error escapes a
run, the executor attaches the last good `State` to its ``state`` attribute
so that callers can inspect the partial progress.
"""

from typing import Any, Optional


class EngineError(Exception):
    """Base class for all errors raised by the engine.

    Attributes:
        state: The last good state of the run that failed, or ``None`` if the
            error was raised outside of a run.
    """

    def __init__(self, message: str = "", state: Optional[Any] = None) -> None:
        super().__init__(message)
        self.state = state


class CapabilityNotImplemented(EngineError, NotImplementedError):  # noqa: N818
    """Raised when a problem capability that was never supplied is used."""


class EvaluationError(EngineError):
    """Raised when a user callable fails or returns an invalid value."""


class InitializationError(EngineError):
    """Raised when a solver cannot start, e.g. from an infeasible point."""


class AlgorithmError(EngineError):
    """Raised on solver-internal numerical failures."""


class ObserverError(EngineError):
    """Raised by a failing observer when the registry is strict."""


class AlreadyFinished(EngineError):  # noqa: N818
    """Raised when `run()` is called on a terminated or failed executor."""


class CheckpointError(EngineError):
    """Raised when a checkpoint cannot be written or read."""
