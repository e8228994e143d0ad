"""Observers: side-effect hooks invoked by the executor during a run.

Observers receive the immutable `State` after a completed iteration and can
log it, store it or write it to disk. They cannot change the course of the
run. An `Observers` registry holds the observers of one executor together
with the schedule on which each of them is invoked.
"""

import abc
import logging
import pathlib
from typing import NamedTuple, Union

import numpy as np

from iterax.errors import ObserverError
from iterax.state import State

logger = logging.getLogger(__name__)


class Observer(abc.ABC):
    """Base class for observers."""

    def observe_init(self, solver_name: str, state: State) -> None:
        """Called once before the first iteration of a run."""

    @abc.abstractmethod
    def notify(self, state: State) -> None:
        """Called after a completed iteration on the observer's schedule."""


class _Registration(NamedTuple):
    observer: Observer
    frequency: int
    new_best: bool


class Observers:
    """Ordered registry of observers.

    Observers are invoked in registration order. An observer registered with
    frequency ``N >= 1`` is notified after every Nth completed iteration, and
    one registered with frequency 0 only at termination. Every observer is
    notified exactly once after the run terminated.

    Args:
        strict: Raise `ObserverError` when an observer fails instead of
            logging the failure and continuing the run.
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict
        self._registrations: list[_Registration] = []

    def add(
        self, observer: Observer, frequency: int = 1, *, new_best: bool = False
    ) -> "Observers":
        """Register ``observer``.

        Args:
            observer: The observer to register.
            frequency: Notify every ``frequency`` iterations; 0 means only at
                termination.
            new_best: Additionally notify whenever a new best point is found.

        Returns:
            The registry itself, so that calls can be chained.
        """
        if frequency < 0:
            raise ValueError("Observer frequency must be non-negative.")
        self._registrations.append(_Registration(observer, frequency, new_best))
        return self

    def __len__(self) -> int:
        return len(self._registrations)

    def _call(self, observer: Observer, method: str, *args) -> None:
        try:
            getattr(observer, method)(*args)
        except ObserverError:
            if self.strict:
                raise
            logger.warning("Observer %r failed.", observer, exc_info=True)
        except Exception as exc:
            if self.strict:
                raise ObserverError(
                    f"Observer {observer!r} raised {type(exc).__name__}: {exc}"
                ) from exc
            logger.warning("Observer %r failed.", observer, exc_info=True)

    def observe_init(self, solver_name: str, state: State) -> None:
        """Announce the start of a run to every observer."""
        for registration in self._registrations:
            self._call(registration.observer, "observe_init", solver_name, state)

    def notify(self, state: State, *, new_best: bool = False, final: bool = False):
        """Notify the observers that are due after the latest iteration.

        Args:
            state: State after the latest completed iteration.
            new_best: Whether the iteration found a new best point.
            final: Whether the run terminated with this iteration.
        """
        for registration in self._registrations:
            frequency = registration.frequency
            due = (
                final
                or (frequency > 0 and state.iter % frequency == 0)
                or (registration.new_best and new_best)
            )
            if due:
                self._call(registration.observer, "notify", state)


class LoggingObserver(Observer):
    """Log the progress of a run through `logging`.

    Args:
        level: Logging level of the progress messages (default INFO).
        name: Name of the logger to use (default this module's logger).
    """

    def __init__(self, level: int = logging.INFO, name: Union[str, None] = None):
        self.level = level
        self.logger = logging.getLogger(name) if name else logger

    def observe_init(self, solver_name, state):
        self.logger.log(
            self.level, "%s: starting at cost %.6g", solver_name, state.cost
        )

    def notify(self, state):
        counts = ", ".join(f"{k}={v}" for k, v in state.counts.items() if v)
        self.logger.log(
            self.level,
            "iter %d: cost %.6g, best %.6g (iter %d), %s, %.3fs",
            state.iter,
            state.cost,
            state.best_cost,
            state.last_best_iter,
            counts,
            state.time_elapsed,
        )


class HistoryObserver(Observer):
    """Collect a snapshot of every notified state for plotting or export."""

    def __init__(self) -> None:
        self.history: list[dict] = []

    def notify(self, state):
        self.history.append(
            {
                "iter": state.iter,
                "cost": state.cost,
                "best_cost": state.best_cost,
                "param": np.asarray(state.param),
                "time_elapsed": state.time_elapsed,
            }
        )

    def as_arrays(self) -> dict[str, np.ndarray]:
        """Return the history as a dict of stacked arrays, one per field."""
        if not self.history:
            return {}
        return {
            key: np.stack([entry[key] for entry in self.history])
            if key == "param"
            else np.asarray([entry[key] for entry in self.history])
            for key in self.history[0]
        }


class ParamWriter(Observer):
    """Write the parameter vector of each notified iteration to disk.

    Each vector is saved with `numpy.save` as ``<directory>/<prefix>_<iter>.npy``.

    Args:
        directory: Output directory, created on first use.
        prefix: File name prefix (default ``"param"``).
    """

    def __init__(self, directory: Union[str, pathlib.Path], prefix: str = "param"):
        self.directory = pathlib.Path(directory)
        self.prefix = prefix

    def path_for(self, iteration: int) -> pathlib.Path:
        return self.directory / f"{self.prefix}_{iteration}.npy"

    def notify(self, state):
        self.directory.mkdir(parents=True, exist_ok=True)
        np.save(self.path_for(state.iter), np.asarray(state.param))
