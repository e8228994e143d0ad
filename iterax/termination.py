"""Termination policy evaluated by the executor after every iteration.

The policy combines the solver's own convergence signal with the generic
criteria shared by all solvers. Criteria are checked in a fixed priority
order and the first one that holds decides the termination reason.
"""

import math
from typing import Optional

import equinox as eqx

from iterax.state import State
from iterax.types import TerminationReason

DEFAULT_PRIORITY = ("solver", "max_iters", "max_time", "target_cost", "no_change")


class TerminationPolicy(eqx.Module):
    """Generic termination criteria.

    Attributes:
        max_time: Stop once the accumulated run time exceeds this many
            seconds; ``None`` disables the check.
        target_cost: Stop once the best cost is at or below this value;
            ``None`` disables the check.
        no_change_window: Stop when the best cost has not improved by more
            than ``no_change_epsilon`` during this many iterations; 0 disables
            the check.
        no_change_epsilon: Smallest improvement of the best cost that resets
            the no-change window (default 0.0, any strict decrease).
        priority: Order in which the criteria are checked, a permutation of
            ``DEFAULT_PRIORITY``.
    """

    max_time: Optional[float] = None
    target_cost: Optional[float] = None
    no_change_window: int = eqx.field(static=True, default=0)
    no_change_epsilon: float = 0.0
    priority: tuple[str, ...] = eqx.field(static=True, default=DEFAULT_PRIORITY)

    def __check_init__(self):
        if self.max_time is not None and self.max_time < 0:
            raise ValueError("max_time must be non-negative.")
        if self.no_change_window < 0:
            raise ValueError("no_change_window must be non-negative.")
        if self.no_change_epsilon < 0:
            raise ValueError("no_change_epsilon must be non-negative.")
        if sorted(self.priority) != sorted(DEFAULT_PRIORITY):
            raise ValueError(
                f"priority must be a permutation of {DEFAULT_PRIORITY}, "
                f"got {self.priority}."
            )

    def track(self, state: State) -> State:
        """Record a significant improvement of the best cost.

        Returns:
            The state with ``improvement_cost`` and ``improvement_iter``
            updated when the best cost dropped by more than
            ``no_change_epsilon`` since the last recorded improvement.
        """
        if math.isinf(state.improvement_cost) or (
            state.improvement_cost - state.best_cost > self.no_change_epsilon
        ):
            return state.replace(
                improvement_cost=state.best_cost, improvement_iter=state.iter
            )
        return state

    def _holds(self, criterion: str, state: State, solver_reason) -> Optional[int]:
        if criterion == "solver":
            if solver_reason is not None and TerminationReason.is_terminated(
                solver_reason
            ):
                return solver_reason
        elif criterion == "max_iters":
            if state.max_iters > 0 and state.iter >= state.max_iters:
                return TerminationReason.MAX_ITERATIONS
        elif criterion == "max_time":
            if self.max_time is not None and state.time_elapsed > self.max_time:
                return TerminationReason.MAX_TIME
        elif criterion == "target_cost":
            if self.target_cost is not None and state.best_cost <= self.target_cost:
                return TerminationReason.TARGET_COST
        elif criterion == "no_change":
            if (
                self.no_change_window > 0
                and state.iter - state.improvement_iter >= self.no_change_window
            ):
                return TerminationReason.NO_CHANGE_IN_COST
        return None

    def check(self, state: State, solver_reason: Optional[int] = None) -> Optional[int]:
        """Return the termination reason for ``state``, or ``None``.

        Args:
            state: State after the latest completed iteration.
            solver_reason: Reason returned by ``AbstractSolver.terminate``.

        Returns:
            The `TerminationReason` of the first criterion in ``priority``
            that holds, or ``None`` if the run should continue.
        """
        for criterion in self.priority:
            reason = self._holds(criterion, state, solver_reason)
            if reason is not None:
                return reason
        return None
