"""The contract every solver implements to be driven by the executor.

A solver is an equinox module whose fields are its configuration. It never
owns the run state: the executor hands the current `State` and the solver's
private auxiliary state to `step`, and the solver returns updated copies of
both. Each variant defines its own auxiliary state type, so algorithms with
very different needs (a previous gradient, a search direction, a particle
population) do not share one oversized record.
"""

import abc
from typing import Any, ClassVar, Optional

import equinox as eqx

from iterax.errors import InitializationError
from iterax.problem import Problem
from iterax.state import State


class AbstractSolver(eqx.Module):
    """Base class for all solvers.

    Subclasses must implement:
    - `init`: evaluate the starting point and build the auxiliary state.
    - `step`: perform exactly one logical iteration.

    Subclasses can optionally override:
    - `terminate`: signal algorithm-specific convergence.
    - `requires`: the problem capabilities the algorithm needs.
    """

    requires: ClassVar[frozenset[str]] = frozenset({"cost"})

    @property
    def name(self) -> str:
        """Name identifying the solver in checkpoints and logs."""
        return type(self).__name__

    @abc.abstractmethod
    def init(self, problem: Problem, state: State) -> tuple[State, Any]:
        """Initialize the solver at ``state.param``.

        The cost must be evaluated at least once so that the executor can
        record the starting point as the first best point.

        Args:
            problem: The problem to minimize.
            state: Fresh run state holding the initial parameter.

        Returns:
            Tuple of (state, aux) where aux is the solver's private state.

        Raises:
            InitializationError: If the initial parameter is infeasible.
        """

    @abc.abstractmethod
    def step(self, problem: Problem, state: State, aux: Any) -> tuple[State, Any]:
        """Perform one iteration.

        The returned state carries the new ``param`` and ``cost``. The
        executor takes care of the iteration counter, the best point, and the
        elapsed time.

        Args:
            problem: The problem to minimize.
            state: Current run state.
            aux: Current auxiliary state.

        Returns:
            Tuple of (new_state, new_aux).

        Raises:
            AlgorithmError: On a numerical failure of the algorithm.
        """

    def terminate(self, state: State, aux: Any) -> Optional[int]:
        """Return a `TerminationReason` if the algorithm has converged."""
        return None

    def _init_cost(self, problem: Problem, state: State) -> tuple[float, State]:
        """Check feasibility of the initial point and evaluate its cost."""
        if not problem.is_feasible(state.param):
            raise InitializationError(
                f"{self.name}: the initial parameter {state.param} is infeasible."
            )
        return problem.cost(state.param, state)
