"""Run state shared by every solver.

The `State` is an equinox module, so it is an immutable JAX pytree: every
update produces a new instance. Solvers and the problem adapter receive the
state of the current run and return the updated one, which keeps evaluation
counters attributed to exactly one run.
"""

import dataclasses
import math

import equinox as eqx
import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

from iterax.types import TerminationReason


class State(eqx.Module):
    """Progress of a single optimization run.

    Attributes:
        param: Current candidate parameter vector.
        cost: Objective value at ``param`` (``inf`` before the first evaluation).
        best_param: Parameter vector with the lowest cost seen so far.
        best_cost: Lowest cost seen so far.
        last_best_iter: Iteration at which ``best_cost`` last decreased.
        iter: Number of completed iterations.
        max_iters: Iteration bound, 0 means unbounded.
        cost_count: Number of successful cost evaluations.
        grad_count: Number of successful gradient evaluations.
        hessian_count: Number of successful Hessian evaluations.
        jacobian_count: Number of successful Jacobian evaluations.
        apply_count: Number of successful operator applications.
        time_elapsed: Wall-clock seconds spent inside `Executor.run`.
        termination_status: A `TerminationReason` code.
        improvement_cost: Best cost at the last significant improvement.
        improvement_iter: Iteration of the last significant improvement.
    """

    param: Float[Array, " n"]
    cost: float = math.inf
    best_param: Float[Array, " n"] = None  # type: ignore[assignment]
    best_cost: float = math.inf
    last_best_iter: int = 0

    # Iteration tracking
    iter: int = 0
    max_iters: int = 0

    # Evaluation counters
    cost_count: int = 0
    grad_count: int = 0
    hessian_count: int = 0
    jacobian_count: int = 0
    apply_count: int = 0

    time_elapsed: float = 0.0
    termination_status: int = TerminationReason.NOT_TERMINATED

    # Stall tracking for the no-change termination criterion
    improvement_cost: float = math.inf
    improvement_iter: int = 0

    def __check_init__(self):
        # best_param always mirrors the shape of param so that the pytree
        # structure of a state never changes during a run.
        if self.best_param is None:
            object.__setattr__(self, "best_param", self.param)
        if self.max_iters < 0:
            raise ValueError("max_iters must be non-negative (0 means unbounded).")

    def replace(self, **changes) -> "State":
        """Return a copy of this state with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def increment(self, counter: str) -> "State":
        """Return a copy with the named evaluation counter increased by one."""
        return self.replace(**{counter: getattr(self, counter) + 1})

    def update_best(self) -> tuple["State", bool]:
        """Record the current point as the best one if its cost is lower.

        Returns:
            The updated state and whether a new best point was found.
        """
        if self.cost < self.best_cost:
            return (
                self.replace(
                    best_param=self.param,
                    best_cost=self.cost,
                    last_best_iter=self.iter,
                ),
                True,
            )
        return self, False

    def terminate(self, reason: int) -> "State":
        """Return a copy marked as terminated with ``reason``."""
        return self.replace(termination_status=reason)

    @property
    def terminated(self) -> bool:
        return TerminationReason.is_terminated(self.termination_status)

    @property
    def counts(self) -> dict[str, int]:
        """Evaluation counters keyed by capability name."""
        return {
            "cost": self.cost_count,
            "gradient": self.grad_count,
            "hessian": self.hessian_count,
            "jacobian": self.jacobian_count,
            "apply": self.apply_count,
        }


def initial_state(param, max_iters: int = 0) -> State:
    """Create the state a run starts from.

    Args:
        param: Initial parameter vector (any array-like).
        max_iters: Iteration bound, 0 means unbounded.

    Returns:
        A fresh `State` holding ``param`` as a floating point JAX array.
    """
    y = jnp.asarray(param)
    if not jnp.issubdtype(y.dtype, jnp.floating):
        y = y.astype(jax.dtypes.canonicalize_dtype(jnp.float64))
    return State(param=y, best_param=y, max_iters=max_iters)
