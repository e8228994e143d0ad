"""Adapter driving an optimistix minimiser under the iterax executor.

Any `optimistix.AbstractMinimiser` (``optx.BFGS``, ``optx.NonlinearCG``,
``optx.GradientDescent``, ...) already implements an ``init`` / ``step`` /
``terminate`` interface. The adapter performs one optimistix ``step`` per
executor iteration, so that the termination policy, observers and
checkpointing apply to it like to any other solver.

The minimiser differentiates ``cost_fn`` itself, so the cost must be
traceable by JAX. Evaluations made inside the minimiser are not counted; the
adapter counts one cost evaluation per iteration, made to report the cost of
the new iterate.
"""

from typing import Any, ClassVar

import equinox as eqx
import jax
import optimistix as optx

from iterax.errors import AlgorithmError
from iterax.solver import AbstractSolver
from iterax.types import TerminationReason
from iterax.utils import with_aux


class OptimistixState(eqx.Module):
    """Auxiliary state of `OptimistixMinimiser`.

    Attributes:
        inner: State of the wrapped optimistix minimiser.
        done: Whether the minimiser reported termination.
    """

    inner: Any
    done: bool = False


class OptimistixMinimiser(AbstractSolver):
    """Run an optimistix minimiser one step per iteration.

    Attributes:
        minimiser: The wrapped ``optimistix.AbstractMinimiser``.

    Example:
        >>> import jax.numpy as jnp
        >>> import optimistix as optx
        >>> from iterax import Executor, OptimistixMinimiser, Problem
        >>>
        >>> problem = Problem(cost_fn=lambda x, args: jnp.sum((x - 1.0) ** 2))
        >>> solver = OptimistixMinimiser(optx.BFGS(rtol=1e-8, atol=1e-8))
        >>> result = Executor(solver, problem, jnp.zeros(3), max_iters=50).run()
    """

    requires: ClassVar[frozenset[str]] = frozenset({"cost"})

    minimiser: optx.AbstractMinimiser

    @property
    def name(self) -> str:
        return f"{type(self).__name__}[{type(self.minimiser).__name__}]"

    def init(self, problem, state):
        cost, state = self._init_cost(problem, state)
        fn = with_aux(problem.cost_fn)
        f_struct, aux_struct = jax.eval_shape(fn, state.param, problem.args)
        inner = self.minimiser.init(
            fn, state.param, problem.args, {}, f_struct, aux_struct, frozenset()
        )
        return state.replace(cost=cost), OptimistixState(inner=inner)

    def step(self, problem, state, aux):
        fn = with_aux(problem.cost_fn)
        y_new, inner, _ = self.minimiser.step(
            fn, state.param, problem.args, {}, aux.inner, frozenset()
        )
        done, result = self.minimiser.terminate(
            fn, y_new, problem.args, {}, inner, frozenset()
        )
        done = bool(done)
        if done and not bool(result == optx.RESULTS.successful):
            raise AlgorithmError(
                f"{self.name}: the optimistix minimiser stopped unsuccessfully."
            )
        cost, state = problem.cost(y_new, state)
        return state.replace(param=y_new, cost=cost), OptimistixState(
            inner=inner, done=done
        )

    def terminate(self, state, aux):
        if aux.done:
            return TerminationReason.SOLVER_CONVERGED
        return None
