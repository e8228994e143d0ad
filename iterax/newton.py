"""Newton's method with an optional line search.

Each iteration solves the Newton system ``∇²f(x) d = -∇f(x)`` with a dense
factorization and moves along ``d``. A singular or badly conditioned Hessian
is reported as an `AlgorithmError` rather than silently producing a
meaningless step.
"""

from collections.abc import Callable
from typing import ClassVar, Optional

import equinox as eqx
import jax.numpy as jnp
import optimistix as optx
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from iterax.errors import AlgorithmError, InitializationError
from iterax.linesearch import AbstractLineSearch
from iterax.solver import AbstractSolver
from iterax.types import TerminationReason, Vector


class NewtonState(eqx.Module):
    """Auxiliary state of `Newton`.

    Attributes:
        grad: Gradient at the current parameter.
        hessian: Hessian at the current parameter.
    """

    grad: Float[Array, " n"]
    hessian: Float[Array, "n n"]


@jaxtyped(typechecker=beartype)
def newton_direction(
    hessian: Float[Array, "n n"],
    grad: Float[Array, " n"],
) -> Vector:
    """Solve ``H d = -g`` for the Newton direction."""
    return jnp.linalg.solve(hessian, -grad)


class Newton(AbstractSolver):
    """Line-search Newton method.

    Attributes:
        step_size: Step length used without a line search (default 1.0).
        line_search: Optional line search along the Newton direction.
        gtol: Converged once ``norm(∇f) <= gtol`` (default 1e-8).
        max_condition: Hessians with a larger condition number are treated
            as singular (default ``1 / eps`` of the Hessian dtype).
        norm: Norm used for the gradient test (default two-norm).
    """

    requires: ClassVar[frozenset[str]] = frozenset({"cost", "gradient", "hessian"})

    step_size: float = 1.0
    line_search: Optional[AbstractLineSearch] = None
    gtol: float = 1e-8
    max_condition: Optional[float] = None
    norm: Callable = eqx.field(static=True, default=optx.two_norm)

    def __check_init__(self):
        if not self.step_size > 0:
            raise ValueError("step_size must be positive.")
        if self.gtol < 0:
            raise ValueError("gtol must be non-negative.")

    def init(self, problem, state):
        if jnp.ndim(state.param) != 1:
            raise InitializationError(
                "Newton requires a one-dimensional parameter vector."
            )
        cost, state = self._init_cost(problem, state)
        grad, state = problem.gradient(state.param, state)
        hessian, state = problem.hessian(state.param, state)
        return state.replace(cost=cost), NewtonState(grad=grad, hessian=hessian)

    def _direction(self, hessian, grad):
        max_condition = self.max_condition
        if max_condition is None:
            max_condition = 1.0 / float(jnp.finfo(hessian.dtype).eps)
        condition = float(jnp.linalg.cond(hessian))
        if not condition <= max_condition:
            raise AlgorithmError(
                f"Newton: Hessian is singular to working precision "
                f"(condition number {condition:.3g})."
            )
        direction = newton_direction(hessian, grad)
        if not bool(jnp.all(jnp.isfinite(direction))):
            raise AlgorithmError("Newton: the Newton system has no finite solution.")
        return direction

    def step(self, problem, state, aux):
        direction = self._direction(aux.hessian, aux.grad)

        if self.line_search is None:
            y_new = state.param + self.step_size * direction
            cost, state = problem.cost(y_new, state)
            grad = None
        else:
            ls_result, state = self.line_search.search(
                problem, state, state.param, direction, aux.grad, state.cost
            )
            y_new, cost, grad = ls_result.param, ls_result.cost, ls_result.grad

        if grad is None:
            grad, state = problem.gradient(y_new, state)
        hessian, state = problem.hessian(y_new, state)

        return state.replace(param=y_new, cost=cost), NewtonState(
            grad=grad, hessian=hessian
        )

    def terminate(self, state, aux):
        if float(self.norm(aux.grad)) <= self.gtol:
            return TerminationReason.SOLVER_CONVERGED
        return None
