"""Steepest descent with a fixed step or a line search."""

from collections.abc import Callable
from typing import ClassVar, Optional

import equinox as eqx
import optimistix as optx
from jaxtyping import Array, Float

from iterax.linesearch import AbstractLineSearch
from iterax.solver import AbstractSolver
from iterax.types import TerminationReason


class GradientDescentState(eqx.Module):
    """Auxiliary state of `GradientDescent`.

    Attributes:
        grad: Gradient at the current parameter.
    """

    grad: Float[Array, "*shape"]


class GradientDescent(AbstractSolver):
    """Gradient descent: ``x_{k+1} = x_k - α ∇f(x_k)``.

    With ``line_search=None`` the fixed ``step_size`` is used for α;
    otherwise the line search chooses α along ``-∇f(x_k)`` each iteration.

    Attributes:
        step_size: Fixed step length used without a line search (default 0.1).
        line_search: Optional line search choosing the step length.
        gtol: Converged once ``norm(∇f) <= gtol`` (default 1e-8).
        norm: Norm used for the gradient test (default two-norm).

    Example:
        >>> import jax.numpy as jnp
        >>> from iterax import Executor, GradientDescent, Problem
        >>>
        >>> problem = Problem(
        ...     cost_fn=lambda x, args: jnp.sum(x**2),
        ...     grad_fn=lambda x, args: 2.0 * x,
        ... )
        >>> executor = Executor(GradientDescent(step_size=0.1), problem,
        ...                     jnp.array([10.0]), max_iters=100)
        >>> result = executor.run()
    """

    requires: ClassVar[frozenset[str]] = frozenset({"cost", "gradient"})

    step_size: float = 0.1
    line_search: Optional[AbstractLineSearch] = None
    gtol: float = 1e-8
    norm: Callable = eqx.field(static=True, default=optx.two_norm)

    def __check_init__(self):
        if not self.step_size > 0:
            raise ValueError("step_size must be positive.")
        if self.gtol < 0:
            raise ValueError("gtol must be non-negative.")

    def init(self, problem, state):
        cost, state = self._init_cost(problem, state)
        grad, state = problem.gradient(state.param, state)
        return state.replace(cost=cost), GradientDescentState(grad=grad)

    def step(self, problem, state, aux):
        direction = -aux.grad
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

        return state.replace(param=y_new, cost=cost), GradientDescentState(grad=grad)

    def terminate(self, state, aux):
        if float(self.norm(aux.grad)) <= self.gtol:
            return TerminationReason.SOLVER_CONVERGED
        return None
