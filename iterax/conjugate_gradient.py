"""Nonlinear conjugate gradient method.

The search direction combines the new steepest-descent direction with the
previous direction:

    d_{k+1} = -g_{k+1} + β_k d_k

with β chosen by the Fletcher-Reeves or the (non-negative) Polak-Ribière
rule. Whenever the combined direction is not a descent direction, or every
``restart_every`` iterations, the method restarts from steepest descent.
"""

from collections.abc import Callable
from typing import ClassVar

import equinox as eqx
import jax.numpy as jnp
import optimistix as optx
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from iterax.linesearch import AbstractLineSearch, MoreThuenteLineSearch
from iterax.solver import AbstractSolver
from iterax.types import Scalar, TerminationReason

BETA_RULES = ("fletcher_reeves", "polak_ribiere")


class ConjugateGradientState(eqx.Module):
    """Auxiliary state of `NonlinearConjugateGradient`.

    Attributes:
        grad: Gradient at the current parameter.
        direction: Search direction for the next iteration.
        steps_since_restart: Iterations since the last steepest-descent step.
    """

    grad: Float[Array, "*shape"]
    direction: Float[Array, "*shape"]
    steps_since_restart: int = 0


@jaxtyped(typechecker=beartype)
def fletcher_reeves(
    grad_new: Float[Array, "*shape"],
    grad_old: Float[Array, "*shape"],
) -> Scalar:
    """β = ‖g_{k+1}‖² / ‖g_k‖²"""
    return jnp.vdot(grad_new, grad_new) / jnp.vdot(grad_old, grad_old)


@jaxtyped(typechecker=beartype)
def polak_ribiere(
    grad_new: Float[Array, "*shape"],
    grad_old: Float[Array, "*shape"],
) -> Scalar:
    """β = max(0, g_{k+1}·(g_{k+1} - g_k) / ‖g_k‖²)"""
    beta = jnp.vdot(grad_new, grad_new - grad_old) / jnp.vdot(grad_old, grad_old)
    return jnp.maximum(beta, 0.0)


class NonlinearConjugateGradient(AbstractSolver):
    """Nonlinear conjugate gradient with a line search.

    Attributes:
        line_search: Line search along each direction (default More-Thuente
            with ``c2=0.1``, as the method needs the strong Wolfe conditions).
        beta_rule: ``"polak_ribiere"`` (default) or ``"fletcher_reeves"``.
        restart_every: Restart from steepest descent every this many
            iterations; 0 disables periodic restarts.
        gtol: Converged once ``norm(∇f) <= gtol`` (default 1e-8).
        norm: Norm used for the gradient test (default two-norm).
    """

    requires: ClassVar[frozenset[str]] = frozenset({"cost", "gradient"})

    line_search: AbstractLineSearch = eqx.field(
        default_factory=lambda: MoreThuenteLineSearch(c2=0.1)
    )
    beta_rule: str = eqx.field(static=True, default="polak_ribiere")
    restart_every: int = eqx.field(static=True, default=0)
    gtol: float = 1e-8
    norm: Callable = eqx.field(static=True, default=optx.two_norm)

    def __check_init__(self):
        if self.beta_rule not in BETA_RULES:
            raise ValueError(
                f"beta_rule must be one of {BETA_RULES}, got {self.beta_rule!r}."
            )
        if self.restart_every < 0:
            raise ValueError("restart_every must be non-negative.")

    def init(self, problem, state):
        cost, state = self._init_cost(problem, state)
        grad, state = problem.gradient(state.param, state)
        return state.replace(cost=cost), ConjugateGradientState(
            grad=grad, direction=-grad
        )

    def step(self, problem, state, aux):
        ls_result, state = self.line_search.search(
            problem, state, state.param, aux.direction, aux.grad, state.cost
        )
        y_new, cost, grad_new = ls_result.param, ls_result.cost, ls_result.grad
        if grad_new is None:
            grad_new, state = problem.gradient(y_new, state)

        if self.beta_rule == "fletcher_reeves":
            beta = fletcher_reeves(grad_new, aux.grad)
        else:
            beta = polak_ribiere(grad_new, aux.grad)
        direction = -grad_new + beta * aux.direction
        steps = aux.steps_since_restart + 1

        periodic_restart = self.restart_every > 0 and steps >= self.restart_every
        not_descent = not float(jnp.vdot(direction, grad_new)) < 0
        if periodic_restart or not_descent:
            direction = -grad_new
            steps = 0

        return state.replace(param=y_new, cost=cost), ConjugateGradientState(
            grad=grad_new, direction=direction, steps_since_restart=steps
        )

    def terminate(self, state, aux):
        if float(self.norm(aux.grad)) <= self.gtol:
            return TerminationReason.SOLVER_CONVERGED
        return None
