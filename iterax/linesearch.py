"""Line searches used as sub-components of gradient-type solvers.

A line search runs its own trial loop inside a single solver iteration; the
executor never sees those trials as iterations. Two strategies are provided:

- `BacktrackingLineSearch`: shrink the step until the Armijo sufficient
  decrease condition holds.
- `MoreThuenteLineSearch`: find a step satisfying the strong Wolfe
  conditions using the safeguarded cubic/quadratic interpolation of More and
  Thuente.

Reference:
    Jorge J. More and David J. Thuente. "Line search algorithms with
    guaranteed sufficient decrease." ACM Trans. Math. Softw. 20, 3 (1994),
    286-307.
"""

import abc
import logging
import math
from typing import NamedTuple, Optional

import equinox as eqx
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from iterax.errors import AlgorithmError
from iterax.problem import Problem
from iterax.state import State
from iterax.types import Scalar

logger = logging.getLogger(__name__)


class LineSearchResult(NamedTuple):
    """Result from a line search.

    Attributes:
        alpha: The accepted step length.
        param: The accepted point ``x + alpha * d``.
        cost: Objective value at ``param``.
        grad: Gradient at ``param`` if the search evaluated it, else None.
        n_evals: Number of trial points evaluated.
    """

    alpha: float
    param: Array
    cost: float
    grad: Optional[Array]
    n_evals: int


@jaxtyped(typechecker=beartype)
def directional_derivative(
    grad: Float[Array, "*shape"],
    direction: Float[Array, "*shape"],
) -> Scalar:
    """Slope of the objective along ``direction``: ``∇f · d``."""
    return jnp.vdot(grad, direction)


class AbstractLineSearch(eqx.Module):
    """Base class for line searches."""

    @abc.abstractmethod
    def search(
        self,
        problem: Problem,
        state: State,
        param: Array,
        direction: Array,
        grad: Array,
        cost: float,
    ) -> tuple[LineSearchResult, State]:
        """Search for a step length along ``direction`` starting at ``param``.

        Args:
            problem: The problem being minimized.
            state: State of the current run (for evaluation counting).
            param: Starting point.
            direction: Search direction; must be a descent direction.
            grad: Gradient at ``param``.
            cost: Objective value at ``param``.

        Returns:
            Tuple of (result, state).

        Raises:
            AlgorithmError: If ``direction`` is not a descent direction or no
                acceptable step was found.
        """


class BacktrackingLineSearch(AbstractLineSearch):
    """Armijo backtracking line search.

    Finds α such that:
        f(x + α*d) ≤ f(x) + c1 * α * ∇f(x)·d

    starting from ``alpha_init`` and multiplying by ``rho`` after each
    rejected trial.

    Attributes:
        alpha_init: Initial step length (default 1.0).
        rho: Step reduction factor in (0, 1) (default 0.5).
        c1: Armijo constant in (0, 1) (default 1e-4).
        max_steps: Maximum number of trial points (default 50).
    """

    alpha_init: float = 1.0
    rho: float = 0.5
    c1: float = 1e-4
    max_steps: int = eqx.field(static=True, default=50)

    def __check_init__(self):
        if not self.alpha_init > 0:
            raise ValueError("alpha_init must be positive.")
        if not 0 < self.rho < 1:
            raise ValueError("rho must lie in (0, 1).")
        if not 0 < self.c1 < 1:
            raise ValueError("Armijo constant c1 must lie in (0, 1).")
        if self.max_steps < 1:
            raise ValueError("max_steps must be at least 1.")

    def search(self, problem, state, param, direction, grad, cost):
        slope = float(directional_derivative(grad, direction))
        if not slope < 0:
            raise AlgorithmError(
                "BacktrackingLineSearch: search direction must be a descent direction."
            )

        alpha = self.alpha_init
        lowest: Optional[LineSearchResult] = None
        for trial in range(1, self.max_steps + 1):
            candidate = param + alpha * direction
            f_new, state = problem.cost(candidate, state)
            result = LineSearchResult(alpha, candidate, f_new, None, trial)
            if f_new <= cost + self.c1 * alpha * slope:
                return result, state
            if lowest is None or f_new < lowest.cost:
                lowest = result
            alpha *= self.rho

        # Exhausted the trials: fall back to any point that decreased the cost
        if lowest is not None and lowest.cost < cost:
            logger.debug(
                "Armijo condition not met after %d trials, accepting alpha=%g",
                self.max_steps,
                lowest.alpha,
            )
            return lowest._replace(n_evals=self.max_steps), state
        raise AlgorithmError(
            f"BacktrackingLineSearch: no decrease found in {self.max_steps} trials."
        )


class _Trial(NamedTuple):
    # A point on the line: step length, value and directional derivative.
    alpha: float
    f: float
    g: float


def _cubic_gamma(theta: float, ga: float, gb: float) -> float:
    # Scaled to avoid overflow. A negative radicand only arises when the
    # cubic does not tend to infinity along the step.
    s = max(abs(theta), abs(ga), abs(gb))
    if s == 0.0:
        return 0.0
    radicand = (theta / s) ** 2 - (ga / s) * (gb / s)
    return s * math.sqrt(max(0.0, radicand))


def _safeguarded_step(
    stx: _Trial,
    sty: _Trial,
    stp: _Trial,
    bracketed: bool,
    alpha_min: float,
    alpha_max: float,
) -> tuple[_Trial, _Trial, float, bool, int]:
    """Compute a safeguarded step and update the interval of uncertainty.

    ``stx`` is the trial with the lowest value so far, ``sty`` the other
    endpoint of the interval and ``stp`` the current trial.

    Returns:
        Tuple of (stx, sty, new_alpha, bracketed, case) where ``case`` is 0
        if the inputs were inconsistent and 1-4 for the interpolation case
        that was used.
    """
    if (
        (bracketed and (stp.alpha <= min(stx.alpha, sty.alpha)
                        or stp.alpha >= max(stx.alpha, sty.alpha)))
        or stx.g * (stp.alpha - stx.alpha) >= 0.0
        or alpha_max < alpha_min
    ):
        return stx, sty, stp.alpha, bracketed, 0

    opposite_signs = stp.g * math.copysign(1.0, stx.g) < 0.0

    if stp.f > stx.f:
        # Higher function value: the minimum is bracketed. Take the cubic
        # step if it is closer to stx, else the average of cubic and quadratic.
        case = 1
        bound = True
        theta = 3.0 * (stx.f - stp.f) / (stp.alpha - stx.alpha) + stx.g + stp.g
        gamma = _cubic_gamma(theta, stx.g, stp.g)
        if stp.alpha < stx.alpha:
            gamma = -gamma
        p = (gamma - stx.g) + theta
        q = ((gamma - stx.g) + gamma) + stp.g
        alpha_cubic = stx.alpha + (p / q) * (stp.alpha - stx.alpha)
        alpha_quad = stx.alpha + (
            (stx.g / ((stx.f - stp.f) / (stp.alpha - stx.alpha) + stx.g)) / 2.0
        ) * (stp.alpha - stx.alpha)
        if abs(alpha_cubic - stx.alpha) < abs(alpha_quad - stx.alpha):
            alpha_new = alpha_cubic
        else:
            alpha_new = alpha_cubic + (alpha_quad - alpha_cubic) / 2.0
        bracketed = True
    elif opposite_signs:
        # Lower value, derivatives of opposite sign: the minimum is bracketed.
        case = 2
        bound = False
        theta = 3.0 * (stx.f - stp.f) / (stp.alpha - stx.alpha) + stx.g + stp.g
        gamma = _cubic_gamma(theta, stx.g, stp.g)
        if stp.alpha > stx.alpha:
            gamma = -gamma
        p = (gamma - stp.g) + theta
        q = ((gamma - stp.g) + gamma) + stx.g
        alpha_cubic = stp.alpha + (p / q) * (stx.alpha - stp.alpha)
        alpha_quad = stp.alpha + (stp.g / (stp.g - stx.g)) * (stx.alpha - stp.alpha)
        if abs(alpha_cubic - stp.alpha) > abs(alpha_quad - stp.alpha):
            alpha_new = alpha_cubic
        else:
            alpha_new = alpha_quad
        bracketed = True
    elif abs(stp.g) < abs(stx.g):
        # Lower value, same sign, decreasing derivative magnitude. The cubic
        # step is used only if the cubic tends to infinity along the step or
        # its minimum lies beyond stp.
        case = 3
        bound = True
        theta = 3.0 * (stx.f - stp.f) / (stp.alpha - stx.alpha) + stx.g + stp.g
        gamma = _cubic_gamma(theta, stx.g, stp.g)
        if stp.alpha > stx.alpha:
            gamma = -gamma
        p = (gamma - stp.g) + theta
        q = (gamma + (stx.g - stp.g)) + gamma
        r = p / q
        if r < 0.0 and gamma != 0.0:
            alpha_cubic = stp.alpha + r * (stx.alpha - stp.alpha)
        elif stp.alpha > stx.alpha:
            alpha_cubic = alpha_max
        else:
            alpha_cubic = alpha_min
        alpha_quad = stp.alpha + (stp.g / (stp.g - stx.g)) * (stx.alpha - stp.alpha)
        cubic_closer = abs(stp.alpha - alpha_cubic) < abs(stp.alpha - alpha_quad)
        if bracketed:
            alpha_new = alpha_cubic if cubic_closer else alpha_quad
        else:
            alpha_new = alpha_quad if cubic_closer else alpha_cubic
    else:
        # Lower value, same sign, non-decreasing derivative magnitude.
        case = 4
        bound = False
        if bracketed:
            theta = 3.0 * (stp.f - sty.f) / (sty.alpha - stp.alpha) + sty.g + stp.g
            gamma = _cubic_gamma(theta, sty.g, stp.g)
            if stp.alpha > sty.alpha:
                gamma = -gamma
            p = (gamma - stp.g) + theta
            q = ((gamma - stp.g) + gamma) + sty.g
            alpha_new = stp.alpha + (p / q) * (sty.alpha - stp.alpha)
        elif stp.alpha > stx.alpha:
            alpha_new = alpha_max
        else:
            alpha_new = alpha_min

    # The interval update does not depend on the new step.
    if stp.f > stx.f:
        sty = stp
    else:
        if opposite_signs:
            sty = stx
        stx = stp

    alpha_new = min(alpha_max, alpha_new)
    alpha_new = max(alpha_min, alpha_new)
    if bracketed and bound:
        midpoint = stx.alpha + 0.66 * (sty.alpha - stx.alpha)
        if sty.alpha > stx.alpha:
            alpha_new = min(midpoint, alpha_new)
        else:
            alpha_new = max(midpoint, alpha_new)

    return stx, sty, alpha_new, bracketed, case


class MoreThuenteLineSearch(AbstractLineSearch):
    """Line search satisfying the strong Wolfe conditions.

    Finds α such that:
        f(x + α*d) ≤ f(x) + c1 * α * ∇f(x)·d
        |∇f(x + α*d)·d| ≤ c2 * |∇f(x)·d|

    Every trial evaluates both the cost and the gradient; the gradient at the
    accepted point is returned so that the calling solver can reuse it.

    Attributes:
        c1: Sufficient decrease constant (default 1e-4).
        c2: Curvature constant, ``c1 < c2 < 1`` (default 0.9).
        alpha_init: Initial step length (default 1.0).
        alpha_min: Smallest allowed step (default sqrt(machine epsilon)).
        alpha_max: Largest allowed step (default inf).
        xtol: Relative width of the interval of uncertainty at which the
            search stops (default 1e-10).
        extrapolation: Factor bounding the step growth before the minimum is
            bracketed (default 4.0).
        max_steps: Maximum number of trial points (default 20).
    """

    c1: float = 1e-4
    c2: float = 0.9
    alpha_init: float = 1.0
    alpha_min: float = math.sqrt(2.220446049250313e-16)
    alpha_max: float = math.inf
    xtol: float = 1e-10
    extrapolation: float = 4.0
    max_steps: int = eqx.field(static=True, default=20)

    def __check_init__(self):
        if not 0 < self.c1 < self.c2 < 1:
            raise ValueError("Require 0 < c1 < c2 < 1 for the Wolfe conditions.")
        if not self.alpha_init > 0:
            raise ValueError("alpha_init must be positive.")
        if self.alpha_min < 0:
            raise ValueError("alpha_min must be non-negative.")
        if not self.alpha_max > self.alpha_min:
            raise ValueError("alpha_min must be smaller than alpha_max.")
        if self.max_steps < 1:
            raise ValueError("max_steps must be at least 1.")

    def search(self, problem, state, param, direction, grad, cost):
        slope0 = float(directional_derivative(grad, direction))
        if not slope0 < 0:
            raise AlgorithmError(
                "MoreThuenteLineSearch: search direction must be a descent direction."
            )

        decrease_slope = self.c1 * slope0
        width = self.alpha_max - self.alpha_min
        width_prev = 2.0 * width
        bracketed = False
        stage1 = True
        case = 1

        stx = _Trial(0.0, cost, slope0)
        sty = _Trial(0.0, cost, slope0)
        alpha = self.alpha_init

        for trial in range(1, self.max_steps + 1):
            # Current interval of uncertainty
            if bracketed:
                lo, hi = min(stx.alpha, sty.alpha), max(stx.alpha, sty.alpha)
            else:
                lo = stx.alpha
                hi = alpha + self.extrapolation * (alpha - stx.alpha)

            alpha = min(max(alpha, self.alpha_min), self.alpha_max)

            # On an unusual termination fall back to the best step so far
            if (
                (bracketed and (alpha <= lo or alpha >= hi))
                or (trial == self.max_steps and stx.alpha > 0.0)
                or case == 0
                or (bracketed and hi - lo <= self.xtol * hi)
            ):
                alpha = stx.alpha

            candidate = param + alpha * direction
            f_new, state = problem.cost(candidate, state)
            g_new, state = problem.gradient(candidate, state)
            slope = float(directional_derivative(g_new, direction))
            armijo_bound = cost + alpha * decrease_slope
            result = LineSearchResult(alpha, candidate, f_new, g_new, trial)

            # Convergence tests; the last matching test decides the outcome.
            info = 0
            if (bracketed and (alpha <= lo or alpha >= hi)) or case == 0:
                info = 6
            sufficient = f_new <= armijo_bound
            if alpha == self.alpha_max and sufficient and slope <= decrease_slope:
                info = 5
            if alpha == self.alpha_min and not (sufficient and slope < decrease_slope):
                info = 4
            if trial == self.max_steps:
                info = 3
            if bracketed and hi - lo <= self.xtol * hi:
                info = 2
            if sufficient and abs(slope) <= self.c2 * (-slope0):
                info = 1

            if info == 1:
                return result, state
            if info != 0:
                if alpha > 0.0 and f_new < cost:
                    logger.debug(
                        "Strong Wolfe conditions not met (info=%d), accepting alpha=%g",
                        info,
                        alpha,
                    )
                    return result, state
                raise AlgorithmError(
                    f"MoreThuenteLineSearch: no acceptable step found (info={info})."
                )

            if stage1 and sufficient and slope >= min(self.c1, self.c2) * slope0:
                stage1 = False

            current = _Trial(alpha, f_new, slope)
            if stage1 and f_new <= stx.f and f_new > armijo_bound:
                # Use the modified function ψ(α) = f(α) - f(0) - α*c1*f'(0)
                # until a step with sufficient decrease is found.
                def shift(t):
                    return _Trial(
                        t.alpha, t.f - t.alpha * decrease_slope, t.g - decrease_slope
                    )

                def unshift(t):
                    return _Trial(
                        t.alpha, t.f + t.alpha * decrease_slope, t.g + decrease_slope
                    )

                stx_m, sty_m, alpha, bracketed, case = _safeguarded_step(
                    shift(stx), shift(sty), shift(current), bracketed, lo, hi
                )
                stx, sty = unshift(stx_m), unshift(sty_m)
            else:
                stx, sty, alpha, bracketed, case = _safeguarded_step(
                    stx, sty, current, bracketed, lo, hi
                )

            # Force sufficient shrinkage of the interval
            if bracketed:
                if abs(sty.alpha - stx.alpha) >= 0.66 * width_prev:
                    alpha = stx.alpha + 0.5 * (sty.alpha - stx.alpha)
                width_prev = width
                width = abs(sty.alpha - stx.alpha)

        raise AlgorithmError(  # pragma: no cover - the loop always returns
            "MoreThuenteLineSearch: no trials left."
        )
