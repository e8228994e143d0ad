"""Comparison tests between iterax solvers and scipy.optimize.minimize.

These tests verify that the solvers reach the same minimizers as the
reference SciPy implementations on standard test problems.
"""

import jax
import jax.numpy as jnp
import numpy as np
import optimistix as optx
from scipy.optimize import minimize as scipy_minimize

from iterax.conjugate_gradient import NonlinearConjugateGradient
from iterax.executor import minimise
from iterax.linesearch import BacktrackingLineSearch
from iterax.newton import Newton
from iterax.optimistix_adapter import OptimistixMinimiser
from iterax.problem import Problem
from iterax.types import TerminationReason

# Enable 64-bit precision for fair comparison
jax.config.update("jax_enable_x64", True)


def rosenbrock_scipy(x):
    return (1 - x[0]) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2


def rosenbrock_grad_scipy(x):
    return np.array(
        [
            -2 * (1 - x[0]) - 400 * x[0] * (x[1] - x[0] ** 2),
            200 * (x[1] - x[0] ** 2),
        ]
    )


def rosenbrock_jax(x, args):
    return (1 - x[0]) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2


class TestRosenbrock:
    """Tests on the 2D Rosenbrock function.

    The Rosenbrock function is a classic test for optimization algorithms:
        f(x, y) = (a - x)^2 + b(y - x^2)^2

    with a=1, b=100. Minimum at (1, 1) with f(1, 1) = 0.
    """

    x0 = np.array([-1.2, 1.0])

    def test_conjugate_gradient(self):
        result_scipy = scipy_minimize(
            rosenbrock_scipy,
            self.x0,
            jac=rosenbrock_grad_scipy,
            method="CG",
            options={"gtol": 1e-6, "maxiter": 1000},
        )
        result = minimise(
            NonlinearConjugateGradient(restart_every=10, gtol=1e-6),
            Problem(cost_fn=rosenbrock_jax).with_autodiff(),
            jnp.asarray(self.x0),
            max_iters=1000,
        )
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, result_scipy.x, atol=1e-4)
        assert result.best_cost < 1e-8

    def test_newton(self):
        result_scipy = scipy_minimize(
            rosenbrock_scipy,
            self.x0,
            jac=rosenbrock_grad_scipy,
            method="Newton-CG",
            hess=lambda x: np.asarray(jax.hessian(rosenbrock_scipy)(jnp.asarray(x))),
            options={"xtol": 1e-10, "maxiter": 200},
        )
        result = minimise(
            Newton(line_search=BacktrackingLineSearch(), gtol=1e-8),
            Problem(cost_fn=rosenbrock_jax).with_autodiff(),
            jnp.asarray(self.x0),
            max_iters=200,
        )
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, result_scipy.x, atol=1e-6)
        # Newton's method needs far fewer iterations than first-order solvers
        assert result.iterations < 100

    def test_optimistix_bfgs(self):
        result_scipy = scipy_minimize(
            rosenbrock_scipy,
            self.x0,
            jac=rosenbrock_grad_scipy,
            method="BFGS",
            options={"gtol": 1e-8},
        )
        result = minimise(
            OptimistixMinimiser(optx.BFGS(rtol=1e-10, atol=1e-10)),
            Problem(cost_fn=rosenbrock_jax),
            jnp.asarray(self.x0),
            max_iters=500,
        )
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, result_scipy.x, atol=1e-5)


class TestQuadratic:
    """Tests on an ill-scaled convex quadratic."""

    scales = np.array([1.0, 10.0, 100.0])
    center = np.array([1.0, -2.0, 0.5])

    def _scipy(self, method):
        return scipy_minimize(
            lambda x: np.sum(self.scales * (x - self.center) ** 2),
            np.zeros(3),
            jac=lambda x: 2 * self.scales * (x - self.center),
            method=method,
            options={"gtol": 1e-8},
        )

    def _problem(self):
        scales, center = jnp.asarray(self.scales), jnp.asarray(self.center)
        return Problem(
            cost_fn=lambda x, args: jnp.sum(scales * (x - center) ** 2)
        ).with_autodiff()

    def test_conjugate_gradient(self):
        result_scipy = self._scipy("CG")
        result = minimise(
            NonlinearConjugateGradient(gtol=1e-8),
            self._problem(),
            jnp.zeros(3),
            max_iters=200,
        )
        np.testing.assert_allclose(result.best_param, result_scipy.x, atol=1e-6)
        np.testing.assert_allclose(result.best_param, self.center, atol=1e-8)

    def test_newton_single_step(self):
        """A full Newton step solves a quadratic exactly."""
        result = minimise(Newton(), self._problem(), jnp.zeros(3), max_iters=10)
        assert result.iterations == 1
        np.testing.assert_allclose(result.best_param, self._scipy("BFGS").x, atol=1e-6)
