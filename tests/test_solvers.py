"""Tests for the shipped solvers, each driven by the executor."""

import jax
import jax.numpy as jnp
import numpy as np
import optimistix as optx
import pytest

from iterax.conjugate_gradient import (
    NonlinearConjugateGradient,
    fletcher_reeves,
    polak_ribiere,
)
from iterax.errors import AlgorithmError, InitializationError
from iterax.executor import Executor
from iterax.gradient_descent import GradientDescent
from iterax.linesearch import BacktrackingLineSearch, MoreThuenteLineSearch
from iterax.newton import Newton, newton_direction
from iterax.optimistix_adapter import OptimistixMinimiser
from iterax.particle_swarm import ParticleSwarm
from iterax.problem import Problem
from iterax.simulated_annealing import SimulatedAnnealing
from iterax.types import TerminationReason

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def rosenbrock(x, args):
    return (1 - x[0]) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2


def sphere(x, args):
    return jnp.sum(x**2)


ROSENBROCK = Problem(cost_fn=rosenbrock).with_autodiff()
SPHERE = Problem(cost_fn=sphere).with_autodiff()


class TestGradientDescent:
    """Tests for steepest descent."""

    def test_fixed_step_on_parabola(self):
        problem = Problem(cost_fn=sphere, grad_fn=lambda x, args: 2.0 * x)
        result = Executor(
            GradientDescent(step_size=0.1), problem, jnp.array([10.0]), max_iters=100
        ).run()
        assert result.best_cost <= 1e-6
        assert result.termination_reason in (
            TerminationReason.SOLVER_CONVERGED,
            TerminationReason.MAX_ITERATIONS,
        )

    def test_fixed_step_iterates(self):
        """x_{k+1} = x_k - 0.1 * 2 x_k = 0.8 x_k"""
        problem = Problem(cost_fn=sphere, grad_fn=lambda x, args: 2.0 * x)
        result = Executor(
            GradientDescent(step_size=0.1), problem, jnp.array([1.0]), max_iters=3
        ).run()
        np.testing.assert_allclose(result.state.param, [0.8**3])
        assert result.state.cost_count == 4
        assert result.state.grad_count == 4

    def test_with_line_search(self):
        a = jnp.diag(jnp.array([1.0, 10.0]))
        problem = Problem(
            cost_fn=lambda x, args: 0.5 * x @ a @ x,
            grad_fn=lambda x, args: a @ x,
        )
        solver = GradientDescent(line_search=MoreThuenteLineSearch())
        result = Executor(solver, problem, jnp.array([10.0, 1.0]), max_iters=1000).run()
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, [0.0, 0.0], atol=1e-7)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            GradientDescent(step_size=0.0)
        with pytest.raises(ValueError):
            GradientDescent(gtol=-1.0)


class TestNewton:
    """Tests for Newton's method."""

    def test_quadratic_in_one_step(self):
        """0.5 x^T A x - b^T x is minimized by one Newton step."""
        a = jnp.array([[4.0, 1.0], [1.0, 3.0]])
        b = jnp.array([1.0, 2.0])
        problem = Problem(
            cost_fn=lambda x, args: 0.5 * x @ a @ x - b @ x,
            grad_fn=lambda x, args: a @ x - b,
            hessian_fn=lambda x, args: a,
        )
        result = Executor(Newton(), problem, jnp.array([5.0, -3.0]), max_iters=10).run()
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        assert result.iterations == 1
        np.testing.assert_allclose(result.best_param, jnp.linalg.solve(a, b))

    def test_rosenbrock_with_line_search(self):
        solver = Newton(line_search=BacktrackingLineSearch())
        result = Executor(
            solver, ROSENBROCK, jnp.array([-1.2, 1.0]), max_iters=100
        ).run()
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, [1.0, 1.0], atol=1e-6)

    def test_singular_hessian(self):
        problem = Problem(
            cost_fn=sphere,
            grad_fn=lambda x, args: 2.0 * x,
            hessian_fn=lambda x, args: jnp.zeros((2, 2)),
        )
        executor = Executor(Newton(), problem, jnp.ones(2), max_iters=10)
        with pytest.raises(AlgorithmError, match="singular") as exc_info:
            executor.run()
        assert exc_info.value.state.iter == 0

    def test_requires_vector(self):
        problem = Problem(
            cost_fn=sphere,
            grad_fn=lambda x, args: 2.0 * x,
            hessian_fn=lambda x, args: 2.0 * jnp.eye(4),
        )
        with pytest.raises(InitializationError):
            Executor(Newton(), problem, jnp.ones((2, 2))).run()

    def test_newton_direction(self):
        d = newton_direction(jnp.array([[2.0, 0.0], [0.0, 4.0]]), jnp.array([2.0, 4.0]))
        np.testing.assert_allclose(d, [-1.0, -1.0])


class TestNonlinearConjugateGradient:
    """Tests for nonlinear conjugate gradient."""

    @pytest.mark.parametrize("beta_rule", ["polak_ribiere", "fletcher_reeves"])
    def test_rosenbrock(self, beta_rule):
        solver = NonlinearConjugateGradient(
            beta_rule=beta_rule, restart_every=10, gtol=1e-6
        )
        result = Executor(
            solver, ROSENBROCK, jnp.array([-1.2, 1.0]), max_iters=2000
        ).run()
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, [1.0, 1.0], atol=1e-4)

    def test_quadratic(self):
        """On a quadratic in n dimensions CG converges in about n iterations."""
        a = jnp.diag(jnp.array([1.0, 10.0, 100.0]))
        problem = Problem(
            cost_fn=lambda x, args: 0.5 * x @ a @ x,
            grad_fn=lambda x, args: a @ x,
        )
        solver = NonlinearConjugateGradient(
            line_search=MoreThuenteLineSearch(c2=0.1), gtol=1e-10
        )
        result = Executor(solver, problem, jnp.ones(3), max_iters=100).run()
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, jnp.zeros(3), atol=1e-8)
        assert result.iterations <= 50

    def test_beta_rules(self):
        g_old = jnp.array([1.0, 0.0])
        g_new = jnp.array([0.0, 2.0])
        np.testing.assert_allclose(fletcher_reeves(g_new, g_old), 4.0)
        np.testing.assert_allclose(polak_ribiere(g_new, g_old), 4.0)
        # Polak-Ribiere is clipped at zero
        np.testing.assert_allclose(polak_ribiere(0.5 * g_old, g_old), 0.0)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            NonlinearConjugateGradient(beta_rule="hestenes_stiefel")
        with pytest.raises(ValueError):
            NonlinearConjugateGradient(restart_every=-1)


class TestParticleSwarm:
    """Tests for particle swarm optimization."""

    BOUNDS = (jnp.array([-5.0, -5.0]), jnp.array([5.0, 5.0]))

    def test_sphere(self):
        problem = Problem(cost_fn=sphere, bounds=self.BOUNDS)
        solver = ParticleSwarm(population_size=20, seed=1)
        result = Executor(solver, problem, jnp.array([4.0, 4.0]), max_iters=100).run()
        assert result.termination_reason == TerminationReason.MAX_ITERATIONS
        assert result.best_cost < 1e-2
        # Every particle is evaluated once per iteration and once at init
        assert result.state.cost_count == 20 * 101

    def test_particles_stay_in_bounds(self):
        problem = Problem(cost_fn=sphere, bounds=self.BOUNDS)
        executor = Executor(
            ParticleSwarm(population_size=10), problem, jnp.zeros(2), max_iters=5
        )
        executor.run()
        positions = executor.aux.positions
        assert bool(jnp.all(positions >= -5.0))
        assert bool(jnp.all(positions <= 5.0))

    def test_reproducible(self):
        problem = Problem(cost_fn=rosenbrock, bounds=self.BOUNDS)
        runs = [
            Executor(
                ParticleSwarm(population_size=8, seed=3),
                problem,
                jnp.zeros(2),
                max_iters=10,
            ).run()
            for _ in range(2)
        ]
        np.testing.assert_array_equal(runs[0].best_param, runs[1].best_param)

    def test_requires_bounds(self):
        executor = Executor(ParticleSwarm(), Problem(cost_fn=sphere), jnp.zeros(2))
        with pytest.raises(InitializationError, match="bounds"):
            executor.run()

    def test_infeasible_start(self):
        problem = Problem(cost_fn=sphere, bounds=self.BOUNDS)
        executor = Executor(ParticleSwarm(), problem, jnp.array([10.0, 0.0]))
        with pytest.raises(InitializationError, match="infeasible"):
            executor.run()


class TestSimulatedAnnealing:
    """Tests for simulated annealing."""

    @pytest.mark.parametrize("schedule", ["fast", "boltzmann", "exponential"])
    def test_parabola(self, schedule):
        solver = SimulatedAnnealing(
            temperature_schedule=schedule, step_scale=0.5, seed=0
        )
        result = Executor(solver, SPHERE, jnp.array([2.0]), max_iters=500).run()
        assert result.best_cost < 0.05

    def test_temperature_schedules(self):
        fast = SimulatedAnnealing(initial_temperature=2.0)
        assert fast.temperature(0) == 2.0
        assert fast.temperature(3) == 0.5
        boltzmann = SimulatedAnnealing(temperature_schedule="boltzmann")
        np.testing.assert_allclose(boltzmann.temperature(0), 1.0 / np.log(2.0))
        exponential = SimulatedAnnealing(
            temperature_schedule="exponential", cooling=0.5
        )
        assert exponential.temperature(2) == 0.25

    def test_stall_best(self):
        """A flat objective never improves, so the solver stops after
        stall_best iterations."""
        problem = Problem(cost_fn=lambda x, args: jnp.asarray(1.0))
        result = Executor(
            SimulatedAnnealing(stall_best=5), problem, jnp.zeros(2), max_iters=100
        ).run()
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        assert result.iterations == 5

    def test_reanneal(self):
        problem = Problem(cost_fn=sphere)
        executor = Executor(
            SimulatedAnnealing(reanneal_every=4), problem, jnp.ones(2), max_iters=8
        )
        executor.run()
        assert executor.aux.k == 0

    def test_proposals_respect_bounds(self):
        bounds = (jnp.array([0.5]), jnp.array([1.0]))
        problem = Problem(cost_fn=sphere, bounds=bounds)
        result = Executor(
            SimulatedAnnealing(step_scale=2.0), problem, jnp.array([1.0]), max_iters=50
        ).run()
        assert 0.5 <= float(result.best_param[0]) <= 1.0
        np.testing.assert_allclose(result.best_param, [0.5], atol=0.1)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            SimulatedAnnealing(temperature_schedule="linear")
        with pytest.raises(ValueError):
            SimulatedAnnealing(initial_temperature=0.0)
        with pytest.raises(ValueError):
            SimulatedAnnealing(cooling=1.5)


class TestOptimistixMinimiser:
    """Tests for the optimistix adapter."""

    def test_bfgs_rosenbrock(self):
        solver = OptimistixMinimiser(optx.BFGS(rtol=1e-8, atol=1e-8))
        problem = Problem(cost_fn=rosenbrock)
        result = Executor(solver, problem, jnp.array([-1.2, 1.0]), max_iters=200).run()
        assert result.termination_reason == TerminationReason.SOLVER_CONVERGED
        np.testing.assert_allclose(result.best_param, [1.0, 1.0], atol=1e-4)
        # One counted evaluation at init and one per iteration
        assert result.state.cost_count == result.iterations + 1

    def test_name_includes_minimiser(self):
        solver = OptimistixMinimiser(optx.BFGS(rtol=1e-6, atol=1e-6))
        assert solver.name == "OptimistixMinimiser[BFGS]"

    def test_max_iters_applies(self):
        solver = OptimistixMinimiser(optx.BFGS(rtol=1e-12, atol=1e-12))
        problem = Problem(cost_fn=rosenbrock)
        result = Executor(solver, problem, jnp.array([-1.2, 1.0]), max_iters=3).run()
        assert result.termination_reason == TerminationReason.MAX_ITERATIONS
        assert result.iterations == 3
