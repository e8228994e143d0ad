"""Tests for the Problem adapter and the run State."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from iterax.errors import CapabilityNotImplemented, EngineError, EvaluationError
from iterax.problem import Problem
from iterax.state import State, initial_state
from iterax.types import TerminationReason

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def quadratic(x, args):
    return jnp.sum(x**2)


def quadratic_grad(x, args):
    return 2.0 * x


class TestProblemEvaluation:
    """Tests for the evaluation methods and their counters."""

    def test_cost_returns_float_and_counts(self):
        problem = Problem(cost_fn=quadratic)
        state = initial_state(jnp.array([1.0, 2.0]))
        cost, new_state = problem.cost(state.param, state)
        assert isinstance(cost, float)
        assert cost == 5.0
        assert new_state.cost_count == 1
        assert new_state.grad_count == 0
        # The input state is left untouched
        assert state.cost_count == 0

    def test_each_capability_has_its_own_counter(self):
        problem = Problem(
            cost_fn=quadratic,
            grad_fn=quadratic_grad,
            hessian_fn=lambda x, args: 2.0 * jnp.eye(x.shape[0]),
            apply_fn=lambda x, args: x - 1.0,
            jacobian_fn=lambda x, args: jnp.eye(x.shape[0]),
        )
        state = initial_state(jnp.ones(3))
        _, state = problem.gradient(state.param, state)
        _, state = problem.hessian(state.param, state)
        _, state = problem.hessian(state.param, state)
        _, state = problem.apply(state.param, state)
        _, state = problem.jacobian(state.param, state)
        assert state.counts == {
            "cost": 0,
            "gradient": 1,
            "hessian": 2,
            "jacobian": 1,
            "apply": 1,
        }

    def test_args_are_passed_through(self):
        problem = Problem(
            cost_fn=lambda x, args: jnp.sum((x - args["shift"]) ** 2),
            args={"shift": 3.0},
        )
        state = initial_state(jnp.array([3.0]))
        cost, _ = problem.cost(state.param, state)
        assert cost == 0.0

    def test_gradient_values(self):
        problem = Problem(cost_fn=quadratic, grad_fn=quadratic_grad)
        state = initial_state(jnp.array([1.0, -2.0]))
        grad, _ = problem.gradient(state.param, state)
        np.testing.assert_allclose(grad, [2.0, -4.0])


class TestProblemErrors:
    """Tests for missing capabilities and invalid user results."""

    def test_missing_gradient(self):
        problem = Problem(cost_fn=quadratic)
        state = initial_state(jnp.ones(2))
        with pytest.raises(CapabilityNotImplemented):
            problem.gradient(state.param, state)

    def test_missing_capability_is_not_implemented_error(self):
        problem = Problem(cost_fn=quadratic)
        state = initial_state(jnp.ones(2))
        with pytest.raises(NotImplementedError):
            problem.hessian(state.param, state)
        assert issubclass(CapabilityNotImplemented, EngineError)

    def test_has_and_check_capabilities(self):
        problem = Problem(cost_fn=quadratic, grad_fn=quadratic_grad)
        assert problem.has("cost")
        assert problem.has("gradient")
        assert not problem.has("hessian")
        problem.check_capabilities({"cost", "gradient"})
        with pytest.raises(CapabilityNotImplemented, match="hessian"):
            problem.check_capabilities({"cost", "hessian"})
        with pytest.raises(ValueError, match="curvature"):
            problem.check_capabilities({"curvature"})

    def test_user_exception_is_chained(self):
        def broken(x, args):
            raise ZeroDivisionError("boom")

        problem = Problem(cost_fn=broken)
        state = initial_state(jnp.ones(2))
        with pytest.raises(EvaluationError) as exc_info:
            problem.cost(state.param, state)
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)

    def test_nan_cost_is_rejected(self):
        problem = Problem(cost_fn=lambda x, args: jnp.sum(x) * jnp.nan)
        state = initial_state(jnp.ones(2))
        with pytest.raises(EvaluationError, match="non-finite"):
            problem.cost(state.param, state)

    def test_infinite_gradient_is_rejected(self):
        problem = Problem(cost_fn=quadratic, grad_fn=lambda x, args: x / 0.0)
        state = initial_state(jnp.ones(2))
        with pytest.raises(EvaluationError):
            problem.gradient(state.param, state)

    def test_failed_evaluation_is_not_counted(self):
        problem = Problem(cost_fn=lambda x, args: jnp.inf)
        state = initial_state(jnp.ones(2))
        with pytest.raises(EvaluationError):
            problem.cost(state.param, state)
        assert state.cost_count == 0

    def test_non_scalar_cost(self):
        problem = Problem(cost_fn=lambda x, args: x**2)
        state = initial_state(jnp.ones(2))
        with pytest.raises(EvaluationError, match="scalar"):
            problem.cost(state.param, state)

    def test_gradient_shape_mismatch(self):
        problem = Problem(cost_fn=quadratic, grad_fn=lambda x, args: jnp.ones(3))
        state = initial_state(jnp.ones(2))
        with pytest.raises(EvaluationError, match="shape"):
            problem.gradient(state.param, state)

    def test_hessian_shape_mismatch(self):
        problem = Problem(cost_fn=quadratic, hessian_fn=lambda x, args: jnp.ones(2))
        state = initial_state(jnp.ones(2))
        with pytest.raises(EvaluationError, match="Hessian"):
            problem.hessian(state.param, state)


class TestFeasibility:
    """Tests for bounds and constraints."""

    def test_bounds(self):
        problem = Problem(
            cost_fn=quadratic, bounds=(jnp.array([-1.0, -1.0]), jnp.array([1.0, 1.0]))
        )
        assert problem.is_feasible(jnp.array([0.5, -1.0]))
        assert not problem.is_feasible(jnp.array([1.5, 0.0]))

    def test_constraints(self):
        # Feasible inside the unit disk
        problem = Problem(
            cost_fn=quadratic, constraint_fn=lambda x, args: 1.0 - jnp.sum(x**2)
        )
        assert problem.is_feasible(jnp.array([0.5, 0.5]))
        assert not problem.is_feasible(jnp.array([1.0, 1.0]))

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            Problem(cost_fn=quadratic, bounds=(jnp.array([1.0]), jnp.array([0.0])))
        with pytest.raises(ValueError):
            Problem(cost_fn=quadratic, bounds=(jnp.zeros(2), jnp.ones(3)))


class TestAutodiff:
    """Tests for derivatives derived with JAX."""

    def test_gradient_and_hessian(self):
        def rosenbrock(x, args):
            return (1 - x[0]) ** 2 + 100 * (x[1] - x[0] ** 2) ** 2

        problem = Problem(cost_fn=rosenbrock).with_autodiff()
        state = initial_state(jnp.array([1.0, 1.0]))
        grad, state = problem.gradient(state.param, state)
        hessian, state = problem.hessian(state.param, state)
        np.testing.assert_allclose(grad, [0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(hessian, [[802.0, -400.0], [-400.0, 200.0]])

    def test_supplied_derivatives_are_kept(self):
        problem = Problem(cost_fn=quadratic, grad_fn=quadratic_grad).with_autodiff()
        assert problem.grad_fn is quadratic_grad
        assert problem.has("hessian")
        assert not problem.has("jacobian")

    def test_jacobian_from_apply(self):
        problem = Problem(
            cost_fn=quadratic, apply_fn=lambda x, args: jnp.array([x[0] * x[1], x[0]])
        ).with_autodiff()
        state = initial_state(jnp.array([2.0, 3.0]))
        jacobian, _ = problem.jacobian(state.param, state)
        np.testing.assert_allclose(jacobian, [[3.0, 2.0], [1.0, 0.0]])


class TestState:
    """Tests for the immutable run state."""

    def test_initial_state(self):
        state = initial_state([1, 2, 3], max_iters=10)
        assert jnp.issubdtype(state.param.dtype, jnp.floating)
        assert state.cost == np.inf
        assert state.best_cost == np.inf
        assert state.iter == 0
        assert state.max_iters == 10
        assert not state.terminated
        np.testing.assert_array_equal(state.best_param, state.param)

    def test_negative_max_iters(self):
        with pytest.raises(ValueError):
            State(param=jnp.zeros(2), max_iters=-1)

    def test_update_best_is_strict(self):
        state = initial_state(jnp.zeros(2)).replace(cost=3.0)
        state, new_best = state.update_best()
        assert new_best
        assert state.best_cost == 3.0

        moved = state.replace(param=jnp.ones(2), iter=4)
        same, new_best = moved.update_best()
        assert not new_best
        assert same.last_best_iter == 0
        np.testing.assert_array_equal(same.best_param, jnp.zeros(2))

        better, new_best = moved.replace(cost=1.0).update_best()
        assert new_best
        assert better.last_best_iter == 4
        np.testing.assert_array_equal(better.best_param, jnp.ones(2))

    def test_replace_returns_new_instance(self):
        state = initial_state(jnp.zeros(2))
        incremented = state.increment("grad_count")
        assert incremented is not state
        assert incremented.grad_count == 1
        assert state.grad_count == 0

    def test_terminate(self):
        state = initial_state(jnp.zeros(2)).terminate(TerminationReason.ABORTED)
        assert state.terminated
        assert state.termination_status == TerminationReason.ABORTED
