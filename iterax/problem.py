"""Problem adapter wrapping the user-supplied callables.

The `Problem` holds the objective and its optional derivatives. Every
evaluation method takes the state of the current run and returns the result
together with the updated state, so that the evaluation counters always
belong to the run that triggered them. No results are cached here.
"""

import dataclasses
from collections.abc import Callable
from typing import Any, Optional

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Float

from iterax.errors import CapabilityNotImplemented, EngineError, EvaluationError
from iterax.state import State
from iterax.types import (
    CAPABILITIES,
    ApplyFn,
    ConstraintFn,
    CostFn,
    GradFn,
    HessianFn,
    JacobianFn,
)
from iterax.utils import grad_of, hessian_of, jacobian_of


class Problem(eqx.Module):
    """An objective and its optional derivatives.

    Every callable has the signature ``fn(param, args)``. Only ``cost_fn`` is
    required by most solvers; the others are used by the solvers that need
    them. Calling a capability whose callable was not supplied raises
    `CapabilityNotImplemented`.

    Attributes:
        cost_fn: Objective ``f(x, args) -> scalar``.
        grad_fn: Gradient ``∇f(x, args) -> (n,)``.
        hessian_fn: Hessian ``∇²f(x, args) -> (n, n)``.
        jacobian_fn: Jacobian of ``apply_fn``, ``J(x, args) -> (m, n)``.
        apply_fn: Operator application ``A(x, args) -> (m,)``.
        constraint_fn: Feasibility constraints, ``c(x, args) >= 0`` is feasible.
        bounds: Optional box constraints ``(lower, upper)``, each of shape (n,).
        args: Extra argument passed to every callable.

    Example:
        >>> import jax.numpy as jnp
        >>> from iterax import Problem
        >>>
        >>> problem = Problem(
        ...     cost_fn=lambda x, args: jnp.sum(x**2),
        ...     grad_fn=lambda x, args: 2.0 * x,
        ... )
    """

    cost_fn: Optional[CostFn] = eqx.field(static=True, default=None)
    grad_fn: Optional[GradFn] = eqx.field(static=True, default=None)
    hessian_fn: Optional[HessianFn] = eqx.field(static=True, default=None)
    jacobian_fn: Optional[JacobianFn] = eqx.field(static=True, default=None)
    apply_fn: Optional[ApplyFn] = eqx.field(static=True, default=None)
    constraint_fn: Optional[ConstraintFn] = eqx.field(static=True, default=None)

    bounds: Optional[tuple[Float[Array, " n"], Float[Array, " n"]]] = None
    args: Any = None

    def __check_init__(self):
        if self.bounds is not None:
            lower, upper = self.bounds
            if jnp.shape(lower) != jnp.shape(upper):
                raise ValueError("Lower and upper bounds must have the same shape.")
            if bool(jnp.any(jnp.asarray(lower) > jnp.asarray(upper))):
                raise ValueError("Lower bounds must not exceed upper bounds.")

    def _callable(self, capability: str) -> Callable:
        fn = {
            "cost": self.cost_fn,
            "gradient": self.grad_fn,
            "hessian": self.hessian_fn,
            "jacobian": self.jacobian_fn,
            "apply": self.apply_fn,
        }[capability]
        if fn is None:
            raise CapabilityNotImplemented(
                f"Problem has no {capability} function; supply one to use it."
            )
        return fn

    def has(self, capability: str) -> bool:
        """Return whether the problem can evaluate ``capability``."""
        try:
            self._callable(capability)
        except CapabilityNotImplemented:
            return False
        return True

    def with_autodiff(self) -> "Problem":
        """Return a copy whose missing derivatives are derived with JAX.

        The gradient and Hessian are derived from ``cost_fn`` and the
        Jacobian from ``apply_fn``. Supplied callables are kept, and the user
        functions must be traceable by JAX.
        """
        changes = {}
        if self.cost_fn is not None:
            if self.grad_fn is None:
                changes["grad_fn"] = grad_of(self.cost_fn)
            if self.hessian_fn is None:
                changes["hessian_fn"] = hessian_of(self.cost_fn)
        if self.apply_fn is not None and self.jacobian_fn is None:
            changes["jacobian_fn"] = jacobian_of(self.apply_fn)
        return dataclasses.replace(self, **changes)

    def check_capabilities(self, capabilities) -> None:
        """Raise `CapabilityNotImplemented` for the first missing capability."""
        unknown = set(capabilities) - CAPABILITIES
        if unknown:
            raise ValueError(f"Unknown capabilities: {sorted(unknown)}.")
        for capability in sorted(capabilities):
            self._callable(capability)

    def _evaluate(self, capability: str, param) -> Array:
        fn = self._callable(capability)
        y = jnp.asarray(param)
        try:
            value = fn(y, self.args)
        except EngineError:
            raise
        except Exception as exc:
            raise EvaluationError(
                f"The {capability} function raised {type(exc).__name__}: {exc}"
            ) from exc
        try:
            value = jnp.asarray(value)
        except (TypeError, ValueError) as exc:
            raise EvaluationError(
                f"The {capability} function returned a non-numeric value."
            ) from exc
        if not bool(jnp.all(jnp.isfinite(value))):
            raise EvaluationError(
                f"The {capability} function returned non-finite values at {y}."
            )
        return value

    def cost(self, param, state: State) -> tuple[float, State]:
        """Evaluate the objective at ``param``.

        Args:
            param: Point to evaluate.
            state: State of the current run.

        Returns:
            The cost as a Python float and the state with ``cost_count``
            incremented.
        """
        value = self._evaluate("cost", param)
        if value.ndim != 0:
            raise EvaluationError(
                f"The cost function must return a scalar, got shape {value.shape}."
            )
        return float(value), state.increment("cost_count")

    def gradient(self, param, state: State) -> tuple[Array, State]:
        """Evaluate the gradient at ``param``."""
        value = self._evaluate("gradient", param)
        if value.shape != jnp.shape(param):
            raise EvaluationError(
                f"The gradient has shape {value.shape}, expected {jnp.shape(param)}."
            )
        return value, state.increment("grad_count")

    def hessian(self, param, state: State) -> tuple[Array, State]:
        """Evaluate the Hessian at ``param``."""
        value = self._evaluate("hessian", param)
        n = jnp.size(param)
        if value.shape != (n, n):
            raise EvaluationError(
                f"The Hessian has shape {value.shape}, expected {(n, n)}."
            )
        return value, state.increment("hessian_count")

    def jacobian(self, param, state: State) -> tuple[Array, State]:
        """Evaluate the Jacobian at ``param``."""
        value = self._evaluate("jacobian", param)
        if value.ndim != 2:
            raise EvaluationError(
                f"The Jacobian must be a matrix, got shape {value.shape}."
            )
        return value, state.increment("jacobian_count")

    def apply(self, param, state: State) -> tuple[Array, State]:
        """Apply the operator at ``param``."""
        value = self._evaluate("apply", param)
        return value, state.increment("apply_count")

    def is_feasible(self, param) -> bool:
        """Check bounds and constraints at ``param``.

        Constraint evaluations are not counted. A constraint function that
        raises is reported as an `EvaluationError`.
        """
        y = jnp.asarray(param)
        if self.bounds is not None:
            lower, upper = self.bounds
            if bool(jnp.any(y < lower)) or bool(jnp.any(y > upper)):
                return False
        if self.constraint_fn is not None:
            try:
                values = jnp.asarray(self.constraint_fn(y, self.args))
            except Exception as exc:
                raise EvaluationError(
                    f"The constraint function raised {type(exc).__name__}: {exc}"
                ) from exc
            if not bool(jnp.all(values >= 0)):
                return False
        return True
