"""Type definitions for iterax.

This module contains type aliases for the user-supplied callables and the
termination codes shared by the solvers, the termination policy and the
executor. Array types use jaxtyping so that pure numerical helpers can be
checked at runtime with beartype.
"""

from collections.abc import Callable
from typing import Any

from jaxtyping import Array, Float

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]
Matrix = Float[Array, "m n"]

# Objective function type: cost_fn(x, args) -> f(x)
CostFn = Callable[[Vector, Any], Scalar]

# Gradient function type: grad_fn(x, args) -> ∇f(x)
GradFn = Callable[[Vector, Any], Vector]

# Hessian function type: hessian_fn(x, args) -> ∇²f(x), shape (n, n)
HessianFn = Callable[[Vector, Any], Float[Array, "n n"]]

# Jacobian function type: jacobian_fn(x, args) -> J(x) where J[i, j] = dr_i/dx_j
JacobianFn = Callable[[Vector, Any], Matrix]

# Operator application: apply_fn(x, args) -> A(x), e.g. residuals
ApplyFn = Callable[[Vector, Any], Float[Array, " m"]]

# Feasibility constraints: constraint_fn(x, args) >= 0 means feasible
ConstraintFn = Callable[[Vector, Any], Float[Array, " m"]]


class TerminationReason:
    """Constants for the reason a run stopped.

    The codes are plain integers so that the termination status can be
    stored in a ``State`` and written to a checkpoint like any other leaf.
    """

    NOT_TERMINATED = 0
    MAX_ITERATIONS = 1
    MAX_TIME = 2
    TARGET_COST = 3
    NO_CHANGE_IN_COST = 4
    SOLVER_CONVERGED = 5
    ABORTED = 6

    _MESSAGES = {
        NOT_TERMINATED: "Not terminated.",
        MAX_ITERATIONS: "Maximum number of iterations reached.",
        MAX_TIME: "Maximum run time exceeded.",
        TARGET_COST: "Target cost reached.",
        NO_CHANGE_IN_COST: "No change in cost.",
        SOLVER_CONVERGED: "Solver converged.",
        ABORTED: "Run aborted.",
    }

    @classmethod
    def describe(cls, code: int) -> str:
        """Return a human readable message for a termination code."""
        try:
            return cls._MESSAGES[code]
        except KeyError:
            raise ValueError(f"Unknown termination code: {code!r}") from None

    @classmethod
    def is_terminated(cls, code: int) -> bool:
        return code != cls.NOT_TERMINATED


# Problem capabilities a solver can require
CAPABILITIES = frozenset({"cost", "gradient", "hessian", "jacobian", "apply"})
