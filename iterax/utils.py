from typing import Callable, TypeVar

import jax
import jax.numpy as jnp

T = TypeVar("T")


def args_closure(
    fn: Callable[[jax.Array, T], jax.Array], args: T
) -> Callable[[jax.Array], jax.Array]:
    def wrapped(x: jax.Array) -> jax.Array:
        return fn(x, args)

    return wrapped


def grad_of(cost_fn: Callable) -> Callable:
    """Gradient function of ``cost_fn`` computed with ``jax.grad``."""

    def grad_fn(x, args):
        return jax.grad(args_closure(cost_fn, args))(x)

    return grad_fn


def hessian_of(cost_fn: Callable) -> Callable:
    """Hessian function of ``cost_fn`` computed with ``jax.hessian``."""

    def hessian_fn(x, args):
        return jax.hessian(args_closure(cost_fn, args))(x)

    return hessian_fn


def jacobian_of(apply_fn: Callable) -> Callable:
    """Jacobian function of ``apply_fn`` computed with ``jax.jacrev``."""

    def jacobian_fn(x, args):
        return jax.jacrev(args_closure(apply_fn, args))(x)

    return jacobian_fn


def with_aux(cost_fn: Callable) -> Callable:
    """Wrap ``cost_fn`` into the ``fn(y, args) -> (f, aux)`` form of optimistix."""

    def fn(y, args):
        return jnp.asarray(cost_fn(y, args)), None

    return fn
