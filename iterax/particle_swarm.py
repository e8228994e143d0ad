"""Particle swarm optimization.

A population of particles moves through the box given by the problem bounds.
Each particle is pulled towards its own best position and towards the best
position found by the whole swarm:

    v ← w v + c₁ r₁ (p_best - x) + c₂ r₂ (g_best - x)
    x ← clip(x + v, lower, upper)

where ``r₁``, ``r₂`` are uniform random numbers drawn per particle and per
coordinate. The swarm never signals convergence on its own; combine it with
``max_iters`` or a termination policy.
"""

from typing import ClassVar

import equinox as eqx
import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from iterax.errors import InitializationError
from iterax.solver import AbstractSolver


class ParticleSwarmState(eqx.Module):
    """Auxiliary state of `ParticleSwarm`.

    Attributes:
        positions: Particle positions, shape (population_size, n).
        velocities: Particle velocities, shape (population_size, n).
        best_positions: Best position visited by each particle.
        best_costs: Cost at each particle's best position.
        key: PRNG key for the next iteration.
    """

    positions: Float[Array, "p n"]
    velocities: Float[Array, "p n"]
    best_positions: Float[Array, "p n"]
    best_costs: Float[Array, " p"]
    key: Array


@jaxtyped(typechecker=beartype)
def update_velocities(
    velocities: Float[Array, "p n"],
    positions: Float[Array, "p n"],
    best_positions: Float[Array, "p n"],
    swarm_best: Float[Array, " n"],
    r1: Float[Array, "p n"],
    r2: Float[Array, "p n"],
    inertia: float,
    cognitive: float,
    social: float,
) -> Float[Array, "p n"]:
    """Standard inertia-weight velocity update."""
    return (
        inertia * velocities
        + cognitive * r1 * (best_positions - positions)
        + social * r2 * (swarm_best[None, :] - positions)
    )


class ParticleSwarm(AbstractSolver):
    """Global-best particle swarm optimizer.

    The initial parameter becomes the first particle; the remaining particles
    are drawn uniformly inside the problem bounds, which are required.

    Attributes:
        population_size: Number of particles (default 40).
        seed: Seed of the PRNG key (default 0).
        inertia: Inertia weight ``w`` (default 0.7).
        cognitive: Attraction towards a particle's own best ``c₁`` (default 1.5).
        social: Attraction towards the swarm best ``c₂`` (default 1.5).
    """

    population_size: int = eqx.field(static=True, default=40)
    seed: int = eqx.field(static=True, default=0)
    inertia: float = 0.7
    cognitive: float = 1.5
    social: float = 1.5

    requires: ClassVar[frozenset[str]] = frozenset({"cost"})

    def __check_init__(self):
        if self.population_size < 1:
            raise ValueError("population_size must be at least 1.")
        if self.inertia < 0 or self.cognitive < 0 or self.social < 0:
            raise ValueError("inertia, cognitive and social must be non-negative.")

    def _evaluate_all(self, problem, positions, state):
        costs = []
        for position in positions:
            cost, state = problem.cost(position, state)
            costs.append(cost)
        return jnp.asarray(costs, dtype=positions.dtype), state

    def init(self, problem, state):
        if problem.bounds is None:
            raise InitializationError("ParticleSwarm requires problem bounds.")
        if jnp.ndim(state.param) != 1:
            raise InitializationError(
                "ParticleSwarm requires a one-dimensional parameter vector."
            )
        if not problem.is_feasible(state.param):
            raise InitializationError(
                f"{self.name}: the initial parameter {state.param} is infeasible."
            )

        lower, upper = (
            jnp.asarray(b, dtype=state.param.dtype) for b in problem.bounds
        )
        n = state.param.shape[0]
        shape = (self.population_size - 1, n)
        key, pos_key, vel_key = jax.random.split(jax.random.PRNGKey(self.seed), 3)
        others = jax.random.uniform(
            pos_key, shape, dtype=state.param.dtype, minval=lower, maxval=upper
        )
        positions = jnp.concatenate([state.param[None, :], others], axis=0)
        span = upper - lower
        velocities = jax.random.uniform(
            vel_key,
            (self.population_size, n),
            dtype=state.param.dtype,
            minval=-span,
            maxval=span,
        )

        costs, state = self._evaluate_all(problem, positions, state)
        best = int(jnp.argmin(costs))
        state = state.replace(param=positions[best], cost=float(costs[best]))
        return state, ParticleSwarmState(
            positions=positions,
            velocities=velocities,
            best_positions=positions,
            best_costs=costs,
            key=key,
        )

    def step(self, problem, state, aux):
        lower, upper = (
            jnp.asarray(b, dtype=aux.positions.dtype) for b in problem.bounds
        )
        key, k1, k2 = jax.random.split(aux.key, 3)
        shape = aux.positions.shape
        r1 = jax.random.uniform(k1, shape, dtype=aux.positions.dtype)
        r2 = jax.random.uniform(k2, shape, dtype=aux.positions.dtype)
        swarm_best = aux.best_positions[jnp.argmin(aux.best_costs)]

        velocities = update_velocities(
            aux.velocities,
            aux.positions,
            aux.best_positions,
            swarm_best,
            r1,
            r2,
            float(self.inertia),
            float(self.cognitive),
            float(self.social),
        )
        positions = jnp.clip(aux.positions + velocities, lower, upper)
        costs, state = self._evaluate_all(problem, positions, state)

        improved = costs < aux.best_costs
        best_positions = jnp.where(improved[:, None], positions, aux.best_positions)
        best_costs = jnp.where(improved, costs, aux.best_costs)

        best = int(jnp.argmin(best_costs))
        state = state.replace(
            param=best_positions[best], cost=float(best_costs[best])
        )
        return state, ParticleSwarmState(
            positions=positions,
            velocities=velocities,
            best_positions=best_positions,
            best_costs=best_costs,
            key=key,
        )
