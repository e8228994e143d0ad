"""Simulated annealing.

Each iteration proposes a random neighbour of the current point and accepts
it with the Metropolis rule: improvements are always accepted, and a worse
point with probability ``exp(-Δf / T)``. The temperature ``T`` decreases with
the annealing counter ``k`` according to one of the schedules

    fast:         T = T₀ / (k + 1)
    boltzmann:    T = T₀ / ln(k + 2)
    exponential:  T = T₀ · cooling^k

and the neighbourhood shrinks with it. Reannealing resets ``k`` to zero at a
fixed interval.
"""

import math
from typing import ClassVar

import equinox as eqx
import jax
import jax.numpy as jnp

from iterax.solver import AbstractSolver
from iterax.types import TerminationReason

TEMPERATURE_SCHEDULES = ("fast", "boltzmann", "exponential")


class SimulatedAnnealingState(eqx.Module):
    """Auxiliary state of `SimulatedAnnealing`.

    Attributes:
        key: PRNG key for the next iteration.
        k: Annealing counter driving the temperature schedule.
        temperature: Temperature used in the next iteration.
        accepted: Number of accepted proposals.
    """

    key: jax.Array
    k: int = 0
    temperature: float = 1.0
    accepted: int = 0


class SimulatedAnnealing(AbstractSolver):
    """Simulated annealing with Gaussian proposals.

    Proposals are ``x + step_scale * sqrt(T / T₀) * N(0, I)``, clipped to the
    problem bounds when they exist. Proposals violating the problem's
    constraints are rejected without evaluating the cost.

    Attributes:
        initial_temperature: Starting temperature ``T₀`` (default 1.0).
        temperature_schedule: ``"fast"`` (default), ``"boltzmann"`` or
            ``"exponential"``.
        cooling: Factor of the exponential schedule (default 0.95).
        step_scale: Proposal standard deviation at ``T₀`` (default 0.1).
        seed: Seed of the PRNG key (default 0).
        stall_best: Converge after this many iterations without a new best
            point; 0 disables the check.
        reanneal_every: Reset the annealing counter every this many
            iterations; 0 disables reannealing.
    """

    requires: ClassVar[frozenset[str]] = frozenset({"cost"})

    initial_temperature: float = 1.0
    temperature_schedule: str = eqx.field(static=True, default="fast")
    cooling: float = 0.95
    step_scale: float = 0.1
    seed: int = eqx.field(static=True, default=0)
    stall_best: int = eqx.field(static=True, default=0)
    reanneal_every: int = eqx.field(static=True, default=0)

    def __check_init__(self):
        if not self.initial_temperature > 0:
            raise ValueError("initial_temperature must be positive.")
        if self.temperature_schedule not in TEMPERATURE_SCHEDULES:
            raise ValueError(
                f"temperature_schedule must be one of {TEMPERATURE_SCHEDULES}, "
                f"got {self.temperature_schedule!r}."
            )
        if not 0 < self.cooling < 1:
            raise ValueError("cooling must be in (0, 1).")
        if not self.step_scale > 0:
            raise ValueError("step_scale must be positive.")
        if self.stall_best < 0 or self.reanneal_every < 0:
            raise ValueError("stall_best and reanneal_every must be non-negative.")

    def temperature(self, k: int) -> float:
        """Temperature after ``k`` annealing steps."""
        t0 = float(self.initial_temperature)
        if self.temperature_schedule == "fast":
            return t0 / (k + 1)
        if self.temperature_schedule == "boltzmann":
            return t0 / math.log(k + 2)
        return t0 * float(self.cooling) ** k

    def init(self, problem, state):
        cost, state = self._init_cost(problem, state)
        aux = SimulatedAnnealingState(
            key=jax.random.PRNGKey(self.seed),
            temperature=self.temperature(0),
        )
        return state.replace(cost=cost), aux

    def _propose(self, problem, param, temperature, key):
        scale = float(self.step_scale) * math.sqrt(
            temperature / float(self.initial_temperature)
        )
        noise = jax.random.normal(key, jnp.shape(param), dtype=param.dtype)
        proposal = param + scale * noise
        if problem.bounds is not None:
            lower, upper = problem.bounds
            proposal = jnp.clip(proposal, lower, upper)
        return proposal

    def step(self, problem, state, aux):
        key, prop_key, accept_key = jax.random.split(aux.key, 3)
        temperature = aux.temperature
        proposal = self._propose(problem, state.param, temperature, prop_key)

        accepted = aux.accepted
        if problem.is_feasible(proposal):
            new_cost, state = problem.cost(proposal, state)
            delta = new_cost - state.cost
            if delta <= 0:
                accept = True
            else:
                u = float(jax.random.uniform(accept_key))
                accept = u < math.exp(-delta / temperature)
            if accept:
                state = state.replace(param=proposal, cost=new_cost)
                accepted += 1

        k = aux.k + 1
        if self.reanneal_every > 0 and (state.iter + 1) % self.reanneal_every == 0:
            k = 0

        return state, SimulatedAnnealingState(
            key=key, k=k, temperature=self.temperature(k), accepted=accepted
        )

    def terminate(self, state, aux):
        if self.stall_best > 0 and state.iter - state.last_best_iter >= self.stall_best:
            return TerminationReason.SOLVER_CONVERGED
        return None
