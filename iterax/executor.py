"""The executor: the loop that drives a solver over a problem.

An `Executor` owns the `State` of one run. It initializes the solver,
performs iterations until the solver or the termination policy produces a
termination reason, keeps track of the best point and the elapsed time,
notifies observers and writes checkpoints. Solvers only implement single
iterations; everything that is common to all of them lives here.

The executor is a small state machine::

    READY ──run()──> RUNNING ──reason──> TERMINATED
                        │
                        └──error──> FAILED

`TERMINATED` and `FAILED` are absorbing: calling `run` again raises
`AlreadyFinished`.
"""

import contextlib
import logging
import pathlib
import signal
import threading
import time
from typing import Any, NamedTuple, Optional, Union

from iterax.checkpoint import (
    Checkpointing,
    load_checkpoint,
    read_header,
    save_checkpoint,
)
from iterax.errors import (
    AlgorithmError,
    AlreadyFinished,
    CheckpointError,
    EngineError,
    InitializationError,
)
from iterax.observers import Observers
from iterax.problem import Problem
from iterax.solver import AbstractSolver
from iterax.state import State, initial_state
from iterax.termination import TerminationPolicy
from iterax.types import TerminationReason

logger = logging.getLogger(__name__)


class ExecutorStatus:
    """Constants for the lifecycle of an `Executor`."""

    READY = "ready"
    RUNNING = "running"
    TERMINATED = "terminated"
    FAILED = "failed"


class RunResult(NamedTuple):
    """Outcome of a terminated run.

    Attributes:
        state: Final state of the run.
        termination_reason: The `TerminationReason` that stopped the run.
        solver_name: Name of the solver that was run.
        detail: Additional information on the termination reason.
    """

    state: State
    termination_reason: int
    solver_name: str
    detail: str = ""

    @property
    def best_param(self):
        return self.state.best_param

    @property
    def best_cost(self) -> float:
        return self.state.best_cost

    @property
    def iterations(self) -> int:
        return self.state.iter

    @property
    def message(self) -> str:
        message = TerminationReason.describe(self.termination_reason)
        if self.detail:
            message = f"{message} ({self.detail})"
        return message


class Executor:
    """Run a solver on a problem.

    Args:
        solver: The solver to run.
        problem: The problem to minimize.
        init_param: Initial parameter vector.
        max_iters: Maximum number of iterations; 0 means unbounded.
        policy: Termination criteria (default: none besides ``max_iters``).
        observers: Observers notified during the run.
        checkpointing: Where and how often to write checkpoints. If the
            checkpoint file already exists when the run starts, the run
            resumes from it.
        abort_event: Event polled before every iteration; setting it aborts
            the run. A private event is created if none is given.
        handle_interrupts: Abort the run on SIGINT (Ctrl-C) instead of
            raising `KeyboardInterrupt`. Only effective in the main thread.

    Example:
        >>> import jax.numpy as jnp
        >>> from iterax import Executor, GradientDescent, Problem
        >>>
        >>> problem = Problem(
        ...     cost_fn=lambda x, args: jnp.sum(x**2),
        ...     grad_fn=lambda x, args: 2.0 * x,
        ... )
        >>> executor = Executor(GradientDescent(), problem, jnp.ones(2),
        ...                     max_iters=100)
        >>> result = executor.run()
        >>> result.message
        'Solver converged.'
    """

    def __init__(
        self,
        solver: AbstractSolver,
        problem: Problem,
        init_param,
        *,
        max_iters: int = 0,
        policy: Optional[TerminationPolicy] = None,
        observers: Optional[Observers] = None,
        checkpointing: Optional[Checkpointing] = None,
        abort_event: Optional[threading.Event] = None,
        handle_interrupts: bool = False,
    ) -> None:
        self.solver = solver
        self.problem = problem
        self.policy = policy if policy is not None else TerminationPolicy()
        self.observers = observers if observers is not None else Observers()
        self.checkpointing = checkpointing
        self.handle_interrupts = handle_interrupts
        self._abort_event = (
            abort_event if abort_event is not None else threading.Event()
        )
        self._max_iters = max_iters
        self._state = initial_state(init_param, max_iters)
        self._aux: Any = None
        self._initialized = False
        self.status = ExecutorStatus.READY

        # Wall-clock bookkeeping of the current run() call
        self._started_at = 0.0
        self._elapsed_before = 0.0

    @property
    def state(self) -> State:
        """The last good state of the run."""
        return self._state

    @property
    def aux(self) -> Any:
        """The solver's auxiliary state, ``None`` before initialization."""
        return self._aux

    def abort(self) -> None:
        """Request the run to stop before its next iteration."""
        self._abort_event.set()

    def run(self) -> RunResult:
        """Run the solver until a termination reason is produced.

        Returns:
            The `RunResult` of the terminated run.

        Raises:
            AlreadyFinished: If the executor already terminated or failed.
            EngineError: If the run failed; its ``state`` attribute holds the
                last good state.
        """
        if self.status in (ExecutorStatus.TERMINATED, ExecutorStatus.FAILED):
            raise AlreadyFinished(
                f"The executor has already {self.status}.", state=self._state
            )
        if self.status == ExecutorStatus.RUNNING:
            raise EngineError("The executor is already running.", state=self._state)

        self.status = ExecutorStatus.RUNNING
        self._started_at = time.perf_counter()
        self._elapsed_before = self._state.time_elapsed
        logger.info("Running %s", self.solver.name)
        try:
            with self._interrupt_guard():
                result = self._run()
        except EngineError as exc:
            self.status = ExecutorStatus.FAILED
            exc.state = self._state
            logger.error(
                "%s failed at iteration %d: %s",
                self.solver.name,
                self._state.iter,
                exc,
            )
            raise
        except BaseException:
            self.status = ExecutorStatus.FAILED
            raise
        self.status = ExecutorStatus.TERMINATED
        logger.info(
            "%s terminated after %d iterations: %s Best cost %.6g.",
            result.solver_name,
            result.iterations,
            result.message,
            result.best_cost,
        )
        return result

    @contextlib.contextmanager
    def _interrupt_guard(self):
        if (
            not self.handle_interrupts
            or threading.current_thread() is not threading.main_thread()
        ):
            yield
            return

        def handler(signum, frame):
            logger.warning("Interrupt received, aborting after this iteration.")
            self._abort_event.set()

        previous = signal.signal(signal.SIGINT, handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, previous)

    def _clock(self, state: State) -> State:
        elapsed = time.perf_counter() - self._started_at
        return state.replace(time_elapsed=self._elapsed_before + elapsed)

    def _commit(self, state: State, aux: Any) -> None:
        self._state = state
        self._aux = aux

    def _initialize(self) -> Optional[int]:
        try:
            state, aux = self.solver.init(self.problem, self._state)
        except EngineError:
            raise
        except Exception as exc:
            raise InitializationError(
                f"{self.solver.name}.init raised {type(exc).__name__}: {exc}"
            ) from exc
        state, _ = self._clock(state).update_best()
        state = self.policy.track(state)
        self._commit(state, aux)
        self._initialized = True
        self.observers.observe_init(self.solver.name, state)
        return self._check(state, aux)

    def _check(self, state: State, aux: Any) -> Optional[int]:
        try:
            solver_reason = self.solver.terminate(state, aux)
        except EngineError:
            raise
        except Exception as exc:
            raise AlgorithmError(
                f"{self.solver.name}.terminate raised {type(exc).__name__}: {exc}"
            ) from exc
        return self.policy.check(state, solver_reason)

    def _iterate(self, state: State, aux: Any) -> tuple[State, Any, bool]:
        try:
            state, aux = self.solver.step(self.problem, state, aux)
        except EngineError:
            raise
        except Exception as exc:
            raise AlgorithmError(
                f"{self.solver.name}.step raised {type(exc).__name__}: {exc}"
            ) from exc
        state = self._clock(state.replace(iter=state.iter + 1))
        state, new_best = state.update_best()
        state = self.policy.track(state)
        logger.debug(
            "%s iter %d: cost %.6g, best %.6g",
            self.solver.name,
            state.iter,
            state.cost,
            state.best_cost,
        )
        return state, aux, new_best

    def _run(self) -> RunResult:
        self.problem.check_capabilities(self.solver.requires)
        if not self._initialized and self._checkpoint_exists():
            logger.info("Resuming from checkpoint %s", self.checkpointing.path)
            self._restore(self.checkpointing.path)
            self.observers.observe_init(self.solver.name, self._state)
            if self._state.terminated:
                reason = self._state.termination_status
            else:
                reason = self._check(self._state, self._aux)
        elif not self._initialized:
            reason = self._initialize()
        else:
            self.observers.observe_init(self.solver.name, self._state)
            reason = self._check(self._state, self._aux)

        state, aux = self._state, self._aux
        new_best = False
        while reason is None:
            if self._abort_event.is_set():
                reason = TerminationReason.ABORTED
                break
            state, aux, new_best = self._iterate(state, aux)
            self._commit(state, aux)
            # Checkpoints hold running states so that a resumed run can
            # continue with a larger max_iters.
            self._maybe_checkpoint()
            reason = self._check(state, aux)
            if reason is None:
                self.observers.notify(state, new_best=new_best)

        state = self._clock(state).terminate(reason)
        self._commit(state, aux)
        self.observers.notify(state, new_best=new_best, final=True)
        return RunResult(
            state=state,
            termination_reason=reason,
            solver_name=self.solver.name,
            detail=self._detail(reason),
        )

    def _detail(self, reason: int) -> str:
        if reason == TerminationReason.NO_CHANGE_IN_COST:
            return (
                f"best cost improved by at most {self.policy.no_change_epsilon} "
                f"in the last {self.policy.no_change_window} iterations"
            )
        if reason == TerminationReason.MAX_ITERATIONS:
            return f"max_iters={self._state.max_iters}"
        return ""

    # Checkpointing

    def _checkpoint_exists(self) -> bool:
        return self.checkpointing is not None and self.checkpointing.path.exists()

    def _maybe_checkpoint(self) -> None:
        if self.checkpointing is not None and self.checkpointing.due(
            self._state.iter
        ):
            self.save_checkpoint()

    def _resolve(self, path) -> pathlib.Path:
        if path is not None:
            return pathlib.Path(path)
        if self.checkpointing is None:
            raise ValueError("No checkpoint path given and no checkpointing set.")
        return self.checkpointing.path

    def save_checkpoint(self, path: Union[str, pathlib.Path, None] = None) -> None:
        """Write the current solver and run state to a checkpoint.

        Args:
            path: Checkpoint file (default: the configured checkpointing path).

        Raises:
            CheckpointError: If the solver has not been initialized yet or the
                file cannot be written.
        """
        if not self._initialized:
            raise CheckpointError(
                "Nothing to checkpoint before the solver is initialized.",
                state=self._state,
            )
        save_checkpoint(self._resolve(path), self.solver.name, self._aux, self._state)

    def load_checkpoint(self, path: Union[str, pathlib.Path, None] = None) -> None:
        """Restore the solver and run state from a checkpoint.

        Loading is possible in any status but RUNNING. A checkpoint of a
        terminated run leaves the executor terminated; a terminated or failed
        executor stays so whatever the checkpoint holds.

        Args:
            path: Checkpoint file (default: the configured checkpointing path).

        Raises:
            CheckpointError: If the checkpoint cannot be read or was written
                by a different solver.
            EngineError: If the executor is running.
        """
        if self.status == ExecutorStatus.RUNNING:
            raise EngineError(
                "Cannot load a checkpoint into a running executor.",
                state=self._state,
            )
        self._restore(self._resolve(path))
        if self._state.terminated:
            self.status = ExecutorStatus.TERMINATED

    def _restore(self, path: pathlib.Path) -> None:
        saved_by = read_header(path).get("solver")
        if saved_by != self.solver.name:
            raise CheckpointError(
                f"Checkpoint {path} was written by solver {saved_by!r}, "
                f"not {self.solver.name!r}.",
                state=self._state,
            )
        if self._initialized:
            like = (self._aux, self._state)
        else:
            # The solver's init builds a template with the right structure.
            # Its evaluations only count towards the discarded template state.
            template_state, template_aux = self.solver.init(
                self.problem, initial_state(self._state.param, self._max_iters)
            )
            like = (template_aux, template_state)
        aux, state = load_checkpoint(path, self.solver.name, like)
        if state.max_iters != self._max_iters:
            state = state.replace(max_iters=self._max_iters)
        self._commit(state, aux)
        self._initialized = True
        # Time spent before the checkpoint keeps counting towards max_time
        self._elapsed_before = state.time_elapsed


def minimise(
    solver: AbstractSolver, problem: Problem, init_param, **kwargs
) -> RunResult:
    """Run ``solver`` on ``problem`` from ``init_param`` in a fresh executor.

    Keyword arguments are passed on to `Executor`.
    """
    return Executor(solver, problem, init_param, **kwargs).run()
