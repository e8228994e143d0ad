"""iterax: a pluggable numerical optimization framework in JAX.

A `Problem` wraps the objective and its optional derivatives, a solver
implements single iterations of an algorithm, and the `Executor` drives the
solver, enforces termination criteria, notifies observers and writes
checkpoints. Any optimistix minimiser can be run through the
`OptimistixMinimiser` adapter.
"""

import logging

from iterax.checkpoint import Checkpointing, load_checkpoint, save_checkpoint
from iterax.conjugate_gradient import NonlinearConjugateGradient
from iterax.errors import (
    AlgorithmError,
    AlreadyFinished,
    CapabilityNotImplemented,
    CheckpointError,
    EngineError,
    EvaluationError,
    InitializationError,
    ObserverError,
)
from iterax.executor import Executor, ExecutorStatus, RunResult, minimise
from iterax.gradient_descent import GradientDescent
from iterax.linesearch import (
    AbstractLineSearch,
    BacktrackingLineSearch,
    LineSearchResult,
    MoreThuenteLineSearch,
)
from iterax.newton import Newton
from iterax.observers import (
    HistoryObserver,
    LoggingObserver,
    Observer,
    Observers,
    ParamWriter,
)
from iterax.optimistix_adapter import OptimistixMinimiser
from iterax.particle_swarm import ParticleSwarm
from iterax.problem import Problem
from iterax.simulated_annealing import SimulatedAnnealing
from iterax.solver import AbstractSolver
from iterax.state import State, initial_state
from iterax.termination import DEFAULT_PRIORITY, TerminationPolicy
from iterax.types import TerminationReason

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Engine
    "Executor",
    "ExecutorStatus",
    "RunResult",
    "minimise",
    "Problem",
    "State",
    "initial_state",
    "TerminationPolicy",
    "TerminationReason",
    "DEFAULT_PRIORITY",
    # Solvers
    "AbstractSolver",
    "GradientDescent",
    "Newton",
    "NonlinearConjugateGradient",
    "ParticleSwarm",
    "SimulatedAnnealing",
    "OptimistixMinimiser",
    # Line searches
    "AbstractLineSearch",
    "BacktrackingLineSearch",
    "MoreThuenteLineSearch",
    "LineSearchResult",
    # Observers
    "Observer",
    "Observers",
    "LoggingObserver",
    "HistoryObserver",
    "ParamWriter",
    # Checkpointing
    "Checkpointing",
    "save_checkpoint",
    "load_checkpoint",
    # Errors
    "EngineError",
    "CapabilityNotImplemented",
    "EvaluationError",
    "InitializationError",
    "AlgorithmError",
    "ObserverError",
    "AlreadyFinished",
    "CheckpointError",
]
