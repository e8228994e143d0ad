"""Checkpoints for resuming interrupted runs.

A checkpoint file starts with a single JSON header line identifying the
format version and the solver, followed by the ``(aux, state)`` pytree
written with `equinox.tree_serialise_leaves`. Arrays are stored with
`numpy.save` and Python scalars as 0-d arrays, so a loaded checkpoint is
bit-identical to the saved one. Loading needs a template pytree of the same
structure.
"""

import json
import logging
import os
import pathlib
import tempfile
from typing import Any, Union

import equinox as eqx

from iterax.errors import CheckpointError
from iterax.state import State

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class Checkpointing(eqx.Module):
    """Where and how often the executor writes checkpoints.

    Attributes:
        directory: Directory holding the checkpoint file.
        prefix: Checkpoint file name without suffix (default ``"checkpoint"``).
        frequency: Write a checkpoint every this many iterations; 0 disables
            periodic writes, leaving only explicit `Executor.save_checkpoint`.
    """

    directory: str = eqx.field(static=True, converter=str)
    prefix: str = eqx.field(static=True, default="checkpoint")
    frequency: int = eqx.field(static=True, default=1)

    def __check_init__(self):
        if self.frequency < 0:
            raise ValueError("Checkpoint frequency must be non-negative.")
        if not self.prefix:
            raise ValueError("Checkpoint prefix must not be empty.")

    @property
    def path(self) -> pathlib.Path:
        return pathlib.Path(self.directory) / f"{self.prefix}.eqx"

    def due(self, iteration: int) -> bool:
        """Whether a checkpoint should be written after ``iteration``."""
        return self.frequency > 0 and iteration % self.frequency == 0


def save_checkpoint(
    path: Union[str, pathlib.Path], solver_name: str, aux: Any, state: State
) -> None:
    """Atomically write a checkpoint.

    The checkpoint is written to a temporary file in the target directory
    and moved into place, so an interrupted write never corrupts an existing
    checkpoint.

    Args:
        path: Destination file.
        solver_name: Name of the solver that produced ``aux``.
        aux: The solver's auxiliary state.
        state: The run state.

    Raises:
        CheckpointError: If the file cannot be written.
    """
    path = pathlib.Path(path)
    header = json.dumps({"format": FORMAT_VERSION, "solver": solver_name})
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(header.encode("utf-8") + b"\n")
                eqx.tree_serialise_leaves(f, (aux, state))
            os.replace(tmp_name, path)
        except BaseException:
            pathlib.Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise CheckpointError(
            f"Could not write checkpoint {path}: {exc}", state=state
        ) from exc
    logger.debug("Wrote checkpoint %s at iteration %d", path, state.iter)


def read_header(path: Union[str, pathlib.Path]) -> dict:
    """Return the JSON header of the checkpoint at ``path``."""
    try:
        with open(path, "rb") as f:
            return _parse_header(f.readline(), path)
    except OSError as exc:
        raise CheckpointError(f"Could not read checkpoint {path}: {exc}") from exc


def _parse_header(line: bytes, path) -> dict:
    try:
        header = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CheckpointError(f"{path} is not an iterax checkpoint.") from exc
    if not isinstance(header, dict) or header.get("format") != FORMAT_VERSION:
        raise CheckpointError(
            f"Unsupported checkpoint format in {path}: {header!r}"
        )
    return header


def load_checkpoint(
    path: Union[str, pathlib.Path], solver_name: str, like: tuple[Any, State]
) -> tuple[Any, State]:
    """Read a checkpoint written by `save_checkpoint`.

    Args:
        path: Checkpoint file.
        solver_name: Name of the solver that will resume the run; it must
            match the name stored in the checkpoint.
        like: Template ``(aux, state)`` pytree with the structure, shapes and
            dtypes of the saved one.

    Returns:
        The saved ``(aux, state)``.

    Raises:
        CheckpointError: If the file is missing, malformed, written by another
            solver, or does not match the template.
    """
    try:
        with open(path, "rb") as f:
            header = _parse_header(f.readline(), path)
            if header.get("solver") != solver_name:
                raise CheckpointError(
                    f"Checkpoint {path} was written by solver "
                    f"{header.get('solver')!r}, not {solver_name!r}."
                )
            aux, state = eqx.tree_deserialise_leaves(f, like)
    except CheckpointError:
        raise
    except (OSError, ValueError, EOFError) as exc:
        raise CheckpointError(f"Could not read checkpoint {path}: {exc}") from exc
    logger.debug("Loaded checkpoint %s at iteration %d", path, state.iter)
    return aux, state
