"""
pipeline.py

A `Pipeline` is a named, ordered, immutable sequence of operations.

Build time: every step must be an `Operation`, and every value-table
reference (BooleanOp operand, Recall index) must point at a slot that exists
by the time the step runs. Slot 0 is the run input and slot ``i + 1`` the
output of step ``i``, so step ``p`` may read slots ``0..p``. Violations raise
`InvalidOperationParametersError` from the constructor.

Run time: `Pipeline.run(value)` executes the steps strictly in order. The
first failing step ends the run; the result then holds only a `StepFailure`
(step index and error kind), never the intermediate geometries.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple
import logging

from geopipe.engine import GeometryEngine, default_engine
from geopipe.errors import (ErrorKind, GeoPipeError, InvalidOperationParametersError,
                            CrsMismatchError, EngineFailureError, MalformedGeometryError,
                            MissingCrsError, UnsupportedCastError)
from geopipe.geometry import GeometryValue
from geopipe.operations import Operation, operation_from_dict

logger = logging.getLogger(__name__)

_ERRORS_BY_KIND = {cls.kind: cls for cls in (
    MalformedGeometryError, InvalidOperationParametersError, UnsupportedCastError,
    EngineFailureError, MissingCrsError, CrsMismatchError,
)}


@dataclass(frozen=True)
class StepFailure:
    """Why a run failed. `step_index` is None when the input itself was bad."""

    kind: ErrorKind
    message: str
    step_index: Optional[int] = None

    @classmethod
    def from_error(cls, err: GeoPipeError) -> 'StepFailure':
        return cls(kind=err.kind, message=err.message, step_index=err.step_index)

    def to_error(self) -> GeoPipeError:
        return _ERRORS_BY_KIND[self.kind](self.message, step_index=self.step_index)

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind.value, 'message': self.message, 'step_index': self.step_index}


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one (pipeline, input) run: a geometry or a failure."""

    pipeline: str
    geometry: Optional[GeometryValue] = None
    failure: Optional[StepFailure] = None

    def __post_init__(self):
        if (self.geometry is None) == (self.failure is None):
            raise ValueError('ExecutionResult holds exactly one of geometry or failure')

    @classmethod
    def failed(cls, pipeline: str, err: GeoPipeError) -> 'ExecutionResult':
        return cls(pipeline, failure=StepFailure.from_error(err))

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> GeometryValue:
        """Return the geometry or raise the recorded error."""
        if self.failure is not None:
            raise self.failure.to_error()
        return self.geometry

    def to_dict(self) -> Dict[str, Any]:
        if self.failure is not None:
            return {'pipeline': self.pipeline, 'ok': False, 'error': self.failure.to_dict()}
        return {'pipeline': self.pipeline, 'ok': True,
                'geometry': self.geometry.to_mapping(), 'crs': self.geometry.crs}


class Pipeline:
    """Named, validated sequence of operations. Safe to run repeatedly and
    from several threads; a run keeps all of its state locally."""

    def __init__(self, name: str, steps: Iterable[Operation]):
        if not isinstance(name, str) or not name:
            raise InvalidOperationParametersError(f'pipeline name must be a non-empty string, got {name!r}')
        self._name = name
        self._steps: Tuple[Operation, ...] = tuple(steps)
        self._validate()

    def _validate(self) -> None:
        for pos, step in enumerate(self._steps):
            if not isinstance(step, Operation):
                raise InvalidOperationParametersError(
                    f'step {pos} is not an operation: {step!r}', step_index=pos)
            for ref in step.references():
                if ref > pos:
                    raise InvalidOperationParametersError(
                        f'step {pos} ({step.op}) references slot {ref}, but only slots 0..{pos} '
                        f'exist when it runs', step_index=pos)

    # -- introspection -----------------------------------------------------
    @property
    def name(self) -> str:
        return self._name

    @property
    def steps(self) -> Tuple[Operation, ...]:
        return self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._steps)

    def __repr__(self):
        ops = ', '.join(s.op for s in self._steps)
        return f'Pipeline({self._name!r}, [{ops}])'

    def __eq__(self, other):
        if not isinstance(other, Pipeline):
            return NotImplemented
        return self._name == other._name and self._steps == other._steps

    def __hash__(self):
        return hash((self._name, self._steps))

    # -- configuration -----------------------------------------------------
    @classmethod
    def from_config(cls, doc: Mapping[str, Any]) -> 'Pipeline':
        """Build from ``{"name": ..., "steps": [descriptor, ...]}``."""
        if not isinstance(doc, Mapping):
            raise InvalidOperationParametersError(f'pipeline document must be a mapping, got {type(doc).__name__}')
        steps = doc.get('steps')
        if not isinstance(steps, list):
            raise InvalidOperationParametersError('pipeline document needs a "steps" list')
        ops = []
        for pos, descriptor in enumerate(steps):
            try:
                ops.append(operation_from_dict(descriptor))
            except GeoPipeError as e:
                raise e.at_step(pos)
        return cls(doc.get('name', 'pipeline'), ops)

    def to_config(self) -> Dict[str, Any]:
        return {'name': self._name, 'steps': [s.to_dict() for s in self._steps]}

    # -- execution ---------------------------------------------------------
    def run(self, value: GeometryValue, engine: Optional[GeometryEngine] = None) -> ExecutionResult:
        """Run every step against `value`; one complete result or one failure."""
        if not isinstance(value, GeometryValue):
            raise TypeError(f'Pipeline.run expects a GeometryValue, got {type(value).__name__}')
        engine = engine or default_engine()
        table = [value]
        current = value
        for pos, step in enumerate(self._steps):
            try:
                current = step.apply(current, table, engine)
            except GeoPipeError as e:
                e.at_step(pos)
                logger.debug('pipeline %r failed at step %d (%s): %s', self._name, pos, step.op, e)
                return ExecutionResult.failed(self._name, e)
            logger.debug('pipeline %r step %d (%s) -> %s', self._name, pos, step.op, current.geom_type.value)
            table.append(current)
        return ExecutionResult(self._name, geometry=current)
