"""
errors.py

Error taxonomy for geopipe. Every failure the package reports carries an
`ErrorKind` so callers can tell construction problems from run-time ones.

- construction / build time errors are raised to the caller
- run time step errors are raised inside `Pipeline.run` and turned into a
  `StepFailure` there
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MALFORMED_GEOMETRY = 'MalformedGeometry'
    INVALID_OPERATION_PARAMETERS = 'InvalidOperationParameters'
    UNSUPPORTED_CAST = 'UnsupportedCast'
    ENGINE_FAILURE = 'EngineFailure'
    MISSING_CRS = 'MissingCrs'
    CRS_MISMATCH = 'CrsMismatch'


class GeoPipeError(Exception):
    """Base error. `kind` is fixed per subclass; `step_index` is filled in
    once the failing pipeline step is known."""

    kind: ErrorKind = ErrorKind.ENGINE_FAILURE

    def __init__(self, message: str, step_index: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.step_index = step_index

    def at_step(self, step_index: int) -> 'GeoPipeError':
        if self.step_index is None:
            self.step_index = step_index
        return self

    def __str__(self) -> str:
        if self.step_index is None:
            return f'{self.kind.value}: {self.message}'
        return f'{self.kind.value} at step {self.step_index}: {self.message}'


class MalformedGeometryError(GeoPipeError):
    kind = ErrorKind.MALFORMED_GEOMETRY


class InvalidOperationParametersError(GeoPipeError):
    kind = ErrorKind.INVALID_OPERATION_PARAMETERS


class UnsupportedCastError(GeoPipeError):
    kind = ErrorKind.UNSUPPORTED_CAST


class EngineFailureError(GeoPipeError):
    kind = ErrorKind.ENGINE_FAILURE


class MissingCrsError(GeoPipeError):
    kind = ErrorKind.MISSING_CRS


class CrsMismatchError(GeoPipeError):
    kind = ErrorKind.CRS_MISMATCH
