"""
operations.py

Pipeline steps. Each step is a frozen dataclass holding its parameters;
parameters are coerced and checked when the step is built, so a bad
configuration fails with `InvalidOperationParametersError` before any
geometry work starts.

Every step implements:
- `apply(current, table, engine)` -> GeometryValue
- `references()` -> value-table slots the step reads besides `current`
- `to_dict()` -> the declarative descriptor the step was (or could be) built from

The value table of a run holds the input at slot 0 and the output of step
``i`` at slot ``i + 1``.

`operation_from_dict` builds a step from a descriptor such as
``{"op": "buffer", "distance": 2, "segments_per_quadrant": 8}``.
"""
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Tuple

from affine import Affine

from geopipe import config
from geopipe.engine import BooleanKind, GeometryEngine
from geopipe.errors import (CrsMismatchError, GeoPipeError, InvalidOperationParametersError,
                            MissingCrsError)
from geopipe.geometry import GeometryType, GeometryValue
from geopipe.utils import as_bool, as_float, as_int


__all__ = [
    'Operation', 'Simplify', 'Buffer', 'Centroid', 'PointOnSurface', 'AffineTransform',
    'BooleanOp', 'BooleanKind', 'Cast', 'Smooth', 'SetCrs', 'Literal', 'Recall',
    'operation_from_dict',
]


def _require_crs(step: str, value: GeometryValue) -> None:
    if value.crs is None:
        raise MissingCrsError(f'{step} is distance based and needs a CRS; attach one with SetCrs')


def _set(obj, name, value):
    object.__setattr__(obj, name, value)


def _origin(op: str, value) -> Tuple[float, float]:
    try:
        ox, oy = value
    except (TypeError, ValueError) as e:
        raise InvalidOperationParametersError(f'{op}.origin must be an (x, y) pair, got {value!r}') from e
    return as_float(f'{op}.origin', ox), as_float(f'{op}.origin', oy)


class Operation:
    """Base class for pipeline steps."""

    op: ClassVar[str] = ''

    def apply(self, current: GeometryValue, table: Sequence[GeometryValue],
              engine: GeometryEngine) -> GeometryValue:
        raise NotImplementedError

    def references(self) -> Tuple[int, ...]:
        return ()

    def to_dict(self) -> Dict[str, Any]:
        out = {'op': self.op}
        for f in fields(self):
            out[f.name] = getattr(self, f.name)
        return out

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> 'Operation':
        try:
            return cls(**params)
        except TypeError as e:
            raise InvalidOperationParametersError(f'{cls.op}: {e}') from e


@dataclass(frozen=True)
class Simplify(Operation):
    """Douglas-Peucker vertex reduction within `tolerance` (CRS units)."""

    op: ClassVar[str] = 'simplify'
    tolerance: float
    preserve_topology: bool = config.DEFAULT_PRESERVE_TOPOLOGY

    def __post_init__(self):
        tol = as_float('simplify.tolerance', self.tolerance)
        if tol <= 0.0:
            raise InvalidOperationParametersError(f'simplify.tolerance must be > 0, got {tol}')
        _set(self, 'tolerance', tol)
        _set(self, 'preserve_topology', as_bool('simplify.preserve_topology', self.preserve_topology))

    def apply(self, current, table, engine):
        _require_crs('simplify', current)
        return engine.simplify(current, self.tolerance, self.preserve_topology)


@dataclass(frozen=True)
class Buffer(Operation):
    """All points within `distance` of the geometry; negative distances erode."""

    op: ClassVar[str] = 'buffer'
    distance: float
    segments_per_quadrant: int = config.DEFAULT_SEGMENTS_PER_QUADRANT

    def __post_init__(self):
        _set(self, 'distance', as_float('buffer.distance', self.distance))
        segs = as_int('buffer.segments_per_quadrant', self.segments_per_quadrant)
        if segs < 1:
            raise InvalidOperationParametersError(f'buffer.segments_per_quadrant must be >= 1, got {segs}')
        _set(self, 'segments_per_quadrant', segs)

    def apply(self, current, table, engine):
        _require_crs('buffer', current)
        return engine.buffer(current, self.distance, self.segments_per_quadrant)


@dataclass(frozen=True)
class Centroid(Operation):
    op: ClassVar[str] = 'centroid'
    of_largest_polygon: bool = False

    def __post_init__(self):
        _set(self, 'of_largest_polygon', as_bool('centroid.of_largest_polygon', self.of_largest_polygon))

    def apply(self, current, table, engine):
        return engine.centroid(current, self.of_largest_polygon)


@dataclass(frozen=True)
class PointOnSurface(Operation):
    op: ClassVar[str] = 'point_on_surface'

    def apply(self, current, table, engine):
        return engine.point_on_surface(current)


@dataclass(frozen=True)
class Smooth(Operation):
    """Gaussian smoothing of lines and rings; `sigma` is in vertices."""

    op: ClassVar[str] = 'smooth'
    sigma: float = config.DEFAULT_SMOOTH_SIGMA

    def __post_init__(self):
        sigma = as_float('smooth.sigma', self.sigma)
        if sigma <= 0.0:
            raise InvalidOperationParametersError(f'smooth.sigma must be > 0, got {sigma}')
        _set(self, 'sigma', sigma)

    def apply(self, current, table, engine):
        return engine.smooth(current, self.sigma)


@dataclass(frozen=True)
class AffineTransform(Operation):
    """``x' = matrix @ x + translation``. Drops the CRS of its input.

    Shift, scale and rotate helpers build the matrix with `affine.Affine`:

        AffineTransform.rotation(30, origin=(5, 5))
        AffineTransform.scaling(0.5).then(AffineTransform.translation_by(0, 100))
    """

    op: ClassVar[str] = 'affine'
    matrix: Tuple[Tuple[float, float], Tuple[float, float]] = ((1.0, 0.0), (0.0, 1.0))
    translation: Tuple[float, float] = (0.0, 0.0)

    def __post_init__(self):
        try:
            rows = [list(r) for r in self.matrix]
            ok = len(rows) == 2 and all(len(r) == 2 for r in rows)
        except TypeError:
            ok = False
        if not ok:
            raise InvalidOperationParametersError(f'affine.matrix must be 2x2, got {self.matrix!r}')
        matrix = tuple(tuple(as_float('affine.matrix', v) for v in r) for r in rows)
        try:
            tx, ty = self.translation
        except (TypeError, ValueError) as e:
            raise InvalidOperationParametersError(
                f'affine.translation must be a 2-vector, got {self.translation!r}') from e
        _set(self, 'matrix', matrix)
        _set(self, 'translation', (as_float('affine.translation', tx), as_float('affine.translation', ty)))

    # -- constructors ------------------------------------------------------
    @classmethod
    def from_affine(cls, aff: Affine) -> 'AffineTransform':
        return cls(matrix=((aff.a, aff.b), (aff.d, aff.e)), translation=(aff.c, aff.f))

    @classmethod
    def translation_by(cls, dx: float, dy: float) -> 'AffineTransform':
        return cls.from_affine(Affine.translation(dx, dy))

    @classmethod
    def scaling(cls, sx: float, sy: Optional[float] = None, origin=(0.0, 0.0)) -> 'AffineTransform':
        sy = sx if sy is None else sy
        ox, oy = _origin('scale', origin)
        aff = Affine.translation(ox, oy) * Affine.scale(sx, sy) * Affine.translation(-ox, -oy)
        return cls.from_affine(aff)

    @classmethod
    def rotation(cls, degrees: float, origin=(0.0, 0.0)) -> 'AffineTransform':
        """Counter-clockwise rotation about `origin`."""
        return cls.from_affine(Affine.rotation(degrees, pivot=_origin('rotate', origin)))

    def as_affine(self) -> Affine:
        (a, b), (d, e) = self.matrix
        c, f = self.translation
        return Affine(a, b, c, d, e, f)

    def then(self, other: 'AffineTransform') -> 'AffineTransform':
        """Transform that applies `self` first and `other` second."""
        return AffineTransform.from_affine(other.as_affine() * self.as_affine())

    @property
    def is_identity(self) -> bool:
        return self.as_affine().is_identity

    def apply(self, current, table, engine):
        return engine.apply_affine(current, self.matrix, self.translation)

    def to_dict(self):
        return {'op': self.op,
                'matrix': [list(r) for r in self.matrix],
                'translation': list(self.translation)}


@dataclass(frozen=True)
class BooleanOp(Operation):
    """Set operation between the current geometry and an earlier table slot.

    Computes ``kind(current, table[other_operand_index])``.
    """

    op: ClassVar[str] = 'boolean'
    kind: BooleanKind
    other_operand_index: int

    def __post_init__(self):
        try:
            _set(self, 'kind', BooleanKind.parse(self.kind))
        except ValueError as e:
            raise InvalidOperationParametersError(str(e)) from e
        idx = as_int('boolean.other_operand_index', self.other_operand_index)
        if idx < 0:
            raise InvalidOperationParametersError(f'boolean.other_operand_index must be >= 0, got {idx}')
        _set(self, 'other_operand_index', idx)

    def references(self):
        return (self.other_operand_index,)

    def apply(self, current, table, engine):
        other = table[self.other_operand_index]
        if current.crs is not None and other.crs is not None and current.crs != other.crs:
            raise CrsMismatchError(
                f'{self.kind.value} operands differ in CRS ({current.crs} vs {other.crs})')
        return engine.boolean(self.kind, current, other)

    def to_dict(self):
        return {'op': self.op, 'kind': self.kind.value, 'other_operand_index': self.other_operand_index}


@dataclass(frozen=True)
class Cast(Operation):
    op: ClassVar[str] = 'cast'
    target_type: GeometryType

    def __post_init__(self):
        try:
            _set(self, 'target_type', GeometryType.parse(self.target_type))
        except ValueError as e:
            raise InvalidOperationParametersError(str(e)) from e

    def apply(self, current, table, engine):
        return engine.cast(current, self.target_type)

    def to_dict(self):
        return {'op': self.op, 'target_type': self.target_type.value}


@dataclass(frozen=True)
class SetCrs(Operation):
    """Attach (or with ``None`` clear) the CRS tag without touching coordinates."""

    op: ClassVar[str] = 'set_crs'
    crs: Optional[str] = None

    def __post_init__(self):
        if self.crs is not None and not isinstance(self.crs, str):
            raise InvalidOperationParametersError(f'set_crs.crs must be a string or null, got {self.crs!r}')

    def apply(self, current, table, engine):
        return current.with_crs(self.crs)


@dataclass(frozen=True)
class Literal(Operation):
    """Produce a fixed geometry, typically the side operand of a later BooleanOp."""

    op: ClassVar[str] = 'literal'
    geometry: GeometryValue

    def __post_init__(self):
        if not isinstance(self.geometry, GeometryValue):
            raise InvalidOperationParametersError(
                f'literal.geometry must be a GeometryValue, got {type(self.geometry).__name__}')

    def apply(self, current, table, engine):
        return self.geometry

    @classmethod
    def from_params(cls, params):
        params = dict(params)
        if 'geometry' not in params:
            raise InvalidOperationParametersError('literal: missing "geometry"')
        crs = params.pop('crs', None)
        geom = params.pop('geometry')
        if params:
            raise InvalidOperationParametersError(f'literal: unexpected parameters {sorted(params)}')
        try:
            value = GeometryValue.from_mapping(geom, crs=crs)
        except GeoPipeError as e:
            raise InvalidOperationParametersError(f'literal.geometry: {e.message}') from e
        return cls(value)

    def to_dict(self):
        return {'op': self.op, 'geometry': self.geometry.to_mapping(), 'crs': self.geometry.crs}


@dataclass(frozen=True)
class Recall(Operation):
    """Make an earlier table slot the current geometry again."""

    op: ClassVar[str] = 'recall'
    index: int

    def __post_init__(self):
        idx = as_int('recall.index', self.index)
        if idx < 0:
            raise InvalidOperationParametersError(f'recall.index must be >= 0, got {idx}')
        _set(self, 'index', idx)

    def references(self):
        return (self.index,)

    def apply(self, current, table, engine):
        return table[self.index]


_OPERATIONS = {cls.op: cls for cls in (
    Simplify, Buffer, Centroid, PointOnSurface, Smooth, AffineTransform,
    BooleanOp, Cast, SetCrs, Literal, Recall,
)}


def _affine_alias(op: str, params: Mapping[str, Any]) -> AffineTransform:
    """Descriptor shorthands for the common affine steps."""
    params = dict(params)
    origin = params.pop('origin', (0.0, 0.0))
    try:
        if op == 'translate':
            out = AffineTransform.translation_by(params.pop('dx', 0.0), params.pop('dy', 0.0))
        elif op == 'scale':
            out = AffineTransform.scaling(params.pop('sx'), params.pop('sy', None), origin=origin)
        else:
            out = AffineTransform.rotation(params.pop('angle'), origin=origin)
    except KeyError as e:
        raise InvalidOperationParametersError(f'{op}: missing parameter {e}') from e
    except (TypeError, ValueError) as e:
        raise InvalidOperationParametersError(f'{op}: {e}') from e
    if params:
        raise InvalidOperationParametersError(f'{op}: unexpected parameters {sorted(params)}')
    return out


def operation_from_dict(descriptor: Mapping[str, Any]) -> Operation:
    """Build one step from its declarative descriptor."""
    if not isinstance(descriptor, Mapping):
        raise InvalidOperationParametersError(f'step descriptor must be a mapping, got {descriptor!r}')
    params = dict(descriptor)
    op = params.pop('op', None)
    if not isinstance(op, str):
        raise InvalidOperationParametersError(f'step descriptor needs an "op" name: {descriptor!r}')
    op = op.strip().lower()
    if op in ('translate', 'scale', 'rotate'):
        return _affine_alias(op, params)
    cls = _OPERATIONS.get(op)
    if cls is None:
        raise InvalidOperationParametersError(f'unknown op {op!r}; known: {sorted(_OPERATIONS)}')
    return cls.from_params(params)
