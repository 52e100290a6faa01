"""
engine.py

The geometry engine is the boundary to the geometry library. The pipeline
only talks to it through the `GeometryEngine` protocol; `ShapelyEngine` is
the default implementation and delegates every numeric algorithm to
shapely/GEOS (simplify, buffer, centroid, set operations) or scipy
(Gaussian smoothing).

CRS contract: every method returns a value carrying the CRS of its (first)
input, except `apply_affine`, which returns a value with no CRS. Affine
coefficients are taken to act on the current coordinate space, so the caller
has to re-attach a CRS explicitly when it still applies.

Library errors (GEOS exceptions, ValueError) are re-raised as
`EngineFailureError`.
"""
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, List, Optional, Protocol, runtime_checkable

import numpy as np
import shapely
from scipy.ndimage import gaussian_filter1d
from shapely import affinity
from shapely.errors import ShapelyError
from shapely.geometry import (GeometryCollection, LineString, MultiLineString, MultiPoint,
                              MultiPolygon, Polygon)
from shapely.geometry.base import BaseGeometry, BaseMultipartGeometry

from geopipe.errors import (EngineFailureError, GeoPipeError, MalformedGeometryError,
                            UnsupportedCastError)
from geopipe.geometry import GeometryType, GeometryValue, geometry_dimension, geometry_type_of



class BooleanKind(str, Enum):
    INTERSECTION = 'intersection'
    UNION = 'union'
    DIFFERENCE = 'difference'
    SYM_DIFFERENCE = 'symdifference'

    @classmethod
    def parse(cls, name) -> 'BooleanKind':
        if isinstance(name, BooleanKind):
            return name
        key = str(name).replace('_', '').replace('-', '').lower()
        if key == 'symmetricdifference':
            key = 'symdifference'
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f'unknown boolean operation {name!r}')


@runtime_checkable
class GeometryEngine(Protocol):
    """Capabilities the pipeline needs from a geometry library."""

    def simplify(self, geom: GeometryValue, tolerance: float, preserve_topology: bool) -> GeometryValue: ...

    def buffer(self, geom: GeometryValue, distance: float, segments_per_quadrant: int) -> GeometryValue: ...

    def centroid(self, geom: GeometryValue, of_largest_polygon: bool = False) -> GeometryValue: ...

    def point_on_surface(self, geom: GeometryValue) -> GeometryValue: ...

    def apply_affine(self, geom: GeometryValue, matrix, translation) -> GeometryValue: ...

    def boolean(self, kind: BooleanKind, a: GeometryValue, b: GeometryValue) -> GeometryValue: ...

    def cast(self, geom: GeometryValue, target_type: GeometryType) -> GeometryValue: ...

    def smooth(self, geom: GeometryValue, sigma: float) -> GeometryValue: ...


@contextmanager
def _engine_call(op: str) -> Iterator[None]:
    try:
        yield
    except GeoPipeError:
        raise
    except (ShapelyError, ValueError) as e:
        raise EngineFailureError(f'{op} failed: {e}') from e


def _result(op: str, geom: BaseGeometry, crs: Optional[str]) -> GeometryValue:
    try:
        return GeometryValue(geom, crs)
    except MalformedGeometryError as e:
        raise EngineFailureError(f'{op} produced an unusable geometry: {e.message}') from e


def _flatten(geom: BaseGeometry) -> List[BaseGeometry]:
    """Single-part members of a (possibly nested) multi geometry or collection."""
    if geom.is_empty:
        return []
    if isinstance(geom, BaseMultipartGeometry):
        out = []
        for g in geom.geoms:
            out.extend(_flatten(g))
        return out
    return [geom]


def _empty(gtype: GeometryType) -> BaseGeometry:
    return shapely.from_wkt(f'{gtype.value.upper()} EMPTY')


class ShapelyEngine:
    """`GeometryEngine` backed by shapely (GEOS) and scipy.

    Stateless; one instance can be shared between threads.
    """

    # -- simplification / smoothing -----------------------------------------
    def simplify(self, geom: GeometryValue, tolerance: float, preserve_topology: bool) -> GeometryValue:
        with _engine_call('simplify'):
            out = geom.geometry.simplify(tolerance, preserve_topology=preserve_topology)
        return _result('simplify', out, geom.crs)

    def smooth(self, geom: GeometryValue, sigma: float) -> GeometryValue:
        """Gaussian kernel smoothing of every line and ring.

        Line end points stay fixed; rings are smoothed cyclically and stay
        closed. Points pass through unchanged.
        """
        with _engine_call('smooth'):
            out = _map_linework(geom.geometry,
                                lambda c: _smooth_line(c, sigma),
                                lambda c: _smooth_ring(c, sigma))
        return _result('smooth', out, geom.crs)

    # -- constructive --------------------------------------------------------
    def buffer(self, geom: GeometryValue, distance: float, segments_per_quadrant: int) -> GeometryValue:
        with _engine_call('buffer'):
            out = geom.geometry.buffer(distance, quad_segs=int(segments_per_quadrant))
        return _result('buffer', out, geom.crs)

    def centroid(self, geom: GeometryValue, of_largest_polygon: bool = False) -> GeometryValue:
        target = geom.geometry
        if of_largest_polygon:
            polys = [g for g in _flatten(target) if g.geom_type == 'Polygon']
            if polys:
                target = max(polys, key=lambda p: p.area)
        with _engine_call('centroid'):
            out = target.centroid
        return _result('centroid', out, geom.crs)

    def point_on_surface(self, geom: GeometryValue) -> GeometryValue:
        with _engine_call('point_on_surface'):
            out = geom.geometry.representative_point()
        return _result('point_on_surface', out, geom.crs)

    def apply_affine(self, geom: GeometryValue, matrix, translation) -> GeometryValue:
        """Apply ``x' = M @ x + t``. The result carries no CRS."""
        (a, b), (d, e) = matrix
        xoff, yoff = translation
        with _engine_call('apply_affine'):
            out = affinity.affine_transform(geom.geometry, [a, b, d, e, xoff, yoff])
        return _result('apply_affine', out, None)

    def boolean(self, kind: BooleanKind, a: GeometryValue, b: GeometryValue) -> GeometryValue:
        kind = BooleanKind.parse(kind)
        ga, gb = a.geometry, b.geometry
        with _engine_call(kind.value):
            if kind is BooleanKind.INTERSECTION:
                out = shapely.intersection(ga, gb)
            elif kind is BooleanKind.UNION:
                out = shapely.union(ga, gb)
            elif kind is BooleanKind.DIFFERENCE:
                out = shapely.difference(ga, gb)
            else:
                out = shapely.symmetric_difference(ga, gb)
        return _result(kind.value, out, a.crs if a.crs is not None else b.crs)

    # -- type conversion -----------------------------------------------------
    def cast(self, geom: GeometryValue, target_type: GeometryType) -> GeometryValue:
        target = GeometryType.parse(target_type)
        source = geom.geom_type
        if source is target:
            return geom
        if geom.is_empty:
            out = _empty(target)
        elif target is GeometryType.GEOMETRYCOLLECTION:
            parts = list(geom.geometry.geoms) if source.is_multi else [geom.geometry]
            out = GeometryCollection(parts)
        elif source is GeometryType.GEOMETRYCOLLECTION:
            return self.cast(_collect(geom), target)
        else:
            fn = _CASTS.get((source, target))
            if fn is None:
                raise UnsupportedCastError(f'no cast from {source.value} to {target.value}')
            with _engine_call('cast'):
                out = fn(geom.geometry)

        try:
            value = GeometryValue(out, geom.crs)
        except MalformedGeometryError as e:
            raise UnsupportedCastError(
                f'cast {source.value} -> {target.value} gives a malformed geometry: {e.message}') from e
        if value.geom_type is not target:
            raise UnsupportedCastError(
                f'cast {source.value} -> {target.value} produced {value.geom_type.value}')
        return value


# ---------------------------------------------------------------------------
# cast helpers

def _collect(geom: GeometryValue) -> GeometryValue:
    """Merge a GeometryCollection into the multi type of its members' dimension."""
    parts = _flatten(geom.geometry)
    dims = {geometry_dimension(p) for p in parts}
    if not parts:
        raise UnsupportedCastError('cannot cast an empty GeometryCollection')
    if len(dims) > 1:
        raise UnsupportedCastError(
            f'GeometryCollection mixes dimensions {sorted(dims)}; no single target type fits')
    dim = dims.pop()
    if dim == 0:
        out = MultiPoint(parts)
    elif dim == 1:
        out = MultiLineString(parts)
    else:
        out = MultiPolygon(parts)
    return GeometryValue(out, geom.crs)


def _single_part(geom):
    parts = list(geom.geoms)
    if len(parts) != 1:
        raise UnsupportedCastError(
            f'{geom.geom_type} with {len(parts)} parts cannot narrow to a single geometry')
    return parts[0]


def _line_to_polygon(geom: LineString):
    coords = list(geom.coords)
    if len(coords) < 4 or coords[0] != coords[-1]:
        raise UnsupportedCastError('only closed line strings with at least 4 coordinates form a polygon')
    return Polygon(coords)


def _polygon_to_line(geom: Polygon):
    if len(geom.interiors) > 0:
        raise UnsupportedCastError('polygon has holes; cast to MultiLineString instead')
    return LineString(geom.exterior.coords)


def _rings(geom) -> List[LineString]:
    out = []
    for poly in _flatten(geom):
        out.append(LineString(poly.exterior.coords))
        out.extend(LineString(r.coords) for r in poly.interiors)
    return out


def _vertices(geom):
    return MultiPoint(shapely.get_coordinates(geom))


def _points_to_line(geom: MultiPoint):
    if len(geom.geoms) < 2:
        raise UnsupportedCastError('a line string needs at least 2 points')
    return LineString([p.coords[0] for p in geom.geoms])


_G = GeometryType
_CASTS = {
    (_G.POINT, _G.MULTIPOINT): lambda g: MultiPoint([g]),
    (_G.MULTIPOINT, _G.POINT): _single_part,
    (_G.MULTIPOINT, _G.LINESTRING): _points_to_line,
    (_G.LINESTRING, _G.MULTILINESTRING): lambda g: MultiLineString([g]),
    (_G.MULTILINESTRING, _G.LINESTRING): _single_part,
    (_G.LINESTRING, _G.POLYGON): _line_to_polygon,
    (_G.LINESTRING, _G.MULTIPOINT): _vertices,
    (_G.MULTILINESTRING, _G.MULTIPOINT): _vertices,
    (_G.POLYGON, _G.MULTIPOLYGON): lambda g: MultiPolygon([g]),
    (_G.MULTIPOLYGON, _G.POLYGON): _single_part,
    (_G.POLYGON, _G.LINESTRING): _polygon_to_line,
    (_G.POLYGON, _G.MULTILINESTRING): lambda g: MultiLineString(_rings(g)),
    (_G.MULTIPOLYGON, _G.MULTILINESTRING): lambda g: MultiLineString(_rings(g)),
    (_G.POLYGON, _G.MULTIPOINT): _vertices,
    (_G.MULTIPOLYGON, _G.MULTIPOINT): _vertices,
}


# ---------------------------------------------------------------------------
# smoothing helpers

def _smooth_line(coords: np.ndarray, sigma: float) -> np.ndarray:
    if coords.shape[0] < 3:
        return coords
    out = np.column_stack([gaussian_filter1d(coords[:, i], sigma=sigma, mode='nearest')
                           for i in range(coords.shape[1])])
    out[0] = coords[0]
    out[-1] = coords[-1]
    return out


def _smooth_ring(coords: np.ndarray, sigma: float) -> np.ndarray:
    open_ring = coords[:-1]
    out = np.column_stack([gaussian_filter1d(open_ring[:, i], sigma=sigma, mode='wrap')
                           for i in range(open_ring.shape[1])])
    return np.vstack([out, out[:1]])


def _map_linework(geom: BaseGeometry, line_fn, ring_fn) -> BaseGeometry:
    """Rebuild `geom` with `line_fn` applied to line coordinates and `ring_fn`
    applied to (closed) ring coordinates."""
    if geom.is_empty:
        return geom
    gtype = geometry_type_of(geom)
    if gtype in (GeometryType.POINT, GeometryType.MULTIPOINT):
        return geom
    if gtype is GeometryType.LINESTRING:
        return LineString(line_fn(np.asarray(geom.coords)))
    if gtype is GeometryType.POLYGON:
        shell = ring_fn(np.asarray(geom.exterior.coords))
        holes = [ring_fn(np.asarray(r.coords)) for r in geom.interiors]
        return Polygon(shell, holes)
    parts = [_map_linework(g, line_fn, ring_fn) for g in geom.geoms]
    if gtype is GeometryType.MULTILINESTRING:
        return MultiLineString(parts)
    if gtype is GeometryType.MULTIPOLYGON:
        return MultiPolygon(parts)
    return GeometryCollection(parts)


def default_engine() -> ShapelyEngine:
    return _DEFAULT_ENGINE


_DEFAULT_ENGINE = ShapelyEngine()
