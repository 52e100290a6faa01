"""
geometry.py

Immutable geometry values with an attached coordinate reference system tag.

A `GeometryValue` wraps a shapely geometry plus an opaque CRS identifier
(e.g. ``"EPSG:3857"``; ``None`` for an unset CRS). Construction validates the
structure of the geometry and raises `MalformedGeometryError` otherwise:

- every coordinate is finite
- line strings carry at least 2 coordinates
- every polygon ring carries at least 4 coordinates and is closed

Values are never mutated; `with_crs` returns a new value. Two values are
equal when they have the same geometry type and exactly equal coordinate
sequences (no tolerance). The CRS does not take part in equality.

Public entry points:
- `GeometryValue(geometry, crs=None)`
- `GeometryValue.from_mapping(mapping, crs=None)` (GeoJSON-style geometry)
- `GeometryValue.from_coords(geom_type, coordinates, crs=None)`
- `GeometryValue.from_wkt(text, crs=None)`
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional, Sequence
import numbers

import numpy as np
import shapely
import shapely.wkt
from shapely.errors import ShapelyError
from shapely.geometry import mapping as _shapely_mapping, shape as _shapely_shape
from shapely.geometry.base import BaseGeometry

from geopipe.errors import MalformedGeometryError


class GeometryType(str, Enum):
    POINT = 'Point'
    LINESTRING = 'LineString'
    POLYGON = 'Polygon'
    MULTIPOINT = 'MultiPoint'
    MULTILINESTRING = 'MultiLineString'
    MULTIPOLYGON = 'MultiPolygon'
    GEOMETRYCOLLECTION = 'GeometryCollection'

    @classmethod
    def parse(cls, name: str) -> 'GeometryType':
        """Case-insensitive lookup (``"multipolygon"`` and ``"MULTIPOLYGON"`` both work)."""
        if isinstance(name, GeometryType):
            return name
        for member in cls:
            if str(name).replace('_', '').lower() == member.value.lower():
                return member
        raise ValueError(f'unknown geometry type {name!r}')

    @property
    def dimension(self) -> Optional[int]:
        """Topological dimension; None for collections (depends on members)."""
        return _DIMENSIONS.get(self)

    @property
    def is_multi(self) -> bool:
        return self in (GeometryType.MULTIPOINT, GeometryType.MULTILINESTRING, GeometryType.MULTIPOLYGON)


_DIMENSIONS = {
    GeometryType.POINT: 0,
    GeometryType.MULTIPOINT: 0,
    GeometryType.LINESTRING: 1,
    GeometryType.MULTILINESTRING: 1,
    GeometryType.POLYGON: 2,
    GeometryType.MULTIPOLYGON: 2,
}

# LinearRing only appears inside polygons; treat a bare ring as a line.
_SHAPELY_TYPE_ALIASES = {'LinearRing': GeometryType.LINESTRING}


def geometry_type_of(geom: BaseGeometry) -> GeometryType:
    name = geom.geom_type
    if name in _SHAPELY_TYPE_ALIASES:
        return _SHAPELY_TYPE_ALIASES[name]
    return GeometryType(name)


def geometry_dimension(geom: BaseGeometry) -> int:
    """Dimension of a geometry; for collections the max over members, -1 if empty."""
    gtype = geometry_type_of(geom)
    if gtype is GeometryType.GEOMETRYCOLLECTION:
        dims = [geometry_dimension(g) for g in geom.geoms]
        return max(dims) if dims else -1
    return gtype.dimension


# ---------------------------------------------------------------------------
# structural validation of raw (GeoJSON-style) coordinates

def _check_position(pos: Any, where: str) -> None:
    if not isinstance(pos, (list, tuple)) or len(pos) not in (2, 3):
        raise MalformedGeometryError(f'{where}: position must hold 2 or 3 numbers, got {pos!r}')
    for v in pos:
        if isinstance(v, bool) or not isinstance(v, numbers.Real) or not np.isfinite(v):
            raise MalformedGeometryError(f'{where}: coordinate {v!r} is not a finite number')


def _check_positions(seq: Any, where: str) -> None:
    if not isinstance(seq, (list, tuple)):
        raise MalformedGeometryError(f'{where}: expected a coordinate sequence, got {type(seq).__name__}')
    for i, pos in enumerate(seq):
        _check_position(pos, f'{where}[{i}]')


def _check_line(seq: Any, where: str) -> None:
    _check_positions(seq, where)
    if 0 < len(seq) < 2:
        raise MalformedGeometryError(f'{where}: a line string needs at least 2 coordinates, got {len(seq)}')


def _check_ring(seq: Any, where: str) -> None:
    _check_positions(seq, where)
    if len(seq) < 4:
        raise MalformedGeometryError(f'{where}: a ring needs at least 4 coordinates, got {len(seq)}')
    if tuple(seq[0]) != tuple(seq[-1]):
        raise MalformedGeometryError(f'{where}: ring is not closed ({tuple(seq[0])} != {tuple(seq[-1])})')
    if len({tuple(float(v) for v in pos) for pos in seq[:-1]}) < 3:
        raise MalformedGeometryError(f'{where}: a ring needs at least 3 distinct positions')


def _check_polygon(rings: Any, where: str) -> None:
    if not isinstance(rings, (list, tuple)):
        raise MalformedGeometryError(f'{where}: expected a list of rings')
    for i, ring in enumerate(rings):
        _check_ring(ring, f'{where}[{i}]')


def _check_parts(parts: Any, where: str, check) -> None:
    if not isinstance(parts, (list, tuple)):
        raise MalformedGeometryError(f'{where}: expected a list of parts')
    for i, part in enumerate(parts):
        check(part, f'{where}[{i}]')


def validate_mapping(obj: Any, where: str = 'geometry') -> None:
    """Validate a GeoJSON-style geometry mapping before handing it to shapely.

    shapely closes open rings on its own, so closure is checked here on the
    raw coordinates.
    """
    if not isinstance(obj, Mapping):
        raise MalformedGeometryError(f'{where}: expected a mapping, got {type(obj).__name__}')
    try:
        gtype = GeometryType.parse(obj.get('type'))
    except ValueError as e:
        raise MalformedGeometryError(f'{where}: {e}') from e

    if gtype is GeometryType.GEOMETRYCOLLECTION:
        members = obj.get('geometries')
        if not isinstance(members, (list, tuple)):
            raise MalformedGeometryError(f'{where}: GeometryCollection needs a "geometries" list')
        for i, member in enumerate(members):
            validate_mapping(member, f'{where}.geometries[{i}]')
        return

    if 'coordinates' not in obj:
        raise MalformedGeometryError(f'{where}: missing "coordinates"')
    coords = obj['coordinates']
    where = f'{where}({gtype.value})'
    if gtype is GeometryType.POINT:
        if isinstance(coords, (list, tuple)) and len(coords) == 0:
            return
        _check_position(coords, where)
    elif gtype is GeometryType.LINESTRING:
        _check_line(coords, where)
    elif gtype is GeometryType.POLYGON:
        _check_polygon(coords, where)
    elif gtype is GeometryType.MULTIPOINT:
        _check_positions(coords, where)
    elif gtype is GeometryType.MULTILINESTRING:
        _check_parts(coords, where, _check_line)
    elif gtype is GeometryType.MULTIPOLYGON:
        _check_parts(coords, where, _check_polygon)


def validate_geometry(geom: Any) -> None:
    """Validate an already-built shapely geometry."""
    if not isinstance(geom, BaseGeometry):
        raise MalformedGeometryError(f'expected a shapely geometry, got {type(geom).__name__}')
    if geom.is_empty:
        return
    # 2D geometries report nan for z when it is requested
    coords = shapely.get_coordinates(geom, include_z=geom.has_z)
    if not np.all(np.isfinite(coords)):
        raise MalformedGeometryError(f'{geom.geom_type} has non-finite coordinates')

    gtype = geometry_type_of(geom)
    if gtype is GeometryType.LINESTRING:
        if len(geom.coords) < 2:
            raise MalformedGeometryError('a line string needs at least 2 coordinates')
    elif gtype is GeometryType.POLYGON:
        for ring in [geom.exterior, *geom.interiors]:
            rc = list(ring.coords)
            if len(rc) < 4:
                raise MalformedGeometryError(f'a ring needs at least 4 coordinates, got {len(rc)}')
            if rc[0] != rc[-1]:
                raise MalformedGeometryError('ring is not closed')
            if len(set(rc[:-1])) < 3:
                raise MalformedGeometryError('a ring needs at least 3 distinct positions')
    elif gtype in (GeometryType.MULTILINESTRING, GeometryType.MULTIPOLYGON,
                   GeometryType.GEOMETRYCOLLECTION):
        for part in geom.geoms:
            validate_geometry(part)


# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class GeometryValue:
    """A validated, immutable geometry with an optional CRS tag."""

    geometry: BaseGeometry
    crs: Optional[str] = None

    def __post_init__(self):
        validate_geometry(self.geometry)
        if self.crs is not None and not isinstance(self.crs, str):
            object.__setattr__(self, 'crs', str(self.crs))
        # a bare LinearRing is stored as the equivalent LineString
        if self.geometry.geom_type == 'LinearRing':
            object.__setattr__(self, 'geometry', shapely.LineString(self.geometry.coords))

    # -- constructors ------------------------------------------------------
    @classmethod
    def from_mapping(cls, obj: Mapping, crs: Optional[str] = None) -> 'GeometryValue':
        validate_mapping(obj)
        try:
            geom = _shapely_shape(obj)
        except (ShapelyError, ValueError, TypeError, KeyError, IndexError) as e:
            raise MalformedGeometryError(f'could not build geometry: {e}') from e
        return cls(geom, crs)

    @classmethod
    def from_coords(cls, geom_type, coordinates: Sequence, crs: Optional[str] = None) -> 'GeometryValue':
        try:
            gtype = GeometryType.parse(geom_type)
        except ValueError as e:
            raise MalformedGeometryError(str(e)) from e
        if gtype is GeometryType.GEOMETRYCOLLECTION:
            raise MalformedGeometryError('GeometryCollection cannot be built from coordinates')
        return cls.from_mapping({'type': gtype.value, 'coordinates': coordinates}, crs)

    @classmethod
    def from_wkt(cls, text: str, crs: Optional[str] = None) -> 'GeometryValue':
        try:
            geom = shapely.wkt.loads(text)
        except (ShapelyError, ValueError, TypeError) as e:
            raise MalformedGeometryError(f'could not parse WKT: {e}') from e
        return cls(geom, crs)

    # -- accessors ---------------------------------------------------------
    @property
    def geom_type(self) -> GeometryType:
        return geometry_type_of(self.geometry)

    @property
    def coordinates(self):
        """Nested coordinate tuples in GeoJSON order; a tuple of member
        coordinates for a GeometryCollection."""
        if self.geom_type is GeometryType.GEOMETRYCOLLECTION:
            return tuple(GeometryValue(g).coordinates for g in self.geometry.geoms)
        return _shapely_mapping(self.geometry)['coordinates']

    @property
    def dimension(self) -> int:
        return geometry_dimension(self.geometry)

    @property
    def is_empty(self) -> bool:
        return bool(self.geometry.is_empty)

    @property
    def area(self) -> float:
        return float(self.geometry.area)

    @property
    def length(self) -> float:
        return float(self.geometry.length)

    @property
    def bounds(self):
        return tuple(self.geometry.bounds)

    @property
    def vertex_count(self) -> int:
        return int(shapely.get_num_coordinates(self.geometry))

    def with_crs(self, crs: Optional[str]) -> 'GeometryValue':
        """Return a copy carrying `crs` (``None`` clears it)."""
        return replace(self, crs=crs)

    # -- encodings ---------------------------------------------------------
    def to_mapping(self) -> dict:
        return _to_plain(_shapely_mapping(self.geometry))

    def to_wkt(self) -> str:
        return self.geometry.wkt

    # -- equality ----------------------------------------------------------
    def __eq__(self, other):
        if not isinstance(other, GeometryValue):
            return NotImplemented
        if self.geom_type is not other.geom_type:
            return False
        if self.is_empty or other.is_empty:
            return self.is_empty and other.is_empty
        return bool(shapely.equals_exact(self.geometry, other.geometry, tolerance=0.0))

    def __hash__(self):
        if self.is_empty:
            return hash((self.geom_type, 0))
        return hash((self.geom_type, self.vertex_count, self.bounds))

    def __repr__(self):
        wkt = self.geometry.wkt
        if len(wkt) > 60:
            wkt = wkt[:57] + '...'
        return f'GeometryValue({wkt}, crs={self.crs!r})'


def _to_plain(obj):
    """Convert shapely's tuple-heavy mapping into plain lists/dicts for JSON."""
    if isinstance(obj, Mapping):
        return {k: _to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_plain(v) for v in obj]
    if isinstance(obj, np.generic):
        return obj.item()
    return obj
