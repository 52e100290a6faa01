"""
raster.py

Raster header semantics: a grid of ``nrows x ncols`` cells placed in space
by an affine geotransform (``affine.Affine``, GDAL order) plus a CRS tag.

Public helpers:
- `pixel_to_geo(transform, rows, cols)` -> (xs, ys) of cell centres
- `geo_to_pixel(transform, X, Y)` -> (rows, cols)
- `RasterHeader` with `resolution`, `bounds`, `cell_center`, `cell_index`,
  `contains_cell` and `footprint()` (a Polygon `GeometryValue` that can be
  fed into a pipeline)

"""
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from affine import Affine
from shapely.geometry import Polygon

from geopipe.errors import MalformedGeometryError
from geopipe.geometry import GeometryValue


def pixel_to_geo(transform: Affine, rows, cols) -> Tuple[np.ndarray, np.ndarray]:
    """Convert raster cell indices to the coordinates of the cell centres.

    Parameters:
    - transform: `affine.Affine` mapping (col, row) of the cell corner grid to
      (x, y)
    - rows, cols: scalars or array-like of the same shape

    Returns: (xs, ys) with the shape of the input (floats for scalar input).
    """
    rows_a = np.asarray(rows, dtype=float)
    cols_a = np.asarray(cols, dtype=float)
    # Affine expects (x=col, y=row); +0.5 moves from the cell corner to its centre
    xs, ys = transform * (cols_a + 0.5, rows_a + 0.5)
    if rows_a.shape == () and cols_a.shape == ():
        return float(xs), float(ys)
    return np.asarray(xs, dtype=float), np.asarray(ys, dtype=float)


def geo_to_pixel(transform: Affine, X, Y) -> Tuple[np.ndarray, np.ndarray]:
    """Convert coordinates to the (row, col) of the cell containing them."""
    inv = ~transform
    X_a = np.asarray(X, dtype=float)
    Y_a = np.asarray(Y, dtype=float)
    c, r = inv * (X_a, Y_a)
    rows = np.floor(r).astype(int)
    cols = np.floor(c).astype(int)
    if X_a.shape == () and Y_a.shape == ():
        return int(rows), int(cols)
    return rows, cols


@dataclass(frozen=True)
class RasterHeader:
    nrows: int
    ncols: int
    transform: Affine
    crs: Optional[str] = None

    def __post_init__(self):
        if int(self.nrows) < 1 or int(self.ncols) < 1:
            raise MalformedGeometryError(f'raster needs at least one cell, got {self.nrows}x{self.ncols}')
        if not isinstance(self.transform, Affine):
            raise MalformedGeometryError(f'transform must be an affine.Affine, got {type(self.transform).__name__}')
        if self.transform.is_degenerate:
            raise MalformedGeometryError('transform is degenerate (zero determinant)')
        object.__setattr__(self, 'nrows', int(self.nrows))
        object.__setattr__(self, 'ncols', int(self.ncols))

    @classmethod
    def from_origin(cls, west: float, north: float, xsize: float, ysize: float,
                    nrows: int, ncols: int, crs: Optional[str] = None) -> 'RasterHeader':
        """North-up header with its top-left corner at (west, north)."""
        return cls(nrows, ncols, Affine.translation(west, north) * Affine.scale(xsize, -ysize), crs)

    @property
    def resolution(self) -> Tuple[float, float]:
        """Cell size (x, y) as positive lengths."""
        t = self.transform
        return float(np.hypot(t.a, t.d)), float(np.hypot(t.b, t.e))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.nrows, self.ncols

    def corners(self) -> np.ndarray:
        t = self.transform
        grid = [(0, 0), (self.ncols, 0), (self.ncols, self.nrows), (0, self.nrows)]
        return np.array([t * (c, r) for c, r in grid], dtype=float)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        pts = self.corners()
        return (float(pts[:, 0].min()), float(pts[:, 1].min()),
                float(pts[:, 0].max()), float(pts[:, 1].max()))

    def cell_center(self, row, col):
        return pixel_to_geo(self.transform, row, col)

    def cell_index(self, x, y):
        return geo_to_pixel(self.transform, x, y)

    def contains_cell(self, row: int, col: int) -> bool:
        return 0 <= row < self.nrows and 0 <= col < self.ncols

    def footprint(self) -> GeometryValue:
        """Outline of the grid as a Polygon carrying the header's CRS."""
        pts = [tuple(p) for p in self.corners()]
        return GeometryValue(Polygon(pts + [pts[0]]), self.crs)

    def with_transform(self, aff: Affine) -> 'RasterHeader':
        """Header placed by ``aff * transform``. The CRS is dropped, matching
        the affine step of a pipeline."""
        return RasterHeader(self.nrows, self.ncols, aff * self.transform, None)
