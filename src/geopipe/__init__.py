"""geopipe: declarative geometry-transform pipelines over shapely."""

from geopipe.errors import (ErrorKind, GeoPipeError, MalformedGeometryError,
                            InvalidOperationParametersError, UnsupportedCastError,
                            EngineFailureError, MissingCrsError, CrsMismatchError)
from geopipe.geometry import GeometryType, GeometryValue
from geopipe.engine import BooleanKind, GeometryEngine, ShapelyEngine
from geopipe.operations import (Operation, Simplify, Buffer, Centroid, PointOnSurface, AffineTransform,
                                BooleanOp, Cast, Smooth, SetCrs, Literal, Recall, operation_from_dict)
from geopipe.pipeline import ExecutionResult, Pipeline, StepFailure
from geopipe.runner import iter_batch, run, run_batch
from geopipe.raster import RasterHeader

__version__ = '0.1.0'
