import math

import pytest
from affine import Affine

from geopipe.engine import BooleanKind
from geopipe.errors import ErrorKind, InvalidOperationParametersError
from geopipe.geometry import GeometryType
from geopipe.operations import (AffineTransform, BooleanOp, Buffer, Cast, Centroid, Literal,
                                PointOnSurface, Recall, SetCrs, Simplify, Smooth, operation_from_dict)
from geopipe.pipeline import Pipeline
from geopipe.tests.fixtures.shapes import square


def test_simplify_tolerance_must_be_positive():
    with pytest.raises(InvalidOperationParametersError) as exc:
        Simplify(tolerance=0)
    assert exc.value.kind is ErrorKind.INVALID_OPERATION_PARAMETERS
    with pytest.raises(InvalidOperationParametersError):
        Simplify(tolerance=-1.0)
    with pytest.raises(InvalidOperationParametersError):
        Simplify(tolerance='big')


def test_buffer_segments_must_be_positive_int():
    with pytest.raises(InvalidOperationParametersError):
        Buffer(distance=1.0, segments_per_quadrant=0)
    with pytest.raises(InvalidOperationParametersError):
        Buffer(distance=1.0, segments_per_quadrant=2.5)
    with pytest.raises(InvalidOperationParametersError):
        Buffer(distance=math.nan)
    assert Buffer(distance=-1).distance == -1.0


def test_boolean_op_parameters():
    op = BooleanOp('sym_difference', 0)
    assert op.kind is BooleanKind.SYM_DIFFERENCE
    with pytest.raises(InvalidOperationParametersError):
        BooleanOp('xor', 0)
    with pytest.raises(InvalidOperationParametersError):
        BooleanOp('union', -1)


def test_cast_target_must_be_known():
    assert Cast('multipolygon').target_type is GeometryType.MULTIPOLYGON
    with pytest.raises(InvalidOperationParametersError):
        Cast('Hexagon')


def test_steps_are_immutable():
    op = Simplify(tolerance=1.0)
    with pytest.raises(Exception):
        op.tolerance = 2.0


def test_affine_matrix_shape_checked():
    with pytest.raises(InvalidOperationParametersError):
        AffineTransform(matrix=((1, 0, 0), (0, 1, 0)))
    with pytest.raises(InvalidOperationParametersError):
        AffineTransform(translation=(1.0,))


def test_affine_helpers():
    rot = AffineTransform.rotation(90)
    (a, b), (d, e) = rot.matrix
    # (1, 0) -> (0, 1)
    assert abs(a * 1 + b * 0) < 1e-12
    assert abs(d * 1 + e * 0 - 1.0) < 1e-12

    scale = AffineTransform.scaling(2.0, origin=(5.0, 5.0))
    x, y = scale.as_affine() * (5.0, 5.0)
    assert (x, y) == (5.0, 5.0)
    x, y = scale.as_affine() * (6.0, 5.0)
    assert (x, y) == (7.0, 5.0)

    shifted = AffineTransform.scaling(2.0).then(AffineTransform.translation_by(1.0, 0.0))
    assert shifted.as_affine() * (1.0, 1.0) == (3.0, 2.0)

    assert AffineTransform().is_identity
    assert AffineTransform.from_affine(Affine.identity()).is_identity


def test_operation_from_dict():
    op = operation_from_dict({'op': 'Buffer', 'distance': 2, 'segments_per_quadrant': 4})
    assert op == Buffer(2.0, 4)
    assert operation_from_dict({'op': 'translate', 'dx': 3}) == AffineTransform.translation_by(3, 0)
    assert operation_from_dict({'op': 'rotate', 'angle': 45, 'origin': [1, 1]}) == AffineTransform.rotation(45, (1, 1))
    assert operation_from_dict({'op': 'scale', 'sx': 2, 'sy': 3}) == AffineTransform.scaling(2, 3)


@pytest.mark.parametrize('descriptor', [
    {'op': 'explode'},
    {'distance': 1},
    {'op': 'buffer'},
    {'op': 'buffer', 'distance': 1, 'radius': 2},
    {'op': 'scale'},
    {'op': 'scale', 'sx': 2, 'origin': [1]},
    {'op': 'rotate', 'angle': 30, 'origin': [1]},
    {'op': 'rotate', 'angle': 30, 'origin': 5},
    {'op': 'simplify', 'tolerance': 1, 'preserve_topology': 'false'},
    {'op': 'centroid', 'of_largest_polygon': 1},
    {'op': 'literal', 'geometry': {'type': 'Polygon', 'coordinates': [[[0, 0], [1, 0], [1, 1]]]}},
    'buffer',
])
def test_bad_descriptors_fail(descriptor):
    with pytest.raises(InvalidOperationParametersError):
        operation_from_dict(descriptor)


def test_pipeline_config_roundtrip():
    pipe = Pipeline('everything', [
        SetCrs('EPSG:3857'),
        Simplify(0.5, preserve_topology=False),
        Smooth(1.5),
        Buffer(2.0, 8),
        Literal(square(crs='EPSG:3857')),
        Recall(4),
        BooleanOp('difference', 5),
        Cast('MultiPolygon'),
        Centroid(of_largest_polygon=True),
        PointOnSurface(),
        AffineTransform.rotation(30, (1, 2)),
    ])
    doc = pipe.to_config()
    assert doc['steps'][0] == {'op': 'set_crs', 'crs': 'EPSG:3857'}
    assert Pipeline.from_config(doc) == pipe


def test_references():
    assert BooleanOp('union', 3).references() == (3,)
    assert Recall(2).references() == (2,)
    assert Simplify(1.0).references() == ()


def test_boolean_flags_are_kept_as_given():
    assert operation_from_dict({'op': 'simplify', 'tolerance': 1, 'preserve_topology': False}).preserve_topology is False
    assert Centroid(of_largest_polygon=True).of_largest_polygon is True


def test_affine_helpers_reject_bad_origin():
    with pytest.raises(InvalidOperationParametersError):
        AffineTransform.scaling(2.0, origin=(1.0,))
    with pytest.raises(InvalidOperationParametersError):
        AffineTransform.rotation(30, origin=('a', 'b'))
