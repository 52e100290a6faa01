import logging

import pytest

from geopipe.errors import ErrorKind
from geopipe.geometry import GeometryValue
from geopipe.operations import Buffer, Centroid
from geopipe.pipeline import Pipeline
from geopipe.runner import coerce_input, iter_batch, run, run_batch, summarize
from geopipe.tests.fixtures.shapes import PROJECTED, square

OPEN_RING = {'type': 'Polygon', 'coordinates': [[[0, 0], [1, 0], [1, 1], [0, 1]]]}


def _inputs():
    return [square(), OPEN_RING, square(size=4.0, origin=(20.0, 20.0)).to_mapping()]


def test_batch_isolates_malformed_item():
    pipe = Pipeline('grow', [Buffer(1.0)])
    results = run_batch(pipe, _inputs(), crs=PROJECTED)
    assert len(results) == 3
    assert [r.ok for r in results] == [True, False, True]
    assert results[1].failure.kind is ErrorKind.MALFORMED_GEOMETRY
    assert results[1].failure.step_index is None
    assert results[0].geometry.area > 100.0
    assert results[2].geometry.bounds[0] == pytest.approx(19.0)


def test_batch_isolates_step_failures():
    pipe = Pipeline('grow', [Buffer(1.0)])
    # the untagged middle item cannot be buffered; its neighbours still are
    results = run_batch(pipe, [square(), square(crs=None), square()])
    assert [r.ok for r in results] == [True, False, True]
    assert results[1].failure.kind is ErrorKind.MISSING_CRS
    assert results[1].failure.step_index == 0


def test_parallel_batch_matches_sequential():
    pipe = Pipeline('grow', [Buffer(1.0), Centroid()])
    inputs = _inputs() * 3
    seq = run_batch(pipe, inputs, crs=PROJECTED)
    par = run_batch(pipe, inputs, workers=4, crs=PROJECTED)
    assert len(par) == len(seq)
    for a, b in zip(seq, par):
        assert a.ok == b.ok
        if a.ok:
            assert a.geometry == b.geometry
        else:
            assert a.failure == b.failure


def test_iter_batch_is_lazy():
    pipe = Pipeline('grow', [Buffer(1.0)])
    seen = []

    def source():
        for g in (square(), square(), square()):
            seen.append(g)
            yield g

    it = iter_batch(pipe, source())
    first = next(it)
    assert first.ok
    assert len(seen) == 1


def test_coerce_input():
    assert coerce_input(square(crs=None), crs='EPSG:4326').crs == 'EPSG:4326'
    assert coerce_input(square(crs='EPSG:3857'), crs='EPSG:4326').crs == 'EPSG:3857'
    wkt = coerce_input('POINT (1 2)', crs=PROJECTED)
    assert wkt.coordinates == (1.0, 2.0)
    assert isinstance(coerce_input({'type': 'Point', 'coordinates': [0, 0]}), GeometryValue)


def test_run_single_bad_item():
    result = run(Pipeline('p', []), 42)
    assert result.failure.kind is ErrorKind.MALFORMED_GEOMETRY


def test_summarize():
    pipe = Pipeline('grow', [Buffer(1.0)])
    stats = summarize(run_batch(pipe, _inputs(), crs=PROJECTED))
    assert stats == {'total': 3, 'ok': 2, 'failed': 1, 'by_kind': {'MalformedGeometry': 1}}


def test_failures_are_logged(caplog):
    pipe = Pipeline('grow', [Buffer(1.0)])
    with caplog.at_level(logging.WARNING, logger='geopipe.runner'):
        run_batch(pipe, _inputs(), crs=PROJECTED)
    assert any('item 1 failed' in rec.getMessage() for rec in caplog.records)
