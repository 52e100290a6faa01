import json

import pytest

from geopipe import cli, io
from geopipe.errors import MalformedGeometryError
from geopipe.operations import Buffer
from geopipe.pipeline import Pipeline
from geopipe.tests.fixtures.shapes import PROJECTED, square, write_feature_collection, write_json

OPEN_RING = {'type': 'Polygon', 'coordinates': [[[0, 0], [1, 0], [1, 1], [0, 1]]]}
GROW = {'name': 'grow', 'steps': [{'op': 'buffer', 'distance': 2, 'segments_per_quadrant': 8}]}


def test_extract_geometries_shapes():
    point = {'type': 'Point', 'coordinates': [1, 2]}
    fc = {'type': 'FeatureCollection', 'features': [
        {'type': 'Feature', 'geometry': point, 'properties': {}},
        {'type': 'Feature', 'geometry': None, 'properties': {}},
    ]}
    assert io.extract_geometries(fc) == [point, None]
    assert io.extract_geometries({'type': 'Feature', 'geometry': point}) == [point]
    assert io.extract_geometries(point) == [point]
    assert io.extract_geometries([point, fc]) == [point, point, None]
    with pytest.raises(MalformedGeometryError):
        io.extract_geometries('POINT (1 2)')


def test_write_results(tmp_path):
    pipe = Pipeline('grow', [Buffer(1.0)])
    results = [pipe.run(square()), pipe.run(square(crs=None))]
    out = io.write_results(tmp_path / 'out.json', results)
    data = json.loads(out.read_text())
    assert [d['ok'] for d in data] == [True, False]
    assert data[0]['crs'] == PROJECTED
    assert data[1]['error']['kind'] == 'MissingCrs'


def test_cli_run_writes_results(tmp_path):
    pipe_path = write_json(tmp_path / 'grow.json', GROW)
    in_path = write_feature_collection(tmp_path / 'in.geojson', [square().to_mapping(), OPEN_RING])
    out_path = tmp_path / 'out.json'
    code = cli.main(['run', '--pipeline', str(pipe_path), '--input', str(in_path),
                     '--crs', PROJECTED, '--output', str(out_path)])
    assert code == 1
    data = json.loads(out_path.read_text())
    assert data[0]['ok'] and data[0]['geometry']['type'] == 'Polygon'
    assert data[1]['error']['kind'] == 'MalformedGeometry'


def test_cli_run_all_ok_to_stdout(tmp_path, capsys):
    pipe_path = write_json(tmp_path / 'grow.json', GROW)
    in_path = write_feature_collection(tmp_path / 'in.geojson', [square().to_mapping()] * 3)
    code = cli.main(['run', '--pipeline', str(pipe_path), '--input', str(in_path),
                     '--crs', PROJECTED, '--workers', '2'])
    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert len(data) == 3 and all(d['ok'] for d in data)


def test_cli_validate(tmp_path, capsys):
    pipe_path = write_json(tmp_path / 'grow.json', GROW)
    assert cli.main(['validate', '--pipeline', str(pipe_path)]) == 0
    out = capsys.readouterr().out
    assert 'grow: 1 steps' in out
    assert '[0] buffer' in out


def test_cli_bad_pipeline_exits_2(tmp_path):
    bad = write_json(tmp_path / 'bad.json', {'steps': [{'op': 'simplify', 'tolerance': 0}]})
    assert cli.main(['validate', '--pipeline', str(bad)]) == 2
    assert cli.main(['validate', '--pipeline', str(tmp_path / 'missing.json')]) == 2
