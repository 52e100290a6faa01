"""Minimal GeoJSON IO for geopipe.

`read_geometries` pulls raw geometry mappings out of a GeoJSON document
without validating them, so the runner can report a malformed item as that
item's failure. `write_results` dumps execution results as JSON.
"""

from pathlib import Path
from typing import Any, Iterable, List
import json
import logging

from geopipe.config import read_json
from geopipe.errors import MalformedGeometryError
from geopipe.pipeline import ExecutionResult

logger = logging.getLogger(__name__)


def extract_geometries(doc: Any) -> List[Any]:
    """Geometry mappings from a FeatureCollection, Feature, bare geometry or list.

    A feature with a null geometry yields ``None`` in its place.
    """
    if isinstance(doc, list):
        out = []
        for item in doc:
            out.extend(extract_geometries(item))
        return out
    if not isinstance(doc, dict):
        raise MalformedGeometryError(f'not a GeoJSON object: {type(doc).__name__}')
    kind = doc.get('type')
    if kind == 'FeatureCollection':
        return [f.get('geometry') if isinstance(f, dict) else f for f in doc.get('features', [])]
    if kind == 'Feature':
        return [doc.get('geometry')]
    return [doc]


def read_geometries(path) -> List[Any]:
    doc = read_json(path)
    geoms = extract_geometries(doc)
    logger.debug('read %d geometries from %s', len(geoms), path)
    return geoms


def write_results(path, results: Iterable[ExecutionResult]) -> Path:
    path = Path(path)
    payload = [r.to_dict() for r in results]
    with open(path, 'w', encoding='utf-8') as fh:
        json.dump(payload, fh, indent=2)
    logger.debug('wrote %d results to %s', len(payload), path)
    return path
