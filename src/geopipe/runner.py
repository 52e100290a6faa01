"""
runner.py

Batch execution of a pipeline over many inputs.

Each item is isolated: a malformed input or a failing step produces a failed
`ExecutionResult` for that item only, and the batch carries on. Results come
back in input order.

Inputs may be `GeometryValue` objects, GeoJSON-style geometry mappings or
WKT strings; the latter two are parsed per item so that parse errors are
reported as `MalformedGeometry` results instead of aborting the batch.

With ``workers > 1`` items are submitted as `dask.delayed` tasks and computed
on the threaded scheduler. Values and operations are immutable and the engine
is stateless, so no locking is involved.
"""
from typing import Any, Iterable, Iterator, List, Mapping, Optional
import logging

import dask

from geopipe import config
from geopipe.engine import GeometryEngine, default_engine
from geopipe.errors import GeoPipeError, MalformedGeometryError
from geopipe.geometry import GeometryValue
from geopipe.pipeline import ExecutionResult, Pipeline

logger = logging.getLogger(__name__)


def coerce_input(item: Any, crs: Optional[str] = None) -> GeometryValue:
    """Turn one batch item into a `GeometryValue`.

    `crs` is attached to parsed items; a `GeometryValue` keeps its own CRS
    unless it has none.
    """
    if isinstance(item, GeometryValue):
        if item.crs is None and crs is not None:
            return item.with_crs(crs)
        return item
    if isinstance(item, Mapping):
        return GeometryValue.from_mapping(item, crs=crs)
    if isinstance(item, str):
        return GeometryValue.from_wkt(item, crs=crs)
    raise MalformedGeometryError(f'unsupported input item of type {type(item).__name__}')


def run(pipeline: Pipeline, item: Any, engine: Optional[GeometryEngine] = None,
        crs: Optional[str] = None) -> ExecutionResult:
    """Run `pipeline` on a single item, returning a failed result for bad input."""
    try:
        value = coerce_input(item, crs=crs)
    except GeoPipeError as e:
        return ExecutionResult.failed(pipeline.name, e)
    return pipeline.run(value, engine=engine)


def iter_batch(pipeline: Pipeline, inputs: Iterable[Any], engine: Optional[GeometryEngine] = None,
               crs: Optional[str] = None) -> Iterator[ExecutionResult]:
    """Lazily run `pipeline` over `inputs`, one item at a time.

    Stopping iteration stops the batch; nothing further is submitted.
    """
    engine = engine or default_engine()
    for i, item in enumerate(inputs):
        result = run(pipeline, item, engine=engine, crs=crs)
        _log_result(pipeline, i, result)
        yield result


def run_batch(pipeline: Pipeline, inputs: Iterable[Any], workers: int = config.DEFAULT_WORKERS,
              engine: Optional[GeometryEngine] = None, crs: Optional[str] = None) -> List[ExecutionResult]:
    """Run `pipeline` over every input; one result per input, in order."""
    items = list(inputs)
    engine = engine or default_engine()
    if workers is None or workers <= 1 or len(items) <= 1:
        return list(iter_batch(pipeline, items, engine=engine, crs=crs))

    logger.debug('pipeline %r: %d items on %d dask workers', pipeline.name, len(items), workers)
    tasks = [dask.delayed(run)(pipeline, item, engine, crs) for item in items]
    results = list(dask.compute(*tasks, scheduler=config.DASK_SCHEDULER, num_workers=int(workers)))
    for i, result in enumerate(results):
        _log_result(pipeline, i, result)
    return results


def summarize(results: Iterable[ExecutionResult]) -> dict:
    """Count successes and failures (by error kind) in a batch."""
    out = {'total': 0, 'ok': 0, 'failed': 0, 'by_kind': {}}
    for r in results:
        out['total'] += 1
        if r.ok:
            out['ok'] += 1
        else:
            out['failed'] += 1
            key = r.failure.kind.value
            out['by_kind'][key] = out['by_kind'].get(key, 0) + 1
    return out


def _log_result(pipeline: Pipeline, index: int, result: ExecutionResult) -> None:
    if result.ok:
        logger.debug('pipeline %r item %d ok', pipeline.name, index)
    else:
        f = result.failure
        logger.warning('pipeline %r item %d failed: %s at step %s: %s',
                       pipeline.name, index, f.kind.value, f.step_index, f.message)
