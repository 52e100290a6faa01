"""
config.py

Central place for geopipe defaults and for loading declarative pipeline
documents.

Contents:
---------
1. Step defaults:
   - `DEFAULT_SEGMENTS_PER_QUADRANT`: arc resolution used by Buffer when a
     step descriptor does not name one.
   - `DEFAULT_PRESERVE_TOPOLOGY`: Simplify default.
   - `DEFAULT_SMOOTH_SIGMA`: Gaussian kernel width (in vertices) for Smooth.

2. Runner defaults:
   - `DEFAULT_WORKERS`: 1 runs batches sequentially; larger values submit
     items as dask tasks on the threaded scheduler.
   - `DASK_SCHEDULER`: scheduler name passed to `dask.compute`.

3. Pipeline documents:
   - JSON files of the form
         {"name": "shrink-and-grow",
          "steps": [{"op": "simplify", "tolerance": 0.5},
                    {"op": "buffer", "distance": 2.0}]}
   - `load_pipeline(path)` reads one and returns a built `Pipeline`.

Usage:
------
    from geopipe.config import load_pipeline
    pipe = load_pipeline("pipelines/coast.json")
"""
import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Step defaults
DEFAULT_SEGMENTS_PER_QUADRANT = 8
DEFAULT_PRESERVE_TOPOLOGY = True
DEFAULT_SMOOTH_SIGMA = 1.0

# Runner defaults
DEFAULT_WORKERS = 1
DASK_SCHEDULER = 'threads'

# CLI exit codes
EXIT_OK = 0
EXIT_ITEM_FAILED = 1
EXIT_CONFIG_ERROR = 2


def read_json(path):
    """Read a JSON document; `InvalidOperationParametersError` on bad JSON."""
    from geopipe.errors import InvalidOperationParametersError

    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as fh:
            return json.load(fh)
    except json.JSONDecodeError as e:
        raise InvalidOperationParametersError(f'{path}: not valid JSON ({e})') from e


def load_pipeline(path):
    """Load and build a `Pipeline` from a JSON pipeline document.

    A document without a `name` is named after the file stem.
    """
    from geopipe.pipeline import Pipeline

    doc = read_json(path)
    if isinstance(doc, dict) and 'name' not in doc:
        doc = dict(doc, name=Path(path).stem)
    pipe = Pipeline.from_config(doc)
    logger.debug('loaded pipeline %r with %d steps from %s', pipe.name, len(pipe), path)
    return pipe
