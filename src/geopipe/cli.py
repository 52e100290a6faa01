"""
Command line entry point.

usage:
    geopipe run --pipeline coast.json --input coast.geojson --crs EPSG:3857
    geopipe run --pipeline coast.json --input coast.geojson --output out.json --workers 4
    geopipe validate --pipeline coast.json
"""

import argparse
import json
import logging
import sys

from geopipe import config
from geopipe.errors import GeoPipeError
from geopipe.io import read_geometries, write_results
from geopipe.runner import run_batch, summarize
from geopipe.utils import safe_log_exception

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(prog='geopipe', description='Run declarative geometry-transform pipelines')
    parser.add_argument('--verbose', dest='verbose', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    run_p = sub.add_parser('run', help='Run a pipeline over every geometry in a GeoJSON file')
    run_p.add_argument('--pipeline', required=True, help='Pipeline JSON document')
    run_p.add_argument('--input', required=True, help='GeoJSON FeatureCollection, Feature, geometry or list')
    run_p.add_argument('--crs', default=None, help='CRS tag attached to every input geometry (e.g. EPSG:3857)')
    run_p.add_argument('--output', default=None, help='Write results JSON here (default: stdout)')
    run_p.add_argument('--workers', type=int, default=config.DEFAULT_WORKERS, help='Parallel workers (dask threads)')

    val_p = sub.add_parser('validate', help='Build a pipeline and report its steps without running it')
    val_p.add_argument('--pipeline', required=True, help='Pipeline JSON document')
    return parser


def _cmd_validate(args):
    pipe = config.load_pipeline(args.pipeline)
    print(f'{pipe.name}: {len(pipe)} steps')
    for pos, step in enumerate(pipe):
        print(f'  [{pos}] {step.op}')
    return config.EXIT_OK


def _cmd_run(args):
    pipe = config.load_pipeline(args.pipeline)
    inputs = read_geometries(args.input)
    results = run_batch(pipe, inputs, workers=args.workers, crs=args.crs)
    if args.output:
        write_results(args.output, results)
    else:
        json.dump([r.to_dict() for r in results], sys.stdout, indent=2)
        sys.stdout.write('\n')
    stats = summarize(results)
    logger.info('pipeline %r: %d ok, %d failed %s', pipe.name, stats['ok'], stats['failed'], stats['by_kind'])
    return config.EXIT_OK if stats['failed'] == 0 else config.EXIT_ITEM_FAILED


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    try:
        if args.command == 'validate':
            return _cmd_validate(args)
        return _cmd_run(args)
    except (GeoPipeError, OSError) as e:
        safe_log_exception('geopipe failed', e, command=args.command)
        return config.EXIT_CONFIG_ERROR


if __name__ == '__main__':
    sys.exit(main())
