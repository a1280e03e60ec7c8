from __future__ import annotations

"""
Command line triggers for the batch side of the tile proxy.

Examples:
  # cron: drain the refresh queue, at most 200 tiles per run
  python -m tileproxy.cli refresh --max 200

  # warm the cache for the configured region at zooms 12..14
  python -m tileproxy.cli seed --zoom 12 13 14

  # seed a different box than the configured one
  python -m tileproxy.cli seed --zoom 16 --bbox -77.06 38.86 -77.04 38.88

  # run the HTTP proxy
  python -m tileproxy.cli serve --port 8080
"""

import argparse
import json
import sys
from typing import List, Optional

from common.geo import Region
from common.logging_setup import setup_logging
from tileproxy.config import load_settings
from tileproxy.service import TileService


def _cmd_refresh(args, settings) -> int:
    service = TileService.from_settings(settings)
    report = service.run_refresh_batch(args.max)
    print(json.dumps(report.to_dict()))
    return 0


def _cmd_seed(args, settings) -> int:
    region = settings.region
    if args.bbox:
        region = Region.from_bbox(args.bbox, min_zoom=min(args.zoom), max_zoom=max(args.zoom))
    service = TileService.from_settings(settings)
    report = service.seed(region, args.zoom, skip_existing=not args.force)
    print(json.dumps(report.to_dict()))
    return 0 if report.failed == 0 else 1


def _cmd_serve(args, settings) -> int:
    import uvicorn

    from tileproxy.server import create_app

    app = create_app(settings)
    uvicorn.run(app, host=args.host or settings.server.host, port=args.port or settings.server.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="tileproxy")
    ap.add_argument("--config", default=None, help="YAML config (default: $TILEPROXY_CONFIG or config/params.yaml)")
    ap.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR (default: $LOG_LEVEL or INFO)")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("refresh", help="Drain the refresh queue once")
    p.add_argument("--max", type=int, default=None, help="Max tiles to refresh this run (default: refresh.max_per_run)")
    p.set_defaults(func=_cmd_refresh)

    p = sub.add_parser("seed", help="Download every tile of a region")
    p.add_argument("--zoom", nargs="+", type=int, required=True, help="Zoom levels to seed")
    p.add_argument("--bbox", nargs=4, type=float, default=None,
                   metavar=("LON_MIN", "LAT_MIN", "LON_MAX", "LAT_MAX"), help="Override the configured region")
    p.add_argument("--force", action="store_true", help="Re-download tiles that are already cached")
    p.set_defaults(func=_cmd_seed)

    p = sub.add_parser("serve", help="Run the HTTP proxy with uvicorn")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=_cmd_serve)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "refresh" and args.max is not None and args.max < 0:
        print("--max must be >= 0", file=sys.stderr)
        return 2
    setup_logging(args.log_level)
    settings = load_settings(args.config)
    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
