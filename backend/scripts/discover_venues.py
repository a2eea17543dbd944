"""Populate venues around a point from the brewery directory and map data.

Usage:
    python backend/scripts/discover_venues.py --lat 45.52 --lng -122.68 [--radius 10000]

Areas searched in the last 24 hours are skipped unless the verification
cache is cleared first (see verification_cache.py).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from db import init_db  # noqa: E402
from services.factory import get_venue_discovery  # noqa: E402
from services.geo import is_valid_coordinate  # noqa: E402
from services.overpass_client import DISCOVERY_RADIUS_M  # noqa: E402

logger = logging.getLogger("discover_venues")


def main(argv=None) -> int:
    if not logger.handlers:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="Discover brewery/winery venues near a point.")
    parser.add_argument("--lat", type=float, required=True)
    parser.add_argument("--lng", type=float, required=True)
    parser.add_argument("--radius", type=int, default=DISCOVERY_RADIUS_M, help="Map-data radius in meters.")
    args = parser.parse_args(argv)

    if not is_valid_coordinate(args.lat, args.lng):
        parser.error("coordinates out of range")

    init_db()
    report = get_venue_discovery().discover_area(args.lat, args.lng, radius_m=args.radius)
    if report.cached:
        logger.info("Area already searched in the last 24 hours; nothing to do.")
    print(json.dumps(report.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
