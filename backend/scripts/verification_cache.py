"""Inspect or reset the verification cache.

Usage:
    python backend/scripts/verification_cache.py stats
    python backend/scripts/verification_cache.py purge   # drop expired entries
    python backend/scripts/verification_cache.py clear   # drop everything
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

from services.verification_cache import VerificationCache  # noqa: E402

logger = logging.getLogger("verification_cache")


def main(argv=None) -> int:
    if not logger.handlers:
        logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="Operate on the verification cache.")
    parser.add_argument("command", choices=["stats", "clear", "purge"])
    parser.add_argument("--path", default=None, help="Cache file (defaults to VERIFICATION_CACHE_PATH).")
    args = parser.parse_args(argv)

    cache = VerificationCache(args.path)
    try:
        if args.command == "stats":
            print(json.dumps(cache.get_stats(), indent=2, sort_keys=True))
        elif args.command == "purge":
            logger.info("Purged %d expired entries", cache.purge_expired())
        else:
            logger.info("Cleared %d entries", cache.clear_all())
    finally:
        cache.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
