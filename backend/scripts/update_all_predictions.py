#!/usr/bin/env python3
"""
Refresh the national prediction and every region prediction, then rebuild the
aggregated national record.
Usage:
  python -m scripts.update_all_predictions                 # fast mode, all regions
  python -m scripts.update_all_predictions --full          # fetch news + district generation
  python -m scripts.update_all_predictions --regions 13 27 --no-national
"""
import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

# Ensure backend root is on path (parent of scripts/)
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))
from diet_forecast.config import Settings
from diet_forecast.errors import ConfigurationError
from diet_forecast.forecast_service import build_service


async def run(args) -> int:
    settings = Settings.from_env()
    service = build_service(settings)
    total = len(args.regions or service.reference.regions) + (0 if args.no_national else 1)
    print(f"Updating {total} predictions ({'full' if args.full else 'fast'} mode)")

    start = time.monotonic()
    summary = await service.refresh_all(
        fast_mode=not args.full,
        include_national=not args.no_national,
        concurrency=args.concurrency,
        region_ids=args.regions,
    )
    if args.rebuild:
        national = await service.rebuild_national()
        summary["nationalRebuilt"] = national is not None

    elapsed = int(time.monotonic() - start)
    summary["elapsed"] = f"{elapsed // 60}m{elapsed % 60}s"
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 1 if summary["failed"] else 0


def main():
    p = argparse.ArgumentParser(description="Refresh national + per-region election predictions")
    p.add_argument("--full", action="store_true", help="Use news retrieval and full generation instead of fast mode")
    p.add_argument("--concurrency", type=int, default=None, help="Regions refreshed in parallel")
    p.add_argument("--regions", type=int, nargs="+", default=None, help="Only refresh these region ids")
    p.add_argument("--no-national", action="store_true", help="Skip the directly generated national prediction")
    p.add_argument("--rebuild", action="store_true", help="Aggregate region caches into the national record afterwards")
    args = p.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    try:
        code = asyncio.run(run(args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
