"""
Fail and refund generations stuck in pending/processing (crashed worker).

Usage (from backend/ with DATABASE_URL set):
  python -m atelier.scripts.sweep_stale_generations
  python -m atelier.scripts.sweep_stale_generations --minutes 30

Same sweep Celery beat runs every 10 minutes; useful when beat is not running.
"""
from __future__ import annotations

import argparse
from datetime import timedelta

from atelier.components.generations.reconciliation import fail_stale_generations
from atelier.platform.config import settings
from atelier.platform.database import SessionLocal


def main() -> None:
    parser = argparse.ArgumentParser(description="Fail and refund stale generations.")
    parser.add_argument(
        "--minutes",
        type=int,
        default=settings.GENERATION_STALE_AFTER_MINUTES,
        help="Age in minutes after which a pending/processing generation is stale.",
    )
    args = parser.parse_args()
    db = SessionLocal()
    try:
        failed = fail_stale_generations(db, timedelta(minutes=args.minutes))
        print(f"Failed and refunded {failed} stale generation(s) older than {args.minutes} minutes.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
