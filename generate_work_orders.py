"""Scheduled job: open work orders for automatic routines that are due.

Run once from cron, or with --loop to repeat every GENERATION_INTERVAL_MINUTES.
"""
import argparse
import logging
import time

from db.database import SessionLocal
from db.seed import seed_all
from api.services.generation import WorkOrderGenerationService
from api.utils.config import GENERATION_INTERVAL_MINUTES, LOG_LEVEL

logger = logging.getLogger("generate_work_orders")


def run_once(seed: bool = False) -> int:
    db = SessionLocal()
    try:
        if seed:
            seed_all(db)
        generated = WorkOrderGenerationService(db).generate_due_work_orders()
        for work_order in generated:
            logger.info(f"{work_order.wo_number}: {work_order.title} [{work_order.status}]")
        return len(generated)
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Generate work orders for due maintenance routines")
    parser.add_argument("--seed", action="store_true", help="seed categories, types and roles before scanning")
    parser.add_argument("--loop", action="store_true", help="keep running on a fixed interval")
    parser.add_argument(
        "--interval",
        type=int,
        default=GENERATION_INTERVAL_MINUTES,
        help="minutes between scans when --loop is set",
    )
    args = parser.parse_args()

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    count = run_once(seed=args.seed)
    print(f"Generated {count} work order(s)")
    while args.loop:
        time.sleep(args.interval * 60)
        count = run_once()
        print(f"Generated {count} work order(s)")


if __name__ == "__main__":
    main()
