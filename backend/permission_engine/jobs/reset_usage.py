from __future__ import annotations

import argparse
import logging
import time
from datetime import datetime

from sqlalchemy.orm import Session

from permission_engine.core.db import SessionLocal
from permission_engine.core.logging import configure_logging
from permission_engine.core.metrics import record_job_run
from permission_engine.crud.usage import reset_all_monthly_usage, reset_all_usage_for_user


logger = logging.getLogger(__name__)

JOB_NAME = "reset_usage"


def run_usage_reset(
    db: Session,
    *,
    user_id: int | None = None,
    now: datetime | None = None,
    invalidator=None,
) -> int:
    """Start a new usage period. Every touched user's resolved maps are
    invalidated through the usage mutation path."""
    started = time.perf_counter()
    try:
        if user_id is not None:
            count = reset_all_usage_for_user(db, user_id, invalidator=invalidator)
        else:
            count = reset_all_monthly_usage(db, now, invalidator=invalidator)
    except Exception:
        record_job_run(job_name=JOB_NAME, success=False)
        logger.exception("jobs.reset_usage_failed", extra={"user_id": user_id})
        raise
    record_job_run(job_name=JOB_NAME, success=True)
    logger.info(
        "jobs.reset_usage_completed",
        extra={
            "user_id": user_id,
            "records_reset": count,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return count


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reset usage counters for a new billing period.")
    parser.add_argument("--user-id", type=int, default=None, help="Reset a single user only.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    configure_logging()
    with SessionLocal() as db:
        run_usage_reset(db, user_id=args.user_id)


if __name__ == "__main__":
    main()
