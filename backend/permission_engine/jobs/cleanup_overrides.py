from __future__ import annotations

import argparse
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from permission_engine.core.db import SessionLocal
from permission_engine.core.logging import configure_logging
from permission_engine.core.metrics import record_job_run
from permission_engine.core.time import utcnow
from permission_engine.crud.organization_overrides import cleanup_expired_organization_overrides
from permission_engine.crud.overrides import cleanup_expired_overrides


logger = logging.getLogger(__name__)

JOB_NAME = "cleanup_overrides"


def run_override_cleanup(
    db: Session,
    now: datetime | None = None,
    *,
    invalidator=None,
) -> dict[str, int]:
    cutoff = now or utcnow()
    try:
        removed = {
            "user_overrides": cleanup_expired_overrides(db, cutoff, invalidator=invalidator),
            "organization_overrides": cleanup_expired_organization_overrides(
                db, cutoff, invalidator=invalidator
            ),
        }
    except Exception:
        record_job_run(job_name=JOB_NAME, success=False)
        logger.exception("jobs.cleanup_overrides_failed")
        raise
    record_job_run(job_name=JOB_NAME, success=True)
    logger.info("jobs.cleanup_overrides_completed", extra={"removed": removed})
    return removed


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete expired user and organization overrides.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    _parse_args(argv)
    configure_logging()
    with SessionLocal() as db:
        run_override_cleanup(db)


if __name__ == "__main__":
    main()
