from __future__ import annotations

import argparse
import logging
import time
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from abaops.core.logging import configure_logging
from abaops.core.settings import settings
from abaops.db.base import ensure_aware, utcnow
from abaops.db.session import SessionLocal
from abaops.models.enums import ScheduledJobType
from abaops.services import community as community_service
from abaops.services.billing_period import is_due
from abaops.services.invoice_generation import run_invoice_generation_job
from abaops.services.scheduled_jobs import get_or_create_job, record_run


logger = logging.getLogger("scheduler_worker")


def run_due_jobs(db: Session, *, now: Optional[datetime] = None, limit: int = community_service.SCHEDULED_SEND_LIMIT) -> int:
    """Run every active job whose next_run has passed. Returns the number of jobs run."""
    current = ensure_aware(now) or utcnow()
    ran = 0

    invoice_job = get_or_create_job(db, ScheduledJobType.INVOICE_GENERATION, now=current)
    sender_job = get_or_create_job(db, ScheduledJobType.COMMUNITY_EMAIL_SENDER, now=current)
    db.commit()

    if is_due(invoice_job, current):
        summary = run_invoice_generation_job(db, now=current)
        db.commit()
        ran += 1
        logger.info(
            "Invoice generation for %s: created=%s updated=%s success=%s",
            summary.period.label,
            summary.invoices_created,
            summary.invoices_updated,
            summary.success,
        )

    if is_due(sender_job, current):
        outcome = community_service.run_scheduled_sender(db, now=current, limit=limit)
        record_run(
            db,
            sender_job,
            now=current,
            metadata={"sent": outcome.sent, "failed": outcome.failed, "errors": outcome.errors},
        )
        db.commit()
        ran += 1
        if outcome.sent or outcome.failed:
            logger.info("Scheduled community sender: %s", outcome.message)
    return ran


def main() -> None:
    parser = argparse.ArgumentParser(description="Run due scheduled jobs (invoice generation, community sender).")
    parser.add_argument("--once", action="store_true", help="Run once and exit.")
    parser.add_argument("--interval", type=int, default=60, help="Polling interval in seconds.")
    parser.add_argument("--limit", type=int, default=community_service.SCHEDULED_SEND_LIMIT, help="Max scheduled emails per pass.")
    args = parser.parse_args()

    configure_logging(level=settings.log_level)
    logger.info("Scheduler worker started (interval=%ss)", args.interval)

    while True:
        with SessionLocal() as db:
            try:
                run_due_jobs(db, limit=args.limit)
            except Exception:
                db.rollback()
                logger.exception("Scheduler pass failed")
        if args.once:
            break
        time.sleep(args.interval)


if __name__ == "__main__":
    main()
