from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from abaops.core.settings import settings
from abaops.db.base import ensure_aware, utcnow
from abaops.models.enums import ScheduledJobType
from abaops.models.scheduled_job import ScheduledJob
from abaops.services.billing_period import WEEKLY_INVOICE_SCHEDULE, get_next_minute, get_next_run_time


EVERY_MINUTE = "* * * * *"

JOB_SCHEDULES = {
    ScheduledJobType.INVOICE_GENERATION: WEEKLY_INVOICE_SCHEDULE,
    ScheduledJobType.COMMUNITY_EMAIL_SENDER: EVERY_MINUTE,
}


def next_run_for(job_type: ScheduledJobType, now: Optional[datetime] = None) -> datetime:
    if job_type == ScheduledJobType.INVOICE_GENERATION:
        return get_next_run_time(now, settings.billing_timezone)
    return get_next_minute(now)


def get_job(db: Session, job_type: ScheduledJobType) -> Optional[ScheduledJob]:
    return db.query(ScheduledJob).filter(ScheduledJob.job_type == job_type).first()


def get_or_create_job(db: Session, job_type: ScheduledJobType, *, now: Optional[datetime] = None) -> ScheduledJob:
    job = get_job(db, job_type)
    if job:
        return job
    job = ScheduledJob(
        job_type=job_type,
        schedule=JOB_SCHEDULES[job_type],
        timezone=settings.billing_timezone,
        active=True,
        next_run=next_run_for(job_type, now),
    )
    db.add(job)
    db.flush()
    return job


def record_run(
    db: Session,
    job: ScheduledJob,
    *,
    now: Optional[datetime] = None,
    metadata: Optional[dict] = None,
) -> ScheduledJob:
    current = ensure_aware(now) or utcnow()
    job.last_run = current
    job.next_run = next_run_for(job.job_type, current)
    if metadata is not None:
        job.metadata_json = metadata
    db.add(job)
    db.flush()
    return job
