from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from abaops.core import rbac
from abaops.core.deps import get_current_user
from abaops.db.session import get_db
from abaops.models.enums import ScheduledJobType
from abaops.models.scheduled_job import ScheduledJob
from abaops.models.user import User
from abaops.schemas.dashboard import ScheduledJobRead
from abaops.services import community as community_service
from abaops.services.invoice_generation import run_invoice_generation_job
from abaops.services.scheduled_jobs import get_or_create_job, record_run

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

logger = logging.getLogger(__name__)


@router.get("", response_model=List[ScheduledJobRead])
def list_jobs(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[ScheduledJobRead]:
    rbac.require_admin(current_user)
    jobs = db.query(ScheduledJob).order_by(ScheduledJob.job_type.asc()).all()
    return [ScheduledJobRead.model_validate(job) for job in jobs]


@router.post("/{job_type}/run", response_model=ScheduledJobRead)
def run_job(
    job_type: ScheduledJobType,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ScheduledJobRead:
    rbac.require_admin(current_user)
    logger.info("Manual run of %s requested by user %s", job_type.value, current_user.id)
    if job_type == ScheduledJobType.INVOICE_GENERATION:
        run_invoice_generation_job(db)
        job = get_or_create_job(db, job_type)
    else:
        job = get_or_create_job(db, job_type)
        outcome = community_service.run_scheduled_sender(db)
        record_run(db, job, metadata={"sent": outcome.sent, "failed": outcome.failed, "errors": outcome.errors})
    db.commit()
    db.refresh(job)
    return ScheduledJobRead.model_validate(job)
