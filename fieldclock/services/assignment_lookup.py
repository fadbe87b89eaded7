from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from fieldclock.core.errors import NotAssigned
from fieldclock.models.job import Job, JobAssignment
from fieldclock.services.geometry import Coordinate


@dataclass(frozen=True)
class JobSite:
    job_id: int
    company_id: int
    center: Coordinate
    radius_m: Optional[float]


def find_job_site(
    db: Session,
    *,
    company_id: int,
    job_id: int,
    worker_id: str,
    at: datetime,
) -> JobSite:
    """
    Resolve the geofence for a job the worker is actively assigned to at `at`.

    Raises NotAssigned when the job is unknown to this company, inactive, or the
    worker has no assignment whose window covers `at`.
    """
    job = (
        db.query(Job)
        .filter(
            Job.id == int(job_id),
            Job.company_id == int(company_id),
        )
        .first()
    )
    if job is None or not job.is_active:
        raise NotAssigned("Not assigned to this job", context={"job_id": int(job_id)})

    assignments = (
        db.query(JobAssignment)
        .filter(
            JobAssignment.company_id == int(company_id),
            JobAssignment.job_id == int(job_id),
            JobAssignment.worker_id == str(worker_id),
            JobAssignment.active.is_(True),
        )
        .all()
    )
    if not assignments:
        raise NotAssigned("Not assigned to this job", context={"job_id": int(job_id)})

    in_window = [
        a for a in assignments
        if (a.starts_at is None or a.starts_at <= at) and (a.ends_at is None or at <= a.ends_at)
    ]
    if not in_window:
        a = assignments[0]
        raise NotAssigned(
            "Assignment is not active at the requested time",
            context={
                "job_id": int(job_id),
                "starts_at": a.starts_at.isoformat() if a.starts_at else None,
                "ends_at": a.ends_at.isoformat() if a.ends_at else None,
            },
        )

    return JobSite(
        job_id=job.id,
        company_id=job.company_id,
        center=Coordinate(lat=job.center_lat, lng=job.center_lng),
        radius_m=job.radius_m,
    )
