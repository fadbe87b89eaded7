from fieldclock.models.audit_record import AuditRecord
from fieldclock.models.clock_event import ClockEvent
from fieldclock.models.idempotency_record import IdempotencyRecord
from fieldclock.models.job import Job, JobAssignment
from fieldclock.models.time_entry import TimeEntry

__all__ = [
    "AuditRecord",
    "ClockEvent",
    "IdempotencyRecord",
    "Job",
    "JobAssignment",
    "TimeEntry",
]
