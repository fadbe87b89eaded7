from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.schema import Index

from fieldclock.core.timeutil import utcnow
from fieldclock.database import Base

OUTCOME_ACCEPTED = "accepted"
OUTCOME_REJECTED = "rejected"
OUTCOME_ERROR = "error"
OUTCOME_DUPLICATE = "duplicate_resolved"


class ClockEvent(Base):
    """One row per physical clock attempt. Rows are never updated or deleted."""

    __tablename__ = "clock_events"

    id = Column(String, primary_key=True)

    company_id = Column(Integer, nullable=False, index=True)
    worker_id = Column(String, nullable=False, index=True)
    job_id = Column(Integer, nullable=True, index=True)

    kind = Column(String(3), nullable=False)
    client_event_id = Column(String(64), nullable=True, index=True)
    requested_at = Column(DateTime, nullable=True)

    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    accuracy_m = Column(Float, nullable=True)

    outcome = Column(String, nullable=False, index=True)
    rejection_reason = Column(String, nullable=True)
    message = Column(Text, nullable=True)

    entry_id = Column(String, nullable=True, index=True)
    distance_m = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_clock_events_worker_created", "worker_id", "created_at"),
    )
