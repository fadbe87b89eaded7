from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text, text
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.schema import Index, UniqueConstraint

from fieldclock.core.timeutil import utcnow
from fieldclock.database import Base

TAG_GEOFENCE_OUT = "geofence_out"
TAG_LOW_ACCURACY_OUT = "low_accuracy_out"
TAG_AUTO_CLOSED = "auto_closed"
TAG_OVERLAP = "overlap"
TAG_FORCED_EDIT = "forced_edit"
TAG_CANCELLED = "cancelled"


class TimeEntry(Base):
    __tablename__ = "time_entries"

    time_entry_id = Column(String, primary_key=True, index=True)

    company_id = Column(Integer, nullable=False, index=True)
    worker_id = Column(String, nullable=False, index=True)
    job_id = Column(Integer, nullable=False, index=True)

    clock_in_at = Column(DateTime, nullable=False)
    clock_out_at = Column(DateTime, nullable=True)

    geo_ok_in = Column(Boolean, nullable=False, default=True)
    geo_ok_out = Column(Boolean, nullable=True)

    exception_tags = Column(MutableList.as_mutable(JSON), nullable=False, default=list)

    approved = Column(Boolean, nullable=False, default=False)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    invoice_id = Column(String, nullable=True, index=True)
    version = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)

    clock_in_event_id = Column(String(64), nullable=False)
    clock_out_event_id = Column(String(64), nullable=True)

    distance_in_m = Column(Float, nullable=True)
    accuracy_in_m = Column(Float, nullable=True)
    effective_radius_in_m = Column(Float, nullable=True)
    distance_out_m = Column(Float, nullable=True)
    accuracy_out_m = Column(Float, nullable=True)
    effective_radius_out_m = Column(Float, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("worker_id", "clock_in_event_id", name="uq_time_entries_clock_in_event"),
        UniqueConstraint("worker_id", "clock_out_event_id", name="uq_time_entries_clock_out_event"),
        Index(
            "uq_time_entries_open",
            "worker_id",
            unique=True,
            postgresql_where=text("clock_out_at IS NULL"),
            sqlite_where=text("clock_out_at IS NULL"),
        ),
        Index("ix_time_entries_worker_clock_in", "worker_id", "clock_in_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.clock_out_at is None

    @property
    def is_locked(self) -> bool:
        return bool(self.invoice_id)

    def tag_set(self) -> set:
        return set(self.exception_tags or [])

    def add_tags(self, *tags: str) -> None:
        merged = self.tag_set() | {t for t in tags if t}
        self.exception_tags = sorted(merged)

    def remove_tags(self, *tags: str) -> None:
        remaining = self.tag_set() - set(tags)
        self.exception_tags = sorted(remaining)
