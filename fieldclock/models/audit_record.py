from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text

from fieldclock.core.timeutil import utcnow
from fieldclock.database import Base


class AuditRecord(Base):
    __tablename__ = "audit_records"

    id = Column(String, primary_key=True)

    entry_id = Column(
        String,
        ForeignKey("time_entries.time_entry_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    company_id = Column(Integer, nullable=False, index=True)

    edited_by = Column(String, nullable=False)
    edit_reason = Column(Text, nullable=False)

    before = Column(JSON, nullable=False)
    after = Column(JSON, nullable=False)

    force_edit = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
