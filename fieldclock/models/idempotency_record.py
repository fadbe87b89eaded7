from sqlalchemy import Column, DateTime, Integer, JSON, String

from fieldclock.core.timeutil import utcnow
from fieldclock.database import Base


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    worker_id = Column(String, primary_key=True)
    client_event_id = Column(String(64), primary_key=True)

    company_id = Column(Integer, nullable=False, index=True)
    kind = Column(String(3), nullable=False)

    result = Column(JSON, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
