# salesync/models/delisting_audit_log.py
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text

from salesync.core.utils import new_id, utc_now
from salesync.database import Base


class DelistingAuditLog(Base):
    """
    Append-only trail of everything the delisting pipeline does.

    This includes:
    - Job creation, confirmation, cancellation and retries
    - Every per-marketplace delisting attempt, with its duration
    - Job completion summaries
    """
    __tablename__ = "delisting_audit_log"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    delisting_job_id = Column(String(36), nullable=True, index=True)
    listing_id = Column(String(36), nullable=True, index=True)

    action = Column(String(50), nullable=False, index=True)  # 'job_created', 'listing_delisted', ...
    marketplace_type = Column(String(50), nullable=True, index=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    error_code = Column(String(50), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    context_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)

    def __repr__(self):
        return f"<DelistingAuditLog {self.action} job={self.delisting_job_id} success={self.success}>"
