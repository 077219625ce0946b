# salesync/services/audit_logger.py
import logging
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.enums import AuditAction
from salesync.core.utils import utc_now
from salesync.models.delisting_audit_log import DelistingAuditLog

logger = logging.getLogger(__name__)

class AuditLogger:
    """
    Service for writing the delisting audit trail.

    Entries are added to the caller's session and flushed, never committed:
    they land in the same transaction as the state change they describe.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_event(
        self,
        user_id: str,
        action: AuditAction,
        delisting_job_id: Optional[str] = None,
        listing_id: Optional[str] = None,
        marketplace_type: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None,
        duration_ms: Optional[int] = None,
        context_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[DelistingAuditLog]:
        """
        Record one audit entry.

        Args:
            user_id: Owner of the job or listing
            action: What happened (job_created, listing_delisted, ...)
            delisting_job_id: Job the entry belongs to, if any
            listing_id: Listing the entry is about, if any
            marketplace_type: Marketplace involved, if any
            success: Whether the action succeeded
            error_message: Failure description
            error_code: Delisting error code for failures
            duration_ms: Wall-clock duration of the action
            context_data: Additional details as a dictionary

        Returns:
            The created entry, or None if it could not be written
        """
        try:
            entry = DelistingAuditLog(
                user_id=user_id,
                delisting_job_id=delisting_job_id,
                listing_id=listing_id,
                action=AuditAction(action).value,
                marketplace_type=marketplace_type,
                success=success,
                error_message=error_message,
                error_code=error_code,
                duration_ms=duration_ms,
                context_data=context_data,
                created_at=utc_now(),
            )

            self.db.add(entry)
            await self.db.flush()

            logger.debug(
                f"Audit logged: {entry.action} job={delisting_job_id} "
                f"(marketplace: {marketplace_type or 'N/A'}, success: {success})"
            )

            return entry

        except Exception as e:
            logger.error(f"Error writing audit entry {action}: {str(e)}")
            # Audit writes must not interrupt delisting
            return None
