from typing import List, Optional

from salesync.schemas.base import BaseSchema


class RecordEventResult(BaseSchema):
    """Outcome of recording a sale event: a new row, or the id of the row it duplicates."""
    event_id: str
    created: bool
    duplicate: bool = False


class IngestResult(BaseSchema):
    success: bool
    event_id: Optional[str] = None
    job_id: Optional[str] = None
    duplicate: bool = False
    error: Optional[str] = None


class JobDerivationResult(BaseSchema):
    """Outcome of deriving the delisting job for one stored sale event."""
    event_id: str
    processed: bool = False
    job_id: Optional[str] = None
    error: Optional[str] = None


class SaleEventQueueRunResult(BaseSchema):
    success: bool
    events_processed: int = 0
    jobs_created: int = 0
    events_failed: int = 0
    errors: List[str] = []


class SaleEventQueueStats(BaseSchema):
    unprocessed_events: int = 0
    processing_errors: int = 0
    exhausted_events: int = 0
