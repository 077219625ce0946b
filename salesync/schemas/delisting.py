from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from salesync.schemas.base import BaseSchema


class DelistingErrorDetail(BaseModel):
    code: str
    message: str
    marketplace: Optional[str] = None
    listing_id: Optional[str] = None
    external_id: Optional[str] = None
    retry_after: Optional[int] = None
    permanent: bool = False


class DelistingResult(BaseModel):
    """Outcome of ending one listing on one marketplace."""
    marketplace: str
    listing_id: Optional[str] = None
    success: bool
    delisted_at: Optional[str] = None
    external_response: Optional[Any] = None
    duration_ms: int = 0
    error: Optional[DelistingErrorDetail] = None


class DelistingJobResult(BaseModel):
    """Outcome of one execute_delisting_job call."""
    success: bool
    job_id: str
    status: Optional[str] = None
    total_targeted: int = 0
    total_completed: int = 0
    total_failed: int = 0
    results: List[DelistingResult] = []
    error: Optional[str] = None


class PendingRunResult(BaseModel):
    success: bool
    jobs_processed: int = 0
    jobs_failed: int = 0
    errors: List[str] = []


class RetryRunResult(BaseModel):
    success: bool
    jobs_retried: int = 0
    jobs_skipped: int = 0
    errors: List[str] = []


class ProcessJobRequest(BaseModel):
    job_id: UUID


class CancelJobRequest(BaseModel):
    reason: Optional[str] = None


class DelistingJobRead(BaseSchema):
    id: str
    user_id: str
    inventory_item_id: str
    trigger_type: str
    status: str
    sold_on_marketplace: Optional[str] = None
    marketplaces_targeted: List[str] = []
    marketplaces_completed: List[str] = []
    marketplaces_failed: List[str] = []
    success_log: Dict[str, Any] = {}
    error_log: Dict[str, Any] = {}
    total_delisted: int = 0
    total_failed: int = 0
    requires_user_confirmation: bool = False
    user_confirmed_at: Optional[datetime] = None
    user_cancelled_at: Optional[datetime] = None
    scheduled_for: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime
    updated_at: datetime
