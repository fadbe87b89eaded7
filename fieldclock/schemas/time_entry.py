from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TimeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    time_entry_id: str
    company_id: int
    worker_id: str
    job_id: int
    clock_in_at: datetime
    clock_out_at: Optional[datetime]
    geo_ok_in: bool
    geo_ok_out: Optional[bool]
    exception_tags: List[str]
    approved: bool
    approved_by: Optional[str]
    invoice_id: Optional[str]
    version: int
    notes: Optional[str]


class EditTimeEntryRequest(BaseModel):
    edit_reason: str = Field(min_length=3, max_length=500)
    clock_in_at: Optional[datetime] = None
    clock_out_at: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    cancelled: Optional[bool] = None
    force: bool = False


class EditTimeEntryResponse(BaseModel):
    entry: TimeEntryResponse
    audit_record_id: str
    has_overlap: bool
    requires_reapproval: bool
    force_edit: bool


class AuditRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    entry_id: str
    company_id: int
    edited_by: str
    edit_reason: str
    before: Dict[str, Any]
    after: Dict[str, Any]
    force_edit: bool
    created_at: datetime


class ApproveRequest(BaseModel):
    entry_ids: List[str] = Field(min_length=1, max_length=500)


class ApprovalError(BaseModel):
    entry_id: str
    code: str
    error: str


class ApproveResponse(BaseModel):
    approved: int
    failed: int
    errors: List[ApprovalError]
