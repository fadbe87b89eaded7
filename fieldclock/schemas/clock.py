from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class _ClockRequestBase(BaseModel):
    job_id: int
    client_event_id: str = Field(min_length=1, max_length=64)
    lat: float = Field(ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(ge=-180, le=180, allow_inf_nan=False)
    accuracy_m: Optional[float] = Field(default=None, ge=0, le=2000, allow_inf_nan=False)
    requested_at: Optional[datetime] = Field(
        default=None,
        description="Device time of the attempt. If omitted, server uses current UTC time.",
    )


class ClockInRequest(_ClockRequestBase):
    kind: Literal["IN"] = "IN"


class ClockOutRequest(_ClockRequestBase):
    kind: Literal["OUT"] = "OUT"
    time_entry_id: Optional[str] = Field(
        default=None,
        description="Open entry the client believes it is closing; rejected if it is not the open one.",
    )


ClockRequest = Annotated[Union[ClockInRequest, ClockOutRequest], Field(discriminator="kind")]


class ClockResponse(BaseModel):
    status: str
    kind: str
    entry_id: str
    geo_ok: bool
    distance_m: Optional[float]
    effective_radius_m: Optional[float]
    exception_tags: List[str]
    warning: Optional[str]


class ClockEventResponse(BaseModel):
    id: str
    company_id: int
    worker_id: str
    job_id: Optional[int]
    kind: str
    client_event_id: Optional[str]
    requested_at: Optional[datetime]
    lat: Optional[float]
    lng: Optional[float]
    accuracy_m: Optional[float]
    outcome: str
    rejection_reason: Optional[str]
    message: Optional[str]
    entry_id: Optional[str]
    distance_m: Optional[float]
    created_at: datetime
