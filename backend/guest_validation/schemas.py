from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from uuid import UUID

class GuestRecord(BaseModel):
    id: UUID
    guest_id: str
    guest_data: Dict[str, Any]
    confirmed: bool
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class DisplayRow(BaseModel):
    guest_id: str
    record_id: Optional[UUID] = None  # None while the row only exists locally
    confirmed: bool = False
    data: Dict[str, Any]

class TableSnapshot(BaseModel):
    state: Literal["empty", "no_matches", "ok"]
    source: Literal["remote", "local", "none"]
    search: str = ""
    headers: List[str]
    rows: List[DisplayRow]
    confirmed_ids: List[str]
    total: int
    confirmed_count: int
    unconfirmed_count: int

class UploadResponse(BaseModel):
    filename: str
    total_saved: int
    headers: List[str]
    guests: List[GuestRecord]

class ConfirmedResponse(BaseModel):
    confirmed_ids: List[str] = Field(default_factory=list)
    count: int = 0
