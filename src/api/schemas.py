"""
Request and response models for the verifier API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime


class VerifyRequest(BaseModel):
    code: str


class VerifyResponse(BaseModel):
    code: str
    query: str
    original_code: Optional[str] = None
    description: Optional[str] = None
    match_kind: str
    found: bool
    is_valid: bool
    exact_match: bool
    is_general_code: bool
    is_single_subcode: bool
    is_extended_from_prefix: bool
    matched_prefix: Optional[str] = None
    subcodes: List[str] = []
    subcode_count: int = 0
    sanctioned: bool
    sanepid: bool
    special_status: Optional[Literal["sanction", "sanepid"]] = None
    special_message: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    total_records: int
    last_sync: Optional[datetime] = None


class ChangeCounts(BaseModel):
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0


class DatabaseStats(BaseModel):
    total_records: int
    last_sync: Optional[datetime] = None
    sync_type: str = "unknown"
    changes: ChangeCounts = ChangeCounts()
    cache_age_sec: Optional[float] = None


class StatusListInfo(BaseModel):
    codes: List[str]
    count: int
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None


class StatsResponse(BaseModel):
    version: str
    database: DatabaseStats
    sanctions_count: int
    sanepid_count: int
    sanctions_last_updated: Optional[datetime] = None
    sanepid_last_updated: Optional[datetime] = None


class StatusListsResponse(BaseModel):
    success: bool = True
    sanctions: StatusListInfo
    sanepid: StatusListInfo


class StatusUpdateRequest(BaseModel):
    # Non-string entries are dropped and counted by StatusRegistry.replace
    codes: List[Any]
    type: Literal["sanctions", "sanepid"] = "sanctions"
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('codes')
    @classmethod
    def codes_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('codes cannot be empty')
        return v


class StatusUpdateResponse(BaseModel):
    success: bool
    type: str
    submitted: int
    accepted: int
    rejected: int
    last_updated: datetime
    version: str


class SyncStartResponse(BaseModel):
    success: bool
    message: str
    timestamp: datetime


class SyncStatusResponse(BaseModel):
    status: str
    running: bool
    last_sync: Optional[datetime] = None
    sync_type: str = "unknown"
    total_records: int = 0
    changes: ChangeCounts = ChangeCounts()
    failed_pages: List[int] = []
    error: Optional[str] = None
    last_run: Optional[Dict[str, Any]] = None
    timestamp: datetime


class ServiceInfoResponse(BaseModel):
    name: str
    version: str
    description: str
    endpoints: List[str]
    timestamp: datetime
