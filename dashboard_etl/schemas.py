from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dashboard_etl.db.enums import ALL_SOURCES, resolve_source


class IngestRequest(BaseModel):
    source: str = ALL_SOURCES

    @field_validator("source", mode="before")
    @classmethod
    def _canonical_source(cls, value: Any) -> str:
        if value is not None and not isinstance(value, str):
            raise ValueError("source must be a string")
        return resolve_source(value)


class IngestResults(BaseModel):
    calls: int = 0
    messages: int = 0
    leads: int = 0
    inspections: int = 0
    errors: List[str] = []


class IngestResponse(BaseModel):
    success: bool
    etl_run_id: str
    results: IngestResults


class EtlRunResponse(BaseModel):
    id: str
    source: str
    status: str
    run_started: datetime
    run_finished: Optional[datetime] = None
    details: Dict[str, Any] = {}

    model_config = ConfigDict(from_attributes=True)


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessageIn] = Field(..., min_length=1)
    use_live_connectors: bool = Field(False, alias="useLiveConnectors")
    session_id: Optional[str] = Field(None, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)
