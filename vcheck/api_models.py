from __future__ import annotations

from pydantic import BaseModel, Field


class ResultModel(BaseModel):
    name: str
    service_key: str
    service: str = Field(..., description="Service display name")
    tenant: str
    environment: str
    region: str
    url: str = Field(..., description="Probe URL actually requested")
    deployed: str = Field(..., description="Deployed version or failure label")
    reference: str = Field(..., description="Latest release tag or failure label")
    comparison: str | None = None
    status: str = Field(..., description="GH_ERROR|SVC_ERROR|AHEAD|OUTDATED|NO_RELEASES|UP_TO_DATE|UNKNOWN_CMP")


class ReportResponse(BaseModel):
    generated_at: str
    region_mode: str
    interrupted: bool = False
    summary: dict[str, int]
    results: list[ResultModel]


class EventModel(BaseModel):
    id: int
    ts: str
    level: str
    service_name: str | None = None
    version: str | None = None
    message: str
