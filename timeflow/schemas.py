import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class ClockRequest(BaseModel):
    action: Literal["in", "out", "break_start", "break_end"]
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    photo_url: str | None = Field(default=None, max_length=2048)
    device_id: str | None = Field(default=None, max_length=255)
    source: str | None = Field(default=None, max_length=32)
    point_id: str | None = Field(default=None, max_length=64)
    worker_id: uuid.UUID | None = None
    company_id: uuid.UUID | None = None
    notes: str | None = Field(default=None, max_length=2000)
    reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _normalize_source(self) -> "ClockRequest":
        if self.source is not None:
            self.source = self.source.strip().lower() or None
        return self


class ClockResponse(BaseModel):
    success: bool = True
    status: Literal["working", "paused", "off"]
    event_type: Literal["clock_in", "clock_out", "pause_start", "pause_end"]
    timestamp: datetime
    distance_meters: float | None = None
    is_within_geofence: bool | None = None


class ClockStatusResponse(BaseModel):
    status: Literal["working", "paused", "off"]
    company_id: uuid.UUID
    session_started_at: datetime | None = None
    last_event_type: str | None = None
    last_event_at: datetime | None = None
    worked_minutes_today: int = 0


class AutoCloseSessionRead(BaseModel):
    session_id: uuid.UUID
    clock_in_time: datetime
    clock_out_time: datetime


class AutoCloseSweepResponse(BaseModel):
    company_id: uuid.UUID
    max_shift_hours: float
    closed_count: int
    sessions: list[AutoCloseSessionRead] = Field(default_factory=list)
