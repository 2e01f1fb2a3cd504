"""Pydantic schemas for the JSON endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from voice_receptionist.services.appointments import Slot


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "voice-receptionist"
    active_sessions: int = 0
    tts_cache_entries: int = 0


class StatsResponse(BaseModel):
    total: int = Field(..., description="Appointments ever created")
    scheduled: int
    cancelled: int
    booked_slots: int


class SlotsResponse(BaseModel):
    """Free slots, both structured and as they would be read to a caller."""

    slots: list[Slot]
    spoken: list[str]


class SessionResetResponse(BaseModel):
    caller_id: str
    cleared: bool = Field(..., description="False when no session existed")
