"""FastAPI route definitions for the JSON API (health, appointments, sessions)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request

from voice_receptionist.agent import TurnController
from voice_receptionist.api.schemas import (
    HealthResponse,
    SessionResetResponse,
    SlotsResponse,
    StatsResponse,
)
from voice_receptionist.services.appointments import Appointment, BookingResult

logger = logging.getLogger(__name__)

router = APIRouter()


def get_controller(request: Request) -> TurnController:
    """Retrieve the turn controller from app state.

    The controller is built once during the FastAPI lifespan (see
    ``server.py``); until then every endpoint answers 503.
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(
            status_code=503,
            detail="The receptionist is still starting up. Please try again in a moment.",
        )
    return controller


def _require_found(result: BookingResult) -> BookingResult:
    if not result.success:
        raise HTTPException(status_code=404, detail=result.error or "Appointment not found")
    return result


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        return HealthResponse(status="starting")
    return HealthResponse(
        active_sessions=controller.sessions.session_count,
        tts_cache_entries=controller.cache.entry_count,
    )


@router.get("/appointments/stats", response_model=StatsResponse)
async def appointment_stats(request: Request):
    return StatsResponse(**get_controller(request).ledger.stats())


@router.get("/appointments/today", response_model=list[Appointment])
async def todays_appointments(request: Request):
    """Scheduled appointments for today (clinic-local date), by time."""
    return get_controller(request).ledger.todays_appointments()


@router.get("/appointments/slots", response_model=SlotsResponse)
async def available_slots(
    request: Request,
    horizon_days: int = Query(14, ge=1, le=60),
    limit: int = Query(20, ge=1, le=200),
):
    ledger = get_controller(request).ledger
    slots = ledger.available_slots(horizon_days=horizon_days, limit=limit)
    return SlotsResponse(slots=slots, spoken=[s.spoken() for s in slots[:5]])


@router.get("/appointments/{appointment_id}", response_model=BookingResult)
async def get_appointment(appointment_id: str, request: Request):
    return _require_found(get_controller(request).ledger.get(appointment_id))


@router.post("/appointments/{appointment_id}/cancel", response_model=BookingResult)
async def cancel_appointment(appointment_id: str, request: Request):
    """Cancel a scheduled appointment and free its slot."""
    return _require_found(get_controller(request).ledger.cancel(appointment_id))


@router.delete("/sessions/{caller_id}", response_model=SessionResetResponse)
async def reset_session(caller_id: str, request: Request):
    """Forget a caller's conversation history.  Idempotent."""
    cleared = get_controller(request).reset(caller_id)
    return SessionResetResponse(caller_id=caller_id, cleared=cleared)
