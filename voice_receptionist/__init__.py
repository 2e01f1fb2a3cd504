"""Clinic voice receptionist: a Polish-language phone front desk for a dental clinic.

Architecture Overview
=====================

A phone call is a series of *turns*.  Twilio recognises the caller's speech
and posts the transcript to ``/twilio/process-speech``; the server answers
with TwiML that plays the reply and listens again (or hangs up).

1. **TurnController** (``agent.py``) — a LangGraph StateGraph that routes an
   empty transcript to a reprompt, and everything else through the intent
   resolver to one of three nodes: inform, book or transfer.  Speech is
   rendered after the graph so synthesis failures get their own fallbacks.

2. **IntentResolver** (``intent.py``) — sends the system prompt and the
   recent conversation to Claude and turns the reply (free text ending in
   an ``ACTION:`` marker) into a typed ``IntentResult``.  Never raises:
   any failure transfers the caller to reception.

Stores (all in-memory, all process-lifetime):

- **SessionStore** — per-caller turn history, bounded by idle TTL, a
  per-caller turn cap and LRU eviction of callers.
- **AppointmentLedger** — 30-minute slots inside working hours, atomic
  check-and-book, cancellation frees the slot.
- **SpeechCache** — rendered audio keyed by ``(voice, normalised text)``,
  FIFO eviction, prewarmed with the fixed phrases at startup.

Package Structure
-----------------
- ``voice_receptionist/agent.py`` — turn controller and its LangGraph graph
- ``voice_receptionist/intent.py`` — reply parsing and the Claude completion
- ``voice_receptionist/config.py`` — configuration from environment / SSM
- ``voice_receptionist/prompts.py`` — system prompt and fixed Polish utterances
- ``voice_receptionist/server.py`` — FastAPI application
- ``voice_receptionist/main.py`` — CLI call simulator
- ``voice_receptionist/services/`` — stores, Azure TTS client, metrics
- ``voice_receptionist/api/`` — JSON routes, Twilio webhooks, schemas
"""
