"""Tests for reply parsing and the intent resolver."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from conftest import ScriptedCompletion
from voice_receptionist.intent import (
    FALLBACK_RESULT,
    Action,
    AnthropicCompletion,
    CompletionError,
    IntentResolver,
    parse_reply,
)
from voice_receptionist.prompts import RESOLVER_FALLBACK
from voice_receptionist.services.sessions import Role, SessionStore

# ── parse_reply ──────────────────────────────────────────────────────


class TestParseReply:
    def test_plain_marker(self):
        result = parse_reply("Jesteśmy otwarci od 10:00. ACTION: provide_info")
        assert result.action is Action.PROVIDE_INFO
        assert result.message == "Jesteśmy otwarci od 10:00."
        assert result.booking is None

    def test_marker_on_its_own_line(self):
        result = parse_reply("Chętnie umówię wizytę.\nACTION: book_appointment")
        assert result.action is Action.BOOK_APPOINTMENT
        assert result.message == "Chętnie umówię wizytę."

    def test_bracketed_and_lowercase_marker(self):
        result = parse_reply("Łączę. [action: TRANSFER_TO_RECEPTION]")
        assert result.action is Action.TRANSFER_TO_RECEPTION
        assert result.message == "Łączę."

    def test_missing_marker_defaults_to_info(self):
        result = parse_reply("Dzień dobry, w czym mogę pomóc?")
        assert result.action is Action.PROVIDE_INFO
        assert result.message == "Dzień dobry, w czym mogę pomóc?"

    def test_unknown_token_defaults_to_info(self):
        result = parse_reply("Hmm. ACTION: sing_a_song")
        assert result.action is Action.PROVIDE_INFO
        assert result.message == "Hmm."

    def test_last_marker_wins(self):
        result = parse_reply("ACTION: provide_info Jednak łączę. ACTION: transfer_to_reception")
        assert result.action is Action.TRANSFER_TO_RECEPTION
        assert result.message == "Jednak łączę."

    def test_word_containing_action_is_not_a_marker(self):
        result = parse_reply("TRANSACTION: zapłacono.")
        assert result.action is Action.PROVIDE_INFO

    def test_booking_line_is_extracted_and_removed(self):
        raw = (
            "Rezerwuję termin.\n"
            "BOOKING: date=2026-10-20; time=10:30; name=Jan Kowalski; service=przegląd\n"
            "ACTION: book_appointment"
        )
        result = parse_reply(raw)
        assert result.action is Action.BOOK_APPOINTMENT
        assert result.message == "Rezerwuję termin."
        assert result.booking.date == "2026-10-20"
        assert result.booking.time == "10:30"
        assert result.booking.name == "Jan Kowalski"
        assert result.booking.service == "przegląd"

    def test_booking_service_defaults(self):
        result = parse_reply(
            "BOOKING: date=2026-10-20; time=10:30; name=Jan\nACTION: book_appointment",
        )
        assert result.booking.service == "wizyta"

    def test_incomplete_booking_line_is_ignored(self):
        result = parse_reply("BOOKING: date=2026-10-20; name=Jan\nACTION: book_appointment")
        assert result.booking is None
        assert "BOOKING" not in result.message

    def test_empty_reply(self):
        result = parse_reply("")
        assert result.action is Action.PROVIDE_INFO
        assert result.message == ""


# ── IntentResolver ───────────────────────────────────────────────────


class TestIntentResolver:
    def _resolver(self, *replies):
        sessions = SessionStore()
        completion = ScriptedCompletion(*replies)
        resolver = IntentResolver(sessions, completion, system_prompt=lambda: "SYSTEM")
        return resolver, sessions, completion

    def test_records_both_turns(self):
        resolver, sessions, completion = self._resolver("Otwarte do 20. ACTION: provide_info")
        result = resolver.resolve("c1", "Do której jesteście otwarci?")

        assert result.action is Action.PROVIDE_INFO
        turns = sessions.history("c1")
        assert [t.role for t in turns] == [Role.CALLER, Role.ASSISTANT]
        assert turns[0].text == "Do której jesteście otwarci?"

    def test_completion_sees_system_prompt_and_history(self):
        resolver, _, completion = self._resolver(
            "Witam. ACTION: provide_info", "Tak. ACTION: provide_info",
        )
        resolver.resolve("c1", "Dzień dobry")
        resolver.resolve("c1", "Czy robicie rentgen?")

        system, history = completion.calls[1]
        assert system == "SYSTEM"
        assert [t.text for t in history] == [
            "Dzień dobry", "Witam. ACTION: provide_info", "Czy robicie rentgen?",
        ]

    def test_completion_error_falls_back_to_transfer(self):
        resolver, sessions, _ = self._resolver(TimeoutError("too slow"))
        result = resolver.resolve("c1", "Halo?")

        assert result == FALLBACK_RESULT
        assert result.action is Action.TRANSFER_TO_RECEPTION
        assert result.message == RESOLVER_FALLBACK
        # the caller's words are kept, no assistant turn is invented
        assert [t.role for t in sessions.history("c1")] == [Role.CALLER]

    @pytest.mark.parametrize("reply", ["", "   ", None, 42])
    def test_malformed_reply_falls_back(self, reply):
        resolver, _, _ = self._resolver(reply)
        assert resolver.resolve("c1", "Halo?") == FALLBACK_RESULT


# ── AnthropicCompletion ──────────────────────────────────────────────


class TestAnthropicCompletion:
    def test_maps_history_to_messages(self):
        from voice_receptionist.services.sessions import Turn

        llm = MagicMock()
        llm.invoke.return_value = AIMessage(content="Dzień dobry. ACTION: provide_info")
        complete = AnthropicCompletion(llm)

        history = [Turn(Role.CALLER, "Halo"), Turn(Role.ASSISTANT, "Słucham")]
        assert complete("SYSTEM", history) == "Dzień dobry. ACTION: provide_info"

        messages = llm.invoke.call_args[0][0]
        assert isinstance(messages[0], SystemMessage)
        assert isinstance(messages[1], HumanMessage)
        assert isinstance(messages[2], AIMessage)
        assert messages[2].content == "Słucham"

    def test_flattens_content_blocks(self):
        llm = MagicMock()
        llm.invoke.return_value = AIMessage(
            content=[{"type": "text", "text": "Tak. "}, {"type": "text", "text": "ACTION: provide_info"}],
        )
        assert AnthropicCompletion(llm)("SYSTEM", []) == "Tak. ACTION: provide_info"

    def test_empty_reply_raises(self):
        llm = MagicMock()
        llm.invoke.return_value = AIMessage(content="")
        with pytest.raises(CompletionError):
            AnthropicCompletion(llm)("SYSTEM", [])

    def test_api_error_propagates(self):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("overloaded")
        with pytest.raises(RuntimeError):
            AnthropicCompletion(llm)("SYSTEM", [])


# ── System prompt ────────────────────────────────────────────────────


class TestSystemPrompt:
    def test_injects_clinic_local_date_and_weekday(self):
        from datetime import datetime, timezone

        from voice_receptionist.prompts import get_system_prompt

        # 23:30 UTC on Monday is Tuesday 01:30 in Warsaw
        prompt = get_system_prompt(datetime(2026, 10, 19, 23, 30, tzinfo=timezone.utc))
        assert "20.10.2026" in prompt
        assert "(wtorek)" in prompt
        assert "01:30" in prompt
        assert "ACTION: transfer_to_reception" in prompt
