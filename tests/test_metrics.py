"""Tests for the CloudWatch metrics client and the collaborators that feed it."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest
from langchain_core.messages import AIMessage

from conftest import FakeRenderer
from voice_receptionist.intent import AnthropicCompletion
from voice_receptionist.services.azure_tts import AzureSpeechClient, SpeechSynthesisError
from voice_receptionist.services.metrics import (
    MAX_BATCH_SIZE,
    MAX_BUFFERED,
    MetricsClient,
    datum,
)
from voice_receptionist.services.speech_cache import SpeechCache


def dims(point) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in point["Dimensions"]}


def by_name(client: MetricsClient) -> dict[str, list]:
    grouped: dict[str, list] = {}
    for point in client.pending():
        grouped.setdefault(point["MetricName"], []).append(point)
    return grouped


@pytest.fixture
def recorder():
    return MetricsClient(enabled=False)


class TestDatum:
    def test_shape_matches_put_metric_data(self):
        point = datum("Cache/Hit", {"Cache": "tts"})
        assert point["MetricName"] == "Cache/Hit"
        assert point["Dimensions"] == [{"Name": "Cache", "Value": "tts"}]
        assert point["Value"] == 1
        assert point["Unit"] == "Count"
        assert point["Timestamp"].tzinfo is not None


class TestCallMetrics:
    def test_speech_synthesis_success(self, recorder):
        recorder.record_success("azure_tts", "synthesize", latency_ms=240.0)
        points = by_name(recorder)

        assert set(points) == {"External/RequestCount", "External/Latency"}
        assert dims(points["External/RequestCount"][0]) == {"Service": "azure_tts", "Status": "success"}
        latency = points["External/Latency"][0]
        assert dims(latency) == {"Service": "azure_tts", "Operation": "synthesize"}
        assert latency["Value"] == 240.0
        assert latency["Unit"] == "Milliseconds"

    def test_completion_failure_without_latency(self, recorder):
        recorder.record_failure("anthropic", "complete", error_type="APITimeoutError")
        points = by_name(recorder)

        assert set(points) == {"External/RequestCount", "External/ErrorCount"}
        assert dims(points["External/RequestCount"][0])["Status"] == "failure"
        assert dims(points["External/ErrorCount"][0]) == {
            "Service": "anthropic", "ErrorType": "APITimeoutError",
        }

    def test_failure_with_latency_shares_one_timestamp(self, recorder):
        recorder.record_failure("azure_tts", "synthesize", error_type="401", latency_ms=80.0)
        pending = recorder.pending()
        assert len(pending) == 3
        assert len({p["Timestamp"] for p in pending}) == 1

    def test_blank_error_type_is_labelled_unknown(self, recorder):
        recorder.record_call("anthropic", "complete", ok=False)
        assert dims(by_name(recorder)["External/ErrorCount"][0])["ErrorType"] == "unknown"


class TestCacheMetrics:
    def test_speech_cache_reports_miss_then_hit(self, recorder):
        cache = SpeechCache(10)
        with patch("voice_receptionist.services.speech_cache.metrics", recorder):
            cache.get_or_render("pl-PL-AgnieszkaNeural", "Dzień dobry", FakeRenderer())
            cache.get_or_render("pl-PL-AgnieszkaNeural", "Dzień dobry", FakeRenderer())
        assert [p["MetricName"] for p in recorder.pending()] == ["Cache/Miss", "Cache/Hit"]
        assert all(dims(p) == {"Cache": "tts"} for p in recorder.pending())

    def test_buffer_keeps_newest_points(self, recorder):
        recorder.record_success("anthropic", "complete", latency_ms=1.0)
        for _ in range(MAX_BUFFERED):
            recorder.record_cache("tts", hit=True)
        pending = recorder.pending()
        assert len(pending) == MAX_BUFFERED
        assert {p["MetricName"] for p in pending} == {"Cache/Hit"}


class TestCollaboratorsRecord:
    def test_completion_records_success(self, recorder):
        llm = MagicMock()
        llm.invoke.return_value = AIMessage(content="Tak. ACTION: provide_info")
        with patch("voice_receptionist.intent.metrics", recorder):
            AnthropicCompletion(llm)("SYSTEM", [])
        assert dims(by_name(recorder)["External/RequestCount"][0]) == {
            "Service": "anthropic", "Status": "success",
        }

    def test_completion_records_error_type(self, recorder):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("overloaded")
        with patch("voice_receptionist.intent.metrics", recorder), pytest.raises(RuntimeError):
            AnthropicCompletion(llm)("SYSTEM", [])
        assert dims(by_name(recorder)["External/ErrorCount"][0])["ErrorType"] == "RuntimeError"

    def test_speech_client_error_records_status_code(self, recorder):
        client = AzureSpeechClient(key="k", region="westeurope")
        response = MagicMock(status_code=401, content=b"bad key", text="bad key")
        with (
            patch("voice_receptionist.services.azure_tts.metrics", recorder),
            patch.object(client._client, "post", return_value=response),
            pytest.raises(SpeechSynthesisError),
        ):
            client.synthesize("Dzień dobry")
        error = by_name(recorder)["External/ErrorCount"][0]
        assert dims(error) == {"Service": "azure_tts", "ErrorType": "401"}

    def test_speech_timeouts_record_one_failure(self, recorder):
        client = AzureSpeechClient(key="k", region="westeurope")
        with (
            patch("voice_receptionist.services.azure_tts.metrics", recorder),
            patch("voice_receptionist.services.azure_tts.time.sleep"),
            patch.object(client._client, "post", side_effect=httpx.ReadTimeout("slow")),
            pytest.raises(SpeechSynthesisError),
        ):
            client.synthesize("Dzień dobry")
        errors = by_name(recorder)["External/ErrorCount"]
        assert [dims(e)["ErrorType"] for e in errors] == ["ReadTimeout"]


class TestFlush:
    def test_disabled_client_drains_without_sending(self, recorder):
        recorder.record_cache("tts", hit=False)
        with patch.object(recorder, "_get_cw_client") as get_cw:
            assert recorder.flush() == 0
        get_cw.assert_not_called()
        assert recorder.pending() == []

    def test_sends_to_namespace(self):
        client = MetricsClient(enabled=True, background=False)
        client._cw_client = MagicMock()
        client.record_success("azure_tts", "synthesize", latency_ms=100.0)

        assert client.flush() == 2
        kwargs = client._cw_client.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == "VoiceReceptionist"
        assert [p["MetricName"] for p in kwargs["MetricData"]] == [
            "External/RequestCount", "External/Latency",
        ]

    def test_large_backlog_is_split_into_api_sized_chunks(self):
        client = MetricsClient(enabled=True, background=False)
        client._cw_client = MagicMock()
        for _ in range(MAX_BATCH_SIZE + 500):
            client.record_cache("tts", hit=True)

        assert client.flush() == MAX_BATCH_SIZE + 500
        sizes = [len(c.kwargs["MetricData"]) for c in client._cw_client.put_metric_data.call_args_list]
        assert sizes == [MAX_BATCH_SIZE, 500]

    def test_failed_push_reports_what_was_sent(self):
        client = MetricsClient(enabled=True, background=False)
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = [None, RuntimeError("throttled")]
        for _ in range(MAX_BATCH_SIZE + 1):
            client.record_cache("tts", hit=False)

        assert client.flush() == MAX_BATCH_SIZE
        assert client.pending() == []

    def test_empty_buffer_returns_zero(self):
        client = MetricsClient(enabled=True, background=False)
        client._cw_client = MagicMock()
        assert client.flush() == 0
        client._cw_client.put_metric_data.assert_not_called()
