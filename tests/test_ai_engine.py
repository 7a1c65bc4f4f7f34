"""
Tests for the LLM client layer, the insight orchestrator and report export.
"""

from __future__ import annotations

import asyncio
import json
import types

import httpx
import pytest
from google.api_core import exceptions as google_exceptions
from openai import APIConnectionError, APITimeoutError

from conftest import FakeClient, FakeResponse
from datalens.ai_engine import llm_client as lc
from datalens.ai_engine import insights as ins
from datalens.ai_engine.prompt_templates import INSIGHTS_ERROR_MESSAGE
from datalens.ai_engine.report import build_json_report, build_markdown_report, build_report_dict
from datalens.core.errors import LLMError, LLMErrorKind
from datalens.core.state import OperationState, StateCoordinator
from datalens.core.types import ChatMessage, Dataset, Role
from datalens.data_processing.summarizer import summarize
from datalens.utils.settings import Settings

# ========================================================================================
# FIXTURES
# ========================================================================================

@pytest.fixture
def dataset() -> Dataset:
    rows = [{"day": f"d{i}", "sales": str(i * 10), "region": "N"} for i in range(1, 9)]
    return Dataset.from_rows(rows).with_version(1)


@pytest.fixture
def summary(dataset):
    return summarize(dataset, dataset.columns)


def _openai_request() -> httpx.Request:
    return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


class _RaisingClient:
    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    async def generate_content(self, prompt):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return FakeResponse("recovered")

# ========================================================================================
# generate_text
# ========================================================================================

class TestGenerateText:

    def test_returns_response_text(self):
        client = FakeClient(["hello"])
        assert asyncio.run(lc.generate_text(client, "p", timeout=1)) == "hello"
        assert client.prompts == ["p"]

    def test_timeout_maps_to_llm_error(self):
        client = FakeClient(["late"], delay=5)
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.generate_text(client, "p", timeout=0.05))
        assert exc.value.kind is LLMErrorKind.TIMEOUT

    def test_retries_network_errors(self):
        client = _RaisingClient([ConnectionError("reset")])
        result = asyncio.run(lc.generate_text(client, "p", timeout=1, retries=1, base_backoff=0))
        assert result == "recovered"
        assert client.calls == 2

    def test_network_error_after_retries(self):
        client = _RaisingClient([ConnectionError("a"), ConnectionError("b")])
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.generate_text(client, "p", timeout=1, retries=1, base_backoff=0))
        assert exc.value.kind is LLMErrorKind.NETWORK
        assert client.calls == 2

    def test_model_errors_are_not_retried(self):
        client = _RaisingClient([RuntimeError("bad output")])
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.generate_text(client, "p", timeout=1, retries=3, base_backoff=0))
        assert exc.value.kind is LLMErrorKind.MODEL
        assert client.calls == 1

    def test_llm_error_passes_through(self):
        err = LLMError(LLMErrorKind.CONFIG, "no key")
        client = _RaisingClient([err])
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.generate_text(client, "p", timeout=1, retries=2))
        assert exc.value is err

    def test_non_string_text_is_a_model_error(self):
        client = FakeClient([None])
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.generate_text(client, "p", timeout=1))
        assert exc.value.kind is LLMErrorKind.MODEL

# ========================================================================================
# OPENAI BACKEND
# ========================================================================================

class TestOpenAIClient:

    def test_missing_key_is_config_error(self):
        client = lc.OpenAIClient(None)
        with pytest.raises(LLMError) as exc:
            asyncio.run(client.generate_content("p"))
        assert exc.value.kind is LLMErrorKind.CONFIG

    def test_success(self, monkeypatch):
        calls = {}

        class TrackedCompletions:
            async def create(self, **kwargs):
                calls["create"] = kwargs
                msg = types.SimpleNamespace(content="AI RESPONSE")
                return types.SimpleNamespace(choices=[types.SimpleNamespace(message=msg)])

        class TrackedClient:
            def __init__(self, **kwargs):
                calls["init"] = kwargs
                self.chat = types.SimpleNamespace(completions=TrackedCompletions())

        monkeypatch.setattr(lc, "AsyncOpenAI", TrackedClient)
        client = lc.OpenAIClient("sk-test", model="gpt-4o-mini", temperature=0.7, max_tokens=500)
        resp = asyncio.run(client.generate_content("Hello AI"))

        assert resp.text() == "AI RESPONSE"
        assert calls["init"]["api_key"] == "sk-test"
        assert calls["init"]["max_retries"] == 0
        assert calls["create"]["model"] == "gpt-4o-mini"
        assert calls["create"]["temperature"] == 0.7
        assert calls["create"]["max_tokens"] == 500
        assert calls["create"]["messages"] == [{"role": "user", "content": "Hello AI"}]

    @pytest.mark.parametrize("error,kind", [
        (APITimeoutError(request=_openai_request()), LLMErrorKind.TIMEOUT),
        (APIConnectionError(request=_openai_request()), LLMErrorKind.NETWORK),
    ])
    def test_error_mapping(self, monkeypatch, error, kind):
        class ErrorCompletions:
            async def create(self, **kwargs):
                raise error

        class ErrorClient:
            def __init__(self, **kwargs):
                self.chat = types.SimpleNamespace(completions=ErrorCompletions())

        monkeypatch.setattr(lc, "AsyncOpenAI", ErrorClient)
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.OpenAIClient("sk-test").generate_content("p"))
        assert exc.value.kind is kind

    def test_empty_completion_is_model_error(self, monkeypatch):
        class EmptyCompletions:
            async def create(self, **kwargs):
                msg = types.SimpleNamespace(content=None)
                return types.SimpleNamespace(choices=[types.SimpleNamespace(message=msg)])

        class EmptyClient:
            def __init__(self, **kwargs):
                self.chat = types.SimpleNamespace(completions=EmptyCompletions())

        monkeypatch.setattr(lc, "AsyncOpenAI", EmptyClient)
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.OpenAIClient("sk-test").generate_content("p"))
        assert exc.value.kind is LLMErrorKind.MODEL

# ========================================================================================
# GEMINI BACKEND
# ========================================================================================

def _fake_genai(behaviour):
    calls = {}

    class FakeModel:
        def __init__(self, model_name, generation_config=None):
            calls["model_name"] = model_name
            calls["generation_config"] = generation_config

        async def generate_content_async(self, prompt):
            calls["prompt"] = prompt
            return behaviour()

    fake = types.SimpleNamespace(
        configure=lambda api_key: calls.setdefault("api_key", api_key),
        GenerativeModel=FakeModel,
        types=types.SimpleNamespace(GenerationConfig=lambda **kw: kw),
    )
    return fake, calls


class TestGeminiClient:

    def test_missing_key_is_config_error(self):
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.GeminiClient(None).generate_content("p"))
        assert exc.value.kind is LLMErrorKind.CONFIG

    def test_success(self, monkeypatch):
        fake, calls = _fake_genai(lambda: types.SimpleNamespace(text="Gemini says hi"))
        monkeypatch.setattr(lc, "genai", fake)
        client = lc.GeminiClient("g-key", model="gemini-1.5-flash", temperature=0.1, max_tokens=64)
        resp = asyncio.run(client.generate_content("question"))
        assert resp.text() == "Gemini says hi"
        assert calls["api_key"] == "g-key"
        assert calls["model_name"] == "gemini-1.5-flash"
        assert calls["generation_config"] == {"temperature": 0.1, "max_output_tokens": 64}
        assert calls["prompt"] == "question"

    def test_deadline_maps_to_timeout(self, monkeypatch):
        def boom():
            raise google_exceptions.DeadlineExceeded("slow")
        fake, _ = _fake_genai(boom)
        monkeypatch.setattr(lc, "genai", fake)
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.GeminiClient("g-key").generate_content("p"))
        assert exc.value.kind is LLMErrorKind.TIMEOUT

    def test_blocked_response_is_model_error(self, monkeypatch):
        class Blocked:
            @property
            def text(self):
                raise ValueError("response was blocked")
        fake, _ = _fake_genai(Blocked)
        monkeypatch.setattr(lc, "genai", fake)
        with pytest.raises(LLMError) as exc:
            asyncio.run(lc.GeminiClient("g-key").generate_content("p"))
        assert exc.value.kind is LLMErrorKind.MODEL


class TestBuildClient:

    def test_openai_by_default(self):
        client = lc.build_client(Settings(openai_api_key="k"))
        assert isinstance(client, lc.OpenAIClient)
        assert client.api_key == "k"

    def test_gemini(self):
        client = lc.build_client(Settings(provider="gemini", google_api_key="g", gemini_model="gemini-pro"))
        assert isinstance(client, lc.GeminiClient)
        assert client.model == "gemini-pro"

# ========================================================================================
# INSIGHTS
# ========================================================================================

class TestInsightsPrompt:

    def test_snapshot_embedded_as_json(self, dataset, summary):
        prompt = ins.build_insights_prompt(dataset, summary)
        assert prompt.startswith("Analyze this dataset and provide 5 key business insights.")
        snapshot = json.loads(prompt.split("Dataset summary: ", 1)[1])
        assert snapshot["totalRecords"] == 8
        assert snapshot["columns"] == ["day", "sales", "region"]
        assert len(snapshot["sampleData"]) == 5
        assert snapshot["sampleData"][0] == {"day": "d1", "sales": "10", "region": "N"}
        assert snapshot["summary"] == {
            "sales": {"mean": "45.00", "median": "45.00", "max": "80.00", "min": "10.00", "sum": "360.00"}
        }

    def test_sample_size_and_count_are_configurable(self, dataset, summary):
        prompt = ins.build_insights_prompt(dataset, summary, sample_rows=2, count=3)
        assert "provide 3 key business insights" in prompt
        snapshot = json.loads(prompt.split("Dataset summary: ", 1)[1])
        assert len(snapshot["sampleData"]) == 2

    def test_parse_insights_drops_blank_lines(self):
        text = "Sales grow steadily.\n\n  \r\nRegion N dominates.\r\n"
        assert ins.parse_insights(text) == ["Sales grow steadily.", "Region N dominates."]

    def test_parse_insights_keeps_line_text(self):
        text = "1. Revenue is concentrated.\n   - North leads  \n\t\n"
        assert ins.parse_insights(text) == ["1. Revenue is concentrated.", "   - North leads  "]

    def test_parse_insights_does_not_enforce_count(self):
        assert ins.parse_insights("only one") == ["only one"]
        assert ins.parse_insights("") == []


class TestInsightOrchestrator:

    def _orchestrator(self, client, coordinator=None):
        settings = Settings(llm_timeout=1.0, llm_retries=0)
        return ins.InsightOrchestrator(client, coordinator or StateCoordinator(), settings)

    def test_success(self, dataset, summary):
        client = FakeClient(["First.\nSecond.\n\nThird."])
        result = asyncio.run(self._orchestrator(client).generate(dataset, summary))
        assert result.ok
        assert result.insights == ("First.", "Second.", "Third.")
        assert result.version == dataset.version

    def test_failure_yields_fixed_message(self, dataset, summary):
        client = FakeClient(error=RuntimeError("model exploded"))
        result = asyncio.run(self._orchestrator(client).generate(dataset, summary))
        assert not result.ok
        assert list(result.insights) == ["Error generating insights. Please try again."]
        assert result.insights == (INSIGHTS_ERROR_MESSAGE,)

    def test_run_publishes_for_current_version(self, dataset, summary):
        coordinator = StateCoordinator()
        published = coordinator.publish_dataset(dataset, summary)
        orch = self._orchestrator(FakeClient(["A.\nB."]), coordinator)
        asyncio.run(orch.run(published, summary))
        assert coordinator.state.insights == ("A.", "B.")
        assert coordinator.operation_state is OperationState.IDLE
        assert not coordinator.insights_in_flight(published.version)

    def test_run_rejects_second_request_for_same_version(self, dataset, summary):
        coordinator = StateCoordinator()
        published = coordinator.publish_dataset(dataset, summary)
        orch = self._orchestrator(FakeClient(["A."], delay=0.05), coordinator)

        async def scenario():
            return await asyncio.gather(orch.run(published, summary), orch.run(published, summary))

        first, second = asyncio.run(scenario())
        assert first is not None and first.insights == ("A.",)
        assert second is None

# ========================================================================================
# REPORT
# ========================================================================================

class TestReport:

    def _state(self, dataset, summary):
        coordinator = StateCoordinator()
        published = coordinator.publish_dataset(dataset, summary)
        coordinator.publish_insights(ins.InsightResult(published.version, ("Sales rise.",), True))
        coordinator.append_message(ChatMessage(Role.USER, "hi"))
        coordinator.append_message(ChatMessage(Role.ASSISTANT, "hello"))
        return coordinator.state

    def test_report_dict(self, dataset, summary):
        data = build_report_dict(self._state(dataset, summary), generated_at="2024-01-01T00:00:00")
        assert data["dataset"]["records"] == 8
        assert data["summary"]["sales"]["sum"] == "360.00"
        assert data["insights"] == ["Sales rise."]
        assert data["conversation"][0] == {"role": "user", "content": "hi"}

    def test_markdown(self, dataset, summary):
        md = build_markdown_report(self._state(dataset, summary), generated_at="now")
        assert "# Data Analysis Report" in md
        assert "| sales | 45.00 | 45.00 | 80.00 | 10.00 | 360.00 |" in md
        assert "1. Sales rise." in md
        assert "**Assistant:** hello" in md

    def test_json_roundtrip(self, dataset, summary):
        text = build_json_report(self._state(dataset, summary), generated_at="now")
        assert json.loads(text)["generated_at"] == "now"

    def test_empty_state(self):
        from datalens.core.state import AppState
        md = build_markdown_report(AppState(), generated_at="now")
        assert "No numeric columns." in md
        assert "No insights yet." in md
