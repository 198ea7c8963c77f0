"""Unit tests for the Ollama-style LLM client and its JSON extraction."""
import pytest
import requests

from adaptive_rag.core.exceptions import OracleError
from adaptive_rag.services.llm_service import LLMService, extract_json_object


class FakeResponse:

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(response=self)

    def json(self):
        return self.payload


class TestExtractJson:

    @pytest.mark.parametrize("text", [
        '{"intent": "summary"}',
        '```json\n{"intent": "summary"}\n```',
        'Sure! Here it is: {"intent": "summary"} Hope that helps.',
    ])
    def test_tolerates_wrapping(self, text):
        assert extract_json_object(text) == {"intent": "summary"}

    @pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]", "{broken: json"])
    def test_rejects_non_objects(self, text):
        with pytest.raises(OracleError):
            extract_json_object(text)


class TestLLMService:

    @pytest.fixture
    def posts(self, monkeypatch):
        sent = []

        def install(result):
            def fake_post(url, json=None, timeout=None):
                sent.append((url, json, timeout))
                if isinstance(result, Exception):
                    raise result
                return result
            monkeypatch.setattr(requests, "post", fake_post)
            return sent
        return install

    @pytest.mark.asyncio
    async def test_complete_sends_system_and_prompt(self, posts):
        sent = posts(FakeResponse({"response": "  refined query  "}))
        llm = LLMService("http://llm:11434/", "tiny-model", timeout=5)

        reply = await llm.complete("system text", "user text", temperature=0.3)

        assert reply == "refined query"
        url, payload, timeout = sent[0]
        assert url == "http://llm:11434/api/generate"
        assert payload["system"] == "system text"
        assert payload["prompt"] == "user text"
        assert payload["model"] == "tiny-model"
        assert payload["options"] == {"temperature": 0.3}
        assert "format" not in payload
        assert timeout == 5

    @pytest.mark.asyncio
    async def test_complete_json_requests_json_format(self, posts):
        sent = posts(FakeResponse({"response": '{"strategy": "simple"}'}))

        data = await LLMService("http://llm").complete_json("s", "u")

        assert data == {"strategy": "simple"}
        assert sent[0][1]["format"] == "json"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [
        requests.exceptions.Timeout(),
        requests.exceptions.ConnectionError(),
        FakeResponse({"error": "model not found"}, status_code=404),
        FakeResponse({"response": "   "}),
        FakeResponse(["not", "a", "dict"]),
    ])
    async def test_failures_become_oracle_errors(self, posts, result):
        posts(result)
        with pytest.raises(OracleError):
            await LLMService("http://llm").complete("s", "u")

    @pytest.mark.asyncio
    async def test_empty_prompt_never_sent(self, posts):
        sent = posts(FakeResponse({"response": "x"}))
        with pytest.raises(OracleError):
            await LLMService("http://llm").complete("s", "   ")
        assert sent == []
