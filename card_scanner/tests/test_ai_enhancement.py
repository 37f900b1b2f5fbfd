"""
Unit tests for ai_enhancement.py.

HTTP calls are replaced with monkeypatched requests functions; no network
access or API key is needed.

Usage:
    pytest card_scanner/tests/test_ai_enhancement.py -v
"""

import json
import sys
from pathlib import Path
import pytest
import requests

# Add repository root for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from card_scanner import ai_enhancement  # noqa: E402
from card_scanner.ai_enhancement import (  # noqa: E402
    EnhancementRequest, MockCardEnhancer, OllamaCardEnhancer, OpenAICardEnhancer,
    PromptBuilder, create_enhancer, parse_ai_response, record_from_fields,
)
from card_scanner.core.config import AIConfig  # noqa: E402
from card_scanner.core.errors import AIRequestFailed  # noqa: E402


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=""):
        self.payload = payload
        self.status_code = status_code
        self.text = text or json.dumps(payload)

    def json(self):
        if self.payload is None:
            raise ValueError("no JSON")
        return self.payload


def chat_response(content: str) -> FakeResponse:
    return FakeResponse({"choices": [{"message": {"content": content}}]})


# =============================================================================
# Prompt Tests
# =============================================================================

class TestPromptBuilder:

    @pytest.mark.parametrize("language,key", [
        ("zh-TW", "zh"), ("zh-CN", "zh"), ("en-US", "en"), ("en", "en"), ("ja-JP", "ja"), ("", "zh"),
    ])
    def test_language_key(self, language, key):
        assert PromptBuilder.language_key(language) == key

    def test_system_prompt_lists_every_field(self):
        prompt = PromptBuilder.system_prompt("en")
        for field in ("name", "title", "company", "department", "phone", "mobile",
                      "fax", "email", "address", "website", "confidence"):
            assert f'"{field}"' in prompt

    def test_user_prompt_contains_text(self):
        assert "Kevin Su" in PromptBuilder.user_prompt("Kevin Su\nManager", "zh-TW")


# =============================================================================
# Response Mapping Tests
# =============================================================================

class TestResponseMapping:

    def test_plain_json(self):
        record = parse_ai_response('{"name": "Kevin Su", "title": "Manager", "confidence": 0.8}')
        assert record.name == "Kevin Su"
        assert record.job_title == "Manager"
        assert record.confidence == pytest.approx(0.8)
        assert record.source == "ai"

    def test_fenced_json(self):
        record = parse_ai_response('Here you go:\n```json\n{"name": "Kevin Su"}\n```')
        assert record.name == "Kevin Su"

    def test_json_with_chatter(self):
        record = parse_ai_response('Sure! {"email": "kevin@abc.com"} Hope that helps.')
        assert record.email == "kevin@abc.com"

    @pytest.mark.parametrize("content", ["", "no json here", "{broken", "[1, 2]"])
    def test_malformed_raises(self, content):
        with pytest.raises(AIRequestFailed):
            parse_ai_response(content)

    def test_mobile_in_phone_moved(self):
        record = record_from_fields({"phone": "0912345678"})
        assert record.phone is None
        assert record.mobile == "0912-345-678"

    def test_landline_in_mobile_moved(self):
        record = record_from_fields({"mobile": "0361234567"})
        assert record.mobile is None
        assert record.phone == "03-6123-4567"

    def test_phones_reformatted(self):
        record = record_from_fields({"phone": "0361234567#12", "mobile": "0912 345 678", "fax": "0227205678"})
        assert record.phone == "03-6123-4567 #12"
        assert record.mobile == "0912-345-678"
        assert record.fax == "02-2720-5678"

    def test_null_strings_dropped(self):
        record = record_from_fields({"name": "null", "company": "", "website": None})
        assert record.filled_fields() == []

    @pytest.mark.parametrize("value,expected", [(1.7, 1.0), (-0.2, 0.0), ("0.5", 0.5), ("high", 0.0)])
    def test_confidence_clamped(self, value, expected):
        assert record_from_fields({"name": "A B", "confidence": value}).confidence == expected

    def test_invalid_email_dropped(self):
        assert record_from_fields({"email": "kevin at abc"}).email is None


# =============================================================================
# OpenAI Client Tests
# =============================================================================

class TestOpenAIEnhancer:

    def test_request_shape(self, monkeypatch):
        captured = {}

        def fake_post(url, json=None, headers=None, timeout=None):
            captured.update(url=url, json=json, headers=headers, timeout=timeout)
            return chat_response('{"name": "Kevin Su", "confidence": 0.9}')

        monkeypatch.setattr(ai_enhancement.requests, "post", fake_post)
        enhancer = OpenAICardEnhancer(api_key="sk-test", timeout=5.0)
        record = enhancer.enhance(EnhancementRequest("Kevin Su"))

        assert record.name == "Kevin Su"
        assert captured["url"] == "https://api.openai.com/v1/chat/completions"
        assert captured["headers"]["Authorization"] == "Bearer sk-test"
        assert captured["timeout"] == 5.0
        body = captured["json"]
        assert body["model"] == "gpt-4.1-nano"
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 500
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0]["role"] == "system"
        assert "Kevin Su" in body["messages"][1]["content"]

    def test_image_attached(self):
        enhancer = OpenAICardEnhancer(api_key="sk-test")
        body = enhancer.build_payload(EnhancementRequest("Kevin Su", image_bytes=b"\xff\xd8jpeg"))
        content = body["messages"][1]["content"]
        assert content[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")

    def test_http_error_raises(self, monkeypatch):
        monkeypatch.setattr(ai_enhancement.requests, "post",
                            lambda *a, **k: FakeResponse({"error": "bad key"}, status_code=401))
        with pytest.raises(AIRequestFailed):
            OpenAICardEnhancer(api_key="sk-test").enhance(EnhancementRequest("x"))

    def test_network_error_raises(self, monkeypatch):
        def fake_post(*args, **kwargs):
            raise requests.ConnectionError("unreachable")

        monkeypatch.setattr(ai_enhancement.requests, "post", fake_post)
        with pytest.raises(AIRequestFailed) as exc_info:
            OpenAICardEnhancer(api_key="sk-test").enhance(EnhancementRequest("x"))
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)

    def test_unexpected_shape_raises(self, monkeypatch):
        monkeypatch.setattr(ai_enhancement.requests, "post", lambda *a, **k: FakeResponse({"choices": []}))
        with pytest.raises(AIRequestFailed):
            OpenAICardEnhancer(api_key="sk-test").enhance(EnhancementRequest("x"))

    def test_unavailable_without_key(self):
        enhancer = OpenAICardEnhancer(api_key=None)
        assert not enhancer.is_available()
        with pytest.raises(AIRequestFailed):
            enhancer.enhance(EnhancementRequest("x"))


# =============================================================================
# Ollama Client Tests
# =============================================================================

class TestOllamaEnhancer:

    def test_availability_cached(self, monkeypatch):
        calls = []

        def fake_get(url, timeout=None):
            calls.append(url)
            return FakeResponse({"models": [{"name": "llava:7b"}, {"name": "qwen2.5:7b"}]})

        monkeypatch.setattr(ai_enhancement.requests, "get", fake_get)
        enhancer = OllamaCardEnhancer(model="llava:13b")
        assert enhancer.is_available()
        assert enhancer.is_available()
        assert calls == ["http://localhost:11434/api/tags"]

    def test_unavailable_when_server_down(self, monkeypatch):
        def fake_get(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(ai_enhancement.requests, "get", fake_get)
        assert not OllamaCardEnhancer().is_available()

    def test_server_down_logged_with_args(self, monkeypatch, caplog):
        def fake_get(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(ai_enhancement.requests, "get", fake_get)
        with caplog.at_level("WARNING", logger=ai_enhancement.logger.name):
            OllamaCardEnhancer().is_available()

        record = caplog.records[-1]
        assert record.msg == "[AI] Ollama not available: %s"
        assert "refused" in record.getMessage()

    def test_generate_request(self, monkeypatch):
        captured = {}

        def fake_post(url, json=None, headers=None, timeout=None):
            captured.update(url=url, json=json)
            return FakeResponse({"response": '{"company": "ABC Technology Co., Ltd."}'})

        monkeypatch.setattr(ai_enhancement.requests, "post", fake_post)
        record = OllamaCardEnhancer().enhance(EnhancementRequest("ABC", image_bytes=b"jpeg"))

        assert record.company == "ABC Technology Co., Ltd."
        assert captured["url"] == "http://localhost:11434/api/generate"
        assert captured["json"]["format"] == "json"
        assert captured["json"]["stream"] is False
        assert len(captured["json"]["images"]) == 1


# =============================================================================
# Factory Tests
# =============================================================================

class TestCreateEnhancer:

    def test_none(self):
        assert create_enhancer("none") is None
        assert create_enhancer(None) is None

    def test_unknown(self):
        assert create_enhancer("carrier-pigeon") is None

    def test_unknown_logged_with_args(self, caplog):
        with caplog.at_level("WARNING", logger=ai_enhancement.logger.name):
            create_enhancer("carrier-pigeon")

        record = caplog.records[-1]
        assert record.args == ("carrier-pigeon",)
        assert record.getMessage() == "[AI] Unknown enhancer type: carrier-pigeon"

    def test_mock(self):
        assert isinstance(create_enhancer("mock"), MockCardEnhancer)

    def test_openai_needs_key(self):
        assert create_enhancer("openai", AIConfig(api_key=None)) is None
        enhancer = create_enhancer("openai", AIConfig(api_key="sk-test", model="gpt-4o-mini"))
        assert isinstance(enhancer, OpenAICardEnhancer)
        assert enhancer.model == "gpt-4o-mini"

    def test_ollama_default_model(self, monkeypatch):
        monkeypatch.setattr(ai_enhancement.requests, "get",
                            lambda *a, **k: FakeResponse({"models": [{"name": "llava:7b"}]}))
        enhancer = create_enhancer("ollama", AIConfig())
        assert isinstance(enhancer, OllamaCardEnhancer)
        assert enhancer.model == "llava:7b"

    def test_ollama_unavailable(self, monkeypatch):
        monkeypatch.setattr(ai_enhancement.requests, "get",
                            lambda *a, **k: FakeResponse({"models": []}))
        assert create_enhancer("ollama", AIConfig()) is None
