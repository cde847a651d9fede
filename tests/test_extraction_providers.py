from __future__ import annotations

import base64
import json
import os
import sys
import types
from typing import Any, Dict, List, Optional

import httpx
import pytest
import requests
from openai import APIStatusError

sys.path.insert(0, os.path.abspath("src"))

from receipt_scanner.domain.models import Provider, SourceFile
from receipt_scanner.extraction import client as client_module
from receipt_scanner.extraction.client import ExtractionSettings, build_provider_client, extract_receipt_data
from receipt_scanner.extraction.errors import (
    EmptyResponseError,
    InvalidFormatError,
    MissingCredentialError,
    ProviderError,
)
from receipt_scanner.extraction.providers import GeminiClient, OpenAIClient, OpenRouterClient


IMAGE = SourceFile(filename="kvittering.jpg", content=b"\xff\xd8\xff fake jpeg", media_type="image/jpeg")
RECEIPT_JSON = json.dumps({"shopName": "Netto", "purchaseDate": "2025-12-23", "totalAmount": 80, "moms": 20})


class _FakeResponse:
    def __init__(self, status_code: int, body: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _FakeHttp:
    def __init__(self, response: Optional[_FakeResponse] = None, exc: Optional[Exception] = None) -> None:
        self.response = response
        self.exc = exc
        self.calls: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if self.exc is not None:
            raise self.exc
        return self.response


def _gemini_body(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _openrouter_body(content: Optional[str]) -> Dict[str, Any]:
    return {"choices": [{"message": {"content": content}}]}


def test_gemini_request_carries_image_prompt_and_schema():
    http = _FakeHttp(_FakeResponse(200, _gemini_body(RECEIPT_JSON)))
    data = GeminiClient("key-123", http=http).extract(IMAGE)

    # unreconciled: the client returns what the model said
    assert data.total_amount == 80.0
    assert data.shop_name == "Netto"

    call = http.calls[0]
    assert call["url"].endswith("/models/gemini-2.5-flash:generateContent")
    assert call["headers"]["x-goog-api-key"] == "key-123"
    parts = call["json"]["contents"][0]["parts"]
    assert parts[0]["inline_data"]["mime_type"] == "image/jpeg"
    assert base64.b64decode(parts[0]["inline_data"]["data"]) == IMAGE.content
    assert "23 12 25" in parts[1]["text"]
    assert "MOMS * 5" in parts[1]["text"]
    config = call["json"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"]["required"] == ["shopName", "purchaseDate", "totalAmount", "moms"]


def test_gemini_error_uses_provider_message():
    body = {"error": {"code": 400, "message": "API key not valid. Please pass a valid API key."}}
    http = _FakeHttp(_FakeResponse(400, body))
    with pytest.raises(ProviderError) as excinfo:
        GeminiClient("bad", http=http).extract(IMAGE)
    assert str(excinfo.value) == "API key not valid. Please pass a valid API key."
    assert excinfo.value.status_code == 400


def test_gemini_without_candidates_is_empty_response():
    http = _FakeHttp(_FakeResponse(200, {"promptFeedback": {"blockReason": "OTHER"}}))
    with pytest.raises(EmptyResponseError):
        GeminiClient("key", http=http).extract(IMAGE)


def test_openrouter_sends_data_url_and_json_mode():
    http = _FakeHttp(_FakeResponse(200, _openrouter_body("```json\n" + RECEIPT_JSON + "\n```")))
    data = OpenRouterClient("or-key", http=http).extract(IMAGE)
    assert data.moms == 20.0

    call = http.calls[0]
    assert call["url"] == OpenRouterClient.ENDPOINT
    assert call["headers"]["Authorization"] == "Bearer or-key"
    assert call["headers"]["X-Title"] == "Danish Receipt Scanner"
    payload = call["json"]
    assert payload["model"] == "google/gemini-2.0-flash-001"
    assert payload["response_format"] == {"type": "json_object"}
    image_part = payload["messages"][0]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/jpeg;base64,")


def test_openrouter_http_error_without_body_uses_status_message():
    http = _FakeHttp(_FakeResponse(502, None, text="Bad Gateway"))
    with pytest.raises(ProviderError) as excinfo:
        OpenRouterClient("or-key", http=http).extract(IMAGE)
    assert str(excinfo.value) == "OpenRouter failed: 502"


def test_openrouter_transport_failure_is_provider_error():
    http = _FakeHttp(exc=requests.ConnectionError("connection refused"))
    with pytest.raises(ProviderError) as excinfo:
        OpenRouterClient("or-key", http=http).extract(IMAGE)
    assert "connection refused" in str(excinfo.value)


def test_openrouter_missing_content_is_empty_response():
    http = _FakeHttp(_FakeResponse(200, _openrouter_body(None)))
    with pytest.raises(EmptyResponseError) as excinfo:
        OpenRouterClient("or-key", http=http).extract(IMAGE)
    assert str(excinfo.value) == "Empty response from OpenRouter."


def test_openrouter_garbage_content_is_invalid_format():
    http = _FakeHttp(_FakeResponse(200, _openrouter_body("Sorry, I cannot read this receipt.")))
    with pytest.raises(InvalidFormatError):
        OpenRouterClient("or-key", http=http).extract(IMAGE)


def _fake_openai(content: Optional[str] = None, exc: Optional[Exception] = None):
    calls: List[Dict[str, Any]] = []

    def create(**kwargs: Any):
        calls.append(kwargs)
        if exc is not None:
            raise exc
        message = types.SimpleNamespace(content=content)
        return types.SimpleNamespace(id="cmpl-1", usage=None, choices=[types.SimpleNamespace(message=message)])

    fake = types.SimpleNamespace(chat=types.SimpleNamespace(completions=types.SimpleNamespace(create=create)))
    return fake, calls


def test_openai_client_parses_chat_completion():
    fake, calls = _fake_openai(RECEIPT_JSON)
    data = OpenAIClient("sk-test", client=fake).extract(IMAGE)
    assert data.shop_name == "Netto"
    assert calls[0]["model"] == "gpt-5-mini"
    assert calls[0]["response_format"] == {"type": "json_object"}


def test_openai_status_error_is_provider_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(401, request=request, json={"error": {"message": "Incorrect API key provided"}})
    exc = APIStatusError("Incorrect API key provided", response=response, body=None)
    fake, _ = _fake_openai(exc=exc)
    with pytest.raises(ProviderError) as excinfo:
        OpenAIClient("sk-bad", client=fake).extract(IMAGE)
    assert "Incorrect API key provided" in str(excinfo.value)
    assert excinfo.value.status_code == 401


def test_missing_credential_fails_before_any_request():
    with pytest.raises(MissingCredentialError):
        extract_receipt_data(IMAGE, ExtractionSettings(api_key="  "))


@pytest.mark.parametrize(
    "provider,expected",
    [(Provider.GEMINI, GeminiClient), (Provider.OPENROUTER, OpenRouterClient), (Provider.OPENAI, OpenAIClient)],
)
def test_provider_selection(provider, expected):
    client = build_provider_client(ExtractionSettings(api_key="k", provider=provider, model="custom-model"))
    assert isinstance(client, expected)
    assert client.model == "custom-model"


def test_extract_receipt_data_dispatches_to_selected_provider(monkeypatch):
    http = _FakeHttp(_FakeResponse(200, _openrouter_body(RECEIPT_JSON)))
    real_build = client_module.build_provider_client

    def _build(settings):
        built = real_build(settings)
        built.http = http
        return built

    monkeypatch.setattr(client_module, "build_provider_client", _build)
    data = extract_receipt_data(IMAGE, ExtractionSettings(api_key="k", provider=Provider.OPENROUTER))
    assert data.purchase_date == "2025-12-23"
    assert http.calls[0]["url"] == OpenRouterClient.ENDPOINT


def test_openrouter_content_parts_are_joined():
    parts = [{"type": "text", "text": RECEIPT_JSON[:20]}, {"type": "text", "text": RECEIPT_JSON[20:]}]
    http = _FakeHttp(_FakeResponse(200, {"choices": [{"message": {"content": parts}}]}))
    data = OpenRouterClient("or-key", http=http).extract(IMAGE)
    assert data.shop_name == "Netto"


@pytest.mark.parametrize(
    "body",
    [
        {"choices": ["not a choice object"]},
        {"choices": [{"message": "plain string"}]},
        {"choices": [{"message": {"content": {"unexpected": True}}}]},
        {"choices": {"0": {"message": {"content": RECEIPT_JSON}}}},
    ],
)
def test_openrouter_unexpected_shapes_are_invalid_format(body):
    http = _FakeHttp(_FakeResponse(200, body))
    with pytest.raises(InvalidFormatError) as excinfo:
        OpenRouterClient("or-key", http=http).extract(IMAGE)
    assert str(excinfo.value) == "The AI returned an invalid data format. Please try again."
