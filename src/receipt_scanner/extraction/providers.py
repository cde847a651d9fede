"""Vision-model providers used to read receipts.

Each client sends the image plus the Danish receipt prompt and returns coerced
(not reconciled) `ExtractedData`, or raises an `ExtractionError` subclass.
"""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

import httpx
import requests
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from ..domain.models import ExtractedData, SourceFile
from ..logging import get_logger
from .errors import EmptyResponseError, InvalidFormatError, ProviderError
from .payload import extracted_from_text
from .prompt import build_prompt, receipt_schema


LOG = get_logger("extraction-providers")

APP_TITLE = "Danish Receipt Scanner"
APP_REFERER = "http://localhost"


def _b64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


def _data_url(source: SourceFile) -> str:
    return f"data:{source.media_type};base64,{_b64(source.content)}"


def _error_message(resp: requests.Response, label: str) -> str:
    """Provider-reported error message if the body carries one."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str) and err["message"].strip():
            return err["message"].strip()
        if isinstance(err, str) and err.strip():
            return err.strip()
    return f"{label} failed: {resp.status_code}"


def _content_text(content: Any) -> Optional[str]:
    """Text of a chat message; content may be a string or a list of parts."""
    if content is None or isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
        return "".join(texts) or None
    LOG.error("Unexpected message content type: %s", type(content).__name__)
    raise InvalidFormatError()


def _json_body(resp: requests.Response, label: str) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        LOG.error("%s returned a non-JSON body: %r", label, resp.text[:300])
        raise InvalidFormatError() from None
    if not isinstance(body, dict):
        raise InvalidFormatError()
    return body


class _RequestsProvider:
    """Shared POST handling for the plain-HTTP providers."""

    LABEL = "Provider"
    DEFAULT_MODEL = ""

    def __init__(
        self,
        api_key: str,
        *,
        model: Optional[str] = None,
        timeout_seconds: int = 120,
        http: Any = None,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.timeout_seconds = timeout_seconds
        self.http = http or requests

    def _post(self, url: str, *, headers: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        LOG.debug("POST %s model=%s timeout=%ss", url, self.model, self.timeout_seconds)
        try:
            resp = self.http.post(url, headers=headers, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            LOG.error("%s request failed: %s", self.LABEL, exc)
            raise ProviderError(f"{self.LABEL} request failed: {exc}") from exc

        if resp.status_code >= 400:
            LOG.error("%s HTTP %s: %s", self.LABEL, resp.status_code, resp.text[:500])
            raise ProviderError(_error_message(resp, self.LABEL), status_code=resp.status_code)
        return _json_body(resp, self.LABEL)


class GeminiClient(_RequestsProvider):
    """Google Gemini `generateContent` with JSON response mode."""

    LABEL = "Gemini"
    DEFAULT_MODEL = "gemini-2.5-flash"
    ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def extract(self, source: SourceFile) -> ExtractedData:
        payload = {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": source.media_type, "data": _b64(source.content)}},
                        {"text": build_prompt()},
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": receipt_schema(),
                "temperature": 0.1,
            },
        }
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        body = self._post(self.ENDPOINT.format(model=self.model), headers=headers, payload=payload)
        return extracted_from_text(self._response_text(body), provider_label=self.LABEL)

    @staticmethod
    def _response_text(body: Dict[str, Any]) -> Optional[str]:
        candidates = body.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            feedback = body.get("promptFeedback")
            if feedback:
                LOG.warning("Gemini returned no candidates: %s", feedback)
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts: List[str] = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "".join(texts) or None


class OpenRouterClient(_RequestsProvider):
    """OpenRouter chat completions (OpenAI-compatible) with an image_url part."""

    LABEL = "OpenRouter"
    DEFAULT_MODEL = "google/gemini-2.0-flash-001"
    ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

    def extract(self, source: SourceFile) -> ExtractedData:
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_prompt(strict_json=True)},
                        {"type": "image_url", "image_url": {"url": _data_url(source)}},
                    ],
                }
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": APP_REFERER,
            "X-Title": APP_TITLE,
        }
        body = self._post(self.ENDPOINT, headers=headers, payload=payload)
        choices = body.get("choices") or []
        if not choices:
            LOG.error("OpenRouter returned no choices: %s", str(body)[:300])
            raise EmptyResponseError(self.LABEL)
        choice = choices[0] if isinstance(choices, list) else None
        message = choice.get("message") if isinstance(choice, dict) else None
        if not isinstance(message, dict):
            LOG.error("OpenRouter returned an unexpected choice shape: %r", str(choices)[:300])
            raise InvalidFormatError()
        return extracted_from_text(_content_text(message.get("content")), provider_label=self.LABEL)


class OpenAIClient:
    """OpenAI chat completions (vision) through the official SDK."""

    LABEL = "OpenAI"
    DEFAULT_MODEL = "gpt-5-mini"

    def __init__(
        self,
        api_key: str,
        *,
        model: Optional[str] = None,
        timeout_seconds: int = 120,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url
        self._client = client

    def _build_client(self) -> tuple[OpenAI, Optional[httpx.Client]]:
        if self._client is not None:
            return self._client, None
        http_client = httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=float(self.timeout_seconds), write=30.0, pool=10.0),
        )
        client = OpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            http_client=http_client,
            max_retries=0,
        )
        return client, http_client

    def extract(self, source: SourceFile) -> ExtractedData:
        client, http_client = self._build_client()
        messages = [
            {
                "role": "system",
                "content": "You are a strict JSON generator. Output ONLY a single JSON object.",
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": build_prompt(strict_json=True)},
                    {"type": "image_url", "image_url": {"url": _data_url(source)}},
                ],
            },
        ]
        try:
            LOG.info("Calling OpenAI Chat Completions (vision) model='%s'", self.model)
            completion = client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except (APIConnectionError, APITimeoutError) as exc:
            LOG.error("Network/timeout while calling OpenAI: %s", exc)
            raise ProviderError(f"{self.LABEL} request failed: {exc}") from exc
        except APIStatusError as exc:
            body = getattr(getattr(exc, "response", None), "text", None)
            LOG.error("OpenAI API returned %s. Body preview: %r", exc.status_code, (body[:300] if body else None))
            message = getattr(exc, "message", None) or f"{self.LABEL} failed: {exc.status_code}"
            raise ProviderError(message, status_code=exc.status_code) from exc
        finally:
            if http_client is not None:
                http_client.close()

        choices = getattr(completion, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        text = getattr(message, "content", None) if message is not None else None
        usage = getattr(completion, "usage", None)
        LOG.debug("Chat completion finished id=%s usage=%s", getattr(completion, "id", None), usage)
        return extracted_from_text(_content_text(text), provider_label=self.LABEL)
