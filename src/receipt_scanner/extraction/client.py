from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..domain.models import ExtractedData, Provider, SourceFile
from ..logging import get_logger
from .errors import MissingCredentialError
from .providers import GeminiClient, OpenAIClient, OpenRouterClient


LOG = get_logger("extraction-client")


@dataclass(frozen=True)
class ExtractionSettings:
    """Credential and provider choice for one extraction call."""

    api_key: str
    provider: Provider = Provider.GEMINI
    model: Optional[str] = None
    timeout_seconds: int = 120
    openai_base_url: Optional[str] = None

    @property
    def has_credential(self) -> bool:
        return bool((self.api_key or "").strip())


def build_provider_client(settings: ExtractionSettings):
    api_key = settings.api_key.strip()
    if settings.provider is Provider.OPENROUTER:
        return OpenRouterClient(api_key, model=settings.model, timeout_seconds=settings.timeout_seconds)
    if settings.provider is Provider.OPENAI:
        return OpenAIClient(
            api_key,
            model=settings.model,
            timeout_seconds=settings.timeout_seconds,
            base_url=settings.openai_base_url,
        )
    return GeminiClient(api_key, model=settings.model, timeout_seconds=settings.timeout_seconds)


def extract_receipt_data(source: SourceFile, settings: ExtractionSettings) -> ExtractedData:
    """Read one receipt image with the configured provider.

    Returns coerced data before VAT reconciliation. Raises `ExtractionError`
    subclasses for missing credentials, transport failures, empty replies
    and malformed payloads.
    """
    if not settings.has_credential:
        raise MissingCredentialError()
    client = build_provider_client(settings)
    LOG.info(
        "Extracting %s (%s, %d bytes) via %s model=%s",
        source.filename,
        source.media_type,
        source.byte_size,
        settings.provider.value,
        client.model,
    )
    return client.extract(source)
