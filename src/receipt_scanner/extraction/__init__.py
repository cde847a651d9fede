"""Remote vision extraction: prompt, provider clients and payload coercion."""

from .client import ExtractionSettings, build_provider_client, extract_receipt_data
from .errors import (
    EmptyResponseError,
    ExtractionError,
    InvalidFormatError,
    MissingCredentialError,
    ProviderError,
)
from .payload import coerce_extracted, parse_payload, strip_code_fence, unwrap_payload

__all__ = [
    "ExtractionSettings",
    "build_provider_client",
    "extract_receipt_data",
    "EmptyResponseError",
    "ExtractionError",
    "InvalidFormatError",
    "MissingCredentialError",
    "ProviderError",
    "coerce_extracted",
    "parse_payload",
    "strip_code_fence",
    "unwrap_payload",
]
