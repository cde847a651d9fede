from __future__ import annotations

from typing import Optional


INVALID_FORMAT_MESSAGE = "The AI returned an invalid data format. Please try again."
MISSING_CREDENTIAL_MESSAGE = "API key missing. Add your key in settings before scanning."


class ExtractionError(Exception):
    """Base class for every failure of a single extraction call."""


class MissingCredentialError(ExtractionError):
    def __init__(self, message: str = MISSING_CREDENTIAL_MESSAGE) -> None:
        super().__init__(message)


class ProviderError(ExtractionError):
    """Transport or authorization failure reported by (or on the way to) the provider."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyResponseError(ExtractionError):
    def __init__(self, provider_label: str) -> None:
        super().__init__(f"Empty response from {provider_label}.")


class InvalidFormatError(ExtractionError):
    def __init__(self, message: str = INVALID_FORMAT_MESSAGE) -> None:
        super().__init__(message)
