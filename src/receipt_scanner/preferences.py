"""Small persisted user preferences: the API credential and provider choice.

Nothing else survives a restart; receipts live only in memory.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import ScannerConfig
from .domain.models import Provider
from .extraction.client import ExtractionSettings
from .logging import get_logger
from .paths import expand_abs, find_project_root, var_dir


LOG = get_logger("preferences")

PREFERENCES_FILENAME = "preferences.json"
API_KEY_KEY = "receipt_api_key"
PROVIDER_KEY = "receipt_provider"


class PreferencesError(Exception):
    pass


@dataclass(frozen=True)
class Preferences:
    api_key: str
    provider: Provider

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


class PreferencesStore:
    """JSON-file backed store under the project's var/ directory."""

    def __init__(self, path: str, *, defaults: Optional[ScannerConfig] = None) -> None:
        self.path = path
        self.defaults = defaults

    @classmethod
    def for_project(cls, config: ScannerConfig, *, root_dir: Optional[str] = None) -> "PreferencesStore":
        if config.state_dir:
            folder = expand_abs(config.state_dir)
        else:
            folder = var_dir(find_project_root(root_dir))
        return cls(os.path.join(folder, PREFERENCES_FILENAME), defaults=config)

    def _read(self) -> Dict[str, Any]:
        if not os.path.isfile(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            LOG.warning(f"Failed reading preferences at {self.path}: {exc}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        folder = os.path.dirname(self.path)
        try:
            if folder:
                os.makedirs(folder, exist_ok=True)
            tmp_path = self.path + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PreferencesError(f"Could not save preferences to {self.path}: {exc}") from exc

    def load(self) -> Preferences:
        data = self._read()
        default_key = (self.defaults.api_key if self.defaults else None) or ""
        default_provider = self.defaults.provider if self.defaults else Provider.GEMINI
        api_key = data.get(API_KEY_KEY)
        if not isinstance(api_key, str):
            api_key = default_key
        provider = Provider.parse(data.get(PROVIDER_KEY), default=default_provider)
        return Preferences(api_key=api_key.strip(), provider=provider)

    def save(self, *, api_key: Optional[str] = None, provider: Optional[Provider] = None) -> Preferences:
        data = self._read()
        if api_key is not None:
            data[API_KEY_KEY] = api_key.strip()
        if provider is not None:
            data[PROVIDER_KEY] = provider.value
        self._write(data)
        LOG.info(f"Saved preferences to {self.path}")
        return self.load()

    def clear_api_key(self) -> Preferences:
        data = self._read()
        data[API_KEY_KEY] = ""
        self._write(data)
        LOG.info("Removed stored API key")
        return self.load()

    def extraction_settings(self) -> ExtractionSettings:
        """Settings snapshot read at dispatch time."""
        prefs = self.load()
        return ExtractionSettings(
            api_key=prefs.api_key,
            provider=prefs.provider,
            model=self.defaults.model if self.defaults else None,
            timeout_seconds=self.defaults.timeout_seconds if self.defaults else 120,
            openai_base_url=self.defaults.openai_base_url if self.defaults else None,
        )
