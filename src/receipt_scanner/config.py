import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .domain.models import Provider
from .logging import get_logger

log = get_logger("config")

DEFAULT_PROVIDER = Provider.GEMINI
DEFAULT_TIMEOUT_SECONDS = 120


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    Running the CLI from a subdirectory still finds the project-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


def _lookup(key: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(key)
    if v is None:
        v = env.get(key)
    if v is None:
        return None
    v = v.strip()
    return v or None


@dataclass(frozen=True)
class ScannerConfig:
    """Process-level defaults resolved from the environment and `.env`."""

    api_key: Optional[str]
    provider: Provider
    model: Optional[str]
    timeout_seconds: int
    state_dir: Optional[str]
    openai_base_url: Optional[str]


def load_config(dotenv_dir: Optional[str] = None) -> ScannerConfig:
    env = _read_dotenv(dotenv_dir or os.getcwd())

    provider_raw = _lookup("RECEIPT_PROVIDER", env)
    provider = Provider.parse(provider_raw, default=DEFAULT_PROVIDER)
    if provider_raw and provider.value != provider_raw.upper():
        log.warning(f"RECEIPT_PROVIDER={provider_raw!r} is unknown; using {provider.value}")

    timeout_raw = _lookup("RECEIPT_TIMEOUT", env)
    try:
        timeout = int(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        log.warning(f"RECEIPT_TIMEOUT={timeout_raw!r} is not an integer; using {DEFAULT_TIMEOUT_SECONDS}s")
        timeout = DEFAULT_TIMEOUT_SECONDS

    api_key = _lookup("RECEIPT_API_KEY", env)
    if api_key:
        log.info("Using RECEIPT_API_KEY from environment/.env")

    return ScannerConfig(
        api_key=api_key,
        provider=provider,
        model=_lookup("RECEIPT_MODEL", env),
        timeout_seconds=max(1, timeout),
        state_dir=_lookup("RECEIPT_STATE_DIR", env),
        openai_base_url=_lookup("OPENAI_BASE_URL", env),
    )
