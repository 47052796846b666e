import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")


DEFAULT_RECOGNITION_MODEL = "google/gemini-2.5-flash"
DEFAULT_RECOGNITION_BASE_URL = "https://openrouter.ai/api/v1"


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    the repository-level `.env`.
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
    """Return key/value pairs from the nearest .env without touching os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    env = {k: v.strip() for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


def _lookup(env: Dict[str, str], *names: str) -> Optional[str]:
    for name in names:
        v = os.environ.get(name)
        if v and v.strip():
            return v.strip()
    for name in names:
        v = env.get(name)
        if v:
            return v
    return None


def _int_setting(env: Dict[str, str], name: str, default: int) -> int:
    raw = _lookup(env, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"{name}={raw!r} is not an integer; using default {default}")
        return default


@dataclass(frozen=True)
class RecognitionConfig:
    """Settings required to talk to the OpenRouter chat completions API."""

    api_key: str
    model_name: str = DEFAULT_RECOGNITION_MODEL
    base_url: str = DEFAULT_RECOGNITION_BASE_URL
    temperature: float = 0.0
    max_tokens: int = 1000
    timeout_seconds: int = 90
    search_results: int = 3


@dataclass(frozen=True)
class CameraConfig:
    """Device indexes per facing mode and JPEG quality for still frames."""

    environment_index: int = 0
    user_index: int = 0
    jpeg_quality: int = 90

    def index_for(self, facing: str) -> int:
        return self.user_index if facing == "user" else self.environment_index


def load_openrouter(dotenv_dir: str) -> Optional[str]:
    """Return the OpenRouter API key from env or .env.

    Looks for OPENROUTER_API_KEY and the older OPEN_ROUTER_API_KEY spelling.
    """
    env = _read_dotenv(dotenv_dir)
    key = _lookup(env, "OPENROUTER_API_KEY", "OPEN_ROUTER_API_KEY", "open_router_api_key")
    if key:
        log.info("OpenRouter API key found")
    else:
        log.debug("OPENROUTER_API_KEY not found in env or .env")
    return key


def load_recognition(dotenv_dir: str) -> Optional[RecognitionConfig]:
    """Return the recognition settings, or None when no API key is configured."""
    api_key = load_openrouter(dotenv_dir)
    if not api_key:
        return None
    env = _read_dotenv(dotenv_dir)
    return RecognitionConfig(
        api_key=api_key,
        model_name=_lookup(env, "RECOGNITION_MODEL") or DEFAULT_RECOGNITION_MODEL,
        base_url=_lookup(env, "RECOGNITION_BASE_URL") or DEFAULT_RECOGNITION_BASE_URL,
        timeout_seconds=_int_setting(env, "RECOGNITION_TIMEOUT", 90),
        search_results=_int_setting(env, "RECOGNITION_SEARCH_RESULTS", 3),
    )


def load_camera(dotenv_dir: str) -> CameraConfig:
    env = _read_dotenv(dotenv_dir)
    quality = _int_setting(env, "CAMERA_JPEG_QUALITY", 90)
    if not 1 <= quality <= 100:
        log.warning(f"CAMERA_JPEG_QUALITY={quality} out of range 1..100; using 90")
        quality = 90
    return CameraConfig(
        environment_index=_int_setting(env, "CAMERA_INDEX_ENVIRONMENT", 0),
        user_index=_int_setting(env, "CAMERA_INDEX_USER", 0),
        jpeg_quality=quality,
    )


def load_db_path(dotenv_dir: str) -> Optional[str]:
    """Return STOCK_DB_PATH if configured; None means the default var/ location."""
    env = _read_dotenv(dotenv_dir)
    return _lookup(env, "STOCK_DB_PATH")
