# whytree/config/settings.py

from dataclasses import dataclass
import os
from pathlib import Path

from dotenv import load_dotenv

# Expose BASE_DIR for other modules
BASE_DIR = Path(__file__).resolve().parents[2]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

PROMPTS_DIR = BASE_DIR / "whytree" / "config" / "prompts"
COUNSELOR_PROMPT_PATH = PROMPTS_DIR / "counselor_prompt.txt"
TREE_PROMPT_PATH = PROMPTS_DIR / "tree_prompt.txt"

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"


@dataclass
class Settings:
    # Gemini credential; may be empty, the gateway reports it before any call
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_GEMINI_MODEL

    # OpenAI-compatible endpoint exposed by the Gemini API
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL

    # Quality/latency tuning knobs
    gemini_timeout_seconds: float = 60.0
    gemini_max_attempts: int = 1          # 1 = no automatic retry
    gemini_temperature: float = 0.4

    # Local analysis history (one JSON blob per storage key)
    data_dir: str = str(BASE_DIR / "whytree" / "data")

    # When set, the CLI talks to a running server instead of the model directly
    api_base: str = ""

    @property
    def api_key_configured(self) -> bool:
        return bool(self.gemini_api_key and self.gemini_api_key.strip())


def _parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
        # safeguard: enforce positive
        return value if value > 0 else default
    except ValueError:
        return default


def _parse_int_env(name: str, default: int, min_val: int = 0, max_val: int = 10) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
        # safeguard: clamp into sane range
        return max(min_val, min(max_val, value))
    except ValueError:
        return default


def _parse_temperature_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(0.0, min(2.0, value))


def load_settings() -> Settings:
    """
    Load configuration from environment variables (and defaults).

    A missing GEMINI_API_KEY is not an error here: the API and the CLI must
    still start so the missing credential can be reported as a configuration
    error on the first model call.
    """
    api_key = os.getenv("GEMINI_API_KEY", "").strip()

    gemini_model = os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL).strip() or DEFAULT_GEMINI_MODEL
    base_url = os.getenv("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL).strip() or DEFAULT_GEMINI_BASE_URL

    # --- Data dir (optional override) ---
    default_data_dir = BASE_DIR / "whytree" / "data"
    data_dir = os.getenv("WHYTREE_DATA_DIR", str(default_data_dir)).strip() or str(default_data_dir)

    api_base = os.getenv("WHYTREE_API_BASE", "").strip()

    # --- Quality / speed tuning knobs ---
    timeout_seconds = _parse_float_env("GEMINI_TIMEOUT_SECONDS", 60.0)
    max_attempts = _parse_int_env("GEMINI_MAX_ATTEMPTS", 1, min_val=1, max_val=5)
    temperature = _parse_temperature_env("GEMINI_TEMPERATURE", 0.4)

    return Settings(
        gemini_api_key=api_key,
        gemini_model=gemini_model,
        gemini_base_url=base_url,
        gemini_timeout_seconds=timeout_seconds,
        gemini_max_attempts=max_attempts,
        gemini_temperature=temperature,
        data_dir=data_dir,
        api_base=api_base,
    )
