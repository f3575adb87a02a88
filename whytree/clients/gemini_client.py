# whytree/clients/gemini_client.py
#
# Single integration layer for the generative-language model.
# Gemini is reached through its OpenAI-compatible endpoint, so the openai SDK
# does the transport; everything provider-specific lives in this module.

import random
import time
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import openai

from whytree.config.settings import COUNSELOR_PROMPT_PATH, TREE_PROMPT_PATH, Settings
from whytree.core.diagram import extract_diagram
from whytree.core.errors import ConfigurationError, InputValidationError, ModelGatewayError
from whytree.core.models import ROLE_ASSISTANT, Message
from whytree.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GatewayReply:
    text: str
    diagram: Optional[str] = None


# ---------------------------------------------------------------------------
# Base-url normalization
# ---------------------------------------------------------------------------

def _strip_outer_quotes(s: str) -> str:
    """
    Safeguard: users sometimes put GEMINI_BASE_URL="https://..." including quotes.
    This removes a single pair of matching outer quotes.
    """
    s2 = (s or "").strip()
    if len(s2) >= 2 and ((s2[0] == s2[-1]) and s2[0] in ("'", '"')):
        return s2[1:-1].strip()
    return s2


def normalize_base_url(raw: Optional[str]) -> str:
    """
    Return the OpenAI-compatible base url without trailing slashes.

    If a full endpoint like .../openai/chat/completions was configured, it is
    trimmed back to the .../openai root the SDK expects.
    """
    base = _strip_outer_quotes(raw or "")
    if not base:
        raise ValueError("GEMINI_BASE_URL is empty.")

    if not (base.startswith("http://") or base.startswith("https://")):
        raise ValueError(f"GEMINI_BASE_URL is invalid (missing scheme): {base!r}")

    base = base.rstrip("/")
    for suffix in ("/chat/completions", "/chat"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
    return base


# ---------------------------------------------------------------------------
# request ids + retry helpers
# ---------------------------------------------------------------------------

def _mk_req_id(prefix: str = "req") -> str:
    return f"{prefix}_{int(time.time()*1000)}_{random.randint(1000, 9999)}"


def _is_transient_status(code: int) -> bool:
    return code in {408, 409, 425, 429, 500, 502, 503, 504}


def _sleep_backoff(attempt_idx: int) -> None:
    base = 0.4 * (2 ** max(0, attempt_idx - 1))
    jitter = random.uniform(0.0, 0.25)
    time.sleep(min(3.0, base + jitter))


def classify_error(e: Exception) -> str:
    if isinstance(e, openai.APITimeoutError):
        return "gemini_timeout"
    if isinstance(e, openai.APIConnectionError):
        return "gemini_network"
    if isinstance(e, openai.AuthenticationError):
        return "gemini_auth"
    if isinstance(e, openai.RateLimitError):
        return "gemini_rate_limit"
    if isinstance(e, openai.NotFoundError):
        return "gemini_404_not_found"
    if isinstance(e, openai.APIStatusError):
        return f"gemini_http_{e.status_code}"

    msg = (str(e) or "").lower()
    if "timeout" in msg or "timed out" in msg:
        return "gemini_timeout"
    if "connection" in msg or "dns" in msg:
        return "gemini_network"
    return "gemini_unknown"


def _is_transient(e: Exception) -> bool:
    if isinstance(e, openai.APIConnectionError):
        return True
    if isinstance(e, openai.APIStatusError):
        return _is_transient_status(e.status_code)
    return False


# ---------------------------------------------------------------------------
# Instruction prompts
# ---------------------------------------------------------------------------

@lru_cache(maxsize=None)
def load_prompt(path: Path) -> str:
    """Read an instruction prompt once and cache it."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            prompt = f.read().strip()
    except OSError as e:
        logger.error(f"Failed to load instruction prompt from {path}: {e}")
        raise

    if not prompt:
        logger.error("Instruction prompt %s is empty after loading.", path)
        raise RuntimeError(f"Instruction prompt {path.name} is empty.")

    return prompt


def instruction_for(wants_tree: bool) -> str:
    return load_prompt(TREE_PROMPT_PATH if wants_tree else COUNSELOR_PROMPT_PATH)


def to_model_turns(history: Sequence[Message]) -> List[Dict[str, str]]:
    """
    Map dialogue messages onto the provider's chat roles.

    The OpenAI-compatible dialect names Gemini's "model" role "assistant".
    """
    turns: List[Dict[str, str]] = []
    for msg in history:
        role = "assistant" if msg.role == ROLE_ASSISTANT else "user"
        turns.append({"role": role, "content": msg.content})
    return turns


def _reply_text(resp: Any) -> str:
    # v1 response shape: resp.choices[0].message.content
    try:
        content = resp.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        logger.warning("Completion response had an unexpected shape: %r", type(resp))
        return ""
    return content if isinstance(content, str) else ""


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class ModelGateway:
    """
    Sends the full dialogue plus one of two instruction prompts to the model
    and returns its reply, with the diagram extracted in tree mode.
    """

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        self.settings = settings
        self._client = client

    @property
    def model_name(self) -> str:
        model = (self.settings.gemini_model or "").strip()
        if not model:
            logger.warning("gemini_model is empty in settings; falling back to 'gemini-2.5-flash'.")
            return "gemini-2.5-flash"
        return model

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = openai.OpenAI(
                api_key=self.settings.gemini_api_key,
                base_url=normalize_base_url(self.settings.gemini_base_url),
                timeout=self.settings.gemini_timeout_seconds,
                max_retries=0,  # retries are ours
            )
        return self._client

    def converse(self, history: Sequence[Message], wants_tree: bool) -> GatewayReply:
        # Configuration is checked before anything touches the network
        if not self.settings.api_key_configured:
            logger.error("GEMINI_API_KEY is not set in environment variables.")
            raise ConfigurationError("The Gemini API key is not configured. Check your .env file.")

        if not history:
            raise InputValidationError("At least one message is required.")

        req_id = _mk_req_id("tree" if wants_tree else "chat")
        model_name = self.model_name
        turns = to_model_turns(history)

        # prior context + the new turn, behind the instruction prompt.
        # The new turn is always sent as the user's, even when the dialogue
        # ends on the counselor's question (the usual case for a tree request).
        messages = [{"role": "system", "content": instruction_for(wants_tree)}]
        messages.extend(turns[:-1])
        messages.append({"role": "user", "content": turns[-1]["content"]})

        client = self._get_client()
        max_attempts = max(1, self.settings.gemini_max_attempts)
        last_err: Optional[Exception] = None

        logger.info("[gateway] req_id=%s start model=%s wants_tree=%s msg_count=%d",
                    req_id, model_name, wants_tree, len(history))

        for attempt in range(1, max_attempts + 1):
            t0 = time.monotonic()
            try:
                resp = client.chat.completions.create(
                    model=model_name,
                    messages=messages,
                    temperature=self.settings.gemini_temperature,
                )
            except Exception as e:
                last_err = e
                dt_ms = int((time.monotonic() - t0) * 1000)
                code = classify_error(e)
                transient = _is_transient(e)

                logger.warning("[gateway] req_id=%s FAIL attempt=%d/%d latency_ms=%d code=%s transient=%s err=%s",
                               req_id, attempt, max_attempts, dt_ms, code, transient, str(e))

                if attempt >= max_attempts or not transient:
                    break
                _sleep_backoff(attempt)
                continue

            dt_ms = int((time.monotonic() - t0) * 1000)
            text = _reply_text(resp).strip()
            if not text:
                logger.error("[gateway] req_id=%s empty reply latency_ms=%d", req_id, dt_ms)
                raise ModelGatewayError("The model returned an empty reply.")

            snippet = text[:240] + ("..." if len(text) > 240 else "")
            logger.info("[gateway] req_id=%s OK attempt=%d latency_ms=%d reply=%r",
                        req_id, attempt, dt_ms, snippet)

            diagram = extract_diagram(text) if wants_tree else None
            if wants_tree and diagram is None:
                logger.warning("[gateway] req_id=%s no diagram JSON found in reply.", req_id)
            return GatewayReply(text=text, diagram=diagram)

        logger.error("[gateway] req_id=%s model call failed. last_code=%s last_err=%r",
                     req_id, classify_error(last_err or Exception("unknown")), last_err)
        raise ModelGatewayError(
            "Failed to communicate with the AI. Please wait a moment and try again."
        ) from last_err
