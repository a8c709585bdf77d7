"""AI Resilience Layer: Retry, Circuit Breaker, Cache.

Provides generate_text(), the single entry point every AI call in the app
goes through (quiz generation, book summaries, kids-book classification).
Calls are wrapped with retry on transient errors, a per-provider circuit
breaker and an optional response cache. Any failure surfaces as
UpstreamServiceError so callers can tell it apart from bad output.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass

from flask import current_app
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from errors import UpstreamServiceError

logger = logging.getLogger(__name__)


# ── TTL Cache ───────────────────────────────────────────────

class TTLCache:
    """In-memory dict with expiry timestamps, evicting the soonest-expiring entry at 1000 entries."""

    MAX_ENTRIES = 1000

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()

    @staticmethod
    def make_key(prompt: str, system: str, model: str) -> str:
        raw = f"{prompt}|{system}|{model}"
        return hashlib.sha256(raw.encode()).hexdigest()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.time() > expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int = 86400) -> None:
        with self._lock:
            if len(self._store) >= self.MAX_ENTRIES:
                oldest_key = min(self._store, key=lambda k: self._store[k][1])
                del self._store[oldest_key]
            self._store[key] = (value, time.time() + ttl_seconds)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


# ── Circuit Breaker ─────────────────────────────────────────

@dataclass
class _ProviderState:
    failures: int = 0
    state: str = "closed"  # closed | open | half_open
    last_failure_time: float = 0.0


class CircuitBreaker:
    """Per-provider state machine: closed -> open -> half_open -> closed."""

    FAILURE_THRESHOLD = 3
    RECOVERY_TIMEOUT = 60  # seconds

    def __init__(self) -> None:
        self._providers: dict[str, _ProviderState] = {}
        self._lock = threading.Lock()

    def _get_state(self, provider: str) -> _ProviderState:
        if provider not in self._providers:
            self._providers[provider] = _ProviderState()
        return self._providers[provider]

    def record_success(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures = 0
            state.state = "closed"

    def record_failure(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures += 1
            state.last_failure_time = time.time()
            if state.failures >= self.FAILURE_THRESHOLD:
                state.state = "open"

    def is_open(self, provider: str) -> bool:
        with self._lock:
            state = self._get_state(provider)
            if state.state == "open":
                if time.time() - state.last_failure_time >= self.RECOVERY_TIMEOUT:
                    state.state = "half_open"
                    return False  # allow one attempt
                return True
            return False

    def get_state(self, provider: str) -> str:
        with self._lock:
            return self._get_state(provider).state

    def reset(self) -> None:
        with self._lock:
            self._providers.clear()


_circuit_breaker = CircuitBreaker()
_cache = TTLCache()


# ── Transient error detection ───────────────────────────────

_TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
)

_TRANSIENT_PATTERNS = (
    "rate limit",
    "429",
    "503",
    "502",
    "500",
    "overloaded",
    "temporarily unavailable",
    "timeout",
    "connection",
)


def _is_transient(exc: BaseException) -> bool:
    """Check if an exception is transient (worth retrying)."""
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    msg = str(exc).lower()
    return any(p in msg for p in _TRANSIENT_PATTERNS)


class TransientLLMError(Exception):
    """Wrapper for transient LLM errors that should be retried."""


# ── Provider calls ──────────────────────────────────────────

def _do_call(provider: str, model: str, prompt: str, system: str, api_key: str) -> str:
    """Execute the actual LLM API call (no retry, no cache)."""
    if provider == "gemini":
        import google.generativeai as genai
        genai.configure(api_key=api_key)
        m = genai.GenerativeModel(model)
        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        return m.generate_content(full_prompt).text

    if provider == "claude":
        import anthropic
        client = anthropic.Anthropic(api_key=api_key)
        kwargs: dict = {
            "model": model,
            "max_tokens": 4096,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        response = client.messages.create(**kwargs)
        return response.content[0].text

    if provider == "openai":
        from openai import OpenAI
        client = OpenAI(api_key=api_key)
        messages: list[dict] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        response = client.chat.completions.create(model=model, messages=messages, max_tokens=4096)
        return response.choices[0].message.content or ""

    raise ValueError(f"Unknown provider: {provider}")


_API_KEY_SETTINGS = {
    "gemini": "GOOGLE_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


@retry(
    retry=retry_if_exception_type(TransientLLMError),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _call_with_retry(provider: str, model: str, prompt: str, system: str, api_key: str) -> str:
    """Call LLM with tenacity retry on transient errors."""
    try:
        return _do_call(provider, model, prompt, system, api_key)
    except Exception as exc:
        if _is_transient(exc):
            raise TransientLLMError(str(exc)) from exc
        raise


def generate_text(prompt: str, system: str = "", cache_ttl: int = 0) -> str:
    """Run one prompt against the configured provider.

    Args:
        prompt: The user prompt.
        system: System prompt (optional).
        cache_ttl: Cache TTL in seconds (0 = no caching).

    Raises:
        UpstreamServiceError: the provider is unconfigured, its circuit is
            open, or the call failed after retries.
    """
    provider = current_app.config.get("AI_PROVIDER", "gemini")
    model = current_app.config.get("AI_MODEL", "gemini-2.0-flash")
    api_key = current_app.config.get(_API_KEY_SETTINGS.get(provider, ""), "")

    if provider not in _API_KEY_SETTINGS:
        raise UpstreamServiceError(f"Unknown AI provider: {provider}", retryable=False)
    if not api_key:
        raise UpstreamServiceError(f"No API key configured for {provider}", retryable=False)
    if _circuit_breaker.is_open(provider):
        raise UpstreamServiceError(f"AI provider {provider} is temporarily unavailable")

    cache_key = TTLCache.make_key(prompt, system, model)
    if cache_ttl > 0:
        cached = _cache.get(cache_key)
        if cached is not None:
            return cached

    start = time.time()
    try:
        text = _call_with_retry(provider, model, prompt, system, api_key)
    except Exception as exc:
        _circuit_breaker.record_failure(provider)
        logger.warning("AI call to %s failed: %s", provider, exc)
        raise UpstreamServiceError(f"AI generation failed: {exc}") from exc

    _circuit_breaker.record_success(provider)
    logger.info("AI call to %s/%s took %dms", provider, model, int((time.time() - start) * 1000))

    if cache_ttl > 0:
        _cache.set(cache_key, text, cache_ttl)
    return text


def get_circuit_breaker() -> CircuitBreaker:
    """Access the module-level circuit breaker singleton."""
    return _circuit_breaker


def get_cache() -> TTLCache:
    """Access the module-level TTLCache singleton."""
    return _cache
