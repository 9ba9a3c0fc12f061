"""
BoardForge — Generative Backend Adapter

Wraps calls to a remote generative text service (Google Gemini REST or an
OpenAI-compatible chat completions API) with:
- credential resolution before every call (cached database override, then
  the provider's environment variable)
- retry with exponential backoff for transient failures (429/500/502/503/504)
- usage accounting against the credential that served the call
- helper prompts for analysis, moderation, auto-completion, suggestions and
  quick templates, decoded with the tolerant structured-text decoder
"""

import os
import json
import time
import random
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from ai_tokens import ResolvedCredential, TokenStore, get_token_store
from board_schema import GenerationOptions
from logging_system import LogCategory, get_logger, timed
from structured_text import decode_array, decode_object

logger = logging.getLogger("boardforge.ai")

PROVIDERS: Dict[str, Dict[str, Any]] = {
    "google": {
        "base_url": os.getenv("GOOGLE_AI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"),
        "default_model": "gemini-1.5-flash",
        "models": ["gemini-1.5-flash", "gemini-1.5-pro", "gemini-2.0-flash"],
    },
    "openai": {
        "base_url": os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        "default_model": "gpt-4o-mini",
        "models": ["gpt-4o", "gpt-4o-mini"],
    },
    "groq": {
        "base_url": "https://api.groq.com/openai/v1",
        "default_model": "llama-3.3-70b-versatile",
        "models": ["llama-3.3-70b-versatile", "llama-3.1-8b-instant"],
    },
}

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

FEATURES = [
    "board_generation",
    "content_moderation",
    "auto_completion",
    "smart_suggestions",
    "quick_templates",
]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ============================================================================
# ERRORS
# ============================================================================

class BackendError(Exception):
    """A failed call to the generative backend."""

    def __init__(self, message: str, status: Optional[int] = 500, code: str = "BACKEND_ERROR"):
        super().__init__(message)
        self.status = status
        self.code = code

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES


class BackendUnavailableError(BackendError):
    """No credential is configured for the provider."""

    def __init__(self, message: str = "Generative backend credential not found"):
        super().__init__(message, status=None, code="BACKEND_UNAVAILABLE")


class RateLimitError(BackendError):
    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, status=429, code="RATE_LIMIT")


def describe_backend_error(error: Exception) -> str:
    """User-facing wording for a backend failure."""
    status = getattr(error, "status", None)
    message = str(error)
    if isinstance(error, BackendUnavailableError):
        return "AI service is not configured. A template board was used instead."
    if status == 503:
        return "AI service is temporarily overloaded. Please try again in a few minutes."
    if status == 429:
        return "AI service rate limit exceeded. Please wait a moment before trying again."
    if status == 500:
        return "AI service is experiencing issues. Please try again later."
    if "overloaded" in message.lower():
        return "AI service is currently overloaded. Please try again in a few minutes."
    return message or "Unknown error occurred during board generation."


# ============================================================================
# CONFIG & BACKOFF
# ============================================================================

@dataclass(frozen=True)
class BackoffPolicy:
    """Delay before the retry that follows ``attempt`` (1-based)."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.0

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * rng()
        return delay

    @classmethod
    def from_env(cls) -> "BackoffPolicy":
        return cls(
            max_attempts=max(1, int(_env_float("BOARD_AI_MAX_ATTEMPTS", 3))),
            base_delay=_env_float("BOARD_AI_RETRY_BASE_SEC", 1.0),
        )


class BackendConfig(BaseModel):
    """Runtime configuration; credential config entries override these."""

    model_config = ConfigDict(protected_namespaces=())

    provider: str = "google"
    model_name: Optional[str] = None
    max_tokens: int = 2000
    temperature: float = 0.3
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> "BackendConfig":
        return cls(
            provider=os.getenv("BOARD_AI_PROVIDER", "google").lower(),
            model_name=os.getenv("BOARD_AI_MODEL") or None,
            timeout=_env_float("BOARD_AI_TIMEOUT_SEC", 60.0),
        )

    def resolved_for(self, credential: ResolvedCredential) -> "BackendConfig":
        overrides = credential.config or {}
        provider_cfg = PROVIDERS.get(self.provider, PROVIDERS["google"])
        return self.model_copy(update={
            "model_name": overrides.get("model") or self.model_name or provider_cfg["default_model"],
            "max_tokens": int(overrides.get("maxTokens") or self.max_tokens),
            "temperature": float(overrides.get("temperature", self.temperature)),
            "timeout": float(overrides.get("timeout") or self.timeout),
        })


# ============================================================================
# PROMPTS
# ============================================================================

BOARD_PROMPT = """You are a project planning assistant. Design a task board for this request:
"{prompt}"

Requirements analysis:
{analysis}

Return ONLY JSON (max 6 columns, 10 tasks, 6 tags{checklist_limit}) matching:
{{
  "board": {{"name": "string", "description": "string", "type": "kanban|list|calendar|timeline"}},
  "columns": [{{"name": "string", "position": 0, "color": "#RRGGBB", "limit": null}}],
  "tasks": [{{"title": "string", "description": "string", "priority": "low|medium|high|critical",
             "estimatedHours": 2, "tags": ["tag name"], "column": "column name"}}],
  "tags": [{{"name": "string", "color": "#RRGGBB", "category": "priority|status|type|department|custom"}}]{checklist_schema}
}}"""

CHECKLIST_SCHEMA = """,
  "checklists": [{{"title": "string", "items": [{{"text": "string", "priority": "low|medium|high|critical", "estimatedMinutes": 30}}]}}]"""

ANALYSIS_PROMPT = """Analyze this project request and extract requirements:
"{prompt}"

Return ONLY JSON (max 5 items per array):
{{"goals": ["string"], "keyFeatures": ["string"], "targetUsers": ["string"]}}"""

MODERATION_PROMPT = """Analyze the following text for safety (violence, hate, harassment, sexual content, self-harm, illegal activity):
"{text}"

Return ONLY JSON: {{"flagged": false, "reason": "string", "categories": ["string"]}}"""

AUTOCOMPLETE_PROMPT = """Complete this project board request in three different ways:
"{partial}"
{context}
Return ONLY a JSON array of 3 strings."""

SUGGESTIONS_PROMPT = """Generate smart suggestions for a {kind} based on:
"{text}"

Return ONLY JSON (max 5 suggestions, 3 categories):
{{"suggestions": ["string"], "categories": ["string"]}}"""

TEMPLATES_PROMPT = """Generate {count} quick project board templates for the {category} category.

Return ONLY a JSON array: [{{"name": "string", "description": "string"}}]"""


def build_board_prompt(prompt: str, options: GenerationOptions, analysis: Optional[Dict[str, Any]] = None) -> str:
    return BOARD_PROMPT.format(
        prompt=prompt.replace('"', "'"),
        analysis=json.dumps(analysis or {}, indent=2),
        checklist_limit=", 3 checklists" if options.include_checklists else "",
        checklist_schema=CHECKLIST_SCHEMA.format() if options.include_checklists else "",
    )


def _str_list(value: Any, limit: int) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()][:limit]


# ============================================================================
# ADAPTER
# ============================================================================

class GenerativeBackend:
    """Retrying client for the generative text service."""

    def __init__(
        self,
        config: Optional[BackendConfig] = None,
        token_store: Optional[TokenStore] = None,
        policy: Optional[BackoffPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or BackendConfig.from_env()
        self.policy = policy or BackoffPolicy.from_env()
        self._tokens = token_store or get_token_store()
        self._transport = transport
        self._sleep = sleep
        self._slog = get_logger()

    @property
    def provider(self) -> str:
        return self.config.provider

    async def is_available(self) -> bool:
        return await self._tokens.resolve(self.provider) is not None

    async def _require_credential(self) -> ResolvedCredential:
        credential = await self._tokens.resolve(self.provider)
        if credential is None:
            logger.error(f"No credential configured for provider '{self.provider}'")
            raise BackendUnavailableError(f"No API key configured for provider '{self.provider}'")
        return credential

    # --- Core call -----------------------------------------------------------

    async def complete(self, prompt: str, max_tokens: Optional[int] = None, temperature: Optional[float] = None) -> str:
        """Send one prompt, retrying transient failures; returns the raw text."""
        credential = await self._require_credential()
        cfg = self.config.resolved_for(credential)
        if max_tokens is not None:
            cfg = cfg.model_copy(update={"max_tokens": max_tokens})
        if temperature is not None:
            cfg = cfg.model_copy(update={"temperature": temperature})

        for attempt in range(1, self.policy.max_attempts + 1):
            self._slog.ai_request(cfg.provider, cfg.model_name, attempt=attempt)
            started = time.perf_counter()
            try:
                text = await self._send(credential, cfg, prompt)
            except BackendError as e:
                if not e.retryable or attempt >= self.policy.max_attempts:
                    logger.error(f"Backend call failed after {attempt} attempt(s): {e} (status={e.status})")
                    raise
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"Backend call failed (attempt {attempt}/{self.policy.max_attempts}, "
                    f"status={e.status}); retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                continue

            duration_ms = (time.perf_counter() - started) * 1000
            self._slog.ai_response(cfg.provider, cfg.model_name, chars=len(text), duration_ms=duration_ms)
            if attempt > 1:
                logger.info(f"Backend call succeeded on attempt {attempt}")
            await self._tokens.record_usage(credential)
            return text

        raise BackendError("Backend call was not attempted", status=None, code="NO_ATTEMPTS")

    async def _send(self, credential: ResolvedCredential, cfg: BackendConfig, prompt: str) -> str:
        provider_cfg = PROVIDERS.get(cfg.provider, PROVIDERS["google"])
        if cfg.provider == "google":
            url = f"{provider_cfg['base_url']}/models/{cfg.model_name}:generateContent"
            headers = {"x-goog-api-key": credential.secret, "Content-Type": "application/json"}
            body = {
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"maxOutputTokens": cfg.max_tokens, "temperature": cfg.temperature},
            }
        else:
            url = f"{provider_cfg['base_url']}/chat/completions"
            headers = {"Authorization": f"Bearer {credential.secret}", "Content-Type": "application/json"}
            body = {
                "model": cfg.model_name,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": cfg.max_tokens,
                "temperature": cfg.temperature,
            }

        try:
            async with httpx.AsyncClient(timeout=cfg.timeout, transport=self._transport) as client:
                resp = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise BackendError(f"AI service timed out: {e}", status=504, code="TIMEOUT") from e
        except httpx.TransportError as e:
            raise BackendError(f"AI service unreachable: {e}", status=503, code="NETWORK_ERROR") from e

        if resp.status_code >= 400:
            message = _error_message(resp)
            if resp.status_code == 429:
                raise RateLimitError(message)
            raise BackendError(message, status=resp.status_code, code=f"HTTP_{resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError("AI service returned a non-JSON body", status=502, code="BAD_RESPONSE") from e

        text = _extract_text(cfg.provider, data)
        if not text.strip():
            raise BackendError("AI service returned an empty response", status=502, code="EMPTY_RESPONSE")
        return text

    # --- Board generation ----------------------------------------------------

    async def generate_structure(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        analysis: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Raw model text expected to contain one board object."""
        options = options or GenerationOptions()
        return await self.complete(
            build_board_prompt(prompt, options, analysis),
            max_tokens=options.max_tokens,
            temperature=0.3,
        )

    # --- Helper operations ---------------------------------------------------

    @timed("ai.analyze_prompt", LogCategory.AI)
    async def analyze_prompt(self, prompt: str) -> Dict[str, List[str]]:
        text = await self.complete(ANALYSIS_PROMPT.format(prompt=prompt), max_tokens=800, temperature=0.3)
        data = decode_object(text)
        return {
            "goals": _str_list(data.get("goals"), 5),
            "keyFeatures": _str_list(data.get("keyFeatures"), 5),
            "targetUsers": _str_list(data.get("targetUsers"), 3),
        }

    @timed("ai.moderate_content", LogCategory.AI)
    async def moderate_content(self, text: str) -> Dict[str, Any]:
        raw = await self.complete(MODERATION_PROMPT.format(text=text.replace('"', "'")), max_tokens=200, temperature=0.0)
        data = decode_object(raw)
        result = {
            "flagged": bool(data.get("flagged")),
            "reason": str(data.get("reason") or ""),
            "categories": _str_list(data.get("categories"), 10),
        }
        if result["flagged"]:
            logger.warning(f"Content flagged by moderation: {result['reason']}")
        return result

    async def auto_complete_prompt(self, partial_prompt: str, context: Optional[Dict[str, Any]] = None) -> List[str]:
        context_line = f"Context: {json.dumps(context)}\n" if context else ""
        raw = await self.complete(
            AUTOCOMPLETE_PROMPT.format(partial=partial_prompt, context=context_line),
            max_tokens=150,
            temperature=0.7,
        )
        return _str_list(decode_array(raw), 3)

    async def get_smart_suggestions(self, text: str, kind: str = "board") -> Dict[str, List[str]]:
        raw = await self.complete(SUGGESTIONS_PROMPT.format(kind=kind, text=text), max_tokens=300, temperature=0.5)
        data = decode_object(raw)
        return {
            "suggestions": _str_list(data.get("suggestions"), 5),
            "categories": _str_list(data.get("categories"), 3),
        }

    async def generate_quick_templates(self, category: str = "general", count: int = 5) -> List[Dict[str, str]]:
        count = max(1, min(count, 5))
        raw = await self.complete(TEMPLATES_PROMPT.format(count=count, category=category), max_tokens=600, temperature=0.4)
        templates = []
        for item in decode_array(raw):
            if isinstance(item, dict) and item.get("name"):
                templates.append({"name": str(item["name"]), "description": str(item.get("description") or "")})
        return templates[:count]

    async def model_info(self) -> Dict[str, Any]:
        provider_cfg = PROVIDERS.get(self.provider, PROVIDERS["google"])
        return {
            "provider": self.provider,
            "model": self.config.model_name or provider_cfg["default_model"],
            "models": provider_cfg["models"],
            "features": FEATURES,
            "available": await self.is_available(),
        }


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or f"HTTP {resp.status_code}")
    if isinstance(error, str):
        return error
    return f"HTTP {resp.status_code}"


def _unexpected_body() -> BackendError:
    return BackendError("AI service returned an unexpected body", status=502, code="BAD_RESPONSE")


def _first(items: Any) -> Dict[str, Any]:
    if items is None:
        return {}
    if not isinstance(items, list):
        raise _unexpected_body()
    first = items[0] if items else {}
    if not isinstance(first, dict):
        raise _unexpected_body()
    return first


def _field(container: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = container.get(key) or {}
    if not isinstance(value, dict):
        raise _unexpected_body()
    return value


def _extract_text(provider: str, data: Any) -> str:
    if not isinstance(data, dict):
        raise _unexpected_body()
    if provider == "google":
        feedback = _field(data, "promptFeedback")
        if feedback.get("blockReason"):
            raise BackendError(f"Prompt blocked: {feedback['blockReason']}", status=400, code="CONTENT_BLOCKED")
        parts = _field(_first(data.get("candidates")), "content").get("parts") or []
        if not isinstance(parts, list):
            raise _unexpected_body()
        return "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))
    content = _field(_first(data.get("choices")), "message").get("content")
    if content is not None and not isinstance(content, str):
        raise _unexpected_body()
    return content or ""


_backend: Optional[GenerativeBackend] = None


def get_backend() -> GenerativeBackend:
    """Get or create the process-wide backend adapter"""
    global _backend
    if _backend is None:
        _backend = GenerativeBackend()
    return _backend
