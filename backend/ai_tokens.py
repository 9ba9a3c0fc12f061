# ai_tokens.py - Credential resolution for generative backends
#
# An active AIToken row (managed outside this service) overrides the
# provider's environment variable. Database lookups are cached per provider
# for a short freshness window; a refresh replaces the cache entry and never
# mutates a credential an in-flight call has already captured.

import os
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from models import AIToken, utcnow

logger = logging.getLogger("boardforge.tokens")

ENV_KEYS = {
    "google": "GOOGLE_API_KEY",
    "openai": "OPENAI_API_KEY",
    "groq": "GROQ_API_KEY",
}
CACHE_TTL_SEC = float(os.getenv("AI_TOKEN_CACHE_TTL_SEC", "300"))


@dataclass(frozen=True)
class ResolvedCredential:
    provider: str
    secret: str
    source: str  # database | environment
    token_id: Optional[str] = None
    config: Mapping[str, Any] = field(default_factory=dict)

    @property
    def masked(self) -> str:
        return f"{self.secret[:4]}…{self.secret[-4:]}" if len(self.secret) > 8 else "****"


class TokenStore:
    """Read-mostly credential cache shared by every generation request."""

    def __init__(
        self,
        session_factory=None,
        ttl_seconds: float = CACHE_TTL_SEC,
        environ: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._ttl = ttl_seconds
        self._environ = environ if environ is not None else os.environ
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Optional[ResolvedCredential]]] = {}
        self._environment_usage: Dict[str, int] = {}

    async def resolve(self, provider: str = "google") -> Optional[ResolvedCredential]:
        """Cached database override first, then the static environment key."""
        override = await self._cached_override(provider)
        if override is not None:
            return override
        return self._from_environment(provider)

    async def _cached_override(self, provider: str) -> Optional[ResolvedCredential]:
        entry = self._cache.get(provider)
        now = self._clock()
        if entry is not None and now - entry[0] < self._ttl:
            return entry[1]
        credential = await self._from_database(provider)
        self._cache[provider] = (now, credential)
        return credential

    async def _from_database(self, provider: str) -> Optional[ResolvedCredential]:
        if self._session_factory is None:
            return None
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(AIToken)
                    .where(AIToken.provider == provider, AIToken.is_active.is_(True))
                    .order_by(AIToken.created_at.desc())
                    .limit(1)
                )
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(f"Token lookup failed for {provider}, using environment: {e}")
            return None
        if row is None or not row.token:
            return None
        return ResolvedCredential(
            provider=provider,
            secret=row.token,
            source="database",
            token_id=row.id,
            config=dict(row.config or {}),
        )

    def _from_environment(self, provider: str) -> Optional[ResolvedCredential]:
        env_key = ENV_KEYS.get(provider)
        secret = self._environ.get(env_key, "") if env_key else ""
        if not secret:
            return None
        return ResolvedCredential(provider=provider, secret=secret, source="environment")

    async def record_usage(self, credential: ResolvedCredential) -> None:
        """Count one successful call against the credential that served it."""
        if credential.source != "database" or self._session_factory is None:
            self._environment_usage[credential.provider] = self._environment_usage.get(credential.provider, 0) + 1
            return
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(AIToken)
                    .where(AIToken.id == credential.token_id)
                    .values(usage_count=AIToken.usage_count + 1, last_used_at=utcnow())
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record usage for token {credential.token_id}: {e}")
            return
        self.invalidate(credential.provider)

    def invalidate(self, provider: Optional[str] = None) -> None:
        if provider is None:
            self._cache.clear()
        else:
            self._cache.pop(provider, None)

    def environment_usage(self) -> Dict[str, int]:
        return dict(self._environment_usage)


_store: Optional[TokenStore] = None


def get_token_store() -> TokenStore:
    """Get or create the process-wide token store"""
    global _store
    if _store is None:
        from database import async_session_maker
        _store = TokenStore(session_factory=async_session_maker)
    return _store
