"""
BoardForge — Structured Logging System

JSON log entries with correlation IDs, an in-memory ring buffer for the
observability endpoints, and convenience helpers for the events the board
generation pipeline emits (steps, backend calls, fallbacks, socket calls).
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from enum import Enum
import contextvars
import functools
import json
import uuid
import time
from collections import deque
import traceback
import sys
import os


class LogLevel(str, Enum):
    """Log severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        levels = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}
        return levels.get(self.value, 20)


class LogCategory(str, Enum):
    """Log categories for filtering"""
    REQUEST = "request"
    RESPONSE = "response"
    AI = "ai"
    PIPELINE = "pipeline"
    FALLBACK = "fallback"
    SOCKET = "socket"
    CREDENTIALS = "credentials"
    PERFORMANCE = "performance"
    SYSTEM = "system"


@dataclass
class LogEntry:
    """A structured log entry"""
    id: str
    timestamp: str
    level: LogLevel
    category: LogCategory
    message: str
    service: str
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    stack_trace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "service": self.service,
            "correlation_id": self.correlation_id,
            "request_id": self.request_id,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata,
            "tags": self.tags,
            "error": self.error,
            "stack_trace": self.stack_trace,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class RequestContext:
    """Correlation data attached to every entry logged while it is current"""
    request_id: str
    correlation_id: str

    @staticmethod
    def create(correlation_id: Optional[str] = None, request_id: Optional[str] = None) -> "RequestContext":
        return RequestContext(
            request_id=request_id or str(uuid.uuid4())[:12],
            correlation_id=correlation_id or str(uuid.uuid4())[:16],
        )


_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


class LogBuffer:
    """Bounded in-memory log buffer"""

    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._buffer: deque = deque(maxlen=max_size)

    def append(self, entry: LogEntry) -> None:
        self._buffer.append(entry)

    def get_all(self) -> List[LogEntry]:
        return list(self._buffer)

    def clear(self) -> int:
        count = len(self._buffer)
        self._buffer.clear()
        return count

    def filter(
        self,
        level: Optional[LogLevel] = None,
        category: Optional[LogCategory] = None,
        correlation_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        results = []
        for entry in reversed(self._buffer):
            if level and entry.level.numeric < level.numeric:
                continue
            if category and entry.category != category:
                continue
            if correlation_id and entry.correlation_id != correlation_id:
                continue
            if search and search.lower() not in entry.message.lower():
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results


class StructuredLogger:
    """Structured logger for the board generation service"""

    def __init__(
        self,
        service_name: str = "boardforge",
        min_level: LogLevel = LogLevel.INFO,
        buffer_size: int = 10000,
        echo: bool = True,
    ):
        self.service_name = service_name
        self.min_level = min_level
        self.echo = echo
        self.buffer = LogBuffer(buffer_size)

    def _create_entry(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[float] = None,
    ) -> LogEntry:
        context = get_current_context()

        entry = LogEntry(
            id=str(uuid.uuid4())[:12],
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            category=category,
            message=message,
            service=self.service_name,
            correlation_id=context.correlation_id if context else None,
            request_id=context.request_id if context else None,
            duration_ms=duration_ms,
            metadata=metadata or {},
            tags=tags or [],
        )

        if error:
            entry.error = {
                "type": type(error).__name__,
                "message": str(error),
                "status": getattr(error, "status", None),
            }
            if error.__traceback__ is not None:
                entry.stack_trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        return entry

    def _log(self, level: LogLevel, category: LogCategory, message: str, **kwargs) -> Optional[LogEntry]:
        if level.numeric < self.min_level.numeric:
            return None

        entry = self._create_entry(level, category, message, **kwargs)
        self.buffer.append(entry)

        if self.echo:
            out = sys.stderr if level.numeric >= LogLevel.ERROR.numeric else sys.stdout
            print(entry.to_json(), file=out)

        return entry

    def debug(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.DEBUG, category, message, **kwargs)

    def info(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.INFO, category, message, **kwargs)

    def warning(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.WARNING, category, message, **kwargs)

    def error(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.ERROR, category, message, **kwargs)

    # Convenience methods
    def request(self, method: str, path: str, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"{method} {path}",
            category=LogCategory.REQUEST,
            metadata={"method": method, "path": path, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def response(self, status_code: int, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if status_code < 400 else LogLevel.WARNING if status_code < 500 else LogLevel.ERROR
        return self._log(
            level,
            LogCategory.RESPONSE,
            f"Response {status_code}",
            duration_ms=duration_ms,
            metadata={"status_code": status_code, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def ai_request(self, provider: str, model: str, attempt: int = 1, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"AI request to {provider}/{model} (attempt {attempt})",
            category=LogCategory.AI,
            metadata={"provider": provider, "model": model, "attempt": attempt, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def ai_response(self, provider: str, model: str, chars: int, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"AI response from {provider}/{model}",
            category=LogCategory.AI,
            duration_ms=duration_ms,
            metadata={"provider": provider, "model": model, "chars": chars, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def pipeline_step(self, step: str, status: str, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if status == "ok" else LogLevel.WARNING
        return self._log(
            level,
            LogCategory.PIPELINE,
            f"Pipeline step {step}: {status}",
            duration_ms=duration_ms,
            tags=["pipeline", step],
            metadata={"step": step, "status": status, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def fallback(self, reason: str, template: str, **kwargs) -> Optional[LogEntry]:
        return self.warning(
            f"Fallback board synthesized ({template}): {reason}",
            category=LogCategory.FALLBACK,
            tags=["fallback", template],
            metadata={"reason": reason, "template": template, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def socket_event(self, event: str, outcome: str, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if outcome in ("emitted", "resolved") else LogLevel.WARNING
        return self._log(
            level,
            LogCategory.SOCKET,
            f"Socket {event}: {outcome}",
            metadata={"event": event, "outcome": outcome, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def performance(self, operation: str, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if duration_ms < 10000 else LogLevel.WARNING
        return self._log(
            level,
            LogCategory.PERFORMANCE,
            f"Performance: {operation}",
            duration_ms=duration_ms,
            **kwargs,
        )

    def get_logs(
        self,
        level: Optional[LogLevel] = None,
        category: Optional[LogCategory] = None,
        correlation_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        return self.buffer.filter(
            level=level,
            category=category,
            correlation_id=correlation_id,
            search=search,
            limit=limit,
        )

    def get_stats(self) -> Dict[str, Any]:
        logs = self.buffer.get_all()
        level_counts: Dict[str, int] = {}
        category_counts: Dict[str, int] = {}
        error_types: Dict[str, int] = {}
        fallback_templates: Dict[str, int] = {}

        for log in logs:
            level_counts[log.level.value] = level_counts.get(log.level.value, 0) + 1
            category_counts[log.category.value] = category_counts.get(log.category.value, 0) + 1
            if log.error:
                error_type = log.error.get("type", "Unknown")
                error_types[error_type] = error_types.get(error_type, 0) + 1
            if log.category == LogCategory.FALLBACK:
                template = log.metadata.get("template", "unknown")
                fallback_templates[template] = fallback_templates.get(template, 0) + 1

        return {
            "total_logs": len(logs),
            "level_distribution": level_counts,
            "category_distribution": category_counts,
            "error_types": error_types,
            "fallback_templates": fallback_templates,
            "buffer_size": self.buffer.max_size,
            "buffer_usage_pct": round(len(logs) / self.buffer.max_size * 100, 2),
        }


class TimedOperation:
    """Context manager for timing operations"""

    def __init__(
        self,
        logger: StructuredLogger,
        operation: str,
        category: LogCategory = LogCategory.PERFORMANCE,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.logger = logger
        self.operation = operation
        self.category = category
        self.metadata = metadata or {}
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        if exc_type:
            self.logger.error(
                f"Operation failed: {self.operation}",
                category=self.category,
                duration_ms=self.duration_ms,
                error=exc_val,
                metadata=self.metadata,
            )
        else:
            self.logger.performance(self.operation, duration_ms=self.duration_ms, metadata=self.metadata)
        return False


# Global singleton
_logger: Optional[StructuredLogger] = None


def get_logger() -> StructuredLogger:
    """Get or create the global structured logger"""
    global _logger
    if _logger is None:
        _logger = StructuredLogger(
            service_name="boardforge",
            min_level=LogLevel.DEBUG if os.getenv("DEBUG") else LogLevel.INFO,
            echo=os.getenv("STRUCTURED_LOG_ECHO", "true").lower() == "true",
        )
    return _logger


def timed(operation: str, category: LogCategory = LogCategory.PERFORMANCE):
    """Decorator for timing a coroutine function"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with TimedOperation(get_logger(), operation, category):
                return await func(*args, **kwargs)
        return wrapper
    return decorator
