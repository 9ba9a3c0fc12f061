# event_channel.py - Event channels and request/response correlation over them
"""
An EventChannel carries named events in both directions over one persistent
connection. RequestCorrelator turns a request event plus a pair of response
events into an awaitable call bounded by a timeout:

    correlator = RequestCorrelator(channel)
    data = await correlator.call("generate_board", {"prompt": "..."},
                                 "board_generated", "board_generation_error",
                                 timeout=30.0)

Each call registers exactly one listener per response event and one
``loop.call_later`` timer. Whichever of (success event, error event, timer,
cancel) happens first settles the call and removes the others; later events
are ignored.

Calls are matched by event name only, there is no correlation token on the
wire. Two concurrent calls of the same kind on one channel can therefore
resolve each other's futures; callers that need that must serialize them.
"""
import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from logging_system import get_logger

logger = logging.getLogger("boardforge.events")

Listener = Callable[[Any], Any]


# ============================================================================
# ERRORS
# ============================================================================

class CorrelationError(Exception):
    def __init__(self, message: str, event: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.event = event


class CorrelationTimeoutError(CorrelationError, TimeoutError):
    def __init__(self, event: str, timeout: float):
        super().__init__(f"'{event}' timed out after {timeout:g}s", event=event)
        self.timeout = timeout


class CorrelationRemoteError(CorrelationError):
    """The peer answered with an error event or a ``success: false`` envelope."""

    def __init__(self, event: str, message: str, payload: Any = None):
        super().__init__(message, event=event)
        self.payload = payload


class CorrelationCancelledError(CorrelationError):
    pass


# ============================================================================
# CHANNELS
# ============================================================================

class EventChannel:
    """Listener registry plus an ``emit`` hook implemented by transports."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._close_callbacks: List[Callable[[], Any]] = []
        self.connected = True

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> bool:
        listeners = self._listeners.get(event)
        if not listeners or listener not in listeners:
            return False
        listeners.remove(listener)
        if not listeners:
            del self._listeners[event]
        return True

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(v) for v in self._listeners.values())

    def on_close(self, callback: Callable[[], Any]) -> None:
        self._close_callbacks.append(callback)

    async def emit(self, event: str, data: Any = None) -> None:
        raise NotImplementedError

    def dispatch(self, event: str, data: Any = None) -> int:
        """Deliver an incoming event to its listeners; returns how many ran.

        Coroutine listeners are scheduled as tasks owned by the channel.
        """
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            logger.debug(f"No listener for event '{event}'")
        for listener in listeners:
            try:
                result = listener(data)
            except Exception:
                logger.exception(f"Listener for '{event}' failed")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)
        return len(listeners)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Event handler task failed: {task.exception()!r}")

    async def close(self) -> None:
        if not self.connected:
            return
        self.connected = False
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for callback in self._close_callbacks:
            callback()


class InMemoryEventChannel(EventChannel):
    """Loopback channel; outgoing events are recorded and optionally answered.

    ``responder(event, data, channel)`` may call ``channel.dispatch`` to play
    the remote side.
    """

    def __init__(self, responder: Optional[Callable[[str, Any, "InMemoryEventChannel"], Any]] = None):
        super().__init__()
        self.sent: List[Tuple[str, Any]] = []
        self.responder = responder

    async def emit(self, event: str, data: Any = None) -> None:
        if not self.connected:
            raise ConnectionError("Channel is closed")
        self.sent.append((event, data))
        if self.responder is not None:
            result = self.responder(event, data, self)
            if inspect.isawaitable(result):
                await result


class WebSocketEventChannel(EventChannel):
    """JSON frames ``{"event": name, "data": payload}`` over a websocket.

    Works with any object exposing async ``send_json`` / ``receive_json``
    (Starlette's WebSocket on the server side).
    """

    def __init__(self, websocket):
        super().__init__()
        self._ws = websocket
        self._reader: Optional[asyncio.Task] = None

    async def emit(self, event: str, data: Any = None) -> None:
        if not self.connected:
            raise ConnectionError("Channel is closed")
        await self._ws.send_json({"event": event, "data": data})

    async def run(self) -> None:
        """Read frames and dispatch them until the connection drops."""
        while self.connected:
            try:
                frame = await self._ws.receive_json()
            except ValueError:
                logger.warning("Dropping non-JSON frame")
                continue
            except Exception as e:
                logger.info(f"Event channel closed: {type(e).__name__}")
                break
            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                logger.warning("Dropping frame without an event name")
                continue
            self.dispatch(frame["event"], frame.get("data"))
        await self.close()

    def start(self) -> asyncio.Task:
        if self._reader is None:
            self._reader = asyncio.ensure_future(self.run())
        return self._reader

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        await super().close()
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)


# ============================================================================
# CORRELATION
# ============================================================================

class PendingState(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class PendingOperation:
    op_id: str
    request_event: str
    success_event: str
    error_event: str
    timeout: float
    deadline: float
    future: asyncio.Future
    state: PendingState = PendingState.PENDING
    timer: Optional[asyncio.TimerHandle] = None
    listeners: Tuple[Tuple[str, Listener], ...] = field(default=())

    @property
    def settled(self) -> bool:
        return self.state is not PendingState.PENDING


def _remote_message(payload: Any, default: str) -> str:
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("message") or default)
    if isinstance(payload, str) and payload:
        return payload
    return default


class RequestCorrelator:
    """Awaitable request/response calls over an EventChannel."""

    def __init__(self, channel: EventChannel):
        self.channel = channel
        self._pending: Dict[str, PendingOperation] = {}
        self._slog = get_logger()

    @property
    def pending(self) -> List[PendingOperation]:
        return list(self._pending.values())

    async def call(
        self,
        request_event: str,
        payload: Any,
        success_event: str,
        error_event: str,
        timeout: float,
    ) -> Any:
        if not self.channel.connected:
            raise CorrelationError("Channel is not connected", event=request_event)

        loop = asyncio.get_running_loop()
        op = PendingOperation(
            op_id=uuid.uuid4().hex,
            request_event=request_event,
            success_event=success_event,
            error_event=error_event,
            timeout=timeout,
            deadline=loop.time() + timeout,
            future=loop.create_future(),
        )
        op.listeners = (
            (success_event, lambda data: self._settle(op, success_event, data, is_error=False)),
            (error_event, lambda data: self._settle(op, error_event, data, is_error=True)),
        )
        for event, listener in op.listeners:
            self.channel.on(event, listener)
        op.timer = loop.call_later(timeout, self._expire, op)
        self._pending[op.op_id] = op

        try:
            try:
                await self.channel.emit(request_event, payload)
            except Exception as e:
                self._finish(op, PendingState.REJECTED)
                raise CorrelationError(f"Failed to emit '{request_event}': {e}", event=request_event) from e
            return await op.future
        finally:
            if not op.settled:
                # the awaiting task itself was cancelled
                self._finish(op, PendingState.CANCELLED)
            self._release(op)

    def cancel(self, op_id: str, reason: str = "Cancelled") -> bool:
        op = self._pending.get(op_id)
        if op is None or op.settled:
            return False
        self._finish(op, PendingState.CANCELLED)
        if not op.future.done():
            op.future.set_exception(CorrelationCancelledError(reason, event=op.request_event))
        return True

    def cancel_all(self, reason: str = "Cancelled") -> int:
        return sum(1 for op in list(self._pending.values()) if self.cancel(op.op_id, reason))

    # --- Settlement ----------------------------------------------------------

    def _release(self, op: PendingOperation) -> None:
        """Drop listeners, timer and registry entry; safe to call repeatedly."""
        for event, listener in op.listeners:
            self.channel.off(event, listener)
        if op.timer is not None:
            op.timer.cancel()
            op.timer = None
        self._pending.pop(op.op_id, None)

    def _finish(self, op: PendingOperation, state: PendingState) -> None:
        op.state = state
        self._release(op)

    def _settle(self, op: PendingOperation, event: str, data: Any, is_error: bool) -> None:
        if op.settled:
            return
        failed = is_error or (isinstance(data, dict) and data.get("success") is False)
        self._finish(op, PendingState.REJECTED if failed else PendingState.RESOLVED)
        if op.future.done():
            return
        if failed:
            message = _remote_message(data, f"'{op.request_event}' failed")
            self._slog.socket_event(event, "rejected", metadata={"request": op.request_event, "error": message})
            op.future.set_exception(CorrelationRemoteError(event, message, payload=data))
        else:
            self._slog.socket_event(event, "resolved", metadata={"request": op.request_event})
            envelope = isinstance(data, dict) and "success" in data
            op.future.set_result(data.get("data") if envelope else data)

    def _expire(self, op: PendingOperation) -> None:
        if op.settled:
            return
        self._finish(op, PendingState.TIMED_OUT)
        self._slog.socket_event(op.request_event, "timed_out", metadata={"timeout": op.timeout})
        if not op.future.done():
            op.future.set_exception(CorrelationTimeoutError(op.request_event, op.timeout))


# ============================================================================
# AI SOCKET CLIENT
# ============================================================================

@dataclass(frozen=True)
class OperationSpec:
    request_event: str
    success_event: str
    error_event: str
    timeout: float


AI_OPERATIONS: Dict[str, OperationSpec] = {
    "generate_board": OperationSpec("generate_board", "board_generated", "board_generation_error", 30.0),
    "auto_complete_prompt": OperationSpec("auto_complete_prompt", "auto_complete_suggestions", "auto_complete_error", 10.0),
    "get_smart_suggestions": OperationSpec("get_smart_suggestions", "smart_suggestions", "smart_suggestions_error", 10.0),
    "get_quick_templates": OperationSpec("get_quick_templates", "quick_templates", "quick_templates_error", 10.0),
    "moderate_content": OperationSpec("moderate_content", "content_moderated", "content_moderation_error", 10.0),
    "get_model_info": OperationSpec("get_model_info", "model_info", "model_info_error", 10.0),
}


class AISocketClient:
    """Typed calls for every AI socket operation."""

    def __init__(self, channel: EventChannel, timeouts: Optional[Dict[str, float]] = None):
        self.channel = channel
        self.correlator = RequestCorrelator(channel)
        self._timeouts = timeouts or {}
        channel.on_close(lambda: self.correlator.cancel_all("Connection closed"))

    async def _call(self, operation: str, payload: Dict[str, Any]) -> Any:
        spec = AI_OPERATIONS[operation]
        return await self.correlator.call(
            spec.request_event,
            payload,
            spec.success_event,
            spec.error_event,
            timeout=self._timeouts.get(operation, spec.timeout),
        )

    async def generate_board(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._call("generate_board", {"prompt": prompt, "options": options or {}})

    async def auto_complete_prompt(self, partial_prompt: str, context: Optional[Dict[str, Any]] = None) -> Any:
        return await self._call("auto_complete_prompt", {"partialPrompt": partial_prompt, "context": context or {}})

    async def get_smart_suggestions(self, text: str, kind: str = "board") -> Any:
        return await self._call("get_smart_suggestions", {"input": text, "type": kind})

    async def get_quick_templates(self, category: str = "general", count: int = 5) -> Any:
        return await self._call("get_quick_templates", {"category": category, "count": count})

    async def moderate_content(self, text: str) -> Any:
        return await self._call("moderate_content", {"text": text})

    async def get_model_info(self) -> Any:
        return await self._call("get_model_info", {})

    async def close(self) -> None:
        await self.channel.close()
