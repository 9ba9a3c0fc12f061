# routers/ai_socket.py — Real-time AI events over WebSocket
import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket

from board_ai_client import FEATURES, BackendError, GenerativeBackend, describe_backend_error, get_backend
from board_pipeline import BoardGenerationPipeline, PromptValidationError, get_pipeline
from board_schema import SocketEnvelope
from event_channel import WebSocketEventChannel
from logging_system import get_logger
from structured_text import DecodeError

router = APIRouter(tags=["AI Socket"])
logger = logging.getLogger("boardforge.ws")


class ConnectionManager:
    """Tracks open AI socket channels"""

    def __init__(self):
        self._channels: Dict[str, WebSocketEventChannel] = {}
        self._events_handled = 0

    def connect(self, socket_id: str, channel: WebSocketEventChannel):
        self._channels[socket_id] = channel
        logger.info(f"AI socket connected: {socket_id[:8]}")

    def disconnect(self, socket_id: str):
        self._channels.pop(socket_id, None)
        logger.info(f"AI socket disconnected: {socket_id[:8]}")

    def record_event(self):
        self._events_handled += 1

    def get_stats(self) -> dict:
        return {
            "total_connections": len(self._channels),
            "events_handled": self._events_handled,
        }


# Global connection manager
manager = ConnectionManager()


def _failure_text(error: Exception) -> str:
    if isinstance(error, (BackendError, DecodeError)):
        return describe_backend_error(error)
    return str(error) or "Unexpected error"


class AISocketSession:
    """Request handlers for one connection; each emits exactly one reply event."""

    def __init__(self, channel: WebSocketEventChannel, pipeline: BoardGenerationPipeline, backend: GenerativeBackend):
        self.channel = channel
        self.pipeline = pipeline
        self.backend = backend
        self._slog = get_logger()

    def register(self):
        self.channel.on("generate_board", self.generate_board)
        self.channel.on("auto_complete_prompt", self.auto_complete_prompt)
        self.channel.on("get_smart_suggestions", self.get_smart_suggestions)
        self.channel.on("get_quick_templates", self.get_quick_templates)
        self.channel.on("moderate_content", self.moderate_content)
        self.channel.on("get_model_info", self.get_model_info)

    async def _ok(self, event: str, data: Any, message: str):
        manager.record_event()
        self._slog.socket_event(event, "emitted")
        await self.channel.emit(event, SocketEnvelope.ok(data, message).model_dump())

    async def _fail(self, event: str, error: str, message: str):
        manager.record_event()
        self._slog.socket_event(event, "error", metadata={"error": error})
        await self.channel.emit(event, SocketEnvelope.fail(error, message).model_dump())

    async def generate_board(self, data: Optional[Dict[str, Any]]):
        data = data if isinstance(data, dict) else {}
        prompt = data.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            return await self._fail("board_generation_error", "Prompt is required", "Invalid prompt provided")

        await self.channel.emit("board_generation_started", {
            "prompt": prompt[:100] + ("..." if len(prompt) > 100 else ""),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        try:
            result = await self.pipeline.generate(prompt, data.get("options") or None)
        except PromptValidationError as e:
            return await self._fail("board_generation_error", e.message, "Invalid prompt provided")
        except Exception as e:
            logger.exception("Board generation socket error")
            return await self._fail("board_generation_error", _failure_text(e), "Board generation failed")

        message = "Board generated successfully" if result.success else "Board generated from a template"
        await self._ok("board_generated", result.model_dump(by_alias=True, mode="json"), message)

    async def auto_complete_prompt(self, data: Optional[Dict[str, Any]]):
        data = data if isinstance(data, dict) else {}
        partial = data.get("partialPrompt")
        if not isinstance(partial, str) or not partial.strip():
            return await self._fail("auto_complete_error", "Partial prompt is required", "Invalid prompt provided")
        try:
            suggestions = await self.backend.auto_complete_prompt(partial, data.get("context") or None)
        except Exception as e:
            logger.error(f"Auto-complete socket error: {e}")
            return await self._fail("auto_complete_error", _failure_text(e), "Auto-completion failed")
        await self._ok("auto_complete_suggestions", suggestions, "Auto-completion suggestions generated")

    async def get_smart_suggestions(self, data: Optional[Dict[str, Any]]):
        data = data if isinstance(data, dict) else {}
        text = data.get("input")
        if not isinstance(text, str) or not text.strip():
            return await self._fail("smart_suggestions_error", "Input is required", "Invalid input provided")
        try:
            suggestions = await self.backend.get_smart_suggestions(text, str(data.get("type") or "board"))
        except Exception as e:
            logger.error(f"Smart suggestions socket error: {e}")
            return await self._fail("smart_suggestions_error", _failure_text(e), "Smart suggestions failed")
        await self._ok("smart_suggestions", suggestions, "Smart suggestions generated")

    async def get_quick_templates(self, data: Optional[Dict[str, Any]]):
        data = data if isinstance(data, dict) else {}
        category = str(data.get("category") or "general")
        try:
            count = int(data.get("count", 5))
        except (TypeError, ValueError):
            return await self._fail("quick_templates_error", "Count must be a number", "Invalid parameters")
        try:
            templates = await self.backend.generate_quick_templates(category, count)
        except Exception as e:
            logger.error(f"Quick templates socket error: {e}")
            return await self._fail("quick_templates_error", _failure_text(e), "Quick templates failed")
        await self._ok("quick_templates", templates, "Quick templates generated")

    async def moderate_content(self, data: Optional[Dict[str, Any]]):
        data = data if isinstance(data, dict) else {}
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            return await self._fail("content_moderation_error", "Text is required", "Invalid text provided")
        try:
            verdict = await self.backend.moderate_content(text)
        except Exception as e:
            logger.error(f"Content moderation socket error: {e}")
            return await self._fail("content_moderation_error", _failure_text(e), "Content moderation failed")
        await self._ok("content_moderated", verdict, "Content moderation completed")

    async def get_model_info(self, data: Any = None):
        try:
            info = await self.backend.model_info()
        except Exception as e:
            logger.error(f"Model info socket error: {e}")
            return await self._fail("model_info_error", _failure_text(e), "Model info retrieval failed")
        await self._ok("model_info", info, "Model information retrieved")


@router.websocket("/ws/ai")
async def ai_socket_endpoint(
    websocket: WebSocket,
    pipeline: BoardGenerationPipeline = Depends(get_pipeline),
    backend: GenerativeBackend = Depends(get_backend),
):
    """AI event endpoint: JSON frames {"event": ..., "data": ...} both ways"""
    await websocket.accept()
    socket_id = str(uuid.uuid4())
    channel = WebSocketEventChannel(websocket)
    AISocketSession(channel, pipeline, backend).register()
    manager.connect(socket_id, channel)

    await channel.emit("connected", SocketEnvelope.ok(
        {"socketId": socket_id, "features": FEATURES},
        "Connected to AI namespace",
    ).model_dump())

    try:
        await channel.run()
    finally:
        manager.disconnect(socket_id)
