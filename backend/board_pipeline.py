# board_pipeline.py - Seven-step board generation pipeline
"""
Turns a free-text prompt into a validated BoardSpec.

Steps run in a fixed order over a per-request PipelineContext:

    validate_input -> analyze_prompt -> moderate_content -> generate_board_data
    -> validate_structure -> enhance_data -> finalize_output

Only input errors reach the caller (PromptValidationError). Every other
failure is recorded on the context and the remaining steps continue on a board
produced by the fallback synthesizer, so generate() always returns a usable
board.
"""
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from board_ai_client import BackendError, BackendUnavailableError, GenerativeBackend, describe_backend_error, get_backend
from board_fallback import fallback_analysis, match_template, synthesize
from board_schema import (
    MAX_PROMPT_LENGTH, PIPELINE_VERSION,
    BoardSpec, GenerationMetadata, GenerationOptions, GenerationResult,
)
from board_validation import normalize, validate
from logging_system import LogCategory, TimedOperation, get_logger
from structured_text import DecodeError, decode_object
from telemetry import start_span

logger = logging.getLogger("boardforge.pipeline")

BOARD_AI_ENABLED = os.getenv("BOARD_AI_ENABLED", "true").lower() == "true"

STEPS = (
    "validate_input",
    "analyze_prompt",
    "moderate_content",
    "generate_board_data",
    "validate_structure",
    "enhance_data",
    "finalize_output",
)


class PromptValidationError(ValueError):
    """The request itself is unusable; raised before any remote call."""

    def __init__(self, message: str, field: str = "prompt"):
        super().__init__(message)
        self.message = message
        self.field = field


@dataclass
class PipelineContext:
    prompt: str
    options: GenerationOptions
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    step_results: Dict[str, str] = field(default_factory=dict)
    board: Optional[Dict[str, Any]] = None
    analysis: Optional[Dict[str, List[str]]] = None
    spec: Optional[BoardSpec] = None
    source: str = "ai"
    ai_available: bool = False
    use_fallback: bool = False


OptionsInput = Union[GenerationOptions, Mapping[str, Any], None]


def _coerce_options(options: OptionsInput) -> GenerationOptions:
    if options is None:
        return GenerationOptions()
    if isinstance(options, GenerationOptions):
        return options
    try:
        return GenerationOptions.model_validate(dict(options))
    except (ValidationError, TypeError, ValueError) as e:
        raise PromptValidationError(f"Invalid generation options: {e}", field="options") from e


class BoardGenerationPipeline:
    """Orchestrates one board generation per call; holds no per-request state."""

    def __init__(self, backend: Optional[GenerativeBackend] = None, enabled: Optional[bool] = None):
        self.backend = backend if backend is not None else get_backend()
        self.enabled = BOARD_AI_ENABLED if enabled is None else enabled
        self._slog = get_logger()

    # --- Entry point ---------------------------------------------------------

    async def generate(self, prompt: Any, options: OptionsInput = None) -> GenerationResult:
        started = time.perf_counter()
        ctx = self._validate_input(prompt, _coerce_options(options))
        ctx.step_results["validate_input"] = "ok"

        with TimedOperation(self._slog, "board_generation", LogCategory.PIPELINE,
                            metadata={"prompt_length": len(ctx.prompt)}):
            for step in STEPS[1:]:
                await self._run_step(step, ctx)

            if ctx.spec is None:
                # finalize_output itself blew up; a normalized template board always validates
                self._use_fallback(ctx, "finalization failed")
                ctx.spec = BoardSpec.model_validate(ctx.board)

        duration_ms = (time.perf_counter() - started) * 1000
        metadata = GenerationMetadata(
            generated_at=datetime.now(timezone.utc),
            pipeline_version=PIPELINE_VERSION,
            source=ctx.source,
            errors=list(ctx.errors),
            warnings=list(ctx.warnings),
            duration_ms=round(duration_ms, 2),
        )
        logger.info(
            f"Board generated: source={ctx.source} columns={len(ctx.spec.columns)} "
            f"tasks={len(ctx.spec.tasks)} errors={len(ctx.errors)} ({duration_ms:.0f}ms)"
        )
        return GenerationResult(
            success=not ctx.errors,
            data=ctx.spec,
            errors=list(ctx.errors),
            warnings=list(ctx.warnings),
            metadata=metadata,
        )

    async def _run_step(self, step: str, ctx: PipelineContext) -> None:
        handler = getattr(self, f"_{step}")
        started = time.perf_counter()
        status = "ok"
        with start_span(f"pipeline.{step}", step=step):
            try:
                await handler(ctx)
            except Exception as e:
                status = "failed"
                logger.exception(f"Pipeline step {step} raised unexpectedly")
                ctx.errors.append(f"Step {step} failed: {e}")
                self._use_fallback(ctx, f"{step} raised {type(e).__name__}")
        ctx.step_results[step] = status
        self._slog.pipeline_step(step, status, duration_ms=(time.perf_counter() - started) * 1000)

    def _use_fallback(self, ctx: PipelineContext, reason: str) -> None:
        board = normalize(synthesize(ctx.prompt))
        self._apply_options(board, ctx.options)
        ctx.board = board
        ctx.source = "fallback"
        ctx.use_fallback = True
        self._slog.fallback(reason, match_template(ctx.prompt).key)

    @staticmethod
    def _apply_options(board: Dict[str, Any], options: GenerationOptions) -> None:
        if not options.include_tags:
            board["tags"] = []
        if not options.include_checklists:
            board["checklists"] = []

    # --- Steps ---------------------------------------------------------------

    def _validate_input(self, prompt: Any, options: GenerationOptions) -> PipelineContext:
        if prompt is None:
            raise PromptValidationError("Prompt is required")
        if not isinstance(prompt, str):
            raise PromptValidationError("Prompt must be a string")
        text = prompt.strip()
        if not text:
            raise PromptValidationError("Prompt cannot be empty")

        ctx = PipelineContext(prompt=text, options=options)
        if len(text) > MAX_PROMPT_LENGTH:
            ctx.prompt = text[:MAX_PROMPT_LENGTH]
            ctx.warnings.append(f"Prompt truncated to {MAX_PROMPT_LENGTH} characters")
        return ctx

    async def _analyze_prompt(self, ctx: PipelineContext) -> None:
        ctx.ai_available = self.enabled and await self.backend.is_available()
        if not self.enabled:
            ctx.warnings.append("AI generation is disabled; using a template board")
        if not ctx.ai_available:
            ctx.analysis = fallback_analysis(ctx.prompt)
            return
        try:
            ctx.analysis = await self.backend.analyze_prompt(ctx.prompt)
        except (BackendError, DecodeError) as e:
            ctx.errors.append(f"Prompt analysis failed: {describe_backend_error(e)}")
            ctx.analysis = fallback_analysis(ctx.prompt)

    async def _moderate_content(self, ctx: PipelineContext) -> None:
        if not ctx.options.moderate_content or not ctx.ai_available:
            return
        try:
            verdict = await self.backend.moderate_content(ctx.prompt)
        except (BackendError, DecodeError) as e:
            ctx.warnings.append(f"Content moderation unavailable: {describe_backend_error(e)}")
            return
        if verdict["flagged"]:
            reason = verdict["reason"] or "policy violation"
            ctx.errors.append(f"Content flagged by moderation: {reason}")
            self._use_fallback(ctx, "content flagged")

    async def _generate_board_data(self, ctx: PipelineContext) -> None:
        if ctx.use_fallback:
            return
        if not self.enabled:
            self._use_fallback(ctx, "AI generation disabled")
            return
        if not ctx.ai_available:
            ctx.errors.append(describe_backend_error(BackendUnavailableError()))
            self._use_fallback(ctx, "backend unavailable")
            return
        try:
            raw = await self.backend.generate_structure(ctx.prompt, ctx.options, ctx.analysis)
            ctx.board = decode_object(raw)
        except BackendError as e:
            ctx.errors.append(describe_backend_error(e))
            self._use_fallback(ctx, f"backend error ({e.status})")
        except DecodeError as e:
            logger.warning(f"Model output could not be decoded: {e}")
            ctx.errors.append("The AI response could not be parsed; a template board was used instead")
            self._use_fallback(ctx, "decode failure")

    async def _validate_structure(self, ctx: PipelineContext) -> None:
        if ctx.source == "fallback":
            return
        result = validate(ctx.board)
        ctx.errors.extend(result.errors)
        ctx.warnings.extend(result.warnings)
        columns = ctx.board.get("columns") if isinstance(ctx.board, dict) else None
        if not isinstance(columns, list):
            columns = []
        usable = [c for c in columns if isinstance(c, dict) and isinstance(c.get("name"), str) and c["name"].strip()]
        if not usable:
            self._use_fallback(ctx, "no usable columns")
        elif len(usable) != len(columns):
            ctx.board["columns"] = usable

    async def _enhance_data(self, ctx: PipelineContext) -> None:
        normalize(ctx.board)
        self._apply_options(ctx.board, ctx.options)

    async def _finalize_output(self, ctx: PipelineContext) -> None:
        try:
            ctx.spec = BoardSpec.model_validate(ctx.board)
        except ValidationError as e:
            logger.warning(f"Normalized board failed schema validation: {e.error_count()} error(s)")
            ctx.errors.append("The generated board did not match the board schema; a template board was used instead")
            self._use_fallback(ctx, "schema validation failed")
            ctx.spec = BoardSpec.model_validate(ctx.board)

    # --- Introspection -------------------------------------------------------

    async def status(self) -> Dict[str, Any]:
        available = self.enabled and await self.backend.is_available()
        return {
            "available": available,
            "enabled": self.enabled,
            "provider": self.backend.provider,
            "steps": list(STEPS),
            "pipelineVersion": PIPELINE_VERSION,
            "maxPromptLength": MAX_PROMPT_LENGTH,
        }


_pipeline: Optional[BoardGenerationPipeline] = None


def get_pipeline() -> BoardGenerationPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = BoardGenerationPipeline()
    return _pipeline
