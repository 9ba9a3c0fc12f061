# routers/board_generation.py — AI board generation over HTTP
import logging

from fastapi import APIRouter, Depends, HTTPException

from board_ai_client import GenerativeBackend, get_backend
from board_pipeline import BoardGenerationPipeline, PromptValidationError, get_pipeline
from board_schema import GenerateBoardRequest, GenerationResult

router = APIRouter(prefix="/api/v1/ai/boards", tags=["Board Generation"])
logger = logging.getLogger("boardforge.boards")


@router.post("/generate", response_model=GenerationResult)
async def generate_board(
    body: GenerateBoardRequest,
    pipeline: BoardGenerationPipeline = Depends(get_pipeline),
):
    """Generate a board from a prompt; degraded results still return 200 with errors listed."""
    try:
        result = await pipeline.generate(body.prompt, body.options)
    except PromptValidationError as e:
        raise HTTPException(status_code=422, detail={"field": e.field, "message": e.message})

    if not result.success:
        logger.warning(f"Board generated with {len(result.errors)} error(s), source={result.metadata.source}")
    return result


@router.get("/status")
async def pipeline_status(pipeline: BoardGenerationPipeline = Depends(get_pipeline)):
    return await pipeline.status()


@router.get("/model-info")
async def model_info(backend: GenerativeBackend = Depends(get_backend)):
    return await backend.model_info()
