"""
Generation API Routes
Job submission, regeneration and status polling.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from app.api.deps import get_generation_service
from app.schemas.generate import GenerateRequest, GenerateResponse, RegenerateRequest
from app.schemas.job import ErrorResponse, JobStatusResponse
from app.services.generation import GenerationService

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "/generate",
    response_model=GenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=ERROR_RESPONSES,
)
async def generate_image(
    request: GenerateRequest,
    response: Response,
    service: GenerationService = Depends(get_generation_service),
):
    """
    Create a new image generation job.
    Returns immediately; poll the status endpoint for progress.
    """
    admission = service.submit_generation(
        request.user_id,
        request.prompt,
        request.style,
        request.size,
        upload_id=request.upload_id,
    )
    if admission.deduplicated:
        response.status_code = status.HTTP_200_OK
    return GenerateResponse(job_id=admission.job_id, deduplicated=admission.deduplicated)


@router.post(
    "/generate/{job_id}/regenerate",
    response_model=GenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=ERROR_RESPONSES,
)
async def regenerate_image(
    job_id: str,
    request: RegenerateRequest,
    response: Response,
    service: GenerationService = Depends(get_generation_service),
):
    """Create a new job derived from a successful one."""
    admission = service.submit_regeneration(
        request.user_id,
        job_id,
        prompt_delta=request.prompt_delta,
        lock_seed=request.lock_seed,
    )
    if admission.deduplicated:
        response.status_code = status.HTTP_200_OK
    return GenerateResponse(job_id=admission.job_id, deduplicated=admission.deduplicated)


@router.get(
    "/generate/{job_id}/status",
    response_model=JobStatusResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_job_status(
    job_id: str,
    response: Response,
    user_id: Optional[str] = None,
    service: GenerationService = Depends(get_generation_service),
):
    """Get job state, progress and (once terminal) result or error."""
    job_status = service.get_status(job_id, user_id=user_id)

    # Terminal rows never change again
    if job_status.is_terminal:
        response.headers["Cache-Control"] = "public, max-age=3600"
    else:
        response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"

    return job_status
