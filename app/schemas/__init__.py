# Pydantic schemas package
from app.schemas.job import JobStatusResponse, ErrorResponse
from app.schemas.generate import GenerateRequest, GenerateResponse, RegenerateRequest

__all__ = [
    "JobStatusResponse", "ErrorResponse",
    "GenerateRequest", "GenerateResponse", "RegenerateRequest",
]
