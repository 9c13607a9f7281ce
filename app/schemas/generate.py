"""
Generate Schemas
Pydantic models for generation API requests and responses.
"""

from typing import Optional
from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Schema for generation request."""
    user_id: str = Field(..., min_length=1)
    prompt: str
    style: str = "ghibli"
    size: str = "1024x1024"
    upload_id: Optional[str] = None


class RegenerateRequest(BaseModel):
    """Schema for regeneration request."""
    user_id: str = Field(..., min_length=1)
    prompt_delta: Optional[str] = None
    lock_seed: bool = False


class GenerateResponse(BaseModel):
    """Schema for generation response."""
    success: bool = True
    job_id: str
    deduplicated: bool = False
