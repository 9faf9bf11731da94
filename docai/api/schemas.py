"""Pydantic request/response schemas for the FastAPI endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    pipeline_configured: bool


class PipelineRequest(BaseModel):
    """Request schema for running the pipeline on one stored document."""

    document_id: str = Field(min_length=1)
    bucket: str = Field(min_length=1)
    key: str = Field(min_length=1)
    output_key: str | None = None
    min_confidence: float | None = None
    attempts: int = Field(default=1, ge=1)


class PipelineResponse(BaseModel):
    """Response schema for a completed pipeline run."""

    document_id: str
    overall_status: str
    final_output_key: str | None = None
    final_output_uri: str | None = None
    business: dict[str, Any]
