"""FastAPI application exposing the document ledger and pipeline.

Provides REST endpoints for health checks, per-document status lookups
and on-demand pipeline runs.
"""

import shutil
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from docai import __version__
from docai.errors import DocAiError, NotFound, ValidationError
from docai.pipeline.orchestrator import PipelineOrchestrator
from docai.state.store import ProcessStateStore
from docai.utils.logger import get_logger

from .schemas import HealthResponse, PipelineRequest, PipelineResponse

logger = get_logger(__name__)


def _http_error(exc: DocAiError) -> HTTPException:
    """Map a domain error onto an HTTP error response."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def create_app(
    store: ProcessStateStore,
    orchestrator: PipelineOrchestrator | None = None,
) -> FastAPI:
    """Build the API around a state store and an optional orchestrator.

    Args:
        store: Ledger used by the status endpoint.
        orchestrator: Pipeline used by ``POST /pipeline``; when absent the
            endpoint answers 503.

    Returns:
        The configured FastAPI application.
    """
    app = FastAPI(
        title="Title Document AI API",
        description="Process-state ledger and pipeline for vehicle titles",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = store
    app.state.orchestrator = orchestrator

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Return system health status."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            tesseract_available=shutil.which("tesseract") is not None,
            pipeline_configured=request.app.state.orchestrator is not None,
        )

    @app.get("/status/{document_id:path}")
    async def get_status(document_id: str, request: Request) -> dict[str, Any]:
        """Return the ledger record of one document in wire form."""
        try:
            record = request.app.state.store.get(document_id)
        except DocAiError as exc:
            raise _http_error(exc) from exc
        if record is None:
            raise HTTPException(
                status_code=404, detail=f"No state for document {document_id}"
            )
        return record.to_wire()

    @app.post("/pipeline", response_model=PipelineResponse)
    async def run_pipeline(
        body: PipelineRequest, request: Request
    ) -> PipelineResponse:
        """Run OCR and normalization for a document already in storage.

        Args:
            body: Document location and run options.

        Returns:
            The business record and the document's final status.
        """
        orchestrator = request.app.state.orchestrator
        if orchestrator is None:
            raise HTTPException(status_code=503, detail="Pipeline not configured")

        try:
            business = await orchestrator.run(
                body.document_id,
                body.bucket,
                body.key,
                output_key=body.output_key,
                min_confidence=body.min_confidence,
                attempts=body.attempts,
            )
            record = request.app.state.store.get(body.document_id)
        except DocAiError as exc:
            logger.error("Pipeline failed for %s: %s", body.document_id, exc)
            raise _http_error(exc) from exc

        return PipelineResponse(
            document_id=body.document_id,
            overall_status=record.overall_status.value,
            final_output_key=record.final_output_key,
            final_output_uri=record.final_output_uri,
            business=business,
        )

    return app
