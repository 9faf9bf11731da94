"""Per-document pipeline: upload, OCR, LLM normalization and persistence.

Each step runs as a ledger phase. A failing phase is recorded as FAILED
with its error message, the document's overall status becomes FAILED,
and the error is re-raised; earlier phases keep their records and
artifacts.
"""

import asyncio
import hashlib
import json
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import unquote

from docai.errors import DocAiError, ExternalServiceError, ValidationError
from docai.errors import require_document_id
from docai.llm.prompts import load_prompt_config
from docai.ocr.elements import (
    OcrElement,
    confidence_stats,
    dump_elements,
    filter_by_confidence,
    load_elements,
)
from docai.ocr.service import run_ocr
from docai.pipeline.interfaces import DocumentRef, ObjectStore, OcrService
from docai.pipeline.normalizer import NlpNormalizer
from docai.state.models import (
    CONTENT_TYPE_JSON,
    Artifact,
    ArtifactType,
    OverallStatus,
    Phase,
    utcnow,
)
from docai.state.status import StatusRecorder
from docai.state.store import ProcessStateStore
from docai.utils.config import AppConfig
from docai.utils.logger import get_logger

logger = get_logger(__name__)


def s3_uri(bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key}"


def _ensure_slash(prefix: str) -> str:
    return prefix if not prefix or prefix.endswith("/") else prefix + "/"


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def _artifact(
    artifact_type: ArtifactType,
    bucket: str,
    key: str,
    payload: bytes,
    content_type: str,
    **meta: str,
) -> Artifact:
    return Artifact(
        type=artifact_type.value,
        key=key,
        uri=s3_uri(bucket, key),
        content_type=content_type,
        size_bytes=len(payload),
        checksum=hashlib.sha256(payload).hexdigest(),
        created_at=utcnow(),
        meta=meta,
    )


class PipelineOrchestrator:
    """Drives one document at a time through the processing phases.

    Args:
        store: Process-state ledger.
        object_store: Storage for inputs and outputs.
        ocr: OCR collaborator.
        normalizer: LLM normalizer.
        config: Application configuration.
        sleep: Awaitable sleep used while polling OCR jobs.
    """

    def __init__(
        self,
        store: ProcessStateStore,
        object_store: ObjectStore,
        ocr: OcrService,
        normalizer: NlpNormalizer,
        config: AppConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.status = StatusRecorder(store)
        self.object_store = object_store
        self.ocr = ocr
        self.normalizer = normalizer
        self.config = config
        self.sleep = sleep

    @property
    def output_bucket(self) -> str:
        return self.config.storage.bucket

    def ocr_output_key(self, input_key: str) -> str:
        """Key of the persisted elements JSON for ``input_key``."""
        prefix = _ensure_slash(self.config.storage.ocr_prefix)
        return prefix + unquote(input_key) + ".json"

    def default_output_key(self, input_key: str) -> str:
        """``<nlp_prefix><basename>-<epoch ms>.json`` for a fresh run."""
        stem = PurePosixPath(unquote(input_key)).stem
        millis = int(time.time() * 1000)
        return f"{_ensure_slash(self.config.storage.nlp_prefix)}{stem}-{millis}.json"

    def resolve_output_key(self, output_key: str | None, input_key: str) -> str:
        if output_key is None or not output_key.strip():
            return self.default_output_key(input_key)
        key = unquote(output_key).lstrip("/")
        prefix = _ensure_slash(self.config.storage.nlp_prefix)
        return key if key.startswith(prefix) else prefix + key

    @staticmethod
    def business_key(output_key: str) -> str:
        if output_key.endswith(".json"):
            output_key = output_key[: -len(".json")]
        return output_key + ".business.json"

    def resolve_threshold(self, min_confidence: float | None) -> float:
        """Validate an OCR confidence threshold, defaulting to the configured one.

        Raises:
            ValidationError: If the threshold is outside 0-100.
        """
        if min_confidence is None:
            return self.config.ocr.min_confidence
        if not 0.0 <= min_confidence <= 100.0:
            raise ValidationError(
                f"min_confidence must be within 0-100, got {min_confidence}"
            )
        return float(min_confidence)

    @asynccontextmanager
    async def _phase(
        self, document_id: str, phase: Phase, attempts: int, **fields: Any
    ) -> AsyncIterator[None]:
        """Record ``phase`` as FAILED if the body raises, then re-raise.

        Errors that are not :class:`DocAiError` are wrapped in
        :class:`ExternalServiceError`.
        """
        try:
            yield
        except Exception as exc:
            logger.error(
                "pipeline.phase.failed doc_id=%s phase=%s err=%s",
                document_id,
                phase,
                _describe(exc),
            )
            self.status.phase_failed(
                document_id, phase, _describe(exc), attempts, **fields
            )
            if isinstance(exc, DocAiError):
                raise
            raise ExternalServiceError(f"{phase} failed: {exc}") from exc

    async def upload(
        self,
        document_id: str,
        data: bytes,
        bucket: str,
        key: str,
        content_type: str = "application/octet-stream",
        correlation_id: str | None = None,
        attempts: int = 1,
    ) -> Artifact:
        """Store a source document and record the UPLOAD phase.

        Returns:
            The stored object's artifact record.
        """
        require_document_id(document_id)
        uri = s3_uri(bucket, key)
        self.status.init_run(document_id, correlation_id)
        self.status.phase_started(
            document_id, Phase.UPLOAD, ["Upload started"], attempts, input_uri=uri
        )

        async with self._phase(document_id, Phase.UPLOAD, attempts, input_uri=uri):
            await self.object_store.put_bytes(bucket, key, data, content_type)

        artifact = _artifact(ArtifactType.BINARY, bucket, key, data, content_type)
        self.status.phase_succeeded(
            document_id,
            Phase.UPLOAD,
            ["Upload succeeded"],
            [artifact],
            attempts,
            input_uri=uri,
        )
        self.status.mark_overall(document_id, OverallStatus.RUNNING)
        return artifact

    async def run(
        self,
        document_id: str,
        bucket: str,
        key: str,
        output_key: str | None = None,
        min_confidence: float | None = None,
        attempts: int = 1,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Run OCR and normalization for one document.

        Args:
            document_id: Ledger key for the document.
            bucket: Bucket of the source document.
            key: Key of the source document.
            output_key: Where to store the model JSON; derived from ``key``
                when omitted. The business JSON goes next to it.
            min_confidence: OCR confidence threshold (0-100); defaults to
                the configured value.
            attempts: Attempt number recorded on every phase.
            correlation_id: Stored on first touch of the document.

        Returns:
            The business record tree.

        Raises:
            ValidationError: For a blank id or an out-of-range threshold.
            DocAiError: When a phase fails, after it has been recorded.
        """
        require_document_id(document_id)
        threshold = self.resolve_threshold(min_confidence)
        source = DocumentRef(bucket, key)
        model_key = self.resolve_output_key(output_key, key)
        started = time.monotonic()

        self.status.init_run(document_id, correlation_id)
        self.status.phase_started(
            document_id, Phase.PIPELINE, ["Pipeline started"], attempts
        )
        self.status.mark_overall(document_id, OverallStatus.RUNNING)
        logger.info("pipeline.start doc_id=%s src=%s", document_id, source.uri)

        async with self._phase(document_id, Phase.PIPELINE, attempts):
            elements, ocr_uri = await self._ocr_phase(
                document_id, source, threshold, attempts
            )
            business, business_key = await self._nlp_phase(
                document_id, elements, threshold, ocr_uri, model_key, attempts
            )

        final_uri = s3_uri(self.output_bucket, business_key)
        self.status.phase_succeeded(
            document_id, Phase.PIPELINE, ["Pipeline completed"], attempts=attempts
        )
        self.status.mark_overall(
            document_id, OverallStatus.COMPLETED, business_key, final_uri
        )
        logger.info(
            "pipeline.success doc_id=%s final=%s duration_ms=%d",
            document_id,
            final_uri,
            int((time.monotonic() - started) * 1000),
        )
        return business

    async def _ocr_phase(
        self,
        document_id: str,
        source: DocumentRef,
        threshold: float,
        attempts: int,
    ) -> tuple[list[OcrElement], str]:
        bucket = self.output_bucket
        ocr_key = self.ocr_output_key(source.key)
        ocr_uri = s3_uri(bucket, ocr_key)
        self.status.phase_started(
            document_id,
            Phase.TEXTRACT,
            ["Textract started", f"threshold={threshold}"],
            attempts,
            input_uri=source.uri,
        )

        async with self._phase(
            document_id, Phase.TEXTRACT, attempts, input_uri=source.uri
        ):
            reused = await self.object_store.exists(bucket, ocr_key)
            if reused:
                logger.info("Skipping OCR: result already exists at %s", ocr_uri)
                payload = await self.object_store.get_bytes(bucket, ocr_key)
                elements = filter_by_confidence(load_elements(payload), threshold)
            else:
                raw = await run_ocr(self.ocr, source, self.config.ocr, sleep=self.sleep)
                elements = filter_by_confidence(raw, threshold)
                if not elements:
                    logger.warning("No high-confidence elements for %s", source.uri)
                payload = dump_elements(elements)
                await self.object_store.put_bytes(
                    bucket, ocr_key, payload, CONTENT_TYPE_JSON
                )

        avg, low, high = confidence_stats(elements)
        artifact = _artifact(
            ArtifactType.JSON,
            bucket,
            ocr_key,
            payload,
            CONTENT_TYPE_JSON,
            confidence=f"{avg:.2f}",
            reused=str(reused).lower(),
        )
        if reused:
            message = "Textract output reused"
        else:
            message = "Textract high-confidence blocks saved"
        self.status.phase_succeeded(
            document_id,
            Phase.TEXTRACT,
            [message],
            [artifact],
            attempts,
            input_uri=source.uri,
            output_uri=ocr_uri,
            avg_confidence=avg,
            min_confidence=low,
            max_confidence=high,
            block_count=len(elements),
        )
        self.status.mark_overall(document_id, OverallStatus.TEXTRACT_COMPLETED)
        return elements, ocr_uri

    async def _nlp_phase(
        self,
        document_id: str,
        elements: list[OcrElement],
        threshold: float,
        ocr_uri: str,
        model_key: str,
        attempts: int,
    ) -> tuple[dict[str, Any], str]:
        bucket = self.output_bucket
        nlp = self.config.nlp
        prompt_key = self.config.storage.prompt_key
        business_key = self.business_key(model_key)
        fields = {"input_uri": ocr_uri, "model_name": nlp.model_name}
        self.status.phase_started(
            document_id,
            Phase.NLP,
            ["NLP normalization started"],
            attempts,
            prompt_key=prompt_key,
            **fields,
        )

        async with self._phase(document_id, Phase.NLP, attempts, **fields):
            prompts = await load_prompt_config(
                self.object_store, bucket, prompt_key, self.normalizer.prompts
            )
            result = await self.normalizer.normalize(
                elements, threshold, document_id, prompts
            )
            model_payload = json.dumps(
                {
                    "partials": result.partials,
                    "chunkCount": result.chunk_count,
                    "extractionFailures": result.extraction_failures,
                },
                indent=2,
            ).encode("utf-8")
            business_payload = json.dumps(result.business, indent=2).encode("utf-8")
            await self.object_store.put_bytes(
                bucket, model_key, model_payload, CONTENT_TYPE_JSON
            )
            await self.object_store.put_bytes(
                bucket, business_key, business_payload, CONTENT_TYPE_JSON
            )

        artifacts = [
            _artifact(
                ArtifactType.JSON,
                bucket,
                model_key,
                model_payload,
                CONTENT_TYPE_JSON,
                kind="model",
            ),
            _artifact(
                ArtifactType.JSON,
                bucket,
                business_key,
                business_payload,
                CONTENT_TYPE_JSON,
                kind="business",
            ),
        ]
        self.status.phase_succeeded(
            document_id,
            Phase.NLP,
            ["NLP normalization completed"],
            artifacts,
            attempts,
            output_uri=s3_uri(bucket, business_key),
            prompt_key=prompt_key,
            prompt_version=prompts.version or nlp.prompt_version,
            schema_name=nlp.schema_name,
            **fields,
        )
        self.status.mark_overall(document_id, OverallStatus.NLP_COMPLETED)
        return result.business, business_key
