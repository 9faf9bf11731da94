"""High-level phase lifecycle writer on top of a :class:`ProcessStateStore`."""

from typing import Any

from docai.errors import require_document_id
from docai.state.models import (
    Artifact,
    ArtifactType,
    DocumentRecord,
    OverallStatus,
    Phase,
    PhaseRecord,
    PhaseStatus,
    utcnow,
)
from docai.state.store import ProcessStateStore
from docai.utils.logger import get_logger

logger = get_logger(__name__)


class StatusRecorder:
    """Records phase starts, completions and failures for documents.

    Args:
        store: Ledger backend.
    """

    def __init__(self, store: ProcessStateStore) -> None:
        self.store = store

    def get_state(self, document_id: str) -> DocumentRecord | None:
        require_document_id(document_id)
        return self.store.get(document_id)

    def init_run(
        self, document_id: str, correlation_id: str | None = None
    ) -> DocumentRecord:
        record = self.store.init_if_absent(document_id, correlation_id)
        logger.info("status.init doc_id=%s corr=%s", document_id, correlation_id)
        return record

    def mark_overall(
        self,
        document_id: str,
        status: OverallStatus,
        final_key: str | None = None,
        final_uri: str | None = None,
    ) -> DocumentRecord:
        return self.store.set_overall(document_id, status, final_key, final_uri)

    def phase_started(
        self,
        document_id: str,
        phase: Phase,
        messages: list[str],
        attempts: int = 1,
        **fields: Any,
    ) -> DocumentRecord:
        """Mark ``phase`` as STARTED.

        Args:
            document_id: Document key.
            phase: Phase being started.
            messages: Audit messages appended to the phase.
            attempts: Caller-supplied attempt counter.
            **fields: Extra :class:`PhaseRecord` scalars, e.g. ``input_uri``.
        """
        delta = PhaseRecord(
            status=PhaseStatus.STARTED,
            started_at=utcnow(),
            attempts=attempts,
            messages=messages,
            **fields,
        )
        logger.info("phase.started doc_id=%s phase=%s", document_id, phase)
        return self.store.upsert_phase(document_id, phase, delta)

    def phase_succeeded(
        self,
        document_id: str,
        phase: Phase,
        messages: list[str],
        artifacts: list[Artifact] | None = None,
        attempts: int = 1,
        **fields: Any,
    ) -> DocumentRecord:
        """Mark ``phase`` as SUCCEEDED, attaching ``artifacts`` by type."""
        by_type: dict[str, list[Artifact]] = {}
        for artifact in artifacts or []:
            by_type.setdefault(artifact.type or ArtifactType.JSON.value, []).append(
                artifact
            )
        delta = PhaseRecord(
            status=PhaseStatus.SUCCEEDED,
            completed_at=utcnow(),
            attempts=attempts,
            duration_ms=self._elapsed_ms(document_id, phase),
            messages=messages,
            artifacts_by_type=by_type,
            **fields,
        )
        logger.info("phase.succeeded doc_id=%s phase=%s", document_id, phase)
        return self.store.upsert_phase(document_id, phase, delta)

    def phase_failed(
        self,
        document_id: str,
        phase: Phase,
        error: str,
        attempts: int = 1,
        **fields: Any,
    ) -> DocumentRecord:
        """Mark ``phase`` FAILED with ``error`` and set overall FAILED."""
        delta = PhaseRecord(
            status=PhaseStatus.FAILED,
            completed_at=utcnow(),
            attempts=attempts,
            duration_ms=self._elapsed_ms(document_id, phase),
            messages=[error],
            **fields,
        )
        logger.warning(
            "phase.failed doc_id=%s phase=%s err=%s", document_id, phase, error
        )
        self.store.upsert_phase(document_id, phase, delta)
        return self.store.set_overall(document_id, OverallStatus.FAILED)

    def append_artifact(
        self, document_id: str, phase: Phase, artifact: Artifact
    ) -> DocumentRecord:
        artifact_type = artifact.type or ArtifactType.JSON.value
        return self.store.append_artifact(document_id, phase, artifact_type, artifact)

    def _elapsed_ms(self, document_id: str, phase: Phase) -> int | None:
        record = self.store.get(document_id)
        existing = record.phase(phase) if record else None
        if existing is None or existing.started_at is None:
            return None
        return int((utcnow() - existing.started_at).total_seconds() * 1000)
