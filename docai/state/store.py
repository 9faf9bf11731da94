"""Process-state ledger: merge rules and the in-memory store.

Every mutation goes through :meth:`ProcessStateStore._mutate`, which
hands a private copy of the record to a callback and persists the
result as a single write. Backends only decide how that
read-modify-write is made safe.
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable

from docai.errors import ValidationError, require_document_id
from docai.state.models import (
    FORWARD_ORDER,
    Artifact,
    ArtifactType,
    DocumentRecord,
    OverallStatus,
    Phase,
    PhaseRecord,
    PhaseStatus,
    utcnow,
)
from docai.utils.logger import get_logger

logger = get_logger(__name__)

_SCALAR_FIELDS = tuple(
    name
    for name in PhaseRecord.model_fields
    if name not in ("messages", "artifacts_by_type")
)


def phase_key(phase: Phase | str) -> str:
    """Normalize a phase name, rejecting names outside :class:`Phase`."""
    try:
        return Phase(phase).value
    except ValueError as exc:
        raise ValidationError(f"unknown phase: {phase!r}") from exc


def artifact_type_key(artifact_type: ArtifactType | str) -> str:
    try:
        return ArtifactType(artifact_type).value
    except ValueError as exc:
        raise ValidationError(f"unknown artifact type: {artifact_type!r}") from exc


def merge_phase(existing: PhaseRecord | None, delta: PhaseRecord) -> PhaseRecord:
    """Merge a phase delta into an existing record.

    Scalars take the incoming value when it is not ``None``. Messages
    are appended in order and artifacts are appended per type; nothing
    is ever removed.

    Args:
        existing: Current phase record, or ``None`` for a new phase.
        delta: Incoming values.

    Returns:
        A new merged record. Neither input is modified.
    """
    merged = existing.model_copy(deep=True) if existing else PhaseRecord()
    for name in _SCALAR_FIELDS:
        value = getattr(delta, name)
        if value is not None:
            setattr(merged, name, value)

    merged.messages = [*merged.messages, *delta.messages]

    artifacts = {k: list(v) for k, v in merged.artifacts_by_type.items()}
    for artifact_type, items in delta.artifacts_by_type.items():
        artifacts.setdefault(artifact_type, []).extend(
            a.model_copy(deep=True) for a in items
        )
    merged.artifacts_by_type = artifacts
    return merged


def advance_overall(current: OverallStatus, requested: OverallStatus) -> OverallStatus:
    """Apply the forward-only overall status rule.

    FAILED can always be set; once FAILED, only ``clear_failure`` leaves
    it. Any other backward move keeps the current status.
    """
    if requested is OverallStatus.FAILED:
        return requested
    if current is OverallStatus.FAILED:
        return current
    if FORWARD_ORDER.index(requested) < FORWARD_ORDER.index(current):
        return current
    return requested


def new_record(document_id: str, correlation_id: str | None = None) -> DocumentRecord:
    now = utcnow()
    return DocumentRecord(
        document_id=document_id,
        correlation_id=correlation_id,
        overall_status=OverallStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


class ProcessStateStore(ABC):
    """Durable per-document ledger of phases, artifacts and status."""

    @abstractmethod
    def get(self, document_id: str) -> DocumentRecord | None:
        """Return a copy of the record, or ``None`` when untracked."""

    @abstractmethod
    def init_if_absent(
        self, document_id: str, correlation_id: str | None = None
    ) -> DocumentRecord:
        """Create the record if missing; the first writer wins."""

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Return all tracked document ids."""

    @abstractmethod
    def _mutate(
        self, document_id: str, change: Callable[[DocumentRecord], None]
    ) -> DocumentRecord:
        """Apply ``change`` to a private copy and persist it atomically.

        Unknown documents are created as PENDING first.
        """

    def upsert_phase(
        self, document_id: str, phase: Phase | str, delta: PhaseRecord
    ) -> DocumentRecord:
        """Merge ``delta`` into the named phase.

        Args:
            document_id: Document key.
            phase: Phase to update.
            delta: Incoming values; ``None`` scalars keep existing data.

        Returns:
            The record after the write.

        Raises:
            ValidationError: If the phase or an artifact type is unknown.
        """
        require_document_id(document_id)
        key = phase_key(phase)
        if delta.artifacts_by_type:
            delta = delta.model_copy(
                update={
                    "artifacts_by_type": {
                        artifact_type_key(t): items
                        for t, items in delta.artifacts_by_type.items()
                    }
                }
            )
        logger.info(
            "docstate.upsert_phase doc_id=%s phase=%s status=%s",
            document_id,
            key,
            delta.status,
        )

        def change(record: DocumentRecord) -> None:
            record.phases[key] = merge_phase(record.phases.get(key), delta)

        return self._mutate(document_id, change)

    def append_artifact(
        self,
        document_id: str,
        phase: Phase | str,
        artifact_type: ArtifactType | str,
        artifact: Artifact,
    ) -> DocumentRecord:
        """Append one artifact under ``phase``/``artifact_type``.

        A phase that does not exist yet is created as STARTED with one
        attempt.
        """
        require_document_id(document_id)
        key = phase_key(phase)
        type_key = artifact_type_key(artifact_type)
        logger.info(
            "docstate.append_artifact doc_id=%s phase=%s type=%s key=%s",
            document_id,
            key,
            type_key,
            artifact.key,
        )

        def change(record: DocumentRecord) -> None:
            existing = record.phases.get(key)
            if existing is None:
                existing = PhaseRecord(
                    status=PhaseStatus.STARTED, started_at=utcnow(), attempts=1
                )
            delta = PhaseRecord(artifacts_by_type={type_key: [artifact]})
            record.phases[key] = merge_phase(existing, delta)

        return self._mutate(document_id, change)

    def set_overall(
        self,
        document_id: str,
        status: OverallStatus | str,
        final_key: str | None = None,
        final_uri: str | None = None,
    ) -> DocumentRecord:
        """Advance the overall status and optionally the final output pointers.

        Backward moves, and anything but FAILED while FAILED, are logged
        and ignored; non-null pointers are still written.
        """
        require_document_id(document_id)
        requested = OverallStatus(status)

        def change(record: DocumentRecord) -> None:
            current = record.overall_status
            applied = advance_overall(current, requested)
            if applied is not requested:
                logger.warning(
                    "docstate.set_overall ignored doc_id=%s current=%s requested=%s",
                    document_id,
                    current,
                    requested,
                )
            record.overall_status = applied
            if final_key is not None:
                record.final_output_key = final_key
            if final_uri is not None:
                record.final_output_uri = final_uri

        logger.info(
            "docstate.set_overall doc_id=%s status=%s final_key=%s",
            document_id,
            requested,
            final_key,
        )
        return self._mutate(document_id, change)

    def clear_failure(
        self,
        document_id: str,
        status: OverallStatus | str = OverallStatus.PENDING,
    ) -> DocumentRecord:
        """Explicitly move a FAILED document back to ``status``.

        Raises:
            ValidationError: If ``status`` is FAILED.
        """
        require_document_id(document_id)
        target = OverallStatus(status)
        if target is OverallStatus.FAILED:
            raise ValidationError("clear_failure target must not be FAILED")

        def change(record: DocumentRecord) -> None:
            if record.overall_status is OverallStatus.FAILED:
                record.overall_status = target

        logger.info("docstate.clear_failure doc_id=%s status=%s", document_id, target)
        return self._mutate(document_id, change)


class InMemoryStateStore(ProcessStateStore):
    """Thread-safe in-memory ledger, serialized per document."""

    def __init__(self) -> None:
        self._records: dict[str, DocumentRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, document_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(document_id)
            if lock is None:
                lock = self._locks[document_id] = threading.Lock()
            return lock

    def get(self, document_id: str) -> DocumentRecord | None:
        require_document_id(document_id)
        record = self._records.get(document_id)
        return record.model_copy(deep=True) if record else None

    def init_if_absent(
        self, document_id: str, correlation_id: str | None = None
    ) -> DocumentRecord:
        require_document_id(document_id)
        with self._lock_for(document_id):
            record = self._records.get(document_id)
            if record is None:
                record = new_record(document_id, correlation_id)
                self._records[document_id] = record
                logger.info("docstate.init doc_id=%s", document_id)
            return record.model_copy(deep=True)

    def list_ids(self) -> list[str]:
        return list(self._records)

    def _mutate(
        self, document_id: str, change: Callable[[DocumentRecord], None]
    ) -> DocumentRecord:
        with self._lock_for(document_id):
            current = self._records.get(document_id) or new_record(document_id)
            working = current.model_copy(deep=True)
            change(working)
            working.updated_at = utcnow()
            self._records[document_id] = working
            return working.model_copy(deep=True)
