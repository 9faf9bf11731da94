"""Process-state ledger records and their wire format.

Records are pydantic models so that the persisted map keeps the
camelCase attribute names (``documentId``, ``artifactsByType``, ...)
while Python code works with snake_case fields and closed enumerations.
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OverallStatus(StrEnum):
    """Document-level status, advancing left to right."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    TEXTRACT_COMPLETED = "TEXTRACT_COMPLETED"
    NLP_COMPLETED = "NLP_COMPLETED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


FORWARD_ORDER: tuple[OverallStatus, ...] = (
    OverallStatus.PENDING,
    OverallStatus.RUNNING,
    OverallStatus.TEXTRACT_COMPLETED,
    OverallStatus.NLP_COMPLETED,
    OverallStatus.COMPLETED,
)


class PhaseStatus(StrEnum):
    """Status of a single processing phase."""

    STARTED = "STARTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class Phase(StrEnum):
    """Named processing stages tracked in the ledger."""

    UPLOAD = "UPLOAD"
    TEXTRACT = "TEXTRACT"
    NLP = "NLP"
    PIPELINE = "PIPELINE"


class ArtifactType(StrEnum):
    """Artifact groupings under a phase."""

    JSON = "json"
    BINARY = "binary"


CONTENT_TYPE_JSON = "application/json"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the persisted camelCase map, omitting nulls."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Artifact(_WireModel):
    """A file produced by a phase, e.g. the OCR elements JSON."""

    type: str | None = None
    key: str | None = None
    uri: str | None = Field(default=None, alias="s3Uri")
    content_type: str | None = None
    size_bytes: int | None = None
    checksum: str | None = None
    version: int | None = None
    created_at: datetime | None = None
    meta: dict[str, str] = Field(default_factory=dict)


class PhaseRecord(_WireModel):
    """Lifecycle of one phase.

    Used both as the stored record and as the delta passed to
    ``upsert_phase``; in a delta, ``None`` scalars mean "keep existing".
    """

    status: PhaseStatus | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempts: int | None = None
    duration_ms: int | None = None
    input_uri: str | None = Field(default=None, alias="inputS3Uri")
    output_uri: str | None = Field(default=None, alias="outputS3Uri")
    avg_confidence: float | None = None
    min_confidence: float | None = None
    max_confidence: float | None = None
    block_count: int | None = None
    model_name: str | None = None
    prompt_key: str | None = None
    prompt_version: str | None = None
    schema_name: str | None = None
    messages: list[str] = Field(default_factory=list)
    artifacts_by_type: dict[str, list[Artifact]] = Field(default_factory=dict)


class DocumentRecord(_WireModel):
    """The ledger entry for one document."""

    document_id: str
    correlation_id: str | None = None
    overall_status: OverallStatus = OverallStatus.PENDING
    final_output_key: str | None = None
    final_output_uri: str | None = Field(default=None, alias="finalOutputS3Uri")
    created_at: datetime | None = None
    updated_at: datetime | None = None
    phases: dict[str, PhaseRecord] = Field(default_factory=dict)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "DocumentRecord":
        """Rebuild a record from its persisted map."""
        return cls.model_validate(data)

    def phase(self, phase: Phase | str) -> PhaseRecord | None:
        return self.phases.get(str(phase))
