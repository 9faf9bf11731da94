"""Contracts for the external collaborators driven by the pipeline.

Only the shapes the pipeline relies on are defined here; vendor request
and response encodings are left to the adapters.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from docai.errors import NotFound
from docai.ocr.elements import OcrElement


@dataclass(frozen=True)
class DocumentRef:
    """Location of a source document in the object store."""

    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class OcrJob:
    """Handle for an asynchronous OCR analysis."""

    job_id: str


class OcrJobStatus(StrEnum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


@dataclass
class OcrPage:
    """One page of results from an asynchronous OCR job."""

    elements: list[OcrElement] = field(default_factory=list)
    next_token: str | None = None


@runtime_checkable
class ObjectStore(Protocol):
    async def get_bytes(self, bucket: str, key: str) -> bytes:
        """Return the object body. Raises :class:`NotFound` when missing."""
        ...

    async def put_bytes(
        self, bucket: str, key: str, data: bytes, content_type: str
    ) -> None: ...

    async def exists(self, bucket: str, key: str) -> bool: ...

    async def list_keys(self, bucket: str, prefix: str) -> list[tuple[str, int]]:
        """Return ``(key, size_bytes)`` pairs under ``prefix``."""
        ...


@runtime_checkable
class OcrService(Protocol):
    async def submit(
        self, document: DocumentRef, features: list[str], queries: list[str]
    ) -> list[OcrElement] | OcrJob:
        """Start analysis; synchronous engines return elements directly."""
        ...

    async def poll(self, job: OcrJob) -> OcrJobStatus: ...

    async def fetch(self, job: OcrJob, next_token: str | None) -> OcrPage: ...


@runtime_checkable
class ChatService(Protocol):
    async def invoke(
        self,
        system: str,
        user: str,
        schema: dict[str, Any],
        temperature: float,
    ) -> Any:
        """Return the provider's raw response envelope."""
        ...


@runtime_checkable
class EmbeddingService(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def nearest(
        self, vector: list[float], document_id: str, limit: int
    ) -> list[str]:
        """Return the text of the ``limit`` closest indexed snippets."""
        ...


class InMemoryObjectStore:
    """Dict-backed :class:`ObjectStore` for tests and local runs."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}

    async def get_bytes(self, bucket: str, key: str) -> bytes:
        try:
            return self.objects[(bucket, key)][0]
        except KeyError:
            raise NotFound(f"s3://{bucket}/{key}") from None

    async def put_bytes(
        self, bucket: str, key: str, data: bytes, content_type: str
    ) -> None:
        self.objects[(bucket, key)] = (bytes(data), content_type)

    async def exists(self, bucket: str, key: str) -> bool:
        return (bucket, key) in self.objects

    async def list_keys(self, bucket: str, prefix: str) -> list[tuple[str, int]]:
        return sorted(
            (key, len(data))
            for (b, key), (data, _) in self.objects.items()
            if b == bucket and key.startswith(prefix)
        )

    def content_type(self, bucket: str, key: str) -> str | None:
        entry = self.objects.get((bucket, key))
        return entry[1] if entry else None
