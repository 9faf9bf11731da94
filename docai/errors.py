"""Exception hierarchy shared by the state ledger, extraction and pipeline."""


class DocAiError(Exception):
    """Base class for all document AI engine errors."""


class TransientIOError(DocAiError):
    """A store or network operation failed and may succeed if retried."""


class ExternalServiceError(DocAiError):
    """An OCR or LLM collaborator failed or returned an unusable envelope."""


class ValidationError(DocAiError):
    """Caller input was rejected before any work was done."""


class NotFound(DocAiError):
    """The requested object does not exist in the object store."""


class UnrecoverableParseError(DocAiError):
    """JSON could not be recovered even after the repair pass."""


def require_document_id(document_id: str | None) -> str:
    """Reject blank document ids.

    Raises:
        ValidationError: If the id is ``None`` or only whitespace.
    """
    if document_id is None or not str(document_id).strip():
        raise ValidationError("document_id must not be null/blank")
    return document_id
