"""LLM normalization of OCR elements into the business record."""

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from docai.errors import DocAiError, ExternalServiceError
from docai.extraction.business import looks_like_business, to_business_schema
from docai.extraction.fusion import anchor_high_fidelity, fuse
from docai.extraction.heuristics import extract_high_fidelity, pre_parse_fields
from docai.llm.prompts import (
    CHUNK_USER_TEMPLATE,
    EVIDENCE_USER_TEMPLATE,
    RETRIEVAL_TASK,
    PromptConfig,
    render,
)
from docai.llm.response import ResponseExtractor
from docai.llm.schema import NlpOutput, build_nlp_schema
from docai.ocr.chunker import build_chunks
from docai.ocr.elements import OcrElement
from docai.pipeline.interfaces import ChatService, EmbeddingService
from docai.utils.config import NlpConfig, RetrievalConfig
from docai.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class NormalizationResult:
    """Output of one normalization run.

    Attributes:
        business: Fused and anchored business tree.
        partials: JSON recovered from each successful LLM call.
        chunk_count: Number of LLM calls made.
        extraction_failures: Calls whose response yielded no usable JSON.
    """

    business: dict[str, Any]
    partials: list[dict[str, Any]] = field(default_factory=list)
    chunk_count: int = 0
    extraction_failures: int = 0


class NlpNormalizer:
    """Turns OCR elements into a business record with heuristics and an LLM.

    Args:
        chat: LLM collaborator.
        nlp_config: Model, chunk budget and temperature.
        prompts: Prompt templates and rule variables.
        retrieval_config: Settings for the optional retrieval path.
        embeddings: Embedding collaborator; required for retrieval.
        extractor: Response extractor, defaults to a new instance.
    """

    def __init__(
        self,
        chat: ChatService,
        nlp_config: NlpConfig,
        prompts: PromptConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
        embeddings: EmbeddingService | None = None,
        extractor: ResponseExtractor | None = None,
    ) -> None:
        self.chat = chat
        self.nlp_config = nlp_config
        self.prompts = prompts or PromptConfig()
        self.retrieval_config = retrieval_config or RetrievalConfig()
        self.embeddings = embeddings
        self.extractor = extractor or ResponseExtractor()
        self.schema = build_nlp_schema()

    @property
    def uses_retrieval(self) -> bool:
        return self.retrieval_config.enabled and self.embeddings is not None

    async def normalize(
        self,
        elements: list[OcrElement],
        min_confidence: float,
        document_id: str | None = None,
        prompts: PromptConfig | None = None,
    ) -> NormalizationResult:
        """Normalize ``elements`` into a business record.

        LLM partials are fused in call order and the heuristic skeleton
        only fills fields they leave weaker. Exact OCR matches are then
        anchored on top.

        Args:
            elements: OCR elements that passed the confidence filter.
            min_confidence: OCR confidence threshold used by the heuristics.
            document_id: Document key, needed for the retrieval path.
            prompts: Prompts for this run; defaults to the ones given at
                construction.

        Returns:
            The normalization result.

        Raises:
            ExternalServiceError: If the LLM fails, or every call returned
                unusable output.
        """
        prompts = prompts or self.prompts
        skeleton = pre_parse_fields(elements, min_confidence)
        high_fidelity = extract_high_fidelity(elements)

        if self.uses_retrieval and document_id:
            result = await self._normalize_with_retrieval(
                self.embeddings, document_id, prompts
            )
        else:
            result = await self._normalize_chunks(elements, prompts)

        trees = [self._to_business(p) for p in result.partials]
        result.business = anchor_high_fidelity(
            fuse([*(t for t in trees if t), skeleton]), high_fidelity
        )
        result.extraction_failures += sum(1 for t in trees if not t)

        if result.chunk_count and result.extraction_failures >= result.chunk_count:
            raise ExternalServiceError(
                f"no usable LLM output in {result.chunk_count} call(s)"
            )
        logger.info(
            "nlp.normalize done calls=%d failures=%d",
            result.chunk_count,
            result.extraction_failures,
        )
        return result

    async def _normalize_chunks(
        self, elements: list[OcrElement], prompts: PromptConfig
    ) -> NormalizationResult:
        result = NormalizationResult(business={})
        for chunk in build_chunks(elements, self.nlp_config.chunk_max_chars):
            result.chunk_count += 1
            user = render(
                prompts.user or CHUNK_USER_TEMPLATE,
                {**prompts.rules, "rawText": chunk.text},
            )
            partial = await self._call(prompts, user, f"chunk {chunk.index}")
            if partial:
                result.partials.append(partial)
            else:
                result.extraction_failures += 1
        return result

    async def _normalize_with_retrieval(
        self, embeddings: EmbeddingService, document_id: str, prompts: PromptConfig
    ) -> NormalizationResult:
        try:
            vector = await embeddings.embed(RETRIEVAL_TASK)
            snippets = await embeddings.nearest(
                vector, document_id, self.retrieval_config.limit
            )
        except DocAiError:
            raise
        except Exception as exc:
            raise ExternalServiceError(f"retrieval failed: {exc}") from exc

        logger.info("nlp.retrieval doc_id=%s snippets=%d", document_id, len(snippets))
        evidence = "\n\n".join(
            f"---- Evidence {i} ----\n{s}" for i, s in enumerate(snippets)
        )
        user = render(
            EVIDENCE_USER_TEMPLATE,
            {**prompts.rules, "task": RETRIEVAL_TASK, "evidence": evidence},
        )
        result = NormalizationResult(business={}, chunk_count=1)
        partial = await self._call(prompts, user, "evidence")
        if partial:
            result.partials.append(partial)
        else:
            result.extraction_failures += 1
        return result

    async def _call(
        self, prompts: PromptConfig, user: str, label: str
    ) -> dict[str, Any]:
        system = render(prompts.system, prompts.rules)
        try:
            envelope = await self.chat.invoke(
                system, user, self.schema, self.nlp_config.temperature
            )
        except DocAiError:
            raise
        except Exception as exc:
            raise ExternalServiceError(f"LLM call failed for {label}: {exc}") from exc

        outcome = self.extractor.extract(envelope)
        if not outcome.ok:
            logger.warning("nlp.extract failed %s failures=%s", label, outcome.failures)
        return outcome.data

    @staticmethod
    def _to_business(partial: dict[str, Any]) -> dict[str, Any]:
        """Map one partial to a business tree; ``{}`` if it has the wrong shape."""
        if looks_like_business(partial):
            return partial
        try:
            return to_business_schema(NlpOutput.model_validate(partial))
        except PydanticValidationError as exc:
            logger.warning("nlp.partial rejected errors=%d", exc.error_count())
            return {}
