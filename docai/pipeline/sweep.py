"""One pass of the scheduled sweep over an input prefix.

Each new object under the prefix is run through the pipeline. The
document id is ``<bucket>/<key>``, so an object already in the ledger is
never picked up twice. When to call :func:`sweep` is up to the caller.
"""

import uuid
from dataclasses import dataclass, field

from docai.errors import DocAiError
from docai.pipeline.interfaces import ObjectStore
from docai.pipeline.orchestrator import PipelineOrchestrator
from docai.state.models import OverallStatus
from docai.state.store import ProcessStateStore
from docai.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Document ids touched by one sweep.

    Attributes:
        processed: Documents started in this pass, including failed ones.
        failed: Documents whose pipeline run raised.
        skipped: Documents already tracked in the ledger.
    """

    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def document_id_for(bucket: str, key: str) -> str:
    return f"{bucket}/{key}"


async def sweep(
    orchestrator: PipelineOrchestrator,
    store: ProcessStateStore,
    object_store: ObjectStore,
    bucket: str,
    prefix: str,
    max_per_run: int = 25,
    dry_run: bool = False,
) -> SweepResult:
    """Start the pipeline for untracked objects under ``prefix``.

    Args:
        orchestrator: Pipeline to run for each document.
        store: Ledger used to skip documents already tracked.
        object_store: Store to list ``bucket`` from.
        bucket: Bucket holding the input documents.
        prefix: Key prefix to scan.
        max_per_run: Upper bound on documents started in this pass.
        dry_run: Register documents as PENDING without running them.

    Returns:
        The ids processed, failed and skipped in this pass.
    """
    result = SweepResult()
    keys = await object_store.list_keys(bucket, prefix)
    logger.info("sweep.start bucket=%s prefix=%s keys=%d", bucket, prefix, len(keys))

    for key, size in keys:
        if len(result.processed) >= max_per_run:
            break
        if key.endswith("/") or size <= 0:
            continue

        document_id = document_id_for(bucket, key)
        if store.get(document_id) is not None:
            result.skipped.append(document_id)
            continue

        correlation_id = str(uuid.uuid4())
        result.processed.append(document_id)
        if dry_run:
            store.init_if_absent(document_id, correlation_id)
            store.set_overall(document_id, OverallStatus.PENDING)
            logger.info("sweep.dry_run doc_id=%s", document_id)
            continue

        try:
            await orchestrator.run(
                document_id,
                bucket,
                key,
                output_key=orchestrator.default_output_key(key),
                correlation_id=correlation_id,
            )
        except DocAiError as exc:
            # already recorded as FAILED by the orchestrator
            logger.error("sweep.failed doc_id=%s err=%s", document_id, exc)
            result.failed.append(document_id)

    logger.info(
        "sweep.done processed=%d failed=%d skipped=%d",
        len(result.processed),
        len(result.failed),
        len(result.skipped),
    )
    return result
