"""Running OCR through an :class:`OcrService`, including async job polling."""

import asyncio
import time
from collections.abc import Awaitable, Callable

from docai.errors import ExternalServiceError
from docai.ocr.elements import OcrElement
from docai.pipeline.interfaces import DocumentRef, OcrJob, OcrJobStatus, OcrService
from docai.utils.config import OcrConfig
from docai.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_FEATURES = ["TABLES", "FORMS", "QUERIES"]

TERMINAL_OK = frozenset({OcrJobStatus.SUCCEEDED, OcrJobStatus.PARTIAL_SUCCESS})


async def wait_for_job(
    ocr: OcrService,
    job: OcrJob,
    config: OcrConfig,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> OcrJobStatus:
    """Poll ``job`` with exponential backoff until it finishes.

    Cancelling the calling task stops polling; the remote job is left
    running.

    Args:
        ocr: OCR collaborator.
        job: Job handle returned by ``submit``.
        config: Poll interval, backoff cap and overall timeout.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.

    Returns:
        The terminal status.

    Raises:
        ExternalServiceError: If the job fails or does not finish within
            ``config.poll_timeout_s``.
    """
    deadline = clock() + config.poll_timeout_s
    delay = config.poll_interval_s
    polls = 0

    try:
        while True:
            status = OcrJobStatus(await ocr.poll(job))
            polls += 1
            if status in TERMINAL_OK:
                logger.info(
                    "ocr.job.done job=%s status=%s polls=%d", job.job_id, status, polls
                )
                return status
            if status is OcrJobStatus.FAILED:
                raise ExternalServiceError(f"OCR job {job.job_id} failed")

            remaining = deadline - clock()
            if remaining <= 0:
                raise ExternalServiceError(
                    f"OCR job {job.job_id} timed out after {config.poll_timeout_s}s"
                )
            await sleep(min(delay, remaining))
            delay = min(delay * 2, config.poll_max_interval_s)
    except asyncio.CancelledError:
        logger.warning("ocr.job.abandoned job=%s polls=%d", job.job_id, polls)
        raise


async def fetch_all(ocr: OcrService, job: OcrJob) -> list[OcrElement]:
    """Collect every result page of a finished job."""
    elements: list[OcrElement] = []
    token: str | None = None
    pages = 0
    while True:
        page = await ocr.fetch(job, token)
        elements.extend(page.elements)
        pages += 1
        token = page.next_token
        if token is None:
            break
    logger.info(
        "ocr.job.fetched job=%s pages=%d elements=%d",
        job.job_id,
        pages,
        len(elements),
    )
    return elements


async def run_ocr(
    ocr: OcrService,
    document: DocumentRef,
    config: OcrConfig,
    features: list[str] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[OcrElement]:
    """Analyze ``document`` and return all OCR elements.

    Synchronous engines return elements from ``submit``; otherwise the
    returned job is polled and its pages fetched.
    """
    submitted = await ocr.submit(document, features or DEFAULT_FEATURES, config.queries)
    if isinstance(submitted, OcrJob):
        logger.info("ocr.job.submitted job=%s doc=%s", submitted.job_id, document.uri)
        await wait_for_job(ocr, submitted, config, sleep=sleep)
        return await fetch_all(ocr, submitted)
    return list(submitted)
