"""Local Tesseract OCR adapter.

Turns one document image into PAGE, LINE and WORD elements with 0-100
confidences so local runs can use the same pipeline as a hosted OCR
service.
"""

import asyncio
import io

import numpy as np
import pytesseract
from PIL import Image

from docai.errors import ExternalServiceError
from docai.ocr.elements import LINE, PAGE, WORD, OcrElement
from docai.pipeline.interfaces import (
    DocumentRef,
    ObjectStore,
    OcrJob,
    OcrJobStatus,
    OcrPage,
)
from docai.utils.logger import get_logger

logger = get_logger(__name__)


def decode_image(data: bytes, label: str) -> np.ndarray:
    """Decode image bytes into a grayscale array.

    Raises:
        ExternalServiceError: If the bytes are not a readable image.
    """
    try:
        return np.array(Image.open(io.BytesIO(data)).convert("L"))
    except OSError as exc:
        raise ExternalServiceError(f"cannot decode image {label}: {exc}") from exc


class TesseractEngine:
    """Wrapper around Tesseract OCR producing element streams.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Default OCR language code.
        psm: Tesseract page segmentation mode.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
        psm: int = 3,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang
        self.psm = psm

    def extract_elements(
        self,
        image: np.ndarray,
        lang: str | None = None,
        page: int = 1,
    ) -> list[OcrElement]:
        """Extract a PAGE element followed by its lines and words.

        Words are grouped into lines by Tesseract's block, paragraph and
        line numbers. A line's confidence is the mean of its words.

        Args:
            image: Input image as a numpy array.
            lang: OCR language code. Defaults to the engine default.
            page: Page number stamped on every element.

        Returns:
            Elements in reading order: the page, then each line followed
            by its words.
        """
        lang = lang or self.default_lang
        data = pytesseract.image_to_data(
            Image.fromarray(image),
            lang=lang,
            config=f"--psm {self.psm}",
            output_type=pytesseract.Output.DICT,
        )

        lines: dict[tuple[int, int, int], list[OcrElement]] = {}
        for i in range(len(data["text"])):
            conf = float(data["conf"][i])
            word_text = data["text"][i].strip()
            if conf <= 0 or not word_text:
                continue
            key = (
                data["block_num"][i],
                data.get("par_num", [0] * len(data["text"]))[i],
                data["line_num"][i],
            )
            words = lines.setdefault(key, [])
            words.append(
                OcrElement(
                    id=f"p{page}-w{i}",
                    type=WORD,
                    text=word_text,
                    confidence=conf,
                    page=page,
                )
            )

        page_element = OcrElement(id=f"p{page}", type=PAGE, page=page)
        elements: list[OcrElement] = [page_element]
        for n, key in enumerate(sorted(lines), start=1):
            words = lines[key]
            line = OcrElement(
                id=f"p{page}-l{n}",
                type=LINE,
                text=" ".join(w.text or "" for w in words),
                confidence=sum(w.confidence or 0.0 for w in words) / len(words),
                page=page,
                child_ids=[w.id for w in words],
            )
            for word in words:
                word.parent_id = line.id
            page_element.child_ids.append(line.id)
            elements.append(line)
            elements.extend(words)

        logger.info(
            "OCR extracted %d lines on page %d with lang %s", len(lines), page, lang
        )
        return elements


class TesseractOcrService:
    """Synchronous :class:`OcrService` backed by a local Tesseract engine.

    ``submit`` reads the image from the object store and returns the
    elements directly, so no job is ever created.

    Args:
        engine: Configured Tesseract engine.
        object_store: Store holding the uploaded images.
    """

    def __init__(self, engine: TesseractEngine, object_store: ObjectStore) -> None:
        self.engine = engine
        self.object_store = object_store

    async def submit(
        self, document: DocumentRef, features: list[str], queries: list[str]
    ) -> list[OcrElement]:
        data = await self.object_store.get_bytes(document.bucket, document.key)
        image = decode_image(data, document.uri)
        logger.info("tesseract.submit doc=%s features=%s", document.uri, features)
        return await asyncio.to_thread(self.engine.extract_elements, image)

    async def poll(self, job: OcrJob) -> OcrJobStatus:
        raise ExternalServiceError("Tesseract OCR does not create jobs")

    async def fetch(self, job: OcrJob, next_token: str | None) -> OcrPage:
        raise ExternalServiceError("Tesseract OCR does not create jobs")
