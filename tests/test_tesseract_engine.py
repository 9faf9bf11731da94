"""Tests for the local Tesseract OCR adapter (pytesseract mocked)."""

import io
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from PIL import Image

from docai.errors import ExternalServiceError
from docai.ocr.elements import LINE, PAGE, WORD, OcrElement
from docai.ocr.tesseract_engine import TesseractEngine, TesseractOcrService
from docai.pipeline.interfaces import DocumentRef, InMemoryObjectStore, OcrJob


def _mock_tesseract_data() -> dict:
    """Create mock pytesseract output data."""
    return {
        "text": ["", "Hello", "World", "", "Test", "  "],
        "conf": [-1, 95, 88, -1, 72, 60],
        "block_num": [0, 1, 1, 0, 2, 2],
        "line_num": [0, 1, 1, 0, 1, 1],
        "word_num": [0, 1, 2, 0, 1, 2],
    }


def _png_bytes(image: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(image).save(buf, format="PNG")
    return buf.getvalue()


class TestTesseractEngine:
    """Tests for element extraction from Tesseract word data."""

    @patch("docai.ocr.tesseract_engine.pytesseract")
    def test_page_lines_and_words(
        self, mock_pytesseract: MagicMock, sample_image: np.ndarray
    ) -> None:
        mock_pytesseract.image_to_data.return_value = _mock_tesseract_data()
        mock_pytesseract.Output.DICT = "dict"

        elements = TesseractEngine(default_lang="eng").extract_elements(sample_image)

        assert [e.type for e in elements] == [PAGE, LINE, WORD, WORD, LINE, WORD]
        page, line1, hello, world, line2, test = elements
        assert page.child_ids == ["p1-l1", "p1-l2"]
        assert line1.text == "Hello World"
        assert line1.confidence == pytest.approx(91.5)
        assert line1.child_ids == ["p1-w1", "p1-w2"]
        assert hello.parent_id == "p1-l1"
        assert world.confidence == 88.0
        assert line2.text == "Test"
        assert test.parent_id == "p1-l2"

    @patch("docai.ocr.tesseract_engine.pytesseract")
    def test_lang_psm_and_page(
        self, mock_pytesseract: MagicMock, sample_image: np.ndarray
    ) -> None:
        mock_pytesseract.image_to_data.return_value = _mock_tesseract_data()
        engine = TesseractEngine(default_lang="eng", psm=6)

        elements = engine.extract_elements(sample_image, lang="deu", page=3)

        kwargs = mock_pytesseract.image_to_data.call_args.kwargs
        assert kwargs["lang"] == "deu"
        assert kwargs["config"] == "--psm 6"
        assert elements[0].id == "p3"
        assert all(e.page == 3 for e in elements)

    @patch("docai.ocr.tesseract_engine.pytesseract")
    def test_empty_page(
        self, mock_pytesseract: MagicMock, sample_image: np.ndarray
    ) -> None:
        mock_pytesseract.image_to_data.return_value = {
            "text": [""],
            "conf": [-1],
            "block_num": [0],
            "line_num": [0],
        }
        elements = TesseractEngine().extract_elements(sample_image)
        assert [e.type for e in elements] == [PAGE]

    @patch("docai.ocr.tesseract_engine.pytesseract")
    def test_custom_tesseract_cmd(self, mock_pytesseract: MagicMock) -> None:
        TesseractEngine(tesseract_cmd="/usr/local/bin/tesseract")
        assert mock_pytesseract.pytesseract.tesseract_cmd == "/usr/local/bin/tesseract"


class TestTesseractOcrService:
    """Tests for the synchronous OcrService adapter."""

    @pytest.mark.asyncio
    async def test_submit_returns_elements(self, sample_image: np.ndarray) -> None:
        store = InMemoryObjectStore()
        await store.put_bytes("b", "scan.png", _png_bytes(sample_image), "image/png")
        engine = MagicMock(spec=TesseractEngine)
        engine.extract_elements.return_value = [OcrElement(id="p1", type=PAGE)]

        service = TesseractOcrService(engine, store)
        result = await service.submit(DocumentRef("b", "scan.png"), ["TABLES"], [])

        assert [e.id for e in result] == ["p1"]
        image = engine.extract_elements.call_args.args[0]
        assert image.shape == sample_image.shape

    @pytest.mark.asyncio
    async def test_undecodable_image(self) -> None:
        store = InMemoryObjectStore()
        await store.put_bytes("b", "bad.png", b"not an image", "image/png")
        service = TesseractOcrService(MagicMock(spec=TesseractEngine), store)
        with pytest.raises(ExternalServiceError):
            await service.submit(DocumentRef("b", "bad.png"), [], [])

    @pytest.mark.asyncio
    async def test_jobs_unsupported(self) -> None:
        service = TesseractOcrService(
            MagicMock(spec=TesseractEngine), InMemoryObjectStore()
        )
        with pytest.raises(ExternalServiceError):
            await service.poll(OcrJob("j"))
        with pytest.raises(ExternalServiceError):
            await service.fetch(OcrJob("j"), None)
