"""Tests for the inspection CLI."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from fakes import SAMPLE_VIN
from PIL import Image

from docai.cli import chunk_file, extract_file, main, ocr_file, show_status
from docai.ocr.elements import OcrElement, dump_elements
from docai.state.models import OverallStatus
from docai.state.sql_store import SqlStateStore
from docai.utils.config import OcrConfig


@pytest.fixture
def elements_file(tmp_path: Path, title_elements: list[OcrElement]) -> Path:
    path = tmp_path / "elements.json"
    path.write_bytes(dump_elements(title_elements))
    return path


@pytest.fixture
def image_file(tmp_path: Path, sample_image: np.ndarray) -> Path:
    path = tmp_path / "title.png"
    Image.fromarray(sample_image).save(path)
    return path


def _word_data() -> dict:
    return {
        "text": ["", "VIN", "OK", "", "blurry"],
        "conf": [-1, 96, 92, -1, 40],
        "block_num": [0, 1, 1, 0, 2],
        "line_num": [0, 1, 1, 0, 1],
        "word_num": [0, 1, 2, 0, 1],
    }


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite ledger seeded with one running document."""
    url = f"sqlite:///{tmp_path / 'state.db'}"
    store = SqlStateStore(url)
    store.init_if_absent("doc-1", "corr-1")
    store.set_overall("doc-1", OverallStatus.RUNNING)
    return url


class TestOcrFile:
    """Tests for local OCR runs."""

    @patch("docai.ocr.tesseract_engine.pytesseract")
    def test_drops_weak_elements(
        self, mock_pytesseract: MagicMock, image_file: Path
    ) -> None:
        mock_pytesseract.image_to_data.return_value = _word_data()

        doc = ocr_file(image_file, OcrConfig(min_confidence=90.0))

        texts = [b.get("Text") for b in doc["Blocks"]]
        assert "VIN OK" in texts
        assert "blurry" not in texts

    @patch("docai.ocr.tesseract_engine.pytesseract")
    def test_threshold_override(
        self, mock_pytesseract: MagicMock, image_file: Path
    ) -> None:
        mock_pytesseract.image_to_data.return_value = _word_data()

        doc = ocr_file(image_file, OcrConfig(min_confidence=90.0), 30.0)

        assert "blurry" in [b.get("Text") for b in doc["Blocks"]]

    @patch("docai.ocr.tesseract_engine.pytesseract")
    def test_output_feeds_chunk(
        self, mock_pytesseract: MagicMock, image_file: Path, tmp_path: Path
    ) -> None:
        mock_pytesseract.image_to_data.return_value = _word_data()
        output = tmp_path / "elements.json"

        main(["ocr", str(image_file), "-o", str(output)])

        chunks = chunk_file(output, 18000)
        assert len(chunks) == 1
        assert "VIN OK" in chunks[0]["text"]
        assert "blurry" not in chunks[0]["text"]


class TestChunkFile:
    """Tests for chunk previews."""

    def test_single_chunk(
        self, elements_file: Path, title_elements: list[OcrElement]
    ) -> None:
        chunks = chunk_file(elements_file, 18000)
        assert len(chunks) == 1
        assert chunks[0]["index"] == 0
        assert chunks[0]["chars"] == len(chunks[0]["text"])
        assert SAMPLE_VIN in chunks[0]["text"]
        assert set(chunks[0]["element_ids"]) == {e.id for e in title_elements}

    def test_small_budget_splits(self, elements_file: Path) -> None:
        chunks = chunk_file(elements_file, 40)
        assert len(chunks) > 1
        assert [c["index"] for c in chunks] == list(range(len(chunks)))


class TestExtractFile:
    """Tests for JSON recovery from saved responses."""

    def test_chat_envelope(self, tmp_path: Path) -> None:
        path = tmp_path / "response.json"
        envelope = {"choices": [{"message": {"content": '{"vin": "X1"}'}}]}
        path.write_text(json.dumps(envelope))
        assert extract_file(path) == {"vin": "X1"}

    def test_raw_text(self, tmp_path: Path) -> None:
        path = tmp_path / "response.txt"
        path.write_text('Here you go: {"vin": "X1",} hope it helps')
        assert extract_file(path) == {"vin": "X1"}

    def test_nothing_recoverable(self, tmp_path: Path) -> None:
        path = tmp_path / "response.txt"
        path.write_text("no json at all")
        assert extract_file(path) == {}


class TestShowStatus:
    """Tests for ledger lookups."""

    def test_existing_document(self, database_url: str) -> None:
        record = show_status("doc-1", database_url)
        assert record["documentId"] == "doc-1"
        assert record["correlationId"] == "corr-1"
        assert record["overallStatus"] == "RUNNING"

    def test_unknown_document(self, database_url: str) -> None:
        assert show_status("missing", database_url) is None


class TestMain:
    """Tests for the CLI entry point."""

    def test_no_command_shows_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0

    def test_ocr_nonexistent_file(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["ocr", "/nonexistent/title.png"])
        assert exc_info.value.code == 1
        assert "does not exist" in capsys.readouterr().err

    def test_ocr_unreadable_image(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "title.png"
        path.write_bytes(b"not an image")

        with pytest.raises(SystemExit) as exc_info:
            main(["ocr", str(path)])

        assert exc_info.value.code == 1
        assert "cannot decode image" in capsys.readouterr().err

    def test_chunk_nonexistent_file(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["chunk", "/nonexistent/elements.json"])
        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "does not exist" in captured.err

    def test_chunk_writes_output(self, elements_file: Path, tmp_path: Path) -> None:
        output = tmp_path / "out" / "chunks.json"
        main(["chunk", str(elements_file), "-o", str(output)])
        chunks = json.loads(output.read_text())
        assert chunks[0]["index"] == 0

    def test_chunk_invalid_budget(
        self, elements_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["chunk", str(elements_file), "--max-chars", "0"])
        assert exc_info.value.code == 1
        assert "chunk budget must be positive" in capsys.readouterr().err

    @patch("docai.cli.setup_logging")
    @patch("docai.cli.extract_file")
    def test_extract_command(
        self,
        mock_extract: MagicMock,
        mock_logging: MagicMock,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        path = tmp_path / "response.json"
        path.write_text("{}")
        mock_extract.return_value = {"vin": "X1"}

        main(["extract", str(path)])

        mock_extract.assert_called_once_with(path)
        assert json.loads(capsys.readouterr().out) == {"vin": "X1"}

    @patch("docai.cli.setup_logging")
    def test_status_command(
        self,
        mock_logging: MagicMock,
        database_url: str,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        main(["status", "doc-1", "--db", database_url])
        assert json.loads(capsys.readouterr().out)["documentId"] == "doc-1"

    def test_status_unknown(
        self, database_url: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["status", "missing", "--db", database_url])
        assert exc_info.value.code == 1
        assert "no state for missing" in capsys.readouterr().err
