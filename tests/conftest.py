"""Shared test fixtures for the title document AI test suite."""

from pathlib import Path

import numpy as np
import pytest
from fakes import SAMPLE_VIN

from docai.ocr.elements import LINE, PAGE, WORD, OcrElement
from docai.pipeline.interfaces import InMemoryObjectStore
from docai.state.store import InMemoryStateStore
from docai.utils.config import AppConfig


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


@pytest.fixture
def app_config() -> AppConfig:
    """Default configuration with a fast OCR poll loop."""
    config = AppConfig()
    config.ocr.poll_interval_s = 0.01
    config.ocr.poll_max_interval_s = 0.05
    config.ocr.poll_timeout_s = 1.0
    return config


@pytest.fixture
def store() -> InMemoryStateStore:
    """Create an empty in-memory ledger."""
    return InMemoryStateStore()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    """Create an empty in-memory object store."""
    return InMemoryObjectStore()


@pytest.fixture
def title_elements() -> list[OcrElement]:
    """OCR elements of a typical single-page title scan."""
    lines = [
        ("l1", SAMPLE_VIN, 99.0),
        ("l2", "2018", 98.0),
        ("l3", "TOYOTA CAMRY", 97.0),
        ("l4", "123 MAIN ST HARRISBURG PA 17101", 95.0),
        ("l5", "ACME AUTO FINANCE", 96.0),
        ("l6", "45,210", 94.0),
        ("l7", "03/15/2021", 93.0),
        ("l8", "smudged text", 40.0),
    ]
    elements = [OcrElement(id="p1", type=PAGE, page=1)]
    elements.extend(
        OcrElement(id=i, type=LINE, text=text, confidence=conf, page=1)
        for i, text, conf in lines
    )
    elements.append(
        OcrElement(id="w1", type=WORD, text="TOYOTA", confidence=97.0, parent_id="l3")
    )
    return elements
