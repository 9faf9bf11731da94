"""Configuration management for the document AI engine.

Loads and validates YAML configuration with sensible defaults for
storage layout, the state ledger, OCR, LLM normalization, retrieval
and the ingest sweep.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_QUERIES: list[str] = [
    "VIN",
    "Title Number",
    "Certificate Type",
    "Owner",
    "Owner Address",
    "First Lienholder",
    "Odometer Reading",
    "Sale Date",
]


class StorageConfig(BaseModel):
    """Object store bucket and key prefixes."""

    bucket: str = "title-docai"
    input_prefix: str = "input/"
    ocr_prefix: str = "textract/"
    nlp_prefix: str = "openai/"
    prompt_key: str = "prompts/title-prompts.yaml"


class StateConfig(BaseModel):
    """Configuration for the process-state ledger."""

    database_url: str = "sqlite:///docai_state.db"
    max_merge_retries: int = Field(default=3, ge=1)


class OcrConfig(BaseModel):
    """Configuration for OCR extraction and async job polling."""

    min_confidence: float = Field(default=90.0, ge=0.0, le=100.0)
    queries: list[str] = Field(default_factory=lambda: list(DEFAULT_QUERIES))
    poll_interval_s: float = Field(default=5.0, gt=0.0)
    poll_max_interval_s: float = Field(default=30.0, gt=0.0)
    poll_timeout_s: float = Field(default=900.0, gt=0.0)
    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 3


class NlpConfig(BaseModel):
    """Configuration for LLM normalization."""

    model_name: str = "gpt-4o-mini"
    chunk_max_chars: int = Field(default=18000, gt=0)
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    schema_name: str = "NlpOutput"
    prompt_version: str | None = None


class RetrievalConfig(BaseModel):
    """Configuration for the optional vector retrieval path."""

    enabled: bool = False
    limit: int = Field(default=15, gt=0)


class SweepConfig(BaseModel):
    """Configuration for the ingest sweep."""

    max_per_run: int = Field(default=25, gt=0)
    dry_run: bool = False


class AppConfig(BaseModel):
    """Top-level application configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    ocr: OcrConfig = Field(default_factory=OcrConfig)
    nlp: NlpConfig = Field(default_factory=NlpConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    sweep: SweepConfig = Field(default_factory=SweepConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
