"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from docai.utils.config import (
    DEFAULT_QUERIES,
    AppConfig,
    NlpConfig,
    OcrConfig,
    StateConfig,
    StorageConfig,
    SweepConfig,
    load_config,
)


class TestStorageConfig:
    """Tests for StorageConfig defaults."""

    def test_defaults(self) -> None:
        cfg = StorageConfig()
        assert cfg.bucket == "title-docai"
        assert cfg.ocr_prefix == "textract/"
        assert cfg.nlp_prefix == "openai/"
        assert cfg.prompt_key.endswith(".yaml")


class TestStateConfig:
    """Tests for StateConfig defaults and bounds."""

    def test_defaults(self) -> None:
        cfg = StateConfig()
        assert cfg.database_url == "sqlite:///docai_state.db"
        assert cfg.max_merge_retries == 3

    def test_rejects_zero_retries(self) -> None:
        with pytest.raises(ValidationError):
            StateConfig(max_merge_retries=0)


class TestOcrConfig:
    """Tests for OcrConfig defaults and overrides."""

    def test_defaults(self) -> None:
        cfg = OcrConfig()
        assert cfg.min_confidence == 90.0
        assert cfg.default_lang == "eng"
        assert cfg.psm == 3
        assert cfg.tesseract_cmd is None
        assert cfg.queries == DEFAULT_QUERIES

    def test_queries_are_not_shared(self) -> None:
        first = OcrConfig()
        first.queries.append("Extra")
        assert "Extra" not in OcrConfig().queries

    @pytest.mark.parametrize("value", [-1.0, 100.5])
    def test_threshold_out_of_range(self, value: float) -> None:
        with pytest.raises(ValidationError):
            OcrConfig(min_confidence=value)


class TestNlpConfig:
    """Tests for NlpConfig defaults."""

    def test_defaults(self) -> None:
        cfg = NlpConfig()
        assert cfg.chunk_max_chars == 18000
        assert cfg.temperature == 0.0
        assert cfg.schema_name == "NlpOutput"

    def test_rejects_non_positive_budget(self) -> None:
        with pytest.raises(ValidationError):
            NlpConfig(chunk_max_chars=0)


class TestAppConfig:
    """Tests for the top-level AppConfig."""

    def test_defaults(self) -> None:
        cfg = AppConfig()
        assert isinstance(cfg.ocr, OcrConfig)
        assert isinstance(cfg.sweep, SweepConfig)
        assert cfg.retrieval.enabled is False
        assert cfg.sweep.max_per_run == 25
        assert cfg.log_level == "INFO"

    def test_nested_override(self) -> None:
        cfg = AppConfig(sweep=SweepConfig(dry_run=True), log_level="DEBUG")
        assert cfg.sweep.dry_run is True
        assert cfg.log_level == "DEBUG"


class TestLoadConfig:
    """Tests for the load_config function."""

    def test_load_default_config(self, config_dir: Path) -> None:
        cfg = load_config(config_dir / "config.yaml")
        assert isinstance(cfg, AppConfig)
        assert cfg.ocr.default_lang == "eng"
        assert cfg.nlp.chunk_max_chars == 18000

    def test_load_missing_file_returns_defaults(self) -> None:
        cfg = load_config(Path("/nonexistent/path/config.yaml"))
        assert isinstance(cfg, AppConfig)
        assert cfg.storage.bucket == "title-docai"

    def test_load_custom_yaml(self, tmp_path: Path) -> None:
        config_data = {
            "ocr": {"min_confidence": 80, "default_lang": "deu"},
            "nlp": {"chunk_max_chars": 500},
            "log_level": "DEBUG",
        }
        config_file = tmp_path / "config.yaml"
        with open(config_file, "w") as f:
            yaml.dump(config_data, f)

        cfg = load_config(config_file)
        assert cfg.ocr.min_confidence == 80.0
        assert cfg.ocr.default_lang == "deu"
        assert cfg.nlp.chunk_max_chars == 500
        assert cfg.log_level == "DEBUG"

    def test_load_empty_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        cfg = load_config(config_file)
        assert isinstance(cfg, AppConfig)

    def test_load_none_defaults_to_standard_path(self) -> None:
        cfg = load_config()
        assert isinstance(cfg, AppConfig)
