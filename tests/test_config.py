"""Tests for pipeline configuration loading."""

from pathlib import Path

import pytest

from clinic_radar.core.enums import ProfileGrade, Tier, UnitType
from clinic_radar.core.errors import ConfigError
from clinic_radar.ingestion.config import (
    DEFAULT_CATALOG_PATH,
    DEFAULT_CONFIG_PATH,
    CatalogSeed,
    PipelineConfig,
    SchedulingConfig,
    get_default_config,
    reset_default_config,
)


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_defaults(self) -> None:
        config = PipelineConfig()
        assert config.matching.fuzzy_threshold == 0.85
        assert config.scheduling.interval_days == {Tier.TIER1: 7, Tier.TIER2: 14, Tier.TIER3: 30}
        assert config.pricing.outlier_ratio == 20.0
        assert config.pacing.base_delay == 3.0

    def test_from_dict_overrides(self) -> None:
        config = PipelineConfig.from_dict(
            {
                "matching": {"fuzzy_threshold": 0.9},
                "scheduling": {"interval_days": {"tier1": 3}},
                "archive": {"path": "/tmp/archive"},
            }
        )
        assert config.matching.fuzzy_threshold == 0.9
        assert config.scheduling.interval_days[Tier.TIER1] == 3
        assert config.scheduling.interval_days[Tier.TIER3] == 30
        assert config.archive_path == "/tmp/archive"

    def test_invalid_threshold(self) -> None:
        with pytest.raises(ConfigError):
            PipelineConfig.from_dict({"matching": {"fuzzy_threshold": 1.5}})

    def test_unknown_tier(self) -> None:
        with pytest.raises(ConfigError):
            SchedulingConfig.from_dict({"interval_days": {"tier9": 1}})

    def test_invalid_grade_mapping(self) -> None:
        with pytest.raises(ConfigError):
            SchedulingConfig.from_dict({"grade_tiers": {"PRIME": "tier7"}})

    def test_load_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "pipeline.yaml"
        path.write_text("pacing:\n  base_delay: 0.5\n  seed: 3\n", encoding="utf-8")

        config = PipelineConfig.load(path)

        assert config.pacing.base_delay == 0.5
        assert config.pacing.seed == 3
        assert config.config_path == path.resolve()

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            PipelineConfig.load(tmp_path / "absent.yaml")

    def test_load_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "pipeline.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            PipelineConfig.load(path)

    def test_bundled_config_loads(self) -> None:
        config = PipelineConfig.load(DEFAULT_CONFIG_PATH)
        assert config.scheduling.grade_tiers[ProfileGrade.PRIME] == Tier.TIER1


class TestDefaultConfig:
    """Tests for the cached default configuration."""

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text("collection:\n  max_subpages: 4\n", encoding="utf-8")
        monkeypatch.setenv("CLINIC_RADAR_CONFIG", str(path))
        reset_default_config()
        try:
            assert get_default_config().collection.max_subpages == 4
        finally:
            reset_default_config()

    def test_missing_env_path_uses_builtin_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CLINIC_RADAR_CONFIG", str(tmp_path / "none.yaml"))
        reset_default_config()
        try:
            config = get_default_config()
            assert config.config_path is None
            assert config.collection.max_subpages == 10
        finally:
            reset_default_config()


class TestCatalogSeed:
    """Tests for the catalog seed."""

    def test_bundled_seed(self, catalog_seed: CatalogSeed) -> None:
        names = [e.canonical_name for e in catalog_seed.entries]
        assert "울쎄라" in names
        assert "써마지" in names
        ulthera = next(e for e in catalog_seed.entries if e.canonical_name == "울쎄라")
        assert ulthera.base_unit_type == UnitType.SHOT
        assert any(c.compound == "울써마지" for c in catalog_seed.compounds)

    def test_from_dict(self) -> None:
        seed = CatalogSeed.from_dict(
            {
                "entries": [{"canonical_name": "A장비", "category": "rf", "keywords": ["에이"]}],
                "compounds": [{"compound": "에이비", "components": ["A장비", "B장비"]}],
            }
        )
        assert seed.entries[0].all_keywords == ["A장비", "에이"]
        assert seed.entries[0].base_unit_type is None
        assert seed.compounds[0].components == ["A장비", "B장비"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            CatalogSeed.load(tmp_path / "missing.yaml")

    def test_default_path_exists(self) -> None:
        assert DEFAULT_CATALOG_PATH.exists()
