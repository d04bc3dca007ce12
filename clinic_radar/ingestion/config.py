"""
Pipeline Configuration Module
=============================

Loads pipeline settings and the catalog seed from YAML files. Every
threshold the pipeline applies (crawl intervals, fuzzy tolerance, outlier
policy, pacing) lives here rather than in code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from clinic_radar.core.enums import ProfileGrade, Tier, UnitType
from clinic_radar.core.errors import ConfigError
from clinic_radar.core.schema import CatalogEntry, CompoundWord

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "pipeline.yaml"
DEFAULT_CATALOG_PATH = PROJECT_ROOT / "config" / "catalog.yaml"


def _tier_map(data: dict[str, Any] | None, defaults: dict[Tier, int]) -> dict[Tier, int]:
    result = dict(defaults)
    for key, value in (data or {}).items():
        try:
            result[Tier(key)] = int(value)
        except ValueError as e:
            raise ConfigError(f"Unknown tier '{key}' in configuration") from e
    return result


@dataclass
class CollectionConfig:
    """Settings for fetching a site's pages and images."""

    user_agent: str = "ClinicRadar/0.1"
    request_timeout: float = 30.0
    max_retries: int = 3
    max_subpages: int = 10
    max_text_chars: int = 150_000
    max_images: int = 3
    max_image_bytes: int = 4 * 1024 * 1024
    subpage_delay: float = 0.3
    subpage_jitter: float = 0.2

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CollectionConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            user_agent=data.get("user_agent", "ClinicRadar/0.1"),
            request_timeout=float(data.get("request_timeout", 30.0)),
            max_retries=int(data.get("max_retries", 3)),
            max_subpages=int(data.get("max_subpages", 10)),
            max_text_chars=int(data.get("max_text_chars", 150_000)),
            max_images=int(data.get("max_images", 3)),
            max_image_bytes=int(data.get("max_image_bytes", 4 * 1024 * 1024)),
            subpage_delay=float(data.get("subpage_delay", 0.3)),
            subpage_jitter=float(data.get("subpage_jitter", 0.2)),
        )


@dataclass
class PacingConfig:
    """Delay inserted between sites in a batch."""

    base_delay: float = 3.0
    jitter: float = 1.0
    seed: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PacingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        seed = data.get("seed")
        return cls(
            base_delay=float(data.get("base_delay", 3.0)),
            jitter=float(data.get("jitter", 1.0)),
            seed=int(seed) if seed is not None else None,
        )


DEFAULT_GRADE_TIERS: dict[ProfileGrade, Tier] = {
    ProfileGrade.PRIME: Tier.TIER1,
    ProfileGrade.HIGH: Tier.TIER1,
    ProfileGrade.MID: Tier.TIER2,
}
DEFAULT_INTERVAL_DAYS: dict[Tier, int] = {Tier.TIER1: 7, Tier.TIER2: 14, Tier.TIER3: 30}
DEFAULT_VISUAL_INTERVAL_DAYS: dict[Tier, int] = {Tier.TIER1: 0, Tier.TIER2: 14, Tier.TIER3: 30}


@dataclass
class SchedulingConfig:
    """Grade-to-tier mapping and per-tier intervals."""

    grade_tiers: dict[ProfileGrade, Tier] = field(default_factory=lambda: dict(DEFAULT_GRADE_TIERS))
    interval_days: dict[Tier, int] = field(default_factory=lambda: dict(DEFAULT_INTERVAL_DAYS))
    visual_interval_days: dict[Tier, int] = field(
        default_factory=lambda: dict(DEFAULT_VISUAL_INTERVAL_DAYS)
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SchedulingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()

        grade_tiers = dict(DEFAULT_GRADE_TIERS)
        for grade, tier in (data.get("grade_tiers") or {}).items():
            try:
                grade_tiers[ProfileGrade(grade)] = Tier(tier)
            except ValueError as e:
                raise ConfigError(f"Invalid grade mapping {grade!r} -> {tier!r}") from e

        return cls(
            grade_tiers=grade_tiers,
            interval_days=_tier_map(data.get("interval_days"), DEFAULT_INTERVAL_DAYS),
            visual_interval_days=_tier_map(
                data.get("visual_interval_days"), DEFAULT_VISUAL_INTERVAL_DAYS
            ),
        )


@dataclass
class MatchingConfig:
    """Catalog matching tolerances."""

    fuzzy_threshold: float = 0.85
    min_keyword_length: int = 2
    min_fuzzy_length: int = 3
    equipment_categories: list[str] = field(default_factory=lambda: ["hifu", "rf"])

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MatchingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        threshold = float(data.get("fuzzy_threshold", 0.85))
        if not 0.0 < threshold <= 1.0:
            raise ConfigError(f"fuzzy_threshold must be in (0, 1], got {threshold}")
        return cls(
            fuzzy_threshold=threshold,
            min_keyword_length=int(data.get("min_keyword_length", 2)),
            min_fuzzy_length=int(data.get("min_fuzzy_length", 3)),
            equipment_categories=list(data.get("equipment_categories", ["hifu", "rf"])),
        )


@dataclass
class PricingConfig:
    """Price extraction bounds and outlier policy."""

    min_unit_price: float = 100
    max_unit_price: float = 10_000_000
    max_total_price: int = 100_000_000
    outlier_ratio: float = 20.0
    outlier_min_sample: int = 4
    event_keyword_window: int = 50
    event_context_window: int = 100
    premium_threshold: int = 500_000
    mid_threshold: int = 200_000

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PricingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            min_unit_price=float(data.get("min_unit_price", 100)),
            max_unit_price=float(data.get("max_unit_price", 10_000_000)),
            max_total_price=int(data.get("max_total_price", 100_000_000)),
            outlier_ratio=float(data.get("outlier_ratio", 20.0)),
            outlier_min_sample=int(data.get("outlier_min_sample", 4)),
            event_keyword_window=int(data.get("event_keyword_window", 50)),
            event_context_window=int(data.get("event_context_window", 100)),
            premium_threshold=int(data.get("premium_threshold", 500_000)),
            mid_threshold=int(data.get("mid_threshold", 200_000)),
        )


@dataclass
class CostConfig:
    """Dry-run cost model."""

    base_tokens: int = 18_000
    analysis_calls: int = 3
    tokens_per_call: int = 4_000
    tokens_per_page: int = 4_000
    visual_pages: int = 4
    input_usd_per_million: float = 0.10
    output_usd_per_million: float = 0.40
    output_ratio: float = 0.1
    seconds_text_only: float = 15.0
    seconds_full: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CostConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        defaults = cls()
        return cls(
            base_tokens=int(data.get("base_tokens", defaults.base_tokens)),
            analysis_calls=int(data.get("analysis_calls", defaults.analysis_calls)),
            tokens_per_call=int(data.get("tokens_per_call", defaults.tokens_per_call)),
            tokens_per_page=int(data.get("tokens_per_page", defaults.tokens_per_page)),
            visual_pages=int(data.get("visual_pages", defaults.visual_pages)),
            input_usd_per_million=float(
                data.get("input_usd_per_million", defaults.input_usd_per_million)
            ),
            output_usd_per_million=float(
                data.get("output_usd_per_million", defaults.output_usd_per_million)
            ),
            output_ratio=float(data.get("output_ratio", defaults.output_ratio)),
            seconds_text_only=float(data.get("seconds_text_only", defaults.seconds_text_only)),
            seconds_full=float(data.get("seconds_full", defaults.seconds_full)),
        )


@dataclass
class PipelineConfig:
    """All pipeline settings."""

    collection: CollectionConfig = field(default_factory=CollectionConfig)
    pacing: PacingConfig = field(default_factory=PacingConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    cost: CostConfig = field(default_factory=CostConfig)
    archive_path: str = "~/.clinic_radar/archive"
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PipelineConfig:
        """Create from dictionary."""
        data = data or {}
        return cls(
            collection=CollectionConfig.from_dict(data.get("collection")),
            pacing=PacingConfig.from_dict(data.get("pacing")),
            scheduling=SchedulingConfig.from_dict(data.get("scheduling")),
            matching=MatchingConfig.from_dict(data.get("matching")),
            pricing=PricingConfig.from_dict(data.get("pricing")),
            cost=CostConfig.from_dict(data.get("cost")),
            archive_path=(data.get("archive") or {}).get("path", "~/.clinic_radar/archive"),
        )

    @classmethod
    def load(cls, config_path: Path | str) -> PipelineConfig:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the pipeline.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {config_path}")

        config = cls.from_dict(data)
        config.config_path = config_path
        return config


@dataclass
class CatalogSeed:
    """Catalog entries and compound words loaded from YAML."""

    entries: list[CatalogEntry] = field(default_factory=list)
    compounds: list[CompoundWord] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CatalogSeed:
        """Create from dictionary."""
        if data is None:
            return cls()

        entries = []
        for item in data.get("entries", []):
            unit = item.get("base_unit_type")
            entries.append(
                CatalogEntry(
                    canonical_name=item["canonical_name"],
                    category=item["category"],
                    keywords=list(item.get("keywords", [])),
                    base_unit_type=UnitType(unit) if unit else None,
                )
            )

        compounds = [
            CompoundWord(
                compound=item["compound"],
                components=list(item["components"]),
                note=item.get("note", ""),
            )
            for item in data.get("compounds", [])
        ]
        return cls(entries=entries, compounds=compounds)

    @classmethod
    def load(cls, path: Path | str | None = None) -> CatalogSeed:
        """Load the catalog seed, defaulting to CLINIC_RADAR_CATALOG or config/catalog.yaml."""
        if path is None:
            path = os.environ.get("CLINIC_RADAR_CATALOG") or DEFAULT_CATALOG_PATH
        path = Path(path).expanduser().resolve()
        if not path.exists():
            raise FileNotFoundError(f"Catalog file not found: {path}")

        with open(path, encoding="utf-8") as f:
            return cls.from_dict(yaml.safe_load(f))


# Global configuration instance
_default_config: PipelineConfig | None = None


def get_default_config() -> PipelineConfig:
    """
    Get the default pipeline configuration.

    Loads configuration from the path specified in CLINIC_RADAR_CONFIG
    environment variable, or falls back to config/pipeline.yaml. Built-in
    defaults apply when neither exists.
    """
    global _default_config

    if _default_config is None:
        config_path = os.environ.get("CLINIC_RADAR_CONFIG")
        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

        if path.exists():
            _default_config = PipelineConfig.load(path)
        else:
            _default_config = PipelineConfig()

    return _default_config


def reset_default_config() -> None:
    """Reset the default configuration (useful for testing)."""
    global _default_config
    _default_config = None
