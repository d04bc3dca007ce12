"""
Clinic Radar Ingestion Framework
================================

This package provides the extraction-and-change-intelligence pipeline for
tracked clinic websites.

Pipeline Stages:
1. Schedule - TierScheduler selects sites due for a crawl
2. Collect - A collector fetches the main page and subpages
3. Detect - ChangeDetector skips sites whose stripped text is unchanged
4. Match - CatalogMatcher resolves names; Decomposer explains the rest
5. Price - PriceExtractor structures prices and flags outliers
6. Persist - SnapshotStore appends history and computes the change delta
7. Classify - SignalClassifier turns changes into sales signals
"""

from clinic_radar.ingestion.config import (
    CatalogSeed,
    PipelineConfig,
    get_default_config,
    reset_default_config,
)
from clinic_radar.ingestion.scheduler import (
    ScheduledSite,
    SchedulePlan,
    TierScheduler,
)
from clinic_radar.ingestion.pacing import (
    Clock,
    Pacer,
    SystemClock,
)
from clinic_radar.ingestion.change_detector import (
    ChangeDecision,
    ChangeDetector,
    compute_hash,
    compute_ocr_hash,
    strip_volatile_content,
)
from clinic_radar.ingestion.matcher import (
    CatalogMatcher,
    MatchReport,
    MatchResult,
)
from clinic_radar.ingestion.decomposer import (
    Decomposer,
    Decomposition,
    DecompositionReport,
)
from clinic_radar.ingestion.pricing import (
    PriceExtractor,
    extract_prices,
    promotional_subset,
)
from clinic_radar.ingestion.snapshots import (
    SnapshotDiff,
    SnapshotDraft,
    SnapshotStore,
)
from clinic_radar.ingestion.archive import (
    LocalFileArchive,
    RawArchive,
)
from clinic_radar.ingestion.signals import (
    SignalClassifier,
    load_rule,
)
from clinic_radar.ingestion.pipeline import (
    BatchOptions,
    BatchRunner,
    BatchStats,
    CostEstimate,
    SitePipeline,
    SiteResult,
    estimate_cost,
)

__all__ = [
    # Config
    "CatalogSeed",
    "PipelineConfig",
    "get_default_config",
    "reset_default_config",
    # Scheduling
    "ScheduledSite",
    "SchedulePlan",
    "TierScheduler",
    "Clock",
    "Pacer",
    "SystemClock",
    # Change detection
    "ChangeDecision",
    "ChangeDetector",
    "compute_hash",
    "compute_ocr_hash",
    "strip_volatile_content",
    # Matching
    "CatalogMatcher",
    "MatchReport",
    "MatchResult",
    "Decomposer",
    "Decomposition",
    "DecompositionReport",
    # Pricing
    "PriceExtractor",
    "extract_prices",
    "promotional_subset",
    # Snapshots
    "SnapshotDiff",
    "SnapshotDraft",
    "SnapshotStore",
    "LocalFileArchive",
    "RawArchive",
    # Signals
    "SignalClassifier",
    "load_rule",
    # Pipeline
    "BatchOptions",
    "BatchRunner",
    "BatchStats",
    "CostEstimate",
    "SitePipeline",
    "SiteResult",
    "estimate_cost",
]
