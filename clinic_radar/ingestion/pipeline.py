"""
Crawl Pipeline Module
=====================

Runs the per-site extraction pipeline over a batch of tracked sites.

Per site:
1. Collect the primary page and its subpages
2. Short-circuit when the stripped text hash is unchanged
3. Analyze text, optionally run the visual pass, match and decompose names
4. Extract prices
5. Append a snapshot (with prices, changes and candidates) in one transaction
6. Classify changes into sales signals

Sites are processed sequentially with a paced gap between them. A failure
in one site is recorded and the batch moves on.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from clinic_radar.collaborators.base import (
    AnalysisResult,
    BaseCollector,
    BaseContentAnalyzer,
    BaseVisualRecognizer,
    RawContent,
    RecognitionResult,
)
from clinic_radar.core.enums import RunOutcome, SiteStage, Tier
from clinic_radar.core.errors import (
    ClassificationError,
    CollectionError,
    PipelineError,
    RecognitionError,
    SubpageError,
    VisualRecognitionError,
)
from clinic_radar.core.schema import (
    CompoundWord,
    CrawlActivity,
    EquipmentChange,
    SalesSignal,
    Snapshot,
    TrackedSite,
)
from clinic_radar.db.store import PipelineStore
from clinic_radar.ingestion.archive import ArchivedPage, RawArchive
from clinic_radar.ingestion.change_detector import ChangeDetector, compute_ocr_hash
from clinic_radar.ingestion.config import CostConfig, PipelineConfig
from clinic_radar.ingestion.decomposer import Decomposer
from clinic_radar.ingestion.matcher import CatalogMatcher, MatchReport
from clinic_radar.ingestion.pacing import Clock, Pacer, SystemClock
from clinic_radar.ingestion.pricing import PriceExtractor, promotional_subset
from clinic_radar.ingestion.scheduler import ScheduledSite, TierScheduler
from clinic_radar.ingestion.signals import SignalClassifier
from clinic_radar.ingestion.snapshots import SnapshotDraft, SnapshotStore

logger = logging.getLogger(__name__)

RecognizerFactory = Callable[[], BaseVisualRecognizer]

_STAGE_VALUES = {stage.value for stage in SiteStage}


@dataclass
class BatchOptions:
    """Options for one batch run."""

    limit: int | None = None
    offset: int = 0
    tier: Tier | None = None
    source: str | None = None
    text_only: bool = False
    dry_run: bool = False


@dataclass
class SiteResult:
    """Outcome of processing one site."""

    site_id: UUID
    site_name: str
    outcome: RunOutcome = RunOutcome.FAILED
    stage: SiteStage = SiteStage.ELIGIBLE
    stages: list[SiteStage] = field(default_factory=lambda: [SiteStage.ELIGIBLE])
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    snapshot: Snapshot | None = None
    changes: list[EquipmentChange] = field(default_factory=list)
    signals: list[SalesSignal] = field(default_factory=list)
    new_compounds: list[str] = field(default_factory=list)
    price_count: int = 0
    outlier_count: int = 0
    matched_names: int = 0
    total_names: int = 0
    tokens_used: int = 0
    visual_ran: bool = False
    ocr_changed: bool = False

    def advance(self, stage: SiteStage) -> None:
        """Record a state transition."""
        self.stage = stage
        self.stages.append(stage)
        logger.debug(f"Site {self.site_name}: -> {stage.value}")

    @property
    def match_rate(self) -> float | None:
        if self.total_names == 0:
            return None
        return self.matched_names / self.total_names


@dataclass
class CostEstimate:
    """Projected spend for a batch."""

    sites: int
    tokens_per_site: int
    total_tokens: int
    cost_usd: float
    seconds_per_site: float
    total_seconds: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "sites": self.sites,
            "tokens_per_site": self.tokens_per_site,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd, 4),
            "seconds_per_site": self.seconds_per_site,
            "total_seconds": self.total_seconds,
        }


def estimate_cost(site_count: int, text_only: bool, config: CostConfig | None = None) -> CostEstimate:
    """
    Estimate tokens, dollars and wall time for a batch.

    Tokens per site are the base budget plus the analysis calls, plus the
    visual pages unless the run is text-only.
    """
    config = config or CostConfig()
    tokens = config.base_tokens + config.analysis_calls * config.tokens_per_call
    if not text_only:
        tokens += config.tokens_per_page * config.visual_pages

    total_tokens = tokens * site_count
    output_tokens = total_tokens * config.output_ratio
    cost = (
        total_tokens * config.input_usd_per_million + output_tokens * config.output_usd_per_million
    ) / 1_000_000
    seconds = config.seconds_text_only if text_only else config.seconds_full

    return CostEstimate(
        sites=site_count,
        tokens_per_site=tokens,
        total_tokens=total_tokens,
        cost_usd=cost,
        seconds_per_site=seconds,
        total_seconds=seconds * site_count,
    )


@dataclass
class BatchStats:
    """Aggregate counts for a batch run."""

    started_at: datetime | None = None
    completed_at: datetime | None = None
    dry_run: bool = False
    eligible: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_by_schedule: int = 0
    skipped_no_change: int = 0
    equipment_total: int = 0
    treatment_total: int = 0
    price_total: int = 0
    outlier_total: int = 0
    matched_names: int = 0
    total_names: int = 0
    new_compounds: list[str] = field(default_factory=list)
    signals_emitted: int = 0
    tokens_used: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    warnings: int = 0
    stopped_early: bool = False
    estimate: CostEstimate | None = None
    planned_sites: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    @property
    def match_rate(self) -> float | None:
        if self.total_names == 0:
            return None
        return self.matched_names / self.total_names

    def add(self, result: SiteResult) -> None:
        """Fold one site's result into the totals."""
        self.processed += 1
        self.warnings += len(result.warnings)
        self.tokens_used += result.tokens_used

        if result.outcome == RunOutcome.FAILED:
            self.failed += 1
            self.errors.append({"site": result.site_name, "message": result.error or "unknown error"})
            return
        if result.outcome == RunOutcome.NO_CHANGE:
            self.skipped_no_change += 1
            return

        self.succeeded += 1
        if result.snapshot is not None:
            self.equipment_total += len(result.snapshot.equipment)
            self.treatment_total += len(result.snapshot.treatments)
        self.price_total += result.price_count
        self.outlier_total += result.outlier_count
        self.matched_names += result.matched_names
        self.total_names += result.total_names
        self.signals_emitted += len(result.signals)
        for name in result.new_compounds:
            if name not in self.new_compounds:
                self.new_compounds.append(name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "dry_run": self.dry_run,
            "eligible": self.eligible,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped_by_schedule": self.skipped_by_schedule,
            "skipped_no_change": self.skipped_no_change,
            "equipment_total": self.equipment_total,
            "treatment_total": self.treatment_total,
            "price_total": self.price_total,
            "outlier_total": self.outlier_total,
            "match_rate": self.match_rate,
            "new_compounds": self.new_compounds,
            "signals_emitted": self.signals_emitted,
            "tokens_used": self.tokens_used,
            "errors": self.errors,
            "warnings": self.warnings,
            "stopped_early": self.stopped_early,
            "estimate": self.estimate.to_dict() if self.estimate else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class CollectedSite:
    """Pages collected for one site."""

    pages: list[ArchivedPage] = field(default_factory=list)
    raw_pages: list[RawContent] = field(default_factory=list)
    text: str = ""


class VisualSession:
    """
    Lazily acquired visual recognizer, shared by every site in a batch.

    The factory is called on first use only; close() releases the
    recognizer if one was acquired and is safe to call more than once.
    """

    def __init__(self, factory: RecognizerFactory | None) -> None:
        self._factory = factory
        self._recognizer: BaseVisualRecognizer | None = None

    @property
    def available(self) -> bool:
        return self._factory is not None

    @property
    def acquired(self) -> bool:
        return self._recognizer is not None

    def get(self) -> BaseVisualRecognizer | None:
        if self._recognizer is None and self._factory is not None:
            logger.info("Acquiring visual recognition session")
            self._recognizer = self._factory()
        return self._recognizer

    def close(self) -> None:
        if self._recognizer is None:
            return
        try:
            self._recognizer.close()
            logger.info("Released visual recognition session")
        finally:
            self._recognizer = None


class SitePipeline:
    """Processes a single site from collection through classification."""

    def __init__(
        self,
        store: PipelineStore,
        collector: BaseCollector,
        analyzer: BaseContentAnalyzer,
        matcher: CatalogMatcher,
        config: PipelineConfig,
        compounds: list[CompoundWord] | None = None,
        visual: VisualSession | None = None,
        archive: RawArchive | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.collector = collector
        self.analyzer = analyzer
        self.matcher = matcher
        self.config = config
        self.visual = visual or VisualSession(None)
        self.archive = archive
        self.detector = ChangeDetector(config.scheduling)
        self.decomposer = Decomposer(matcher, compounds)
        self.price_extractor = PriceExtractor(config.pricing, matcher)
        self.snapshots = SnapshotStore(store)
        self.classifier = SignalClassifier()
        self.subpage_pacer = Pacer(
            config.collection.subpage_delay,
            config.collection.subpage_jitter,
            clock=clock,
            rng=random.Random(config.pacing.seed),
        )

    def process(
        self, scheduled: ScheduledSite, now: datetime, text_only: bool = False
    ) -> SiteResult:
        """
        Run one site through the pipeline.

        Fatal errors propagate as PipelineError subclasses; non-fatal ones
        are recorded on the result as warnings.
        """
        site = scheduled.site
        result = SiteResult(site_id=site.id, site_name=site.name)

        result.advance(SiteStage.COLLECTING)
        collected = self.collect(site.website, site.id, result)

        previous = self.snapshots.latest(site.id)
        decision = self.detector.detect(
            collected.text,
            previous,
            scheduled.tier,
            now,
            last_visual_at=site.last_visual_at,
            text_only=text_only,
        )
        if not decision.run_downstream:
            logger.info(f"Site {site.name}: no change ({decision.reason})")
            result.outcome = RunOutcome.NO_CHANGE
            result.advance(SiteStage.DONE)
            return result

        result.advance(SiteStage.EXTRACTING)
        analysis = self._analyze(collected.text, site.id)
        result.tokens_used += analysis.tokens_used

        recognition = None
        if decision.run_visual:
            recognition = self._recognize(collected, site.id, result)
        if recognition is not None:
            result.visual_ran = True
            result.tokens_used += recognition.tokens_used

        equipment_names = list(analysis.equipment)
        treatment_names = list(analysis.treatments)
        if recognition is not None:
            equipment_names += recognition.equipment_names
            treatment_names += recognition.treatment_names

        equipment_report = self.matcher.match_all(equipment_names)
        treatment_report = self.matcher.match_all(treatment_names)
        combined = MatchReport(results=equipment_report.results + treatment_report.results)
        result.matched_names = combined.matched_count
        result.total_names = combined.total

        decomposition = self.decomposer.decompose_unresolved(combined, site.id)
        result.new_compounds = decomposition.candidate_names

        prices = self.price_extractor.extract(collected.text, now.date())
        result.price_count = len(prices)
        result.outlier_count = sum(1 for p in prices if p.is_outlier)

        if recognition is not None:
            ocr_hash = compute_ocr_hash(recognition.equipment_names + recognition.treatment_names)
            result.ocr_changed = self.detector.ocr_changed(previous, ocr_hash)
            if result.ocr_changed:
                logger.info(f"Site {site.name}: visual content changed")
        else:
            ocr_hash = previous.ocr_hash if previous else None

        draft = SnapshotDraft(
            site_id=site.id,
            text_hash=decision.text_hash,
            raw_text_hash=decision.raw_text_hash,
            ocr_hash=ocr_hash,
            equipment=equipment_report.canonical_names(),
            treatments=treatment_report.canonical_names(),
            pricing=prices,
            event_pricing=promotional_subset(prices),
            new_compounds=decomposition.candidate_names,
            match_rate=combined.match_rate,
            tokens_used=result.tokens_used,
        )

        result.advance(SiteStage.STORING)
        with self.store.transaction(str(site.id)):
            appended = self.snapshots.append(draft, previous=previous, now=now)
            for candidate in decomposition.candidates:
                self.store.candidates.upsert(candidate)

            result.advance(SiteStage.CLASSIFYING)
            signals = self._classify(appended.changes, site, result)
            result.signals = [self.store.signals.create(signal) for signal in signals]

        result.snapshot = appended.snapshot
        result.changes = appended.changes
        self._archive(appended.snapshot, collected, result)

        result.outcome = RunOutcome.SUCCEEDED
        result.advance(SiteStage.DONE)
        logger.info(
            f"Site {site.name}: {len(draft.equipment)} equipment, {len(draft.treatments)} treatments, "
            f"{len(prices)} prices, {len(appended.changes)} changes, {len(result.signals)} signals"
        )
        return result

    def collect(self, website: str, site_id: UUID, result: SiteResult) -> CollectedSite:
        """
        Fetch the primary page and up to the configured number of subpages.

        Raises:
            CollectionError: If the primary page cannot be fetched
        """
        try:
            raw = self.collector.fetch(website)
        except PipelineError:
            raise
        except Exception as e:
            raise CollectionError(f"Fetch failed for {website}: {e}", str(site_id), "collecting") from e
        if raw is None:
            raise CollectionError(f"Could not fetch {website}", str(site_id), "collecting")

        collected = CollectedSite(
            pages=[ArchivedPage(url=raw.url, text=raw.text, page_type="main")],
            raw_pages=[raw],
        )

        subpages = self.collector.find_subpages(raw, website)[: self.config.collection.max_subpages]
        self.subpage_pacer.reset()
        for subpage in subpages:
            self.subpage_pacer.wait()
            try:
                sub_raw = self._fetch_subpage(subpage.url, site_id)
            except SubpageError as e:
                logger.warning(str(e))
                result.warnings.append(str(e))
                continue
            finally:
                self.subpage_pacer.mark()
            collected.pages.append(
                ArchivedPage(url=sub_raw.url, text=sub_raw.text, page_type=subpage.page_type)
            )
            collected.raw_pages.append(sub_raw)

        text = "\n\n".join(page.text for page in collected.pages if page.text)
        collected.text = text[: self.config.collection.max_text_chars]
        logger.debug(
            f"Collected {len(collected.pages)} pages ({len(collected.text)} chars) from {website}"
        )
        return collected

    def _fetch_subpage(self, url: str, site_id: UUID) -> RawContent:
        try:
            raw = self.collector.fetch(url)
        except Exception as e:
            raise SubpageError(f"Subpage {url} failed: {e}", str(site_id), "collecting") from e
        if raw is None:
            raise SubpageError(f"Subpage {url} could not be fetched", str(site_id), "collecting")
        return raw

    def _analyze(self, text: str, site_id: UUID) -> AnalysisResult:
        try:
            return self.analyzer.analyze(text)
        except RecognitionError as e:
            e.site_id = e.site_id or str(site_id)
            raise
        except Exception as e:
            raise RecognitionError(f"Content analysis failed: {e}", str(site_id), "extracting") from e

    def _recognize(
        self, collected: CollectedSite, site_id: UUID, result: SiteResult
    ) -> RecognitionResult | None:
        """Run the visual pass; any failure degrades the run to text-only."""
        if not self.visual.available:
            return None

        try:
            image_urls: list[str] = []
            for raw in collected.raw_pages:
                for url in self.collector.extract_images(raw, raw.url):
                    if url not in image_urls:
                        image_urls.append(url)
            if not image_urls:
                logger.debug(f"No images found for site {site_id}")
                return None

            inputs = self.collector.download_images(image_urls, self.config.collection.max_images)
            if not inputs:
                return None

            recognizer = self.visual.get()
            if recognizer is None:
                return None
            return recognizer.recognize(inputs)
        except Exception as e:
            error = e if isinstance(e, VisualRecognitionError) else VisualRecognitionError(
                f"Visual recognition failed: {e}", str(site_id), "extracting"
            )
            logger.warning(str(error))
            result.warnings.append(str(error))
            return None

    def _classify(
        self, changes: list[EquipmentChange], site: TrackedSite, result: SiteResult
    ) -> list[SalesSignal]:
        if not changes:
            return []

        products = [
            (product, self.store.rules.list_for_product(product.id))
            for product in self.store.products.list_all(active_only=True)
        ]
        try:
            return self.classifier.classify_all(changes, products, site)
        except ClassificationError as e:
            logger.warning(str(e))
            result.warnings.append(str(e))
            return []

    def _archive(self, snapshot: Snapshot, collected: CollectedSite, result: SiteResult) -> None:
        if self.archive is None:
            return
        try:
            self.archive.save(
                snapshot.id, snapshot.site_id, snapshot.text_hash, collected.pages, snapshot.created_at
            )
        except OSError as e:
            message = f"Archiving snapshot {snapshot.id} failed: {e}"
            logger.warning(message)
            result.warnings.append(message)


class BatchRunner:
    """
    Drives a batch of sites through the SitePipeline.

    Usage:
        runner = BatchRunner(store, collector, analyzer, matcher, config)
        stats = runner.run(BatchOptions(limit=50, text_only=True))
    """

    def __init__(
        self,
        store: PipelineStore,
        collector: BaseCollector,
        analyzer: BaseContentAnalyzer,
        matcher: CatalogMatcher,
        config: PipelineConfig,
        compounds: list[CompoundWord] | None = None,
        recognizer_factory: RecognizerFactory | None = None,
        archive: RawArchive | None = None,
        clock: Clock | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.clock = clock or SystemClock()
        self._now = now or (lambda: datetime.now(UTC))
        self.scheduler = TierScheduler(config.scheduling)
        self.visual = VisualSession(recognizer_factory)
        self.pacer = Pacer(
            config.pacing.base_delay,
            config.pacing.jitter,
            clock=self.clock,
            rng=random.Random(config.pacing.seed),
        )
        self.site_pipeline = SitePipeline(
            store,
            collector,
            analyzer,
            matcher,
            config,
            compounds=compounds,
            visual=self.visual,
            archive=archive,
            clock=self.clock,
        )
        self._stop_requested = False

    def request_stop(self) -> None:
        """Ask the batch to stop before the next site."""
        logger.warning("Stop requested; finishing the current site")
        self._stop_requested = True

    def estimate(self, site_count: int, text_only: bool) -> CostEstimate:
        return estimate_cost(site_count, text_only, self.config.cost)

    def run(self, options: BatchOptions | None = None) -> BatchStats:
        """
        Run a batch.

        Returns:
            BatchStats; a single site's failure never raises out of here
        """
        options = options or BatchOptions()
        started = time.monotonic()
        now = self._now()
        stats = BatchStats(started_at=now, dry_run=options.dry_run)

        sites = self.store.sites.list_all(active_only=True, source=options.source)
        plan = self.scheduler.plan(
            sites,
            now,
            tier=options.tier,
            source=options.source,
            limit=options.limit,
            offset=options.offset,
        )
        stats.eligible = len(plan.eligible)
        stats.skipped_by_schedule = plan.skipped_by_schedule
        stats.planned_sites = [s.site.name for s in plan.eligible]

        if options.dry_run:
            stats.estimate = self.estimate(len(plan.eligible), options.text_only)
            logger.info(f"Dry run: {len(plan.eligible)} sites would be processed")
        else:
            try:
                for scheduled in plan.eligible:
                    if self._stop_requested:
                        stats.stopped_early = True
                        logger.warning(f"Batch stopped after {stats.processed} sites")
                        break
                    self.pacer.wait()
                    try:
                        stats.add(self._run_site(scheduled, options.text_only))
                    finally:
                        self.pacer.mark()
            finally:
                self.visual.close()

        stats.completed_at = self._now()
        stats.duration_seconds = time.monotonic() - started
        logger.info(
            f"Batch complete: {stats.processed} processed, {stats.succeeded} succeeded, "
            f"{stats.failed} failed, {stats.skipped_no_change} unchanged, "
            f"{stats.skipped_by_schedule} not due"
        )
        return stats

    def _run_site(self, scheduled: ScheduledSite, text_only: bool) -> SiteResult:
        site = scheduled.site
        now = self._now()
        logger.info(f"Processing {site.name} ({site.website}, {scheduled.tier.value})")

        try:
            result = self.site_pipeline.process(scheduled, now, text_only=text_only)
        except PipelineError as e:
            result = self._failed(scheduled, e.stage or SiteStage.COLLECTING.value, str(e))
            logger.error(f"Site {site.name} failed: {e}")
        except Exception as e:
            result = self._failed(scheduled, None, str(e))
            logger.exception(f"Unexpected error processing {site.name}")

        visual_at = now if result.visual_ran else None
        try:
            with self.store.transaction(str(site.id)):
                self.store.sites.record_attempt(site.id, scheduled.tier, now, visual_at)
                if result.outcome == RunOutcome.FAILED:
                    self.store.activity.create(
                        CrawlActivity(
                            site_id=site.id,
                            outcome=RunOutcome.FAILED,
                            stage=result.stages[-2].value if len(result.stages) > 1 else None,
                            message=result.error or "",
                        )
                    )
        except (PipelineError, ValueError) as e:
            logger.error(f"Could not record attempt for {site.name}: {e}")
            result.warnings.append(str(e))

        return result

    @staticmethod
    def _failed(scheduled: ScheduledSite, stage: str | None, message: str) -> SiteResult:
        result = SiteResult(site_id=scheduled.site.id, site_name=scheduled.site.name)
        if stage in _STAGE_VALUES:
            result.advance(SiteStage(stage))
        result.error = message
        result.outcome = RunOutcome.FAILED
        result.advance(SiteStage.DONE_WITH_ERROR)
        return result
