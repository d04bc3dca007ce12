"""Tests for the per-site pipeline and the batch runner."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID

import pytest
from sqlalchemy.exc import SQLAlchemyError

from clinic_radar.collaborators.base import (
    AnalysisResult,
    BaseCollector,
    BaseContentAnalyzer,
    BaseVisualRecognizer,
    RawContent,
    RecognitionResult,
    ScreenshotInput,
    Subpage,
)
from clinic_radar.collaborators.keyword import KeywordContentAnalyzer
from clinic_radar.core.enums import RunOutcome, SiteStage, Tier
from clinic_radar.core.errors import ClassificationError
from clinic_radar.core.schema import ClientProduct, TrackedSite
from clinic_radar.db.store import PipelineStore
from clinic_radar.ingestion.archive import LocalFileArchive
from clinic_radar.ingestion.config import CatalogSeed, PipelineConfig
from clinic_radar.ingestion.matcher import CatalogMatcher
from clinic_radar.ingestion.pipeline import (
    BatchOptions,
    BatchRunner,
    BatchStats,
    SitePipeline,
    VisualSession,
    estimate_cost,
)
from clinic_radar.ingestion.scheduler import ScheduledSite
from clinic_radar.ingestion.signals import load_rule

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
HOME = "https://gangnam.example.com"
OTHER = "https://seocho.example.com"

TEXT_V1 = "보유 장비 울쎄라 써마지FLX\n리쥬란힐러 2cc 30만원\n울슈 25만원"
TEXT_V2 = "보유 장비 인모드 써마지FLX\n리쥬란힐러 2cc 30만원\n울슈 25만원"


class FakeCollector(BaseCollector):
    """Serves canned page text by URL."""

    def __init__(
        self,
        pages: dict[str, str],
        subpages: dict[str, list[Subpage]] | None = None,
        images: dict[str, list[str]] | None = None,
        on_fetch=None,
    ) -> None:
        self.pages = pages
        self.subpages = subpages or {}
        self.images = images or {}
        self.on_fetch = on_fetch
        self.fetched: list[str] = []

    def fetch(self, url: str) -> RawContent | None:
        self.fetched.append(url)
        if self.on_fetch:
            self.on_fetch(url)
        text = self.pages.get(url)
        if text is None:
            return None
        return RawContent(url=url, html="", text=text)

    def find_subpages(self, raw: RawContent, base_url: str) -> list[Subpage]:
        return list(self.subpages.get(base_url, []))

    def extract_images(self, raw: RawContent, base_url: str) -> list[str]:
        return list(self.images.get(raw.url, []))

    def download_images(self, urls: list[str], max_count: int) -> list[ScreenshotInput]:
        return [ScreenshotInput(url=u, data=b"img", mime_type="image/png") for u in urls[:max_count]]


class FakeRecognizer(BaseVisualRecognizer):
    def __init__(self, equipment: list[str], fail: bool = False) -> None:
        self.equipment = equipment
        self.fail = fail
        self.calls = 0
        self.closed = 0

    def recognize(self, inputs: list[ScreenshotInput]) -> RecognitionResult:
        self.calls += 1
        if self.fail:
            raise RuntimeError("session expired")
        return RecognitionResult(equipment_names=list(self.equipment), tokens_used=100)

    def close(self) -> None:
        self.closed += 1


class RecognizerFactory:
    def __init__(self, recognizer: FakeRecognizer) -> None:
        self.recognizer = recognizer
        self.calls = 0

    def __call__(self) -> FakeRecognizer:
        self.calls += 1
        return self.recognizer


class FailingAnalyzer(BaseContentAnalyzer):
    def analyze(self, text: str) -> AnalysisResult:
        raise RuntimeError("model unavailable")


class Now:
    """Settable clock for the batch runner."""

    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig.from_dict(
        {
            "pacing": {"base_delay": 3.0, "jitter": 0},
            "collection": {"subpage_delay": 0.5, "subpage_jitter": 0},
        }
    )


@pytest.fixture
def site(store: PipelineStore) -> TrackedSite:
    site = store.sites.create(TrackedSite(name="강남클리닉", website=HOME, created_at=T0))
    store.commit()
    return site


@pytest.fixture
def make_runner(store: PipelineStore, matcher: CatalogMatcher, catalog_seed: CatalogSeed, config, clock):
    def build(collector, now: Now, analyzer=None, **kwargs) -> BatchRunner:
        return BatchRunner(
            store,
            collector,
            analyzer or KeywordContentAnalyzer(matcher),
            matcher,
            config,
            compounds=catalog_seed.compounds,
            clock=clock,
            now=now,
            **kwargs,
        )

    return build


def add_rules(store: PipelineStore) -> ClientProduct:
    product = store.products.create(ClientProduct(name="Ulthera Korea"))
    payloads = [
        {
            "name": "ulthera-removed",
            "priority": "HIGH",
            "condition": {
                "kind": "change",
                "change_types": ["removed"],
                "item_types": ["equipment"],
                "keywords": ["울쎄라"],
            },
            "title_template": "{{site_name}}: {{item_name}} removed",
        },
        {
            "name": "competitor-added",
            "condition": {"kind": "pattern", "pattern": "인모드|슈링크", "change_types": ["added"]},
            "title_template": "{{item_name}} introduced",
        },
    ]
    for payload in payloads:
        store.rules.create(load_rule(payload, product.id))
    store.commit()
    return product


class TestBatchLifecycle:
    """End-to-end runs over one site across several invocations."""

    def test_baseline_then_unchanged_then_changed(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        now = Now(T0)
        collector = FakeCollector({HOME: TEXT_V1})
        runner = make_runner(collector, now)

        first = runner.run()
        assert first.processed == 1
        assert first.succeeded == 1
        assert first.equipment_total == 2
        assert first.treatment_total == 2
        assert first.price_total == 2
        assert first.match_rate == pytest.approx(0.75)
        assert first.new_compounds == ["울슈"]
        snapshot = store.snapshots.get_latest(site.id)
        assert snapshot.sequence == 1
        assert snapshot.equipment == ["울쎄라", "써마지"]
        assert snapshot.treatments == ["리쥬란", "울슈"]
        assert store.changes.list_for_site(site.id) == []
        assert store.sites.get_by_id(site.id).last_crawled_at == T0

        now.value = T0 + timedelta(days=31)
        second = runner.run()
        assert second.skipped_no_change == 1
        assert second.succeeded == 0
        assert store.snapshots.count(site.id) == 1
        assert store.sites.get_by_id(site.id).last_crawled_at == now.value

        add_rules(store)
        collector.pages[HOME] = TEXT_V2
        now.value = T0 + timedelta(days=62)
        third = runner.run()
        assert third.succeeded == 1
        assert third.signals_emitted == 2
        changes = store.changes.list_for_site(site.id)
        assert sorted((c.change_type.value, c.item_name) for c in changes) == [
            ("added", "인모드"),
            ("removed", "울쎄라"),
        ]
        titles = sorted(s.title for s in store.signals.list_all())
        assert titles == ["강남클리닉: 울쎄라 removed", "인모드 introduced"]
        assert store.snapshots.get_latest(site.id).sequence == 2
        assert store.candidates.get_by_raw_text("울슈").discovery_count == 2

        fourth = runner.run()
        assert fourth.eligible == 0
        assert fourth.skipped_by_schedule == 1
        assert fourth.processed == 0

    def test_volatile_edit_counts_as_unchanged(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        now = Now(T0)
        collector = FakeCollector({HOME: "2월 이벤트\n" + TEXT_V1})
        runner = make_runner(collector, now)
        runner.run()

        collector.pages[HOME] = "3월 이벤트\n" + TEXT_V1
        now.value = T0 + timedelta(days=30)
        stats = runner.run()

        assert stats.skipped_no_change == 1
        assert store.snapshots.count(site.id) == 1

    def test_archive_written(self, store: PipelineStore, site: TrackedSite, make_runner, tmp_path: Path) -> None:
        archive = LocalFileArchive(tmp_path)
        make_runner(FakeCollector({HOME: TEXT_V1}), Now(T0), archive=archive).run()

        snapshot = store.snapshots.get_latest(site.id)
        pages = archive.load(snapshot.id)
        assert [p.text for p in pages] == [TEXT_V1]


class TestFailures:
    """A failing site never aborts the batch."""

    def test_collection_failure_recorded(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        other = store.sites.create(
            TrackedSite(name="서초클리닉", website=OTHER, created_at=T0 + timedelta(seconds=1))
        )
        store.commit()

        stats = make_runner(FakeCollector({OTHER: TEXT_V1}), Now(T0)).run()

        assert stats.processed == 2
        assert stats.failed == 1
        assert stats.succeeded == 1
        assert stats.errors[0]["site"] == "강남클리닉"
        activity = store.activity.list_for_site(site.id)
        assert [(a.outcome, a.stage) for a in activity] == [(RunOutcome.FAILED, "collecting")]
        assert store.sites.get_by_id(site.id).last_crawled_at == T0
        assert store.snapshots.count(site.id) == 0
        assert store.snapshots.count(other.id) == 1

    def test_fetch_exception_is_collection_error(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        def explode(url: str) -> None:
            raise ConnectionError("reset by peer")

        stats = make_runner(FakeCollector({HOME: TEXT_V1}, on_fetch=explode), Now(T0)).run()

        assert stats.failed == 1
        assert "reset by peer" in stats.errors[0]["message"]

    def test_analyzer_failure_is_fatal(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        stats = make_runner(FakeCollector({HOME: TEXT_V1}), Now(T0), analyzer=FailingAnalyzer()).run()

        assert stats.failed == 1
        assert store.activity.list_for_site(site.id)[0].stage == "extracting"
        assert store.snapshots.count(site.id) == 0

    def test_persistence_failure_writes_nothing(
        self, store: PipelineStore, site: TrackedSite, make_runner, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        now = Now(T0)
        collector = FakeCollector({HOME: TEXT_V1})
        runner = make_runner(collector, now)
        runner.run()
        prices_before = len(store.prices.list_for_site(site.id, include_outliers=True))

        def broken(change):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(store.changes, "create", broken)
        collector.pages[HOME] = TEXT_V2
        now.value = T0 + timedelta(days=30)
        stats = runner.run()

        assert stats.failed == 1
        assert store.snapshots.count(site.id) == 1
        assert len(store.prices.list_for_site(site.id, include_outliers=True)) == prices_before
        assert store.activity.list_for_site(site.id)[0].stage == "storing"

    def test_subpage_failure_is_warning(self, store: PipelineStore, site: TrackedSite, make_runner, clock) -> None:
        collector = FakeCollector(
            {HOME: TEXT_V1, f"{HOME}/doctor": "김철수 원장"},
            subpages={
                HOME: [
                    Subpage(url=f"{HOME}/doctor", page_type="doctor"),
                    Subpage(url=f"{HOME}/gone", page_type="contact"),
                ]
            },
        )

        stats = make_runner(collector, Now(T0)).run()

        assert stats.succeeded == 1
        assert stats.warnings == 1
        assert collector.fetched == [HOME, f"{HOME}/doctor", f"{HOME}/gone"]
        assert clock.sleeps == [0.5]

    def test_subpages_capped(self, store: PipelineStore, site: TrackedSite, make_runner, config) -> None:
        config.collection.max_subpages = 1
        collector = FakeCollector(
            {HOME: TEXT_V1, f"{HOME}/a": "a", f"{HOME}/b": "b"},
            subpages={HOME: [Subpage(url=f"{HOME}/a", page_type="doctor"), Subpage(url=f"{HOME}/b", page_type="doctor")]},
        )
        make_runner(collector, Now(T0)).run()
        assert collector.fetched == [HOME, f"{HOME}/a"]

    def test_classification_failure_is_warning(
        self, store: PipelineStore, site: TrackedSite, make_runner, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        now = Now(T0)
        collector = FakeCollector({HOME: TEXT_V1})
        runner = make_runner(collector, now)
        runner.run()
        add_rules(store)

        def broken(*args, **kwargs):
            raise ClassificationError("bad rule", stage="classifying")

        monkeypatch.setattr(runner.site_pipeline.classifier, "classify_all", broken)
        collector.pages[HOME] = TEXT_V2
        now.value = T0 + timedelta(days=30)
        stats = runner.run()

        assert stats.succeeded == 1
        assert stats.warnings == 1
        assert stats.signals_emitted == 0
        assert store.snapshots.count(site.id) == 2


class TestVisualSession:
    """The visual recognizer is acquired lazily and released once per batch."""

    def test_shared_and_closed_once(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        store.sites.create(TrackedSite(name="서초클리닉", website=OTHER, created_at=T0 + timedelta(seconds=1)))
        store.commit()
        recognizer = FakeRecognizer(["슈링크"])
        factory = RecognizerFactory(recognizer)
        collector = FakeCollector(
            {HOME: TEXT_V1, OTHER: TEXT_V1},
            images={HOME: [f"{HOME}/price.png"], OTHER: [f"{OTHER}/price.png"]},
        )

        stats = make_runner(collector, Now(T0), recognizer_factory=factory).run()

        assert stats.succeeded == 2
        assert factory.calls == 1
        assert recognizer.calls == 2
        assert recognizer.closed == 1
        assert stats.tokens_used == 200
        snapshot = store.snapshots.get_latest(site.id)
        assert "슈링크" in snapshot.equipment
        assert snapshot.ocr_hash is not None
        assert store.sites.get_by_id(site.id).last_visual_at == T0

    def test_recognizer_failure_degrades_to_text(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        recognizer = FakeRecognizer([], fail=True)
        collector = FakeCollector({HOME: TEXT_V1}, images={HOME: [f"{HOME}/price.png"]})

        stats = make_runner(collector, Now(T0), recognizer_factory=RecognizerFactory(recognizer)).run()

        assert stats.succeeded == 1
        assert stats.warnings == 1
        assert recognizer.closed == 1
        assert store.snapshots.get_latest(site.id).ocr_hash is None
        assert store.sites.get_by_id(site.id).last_visual_at is None

    def test_closed_when_later_site_fails(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        store.sites.create(TrackedSite(name="서초클리닉", website=OTHER, created_at=T0 + timedelta(seconds=1)))
        store.commit()
        recognizer = FakeRecognizer(["슈링크"])
        collector = FakeCollector({HOME: TEXT_V1}, images={HOME: [f"{HOME}/price.png"]})

        stats = make_runner(collector, Now(T0), recognizer_factory=RecognizerFactory(recognizer)).run()

        assert stats.failed == 1
        assert recognizer.closed == 1

    def test_text_only_never_acquires(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        factory = RecognizerFactory(FakeRecognizer(["슈링크"]))
        collector = FakeCollector({HOME: TEXT_V1}, images={HOME: [f"{HOME}/price.png"]})

        make_runner(collector, Now(T0), recognizer_factory=factory).run(BatchOptions(text_only=True))

        assert factory.calls == 0
        assert "슈링크" not in store.snapshots.get_latest(site.id).equipment

    def test_no_images_never_acquires(self, store: PipelineStore, site: TrackedSite, make_runner) -> None:
        factory = RecognizerFactory(FakeRecognizer(["슈링크"]))
        make_runner(FakeCollector({HOME: TEXT_V1}), Now(T0), recognizer_factory=factory).run()
        assert factory.calls == 0

    def test_ocr_change_reported(
        self, store: PipelineStore, site: TrackedSite, matcher, catalog_seed, config, clock
    ) -> None:
        collector = FakeCollector({HOME: TEXT_V1}, images={HOME: [f"{HOME}/price.png"]})
        pipeline = SitePipeline(
            store,
            collector,
            KeywordContentAnalyzer(matcher),
            matcher,
            config,
            compounds=catalog_seed.compounds,
            visual=VisualSession(RecognizerFactory(FakeRecognizer(["슈링크"]))),
            clock=clock,
        )
        scheduled = ScheduledSite(site=site, tier=Tier.TIER3, days_since_crawl=None)

        first = pipeline.process(scheduled, T0)
        collector.pages[HOME] = TEXT_V2
        second = pipeline.process(scheduled, T0 + timedelta(days=30))

        assert first.visual_ran and first.ocr_changed
        assert second.visual_ran
        assert not second.ocr_changed

    def test_close_is_idempotent(self) -> None:
        recognizer = FakeRecognizer([])
        session = VisualSession(RecognizerFactory(recognizer))
        assert session.available
        assert not session.acquired
        session.close()
        session.get()
        session.close()
        session.close()
        assert recognizer.closed == 1


class TestBatchControls:
    """Tests for paging, pacing, stopping and dry runs."""

    def _add_sites(self, store: PipelineStore, count: int) -> list[TrackedSite]:
        sites = [
            store.sites.create(
                TrackedSite(
                    name=f"clinic{i}",
                    website=f"https://clinic{i}.example.com",
                    created_at=T0 + timedelta(seconds=i),
                )
            )
            for i in range(count)
        ]
        store.commit()
        return sites

    def test_pacing_between_sites(self, store: PipelineStore, make_runner, clock) -> None:
        sites = self._add_sites(store, 3)
        collector = FakeCollector({s.website: TEXT_V1 for s in sites})

        make_runner(collector, Now(T0)).run()

        assert clock.sleeps == [3.0, 3.0]

    def test_limit_and_offset(self, store: PipelineStore, make_runner) -> None:
        sites = self._add_sites(store, 4)
        collector = FakeCollector({s.website: TEXT_V1 for s in sites})

        stats = make_runner(collector, Now(T0)).run(BatchOptions(limit=2, offset=1))

        assert stats.planned_sites == ["clinic1", "clinic2"]
        assert collector.fetched == [sites[1].website, sites[2].website]

    def test_stop_between_sites(self, store: PipelineStore, make_runner) -> None:
        sites = self._add_sites(store, 3)
        holder: dict[str, BatchRunner] = {}
        collector = FakeCollector(
            {s.website: TEXT_V1 for s in sites},
            on_fetch=lambda url: holder["runner"].request_stop(),
        )
        holder["runner"] = make_runner(collector, Now(T0))

        stats = holder["runner"].run()

        assert stats.processed == 1
        assert stats.succeeded == 1
        assert stats.stopped_early

    def test_dry_run_touches_nothing(self, store: PipelineStore, make_runner) -> None:
        sites = self._add_sites(store, 2)
        collector = FakeCollector({s.website: TEXT_V1 for s in sites})

        stats = make_runner(collector, Now(T0)).run(BatchOptions(dry_run=True, text_only=True))

        assert stats.dry_run
        assert stats.processed == 0
        assert stats.eligible == 2
        assert collector.fetched == []
        assert stats.estimate.sites == 2
        assert stats.estimate.tokens_per_site == 30_000
        assert store.snapshots.count() == 0
        assert all(s.last_crawled_at is None for s in store.sites.list_all())


class TestSitePipeline:
    """Direct tests of a single site's state machine."""

    def test_stage_sequence(self, store: PipelineStore, site: TrackedSite, matcher, catalog_seed, config, clock) -> None:
        pipeline = SitePipeline(
            store,
            FakeCollector({HOME: TEXT_V1}),
            KeywordContentAnalyzer(matcher),
            matcher,
            config,
            compounds=catalog_seed.compounds,
            clock=clock,
        )
        scheduled = ScheduledSite(site=site, tier=Tier.TIER3, days_since_crawl=None)

        first = pipeline.process(scheduled, T0)
        second = pipeline.process(scheduled, T0 + timedelta(days=30))

        assert first.stages == [
            SiteStage.ELIGIBLE,
            SiteStage.COLLECTING,
            SiteStage.EXTRACTING,
            SiteStage.STORING,
            SiteStage.CLASSIFYING,
            SiteStage.DONE,
        ]
        assert first.outcome == RunOutcome.SUCCEEDED
        assert isinstance(first.snapshot.id, UUID)
        assert second.stages == [SiteStage.ELIGIBLE, SiteStage.COLLECTING, SiteStage.DONE]
        assert second.outcome == RunOutcome.NO_CHANGE


class TestEstimates:
    """Tests for cost estimation and stats serialization."""

    def test_estimate_cost(self) -> None:
        full = estimate_cost(10, text_only=False)
        text = estimate_cost(10, text_only=True)

        assert full.tokens_per_site == 46_000
        assert text.tokens_per_site == 30_000
        assert full.total_tokens == 460_000
        assert full.total_seconds == 600
        assert text.total_seconds == 150
        # 460k input at $0.10/M plus 46k output at $0.40/M
        assert full.cost_usd == pytest.approx(0.0644)

    def test_stats_to_dict(self) -> None:
        stats = BatchStats(started_at=T0, estimate=estimate_cost(1, True))
        data = stats.to_dict()
        assert data["started_at"] == T0.isoformat()
        assert data["match_rate"] is None
        assert data["estimate"]["sites"] == 1
