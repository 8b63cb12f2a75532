"""Tests for the maintenance loop: selection, processing outcomes and failure backoff."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock, patch

from cms_client import CmsClient
from config import Policy
from engine import MaintenanceEngine
from errors import CmsError, GenerationError
from models import ClassificationVerdict, Document, EngineContext, RepairReport, ScheduleRecord
from schedule_store import InMemorySchedulingStore, load_record, save_record
from sitemap_feed import parse_document

_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
_POLICY = Policy(freshness_year=2026)
_DOCUMENT_URL = "https://example.com/tomato-guide/"
_API_LINK = '<link rel="https://api.w.org/" href="https://example.com/wp-json/wp/v2/posts/42" />'

_RAW_ARTICLE = "<h2>Growing tomatoes</h2>" + (
    "<p>Our 2024 tomato trials compared drip lines with hand watering across twelve raised beds.</p>" * 5
)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _unavailable(prompt_key: str, args: Sequence[Any], response_format: str = "json") -> str:
    raise GenerationError("rate_limit", "quota exhausted")


def _document(url: str = _DOCUMENT_URL, days_old: int | None = 120) -> Document:
    slug = url.rstrip("/").rsplit("/", 1)[-1]
    return Document(id=url, slug=slug, title="Old tomato guide", days_old=days_old)


def _context(pages: list[Document]) -> EngineContext:
    return EngineContext(
        site_url="https://example.com",
        username="editor",
        password="app-password",
        pages=pages,
        policy=_POLICY,
    )


def _cms(raw: str = _RAW_ARTICLE) -> MagicMock:
    cms = MagicMock(spec=CmsClient)
    cms.fetch_raw_content.return_value = ("Old tomato guide", raw)
    cms.find_by_slug.return_value = None
    cms.update_record.return_value = {"id": 42, "link": _DOCUMENT_URL}
    return cms


class _Harness:
    """Engine wired to in-memory fakes, recording sleeps and log lines."""

    def __init__(self, cms: MagicMock | None = None, dry_run: bool = False) -> None:
        self.cms = cms or _cms()
        self.store = InMemorySchedulingStore()
        self.clock = _Clock(_NOW)
        self.sleeps: list[float] = []
        self.logs: list[str] = []
        self.crawl = MagicMock(return_value=_RAW_ARTICLE)
        self.engine = MaintenanceEngine(
            self.store,
            _unavailable,
            cms_factory=lambda context: self.cms,
            log_callback=self.logs.append,
            sleep=self.sleeps.append,
            clock=self.clock,
            fetch_document=MagicMock(return_value=f"<html><head>{_API_LINK}</head></html>"),
            crawl=self.crawl,
            dry_run=dry_run,
        )

    def record(self, document_id: str = _DOCUMENT_URL) -> ScheduleRecord:
        return load_record(self.store, document_id)


# ---------------------------------------------------------------------------
# Processing outcomes
# ---------------------------------------------------------------------------


def test_stale_document_is_repaired_and_published() -> None:
    harness = _Harness()
    save_record(harness.store, ScheduleRecord(document_id=_DOCUMENT_URL, failure_count=2))
    document = _document()

    status = harness.engine.process_document(document, _context([document]))

    assert status == "published"
    endpoint = harness.cms.update_record.call_args.kwargs["endpoint"]
    payload = harness.cms.update_record.call_args.args[1]
    assert endpoint == "https://example.com/wp-json/wp/v2/posts/42"
    assert "Our 2026 tomato trials" in payload["content"]
    assert "application/ld+json" in payload["content"]
    record = harness.record()
    assert record.failure_count == 0
    assert record.next_eligible_at is None
    assert record.last_processed_at == _NOW
    assert f"SUCCESS|Old tomato guide|{_DOCUMENT_URL}" in harness.logs


def test_refresh_keeps_cms_title_when_no_new_title_is_generated() -> None:
    cms = _cms()
    cms.fetch_raw_content.return_value = ("How I Grow Tomatoes Indoors: A Practical Walkthrough", _RAW_ARTICLE)
    harness = _Harness(cms)
    document = parse_document(_DOCUMENT_URL, None, _NOW)
    assert document.title == "Tomato Guide"

    status = harness.engine.process_document(document, _context([document]))

    payload = harness.cms.update_record.call_args.args[1]
    assert status == "published"
    assert "title" not in payload
    assert document.title == "How I Grow Tomatoes Indoors: A Practical Walkthrough"
    assert f"SUCCESS|How I Grow Tomatoes Indoors: A Practical Walkthrough|{_DOCUMENT_URL}" in harness.logs


def test_publish_failure_schedules_short_retry() -> None:
    cms = _cms()
    cms.update_record.side_effect = CmsError("Sorry, you are not allowed to edit this post.", status_code=403)
    harness = _Harness(cms)
    document = _document()

    status = harness.engine.process_document(document, _context([document]))

    record = harness.record()
    assert status == "failed"
    assert record.failure_count == 1
    assert record.next_eligible_at == _NOW + timedelta(minutes=30)
    assert any("not allowed to edit" in line for line in harness.logs)


def test_short_content_is_stamped_and_skipped() -> None:
    harness = _Harness(_cms(raw="<p>Stub.</p>"))
    document = _document()

    status = harness.engine.process_document(document, _context([document]))

    assert status == "too_short"
    assert harness.record().last_processed_at == _NOW
    harness.cms.update_record.assert_not_called()


def test_current_document_is_stamped_without_repair() -> None:
    harness = _Harness()
    document = _document()
    verdict = ClassificationVerdict(should_update=False, reason="Content is current and fully optimized")

    with patch("engine.classify_document", return_value=verdict), patch("engine.GapRepairer") as mock_repairer:
        status = harness.engine.process_document(document, _context([document]))

    assert status == "current"
    assert harness.record().last_processed_at == _NOW
    mock_repairer.assert_not_called()


def test_repair_without_changes_skips_publish() -> None:
    harness = _Harness()
    document = _document()

    with patch("engine.GapRepairer") as mock_repairer:
        mock_repairer.return_value.repair.return_value = RepairReport()
        status = harness.engine.process_document(document, _context([document]))

    assert status == "unchanged"
    assert harness.record().last_processed_at == _NOW
    harness.cms.update_record.assert_not_called()


def test_dry_run_classifies_without_writing() -> None:
    harness = _Harness(dry_run=True)
    document = _document()

    status = harness.engine.process_document(document, _context([document]))

    assert status == "dry_run"
    assert harness.store.get(f"schedule:{_DOCUMENT_URL}") is None
    harness.cms.update_record.assert_not_called()


def test_lost_protected_fragment_blocks_publish() -> None:
    raw = _RAW_ARTICLE + '<figure class="wp-block-image"><img src="/beds.jpg" alt="Raised tomato beds"/></figure>'
    harness = _Harness(_cms(raw=raw))
    document = _document()

    def _drop_everything(tree, fragments, document, context, report):  # type: ignore[no-untyped-def]
        tree.clear()
        tree.append("Rewritten body")
        report.years_updated = 1
        return report

    with patch("engine.GapRepairer") as mock_repairer:
        mock_repairer.return_value.repair.side_effect = _drop_everything
        status = harness.engine.process_document(document, _context([document]))

    assert status == "failed"
    assert harness.record().failure_count == 1
    assert any("Protected fragments lost" in line for line in harness.logs)
    harness.cms.update_record.assert_not_called()


def test_cms_fetch_failure_falls_back_to_crawl() -> None:
    cms = _cms()
    cms.fetch_raw_content.side_effect = CmsError("Bad gateway", status_code=502)
    harness = _Harness(cms, dry_run=True)
    document = _document()

    harness.engine.process_document(document, _context([document]))

    harness.crawl.assert_called_once_with(_DOCUMENT_URL)


# ---------------------------------------------------------------------------
# Selection and the loop
# ---------------------------------------------------------------------------


def test_candidates_are_ordered_oldest_first_and_skip_cooling_documents() -> None:
    harness = _Harness()
    pages = [
        _document("https://example.com/a/", days_old=10),
        _document("https://example.com/b/", days_old=None),
        _document("https://example.com/c/", days_old=90),
        _document("https://example.com/d/", days_old=45),
        _document("https://example.com/e/", days_old=400),
    ]
    save_record(
        harness.store,
        ScheduleRecord(document_id="https://example.com/e/", failure_count=3, next_eligible_at=_NOW + timedelta(hours=2)),
    )
    save_record(
        harness.store,
        ScheduleRecord(document_id="https://example.com/d/", last_processed_at=_NOW - timedelta(hours=25)),
    )

    candidates = harness.engine.select_candidates(_context(pages))

    assert [page.slug for page in candidates] == ["c", "d", "a", "b"]


def test_idle_cycle_sleeps_the_idle_interval() -> None:
    harness = _Harness()
    harness.engine.update_context(_context([]))

    assert harness.engine.run_cycle() is None
    assert harness.sleeps == [_POLICY.idle_sleep_seconds]


def test_repeated_failures_escalate_to_long_cooldown() -> None:
    harness = _Harness()
    document = _document()
    harness.engine.update_context(_context([document]))

    with patch.object(harness.engine, "process_document", side_effect=RuntimeError("boom")):
        assert harness.engine.run_cycle() == "failed"
        assert harness.record().next_eligible_at == _NOW + timedelta(minutes=30)

        assert harness.engine.run_cycle() is None

        harness.clock.advance(minutes=31)
        assert harness.engine.run_cycle() == "failed"
        harness.clock.advance(minutes=31)
        assert harness.engine.run_cycle() == "failed"

    record = harness.record()
    assert record.failure_count == 3
    assert record.next_eligible_at == harness.clock.now + timedelta(hours=24)
    assert harness.sleeps == [
        _POLICY.recovery_seconds,
        _POLICY.idle_sleep_seconds,
        _POLICY.recovery_seconds,
        _POLICY.recovery_seconds,
    ]

    harness.clock.advance(hours=23)
    assert harness.engine.select_candidates(_context([document])) == []
    harness.clock.advance(hours=1)
    assert harness.engine.select_candidates(_context([document])) == [document]


def test_dry_run_loop_moves_on_to_the_next_document() -> None:
    harness = _Harness(dry_run=True)
    pages = [
        _document("https://example.com/a/", days_old=300),
        _document("https://example.com/b/", days_old=100),
    ]
    harness.engine.update_context(_context(pages))

    statuses = [harness.engine.run_cycle() for _ in range(3)]

    slugs = [call.args[0] for call in harness.cms.fetch_raw_content.call_args_list]
    assert statuses == ["dry_run", "dry_run", None]
    assert slugs == ["a", "b"]
    assert harness.store.get("schedule:https://example.com/a/") is None
    assert harness.sleeps[-1] == _POLICY.idle_sleep_seconds


def test_failed_bookkeeping_does_not_break_the_loop() -> None:
    harness = _Harness()
    harness.engine.update_context(_context([_document()]))

    with patch.object(harness.engine, "process_document", side_effect=RuntimeError("boom")), \
         patch.object(harness.store, "set", side_effect=OSError("No space left on device")):
        assert harness.engine.run_cycle() == "failed"

    assert harness.sleeps == [_POLICY.recovery_seconds]
    assert harness.record().failure_count == 0


def test_processed_cycle_sleeps_cooldown() -> None:
    harness = _Harness()
    harness.engine.update_context(_context([_document()]))

    with patch.object(harness.engine, "process_document", return_value="current") as mock_process:
        assert harness.engine.run_cycle() == "current"

    mock_process.assert_called_once()
    assert harness.sleeps == [_POLICY.cooldown_seconds]


def test_run_once_counts_statuses() -> None:
    harness = _Harness()
    pages = [_document(f"https://example.com/p{i}/", days_old=i) for i in range(3)]

    with patch.object(harness.engine, "process_document", side_effect=["published", RuntimeError("boom"), "current"]):
        counts = harness.engine.run_once(_context(pages))

    assert counts == {"published": 1, "failed": 1, "current": 1}
    assert harness.record("https://example.com/p1/").failure_count == 1


def test_stop_ends_the_loop_after_current_cycle() -> None:
    harness = _Harness()

    def _sleep_then_stop(seconds: float) -> None:
        harness.sleeps.append(seconds)
        harness.engine.stop()

    harness.engine.sleep = _sleep_then_stop

    harness.engine.start(_context([]))

    assert harness.engine.state == "stopped"
    assert harness.engine.stopped is True
    assert harness.sleeps == [_POLICY.idle_sleep_seconds]
    assert "Maintenance engine stopped" in harness.logs
