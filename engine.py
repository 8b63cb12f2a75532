"""Maintenance loop: select due documents, repair them and republish, one at a time."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Literal

import requests

from classifier import classify_document
from cms_client import CmsClient
from errors import CmsError
from fetcher import crawl as default_crawl
from fetcher import fetch_document as default_fetch_document
from generation import GenerateFn
from markup import host_of, parse, serialize, slug_from_url
from models import Document, EngineContext, PublishOutcome, PublishRequest, RepairReport
from protector import ensure_resolved, missing_fragments, protect, restore
from publisher import Publisher, PublishTargetResolver
from repairer import CheckFn, GapRepairer, SearchFn, clean_shortcodes
from schedule_store import SchedulingStore, is_due, load_record, save_record

LOGGER = logging.getLogger(__name__)

EngineState = Literal["idle", "running", "selecting", "processing", "cooling", "stopped"]
ProcessStatus = Literal["published", "failed", "current", "unchanged", "too_short", "dry_run"]


def _default_cms_factory(context: EngineContext) -> CmsClient:
    return CmsClient(context.site_url, context.username, context.password)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class MaintenanceEngine:
    """Single-worker loop over the candidate pages of one site.

    ``stop`` is cooperative: it is honored at the top of the loop, so the
    document being processed is always finished first.
    """

    def __init__(
        self,
        store: SchedulingStore,
        generate: GenerateFn,
        cms_factory: Callable[[EngineContext], CmsClient] = _default_cms_factory,
        log_callback: Callable[[str], None] | None = None,
        sleep: Callable[[float], object] | None = None,
        clock: Callable[[], datetime] = _utc_now,
        fetch_document: Callable[[str], str] = default_fetch_document,
        crawl: Callable[[str], str] = default_crawl,
        search_references: SearchFn | None = None,
        check_url: CheckFn | None = None,
        dry_run: bool = False,
    ) -> None:
        self.store = store
        self.generate = generate
        self.cms_factory = cms_factory
        self.log_callback = log_callback or LOGGER.info
        self._stop_event = threading.Event()
        self.sleep = sleep or self._stop_event.wait
        self.clock = clock
        self.fetch_document = fetch_document
        self.crawl = crawl
        self.search_references = search_references
        self.check_url = check_url
        self.dry_run = dry_run
        self.state: EngineState = "idle"
        self._context: EngineContext | None = None
        self._context_lock = threading.Lock()
        self._dry_run_seen: set[str] = set()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def context(self) -> EngineContext | None:
        with self._context_lock:
            return self._context

    def update_context(self, context: EngineContext) -> None:
        """Swap the site context; the next selection uses it."""
        with self._context_lock:
            self._context = context
        self._log(f"Context updated: {len(context.pages)} candidate pages")

    def stop(self) -> None:
        self._stop_event.set()
        self._log("Stop requested, finishing current document")

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self, context: EngineContext) -> None:
        """Run the loop until ``stop`` is called. Never raises for per-document faults."""
        self.update_context(context)
        self._stop_event.clear()
        self.state = "running"
        self._log("Maintenance engine started")

        while not self._stop_event.is_set():
            self.run_cycle()

        self.state = "stopped"
        self._log("Maintenance engine stopped")

    def run_cycle(self) -> ProcessStatus | None:
        """Select and process one document, then sleep the matching interval."""
        context = self.context
        if context is None:
            raise RuntimeError("Engine context is not set")
        policy = context.policy

        target: Document | None = None
        try:
            self.state = "selecting"
            candidates = self.select_candidates(context)
            if not candidates:
                self._log(f"No documents due, sleeping {policy.idle_sleep_seconds:.0f}s")
                self.state = "cooling"
                self.sleep(policy.idle_sleep_seconds)
                return None

            target = candidates[0]
            self.state = "processing"
            status = self.process_document(target, context)
            self.state = "cooling"
            self.sleep(policy.cooldown_seconds)
            return status
        except Exception as exc:  # the loop itself is never fatal
            LOGGER.exception("Maintenance cycle failed")
            self._log(f"Cycle error: {exc}; recovering in {policy.recovery_seconds:.0f}s")
            if target is not None:
                self._record_failure_quietly(target.id, str(exc), context)
            self.state = "cooling"
            self.sleep(policy.recovery_seconds)
            return "failed"

    def run_once(self, context: EngineContext) -> dict[str, int]:
        """Process every currently due document once, without idle waiting; returns status counts."""
        self.update_context(context)
        counts: dict[str, int] = {}
        for document in self.select_candidates(context):
            if self._stop_event.is_set():
                break
            try:
                status: str = self.process_document(document, context)
            except Exception as exc:
                LOGGER.exception("Failed processing %s", document.id)
                self._record_failure_quietly(document.id, str(exc), context)
                status = "failed"
            counts[status] = counts.get(status, 0) + 1
        return counts

    # ------------------------------------------------------------------
    # Selection and processing
    # ------------------------------------------------------------------

    def select_candidates(self, context: EngineContext) -> list[Document]:
        """Due documents, oldest content first. Documents already seen in a dry run are left out."""
        now = self.clock()
        lookback = timedelta(hours=context.policy.lookback_hours)
        due = [
            page
            for page in context.pages
            if page.id not in self._dry_run_seen
            and is_due(load_record(self.store, page.id), now, lookback)
        ]
        return sorted(due, key=lambda page: page.days_old if page.days_old is not None else -1, reverse=True)

    def process_document(self, document: Document, context: EngineContext) -> ProcessStatus:
        policy = context.policy
        cms = self.cms_factory(context)
        self._log(f"Processing: {document.title} ({document.id})")

        raw = self.fetch_raw_content(document, cms)
        if len(raw) < policy.min_content_chars:
            self._log(f"Skipping {document.id}: only {len(raw)} chars of content")
            self._stamp(document.id)
            return "too_short"

        site_host = host_of(context.site_url) or None
        verdict = classify_document(document, raw, policy, site_host)
        if not verdict.should_update:
            self._log(f"Up to date: {document.title} ({verdict.reason})")
            self._stamp(document.id)
            return "current"
        self._log(f"Update needed: {verdict.reason}")
        if self.dry_run:
            self._dry_run_seen.add(document.id)
            return "dry_run"

        cleaned, shortcodes_removed = clean_shortcodes(raw)
        tree = parse(cleaned)
        fragments = protect(tree)
        self._log(f"Protected {len(fragments)} fragments")

        repairer = GapRepairer(
            self.generate,
            policy,
            search_references=self.search_references,
            check_url=self.check_url,
            sleep=self.sleep,
        )
        report = repairer.repair(
            tree,
            fragments,
            document,
            context,
            RepairReport(shortcodes_removed=shortcodes_removed),
        )
        if report.total_changes == 0:
            self._log(f"No changes for {document.title}, skipping publish")
            self._stamp(document.id)
            return "unchanged"

        content = ensure_resolved(restore(serialize(tree), fragments))
        lost = missing_fragments(content, fragments)
        if lost:
            outcome = PublishOutcome(success=False, message=f"Protected fragments lost during repair: {', '.join(lost)}")
        else:
            request = PublishRequest(
                document_id=document.id,
                title=report.optimized_title or "",
                slug=document.slug or slug_from_url(document.id),
                content=content,
                meta_description=report.optimized_description or "",
                is_refresh=True,
            )
            publisher = Publisher(cms, PublishTargetResolver(cms, self.fetch_document))
            outcome = publisher.publish(request)

        if outcome.success:
            self._record_success(document, outcome)
            return "published"
        self._record_failure(document.id, outcome.message, context)
        return "failed"

    def fetch_raw_content(self, document: Document, cms: CmsClient) -> str:
        """Stored markup from the CMS edit context, falling back to crawling the live page."""
        slug = document.slug or slug_from_url(document.id)
        if slug:
            try:
                found = cms.fetch_raw_content(slug)
            except (CmsError, requests.RequestException) as exc:
                LOGGER.warning("CMS content fetch failed for %s: %s", slug, exc)
                found = None
            if found is not None:
                title, markup = found
                if title:
                    document.title = title
                if markup:
                    return markup
        self._log(f"Falling back to crawl for {document.id}")
        return self.crawl(document.id)

    # ------------------------------------------------------------------
    # Scheduling records
    # ------------------------------------------------------------------

    def _stamp(self, document_id: str) -> None:
        record = load_record(self.store, document_id)
        record.last_processed_at = self.clock()
        record.next_eligible_at = None
        save_record(self.store, record)

    def _record_success(self, document: Document, outcome: PublishOutcome) -> None:
        record = load_record(self.store, document.id)
        record.last_processed_at = self.clock()
        record.failure_count = 0
        record.next_eligible_at = None
        save_record(self.store, record)
        self._log(f"SUCCESS|{document.title}|{outcome.link or document.id}")

    def _record_failure(self, document_id: str, reason: str, context: EngineContext) -> None:
        policy = context.policy
        record = load_record(self.store, document_id)
        record.failure_count += 1
        now = self.clock()
        if record.failure_count >= policy.failure_cap:
            record.next_eligible_at = now + timedelta(hours=policy.long_cooldown_hours)
            self._log(
                f"FAILED ({record.failure_count}x) {document_id}: {reason}; skipping for "
                f"{policy.long_cooldown_hours:g}h"
            )
        else:
            record.next_eligible_at = now + timedelta(minutes=policy.short_cooldown_minutes)
            self._log(
                f"FAILED ({record.failure_count}/{policy.failure_cap}) {document_id}: {reason}; "
                f"retrying in {policy.short_cooldown_minutes:g} min"
            )
        save_record(self.store, record)

    def _record_failure_quietly(self, document_id: str, reason: str, context: EngineContext) -> None:
        try:
            self._record_failure(document_id, reason, context)
        except Exception:
            LOGGER.exception("Could not record failure for %s", document_id)

    def _log(self, message: str) -> None:
        self.log_callback(message)
