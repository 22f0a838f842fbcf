"""
Trigger path: turning translation requests into queued jobs.

The scheduler never translates anything itself. It enqueues a job with a
snapshot of the page's current content and asks the dispatcher to start a
worker unless one is already running.
"""

from __future__ import annotations

from typing import List, Optional

from ..errors import NotFoundError
from ..host import ContentStore, Page
from ..logging_utils import log
from ..models.job import Job
from ..models.variant import PageMode, VariantConfig
from ..processing.change_detector import create_snapshot
from ..services.stats_ledger import ReportsLedger, StatsLedger, TranslationRecord
from ..services.translation_cache import TranslationCache
from .dispatcher import WorkerDispatcher
from .job_queue import JobQueue

CANCELLED_STATUS = "CANCELLED"


class TranslationScheduler:
    def __init__(
        self,
        queue: JobQueue,
        content: ContentStore,
        variants,
        cache: TranslationCache,
        dispatcher: WorkerDispatcher,
        stats: Optional[StatsLedger] = None,
        reports: Optional[ReportsLedger] = None,
    ):
        self.queue = queue
        self.content = content
        self.variants = variants
        self.cache = cache
        self.dispatcher = dispatcher
        self.stats = stats
        self.reports = reports

    def _variant(self, variant_code: str) -> VariantConfig:
        variant = self.variants.load_variant(variant_code)
        if variant is None:
            raise NotFoundError("Variant config", variant_code)
        return variant

    def _enqueue(self, page: Page, variant_code: str, is_manual: bool) -> Job:
        snapshot = create_snapshot(self.content.read_content(page.id))
        return self.queue.add_job(
            page.id, page.title or page.id, variant_code, snapshot,
            is_manual=is_manual, page_uuid=page.uuid,
        )

    def _start_worker(self, job: Job) -> None:
        if self.queue.is_worker_running():
            log(f"Worker already running, job queued: {job.id}")
            return
        self.dispatcher.dispatch(job)

    def request_translation(
        self,
        page_id: str,
        variant_code: str,
        is_manual: bool = True,
        clear_cache: bool = False,
    ) -> Optional[Job]:
        """
        Queue a translation of one page.

        Returns the already-active job instead of a duplicate when one exists.

        Raises:
            NotFoundError: If the page or the variant config does not exist
        """
        page = self.content.get_page(page_id)
        if page is None:
            raise NotFoundError("Page", page_id)
        variant = self._variant(variant_code)
        log(f"Translation requested for page {page_id} -> {variant_code}")

        running = self.queue.get_running_job_for_page(page_id, variant_code)
        if running is not None:
            log(f"Translation already in progress for {page_id}: {running.id}")
            return running

        if clear_cache and page.uuid:
            removed = self.cache.clear_page(page.uuid, variant.language_code)
            log(f"Cleared {removed} cache entries for page {page.uuid}, language {variant.language_code}")

        job = self._enqueue(page, variant_code, is_manual)
        self._start_worker(job)
        return job

    def on_page_saved(self, page_id: str, variant_codes: List[str]) -> List[Job]:
        """Automatic translation after an edit; only variants where the page is in ``auto`` mode."""
        page = self.content.get_page(page_id)
        if page is None or not page.uuid:
            return []
        jobs = []
        for code in variant_codes:
            variant = self.variants.load_variant(code)
            if variant is None or variant.page_mode(page.uuid) != PageMode.AUTO:
                continue
            if self.queue.get_running_job_for_page(page_id, code) is not None:
                log(f"Job already running for {page_id} -> {code}, skipping")
                continue
            job = self._enqueue(page, code, is_manual=False)
            jobs.append(job)
            self._start_worker(job)
        return jobs

    def _bulk(self, variant_code: str, missing_only: bool) -> int:
        variant = self._variant(variant_code)
        count = 0
        first: Optional[Job] = None
        pages_by_uuid = {p.uuid: p for p in self.content.list_pages() if p.uuid}
        for entry in variant.pages:
            if entry.mode == PageMode.OFF:
                continue
            page = pages_by_uuid.get(entry.uuid)
            if page is None or page.template in variant.opt_out_templates:
                continue
            if missing_only and self.content.has_translation(page.id, variant.language_code):
                continue
            if self.queue.get_running_job_for_page(page.id, variant_code) is not None:
                continue
            if not missing_only:
                self.cache.clear_page(entry.uuid, variant.language_code)
            job = self._enqueue(page, variant_code, is_manual=entry.mode == PageMode.MANUAL)
            first = first or job
            count += 1
        if first is not None:
            self._start_worker(first)
        log(f"Added {count} pages to queue for {variant_code}")
        return count

    def request_missing(self, variant_code: str) -> int:
        """Queue every enabled page of a variant that has no translation yet."""
        return self._bulk(variant_code, missing_only=True)

    def request_all(self, variant_code: str) -> int:
        """Queue every enabled page of a variant, clearing its cache first."""
        return self._bulk(variant_code, missing_only=False)

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a queued job: report it and delete the document.

        A worker already processing the job is not interrupted.
        """
        job = self.queue.get_job(job_id)
        if job is None:
            return False
        self.queue.cancel_job(job_id)
        variant = self.variants.load_variant(job.variant_code)
        record = TranslationRecord(
            page_id=job.page_id,
            page_uuid=job.page_uuid,
            page_title=job.page_title,
            language_code=job.variant_code,
            provider_id=variant.provider if variant else None,
            model=variant.provider if variant else None,
            action="manual" if job.is_manual else "auto",
            strategy=job.strategy.value if job.strategy else "full",
            status=CANCELLED_STATUS,
            error="Job cancelled by user",
        )
        if self.stats is not None:
            self.stats.log_translation(record)
        if self.reports is not None:
            self.reports.log_translation(record)
        self.queue.delete_job(job_id)
        log(f"Job {job_id} cancelled by user")

        pending = self.queue.get_next_pending_job()
        if pending is not None:
            self._start_worker(pending)
        return True
