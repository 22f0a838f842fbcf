"""
Translation worker: executes one queued job end to end.

Pipeline for a job:

1. Mark ``processing``, resolve page and variant config
2. Choose strategy: ``full`` when the target translation does not exist yet
   or the job was requested manually, otherwise snapshot diff
3. Filter candidate fields (``title`` is never translated)
4. Translate field by field: cache lookup, masking, budget pre-flight,
   provider call, post-processing, cache write, budget record
5. Merge translated fields over the existing target content and write it
6. Finalize: stats + report ledgers, delete the job document

Any failure aborts the job; the job is marked ``failed`` (a ``timeout`` set
meanwhile is kept) and still finalized. Fields are processed sequentially
with a delay in between to stay under provider rate limits.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import NotFoundError, SimplifyError
from .host import ContentStore, Page, field_text
from .jobs.job_queue import JobQueue
from .logging_utils import WorkerLog, log
from .models.job import Job, JobStatus, Strategy
from .models.provider import CompletionOptions, ModelConfig
from .models.variant import VariantConfig
from .processing.change_detector import ChangeSet, detect_changes, get_change_summary
from .processing.field_filter import FieldFilterPipeline
from .processing.field_grouper import demask_field_contents, mask_field_contents
from .processing.prompt_builder import (
    build_system_prompt,
    category_prompt_for,
    normalize_quotes,
    prompt_hash,
)
from .processing.response_parser import STRUCTURED_FIELD_TYPES, compact_json, normalize_text
from .providers.base import Provider
from .services.budget_ledger import (
    BudgetExceededError,
    BudgetLedger,
    calculate_cost,
    estimate_tokens,
)
from .services.stats_ledger import ReportsLedger, StatsLedger, TranslationRecord
from .services.translation_cache import TranslationCache

EXCLUDED_FIELDS = ("title",)
PROVENANCE_FIELD = "simplify"
RATE_LIMIT_MARKERS = ("429", "quota", "rate limit")

DEFAULT_WORKER_SETTINGS: Dict[str, Any] = {
    "retry_limit": 3,
    "field_delay_seconds": 2,
    "rate_limit_wait_seconds": 30,
    "retry_wait_seconds": 5,
}

ProviderFactory = Callable[[VariantConfig], Tuple[Provider, ModelConfig]]
BudgetFactory = Callable[[str], BudgetLedger]


class FieldTranslationError(SimplifyError):
    """A single field could not be translated (retried by the worker)."""

    pass


@dataclass
class FieldTranslation:
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: Optional[float] = None
    cached: bool = False
    called_provider: bool = False


@dataclass
class FieldsOutcome:
    translated: Dict[str, str] = field(default_factory=dict)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0

    @property
    def tokens_used(self) -> int:
        return self.prompt_tokens + self.completion_tokens


def is_rate_limit_error(message: str) -> bool:
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class TranslationWorker:
    """
    Processes queued translation jobs one at a time.

    All collaborators are injected; ``provider_factory`` resolves a variant
    config to ``(provider, model config)`` and ``budget_factory`` returns the
    budget ledger for a provider id. ``sleep`` is used for retry waits and
    the inter-field delay.
    """

    def __init__(
        self,
        queue: JobQueue,
        content: ContentStore,
        variants,
        cache: TranslationCache,
        stats: StatsLedger,
        reports: ReportsLedger,
        provider_factory: ProviderFactory,
        budget_factory: BudgetFactory,
        field_filter: FieldFilterPipeline,
        settings: Optional[Dict[str, Any]] = None,
        log_dir: Optional[Path] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.content = content
        self.variants = variants
        self.cache = cache
        self.stats = stats
        self.reports = reports
        self.provider_factory = provider_factory
        self.budget_factory = budget_factory
        self.field_filter = field_filter
        self.settings = {**DEFAULT_WORKER_SETTINGS, **(settings or {})}
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.sleep = sleep

    # ---- job loop ----

    def process_next_job(self) -> bool:
        job = self.queue.get_next_pending_job()
        if job is None:
            log("No pending jobs in queue")
            return False
        return self.process_job(job.id)

    def process_job(self, job_id: str) -> bool:
        """
        Run one job to completion.

        Returns:
            True on success, False if the job is missing or failed
        """
        job = self.queue.get_job(job_id)
        if job is None:
            log(f"Job not found: {job_id}", level="error")
            return False

        worker_log = self._worker_log(job.variant_code)
        started = time.monotonic()
        log(f"Starting job {job_id} for page {job.page_id}")
        if worker_log:
            worker_log.job_start(job.page_id, job.display_title)

        try:
            self._run(job)
        except Exception as e:
            duration = time.monotonic() - started
            message = str(e) or type(e).__name__
            log(f"Job {job_id} failed: {message}", level="error")
            if worker_log:
                worker_log.job_failure(job.page_id, job.display_title, message, duration)
            try:
                if not self._timed_out(job_id):
                    self.queue.set_job_status(job_id, JobStatus.FAILED, message)
                failed = self.queue.get_job(job_id)
                if failed is not None:
                    self.finalize_job(failed, success=False, error=message)
                else:
                    log(f"Could not reload job {job_id} for finalization", level="error")
            except Exception as finalize_error:
                log(f"Failed to finalize job {job_id}: {finalize_error}", level="error")
            return False

        done = self.queue.get_job(job_id)
        if done is not None:
            duration = time.monotonic() - started
            if worker_log:
                worker_log.job_success(
                    done.page_id,
                    done.display_title,
                    done.result.tokens_used,
                    done.result.cost or 0.0,
                    duration,
                )
            try:
                self.finalize_job(done, success=True)
            except Exception as finalize_error:
                log(f"Failed to finalize job {job_id}: {finalize_error}", level="error")
        log(f"Job {job_id} completed successfully")
        return True

    def _timed_out(self, job_id: str) -> bool:
        current = self.queue.get_job(job_id)
        if current is not None and current.status == JobStatus.TIMEOUT:
            log(f"Job {job_id} was already marked timeout, keeping that status", level="warning")
            return True
        return False

    def _worker_log(self, variant_code: str) -> Optional[WorkerLog]:
        if self.log_dir is None:
            return None
        return WorkerLog(self.log_dir, variant_code)

    def _run(self, job: Job) -> None:
        self.queue.set_job_status(job.id, JobStatus.PROCESSING)

        page = self.content.get_page(job.page_id)
        if page is None:
            raise NotFoundError("Page", job.page_id)
        variant = self.variants.load_variant(job.variant_code)
        if variant is None:
            raise NotFoundError("Variant config", job.variant_code)

        language = variant.language_code
        target_exists = self.content.has_translation(page.id, language)
        source = self.content.read_content(page.id)
        target = self.content.read_content(page.id, language) if target_exists else dict(source)

        changes = self.plan(job, page, variant, source, target_exists)
        log(get_change_summary(changes))
        log(f"Fields to translate ({len(changes.fields)}): {', '.join(changes.fields)}")
        self.queue.update_job_strategy(job.id, changes.strategy, changes.fields)

        outcome = self.translate_fields(job, page, variant, changes.fields, target_exists)

        merged = dict(target)
        merged.update(outcome.translated)
        provider_label = variant.provider or "unknown"
        merged[PROVENANCE_FIELD] = f"{provider_label} | {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        self.content.write_content(page.id, language, merged)

        if not self._timed_out(job.id):
            self.queue.set_job_status(job.id, JobStatus.COMPLETED)
        self.queue.update_job_result(
            job.id,
            {
                "translatedFields": len(outcome.translated),
                "tokensUsed": outcome.tokens_used,
                "promptTokens": outcome.prompt_tokens,
                "completionTokens": outcome.completion_tokens,
                "cost": outcome.cost,
            },
        )

    def plan(
        self,
        job: Job,
        page: Page,
        variant: VariantConfig,
        source: Dict[str, Any],
        target_exists: bool,
    ) -> ChangeSet:
        """Pick the strategy and the filtered list of fields for a job."""
        if not target_exists or job.is_manual:
            reason = "variant does not exist" if not target_exists else "manual translation requested"
            log(f"Forcing full translation - reason: {reason}")
            candidates = [name for name in source if name not in EXCLUDED_FIELDS]
            fields = self.field_filter.filter_fields(page, candidates, source, variant)
            return ChangeSet(
                strategy=Strategy.FULL,
                fields=fields,
                change_percentage=100.0,
                total_fields=len(fields),
                changed_fields=len(fields),
            )

        structured = [
            name for name in source if page.field_type(name) in STRUCTURED_FIELD_TYPES
        ]
        changes = detect_changes(source, job.source_snapshot, structured_fields=structured)
        candidates = [name for name in changes.fields if name not in EXCLUDED_FIELDS]
        changes.fields = self.field_filter.filter_fields(page, candidates, source, variant)
        return changes

    # ---- field loop ----

    def translate_fields(
        self,
        job: Job,
        page: Page,
        variant: VariantConfig,
        fields: List[str],
        target_exists: bool,
    ) -> FieldsOutcome:
        """
        Translate ``fields`` one by one.

        Raises:
            BudgetExceededError: Pre-flight budget check failed (not retried)
            NotFoundError: Page vanished mid-job (not retried)
            FieldTranslationError: A field still failed after all retries
        """
        provider, model_config = self.provider_factory(variant)
        budget = self.budget_factory(model_config.provider_type.value)

        retry_limit = int(self.settings["retry_limit"])
        delay = float(self.settings["field_delay_seconds"])
        total = len(fields)
        outcome = FieldsOutcome()
        log(f"Processing {total} fields individually with {delay:g}s delay between fields")

        for index, name in enumerate(fields):
            number = index + 1
            log(f"Processing field {number}/{total}: {name}")
            self.queue.update_job_progress(job.id, index, total, name)

            result = self._translate_with_retries(
                page, name, variant, provider, model_config, budget, target_exists, retry_limit,
                job.variant_code,
            )
            outcome.translated[name] = result.text
            outcome.prompt_tokens += result.prompt_tokens
            outcome.completion_tokens += result.completion_tokens
            if result.cost is not None:
                outcome.cost += result.cost

            self.queue.update_job_progress(job.id, number, total, None)
            if number < total and delay > 0:
                self.sleep(delay)
        return outcome

    def _translate_with_retries(
        self,
        page: Page,
        field_name: str,
        variant: VariantConfig,
        provider: Provider,
        model_config: ModelConfig,
        budget: BudgetLedger,
        target_exists: bool,
        retry_limit: int,
        job_variant: str,
    ) -> FieldTranslation:
        attempt = 0
        while True:
            try:
                result = self.translate_single_field(
                    page, field_name, variant, provider, model_config, target_exists, budget
                )
            except BudgetExceededError as e:
                message = f"Failed to translate field {field_name}: {e}"
                log(message, level="error")
                raise BudgetExceededError(
                    message, period_type=e.period_type, limit=e.limit, spent=e.spent
                ) from e
            except NotFoundError:
                raise
            except Exception as e:
                attempt += 1
                if attempt > retry_limit:
                    message = f"Failed to translate field {field_name} after {retry_limit} retries: {e}"
                    log(message, level="error")
                    raise FieldTranslationError(message) from e
                wait = (
                    self.settings["rate_limit_wait_seconds"]
                    if is_rate_limit_error(str(e))
                    else self.settings["retry_wait_seconds"]
                )
                log(
                    f"Field {field_name} failed (attempt {attempt}), waiting {wait}s before retry: {e}",
                    level="warning",
                )
                worker_log = self._worker_log(job_variant)
                if worker_log:
                    worker_log.job_retry(page.id, page.title or page.id, attempt, str(e))
                self.sleep(wait)
                continue

            if result.called_provider:
                budget.record(result.prompt_tokens, result.completion_tokens, result.cost)
            cost = f"${result.cost}" if result.cost is not None else "?"
            log(
                f"Field {field_name} completed successfully "
                f"(tokens: {result.prompt_tokens + result.completion_tokens}, cost: {cost})"
            )
            return result

    def translate_single_field(
        self,
        page: Page,
        field_name: str,
        variant: VariantConfig,
        provider: Provider,
        model_config: ModelConfig,
        target_exists: bool,
        budget: Optional[BudgetLedger] = None,
    ) -> FieldTranslation:
        """
        Translate one field of the current page content.

        The page is re-read on every attempt so a retry sees fresh content.
        """
        fresh = self.content.get_page(page.id)
        if fresh is None:
            raise NotFoundError("Page", page.id)
        source = self.content.read_content(fresh.id)
        language = variant.language_code

        if not self.field_filter.filter_fields(fresh, [field_name], source, variant):
            raise FieldTranslationError(f"Field {field_name} is filtered out (opt-out or disabled)")

        field_type = fresh.field_type(field_name) or "text"
        type_config = variant.field_type_instructions.get(field_type)
        if type_config is None:
            raise FieldTranslationError(f"No configuration for field type: {field_type}")

        source_text = field_text(source.get(field_name))
        if not source_text.strip():
            return FieldTranslation(text="")
        source_text = normalize_quotes(source_text)

        system_prompt = build_system_prompt(
            variant, type_config.instruction, category_prompt_for(variant, type_config)
        )
        current_hash = prompt_hash(system_prompt)

        if fresh.uuid and target_exists:
            cached = self.cache.get(fresh.uuid, language, field_name, source_text, current_hash)
            if cached is not None:
                log(f"Cache HIT for field: {field_name}")
                return FieldTranslation(text=cached, cached=True)
        log(f"Cache MISS for field: {field_name} - translating...")

        masked_contents, maps = mask_field_contents({field_name: source_text}, variant.masking)
        masked = masked_contents[field_name]

        estimated_input = estimate_tokens(system_prompt + masked)
        estimated_output = estimate_tokens(masked) * 2
        estimated_cost = calculate_cost(estimated_input, estimated_output, model_config.pricing)
        if estimated_cost is not None:
            ledger = budget or self.budget_factory(model_config.provider_type.value)
            ledger.ensure_within_limit(estimated_input + estimated_output, estimated_cost)

        options = CompletionOptions(output_token_limit=model_config.output_token_limit)
        if model_config.supports_temperature and variant.temperature is not None:
            options.temperature = variant.temperature

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": masked},
        ]
        provider_id = model_config.provider_type.value
        try:
            result = provider.complete(messages, model_config.model, options)
        except Exception as e:
            self.stats.log_api_call(
                provider_id, model_config.model, 0, 0, None,
                success=False, error=str(e), context=f"field:{field_name}",
                page_id=fresh.id, language_code=language,
            )
            raise

        text = result.text.strip()
        text = demask_field_contents({field_name: text}, maps)[field_name]
        text = normalize_text(text, field_type)
        text = compact_json(text, field_type)

        if fresh.uuid:
            self.cache.set(
                fresh.uuid, language, field_name, field_type, source_text, text, current_hash
            )
            log(f"Cached translation for field: {field_name}")

        cost = calculate_cost(result.prompt_tokens, result.completion_tokens, model_config.pricing)
        self.stats.log_api_call(
            provider_id, result.model or model_config.model,
            result.prompt_tokens, result.completion_tokens, cost,
            context=f"field:{field_name}", page_id=fresh.id, language_code=language,
        )
        return FieldTranslation(
            text=text,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            cost=cost,
            called_provider=True,
        )

    # ---- finalize ----

    def finalize_job(self, job: Job, success: bool, error: Optional[str] = None) -> None:
        """Write the stats and report ledgers for a finished job, then delete it."""
        page = self.content.get_page(job.page_id)
        variant = self.variants.load_variant(job.variant_code)
        config_id = variant.provider if variant and variant.provider else ""
        model_config = self.variants.load_model_config(config_id) if config_id else None

        record = TranslationRecord(
            page_id=job.page_id,
            page_uuid=page.uuid if page else job.page_uuid,
            page_title=job.page_title,
            language_code=job.variant_code,
            provider_id=model_config.provider_type.value if model_config else config_id,
            model=model_config.model if model_config else config_id,
            action="manual" if job.is_manual else "auto",
            strategy=job.strategy.value if job.strategy else "unknown",
            status=self._report_status(job, success),
        )
        if success:
            record.fields_translated = job.result.translated_fields
            record.input_tokens = job.result.prompt_tokens
            record.output_tokens = job.result.completion_tokens
            record.cost = job.result.cost
        if not success or job.status == JobStatus.TIMEOUT:
            record.error = job.error or error or "Unknown error"

        self.stats.log_translation(record)
        self.reports.log_translation(record)
        self.queue.delete_job(job.id)
        log(f"Job {job.id} finalized and deleted")

    @staticmethod
    def _report_status(job: Job, success: bool) -> str:
        if job.status == JobStatus.TIMEOUT:
            return "TIMEOUT"
        return "SUCCESS" if success else "FAILED"
