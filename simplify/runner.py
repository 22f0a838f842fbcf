"""
Worker entry point: ``python -m simplify.runner --root <project> [--job <id>]``.

Acquires the single-worker lock, processes the requested job (if any) and
then drains the queue in FIFO order. Exit code 0 means the run ended
normally (including "nothing to do" and "another worker holds the lock");
1 means the worker could not start.
"""

from __future__ import annotations

import argparse
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from .config import ConfigError, StoragePaths, VariantConfigStore, get_config
from .host import FileContentStore, RuleRegistry
from .jobs.dispatcher import DispatchMode, WorkerDispatcher
from .jobs.job_queue import JobQueue
from .jobs.scheduler import TranslationScheduler
from .logging_utils import configure_logging, log
from .processing.field_filter import FieldFilterPipeline
from .providers.factory import create_provider_for_variant
from .services.budget_ledger import BudgetLedger
from .services.stats_ledger import ReportsLedger, StatsLedger
from .services.translation_cache import TranslationCache
from .worker import TranslationWorker


def build_worker(
    cfg: Dict[str, Any], sleep: Callable[[float], None] = time.sleep
) -> TranslationWorker:
    """Wire a worker from loaded settings."""
    paths = StoragePaths.from_config(cfg)
    worker_cfg = cfg.get("worker") or {}
    variants = VariantConfigStore(paths.config_dir)
    db_dir = paths.db_dir

    def provider_factory(variant):
        return create_provider_for_variant(variant, variants, cfg)

    def budget_factory(provider_id: str) -> BudgetLedger:
        return BudgetLedger(provider_id, db_dir / "budget.sqlite")

    return TranslationWorker(
        queue=JobQueue(paths.queue_dir, lock_max_age=int(worker_cfg.get("lock_max_age_seconds", 600))),
        content=FileContentStore(paths.content_dir),
        variants=variants,
        cache=TranslationCache(db_dir / "translation-cache.sqlite"),
        stats=StatsLedger(db_dir / "stats.sqlite"),
        reports=ReportsLedger(db_dir / "reports.sqlite"),
        provider_factory=provider_factory,
        budget_factory=budget_factory,
        field_filter=FieldFilterPipeline(RuleRegistry(paths.rules_dir)),
        settings=worker_cfg,
        log_dir=paths.log_dir,
        sleep=sleep,
    )


def build_scheduler(cfg: Dict[str, Any]) -> TranslationScheduler:
    """Wire the trigger path (enqueue + dispatch) from loaded settings."""
    paths = StoragePaths.from_config(cfg)
    worker_cfg = cfg.get("worker") or {}
    dispatcher = WorkerDispatcher(
        paths.root,
        mode=DispatchMode(worker_cfg.get("dispatch_mode") or DispatchMode.BACKGROUND.value),
        log_dir=paths.log_dir,
        python=worker_cfg.get("python"),
    )
    return TranslationScheduler(
        queue=JobQueue(paths.queue_dir, lock_max_age=int(worker_cfg.get("lock_max_age_seconds", 600))),
        content=FileContentStore(paths.content_dir),
        variants=VariantConfigStore(paths.config_dir),
        cache=TranslationCache(paths.db_dir / "translation-cache.sqlite"),
        dispatcher=dispatcher,
        stats=StatsLedger(paths.db_dir / "stats.sqlite"),
        reports=ReportsLedger(paths.db_dir / "reports.sqlite"),
    )


def _acquire_lock(
    queue: JobQueue, attempts: int, delay: float, sleep: Callable[[float], None]
) -> bool:
    for attempt in range(1, attempts + 1):
        if queue.acquire_worker_lock():
            return True
        if not queue.has_pending_jobs():
            log("Another worker is running and no pending jobs, exiting")
            return False
        if attempt < attempts:
            log(f"Another worker is running, waiting {delay:g}s (attempt {attempt}/{attempts})...")
            sleep(delay)
    log(f"Could not acquire lock after {attempts} attempts, exiting")
    return False


def run(
    project_root: Optional[Path] = None,
    job_id: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Process a job and drain the queue.

    Args:
        project_root: Host project directory
        job_id: Job to process first (the one that triggered this run)
        sleep: Used for lock retries and worker waits

    Returns:
        Process exit code
    """
    try:
        cfg = get_config(project_root)
        worker = build_worker(cfg, sleep=sleep)
    except (ConfigError, OSError) as e:
        log(f"Worker failed to start: {e}", level="error")
        return 1

    queue = worker.queue
    worker_cfg = cfg.get("worker") or {}

    if job_id is None and not queue.has_pending_jobs():
        log("No pending jobs, exiting")
        return 0

    attempts = int(worker_cfg.get("lock_attempts", 3))
    delay = float(worker_cfg.get("lock_retry_delay_seconds", 5))
    if not _acquire_lock(queue, attempts, delay, sleep):
        return 0
    log("Worker lock acquired")

    try:
        reset = queue.reset_stuck_jobs(
            int(worker_cfg.get("stuck_job_minutes", 5)), reports=worker.reports
        )
        if reset:
            log(f"Reset {reset} stuck job(s)")

        if job_id is not None:
            if queue.get_job(job_id) is not None:
                log(f"Processing job: {job_id}")
                worker.process_job(job_id)
            else:
                log(f"Job {job_id} no longer queued", level="warning")

        processed = 0
        seen = set()
        while True:
            nxt = queue.get_next_pending_job()
            if nxt is None or nxt.id in seen:
                break
            seen.add(nxt.id)
            worker.process_job(nxt.id)
            processed += 1
        log(f"Worker finished, processed {processed} queued job(s)")
    finally:
        queue.release_worker_lock()
        log("Worker lock released")
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Process queued translation jobs.")
    parser.add_argument("--root", type=Path, default=None, help="Host project root (default: cwd)")
    parser.add_argument("--job", default=None, help="Job id to process before draining the queue")
    parser.add_argument("--log-level", default=None, help="Override logging.level from settings")
    args = parser.parse_args(argv)

    try:
        cfg = get_config(args.root)
    except ConfigError as e:
        configure_logging("INFO")
        log(str(e), level="error")
        return 1
    paths = StoragePaths.from_config(cfg)
    configure_logging(args.log_level or cfg["logging"]["level"], log_file=paths.log_dir / "worker.log")
    return run(args.root, args.job)


if __name__ == "__main__":
    raise SystemExit(main())
