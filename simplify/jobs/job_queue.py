"""
Durable FIFO job queue, one JSON document per job.

Layout::

    <queue dir>/
      job_1736846400_9f1c2b7a0d3e4f51.json
      .worker.lock

Writes go through a temp file and ``os.replace`` so a reader never sees a
half-written job. Corrupt or unreadable job files are skipped when
enumerating.

Usage:
    queue = JobQueue(paths.queue_dir)
    job = queue.add_job("blog/post-1", "Post 1", "de-x-ls", snapshot)
    nxt = queue.get_next_pending_job()
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..logging_utils import log
from ..models.job import (
    ACTIVE_STATUSES,
    Job,
    JobProgress,
    JobResult,
    JobStatus,
    Strategy,
    now_timestamp,
)
from ..services.stats_ledger import TranslationRecord
from .worker_lock import DEFAULT_MAX_AGE_SECONDS, WorkerLock

STALE_JOB_MINUTES = 30
LOCK_FILENAME = ".worker.lock"


class JobQueue:
    def __init__(self, queue_dir: Path, lock_max_age: int = DEFAULT_MAX_AGE_SECONDS):
        self.queue_dir = Path(queue_dir)
        self.queue_dir.mkdir(parents=True, exist_ok=True)
        self.lock = WorkerLock(self.queue_dir / LOCK_FILENAME, max_age=lock_max_age)

    # ---- storage ----

    def _job_path(self, job_id: str) -> Path:
        return self.queue_dir / f"{job_id}.json"

    def _load(self, path: Path) -> Optional[Job]:
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            return Job.from_dict(data)
        except (OSError, ValueError, ValidationError) as e:
            log(f"Skipping unreadable job file {path.name}: {e}", level="warning")
            return None

    def _save(self, job: Job) -> bool:
        path = self._job_path(job.id)
        tmp = path.with_suffix(".json.tmp")
        try:
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(job.to_dict(), fh, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as e:
            log(f"Failed to save job {job.id}: {e}", level="error")
            return False
        return True

    def _all_jobs(self) -> List[Job]:
        jobs = []
        for path in sorted(self.queue_dir.glob("job_*.json")):
            job = self._load(path)
            if job is not None:
                jobs.append(job)
        return jobs

    # ---- queries ----

    def add_job(
        self,
        page_id: str,
        page_title: Optional[str],
        variant_code: str,
        snapshot: Dict[str, Any],
        is_manual: bool = True,
        page_uuid: Optional[str] = None,
    ) -> Job:
        job = Job(
            page_id=page_id,
            page_title=page_title,
            page_uuid=page_uuid,
            variant_code=variant_code,
            is_manual=is_manual,
            source_snapshot=dict(snapshot or {}),
        )
        if not self._save(job):
            raise OSError(f"Could not write job file for {page_id}")
        log(f"Queued job {job.id} for {page_id} ({variant_code})")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        path = self._job_path(job_id)
        if not path.exists():
            return None
        return self._load(path)

    def get_jobs_by_status(self, status: JobStatus) -> List[Job]:
        status = JobStatus(status)
        return [job for job in self._all_jobs() if job.status == status]

    def get_jobs_for_variant(self, variant_code: str) -> List[Job]:
        return [job for job in self._all_jobs() if job.variant_code == variant_code]

    def get_next_pending_job(self) -> Optional[Job]:
        """Oldest pending job by ``createdAt`` (ties broken by id)."""
        pending = self.get_jobs_by_status(JobStatus.PENDING)
        if not pending:
            return None
        pending.sort(key=lambda job: (job.created_datetime or datetime.min, job.id))
        return pending[0]

    def has_pending_jobs(self) -> bool:
        return self.get_next_pending_job() is not None

    def get_running_job_for_page(self, page_id: str, variant_code: str) -> Optional[Job]:
        """
        Active (pending/processing) job for a page and variant.

        Jobs created more than 30 minutes ago are marked ``timeout`` and ignored.
        """
        cutoff = datetime.now() - timedelta(minutes=STALE_JOB_MINUTES)
        for job in self._all_jobs():
            if job.page_id != page_id or job.variant_code != variant_code:
                continue
            if job.status not in ACTIVE_STATUSES:
                continue
            created = job.created_datetime
            if created is not None and created < cutoff:
                self.set_job_status(
                    job.id, JobStatus.TIMEOUT, f"Job timed out after {STALE_JOB_MINUTES} minutes"
                )
                continue
            return job
        return None

    # ---- updates ----

    def update_job_progress(
        self, job_id: str, current: int, total: int, current_field: Optional[str] = None
    ) -> bool:
        job = self.get_job(job_id)
        if job is None:
            return False
        job.progress = JobProgress(
            current=current,
            total=total,
            current_field=current_field,
            percentage=round(current / total * 100) if total > 0 else 0,
        )
        return self._save(job)

    def set_job_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        job = self.get_job(job_id)
        if job is None:
            return False
        job.status = JobStatus(status)
        if error is not None:
            job.error = error
        if job.status == JobStatus.PROCESSING and job.started_at is None:
            job.started_at = now_timestamp()
        return self._save(job)

    def update_job_strategy(self, job_id: str, strategy: Strategy, fields: List[str]) -> bool:
        job = self.get_job(job_id)
        if job is None:
            return False
        job.strategy = Strategy(strategy)
        job.fields_to_translate = list(fields)
        return self._save(job)

    def update_job_result(self, job_id: str, result: Dict[str, Any]) -> bool:
        """Merge ``result`` (camelCase or snake_case keys) into the stored result."""
        job = self.get_job(job_id)
        if job is None:
            return False
        aliases = {f.alias: name for name, f in JobResult.model_fields.items() if f.alias}
        merged = job.result.model_dump()
        for key, value in result.items():
            merged[aliases.get(key, key)] = value
        job.result = JobResult.model_validate(merged)
        return self._save(job)

    def cancel_job(self, job_id: str) -> bool:
        return self.set_job_status(job_id, JobStatus.CANCELLED)

    def delete_job(self, job_id: str) -> bool:
        try:
            self._job_path(job_id).unlink()
        except FileNotFoundError:
            return False
        return True

    def _report_timeout(self, job: Job, message: str, reports) -> None:
        if reports is not None:
            reports.log_translation(
                TranslationRecord(
                    page_id=job.page_id,
                    page_uuid=job.page_uuid,
                    page_title=job.display_title,
                    language_code=job.variant_code,
                    status="TIMEOUT",
                    action="manual" if job.is_manual else "auto",
                    strategy=job.strategy.value if job.strategy else None,
                    error=message,
                )
            )
        self.delete_job(job.id)
        log(f"Reset stuck job {job.id} ({job.page_id}): {message}", level="warning")

    def reset_stuck_jobs(self, timeout_minutes: int = 10, reports=None) -> int:
        """
        Time out jobs that have been processing longer than ``timeout_minutes``.

        Each one is marked ``timeout``, written to the reports ledger (when
        given) with status ``TIMEOUT`` and deleted. Jobs already marked
        ``timeout`` by ``get_running_job_for_page`` are reported and deleted
        the same way.

        Returns:
            Number of jobs reset
        """
        cutoff = datetime.now() - timedelta(minutes=timeout_minutes)
        reset = 0
        for job in self.get_jobs_by_status(JobStatus.PROCESSING):
            started = job.started_datetime or job.created_datetime
            if started is None or started >= cutoff:
                continue
            message = f"Translation timed out after {timeout_minutes} minutes"
            self.set_job_status(job.id, JobStatus.TIMEOUT, message)
            self._report_timeout(job, message, reports)
            reset += 1
        for job in self.get_jobs_by_status(JobStatus.TIMEOUT):
            message = job.error or f"Job timed out after {STALE_JOB_MINUTES} minutes"
            self._report_timeout(job, message, reports)
            reset += 1
        return reset

    # ---- worker lock ----

    def acquire_worker_lock(self) -> bool:
        return self.lock.acquire()

    def release_worker_lock(self) -> bool:
        return self.lock.release()

    def is_worker_running(self) -> bool:
        return self.lock.is_held()
