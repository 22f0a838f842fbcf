"""
Starting a worker for a freshly queued job.

Two modes, chosen by ``worker.dispatch_mode`` in settings:

- ``background``: spawn ``python -m simplify.runner`` as a detached process
  with its output in ``workers/<variant>/worker-<job id>.log``
- ``inline``: run the worker in the calling process (for hosts that cannot
  spawn processes). Also used automatically when spawning fails.
"""

from __future__ import annotations

import subprocess
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from ..logging_utils import log
from ..models.job import Job


class DispatchMode(str, Enum):
    BACKGROUND = "background"
    INLINE = "inline"


@dataclass
class DispatchResult:
    job_id: str
    method: str
    success: bool = True
    pid: Optional[int] = None
    exit_code: Optional[int] = None
    message: str = ""


class WorkerDispatcher:
    def __init__(
        self,
        project_root: Path,
        mode: DispatchMode = DispatchMode.BACKGROUND,
        log_dir: Optional[Path] = None,
        python: Optional[str] = None,
        inline_runner: Optional[Callable[..., int]] = None,
    ):
        self.project_root = Path(project_root)
        self.mode = DispatchMode(mode)
        self.log_dir = Path(log_dir) if log_dir is not None else self.project_root / "logs"
        self.python = python or sys.executable
        self._inline_runner = inline_runner

    def command(self, job: Job) -> List[str]:
        return [
            self.python, "-m", "simplify.runner",
            "--root", str(self.project_root),
            "--job", job.id,
        ]

    def worker_log_path(self, job: Job) -> Path:
        return self.log_dir / "workers" / job.variant_code / f"worker-{job.id}.log"

    def dispatch(self, job: Job) -> DispatchResult:
        if self.mode == DispatchMode.INLINE:
            return self._run_inline(job)
        try:
            return self._spawn(job)
        except OSError as e:
            log(f"Could not start background worker ({e}), running inline", level="warning")
            return self._run_inline(job)

    def _spawn(self, job: Job) -> DispatchResult:
        log_path = self.worker_log_path(job)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.command(job)
        log(f"Starting worker: {' '.join(cmd)}")
        with log_path.open("ab") as out:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                cwd=str(self.project_root),
                start_new_session=True,
            )
        # Reap on exit, otherwise the pid stays alive as a zombie
        threading.Thread(target=proc.wait, name=f"reap-worker-{proc.pid}", daemon=True).start()
        log(f"Worker started with PID: {proc.pid}")
        return DispatchResult(
            job_id=job.id,
            method=DispatchMode.BACKGROUND.value,
            pid=proc.pid,
            message="Translation started in background",
        )

    def _run_inline(self, job: Job) -> DispatchResult:
        runner = self._inline_runner
        if runner is None:
            # Deferred: the runner imports the whole worker stack
            from ..runner import run as runner
        code = runner(self.project_root, job.id)
        return DispatchResult(
            job_id=job.id,
            method=DispatchMode.INLINE.value,
            success=code == 0,
            exit_code=code,
            message="Translation processed inline",
        )
