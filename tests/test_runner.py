"""
Tests for the worker entry point (lock handling and queue draining).
"""

import json
import os
import time
from unittest.mock import MagicMock

import pytest
import responses

from simplify.jobs.dispatcher import DispatchMode
from simplify.jobs.job_queue import LOCK_FILENAME, JobQueue
from simplify.models import JobStatus
from simplify.runner import build_scheduler, main, run

from conftest import PAGE_ID, PAGE_META, PAGE_UUID, SOURCE_CONTENT, VARIANT, write_page

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def _mock_openai():
    responses.add(
        responses.POST,
        OPENAI_URL,
        json={
            "model": "gpt-4o",
            "choices": [{"message": {"role": "assistant", "content": "Einfach"}}],
            "usage": {"prompt_tokens": 8, "completion_tokens": 2},
        },
        status=200,
    )


@pytest.fixture
def queue(paths):
    return JobQueue(paths.queue_dir)


def _enqueue(queue, page_id=PAGE_ID, title="Post 1"):
    return queue.add_job(page_id, title, VARIANT, SOURCE_CONTENT, page_uuid=PAGE_UUID)


class TestRun:
    def test_nothing_to_do(self, project, queue):
        assert run(project, sleep=MagicMock()) == 0

        assert not (queue.queue_dir / LOCK_FILENAME).exists()

    @responses.activate
    def test_processes_requested_job(self, project, paths, queue):
        _mock_openai()
        job = _enqueue(queue)

        assert run(project, job.id, sleep=MagicMock()) == 0

        target = json.loads(
            (paths.content_dir / PAGE_ID / f"content.{VARIANT}.json").read_text(encoding="utf-8")
        )
        assert target["headline"] == "Einfach"
        assert queue.get_job(job.id) is None
        assert not (queue.queue_dir / LOCK_FILENAME).exists()
        assert len(responses.calls) == 3

    @responses.activate
    def test_drains_queue_in_order(self, project, paths, queue):
        _mock_openai()
        meta = dict(PAGE_META, uuid="page://second", title="Post 2")
        write_page(paths.content_dir, "blog/post-2", meta, SOURCE_CONTENT)
        _enqueue(queue)
        _enqueue(queue, page_id="blog/post-2", title="Post 2")

        assert run(project, sleep=MagicMock()) == 0

        assert queue.has_pending_jobs() is False
        assert (paths.content_dir / "blog/post-2" / f"content.{VARIANT}.json").exists()

    def test_failed_job_does_not_stop_draining(self, project, paths, queue):
        queue.add_job("gone/page", "Gone", VARIANT, {})
        queue.add_job("also/gone", "Also gone", VARIANT, {})

        assert run(project, sleep=MagicMock()) == 0

        assert queue.get_jobs_for_variant(VARIANT) == []

    def test_busy_lock_with_pending_jobs_gives_up(self, project, queue):
        (queue.queue_dir / LOCK_FILENAME).write_text(
            json.dumps({"pid": os.getpid(), "created": int(time.time())}), encoding="utf-8"
        )
        job = _enqueue(queue)
        sleep = MagicMock()

        assert run(project, sleep=sleep) == 0

        assert sleep.call_count == 2
        assert queue.get_job(job.id).status == JobStatus.PENDING
        assert (queue.queue_dir / LOCK_FILENAME).exists()

    def test_stuck_jobs_are_reset_first(self, project, paths, queue):
        job = queue.add_job("gone/page", "Gone", VARIANT, {})
        queue.set_job_status(job.id, JobStatus.PROCESSING)
        path = queue.queue_dir / f"{job.id}.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        data["startedAt"] = "2020-01-01 00:00:00"
        path.write_text(json.dumps(data), encoding="utf-8")
        assert run(project, "job_missing", sleep=MagicMock()) == 0

        assert queue.get_job(job.id) is None

    def test_missing_root_fails(self, tmp_path):
        assert run(tmp_path / "nope") == 1


class TestMain:
    def test_main_without_jobs(self, project):
        assert main(["--root", str(project), "--log-level", "DEBUG"]) == 0

    def test_main_with_missing_root(self, tmp_path):
        assert main(["--root", str(tmp_path / "nope")]) == 1


class TestBuildScheduler:
    def test_dispatch_mode_from_settings(self, settings, paths):
        scheduler = build_scheduler(settings)

        assert scheduler.dispatcher.mode == DispatchMode.INLINE
        assert scheduler.dispatcher.project_root == paths.root
        assert scheduler.queue.queue_dir == paths.queue_dir
