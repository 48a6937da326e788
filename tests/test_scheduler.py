from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from image_resizer.errors import DecodeError, EncodeError, InputUnreadable
from image_resizer.options import OptionSet
from image_resizer.planner import Job
from image_resizer.results import Failed, ResultAggregator, Skipped, SkipReason, Succeeded
from image_resizer.scheduler import Scheduler, run_job


class FakeTransform:
    """Deterministic stand-in: fails for names listed in `failures`."""

    def __init__(self, failures: dict | None = None, delay: float = 0.0):
        self.failures = failures or {}
        self.delay = delay
        self.calls: list[Path] = []
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def transform(self, input_path: Path, output_path: Path, options: OptionSet) -> int:
        with self._lock:
            self.calls.append(input_path)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            error = self.failures.get(input_path.name)
            if error is not None:
                raise error(input_path, "synthetic failure")
            output_path.write_bytes(b"x" * len(input_path.name))
            return len(input_path.name)
        finally:
            with self._lock:
                self.active -= 1


def _jobs(tmp_path: Path, count: int, options: OptionSet, shared_parent: bool = False) -> list[Job]:
    jobs = []
    for i in range(count):
        name = f"img{i:03d}.jpg"
        src = tmp_path / "in" / name
        src.parent.mkdir(parents=True, exist_ok=True)
        src.write_bytes(b"")
        sub = "shared" if shared_parent else f"d{i % 7}"
        jobs.append(Job(src, tmp_path / "out" / sub / "deeper" / name, options, "JPEG"))
    return jobs


def _run(jobs, transformer, threads: int, queue_depth: int | None = None):
    aggregator = ResultAggregator()
    Scheduler(transformer, thread_count=threads, queue_depth=queue_depth).run(iter(jobs), aggregator)
    return aggregator.finalize(timeout=30)


@pytest.mark.parametrize("threads", [1, 4])
def test_every_job_runs_exactly_once(tmp_path: Path, threads: int) -> None:
    options = OptionSet(side_maximum=10, thread_count=threads)
    jobs = _jobs(tmp_path, 40, options)
    fake = FakeTransform()

    summary = _run(jobs, fake, threads)

    assert sorted(fake.calls) == sorted(job.input_path for job in jobs)
    assert summary.counts == (40, 0, 0)
    assert summary.exit_code == 0


def test_single_and_multi_threaded_runs_agree(tmp_path: Path) -> None:
    failures = {"img003.jpg": DecodeError, "img017.jpg": EncodeError}
    serial = _run(_jobs(tmp_path / "a", 25, OptionSet(side_maximum=10)), FakeTransform(failures), 1)
    parallel = _run(_jobs(tmp_path / "b", 25, OptionSet(side_maximum=10)), FakeTransform(failures, delay=0.001), 6)

    assert serial.counts == parallel.counts == (23, 0, 2)
    assert [f.input_path.name for f in serial.failures] == [f.input_path.name for f in parallel.failures]


def test_failure_does_not_abort_other_jobs(tmp_path: Path) -> None:
    options = OptionSet(side_maximum=10)
    jobs = _jobs(tmp_path, 10, options)
    summary = _run(jobs, FakeTransform({"img000.jpg": DecodeError}), 3)

    assert summary.counts == (9, 0, 1)
    assert summary.exit_code == 1
    failure = summary.failures[0]
    assert isinstance(failure.error, DecodeError)
    assert failure.input_path == jobs[0].input_path


def test_unexpected_exception_becomes_failed(tmp_path: Path) -> None:
    class Exploding:
        def transform(self, input_path, output_path, options):
            raise RuntimeError("boom")

    job = _jobs(tmp_path, 1, OptionSet(side_maximum=10))[0]
    result = run_job(job, Exploding())
    assert isinstance(result, Failed)
    assert "boom" in result.describe()


def test_shared_parent_directories_are_created_concurrently(tmp_path: Path) -> None:
    options = OptionSet(side_maximum=10)
    jobs = _jobs(tmp_path, 30, options, shared_parent=True)
    summary = _run(jobs, FakeTransform(), 8)

    assert summary.counts == (30, 0, 0)
    assert len(list((tmp_path / "out" / "shared" / "deeper").iterdir())) == 30


def test_skips_are_forwarded_without_running(tmp_path: Path) -> None:
    options = OptionSet(side_maximum=10)
    jobs = _jobs(tmp_path, 3, options)
    skip = Skipped(tmp_path / "in" / "anim.gif", SkipReason.GIF_NOT_ALLOWED)
    fake = FakeTransform()

    summary = _run([jobs[0], skip, jobs[1], jobs[2]], fake, 2)

    assert summary.counts == (3, 1, 0)
    assert len(fake.calls) == 3
    assert summary.exit_code == 0


def test_pool_never_exceeds_thread_count(tmp_path: Path) -> None:
    options = OptionSet(side_maximum=10)
    fake = FakeTransform(delay=0.005)
    _run(_jobs(tmp_path, 20, options), fake, 3, queue_depth=3)
    assert 1 <= fake.max_active <= 3


def test_producer_error_waits_for_in_flight_jobs(tmp_path: Path) -> None:
    options = OptionSet(side_maximum=10)
    jobs = _jobs(tmp_path, 5, options)
    fake = FakeTransform(delay=0.01)
    aggregator = ResultAggregator()

    def items():
        yield from jobs
        raise OSError("walk failed")

    with pytest.raises(OSError):
        Scheduler(fake, thread_count=2).run(items(), aggregator)

    aggregator.close()
    assert aggregator.finalize(timeout=5).counts == (5, 0, 0)
    assert all(isinstance(job, Job) for job in jobs)
    assert len(fake.calls) == 5


def test_succeeded_result_carries_bytes_written(tmp_path: Path) -> None:
    job = _jobs(tmp_path, 1, OptionSet(side_maximum=10))[0]
    result = run_job(job, FakeTransform())
    assert isinstance(result, Succeeded)
    assert result.bytes_written == len("img000.jpg")
    assert job.output_path.exists()


@pytest.mark.parametrize("threads", [1, 3])
def test_failed_items_are_recorded_without_running(tmp_path: Path, threads: int) -> None:
    options = OptionSet(side_maximum=10)
    jobs = _jobs(tmp_path, 2, options)
    unlistable = tmp_path / "in" / "locked"
    failed = Failed(unlistable, InputUnreadable(unlistable))
    fake = FakeTransform()

    summary = _run([jobs[0], failed, jobs[1]], fake, threads)

    assert summary.counts == (2, 0, 1)
    assert summary.failures[0].input_path == unlistable
    assert len(fake.calls) == 2
    assert summary.exit_code == 1
