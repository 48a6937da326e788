"""
Fan planned jobs out to a bounded pool of worker threads.

Pillow releases the GIL while decoding, resampling and encoding, so
threads give real parallelism for this workload. The producer (discovery
plus planning) runs on the calling thread and blocks once `queue_depth`
jobs are in flight, which keeps memory flat on very large trees.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Iterable, Optional, Union

from loguru import logger
from tqdm import tqdm

from image_resizer.errors import TransformError, TransformIOError
from image_resizer.planner import Job
from image_resizer.results import Failed, JobResult, ResultAggregator, Skipped, Succeeded
from image_resizer.transform import ImageTransform


def ensure_parent_dir(path: Path) -> None:
    # exist_ok makes concurrent creation of a shared parent harmless
    path.parent.mkdir(parents=True, exist_ok=True)


def run_job(job: Job, transformer: ImageTransform) -> JobResult:
    """Execute one job. Never raises; every error becomes a Failed result."""
    try:
        ensure_parent_dir(job.output_path)
    except OSError as e:
        return Failed(job.input_path, TransformIOError(job.output_path.parent, e.strerror or str(e), e))

    try:
        bytes_written = transformer.transform(job.input_path, job.output_path, job.options)
    except TransformError as e:
        return Failed(job.input_path, e)
    except Exception as e:
        logger.opt(exception=e).debug(f"Unexpected error processing {job.input_path}")
        return Failed(job.input_path, e)

    return Succeeded(job.input_path, job.output_path, bytes_written)


def log_result(result: JobResult) -> None:
    if isinstance(result, Succeeded):
        logger.info(f"{result.output_path} has been resized.")
    elif isinstance(result, Skipped):
        logger.warning(f"Skipped {result.input_path}: {result.describe()}")
    else:
        logger.error(f"Failed {result.input_path}: {result.describe()}")


class Scheduler:
    """Runs jobs on `thread_count` workers and reports every outcome."""

    def __init__(
        self,
        transformer: ImageTransform,
        thread_count: int = 1,
        queue_depth: Optional[int] = None,
        progress: bool = False,
    ):
        if thread_count < 1:
            raise ValueError("thread_count must be at least 1")
        self.transformer = transformer
        self.thread_count = thread_count
        self.queue_depth = max(queue_depth or thread_count * 2, thread_count)
        self.progress = progress

    def run(self, items: Iterable[Union[Job, Skipped, Failed]], aggregator: ResultAggregator) -> None:
        """
        Consume items until exhausted, then close the aggregator.

        Skipped and Failed items are recorded as-is. If the item iterable
        raises, jobs already submitted still finish and report before the
        error propagates.
        """
        bar = tqdm(desc="Resizing", unit="img", disable=None if self.progress else True)
        try:
            if self.thread_count == 1:
                self._run_serial(items, aggregator, bar)
            else:
                self._run_pool(items, aggregator, bar)
        finally:
            bar.close()
        aggregator.close()

    def _record(self, result: JobResult, aggregator: ResultAggregator, bar: tqdm) -> None:
        log_result(result)
        aggregator.add(result)
        bar.update(1)

    def _run_serial(self, items, aggregator: ResultAggregator, bar: tqdm) -> None:
        for item in items:
            aggregator.expect()
            if isinstance(item, (Skipped, Failed)):
                self._record(item, aggregator, bar)
            else:
                self._record(run_job(item, self.transformer), aggregator, bar)

    def _run_pool(self, items, aggregator: ResultAggregator, bar: tqdm) -> None:
        slots = threading.BoundedSemaphore(self.queue_depth)

        def collect(job: Job, future: Future) -> None:
            try:
                result = future.result()
            except Exception as e:
                result = Failed(job.input_path, e)
            try:
                self._record(result, aggregator, bar)
            finally:
                slots.release()

        with ThreadPoolExecutor(max_workers=self.thread_count, thread_name_prefix="resize") as pool:
            for item in items:
                aggregator.expect()
                if isinstance(item, (Skipped, Failed)):
                    self._record(item, aggregator, bar)
                    continue
                slots.acquire()
                future = pool.submit(run_job, item, self.transformer)
                future.add_done_callback(partial(collect, item))
