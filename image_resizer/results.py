"""
Job outcomes and their aggregation into a run summary.

Workers hand each JobResult to a ResultAggregator; the aggregator is the
only mutable state shared between threads and guards it with a lock.
"""

import json
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from loguru import logger


class SkipReason(str, Enum):
    UNSUPPORTED_FORMAT = "unsupported format"
    GIF_NOT_ALLOWED = "gif not allowed"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Succeeded:
    input_path: Path
    output_path: Path
    bytes_written: int


@dataclass(frozen=True)
class Skipped:
    input_path: Path
    reason: SkipReason
    detail: Optional[str] = None

    def describe(self) -> str:
        if self.reason is SkipReason.CONFLICT and self.detail:
            return f"{self.detail} exists (use --force to overwrite)"
        if self.detail:
            return f"{self.reason.value} ({self.detail})"
        return self.reason.value


@dataclass(frozen=True)
class Failed:
    input_path: Path
    error: BaseException

    def describe(self) -> str:
        return str(self.error) or type(self.error).__name__


JobResult = Union[Succeeded, Skipped, Failed]


@dataclass(frozen=True)
class RunSummary:
    succeeded: int
    skipped: Tuple[Skipped, ...]
    failures: Tuple[Failed, ...]
    bytes_written: int = 0

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def total(self) -> int:
        return self.succeeded + len(self.skipped) + len(self.failures)

    @property
    def counts(self) -> Tuple[int, int, int]:
        return (self.succeeded, len(self.skipped), len(self.failures))

    @property
    def exit_code(self) -> int:
        return 1 if self.failures else 0


class ResultAggregator:
    """
    Thread-safe accumulator of JobResults.

    The producer calls expect() for each job it hands out and close() after
    the last one; finalize() then waits until every announced job has
    reported.
    """

    def __init__(self):
        self._lock = threading.Condition()
        self._expected = 0
        self._closed = False
        self._received = 0
        self._succeeded = 0
        self._bytes_written = 0
        self._skipped: List[Skipped] = []
        self._failures: List[Failed] = []
        self._summary: Optional[RunSummary] = None

    def expect(self, count: int = 1) -> None:
        """Announce `count` more results while the expected total is still open."""
        with self._lock:
            if self._closed:
                raise RuntimeError("expected result count is already final")
            self._expected += count

    def close(self) -> None:
        """Mark the expected total as final."""
        with self._lock:
            self._closed = True
            self._lock.notify_all()

    def add(self, result: JobResult) -> None:
        with self._lock:
            if self._summary is not None:
                raise RuntimeError("aggregator already finalized")
            self._received += 1
            if isinstance(result, Succeeded):
                self._succeeded += 1
                self._bytes_written += result.bytes_written
            elif isinstance(result, Skipped):
                self._skipped.append(result)
            elif isinstance(result, Failed):
                self._failures.append(result)
            else:
                raise TypeError(f"not a job result: {result!r}")
            self._lock.notify_all()

    def _complete(self) -> bool:
        return self._closed and self._received >= self._expected

    def finalize(self, timeout: Optional[float] = None) -> RunSummary:
        """Wait for every expected result and build the summary exactly once."""
        with self._lock:
            if self._summary is not None:
                return self._summary
            if not self._lock.wait_for(self._complete, timeout=timeout):
                raise TimeoutError(
                    f"only {self._received} of {self._expected} job results arrived"
                )
            if self._received != self._expected:
                raise RuntimeError(
                    f"received {self._received} results for {self._expected} jobs"
                )
            # Sort so the summary does not depend on completion order
            self._summary = RunSummary(
                succeeded=self._succeeded,
                skipped=tuple(sorted(self._skipped, key=lambda r: str(r.input_path))),
                failures=tuple(sorted(self._failures, key=lambda r: str(r.input_path))),
                bytes_written=self._bytes_written,
            )
            return self._summary


def print_summary(summary: RunSummary, title: str = "IMAGE RESIZER SUMMARY") -> None:
    """Print the end-of-run banner to stdout."""
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(f"Total files: {summary.total}")
    print(f"Resized: {summary.succeeded}")
    print(f"Skipped: {len(summary.skipped)}")
    print(f"Failed: {summary.failed}")

    if summary.skipped:
        print("\nSkipped files:")
        for item in summary.skipped:
            print(f"  {item.input_path}: {item.describe()}")

    if summary.failures:
        print("\nFailed files:")
        for item in summary.failures:
            print(f"  {item.input_path}: {item.describe()}")
    print("=" * 60)


def generate_report(summary: RunSummary, input_path: Path, output_path: Optional[Path]) -> dict:
    """Build a JSON-serializable report of a run"""
    total = summary.total
    return {
        "input": str(input_path),
        "output": str(output_path) if output_path is not None else None,
        "processed_at": datetime.now().isoformat(),
        "total_files": total,
        "succeeded": summary.succeeded,
        "skipped": len(summary.skipped),
        "failed": summary.failed,
        "success_rate": summary.succeeded / total if total > 0 else 0,
        "bytes_written": summary.bytes_written,
        "skips": [
            {
                "source": str(r.input_path),
                "reason": r.reason.value,
                "detail": r.detail,
            }
            for r in summary.skipped
        ],
        "errors": [
            {
                "source": str(r.input_path),
                "error": r.describe(),
                "type": type(r.error).__name__,
            }
            for r in summary.failures
        ],
    }


def write_report(report: dict, report_path: Path) -> None:
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with open(report_path, 'w', encoding='utf-8') as f:
        json.dump(report, f, indent=2)
    logger.info(f"Run report saved to: {report_path}")
