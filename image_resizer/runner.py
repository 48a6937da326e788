"""Wire discovery, planning, scheduling and aggregation into one run."""

from pathlib import Path
from typing import Iterator, List, Optional, Union

from loguru import logger

from image_resizer.discovery import check_input, discover
from image_resizer.errors import InputUnreadable
from image_resizer.options import OptionSet
from image_resizer.planner import Job, JobPlanner, prepare_output_root
from image_resizer.results import Failed, ResultAggregator, RunSummary, Skipped
from image_resizer.scheduler import Scheduler
from image_resizer.transform import ImageTransform, PillowTransform


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def plan_jobs(input_path: Path, output_path: Optional[Path], options: OptionSet) -> Iterator[Union[Job, Skipped, Failed]]:
    """
    Lazily plan every file discovered under input_path.

    Subdirectories that cannot be listed come out as Failed results so they
    show up in the summary and the exit code.
    """
    planner = JobPlanner(input_path, output_path, options)

    # An output root nested inside the input tree must not feed its own results back in
    nested_output = None
    if planner.input_is_dir and planner.output_root is not None:
        if planner.output_root != planner.input_root and _is_within(planner.output_root, planner.input_root):
            nested_output = planner.output_root

    unreadable: List[InputUnreadable] = []

    for candidate in discover(input_path, on_unreadable=unreadable.append):
        while unreadable:
            error = unreadable.pop(0)
            yield Failed(error.path, error)
        if nested_output is not None and _is_within(candidate.absolute(), nested_output):
            logger.debug(f"Ignoring {candidate} inside the output directory")
            continue
        yield planner.plan(candidate)

    for error in unreadable:
        yield Failed(error.path, error)


def run(
    input_path: Path,
    output_path: Optional[Path],
    options: OptionSet,
    transformer: Optional[ImageTransform] = None,
    progress: bool = False,
    queue_depth: Optional[int] = None,
) -> RunSummary:
    """
    Process input_path and return the run summary.

    Configuration and discovery problems raise before any job runs.
    Per-file problems end up in the summary.
    """
    check_input(input_path)
    prepare_output_root(input_path, output_path)

    logger.info(
        f"Resizing {input_path} (side maximum {options.side_maximum}px, "
        f"{options.thread_count} thread(s))"
    )

    aggregator = ResultAggregator()
    scheduler = Scheduler(
        transformer or PillowTransform(),
        thread_count=options.thread_count,
        queue_depth=queue_depth,
        progress=progress,
    )
    scheduler.run(plan_jobs(input_path, output_path, options), aggregator)
    summary = aggregator.finalize()

    logger.info(
        f"Finished: {summary.succeeded} resized, {len(summary.skipped)} skipped, "
        f"{summary.failed} failed"
    )
    return summary
