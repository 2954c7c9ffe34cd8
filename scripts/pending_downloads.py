#!/usr/bin/env python3
"""List queued downloads in the order the worker will take them."""
from pathlib import Path
import sys

# Make ``src`` imports work when executing this script directly from the
# repository root. Unit tests set ``PYTHONPATH`` explicitly so this is only
# needed for manual runs.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from config_utils import data_dir, load_config
from log_utils import get_logger
from models import Job
from store import Store

log = get_logger().bind(script=__file__)


def format_job(job: Job) -> str:
    return (
        f"{job.sequence_number} {job.chat_id} {job.message_id} "
        f"{job.media_type.value} {job.retry_count}/{job.max_retries}"
    )


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    root = Path(argv[0]) if argv else data_dir(load_config())
    jobs = sorted(Store(root).read_pending_queue(), key=lambda j: j.sequence_number)
    log.debug("Pending jobs", count=len(jobs), root=str(root))
    for job in jobs:
        sys.stdout.write(format_job(job) + "\n")


if __name__ == "__main__":
    main()
