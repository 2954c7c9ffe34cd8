"""Retry policy for queued jobs expressed as a small state machine."""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

from models import Job


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class JobState(str, Enum):
    QUEUED = "queued"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Transition(NamedTuple):
    state: JobState
    job: Job

    @property
    def keeps_row(self) -> bool:
        """``True`` when the job stays in the pending queue."""
        return self.state is JobState.QUEUED


def next_state(job: Job, outcome: AttemptOutcome) -> Transition:
    """Return where ``job`` goes after one attempt with ``outcome``.

    A failure always counts against ``retry_count``; the job is abandoned
    once the count reaches ``max_retries``.  ``job`` is not modified.
    """
    if outcome is AttemptOutcome.SUCCESS:
        return Transition(JobState.COMPLETED, job)
    failed = job.model_copy(update={"retry_count": job.retry_count + 1})
    if failed.retry_count >= failed.max_retries:
        return Transition(JobState.ABANDONED, failed)
    return Transition(JobState.QUEUED, failed)
