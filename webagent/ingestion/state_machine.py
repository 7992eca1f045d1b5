"""
Job state machine
=================
``advance`` is a pure function: given the job's current phase and a
normalized event it returns the next phase and the effects to run. The
``CrawlEventProcessor`` executes the effects against storage.

Skip rule for finished jobs: once a job is COMPLETED, every non-batch event
is skipped. Batch (refresh) page and completion events still go through,
because a refresh starts from a job that is still marked completed.
A FAILED job is terminal: everything except another failure is skipped.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from webagent.ingestion.base import Job, JobStatus, JobStep
from webagent.ingestion.events import CrawlEvent, EventKind, PageDraft


class Phase(str, Enum):
    PENDING = "pending"
    CRAWLING = "crawling"
    PROCESSING_PAGES = "processing_pages"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    COMPLETED = "completed"
    FAILED = "failed"


_STEP_PHASES = {
    JobStep.CRAWLING: Phase.CRAWLING,
    JobStep.PROCESSING_PAGES: Phase.PROCESSING_PAGES,
    JobStep.GENERATING_EMBEDDINGS: Phase.GENERATING_EMBEDDINGS,
}


def phase_of(job: Job) -> Phase:
    if job.status is JobStatus.COMPLETED:
        return Phase.COMPLETED
    if job.status is JobStatus.FAILED:
        return Phase.FAILED
    return _STEP_PHASES.get(job.current_step, Phase.PENDING)


# Effects ---------------------------------------------------------------

@dataclass(frozen=True)
class MarkFailed:
    message: str


@dataclass(frozen=True)
class MarkCrawling:
    pass


@dataclass(frozen=True)
class MarkProcessingPages:
    current_url: str


@dataclass(frozen=True)
class StorePages:
    pages: Tuple[PageDraft, ...]


@dataclass(frozen=True)
class SyncPageCount:
    advance_step: bool   # also move current_step to generating_embeddings


@dataclass(frozen=True)
class EmbedStoredPages:
    pass


@dataclass(frozen=True)
class FinalizeJob:
    pass


Effect = Union[MarkFailed, MarkCrawling, MarkProcessingPages, StorePages,
               SyncPageCount, EmbedStoredPages, FinalizeJob]


class Outcome(str, Enum):
    ACCEPTED = "accepted"
    SKIPPED = "skipped"
    MISSING_JOB_ID = "missing_job_id"
    JOB_NOT_FOUND = "job_not_found"


@dataclass(frozen=True)
class Transition:
    outcome: Outcome
    phase: Optional[Phase]
    effects: Tuple[Effect, ...] = ()


def needs_job(event: CrawlEvent) -> bool:
    """Failure events are applied without loading the job first."""
    return bool(event.job_id) and event.kind is not EventKind.FAILED


def advance(phase: Optional[Phase], event: CrawlEvent) -> Transition:
    """Next phase and effects for ``event`` arriving at a job in ``phase``.

    ``phase`` is None when the job could not be found (or was not looked up).
    """
    if not event.job_id:
        return Transition(Outcome.MISSING_JOB_ID, phase)

    if event.kind is EventKind.FAILED:
        return Transition(Outcome.ACCEPTED, Phase.FAILED,
                          (MarkFailed(event.error_message or "Unknown error"),))

    if phase is None:
        return Transition(Outcome.JOB_NOT_FOUND, None)

    if phase is Phase.FAILED:
        return Transition(Outcome.SKIPPED, phase)

    if phase is Phase.COMPLETED:
        passes = event.is_batch and event.kind in (EventKind.PAGE, EventKind.COMPLETED)
        if not passes:
            return Transition(Outcome.SKIPPED, phase)

    if event.kind is EventKind.STARTED:
        return Transition(Outcome.ACCEPTED, Phase.CRAWLING, (MarkCrawling(),))

    effects = []
    next_phase = phase
    carries_pages = event.kind in (EventKind.PAGE, EventKind.COMPLETED) and bool(event.pages)

    if carries_pages:
        if not event.is_batch:
            effects.append(MarkProcessingPages(event.pages[0].url))
        effects.append(StorePages(tuple(event.pages)))
        effects.append(SyncPageCount(advance_step=not event.is_batch))
        effects.append(EmbedStoredPages())
        if not event.is_batch:
            next_phase = Phase.GENERATING_EMBEDDINGS

    if event.kind is EventKind.COMPLETED:
        effects.append(FinalizeJob())
        next_phase = Phase.COMPLETED

    return Transition(Outcome.ACCEPTED, next_phase, tuple(effects))
