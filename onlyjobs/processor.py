"""Thread-aware batch driver that turns classified emails into jobs.

Pass A handles provider threads: the last email of a thread decides whether
the whole thread is a job. Pass B classifies thread-less emails one by one,
groups the job-related ones by extracted company and matches each against the
jobs known so far. Both passes call the external classifier in small windows
with a pause in between.
"""

import logging
import math
import time
from typing import Callable, Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from .aggregate import JobSet, attach_email, job_from_email, job_from_thread, set_status
from .config import Config, get_config
from .events import EventKind, ProgressEvent, ProgressSink, logging_sink
from .ingest import ingest, validate_email
from .matcher import MatchFn, find_match
from .models import ClassificationResult, ClassifiedEmail, Email, Job, RunSummary
from .normalize import extract_company_domain
from .status import resolve_latest_status, resolve_status
from .threads import group_by_thread, sort_chronologically

logger = logging.getLogger(__name__)

ClassifyFn = Callable[[str, str], ClassificationResult]
# Returns the verdict to act on, or None to hold the unit for human review
ReviewGate = Callable[[Sequence[Email], ClassificationResult], Optional[ClassificationResult]]
CancelCheck = Callable[[], bool]

PHASE_THREADS = "threads"
PHASE_ORPHANS = "orphans"


class RunResult(BaseModel):
    """Everything a run produced, including partial output of a cancelled run."""

    jobs: list[Job] = Field(default_factory=list)
    classifications: dict[str, ClassificationResult] = Field(default_factory=dict)
    held_for_review: list[str] = Field(default_factory=list)
    skipped: dict[str, str] = Field(default_factory=dict)
    summary: RunSummary = Field(default_factory=RunSummary)


def thread_context_body(emails: Sequence[Email]) -> str:
    """Body of the newest email, prefixed with where it sits in the thread."""
    first, last = emails[0], emails[-1]
    if len(emails) == 1:
        return last.body
    return (
        f"[This is email {len(emails)} of {len(emails)} in thread]\n"
        f"[Original subject: {first.subject}]\n\n"
        f"{last.body}"
    )


class ThreadAwareProcessor:
    """Runs Pass A and Pass B over one batch of emails."""

    def __init__(
        self,
        classifier: ClassifyFn,
        arbiter: Optional[MatchFn] = None,
        config: Optional[Config] = None,
        sink: Optional[ProgressSink] = None,
        review_gate: Optional[ReviewGate] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.classifier = classifier
        self.arbiter = arbiter
        self.config = config or get_config()
        self.sink = sink or logging_sink
        self.review_gate = review_gate
        self.sleep = sleep

    def process(
        self,
        emails: Iterable[Email],
        known_jobs: Iterable[Job] = (),
        is_cancelled: Optional[CancelCheck] = None,
    ) -> RunResult:
        jobs = JobSet(known_jobs)
        result = RunResult()

        fresh = []
        for email in emails:
            validate_email(email)
            if jobs.owner_of(email.id) is not None:
                logger.debug(f"Skipping email {email.id}, already part of a job")
                continue
            fresh.append(email)

        groups = group_by_thread(fresh)
        summary = result.summary
        summary.total_emails = len(fresh)
        summary.threads = len(groups.threads)
        summary.orphans = len(groups.orphans)
        summary.units_total = summary.threads + summary.orphans

        logger.info(
            f"Processing {len(fresh)} emails: {summary.threads} threads, {summary.orphans} orphans"
        )

        jobs = self._process_threads(groups.threads, jobs, result, is_cancelled)

        classified: list[ClassifiedEmail] = []
        if not summary.cancelled:
            classified = self._classify_orphans(groups.orphans, result, is_cancelled)
        jobs = self._match_orphans(classified, jobs, result)

        result.jobs = jobs.touched()
        summary.jobs_found = len(result.jobs)
        logger.info(
            f"Run finished: {summary.jobs_found} jobs, {summary.units_succeeded} units ok, "
            f"{summary.units_skipped} skipped, {summary.units_held_for_review} held for review"
            + (" (cancelled)" if summary.cancelled else "")
        )
        return result

    def _emit(self, kind: EventKind, phase: str, **fields) -> None:
        self.sink(ProgressEvent(kind=kind, phase=phase, **fields))

    def _run_batched(self, phase, units, handle, result: RunResult, is_cancelled) -> None:
        """Feed units to ``handle`` in windows of ``batch_size``.

        Cancellation is checked before each unit; a unit in flight always finishes.
        """
        size = self.config.batch_size
        total = len(units)
        batch_total = math.ceil(total / size) if total else 0
        processed = 0

        for batch_index in range(1, batch_total + 1):
            batch = units[(batch_index - 1) * size : batch_index * size]
            self._emit(
                EventKind.BATCH_START,
                phase,
                batch_index=batch_index,
                batch_total=batch_total,
                units_processed=processed,
                units_total=total,
            )

            for unit in batch:
                if is_cancelled is not None and is_cancelled():
                    logger.info(f"Processing cancelled during {phase} after {processed}/{total} units")
                    result.summary.cancelled = True
                    return
                handle(unit)
                processed += 1
                result.summary.units_processed += 1

            self._emit(
                EventKind.BATCH_END,
                phase,
                batch_index=batch_index,
                batch_total=batch_total,
                units_processed=processed,
                units_total=total,
            )

            if batch_index < batch_total and self.config.batch_delay_seconds > 0:
                self.sleep(self.config.batch_delay_seconds)

    def _classify_unit(
        self, phase: str, unit_id: str, members: Sequence[Email], subject: str, body: str, result: RunResult
    ) -> Optional[ClassificationResult]:
        """Classify one unit; None when it was skipped or held for review."""
        if not subject and not body:
            self._skip(phase, unit_id, "no content", result)
            return None

        try:
            classification = self.classifier(subject, body)
        except Exception as e:
            logger.error(f"Error classifying {phase} unit {unit_id}: {e}")
            self._skip(phase, unit_id, str(e) or type(e).__name__, result)
            return None

        for email in members:
            result.classifications[email.id] = classification
        result.summary.units_succeeded += 1
        self._emit(
            EventKind.UNIT_CLASSIFIED,
            phase,
            unit_id=unit_id,
            is_job_related=classification.is_job_related,
            units_processed=result.summary.units_processed + 1,
            units_total=result.summary.units_total,
        )

        # The gate sees every verdict so a human approval can override "not job related"
        if self.review_gate is not None:
            gated = self.review_gate(members, classification)
            if gated is None:
                logger.info(f"Holding {phase} unit {unit_id} for review (confidence {classification.confidence:.2f})")
                result.held_for_review.extend(email.id for email in members)
                result.summary.units_held_for_review += 1
                return None
            classification = gated

        if not classification.is_job_related:
            logger.debug(f"{phase} unit {unit_id} not job-related")
            return None

        return classification

    def _skip(self, phase: str, unit_id: str, reason: str, result: RunResult) -> None:
        result.skipped[unit_id] = reason
        result.summary.units_skipped += 1
        self._emit(EventKind.UNIT_SKIPPED, phase, unit_id=unit_id, reason=reason)

    def _job_found(self, phase: str, job: Job) -> None:
        self._emit(
            EventKind.JOB_FOUND,
            phase,
            unit_id=job.thread_id or job.emails[0].email_id,
            company=job.company,
            position=job.position,
            status=job.status.value,
        )

    # Pass A

    def _process_threads(
        self, threads: dict[str, list[Email]], jobs: JobSet, result: RunResult, is_cancelled
    ) -> JobSet:
        units = list(threads.items())

        def handle(unit):
            thread_id, members = unit
            self._process_thread(thread_id, members, jobs, result)

        self._run_batched(PHASE_THREADS, units, handle, result, is_cancelled)
        return jobs

    def _process_thread(
        self, thread_id: str, members: list[Email], jobs: JobSet, result: RunResult
    ) -> None:
        last = members[-1]
        classification = self._classify_unit(
            PHASE_THREADS, thread_id, members, last.subject, thread_context_body(members), result
        )
        if classification is None:
            return

        head = ingest(last, classification, self.config)
        if head.company_domain is None:
            head = head.model_copy(update={"company_domain": self._thread_domain(members)})
        status = resolve_latest_status(members, classification, self.config.status_tail_size)

        job = jobs.by_thread(thread_id)
        if job is None:
            job = jobs.add(job_from_thread(thread_id, members, head, status))
        else:
            logger.info(f"Thread {thread_id} already tracked as {job.job_id}, attaching new emails")
            is_latest = last.received_at >= job.last_contact_at
            for email in members:
                attach_email(job, email, status if email is last else None)
            if is_latest:
                set_status(job, status, last.id, last.received_at)
            jobs.touch(job)

        logger.info(f"Found job: {job.company} - {job.position} ({job.status.value})")
        self._job_found(PHASE_THREADS, job)

    def _thread_domain(self, members: Sequence[Email]) -> Optional[str]:
        # The newest message is often the user's own reply from a personal mailbox
        for email in members:
            domain = extract_company_domain(
                email.from_address,
                self.config.consumer_mail_domains,
                self.config.ats_subdomain_markers,
            )
            if domain:
                return domain
        return None

    # Pass B

    def _classify_orphans(
        self, orphans: list[Email], result: RunResult, is_cancelled
    ) -> list[ClassifiedEmail]:
        classified: list[ClassifiedEmail] = []

        def handle(email: Email):
            classification = self._classify_unit(
                PHASE_ORPHANS, email.id, [email], email.subject, email.body, result
            )
            if classification is not None:
                classified.append(ingest(email, classification, self.config))

        self._run_batched(PHASE_ORPHANS, orphans, handle, result, is_cancelled)
        logger.info(f"Orphan classification: {len(classified)} job-related out of {len(orphans)}")
        return classified

    def group_by_company(self, records: Iterable[ClassifiedEmail]) -> dict[str, list[ClassifiedEmail]]:
        """Group by normalized extracted company, never by sender domain."""
        groups: dict[str, list[ClassifiedEmail]] = {}
        for record in records:
            if record.from_hiring_platform:
                logger.debug(
                    f"Email {record.email.id} relayed by hiring platform {record.company_domain}, "
                    f"trusting extracted company {record.normalized_company!r}"
                )
            groups.setdefault(record.normalized_company, []).append(record)

        return {
            company: sorted(members, key=lambda r: (r.received_at, r.email.id))
            for company, members in groups.items()
        }

    def _match_orphans(
        self, records: list[ClassifiedEmail], jobs: JobSet, result: RunResult
    ) -> JobSet:
        # Arbitration is an external call; a cancelled run only uses the local tiers
        arbiter = None if result.summary.cancelled else self.arbiter

        for members in self.group_by_company(records).values():
            group_jobs: list[Job] = []
            for record in members:
                status = resolve_status(record.classification)
                match = find_match(record, jobs, group_jobs, self.config, arbiter)

                if match.job is None:
                    job = jobs.add(job_from_email(record, status))
                    group_jobs.append(job)
                    logger.info(f"New job from orphan {record.email.id}: {job.company} - {job.position}")
                    self._job_found(PHASE_ORPHANS, job)
                    continue

                job = match.job
                attach_email(job, record.email, status)
                jobs.touch(job)
                logger.info(f"Attached orphan {record.email.id} to {job.job_id} via {match.tier}")

        return jobs


def process_emails(
    emails: Iterable[Email],
    classifier: ClassifyFn,
    arbiter: Optional[MatchFn] = None,
    known_jobs: Iterable[Job] = (),
    config: Optional[Config] = None,
    sink: Optional[ProgressSink] = None,
    is_cancelled: Optional[CancelCheck] = None,
) -> RunResult:
    """Convenience wrapper around ThreadAwareProcessor for one batch."""
    processor = ThreadAwareProcessor(classifier, arbiter=arbiter, config=config, sink=sink)
    return processor.process(sort_chronologically(emails), known_jobs=known_jobs, is_cancelled=is_cancelled)
