"""Job aggregate construction and the per-run job accumulator."""

import logging
from typing import Iterable, Iterator, Optional, Sequence

from .errors import UniquenessConflict
from .models import ClassifiedEmail, Email, EmailRef, Job, JobStatus, StatusChange

logger = logging.getLogger(__name__)

UNKNOWN_COMPANY_DISPLAY = "Unknown Company"
UNKNOWN_POSITION_DISPLAY = "Unknown Position"


def email_ref(email: Email, is_primary: bool = False, status: Optional[JobStatus] = None) -> EmailRef:
    return EmailRef(
        email_id=email.id,
        thread_id=email.thread_id,
        subject=email.subject,
        from_address=email.from_address,
        received_at=email.received_at,
        detected_status=status,
        is_primary=is_primary,
    )


def _new_job(
    record: ClassifiedEmail,
    refs: list[EmailRef],
    status: JobStatus,
    thread_id: Optional[str],
    company_domain: Optional[str],
) -> Job:
    latest = refs[-1]
    return Job(
        account_email=record.email.account_email,
        company=record.company or UNKNOWN_COMPANY_DISPLAY,
        company_domain=company_domain,
        normalized_company=record.normalized_company,
        position=record.position or UNKNOWN_POSITION_DISPLAY,
        normalized_position=record.normalized_position,
        status=status,
        thread_id=thread_id,
        confidence=record.classification.confidence,
        emails=refs,
        status_history=[
            StatusChange(status=status, email_id=latest.email_id, changed_at=latest.received_at)
        ],
        first_contact_at=refs[0].received_at,
        last_contact_at=latest.received_at,
    )


def job_from_thread(
    thread_id: str,
    emails: Sequence[Email],
    head: ClassifiedEmail,
    status: JobStatus,
) -> Job:
    """Create the single job that owns a whole thread.

    ``emails`` is the thread oldest first; ``head`` is its classified last email.
    """
    refs = [email_ref(email, is_primary=(i == 0)) for i, email in enumerate(emails)]
    refs[-1].detected_status = status
    return _new_job(head, refs, status, thread_id, head.company_domain)


def job_from_email(record: ClassifiedEmail, status: JobStatus) -> Job:
    """Start a job from a single thread-less email."""
    refs = [email_ref(record.email, is_primary=True, status=status)]
    return _new_job(record, refs, status, None, record.company_domain)


def attach_email(job: Job, email: Email, status: Optional[JobStatus] = None) -> bool:
    """Add a member email to a job.

    Keeps ``emails`` chronological and the contact window in step. ``status``
    is applied only when the email is the newest member. Returns False when
    the email already belongs to the job.
    """
    if email.id in job.email_ids:
        return False

    is_latest = email.received_at >= job.last_contact_at
    job.emails.append(email_ref(email, status=status))
    job.emails.sort(key=lambda ref: (ref.received_at, ref.email_id))
    job.first_contact_at = min(job.first_contact_at, email.received_at)
    job.last_contact_at = max(job.last_contact_at, email.received_at)

    if is_latest and status is not None:
        set_status(job, status, email.id, email.received_at)
    return True


def set_status(job: Job, status: JobStatus, email_id: Optional[str], changed_at) -> None:
    if status == job.status:
        return
    logger.info(f"Job {job.job_id} ({job.company}) status {job.status.value} -> {status.value}")
    job.status = status
    job.status_history.append(StatusChange(status=status, email_id=email_id, changed_at=changed_at))


class JobSet:
    """Jobs known to a matching run, threaded explicitly through the batch loop.

    Seeded with persisted jobs so a run can attach to them; enforces at most
    one job per thread id and remembers which jobs this run created or changed.
    """

    def __init__(self, jobs: Iterable[Job] = ()):
        self._jobs: list[Job] = []
        self._by_thread: dict[str, Job] = {}
        self._by_email: dict[str, Job] = {}
        self._touched: list[str] = []
        for job in jobs:
            self._index(job)

    def _index(self, job: Job) -> None:
        if job.thread_id:
            owner = self._by_thread.get(job.thread_id)
            if owner is not None and owner.job_id != job.job_id:
                raise UniquenessConflict("job thread", job.thread_id)
            self._by_thread[job.thread_id] = job
        self._jobs.append(job)
        for ref in job.emails:
            self._by_email[ref.email_id] = job

    def __iter__(self) -> Iterator[Job]:
        return iter(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def add(self, job: Job) -> Job:
        self._index(job)
        self.touch(job)
        return job

    def touch(self, job: Job) -> None:
        for ref in job.emails:
            self._by_email[ref.email_id] = job
        if job.job_id not in self._touched:
            self._touched.append(job.job_id)

    def by_thread(self, thread_id: Optional[str]) -> Optional[Job]:
        if not thread_id:
            return None
        return self._by_thread.get(thread_id)

    def owner_of(self, email_id: str) -> Optional[Job]:
        return self._by_email.get(email_id)

    def touched(self) -> list[Job]:
        """Jobs created or updated by this run, in first-touch order."""
        by_id = {job.job_id: job for job in self._jobs}
        return [by_id[job_id] for job_id in self._touched]
