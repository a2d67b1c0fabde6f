"""Derive a job's status from classifier output and recent correspondence."""

from typing import Optional, Sequence

from .models import ClassificationResult, Email, JobStatus

DEFAULT_TAIL_SIZE = 3


def parse_status(text: Optional[str]) -> JobStatus:
    """Map free-text status onto the closed status set.

    Checked in order: offer, declined/rejected, interview, applied.
    Anything else counts as Applied.
    """
    if not text:
        return JobStatus.APPLIED

    lowered = text.lower()
    if "offer" in lowered:
        return JobStatus.OFFER
    if "declin" in lowered or "reject" in lowered:
        return JobStatus.DECLINED
    if "interview" in lowered:
        return JobStatus.INTERVIEW
    if "appli" in lowered:
        return JobStatus.APPLIED
    return JobStatus.APPLIED


def resolve_status(classification: ClassificationResult) -> JobStatus:
    return parse_status(classification.status)


def resolve_latest_status(
    emails: Sequence[Email],
    classification: ClassificationResult,
    tail_size: int = DEFAULT_TAIL_SIZE,
) -> JobStatus:
    """Refine the classifier's status with keywords from the newest emails.

    ``emails`` must be oldest first. An offer with congratulations always
    wins; otherwise interview and rejection wording override in turn, the
    later email taking precedence.
    """
    status = resolve_status(classification)

    for email in list(emails)[-tail_size:] if tail_size > 0 else []:
        content = f"{email.subject} {email.body}".lower()

        if "offer" in content and "congratulations" in content:
            status = JobStatus.OFFER
        elif "interview" in content or "schedule" in content:
            if status != JobStatus.OFFER:
                status = JobStatus.INTERVIEW
        elif "reject" in content or "unfortunately" in content:
            if status != JobStatus.OFFER:
                status = JobStatus.DECLINED

    return status
