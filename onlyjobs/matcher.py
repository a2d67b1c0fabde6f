"""Decide whether a classified email belongs to a job that already exists.

Strategies are tried from most to least reliable:

1. provider thread id
2. company domain + normalized title within the recency window
3. fuzzy company score with a title similarity check
4. pairwise arbitration by the external job-matching model, limited to the
   jobs built for the same company group
"""

import logging
from datetime import timedelta
from typing import Callable, Iterable, NamedTuple, Optional, Sequence

from .aggregate import JobSet
from .config import Config
from .models import ClassifiedEmail, Job, JobSummary, MatchVerdict
from .normalize import is_hiring_platform_domain, is_unknown_company, title_similarity

logger = logging.getLogger(__name__)

MatchFn = Callable[[JobSummary, JobSummary], MatchVerdict]

TIER_THREAD = "thread"
TIER_COMPANY_TITLE = "company_title"
TIER_FUZZY = "fuzzy"
TIER_ARBITRATION = "arbitration"


class MatchResult(NamedTuple):
    job: Optional[Job]
    tier: Optional[str] = None


NO_MATCH = MatchResult(None, None)


def _within_window(job: Job, record: ClassifiedEmail, config: Config) -> bool:
    cutoff = record.received_at - timedelta(days=config.recency_days)
    return job.last_contact_at > cutoff


def _usable_domain(domain: Optional[str], config: Config) -> bool:
    # ATS domains relay mail for many employers and say nothing about the company
    return bool(domain) and not is_hiring_platform_domain(domain, config.hiring_platform_domains)


def match_by_thread(record: ClassifiedEmail, jobs: JobSet) -> Optional[Job]:
    return jobs.by_thread(record.email.thread_id)


def match_by_company_title(
    record: ClassifiedEmail, jobs: Iterable[Job], config: Config
) -> Optional[Job]:
    if not record.normalized_position:
        return None
    if not _usable_domain(record.company_domain, config):
        return None

    candidates = [
        job
        for job in jobs
        if job.company_domain == record.company_domain
        and job.normalized_position == record.normalized_position
        and _within_window(job, record, config)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda job: job.last_contact_at)


def company_score(job: Job, record: ClassifiedEmail, config: Config) -> float:
    """Score how likely ``job`` is at the same company as ``record``."""
    # The sentinel never matches a real name, not even as a substring
    if not is_unknown_company(job.normalized_company):
        if job.normalized_company == record.normalized_company:
            return config.fuzzy_exact_score
        if record.normalized_company in job.normalized_company:
            return config.fuzzy_substring_score
    if _usable_domain(record.company_domain, config) and job.company_domain == record.company_domain:
        return config.fuzzy_domain_score
    return 0.0


def fuzzy_candidates(
    record: ClassifiedEmail, jobs: Iterable[Job], config: Config
) -> list[tuple[float, Job]]:
    """Recent jobs with a positive company score, best first."""
    scored = []
    for job in jobs:
        if not _within_window(job, record, config):
            continue
        score = company_score(job, record, config)
        if score > 0:
            scored.append((score, job))

    scored.sort(key=lambda item: (item[0], item[1].last_contact_at), reverse=True)
    return scored[: config.fuzzy_candidate_limit]


def match_by_fuzzy(
    record: ClassifiedEmail, jobs: Iterable[Job], config: Config
) -> Optional[Job]:
    if not record.company or is_unknown_company(record.normalized_company):
        return None

    for score, job in fuzzy_candidates(record, jobs, config):
        similarity = title_similarity(job.position, record.normalized_position)
        if similarity > config.title_similarity_threshold:
            logger.debug(
                f"Fuzzy match {record.email.id} -> {job.job_id} "
                f"(company {score:.2f}, title {similarity:.2f})"
            )
            return job
    return None


def match_by_arbitration(
    record: ClassifiedEmail, group_jobs: Sequence[Job], arbiter: Optional[MatchFn]
) -> Optional[Job]:
    """Ask the job-matching model about each job of the company group in turn.

    A failed call counts as "not the same job".
    """
    if arbiter is None:
        return None

    candidate = JobSummary(
        company=record.company,
        position=record.position,
        status=record.classification.status,
    )
    for job in group_jobs:
        try:
            verdict = arbiter(candidate, job.summary())
        except Exception as e:
            logger.warning(f"Job match arbitration failed for {record.email.id} vs {job.job_id}: {e}")
            continue
        if verdict.same_job:
            return job
    return None


def find_match(
    record: ClassifiedEmail,
    jobs: JobSet,
    group_jobs: Sequence[Job],
    config: Config,
    arbiter: Optional[MatchFn] = None,
) -> MatchResult:
    """Find the job ``record`` belongs to, or NO_MATCH to start a new one."""
    job = match_by_thread(record, jobs)
    if job is not None:
        return MatchResult(job, TIER_THREAD)

    job = match_by_company_title(record, jobs, config)
    if job is not None:
        return MatchResult(job, TIER_COMPANY_TITLE)

    job = match_by_fuzzy(record, jobs, config)
    if job is not None:
        return MatchResult(job, TIER_FUZZY)

    job = match_by_arbitration(record, group_jobs, arbiter)
    if job is not None:
        return MatchResult(job, TIER_ARBITRATION)

    return NO_MATCH
