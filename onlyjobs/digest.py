"""Pre-classification filter for job digests, alerts and newsletters."""

import logging
import re
from typing import NamedTuple

from .models import Email
from .normalize import extract_email_address

logger = logging.getLogger(__name__)

# Senders that only ever send bulk mail
DIGEST_DOMAINS = {
    "monster.com",
    "ziprecruiter.com",
    "careerbuilder.com",
    "dice.com",
    "angel.co",
    "hired.com",
    "remoteok.io",
    "weworkremotely.com",
    "flexjobs.com",
    "themuse.com",
    "simplyhired.com",
    "builtin.com",
    "match.indeed.com",
    "tldrnewsletter.com",
}

NEWSLETTER_PLATFORMS = {
    "substack.com",
    "beehiiv.com",
    "convertkit.com",
    "mailchimp.com",
    "sendgrid.net",
    "klaviyo.com",
    "constantcontact.com",
}

DIGEST_ADDRESSES = {
    "jobalerts-noreply@linkedin.com",
    "messages-noreply@linkedin.com",
    "notifications-noreply@linkedin.com",
    "donotreply@match.indeed.com",
}

# Send both alerts and real application mail
MIXED_DOMAINS = {"linkedin.com", "indeed.com", "glassdoor.com"}

DIGEST_SUBJECT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"^\d+ (new )?jobs?",
        r"new jobs(?! (at|with) (the|my|our|your))",
        r"and \d+ more (new )?jobs?",
        r"(new|open|available) (positions|openings)",
        r"job openings",
        r"recommended jobs?",
        r"jobs? (you might|you may) (like|be interested)",
        r"jobs? (that match|matching your|based on your)",
        r"similar jobs?",
        r"jobs? alerts?",
        r"(weekly|daily|monthly) (jobs?|digest)",
        r"job digest",
        r"newsletter",
        r"career (insights?|tips|advice|growth)",
        r"job search (tips|advice|strategies)",
        r"(companies|.+) (are|is) hiring",
        r"is looking for",
        r"profile views?|who.?s viewed your",
        r"you appeared in \d+ search",
        r"jobs? near|new jobs? in",
        r"apply now to",
        r"(see|view) jobs at",
    ]
]

DIGEST_BODY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"view all jobs?",
        r"see more jobs?",
        r"browse (more|all)",
        r"explore (opportunities|jobs)",
        r"unsubscribe from",
        r"manage (your )?(job |email )?alerts?",
        r"update your preferences",
        r"recommendations based on",
        r"we found \d+ (jobs?|opportunities)",
        r"here are (some |the )?(latest |new )?jobs?",
        r"top picks for",
        r"matches your (profile|skills|experience)",
    ]
]

APPLICATION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"your application",
        r"application (to|for|at|was|has been)",
        r"thank you for (your )?(application|applying|interest)",
        r"we (have )?received your (application|resume|submission)",
        r"regarding your (application|candidacy)",
        r"successfully applied",
        r"interview",
        r"offer letter|job offer",
        r"next steps",
        r"assessment|coding challenge|take.?home",
        r"regret to inform",
        r"(not|won.?t) (be )?(selected|moving forward|proceeding)",
        r"position has been filled",
    ]
]

ATS_NAMES = re.compile(
    r"greenhouse|lever|workday|taleo|icims|jobvite|bamboohr|smartrecruiters|ashbyhq|breezy",
    re.IGNORECASE,
)

BODY_MATCHES_FOR_DIGEST = 2


class DigestVerdict(NamedTuple):
    is_digest: bool
    reason: str
    confidence: float


class DigestDetector:
    """Rule-based digest filter.

    Real application mail always wins: anything that looks like an
    application, interview, offer or rejection passes through, even from a
    job board.
    """

    def __init__(
        self,
        digest_domains=None,
        newsletter_platforms=None,
        mixed_domains=None,
    ):
        self.digest_domains = set(digest_domains or DIGEST_DOMAINS)
        self.newsletter_platforms = set(newsletter_platforms or NEWSLETTER_PLATFORMS)
        self.mixed_domains = set(mixed_domains or MIXED_DOMAINS)

    def detect(self, email: Email) -> DigestVerdict:
        subject, body = email.subject, email.body
        address = extract_email_address(email.from_address) or ""
        domain = address.split("@", 1)[1] if "@" in address else ""

        if address in DIGEST_ADDRESSES:
            return DigestVerdict(True, f"digest_address:{address}", 0.99)

        if self.is_application_email(subject, body):
            return DigestVerdict(False, "application_email", 1.0)

        if self._domain_in(domain, self.newsletter_platforms):
            return DigestVerdict(True, "newsletter_platform", 0.95)

        if self._domain_in(domain, self.mixed_domains):
            if any(p.search(subject) for p in DIGEST_SUBJECT_PATTERNS):
                return DigestVerdict(True, "mixed_domain_digest_pattern", 0.85)
            return DigestVerdict(False, "no_digest_signals", 0.0)

        if self._domain_in(domain, self.digest_domains):
            if ATS_NAMES.search(f"{subject} {body[:500]}"):
                return DigestVerdict(False, "application_email_from_job_board", 1.0)
            return DigestVerdict(True, f"digest_domain:{domain}", 0.95)

        if any(p.search(subject) for p in DIGEST_SUBJECT_PATTERNS):
            return DigestVerdict(True, "digest_subject_pattern", 0.9)

        snippet = body[:2000]
        hits = sum(1 for p in DIGEST_BODY_PATTERNS if p.search(snippet))
        if hits >= BODY_MATCHES_FOR_DIGEST:
            return DigestVerdict(True, "digest_body_patterns", 0.85)

        return DigestVerdict(False, "no_digest_signals", 0.0)

    def is_digest(self, email: Email) -> bool:
        verdict = self.detect(email)
        if verdict.is_digest:
            logger.debug(f"Email {email.id} filtered as digest ({verdict.reason})")
        return verdict.is_digest

    @staticmethod
    def is_application_email(subject: str, body: str) -> bool:
        content = f"{subject} {body[:1000]}"
        return any(p.search(content) for p in APPLICATION_PATTERNS)

    @staticmethod
    def _domain_in(domain: str, domains: set[str]) -> bool:
        return any(domain == d or domain.endswith("." + d) for d in domains)
