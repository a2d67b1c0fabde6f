"""Company and job title normalization."""

import re
from email.utils import parseaddr
from typing import Iterable, Optional

from .config import (
    DEFAULT_ATS_SUBDOMAIN_MARKERS,
    DEFAULT_CONSUMER_MAIL_DOMAINS,
    DEFAULT_HIRING_PLATFORM_DOMAINS,
)

# Never produced for a real company name
UNKNOWN_COMPANY = "unknown company"

LEGAL_SUFFIX_PATTERN = re.compile(
    r",?\s+(inc\.?|incorporated|llc\.?|ltd\.?|limited|corp\.?|corporation|co\.?|company)$"
)
SENIORITY_PATTERN = re.compile(r"\b(sr|jr|senior|junior|lead|principal|staff)\b")
ROMAN_NUMERAL_PATTERN = re.compile(r"\b(i{1,3}|iv|v|vi{1,3}|ix|x)\b")
NUMBER_PATTERN = re.compile(r"\b\d+\b")
PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")
WHITESPACE_PATTERN = re.compile(r"\s+")

# Same token set in a different order is close, but not identical
REORDERED_TITLE_SCORE = 0.99


def _collapse(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def normalize_company(raw: Optional[str]) -> str:
    """Lowercase a company name and drop its trailing legal-entity suffix."""
    if raw is None:
        return UNKNOWN_COMPANY

    normalized = _collapse(raw.lower())
    if not normalized or normalized == UNKNOWN_COMPANY:
        return UNKNOWN_COMPANY

    # Repeat so "Acme Co. Inc" settles on "acme" in one call
    while True:
        stripped = LEGAL_SUFFIX_PATTERN.sub("", normalized).strip()
        if stripped == normalized:
            break
        normalized = stripped

    normalized = _collapse(normalized)
    return normalized or UNKNOWN_COMPANY


def is_unknown_company(normalized: Optional[str]) -> bool:
    return not normalized or normalized == UNKNOWN_COMPANY


def normalize_title(raw: Optional[str]) -> Optional[str]:
    """Reduce a job title to its role words for matching."""
    if raw is None:
        return None

    title = _collapse(raw.lower())
    title = SENIORITY_PATTERN.sub("", title)
    title = ROMAN_NUMERAL_PATTERN.sub("", title)
    title = NUMBER_PATTERN.sub("", title)
    title = PUNCTUATION_PATTERN.sub("", title)
    return _collapse(title)


def title_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Token Jaccard similarity of two titles after normalization."""
    norm_a = normalize_title(a) or ""
    norm_b = normalize_title(b) or ""

    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    tokens_a = set(norm_a.split())
    tokens_b = set(norm_b.split())
    score = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    return min(score, REORDERED_TITLE_SCORE)


def extract_email_address(from_address: Optional[str]) -> Optional[str]:
    """Pull the bare address out of a From header value."""
    if not from_address:
        return None
    _, address = parseaddr(from_address)
    address = address.strip()
    if "@" not in address:
        return None
    return address.lower()


def extract_company_domain(
    from_address: Optional[str],
    consumer_domains: Optional[Iterable[str]] = None,
    subdomain_markers: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """Guess the employer's domain from a sender address.

    Consumer mailboxes yield None. A leading mail/careers style label is
    dropped, so ``careers.acme.com`` becomes ``acme.com``.
    """
    address = extract_email_address(from_address)
    if not address:
        return None

    domain = address.rsplit("@", 1)[1].strip(".")
    if not domain:
        return None

    consumer = set(consumer_domains if consumer_domains is not None else DEFAULT_CONSUMER_MAIL_DOMAINS)
    if domain in consumer:
        return None

    markers = set(subdomain_markers if subdomain_markers is not None else DEFAULT_ATS_SUBDOMAIN_MARKERS)
    parts = domain.split(".")
    if len(parts) > 2 and parts[0] in markers:
        return ".".join(parts[1:])

    return domain


def is_hiring_platform_domain(
    domain: Optional[str], platforms: Optional[Iterable[str]] = None
) -> bool:
    """Check whether mail from this domain is relayed for many employers."""
    if not domain:
        return False

    domain = domain.lower()
    for platform in platforms if platforms is not None else DEFAULT_HIRING_PLATFORM_DOMAINS:
        platform = platform.lower()
        if domain == platform or domain.endswith(f".{platform}"):
            return True
    return False
