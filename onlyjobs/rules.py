"""Rule-based classifier used when no LLM is configured."""

import logging
import re
from typing import Optional

from .models import ClassificationMethod, ClassificationResult

logger = logging.getLogger(__name__)

# Checked before anything else: an offer letter also thanks you for applying
OFFER_INDICATORS = [
    "pleased to offer",
    "happy to offer",
    "excited to offer",
    "offer letter",
    "extend an offer",
    "extend you an offer",
    "job offer",
]

REJECTION_INDICATORS = [
    "won't be moving forward",
    "will not be moving forward",
    "not be moving forward",
    "not moving forward",
    "decided not to proceed",
    "moving forward with other candidates",
    "pursuing other candidates",
    "unfortunately we have decided",
    "unfortunately, we have decided",
    "regret to inform",
    "not selected",
    "position has been filled",
    "role has been filled",
    "no longer considering",
    "will not be proceeding",
    "unable to offer you",
    "decided to pursue other",
    "not the right fit",
]

INTERVIEW_INDICATORS = [
    "schedule an interview",
    "schedule a call",
    "interview invitation",
    "invite you to interview",
    "invitation to interview",
    "phone screen",
    "technical interview",
    "onsite interview",
    "next round",
    "availability for",
    "coding challenge",
    "online assessment",
]

APPLICATION_INDICATORS = [
    "thank you for applying",
    "thanks for applying",
    "thank you for your application",
    "thanks for your application",
    "application received",
    "application submitted",
    "we received your application",
    "we have received your application",
    "your application has been received",
    "your application was received",
    "successfully submitted",
    "successfully applied",
    "thank you for your interest",
]

TITLE_WORDS = (
    "Engineer|Developer|Scientist|Analyst|Designer|Manager|Architect|Administrator"
    "|Consultant|Specialist|Intern|Researcher|Writer|Associate|Coordinator|Director"
)

POSITION_PATTERNS = [
    re.compile(r"(?:position|role|job)\s*(?:of|:|-)\s*([A-Z][\w/&,+ .-]{2,60}?)(?:\s+(?:at|with)\b|[.,!\n]|$)"),
    re.compile(r"(?:for|applying to) the\s+([A-Z][\w/&+ .-]{2,60}?)\s+(?:position|role|opening)"),
    re.compile(rf"\b((?:[A-Z][\w/&+.-]*\s+){{0,4}}(?:{TITLE_WORDS}))\b"),
]

COMPANY_PATTERNS = [
    re.compile(r"(?:applying|applied|application)\s+(?:to|at|with)\s+([A-Z][\w&.'-]*(?:\s+[A-Z][\w&.'-]*){0,3})"),
    re.compile(r"interest\s+in\s+(?:joining\s+)?([A-Z][\w&.'-]*(?:\s+[A-Z][\w&.'-]*){0,3})"),
    re.compile(r"\bat\s+([A-Z][\w&.'-]*(?:\s+[A-Z][\w&.'-]*){0,3})\s+for\s+the\b"),
    re.compile(r"\bwith\s+([A-Z][\w&.'-]*(?:\s+[A-Z][\w&.'-]*){0,3})\s+for\s+(?:the|our)\b"),
]

GENERIC_WORDS = {"the", "our", "a", "an", "this", "your", "us"}


def _contains_any(text: str, indicators: list[str]) -> bool:
    return any(indicator in text for indicator in indicators)


def extract_position(text: str) -> Optional[str]:
    for pattern in POSITION_PATTERNS:
        match = pattern.search(text)
        if match:
            position = match.group(1).strip(" .,-")
            if 2 < len(position) < 80:
                return position
    return None


def extract_company(text: str) -> Optional[str]:
    for pattern in COMPANY_PATTERNS:
        match = pattern.search(text)
        if match:
            company = match.group(1).strip(" .,")
            if company.lower() not in GENERIC_WORDS and 1 < len(company) < 50:
                return company
    return None


class KeywordClassifier:
    """Classify emails from indicator phrases and extract details with regexes."""

    method = ClassificationMethod.RULE_BASED

    def classify(self, subject: str, body: str) -> ClassificationResult:
        text = f"{subject}\n{body}"
        lowered = text.lower()

        if _contains_any(lowered, OFFER_INDICATORS):
            status, confidence = "Offer", 0.95
        elif _contains_any(lowered, REJECTION_INDICATORS):
            status, confidence = "Declined", 0.92
        elif _contains_any(lowered, INTERVIEW_INDICATORS):
            status, confidence = "Interview", 0.85
        elif _contains_any(lowered, APPLICATION_INDICATORS):
            status, confidence = "Applied", 0.9
        else:
            return ClassificationResult(is_job_related=False, confidence=0.6)

        company = extract_company(text)
        position = extract_position(subject) or extract_position(body)
        if company is None:
            confidence -= 0.1

        logger.debug(f"Keyword classifier: {status} {company!r} {position!r} ({confidence:.2f})")
        return ClassificationResult(
            is_job_related=True,
            company=company,
            position=position,
            status=status,
            confidence=round(confidence, 2),
        )

    __call__ = classify
