"""Turn raw messages and classifier output into canonical records."""

import base64
import html
import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional, Union

from pydantic import ValidationError

from .config import Config, get_config
from .errors import MalformedInput
from .models import ClassificationResult, ClassifiedEmail, Email
from .normalize import (
    extract_company_domain,
    is_hiring_platform_domain,
    normalize_company,
    normalize_title,
)

logger = logging.getLogger(__name__)

NULL_STRINGS = {"", "null", "none", "n/a", "unknown"}


def strip_html(text: str) -> str:
    """Convert HTML to plain text."""
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<p[^>]*>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\n\s*\n", "\n\n", text)
    return text.strip()


def parse_received_at(value: Union[datetime, int, float, str, None]) -> datetime:
    """Parse a message timestamp into an aware UTC datetime.

    Accepts datetimes, epoch milliseconds (Gmail ``internalDate``) or seconds,
    ISO 8601 strings and RFC 2822 ``Date`` header values.
    """
    if value is None or value == "":
        raise MalformedInput("missing timestamp")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        number = float(value)
        # internalDate is in milliseconds
        if number > 1e11:
            number /= 1000.0
        parsed = datetime.fromtimestamp(number, tz=timezone.utc)
    else:
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError) as e:
                raise MalformedInput(f"unparseable timestamp: {value!r}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def validate_email(email: Email) -> Email:
    """Reject emails that cannot be grouped or attributed."""
    if not email.id or not email.id.strip():
        raise MalformedInput("email without an id")
    if not email.thread_id and not email.from_address:
        raise MalformedInput(f"email {email.id} has neither a thread id nor a from-address")
    return email


def get_email_headers(message: dict[str, Any]) -> dict[str, str]:
    """Extract common headers from a Gmail API message."""
    headers = {}
    payload = message.get("payload", {})

    for header in payload.get("headers", []):
        name = header.get("name", "").lower()
        if name in ("from", "to", "subject", "date"):
            headers[name] = header.get("value", "")

    return headers


def _decode_part(part: dict[str, Any]) -> Optional[str]:
    data = part.get("body", {}).get("data", "")
    if not data:
        return None
    text = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode("utf-8", errors="replace")
    if part.get("mimeType") == "text/html":
        return strip_html(text)
    return text


def get_email_body(message: dict[str, Any]) -> str:
    """Extract plain text from a Gmail API message, preferring text/plain."""
    payload = message.get("payload", {})

    def find(part: dict[str, Any], mime_type: str) -> Optional[str]:
        if part.get("mimeType") == mime_type:
            text = _decode_part(part)
            if text:
                return text
        for subpart in part.get("parts", []):
            text = find(subpart, mime_type)
            if text:
                return text
        return None

    for mime_type in ("text/plain", "text/html"):
        text = find(payload, mime_type)
        if text:
            return text

    return _decode_part(payload) or ""


def email_from_gmail_message(message: dict[str, Any], account_email: str = "") -> Email:
    """Build an Email from a Gmail API ``format=full`` message dict."""
    message_id = message.get("id")
    if not message_id:
        raise MalformedInput("Gmail message without an id")

    headers = get_email_headers(message)
    received = message.get("internalDate") or headers.get("date")

    email = Email(
        id=message_id,
        thread_id=message.get("threadId") or None,
        account_email=account_email,
        from_address=headers.get("from", ""),
        subject=headers.get("subject", ""),
        body=get_email_body(message),
        received_at=parse_received_at(received),
    )
    return validate_email(email)


def email_from_dict(data: dict[str, Any], account_email: str = "") -> Email:
    """Build an Email from either a Gmail message or a flat exported record."""
    if "payload" in data:
        return email_from_gmail_message(data, account_email)

    try:
        email = Email(
            id=data.get("id") or "",
            thread_id=data.get("thread_id") or data.get("threadId") or None,
            account_email=data.get("account_email") or account_email,
            from_address=data.get("from_address") or data.get("from") or "",
            subject=data.get("subject") or "",
            body=data.get("body") or "",
            received_at=parse_received_at(
                data.get("received_at") or data.get("date") or data.get("internalDate")
            ),
        )
    except ValidationError as e:
        raise MalformedInput(f"invalid email record: {e}") from e
    return validate_email(email)


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    if text.lower() in NULL_STRINGS:
        return None
    return text


def classification_from_dict(data: dict[str, Any]) -> ClassificationResult:
    """Coerce a raw classifier reply into a ClassificationResult."""
    if not isinstance(data, dict):
        raise MalformedInput(f"classifier reply is not an object: {data!r}")

    try:
        confidence = float(data.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    # Some models answer in percent
    if confidence > 1.0:
        confidence = confidence / 100.0
    confidence = min(max(confidence, 0.0), 1.0)

    is_job_related = data.get("is_job_related", data.get("is_job", False))
    if isinstance(is_job_related, str):
        is_job_related = is_job_related.strip().lower() in ("true", "yes", "1")

    return ClassificationResult(
        is_job_related=bool(is_job_related),
        company=_clean_text(data.get("company")),
        position=_clean_text(data.get("position") or data.get("job_title")),
        status=_clean_text(data.get("status")),
        confidence=confidence,
    )


def ingest(
    email: Email, classification: ClassificationResult, config: Optional[Config] = None
) -> ClassifiedEmail:
    """Normalize one classified email into the record the matcher works on."""
    config = config or get_config()
    validate_email(email)

    company = _clean_text(classification.company)
    position = _clean_text(classification.position)
    domain = extract_company_domain(
        email.from_address, config.consumer_mail_domains, config.ats_subdomain_markers
    )

    return ClassifiedEmail(
        email=email,
        classification=classification,
        company=company,
        position=position,
        normalized_company=normalize_company(company),
        normalized_position=normalize_title(position),
        company_domain=domain,
        from_hiring_platform=is_hiring_platform_domain(domain, config.hiring_platform_domains),
    )
