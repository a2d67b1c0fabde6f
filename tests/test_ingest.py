import base64
from datetime import datetime, timezone

import pytest

from onlyjobs.errors import MalformedInput
from onlyjobs.ingest import (
    classification_from_dict,
    email_from_dict,
    email_from_gmail_message,
    ingest,
    parse_received_at,
    strip_html,
)
from onlyjobs.normalize import UNKNOWN_COMPANY


def _b64(text):
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _gmail_message(**overrides):
    message = {
        "id": "18c1",
        "threadId": "18c0",
        "internalDate": "1709283600000",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": "Acme Careers <careers@acme.com>"},
                {"name": "Subject", "value": "Thank you for applying"},
            ],
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>Hello&nbsp;there</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Hello there, plain")}},
            ],
        },
    }
    message.update(overrides)
    return message


def test_gmail_message_prefers_plain_text():
    email = email_from_gmail_message(_gmail_message(), "me@example.com")

    assert email.id == "18c1"
    assert email.thread_id == "18c0"
    assert email.account_email == "me@example.com"
    assert email.from_address == "Acme Careers <careers@acme.com>"
    assert email.subject == "Thank you for applying"
    assert email.body == "Hello there, plain"
    assert email.received_at == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_gmail_message_falls_back_to_html():
    message = _gmail_message()
    message["payload"]["parts"] = message["payload"]["parts"][:1]

    assert email_from_gmail_message(message).body == "Hello\xa0there"


def test_gmail_message_without_id():
    with pytest.raises(MalformedInput):
        email_from_gmail_message(_gmail_message(id=""))


def test_flat_record():
    email = email_from_dict(
        {"id": "x1", "from": "hr@initech.com", "subject": "Hi", "date": "Fri, 01 Mar 2024 09:00:00 +0000"}
    )
    assert email.thread_id is None
    assert email.received_at == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_flat_record_needs_thread_or_sender():
    with pytest.raises(MalformedInput):
        email_from_dict({"id": "x1", "received_at": "2024-03-01T09:00:00Z"})


@pytest.mark.parametrize(
    "value",
    [
        1709283600000,
        1709283600,
        "1709283600000",
        "2024-03-01T09:00:00Z",
        "2024-03-01T10:00:00+01:00",
        "Fri, 01 Mar 2024 09:00:00 +0000",
        datetime(2024, 3, 1, 9, 0),
    ],
)
def test_parse_received_at(value):
    assert parse_received_at(value) == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", [None, "", "yesterday-ish"])
def test_parse_received_at_rejects_garbage(value):
    with pytest.raises(MalformedInput):
        parse_received_at(value)


def test_strip_html():
    assert strip_html("<div>Hi<br>there &amp; you</div>") == "Hi\nthere & you"


def test_classification_from_dict_cleans_values():
    result = classification_from_dict(
        {"is_job_related": "true", "company": "  Acme  ", "job_title": "Analyst", "status": "null", "confidence": 85}
    )
    assert result.is_job_related
    assert result.company == "Acme"
    assert result.position == "Analyst"
    assert result.status is None
    assert result.confidence == pytest.approx(0.85)


def test_classification_from_dict_rejects_non_objects():
    with pytest.raises(MalformedInput):
        classification_from_dict(["not", "a", "dict"])


def test_ingest_trusts_extracted_company_over_platform(make_email, job_reply, config):
    record = ingest(make_email("m1", from_address="no-reply@greenhouse.io"), job_reply(company="Acme Corp"), config)

    assert record.normalized_company == "acme"
    assert record.company_domain == "greenhouse.io"
    assert record.from_hiring_platform


def test_ingest_missing_company(make_email, job_reply, config):
    record = ingest(make_email("m1"), job_reply(company="N/A", position=None), config)

    assert record.company is None
    assert record.normalized_company == UNKNOWN_COMPANY
    assert record.normalized_position is None
