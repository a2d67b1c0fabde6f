import pytest

from onlyjobs.models import ClassificationResult, JobStatus
from onlyjobs.status import parse_status, resolve_latest_status, resolve_status


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Offer", JobStatus.OFFER),
        ("offer extended", JobStatus.OFFER),
        ("Declined", JobStatus.DECLINED),
        ("rejected", JobStatus.DECLINED),
        ("Interview scheduled", JobStatus.INTERVIEW),
        ("Applied", JobStatus.APPLIED),
        ("application received", JobStatus.APPLIED),
        ("something else", JobStatus.APPLIED),
        (None, JobStatus.APPLIED),
        ("", JobStatus.APPLIED),
    ],
)
def test_parse_status(text, expected):
    assert parse_status(text) == expected


def test_offer_wins_over_interview_wording():
    assert parse_status("offer after final interview") == JobStatus.OFFER


def test_resolve_status_reads_classifier_status():
    result = ClassificationResult(is_job_related=True, status="Declined", confidence=0.9)
    assert resolve_status(result) == JobStatus.DECLINED


def test_latest_status_picks_up_interview(make_email):
    emails = [
        make_email("m1", subject="Thank you for applying", days=0),
        make_email("m2", subject="Interview invitation", days=30),
    ]
    result = ClassificationResult(is_job_related=True, status="Applied", confidence=0.9)
    assert resolve_latest_status(emails, result) == JobStatus.INTERVIEW


def test_latest_status_offer_dominates_later_wording(make_email):
    emails = [
        make_email("m1", subject="Congratulations!", body="We are happy to send you an offer", days=0),
        make_email("m2", subject="Re: schedule a call", body="Let's schedule time to talk", days=1),
        make_email("m3", subject="Paperwork", body="Unfortunately the portal is down", days=2),
    ]
    result = ClassificationResult(is_job_related=True, status="Applied", confidence=0.9)
    assert resolve_latest_status(emails, result) == JobStatus.OFFER


def test_latest_status_classifier_offer_is_kept(make_email):
    emails = [make_email("m1", subject="Next steps", body="please schedule your start date")]
    result = ClassificationResult(is_job_related=True, status="Offer", confidence=0.9)
    assert resolve_latest_status(emails, result) == JobStatus.OFFER


def test_latest_status_later_rejection_overrides_interview(make_email):
    emails = [
        make_email("m1", subject="Interview invitation", days=0),
        make_email("m2", subject="Your application", body="Unfortunately we went another way", days=5),
    ]
    result = ClassificationResult(is_job_related=True, status="Interview", confidence=0.9)
    assert resolve_latest_status(emails, result) == JobStatus.DECLINED


def test_latest_status_only_scans_tail(make_email):
    emails = [make_email("m0", subject="Interview invitation", days=0)] + [
        make_email(f"m{i}", subject="Update", body="thanks", days=i) for i in range(1, 4)
    ]
    result = ClassificationResult(is_job_related=True, status="Applied", confidence=0.9)
    assert resolve_latest_status(emails, result, tail_size=3) == JobStatus.APPLIED
