import pytest

from onlyjobs.digest import DigestDetector


@pytest.fixture
def detector():
    return DigestDetector()


def test_known_alert_address(detector, make_email):
    email = make_email("m1", subject="Your application was sent", from_address="LinkedIn <jobalerts-noreply@linkedin.com>")
    verdict = detector.detect(email)
    assert verdict.is_digest
    assert verdict.reason == "digest_address:jobalerts-noreply@linkedin.com"


def test_application_email_is_never_a_digest(detector, make_email):
    email = make_email("m1", subject="Thank you for applying to Acme", from_address="jobs@ziprecruiter.com")
    assert not detector.is_digest(email)


def test_job_board_domain(detector, make_email):
    email = make_email("m1", subject="Fresh roles for you", from_address="alerts@ziprecruiter.com")
    verdict = detector.detect(email)
    assert verdict.is_digest
    assert verdict.reason == "digest_domain:ziprecruiter.com"


def test_newsletter_platform(detector, make_email):
    email = make_email("m1", subject="This week in tech", from_address="writer@substack.com")
    assert detector.detect(email).reason == "newsletter_platform"


def test_mixed_domain_needs_digest_subject(detector, make_email):
    alert = make_email("m1", subject="30 new jobs for Data Analyst", from_address="jobs-noreply@linkedin.com")
    message = make_email("m2", subject="Quick question", from_address="recruiter@linkedin.com")

    assert detector.is_digest(alert)
    assert not detector.is_digest(message)


def test_subject_pattern_from_any_sender(detector, make_email):
    email = make_email("m1", subject="Jobs you may like", from_address="news@randomboard.io")
    assert detector.detect(email).reason == "digest_subject_pattern"


def test_body_patterns_need_two_hits(detector, make_email):
    one = make_email("m1", subject="Hello", body="Click to view all jobs")
    two = make_email("m2", subject="Hello", body="View all jobs. Manage your job alerts here.")

    assert not detector.is_digest(one)
    assert detector.detect(two).reason == "digest_body_patterns"


def test_ordinary_mail_passes(detector, make_email):
    email = make_email("m1", subject="Lunch?", body="See you at noon", from_address="friend@gmail.com")
    assert detector.detect(email).reason == "no_digest_signals"


def test_custom_domain_lists(make_email):
    detector = DigestDetector(digest_domains={"boards.example"})
    email = make_email("m1", subject="Weekly picks", from_address="x@boards.example")
    assert detector.is_digest(email)
