from onlyjobs.models import ClassificationMethod
from onlyjobs.rules import KeywordClassifier, extract_company, extract_position


def test_application_confirmation():
    result = KeywordClassifier()(
        "Thank you for applying",
        "Thank you for applying to Acme for the Data Analyst position. We will be in touch.",
    )
    assert result.is_job_related
    assert result.status == "Applied"
    assert result.company == "Acme"
    assert result.position == "Data Analyst"
    assert result.confidence >= 0.9


def test_rejection_wins_over_thanks():
    result = KeywordClassifier().classify(
        "Your application",
        "Thank you for your interest. Unfortunately, we have decided to move forward with other candidates.",
    )
    assert result.status == "Declined"


def test_offer_checked_first():
    result = KeywordClassifier().classify("Offer letter", "We are pleased to offer you the role. Thank you for applying!")
    assert result.status == "Offer"


def test_interview_invitation():
    result = KeywordClassifier().classify("Next steps", "We would like to schedule an interview with you.")
    assert result.status == "Interview"


def test_unrelated_email():
    classifier = KeywordClassifier()
    result = classifier.classify("Dinner plans", "Are we still on for Friday?")
    assert not result.is_job_related
    assert classifier.method == ClassificationMethod.RULE_BASED


def test_missing_company_lowers_confidence():
    result = KeywordClassifier().classify("Application received", "We received your application.")
    assert result.company is None
    assert result.confidence < 0.9


def test_extractors():
    assert extract_company("We appreciate your interest in joining Globex Labs.") == "Globex Labs"
    assert extract_position("Application for the Senior Backend Engineer role") == "Senior Backend Engineer"
    assert extract_position("nothing to see") is None
