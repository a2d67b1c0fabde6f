from datetime import datetime, timedelta, timezone

import pytest

from onlyjobs import config as config_module
from onlyjobs.config import Config
from onlyjobs.models import ClassificationResult, Email

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class ScriptedClassifier:
    """Returns canned results keyed by subject; unknown subjects are not job related."""

    def __init__(self, replies=None):
        self.replies = dict(replies or {})
        self.calls = []

    def __call__(self, subject, body):
        self.calls.append((subject, body))
        reply = self.replies.get(subject)
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            return ClassificationResult(is_job_related=False, confidence=0.95)
        return reply


@pytest.fixture
def config(tmp_path, monkeypatch):
    cfg = Config(
        db_path=tmp_path / "onlyjobs.sqlite",
        lock_path=tmp_path / "onlyjobs.lock",
        batch_delay_seconds=0,
    )
    monkeypatch.setattr(config_module, "_config", cfg)
    return cfg


@pytest.fixture
def make_email():
    def factory(
        id,
        subject="",
        body="",
        thread_id=None,
        from_address="jobs@acme.com",
        days=0,
        account_email="me@example.com",
    ):
        return Email(
            id=id,
            thread_id=thread_id,
            account_email=account_email,
            from_address=from_address,
            subject=subject,
            body=body,
            received_at=T0 + timedelta(days=days),
        )

    return factory


@pytest.fixture
def job_reply():
    def factory(company="Acme", position="Data Analyst", status="Applied", confidence=0.95):
        return ClassificationResult(
            is_job_related=True,
            company=company,
            position=position,
            status=status,
            confidence=confidence,
        )

    return factory


@pytest.fixture
def scripted():
    return ScriptedClassifier
