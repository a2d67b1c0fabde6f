import json

import pytest
import requests

from onlyjobs.errors import TransientClassificationError
from onlyjobs.llm import ChatClient, LLMClassifier, LLMJobMatcher, parse_json_reply
from onlyjobs.models import ClassificationMethod, JobSummary


class _FakeResponse:
    def __init__(self, content, status_code=200):
        self.status_code = status_code
        self._content = content

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return {"choices": [{"message": {"content": self._content}}]}


def _fake_post(content, calls=None, status_code=200):
    def fake(url, headers=None, json=None, timeout=None):
        if calls is not None:
            calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        return _FakeResponse(content, status_code)

    return fake


def test_parse_json_reply_strips_fences():
    assert parse_json_reply('```json\n{"same_job": true}\n```') == {"same_job": True}


def test_classifier_sends_prompt_and_parses_reply(monkeypatch, config):
    calls = []
    reply = json.dumps(
        {"is_job_related": True, "company": "Acme", "position": "Data Analyst", "status": "Applied", "confidence": 0.93}
    )
    monkeypatch.setattr("requests.post", _fake_post(reply, calls), raising=True)

    classifier = LLMClassifier(ChatClient(config, api_key="sk-test"))
    result = classifier("Thank you for applying", "We received your application")

    assert classifier.method == ClassificationMethod.LLM
    assert result.company == "Acme"
    assert result.confidence == pytest.approx(0.93)
    assert calls[0]["url"] == config.llm_api_url
    assert calls[0]["headers"]["Authorization"] == "Bearer sk-test"
    assert calls[0]["json"]["model"] == config.llm_model
    assert "Thank you for applying" in calls[0]["json"]["messages"][0]["content"]


def test_classifier_takes_first_of_list_reply(monkeypatch, config):
    reply = json.dumps([{"is_job_related": True, "company": "Acme", "confidence": 0.9}, {"company": "Other"}])
    monkeypatch.setattr("requests.post", _fake_post(reply), raising=True)

    result = LLMClassifier(ChatClient(config, api_key="sk-test")).classify("s", "b")

    assert result.company == "Acme"


@pytest.mark.parametrize("content,status_code", [("not json at all", 200), ("{}", 500), ("[]", 200)])
def test_classifier_failures_are_transient(monkeypatch, config, content, status_code):
    monkeypatch.setattr("requests.post", _fake_post(content, status_code=status_code), raising=True)

    with pytest.raises(TransientClassificationError):
        LLMClassifier(ChatClient(config, api_key="sk-test")).classify("s", "b")


def test_network_error_is_transient(monkeypatch, config):
    def fake(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr("requests.post", fake, raising=True)

    with pytest.raises(TransientClassificationError):
        ChatClient(config, api_key="sk-test").complete("hi", max_tokens=5)


def test_missing_api_key(monkeypatch, config):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    client = ChatClient(config)

    assert not client.available
    with pytest.raises(TransientClassificationError):
        client.complete("hi", max_tokens=5)


@pytest.mark.parametrize(
    "content,expected",
    [
        ('{"same_job": true}', True),
        ('{"same_job": false}', False),
        ('Sure! {"same_job" : true}', True),
        ("no idea", False),
    ],
)
def test_job_matcher_verdicts(monkeypatch, config, content, expected):
    monkeypatch.setattr("requests.post", _fake_post(content), raising=True)
    matcher = LLMJobMatcher(ChatClient(config, api_key="sk-test"))

    verdict = matcher(JobSummary(company="Acme", position="Analyst"), JobSummary(company="Acme", position="Data Analyst"))

    assert verdict.same_job is expected
