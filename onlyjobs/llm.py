"""LLM-backed classifier and job-match arbiter over a chat completions API."""

import json
import logging
import os
import re
from typing import Any, Optional

import requests

from .config import Config, get_config
from .errors import MalformedInput, TransientClassificationError
from .ingest import classification_from_dict
from .models import ClassificationMethod, ClassificationResult, JobSummary, MatchVerdict

logger = logging.getLogger(__name__)

API_KEY_ENV = "OPENROUTER_API_KEY"
MAX_BODY_CHARS = 3000

CLASSIFY_PROMPT = """Decide whether this email is about one of the recipient's own job applications, and extract the details. Return ONLY valid JSON.

Rules:
- is_job_related: true for application confirmations, interview invitations, assessments, offers and rejections. False for job alerts, newsletters and recommendations.
- company: the employer (NOT the job board or ATS such as LinkedIn, Indeed, Greenhouse or Workday).
- position: the job title, or null.
- status: one of "Applied", "Interview", "Offer", "Declined", or null.
- confidence: a number between 0 and 1.

Email subject: {subject}

Email body:
{body}

Return valid JSON only:
{{"is_job_related": true, "company": "Company Name", "position": "Job Title", "status": "Applied", "confidence": 0.9}}"""

MATCH_PROMPT = """Do these two records describe the same job application (same employer AND same role)? Return ONLY valid JSON.

Job 1:
Company: {a.company}
Position: {a.position}
Status: {a.status}

Job 2:
Company: {b.company}
Position: {b.position}
Status: {b.status}

Return valid JSON only:
{{"same_job": true}}"""


def parse_json_reply(content: str) -> Any:
    """Parse a model reply, tolerating markdown code fences."""
    content = re.sub(r"^```(?:json)?\s*", "", content.strip())
    content = re.sub(r"\s*```$", "", content)
    return json.loads(content.strip())


class ChatClient:
    """Minimal client for an OpenRouter-compatible chat completions endpoint."""

    def __init__(self, config: Optional[Config] = None, api_key: Optional[str] = None):
        self.config = config or get_config()
        self.api_key = api_key or os.environ.get(API_KEY_ENV)

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def complete(self, prompt: str, max_tokens: int) -> str:
        if not self.api_key:
            raise TransientClassificationError(f"{API_KEY_ENV} not set")

        try:
            response = requests.post(
                self.config.llm_api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.config.llm_model,
                    "messages": [{"role": "user", "content": prompt}],
                    "max_tokens": max_tokens,
                    "temperature": 0,
                },
                timeout=self.config.llm_timeout_seconds,
            )
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            raise TransientClassificationError(f"LLM API request failed: {e}") from e
        except ValueError as e:
            raise TransientClassificationError(f"LLM API returned invalid JSON: {e}") from e

        choices = result.get("choices") or [{}]
        return choices[0].get("message", {}).get("content", "") or ""


class LLMClassifier:
    """Classify and extract job details from one email with the LLM."""

    method = ClassificationMethod.LLM

    def __init__(self, client: Optional[ChatClient] = None, config: Optional[Config] = None):
        self.client = client or ChatClient(config)

    def classify(self, subject: str, body: str) -> ClassificationResult:
        prompt = CLASSIFY_PROMPT.format(subject=subject, body=body[:MAX_BODY_CHARS])
        content = self.client.complete(prompt, max_tokens=200)

        try:
            data = parse_json_reply(content)
        except json.JSONDecodeError as e:
            raise TransientClassificationError(f"Failed to parse LLM response as JSON: {e}") from e

        # Some models answer with a list when an email mentions several jobs
        if isinstance(data, list):
            if not data:
                raise TransientClassificationError("LLM returned an empty list")
            data = data[0]

        try:
            result = classification_from_dict(data)
        except MalformedInput as e:
            raise TransientClassificationError(str(e)) from e
        logger.debug(f"LLM classified {subject[:50]!r}: {result}")
        return result

    __call__ = classify


class LLMJobMatcher:
    """Pairwise same-job arbitration with the LLM."""

    def __init__(self, client: Optional[ChatClient] = None, config: Optional[Config] = None):
        self.client = client or ChatClient(config)

    def match(self, candidate: JobSummary, existing: JobSummary) -> MatchVerdict:
        content = self.client.complete(MATCH_PROMPT.format(a=candidate, b=existing), max_tokens=15)

        try:
            data = parse_json_reply(content)
            return MatchVerdict(same_job=bool(isinstance(data, dict) and data.get("same_job") is True))
        except json.JSONDecodeError:
            compact = content.lower().replace(" ", "")
            return MatchVerdict(same_job='"same_job":true' in compact)

    __call__ = match
