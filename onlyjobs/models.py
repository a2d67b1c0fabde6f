"""Data models for job correlation and pipeline tracking."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobStatus(str, Enum):
    """Closed set of job application statuses."""

    APPLIED = "Applied"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    DECLINED = "Declined"


class PipelineStage(str, Enum):
    """Per-email workflow stages."""

    FETCHED = "fetched"
    DIGESTED = "digested"
    CLASSIFIED = "classified"
    READY_FOR_EXTRACTION = "ready_for_extraction"
    EXTRACTED = "extracted"
    IN_JOBS = "in_jobs"

    @property
    def rank(self) -> int:
        return STAGE_RANK[self]


# digested and classified are alternative branches at the same depth
STAGE_RANK = {
    PipelineStage.FETCHED: 0,
    PipelineStage.DIGESTED: 1,
    PipelineStage.CLASSIFIED: 1,
    PipelineStage.READY_FOR_EXTRACTION: 2,
    PipelineStage.EXTRACTED: 3,
    PipelineStage.IN_JOBS: 4,
}


class ClassificationMethod(str, Enum):
    DIGEST_FILTER = "digest_filter"
    ML = "ml"
    LLM = "llm"
    HUMAN = "human"
    RULE_BASED = "rule_based"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


class Email(BaseModel):
    """One provider message, immutable once fetched."""

    model_config = ConfigDict(frozen=True)

    id: str
    thread_id: Optional[str] = None
    account_email: str = ""
    from_address: str = ""
    subject: str = ""
    body: str = ""
    received_at: datetime


class ClassificationResult(BaseModel):
    """Output of the external classifier for one email."""

    is_job_related: bool = False
    company: Optional[str] = None
    position: Optional[str] = None
    status: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class JobSummary(BaseModel):
    """The company/position/status triple handed to job-match arbitration."""

    company: Optional[str] = None
    position: Optional[str] = None
    status: Optional[str] = None


class MatchVerdict(BaseModel):
    same_job: bool = False


class ClassifiedEmail(BaseModel):
    """Canonical record produced by the ingestor for one classified email."""

    email: Email
    classification: ClassificationResult
    company: Optional[str] = None
    position: Optional[str] = None
    normalized_company: str
    normalized_position: Optional[str] = None
    company_domain: Optional[str] = None
    from_hiring_platform: bool = False

    @property
    def received_at(self) -> datetime:
        return self.email.received_at

    @property
    def is_job_related(self) -> bool:
        return self.classification.is_job_related


class EmailRef(BaseModel):
    """A member email of a job."""

    email_id: str
    thread_id: Optional[str] = None
    subject: str = ""
    from_address: str = ""
    received_at: datetime
    detected_status: Optional[JobStatus] = None
    is_primary: bool = False


class StatusChange(BaseModel):
    status: JobStatus
    email_id: Optional[str] = None
    changed_at: datetime


class Job(BaseModel):
    """A job application assembled from one or more emails."""

    job_id: str = Field(default_factory=new_job_id)
    account_email: str = ""
    company: str
    company_domain: Optional[str] = None
    normalized_company: str
    position: str
    normalized_position: Optional[str] = None
    status: JobStatus = JobStatus.APPLIED
    thread_id: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    emails: list[EmailRef]
    status_history: list[StatusChange] = Field(default_factory=list)
    first_contact_at: datetime
    last_contact_at: datetime

    @model_validator(mode="after")
    def _check_invariants(self) -> "Job":
        if not self.emails:
            raise ValueError("a job needs at least one email")
        if self.last_contact_at < self.first_contact_at:
            raise ValueError("last_contact_at precedes first_contact_at")
        return self

    @property
    def email_count(self) -> int:
        return len(self.emails)

    @property
    def email_ids(self) -> set[str]:
        return {ref.email_id for ref in self.emails}

    def summary(self) -> JobSummary:
        return JobSummary(
            company=self.company, position=self.position, status=self.status.value
        )


class PipelineRecord(BaseModel):
    """Workflow state of one email, independent of job matching."""

    gmail_message_id: str
    account_email: str = ""
    thread_id: Optional[str] = None
    pipeline_stage: PipelineStage = PipelineStage.FETCHED
    classification_method: Optional[ClassificationMethod] = None
    is_classified: bool = False
    is_job_related: Optional[bool] = None
    job_probability: float = 0.0
    needs_review: bool = False
    review_reason: Optional[str] = None
    is_rejected: bool = False
    user_classification: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    digest_reason: Optional[str] = None
    extracted: Optional[JobSummary] = None
    extraction_error: Optional[str] = None
    jobs_table_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_jobs_link(self) -> "PipelineRecord":
        in_jobs = self.pipeline_stage == PipelineStage.IN_JOBS
        if in_jobs != (self.jobs_table_id is not None):
            raise ValueError("jobs_table_id must be set exactly when the stage is in_jobs")
        return self


class RunSummary(BaseModel):
    """Counts reported at the end of a matching run."""

    total_emails: int = 0
    threads: int = 0
    orphans: int = 0
    units_total: int = 0
    units_processed: int = 0
    units_succeeded: int = 0
    units_skipped: int = 0
    units_held_for_review: int = 0
    jobs_found: int = 0
    cancelled: bool = False
