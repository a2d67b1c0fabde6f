"""Per-email pipeline stage state machine.

Stages only move forward::

    fetched -> digested
    fetched -> classified -> ready_for_extraction -> extracted -> in_jobs

Every transition returns a new record and raises IllegalStageTransition when
the record is not in the stage the transition starts from. Human rejection is
a flag, not a stage: a rejected record can no longer advance.
"""

import logging
from typing import Any, Optional

from .config import Config, get_config
from .errors import IllegalStageTransition
from .models import (
    ClassificationMethod,
    ClassificationResult,
    JobSummary,
    PipelineRecord,
    PipelineStage,
    utcnow,
)

logger = logging.getLogger(__name__)

HUMAN_APPROVED = "HIL_approved"
HUMAN_REJECTED = "HIL_rejected"

TRANSITIONS = {
    PipelineStage.FETCHED: {PipelineStage.DIGESTED, PipelineStage.CLASSIFIED},
    PipelineStage.DIGESTED: set(),
    PipelineStage.CLASSIFIED: {PipelineStage.READY_FOR_EXTRACTION},
    PipelineStage.READY_FOR_EXTRACTION: {PipelineStage.EXTRACTED},
    PipelineStage.EXTRACTED: {PipelineStage.IN_JOBS},
    PipelineStage.IN_JOBS: set(),
}


def new_record(
    gmail_message_id: str, account_email: str = "", thread_id: Optional[str] = None
) -> PipelineRecord:
    return PipelineRecord(
        gmail_message_id=gmail_message_id,
        account_email=account_email,
        thread_id=thread_id,
    )


def can_transition(current: PipelineStage, target: PipelineStage) -> bool:
    return target in TRANSITIONS[current]


def _advance(record: PipelineRecord, target: PipelineStage, **changes: Any) -> PipelineRecord:
    current = record.pipeline_stage
    if record.is_rejected:
        raise IllegalStageTransition(
            record.gmail_message_id, current.value, target.value, "record was rejected in review"
        )
    if not can_transition(current, target):
        reason = "stages only move forward" if target.rank <= current.rank else "stages cannot be skipped"
        raise IllegalStageTransition(record.gmail_message_id, current.value, target.value, reason)

    logger.debug(f"{record.gmail_message_id}: {current.value} -> {target.value}")
    return _update(record, pipeline_stage=target, **changes)


def _update(record: PipelineRecord, **changes: Any) -> PipelineRecord:
    data = record.model_dump()
    data.update(changes)
    data["updated_at"] = utcnow()
    return PipelineRecord.model_validate(data)


def mark_digested(record: PipelineRecord, reason: Optional[str] = None) -> PipelineRecord:
    """The digest filter flagged the email; it never reaches job matching."""
    return _advance(
        record,
        PipelineStage.DIGESTED,
        classification_method=ClassificationMethod.DIGEST_FILTER,
        is_classified=True,
        is_job_related=False,
        digest_reason=reason,
    )


def record_classification(
    record: PipelineRecord,
    result: ClassificationResult,
    method: ClassificationMethod,
    config: Optional[Config] = None,
) -> PipelineRecord:
    """Store a classifier verdict and flag uncertain ones for review."""
    config = config or get_config()
    return _advance(
        record,
        PipelineStage.CLASSIFIED,
        classification_method=method,
        is_classified=True,
        **_verdict_fields(result, config),
    )


def _verdict_fields(result: ClassificationResult, config: Config) -> dict[str, Any]:
    if result.is_job_related:
        needs_review = result.confidence < config.auto_approve_threshold
    else:
        needs_review = result.confidence < config.needs_review_threshold

    review_reason = None
    if needs_review:
        review_reason = f"low_confidence:{result.confidence:.2f}"

    return {
        "is_job_related": result.is_job_related,
        "job_probability": result.confidence,
        "needs_review": needs_review,
        "review_reason": review_reason,
    }


def reclassify(
    record: PipelineRecord,
    result: ClassificationResult,
    method: ClassificationMethod,
    config: Optional[Config] = None,
) -> PipelineRecord:
    """Replace the verdict of a classified record without changing its stage.

    Used when a newer email of the same thread decides for the whole thread.
    """
    config = config or get_config()
    if record.pipeline_stage != PipelineStage.CLASSIFIED or record.is_rejected:
        raise IllegalStageTransition(
            record.gmail_message_id,
            record.pipeline_stage.value,
            PipelineStage.CLASSIFIED.value,
            "only classified records can be reclassified",
        )
    return _update(record, classification_method=method, **_verdict_fields(result, config))


def approve(
    record: PipelineRecord, by_human: bool = False, config: Optional[Config] = None
) -> PipelineRecord:
    """Release a job-related record for extraction.

    Without ``by_human`` the classifier confidence must reach the
    auto-approve threshold.
    """
    config = config or get_config()
    target = PipelineStage.READY_FOR_EXTRACTION

    if by_human:
        if record.pipeline_stage != PipelineStage.CLASSIFIED:
            raise IllegalStageTransition(
                record.gmail_message_id, record.pipeline_stage.value, target.value
            )
        return _advance(
            record,
            target,
            is_job_related=True,
            classification_method=ClassificationMethod.HUMAN,
            needs_review=False,
            review_reason=None,
            user_classification=HUMAN_APPROVED,
            reviewed_at=utcnow(),
        )

    if not record.is_job_related:
        raise IllegalStageTransition(
            record.gmail_message_id, record.pipeline_stage.value, target.value, "not job related"
        )
    if record.job_probability < config.auto_approve_threshold:
        raise IllegalStageTransition(
            record.gmail_message_id,
            record.pipeline_stage.value,
            target.value,
            f"confidence {record.job_probability:.2f} below auto-approve threshold",
        )
    return _advance(record, target, needs_review=False, review_reason=None)


def record_extraction(record: PipelineRecord, extracted: JobSummary) -> PipelineRecord:
    return _advance(
        record, PipelineStage.EXTRACTED, extracted=extracted, extraction_error=None
    )


def record_extraction_failure(record: PipelineRecord, error: str) -> PipelineRecord:
    """Annotate a failed extraction; the record stays retryable."""
    if record.pipeline_stage != PipelineStage.READY_FOR_EXTRACTION or record.is_rejected:
        raise IllegalStageTransition(
            record.gmail_message_id,
            record.pipeline_stage.value,
            PipelineStage.READY_FOR_EXTRACTION.value,
            "only records awaiting extraction can fail extraction",
        )
    logger.warning(f"Extraction failed for {record.gmail_message_id}: {error}")
    return _update(record, extraction_error=error)


def promote(record: PipelineRecord, job_id: str) -> PipelineRecord:
    """Link an extracted record to the job it was attached to."""
    if not job_id:
        raise IllegalStageTransition(
            record.gmail_message_id,
            record.pipeline_stage.value,
            PipelineStage.IN_JOBS.value,
            "missing job id",
        )
    return _advance(record, PipelineStage.IN_JOBS, jobs_table_id=job_id)


def reject(record: PipelineRecord) -> PipelineRecord:
    """Human review marks the email as not job related and freezes it."""
    if record.pipeline_stage not in (
        PipelineStage.CLASSIFIED,
        PipelineStage.READY_FOR_EXTRACTION,
    ) or record.is_rejected:
        raise IllegalStageTransition(
            record.gmail_message_id,
            record.pipeline_stage.value,
            "rejected",
            "only classified or ready_for_extraction records can be rejected",
        )
    return _update(
        record,
        is_job_related=False,
        is_rejected=True,
        needs_review=False,
        review_reason=None,
        user_classification=HUMAN_REJECTED,
        reviewed_at=utcnow(),
    )


def set_stage(record: PipelineRecord, target: PipelineStage) -> PipelineRecord:
    """Generic forward move for callers that only know the target stage.

    No field side effects; prefer the named transitions.
    """
    if target == PipelineStage.IN_JOBS:
        raise IllegalStageTransition(
            record.gmail_message_id,
            record.pipeline_stage.value,
            target.value,
            "use promote() to link a job",
        )
    return _advance(record, target)
