"""Command line entry point and sync orchestration."""

import argparse
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional, Sequence

from filelock import FileLock, Timeout

from .config import PROJECT_ROOT, Config, get_config, load_config
from .digest import DigestDetector
from .errors import IllegalStageTransition, MalformedInput, OnlyJobsError, UniquenessConflict
from .events import ProgressSink
from .ingest import email_from_dict
from .llm import ChatClient, LLMClassifier, LLMJobMatcher
from .matcher import MatchFn
from .models import ClassificationMethod, ClassificationResult, Email, Job, PipelineRecord, PipelineStage
from .pipeline import (
    HUMAN_APPROVED,
    approve,
    mark_digested,
    new_record,
    promote,
    reclassify,
    record_classification,
    record_extraction,
    reject,
)
from .processor import ClassifyFn, ThreadAwareProcessor
from .rules import KeywordClassifier
from .store import (
    commit_job,
    get_pipeline_record,
    get_stage_counts,
    init_db,
    insert_pipeline_record,
    list_jobs,
    list_pipeline_records,
    load_jobs,
    save_pipeline_record,
)
from .threads import sort_chronologically

LOG_DIR = PROJECT_ROOT / "logs"

# Records in these stages are not classified again. A classified record still
# joins its thread when a newer email of that thread arrives.
SETTLED_STAGES = {PipelineStage.DIGESTED, PipelineStage.CLASSIFIED, PipelineStage.IN_JOBS}


def setup_logging() -> None:
    """Configure logging for the application."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "app.log"

    config = get_config()
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout),
        ],
    )


def read_input(path: Path, account_email: str) -> tuple[list[Email], int]:
    """Read exported messages; returns the valid emails and the number rejected."""
    logger = logging.getLogger(__name__)

    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("messages", [])

    emails, rejected = [], 0
    for item in data:
        try:
            emails.append(email_from_dict(item, account_email))
        except MalformedInput as e:
            logger.error(f"Skipping malformed message {item.get('id', '?')}: {e}")
            rejected += 1
    return emails, rejected


def build_collaborators(config: Config) -> tuple[ClassifyFn, Optional[MatchFn]]:
    """LLM classifier and arbiter when an API key is set, keyword rules otherwise."""
    logger = logging.getLogger(__name__)

    client = ChatClient(config)
    if client.available:
        return LLMClassifier(client), LLMJobMatcher(client)

    logger.info("No LLM API key configured, using the keyword classifier")
    return KeywordClassifier(), None


def _settle(
    record: PipelineRecord,
    job: Job,
    by_human: bool,
    config: Config,
    verdict: Optional[ClassificationResult] = None,
    method: ClassificationMethod = ClassificationMethod.LLM,
) -> PipelineRecord:
    """Walk a member record from classified up to in_jobs.

    ``verdict`` is the classification of the unit the record was matched in.
    It replaces the record's own verdict when that one cannot be approved,
    which happens to earlier emails of a thread that a newer email decided.
    """
    if record.pipeline_stage == PipelineStage.CLASSIFIED:
        stale = not record.is_job_related or record.job_probability < config.auto_approve_threshold
        if not by_human and stale and verdict is not None and verdict.is_job_related:
            record = reclassify(record, verdict, method, config)
        record = approve(record, by_human=by_human, config=config)
    if record.pipeline_stage == PipelineStage.READY_FOR_EXTRACTION:
        record = record_extraction(record, job.summary())
    return promote(record, job.job_id)


def run_pipeline(
    emails: Sequence[Email],
    account_email: str,
    classifier: Optional[ClassifyFn] = None,
    arbiter: Optional[MatchFn] = None,
    detector: Optional[DigestDetector] = None,
    config: Optional[Config] = None,
    sink: Optional[ProgressSink] = None,
) -> dict:
    """Run the email processing pipeline for one account."""
    logger = logging.getLogger(__name__)
    config = config or get_config()
    db_path = config.db_path

    if classifier is None:
        classifier, arbiter = build_collaborators(config)
    detector = detector or DigestDetector()
    method = getattr(classifier, "method", ClassificationMethod.LLM)

    stats = {
        "emails_received": len(emails),
        "emails_new": 0,
        "emails_skipped": 0,
        "digests": 0,
        "classified": 0,
        "held_for_review": 0,
        "jobs_saved": 0,
        "errors": 0,
    }

    logger.info(f"Starting sync of {len(emails)} emails for {account_email or 'default account'}")

    init_db(db_path)

    records: dict[str, PipelineRecord] = {}
    candidates: list[Email] = []
    thread_context: dict[str, list[tuple[Email, PipelineRecord]]] = {}

    for email in sort_chronologically(emails):
        try:
            record = get_pipeline_record(email.id, account_email, db_path)
            if record is None:
                record = insert_pipeline_record(
                    new_record(email.id, account_email, email.thread_id), db_path
                )
                stats["emails_new"] += 1

            if (
                email.thread_id
                and record.pipeline_stage == PipelineStage.CLASSIFIED
                and not record.is_rejected
            ):
                thread_context.setdefault(email.thread_id, []).append((email, record))
                continue

            if record.is_rejected or record.pipeline_stage in SETTLED_STAGES:
                logger.debug(f"Skipping {email.id} at stage {record.pipeline_stage.value}")
                stats["emails_skipped"] += 1
                continue

            if record.pipeline_stage == PipelineStage.FETCHED:
                verdict = detector.detect(email)
                if verdict.is_digest:
                    save_pipeline_record(mark_digested(record, verdict.reason), db_path)
                    stats["digests"] += 1
                    continue

            records[email.id] = record
            candidates.append(email)

        except Exception as e:
            logger.error(f"Error preparing email {email.id}: {e}")
            stats["errors"] += 1

    # Earlier members give the thread its context and stay in its job
    active_threads = {email.thread_id for email in candidates if email.thread_id}
    for thread_id, members in thread_context.items():
        if thread_id not in active_threads:
            stats["emails_skipped"] += len(members)
            continue
        logger.debug(f"Thread {thread_id} has new mail, re-reading {len(members)} earlier emails")
        for email, record in members:
            records[email.id] = record
            candidates.append(email)
    candidates = sort_chronologically(candidates)

    human_approved = {
        email_id
        for email_id, record in records.items()
        if record.user_classification == HUMAN_APPROVED
    }

    def review_gate(members, classification):
        if any(email.id in human_approved for email in members):
            return classification.model_copy(update={"is_job_related": True})
        if classification.is_job_related and classification.confidence < config.auto_approve_threshold:
            return None
        return classification

    known_jobs: list[Job] = []
    if candidates:
        earliest = min(email.received_at for email in candidates)
        known_jobs = load_jobs(
            account_email,
            since=earliest - timedelta(days=config.recency_days),
            thread_ids={email.thread_id for email in candidates if email.thread_id},
            db_path=db_path,
        )
        logger.info(f"Matching {len(candidates)} emails against {len(known_jobs)} known jobs")

    processor = ThreadAwareProcessor(
        classifier, arbiter=arbiter, config=config, sink=sink, review_gate=review_gate
    )
    result = processor.process(candidates, known_jobs=known_jobs)
    stats["held_for_review"] = len(result.held_for_review)
    stats["errors"] += result.summary.units_skipped

    for email_id, classification in result.classifications.items():
        record = records[email_id]
        if record.pipeline_stage != PipelineStage.FETCHED:
            continue
        try:
            record = record_classification(record, classification, method, config)
            if record.is_job_related and not record.needs_review:
                record = approve(record, config=config)
            records[email_id] = record
            save_pipeline_record(record, db_path)
            stats["classified"] += 1
        except Exception as e:
            logger.error(f"Error recording classification for {email_id}: {e}")
            stats["errors"] += 1

    for job in result.jobs:
        members = [records[ref.email_id] for ref in job.emails if ref.email_id in records]
        by_human = any(record.gmail_message_id in human_approved for record in members)
        try:
            settled = [
                _settle(
                    record,
                    job,
                    by_human,
                    config,
                    result.classifications.get(record.gmail_message_id),
                    method,
                )
                for record in members
            ]
            commit_job(job, settled, db_path)
        except (IllegalStageTransition, UniquenessConflict) as e:
            logger.error(f"Could not save job {job.company} - {job.position}: {e}")
            stats["errors"] += 1
            continue
        for record in settled:
            records[record.gmail_message_id] = record
        stats["jobs_saved"] += 1

    logger.info(
        f"Sync complete: {stats['emails_received']} received, "
        f"{stats['digests']} digests, "
        f"{stats['classified']} classified, "
        f"{stats['held_for_review']} held for review, "
        f"{stats['jobs_saved']} jobs saved"
    )

    return stats


def review_email(
    message_id: str, decision: str, account_email: str = "", config: Optional[Config] = None
) -> PipelineRecord:
    """Apply a human review decision ("approve" or "reject") to a stored record.

    Approving an email also releases the other held emails of its thread,
    since the thread was classified as one unit.
    """
    logger = logging.getLogger(__name__)
    config = config or get_config()
    record = get_pipeline_record(message_id, account_email, config.db_path)
    if record is None:
        raise MalformedInput(f"No pipeline record for message {message_id}")

    if decision != "approve":
        record = reject(record)
        save_pipeline_record(record, config.db_path)
        return record

    record = approve(record, by_human=True, config=config)
    save_pipeline_record(record, config.db_path)

    if record.thread_id:
        for sibling in list_pipeline_records(account_email, PipelineStage.CLASSIFIED, True, config.db_path):
            if sibling.thread_id == record.thread_id and not sibling.is_rejected:
                save_pipeline_record(approve(sibling, by_human=True, config=config), config.db_path)
                logger.info(f"Released {sibling.gmail_message_id} with its thread")
    return record


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="onlyjobs", description="Track job applications from email")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Classify and match exported messages")
    sync.add_argument("--input", type=Path, required=True, help="JSON file of Gmail API messages")
    sync.add_argument("--account", default="", help="Mailbox the messages belong to")

    jobs = subparsers.add_parser("jobs", help="List tracked jobs")
    jobs.add_argument("--account", default=None)
    jobs.add_argument("--status", choices=["Applied", "Interview", "Offer", "Declined"])
    jobs.add_argument("--limit", type=int, default=50)

    review = subparsers.add_parser("review", help="Approve or reject an email held for review")
    review.add_argument("decision", choices=["approve", "reject"])
    review.add_argument("message_id")
    review.add_argument("--account", default="")

    stats = subparsers.add_parser("stats", help="Show pipeline stage counts")
    stats.add_argument("--account", default=None)

    return parser


def _print_jobs(jobs: list[Job]) -> None:
    for job in jobs:
        print(
            f"{job.last_contact_at:%Y-%m-%d}  {job.status.value:<9}  "
            f"{job.company} - {job.position} ({job.email_count} emails)"
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point with concurrency protection."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        setup_logging()
    except FileNotFoundError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    logger = logging.getLogger(__name__)
    init_db(config.db_path)

    if args.command == "jobs":
        _print_jobs(list_jobs(args.account, args.status, args.limit, config.db_path))
        return 0

    if args.command == "stats":
        for stage, count in get_stage_counts(args.account, config.db_path).items():
            print(f"{stage:<22} {count}")
        return 0

    try:
        with FileLock(config.lock_path, timeout=10):
            logger.info("Acquired lock, starting")

            if args.command == "review":
                record = review_email(args.message_id, args.decision, args.account, config)
                logger.info(f"{record.gmail_message_id} is now {record.pipeline_stage.value}")
                return 0

            emails, rejected = read_input(args.input, args.account)
            stats = run_pipeline(emails, args.account, config=config)
            stats["errors"] += rejected
            return 0 if stats["errors"] == 0 else 1

    except Timeout:
        logger.warning("Could not acquire lock - another instance is running")
        return 0

    except OnlyJobsError as e:
        logger.error(str(e))
        return 1

    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
