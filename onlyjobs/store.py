"""SQLite persistence for pipeline records and jobs."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .config import get_config
from .errors import UniquenessConflict
from .models import EmailRef, Job, PipelineRecord, PipelineStage, StatusChange, utcnow

logger = logging.getLogger(__name__)

STAGES = ", ".join(f"'{stage.value}'" for stage in PipelineStage)

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS email_pipeline (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gmail_message_id TEXT NOT NULL,
    account_email TEXT NOT NULL DEFAULT '',
    thread_id TEXT,
    pipeline_stage TEXT NOT NULL DEFAULT 'fetched' CHECK (pipeline_stage IN ({STAGES})),
    classification_method TEXT,
    is_classified INTEGER NOT NULL DEFAULT 0,
    is_job_related INTEGER,
    job_probability REAL NOT NULL DEFAULT 0,
    needs_review INTEGER NOT NULL DEFAULT 0,
    review_reason TEXT,
    is_rejected INTEGER NOT NULL DEFAULT 0,
    user_classification TEXT,
    reviewed_at TEXT,
    digest_reason TEXT,
    extracted TEXT,
    extraction_error TEXT,
    jobs_table_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (gmail_message_id, account_email),
    CHECK ((pipeline_stage = 'in_jobs') = (jobs_table_id IS NOT NULL))
);

CREATE INDEX IF NOT EXISTS idx_pipeline_stage ON email_pipeline (account_email, pipeline_stage);
CREATE INDEX IF NOT EXISTS idx_pipeline_review ON email_pipeline (needs_review);

CREATE TABLE IF NOT EXISTS job_applications (
    job_id TEXT PRIMARY KEY,
    account_email TEXT NOT NULL DEFAULT '',
    company TEXT NOT NULL,
    company_domain TEXT,
    normalized_company TEXT NOT NULL,
    position TEXT NOT NULL,
    normalized_position TEXT,
    status TEXT NOT NULL CHECK (status IN ('Applied', 'Interview', 'Offer', 'Declined')),
    thread_id TEXT,
    confidence REAL NOT NULL DEFAULT 0,
    first_contact_at TEXT NOT NULL,
    last_contact_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (account_email, thread_id)
);

CREATE INDEX IF NOT EXISTS idx_jobs_company ON job_applications (account_email, normalized_company);

CREATE TABLE IF NOT EXISTS job_emails (
    job_id TEXT NOT NULL REFERENCES job_applications (job_id) ON DELETE CASCADE,
    account_email TEXT NOT NULL DEFAULT '',
    email_id TEXT NOT NULL,
    thread_id TEXT,
    subject TEXT,
    from_address TEXT,
    received_at TEXT NOT NULL,
    detected_status TEXT,
    is_primary INTEGER NOT NULL DEFAULT 0,
    UNIQUE (account_email, email_id)
);

CREATE TABLE IF NOT EXISTS job_status_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES job_applications (job_id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    email_id TEXT,
    changed_at TEXT NOT NULL
);
"""

RECORD_COLUMNS = [
    "gmail_message_id",
    "account_email",
    "thread_id",
    "pipeline_stage",
    "classification_method",
    "is_classified",
    "is_job_related",
    "job_probability",
    "needs_review",
    "review_reason",
    "is_rejected",
    "user_classification",
    "reviewed_at",
    "digest_reason",
    "extracted",
    "extraction_error",
    "jobs_table_id",
    "created_at",
    "updated_at",
]


def _ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get SQLite database connection."""
    path = Path(db_path or get_config().db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Optional[Path] = None) -> None:
    """Initialize database schema."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
        logger.debug("Database initialized")
    finally:
        conn.close()


# Pipeline records


def _record_row(record: PipelineRecord) -> tuple:
    data = record.model_dump(mode="json")
    data["extracted"] = json.dumps(data["extracted"]) if data["extracted"] is not None else None
    for field in ("created_at", "updated_at", "reviewed_at"):
        data[field] = _ts(getattr(record, field))
    return tuple(data[column] for column in RECORD_COLUMNS)


def _record_from_row(row: sqlite3.Row) -> PipelineRecord:
    data = {column: row[column] for column in RECORD_COLUMNS}
    if data["extracted"]:
        data["extracted"] = json.loads(data["extracted"])
    return PipelineRecord.model_validate(data)


def _upsert_record(conn: sqlite3.Connection, record: PipelineRecord) -> None:
    updates = ", ".join(
        f"{column} = excluded.{column}"
        for column in RECORD_COLUMNS
        if column not in ("gmail_message_id", "account_email", "created_at")
    )
    conn.execute(
        f"""
        INSERT INTO email_pipeline ({", ".join(RECORD_COLUMNS)})
        VALUES ({", ".join("?" for _ in RECORD_COLUMNS)})
        ON CONFLICT (gmail_message_id, account_email) DO UPDATE SET {updates}
        """,
        _record_row(record),
    )


def insert_pipeline_record(record: PipelineRecord, db_path: Optional[Path] = None) -> PipelineRecord:
    """Insert a new record; a second record for the same message is a conflict."""
    conn = get_connection(db_path)
    try:
        with conn:
            conn.execute(
                f"""
                INSERT INTO email_pipeline ({", ".join(RECORD_COLUMNS)})
                VALUES ({", ".join("?" for _ in RECORD_COLUMNS)})
                """,
                _record_row(record),
            )
        logger.debug(f"Inserted pipeline record {record.gmail_message_id}")
        return record
    except sqlite3.IntegrityError as e:
        raise UniquenessConflict(
            "pipeline record", f"{record.account_email}/{record.gmail_message_id}"
        ) from e
    finally:
        conn.close()


def get_pipeline_record(
    gmail_message_id: str, account_email: str = "", db_path: Optional[Path] = None
) -> Optional[PipelineRecord]:
    conn = get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM email_pipeline WHERE gmail_message_id = ? AND account_email = ?",
            (gmail_message_id, account_email),
        ).fetchone()
        return _record_from_row(row) if row else None
    finally:
        conn.close()


def save_pipeline_record(record: PipelineRecord, db_path: Optional[Path] = None) -> None:
    """Insert or update a record after a stage transition."""
    conn = get_connection(db_path)
    try:
        with conn:
            _upsert_record(conn, record)
    finally:
        conn.close()


def list_pipeline_records(
    account_email: Optional[str] = None,
    stage: Optional[PipelineStage] = None,
    needs_review: Optional[bool] = None,
    db_path: Optional[Path] = None,
) -> list[PipelineRecord]:
    """List records, optionally filtered by account, stage or review flag."""
    clauses, params = [], []
    if account_email is not None:
        clauses.append("account_email = ?")
        params.append(account_email)
    if stage is not None:
        clauses.append("pipeline_stage = ?")
        params.append(PipelineStage(stage).value)
    if needs_review is not None:
        clauses.append("needs_review = ?")
        params.append(int(needs_review))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = get_connection(db_path)
    try:
        cursor = conn.execute(f"SELECT * FROM email_pipeline {where} ORDER BY id", params)
        return [_record_from_row(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def get_stage_counts(account_email: Optional[str] = None, db_path: Optional[Path] = None) -> dict[str, int]:
    """Number of records per pipeline stage, every stage included."""
    counts = {stage.value: 0 for stage in PipelineStage}
    conn = get_connection(db_path)
    try:
        if account_email is None:
            cursor = conn.execute(
                "SELECT pipeline_stage, COUNT(*) AS n FROM email_pipeline GROUP BY pipeline_stage"
            )
        else:
            cursor = conn.execute(
                """
                SELECT pipeline_stage, COUNT(*) AS n FROM email_pipeline
                WHERE account_email = ? GROUP BY pipeline_stage
                """,
                (account_email,),
            )
        for row in cursor.fetchall():
            counts[row["pipeline_stage"]] = row["n"]
        return counts
    finally:
        conn.close()


# Jobs


def _check_ownership(conn: sqlite3.Connection, job: Job) -> None:
    if job.thread_id is not None:
        row = conn.execute(
            """
            SELECT job_id FROM job_applications
            WHERE account_email = ? AND thread_id = ? AND job_id != ?
            """,
            (job.account_email, job.thread_id, job.job_id),
        ).fetchone()
        if row:
            raise UniquenessConflict("job thread", job.thread_id)

    for ref in job.emails:
        row = conn.execute(
            "SELECT job_id FROM job_emails WHERE account_email = ? AND email_id = ? AND job_id != ?",
            (job.account_email, ref.email_id, job.job_id),
        ).fetchone()
        if row:
            raise UniquenessConflict("job email", ref.email_id)


def _write_job(conn: sqlite3.Connection, job: Job) -> None:
    conn.execute(
        """
        INSERT INTO job_applications (
            job_id, account_email, company, company_domain, normalized_company,
            position, normalized_position, status, thread_id, confidence,
            first_contact_at, last_contact_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (job_id) DO UPDATE SET
            company = excluded.company,
            company_domain = excluded.company_domain,
            normalized_company = excluded.normalized_company,
            position = excluded.position,
            normalized_position = excluded.normalized_position,
            status = excluded.status,
            thread_id = excluded.thread_id,
            confidence = excluded.confidence,
            first_contact_at = excluded.first_contact_at,
            last_contact_at = excluded.last_contact_at,
            updated_at = excluded.updated_at
        """,
        (
            job.job_id,
            job.account_email,
            job.company,
            job.company_domain,
            job.normalized_company,
            job.position,
            job.normalized_position,
            job.status.value,
            job.thread_id,
            job.confidence,
            _ts(job.first_contact_at),
            _ts(job.last_contact_at),
            _ts(utcnow()),
        ),
    )

    conn.execute("DELETE FROM job_emails WHERE job_id = ?", (job.job_id,))
    conn.executemany(
        """
        INSERT INTO job_emails (
            job_id, account_email, email_id, thread_id, subject, from_address,
            received_at, detected_status, is_primary
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                job.job_id,
                job.account_email,
                ref.email_id,
                ref.thread_id,
                ref.subject,
                ref.from_address,
                _ts(ref.received_at),
                ref.detected_status.value if ref.detected_status else None,
                int(ref.is_primary),
            )
            for ref in job.emails
        ],
    )

    conn.execute("DELETE FROM job_status_history WHERE job_id = ?", (job.job_id,))
    conn.executemany(
        "INSERT INTO job_status_history (job_id, status, email_id, changed_at) VALUES (?, ?, ?, ?)",
        [
            (job.job_id, change.status.value, change.email_id, _ts(change.changed_at))
            for change in job.status_history
        ],
    )


def commit_job(
    job: Job, records: Iterable[PipelineRecord] = (), db_path: Optional[Path] = None
) -> None:
    """Persist a job with its member emails and the promoted pipeline records.

    Everything is written in one transaction: on any failure nothing is kept.
    """
    records = list(records)
    conn = get_connection(db_path)
    try:
        with conn:
            _check_ownership(conn, job)
            _write_job(conn, job)
            for record in records:
                _upsert_record(conn, record)
        logger.debug(f"Committed {job.job_id} with {job.email_count} emails, {len(records)} records")
    except sqlite3.IntegrityError as e:
        raise UniquenessConflict("job", job.job_id) from e
    finally:
        conn.close()


def _jobs_from_rows(conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Job]:
    if not rows:
        return []
    ids = [row["job_id"] for row in rows]
    marks = ", ".join("?" for _ in ids)

    emails: dict[str, list[EmailRef]] = {job_id: [] for job_id in ids}
    for row in conn.execute(
        f"SELECT * FROM job_emails WHERE job_id IN ({marks}) ORDER BY received_at, email_id", ids
    ):
        emails[row["job_id"]].append(
            EmailRef(
                email_id=row["email_id"],
                thread_id=row["thread_id"],
                subject=row["subject"] or "",
                from_address=row["from_address"] or "",
                received_at=row["received_at"],
                detected_status=row["detected_status"],
                is_primary=bool(row["is_primary"]),
            )
        )

    history: dict[str, list[StatusChange]] = {job_id: [] for job_id in ids}
    for row in conn.execute(
        f"SELECT * FROM job_status_history WHERE job_id IN ({marks}) ORDER BY id", ids
    ):
        history[row["job_id"]].append(
            StatusChange(status=row["status"], email_id=row["email_id"], changed_at=row["changed_at"])
        )

    jobs = []
    for row in rows:
        data = dict(row)
        data.pop("updated_at", None)
        data["emails"] = emails[row["job_id"]]
        data["status_history"] = history[row["job_id"]]
        jobs.append(Job.model_validate(data))
    return jobs


def load_jobs(
    account_email: str = "",
    since: Optional[datetime] = None,
    thread_ids: Iterable[str] = (),
    db_path: Optional[Path] = None,
) -> list[Job]:
    """Jobs of an account to seed a matching run.

    With ``since`` only jobs contacted since then are returned, plus any job
    owning one of ``thread_ids`` however old it is.
    """
    thread_ids = [t for t in thread_ids if t]
    conn = get_connection(db_path)
    try:
        if since is None:
            rows = conn.execute(
                "SELECT * FROM job_applications WHERE account_email = ?", (account_email,)
            ).fetchall()
        else:
            query = "SELECT * FROM job_applications WHERE account_email = ? AND (last_contact_at >= ?"
            params: list = [account_email, _ts(since)]
            if thread_ids:
                query += f" OR thread_id IN ({', '.join('?' for _ in thread_ids)})"
                params.extend(thread_ids)
            rows = conn.execute(query + ")", params).fetchall()
        return _jobs_from_rows(conn, rows)
    finally:
        conn.close()


def get_job(job_id: str, db_path: Optional[Path] = None) -> Optional[Job]:
    conn = get_connection(db_path)
    try:
        row = conn.execute("SELECT * FROM job_applications WHERE job_id = ?", (job_id,)).fetchone()
        jobs = _jobs_from_rows(conn, [row] if row else [])
        return jobs[0] if jobs else None
    finally:
        conn.close()


def list_jobs(
    account_email: Optional[str] = None,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    db_path: Optional[Path] = None,
) -> list[Job]:
    """Jobs ordered by most recent contact."""
    clauses, params = [], []
    if account_email is not None:
        clauses.append("account_email = ?")
        params.append(account_email)
    if status is not None:
        clauses.append("status = ?")
        params.append(status)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    query = f"SELECT * FROM job_applications {where} ORDER BY last_contact_at DESC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)

    conn = get_connection(db_path)
    try:
        return _jobs_from_rows(conn, conn.execute(query, params).fetchall())
    finally:
        conn.close()
