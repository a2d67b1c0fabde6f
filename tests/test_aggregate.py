import pytest

from onlyjobs.aggregate import JobSet, attach_email, job_from_email, job_from_thread
from onlyjobs.errors import UniquenessConflict
from onlyjobs.ingest import ingest
from onlyjobs.models import JobStatus


def test_attach_keeps_contact_window_and_order(make_email, job_reply, config):
    record = ingest(make_email("m2", days=10), job_reply(), config)
    job = job_from_email(record, JobStatus.APPLIED)

    assert attach_email(job, make_email("m1", days=0), JobStatus.INTERVIEW)
    assert [ref.email_id for ref in job.emails] == ["m1", "m2"]
    assert job.first_contact_at < job.last_contact_at
    # An older email does not change the current status
    assert job.status == JobStatus.APPLIED


def test_attach_is_idempotent(make_email, job_reply, config):
    email = make_email("m1")
    job = job_from_email(ingest(email, job_reply(), config), JobStatus.APPLIED)

    assert not attach_email(job, email)
    assert job.email_count == 1


def test_jobset_rejects_second_job_for_thread(make_email, job_reply, config):
    first = ingest(make_email("m1", thread_id="T1"), job_reply(), config)
    second = ingest(make_email("m2", thread_id="T1"), job_reply(), config)
    jobs = JobSet([job_from_thread("T1", [first.email], first, JobStatus.APPLIED)])

    with pytest.raises(UniquenessConflict):
        jobs.add(job_from_thread("T1", [second.email], second, JobStatus.APPLIED))


def test_jobset_tracks_touched_jobs(make_email, job_reply, config):
    known = job_from_email(ingest(make_email("m1"), job_reply(), config), JobStatus.APPLIED)
    jobs = JobSet([known])
    assert jobs.touched() == []

    attach_email(known, make_email("m2", days=1))
    jobs.touch(known)

    assert jobs.touched() == [known]
    assert jobs.owner_of("m2") is known
