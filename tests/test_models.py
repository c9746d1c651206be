from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from forkq.models import FailureRecord, Job, JobPayload, WorkingOnRecord


def test_payload_uses_class_alias() -> None:
    payload = JobPayload.model_validate({"class": "jobs.GoodJob", "args": ["Chris"]})

    assert payload.class_name == "jobs.GoodJob"
    assert payload.to_dict() == {"class": "jobs.GoodJob", "args": ["Chris"]}


def test_payload_args_are_always_a_list() -> None:
    assert JobPayload.model_validate({"class": "X", "args": None}).args == []
    assert JobPayload.model_validate({"class": "X", "args": 5}).args == [5]
    assert JobPayload.model_validate({"class": "X", "args": (1, 2)}).args == [1, 2]
    assert JobPayload.model_validate({"class": "X"}).args == []


def test_payload_keeps_extra_fields_and_nested_nones() -> None:
    payload = JobPayload.model_validate({"class": "X", "args": [{"a": None}], "id": "abc"})

    assert payload.to_dict() == {"class": "X", "args": [{"a": None}], "id": "abc"}


def test_payload_without_class() -> None:
    assert JobPayload.model_validate({"args": [1]}).to_dict() == {"args": [1]}


def test_job_is_immutable() -> None:
    job = Job.from_store("jobs", {"class": "jobs.SomeJob", "args": [20, "/tmp"]})

    assert job.class_name == "jobs.SomeJob"
    assert job.args == [20, "/tmp"]
    with pytest.raises(ValidationError):
        job.queue = "other"  # type: ignore[misc]


def test_job_str() -> None:
    job = Job.from_store("jobs", {"class": "jobs.GoodJob", "args": ["Chris"]})
    assert str(job) == "(Job{jobs} | jobs.GoodJob | ['Chris'])"


def test_working_on_record_round_trip() -> None:
    job = Job.from_store("jobs", {"class": "jobs.GoodJob", "args": ["Chris"]})

    record = WorkingOnRecord.for_job(job)
    restored = WorkingOnRecord.model_validate(record.model_dump(mode="json"))

    assert restored.to_job() == job
    assert restored.run_at == record.run_at


def test_job_run_at_is_stamped_and_carried_into_working_on_record() -> None:
    stamped = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    job = Job.from_store("jobs", {"class": "jobs.GoodJob"}, run_at=stamped)

    assert Job.from_store("jobs", {"class": "jobs.GoodJob"}).run_at.tzinfo is not None
    assert WorkingOnRecord.for_job(job).run_at == stamped
    assert WorkingOnRecord.for_job(job).to_job().run_at == stamped


def test_failure_record_to_dict_omits_unset_retried_at() -> None:
    record = FailureRecord(
        exception_kind="RuntimeError",
        message="Bad job!",
        worker_id="host:1:jobs",
        queue="jobs",
        payload={"class": "jobs.BadJob", "args": []},
    )

    data = record.to_dict()

    assert "retried_at" not in data
    assert data["failed_at"]
    assert FailureRecord.model_validate(data) == record
