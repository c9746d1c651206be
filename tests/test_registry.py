import pytest

from forkq.errors import MissingCapabilityError
from forkq.registry import (
    Executable,
    FailureObserver,
    JobRegistry,
    import_job_class,
    job_name,
    resolve_perform,
)
from jobs import FailingJobWithHooks, GoodJob, NoPerformJob, SomeJob


def test_job_name() -> None:
    assert job_name("SendEmail") == "SendEmail"
    assert job_name(GoodJob) == "jobs.GoodJob"


def test_register_and_get() -> None:
    registry = JobRegistry()
    registry.register(GoodJob)
    registry.register(SomeJob, "some")

    assert registry.get("jobs.GoodJob") is GoodJob
    assert registry.get("some") is SomeJob
    assert registry.get("missing") is None


def test_register_same_class_twice_is_allowed() -> None:
    registry = JobRegistry()
    registry.register(GoodJob, "good")
    registry.register(GoodJob, "good")
    assert registry.get("good") is GoodJob


def test_register_conflicting_name_raises() -> None:
    registry = JobRegistry()
    registry.register(GoodJob, "job")

    with pytest.raises(ValueError, match="already registered"):
        registry.register(SomeJob, "job")


def test_job_decorator() -> None:
    registry = JobRegistry()

    @registry.job("send_email")
    class SendEmail:
        @staticmethod
        def perform(address: str) -> str:
            return address

    assert registry.get("send_email") is SendEmail


def test_resolve_falls_back_to_import_path() -> None:
    registry = JobRegistry()

    assert registry.resolve("jobs.SomeJob") is SomeJob
    assert registry.resolve("collections.OrderedDict") is not None
    assert registry.resolve("NotRegistered") is None
    assert registry.resolve("no_such_module.Job") is None
    assert registry.resolve(None) is None


def test_import_job_class() -> None:
    assert import_job_class("jobs.GoodJob") is GoodJob
    assert import_job_class("jobs.Missing") is None
    # Module attributes that are not classes do not count.
    assert import_job_class("jobs.ALL_JOBS") is None


def test_resolve_perform() -> None:
    assert resolve_perform(GoodJob)("Chris") == "Good job, Chris"

    with pytest.raises(MissingCapabilityError, match="has no perform method"):
        resolve_perform(NoPerformJob)

    with pytest.raises(MissingCapabilityError, match="Job class not found: Ghost"):
        resolve_perform(None, "Ghost")


def test_capability_protocols() -> None:
    assert isinstance(GoodJob, Executable)
    assert not isinstance(NoPerformJob, Executable)
    assert isinstance(FailingJobWithHooks, FailureObserver)
    assert not isinstance(GoodJob, FailureObserver)
