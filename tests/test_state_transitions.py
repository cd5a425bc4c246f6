"""State transition tests for the AIJob model.

Tests focus on validating the job lifecycle state machine:
- queued → processing → completed / failed is the only forward path
- processing re-entry on redelivery increments attempts
- Terminal states never change again
- Result and error are written exactly once, and never together
"""

import pytest

from wardrobe.models.ai_job import AIJob, InvalidTransition, JobStatus, JobType


def make_job() -> AIJob:
    return AIJob(type=JobType.INFER_ITEM, status=JobStatus.QUEUED)


def test_happy_path_to_completed():
    """queued → processing → completed stores the result and completion time."""
    job = make_job()

    job.mark_processing()
    assert job.status == JobStatus.PROCESSING
    assert job.attempts == 1
    assert job.completed_at is None

    job.mark_completed({"category": "top"}, model_name="vision-model")
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"category": "top"}
    assert job.model_name == "vision-model"
    assert job.error is None
    assert job.completed_at is not None


def test_redelivery_reenters_processing():
    """A retried delivery re-enters processing and counts another attempt."""
    job = make_job()
    job.mark_processing()
    job.mark_processing()

    assert job.status == JobStatus.PROCESSING
    assert job.attempts == 2


def test_queued_can_fail_directly():
    """A job whose delivery is lost before processing can still be failed."""
    job = make_job()

    job.mark_failed({"code": "PERMANENT_FAILURE", "message": "lost"})

    assert job.status == JobStatus.FAILED
    assert job.error["code"] == "PERMANENT_FAILURE"
    assert job.completed_at is not None


def test_queued_cannot_complete():
    job = make_job()

    with pytest.raises(InvalidTransition) as exc_info:
        job.mark_completed({"category": "top"})

    error_message = str(exc_info.value)
    assert "queued" in error_message
    assert "completed" in error_message


@pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED])
@pytest.mark.parametrize("target", list(JobStatus))
def test_terminal_states_are_final(terminal, target):
    """Nothing moves out of completed or failed, not even to itself."""
    job = AIJob(type=JobType.INFER_ITEM, status=terminal)

    result = {"x": 1} if target == JobStatus.COMPLETED else None
    error = {"code": "X"} if target == JobStatus.FAILED else None

    with pytest.raises(InvalidTransition):
        job.transition_to(target, result=result, error=error)


def test_nothing_moves_back_to_queued():
    job = make_job()
    job.mark_processing()

    with pytest.raises(InvalidTransition):
        job.transition_to(JobStatus.QUEUED)


def test_completion_requires_result():
    job = make_job()
    job.mark_processing()

    with pytest.raises(ValueError):
        job.mark_completed(None)  # type: ignore[arg-type]

    assert job.status == JobStatus.PROCESSING


def test_failure_requires_error_details():
    job = make_job()
    job.mark_processing()

    with pytest.raises(ValueError):
        job.mark_failed({})

    assert job.status == JobStatus.PROCESSING


def test_result_and_error_are_mutually_exclusive():
    job = make_job()
    job.mark_processing()

    with pytest.raises(ValueError):
        job.transition_to(JobStatus.COMPLETED, result={"a": 1}, error={"code": "X"})


def test_job_type_targets():
    assert JobType.GENERATE_CATALOG_IMAGE.targets_item
    assert JobType.INFER_ITEM.targets_item
    assert JobType.EXTRACT_LABEL.targets_item
    assert JobType.GENERATE_OUTFIT.targets_outfit
    assert JobType.GENERATE_OUTFIT_VISUALIZATION.targets_outfit
    assert not JobType.GENERATE_OUTFIT.targets_item
