import pytest

from pantry_core.errors import ValidationError
from pantry_core.jobs import JobHandle, JobKind, JobState, JobStatus


@pytest.mark.parametrize("status,expected", [
    ("pending", JobState.PENDING),
    ("completed", JobState.COMPLETED),
    ("failed", JobState.FAILED),
    ("COMPLETED", JobState.COMPLETED),
    ("exploded", JobState.UNKNOWN),
])
def test_status_strings(status, expected):
    assert JobStatus.from_response({"status": status}).state is expected


def test_payload_passes_through_unchanged():
    status = JobStatus.from_response({"status": "pending", "progress": 40, "message": "Fetching stores"})
    assert status.payload == {"progress": 40, "message": "Fetching stores"}
    assert status.progress == 40
    assert status.message == "Fetching stores"


@pytest.mark.parametrize("body", [None, [], "completed", {}, {"status": 1}, {"state": "completed"}])
def test_unrecognised_shapes_are_unknown(body):
    assert JobStatus.from_response(body).state is JobState.UNKNOWN


def test_only_completed_and_failed_are_terminal():
    assert JobState.COMPLETED.is_terminal
    assert JobState.FAILED.is_terminal
    assert not JobState.PENDING.is_terminal
    assert not JobState.UNKNOWN.is_terminal


@pytest.mark.parametrize("key", ["", "   ", None])
def test_handle_needs_non_empty_key(key):
    with pytest.raises(ValidationError) as exc:
        JobHandle(key, JobKind.EMAIL_VERIFICATION).validate()
    assert "key" in exc.value.errors


def test_valid_handle_returns_itself():
    handle = JobHandle("user-1", JobKind.ACCOUNT_DATA_FETCH)
    assert handle.validate() is handle
