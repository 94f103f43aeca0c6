"""
Job data model: what is being waited on, and what a status check said.

A JobHandle names one backend job (e-mail verification, account data
preparation, dashboard aggregation). A JobStatus is the parsed result of a
single status check. COMPLETED and FAILED are terminal; UNKNOWN covers any
response that does not match the status contract.
"""

from dataclasses import dataclass, field
from enum import Enum

from .errors import ValidationError


class JobKind(Enum):
    EMAIL_VERIFICATION = "email_verification"
    ACCOUNT_DATA_FETCH = "account_data_fetch"
    DASHBOARD_AGGREGATE = "dashboard_aggregate"


class JobState(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


@dataclass(frozen=True)
class JobHandle:
    key: str
    kind: JobKind

    def validate(self):
        """Raise ValidationError unless the key is a non-empty string."""
        if not isinstance(self.key, str) or not self.key.strip():
            raise ValidationError({"key": "A job key (e-mail or user id) is required."})
        if not isinstance(self.kind, JobKind):
            raise ValidationError({"kind": f"Unsupported job kind: {self.kind!r}"})
        return self


@dataclass(frozen=True)
class JobStatus:
    state: JobState
    payload: dict = field(default_factory=dict)

    @property
    def message(self):
        return self.payload.get("message")

    @property
    def progress(self):
        return self.payload.get("progress")

    @classmethod
    def from_response(cls, data):
        """
        Parse a `{status, progress?, message?}` body.
        Anything that doesn't fit the contract becomes UNKNOWN.
        """
        if not isinstance(data, dict):
            return cls(JobState.UNKNOWN, {"raw": data})
        payload = {k: v for k, v in data.items() if k != "status"}
        raw = data.get("status")
        if isinstance(raw, str):
            try:
                state = JobState(raw.strip().lower())
            except ValueError:
                state = JobState.UNKNOWN
        else:
            state = JobState.UNKNOWN
        if state is JobState.UNKNOWN and raw is not None:
            payload["status"] = raw
        return cls(state, payload)

    @classmethod
    def unknown(cls, message):
        return cls(JobState.UNKNOWN, {"message": message})
