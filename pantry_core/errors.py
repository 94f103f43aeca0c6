"""
Error taxonomy for the client core.

NetworkError and ApiError come from the HTTP client; ValidationError is raised
before any request is sent; the Job* errors describe how a polled backend job
ended when it did not complete.
"""


class PantryError(Exception):
    """Base class for every error raised by pantry_core."""


class NetworkError(PantryError):
    """No response was received (DNS, connection refused, timeout...)."""


class ApiError(PantryError):
    """The server answered with a non-2xx status."""

    def __init__(self, status, message, body=None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.body = body if body is not None else {}

    def __str__(self):
        return f"HTTP {self.status}: {self.message}"


class ValidationError(PantryError):
    """Client-side input rejected. `errors` maps field name -> message."""

    def __init__(self, errors):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class JobFailed(PantryError):
    """The backend reported `status: "failed"` for a job."""

    def __init__(self, handle, message=None):
        super().__init__(message or f"Job {handle.kind.value} failed")
        self.handle = handle


class JobUnknown(PantryError):
    """A status response did not match the expected contract."""

    def __init__(self, handle, message=None):
        super().__init__(message or f"Job {handle.kind.value} returned an unrecognised status")
        self.handle = handle


class JobTimedOut(JobUnknown):
    """The job stayed pending longer than the poller's maximum wait."""

    def __init__(self, handle, waited_ms):
        super().__init__(
            handle,
            f"Job {handle.kind.value} still pending after {waited_ms / 1000:.0f}s",
        )
        self.waited_ms = waited_ms
