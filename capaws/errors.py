"""Exceptions raised by capaws.

There is no "not found" error: finders return ``None`` for a missing
resource, and ``is_not_found`` tells such backend responses apart from
real faults.
"""

from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError

_NOT_FOUND_CODES = frozenset({
    "InvalidInstanceID.NotFound",
    "InvalidInstanceID.Malformed",
    "InvalidSubnetID.NotFound",
    "InvalidGroup.NotFound",
    "InvalidAMIID.NotFound",
    "NotFound",
})


BACKEND_ERRORS = (ClientError, BotoCoreError)
"""Exceptions a backend call can raise: API faults and transport faults."""


def error_code(exc: BaseException) -> str:
    """AWS error code of a ``ClientError``, empty for anything else."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


def is_not_found(exc: BaseException) -> bool:
    """Check if a backend exception means the resource does not exist."""
    code = error_code(exc)
    return code in _NOT_FOUND_CODES or code.endswith(".NotFound")


class CapawsError(Exception):
    """Base class for every error raised by capaws."""


class FailedDependencyError(CapawsError):
    """A resource required before provisioning is missing.

    Raised before any backend mutation; never retried internally.
    """


class BackendError(CapawsError):
    """A backend call failed.

    Carries the attempted operation and the identifiers it was called with.
    The backend exception is chained as ``__cause__``.
    """

    def __init__(self, operation: str, message: str, **context: str) -> None:
        details = " ".join(f"{k}={v!r}" for k, v in context.items())
        super().__init__(f"{message}" + (f" ({details})" if details else ""))
        self.operation = operation
        self.context = context


class InconsistencyError(CapawsError):
    """The backend acknowledged a call but returned no usable result."""


class WaitError(CapawsError):
    """An instance did not reach the requested state."""

    def __init__(self, instance_id: str, state: str, reason: str) -> None:
        state = str(state)
        super().__init__(f"Instance {instance_id!r} did not reach {state!r}: {reason}")
        self.instance_id = instance_id
        self.state = state


class ImageLookupError(CapawsError):
    """No image matches the requested base OS and Kubernetes version."""


class UnknownRoleError(CapawsError, ValueError):
    """A machine role is not one of the known roles."""

    def __init__(self, role: str) -> None:
        super().__init__(f"Unknown machine role {role!r}")
        self.role = role


class UserDataError(CapawsError):
    """User data could not be produced for an instance."""
