"""Error taxonomy shared by adapters, sync and usage accounting."""

from __future__ import annotations


class CommSyncError(Exception):
    """Base class for every error raised by commsync."""

    kind = "error"


class ProviderConnectionError(CommSyncError):
    """Network failure, timeout, throttling or provider 5xx. Retried on the next pass."""

    kind = "connection"

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class AuthError(CommSyncError):
    """Credentials rejected. Not retried automatically; the account must be re-linked."""

    kind = "auth"


class PartialContentError(CommSyncError):
    """A message arrived without its body."""

    kind = "partial_content"


class QuotaExceeded(CommSyncError):
    """A plan ceiling was reached. Soft: raised only by explicit pre-action checks."""

    kind = "quota"

    def __init__(self, resource: str, used: int, total: int):
        super().__init__(f"{resource} quota exceeded: {used}/{total}")
        self.resource = resource
        self.used = used
        self.total = total


class AccountNotFound(CommSyncError):
    kind = "not_found"


class SubscriptionNotFound(CommSyncError):
    kind = "not_found"


class OrganizationNotFound(CommSyncError):
    kind = "not_found"


class MembershipRejected(CommSyncError):
    """Joining or leaving an organization is not allowed in its current state."""

    kind = "membership"


class PermissionDenied(CommSyncError):
    kind = "forbidden"


class UnsupportedProvider(CommSyncError):
    kind = "unsupported"


def error_kind(exc: BaseException) -> str:
    """Classify an arbitrary exception for sync summaries."""
    if isinstance(exc, CommSyncError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return "timeout"
    return "error"
