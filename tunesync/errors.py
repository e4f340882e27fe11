"""
Domain exceptions.

Request-time errors (NotFoundError, InvalidLikeRequest, FastStoreUnavailable)
propagate to the caller. Flush-time errors are collected per key and never
reach a request.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tunesync.sync.flusher import FlushOutcome


class TuneSyncError(Exception):
    pass


class NotFoundError(TuneSyncError):
    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class InvalidLikeRequest(TuneSyncError):
    """The entity or user id cannot be used in a LikeSet."""


class FastStoreUnavailable(TuneSyncError):
    """Redis could not be reached; the like feature is down end-to-end."""


class FlushError(TuneSyncError):
    def __init__(self, key: str, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Flush of {key} failed: {cause!r}")


class PartialBatchFailure(TuneSyncError):
    def __init__(self, outcome: "FlushOutcome"):
        self.outcome = outcome
        failed = ", ".join(key for key, _ in outcome.failed)
        super().__init__(
            f"{len(outcome.failed)} of {outcome.total} keys failed to flush: {failed}"
        )
