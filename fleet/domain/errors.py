"""
Domain error taxonomy.

Every failure the dispatch protocol can surface is one of these classes.
Callers branch on ``category`` / ``reason``; ``detail`` is for humans.
HTTP status mapping lives in ``fleet.api.errors`` and nowhere else.
"""

from __future__ import annotations

import enum
from typing import Iterable, Optional


class ErrorCategory(str, enum.Enum):
    NOT_FOUND = "not_found"
    PRECONDITION_FAILED = "precondition_failed"
    ILLEGAL_STATE_TRANSITION = "illegal_state_transition"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    UNCLASSIFIED = "unclassified"


class ConflictReason(str, enum.Enum):
    DOUBLE_DISPATCH_PREVENTED = "DOUBLE_DISPATCH_PREVENTED"
    RESOURCE_LOCKED = "RESOURCE_LOCKED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


class DispatchError(Exception):
    """Base class for every classified failure."""

    category: ErrorCategory = ErrorCategory.UNCLASSIFIED
    code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, reason: str, detail: Optional[str] = None):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail
        # Filled in by the transaction when the operation aborts.
        self.phase = None

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "code": self.code,
            "reason": self.reason,
            "retryable": self.retryable,
        }
        if self.detail:
            body["detail"] = self.detail
        return body


class NotFound(DispatchError):
    category = ErrorCategory.NOT_FOUND
    code = "NOT_FOUND"

    @classmethod
    def for_entity(cls, entity_type, entity_id) -> "NotFound":
        name = getattr(entity_type, "value", entity_type)
        return cls(
            f"{name.upper()}_NOT_FOUND",
            f"No active {name} with id {entity_id}.",
        )


class PreconditionFailed(DispatchError):
    """The request is well-formed but the business rules reject it."""

    category = ErrorCategory.PRECONDITION_FAILED
    code = "DISPATCH_BLOCKED"


class RegistryRuleFailed(PreconditionFailed):
    """A registry or soft-delete rule rejects the change; not a dispatch."""

    code = "REGISTRY_BLOCKED"


class IllegalStateTransition(DispatchError):
    """Legitimate business state forbids the requested change."""

    category = ErrorCategory.ILLEGAL_STATE_TRANSITION
    code = "ILLEGAL_STATE_TRANSITION"


class IllegalTransition(IllegalStateTransition):
    """Raised by the state machine guard for an edge not in the table."""

    def __init__(self, entity, from_state, to_state, allowed_next: Iterable = ()):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed_next = tuple(sorted(_value(s) for s in allowed_next))
        allowed = ", ".join(self.allowed_next) or "none"
        super().__init__(
            f"ILLEGAL_{_value(entity).upper()}_TRANSITION",
            f"'{_value(from_state)}' -> '{_value(to_state)}'. Allowed: [{allowed}]",
        )


class ConcurrencyConflict(DispatchError):
    """A race was lost. Re-read, re-validate and retry the whole operation."""

    category = ErrorCategory.CONCURRENCY_CONFLICT
    code = "CONCURRENCY_CONFLICT"
    retryable = True

    def __init__(self, reason: ConflictReason, detail: Optional[str] = None):
        super().__init__(reason.value, detail)
        self.conflict = reason


class UnclassifiedError(DispatchError):
    def __init__(self, detail: Optional[str] = None):
        super().__init__("INTERNAL_ERROR", detail)


def _value(item) -> str:
    return str(getattr(item, "value", item))
