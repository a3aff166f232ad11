"""Rule engine error taxonomy.

Every error carries a stable ``code`` and a structured ``detail`` dict so the
service layer can turn it into a :class:`ServiceError` without losing the
information an admin screen needs to render a specific message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pricerules.domain.conflicts import Conflict


@dataclass(frozen=True)
class FieldError:
    """One problem with one input field."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class RuleEngineError(Exception):
    """Base class for all rule engine errors."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail: dict[str, Any] = detail or {}


class ValidationError(RuleEngineError):
    """One or more input fields are missing, malformed, or out of range.

    All field errors are collected before raising, never one at a time.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, errors: list[FieldError], *, detail: dict[str, Any] | None = None) -> None:
        self.errors = list(errors)
        message = "; ".join(str(e) for e in self.errors) or "Invalid input"
        merged = {"errors": [e.to_dict() for e in self.errors], **(detail or {})}
        super().__init__(message, detail=merged)

    @classmethod
    def single(cls, field: str, message: str) -> ValidationError:
        return cls([FieldError(field, message)])


class ConflictError(RuleEngineError):
    """A candidate window overlaps an active one registered under the same key."""

    code = "CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        conflict: Conflict,
        item_index: int | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.conflict = conflict
        self.item_index = item_index
        merged: dict[str, Any] = {
            "key": conflict.key_repr(),
            "existing_id": conflict.existing_id,
            "existing_window": conflict.existing_window.to_dict(),
            "in_batch": conflict.in_batch,
        }
        if item_index is not None:
            merged["item_index"] = item_index
        merged.update(detail or {})
        super().__init__(message, detail=merged)


class NotFoundError(RuleEngineError):
    """A reference points at a record that does not exist."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, ref: Any, *, detail: dict[str, Any] | None = None) -> None:
        self.kind = kind
        self.ref = ref
        super().__init__(
            f"Unknown {kind}: {ref!r}",
            detail={"kind": kind, "ref": ref, **(detail or {})},
        )


class StateError(RuleEngineError):
    """A record's state no longer agrees with the record it hangs off."""

    code = "STATE_ERROR"
