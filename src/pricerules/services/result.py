"""What every service call hands back: a ServiceResult, never an exception.

Rule-engine failures (validation, conflicts, missing records, illegal
state changes) are folded into ``ServiceResult.error`` so the CLI and any
embedding application branch on ``ok`` instead of catching.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from pricerules.domain.errors import RuleEngineError


class ServiceError(BaseModel):
    """Machine-readable failure: a stable code, a message, and context."""

    model_config = {"frozen": True}

    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: RuleEngineError) -> ServiceError:
        return cls(code=exc.code, message=exc.message, detail=exc.detail)

    @property
    def field_errors(self) -> list[dict[str, str]]:
        """Per-field problems carried by a ``VALIDATION_FAILED`` error."""
        return list(self.detail.get("errors", []))


class ServiceResult(BaseModel):
    """Outcome of one operation.

    Attributes:
        ok: False exactly when ``error`` is set.
        op: Operation name, e.g. ``"insert_price"``; renderers key on it.
        data: The operation's payload (a contracts model, dumped).
        warnings: Advisory messages that did not stop the operation.
        error: Why the operation was rejected.
        meta: ``catalog_version`` and, under ``--verbose``, span timings.
    """

    model_config = {"frozen": True}

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: ServiceError | None = None
    meta: dict[str, Any] | None = None

    @property
    def catalog_version(self) -> int | None:
        """Catalog version the operation read or wrote, when it touched the catalog."""
        return (self.meta or {}).get("catalog_version")
