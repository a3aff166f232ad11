"""Shared helpers for commands that read JSON payload files."""

from __future__ import annotations

import json
from typing import Any

from pricerules.services.result import ServiceError, ServiceResult


def load_json_array(path: str, *, op: str) -> list[Any] | ServiceResult:
    """Read a JSON array from *path*, or a failed ServiceResult to emit."""
    try:
        with open(path, encoding="utf-8") as f:
            items = json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        return ServiceResult(
            ok=False,
            op=op,
            error=ServiceError(
                code="VALIDATION_FAILED",
                message=f"Error reading {path}: {exc}",
            ),
        )

    if not isinstance(items, list):
        return ServiceResult(
            ok=False,
            op=op,
            error=ServiceError(
                code="VALIDATION_FAILED",
                message="JSON file must contain a top-level array.",
            ),
        )
    return items
