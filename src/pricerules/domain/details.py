"""PromotionDetail variants and their validation.

A detail is a tagged union keyed by its line's promotion type. Each variant
declares only the fields it uses, and those fields are mandatory within the
variant, so a percent rule can never carry a gift unit by accident.

:func:`validate_detail` is the single place where raw admin payloads are
checked. It is pure, accepts camelCase or snake_case keys and string-typed
values, and reports every problem at once.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Literal

from pydantic import ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from pricerules.domain.errors import FieldError, ValidationError
from pricerules.domain.records import Record
from pricerules.domain.types import PromotionType


class _DetailBase(Record):
    model_config = ConfigDict(extra="forbid")

    id: int
    promotion_line_id: int
    active: bool = True


class PercentDetail(_DetailBase):
    """DISCOUNT_PERCENT parameters."""

    type: Literal[PromotionType.DISCOUNT_PERCENT] = PromotionType.DISCOUNT_PERCENT
    discount_percent: Decimal
    min_amount: Decimal | None = None
    max_discount: Decimal | None = None


class AmountDetail(_DetailBase):
    """DISCOUNT_AMOUNT parameters."""

    type: Literal[PromotionType.DISCOUNT_AMOUNT] = PromotionType.DISCOUNT_AMOUNT
    discount_amount: Decimal
    min_amount: Decimal | None = None
    max_discount: Decimal | None = None


class BuyXGetYDetail(_DetailBase):
    """BUY_X_GET_Y parameters."""

    type: Literal[PromotionType.BUY_X_GET_Y] = PromotionType.BUY_X_GET_Y
    condition_product_unit_id: int
    condition_quantity: int
    gift_product_unit_id: int
    free_quantity: int


AnyDetail = PercentDetail | AmountDetail | BuyXGetYDetail

PromotionDetail = Annotated[
    AnyDetail,
    Field(discriminator="type"),
]

DETAIL_ADAPTER: TypeAdapter[AnyDetail] = TypeAdapter(PromotionDetail)

# field name -> (kind, required)
_VARIANT_FIELDS: dict[PromotionType, dict[str, tuple[str, bool]]] = {
    PromotionType.DISCOUNT_PERCENT: {
        "discount_percent": ("percent", True),
        "min_amount": ("min_amount", False),
        "max_discount": ("money", False),
    },
    PromotionType.DISCOUNT_AMOUNT: {
        "discount_amount": ("money", True),
        "min_amount": ("min_amount", False),
        "max_discount": ("money", False),
    },
    PromotionType.BUY_X_GET_Y: {
        "condition_product_unit_id": ("id", True),
        "condition_quantity": ("quantity", True),
        "gift_product_unit_id": ("id", True),
        "free_quantity": ("quantity", True),
    },
}

_ALL_VARIANT_FIELDS = frozenset(name for shape in _VARIANT_FIELDS.values() for name in shape)
_BOOKKEEPING_FIELDS = frozenset({"id", "promotion_line_id", "active", "type"})
_KNOWN_FIELDS = _ALL_VARIANT_FIELDS | _BOOKKEEPING_FIELDS
_CAMEL_TO_SNAKE = {to_camel(name): name for name in _KNOWN_FIELDS}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except InvalidOperation as exc:
        raise ValueError("must be a number") from exc
    if not result.is_finite():
        raise ValueError("must be a finite number")
    return result


def _to_int(value: Any) -> int:
    number = _to_decimal(value)
    if number != number.to_integral_value():
        raise ValueError("must be a whole number")
    return int(number)


def _coerce(kind: str, value: Any) -> Decimal | int:
    if kind == "percent":
        number = _to_decimal(value)
        if not Decimal(0) < number <= Decimal(100):
            raise ValueError("must be greater than 0 and at most 100")
        return number
    if kind == "money":
        number = _to_decimal(value)
        if number <= 0:
            raise ValueError("must be greater than 0")
        return number
    if kind == "min_amount":
        number = _to_decimal(value)
        if number < 0:
            raise ValueError("must not be negative")
        return number
    if kind == "quantity":
        count = _to_int(value)
        if count <= 0:
            raise ValueError("must be a positive whole number")
        return count
    if kind == "id":
        ref = _to_int(value)
        if ref <= 0:
            raise ValueError("must be a valid id")
        return ref
    msg = f"Unknown field kind: {kind!r}"
    raise AssertionError(msg)


def _normalize_keys(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {_CAMEL_TO_SNAKE.get(key, key): value for key, value in payload.items()}


def _check(
    payload: Mapping[str, Any],
    line_type: PromotionType,
) -> tuple[dict[str, Any], list[FieldError]]:
    data = _normalize_keys(payload)
    shape = _VARIANT_FIELDS[line_type]
    errors: list[FieldError] = []
    cleaned: dict[str, Any] = {}

    declared = data.get("type")
    if not _is_blank(declared) and str(declared) != str(line_type):
        errors.append(
            FieldError("type", f"detail type {declared} does not match line type {line_type}")
        )

    for name, (kind, required) in shape.items():
        raw = data.get(name)
        if _is_blank(raw):
            if required:
                errors.append(FieldError(name, f"is required for {line_type}"))
            continue
        try:
            cleaned[name] = _coerce(kind, raw)
        except ValueError as exc:
            errors.append(FieldError(name, str(exc)))

    for name, raw in data.items():
        if name in shape or name in _BOOKKEEPING_FIELDS:
            continue
        if name in _ALL_VARIANT_FIELDS:
            if not _is_blank(raw):
                errors.append(FieldError(name, f"is not allowed for {line_type}"))
            continue
        errors.append(FieldError(name, "unknown field"))

    return cleaned, errors


def validate_detail(payload: Mapping[str, Any], line_type: PromotionType) -> list[FieldError]:
    """Every problem with *payload* as a detail of a *line_type* line.

    An empty list means the payload is valid.
    """
    _, errors = _check(payload, line_type)
    return errors


def clean_detail(payload: Mapping[str, Any], line_type: PromotionType) -> dict[str, Any]:
    """Typed variant fields parsed from *payload*.

    Raises:
        ValidationError: Carrying every field error found.
    """
    cleaned, errors = _check(payload, line_type)
    if errors:
        raise ValidationError(errors)
    return cleaned


def build_detail(
    payload: Mapping[str, Any],
    line_type: PromotionType,
    *,
    detail_id: int,
    line_id: int,
    active: bool = True,
) -> AnyDetail:
    """Validate *payload* and build the matching detail variant."""
    cleaned = clean_detail(payload, line_type)
    return DETAIL_ADAPTER.validate_python(
        {
            "id": detail_id,
            "promotion_line_id": line_id,
            "active": active,
            "type": line_type,
            **cleaned,
        }
    )


def detail_fields(detail: AnyDetail) -> dict[str, Any]:
    """Variant-specific fields of *detail* (no bookkeeping fields)."""
    values = {name: getattr(detail, name) for name in _VARIANT_FIELDS[detail.type]}
    return {name: value for name, value in values.items() if value is not None}


def merge_detail_payload(detail: AnyDetail, payload: Mapping[str, Any]) -> dict[str, Any]:
    """*payload* laid over the stored fields of *detail*.

    A blank value in *payload* clears an optional field; the result is
    meant for :func:`clean_detail`.
    """
    return {**detail_fields(detail), **_normalize_keys(payload)}
