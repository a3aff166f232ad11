"""Classification enums for catalog records.

Target and promotion types come straight from the admin console's wire
format, so their values are the upper-case strings the console sends.
"""

from __future__ import annotations

from enum import StrEnum


class TargetType(StrEnum):
    """What a promotion line applies to."""

    PRODUCT = "PRODUCT"
    CATEGORY = "CATEGORY"


class PromotionType(StrEnum):
    """Discount mechanics; also the tag of the detail variant."""

    DISCOUNT_PERCENT = "DISCOUNT_PERCENT"
    DISCOUNT_AMOUNT = "DISCOUNT_AMOUNT"
    BUY_X_GET_Y = "BUY_X_GET_Y"


class HeaderStatus(StrEnum):
    """Display status of a price or promotion header at an instant."""

    INACTIVE = "inactive"
    UPCOMING = "upcoming"
    ACTIVE = "active"
    EXPIRED = "expired"


class Precedence(StrEnum):
    """How PRODUCT and CATEGORY lines combine for one product."""

    PRODUCT_OVER_CATEGORY = "product_over_category"
    COMBINED = "combined"


class GiftPolicy(StrEnum):
    """BUY_X_GET_Y handling when the gift unit is short or absent."""

    CAP = "cap"
    GRANT = "grant"
