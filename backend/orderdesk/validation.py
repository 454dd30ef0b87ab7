from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from .errors import ValidationError
from .time_utils import parse_iso_date, parse_iso_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# Prevents integer overflow and nonsensical figures
MAX_AMOUNT_CENTS = 999_999_999
MAX_QUANTITY = 1_000_000
MAX_TAX_RATE_BPS = 10_000

PAYMENT_METHODS = frozenset({"CASH", "TRANSFER", "CARD", "CHECK", "OTHER"})


@dataclass(frozen=True)
class ItemInput:
    """A validated line item ready to be persisted."""
    description: str
    quantity: int
    unit_price_cents: int
    sort_order: int | None = None

    @property
    def total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class PaymentInput:
    amount_cents: int
    method: str
    reference: str | None = None
    paid_at: datetime | None = None


def require_object(data: Any, what: str = "Request body") -> dict:
    if not isinstance(data, dict):
        raise ValidationError(f"{what} must be a JSON object")
    return data


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats, decimals and scientific notation so that money
    and quantities never silently lose precision.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def get_int(
    data: dict,
    field: str,
    *,
    required: bool = True,
    minimum: int | None = None,
    maximum: int | None = None,
    default: int | None = None,
) -> int | None:
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return default
    number = coerce_int(value, field)
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field)
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", field=field)
    return number


def get_str(data: dict, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return value


def get_date(data: dict, field: str) -> date | None:
    value = data.get(field)
    if value is None or isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field)
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field)


def get_datetime(data: dict, field: str) -> datetime | None:
    value = data.get(field)
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)


def normalize_amount(value: Any, field: str = "amount_cents") -> int:
    """Positive money amount in cents."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    amount = coerce_int(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed ({MAX_AMOUNT_CENTS})", field=field)
    return amount


def normalize_tax_rate(value: Any, default: int) -> int:
    if value is None:
        return default
    rate = coerce_int(value, "tax_rate_bps")
    if rate < 0 or rate > MAX_TAX_RATE_BPS:
        raise ValidationError(f"tax_rate_bps must be between 0 and {MAX_TAX_RATE_BPS}", field="tax_rate_bps")
    return rate


def normalize_item(raw: Any, position: int | None = None) -> ItemInput:
    label = "item" if position is None else f"items[{position}]"
    data = require_object(raw, label)
    description = get_str(data, "description", required=True, max_length=500)
    quantity = get_int(data, "quantity", minimum=1, maximum=MAX_QUANTITY)
    unit_price_cents = get_int(data, "unit_price_cents", minimum=0, maximum=MAX_AMOUNT_CENTS)
    sort_order = get_int(data, "sort_order", required=False, minimum=0)
    return ItemInput(
        description=description,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        sort_order=sort_order,
    )


def normalize_items(raw: Any) -> list[ItemInput]:
    if raw is None or (isinstance(raw, list) and not raw):
        raise ValidationError("At least one item is required", field="items")
    if not isinstance(raw, list):
        raise ValidationError("items must be a list", field="items")
    return [normalize_item(entry, index) for index, entry in enumerate(raw)]


def normalize_payment(raw: Any) -> PaymentInput:
    data = require_object(raw, "payment")
    amount = normalize_amount(data.get("amount_cents"))
    method = (get_str(data, "method") or "CASH").upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {sorted(PAYMENT_METHODS)}",
            field="method",
        )
    return PaymentInput(
        amount_cents=amount,
        method=method,
        reference=get_str(data, "reference", max_length=128),
        paid_at=get_datetime(data, "paid_at"),
    )
