from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError


# Maximum price: 9,999,999.99 in base currency units
# This prevents database overflow issues and nonsensical prices
MAX_PRICE = Decimal("9999999.99")
CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Round to two decimal places, half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value: Any, field: str, *, allow_none: bool = False, allow_zero: bool = False) -> Decimal | None:
    """
    Coerce a JSON value into a Decimal money amount.

    Floats are routed through str() so 99.1 stays 99.10 rather than
    99.0999999... Booleans are rejected even though they are ints.
    """
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", details={"field": field})

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={"field": field})

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", details={"field": field})

    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be positive", details={"field": field})

    if amount > MAX_PRICE:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE}", details={"field": field})

    return quantize_money(amount)


def parse_positive_int(value: Any, field: str, *, default: int | None = None) -> int:
    """Strict integer parsing - rejects floats, bools and scientific notation."""
    if value is None:
        if default is not None:
            return default
        raise ValidationError(f"{field} is required", details={"field": field})

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        parsed = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if parsed < 1:
        raise ValidationError(f"{field} must be at least 1", details={"field": field})
    return parsed


def require_fields(payload: dict, *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )


def clean_text(value: Any, field: str, *, max_length: int, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    if len(text) > max_length:
        raise ValidationError(
            f"{field} cannot exceed {max_length} characters",
            details={"field": field, "max_length": max_length},
        )
    return text


def paginate(query, page: int | None, per_page: int | None) -> dict:
    """
    Apply page/per_page to a query.

    If page is None, returns all items (no pagination block).
    """
    if page is None:
        items = query.all()
        return {"items": items, "count": len(items)}

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    items = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
