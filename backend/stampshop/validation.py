from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from flask import current_app, has_app_context
from sqlalchemy import Boolean, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime, parse_local_date, preset_start, vietnam_range_bounds


# Largest amount accepted for any price/fee field (VND has no subunit)
MAX_AMOUNT = 999_999_999_999

PAYMENT_STATUSES = ("pending", "completed", "debt")
ORDER_STATUSES = ("active", "cancelled")
TRANSACTION_TYPES = ("import", "export", "adjustment")
USER_ROLES = ("admin", "employee")
PERIOD_PRESETS = ("day", "week", "month", "quarter", "year")
REVENUE_GROUPINGS = ("month", "quarter", "year")

PHONE_RE = re.compile(r"^[0-9]{10,11}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TAX_CODE_RE = re.compile(r"^[0-9]{10,13}$")
MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_number(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            raise ValidationError(f"{key} must be a number")
    else:
        raise ValidationError(f"{key} must be a number")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{key} must be a finite number")
    return number


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Float):
        return _coerce_number(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        try:
            return parse_local_date(str(value))
        except ValueError:
            raise ValidationError(f"{col.key} must be a YYYY-MM-DD date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str) and val == "":
            if not col.nullable:
                raise ValidationError(f"{k} cannot be blank")
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_amount(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        if patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
        if patch[key] > MAX_AMOUNT:
            raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT:,}")


def _check_format(patch: dict, key: str, pattern: re.Pattern, message: str) -> None:
    value = patch.get(key)
    if value and not pattern.match(value):
        raise ValidationError(message)


def enforce_rules_product(patch: dict) -> None:
    _check_amount(patch, "current_price")
    if "min_stock" in patch and patch["min_stock"] is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")


def enforce_rules_contact(patch: dict, *, phone_required: bool = False) -> None:
    """Shared format checks for agents, customers and users."""
    if phone_required and "phone" in patch and not patch["phone"]:
        raise ValidationError("phone is required")
    _check_format(patch, "phone", PHONE_RE, "phone must be 10-11 digits")
    _check_format(patch, "email", EMAIL_RE, "email is not a valid address")
    _check_format(patch, "tax_code", TAX_CODE_RE, "tax_code must be 10-13 digits")
    rate = patch.get("commission_rate")
    if rate is not None and not (0 <= rate <= 100):
        raise ValidationError("commission_rate must be between 0 and 100")


def enforce_rules_order(patch: dict) -> None:
    rate = patch.get("vat_rate")
    if rate is not None and not (0 <= rate <= 100):
        raise ValidationError("vat_rate must be between 0 and 100")
    _check_amount(patch, "shipping_fee")
    _check_amount(patch, "paid_amount")
    _check_amount(patch, "debt_amount")
    status = patch.get("payment_status")
    if status is not None and status not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")


def enforce_rules_user(patch: dict) -> None:
    role = patch.get("role")
    if role is not None and role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}")
    enforce_rules_contact(patch)


def validate_password(password: Any) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def validate_order_items(raw_items: Any) -> list[dict]:
    """
    Normalize order line input:
    [{"product_id": int, "quantity": int >= 1, "unit_price": number >= 0, "notes": str?}]
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    items = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"items[{idx}].product_id is required")
        product_id = _coerce_int(f"items[{idx}].product_id", raw["product_id"])
        quantity = _coerce_int(f"items[{idx}].quantity", raw.get("quantity"))
        if quantity < 1:
            raise ValidationError(f"items[{idx}].quantity must be >= 1")
        if raw.get("unit_price") is None:
            raise ValidationError(f"items[{idx}].unit_price is required")
        unit_price = _coerce_number(f"items[{idx}].unit_price", raw["unit_price"])
        if unit_price < 0:
            raise ValidationError(f"items[{idx}].unit_price must be >= 0")
        notes = raw.get("notes")
        if notes is not None:
            notes = str(notes).strip()[:500] or None
        items.append(
            {"product_id": product_id, "quantity": quantity, "unit_price": unit_price, "notes": notes}
        )
    return items


# ---------------------------------------------------------------------------
# Typed query filters
# ---------------------------------------------------------------------------

def _opt_str(args, key: str) -> Optional[str]:
    value = args.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _opt_int(args, key: str) -> Optional[int]:
    value = _opt_str(args, key)
    return None if value is None else _coerce_int(key, value)


def _opt_date(args, key: str) -> Optional[date]:
    value = _opt_str(args, key)
    if value is None:
        return None
    try:
        return parse_local_date(value)
    except ValueError:
        raise ValidationError(f"{key} must be a YYYY-MM-DD date")


def _opt_bool(args, key: str) -> Optional[bool]:
    value = _opt_str(args, key)
    if value is None:
        return None
    if value.lower() in ("1", "true", "yes"):
        return True
    if value.lower() in ("0", "false", "no"):
        return False
    raise ValidationError(f"{key} must be true or false")


@dataclass(frozen=True)
class Page:
    page: int = 1
    limit: int = 10

    def __post_init__(self):
        if self.page < 1:
            raise ValidationError("page must be >= 1")
        if self.limit < 1:
            raise ValidationError("limit must be >= 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_args(cls, args, *, default_limit: Optional[int] = None, max_limit: Optional[int] = None) -> "Page":
        """Defaults come from DEFAULT_PAGE_SIZE / MAX_PAGE_SIZE when running inside the app."""
        config = current_app.config if has_app_context() else {}
        default_limit = default_limit or config.get("DEFAULT_PAGE_SIZE", 10)
        max_limit = max_limit or config.get("MAX_PAGE_SIZE", 100)
        page = _opt_int(args, "page") or 1
        limit = _opt_int(args, "limit") or default_limit
        return cls(page=page, limit=min(limit, max_limit))


@dataclass(frozen=True)
class Period:
    """
    Inclusive Vietnam-local date range; either side may be open.

    `preset` (day|week|month|quarter|year) supplies the start when no
    start_date is given; the window then runs up to now.
    """
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    preset: Optional[str] = None

    def __post_init__(self):
        if self.preset is not None and self.preset not in PERIOD_PRESETS:
            raise ValidationError(f"period must be one of: {', '.join(PERIOD_PRESETS)}")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("start_date must be on or before end_date")

    @property
    def is_open(self) -> bool:
        return self.start_date is None and self.end_date is None and self.preset is None

    def bounds(self) -> tuple[Optional[datetime], Optional[datetime]]:
        """UTC-naive [start, end) window; either side may be None."""
        start, end = vietnam_range_bounds(self.start_date, self.end_date)
        if start is None and self.preset is not None:
            start = preset_start(self.preset)
        return start, end

    @classmethod
    def from_args(cls, args) -> "Period":
        return cls(
            start_date=_opt_date(args, "start_date"),
            end_date=_opt_date(args, "end_date"),
            preset=_opt_str(args, "period"),
        )


@dataclass(frozen=True)
class StockReportFilter:
    transaction_type: Optional[str] = None
    product_id: Optional[int] = None
    period: Period = Period()
    search: Optional[str] = None
    page: Page = Page()

    def __post_init__(self):
        if self.transaction_type is not None and self.transaction_type not in TRANSACTION_TYPES:
            raise ValidationError(
                f"transaction_type must be one of: {', '.join(TRANSACTION_TYPES)}"
            )

    @classmethod
    def from_args(cls, args, **page_opts) -> "StockReportFilter":
        return cls(
            transaction_type=_opt_str(args, "transaction_type"),
            product_id=_opt_int(args, "product_id"),
            period=Period.from_args(args),
            search=_opt_str(args, "search"),
            page=Page.from_args(args, **page_opts),
        )


@dataclass(frozen=True)
class OrderFilter:
    search: Optional[str] = None
    payment_status: Optional[str] = None
    status: Optional[str] = None
    customer_id: Optional[int] = None
    agent_id: Optional[int] = None
    period: Period = Period()
    page: Page = Page()

    def __post_init__(self):
        if self.payment_status is not None and self.payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
        if self.status is not None and self.status not in ORDER_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")

    @classmethod
    def from_args(cls, args, **page_opts) -> "OrderFilter":
        return cls(
            search=_opt_str(args, "search"),
            payment_status=_opt_str(args, "payment_status"),
            status=_opt_str(args, "status"),
            customer_id=_opt_int(args, "customer_id"),
            agent_id=_opt_int(args, "agent_id"),
            period=Period.from_args(args),
            page=Page.from_args(args, **page_opts),
        )


@dataclass(frozen=True)
class InvoiceFilter:
    search: Optional[str] = None
    payment_status: Optional[str] = None
    is_printed: Optional[bool] = None
    period: Period = Period()
    page: Page = Page()

    def __post_init__(self):
        if self.payment_status is not None and self.payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")

    @classmethod
    def from_args(cls, args, **page_opts) -> "InvoiceFilter":
        return cls(
            search=_opt_str(args, "search"),
            payment_status=_opt_str(args, "payment_status"),
            is_printed=_opt_bool(args, "is_printed"),
            period=Period.from_args(args),
            page=Page.from_args(args, **page_opts),
        )


def parse_search_args(args, **page_opts) -> tuple[Optional[str], Page]:
    """Common `?search=&page=&limit=` listing arguments."""
    return _opt_str(args, "search"), Page.from_args(args, **page_opts)


def parse_bool_arg(args, key: str) -> Optional[bool]:
    return _opt_bool(args, key)


def parse_limit_arg(args, default: int = 5, maximum: int = 100) -> int:
    limit = _opt_int(args, "limit") or default
    if limit < 1:
        raise ValidationError("limit must be >= 1")
    return min(limit, maximum)
