from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from docflow.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .money import MAX_PERCENT_BPS
from .models.line_items import LINE_ITEM_FIELDS, VALID_LINE_KINDS


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Tenant identity always comes from the session; these keys are dropped
# from client payloads without complaint.
TENANT_KEYS = frozenset({"org_id", "tenant_id"})

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_TRANSFER = "TRANSFER"
PAYMENT_CHECK = "CHECK"
PAYMENT_OTHER = "OTHER"

VALID_PAYMENT_METHODS = (
    PAYMENT_CASH,
    PAYMENT_CARD,
    PAYMENT_TRANSFER,
    PAYMENT_CHECK,
    PAYMENT_OTHER,
)


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


QUOTATION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"customer_id", "valid_until", "notes", "discount_bps", "discount_flat_cents"}),
    required_on_create=frozenset({"customer_id"}),
)
QUOTATION_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"customer_id", "valid_until", "notes"}),
)
INVOICE_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"customer_id", "due_date", "notes", "discount_bps", "discount_flat_cents"}),
    required_on_create=frozenset({"customer_id"}),
)
INVOICE_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"customer_id", "due_date", "notes"}),
)
DISCOUNT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"discount_bps", "discount_flat_cents"}),
)
LINE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields=frozenset(LINE_ITEM_FIELDS),
    required_on_create=frozenset({"description", "quantity", "unit_price_cents"}),
)
PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"amount_cents", "method", "paid_at", "reference", "notes", "idempotency_key"}),
    required_on_create=frozenset({"amount_cents", "method"}),
)
WORK_ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"customer_id", "description"}),
    required_on_create=frozenset({"customer_id"}),
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Exact decimals (fractional quantities) - bounded by the column scale
    if isinstance(coltype, Numeric):
        if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
            raise ValidationError(f"{col.key} must be a number")
        try:
            dec = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{col.key} must be a number")
        if not dec.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        scale = coltype.scale or 0
        if dec.normalize().as_tuple().exponent < -scale:
            raise ValidationError(f"{col.key} allows at most {scale} decimal places")
        if coltype.precision is not None and abs(dec) >= Decimal(10) ** (coltype.precision - scale):
            raise ValidationError(f"{col.key} is out of range")
        return dec

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
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

    SECURITY: org_id / tenant_id are stripped before anything else; every
    other key outside the allowlist is rejected.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = {k: v for k, v in payload.items() if k not in TENANT_KEYS}

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"fields": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", {"field": k})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", {"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", {"field": k})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", {"field": k})

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", {"field": k})

        patch[k] = val

    return patch


def merge_exclusive(current: dict, patch: dict, first: str, second: str) -> dict:
    """
    Overlay patch on current for a pair of mutually exclusive fields.

    Setting one side clears the other; setting both is an error.
    """
    if patch.get(first) is not None and patch.get(second) is not None:
        raise ValidationError(f"{first} and {second} are mutually exclusive")
    merged = dict(current)
    merged.update(patch)
    if patch.get(first) is not None and second not in patch:
        merged[second] = None
    if patch.get(second) is not None and first not in patch:
        merged[first] = None
    return merged


def enforce_rules_line_item(values: dict) -> dict:
    """
    Business rules for a complete (merged) line item.

    Returns the values with kind normalized.
    """
    values = dict(values)

    kind = (values.get("kind") or "SERVICE").upper()
    if kind not in VALID_LINE_KINDS:
        raise ValidationError(f"kind must be one of {', '.join(VALID_LINE_KINDS)}")
    values["kind"] = kind

    quantity = values.get("quantity")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0")

    price = values.get("unit_price_cents")
    if price is None or price < 0:
        raise ValidationError("unit_price_cents must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS}")

    discount_bps = values.get("discount_bps")
    discount_cents = values.get("discount_cents")
    if discount_bps is not None and discount_cents is not None:
        raise ValidationError("discount_bps and discount_cents are mutually exclusive")
    if discount_bps is not None and not 0 <= discount_bps <= MAX_PERCENT_BPS:
        raise ValidationError(f"discount_bps must be between 0 and {MAX_PERCENT_BPS}")
    if discount_cents is not None:
        if discount_cents < 0:
            raise ValidationError("discount_cents must be >= 0")
        if discount_cents > quantity * price:
            raise ValidationError("discount_cents cannot exceed the line amount")

    tax_bps = values.get("tax_bps")
    if tax_bps is None:
        values["tax_bps"] = 0
    elif tax_bps < 0:
        raise ValidationError("tax_bps must be >= 0")

    return values


def enforce_rules_document_discount(values: dict) -> None:
    discount_bps = values.get("discount_bps")
    discount_flat_cents = values.get("discount_flat_cents")
    if discount_bps is not None and discount_flat_cents is not None:
        raise ValidationError("discount_bps and discount_flat_cents are mutually exclusive")
    if discount_bps is not None and not 0 <= discount_bps <= MAX_PERCENT_BPS:
        raise ValidationError(f"discount_bps must be between 0 and {MAX_PERCENT_BPS}")
    if discount_flat_cents is not None and discount_flat_cents < 0:
        raise ValidationError("discount_flat_cents must be >= 0")


def enforce_rules_payment(values: dict) -> dict:
    """Amount must be positive; method normalized to an upper-case known method."""
    values = dict(values)

    amount = values.get("amount_cents")
    if amount is None or amount <= 0:
        raise ValidationError("amount_cents must be > 0")
    if amount > MAX_PRICE_CENTS:
        raise ValidationError(f"amount_cents cannot exceed {MAX_PRICE_CENTS}")

    method = (values.get("method") or "").upper()
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method. Must be one of: {', '.join(VALID_PAYMENT_METHODS)}",
            {"method": values.get("method")},
        )
    values["method"] = method

    if values.get("idempotency_key") == "":
        values["idempotency_key"] = None

    return values


def parse_pagination(args, *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    """limit/offset from query-string args, clamped to sane bounds."""
    try:
        limit = int(args.get("limit", default_limit))
        offset = int(args.get("offset", 0))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")
    if limit < 1 or offset < 0:
        raise ValidationError("limit must be >= 1 and offset >= 0")
    return min(limit, max_limit), offset


def parse_optional_int(args, name: str) -> int | None:
    """Optional integer query param (customer_id filters); blank means absent."""
    raw = args.get(name)
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"{name} must be an integer", {"field": name})


def parse_optional_datetime(value, field_name: str):
    """Body value -> UTC-naive datetime (None passes through)."""
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime", {"field": field_name})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime", {"field": field_name})
