from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .errors import ValidationError
from .models import PAYMENT_TYPES, RECEIPT_TYPES
from .time_utils import parse_iso_datetime


class _Missing:
    """Marker for a JSON key that was not sent at all (as opposed to null)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def is_set(value: Any) -> bool:
    return value is not MISSING


_TRUE_STRINGS = {"1", "true", "yes", "y", "on"}
_FALSE_STRINGS = {"0", "false", "no", "n", "off"}


def parse_boolean_flag(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
    return default


def parse_optional_boolean(value: Any) -> bool | None:
    """Query-string filter: None when absent or unrecognized."""
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
        return None
    return parse_boolean_flag(value)


def parse_optional_number(value: Any, field_name: str) -> float | None:
    """None / "" -> None; numeric strings and numbers -> float; else ValidationError."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be numeric when provided")
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be numeric when provided")
    if math.isnan(parsed) or math.isinf(parsed):
        raise ValidationError(f"{field_name} must be numeric when provided")
    return parsed


def parse_optional_id(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"Invalid {field_name}")
        value = int(value)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name}")
    if parsed <= 0:
        raise ValidationError(f"Invalid {field_name}")
    return parsed


def parse_required_id(value: Any, field_name: str) -> int:
    parsed = parse_optional_id(value, field_name)
    if parsed is None:
        raise ValidationError(f"{field_name} is required")
    return parsed


def parse_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def parse_receipt_type(value: Any, *, required: bool = False) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError("type must be NORMAL or TVA")
        return None
    normalized = str(value).strip().upper()
    if normalized not in RECEIPT_TYPES:
        raise ValidationError("type must be NORMAL or TVA")
    return normalized


def parse_date(value: Any, field_name: str = "date") -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {field_name}")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"Invalid {field_name}")


def _require_object(data: Any) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@dataclass(frozen=True)
class ReceiptItemInput:
    product_id: int
    quantity: float
    unit_price: float | None = None
    display_quantity: float | None = None
    display_unit: str | None = None

    @property
    def subtotal(self) -> float | None:
        if self.unit_price is None:
            return None
        return self.quantity * self.unit_price

    @classmethod
    def from_json(cls, raw: Any) -> "ReceiptItemInput":
        if not isinstance(raw, dict):
            raise ValidationError("Each item requires a product_id and valid quantity")
        try:
            product_id = parse_optional_id(raw.get("product_id"), "product_id")
            quantity = parse_optional_number(raw.get("quantity"), "quantity")
        except ValidationError:
            raise ValidationError("Each item requires a product_id and valid quantity")
        if product_id is None or quantity is None or quantity <= 0:
            raise ValidationError("Each item requires a product_id and valid quantity")

        unit_price = parse_optional_number(raw.get("unit_price"), "unit_price")
        if unit_price is not None and unit_price < 0:
            raise ValidationError("unit_price cannot be negative")

        display_quantity = parse_optional_number(raw.get("display_quantity"), "display_quantity")
        if display_quantity is not None and display_quantity <= 0:
            display_quantity = None

        return cls(
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
            display_quantity=display_quantity,
            display_unit=parse_optional_text(raw.get("display_unit")),
        )


def _parse_items(raw_items: Any) -> tuple[ReceiptItemInput, ...]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one line item is required")
    return tuple(ReceiptItemInput.from_json(raw) for raw in raw_items)


@dataclass(frozen=True)
class ReceiptCreateInput:
    items: tuple[ReceiptItemInput, ...]
    receipt_no: str | None = None
    type: str = "NORMAL"
    date: datetime | None = None
    customer_id: int | None = None
    job_site_id: int | None = None
    walk_in_name: str | None = None
    is_paid: bool = False
    tehmil: bool = False
    tenzil: bool = False

    @classmethod
    def from_json(cls, data: Any) -> "ReceiptCreateInput":
        data = _require_object(data)
        items = _parse_items(data.get("items"))
        customer_id = parse_optional_id(data.get("customer_id"), "customer_id")
        job_site_id = parse_optional_id(data.get("job_site_id"), "job_site_id")
        walk_in_name = parse_optional_text(data.get("walk_in_name"))

        if job_site_id and not customer_id:
            raise ValidationError("A job site must be associated with a customer")
        if not customer_id and not walk_in_name:
            raise ValidationError("Provide either a customer_id or a walk_in_name for the receipt")

        return cls(
            items=items,
            receipt_no=parse_optional_text(data.get("receipt_no")),
            type=parse_receipt_type(data.get("type")) or "NORMAL",
            date=parse_date(data.get("date")),
            customer_id=customer_id,
            job_site_id=job_site_id,
            walk_in_name=None if customer_id else walk_in_name,
            is_paid=parse_boolean_flag(data.get("is_paid")),
            tehmil=parse_boolean_flag(data.get("tehmil")),
            tenzil=parse_boolean_flag(data.get("tenzil")),
        )


@dataclass(frozen=True)
class ReceiptUpdateInput:
    """
    Partial update. Every field is MISSING (leave alone), None (clear) or a value.

    Setting customer_id to None turns the receipt into a walk-in receipt and
    clears its job site.
    """
    customer_id: Any = MISSING
    job_site_id: Any = MISSING
    walk_in_name: Any = MISSING
    type: Any = MISSING
    date: Any = MISSING
    tehmil: Any = MISSING
    tenzil: Any = MISSING
    is_paid: Any = MISSING
    amount_paid: Any = MISSING
    items: Any = MISSING

    @classmethod
    def from_json(cls, data: Any) -> "ReceiptUpdateInput":
        data = _require_object(data)
        values: dict[str, Any] = {}

        if "customer_id" in data:
            values["customer_id"] = parse_optional_id(data["customer_id"], "customer_id")
        if "job_site_id" in data:
            values["job_site_id"] = parse_optional_id(data["job_site_id"], "job_site_id")
        if "walk_in_name" in data:
            values["walk_in_name"] = parse_optional_text(data["walk_in_name"])
        if "type" in data:
            values["type"] = parse_receipt_type(data["type"], required=True)
        if data.get("date"):
            values["date"] = parse_date(data["date"])
        if "tehmil" in data:
            values["tehmil"] = parse_boolean_flag(data["tehmil"])
        if "tenzil" in data:
            values["tenzil"] = parse_boolean_flag(data["tenzil"])
        if isinstance(data.get("is_paid"), bool):
            values["is_paid"] = data["is_paid"]
        if "amount_paid" in data and data["amount_paid"] is not None:
            amount = parse_optional_number(data["amount_paid"], "amount_paid")
            if amount is None or amount < 0:
                raise ValidationError("amount_paid must be zero or a positive number")
            values["amount_paid"] = amount
        if "items" in data:
            values["items"] = _parse_items(data["items"])

        return cls(**values)


@dataclass(frozen=True)
class ReceiptNumberInput:
    receipt_no: str

    @classmethod
    def from_json(cls, data: Any) -> "ReceiptNumberInput":
        data = _require_object(data)
        receipt_no = parse_optional_text(data.get("receipt_no"))
        if not receipt_no:
            raise ValidationError("receipt_no is required")
        return cls(receipt_no=receipt_no)


@dataclass(frozen=True)
class FlagPaymentInput:
    """One-time tehmil (loading) / tenzil (unloading) payment on a flagged receipt."""
    flag: str
    amount: float | None = None
    quantity: float | None = None
    note: str | None = None
    paid_at: datetime | None = None

    @classmethod
    def from_json(cls, data: Any) -> "FlagPaymentInput":
        data = _require_object(data)
        flag = str(data.get("flag") or "").strip().lower()
        if flag not in ("tehmil", "tenzil"):
            raise ValidationError("flag must be tehmil or tenzil")
        amount = parse_optional_number(data.get("amount"), "amount")
        if amount is not None and amount < 0:
            raise ValidationError("amount must be zero or a positive number")
        quantity = parse_optional_number(data.get("quantity"), "quantity")
        if quantity is not None and quantity < 0:
            raise ValidationError("quantity must be zero or a positive number")
        return cls(
            flag=flag,
            amount=amount,
            quantity=quantity,
            note=parse_optional_text(data.get("note")),
            paid_at=parse_date(data.get("date"), "payment date"),
        )


@dataclass(frozen=True)
class PriceOverride:
    receipt_id: int
    prices: dict[int, float]


@dataclass(frozen=True)
class InvoicePreviewInput:
    receipt_ids: tuple[int, ...] = ()
    amount: float | None = None
    include_paid: bool = False
    job_site_id: int | None = None
    price_overrides: tuple[PriceOverride, ...] = field(default_factory=tuple)

    @classmethod
    def from_json(cls, data: Any) -> "InvoicePreviewInput":
        data = _require_object(data)

        raw_ids = data.get("receipt_ids")
        receipt_ids: list[int] = []
        if isinstance(raw_ids, list):
            for raw in raw_ids:
                try:
                    receipt_ids.append(parse_required_id(raw, "receipt_id"))
                except ValidationError:
                    continue

        amount = None
        if not receipt_ids and data.get("amount") is not None:
            try:
                amount = parse_optional_number(data.get("amount"), "amount")
            except ValidationError:
                raise ValidationError("amount must be a positive number")
            if amount is None or amount <= 0:
                raise ValidationError("amount must be a positive number")

        return cls(
            receipt_ids=tuple(receipt_ids),
            amount=amount,
            include_paid=parse_boolean_flag(data.get("include_paid")),
            job_site_id=parse_optional_id(data.get("job_site_id"), "job_site_id"),
            price_overrides=_parse_price_overrides(data.get("price_overrides")),
        )


def _parse_price_overrides(raw: Any) -> tuple[PriceOverride, ...]:
    """Malformed entries are dropped rather than rejected."""
    if not isinstance(raw, list):
        return ()
    overrides = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            receipt_id = parse_required_id(entry.get("receipt_id"), "receipt_id")
        except ValidationError:
            continue
        prices: dict[int, float] = {}
        for item in entry.get("items") or []:
            if not isinstance(item, dict):
                continue
            try:
                item_id = parse_required_id(item.get("item_id"), "item_id")
                price = parse_optional_number(item.get("unit_price"), "unit_price")
            except ValidationError:
                continue
            if price is None or price < 0:
                continue
            prices[item_id] = price
        if prices:
            overrides.append(PriceOverride(receipt_id=receipt_id, prices=prices))
    return tuple(overrides)


@dataclass(frozen=True)
class PaymentInput:
    type: str
    amount: float
    date: datetime | None = None
    customer_id: int | None = None
    receipt_id: int | None = None
    supplier_id: int | None = None
    description: str | None = None
    category: str | None = None
    reference: str | None = None
    apply_to_receipts: bool = True

    @classmethod
    def from_json(cls, data: Any) -> "PaymentInput":
        data = _require_object(data)
        payment_type = str(data.get("type") or "").strip().upper()
        if payment_type not in PAYMENT_TYPES:
            raise ValidationError("Invalid payment type", details={"allowed": list(PAYMENT_TYPES)})
        amount = parse_optional_number(data.get("amount"), "amount")
        if amount is None or amount <= 0:
            raise ValidationError("amount must be a positive number")

        customer_id = parse_optional_id(data.get("customer_id"), "customer_id")
        receipt_id = parse_optional_id(data.get("receipt_id"), "receipt_id")
        if payment_type == "RECEIPT" and not receipt_id:
            raise ValidationError("RECEIPT payments require a receipt_id")
        if payment_type == "CUSTOMER_PAYMENT" and not customer_id:
            raise ValidationError("CUSTOMER_PAYMENT payments require a customer_id")

        return cls(
            type=payment_type,
            amount=amount,
            date=parse_date(data.get("date")),
            customer_id=customer_id,
            receipt_id=receipt_id,
            supplier_id=parse_optional_id(data.get("supplier_id"), "supplier_id"),
            description=parse_optional_text(data.get("description")),
            category=parse_optional_text(data.get("category")),
            reference=parse_optional_text(data.get("reference")),
            apply_to_receipts=parse_boolean_flag(data.get("apply_to_receipts"), default=True),
        )


@dataclass(frozen=True)
class ComponentInput:
    component_product_id: int
    quantity: float


@dataclass(frozen=True)
class ProductInput:
    """Create (all fields read) or partial update (MISSING = leave alone)."""
    name: Any = MISSING
    unit: Any = MISSING
    unit_price: Any = MISSING
    description: Any = MISSING
    is_composite: Any = MISSING
    is_manufactured: Any = MISSING
    components: Any = MISSING
    production_powder_product_id: Any = MISSING
    production_powder_quantity: Any = MISSING
    production_cement_product_id: Any = MISSING
    production_cement_quantity: Any = MISSING
    tehmil_fee: Any = MISSING
    tenzil_fee: Any = MISSING

    @classmethod
    def from_json(cls, data: Any, *, partial: bool = False) -> "ProductInput":
        data = _require_object(data)
        values: dict[str, Any] = {}

        if "name" in data or not partial:
            name = parse_optional_text(data.get("name"))
            if not name:
                raise ValidationError("name is required")
            values["name"] = name
        if "unit" in data:
            values["unit"] = parse_optional_text(data["unit"])
        if "description" in data:
            values["description"] = parse_optional_text(data["description"])
        for key in ("unit_price", "production_powder_quantity", "production_cement_quantity", "tehmil_fee", "tenzil_fee"):
            if key in data:
                number = parse_optional_number(data[key], key)
                if number is not None and number < 0:
                    raise ValidationError(f"{key} cannot be negative")
                values[key] = number
        for key in ("production_powder_product_id", "production_cement_product_id"):
            if key in data:
                values[key] = parse_optional_id(data[key], key)
        for key in ("is_composite", "is_manufactured"):
            if key in data:
                values[key] = parse_boolean_flag(data[key])
        if "components" in data:
            values["components"] = _parse_components(data["components"])

        return cls(**values)


def _parse_components(raw: Any) -> tuple[ComponentInput, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValidationError("components must be a list")
    components = []
    for entry in raw:
        invalid = ValidationError("Component quantities must be positive numbers and reference valid products.")
        if not isinstance(entry, dict):
            raise invalid
        try:
            product_id = parse_required_id(entry.get("component_product_id"), "component_product_id")
            quantity = parse_optional_number(entry.get("quantity"), "quantity")
        except ValidationError:
            raise invalid
        if quantity is None or quantity <= 0:
            raise invalid
        components.append(ComponentInput(component_product_id=product_id, quantity=quantity))
    return tuple(components)


@dataclass(frozen=True)
class ActorContext:
    """Caller identity forwarded by the fronting auth layer."""
    id: str | None
    email: str | None
    role: str

    @property
    def label(self) -> str:
        return self.email or self.id or "unknown"

    @classmethod
    def from_headers(cls, headers) -> "ActorContext | None":
        actor_id = parse_optional_text(headers.get("X-Actor-Id"))
        email = parse_optional_text(headers.get("X-Actor-Email"))
        if not actor_id and not email:
            return None
        role = parse_optional_text(headers.get("X-Actor-Role")) or "USER"
        return cls(id=actor_id, email=email, role=role.upper())
