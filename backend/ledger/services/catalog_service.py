# Overview: Service-layer product catalog; composite recipe validation and the fixed catalog seed.

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import InvariantViolationError, NotFoundError, SequenceConflictError, ValidationError
from ..extensions import db
from ..models import Product, ProductComponent
from ..validation import ComponentInput, ProductInput, is_set
from .unit_of_work import UnitOfWork, run_in_transaction

logger = logging.getLogger(__name__)

# Products every installation carries. "Debris" is the intake product the
# stock ledger matches by name (see DEBRIS_PRODUCT_NAME).
FIXED_PRODUCT_CATALOG = [
    {"name": "Powder", "unit": "m³", "description": "Bulk powder measured in cubic meters"},
    {"name": "Sand", "unit": "m³", "description": "Bulk sand measured in cubic meters"},
    {"name": "Gravel", "unit": "m³", "description": "Bulk gravel measured in cubic meters"},
    {"name": "Debris", "unit": "m³", "description": "Debris intake measured in cubic meters"},
    {"name": "Cement", "unit": "bag", "description": "Cement (bag), 20 bags equal one ton"},
    {"name": "Diesel", "unit": "L", "description": "Diesel fuel tracked in liters", "is_fuel": True},
] + [
    {"name": name, "unit": "unit", "description": f"{name} sold per unit", "is_manufactured": True}
    for name in (
        "Hollow Block 6cm",
        "Hollow Block 8cm",
        "Hollow Block 10cm",
        "Hollow Block 12cm",
        "Hollow Block 15cm",
        "Hollow Block 20cm",
        "Solid Block 8cm",
        "Solid Block 10cm",
        "Solid Block 15cm",
        "Solid Block 20cm",
        "Semi Solid Block 10cm",
        "Semi Solid Block 12cm",
        "Semi Solid Block 15cm",
        "Bordure 10cm",
        "Bordure 13cm",
        "Bordure 15cm",
        "Hordy 14cm",
        "Hordy 18cm",
        "Interlock",
    )
]


def _validate_components(
    uow: UnitOfWork,
    components: tuple[ComponentInput, ...],
    parent_id: int | None,
) -> None:
    """
    Recipe rules for composite mixes.

    - at least one component
    - no self reference
    - no duplicates
    - every component exists and is itself non-composite
    """
    if not components:
        raise ValidationError("Add at least one component for composite mixes.")

    seen: set[int] = set()
    for component in components:
        if parent_id is not None and component.component_product_id == parent_id:
            raise InvariantViolationError("A composite product cannot reference itself as a component.")
        if component.component_product_id in seen:
            raise ValidationError("Each component can only be listed once.")
        seen.add(component.component_product_id)

    rows = uow.query(Product.id, Product.is_composite).filter(Product.id.in_(seen)).all()
    if len(rows) != len(seen):
        raise ValidationError("One or more selected components no longer exist.")
    if any(is_composite for _, is_composite in rows):
        raise InvariantViolationError("Composite mixes cannot reference other composite products.")


def _replace_components(uow: UnitOfWork, product: Product, components: tuple[ComponentInput, ...]) -> None:
    if product.components:
        # old rows must be gone before re-adding the same (parent, component) pair
        product.components.clear()
        uow.flush()
    for component in components:
        product.components.append(
            ProductComponent(
                component_product_id=component.component_product_id,
                quantity=component.quantity,
            )
        )


_SIMPLE_FIELDS = (
    "name",
    "unit",
    "unit_price",
    "description",
    "production_powder_product_id",
    "production_powder_quantity",
    "production_cement_product_id",
    "production_cement_quantity",
    "tehmil_fee",
    "tenzil_fee",
)


def _apply_fields(product: Product, data: ProductInput) -> None:
    for key in _SIMPLE_FIELDS:
        value = getattr(data, key)
        if is_set(value):
            setattr(product, key, value)


def _check_name_available(uow: UnitOfWork, name: str, product_id: int | None = None) -> None:
    query = uow.query(Product.id).filter(func.lower(Product.name) == name.strip().lower())
    if product_id is not None:
        query = query.filter(Product.id != product_id)
    if query.first() is not None:
        raise SequenceConflictError("A product with this name already exists")


def create_product(data: ProductInput) -> Product:
    is_composite = bool(data.is_composite) if is_set(data.is_composite) else False
    is_manufactured = bool(data.is_manufactured) if is_set(data.is_manufactured) else False
    if is_composite and is_manufactured:
        raise ValidationError("A product cannot be both manufactured and a composite mix.")

    def _op(uow: UnitOfWork) -> Product:
        _check_name_available(uow, data.name)
        product = Product(
            is_composite=is_composite,
            is_manufactured=is_manufactured,
            stock_qty=0.0,
        )
        _apply_fields(product, data)
        if is_composite:
            components = data.components if is_set(data.components) else ()
            _validate_components(uow, components, None)
            _replace_components(uow, product, components)
        uow.add(product)
        uow.flush()
        return product

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        raise SequenceConflictError("A product with this name already exists")


def update_product(product_id: int, data: ProductInput) -> Product:
    def _op(uow: UnitOfWork) -> Product:
        product = uow.get(Product, product_id, lock=True)
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})

        is_composite = data.is_composite if is_set(data.is_composite) else product.is_composite
        is_manufactured = data.is_manufactured if is_set(data.is_manufactured) else product.is_manufactured
        if is_composite and is_manufactured:
            raise ValidationError("A product cannot be both manufactured and a composite mix.")

        if is_set(data.name):
            _check_name_available(uow, data.name, product.id)

        if is_composite:
            if is_set(data.components):
                _validate_components(uow, data.components, product.id)
                _replace_components(uow, product, data.components)
            elif not product.is_composite:
                raise ValidationError("Add at least one component for composite mixes.")
        elif product.components:
            product.components.clear()

        if not product.is_composite and is_composite:
            used_as_component = (
                uow.query(ProductComponent.id)
                .filter(ProductComponent.component_product_id == product.id)
                .first()
            )
            if used_as_component is not None:
                raise InvariantViolationError("A product used as a component cannot become a composite mix.")

        product.is_composite = is_composite
        product.is_manufactured = is_manufactured
        _apply_fields(product, data)
        uow.flush()
        return product

    return run_in_transaction(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def seed_fixed_catalog() -> list[str]:
    """Create missing fixed-catalog products. Returns the names created."""

    def _op(uow: UnitOfWork) -> list[str]:
        existing = {name.strip().lower() for (name,) in uow.query(Product.name).all()}
        created = []
        for entry in FIXED_PRODUCT_CATALOG:
            if entry["name"].lower() in existing:
                continue
            uow.add(
                Product(
                    name=entry["name"],
                    unit=entry["unit"],
                    description=entry.get("description"),
                    is_manufactured=entry.get("is_manufactured", False),
                    is_fuel=entry.get("is_fuel", False),
                    stock_qty=0.0,
                )
            )
            created.append(entry["name"])
        return created

    created = run_in_transaction(_op)
    if created:
        logger.info("Seeded %s catalog products", len(created))
    return created
