import pytest

from ledger.errors import InvariantViolationError, NotFoundError, SequenceConflictError, ValidationError
from ledger.models import Product
from ledger.services import catalog_service
from ledger.validation import ProductInput


def _create(**payload):
    return catalog_service.create_product(ProductInput.from_json(payload))


def _update(product_id, **payload):
    return catalog_service.update_product(product_id, ProductInput.from_json(payload, partial=True))


def test_create_composite_with_recipe(db_session, sand, cement):
    mix = _create(
        name="Mortar",
        unit="m³",
        is_composite=True,
        components=[
            {"component_product_id": sand.id, "quantity": 1.2},
            {"component_product_id": cement.id, "quantity": 6},
        ],
    )

    assert mix.is_composite is True
    assert [(c.component_product_id, c.quantity) for c in mix.components] == [(sand.id, 1.2), (cement.id, 6.0)]
    assert mix.to_dict()["components"][0]["component_name"] == "Sand"


def test_composite_needs_components(db_session):
    with pytest.raises(ValidationError) as exc:
        _create(name="Empty mix", is_composite=True)
    assert exc.value.message == "Add at least one component for composite mixes."


def test_duplicate_components_rejected(db_session, sand):
    with pytest.raises(ValidationError) as exc:
        _create(
            name="Double sand",
            is_composite=True,
            components=[
                {"component_product_id": sand.id, "quantity": 1},
                {"component_product_id": sand.id, "quantity": 2},
            ],
        )
    assert exc.value.message == "Each component can only be listed once."


def test_unknown_component_rejected(db_session):
    with pytest.raises(ValidationError) as exc:
        _create(name="Ghost mix", is_composite=True, components=[{"component_product_id": 404, "quantity": 1}])
    assert exc.value.message == "One or more selected components no longer exist."


@pytest.mark.parametrize("quantity", [0, -1, "abc", None])
def test_non_positive_ratio_rejected(quantity):
    with pytest.raises(ValidationError) as exc:
        ProductInput.from_json({"name": "Bad", "components": [{"component_product_id": 1, "quantity": quantity}]})
    assert exc.value.message == "Component quantities must be positive numbers and reference valid products."


def test_nested_composite_rejected(db_session, concrete_mix):
    with pytest.raises(InvariantViolationError) as exc:
        _create(name="Super mix", is_composite=True, components=[{"component_product_id": concrete_mix.id, "quantity": 1}])
    assert exc.value.message == "Composite mixes cannot reference other composite products."


def test_self_reference_rejected(db_session, concrete_mix, sand):
    with pytest.raises(InvariantViolationError):
        _update(concrete_mix.id, components=[
            {"component_product_id": sand.id, "quantity": 1},
            {"component_product_id": concrete_mix.id, "quantity": 1},
        ])


def test_manufactured_composite_rejected(db_session, sand):
    with pytest.raises(ValidationError) as exc:
        _create(
            name="Block mix",
            is_composite=True,
            is_manufactured=True,
            components=[{"component_product_id": sand.id, "quantity": 1}],
        )
    assert exc.value.message == "A product cannot be both manufactured and a composite mix."


def test_turning_off_composite_clears_recipe(db_session, concrete_mix):
    product = _update(concrete_mix.id, is_composite=False)

    assert product.is_composite is False
    assert product.components == []


def test_becoming_composite_requires_components(db_session, gravel):
    with pytest.raises(ValidationError):
        _update(gravel.id, is_composite=True)


def test_update_replaces_recipe(db_session, concrete_mix, sand):
    product = _update(concrete_mix.id, components=[{"component_product_id": sand.id, "quantity": 2}])

    assert [(c.component_product_id, c.quantity) for c in product.components] == [(sand.id, 2.0)]


def test_duplicate_name_conflicts(db_session, sand):
    with pytest.raises(SequenceConflictError):
        _create(name="sand")


def test_get_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        catalog_service.get_product(12345)


def test_seed_is_idempotent(db_session, sand):
    created = catalog_service.seed_fixed_catalog()

    assert "Sand" not in created
    assert "Debris" in created
    assert "Interlock" in created
    diesel = db_session.query(Product).filter_by(name="Diesel").one()
    assert diesel.is_fuel is True
    assert db_session.query(Product).filter_by(name="Hollow Block 10cm").one().is_manufactured is True

    assert catalog_service.seed_fixed_catalog() == []
    assert db_session.query(Product).count() == len(catalog_service.FIXED_PRODUCT_CATALOG)
