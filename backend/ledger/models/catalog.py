from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product.

    STOCK:
    stock_qty is a cached running sum of StockMovement.quantity for the product.
    Every change to it goes through services.stock_ledger, which appends the
    matching movement in the same transaction.

    COMPOSITE PRODUCTS ("mixes"):
    - is_composite products carry a recipe of ProductComponent rows (ratio per unit).
    - Selling a composite consumes its components; the composite's own stock is untouched.
    - Components must be non-composite (no nested recipes).

    MANUFACTURED PRODUCTS:
    production_* fields are costing data for the production pathway only.
    They are never consumed when a receipt is posted.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_products_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    unit_price = db.Column(db.Float, nullable=True)
    description = db.Column(db.Text, nullable=True)

    stock_qty = db.Column(db.Float, nullable=False, default=0.0)

    is_composite = db.Column(db.Boolean, nullable=False, default=False)
    is_manufactured = db.Column(db.Boolean, nullable=False, default=False)
    is_fuel = db.Column(db.Boolean, nullable=False, default=False)

    production_powder_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    production_powder_quantity = db.Column(db.Float, nullable=True)
    production_cement_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    production_cement_quantity = db.Column(db.Float, nullable=True)

    tehmil_fee = db.Column(db.Float, nullable=True)
    tenzil_fee = db.Column(db.Float, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    components = db.relationship(
        "ProductComponent",
        foreign_keys="ProductComponent.parent_product_id",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="ProductComponent.id",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} composite={self.is_composite}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "unit_price": self.unit_price,
            "description": self.description,
            "stock_qty": self.stock_qty,
            "is_composite": self.is_composite,
            "is_manufactured": self.is_manufactured,
            "is_fuel": self.is_fuel,
            "production_powder_product_id": self.production_powder_product_id,
            "production_powder_quantity": self.production_powder_quantity,
            "production_cement_product_id": self.production_cement_product_id,
            "production_cement_quantity": self.production_cement_quantity,
            "tehmil_fee": self.tehmil_fee,
            "tenzil_fee": self.tenzil_fee,
            "components": [c.to_dict() for c in self.components],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductComponent(db.Model):
    """One recipe line of a composite product: `quantity` of component per unit of parent."""
    __tablename__ = "product_components"
    __table_args__ = (
        db.UniqueConstraint("parent_product_id", "component_product_id", name="uq_product_components_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False)

    parent = db.relationship("Product", foreign_keys=[parent_product_id], back_populates="components")
    component = db.relationship("Product", foreign_keys=[component_product_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "component_product_id": self.component_product_id,
            "component_name": self.component.name if self.component else None,
            "quantity": self.quantity,
        }
