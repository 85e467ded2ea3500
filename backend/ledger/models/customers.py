from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Credit customer.

    receipt_type is chosen once (NORMAL or TVA) and locks the type of every
    receipt issued to this customer.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(64), nullable=True)
    receipt_type = db.Column(db.String(16), nullable=False, default="NORMAL")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    job_sites = db.relationship("JobSite", back_populates="customer", lazy=True, order_by="JobSite.id")

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} receipt_type={self.receipt_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "receipt_type": self.receipt_type,
            "created_at": to_utc_z(self.created_at),
        }


class JobSite(db.Model):
    __tablename__ = "job_sites"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", back_populates="job_sites")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "customer_id": self.customer_id,
        }
