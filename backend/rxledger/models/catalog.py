from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PARTY_CUSTOMER = "CUSTOMER"
PARTY_AGENT = "AGENT"
PARTY_TYPES = (PARTY_CUSTOMER, PARTY_AGENT)


class Location(db.Model):
    """
    A branch holding stock.

    The code is part of every transaction number issued at the location.
    """
    __tablename__ = "locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """Catalog record. The ledger reads it; catalog maintenance lives elsewhere."""
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=True)  # tablet, bottle, vial ...
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Party(db.Model):
    """
    External holder of assigned stock.

    CUSTOMER: consignment customer, balances tracked per calendar month.
    AGENT: delivery/sales agent, one perpetual running balance per product.

    Assigned stock is always drawn from the party's home location.
    """
    __tablename__ = "parties"
    __table_args__ = (
        db.Index("ix_parties_type_active", "party_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_type = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    area = db.Column(db.String(120), nullable=True)
    contact_number = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")

    @property
    def is_customer(self) -> bool:
        return self.party_type == PARTY_CUSTOMER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_type": self.party_type,
            "name": self.name,
            "location_id": self.location_id,
            "area": self.area,
            "contact_number": self.contact_number,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
