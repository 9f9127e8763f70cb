# Overview: Lookups (and demo/test creation) of the catalog records the ledger reads.

from __future__ import annotations

from ..errors import InvalidState, NotFound, ValidationError
from ..models import Location, Party, Product
from ..models.catalog import PARTY_TYPES
from .concurrency import lock_for_update


def get_product(session, product_id: int, *, require_active: bool = False) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise NotFound("product", product_id)
    if require_active and not product.is_active:
        raise InvalidState("product is inactive", {"product_id": product_id})
    return product


def get_location(session, location_id: int) -> Location:
    location = session.get(Location, location_id)
    if location is None:
        raise NotFound("location", location_id)
    return location


def get_party(session, party_id: int, *, lock: bool = False, require_active: bool = False) -> Party:
    """
    Fetch a party. lock=True serializes ledger mutations for the party
    (its lines, holdings and periods) behind this row.
    """
    query = session.query(Party).filter_by(id=party_id)
    if lock:
        query = lock_for_update(query)
    party = query.first()
    if party is None:
        raise NotFound("party", party_id)
    if require_active and not party.is_active:
        raise InvalidState("party is inactive", {"party_id": party_id})
    return party


def create_location(session, *, code: str, name: str) -> Location:
    code = (code or "").strip().upper()
    if not code or not name:
        raise ValidationError("code and name required")
    location = Location(code=code, name=name)
    session.add(location)
    session.commit()
    return location


def create_product(session, *, sku: str, name: str, unit: str | None = None) -> Product:
    if not sku or not name:
        raise ValidationError("sku and name required")
    product = Product(sku=sku, name=name, unit=unit, is_active=True)
    session.add(product)
    session.commit()
    return product


def create_party(
    session,
    *,
    party_type: str,
    name: str,
    location_id: int,
    area: str | None = None,
    contact_number: str | None = None,
) -> Party:
    party_type = (party_type or "").strip().upper()
    if party_type not in PARTY_TYPES:
        raise ValidationError(
            f"party_type must be one of {', '.join(PARTY_TYPES)}",
            {"party_type": party_type},
        )
    if not name:
        raise ValidationError("name required")
    get_location(session, location_id)
    party = Party(
        party_type=party_type,
        name=name,
        location_id=location_id,
        area=area,
        contact_number=contact_number,
        is_active=True,
    )
    session.add(party)
    session.commit()
    return party
