"""
Stock Master Service
Locations, items and suppliers maintenance
"""
from typing import Dict, Iterable, List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
import logging

from stockroom.core.exceptions import ConflictError, NotFoundError, ValidationError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.period import Period, PeriodLocation, PeriodLocationStatus, PeriodStatus
from stockroom.models.stock import Item, Location
from stockroom.models.supplier import Supplier
from stockroom.services.stock.ledger import round_cost
from stockroom.services.stock.price_variance import PriceLockService

logger = logging.getLogger(__name__)


def get_active_items(db: Session, item_ids: Iterable[int]) -> Dict[int, Item]:
    """Items by id, raising INVALID_ITEMS when any is unknown or inactive"""
    item_ids = list(dict.fromkeys(item_ids))
    items = {
        item.id: item for item in db.query(Item).filter(Item.id.in_(item_ids)).all()
    }
    invalid = [item_id for item_id in item_ids if item_id not in items or not items[item_id].is_active]
    if invalid:
        raise ValidationError(
            f"{len(invalid)} item(s) are unknown or inactive",
            code="INVALID_ITEMS",
            details={"invalid_item_ids": invalid}
        )
    return items


def require_active_location(location: Location) -> Location:
    if not location.is_active:
        raise ValidationError(
            f"Location {location.name} is inactive",
            code="LOCATION_INACTIVE",
            details={"location_id": location.id}
        )
    return location


class StockMasterService:
    """
    Master data maintenance

    Locations are deactivated, never deleted, so their ledger history stays
    reachable.
    """

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user

    # Locations
    def create_location(self, location_data: Dict) -> Location:
        code = location_data["code"].upper()
        if self.db.query(Location.id).filter(Location.code == code).first():
            raise ConflictError(f"Location code {code} already exists", code="LOCATION_EXISTS")

        try:
            location = Location(
                code=code,
                name=location_data["name"],
                type=getattr(location_data.get("type"), "value", location_data.get("type")) or "STORE",
                address=location_data.get("address"),
                is_active=True
            )
            self.db.add(location)
            self.db.flush()

            # Join any period that is still running so postings and close include it
            periods = self.db.query(Period).filter(
                Period.status.in_([PeriodStatus.DRAFT.value, PeriodStatus.OPEN.value])
            ).all()
            for period in periods:
                self.db.add(PeriodLocation(
                    period_id=period.id,
                    location_id=location.id,
                    status=PeriodLocationStatus.NOT_READY.value,
                    opening_value=0
                ))

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="CREATE_LOCATION",
                table="locations",
                key=code,
                new_values={"name": location.name, "type": location.type},
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(location)
        logger.info(f"Location {code} created")
        return location

    def update_location(self, location_id: int, updates: Dict) -> Location:
        location = self.get_location(location_id)
        old_values = {}
        try:
            for field in ("name", "type", "address", "is_active"):
                if field in updates and updates[field] is not None:
                    old_values[field] = getattr(location, field)
                    setattr(location, field, getattr(updates[field], "value", updates[field]))

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="UPDATE_LOCATION",
                table="locations",
                key=location.code,
                old_values=old_values,
                new_values={k: getattr(location, k) for k in old_values},
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(location)
        return location

    def get_location(self, location_id: int) -> Location:
        location = self.db.query(Location).filter(Location.id == location_id).first()
        if location is None:
            raise NotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")
        return location

    def list_locations(self, location_ids: Optional[List[int]] = None, include_inactive: bool = False) -> List[Location]:
        query = self.db.query(Location)
        if location_ids is not None:
            query = query.filter(Location.id.in_(location_ids))
        if not include_inactive:
            query = query.filter(Location.is_active.is_(True))
        return query.order_by(Location.code).all()

    # Items
    def create_item(self, item_data: Dict) -> Item:
        code = item_data["code"].upper()
        if self.db.query(Item.id).filter(Item.code == code).first():
            raise ConflictError(f"Item code {code} already exists", code="ITEM_EXISTS")

        reference_price = item_data.get("reference_price")
        try:
            item = Item(
                code=code,
                name=item_data["name"],
                unit=getattr(item_data.get("unit"), "value", item_data.get("unit")) or "EA",
                category=item_data.get("category"),
                sub_category=item_data.get("sub_category"),
                reference_price=round_cost(reference_price) if reference_price is not None else None,
                is_active=True
            )
            self.db.add(item)
            self.db.flush()
            self._lock_into_open_period(item)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="CREATE_ITEM",
                table="items",
                key=code,
                new_values={"name": item.name, "unit": item.unit, "reference_price": item.reference_price},
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(item)
        return item

    def update_item(self, item_id: int, updates: Dict) -> Item:
        """
        Update item details.

        A new reference price only affects periods opened afterwards, plus the
        open period when the item has no lock there yet. Prices already locked
        into a period are untouched.
        """
        item = self.get_item(item_id)
        old_values = {}
        try:
            for field in ("name", "category", "sub_category", "reference_price", "is_active"):
                if field in updates and updates[field] is not None:
                    old_values[field] = getattr(item, field)
                    value = updates[field]
                    if field == "reference_price":
                        value = round_cost(value)
                    setattr(item, field, value)
            self._lock_into_open_period(item)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="UPDATE_ITEM",
                table="items",
                key=item.code,
                old_values=old_values,
                new_values={k: getattr(item, k) for k in old_values},
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(item)
        return item

    def _lock_into_open_period(self, item: Item):
        """An item priced while a period is OPEN gets its missing lock for that period"""
        period = self.db.query(Period).filter(Period.status == PeriodStatus.OPEN.value).first()
        if period is not None:
            PriceLockService(self.db, self.current_user).lock_item_price(period, item)

    def get_item(self, item_id: int) -> Item:
        item = self.db.query(Item).filter(Item.id == item_id).first()
        if item is None:
            raise NotFoundError(f"Item {item_id} not found", code="ITEM_NOT_FOUND")
        return item

    def list_items(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        include_inactive: bool = False,
        skip: int = 0,
        limit: int = 100
    ):
        query = self.db.query(Item)
        if not include_inactive:
            query = query.filter(Item.is_active.is_(True))
        if category:
            query = query.filter(Item.category == category)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Item.code.ilike(pattern), Item.name.ilike(pattern)))

        total = query.count()
        return query.order_by(Item.code).offset(skip).limit(limit).all(), total

    # Suppliers
    def create_supplier(self, supplier_data: Dict) -> Supplier:
        code = supplier_data["code"].upper()
        if self.db.query(Supplier.id).filter(Supplier.code == code).first():
            raise ConflictError(f"Supplier code {code} already exists", code="SUPPLIER_EXISTS")

        try:
            supplier = Supplier(
                code=code,
                name=supplier_data["name"],
                contact_name=supplier_data.get("contact_name"),
                email=supplier_data.get("email"),
                phone=supplier_data.get("phone"),
                is_active=True
            )
            self.db.add(supplier)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(supplier)
        return supplier

    def get_supplier(self, supplier_id: int) -> Supplier:
        supplier = self.db.query(Supplier).filter(Supplier.id == supplier_id).first()
        if supplier is None or not supplier.is_active:
            raise NotFoundError(f"Supplier {supplier_id} not found", code="SUPPLIER_NOT_FOUND")
        return supplier

    def list_suppliers(self) -> List[Supplier]:
        return self.db.query(Supplier).filter(Supplier.is_active.is_(True)).order_by(Supplier.code).all()
