"""
Stock Ledger Service
Weighted average cost (WAC) engine for per-location stock

The ledger is the single writer of LocationStock. Its primitives never
commit: they run inside the transaction of the document being posted, so a
rejected document leaves every row as it was.
"""
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session
import logging

from stockroom.core.config import settings
from stockroom.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from stockroom.models.stock import Item, Location, LocationStock

logger = logging.getLogger(__name__)

MONEY_PLACES = Decimal(1).scaleb(-settings.CURRENCY_DECIMAL_PLACES)
COST_PLACES = Decimal(1).scaleb(-settings.COST_DECIMAL_PLACES)
QUANTITY_PLACES = Decimal(1).scaleb(-settings.QUANTITY_DECIMAL_PLACES)
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Convert ints, strings and floats to Decimal without binary float noise"""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def round_cost(value) -> Decimal:
    return to_decimal(value).quantize(COST_PLACES, rounding=ROUND_HALF_UP)


def round_quantity(value) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


class WACResult(NamedTuple):
    new_wac: Decimal
    new_quantity: Decimal
    current_value: Decimal
    receipt_value: Decimal
    new_value: Decimal


def calculate_wac(current_quantity, current_wac, received_quantity, unit_price) -> WACResult:
    """
    Blend an incoming batch into the existing weighted average cost.

    new_wac = (qty * wac + received * price) / (qty + received), or the
    incoming price when nothing is on hand. Always computed from the
    pre-receipt position in one step.
    """
    current_quantity = to_decimal(current_quantity)
    current_wac = to_decimal(current_wac)
    received_quantity = to_decimal(received_quantity)
    unit_price = to_decimal(unit_price)

    if received_quantity <= 0:
        raise ValidationError("Received quantity must be greater than zero")
    if current_quantity < 0:
        raise ValidationError("Current quantity cannot be negative")
    if current_wac < 0:
        raise ValidationError("Current WAC cannot be negative")
    if unit_price < 0:
        raise ValidationError("Unit price cannot be negative")

    new_quantity = current_quantity + received_quantity
    current_value = current_quantity * current_wac
    receipt_value = received_quantity * unit_price

    if current_quantity == 0:
        new_wac = unit_price
    else:
        new_wac = (current_value + receipt_value) / new_quantity

    return WACResult(
        new_wac=round_cost(new_wac),
        new_quantity=round_quantity(new_quantity),
        current_value=round_money(current_value),
        receipt_value=round_money(receipt_value),
        new_value=round_money(current_value + receipt_value),
    )


class StockLedger:
    """
    Stock ledger primitives: receive, deduct and valuation reads
    """

    def __init__(self, db: Session):
        self.db = db

    def get_stock(self, location_id: int, item_id: int, lock: bool = False) -> Optional[LocationStock]:
        """
        Read the ledger row for (location, item).

        With ``lock`` the row is re-read from the database (FOR UPDATE where
        the backend supports it) so checks run against the latest committed
        value inside the caller's transaction.
        """
        query = self.db.query(LocationStock).filter(
            LocationStock.location_id == location_id,
            LocationStock.item_id == item_id
        )
        if lock:
            # pending changes of this transaction must reach the row before it is re-read
            self.db.flush()
            query = query.with_for_update().populate_existing()
        return query.first()

    def receive(self, location_id: int, item_id: int, quantity, unit_price) -> LocationStock:
        """Increase on hand and recalculate WAC for an incoming batch"""
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Receipt quantity must be greater than zero")

        stock = self.get_stock(location_id, item_id, lock=True)
        if stock is None:
            stock = LocationStock(
                location_id=location_id,
                item_id=item_id,
                on_hand=ZERO,
                wac=ZERO
            )
            self.db.add(stock)

        result = calculate_wac(stock.on_hand, stock.wac, quantity, unit_price)
        logger.debug(
            f"Receive loc={location_id} item={item_id} qty={quantity} @ {unit_price}: "
            f"on_hand {stock.on_hand} -> {result.new_quantity}, wac {stock.wac} -> {result.new_wac}"
        )
        stock.on_hand = result.new_quantity
        stock.wac = result.new_wac
        self.db.flush()
        return stock

    def deduct(self, location_id: int, item_id: int, quantity) -> LocationStock:
        """
        Decrease on hand; WAC is unchanged.

        This is the only negative-stock guard: issues and transfer execution
        both deduct through it.
        """
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Deduction quantity must be greater than zero")

        stock = self.get_stock(location_id, item_id, lock=True)
        available = to_decimal(stock.on_hand) if stock else ZERO
        if stock is None or quantity > available:
            self._raise_insufficient(location_id, [(item_id, quantity, available)])

        stock.on_hand = round_quantity(available - quantity)
        self.db.flush()
        return stock

    def value_at(self, location_id: int, item_id: int) -> Decimal:
        """on_hand x WAC for one item at one location"""
        stock = self.get_stock(location_id, item_id)
        if stock is None:
            return round_money(ZERO)
        return round_money(to_decimal(stock.on_hand) * to_decimal(stock.wac))

    def location_value(self, location_id: int) -> Decimal:
        """Sum of on_hand x WAC across every item at a location"""
        rows = self.db.query(LocationStock.on_hand, LocationStock.wac).filter(
            LocationStock.location_id == location_id
        ).all()
        return round_money(sum((to_decimal(q) * to_decimal(w) for q, w in rows), ZERO))

    def check_sufficiency(
        self, location_id: int, lines: Iterable[Tuple[int, Decimal]]
    ) -> List[Tuple[int, Decimal, Decimal]]:
        """
        Check a batch of (item_id, quantity) lines against on hand stock.

        Quantities for the same item are summed first. Returns (item_id, requested,
        available) for each item that falls short; an empty list means every line can be met.
        """
        requested: Dict[int, Decimal] = {}
        for item_id, quantity in lines:
            requested[item_id] = requested.get(item_id, ZERO) + to_decimal(quantity)

        self.db.flush()
        rows = self.db.query(LocationStock).filter(
            LocationStock.location_id == location_id,
            LocationStock.item_id.in_(list(requested))
        ).populate_existing().all()
        on_hand = {row.item_id: to_decimal(row.on_hand) for row in rows}

        return [
            (item_id, quantity, on_hand.get(item_id, ZERO))
            for item_id, quantity in requested.items()
            if quantity > on_hand.get(item_id, ZERO)
        ]

    def ensure_sufficient(self, location_id: int, lines: Iterable[Tuple[int, Decimal]]) -> None:
        """Raise InsufficientStockError listing every short item"""
        shortfalls = self.check_sufficiency(location_id, lines)
        if shortfalls:
            self._raise_insufficient(location_id, shortfalls)

    def get_location_stock(self, location_id: int, include_zero: bool = False) -> List[Dict]:
        """Ledger rows for a location with item details and value"""
        query = self.db.query(LocationStock, Item).join(
            Item, Item.id == LocationStock.item_id
        ).filter(LocationStock.location_id == location_id)
        if not include_zero:
            query = query.filter(LocationStock.on_hand > 0)

        result = []
        for stock, item in query.order_by(Item.code).all():
            on_hand = to_decimal(stock.on_hand)
            result.append({
                "location_id": location_id,
                "item_id": item.id,
                "item_code": item.code,
                "item_name": item.name,
                "unit": item.unit,
                "on_hand": on_hand,
                "wac": to_decimal(stock.wac),
                "value": round_money(on_hand * to_decimal(stock.wac)),
                "min_stock": stock.min_stock,
                "max_stock": stock.max_stock,
                "below_minimum": stock.min_stock is not None and on_hand < to_decimal(stock.min_stock),
            })
        return result

    def _raise_insufficient(self, location_id: int, shortfalls: List[Tuple[int, Decimal, Decimal]]):
        location = self.db.query(Location).filter(Location.id == location_id).first()
        if location is None:
            raise NotFoundError(f"Location {location_id} not found", code="LOCATION_NOT_FOUND")

        items = {
            item.id: item for item in self.db.query(Item).filter(
                Item.id.in_([item_id for item_id, _, _ in shortfalls])
            ).all()
        }
        insufficient_items = []
        for item_id, requested, available in shortfalls:
            item = items.get(item_id)
            insufficient_items.append({
                "item_id": item_id,
                "item_code": item.code if item else None,
                "item_name": item.name if item else None,
                "unit": item.unit if item else None,
                "requested": str(requested),
                "available": str(available),
                "shortfall": str(requested - available),
            })

        logger.warning(
            f"Insufficient stock at {location.code}: "
            + ", ".join(f"{entry['item_code']} requested {entry['requested']} available {entry['available']}"
                        for entry in insufficient_items)
        )
        raise InsufficientStockError(
            f"Insufficient stock for {len(insufficient_items)} item(s) at {location.name}",
            details={
                "location_id": location.id,
                "location_name": location.name,
                "insufficient_items": insufficient_items,
            }
        )


__all__ = [
    "StockLedger", "WACResult", "calculate_wac",
    "to_decimal", "round_money", "round_cost", "round_quantity",
]
