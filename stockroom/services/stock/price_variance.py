"""
Period Price Lock Service
Freezes expected item prices per period and measures delivery price variance
"""
from typing import Dict, Iterable, List, NamedTuple, Optional
from decimal import Decimal
from sqlalchemy.orm import Session
import logging

from stockroom.core.config import settings
from stockroom.core.exceptions import BusinessLogicError, ValidationError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.period import ItemPrice, Period, PeriodStatus
from stockroom.models.stock import Item
from stockroom.services.stock.ledger import ZERO, round_cost, round_money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class VarianceResult(NamedTuple):
    expected_price: Decimal
    actual_price: Decimal
    variance: Decimal
    variance_percent: Decimal
    variance_amount: Decimal
    has_variance: bool
    exceeds_threshold: bool


def calculate_variance(
    expected_price,
    actual_price,
    quantity=1,
    threshold_percent: Optional[Decimal] = None,
    threshold_amount: Optional[Decimal] = None,
) -> VarianceResult:
    """
    Compare an actual unit price against the locked expected price.

    variance = actual - expected. The percentage is relative to the expected
    price; a zero expected price gives 100 for any positive actual price.
    Without configured thresholds any non-zero variance exceeds.
    """
    expected = round_cost(expected_price)
    actual = round_cost(actual_price)
    quantity = to_decimal(quantity)

    if expected < 0 or actual < 0:
        raise ValidationError("Prices cannot be negative")

    variance = actual - expected
    if expected == 0:
        percent = HUNDRED if actual > 0 else ZERO
    else:
        percent = variance / expected * HUNDRED
    percent = round_money(percent)
    amount = round_money(variance * quantity)
    has_variance = variance != 0

    exceeds = has_variance
    if has_variance and (threshold_percent is not None or threshold_amount is not None):
        exceeds = (
            (threshold_percent is not None and abs(percent) > to_decimal(threshold_percent))
            or (threshold_amount is not None and abs(amount) > to_decimal(threshold_amount))
        )

    return VarianceResult(
        expected_price=expected,
        actual_price=actual,
        variance=variance,
        variance_percent=percent,
        variance_amount=amount,
        has_variance=has_variance,
        exceeds_threshold=exceeds,
    )


class PriceLockService:
    """
    Period pricing lock

    Prices are written while a period is DRAFT and snapshotted when it
    opens. There is no update path once the period is open.
    """

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user

    def get_price_map(self, period_id: int, item_ids: Optional[Iterable[int]] = None) -> Dict[int, Decimal]:
        query = self.db.query(ItemPrice.item_id, ItemPrice.price).filter(ItemPrice.period_id == period_id)
        if item_ids is not None:
            query = query.filter(ItemPrice.item_id.in_(list(item_ids)))
        return {item_id: to_decimal(price) for item_id, price in query.all()}

    def get_period_prices(self, period_id: int) -> List[ItemPrice]:
        return self.db.query(ItemPrice).filter(
            ItemPrice.period_id == period_id
        ).order_by(ItemPrice.item_id).all()

    def set_period_prices(self, period: Period, prices: List[Dict]) -> List[ItemPrice]:
        """Bulk upsert expected prices while the period is still DRAFT"""
        if period.status != PeriodStatus.DRAFT.value:
            raise BusinessLogicError(
                f"Prices for period {period.name} are locked",
                code="PRICES_LOCKED",
                details={"period_id": period.id, "status": period.status}
            )

        item_ids = [entry["item_id"] for entry in prices]
        known = {
            item_id for (item_id,) in self.db.query(Item.id).filter(Item.id.in_(item_ids)).all()
        }
        missing = sorted(set(item_ids) - known)
        if missing:
            raise ValidationError(
                "Unknown items in price list",
                code="INVALID_ITEMS",
                details={"invalid_item_ids": missing}
            )

        existing = {
            row.item_id: row for row in self.db.query(ItemPrice).filter(
                ItemPrice.period_id == period.id,
                ItemPrice.item_id.in_(item_ids)
            ).all()
        }
        try:
            for entry in prices:
                price = round_cost(entry["price"])
                row = existing.get(entry["item_id"])
                if row is None:
                    row = ItemPrice(
                        period_id=period.id,
                        item_id=entry["item_id"],
                        price=price,
                        currency=settings.DEFAULT_CURRENCY,
                        set_by=self.current_user.id if self.current_user else None
                    )
                    self.db.add(row)
                    existing[entry["item_id"]] = row
                else:
                    row.price = price
                    row.set_by = self.current_user.id if self.current_user else None

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="SET_PERIOD_PRICES",
                table="item_prices",
                key=str(period.id),
                new_values={"prices": {str(e["item_id"]): e["price"] for e in prices}},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"{len(prices)} price(s) set for period {period.name}")
        return self.get_period_prices(period.id)

    def lock_prices(self, period: Period) -> int:
        """
        Snapshot reference prices of every active item into the period.

        Items already priced while the period was DRAFT keep that price.
        Items without a reference price stay unpriced and deliveries of them
        fail with MISSING_PERIOD_PRICES. Returns the number of rows added.
        """
        priced = set(self.get_price_map(period.id))
        items = self.db.query(Item).filter(
            Item.is_active.is_(True),
            Item.reference_price.isnot(None)
        ).all()

        added = 0
        for item in items:
            if item.id in priced:
                continue
            self.db.add(ItemPrice(
                period_id=period.id,
                item_id=item.id,
                price=round_cost(item.reference_price),
                currency=settings.DEFAULT_CURRENCY,
                set_by=self.current_user.id if self.current_user else None
            ))
            added += 1

        self.db.flush()
        logger.info(f"Locked prices for period {period.name}: {added} snapshotted, {len(priced)} preset")
        return added

    def lock_item_price(self, period: Period, item: Item) -> Optional[ItemPrice]:
        """
        Lock the reference price of an item that was created or first priced
        after the period opened.

        An existing lock is never rewritten. Returns the new row, or None
        when nothing was added.
        """
        if not item.is_active or item.reference_price is None:
            return None
        if self.get_price_map(period.id, [item.id]):
            return None

        row = ItemPrice(
            period_id=period.id,
            item_id=item.id,
            price=round_cost(item.reference_price),
            currency=settings.DEFAULT_CURRENCY,
            set_by=self.current_user.id if self.current_user else None
        )
        self.db.add(row)
        self.db.flush()
        logger.info(f"Locked {item.code} at {row.price} into period {period.name}")
        return row

    def copy_prices(self, source_period_id: int, target_period: Period) -> int:
        """Carry a period's prices into a new DRAFT period"""
        existing = set(self.get_price_map(target_period.id))
        copied = 0
        for row in self.get_period_prices(source_period_id):
            if row.item_id in existing:
                continue
            self.db.add(ItemPrice(
                period_id=target_period.id,
                item_id=row.item_id,
                price=row.price,
                currency=row.currency,
                set_by=self.current_user.id if self.current_user else None
            ))
            copied += 1
        self.db.flush()
        return copied

    def check_variance(self, period: Period, item_id: int, actual_price, quantity=1) -> VarianceResult:
        """Variance of an actual price against the period's locked price"""
        expected = self.get_price_map(period.id, [item_id]).get(item_id)
        if expected is None:
            raise BusinessLogicError(
                f"No locked price for item {item_id} in period {period.name}",
                code="MISSING_PERIOD_PRICES",
                details={"missing_item_ids": [item_id]}
            )
        return calculate_variance(
            expected, actual_price, quantity,
            threshold_percent=settings.PRICE_VARIANCE_THRESHOLD_PERCENT,
            threshold_amount=settings.PRICE_VARIANCE_THRESHOLD_AMOUNT,
        )

    def require_prices(self, period: Period, item_ids: Iterable[int]) -> Dict[int, Decimal]:
        """Locked prices for every item, or MISSING_PERIOD_PRICES listing the gaps"""
        item_ids = list(dict.fromkeys(item_ids))
        prices = self.get_price_map(period.id, item_ids)
        missing = [item_id for item_id in item_ids if item_id not in prices]
        if missing:
            raise BusinessLogicError(
                f"Period {period.name} has no locked price for {len(missing)} item(s)",
                code="MISSING_PERIOD_PRICES",
                details={"missing_item_ids": missing}
            )
        return prices

