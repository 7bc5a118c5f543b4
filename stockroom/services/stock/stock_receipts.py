"""
Stock Receipts Service
Delivery posting: ledger receipt at the invoiced price, price variance
against the period lock and automatic NCRs
"""
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from sqlalchemy.orm import Session, selectinload
import logging

from stockroom.core.config import settings
from stockroom.core.exceptions import NotFoundError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.documents import Delivery, DeliveryLine
from stockroom.models.ncr import NCR
from stockroom.models.period import Period
from stockroom.services.document_numbers import DELIVERY_PREFIX, next_document_number
from stockroom.services.ncr_service import NCRService
from stockroom.services.period.period_service import PeriodService
from stockroom.services.stock.ledger import StockLedger, ZERO, round_cost, round_money, to_decimal
from stockroom.services.stock.price_variance import PriceLockService, calculate_variance
from stockroom.services.stock.stock_master import StockMasterService, get_active_items, require_active_location

logger = logging.getLogger(__name__)


class DeliveryService:
    """
    Goods receipt processing

    A delivery is posted in one step: header, lines, ledger receipts and
    variance NCRs commit together or not at all.
    """

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user
        self.ledger = StockLedger(db)
        self.prices = PriceLockService(db, current_user)
        self.ncr_service = NCRService(db, current_user)

    def post_delivery(self, location_id: int, period: Period, delivery_data: Dict) -> Tuple[Delivery, List[NCR]]:
        """
        Post a delivery into the open period.

        Returns the delivery and the NCRs raised for lines whose price
        differs from the period's locked price.
        """
        master = StockMasterService(self.db, self.current_user)
        location = require_active_location(master.get_location(location_id))
        PeriodService(self.db, self.current_user).ensure_location_accepts_postings(period, location_id)
        supplier = master.get_supplier(delivery_data["supplier_id"])

        lines = delivery_data["lines"]
        items = get_active_items(self.db, [line["item_id"] for line in lines])
        period_prices = self.prices.require_prices(period, items.keys())

        ncrs: List[NCR] = []
        try:
            delivery = Delivery(
                delivery_no=next_document_number(self.db, Delivery.delivery_no, DELIVERY_PREFIX),
                location_id=location.id,
                supplier_id=supplier.id,
                period_id=period.id,
                invoice_no=delivery_data.get("invoice_no"),
                delivery_note=delivery_data.get("delivery_note"),
                delivery_date=delivery_data["delivery_date"],
                status="POSTED",
                total_amount=ZERO,
                has_variance=False,
                posted_at=datetime.utcnow(),
                created_by=self.current_user.id if self.current_user else None
            )
            self.db.add(delivery)
            self.db.flush()

            total = ZERO
            for line_data in lines:
                item = items[line_data["item_id"]]
                quantity = to_decimal(line_data["quantity"])
                unit_price = round_cost(line_data["unit_price"])
                variance = calculate_variance(
                    period_prices[item.id], unit_price, quantity,
                    threshold_percent=settings.PRICE_VARIANCE_THRESHOLD_PERCENT,
                    threshold_amount=settings.PRICE_VARIANCE_THRESHOLD_AMOUNT,
                )

                line = DeliveryLine(
                    delivery_id=delivery.id,
                    item_id=item.id,
                    quantity=quantity,
                    unit_price=unit_price,
                    period_price=variance.expected_price,
                    price_variance=variance.variance,
                    line_value=round_money(quantity * unit_price)
                )
                self.db.add(line)
                self.db.flush()
                total += line.line_value

                self.ledger.receive(location.id, item.id, quantity, unit_price)

                if variance.has_variance:
                    delivery.has_variance = True
                if variance.exceeds_threshold:
                    ncrs.append(self.ncr_service.create_price_variance_ncr(delivery, line, item, variance))

            delivery.total_amount = round_money(total)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="POST_DELIVERY",
                table="deliveries",
                key=delivery.delivery_no,
                new_values={
                    "location": location.code,
                    "supplier": supplier.code,
                    "lines": len(lines),
                    "total_amount": delivery.total_amount,
                    "ncrs": [ncr.ncr_no for ncr in ncrs],
                },
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(delivery)
        for ncr in ncrs:
            self.db.refresh(ncr)
        logger.info(
            f"Delivery {delivery.delivery_no} posted at {location.code}: "
            f"{len(lines)} lines, total {delivery.total_amount}, {len(ncrs)} NCR(s)"
        )
        return delivery, ncrs

    def get_delivery(self, delivery_id: int) -> Delivery:
        delivery = self.db.query(Delivery).options(selectinload(Delivery.lines)).filter(
            Delivery.id == delivery_id
        ).first()
        if delivery is None:
            raise NotFoundError(f"Delivery {delivery_id} not found", code="DELIVERY_NOT_FOUND")
        return delivery

    def list_deliveries(
        self,
        location_id: int,
        period_id: Optional[int] = None,
        has_variance: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[Delivery], int]:
        query = self.db.query(Delivery).filter(Delivery.location_id == location_id)
        if period_id is not None:
            query = query.filter(Delivery.period_id == period_id)
        if has_variance is not None:
            query = query.filter(Delivery.has_variance.is_(has_variance))

        total = query.count()
        deliveries = query.options(selectinload(Delivery.lines)).order_by(
            Delivery.delivery_date.desc(), Delivery.id.desc()
        ).offset(skip).limit(limit).all()
        return deliveries, total
