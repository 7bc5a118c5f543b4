"""
Reconciliation Service
Per location and period: opening stock, movements, closing stock and the
consumption they imply

A reconciliation is computed live until it is saved; once a row exists its
stored figures are authoritative.
"""
from typing import Dict, List, NamedTuple, Optional
from decimal import Decimal
from datetime import datetime
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from stockroom.core.exceptions import PeriodClosedError, ValidationError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.documents import Delivery, Issue, Transfer, TransferStatus
from stockroom.models.period import Period, PeriodStatus, POBEntry
from stockroom.models.reconciliation import Reconciliation, ReconciliationStatus
from stockroom.models.stock import Location
from stockroom.services.ncr_service import NCRService
from stockroom.services.period.period_service import PeriodService
from stockroom.services.stock.ledger import StockLedger, ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)

FIGURE_FIELDS = (
    "opening_stock", "receipts", "transfers_in", "transfers_out", "issues", "closing_stock",
    "adjustments", "back_charges", "credits", "condemnations", "ncr_credits", "ncr_losses",
)
ADJUSTMENT_FIELDS = ("back_charges", "credits", "condemnations", "adjustments")


class ConsumptionResult(NamedTuple):
    consumption: Decimal
    total_adjustments: Decimal
    breakdown: Dict[str, Decimal]


def calculate_consumption(
    opening_stock,
    receipts,
    transfers_in,
    transfers_out,
    closing_stock,
    issues=ZERO,
    adjustments=ZERO,
    back_charges=ZERO,
    credits=ZERO,
    condemnations=ZERO,
    ncr_credits=ZERO,
    ncr_losses=ZERO,
) -> ConsumptionResult:
    """
    Stock consumed over a period.

        total_adjustments = back_charges - credits - condemnations + adjustments
                            + ncr_losses - ncr_credits
        consumption = opening + receipts + transfers_in - transfers_out
                      - closing + total_adjustments

    Issues are carried in the breakdown for reference only; consumption is
    derived from the stock position, not from issue documents.
    """
    values = {
        "opening_stock": to_decimal(opening_stock),
        "receipts": to_decimal(receipts),
        "transfers_in": to_decimal(transfers_in),
        "transfers_out": to_decimal(transfers_out),
        "issues": to_decimal(issues),
        "closing_stock": to_decimal(closing_stock),
        "adjustments": to_decimal(adjustments),
        "back_charges": to_decimal(back_charges),
        "credits": to_decimal(credits),
        "condemnations": to_decimal(condemnations),
        "ncr_credits": to_decimal(ncr_credits),
        "ncr_losses": to_decimal(ncr_losses),
    }
    for field in ("opening_stock", "receipts", "transfers_in", "transfers_out", "closing_stock"):
        if values[field] < 0:
            raise ValidationError(f"{field} cannot be negative", details={field: str(values[field])})

    total_adjustments = (
        values["back_charges"] - values["credits"] - values["condemnations"] + values["adjustments"]
        + values["ncr_losses"] - values["ncr_credits"]
    )
    consumption = (
        values["opening_stock"] + values["receipts"] + values["transfers_in"]
        - values["transfers_out"] - values["closing_stock"] + total_adjustments
    )

    return ConsumptionResult(
        consumption=round_money(consumption),
        total_adjustments=round_money(total_adjustments),
        breakdown={key: round_money(value) for key, value in values.items()},
    )


def calculate_manday_cost(consumption, total_mandays: int) -> Decimal:
    """Consumption per person-day"""
    if total_mandays is None or total_mandays <= 0:
        raise ValidationError("Total mandays must be greater than zero")
    return round_money(to_decimal(consumption) / Decimal(total_mandays))


class ReconciliationService:
    """Reconciliation read-through, save and period report"""

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user
        self.ledger = StockLedger(db)
        self.periods = PeriodService(db, current_user)

    def get_saved(self, period_id: int, location_id: int) -> Optional[Reconciliation]:
        return self.db.query(Reconciliation).filter(
            Reconciliation.period_id == period_id,
            Reconciliation.location_id == location_id
        ).first()

    def _document_total(self, column, *criteria) -> Decimal:
        return round_money(self.db.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar())

    def opening_stock(self, period: Period, location_id: int) -> Decimal:
        """Closing stock persisted for the location in the previous period"""
        previous = self.periods.previous_period(period)
        if previous is None:
            return round_money(ZERO)
        saved = self.get_saved(previous.id, location_id)
        return round_money(saved.closing_stock if saved else ZERO)

    def total_mandays(self, period_id: int, location_id: int) -> int:
        total = self.db.query(
            func.coalesce(func.sum(POBEntry.crew_count + POBEntry.extra_count), 0)
        ).filter(
            POBEntry.period_id == period_id,
            POBEntry.location_id == location_id
        ).scalar()
        return int(total or 0)

    def compute_live(self, period: Period, location_id: int) -> Dict[str, Decimal]:
        """Figures from current documents and the live ledger"""
        completed = Transfer.status == TransferStatus.COMPLETED.value
        ncr_summary = NCRService(self.db).financial_summary(location_id, period)
        return {
            "opening_stock": self.opening_stock(period, location_id),
            "receipts": self._document_total(
                Delivery.total_amount, Delivery.location_id == location_id, Delivery.period_id == period.id
            ),
            "transfers_in": self._document_total(
                Transfer.total_value, Transfer.to_location_id == location_id,
                Transfer.period_id == period.id, completed
            ),
            "transfers_out": self._document_total(
                Transfer.total_value, Transfer.from_location_id == location_id,
                Transfer.period_id == period.id, completed
            ),
            "issues": self._document_total(
                Issue.total_value, Issue.location_id == location_id, Issue.period_id == period.id
            ),
            "closing_stock": self.ledger.location_value(location_id),
            "adjustments": round_money(ZERO),
            "back_charges": round_money(ZERO),
            "credits": round_money(ZERO),
            "condemnations": round_money(ZERO),
            "ncr_credits": ncr_summary["credited"],
            "ncr_losses": ncr_summary["losses"],
        }

    def _build(self, period: Period, location: Location, figures: Dict[str, Decimal], status: str) -> Dict:
        result = calculate_consumption(**figures)
        mandays = self.total_mandays(period.id, location.id)
        return {
            "period_id": period.id,
            "location_id": location.id,
            "location_code": location.code,
            "location_name": location.name,
            "status": status,
            "is_saved": status != ReconciliationStatus.COMPUTED.value,
            "reconciliation": {key: round_money(figures[key]) for key in FIGURE_FIELDS},
            "calculations": {
                "consumption": result.consumption,
                "total_adjustments": result.total_adjustments,
                "total_mandays": mandays,
                "manday_cost": calculate_manday_cost(result.consumption, mandays) if mandays > 0 else None,
                "breakdown": result.breakdown,
            },
        }

    def get_reconciliation(self, period: Period, location: Location) -> Dict:
        saved = self.get_saved(period.id, location.id)
        if saved is not None:
            figures = {key: to_decimal(getattr(saved, key)) for key in FIGURE_FIELDS}
            return self._build(period, location, figures, saved.status)
        return self._build(
            period, location, self.compute_live(period, location.id), ReconciliationStatus.COMPUTED.value
        )

    def _upsert(self, period: Period, location_id: int, adjustments: Dict, status: str) -> Reconciliation:
        """Live figures merged with stored and supplied adjustments; not committed"""
        saved = self.get_saved(period.id, location_id)
        figures = self.compute_live(period, location_id)
        for field in ADJUSTMENT_FIELDS:
            if adjustments.get(field) is not None:
                figures[field] = round_money(adjustments[field])
            elif saved is not None:
                figures[field] = round_money(getattr(saved, field))
        calculate_consumption(**figures)

        if saved is None:
            saved = Reconciliation(period_id=period.id, location_id=location_id)
            self.db.add(saved)
        for key in FIGURE_FIELDS:
            setattr(saved, key, figures[key])
        saved.status = status
        saved.saved_by = self.current_user.id if self.current_user else None
        saved.last_updated = datetime.utcnow()
        self.db.flush()
        return saved

    def save_reconciliation(self, period: Period, location: Location, adjustments: Dict) -> Dict:
        """Persist the current figures with the supplied adjustments"""
        if period.status == PeriodStatus.CLOSED.value:
            raise PeriodClosedError(
                f"Period {period.name} is closed",
                details={"period_id": period.id}
            )

        try:
            row = self._upsert(period, location.id, adjustments, ReconciliationStatus.SAVED.value)
            log_user_action(
                db=self.db,
                user=self.current_user,
                action="SAVE_RECONCILIATION",
                table="reconciliations",
                key=f"{period.id}/{location.id}",
                new_values={key: getattr(row, key) for key in FIGURE_FIELDS},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Reconciliation saved for {location.code} in period {period.name}")
        return self.get_reconciliation(period, location)

    def persist_final(self, period: Period, location_id: int) -> Reconciliation:
        """Final APPROVED figures written during period close"""
        return self._upsert(period, location_id, {}, ReconciliationStatus.APPROVED.value)

    def report(self, period: Period, location_ids: Optional[List[int]] = None) -> Dict:
        """Reconciliation of every accessible active location with grand totals"""
        query = self.db.query(Location).filter(Location.is_active.is_(True))
        if location_ids is not None:
            query = query.filter(Location.id.in_(location_ids))
        locations = query.order_by(Location.code).all()

        rows = [self.get_reconciliation(period, location) for location in locations]

        totals = {key: round_money(sum((row["reconciliation"][key] for row in rows), ZERO)) for key in FIGURE_FIELDS}
        totals["consumption"] = round_money(sum((row["calculations"]["consumption"] for row in rows), ZERO))
        totals["total_mandays"] = sum(row["calculations"]["total_mandays"] for row in rows)
        totals["average_manday_cost"] = (
            calculate_manday_cost(totals["consumption"], totals["total_mandays"])
            if totals["total_mandays"] > 0 else None
        )
        saved_count = sum(1 for row in rows if row["is_saved"])

        return {
            "report_type": "reconciliation",
            "generated_at": datetime.utcnow(),
            "period": period,
            "locations": rows,
            "grand_totals": totals,
            "summary": {
                "total_locations": len(rows),
                "locations_with_saved_data": saved_count,
                "locations_with_calculated_data": len(rows) - saved_count,
            },
        }
