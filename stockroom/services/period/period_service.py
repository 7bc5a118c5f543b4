"""
Period Service
Period lifecycle (create, open, readiness, roll forward) and POB entries
"""
import calendar
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy import and_
from sqlalchemy.orm import Session
import logging

from stockroom.core.exceptions import (
    BusinessLogicError, ConflictError, NotFoundError, PeriodClosedError, ValidationError
)
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.period import (
    Period, PeriodLocation, PeriodLocationStatus, PeriodStatus, POBEntry
)
from stockroom.models.reconciliation import Reconciliation
from stockroom.models.stock import Location
from stockroom.services.stock.price_variance import PriceLockService

logger = logging.getLogger(__name__)


class PeriodService:
    """
    Accounting period lifecycle

    DRAFT -> OPEN -> PENDING_CLOSE -> CLOSED. At most one period is OPEN;
    postings resolve it once at the API boundary and carry it explicitly.
    """

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user

    def get(self, period_id: int) -> Period:
        period = self.db.query(Period).filter(Period.id == period_id).first()
        if period is None:
            raise NotFoundError(f"Period {period_id} not found", code="PERIOD_NOT_FOUND")
        return period

    def get_open_period(self) -> Optional[Period]:
        return self.db.query(Period).filter(Period.status == PeriodStatus.OPEN.value).first()

    def require_open_period(self) -> Period:
        period = self.get_open_period()
        if period is None:
            raise BusinessLogicError("There is no open period", code="NO_OPEN_PERIOD")
        return period

    def get_current_period(self) -> Optional[Period]:
        """The open period, else the one awaiting close approval"""
        period = self.get_open_period()
        if period is None:
            period = self.db.query(Period).filter(
                Period.status == PeriodStatus.PENDING_CLOSE.value
            ).first()
        return period

    def list(self, status: Optional[str] = None) -> List[Period]:
        query = self.db.query(Period)
        if status:
            query = query.filter(Period.status == status)
        return query.order_by(Period.start_date.desc()).all()

    def previous_period(self, period: Period) -> Optional[Period]:
        return self.db.query(Period).filter(
            Period.end_date < period.start_date
        ).order_by(Period.end_date.desc()).first()

    def get_period_location(self, period_id: int, location_id: int) -> Optional[PeriodLocation]:
        return self.db.query(PeriodLocation).filter(
            PeriodLocation.period_id == period_id,
            PeriodLocation.location_id == location_id
        ).first()

    def _check_dates(self, start_date: date, end_date: date, exclude_id: Optional[int] = None):
        if end_date <= start_date:
            raise ValidationError(
                "End date must be after start date",
                code="INVALID_DATE_RANGE",
                details={"start_date": str(start_date), "end_date": str(end_date)}
            )
        query = self.db.query(Period).filter(
            and_(Period.start_date <= end_date, Period.end_date >= start_date)
        )
        if exclude_id is not None:
            query = query.filter(Period.id != exclude_id)
        overlapping = query.first()
        if overlapping:
            raise ConflictError(
                f"Period would overlap with existing period '{overlapping.name}'",
                code="OVERLAPPING_PERIOD",
                details={"period_id": overlapping.id, "name": overlapping.name}
            )

    def _add_period_locations(self, period: Period, opening_values: Optional[Dict[int, object]] = None):
        opening_values = opening_values or {}
        locations = self.db.query(Location).filter(Location.is_active.is_(True)).all()
        for location in locations:
            self.db.add(PeriodLocation(
                period_id=period.id,
                location_id=location.id,
                status=PeriodLocationStatus.NOT_READY.value,
                opening_value=opening_values.get(location.id) or 0
            ))
        return len(locations)

    def create(self, period_data: Dict) -> Period:
        """New DRAFT period with a NOT_READY marker for every active location"""
        self._check_dates(period_data["start_date"], period_data["end_date"])

        try:
            period = Period(
                name=period_data["name"],
                start_date=period_data["start_date"],
                end_date=period_data["end_date"],
                status=PeriodStatus.DRAFT.value
            )
            self.db.add(period)
            self.db.flush()

            previous = self.previous_period(period)
            opening_values = {}
            if previous is not None:
                opening_values = {
                    pl.location_id: pl.closing_value for pl in previous.locations
                    if pl.closing_value is not None
                }
            self._add_period_locations(period, opening_values)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="CREATE_PERIOD",
                table="periods",
                key=str(period.id),
                new_values={"name": period.name, "start_date": period.start_date, "end_date": period.end_date},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(period)
        logger.info(f"Period {period.name} created ({period.start_date} - {period.end_date})")
        return period

    def open(self, period_id: int) -> Period:
        """
        Open a DRAFT period and lock its prices.

        The partial unique index on status backs up the single-open check
        against a concurrent open.
        """
        period = self.get(period_id)
        if period.status != PeriodStatus.DRAFT.value:
            raise BusinessLogicError(
                f"Only DRAFT periods can be opened (current status {period.status})",
                code="INVALID_STATUS",
                details={"status": period.status}
            )

        active = self.db.query(Period).filter(
            Period.status.in_([PeriodStatus.OPEN.value, PeriodStatus.PENDING_CLOSE.value]),
            Period.id != period.id
        ).first()
        if active:
            raise ConflictError(
                f"Period '{active.name}' is still {active.status}",
                code="PERIOD_ALREADY_OPEN",
                details={"period_id": active.id, "name": active.name, "status": active.status}
            )
        if not period.locations:
            raise BusinessLogicError(
                "Period has no locations to track",
                code="NO_LOCATIONS",
                details={"period_id": period.id}
            )

        try:
            locked = PriceLockService(self.db, self.current_user).lock_prices(period)
            period.status = PeriodStatus.OPEN.value

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="OPEN_PERIOD",
                table="periods",
                key=str(period.id),
                old_values={"status": PeriodStatus.DRAFT.value},
                new_values={"status": period.status, "prices_locked": locked},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(period)
        logger.info(f"Period {period.name} opened")
        return period

    def ensure_location_accepts_postings(self, period: Period, location_id: int) -> PeriodLocation:
        """
        Documents post only into an OPEN period, and only for locations that
        have not been marked ready or closed.
        """
        if period.status != PeriodStatus.OPEN.value:
            raise PeriodClosedError(
                f"Period {period.name} is {period.status}",
                details={"period_id": period.id, "status": period.status}
            )
        period_location = self.get_period_location(period.id, location_id)
        if period_location is None or period_location.status != PeriodLocationStatus.NOT_READY.value:
            raise PeriodClosedError(
                f"Location {location_id} no longer accepts postings in period {period.name}",
                details={
                    "period_id": period.id,
                    "location_id": location_id,
                    "location_status": period_location.status if period_location else None,
                }
            )
        return period_location

    def mark_location_ready(self, period_id: int, location_id: int) -> PeriodLocation:
        """Mark a location READY for close; repeating the call is harmless"""
        period = self.get(period_id)
        if period.status != PeriodStatus.OPEN.value:
            raise BusinessLogicError(
                f"Period {period.name} is not open",
                code="PERIOD_NOT_OPEN",
                details={"status": period.status}
            )

        period_location = self.get_period_location(period_id, location_id)
        if period_location is None:
            raise NotFoundError(
                f"Location {location_id} is not part of period {period.name}",
                code="PERIOD_LOCATION_NOT_FOUND"
            )
        if period_location.status == PeriodLocationStatus.CLOSED.value:
            raise BusinessLogicError(
                "Location is already closed for this period",
                code="LOCATION_ALREADY_CLOSED"
            )
        if period_location.status == PeriodLocationStatus.READY.value:
            return period_location

        saved = self.db.query(Reconciliation.id).filter(
            Reconciliation.period_id == period_id,
            Reconciliation.location_id == location_id
        ).first()
        if saved is None:
            raise BusinessLogicError(
                "Save the location's reconciliation before marking it ready",
                code="RECONCILIATION_NOT_COMPLETED",
                details={"period_id": period_id, "location_id": location_id}
            )

        try:
            period_location.status = PeriodLocationStatus.READY.value
            period_location.ready_at = datetime.utcnow()
            period_location.ready_by = self.current_user.id if self.current_user else None

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="MARK_LOCATION_READY",
                table="period_locations",
                key=f"{period_id}/{location_id}",
                new_values={"status": period_location.status},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(period_location)
        logger.info(f"Location {location_id} ready for close of period {period.name}")
        return period_location

    def mark_location_unready(self, period_id: int, location_id: int) -> PeriodLocation:
        """
        Return a READY location to NOT_READY so it accepts postings again.

        Only while the period is OPEN; a close request freezes readiness.
        """
        period = self.get(period_id)
        if period.status != PeriodStatus.OPEN.value:
            raise BusinessLogicError(
                f"Period {period.name} is not open",
                code="PERIOD_NOT_OPEN",
                details={"status": period.status}
            )

        period_location = self.get_period_location(period_id, location_id)
        if period_location is None:
            raise NotFoundError(
                f"Location {location_id} is not part of period {period.name}",
                code="PERIOD_LOCATION_NOT_FOUND"
            )

        try:
            updated = self.db.query(PeriodLocation).filter(
                PeriodLocation.id == period_location.id,
                PeriodLocation.status == PeriodLocationStatus.READY.value
            ).update({
                "status": PeriodLocationStatus.NOT_READY.value,
                "ready_at": None,
                "ready_by": None,
            }, synchronize_session=False)
            if updated != 1:
                raise BusinessLogicError(
                    "Location is not marked ready",
                    code="LOCATION_NOT_READY",
                    details={"period_id": period_id, "location_id": location_id}
                )

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="MARK_LOCATION_UNREADY",
                table="period_locations",
                key=f"{period_id}/{location_id}",
                old_values={"status": PeriodLocationStatus.READY.value},
                new_values={"status": PeriodLocationStatus.NOT_READY.value},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(period_location)
        logger.info(f"Location {location_id} reopened for postings in period {period.name}")
        return period_location

    def roll_forward(self, period_id: int, copy_prices: bool = True) -> Period:
        """
        Create the DRAFT period following a closed one.

        It runs from the day after the closed period to the end of that
        month; opening values come from the closed period's closing values.
        """
        source = self.get(period_id)
        if source.status != PeriodStatus.CLOSED.value:
            raise BusinessLogicError(
                f"Cannot roll forward a period that is not closed (status {source.status})",
                code="PERIOD_NOT_CLOSED",
                details={"status": source.status}
            )

        start_date = source.end_date + timedelta(days=1)
        end_date = start_date.replace(day=calendar.monthrange(start_date.year, start_date.month)[1])
        if end_date <= start_date:
            end_date = start_date + timedelta(days=1)
        self._check_dates(start_date, end_date)

        try:
            period = Period(
                name=start_date.strftime("%B %Y"),
                start_date=start_date,
                end_date=end_date,
                status=PeriodStatus.DRAFT.value
            )
            self.db.add(period)
            self.db.flush()

            self._add_period_locations(period, {
                pl.location_id: pl.closing_value for pl in source.locations
            })
            copied = 0
            if copy_prices:
                copied = PriceLockService(self.db, self.current_user).copy_prices(source.id, period)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="ROLL_FORWARD_PERIOD",
                table="periods",
                key=str(period.id),
                new_values={"from_period": source.id, "name": period.name, "prices_copied": copied},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(period)
        logger.info(f"Rolled period {source.name} forward into {period.name}")
        return period

    # POB
    def upsert_pob(self, period: Period, location_id: int, entries: List[Dict]) -> List[POBEntry]:
        """Insert or update daily headcounts for a location"""
        if period.status == PeriodStatus.CLOSED.value:
            raise PeriodClosedError(f"Period {period.name} is closed", details={"period_id": period.id})

        out_of_range = [
            str(entry["entry_date"]) for entry in entries
            if not (period.start_date <= entry["entry_date"] <= period.end_date)
        ]
        if out_of_range:
            raise ValidationError(
                "POB dates must fall inside the period",
                details={"dates": out_of_range}
            )

        existing = {
            row.entry_date: row for row in self.db.query(POBEntry).filter(
                POBEntry.period_id == period.id,
                POBEntry.location_id == location_id
            ).all()
        }
        try:
            for entry in entries:
                row = existing.get(entry["entry_date"])
                if row is None:
                    row = POBEntry(period_id=period.id, location_id=location_id, entry_date=entry["entry_date"])
                    self.db.add(row)
                row.crew_count = entry.get("crew_count", 0)
                row.extra_count = entry.get("extra_count", 0)
                row.entered_by = self.current_user.id if self.current_user else None
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return self.list_pob(period.id, location_id)

    def list_pob(self, period_id: int, location_id: int) -> List[POBEntry]:
        return self.db.query(POBEntry).filter(
            POBEntry.period_id == period_id,
            POBEntry.location_id == location_id
        ).order_by(POBEntry.entry_date).all()
