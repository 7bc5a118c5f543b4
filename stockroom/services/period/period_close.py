"""
Period-end Close Service
Readiness checks, close approval and the atomic multi-location close
"""
from typing import Dict, List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
import logging

from stockroom.core.exceptions import BusinessLogicError, InvalidStatusError, NotFoundError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.period import (
    Approval, ApprovalStatus, Period, PeriodLocation, PeriodLocationStatus, PeriodStatus
)
from stockroom.services.ncr_service import NCRService
from stockroom.services.period.period_service import PeriodService
from stockroom.services.period.reconciliation import ReconciliationService
from stockroom.services.stock.ledger import StockLedger, ZERO, round_money

logger = logging.getLogger(__name__)

PERIOD_CLOSE = "PERIOD_CLOSE"


class PeriodCloseService:
    """
    Period-end closing

    Every location must be READY before close. An admin approves the close,
    either directly or through a pending approval request. Execution writes
    every location's final reconciliation and snapshot and closes the period
    in one transaction.
    """

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user
        self.periods = PeriodService(db, current_user)
        self.reconciliations = ReconciliationService(db, current_user)
        self.ledger = StockLedger(db)

    def get_period_status(self, period_id: int) -> Dict:
        """Readiness of every location in the period"""
        period = self.periods.get(period_id)
        locations = []
        for period_location in sorted(period.locations, key=lambda pl: pl.location.code):
            locations.append({
                "location_id": period_location.location_id,
                "location_code": period_location.location.code,
                "location_name": period_location.location.name,
                "status": period_location.status,
                "ready_at": period_location.ready_at,
                "has_reconciliation": self.reconciliations.get_saved(period.id, period_location.location_id) is not None,
            })
        unready = [entry for entry in locations if entry["status"] != PeriodLocationStatus.READY.value]
        return {
            "period_id": period.id,
            "name": period.name,
            "status": period.status,
            "locations": locations,
            "all_ready": not unready and bool(locations),
            "can_close": period.status in (PeriodStatus.OPEN.value, PeriodStatus.PENDING_CLOSE.value)
            and not unready and bool(locations),
            "warnings": self._open_ncr_warnings(period),
        }

    def _open_ncr_warnings(self, period: Period) -> List[str]:
        location_ids = [pl.location_id for pl in period.locations]
        open_ncrs = NCRService(self.db).open_ncrs_for_period(period, location_ids)
        if not open_ncrs:
            return []
        return [
            f"{len(open_ncrs)} NCR(s) still OPEN: " + ", ".join(ncr.ncr_no for ncr in open_ncrs)
        ]

    def validate_period_close(self, period: Period) -> List[str]:
        """
        Raise LOCATIONS_NOT_READY unless every location is READY.

        Returns non-blocking warnings for open NCRs.
        """
        unready = [
            {
                "location_id": pl.location_id,
                "location_code": pl.location.code,
                "location_name": pl.location.name,
                "status": pl.status,
            }
            for pl in period.locations
            if pl.status != PeriodLocationStatus.READY.value
        ]
        if unready or not period.locations:
            raise BusinessLogicError(
                f"{len(unready)} location(s) are not ready for close",
                code="LOCATIONS_NOT_READY",
                details={"unready_locations": unready}
            )
        return self._open_ncr_warnings(period)

    def _require_status(self, period: Period, *statuses: str):
        if period.status not in statuses:
            raise InvalidStatusError(
                f"Period {period.name} is {period.status}",
                details={"period_id": period.id, "status": period.status, "expected": list(statuses)}
            )

    def _swap_period_status(self, period_id: int, expected: str, values: Dict) -> None:
        updated = self.db.query(Period).filter(
            Period.id == period_id,
            Period.status == expected
        ).update(values, synchronize_session=False)
        if updated != 1:
            raise InvalidStatusError(
                "Period status changed concurrently",
                details={"period_id": period_id, "expected": expected}
            )

    def _get_approval(self, approval_id: int) -> Approval:
        approval = self.db.query(Approval).filter(Approval.id == approval_id).first()
        if approval is None:
            raise NotFoundError(f"Approval {approval_id} not found", code="APPROVAL_NOT_FOUND")
        if approval.status != ApprovalStatus.PENDING.value:
            raise InvalidStatusError(
                f"Approval is already {approval.status}",
                details={"approval_id": approval_id, "status": approval.status}
            )
        return approval

    def _result(self, period: Period, approval: Optional[Approval], warnings: List[str],
                snapshots: List[Dict], message: str) -> Dict:
        self.db.refresh(period)
        if approval is not None:
            self.db.refresh(approval)
        return {
            "period": period,
            "approval": approval,
            "warnings": warnings,
            "snapshots": snapshots,
            "message": message,
        }

    def request_close(self, period_id: int) -> Dict:
        """Put the period into PENDING_CLOSE and open an approval request"""
        period = self.periods.get(period_id)
        self._require_status(period, PeriodStatus.OPEN.value)
        warnings = self.validate_period_close(period)

        try:
            self._swap_period_status(period.id, PeriodStatus.OPEN.value, {"status": PeriodStatus.PENDING_CLOSE.value})
            approval = Approval(
                entity_type=PERIOD_CLOSE,
                entity_id=period.id,
                status=ApprovalStatus.PENDING.value,
                requested_by=self.current_user.id
            )
            self.db.add(approval)
            self.db.flush()

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="REQUEST_PERIOD_CLOSE",
                table="approvals",
                key=str(approval.id),
                new_values={"period_id": period.id},
                module="PERIOD"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Close of period {period.name} requested (approval {approval.id})")
        return self._result(period, approval, warnings, [], "Period close awaiting approval")

    def approve_close(self, approval_id: int, comments: Optional[str] = None) -> Dict:
        approval = self._get_approval(approval_id)
        period = self.periods.get(approval.entity_id)
        self._require_status(period, PeriodStatus.PENDING_CLOSE.value)
        warnings = self.validate_period_close(period)

        try:
            self._decide(approval, ApprovalStatus.APPROVED.value, comments)
            snapshots = self.execute_close(period, PeriodStatus.PENDING_CLOSE.value)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Period {period.name} closed on approval {approval.id}")
        return self._result(period, approval, warnings, snapshots, "Period closed")

    def reject_close(self, approval_id: int, comments: Optional[str] = None) -> Dict:
        approval = self._get_approval(approval_id)
        period = self.periods.get(approval.entity_id)
        self._require_status(period, PeriodStatus.PENDING_CLOSE.value)

        try:
            self._decide(approval, ApprovalStatus.REJECTED.value, comments)
            self._swap_period_status(period.id, PeriodStatus.PENDING_CLOSE.value, {"status": PeriodStatus.OPEN.value})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Close of period {period.name} rejected (approval {approval.id})")
        return self._result(period, approval, [], [], "Period close rejected, period reopened")

    def close_period(self, period_id: int, comments: Optional[str] = None) -> Dict:
        """Close an OPEN period directly; the calling admin is the approver"""
        period = self.periods.get(period_id)
        self._require_status(period, PeriodStatus.OPEN.value)
        warnings = self.validate_period_close(period)

        try:
            now = datetime.utcnow()
            approval = Approval(
                entity_type=PERIOD_CLOSE,
                entity_id=period.id,
                status=ApprovalStatus.APPROVED.value,
                requested_by=self.current_user.id,
                reviewed_by=self.current_user.id,
                reviewed_at=now,
                comments=comments
            )
            self.db.add(approval)
            self.db.flush()
            snapshots = self.execute_close(period, PeriodStatus.OPEN.value)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Period {period.name} closed directly by {self.current_user.username}")
        return self._result(period, approval, warnings, snapshots, "Period closed")

    def _decide(self, approval: Approval, status: str, comments: Optional[str]) -> None:
        updated = self.db.query(Approval).filter(
            Approval.id == approval.id,
            Approval.status == ApprovalStatus.PENDING.value
        ).update({
            "status": status,
            "reviewed_by": self.current_user.id,
            "reviewed_at": datetime.utcnow(),
            "comments": comments,
        }, synchronize_session=False)
        if updated != 1:
            raise InvalidStatusError(
                "Approval was decided concurrently",
                details={"approval_id": approval.id}
            )
        log_user_action(
            db=self.db,
            user=self.current_user,
            action=f"{status}_PERIOD_CLOSE",
            table="approvals",
            key=str(approval.id),
            new_values={"status": status, "comments": comments},
            module="PERIOD"
        )

    def execute_close(self, period: Period, expected_status: str) -> List[Dict]:
        """
        Close every location and the period inside the caller's transaction.

        Nothing is committed here; a failure for any location leaves the
        caller to roll the whole close back.
        """
        now = datetime.utcnow()
        self._swap_period_status(period.id, expected_status, {
            "status": PeriodStatus.CLOSED.value,
            "closed_at": now,
            "closed_by": self.current_user.id if self.current_user else None,
        })

        snapshots = []
        for period_location in period.locations:
            snapshots.append(self._snapshot_location(period, period_location, now))

        log_user_action(
            db=self.db,
            user=self.current_user,
            action="CLOSE_PERIOD",
            table="periods",
            key=str(period.id),
            old_values={"status": expected_status},
            new_values={
                "status": PeriodStatus.CLOSED.value,
                "closing_values": {str(s["location_id"]): s["total_value"] for s in snapshots},
            },
            module="PERIOD"
        )
        self.db.flush()
        return snapshots

    def _snapshot_location(self, period: Period, period_location: PeriodLocation, closed_at: datetime) -> Dict:
        """Final reconciliation and stock snapshot for one location"""
        reconciliation = self.reconciliations.persist_final(period, period_location.location_id)

        items = []
        total = ZERO
        for row in self.ledger.get_location_stock(period_location.location_id):
            items.append({
                "item_id": row["item_id"],
                "item_code": row["item_code"],
                "item_name": row["item_name"],
                "quantity": str(row["on_hand"]),
                "wac": str(row["wac"]),
                "value": str(row["value"]),
            })
            total += row["value"]
        total = round_money(total)

        snapshot = {
            "location_id": period_location.location_id,
            "location_code": period_location.location.code,
            "total_value": str(total),
            "closing_stock": str(reconciliation.closing_stock),
            "items": items,
        }
        period_location.snapshot_data = snapshot
        period_location.closing_value = total
        period_location.status = PeriodLocationStatus.CLOSED.value
        period_location.closed_at = closed_at
        return snapshot

    def list_approvals(self, status: Optional[str] = None) -> List[Approval]:
        query = self.db.query(Approval).filter(Approval.entity_type == PERIOD_CLOSE)
        if status:
            query = query.filter(Approval.status == status)
        return query.order_by(Approval.requested_at.desc(), Approval.id.desc()).all()
