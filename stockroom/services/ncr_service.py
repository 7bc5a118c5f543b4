"""
NCR Service
Non-conformance records: automatic price variance NCRs, manual reports,
status workflow and their financial impact on reconciliation
"""
from datetime import datetime, time, timedelta
from typing import Dict, List, Optional, Tuple
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
import logging

from stockroom.core.config import settings
from stockroom.core.exceptions import IntegrationError, NotFoundError, ValidationError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.documents import Delivery, DeliveryLine
from stockroom.models.ncr import NCR, FinancialImpact, NCRStatus, NCRType, NotificationRecipient
from stockroom.models.period import Period
from stockroom.models.stock import Item
from stockroom.services.document_numbers import NCR_PREFIX, next_document_number
from stockroom.services.notification_service import ncr_alert_payload, resend_ncr_notification
from stockroom.services.stock.ledger import ZERO, round_money, to_decimal
from stockroom.services.stock.price_variance import VarianceResult

logger = logging.getLogger(__name__)

FINAL_STATUSES = (NCRStatus.CREDITED.value, NCRStatus.REJECTED.value, NCRStatus.RESOLVED.value)


class NCRService:
    """Non-conformance record lifecycle"""

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user

    def create_price_variance_ncr(
        self,
        delivery: Delivery,
        line: DeliveryLine,
        item: Item,
        variance: VarianceResult
    ) -> NCR:
        """
        Record an automatic PRICE_VARIANCE NCR for one delivery line.

        Added to the delivery's transaction; the caller commits.
        """
        direction = "increase" if variance.variance > 0 else "decrease"
        currency = settings.DEFAULT_CURRENCY
        reason = (
            "Automatic NCR for price variance detected on delivery.\n\n"
            f"Item: {item.name} ({item.code})\n"
            f"Quantity: {line.quantity}\n"
            f"Expected Price (Period): {currency} {variance.expected_price}\n"
            f"Actual Price (Delivery): {currency} {variance.actual_price}\n"
            f"Variance: {currency} {variance.variance} ({variance.variance_percent}% {direction})\n"
            f"Total Variance Amount: {currency} {variance.variance_amount}"
        )

        ncr = NCR(
            ncr_no=next_document_number(self.db, NCR.ncr_no, NCR_PREFIX),
            location_id=delivery.location_id,
            type=NCRType.PRICE_VARIANCE.value,
            auto_generated=True,
            delivery_id=delivery.id,
            delivery_line_id=line.id,
            item_id=item.id,
            reason=reason,
            quantity=line.quantity,
            value=abs(variance.variance_amount),
            expected_price=variance.expected_price,
            actual_price=variance.actual_price,
            price_variance=variance.variance,
            variance_percent=variance.variance_percent,
            status=NCRStatus.OPEN.value,
            created_by=self.current_user.id if self.current_user else None
        )
        self.db.add(ncr)
        self.db.flush()
        logger.info(
            f"{ncr.ncr_no} raised for {delivery.delivery_no} item {item.code}: "
            f"{variance.variance_percent}% ({variance.variance_amount})"
        )
        return ncr

    def create_manual(self, ncr_data: Dict) -> NCR:
        """Manual NCR reported by a user"""
        delivery_id = ncr_data.get("delivery_id")
        if delivery_id is not None:
            delivery = self.db.query(Delivery).filter(Delivery.id == delivery_id).first()
            if delivery is None:
                raise NotFoundError(f"Delivery {delivery_id} not found", code="DELIVERY_NOT_FOUND")
            if delivery.location_id != ncr_data["location_id"]:
                raise ValidationError(
                    "Delivery belongs to a different location",
                    details={"delivery_id": delivery_id, "location_id": delivery.location_id}
                )

        item_id = ncr_data.get("item_id")
        if item_id is not None and not self.db.query(Item.id).filter(Item.id == item_id).first():
            raise NotFoundError(f"Item {item_id} not found", code="ITEM_NOT_FOUND")

        try:
            ncr = NCR(
                ncr_no=next_document_number(self.db, NCR.ncr_no, NCR_PREFIX),
                location_id=ncr_data["location_id"],
                type=NCRType.MANUAL.value,
                auto_generated=False,
                delivery_id=delivery_id,
                item_id=item_id,
                reason=ncr_data["reason"],
                quantity=ncr_data.get("quantity"),
                value=round_money(ncr_data.get("value") or ZERO),
                status=NCRStatus.OPEN.value,
                created_by=self.current_user.id if self.current_user else None
            )
            self.db.add(ncr)
            self.db.flush()

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="CREATE_NCR",
                table="ncrs",
                key=ncr.ncr_no,
                new_values={"location_id": ncr.location_id, "value": ncr.value, "reason": ncr.reason},
                module="NCR"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(ncr)
        logger.info(f"Manual {ncr.ncr_no} created at location {ncr.location_id}")
        return ncr

    def get(self, ncr_id: int) -> NCR:
        ncr = self.db.query(NCR).filter(NCR.id == ncr_id).first()
        if ncr is None:
            raise NotFoundError(f"NCR {ncr_id} not found", code="NCR_NOT_FOUND")
        return ncr

    def update(self, ncr: NCR, update_data: Dict) -> NCR:
        """
        Move an NCR through its workflow.

        resolved_at is stamped the first time the NCR reaches CREDITED,
        REJECTED or RESOLVED. Resolution type and financial impact only
        apply to RESOLVED NCRs.
        """
        new_status = update_data.get("status")
        if new_status is not None:
            new_status = getattr(new_status, "value", new_status)
        target_status = new_status or ncr.status

        resolution_type = update_data.get("resolution_type")
        financial_impact = update_data.get("financial_impact")
        if financial_impact is not None:
            financial_impact = getattr(financial_impact, "value", financial_impact)
        if (resolution_type is not None or financial_impact is not None) \
                and target_status != NCRStatus.RESOLVED.value:
            raise ValidationError(
                "Resolution type and financial impact can only be set when the NCR is RESOLVED",
                details={"status": target_status}
            )

        old_values = {"status": ncr.status, "financial_impact": ncr.financial_impact}
        try:
            if new_status is not None:
                ncr.status = new_status
                if new_status in FINAL_STATUSES and ncr.resolved_at is None:
                    ncr.resolved_at = datetime.utcnow()
            if resolution_type is not None:
                ncr.resolution_type = resolution_type
            if financial_impact is not None:
                ncr.financial_impact = financial_impact
            if update_data.get("resolution_notes") is not None:
                ncr.resolution_notes = update_data["resolution_notes"]

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="UPDATE_NCR",
                table="ncrs",
                key=ncr.ncr_no,
                old_values=old_values,
                new_values={"status": ncr.status, "financial_impact": ncr.financial_impact},
                module="NCR"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(ncr)
        logger.info(f"{ncr.ncr_no} status {old_values['status']} -> {ncr.status}")
        return ncr

    def resend_notification(self, ncr: NCR, recipient_type: str) -> Dict:
        """
        Send one NCR again to the internal list or to the delivery's supplier.

        Unlike the alert queued after a delivery, this runs in the request,
        so a failed send is reported as EMAIL_SEND_FAILED.
        """
        recipient_type = getattr(recipient_type, "value", recipient_type)
        supplier = ncr.delivery.supplier if ncr.delivery else None
        if recipient_type == NotificationRecipient.SUPPLIER.value:
            recipients = [supplier.email] if supplier and supplier.email else []
        else:
            recipients = list(settings.NCR_NOTIFICATION_EMAILS)
        if not recipients:
            raise ValidationError(
                f"No {recipient_type.lower()} email addresses configured for {ncr.ncr_no}",
                code="NO_RECIPIENTS",
                details={"ncr_id": ncr.id, "recipient_type": recipient_type}
            )

        payload = ncr_alert_payload(ncr.delivery, ncr.location, supplier, [ncr])
        if not resend_ncr_notification(payload, recipients):
            raise IntegrationError(
                f"Notification for {ncr.ncr_no} could not be sent",
                code="EMAIL_SEND_FAILED",
                details={"ncr_id": ncr.id, "recipient_type": recipient_type}
            )

        try:
            log_user_action(
                db=self.db,
                user=self.current_user,
                action="RESEND_NCR_NOTIFICATION",
                table="ncrs",
                key=ncr.ncr_no,
                new_values={"recipient_type": recipient_type, "recipients": recipients},
                module="NCR"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"{ncr.ncr_no} notification resent to {recipient_type}")
        return {
            "ncr_id": ncr.id,
            "ncr_no": ncr.ncr_no,
            "recipient_type": recipient_type,
            "recipients": recipients,
        }

    def list(
        self,
        location_ids: Optional[List[int]] = None,
        status: Optional[str] = None,
        ncr_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[NCR], int]:
        query = self.db.query(NCR)
        if location_ids is not None:
            query = query.filter(NCR.location_id.in_(location_ids))
        if status:
            query = query.filter(NCR.status == status)
        if ncr_type:
            query = query.filter(NCR.type == ncr_type)

        total = query.count()
        ncrs = query.order_by(NCR.created_at.desc(), NCR.id.desc()).offset(skip).limit(limit).all()
        return ncrs, total

    def _period_query(self, location_id: int, period: Period):
        """NCRs of a location that belong to a period (by delivery, else by creation date)"""
        start = datetime.combine(period.start_date, time.min)
        end = datetime.combine(period.end_date + timedelta(days=1), time.min)
        return self.db.query(NCR).outerjoin(Delivery, NCR.delivery_id == Delivery.id).filter(
            NCR.location_id == location_id,
            or_(
                Delivery.period_id == period.id,
                and_(NCR.delivery_id.is_(None), NCR.created_at >= start, NCR.created_at < end)
            )
        )

    def financial_summary(self, location_id: int, period: Period) -> Dict:
        """
        Money at stake in a period's NCRs, by outcome.

        Credits are recovered from suppliers and reduce consumption; losses
        are absorbed and increase it.
        """
        summary = {
            "credited": ZERO, "losses": ZERO, "pending": ZERO, "open": ZERO,
            "credited_count": 0, "loss_count": 0, "pending_count": 0, "open_count": 0,
        }
        for ncr in self._period_query(location_id, period).all():
            value = to_decimal(ncr.value)
            if ncr.status == NCRStatus.CREDITED.value or (
                ncr.status == NCRStatus.RESOLVED.value
                and ncr.financial_impact == FinancialImpact.CREDIT.value
            ):
                bucket = "credited"
            elif ncr.status == NCRStatus.REJECTED.value or (
                ncr.status == NCRStatus.RESOLVED.value
                and ncr.financial_impact == FinancialImpact.LOSS.value
            ):
                bucket = "losses"
            elif ncr.status == NCRStatus.SENT.value:
                bucket = "pending"
            elif ncr.status == NCRStatus.OPEN.value:
                bucket = "open"
            else:
                continue
            summary[bucket] += value
            summary["loss_count" if bucket == "losses" else f"{bucket}_count"] += 1

        for key in ("credited", "losses", "pending", "open"):
            summary[key] = round_money(summary[key])
        return summary

    def open_ncrs_for_period(self, period: Period, location_ids: List[int]) -> List[NCR]:
        """OPEN NCRs across the given locations, for close warnings"""
        result = []
        for location_id in location_ids:
            result.extend(
                self._period_query(location_id, period).filter(NCR.status == NCRStatus.OPEN.value).all()
            )
        return result
