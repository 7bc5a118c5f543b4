"""
Stock Transfer Service
Approval-gated movement of stock between locations
"""
from typing import Dict, List, Optional, Tuple
from datetime import datetime
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload
import logging

from stockroom.core.exceptions import InvalidStatusError, NotFoundError, ValidationError
from stockroom.core.security import log_user_action
from stockroom.models.auth import User
from stockroom.models.documents import Transfer, TransferLine, TransferStatus
from stockroom.models.period import Period
from stockroom.models.stock import Location
from stockroom.services.document_numbers import TRANSFER_PREFIX, next_document_number
from stockroom.services.location_access import check_location_access
from stockroom.services.period.period_service import PeriodService
from stockroom.services.stock.ledger import StockLedger, ZERO, round_money, to_decimal
from stockroom.services.stock.stock_master import get_active_items, require_active_location

logger = logging.getLogger(__name__)


class StockTransferService:
    """
    Inter-location transfers

    PENDING_APPROVAL -> COMPLETED on approval, or -> REJECTED. Stock only
    moves on approval, and the status column guards that transition.
    """

    def __init__(self, db: Session, current_user: Optional[User] = None):
        self.db = db
        self.current_user = current_user
        self.ledger = StockLedger(db)

    def _get_location(self, location_id: int, code: str) -> Location:
        location = self.db.query(Location).filter(Location.id == location_id).first()
        if location is None:
            raise NotFoundError(f"Location {location_id} not found", code=code)
        return require_active_location(location)

    def create_transfer(self, transfer_data: Dict) -> Transfer:
        """
        Request a transfer.

        The source WAC is captured per line now and used as the receiving
        price at the destination on approval.
        """
        from_id = transfer_data["from_location_id"]
        to_id = transfer_data["to_location_id"]
        if from_id == to_id:
            raise ValidationError(
                "Source and destination must be different locations",
                code="SAME_LOCATION_TRANSFER"
            )
        from_location = self._get_location(from_id, "FROM_LOCATION_NOT_FOUND")
        to_location = self._get_location(to_id, "TO_LOCATION_NOT_FOUND")
        if self.current_user is not None:
            check_location_access(self.db, self.current_user, from_location.id, require_post=True)

        lines = transfer_data["lines"]
        items = get_active_items(self.db, [line["item_id"] for line in lines])
        self.ledger.ensure_sufficient(from_location.id, [(line["item_id"], line["quantity"]) for line in lines])

        try:
            transfer = Transfer(
                transfer_no=next_document_number(self.db, Transfer.transfer_no, TRANSFER_PREFIX),
                from_location_id=from_location.id,
                to_location_id=to_location.id,
                status=TransferStatus.PENDING_APPROVAL.value,
                request_date=transfer_data["request_date"],
                requested_by=self.current_user.id if self.current_user else None,
                total_value=ZERO,
                notes=transfer_data.get("notes")
            )
            self.db.add(transfer)
            self.db.flush()

            total = ZERO
            for line_data in lines:
                item = items[line_data["item_id"]]
                quantity = to_decimal(line_data["quantity"])
                stock = self.ledger.get_stock(from_location.id, item.id)
                wac = to_decimal(stock.wac)
                line = TransferLine(
                    transfer_id=transfer.id,
                    item_id=item.id,
                    quantity=quantity,
                    wac_at_transfer=wac,
                    line_value=round_money(quantity * wac)
                )
                self.db.add(line)
                total += line.line_value

            transfer.total_value = round_money(total)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="CREATE_TRANSFER",
                table="transfers",
                key=transfer.transfer_no,
                new_values={
                    "from": from_location.code,
                    "to": to_location.code,
                    "lines": len(lines),
                    "total_value": transfer.total_value,
                },
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(transfer)
        logger.info(
            f"Transfer {transfer.transfer_no} requested {from_location.code} -> {to_location.code}, "
            f"value {transfer.total_value}"
        )
        return transfer

    def _claim(self, transfer_id: int, values: Dict) -> None:
        """
        Move a transfer out of PENDING_APPROVAL.

        Conditional on the stored status so that of several concurrent
        decisions exactly one claims the transfer.
        """
        updated = self.db.query(Transfer).filter(
            Transfer.id == transfer_id,
            Transfer.status == TransferStatus.PENDING_APPROVAL.value
        ).update(values, synchronize_session=False)
        if updated != 1:
            current = self.db.query(Transfer.status).filter(Transfer.id == transfer_id).scalar()
            raise InvalidStatusError(
                f"Transfer is {current}, only PENDING_APPROVAL transfers can be decided",
                details={"transfer_id": transfer_id, "status": current}
            )

    def approve_transfer(self, transfer_id: int, period: Period) -> Transfer:
        """
        Approve and execute a transfer.

        Source stock is re-validated inside the approving transaction, since
        it may have been consumed while the request waited. Any failure rolls
        back and leaves the transfer PENDING_APPROVAL.
        """
        transfer = self.get_transfer(transfer_id)
        if transfer.status != TransferStatus.PENDING_APPROVAL.value:
            raise InvalidStatusError(
                f"Transfer is {transfer.status}, only PENDING_APPROVAL transfers can be approved",
                details={"transfer_id": transfer_id, "status": transfer.status}
            )
        periods = PeriodService(self.db, self.current_user)
        periods.ensure_location_accepts_postings(period, transfer.from_location_id)
        periods.ensure_location_accepts_postings(period, transfer.to_location_id)

        from_id, to_id = transfer.from_location_id, transfer.to_location_id
        lines = [(line.item_id, to_decimal(line.quantity), to_decimal(line.wac_at_transfer))
                 for line in transfer.lines]
        now = datetime.utcnow()
        try:
            self._claim(transfer_id, {
                "status": TransferStatus.COMPLETED.value,
                "approval_date": now,
                "transfer_date": now,
                "approved_by": self.current_user.id if self.current_user else None,
                "period_id": period.id,
            })

            self.ledger.ensure_sufficient(from_id, [(item_id, quantity) for item_id, quantity, _ in lines])
            for item_id, quantity, wac in lines:
                self.ledger.deduct(from_id, item_id, quantity)
                self.ledger.receive(to_id, item_id, quantity, wac)

            log_user_action(
                db=self.db,
                user=self.current_user,
                action="APPROVE_TRANSFER",
                table="transfers",
                key=transfer.transfer_no,
                old_values={"status": TransferStatus.PENDING_APPROVAL.value},
                new_values={"status": TransferStatus.COMPLETED.value, "period_id": period.id},
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(transfer)
        logger.info(f"Transfer {transfer.transfer_no} approved and completed")
        return transfer

    def reject_transfer(self, transfer_id: int, comment: Optional[str] = None) -> Transfer:
        transfer = self.get_transfer(transfer_id)
        notes = transfer.notes
        if comment:
            notes = f"{notes}\n\nRejected: {comment}" if notes else f"Rejected: {comment}"

        try:
            self._claim(transfer_id, {
                "status": TransferStatus.REJECTED.value,
                "approval_date": datetime.utcnow(),
                "approved_by": self.current_user.id if self.current_user else None,
                "notes": notes,
            })
            log_user_action(
                db=self.db,
                user=self.current_user,
                action="REJECT_TRANSFER",
                table="transfers",
                key=transfer.transfer_no,
                old_values={"status": TransferStatus.PENDING_APPROVAL.value},
                new_values={"status": TransferStatus.REJECTED.value, "comment": comment},
                module="STOCK"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(transfer)
        logger.info(f"Transfer {transfer.transfer_no} rejected")
        return transfer

    def get_transfer(self, transfer_id: int) -> Transfer:
        transfer = self.db.query(Transfer).options(selectinload(Transfer.lines)).filter(
            Transfer.id == transfer_id
        ).first()
        if transfer is None:
            raise NotFoundError(f"Transfer {transfer_id} not found", code="TRANSFER_NOT_FOUND")
        return transfer

    def list_transfers(
        self,
        location_ids: Optional[List[int]] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> Tuple[List[Transfer], int]:
        query = self.db.query(Transfer)
        if location_ids is not None:
            query = query.filter(or_(
                Transfer.from_location_id.in_(location_ids),
                Transfer.to_location_id.in_(location_ids)
            ))
        if status:
            query = query.filter(Transfer.status == status)

        total = query.count()
        transfers = query.options(selectinload(Transfer.lines)).order_by(
            Transfer.created_at.desc(), Transfer.id.desc()
        ).offset(skip).limit(limit).all()
        return transfers, total
