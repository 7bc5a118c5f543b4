"""
Tests for inter-location transfers
Request, approval and rejection
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import Session

from stockroom.core.exceptions import (
    InsufficientStockError, InvalidStatusError, LocationAccessDeniedError, NotFoundError, ValidationError
)
from stockroom.models.documents import Transfer, TransferStatus
from stockroom.services.stock.ledger import StockLedger
from stockroom.services.stock.stock_issues import IssueService
from stockroom.services.stock.stock_receipts import DeliveryService
from stockroom.services.stock.stock_transfer import StockTransferService

from conftest import delivery_payload, issue_payload


def transfer_payload(from_id, to_id, lines):
    return {
        "from_location_id": from_id,
        "to_location_id": to_id,
        "request_date": date(2026, 1, 12),
        "notes": "Weekly top up",
        "lines": [{"item_id": item_id, "quantity": Decimal(str(qty))} for item_id, qty in lines],
    }


@pytest.fixture
def stocked(db_session: Session, admin_user, open_period, locations, items, supplier):
    """40 flour at MAIN with a WAC of 3.50"""
    service = DeliveryService(db_session, admin_user)
    service.post_delivery(locations["main"].id, open_period,
                          delivery_payload(supplier.id, [(items["flour"].id, 10, "2.00")]))
    service.post_delivery(locations["main"].id, open_period,
                          delivery_payload(supplier.id, [(items["flour"].id, 30, "4.00")]))


class TestCreateTransfer:
    """Test suite for transfer requests"""

    def test_request_captures_wac_without_moving_stock(self, db_session: Session, admin_user,
                                                       locations, items, stocked):
        main, store, flour = locations["main"], locations["store"], items["flour"]
        transfer = StockTransferService(db_session, admin_user).create_transfer(
            transfer_payload(main.id, store.id, [(flour.id, 15)])
        )

        assert transfer.status == TransferStatus.PENDING_APPROVAL.value
        assert transfer.period_id is None
        assert Decimal(str(transfer.lines[0].wac_at_transfer)) == Decimal("3.5000")
        assert Decimal(str(transfer.total_value)) == Decimal("52.50")

        ledger = StockLedger(db_session)
        assert ledger.get_stock(main.id, flour.id).on_hand == Decimal("40")
        assert ledger.get_stock(store.id, flour.id) is None

    def test_same_location_rejected(self, db_session: Session, admin_user, locations, items, stocked):
        with pytest.raises(ValidationError) as exc_info:
            StockTransferService(db_session, admin_user).create_transfer(
                transfer_payload(locations["main"].id, locations["main"].id, [(items["flour"].id, 1)])
            )
        assert exc_info.value.code == "SAME_LOCATION_TRANSFER"

    def test_unknown_destination(self, db_session: Session, admin_user, locations, items, stocked):
        with pytest.raises(NotFoundError) as exc_info:
            StockTransferService(db_session, admin_user).create_transfer(
                transfer_payload(locations["main"].id, 999, [(items["flour"].id, 1)])
            )
        assert exc_info.value.code == "TO_LOCATION_NOT_FOUND"

    def test_request_beyond_stock(self, db_session: Session, admin_user, locations, items, stocked):
        with pytest.raises(InsufficientStockError):
            StockTransferService(db_session, admin_user).create_transfer(
                transfer_payload(locations["main"].id, locations["store"].id, [(items["flour"].id, 41)])
            )
        assert db_session.query(Transfer).count() == 0

    def test_operator_needs_source_access(self, db_session: Session, operator_user, locations, items, stocked):
        with pytest.raises(LocationAccessDeniedError):
            StockTransferService(db_session, operator_user).create_transfer(
                transfer_payload(locations["main"].id, locations["store"].id, [(items["flour"].id, 1)])
            )


class TestApproveTransfer:
    """Test suite for transfer approval"""

    @pytest.fixture
    def transfer(self, db_session: Session, admin_user, locations, items, stocked) -> Transfer:
        return StockTransferService(db_session, admin_user).create_transfer(
            transfer_payload(locations["main"].id, locations["store"].id, [(items["flour"].id, 15)])
        )

    def test_approval_moves_stock_at_captured_wac(self, db_session: Session, supervisor_user, open_period,
                                                  locations, items, transfer):
        main, store, flour = locations["main"], locations["store"], items["flour"]
        ledger = StockLedger(db_session)
        before = ledger.location_value(main.id) + ledger.location_value(store.id)

        approved = StockTransferService(db_session, supervisor_user).approve_transfer(transfer.id, open_period)

        assert approved.status == TransferStatus.COMPLETED.value
        assert approved.period_id == open_period.id
        assert approved.approved_by == supervisor_user.id
        assert ledger.get_stock(main.id, flour.id).on_hand == Decimal("25")
        destination = ledger.get_stock(store.id, flour.id)
        assert destination.on_hand == Decimal("15")
        assert Decimal(str(destination.wac)) == Decimal("3.5000")
        assert ledger.location_value(main.id) + ledger.location_value(store.id) == before

    def test_source_depleted_before_approval(self, db_session: Session, admin_user, supervisor_user,
                                             open_period, locations, items, transfer):
        IssueService(db_session, admin_user).post_issue(
            locations["main"].id, open_period, issue_payload([(items["flour"].id, 30)])
        )

        with pytest.raises(InsufficientStockError):
            StockTransferService(db_session, supervisor_user).approve_transfer(transfer.id, open_period)

        db_session.expire_all()
        assert db_session.get(Transfer, transfer.id).status == TransferStatus.PENDING_APPROVAL.value
        assert StockLedger(db_session).get_stock(locations["main"].id, items["flour"].id).on_hand == Decimal("10")
        assert StockLedger(db_session).get_stock(locations["store"].id, items["flour"].id) is None

    def test_second_approval_refused(self, db_session: Session, supervisor_user, open_period, locations,
                                     items, transfer):
        service = StockTransferService(db_session, supervisor_user)
        service.approve_transfer(transfer.id, open_period)

        with pytest.raises(InvalidStatusError):
            service.approve_transfer(transfer.id, open_period)
        assert StockLedger(db_session).get_stock(locations["store"].id, items["flour"].id).on_hand == Decimal("15")

    def test_concurrent_decision_loses(self, db_session: Session, supervisor_user, open_period, locations,
                                       items, transfer):
        """A stale PENDING_APPROVAL read cannot claim a transfer someone else decided"""
        db_session.query(Transfer).filter(Transfer.id == transfer.id).update(
            {"status": TransferStatus.REJECTED.value}, synchronize_session=False
        )
        assert transfer.status == TransferStatus.PENDING_APPROVAL.value

        with pytest.raises(InvalidStatusError):
            StockTransferService(db_session, supervisor_user).approve_transfer(transfer.id, open_period)
        assert StockLedger(db_session).get_stock(locations["store"].id, items["flour"].id) is None
        assert StockLedger(db_session).get_stock(locations["main"].id, items["flour"].id).on_hand == Decimal("40")


class TestRejectTransfer:

    def test_reject_keeps_stock(self, db_session: Session, admin_user, supervisor_user, open_period,
                                locations, items, stocked):
        service = StockTransferService(db_session, admin_user)
        transfer = service.create_transfer(
            transfer_payload(locations["main"].id, locations["store"].id, [(items["flour"].id, 5)])
        )

        rejected = StockTransferService(db_session, supervisor_user).reject_transfer(transfer.id, "Not needed")

        assert rejected.status == TransferStatus.REJECTED.value
        assert rejected.notes.endswith("Rejected: Not needed")
        assert StockLedger(db_session).get_stock(locations["main"].id, items["flour"].id).on_hand == Decimal("40")
        with pytest.raises(InvalidStatusError):
            service.approve_transfer(transfer.id, open_period)

    def test_list_by_location(self, db_session: Session, admin_user, locations, items, stocked):
        service = StockTransferService(db_session, admin_user)
        service.create_transfer(
            transfer_payload(locations["main"].id, locations["store"].id, [(items["flour"].id, 5)])
        )

        _, total_store = service.list_transfers(location_ids=[locations["store"].id])
        _, total_pending = service.list_transfers(status=TransferStatus.PENDING_APPROVAL.value)
        _, total_done = service.list_transfers(status=TransferStatus.COMPLETED.value)

        assert (total_store, total_pending, total_done) == (1, 1, 0)
