"""
Tests for period reconciliation
Consumption formula, manday cost and the live/saved read-through
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import Session

from stockroom.core.exceptions import PeriodClosedError, ValidationError
from stockroom.models.period import PeriodStatus
from stockroom.models.reconciliation import ReconciliationStatus
from stockroom.services.period.period_service import PeriodService
from stockroom.services.period.reconciliation import (
    ReconciliationService, calculate_consumption, calculate_manday_cost
)
from stockroom.services.stock.stock_issues import IssueService
from stockroom.services.stock.stock_receipts import DeliveryService

from conftest import delivery_payload, issue_payload


class TestCalculateConsumption:
    """Test suite for the consumption formula"""

    def test_issues_do_not_enter_the_formula(self):
        result = calculate_consumption(
            opening_stock=1000, receipts=500, transfers_in=0, transfers_out=0,
            closing_stock=850, issues=600,
        )

        assert result.consumption == Decimal("650.00")
        assert result.total_adjustments == Decimal("0.00")
        assert result.breakdown["issues"] == Decimal("600.00")

    def test_adjustment_signs(self):
        """back charges, adjustments and losses add; credits and condemnations subtract"""
        result = calculate_consumption(
            opening_stock=100, receipts=0, transfers_in=0, transfers_out=0, closing_stock=100,
            back_charges=10, credits=3, condemnations=2, adjustments=5, ncr_losses=4, ncr_credits=1,
        )

        assert result.total_adjustments == Decimal("13.00")
        assert result.consumption == Decimal("13.00")

    def test_transfers(self):
        result = calculate_consumption(
            opening_stock=0, receipts=200, transfers_in=50, transfers_out=80, closing_stock=70,
        )
        assert result.consumption == Decimal("100.00")

    @pytest.mark.parametrize("field", ["opening_stock", "receipts", "transfers_in", "transfers_out", "closing_stock"])
    def test_negative_figures_rejected(self, field):
        figures = dict(opening_stock=1, receipts=1, transfers_in=1, transfers_out=1, closing_stock=1)
        figures[field] = -1
        with pytest.raises(ValidationError):
            calculate_consumption(**figures)


class TestMandayCost:

    def test_divides_and_rounds(self):
        assert calculate_manday_cost(Decimal("650"), 30) == Decimal("21.67")

    @pytest.mark.parametrize("mandays", [0, -3, None])
    def test_requires_positive_mandays(self, mandays):
        with pytest.raises(ValidationError):
            calculate_manday_cost(100, mandays)


class TestReconciliationService:
    """Test suite for live and saved reconciliations"""

    def _post_activity(self, db_session, admin_user, open_period, locations, items, supplier):
        main = locations["main"]
        DeliveryService(db_session, admin_user).post_delivery(
            main.id, open_period,
            delivery_payload(supplier.id, [(items["flour"].id, 100, "2.00"), (items["rice"].id, 10, "5.00")])
        )
        IssueService(db_session, admin_user).post_issue(
            main.id, open_period, issue_payload([(items["flour"].id, 40)])
        )

    def test_live_figures(self, db_session: Session, admin_user, open_period, locations, items, supplier):
        self._post_activity(db_session, admin_user, open_period, locations, items, supplier)

        result = ReconciliationService(db_session).get_reconciliation(open_period, locations["main"])

        figures = result["reconciliation"]
        assert result["status"] == ReconciliationStatus.COMPUTED.value
        assert result["is_saved"] is False
        assert figures["opening_stock"] == Decimal("0.00")
        assert figures["receipts"] == Decimal("250.00")
        assert figures["issues"] == Decimal("80.00")
        assert figures["closing_stock"] == Decimal("170.00")
        assert result["calculations"]["consumption"] == Decimal("80.00")
        assert result["calculations"]["manday_cost"] is None

    def test_manday_cost_from_pob(self, db_session: Session, admin_user, open_period, locations, items, supplier):
        self._post_activity(db_session, admin_user, open_period, locations, items, supplier)
        PeriodService(db_session, admin_user).upsert_pob(open_period, locations["main"].id, [
            {"entry_date": date(2026, 1, 1), "crew_count": 3, "extra_count": 1},
            {"entry_date": date(2026, 1, 2), "crew_count": 4, "extra_count": 0},
        ])

        calculations = ReconciliationService(db_session).get_reconciliation(
            open_period, locations["main"]
        )["calculations"]

        assert calculations["total_mandays"] == 8
        assert calculations["manday_cost"] == Decimal("10.00")

    def test_saved_figures_are_authoritative(self, db_session: Session, admin_user, open_period,
                                             locations, items, supplier):
        self._post_activity(db_session, admin_user, open_period, locations, items, supplier)
        service = ReconciliationService(db_session, admin_user)
        saved = service.save_reconciliation(open_period, locations["main"], {"condemnations": Decimal("5")})

        IssueService(db_session, admin_user).post_issue(
            locations["main"].id, open_period, issue_payload([(items["rice"].id, 2)])
        )
        reread = service.get_reconciliation(open_period, locations["main"])

        assert saved["is_saved"] is True
        assert saved["calculations"]["consumption"] == Decimal("75.00")
        assert reread["reconciliation"]["closing_stock"] == Decimal("170.00")
        assert reread["status"] == ReconciliationStatus.SAVED.value

    def test_resave_keeps_earlier_adjustments(self, db_session: Session, admin_user, open_period, locations):
        service = ReconciliationService(db_session, admin_user)
        service.save_reconciliation(open_period, locations["main"], {"back_charges": Decimal("12")})
        result = service.save_reconciliation(open_period, locations["main"], {"credits": Decimal("2")})

        assert result["reconciliation"]["back_charges"] == Decimal("12.00")
        assert result["reconciliation"]["credits"] == Decimal("2.00")
        assert result["calculations"]["total_adjustments"] == Decimal("10.00")

    def test_cannot_save_into_closed_period(self, db_session: Session, admin_user, open_period, locations):
        open_period.status = PeriodStatus.CLOSED.value
        db_session.commit()

        with pytest.raises(PeriodClosedError):
            ReconciliationService(db_session, admin_user).save_reconciliation(
                open_period, locations["main"], {}
            )

    def test_report_totals(self, db_session: Session, admin_user, open_period, locations, items, supplier):
        self._post_activity(db_session, admin_user, open_period, locations, items, supplier)

        report = ReconciliationService(db_session).report(open_period)

        assert [row["location_code"] for row in report["locations"]] == ["MAIN", "STORE"]
        assert report["grand_totals"]["receipts"] == Decimal("250.00")
        assert report["grand_totals"]["consumption"] == Decimal("80.00")
        assert report["summary"]["total_locations"] == 2
        assert report["summary"]["locations_with_calculated_data"] == 2
