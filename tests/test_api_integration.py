"""
API Integration Tests
End-to-end request handling: auth, error envelope, postings and period control
"""

import smtplib
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from stockroom.core.config import settings
from stockroom.models.auth import AccessLevel
from stockroom.services.auth_service import AuthService

from conftest import TEST_PASSWORD

API = "/api/v1"


def delivery_json(supplier_id, lines):
    return {
        "supplier_id": supplier_id,
        "delivery_date": "2026-01-05",
        "invoice_no": "INV-2001",
        "lines": [{"item_id": item_id, "quantity": str(qty), "unit_price": str(price)}
                  for item_id, qty, price in lines],
    }


def issue_json(lines):
    return {
        "issue_date": "2026-01-10",
        "cost_centre": "FOOD",
        "lines": [{"item_id": item_id, "quantity": str(qty)} for item_id, qty in lines],
    }


def transfer_json(from_id, to_id, lines):
    return {
        "from_location_id": from_id,
        "to_location_id": to_id,
        "request_date": "2026-01-12",
        "lines": [{"item_id": item_id, "quantity": str(qty)} for item_id, qty in lines],
    }


class TestSystemEndpoints:

    def test_health(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_info(self, client: TestClient):
        assert client.get("/info").json()["api_version"] == "v1"


class TestAuthentication:
    """Test suite for login and the error envelope"""

    def test_login_success(self, client: TestClient, operator_user):
        response = client.post(f"{API}/auth/login", data={"username": "operator", "password": TEST_PASSWORD})

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.json()["username"] == "operator"

    def test_login_wrong_password(self, client: TestClient, operator_user):
        response = client.post(f"{API}/auth/login", data={"username": "operator", "password": "nope"})

        assert response.status_code == 401
        body = response.json()
        assert body["statusCode"] == 401
        assert body["data"]["code"] == "NOT_AUTHENTICATED"

    def test_missing_token(self, client: TestClient, locations):
        response = client.get(f"{API}/locations")
        assert response.status_code == 401
        assert response.json()["data"]["code"] == "NOT_AUTHENTICATED"

    def test_invalid_token(self, client: TestClient):
        response = client.get(f"{API}/locations", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_admin_only_endpoint(self, client: TestClient, operator_headers):
        response = client.post(f"{API}/items", json={"code": "SALT", "name": "Salt", "unit": "KG"},
                               headers=operator_headers)
        assert response.status_code == 403
        assert response.json()["data"]["code"] == "INSUFFICIENT_PERMISSIONS"


class TestLocationAccess:
    """Test suite for per-location access"""

    def test_operator_sees_only_assigned_locations(self, client: TestClient, operator_headers,
                                                   operator_at_main, locations):
        response = client.get(f"{API}/locations", headers=operator_headers)

        assert response.status_code == 200
        assert [loc["code"] for loc in response.json()] == ["MAIN"]

    def test_unassigned_location_denied(self, client: TestClient, operator_headers, operator_at_main,
                                        locations, items, supplier, open_period):
        response = client.post(
            f"{API}/locations/{locations['store'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 1, "2.00")]),
            headers=operator_headers,
        )

        assert response.status_code == 403
        assert response.json()["data"]["code"] == "LOCATION_ACCESS_DENIED"

    def test_view_access_cannot_post(self, client: TestClient, db_session, admin_user, operator_user,
                                     operator_headers, locations, items, open_period):
        AuthService(db_session, admin_user).assign_location(
            locations["store"].id, operator_user.id, AccessLevel.VIEW
        )
        assert client.get(f"{API}/locations/{locations['store'].id}", headers=operator_headers).status_code == 200

        response = client.post(
            f"{API}/locations/{locations['store'].id}/issues",
            json=issue_json([(items["flour"].id, 1)]),
            headers=operator_headers,
        )
        assert response.status_code == 403
        assert response.json()["data"]["code"] == "INSUFFICIENT_PERMISSIONS"


class TestPostings:
    """Test suite for deliveries and issues over HTTP"""

    def test_delivery_with_variance(self, client: TestClient, operator_headers, operator_at_main,
                                    locations, items, supplier, open_period, monkeypatch):
        sent = []
        monkeypatch.setattr(
            "stockroom.api.v1.stock.locations.send_price_variance_alert",
            lambda payload: sent.append(payload),
        )

        response = client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 10, "2.40"), (items["rice"].id, 2, "5.00")]),
            headers=operator_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["has_variance"] is True
        assert len(data["ncrs"]) == 1
        assert data["ncrs"][0]["type"] == "PRICE_VARIANCE"
        assert Decimal(str(data["ncrs"][0]["value"])) == Decimal("4.00")
        assert Decimal(str(data["delivery"]["total_amount"])) == Decimal("34.00")
        assert len(sent) == 1
        assert sent[0]["supplier_email"] == "orders@example.com"

        stock = client.get(f"{API}/locations/{locations['main'].id}/stock", headers=operator_headers).json()
        flour = [row for row in stock if row["item_code"] == "FLOUR"][0]
        assert Decimal(str(flour["wac"])) == Decimal("2.4")

    def test_empty_delivery_is_a_validation_error(self, client: TestClient, admin_headers, locations,
                                                  supplier, open_period):
        response = client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, []),
            headers=admin_headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["data"]["code"] == "VALIDATION_ERROR"
        assert body["data"]["details"]["errors"]

    def test_no_open_period(self, client: TestClient, admin_headers, locations, items, supplier):
        response = client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 1, "2.00")]),
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["data"]["code"] == "NO_OPEN_PERIOD"

    def test_issue_shortfall_envelope(self, client: TestClient, admin_headers, locations, items,
                                      supplier, open_period):
        client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 3, "2.00")]),
            headers=admin_headers,
        )

        response = client.post(
            f"{API}/locations/{locations['main'].id}/issues",
            json=issue_json([(items["flour"].id, 5)]),
            headers=admin_headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["statusCode"] == 400
        assert body["data"]["code"] == "INSUFFICIENT_STOCK"
        short = body["data"]["details"]["insufficient_items"][0]
        assert short["item_code"] == "FLOUR"
        assert Decimal(short["requested"]) == Decimal("5")
        assert Decimal(short["available"]) == Decimal("3")

    def test_issue_posted(self, client: TestClient, admin_headers, locations, items, supplier, open_period):
        client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 10, "2.00")]),
            headers=admin_headers,
        )

        response = client.post(
            f"{API}/locations/{locations['main'].id}/issues",
            json=issue_json([(items["flour"].id, 4)]),
            headers=admin_headers,
        )

        assert response.status_code == 201
        issue = response.json()["issue"]
        assert Decimal(str(issue["total_value"])) == Decimal("8.00")
        fetched = client.get(f"{API}/issues/{issue['id']}", headers=admin_headers)
        assert fetched.json()["issue_no"] == issue["issue_no"]

    def test_alert_failure_does_not_fail_delivery(self, client: TestClient, admin_headers, locations, items,
                                                  supplier, open_period, monkeypatch):
        def refuse_connection(host, port, timeout=None):
            raise ConnectionRefusedError(111, "Connection refused")

        monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
        monkeypatch.setattr(smtplib, "SMTP", refuse_connection)

        response = client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 10, "2.40")]),
            headers=admin_headers,
        )

        assert response.status_code == 201
        ncr_no = response.json()["ncrs"][0]["ncr_no"]
        listed = client.get(f"{API}/ncrs", params={"locationId": locations["main"].id}, headers=admin_headers)
        assert [ncr["ncr_no"] for ncr in listed.json()["ncrs"]] == [ncr_no]

    @pytest.mark.parametrize("quantity,price", [("0.00004", "2.00"), ("1", "2.00001")])
    def test_over_precise_line_rejected(self, client: TestClient, admin_headers, locations, items,
                                        supplier, open_period, quantity, price):
        response = client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, quantity, price)]),
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["data"]["code"] == "VALIDATION_ERROR"
        stock = client.get(f"{API}/locations/{locations['main'].id}/stock", headers=admin_headers).json()
        assert stock == []


class TestTransferEndpoints:
    """Test suite for the transfer workflow over HTTP"""

    @pytest.fixture
    def transfer_id(self, client: TestClient, admin_headers, locations, items, supplier, open_period):
        client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 20, "2.00")]),
            headers=admin_headers,
        )
        response = client.post(
            f"{API}/transfers",
            json=transfer_json(locations["main"].id, locations["store"].id, [(items["flour"].id, 5)]),
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["transfer"]["status"] == "PENDING_APPROVAL"
        return response.json()["transfer"]["id"]

    def test_operator_cannot_approve(self, client: TestClient, operator_headers, transfer_id):
        response = client.patch(f"{API}/transfers/{transfer_id}/approve", headers=operator_headers)
        assert response.status_code == 403

    def test_only_one_approval_wins(self, client: TestClient, supervisor_headers, locations, items, transfer_id):
        statuses = [
            client.patch(f"{API}/transfers/{transfer_id}/approve", headers=supervisor_headers)
            for _ in range(3)
        ]

        assert [r.status_code for r in statuses] == [200, 400, 400]
        assert statuses[1].json()["data"]["code"] == "INVALID_STATUS"
        stock = client.get(f"{API}/locations/{locations['store'].id}/stock", headers=supervisor_headers).json()
        assert Decimal(str(stock[0]["on_hand"])) == Decimal("5")

    def test_reject_with_comment(self, client: TestClient, supervisor_headers, transfer_id):
        response = client.patch(
            f"{API}/transfers/{transfer_id}/reject",
            json={"comment": "Store is full"},
            headers=supervisor_headers,
        )

        assert response.status_code == 200
        assert response.json()["transfer"]["status"] == "REJECTED"

    def test_same_location(self, client: TestClient, admin_headers, locations, items, open_period):
        response = client.post(
            f"{API}/transfers",
            json=transfer_json(locations["main"].id, locations["main"].id, [(items["flour"].id, 1)]),
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["data"]["code"] == "SAME_LOCATION_TRANSFER"


class TestPeriodEndpoints:
    """Test suite for reconciliation and close over HTTP"""

    def test_current_period(self, client: TestClient, operator_headers, open_period):
        response = client.get(f"{API}/periods/current", headers=operator_headers)
        assert response.status_code == 200
        assert response.json()["name"] == "January 2026"

    def test_prices_locked_after_open(self, client: TestClient, admin_headers, items, open_period):
        response = client.post(
            f"{API}/periods/{open_period.id}/prices",
            json={"prices": [{"item_id": items["flour"].id, "price": "3.00"}]},
            headers=admin_headers,
        )
        assert response.status_code == 400
        assert response.json()["data"]["code"] == "PRICES_LOCKED"

    def test_reconcile_ready_and_close(self, client: TestClient, admin_headers, supervisor_headers,
                                       locations, items, supplier, open_period):
        main_id, store_id = locations["main"].id, locations["store"].id
        client.post(
            f"{API}/locations/{main_id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 10, "2.00")]),
            headers=admin_headers,
        )

        early = client.post(f"{API}/periods/{open_period.id}/close", headers=admin_headers)
        assert early.status_code == 400
        assert early.json()["data"]["code"] == "LOCATIONS_NOT_READY"

        for location_id in (main_id, store_id):
            saved = client.patch(
                f"{API}/locations/{location_id}/reconciliations/{open_period.id}",
                json={"condemnations": "1.50"} if location_id == main_id else {},
                headers=supervisor_headers,
            )
            assert saved.status_code == 200
            ready = client.patch(
                f"{API}/periods/{open_period.id}/locations/{location_id}/ready",
                headers=supervisor_headers,
            )
            assert ready.status_code == 200

        report = client.get(f"{API}/reports/reconciliation", params={"periodId": open_period.id},
                            headers=supervisor_headers).json()
        assert report["summary"]["locations_with_saved_data"] == 2
        assert Decimal(str(report["grand_totals"]["consumption"])) == Decimal("-1.50")

        status = client.get(f"{API}/periods/{open_period.id}/status", headers=supervisor_headers).json()
        assert status["can_close"] is True

        closed = client.post(f"{API}/periods/{open_period.id}/close", json={"comments": "January done"},
                             headers=admin_headers)
        assert closed.status_code == 200
        assert closed.json()["period"]["status"] == "CLOSED"
        assert len(closed.json()["snapshots"]) == 2

        rolled = client.post(f"{API}/periods/{open_period.id}/roll-forward", headers=admin_headers)
        assert rolled.status_code == 201
        assert rolled.json()["name"] == "February 2026"

    def test_unready_round_trip(self, client: TestClient, admin_headers, supervisor_headers, operator_headers,
                                locations, items, supplier, open_period):
        main_id = locations["main"].id
        client.patch(f"{API}/locations/{main_id}/reconciliations/{open_period.id}", json={},
                     headers=supervisor_headers)
        client.patch(f"{API}/periods/{open_period.id}/locations/{main_id}/ready", headers=supervisor_headers)

        blocked = client.post(
            f"{API}/locations/{main_id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 1, "2.00")]),
            headers=admin_headers,
        )
        assert blocked.json()["data"]["code"] == "PERIOD_CLOSED"

        denied = client.patch(f"{API}/periods/{open_period.id}/locations/{main_id}/unready",
                              headers=operator_headers)
        assert denied.status_code == 403

        reopened = client.patch(f"{API}/periods/{open_period.id}/locations/{main_id}/unready",
                                headers=supervisor_headers)
        assert reopened.status_code == 200
        assert reopened.json()["status"] == "NOT_READY"
        assert reopened.json()["ready_at"] is None

        again = client.patch(f"{API}/periods/{open_period.id}/locations/{main_id}/unready",
                             headers=supervisor_headers)
        assert again.json()["data"]["code"] == "LOCATION_NOT_READY"

        posted = client.post(
            f"{API}/locations/{main_id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 1, "2.00")]),
            headers=admin_headers,
        )
        assert posted.status_code == 201

    def test_close_via_approval(self, client: TestClient, admin_headers, supervisor_headers,
                                locations, open_period):
        for location_id in (locations["main"].id, locations["store"].id):
            client.patch(f"{API}/locations/{location_id}/reconciliations/{open_period.id}",
                         json={}, headers=supervisor_headers)
            client.patch(f"{API}/periods/{open_period.id}/locations/{location_id}/ready",
                         headers=supervisor_headers)

        requested = client.post(f"{API}/periods/{open_period.id}/close-request", headers=supervisor_headers)
        assert requested.status_code == 201
        approval_id = requested.json()["approval"]["id"]

        denied = client.patch(f"{API}/approvals/{approval_id}/approve", headers=supervisor_headers)
        assert denied.status_code == 403

        approved = client.patch(f"{API}/approvals/{approval_id}/approve", json={"comments": "ok"},
                                headers=admin_headers)
        assert approved.status_code == 200
        assert approved.json()["period"]["status"] == "CLOSED"


class TestNCREndpoints:
    """Test suite for NCR notification resends"""

    @pytest.fixture
    def ncr_id(self, client: TestClient, admin_headers, locations, items, supplier, open_period, monkeypatch):
        monkeypatch.setattr("stockroom.api.v1.stock.locations.send_price_variance_alert", lambda payload: True)
        response = client.post(
            f"{API}/locations/{locations['main'].id}/deliveries",
            json=delivery_json(supplier.id, [(items["flour"].id, 10, "2.40")]),
            headers=admin_headers,
        )
        return response.json()["ncrs"][0]["id"]

    def test_resend_is_admin_only(self, client: TestClient, operator_headers, ncr_id):
        response = client.post(f"{API}/ncrs/{ncr_id}/resend-notification", headers=operator_headers)
        assert response.status_code == 403

    def test_resend_to_supplier(self, client: TestClient, admin_headers, ncr_id, monkeypatch):
        sent = []

        class RecordingSMTP:
            def __init__(self, host, port, timeout=None):
                pass

            def __enter__(self):
                return self

            def __exit__(self, *exc_info):
                return False

            def starttls(self):
                pass

            def send_message(self, message):
                sent.append(message["To"])

        monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
        monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)

        response = client.post(f"{API}/ncrs/{ncr_id}/resend-notification",
                               json={"recipient_type": "SUPPLIER"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["recipients"] == ["orders@example.com"]
        assert sent == ["orders@example.com"]

    def test_resend_without_internal_recipients(self, client: TestClient, admin_headers, ncr_id, monkeypatch):
        monkeypatch.setattr(settings, "NCR_NOTIFICATION_EMAILS", [])

        response = client.post(f"{API}/ncrs/{ncr_id}/resend-notification", headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["data"]["code"] == "NO_RECIPIENTS"

    def test_failed_resend_envelope(self, client: TestClient, admin_headers, ncr_id, monkeypatch):
        monkeypatch.setattr(settings, "NCR_NOTIFICATION_EMAILS", ["finance@example.com"])
        monkeypatch.setattr(settings, "SMTP_HOST", None)

        response = client.post(f"{API}/ncrs/{ncr_id}/resend-notification",
                               json={"recipient_type": "INTERNAL"}, headers=admin_headers)

        assert response.status_code == 502
        assert response.json()["data"]["code"] == "EMAIL_SEND_FAILED"
