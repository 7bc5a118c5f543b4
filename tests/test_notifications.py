"""
Tests for NCR notifications
Price variance alerts and on-demand resends over SMTP
"""

import smtplib
import pytest
from decimal import Decimal
from sqlalchemy.orm import Session

from stockroom.core.config import settings
from stockroom.core.exceptions import IntegrationError, ValidationError
from stockroom.models.audit import AuditLog
from stockroom.models.ncr import NCR, NotificationRecipient
from stockroom.services.ncr_service import NCRService
from stockroom.services.notification_service import send_email, send_price_variance_alert
from stockroom.services.stock.stock_receipts import DeliveryService

from conftest import delivery_payload

ALERT = {
    "delivery_no": "DEL-2026-001",
    "location": "MAIN Main Kitchen",
    "supplier": "FRESH Fresh Foods Ltd",
    "supplier_email": "orders@example.com",
    "ncrs": [{"ncr_no": "NCR-2026-001", "reason": "Flour invoiced at 2.50", "value": "5.00",
              "variance_percent": "25.00"}],
}


class RecordingSMTP:
    """Stands in for smtplib.SMTP and keeps every message handed to it"""

    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, message):
        self.sent.append(message)


class RelayDeniedSMTP(RecordingSMTP):

    def send_message(self, message):
        raise smtplib.SMTPRecipientsRefused({"orders@example.com": (550, b"relay denied")})


def refuse_connection(host, port, timeout=None):
    raise ConnectionRefusedError(111, "Connection refused")


@pytest.fixture
def smtp_configured(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "NCR_NOTIFICATION_EMAILS", ["finance@example.com"])
    RecordingSMTP.sent = []


class TestSendEmail:
    """Test suite for the SMTP sender"""

    def test_skipped_without_smtp_host(self, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_HOST", None)
        monkeypatch.setattr(smtplib, "SMTP", refuse_connection)

        assert send_email(["finance@example.com"], "Subject", "Body") is False

    def test_sent(self, smtp_configured, monkeypatch):
        monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)

        assert send_price_variance_alert(ALERT) is True
        assert len(RecordingSMTP.sent) == 1
        message = RecordingSMTP.sent[0]
        assert message["To"] == "finance@example.com, orders@example.com"
        assert "DEL-2026-001" in message["Subject"]

    @pytest.mark.parametrize("smtp_class", [RelayDeniedSMTP, refuse_connection])
    def test_failure_is_reported_not_raised(self, smtp_configured, monkeypatch, smtp_class):
        monkeypatch.setattr(smtplib, "SMTP", smtp_class)

        assert send_price_variance_alert(ALERT) is False

    def test_no_recipients(self, monkeypatch):
        monkeypatch.setattr(settings, "NCR_NOTIFICATION_EMAILS", [])
        monkeypatch.setattr(smtplib, "SMTP", refuse_connection)

        assert send_price_variance_alert(dict(ALERT, supplier_email=None)) is False


class TestResendNotification:
    """Test suite for resending an NCR"""

    @pytest.fixture
    def variance_ncr(self, db_session: Session, admin_user, open_period, locations, items, supplier) -> NCR:
        _, ncrs = DeliveryService(db_session, admin_user).post_delivery(
            locations["main"].id, open_period,
            delivery_payload(supplier.id, [(items["flour"].id, 10, "2.50")])
        )
        return ncrs[0]

    def test_resend_to_supplier(self, db_session: Session, admin_user, variance_ncr, smtp_configured,
                                monkeypatch):
        monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)

        result = NCRService(db_session, admin_user).resend_notification(
            variance_ncr, NotificationRecipient.SUPPLIER
        )

        assert result["recipients"] == ["orders@example.com"]
        assert result["recipient_type"] == "SUPPLIER"
        assert variance_ncr.ncr_no in RecordingSMTP.sent[0]["Subject"]
        audit = db_session.query(AuditLog).filter(AuditLog.audit_action == "RESEND_NCR_NOTIFICATION").one()
        assert audit.audit_key == variance_ncr.ncr_no

    def test_manual_ncr_has_no_supplier(self, db_session: Session, admin_user, locations, smtp_configured):
        ncr = NCRService(db_session, admin_user).create_manual({
            "location_id": locations["main"].id, "reason": "Crate damaged", "value": Decimal("12.50")
        })

        with pytest.raises(ValidationError) as exc_info:
            NCRService(db_session, admin_user).resend_notification(ncr, NotificationRecipient.SUPPLIER)
        assert exc_info.value.code == "NO_RECIPIENTS"

    def test_manual_ncr_to_internal_list(self, db_session: Session, admin_user, locations, smtp_configured,
                                         monkeypatch):
        monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)
        ncr = NCRService(db_session, admin_user).create_manual({
            "location_id": locations["main"].id, "reason": "Crate damaged", "value": Decimal("12.50")
        })

        result = NCRService(db_session, admin_user).resend_notification(ncr, NotificationRecipient.INTERNAL)

        assert result["recipients"] == ["finance@example.com"]
        assert "Crate damaged" in RecordingSMTP.sent[0].get_payload()[0].get_payload()

    def test_failed_send_is_an_error(self, db_session: Session, admin_user, variance_ncr, smtp_configured,
                                     monkeypatch):
        monkeypatch.setattr(smtplib, "SMTP", refuse_connection)

        with pytest.raises(IntegrationError) as exc_info:
            NCRService(db_session, admin_user).resend_notification(variance_ncr, NotificationRecipient.INTERNAL)

        assert exc_info.value.code == "EMAIL_SEND_FAILED"
        assert exc_info.value.status_code == 502
        assert db_session.query(AuditLog).filter(AuditLog.audit_action == "RESEND_NCR_NOTIFICATION").count() == 0
