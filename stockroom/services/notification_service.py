"""
Notification Service
Price variance emails, sent after the delivery transaction has committed
"""
from typing import Dict, List, Optional
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import smtplib
import logging

from stockroom.core.config import settings

logger = logging.getLogger(__name__)


def ncr_alert_payload(delivery, location, supplier, ncrs) -> Dict:
    """Plain data for the alert, detached from the request's session"""
    return {
        "delivery_no": delivery.delivery_no if delivery else None,
        "location": f"{location.code} {location.name}",
        "supplier": f"{supplier.code} {supplier.name}" if supplier else None,
        "supplier_email": supplier.email if supplier else None,
        "ncrs": [
            {
                "ncr_no": ncr.ncr_no,
                "reason": ncr.reason,
                "value": str(ncr.value),
                "variance_percent": str(ncr.variance_percent) if ncr.variance_percent is not None else None,
            }
            for ncr in ncrs
        ],
    }


def format_price_variance_email(payload: Dict, title: str = "Stockroom Price Variance Report") -> str:
    lines = [
        title,
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Delivery: {payload['delivery_no'] or '-'}",
        f"Location: {payload['location']}",
        f"Supplier: {payload['supplier'] or '-'}",
        "=" * 50,
    ]
    for ncr in payload["ncrs"]:
        if ncr["variance_percent"] is None:
            lines.append(f"{ncr['ncr_no']}  value {settings.DEFAULT_CURRENCY} {ncr['value']}")
        else:
            lines.append(f"{ncr['ncr_no']}  value {settings.DEFAULT_CURRENCY} {ncr['value']} ({ncr['variance_percent']}%)")
        lines.append(ncr["reason"])
        lines.append("-" * 30)
    lines.append("This is an automated message. Please review the NCRs listed above.")
    return "\n".join(lines)


def send_email(recipients: List[str], subject: str, body: str) -> bool:
    """Send a plain text email; failures are logged and reported as False"""
    if not settings.SMTP_HOST:
        logger.info(f"SMTP not configured, skipping email '{subject}' to {', '.join(recipients)}")
        return False

    message = MIMEMultipart()
    message["From"] = settings.SMTP_FROM
    message["To"] = ", ".join(recipients)
    message["Subject"] = subject
    message.attach(MIMEText(body, "plain"))

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
            server.starttls()
            if settings.SMTP_USER:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Email send error for '{subject}': {e}")
        return False

    logger.info(f"Email '{subject}' sent to {len(recipients)} recipient(s)")
    return True


def send_price_variance_alert(payload: Dict, recipients: Optional[List[str]] = None) -> bool:
    """
    Background task queued after a delivery raises NCRs.

    Never raises: the delivery is already committed.
    """
    recipients = list(recipients if recipients is not None else settings.NCR_NOTIFICATION_EMAILS)
    if payload.get("supplier_email"):
        recipients.append(payload["supplier_email"])
    if not recipients:
        logger.info(f"No NCR notification recipients for {payload['delivery_no']}")
        return False

    subject = f"Price variance on {payload['delivery_no']} - {len(payload['ncrs'])} NCR(s)"
    return send_email(recipients, subject, format_price_variance_email(payload))


def resend_ncr_notification(payload: Dict, recipients: List[str]) -> bool:
    """Resend one NCR on request; the caller reports a failed send"""
    ncr_no = payload["ncrs"][0]["ncr_no"]
    subject = f"Non-conformance report {ncr_no} (resent)"
    return send_email(recipients, subject, format_price_variance_email(payload, title="Stockroom NCR Report"))
