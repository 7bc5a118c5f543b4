"""
Document numbering - {PREFIX}-{YYYY}-{NNN} sequences per document type and year
"""
from datetime import datetime
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

DELIVERY_PREFIX = "DEL"
ISSUE_PREFIX = "ISS"
TRANSFER_PREFIX = "TRF"
NCR_PREFIX = "NCR"


def next_document_number(db: Session, column, prefix: str, year: Optional[int] = None) -> str:
    """
    Next number in the yearly sequence for ``column``.

    The counter is zero padded to three digits and keeps growing past 999,
    so the latest number is found by length first, then value. Callers flush
    after adding the document so the next call in the same transaction sees it.
    """
    year = year or datetime.now().year
    stem = f"{prefix}-{year}-"

    latest = db.query(column).filter(column.like(f"{stem}%")).order_by(
        func.length(column).desc(), column.desc()
    ).first()

    sequence = 1
    if latest and latest[0]:
        suffix = latest[0][len(stem):]
        if suffix.isdigit():
            sequence = int(suffix) + 1

    return f"{stem}{sequence:03d}"
