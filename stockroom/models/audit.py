"""
Audit Trail Model
Records who changed what, written inside the business transaction
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON
from sqlalchemy.sql import func

from stockroom.core.database import Base


class AuditLog(Base):
    """Audit trail for ledger and workflow changes"""
    __tablename__ = "audit_log"

    audit_id = Column(Integer, primary_key=True, index=True)
    audit_timestamp = Column(DateTime(timezone=True), server_default=func.current_timestamp(), index=True)
    audit_user = Column(String(50), nullable=False, index=True)
    audit_action = Column(String(40), nullable=False, index=True)  # POST_DELIVERY, APPROVE_TRANSFER, etc
    audit_table = Column(String(50), index=True)
    audit_key = Column(String(100))
    audit_old_values = Column(JSON)
    audit_new_values = Column(JSON)
    audit_module = Column(String(20))  # STOCK, TRANSFER, PERIOD, NCR
