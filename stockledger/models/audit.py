"""
Audit Trail Model
Who changed what in the ledger, reconciliation and period tables
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String

from stockledger.core.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class AuditLog(Base):
    """Audit trail entry for one business action"""
    __tablename__ = "audit_log"

    audit_id = Column(Integer, primary_key=True, autoincrement=True)
    audit_timestamp = Column(DateTime(timezone=True), default=_utcnow, index=True)
    audit_user = Column(String(50), nullable=False, index=True)
    audit_action = Column(String(40), nullable=False, index=True)  # DELIVERY_POSTED, TRANSFER_APPROVED, ...
    audit_table = Column(String(50), index=True)
    audit_key = Column(String(100))
    audit_old_values = Column(JSON)
    audit_new_values = Column(JSON)
    audit_module = Column(String(10))  # STOCK, RECON, PERIOD, POB

    def __repr__(self):
        return f"<AuditLog {self.audit_action} {self.audit_table}:{self.audit_key}>"
