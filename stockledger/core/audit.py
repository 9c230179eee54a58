"""
Audit trail writer

Entries are added to the caller's session and committed with the
business change they describe.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _json_safe(values: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not values:
        return None
    safe = {}
    for key, value in values.items():
        if isinstance(value, Decimal):
            safe[key] = str(value)
        elif isinstance(value, dict):
            safe[key] = _json_safe(value)
        elif isinstance(value, (list, tuple)):
            safe[key] = [str(v) if isinstance(v, Decimal) else v for v in value]
        elif hasattr(value, "isoformat"):
            safe[key] = value.isoformat()
        else:
            safe[key] = value
    return safe


def log_user_action(
    db: Session,
    actor,
    action: str,
    table: Optional[str] = None,
    key: Optional[str] = None,
    old_values: Optional[Dict] = None,
    new_values: Optional[Dict] = None,
    module: Optional[str] = None
):
    """Log user action to audit trail"""
    from stockledger.models.audit import AuditLog

    username = getattr(actor, "username", None) or "SYSTEM"

    audit_entry = AuditLog(
        audit_user=username,
        audit_action=action,
        audit_table=table,
        audit_key=str(key) if key is not None else None,
        audit_old_values=_json_safe(old_values),
        audit_new_values=_json_safe(new_values),
        audit_module=module
    )

    db.add(audit_entry)
    logger.info(f"{username} {action} {table or ''}:{key or ''}")
    return audit_entry
