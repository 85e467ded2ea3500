# Overview: Service-layer audit-log sink; best-effort, never fails the caller.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import AuditLog

logger = logging.getLogger(__name__)


def log_audit(
    *,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    description: str | None = None,
    user: str | None = None,
    metadata: dict | None = None,
) -> AuditLog | None:
    """
    Persist one audit entry in its own commit.

    Call after the business transaction has committed. Failures are logged
    and swallowed so a broken audit table never undoes a committed receipt.
    """
    try:
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            user=user,
            details=metadata,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        logger.exception("Failed to persist audit log (%s %s %s)", action, entity_type, entity_id)
        return None
