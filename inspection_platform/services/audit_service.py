"""
Best-effort audit recording.

Called only after the domain write has been committed. The audit row goes
in its own transaction; if it fails the error is logged and swallowed so
the caller's mutation stands.
"""

import logging

from inspection_platform.models import db
from inspection_platform.models.audit import write_audit

logger = logging.getLogger(__name__)


def record_audit(
    actor_id: int | None,
    action: str,
    entity: str,
    entity_id=None,
    *,
    organization_id: int | None = None,
    diff: dict | None = None,
) -> bool:
    """Append one audit row; return False (never raise) on failure."""
    try:
        write_audit(
            entity_type=entity,
            entity_id=entity_id,
            action=action,
            actor_user_id=actor_id,
            organization_id=organization_id,
            diff=diff,
        )
        db.session.commit()
        return True
    except Exception:
        db.session.rollback()
        logger.exception(
            "Failed to create audit log action=%s entity=%s id=%s actor=%s",
            action, entity, entity_id, actor_id,
        )
        return False
