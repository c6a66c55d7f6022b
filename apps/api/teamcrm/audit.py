"""In-process audit trail of team administration.

Entries are appended after the change is committed and are never written for
rejected operations.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from teamcrm.core.auth import AuthContext
from teamcrm.core.context import current_correlation_id


logger = logging.getLogger("teamcrm.audit")

audit_entries: list[dict[str, Any]] = []


def record(
    auth: AuthContext,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    *,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "team_id": str(auth.team_id),
        "actor_user_id": str(auth.user_id),
        "actor_role": auth.role,
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "before": before,
        "after": after,
        "correlation_id": current_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.debug("audit.recorded", extra={"team_id": entry["team_id"], "entity": entity_type})
    return entry


def entries_for_team(team_id: uuid.UUID) -> list[dict[str, Any]]:
    return [entry for entry in audit_entries if entry["team_id"] == str(team_id)]
