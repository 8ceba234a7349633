"""
Comparables Audit Trail - Append-Only Record of User Actions

Records filter changes, exclusions, saved sets, imports, exports and dedup
runs so a valuation can be traced back to the comparables behind it.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class AuditAction(Enum):
    """Actions recorded in the audit trail."""

    FILTER_APPLIED = "FILTER_APPLIED"
    COMPARABLE_EXCLUDED = "COMPARABLE_EXCLUDED"
    SET_SAVED = "SET_SAVED"
    SET_UPDATED = "SET_UPDATED"
    IMPORT_COMPLETED = "IMPORT_COMPLETED"
    EXPORT_GENERATED = "EXPORT_GENERATED"
    DEDUP_RUN = "DEDUP_RUN"


@dataclass(frozen=True)
class AuditEvent:
    """Immutable audit entry."""

    id: str
    at: datetime
    user: str
    action: AuditAction
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "at": self.at.isoformat(),
            "user": self.user,
            "action": self.action.value,
            "payload": copy.deepcopy(self.payload),
        }


class AuditTrail:
    """
    In-memory, append-only audit trail.

    Entries are never edited or removed.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    def log_event(
        self,
        action: AuditAction,
        user: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Append an event.

        Args:
            action: What happened
            user: Who did it
            payload: Action details (deep-copied)

        Returns:
            The recorded AuditEvent
        """
        event = AuditEvent(
            id=f"audit-{uuid.uuid4().hex[:12]}",
            at=datetime.utcnow(),
            user=user,
            action=action,
            payload=copy.deepcopy(payload or {}),
        )
        self._events.append(event)
        return event

    def list_events(
        self,
        set_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list[AuditEvent]:
        """
        List events, newest first.

        Args:
            set_id: Only events whose payload references this comp set
            date_from: Only events at or after this time
            date_to: Only events at or before this time
        """
        result = []
        for event in reversed(self._events):
            if set_id is not None and event.payload.get("set_id") != set_id:
                continue
            if date_from is not None and event.at < date_from:
                continue
            if date_to is not None and event.at > date_to:
                continue
            result.append(event)
        return result

    def count(self) -> int:
        return len(self._events)
