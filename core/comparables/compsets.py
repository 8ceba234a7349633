"""
Comp Set Repository - Storage for Named Comparable Selections

In-memory storage with optional JSON file persistence. The host
application may replace it with a database-backed implementation exposing
the same operations.

Invariant: at most one comp set is the default for the AVM at a time.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from core.comparables.audit import AuditAction, AuditTrail
from core.comparables.models import CompSet


logger = logging.getLogger(__name__)

# Fields callers may change through update()
UPDATABLE_FIELDS = frozenset({"name", "comps", "client", "notes", "is_default_for_avm"})


class CompSetRepository:
    """
    Repository for storing and retrieving comp sets.

    Provides CRUD operations and the AVM default lookup.
    """

    def __init__(
        self,
        persist_path: Optional[str] = None,
        audit: Optional[AuditTrail] = None,
    ):
        """
        Initialise repository.

        Args:
            persist_path: Optional path to persist data to JSON file
            audit: Optional audit trail receiving SET_SAVED / SET_UPDATED
        """
        self._sets: dict[str, CompSet] = {}
        self._persist_path = Path(persist_path) if persist_path else None
        self._audit = audit

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _save_to_file(self) -> None:
        """Persist data to file."""
        if not self._persist_path:
            return

        data = {
            "sets": [s.to_dict() for s in self._sets.values()],
            "saved_at": datetime.utcnow().isoformat(),
        }

        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        """Load data from file."""
        try:
            data = json.loads(self._persist_path.read_text())
            for set_data in data.get("sets", []):
                comp_set = CompSet.from_dict(set_data)
                self._sets[comp_set.id] = comp_set
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("Could not load comp sets from %s: %s", self._persist_path, e)

    def _clear_default_except(self, set_id: str) -> None:
        for other in self._sets.values():
            if other.id != set_id and other.is_default_for_avm:
                other.is_default_for_avm = False
                other.updated_at = datetime.utcnow()

    def _log(self, action: AuditAction, user: str, comp_set: CompSet) -> None:
        if self._audit is not None:
            self._audit.log_event(
                action,
                user,
                {"set_id": comp_set.id, "name": comp_set.name, "comps": len(comp_set.comps)},
            )

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    def save(
        self,
        name: str,
        comps: list[str],
        client: Optional[str] = None,
        notes: Optional[str] = None,
        is_default_for_avm: bool = False,
        user: str = "system",
    ) -> CompSet:
        """
        Create a new comp set.

        Args:
            name: Display name
            comps: Comparable ids, in selection order
            client: Optional client name
            notes: Optional notes
            is_default_for_avm: Make this the AVM default (clears the flag elsewhere)
            user: Who saved the set

        Returns:
            New CompSet

        Raises:
            ValueError: If name is empty
        """
        if not name or not name.strip():
            raise ValueError("name is required")

        now = datetime.utcnow()
        comp_set = CompSet(
            id=f"set-{uuid.uuid4().hex[:12]}",
            name=name.strip(),
            comps=list(dict.fromkeys(comps)),
            client=client,
            notes=notes,
            is_default_for_avm=is_default_for_avm,
            created_at=now,
            updated_at=now,
        )
        self._sets[comp_set.id] = comp_set
        if is_default_for_avm:
            self._clear_default_except(comp_set.id)

        logger.info("Saved comp set %s (%d comparables)", comp_set.id, len(comp_set.comps))
        self._log(AuditAction.SET_SAVED, user, comp_set)
        self._save_to_file()
        return comp_set

    def get(self, set_id: str) -> Optional[CompSet]:
        """Get a comp set by id, None if not found."""
        return self._sets.get(set_id)

    def update(
        self,
        set_id: str,
        updates: dict[str, Any],
        user: str = "system",
    ) -> Optional[CompSet]:
        """
        Apply partial updates to a comp set.

        Args:
            set_id: Comp set id
            updates: Field values keyed by name (see UPDATABLE_FIELDS)
            user: Who performed the update

        Returns:
            Updated CompSet, or None if not found

        Raises:
            ValueError: If an update names an unknown field or empties the name
        """
        comp_set = self._sets.get(set_id)
        if comp_set is None:
            return None

        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "name" in updates and not (updates["name"] or "").strip():
            raise ValueError("name is required")

        for key, value in updates.items():
            if key == "comps":
                value = list(dict.fromkeys(value))
            elif key == "name":
                value = value.strip()
            setattr(comp_set, key, value)
        comp_set.updated_at = datetime.utcnow()

        if comp_set.is_default_for_avm:
            self._clear_default_except(comp_set.id)

        self._log(AuditAction.SET_UPDATED, user, comp_set)
        self._save_to_file()
        return comp_set

    def exclude(
        self,
        set_id: str,
        comp_id: str,
        reason: Optional[str] = None,
        user: str = "system",
    ) -> Optional[CompSet]:
        """
        Remove one comparable from a comp set and record why.

        Returns:
            Updated CompSet, or None if the set does not exist

        Raises:
            ValueError: If the comparable is not in the set
        """
        comp_set = self._sets.get(set_id)
        if comp_set is None:
            return None
        if comp_id not in comp_set.comps:
            raise ValueError(f"Comparable {comp_id} is not in comp set {set_id}")

        comp_set.comps.remove(comp_id)
        comp_set.updated_at = datetime.utcnow()

        if self._audit is not None:
            self._audit.log_event(
                AuditAction.COMPARABLE_EXCLUDED,
                user,
                {"set_id": set_id, "comp_id": comp_id, "reason": reason},
            )
        self._save_to_file()
        return comp_set

    def delete(self, set_id: str) -> bool:
        """Delete a comp set. True if deleted, False if not found."""
        if set_id in self._sets:
            del self._sets[set_id]
            self._save_to_file()
            return True
        return False

    # =========================================================================
    # Query Operations
    # =========================================================================

    def list_all(self) -> list[CompSet]:
        """All comp sets, most recently updated first."""
        return sorted(self._sets.values(), key=lambda s: s.updated_at, reverse=True)

    def get_default(self) -> Optional[CompSet]:
        """The comp set flagged as the AVM default, if any."""
        for comp_set in self._sets.values():
            if comp_set.is_default_for_avm:
                return comp_set
        return None

    def count(self) -> int:
        return len(self._sets)
