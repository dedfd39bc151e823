"""Audit trail export for compliance review (JSON Lines, CSV)."""

import csv
import io
import json
import logging
from typing import Any, Dict, Iterable

from .events import AuditEvent

logger = logging.getLogger(__name__)

CSV_FIELDS = (
    "event_id",
    "timestamp",
    "actor_id",
    "actor_role",
    "action",
    "resource_type",
    "resource_id",
    "category",
    "outcome",
    "details",
    "event_hash",
    "previous_hash",
)


def _flatten(event: AuditEvent) -> Dict[str, Any]:
    """One CSV row; actor and resource are spread into columns."""
    row = event.to_dict()
    actor = row.pop("actor") or {}
    resource = row.pop("resource") or {}
    row.update(
        actor_id=actor.get("actor_id", ""),
        actor_role=actor.get("role") or "",
        resource_type=resource.get("resource_type", ""),
        resource_id=resource.get("resource_id", ""),
        details=json.dumps(row["details"], default=str, sort_keys=True),
    )
    return row


class AuditExporter:
    def __init__(self, events: Iterable[AuditEvent]) -> None:
        self._events = list(events)

    def export_json(self) -> str:
        return "\n".join(json.dumps(e.to_dict(), default=str) for e in self._events)

    def export_csv(self) -> str:
        """Header plus one row per event; empty string when there are none."""
        if not self._events:
            return ""
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=CSV_FIELDS)
        writer.writeheader()
        writer.writerows(_flatten(e) for e in self._events)
        logger.info("Exported %d audit events as CSV", len(self._events))
        return buf.getvalue()
