"""
Immutable pre-merge record state embedded in merge logs.

A snapshot is copied out of the live ``Party`` row, so later writes to the row
never leak into the audit trail, and it is complete (every field, the status and
the audit columns) so unmerge can restore it without diffing.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from mdm_app.models import Party, PartyStatus


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on load)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_datetime(value: object | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


@dataclass(frozen=True)
class RecordSnapshot:
    record_id: int
    tenant_id: str
    status: PartyStatus
    fields: Mapping[str, Any]
    updated_at: datetime | None = None
    updated_by: str | None = None

    @classmethod
    def capture(cls, party: Party) -> "RecordSnapshot":
        return cls(
            record_id=party.id,
            tenant_id=party.tenant_id,
            status=party.status,
            fields=MappingProxyType(copy.deepcopy(party.field_values())),
            updated_at=as_utc(party.updated_at),
            updated_by=party.updated_by,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "tenant_id": self.tenant_id,
            "status": self.status.name,
            "fields": copy.deepcopy(dict(self.fields)),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "RecordSnapshot":
        status_raw = data.get("status") or PartyStatus.ACTIVE.name
        status = PartyStatus[status_raw] if status_raw in PartyStatus.__members__ else PartyStatus(status_raw)
        return cls(
            record_id=int(data["record_id"]),
            tenant_id=str(data.get("tenant_id") or ""),
            status=status,
            fields=MappingProxyType(copy.deepcopy(dict(data.get("fields") or {}))),
            updated_at=_parse_datetime(data.get("updated_at")),
            updated_by=data.get("updated_by"),
        )


__all__ = ["RecordSnapshot", "as_utc"]
