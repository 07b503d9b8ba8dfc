# mdm_app/models/party.py
"""
Party master records.

A party is a tenant's canonical business entity (vendor, customer, employee,
partner or internal unit). Its field map is made of the typed identity columns
below plus an open ``attributes`` JSON map for anything else a tenant tracks.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import Enum, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db


class PartyType(str, enum.Enum):
    VENDOR = "vendor"
    CUSTOMER = "customer"
    EMPLOYEE = "employee"
    PARTNER = "partner"
    INTERNAL = "internal"


class PartyStatus(str, enum.Enum):
    """Lifecycle states for a party record."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MERGED = "merged"
    DELETED = "deleted"


PARTY_FIELDS: tuple[str, ...] = (
    "name",
    "legal_name",
    "registration_number",
    "tax_id",
    "email",
    "phone",
    "address",
    "city",
    "country",
    "external_id",
    "source",
)
"""Typed party columns that make up the core of the field map."""


class Party(BaseModel):
    """Tenant-scoped master record subject to deduplication."""

    __tablename__ = "parties"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    party_type: Mapped[PartyType] = mapped_column(
        Enum(PartyType, name="party_type_enum"),
        nullable=False,
        default=PartyType.VENDOR,
    )
    status: Mapped[PartyStatus] = mapped_column(
        Enum(PartyStatus, name="party_status_enum"),
        nullable=False,
        default=PartyStatus.ACTIVE,
        index=True,
    )

    name: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)
    legal_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    registration_number: Mapped[str | None] = mapped_column(db.String(100), nullable=True, index=True)
    tax_id: Mapped[str | None] = mapped_column(db.String(100), nullable=True, index=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    city: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(db.String(2), nullable=True)
    external_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    source: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    attributes: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Tenant-defined fields outside the typed party columns.",
    )

    created_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)

    __table_args__ = (Index("idx_party_tenant_status", "tenant_id", "status"),)

    def __repr__(self):
        return f"<Party {self.id} {self.name!r} {self.status.value if self.status else None}>"

    def field_values(self) -> dict[str, Any]:
        """Return the full field map (typed columns plus non-null attributes)."""

        values: dict[str, Any] = {name: getattr(self, name) for name in PARTY_FIELDS}
        for key, value in (self.attributes or {}).items():
            if key in values or value is None:
                continue
            values[key] = value
        return values

    def apply_field_values(self, values: Mapping[str, Any]) -> None:
        """
        Overwrite the full field map.

        Typed columns missing from ``values`` are cleared; unknown keys land in
        ``attributes`` (null values are dropped).
        """

        for name in PARTY_FIELDS:
            setattr(self, name, values.get(name))
        extras = {key: value for key, value in values.items() if key not in PARTY_FIELDS and value is not None}
        self.attributes = extras or None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "party_type": self.party_type.value if self.party_type else None,
            "status": self.status.value if self.status else None,
            "fields": self.field_values(),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
