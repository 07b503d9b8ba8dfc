# mdm_app/models/mdm.py
"""
SQLAlchemy models for survivorship rules, merge history and merge participation.

``merge_log`` rows are append-only audit entries; only their status and unmerge
columns ever change. ``merge_participations`` holds one row per record that is
currently part of an ACTIVE merge, and its unique ``record_id`` is what stops
two concurrent merges from both claiming the same record.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db, utcnow


class SurvivorshipStrategy(str, enum.Enum):
    """How a single field's surviving value is chosen during a merge."""

    MASTER = "master"
    DUPLICATE = "duplicate"
    NEWER = "newer"
    OLDER = "older"
    CUSTOM = "custom"

    @classmethod
    def coerce(cls, value: object) -> "SurvivorshipStrategy":
        """Accept enum members, names (``NEWER``) or values (``newer``)."""

        if isinstance(value, cls):
            return value
        token = str(value or "").strip()
        if token.upper() in cls.__members__:
            return cls[token.upper()]
        return cls(token.lower())


class SurvivorshipRule(BaseModel):
    """Tenant-defined field survival policy referenced by id at merge time."""

    __tablename__ = "survivorship_rules"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    rule_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    field_mappings: Mapped[dict] = mapped_column(
        db.JSON,
        nullable=False,
        default=dict,
        comment="Field name -> strategy name (MASTER, DUPLICATE, NEWER, OLDER, CUSTOM).",
    )
    custom_logic: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    priority: Mapped[int] = mapped_column(db.Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True, index=True)
    created_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "rule_name", name="uq_survivorship_rule_tenant_name"),
        Index("idx_survivorship_rule_tenant_priority", "tenant_id", "priority"),
        CheckConstraint("rule_name <> ''", name="ck_survivorship_rule_name_non_empty"),
    )

    def strategy_for(self, field_name: str) -> SurvivorshipStrategy:
        raw = (self.field_mappings or {}).get(field_name)
        if raw is None:
            return SurvivorshipStrategy.MASTER
        return SurvivorshipStrategy.coerce(raw)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "rule_name": self.rule_name,
            "description": self.description,
            "field_mappings": dict(self.field_mappings or {}),
            "custom_logic": self.custom_logic,
            "priority": self.priority,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class MergeLogStatus(str, enum.Enum):
    ACTIVE = "active"
    REVERSED = "reversed"


class MergeLog(BaseModel):
    """Append-only audit record of one merge and, later, its reversal."""

    __tablename__ = "merge_log"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    master_record_id: Mapped[int] = mapped_column(
        ForeignKey("parties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    duplicate_record_id: Mapped[int] = mapped_column(
        ForeignKey("parties.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    rule_id: Mapped[int | None] = mapped_column(
        db.Integer,
        nullable=True,
        index=True,
        comment="Rule applied at merge time (kept after the rule is deleted); null means MASTER-wins.",
    )
    master_snapshot: Mapped[dict] = mapped_column(db.JSON, nullable=False)
    duplicate_snapshot: Mapped[dict] = mapped_column(db.JSON, nullable=False)
    merge_reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    merged_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    merged_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    status: Mapped[MergeLogStatus] = mapped_column(
        Enum(MergeLogStatus, name="merge_log_status_enum"),
        nullable=False,
        default=MergeLogStatus.ACTIVE,
        index=True,
    )
    unmerge_reason: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    unmerged_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    unmerged_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Merge metadata (survivorship decision summary, resolved field names).",
    )

    master_record = relationship("Party", foreign_keys=[master_record_id])
    duplicate_record = relationship("Party", foreign_keys=[duplicate_record_id])

    __table_args__ = (
        Index("idx_merge_log_tenant_master", "tenant_id", "master_record_id"),
        Index("idx_merge_log_tenant_duplicate", "tenant_id", "duplicate_record_id"),
        Index(
            "uq_merge_log_active_duplicate",
            "duplicate_record_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        CheckConstraint("master_record_id <> duplicate_record_id", name="ck_merge_log_distinct_records"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "master_record_id": self.master_record_id,
            "duplicate_record_id": self.duplicate_record_id,
            "rule_id": self.rule_id,
            "master_snapshot": self.master_snapshot,
            "duplicate_snapshot": self.duplicate_snapshot,
            "merge_reason": self.merge_reason,
            "merged_by": self.merged_by,
            "merged_at": self.merged_at.isoformat() if self.merged_at else None,
            "status": self.status.value if self.status else None,
            "unmerge_reason": self.unmerge_reason,
            "unmerged_by": self.unmerged_by,
            "unmerged_at": self.unmerged_at.isoformat() if self.unmerged_at else None,
            "metadata": self.metadata_json or {},
        }


class MergeParticipation(BaseModel):
    """A record's claim on the single ACTIVE merge it takes part in."""

    __tablename__ = "merge_participations"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(db.String(64), nullable=False, index=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("parties.id", ondelete="CASCADE"),
        nullable=False,
    )
    merge_log_id: Mapped[int] = mapped_column(
        ForeignKey("merge_log.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(db.String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("record_id", name="uq_merge_participation_record"),
        CheckConstraint("role IN ('master', 'duplicate')", name="ck_merge_participation_role"),
    )
