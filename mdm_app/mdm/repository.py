"""
SQLAlchemy-backed record repository used by the merge engine.

All reads are tenant-scoped: a row from another tenant is reported exactly like
a missing one. Writes happen inside ``transaction()``, which commits on success
and rolls back on any exception before re-raising it.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mdm_app.mdm.errors import AlreadyMergedError
from mdm_app.models import (
    MergeLog,
    MergeLogStatus,
    MergeParticipation,
    Party,
    PartyStatus,
    SurvivorshipRule,
    db,
)
from mdm_app.models.base import utcnow


class PartyRepository:
    """Persistence operations for parties, merge logs and survivorship rules."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # Parties ---------------------------------------------------------------

    def get_by_id(self, tenant_id: str, record_id: int) -> Party | None:
        return self.session.query(Party).filter_by(tenant_id=tenant_id, id=record_id).first()

    def list_active(self, tenant_id: str, *, exclude_ids: set[int] | frozenset[int] = frozenset()) -> list[Party]:
        query = self.session.query(Party).filter(
            Party.tenant_id == tenant_id,
            Party.status == PartyStatus.ACTIVE,
        )
        if exclude_ids:
            query = query.filter(Party.id.notin_(sorted(exclude_ids)))
        return query.order_by(Party.id.asc()).all()

    def update(
        self,
        tenant_id: str,
        record_id: int,
        *,
        fields: Mapping[str, Any] | None = None,
        status: PartyStatus | None = None,
        expected_status: PartyStatus | None = None,
        updated_by: str | None = None,
    ) -> Party | None:
        """
        Write a record's field map and/or status.

        With ``expected_status`` the status change is a compare-and-swap issued
        as a single conditional UPDATE; None is returned when the stored status
        no longer matches (the caller lost a race).
        """

        if expected_status is not None:
            new_status = status if status is not None else expected_status
            rows = (
                self.session.query(Party)
                .filter(
                    Party.tenant_id == tenant_id,
                    Party.id == record_id,
                    Party.status == expected_status,
                )
                .update(
                    {
                        Party.status: new_status,
                        Party.updated_at: utcnow(),
                        Party.updated_by: updated_by,
                    },
                    synchronize_session="fetch",
                )
            )
            if rows != 1:
                return None
            status = None

        party = self.get_by_id(tenant_id, record_id)
        if party is None:
            return None
        if fields is not None:
            party.apply_field_values(fields)
        if status is not None:
            party.status = status
        party.updated_by = updated_by
        party.updated_at = utcnow()
        self.session.flush()
        return party

    # Merge logs ------------------------------------------------------------

    def create_merge_log(self, **values: Any) -> MergeLog:
        merge_log = MergeLog(**values)
        self.session.add(merge_log)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise AlreadyMergedError(
                f"Record {values.get('duplicate_record_id')} is already the duplicate of an active merge"
            ) from exc
        return merge_log

    def update_merge_log_status(
        self,
        tenant_id: str,
        merge_log_id: int,
        *,
        status: MergeLogStatus,
        expected_status: MergeLogStatus = MergeLogStatus.ACTIVE,
        unmerge_reason: str | None = None,
        unmerged_by: str | None = None,
        unmerged_at: datetime | None = None,
    ) -> bool:
        """Compare-and-swap a merge log's status; False when it was not in ``expected_status``."""

        rows = (
            self.session.query(MergeLog)
            .filter(
                MergeLog.tenant_id == tenant_id,
                MergeLog.id == merge_log_id,
                MergeLog.status == expected_status,
            )
            .update(
                {
                    MergeLog.status: status,
                    MergeLog.unmerge_reason: unmerge_reason,
                    MergeLog.unmerged_by: unmerged_by,
                    MergeLog.unmerged_at: unmerged_at or utcnow(),
                    MergeLog.updated_at: utcnow(),
                },
                synchronize_session="fetch",
            )
        )
        return rows == 1

    def get_merge_log_by_id(self, tenant_id: str, merge_log_id: int) -> MergeLog | None:
        return self.session.query(MergeLog).filter_by(tenant_id=tenant_id, id=merge_log_id).first()

    def list_merge_logs_for_record(
        self,
        tenant_id: str,
        record_id: int,
        *,
        limit: int | None = None,
        status: MergeLogStatus | None = None,
    ) -> list[MergeLog]:
        """Merge logs where the record is master or duplicate, newest first."""

        query = self.session.query(MergeLog).filter(
            MergeLog.tenant_id == tenant_id,
            or_(MergeLog.master_record_id == record_id, MergeLog.duplicate_record_id == record_id),
        )
        if status is not None:
            query = query.filter(MergeLog.status == status)
        query = query.order_by(MergeLog.merged_at.desc(), MergeLog.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    # Rules -----------------------------------------------------------------

    def get_rule_by_id(self, tenant_id: str, rule_id: int) -> SurvivorshipRule | None:
        return self.session.query(SurvivorshipRule).filter_by(tenant_id=tenant_id, id=rule_id).first()

    # Participation ---------------------------------------------------------

    def has_active_participation(self, tenant_id: str, record_id: int) -> bool:
        return (
            self.session.query(MergeParticipation.id)
            .filter_by(tenant_id=tenant_id, record_id=record_id)
            .first()
            is not None
        )

    def claim_participation(self, tenant_id: str, record_id: int, merge_log_id: int, role: str) -> MergeParticipation:
        """Insert the record's participation row; the unique record_id makes this the race arbiter."""

        participation = MergeParticipation(
            tenant_id=tenant_id,
            record_id=record_id,
            merge_log_id=merge_log_id,
            role=role,
        )
        self.session.add(participation)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise AlreadyMergedError(f"Record {record_id} already participates in an active merge") from exc
        return participation

    def release_participations(self, merge_log_id: int) -> int:
        return (
            self.session.query(MergeParticipation)
            .filter(MergeParticipation.merge_log_id == merge_log_id)
            .delete(synchronize_session="fetch")
        )


__all__ = ["PartyRepository"]
