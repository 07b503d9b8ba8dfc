"""
Merge and unmerge transactions for party records.

A merge folds a duplicate party into its master: survivorship decides every
field, the master is rewritten, the duplicate is flagged MERGED and an ACTIVE
merge log keeps full snapshots of both records. Unmerge restores both records
from those snapshots and marks the log REVERSED. Each runs inside a single
repository transaction; a failure anywhere leaves no partial writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Sequence

from mdm_app.mdm.custom_logic import CustomResolver
from mdm_app.mdm.errors import (
    AlreadyMergedError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
)
from mdm_app.mdm.repository import PartyRepository
from mdm_app.mdm.snapshots import RecordSnapshot
from mdm_app.mdm.survivorship import FieldDecision, apply_survivorship, summarize_decisions
from mdm_app.models import MergeLogStatus, Party, PartyStatus, SurvivorshipRule
from mdm_app.models.base import utcnow

logger = logging.getLogger(__name__)

ROLE_MASTER = "master"
ROLE_DUPLICATE = "duplicate"


@dataclass(frozen=True)
class MergeResult:
    merge_log_id: int
    merged_record: RecordSnapshot
    decisions: Sequence[FieldDecision] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "merge_log_id": self.merge_log_id,
            "merged_record": self.merged_record.to_json(),
            "changed_fields": [decision.field_name for decision in self.decisions if decision.changed],
        }


@dataclass(frozen=True)
class UnmergeResult:
    master_record_id: int
    duplicate_record_id: int

    def to_dict(self) -> dict[str, int]:
        return {"master_record_id": self.master_record_id, "duplicate_record_id": self.duplicate_record_id}


class MergeService:
    """Runs merge and unmerge against a ``PartyRepository``."""

    def __init__(
        self,
        repository: PartyRepository | None = None,
        *,
        resolver: CustomResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository or PartyRepository()
        self.resolver = resolver
        self.clock = clock

    def _load_merge_inputs(
        self,
        tenant_id: str,
        master_id: int,
        duplicate_id: int,
        rule_id: int | None,
    ) -> tuple[Party, Party, SurvivorshipRule | None]:
        if master_id == duplicate_id:
            raise InvalidOperationError("Cannot merge a record with itself")

        master = self.repository.get_by_id(tenant_id, master_id)
        if master is None:
            raise NotFoundError(f"Master record {master_id} not found")
        duplicate = self.repository.get_by_id(tenant_id, duplicate_id)
        if duplicate is None:
            raise NotFoundError(f"Duplicate record {duplicate_id} not found")

        for record in (master, duplicate):
            if record.status == PartyStatus.MERGED or self.repository.has_active_participation(tenant_id, record.id):
                raise AlreadyMergedError(f"Record {record.id} already participates in an active merge")
        for record in (master, duplicate):
            if record.status != PartyStatus.ACTIVE:
                raise InvalidStateError(f"Record {record.id} is {record.status.name}, expected ACTIVE")

        rule = None
        if rule_id is not None:
            rule = self.repository.get_rule_by_id(tenant_id, rule_id)
            if rule is None:
                raise NotFoundError(f"Survivorship rule {rule_id} not found")
            if not rule.is_active:
                raise InvalidStateError(f"Survivorship rule {rule_id} is not active")
        return master, duplicate, rule

    def merge(
        self,
        tenant_id: str,
        master_id: int,
        duplicate_id: int,
        *,
        rule_id: int | None = None,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> MergeResult:
        """
        Merge ``duplicate_id`` into ``master_id``.

        Raises:
            InvalidOperationError: master and duplicate are the same record
            NotFoundError: a record or the rule is missing from the tenant
            AlreadyMergedError: a record already takes part in an ACTIVE merge,
                including when a concurrent merge wins the race
            InvalidStateError: a record is not ACTIVE or the rule is inactive
        """

        master, duplicate, rule = self._load_merge_inputs(tenant_id, master_id, duplicate_id, rule_id)
        master_snapshot = RecordSnapshot.capture(master)
        duplicate_snapshot = RecordSnapshot.capture(duplicate)
        survivorship = apply_survivorship(
            master=master_snapshot,
            duplicate=duplicate_snapshot,
            rule=rule,
            resolver=self.resolver,
        )

        with self.repository.transaction():
            merged_duplicate = self.repository.update(
                tenant_id,
                duplicate_id,
                status=PartyStatus.MERGED,
                expected_status=PartyStatus.ACTIVE,
                updated_by=performed_by,
            )
            if merged_duplicate is None:
                raise AlreadyMergedError(f"Record {duplicate_id} changed state during the merge")

            merged_master = self.repository.update(
                tenant_id,
                master_id,
                fields=survivorship.resolved_values,
                status=PartyStatus.ACTIVE,
                expected_status=PartyStatus.ACTIVE,
                updated_by=performed_by,
            )
            if merged_master is None:
                raise AlreadyMergedError(f"Record {master_id} changed state during the merge")

            merge_log = self.repository.create_merge_log(
                tenant_id=tenant_id,
                master_record_id=master_id,
                duplicate_record_id=duplicate_id,
                rule_id=rule.id if rule is not None else None,
                master_snapshot=master_snapshot.to_json(),
                duplicate_snapshot=duplicate_snapshot.to_json(),
                merge_reason=reason,
                merged_by=performed_by,
                merged_at=self.clock(),
                status=MergeLogStatus.ACTIVE,
                metadata_json={
                    "rule_name": rule.rule_name if rule is not None else None,
                    "survivorship": summarize_decisions(survivorship.decisions),
                    "stats": dict(survivorship.stats),
                },
            )
            self.repository.claim_participation(tenant_id, master_id, merge_log.id, ROLE_MASTER)
            self.repository.claim_participation(tenant_id, duplicate_id, merge_log.id, ROLE_DUPLICATE)
            merge_log_id = merge_log.id
            merged_record = RecordSnapshot.capture(merged_master)

        logger.info(
            "Merged party %s into %s for tenant %s (merge log %s, rule %s)",
            duplicate_id,
            master_id,
            tenant_id,
            merge_log_id,
            rule_id,
        )
        return MergeResult(merge_log_id=merge_log_id, merged_record=merged_record, decisions=survivorship.decisions)

    def unmerge(
        self,
        tenant_id: str,
        merge_log_id: int,
        *,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> UnmergeResult:
        """
        Reverse an ACTIVE merge, restoring both records from the log's snapshots.

        Raises:
            NotFoundError: the merge log or one of its records is missing
            InvalidStateError: the merge log is already REVERSED
        """

        merge_log = self.repository.get_merge_log_by_id(tenant_id, merge_log_id)
        if merge_log is None:
            raise NotFoundError(f"Merge log {merge_log_id} not found")
        if merge_log.status != MergeLogStatus.ACTIVE:
            raise InvalidStateError(f"Merge log {merge_log_id} is {merge_log.status.name}, expected ACTIVE")

        master_id = merge_log.master_record_id
        duplicate_id = merge_log.duplicate_record_id
        if self.repository.get_by_id(tenant_id, master_id) is None:
            raise NotFoundError(f"Master record {master_id} not found")
        if self.repository.get_by_id(tenant_id, duplicate_id) is None:
            raise NotFoundError(f"Duplicate record {duplicate_id} not found")

        master_snapshot = RecordSnapshot.from_json(merge_log.master_snapshot)
        duplicate_snapshot = RecordSnapshot.from_json(merge_log.duplicate_snapshot)

        with self.repository.transaction():
            reversed_ok = self.repository.update_merge_log_status(
                tenant_id,
                merge_log_id,
                status=MergeLogStatus.REVERSED,
                expected_status=MergeLogStatus.ACTIVE,
                unmerge_reason=reason,
                unmerged_by=performed_by,
                unmerged_at=self.clock(),
            )
            if not reversed_ok:
                raise InvalidStateError(f"Merge log {merge_log_id} was reversed concurrently")

            self.repository.update(
                tenant_id,
                duplicate_id,
                fields=duplicate_snapshot.fields,
                status=duplicate_snapshot.status,
                updated_by=performed_by,
            )
            self.repository.update(
                tenant_id,
                master_id,
                fields=master_snapshot.fields,
                status=master_snapshot.status,
                updated_by=performed_by,
            )
            self.repository.release_participations(merge_log_id)

        logger.info(
            "Reversed merge log %s for tenant %s (master %s, duplicate %s)",
            merge_log_id,
            tenant_id,
            master_id,
            duplicate_id,
        )
        return UnmergeResult(master_record_id=master_id, duplicate_record_id=duplicate_id)


__all__ = ["MergeResult", "MergeService", "UnmergeResult"]
