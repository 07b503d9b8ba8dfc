"""
Duplicate candidate discovery for a single target party.

Every ACTIVE record in the target's tenant is scored against the target with
the ``SimilarityScorer``; records already linked to the target through an
ACTIVE merge are skipped. Nothing is written.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping

from mdm_app.mdm.errors import InvalidOperationError, NotFoundError
from mdm_app.mdm.repository import PartyRepository
from mdm_app.mdm.similarity import SimilarityScorer, summarize_features
from mdm_app.models import MergeLogStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateCandidate:
    candidate_id: int
    score: float
    features: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {"candidate_id": self.candidate_id, "score": self.score, "features": dict(self.features)}


def validate_threshold(threshold: float) -> float:
    try:
        value = float(threshold)
    except (TypeError, ValueError) as exc:
        raise InvalidOperationError(f"Threshold must be a number between 0 and 100, got {threshold!r}") from exc
    if math.isnan(value) or value < 0 or value > 100:
        raise InvalidOperationError(f"Threshold must be between 0 and 100, got {threshold!r}")
    return value


class DuplicateFinder:
    """Ranks a tenant's active parties by similarity to a target party."""

    def __init__(self, repository: PartyRepository | None = None, scorer: SimilarityScorer | None = None):
        self.repository = repository or PartyRepository()
        self.scorer = scorer or SimilarityScorer()

    def _linked_record_ids(self, tenant_id: str, target_id: int) -> set[int]:
        linked: set[int] = set()
        for merge_log in self.repository.list_merge_logs_for_record(
            tenant_id, target_id, status=MergeLogStatus.ACTIVE
        ):
            linked.add(merge_log.master_record_id)
            linked.add(merge_log.duplicate_record_id)
        linked.discard(target_id)
        return linked

    def find_duplicates(
        self,
        tenant_id: str,
        target_record_id: int,
        threshold: float,
        *,
        limit: int | None = None,
    ) -> list[DuplicateCandidate]:
        """
        Return candidates scoring at least ``threshold``.

        Ordered by score descending, then candidate id ascending. ``limit``
        truncates after ordering.
        """

        threshold = validate_threshold(threshold)
        target = self.repository.get_by_id(tenant_id, target_record_id)
        if target is None:
            raise NotFoundError(f"Party {target_record_id} not found")

        excluded = self._linked_record_ids(tenant_id, target.id)
        excluded.add(target.id)
        target_fields = target.field_values()

        candidates: list[DuplicateCandidate] = []
        scanned = 0
        for record in self.repository.list_active(tenant_id, exclude_ids=frozenset(excluded)):
            scanned += 1
            features = self.scorer.explain(target_fields, record.field_values())
            score = self.scorer.weighted_score(features)
            if score < threshold:
                continue
            candidates.append(
                DuplicateCandidate(candidate_id=record.id, score=score, features=summarize_features(features))
            )

        candidates.sort(key=lambda candidate: (-candidate.score, candidate.candidate_id))
        if limit is not None:
            candidates = candidates[: max(0, int(limit))]

        logger.debug(
            "Duplicate scan for party %s in tenant %s compared %s records, %s above %.2f",
            target.id,
            tenant_id,
            scanned,
            len(candidates),
            threshold,
        )
        return candidates


__all__ = ["DuplicateCandidate", "DuplicateFinder", "validate_threshold"]
