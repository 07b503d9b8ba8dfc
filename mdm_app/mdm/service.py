"""
MDM service facade.

Single entry point for callers (CLI, future API layers): duplicate search,
merge, unmerge, quality scoring and merge history. Each operation is logged
and recorded in Prometheus metrics; engine errors propagate unchanged.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from flask import current_app, has_app_context

from config.monitoring import MdmMonitoring
from config.similarity import load_profile
from mdm_app.mdm.custom_logic import CustomResolver
from mdm_app.mdm.duplicates import DuplicateCandidate, DuplicateFinder
from mdm_app.mdm.errors import AlreadyMergedError, MDMError, NotFoundError
from mdm_app.mdm.merge_service import MergeResult, MergeService, UnmergeResult
from mdm_app.mdm.quality import QualityScore, QualityScorer
from mdm_app.mdm.repository import PartyRepository
from mdm_app.mdm.similarity import SimilarityScorer
from mdm_app.models import MergeLog

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_THRESHOLD = 75
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 100


def _config() -> Mapping[str, Any]:
    if has_app_context():
        return current_app.config
    return {}


def _outcome(exc: BaseException) -> str:
    if isinstance(exc, AlreadyMergedError):
        return "already_merged"
    if isinstance(exc, MDMError):
        return type(exc).__name__.replace("Error", "").lower()
    return "error"


@dataclass(frozen=True)
class MergeOutcome:
    """A merge result with the master's quality score recomputed afterwards."""

    result: MergeResult
    quality: QualityScore | None = None

    @property
    def merge_log_id(self) -> int:
        return self.result.merge_log_id

    def to_dict(self) -> dict[str, Any]:
        payload = self.result.to_dict()
        payload["quality"] = self.quality.to_dict() if self.quality else None
        return payload


class MDMService:
    """Facade over the duplicate finder, merge orchestrator and quality scorer."""

    def __init__(
        self,
        repository: PartyRepository | None = None,
        *,
        scorer: SimilarityScorer | None = None,
        quality_scorer: QualityScorer | None = None,
        resolver: CustomResolver | None = None,
    ):
        self.repository = repository or PartyRepository()
        config = _config()
        self.scorer = scorer or SimilarityScorer(load_profile(config))
        self.finder = DuplicateFinder(self.repository, self.scorer)
        self.merger = MergeService(self.repository, resolver=resolver)
        self.quality_scorer = quality_scorer or QualityScorer()

    def find_party_duplicates(
        self,
        tenant_id: str,
        party_id: int,
        threshold: float | None = None,
        *,
        limit: int | None = None,
    ) -> list[DuplicateCandidate]:
        if threshold is None:
            threshold = _config().get("MDM_DUPLICATE_THRESHOLD_DEFAULT", DEFAULT_DUPLICATE_THRESHOLD)

        started = time.perf_counter()
        try:
            candidates = self.finder.find_duplicates(tenant_id, party_id, threshold, limit=limit)
        except Exception as exc:
            MdmMonitoring.record_duplicate_search(
                duration_seconds=time.perf_counter() - started,
                status=_outcome(exc),
                result_count=0,
            )
            raise
        MdmMonitoring.record_duplicate_search(
            duration_seconds=time.perf_counter() - started,
            status="success",
            result_count=len(candidates),
        )
        logger.info(
            "Duplicate search completed",
            extra={
                "tenant_id": tenant_id,
                "party_id": party_id,
                "threshold": threshold,
                "candidate_count": len(candidates),
            },
        )
        return candidates

    def merge_parties(
        self,
        tenant_id: str,
        master_id: int,
        duplicate_id: int,
        *,
        rule_id: int | None = None,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> MergeOutcome:
        started = time.perf_counter()
        try:
            result = self.merger.merge(
                tenant_id,
                master_id,
                duplicate_id,
                rule_id=rule_id,
                reason=reason,
                performed_by=performed_by,
            )
        except Exception as exc:
            MdmMonitoring.record_merge(duration_seconds=time.perf_counter() - started, outcome=_outcome(exc))
            logger.warning(
                "Merge of party %s into %s failed: %s",
                duplicate_id,
                master_id,
                exc,
                extra={"tenant_id": tenant_id, "master_id": master_id, "duplicate_id": duplicate_id},
            )
            raise
        MdmMonitoring.record_merge(duration_seconds=time.perf_counter() - started, outcome="success")

        quality = None
        if _config().get("MDM_SCORE_QUALITY_AFTER_MERGE", True):
            quality = self.quality_scorer.score(result.merged_record)
            MdmMonitoring.record_quality_score(quality.score)

        logger.info(
            "Parties merged",
            extra={
                "tenant_id": tenant_id,
                "master_id": master_id,
                "duplicate_id": duplicate_id,
                "merge_log_id": result.merge_log_id,
                "rule_id": rule_id,
                "quality_score": quality.score if quality else None,
            },
        )
        return MergeOutcome(result=result, quality=quality)

    def unmerge_party(
        self,
        tenant_id: str,
        merge_log_id: int,
        *,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> UnmergeResult:
        started = time.perf_counter()
        try:
            result = self.merger.unmerge(tenant_id, merge_log_id, reason=reason, performed_by=performed_by)
        except Exception as exc:
            MdmMonitoring.record_unmerge(duration_seconds=time.perf_counter() - started, outcome=_outcome(exc))
            raise
        MdmMonitoring.record_unmerge(duration_seconds=time.perf_counter() - started, outcome="success")
        logger.info(
            "Merge reversed",
            extra={
                "tenant_id": tenant_id,
                "merge_log_id": merge_log_id,
                "master_id": result.master_record_id,
                "duplicate_id": result.duplicate_record_id,
            },
        )
        return result

    def calculate_party_quality_score(self, tenant_id: str, party_id: int) -> QualityScore:
        party = self.repository.get_by_id(tenant_id, party_id)
        if party is None:
            raise NotFoundError(f"Party {party_id} not found")
        quality = self.quality_scorer.score(party)
        MdmMonitoring.record_quality_score(quality.score)
        logger.info(
            "Quality score calculated",
            extra={"tenant_id": tenant_id, "party_id": party_id, "score": quality.score},
        )
        return quality

    def get_merge_history(self, tenant_id: str, record_id: int, limit: int | None = None) -> list[MergeLog]:
        """Merge logs on either side of ``record_id``, newest first, any status."""

        config = _config()
        max_limit = int(config.get("MDM_MERGE_HISTORY_LIMIT_MAX", MAX_HISTORY_LIMIT))
        if limit is None:
            limit = int(config.get("MDM_MERGE_HISTORY_LIMIT_DEFAULT", DEFAULT_HISTORY_LIMIT))
        limit = max(1, min(int(limit), max_limit))
        history = self.repository.list_merge_logs_for_record(tenant_id, record_id, limit=limit)
        logger.info(
            "Merge history retrieved",
            extra={"tenant_id": tenant_id, "record_id": record_id, "count": len(history)},
        )
        return history


__all__ = ["MDMService", "MergeOutcome"]
