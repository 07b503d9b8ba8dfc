"""
Party deduplication and merge engine.
"""

from __future__ import annotations

from flask import Flask

from .cli import mdm_cli
from .custom_logic import USE_DEFAULT, CustomLogicError, CustomResolver, ExpressionResolver
from .duplicates import DuplicateCandidate, DuplicateFinder
from .errors import AlreadyMergedError, InvalidOperationError, InvalidStateError, MDMError, NotFoundError
from .merge_service import MergeResult, MergeService, UnmergeResult
from .quality import QualityScore, QualityScorer
from .repository import PartyRepository
from .rule_service import SurvivorshipRuleService
from .service import MDMService, MergeOutcome
from .similarity import SimilarityScorer
from .snapshots import RecordSnapshot
from .survivorship import FieldDecision, SurvivorshipResult, apply_survivorship, resolve_field


def init_mdm(app: Flask) -> None:
    """Register the ``flask mdm`` command group."""

    if mdm_cli.name in app.cli.commands:
        app.cli.commands.pop(mdm_cli.name)
    app.cli.add_command(mdm_cli)
    app.logger.debug("MDM commands registered")


__all__ = [
    "AlreadyMergedError",
    "CustomLogicError",
    "CustomResolver",
    "DuplicateCandidate",
    "DuplicateFinder",
    "ExpressionResolver",
    "FieldDecision",
    "InvalidOperationError",
    "InvalidStateError",
    "MDMError",
    "MDMService",
    "MergeOutcome",
    "MergeResult",
    "MergeService",
    "NotFoundError",
    "PartyRepository",
    "QualityScore",
    "QualityScorer",
    "RecordSnapshot",
    "SimilarityScorer",
    "SurvivorshipResult",
    "SurvivorshipRuleService",
    "USE_DEFAULT",
    "UnmergeResult",
    "apply_survivorship",
    "init_mdm",
    "resolve_field",
]
