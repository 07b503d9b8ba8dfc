"""
Field-level survivorship for merging a duplicate party into its master.

Each field present on either record is resolved with the strategy the rule maps
it to (MASTER when the rule is silent or absent). The result carries the
resolved field map plus per-field decision metadata that the merge log keeps as
its audit summary.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, MutableMapping, Sequence

from mdm_app.mdm.custom_logic import USE_DEFAULT, CustomLogicError, CustomResolver, build_resolver
from mdm_app.mdm.snapshots import RecordSnapshot, as_utc
from mdm_app.models import SurvivorshipRule, SurvivorshipStrategy

logger = logging.getLogger(__name__)

SOURCE_MASTER = "master"
SOURCE_DUPLICATE = "duplicate"


@dataclass(frozen=True)
class FieldDecision:
    field_name: str
    strategy: SurvivorshipStrategy
    source: str
    value: Any
    changed: bool
    reason: str


@dataclass(frozen=True)
class SurvivorshipResult:
    resolved_values: Mapping[str, Any]
    decisions: Sequence[FieldDecision]
    stats: Mapping[str, int]


def _pick_by_time(
    master_value: Any,
    duplicate_value: Any,
    master_updated_at: datetime | None,
    duplicate_updated_at: datetime | None,
    *,
    newer: bool,
) -> tuple[Any, str]:
    master_ts = as_utc(master_updated_at)
    duplicate_ts = as_utc(duplicate_updated_at)
    if master_ts is None or duplicate_ts is None or master_ts == duplicate_ts:
        return master_value, SOURCE_MASTER
    duplicate_wins = duplicate_ts > master_ts if newer else duplicate_ts < master_ts
    if duplicate_wins:
        return duplicate_value, SOURCE_DUPLICATE
    return master_value, SOURCE_MASTER


def _resolve_custom(
    field_name: str,
    master_value: Any,
    duplicate_value: Any,
    resolver: CustomResolver | None,
) -> tuple[Any, str]:
    if resolver is None:
        return master_value, SOURCE_MASTER
    try:
        value = resolver.resolve(master_value, duplicate_value, field_name)
    except CustomLogicError as exc:
        logger.warning("Custom survivorship logic failed for field %s, keeping master value: %s", field_name, exc)
        return master_value, SOURCE_MASTER
    except Exception:
        logger.warning(
            "Custom survivorship resolver raised for field %s, keeping master value",
            field_name,
            exc_info=True,
        )
        return master_value, SOURCE_MASTER
    if value is USE_DEFAULT:
        return master_value, SOURCE_MASTER
    if value == master_value:
        return value, SOURCE_MASTER
    if value == duplicate_value:
        return value, SOURCE_DUPLICATE
    return value, "custom"


def _resolve_with_source(
    field_name: str,
    master_value: Any,
    duplicate_value: Any,
    master_updated_at: datetime | None,
    duplicate_updated_at: datetime | None,
    strategy: SurvivorshipStrategy,
    resolver: CustomResolver | None,
) -> tuple[Any, str]:
    if strategy == SurvivorshipStrategy.DUPLICATE:
        return duplicate_value, SOURCE_DUPLICATE
    if strategy == SurvivorshipStrategy.NEWER:
        return _pick_by_time(master_value, duplicate_value, master_updated_at, duplicate_updated_at, newer=True)
    if strategy == SurvivorshipStrategy.OLDER:
        return _pick_by_time(master_value, duplicate_value, master_updated_at, duplicate_updated_at, newer=False)
    if strategy == SurvivorshipStrategy.CUSTOM:
        return _resolve_custom(field_name, master_value, duplicate_value, resolver)
    return master_value, SOURCE_MASTER


def resolve_field(
    field_name: str,
    master_value: Any,
    duplicate_value: Any,
    master_updated_at: datetime | None,
    duplicate_updated_at: datetime | None,
    strategy: SurvivorshipStrategy | str,
    custom_logic: str | CustomResolver | None = None,
) -> Any:
    """
    Pick the surviving value for one field.

    ``custom_logic`` is either an expression string or a ``CustomResolver``.
    Invalid expressions behave like "use default" and keep the master value.
    """

    strategy = SurvivorshipStrategy.coerce(strategy)
    resolver: CustomResolver | None = None
    if strategy == SurvivorshipStrategy.CUSTOM:
        resolver = _as_resolver(custom_logic)
    value, _ = _resolve_with_source(
        field_name,
        master_value,
        duplicate_value,
        master_updated_at,
        duplicate_updated_at,
        strategy,
        resolver,
    )
    return value


def _as_resolver(custom_logic: str | CustomResolver | None) -> CustomResolver | None:
    if custom_logic is None or isinstance(custom_logic, str):
        try:
            return build_resolver(custom_logic)
        except CustomLogicError as exc:
            logger.warning("Ignoring unparseable custom survivorship logic: %s", exc)
            return None
    return custom_logic


def _ordered_field_names(master_fields: Mapping[str, Any], duplicate_fields: Mapping[str, Any]) -> list[str]:
    names = list(master_fields.keys())
    names.extend(name for name in duplicate_fields.keys() if name not in master_fields)
    return names


def apply_survivorship(
    *,
    master: RecordSnapshot,
    duplicate: RecordSnapshot,
    rule: SurvivorshipRule | None = None,
    resolver: CustomResolver | None = None,
) -> SurvivorshipResult:
    """
    Resolve every field present in either snapshot.

    ``resolver`` overrides the rule's ``custom_logic`` for CUSTOM fields; when
    omitted the rule's expression (if any) is compiled once for the merge.
    """

    if resolver is None and rule is not None and rule.custom_logic:
        resolver = _as_resolver(rule.custom_logic)

    resolved: MutableMapping[str, Any] = {}
    decisions: list[FieldDecision] = []
    stats: Counter[str] = Counter()

    for field_name in _ordered_field_names(master.fields, duplicate.fields):
        master_value = master.fields.get(field_name)
        duplicate_value = duplicate.fields.get(field_name)
        strategy = rule.strategy_for(field_name) if rule is not None else SurvivorshipStrategy.MASTER
        value, source = _resolve_with_source(
            field_name,
            master_value,
            duplicate_value,
            master.updated_at,
            duplicate.updated_at,
            strategy,
            resolver,
        )
        resolved[field_name] = value
        changed = value != master_value

        stats[f"{source}_wins"] += 1
        stats["fields_changed" if changed else "fields_unchanged"] += 1

        decisions.append(
            FieldDecision(
                field_name=field_name,
                strategy=strategy,
                source=source,
                value=value,
                changed=changed,
                reason=f"{strategy.name} selected {source}",
            )
        )

    return SurvivorshipResult(resolved_values=dict(resolved), decisions=tuple(decisions), stats=dict(stats))


def summarize_decisions(decisions: Iterable[FieldDecision]) -> Mapping[str, Any]:
    """
    Produce a JSON-friendly summary of a merge's field decisions for the merge log.
    """

    summary: MutableMapping[str, Any] = {"fields": {}, "changed": [], "by_strategy": {}}
    by_strategy: Counter[str] = Counter()
    for decision in decisions:
        summary["fields"][decision.field_name] = {
            "strategy": decision.strategy.name,
            "source": decision.source,
            "changed": decision.changed,
        }
        if decision.changed:
            summary["changed"].append(decision.field_name)
        by_strategy[decision.strategy.name] += 1
    summary["by_strategy"] = dict(by_strategy)
    return dict(summary)


__all__ = [
    "FieldDecision",
    "SurvivorshipResult",
    "apply_survivorship",
    "resolve_field",
    "summarize_decisions",
]
