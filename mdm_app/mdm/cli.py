"""
``flask mdm`` commands exposing the MDM service facade.

Every command prints a JSON envelope ``{"success": true, "data": ..., "metadata": ...}``.
Engine errors are reported through ``click.ClickException`` (exit code 1).
"""

from __future__ import annotations

import json
from functools import wraps
from typing import Any, Optional

import click
from flask.cli import AppGroup

from mdm_app.mdm.errors import MDMError
from mdm_app.mdm.rule_service import SurvivorshipRuleService
from mdm_app.mdm.service import MDMService
from mdm_app.models import db

mdm_cli = AppGroup("mdm", help="Party deduplication, merge and data quality commands.")


def _emit(data: Any, **metadata: Any) -> None:
    payload = {"success": True, "data": data, "metadata": metadata}
    click.echo(json.dumps(payload, indent=2, default=str))


def _mdm_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except MDMError as exc:
            raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc

    return wrapper


@mdm_cli.command("init-db")
def init_db_command():
    """Create MDM tables in the configured database."""
    db.create_all()
    _emit({"tables": sorted(db.metadata.tables.keys())})


@mdm_cli.command("find-duplicates")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier.")
@click.option("--party-id", required=True, type=int, help="Target party id.")
@click.option("--threshold", type=float, help="Minimum score (0-100); defaults to MDM_DUPLICATE_THRESHOLD_DEFAULT.")
@click.option("--limit", type=int, help="Maximum number of candidates to return.")
@_mdm_errors
def find_duplicates_command(tenant_id: str, party_id: int, threshold: Optional[float], limit: Optional[int]):
    """List likely duplicates of a party."""
    candidates = MDMService().find_party_duplicates(tenant_id, party_id, threshold, limit=limit)
    _emit(
        [candidate.to_dict() for candidate in candidates],
        party_id=party_id,
        threshold=threshold,
        count=len(candidates),
    )


@mdm_cli.command("merge")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier.")
@click.option("--master-id", required=True, type=int, help="Record that survives the merge.")
@click.option("--duplicate-id", required=True, type=int, help="Record folded into the master.")
@click.option("--rule-id", type=int, help="Survivorship rule to apply (default: master wins).")
@click.option("--reason", help="Free-text merge reason kept in the audit log.")
@click.option("--performed-by", help="Actor recorded on the merge log.")
@_mdm_errors
def merge_command(
    tenant_id: str,
    master_id: int,
    duplicate_id: int,
    rule_id: Optional[int],
    reason: Optional[str],
    performed_by: Optional[str],
):
    """Merge a duplicate party into its master."""
    outcome = MDMService().merge_parties(
        tenant_id,
        master_id,
        duplicate_id,
        rule_id=rule_id,
        reason=reason,
        performed_by=performed_by,
    )
    _emit(outcome.to_dict(), master_id=master_id, duplicate_id=duplicate_id, rule_id=rule_id)


@mdm_cli.command("unmerge")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier.")
@click.option("--merge-log-id", required=True, type=int, help="Merge log entry to reverse.")
@click.option("--reason", help="Why the merge is being reversed.")
@click.option("--performed-by", help="Actor recorded on the merge log.")
@_mdm_errors
def unmerge_command(tenant_id: str, merge_log_id: int, reason: Optional[str], performed_by: Optional[str]):
    """Reverse an active merge."""
    result = MDMService().unmerge_party(tenant_id, merge_log_id, reason=reason, performed_by=performed_by)
    _emit(result.to_dict(), merge_log_id=merge_log_id)


@mdm_cli.command("quality")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier.")
@click.option("--party-id", required=True, type=int, help="Party to score.")
@_mdm_errors
def quality_command(tenant_id: str, party_id: int):
    """Compute the data quality score of a party."""
    quality = MDMService().calculate_party_quality_score(tenant_id, party_id)
    _emit(quality.to_dict(), party_id=party_id)


@mdm_cli.command("history")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier.")
@click.option("--record-id", required=True, type=int, help="Party whose merge history to show.")
@click.option("--limit", type=int, help="Maximum entries (clamped to 1-100).")
@_mdm_errors
def history_command(tenant_id: str, record_id: int, limit: Optional[int]):
    """Show merge history for a party, newest first."""
    history = MDMService().get_merge_history(tenant_id, record_id, limit)
    _emit([entry.to_dict() for entry in history], record_id=record_id, count=len(history))


@mdm_cli.command("rules-create")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier.")
@click.option("--name", "rule_name", required=True, help="Unique rule name within the tenant.")
@click.option("--mappings", default="{}", show_default=True, help='JSON object, e.g. \'{"email": "NEWER"}\'.')
@click.option("--custom-logic", help="Expression used by CUSTOM fields.")
@click.option("--priority", default=100, show_default=True, type=int, help="Lower values take precedence.")
@click.option("--description", help="Optional rule description.")
@click.option("--inactive", is_flag=True, help="Create the rule disabled.")
@click.option("--created-by", help="Actor recorded on the rule.")
@_mdm_errors
def rules_create_command(
    tenant_id: str,
    rule_name: str,
    mappings: str,
    custom_logic: Optional[str],
    priority: int,
    description: Optional[str],
    inactive: bool,
    created_by: Optional[str],
):
    """Create a survivorship rule."""
    try:
        field_mappings = json.loads(mappings)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"--mappings must be valid JSON: {exc.msg}") from exc
    rule = SurvivorshipRuleService().create_rule(
        tenant_id,
        rule_name=rule_name,
        field_mappings=field_mappings,
        description=description,
        custom_logic=custom_logic,
        priority=priority,
        is_active=not inactive,
        created_by=created_by,
    )
    _emit(rule.to_dict(), rule_id=rule.id)


@mdm_cli.command("rules-list")
@click.option("--tenant", "tenant_id", required=True, help="Tenant identifier.")
@click.option("--active-only", is_flag=True, help="Only list active rules.")
def rules_list_command(tenant_id: str, active_only: bool):
    """List survivorship rules ordered by priority."""
    rules = SurvivorshipRuleService().list_rules(tenant_id, active_only=active_only)
    _emit([rule.to_dict() for rule in rules], count=len(rules))


__all__ = ["mdm_cli"]
