"""
Survivorship Rule Service - tenant-scoped management of survivorship rules
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mdm_app.mdm.custom_logic import CustomLogicError, parse_expression
from mdm_app.mdm.errors import InvalidOperationError, NotFoundError
from mdm_app.models import SurvivorshipRule, SurvivorshipStrategy, db

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"rule_name", "description", "field_mappings", "custom_logic", "priority", "is_active"})


def _normalize_field_mappings(field_mappings: Mapping[str, Any] | None) -> dict[str, str]:
    if field_mappings is None:
        return {}
    if not isinstance(field_mappings, Mapping):
        raise InvalidOperationError("field_mappings must be an object of field name -> strategy")
    normalized: dict[str, str] = {}
    for field_name, strategy in field_mappings.items():
        name = str(field_name or "").strip()
        if not name:
            raise InvalidOperationError("field_mappings contains an empty field name")
        try:
            normalized[name] = SurvivorshipStrategy.coerce(strategy).name
        except ValueError as exc:
            allowed = ", ".join(member.name for member in SurvivorshipStrategy)
            raise InvalidOperationError(
                f"Unknown strategy {strategy!r} for field {name}; expected one of {allowed}"
            ) from exc
    return normalized


def validate_rule_definition(
    *,
    rule_name: str | None,
    field_mappings: Mapping[str, Any] | None,
    custom_logic: str | None,
    priority: Any,
) -> tuple[str, dict[str, str], str | None, int]:
    """
    Check a rule definition and return its normalized parts.

    Raises ``InvalidOperationError`` for an empty name, an unknown strategy, a
    CUSTOM mapping without custom logic, custom logic outside the restricted
    expression grammar or a non-integer priority.
    """

    name = str(rule_name or "").strip()
    if not name:
        raise InvalidOperationError("rule_name is required")
    if len(name) > 255:
        raise InvalidOperationError("rule_name must be at most 255 characters")

    mappings = _normalize_field_mappings(field_mappings)

    logic = custom_logic.strip() if isinstance(custom_logic, str) else custom_logic
    logic = logic or None
    if logic is not None:
        try:
            parse_expression(logic)
        except CustomLogicError as exc:
            raise InvalidOperationError(str(exc)) from exc
    if logic is None and SurvivorshipStrategy.CUSTOM.name in mappings.values():
        raise InvalidOperationError("custom_logic is required when a field uses the CUSTOM strategy")

    if isinstance(priority, bool):
        raise InvalidOperationError("priority must be an integer")
    try:
        priority_value = int(priority)
    except (TypeError, ValueError) as exc:
        raise InvalidOperationError("priority must be an integer") from exc

    return name, mappings, logic, priority_value


class SurvivorshipRuleService:
    """Create, read, update and delete survivorship rules for a tenant."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def _commit(self, rule_name: str) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise InvalidOperationError(f"A survivorship rule named {rule_name!r} already exists") from exc

    def create_rule(
        self,
        tenant_id: str,
        *,
        rule_name: str,
        field_mappings: Mapping[str, Any] | None = None,
        description: str | None = None,
        custom_logic: str | None = None,
        priority: int = 100,
        is_active: bool = True,
        created_by: str | None = None,
    ) -> SurvivorshipRule:
        name, mappings, logic, priority_value = validate_rule_definition(
            rule_name=rule_name,
            field_mappings=field_mappings,
            custom_logic=custom_logic,
            priority=priority,
        )
        rule = SurvivorshipRule(
            tenant_id=tenant_id,
            rule_name=name,
            description=description,
            field_mappings=mappings,
            custom_logic=logic,
            priority=priority_value,
            is_active=bool(is_active),
            created_by=created_by,
            updated_by=created_by,
        )
        self.session.add(rule)
        self._commit(name)
        logger.info("Created survivorship rule %s (%s) for tenant %s", rule.id, name, tenant_id)
        return rule

    def get_rule(self, tenant_id: str, rule_id: int) -> SurvivorshipRule:
        rule = self.session.query(SurvivorshipRule).filter_by(tenant_id=tenant_id, id=rule_id).first()
        if rule is None:
            raise NotFoundError(f"Survivorship rule {rule_id} not found")
        return rule

    def list_rules(self, tenant_id: str, *, active_only: bool = False) -> list[SurvivorshipRule]:
        query = self.session.query(SurvivorshipRule).filter(SurvivorshipRule.tenant_id == tenant_id)
        if active_only:
            query = query.filter(SurvivorshipRule.is_active.is_(True))
        return query.order_by(SurvivorshipRule.priority.asc(), SurvivorshipRule.id.asc()).all()

    def update_rule(
        self,
        tenant_id: str,
        rule_id: int,
        *,
        updated_by: str | None = None,
        **changes: Any,
    ) -> SurvivorshipRule:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidOperationError(f"Cannot update rule attributes: {', '.join(sorted(unknown))}")

        rule = self.get_rule(tenant_id, rule_id)
        name, mappings, logic, priority_value = validate_rule_definition(
            rule_name=changes.get("rule_name", rule.rule_name),
            field_mappings=changes.get("field_mappings", rule.field_mappings),
            custom_logic=changes.get("custom_logic", rule.custom_logic),
            priority=changes.get("priority", rule.priority),
        )
        rule.rule_name = name
        rule.field_mappings = mappings
        rule.custom_logic = logic
        rule.priority = priority_value
        if "description" in changes:
            rule.description = changes["description"]
        if "is_active" in changes:
            rule.is_active = bool(changes["is_active"])
        rule.updated_by = updated_by
        self._commit(name)
        logger.info("Updated survivorship rule %s for tenant %s", rule_id, tenant_id)
        return rule

    def delete_rule(self, tenant_id: str, rule_id: int) -> None:
        """Delete a rule; merge logs that referenced it keep their history."""

        rule = self.get_rule(tenant_id, rule_id)
        self.session.delete(rule)
        self.session.commit()
        logger.info("Deleted survivorship rule %s for tenant %s", rule_id, tenant_id)


__all__ = ["SurvivorshipRuleService", "validate_rule_definition"]
