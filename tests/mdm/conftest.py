from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mdm_app.mdm import MDMService, MergeService, PartyRepository, SurvivorshipRuleService
from mdm_app.models import Party, PartyStatus, db

TENANT = "tenant-a"

BASE_TIME = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def party_factory(app):
    """Persist a party row; ``updated_offset_days`` shifts its updated_at from BASE_TIME."""

    def _factory(
        *,
        tenant_id: str = TENANT,
        status: PartyStatus = PartyStatus.ACTIVE,
        updated_offset_days: int = 0,
        **fields,
    ) -> Party:
        stamp = BASE_TIME + timedelta(days=updated_offset_days)
        party = Party(tenant_id=tenant_id, status=status, created_at=stamp, updated_at=stamp)
        party.apply_field_values(fields)
        db.session.add(party)
        db.session.commit()
        return party

    return _factory


@pytest.fixture
def acme_pair(party_factory):
    """Master and duplicate from the canonical Acme example."""

    master = party_factory(
        name="Acme Inc",
        tax_id="123",
        email=None,
        phone="+15551234567",
        updated_offset_days=0,
    )
    duplicate = party_factory(
        name="Acme Incorporated",
        tax_id="123",
        email="ap@acme.io",
        phone="+15551234567",
        updated_offset_days=10,
    )
    return master, duplicate


@pytest.fixture
def rule_service(app):
    return SurvivorshipRuleService()


@pytest.fixture
def rule_factory(rule_service):
    def _factory(*, tenant_id: str = TENANT, rule_name: str = "default rule", **kwargs):
        return rule_service.create_rule(tenant_id, rule_name=rule_name, **kwargs)

    return _factory


@pytest.fixture
def repository(app):
    return PartyRepository()


@pytest.fixture
def merge_service(repository):
    return MergeService(repository)


@pytest.fixture
def mdm_service(repository):
    return MDMService(repository)


@pytest.fixture
def reload_party(app):
    """Re-read a party from the database, bypassing the identity map."""

    def _reload(party_id: int) -> Party:
        db.session.expire_all()
        return db.session.get(Party, party_id)

    return _reload
