from datetime import datetime, timedelta, timezone

import pytest

from mdm_app.mdm.custom_logic import USE_DEFAULT
from mdm_app.mdm.snapshots import RecordSnapshot
from mdm_app.mdm.survivorship import apply_survivorship, resolve_field, summarize_decisions
from mdm_app.models import PartyStatus, SurvivorshipRule, SurvivorshipStrategy

EARLIER = datetime(2024, 1, 1, tzinfo=timezone.utc)
LATER = EARLIER + timedelta(days=30)


def _snapshot(record_id, fields, updated_at=EARLIER):
    return RecordSnapshot(
        record_id=record_id,
        tenant_id="tenant-a",
        status=PartyStatus.ACTIVE,
        fields=fields,
        updated_at=updated_at,
    )


@pytest.mark.parametrize(
    "strategy, master_ts, duplicate_ts, expected",
    [
        (SurvivorshipStrategy.MASTER, EARLIER, LATER, "m"),
        (SurvivorshipStrategy.DUPLICATE, LATER, EARLIER, "d"),
        (SurvivorshipStrategy.NEWER, EARLIER, LATER, "d"),
        (SurvivorshipStrategy.NEWER, LATER, EARLIER, "m"),
        (SurvivorshipStrategy.NEWER, EARLIER, EARLIER, "m"),
        (SurvivorshipStrategy.NEWER, None, LATER, "m"),
        (SurvivorshipStrategy.OLDER, LATER, EARLIER, "d"),
        (SurvivorshipStrategy.OLDER, EARLIER, LATER, "m"),
        (SurvivorshipStrategy.OLDER, LATER, LATER, "m"),
        (SurvivorshipStrategy.OLDER, EARLIER, None, "m"),
        ("duplicate", EARLIER, EARLIER, "d"),
        ("NEWER", EARLIER, LATER, "d"),
    ],
)
def test_resolve_field_strategies(strategy, master_ts, duplicate_ts, expected):
    assert resolve_field("name", "m", "d", master_ts, duplicate_ts, strategy) == expected


def test_resolve_field_compares_naive_and_aware_timestamps():
    naive_later = LATER.replace(tzinfo=None)
    assert resolve_field("name", "m", "d", EARLIER, naive_later, SurvivorshipStrategy.NEWER) == "d"


def test_resolve_field_custom_expression():
    value = resolve_field("name", "Acme", "Acme Corporation", None, None, "CUSTOM", "longest(master, duplicate)")
    assert value == "Acme Corporation"


def test_resolve_field_custom_without_logic_keeps_master():
    assert resolve_field("name", "m", "d", None, None, SurvivorshipStrategy.CUSTOM) == "m"


def test_resolve_field_custom_invalid_logic_keeps_master(caplog):
    assert resolve_field("name", "m", "d", None, None, SurvivorshipStrategy.CUSTOM, "master.upper()") == "m"
    assert "unparseable" in caplog.text


def test_resolve_field_custom_evaluation_error_keeps_master(caplog):
    assert resolve_field("name", "m", 5, None, None, SurvivorshipStrategy.CUSTOM, "master < duplicate") == "m"
    assert "keeping master value" in caplog.text


def test_resolve_field_custom_resolver_object():
    class PreferDuplicate:
        def resolve(self, master_value, duplicate_value, field_name=None):
            return duplicate_value

    class UseDefault:
        def resolve(self, master_value, duplicate_value, field_name=None):
            return USE_DEFAULT

    class Broken:
        def resolve(self, master_value, duplicate_value, field_name=None):
            raise RuntimeError("boom")

    assert resolve_field("x", "m", "d", None, None, "CUSTOM", PreferDuplicate()) == "d"
    assert resolve_field("x", "m", "d", None, None, "CUSTOM", UseDefault()) == "m"
    assert resolve_field("x", "m", "d", None, None, "CUSTOM", Broken()) == "m"


def test_apply_survivorship_without_rule_keeps_master():
    master = _snapshot(1, {"name": "Acme Inc", "tax_id": "123", "email": None})
    duplicate = _snapshot(2, {"name": "Acme Incorporated", "tax_id": "123", "email": "ap@acme.io"}, LATER)

    result = apply_survivorship(master=master, duplicate=duplicate)

    assert result.resolved_values == {"name": "Acme Inc", "tax_id": "123", "email": None}
    assert all(decision.strategy == SurvivorshipStrategy.MASTER for decision in result.decisions)
    assert result.stats["fields_unchanged"] == 3
    assert "fields_changed" not in result.stats


def test_apply_survivorship_applies_rule_mappings():
    master = _snapshot(1, {"name": "Acme", "email": "old@acme.io", "phone": "+15551234567"}, EARLIER)
    duplicate = _snapshot(
        2,
        {"name": "Acme Corporation", "email": "new@acme.io", "phone": "+15559999999", "website": "acme.io"},
        LATER,
    )
    rule = SurvivorshipRule(
        tenant_id="tenant-a",
        rule_name="prefer fresh contact",
        field_mappings={"email": "NEWER", "phone": "OLDER", "name": "CUSTOM", "website": "DUPLICATE"},
        custom_logic="longest(master, duplicate)",
    )

    result = apply_survivorship(master=master, duplicate=duplicate, rule=rule)

    assert result.resolved_values == {
        "name": "Acme Corporation",
        "email": "new@acme.io",
        "phone": "+15551234567",
        "website": "acme.io",
    }
    decisions = {decision.field_name: decision for decision in result.decisions}
    assert decisions["email"].source == "duplicate"
    assert decisions["phone"].source == "master"
    assert decisions["name"].source == "duplicate"
    assert decisions["website"].changed is True
    assert result.stats["fields_changed"] == 3


def test_summarize_decisions_reports_changes():
    master = _snapshot(1, {"name": "Acme", "email": "old@acme.io"})
    duplicate = _snapshot(2, {"name": "Acme", "email": "new@acme.io"}, LATER)
    rule = SurvivorshipRule(tenant_id="tenant-a", rule_name="r", field_mappings={"email": "DUPLICATE"})

    summary = summarize_decisions(apply_survivorship(master=master, duplicate=duplicate, rule=rule).decisions)

    assert summary["changed"] == ["email"]
    assert summary["fields"]["email"] == {"strategy": "DUPLICATE", "source": "duplicate", "changed": True}
    assert summary["by_strategy"] == {"MASTER": 1, "DUPLICATE": 1}
