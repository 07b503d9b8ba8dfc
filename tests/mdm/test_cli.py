import json

TENANT = "tenant-a"


def _invoke(runner, *args):
    return runner.invoke(args=["mdm", *[str(arg) for arg in args]])


def _payload(result):
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["success"] is True
    return payload


def test_find_duplicates_command(runner, acme_pair):
    master, duplicate = acme_pair

    payload = _payload(_invoke(runner, "find-duplicates", "--tenant", TENANT, "--party-id", master.id))

    assert [item["candidate_id"] for item in payload["data"]] == [duplicate.id]
    assert payload["metadata"] == {"party_id": master.id, "threshold": None, "count": 1}


def test_find_duplicates_command_reports_not_found(runner):
    result = _invoke(runner, "find-duplicates", "--tenant", TENANT, "--party-id", 999)

    assert result.exit_code == 1
    assert "NotFoundError" in result.output


def test_find_duplicates_command_rejects_bad_threshold(runner, acme_pair):
    master, _ = acme_pair
    result = _invoke(runner, "find-duplicates", "--tenant", TENANT, "--party-id", master.id, "--threshold", 101)

    assert result.exit_code == 1
    assert "InvalidOperationError" in result.output


def test_merge_and_unmerge_commands(runner, acme_pair, rule_factory, reload_party):
    master, duplicate = acme_pair
    rule = rule_factory(field_mappings={"email": "NEWER"})

    merged = _payload(
        _invoke(
            runner,
            "merge",
            "--tenant",
            TENANT,
            "--master-id",
            master.id,
            "--duplicate-id",
            duplicate.id,
            "--rule-id",
            rule.id,
            "--reason",
            "same vendor",
            "--performed-by",
            "steward",
        )
    )
    assert merged["data"]["changed_fields"] == ["email"]
    assert merged["data"]["merged_record"]["fields"]["email"] == "ap@acme.io"
    assert merged["data"]["quality"]["score"] >= 0
    merge_log_id = merged["data"]["merge_log_id"]

    again = _invoke(runner, "merge", "--tenant", TENANT, "--master-id", master.id, "--duplicate-id", duplicate.id)
    assert again.exit_code == 1
    assert "AlreadyMergedError" in again.output

    unmerged = _payload(_invoke(runner, "unmerge", "--tenant", TENANT, "--merge-log-id", merge_log_id))
    assert unmerged["data"] == {"master_record_id": master.id, "duplicate_record_id": duplicate.id}
    assert reload_party(master.id).email is None

    history = _payload(_invoke(runner, "history", "--tenant", TENANT, "--record-id", master.id))
    assert [entry["status"] for entry in history["data"]] == ["reversed"]
    assert history["data"][0]["merge_reason"] == "same vendor"


def test_merge_command_same_record(runner, acme_pair):
    master, _ = acme_pair
    result = _invoke(runner, "merge", "--tenant", TENANT, "--master-id", master.id, "--duplicate-id", master.id)

    assert result.exit_code == 1
    assert "InvalidOperationError" in result.output


def test_quality_command(runner, party_factory):
    party = party_factory(name="Acme", email="ap@acme.io")

    payload = _payload(_invoke(runner, "quality", "--tenant", TENANT, "--party-id", party.id))

    assert payload["data"]["breakdown"]["validity"] == 100.0
    assert "PARTY_MISSING_TAX_ID" in payload["data"]["issues"]


def test_rules_create_and_list_commands(runner):
    created = _payload(
        _invoke(
            runner,
            "rules-create",
            "--tenant",
            TENANT,
            "--name",
            "fresh contact",
            "--mappings",
            '{"email": "newer", "name": "CUSTOM"}',
            "--custom-logic",
            "longest(master, duplicate)",
            "--priority",
            5,
        )
    )
    assert created["data"]["field_mappings"] == {"email": "NEWER", "name": "CUSTOM"}

    _payload(_invoke(runner, "rules-create", "--tenant", TENANT, "--name", "dormant", "--inactive"))

    listed = _payload(_invoke(runner, "rules-list", "--tenant", TENANT, "--active-only"))
    assert [rule["rule_name"] for rule in listed["data"]] == ["fresh contact"]
    assert listed["metadata"] == {"count": 1}


def test_rules_create_command_rejects_bad_input(runner):
    bad_json = _invoke(runner, "rules-create", "--tenant", TENANT, "--name", "r", "--mappings", "{email")
    assert bad_json.exit_code == 2
    assert "--mappings must be valid JSON" in bad_json.output

    bad_strategy = _invoke(runner, "rules-create", "--tenant", TENANT, "--name", "r", "--mappings", '{"email": "x"}')
    assert bad_strategy.exit_code == 1
    assert "Unknown strategy" in bad_strategy.output


def test_init_db_command(runner):
    payload = _payload(_invoke(runner, "init-db"))
    assert {"parties", "merge_log", "merge_participations", "survivorship_rules"} <= set(payload["data"]["tables"])
