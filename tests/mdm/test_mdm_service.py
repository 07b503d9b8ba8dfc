from datetime import datetime, timedelta, timezone

import pytest

from config.monitoring import MdmMonitoring
from mdm_app.mdm import AlreadyMergedError, InvalidOperationError, MDMService, NotFoundError
from mdm_app.models import MergeLog, MergeLogStatus, db

TENANT = "tenant-a"


@pytest.fixture
def recorded_metrics(monkeypatch):
    calls = []

    def _recorder(name):
        def _record(*args, **kwargs):
            calls.append((name, args, kwargs))

        return _record

    for name in ("record_duplicate_search", "record_merge", "record_unmerge", "record_quality_score"):
        monkeypatch.setattr(MdmMonitoring, name, _recorder(name))
    return calls


def test_find_party_duplicates_uses_configured_default_threshold(app, mdm_service, acme_pair, party_factory):
    master, duplicate = acme_pair
    party_factory(name="Acme Corp", tax_id="999")

    app.config["MDM_DUPLICATE_THRESHOLD_DEFAULT"] = 90
    assert [c.candidate_id for c in mdm_service.find_party_duplicates(TENANT, master.id)] == [duplicate.id]

    app.config["MDM_DUPLICATE_THRESHOLD_DEFAULT"] = 40
    assert len(mdm_service.find_party_duplicates(TENANT, master.id)) == 2


def test_find_party_duplicates_records_metrics(mdm_service, acme_pair, recorded_metrics):
    master, _ = acme_pair

    mdm_service.find_party_duplicates(TENANT, master.id, 75)
    with pytest.raises(InvalidOperationError):
        mdm_service.find_party_duplicates(TENANT, master.id, 150)

    searches = [kwargs for name, _, kwargs in recorded_metrics if name == "record_duplicate_search"]
    assert searches[0]["status"] == "success"
    assert searches[0]["result_count"] == 1
    assert searches[1]["status"] == "invalidoperation"


def test_merge_parties_scores_surviving_record(mdm_service, acme_pair, recorded_metrics):
    master, duplicate = acme_pair

    outcome = mdm_service.merge_parties(TENANT, master.id, duplicate.id, reason="dup", performed_by="steward")

    assert outcome.quality is not None
    assert 0 <= outcome.quality.score <= 100
    payload = outcome.to_dict()
    assert payload["merge_log_id"] == outcome.merge_log_id
    assert payload["merged_record"]["record_id"] == master.id
    assert payload["quality"]["score"] == outcome.quality.score
    merges = [kwargs for name, _, kwargs in recorded_metrics if name == "record_merge"]
    assert merges[0]["outcome"] == "success"
    assert merges[0]["duration_seconds"] >= 0
    assert ("record_quality_score", (outcome.quality.score,), {}) in recorded_metrics


def test_merge_parties_can_skip_quality(app, mdm_service, acme_pair):
    master, duplicate = acme_pair
    app.config["MDM_SCORE_QUALITY_AFTER_MERGE"] = False

    outcome = mdm_service.merge_parties(TENANT, master.id, duplicate.id)

    assert outcome.quality is None
    assert outcome.to_dict()["quality"] is None


def test_merge_parties_failure_is_recorded_and_reraised(mdm_service, acme_pair, recorded_metrics):
    master, duplicate = acme_pair
    mdm_service.merge_parties(TENANT, master.id, duplicate.id)

    with pytest.raises(AlreadyMergedError):
        mdm_service.merge_parties(TENANT, master.id, duplicate.id)

    outcomes = [kwargs["outcome"] for name, _, kwargs in recorded_metrics if name == "record_merge"]
    assert outcomes == ["success", "already_merged"]


def test_unmerge_party_round_trip(mdm_service, acme_pair, reload_party, recorded_metrics):
    master, duplicate = acme_pair
    outcome = mdm_service.merge_parties(TENANT, master.id, duplicate.id)

    result = mdm_service.unmerge_party(TENANT, outcome.merge_log_id, reason="undo", performed_by="steward")

    assert result.to_dict() == {"master_record_id": master.id, "duplicate_record_id": duplicate.id}
    assert reload_party(duplicate.id).email == "ap@acme.io"
    outcomes = [kwargs["outcome"] for name, _, kwargs in recorded_metrics if name == "record_unmerge"]
    assert outcomes == ["success"]


def test_calculate_party_quality_score(mdm_service, party_factory):
    party = party_factory(
        name="Acme Corporation",
        legal_name="Acme Corporation GmbH",
        registration_number="HRB 123456",
        tax_id="DE123456789",
        email="billing@acme.de",
        phone="+49 30 1234567",
        address="Hauptstrasse 1",
        city="Berlin",
        country="DE",
    )

    quality = mdm_service.calculate_party_quality_score(TENANT, party.id)

    assert quality.score == 100
    assert quality.issues == ()


def test_calculate_party_quality_score_not_found(mdm_service, party_factory):
    foreign = party_factory(name="Acme", tenant_id="tenant-b")

    with pytest.raises(NotFoundError):
        mdm_service.calculate_party_quality_score(TENANT, foreign.id)


def _add_logs(master_id, duplicate_id, count, *, start=None):
    start = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
    for offset in range(count):
        db.session.add(
            MergeLog(
                tenant_id=TENANT,
                master_record_id=master_id,
                duplicate_record_id=duplicate_id,
                master_snapshot={},
                duplicate_snapshot={},
                merged_at=start + timedelta(hours=offset),
                status=MergeLogStatus.REVERSED,
            )
        )
    db.session.commit()


def test_get_merge_history_newest_first_both_sides(mdm_service, acme_pair, party_factory):
    master, duplicate = acme_pair
    other = party_factory(name="Globex")
    first = mdm_service.merge_parties(TENANT, master.id, duplicate.id)
    mdm_service.unmerge_party(TENANT, first.merge_log_id)
    second = mdm_service.merge_parties(TENANT, other.id, master.id)

    history = mdm_service.get_merge_history(TENANT, master.id)

    assert [entry.id for entry in history] == [second.merge_log_id, first.merge_log_id]
    assert [entry.status for entry in history] == [MergeLogStatus.ACTIVE, MergeLogStatus.REVERSED]
    assert mdm_service.get_merge_history(TENANT, duplicate.id)[0].id == first.merge_log_id
    assert mdm_service.get_merge_history("tenant-b", master.id) == []


def test_get_merge_history_clamps_limit(app, mdm_service, acme_pair):
    master, duplicate = acme_pair
    _add_logs(master.id, duplicate.id, 5)
    app.config["MDM_MERGE_HISTORY_LIMIT_DEFAULT"] = 3
    app.config["MDM_MERGE_HISTORY_LIMIT_MAX"] = 4

    assert len(mdm_service.get_merge_history(TENANT, master.id)) == 3
    assert len(mdm_service.get_merge_history(TENANT, master.id, limit=0)) == 1
    assert len(mdm_service.get_merge_history(TENANT, master.id, limit=-7)) == 1
    assert len(mdm_service.get_merge_history(TENANT, master.id, limit=50)) == 4


def test_service_uses_configured_similarity_profile(app, acme_pair, tmp_path):
    master, duplicate = acme_pair
    profile = tmp_path / "weights.yaml"
    profile.write_text("fields:\n  - field_name: email\n    weight: 1\n", encoding="utf-8")
    app.config["MDM_SIMILARITY_PROFILE_PATH"] = str(profile)

    service = MDMService()

    assert [field.field_name for field in service.scorer.profile.fields] == ["email"]
    # no shared email on the pair, so nothing is comparable
    assert service.find_party_duplicates(TENANT, master.id, 1) == []
