from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from firebase_functions import https_fn

import backfill
from backfill import BackfillError, backfill_all, handle_backfill_request, run_consistency_sweep
from config import BACKFILL_ORDER, ConfigurationError
from populate_emulator import SEED_DATA, populate
from run_backfill_locally import main as run_locally


@pytest.fixture
def seeded(db):
    populate(db)
    db.events.clear()
    return db


def test_backfill_counts_every_collection(seeded, clients, index):
    counts = backfill_all(clients)
    assert list(counts) == BACKFILL_ORDER
    for collection, documents in SEED_DATA:
        assert counts[collection] == len(documents)
        assert set(index(collection).records) == {d["id"] for d in documents}
        # one bulk save per collection
        assert index(collection).bulk_saves == [len(documents)]
    # the backfill only writes to the index
    assert seeded.commits == 0
    assert seeded.events == []


def test_backfill_reads_current_microgame_state(seeded, clients, index):
    seeded.seed("microgames", "mg_avoid", {**seeded.doc("microgames", "mg_avoid"), "isActive": True})
    backfill_all(clients)
    assert index("macrogames").records["mac_archived"]["status"] == {"code": "ok", "message": ""}

    seeded.seed("microgames", "mg_catch", {**seeded.doc("microgames", "mg_catch"), "isActive": False})
    backfill_all(clients)
    assert index("macrogames").records["mac_holiday"]["status"] == {
        "code": "error",
        "message": "Contains an archived microgame: Catch",
    }


def test_backfill_on_empty_store(clients):
    assert backfill_all(clients) == {collection: 0 for collection in BACKFILL_ORDER}


def test_backfill_of_unconfigured_collection_fails(clients):
    with pytest.raises(BackfillError) as excinfo:
        backfill_all(clients, ["quests"])
    assert isinstance(excinfo.value.cause, ConfigurationError)


def test_backfill_aborts_on_transformer_error(seeded, clients, index):
    real_transform = backfill.transform

    def failing(db, collection, doc):
        if collection == "macrogames":
            raise ValueError("bad flow")
        return real_transform(db, collection, doc)

    with patch("backfill.transform", side_effect=failing):
        with pytest.raises(BackfillError) as excinfo:
            backfill_all(clients)

    err = excinfo.value
    assert err.collection == "macrogames"
    assert list(err.counts) == BACKFILL_ORDER[:4]
    assert isinstance(err.cause, ValueError)
    # later collections are never started
    assert index("deliveryContainers").bulk_saves == []
    assert index("campaigns").bulk_saves == []


def test_backfill_request_requires_auth(seeded, clients, index):
    with pytest.raises(https_fn.HttpsError) as excinfo:
        handle_backfill_request(SimpleNamespace(auth=None, data={}), lambda: clients)
    assert excinfo.value.code == https_fn.FunctionsErrorCode.UNAUTHENTICATED
    assert "backfillRuns" not in seeded.data
    assert all(not index(c).records for c in BACKFILL_ORDER)


def test_unauthenticated_backfill_never_builds_clients():
    get_clients = MagicMock(side_effect=ConfigurationError("no credentials"))
    with pytest.raises(https_fn.HttpsError) as excinfo:
        handle_backfill_request(SimpleNamespace(auth=None, data={}), get_clients)
    assert excinfo.value.code == https_fn.FunctionsErrorCode.UNAUTHENTICATED
    get_clients.assert_not_called()


def test_missing_credentials_is_an_internal_error_for_authenticated_callers():
    req = SimpleNamespace(auth=SimpleNamespace(uid="admin-1"), data={})
    get_clients = MagicMock(side_effect=ConfigurationError("no credentials"))
    with pytest.raises(https_fn.HttpsError) as excinfo:
        handle_backfill_request(req, get_clients)
    assert excinfo.value.code == https_fn.FunctionsErrorCode.INTERNAL
    assert excinfo.value.message == "no credentials"


def test_backfill_request_success_is_logged(seeded, clients):
    req = SimpleNamespace(auth=SimpleNamespace(uid="admin-1"), data={})
    result = handle_backfill_request(req, lambda: clients)

    assert result["success"] is True
    assert result["counts"]["macrogames"] == 2
    (run,) = seeded.data["backfillRuns"].values()
    assert run["status"] == "success"
    assert run["initiatedBy"] == "admin-1"
    assert run["counts"] == result["counts"]


def test_backfill_request_wraps_failures(seeded, clients):
    req = SimpleNamespace(auth=SimpleNamespace(uid="admin-1"), data={})
    with patch("backfill.transform", side_effect=RuntimeError("index exploded")):
        with pytest.raises(https_fn.HttpsError) as excinfo:
            handle_backfill_request(req, lambda: clients)

    err = excinfo.value
    assert err.code == https_fn.FunctionsErrorCode.INTERNAL
    assert err.message == "index exploded"
    assert err.details["collection"] == "microgames"
    assert err.details["counts"] == {}
    assert "RuntimeError" in err.details["stack"]
    (run,) = seeded.data["backfillRuns"].values()
    assert run["status"] == "failed"


def test_consistency_sweep_removes_stale_records(seeded, clients, index):
    index("campaigns").save_object({"objectID": "deleted_campaign"})
    result = run_consistency_sweep(clients)
    assert result["removed"]["campaigns"] == 1
    assert "deleted_campaign" not in index("campaigns").records
    assert result["counts"]["campaigns"] == 1


def test_run_backfill_locally(seeded, clients, index, capsys):
    index("macrogames").save_object({"objectID": "deleted_macrogame"})
    counts = run_locally(["--sweep", "macrogames", "microgames"], clients=clients)

    assert list(counts) == ["microgames", "macrogames"]
    assert counts == {"microgames": 3, "macrogames": 2}
    assert not index("campaigns").records
    assert "macrogames: 2 record(s), 1 stale removed" in capsys.readouterr().out
    (run,) = seeded.data["backfillRuns"].values()
    assert run["removed"] == {"microgames": 0, "macrogames": 1}


def test_run_backfill_locally_rejects_unknown_collections(seeded, clients, index):
    with pytest.raises(SystemExit):
        run_locally(["macrogames", "quests"], clients=clients)
    assert not index("macrogames").records
    assert "backfillRuns" not in seeded.data


def test_seed_data_converges_through_triggers(db, settle, index):
    populate(db)
    settle()

    assert db.doc("macrogames", "mac_holiday")["status"] == {"code": "ok", "message": ""}
    assert db.doc("macrogames", "mac_archived")["status"] == {
        "code": "error",
        "message": "Contains an archived microgame: Avoid",
    }
    section = db.doc("deliveryContainers", "dc_section")
    assert section["macrogameName"] == "Dodge Day"
    assert section["status"]["message"] == "Linked macrogame has an issue: Contains an archived microgame: Avoid"
    assert db.doc("conversionScreens", "cs_empty")["status"]["code"] == "error"
    campaign = index("campaigns").records["camp_spring"]
    assert campaign["containerIdList"] == ["dc_popup", "dc_section"]
    assert campaign["deliveryMethods"] == ["popup_modal", "on_page_section"]
    assert campaign["isAbTesting"] == 1
