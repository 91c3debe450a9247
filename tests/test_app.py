import pytest

from app import create_app
from errors import LedgerUnavailable
from session_utils import create_session_token

SECRET = "test-secret"


@pytest.fixture
def client(store, ledger):
    app = create_app(store=store, ledger=ledger, session_secret=SECRET)
    app.config["TESTING"] = True
    return app.test_client()


def _auth(principal):
    return {"Authorization": f"Bearer {create_session_token(principal, secret=SECRET)}"}


ELECTION_BODY = {
    "title": "Driver of the Day",
    "description": "Monaco GP",
    "candidates": [{"name": "Verstappen"}, {"name": "Hamilton"}, {"name": "Alonso"}],
    "start_time": "2025-03-01T12:00:00Z",
    "end_time": "2025-03-03T12:00:00Z",
}


def test_admin_runs_full_lifecycle(client, ledger, admin, voters):
    created = client.post("/admin/elections", json=ELECTION_BODY, headers=_auth(admin))
    assert created.status_code == 201
    election = created.get_json()
    assert [c["name"] for c in election["candidates"]] == ["Verstappen", "Hamilton", "Alonso"]

    recorded = client.post(
        f"/admin/elections/{election['id']}/eligibility",
        json={"identities": [voters[0].identity, "ghost@pitwall.test"]},
        headers=_auth(admin),
    )
    assert recorded.status_code == 201
    assert recorded.get_json()["unresolved"] == ["ghost@pitwall.test"]

    synced = client.post(f"/admin/elections/{election['id']}/authorize-on-chain", headers=_auth(admin))
    assert synced.status_code == 200
    assert synced.get_json()["authorized_count"] == 1

    ledger.cast_vote(election["contract_address"], 1, voters[0].wallet_address)
    status = client.get(f"/elections/{election['id']}/vote-status", headers=_auth(voters[0]))
    assert status.get_json()["has_voted"] is True

    stopped = client.post(f"/admin/elections/{election['id']}/stop", headers=_auth(admin))
    assert stopped.status_code == 200

    results = client.get(f"/elections/{election['id']}/results", headers=_auth(voters[0]))
    payload = results.get_json()
    assert payload["phase"] == "stopped"
    assert payload["winner"]["name"] == "Hamilton"
    assert payload["total_votes"] == 1


def test_requests_need_a_session(client):
    response = client.get("/elections")

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthenticated"


def test_voters_cannot_use_admin_routes(client, voters):
    response = client.post("/admin/elections", json=ELECTION_BODY, headers=_auth(voters[0]))

    assert response.status_code == 403
    assert response.get_json()["error"] == "forbidden"


def test_invalid_spec_is_a_bad_request(client, ledger, admin):
    body = dict(ELECTION_BODY, candidates=["Verstappen"])

    response = client.post("/admin/elections", json=body, headers=_auth(admin))

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_election_spec"
    assert ledger.contracts == {}


def test_details_are_gated_by_eligibility(client, election, sync, voters):
    denied = client.get(f"/elections/{election.id}", headers=_auth(voters[0]))
    assert denied.status_code == 403

    sync.record_eligibility(election.id, [voters[0].identity])
    allowed = client.get(f"/elections/{election.id}", headers=_auth(voters[0]))
    assert allowed.status_code == 200
    assert allowed.get_json()["candidates"][1]["name"] == "Hamilton"

    listed = client.get("/elections", headers=_auth(voters[0]))
    assert [e["id"] for e in listed.get_json()] == [election.id]


def test_sync_without_voters_is_final_error(client, admin, election):
    response = client.post(f"/admin/elections/{election.id}/authorize-on-chain", headers=_auth(admin))

    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == "no_eligible_voters"
    assert body["retryable"] is False
    assert body["election_id"] == election.id


def test_transient_ledger_error_is_retryable(client, ledger, sync, admin, election, voters):
    sync.record_eligibility(election.id, [voters[0].identity])
    ledger.authorize_error = LedgerUnavailable("node down")

    response = client.post(f"/admin/elections/{election.id}/authorize-on-chain", headers=_auth(admin))

    assert response.status_code == 503
    body = response.get_json()
    assert body["retryable"] is True
    assert body["contract_address"] == election.contract_address


def test_owner_monitors_results_without_link(client, admin, election):
    response = client.get(f"/admin/elections/{election.id}/results", headers=_auth(admin))

    assert response.status_code == 200
    assert response.get_json()["phase"] == "active"
    assert response.get_json()["winner"] is None


def test_admin_listing(client, admin, election):
    response = client.get("/admin/elections", headers=_auth(admin))

    assert [e["contract_address"] for e in response.get_json()] == [election.contract_address]


def test_health_reports_ready(client):
    assert client.get("/health").get_json()["status"] == "ok"
