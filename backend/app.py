import logging
from datetime import datetime
from typing import Any

from flask import Flask, jsonify, request
from flask_cors import CORS

import config
from access_gate import AccessGate
from algorand_client import AlgorandLedgerClient
from authorization_sync import AuthorizationSyncService
from db import get_pool
from election_store import PostgresElectionStore
from errors import (
    ElectionError,
    Forbidden,
    InvalidElectionSpec,
    LedgerUnavailable,
    StoreUnavailable,
    Unauthenticated,
)
from models import Principal
from provisioning import ProvisioningService
from session_utils import principal_from_token
from tally import TallyAggregator

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "invalid_election_spec": 400,
    "no_eligible_voters": 400,
    "unauthenticated": 401,
    "forbidden": 403,
    "not_authorized": 403,
    "election_not_found": 404,
    "already_voted": 409,
    "voting_closed": 409,
    "already_stopped": 409,
    "candidate_mismatch": 500,
    "provisioning_inconsistency": 500,
    "ledger_rejected": 502,
    "ledger_unavailable": 503,
    "store_unavailable": 503,
}


def _parse_datetime(value: Any, field: str) -> datetime:
    if not value:
        raise InvalidElectionSpec(f"{field} is required")
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidElectionSpec(f"{field} must be an ISO 8601 datetime") from exc


def _candidate_names(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        raise InvalidElectionSpec("candidates must be a list")
    names = []
    for item in raw:
        name = item.get("name") if isinstance(item, dict) else item
        names.append(name if isinstance(name, str) else "")
    return names


def _build_store() -> tuple[PostgresElectionStore | None, str | None]:
    try:
        return PostgresElectionStore(get_pool()), None
    except Exception as exc:  # noqa: BLE001
        return None, str(exc)


def _build_ledger() -> tuple[AlgorandLedgerClient | None, str | None]:
    try:
        return AlgorandLedgerClient.from_env(), None
    except Exception as exc:  # noqa: BLE001
        return None, str(exc)


def create_app(store=None, ledger=None, session_secret: str | None = None) -> Flask:
    store_error = ledger_error = None
    if store is None:
        store, store_error = _build_store()
    if ledger is None:
        ledger, ledger_error = _build_ledger()

    app = Flask(__name__)
    CORS(app)
    secret = session_secret or config.SESSION_SECRET

    gate = AccessGate(store) if store else None
    provisioning = ProvisioningService(store, ledger) if store and ledger else None
    sync = AuthorizationSyncService(store, ledger) if store and ledger else None
    tally = TallyAggregator(ledger) if ledger else None

    def _require_backends() -> None:
        if store is None:
            raise StoreUnavailable(f"Election store unavailable: {store_error or 'unknown error'}")
        if ledger is None:
            raise LedgerUnavailable(f"Blockchain client unavailable: {ledger_error or 'unknown error'}")

    def _current_principal() -> Principal:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise Unauthenticated("Missing bearer session token")
        try:
            return principal_from_token(auth_header.split(" ", 1)[1].strip(), secret=secret)
        except ValueError as exc:
            raise Unauthenticated(str(exc)) from exc

    def _current_admin() -> Principal:
        principal = _current_principal()
        if not principal.is_admin:
            raise Forbidden("Administrator access required")
        return principal

    @app.errorhandler(ElectionError)
    def handle_election_error(exc: ElectionError):
        status = ERROR_STATUS.get(exc.kind, 500)
        if status >= 500:
            logger.error("%s: %s %s", exc.kind, exc.message, exc.context)
        return jsonify(exc.to_dict()), status

    @app.route("/admin/elections", methods=["POST"])
    def create_election():
        admin = _current_admin()
        _require_backends()
        data = request.get_json(silent=True) or {}
        election = provisioning.create_election(
            admin,
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            candidates=_candidate_names(data.get("candidates")),
            start_time=_parse_datetime(data.get("start_time"), "start_time"),
            end_time=_parse_datetime(data.get("end_time"), "end_time"),
        )
        return jsonify(election.to_dict(include_candidates=True)), 201

    @app.route("/admin/elections", methods=["GET"])
    def admin_elections():
        admin = _current_admin()
        _require_backends()
        return jsonify([e.to_dict() for e in gate.list_admin_elections(admin)])

    @app.route("/admin/elections/<int:election_id>/eligibility", methods=["POST"])
    def record_eligibility(election_id: int):
        _current_admin()
        _require_backends()
        data = request.get_json(silent=True) or {}
        identities = data.get("identities") or data.get("voter_emails") or []
        if not isinstance(identities, list) or not identities:
            return jsonify({"error": "invalid_request", "message": "No voter identities provided"}), 400
        result = sync.record_eligibility(election_id, identities)
        return jsonify(result.to_dict()), 201

    @app.route("/admin/elections/<int:election_id>/authorize-on-chain", methods=["POST"])
    def authorize_on_chain(election_id: int):
        _current_admin()
        _require_backends()
        return jsonify(sync.sync_to_ledger(election_id).to_dict())

    @app.route("/admin/elections/<int:election_id>/stop", methods=["POST"])
    def stop_election(election_id: int):
        admin = _current_admin()
        _require_backends()
        receipt = provisioning.stop_election(admin, election_id)
        return jsonify({"election_id": election_id, "stopped": True, **receipt.to_dict()})

    @app.route("/admin/elections/<int:election_id>/results", methods=["GET"])
    def admin_results(election_id: int):
        admin = _current_admin()
        _require_backends()
        election = gate.ensure_can_monitor(admin, election_id)
        result = tally.compute_result(
            election.contract_address, candidates=election.candidates, start_time=election.start_time
        )
        return jsonify({"election_id": election_id, **result.to_dict()})

    @app.route("/elections", methods=["GET"])
    def my_elections():
        principal = _current_principal()
        _require_backends()
        return jsonify([e.to_dict() for e in gate.list_visible_elections(principal)])

    @app.route("/elections/<int:election_id>", methods=["GET"])
    def election_details(election_id: int):
        principal = _current_principal()
        _require_backends()
        election = gate.ensure_can_view(principal, election_id)
        return jsonify(election.to_dict(include_candidates=True))

    @app.route("/elections/<int:election_id>/results", methods=["GET"])
    def election_results(election_id: int):
        principal = _current_principal()
        _require_backends()
        election = gate.ensure_can_view(principal, election_id)
        result = tally.compute_result(
            election.contract_address, candidates=election.candidates, start_time=election.start_time
        )
        return jsonify({"election_id": election_id, **result.to_dict()})

    @app.route("/elections/<int:election_id>/vote-status", methods=["GET"])
    def vote_status(election_id: int):
        principal = _current_principal()
        _require_backends()
        election = gate.ensure_can_view(principal, election_id)
        return jsonify(
            {
                "election_id": election_id,
                "wallet_address": principal.wallet_address,
                "has_voted": ledger.has_voted(election.contract_address, principal.wallet_address),
                "voting_active": ledger.is_active(election.contract_address),
            }
        )

    @app.route("/health")
    def health():
        return jsonify(
            {
                "status": "ok" if store and ledger else "degraded",
                "election_store": "ready" if store else "unavailable",
                "election_store_error": store_error,
                "blockchain_client": "ready" if ledger else "unavailable",
                "blockchain_error": ledger_error,
            }
        )

    app.extensions["election_store"] = store
    return app


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    application = create_app()
    election_store = application.extensions["election_store"]
    if election_store is not None:
        election_store.ensure_schema()
    application.run(port=config.PORT)
