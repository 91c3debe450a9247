import logging
from datetime import datetime
from typing import Iterable

from algorand_client import LedgerClient, Receipt
from errors import (
    CandidateMismatch,
    ElectionNotFound,
    Forbidden,
    InvalidElectionSpec,
    LedgerError,
    ProvisioningInconsistency,
    StoreUnavailable,
)
from models import Election, Principal, as_utc

logger = logging.getLogger(__name__)


def validate_election_spec(
    title: str, candidates: Iterable[str], start_time: datetime, end_time: datetime
) -> list[str]:
    """Return the cleaned, ordered candidate names or raise InvalidElectionSpec."""
    if not isinstance(title, str) or not title.strip():
        raise InvalidElectionSpec("Election title is required")
    names = [name.strip() if isinstance(name, str) else "" for name in candidates]
    if len(names) < 2:
        raise InvalidElectionSpec("An election needs at least two candidates")
    if any(not name for name in names):
        raise InvalidElectionSpec("Candidate names must not be empty")
    if len(set(names)) != len(names):
        raise InvalidElectionSpec("Candidate names must be distinct")
    if not isinstance(start_time, datetime) or not isinstance(end_time, datetime):
        raise InvalidElectionSpec("Start and end time are required")
    try:
        ordered = start_time < end_time
    except TypeError as exc:
        raise InvalidElectionSpec("Start and end time must both carry a timezone or neither") from exc
    if not ordered:
        raise InvalidElectionSpec("Start time must be before end time")
    return names


class ProvisioningService:
    def __init__(self, store, ledger: LedgerClient) -> None:
        self.store = store
        self.ledger = ledger

    def create_election(
        self,
        admin: Principal,
        title: str,
        description: str,
        candidates: list[str],
        start_time: datetime,
        end_time: datetime,
    ) -> Election:
        if not admin.is_admin:
            raise Forbidden("Only administrators can create elections")
        names = validate_election_spec(title, candidates, start_time, end_time)
        # ledger and store must agree on the voting window
        start_time, end_time = as_utc(start_time), as_utc(end_time)

        logger.info("Deploying election contract for %r with %d candidates", title, len(names))
        # nothing is written off-chain if the deployment fails
        contract_address, receipt = self.ledger.deploy_election(names, start_time, end_time)

        try:
            election = self.store.insert_election(
                admin_id=admin.id,
                title=title.strip(),
                description=(description or "").strip(),
                start_time=start_time,
                end_time=end_time,
                contract_address=contract_address,
                candidate_names=names,
            )
        except StoreUnavailable as exc:
            logger.critical(
                "Contract %s deployed (tx %s) but election %r was not stored; manual reconciliation required",
                contract_address,
                ", ".join(receipt.tx_ids),
                title,
            )
            raise ProvisioningInconsistency(
                "Election contract was deployed but the election could not be stored",
                contract_address=contract_address,
                tx_ids=list(receipt.tx_ids),
            ) from exc

        if election.candidate_names != names:
            raise CandidateMismatch(
                "Stored candidates do not match the deployed candidate order",
                election_id=election.id,
                contract_address=contract_address,
            )
        logger.info("Election %s stored with contract %s", election.id, contract_address)
        return election

    def stop_election(self, admin: Principal, election_id: int) -> Receipt:
        election = self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFound(f"Election {election_id} not found", election_id=election_id)
        if not admin.is_admin or election.admin_id != admin.id:
            raise Forbidden("Only the election's administrator can stop it", election_id=election_id)
        try:
            receipt = self.ledger.stop_election(election.contract_address)
        except LedgerError as exc:
            raise exc.with_context(election_id=election_id, contract_address=election.contract_address)
        logger.info("Election %s stopped on contract %s", election_id, election.contract_address)
        return receipt
