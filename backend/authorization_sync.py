import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable

from algorand_client import LedgerClient, Receipt
from errors import ElectionNotFound, LedgerError, NoEligibleVoters
from models import EligibilityResult, normalize_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    election_id: int
    contract_address: str
    authorized_count: int
    receipt: Receipt

    def to_dict(self) -> dict[str, Any]:
        return {
            "election_id": self.election_id,
            "contract_address": self.contract_address,
            "authorized_count": self.authorized_count,
            **self.receipt.to_dict(),
        }


class AuthorizationSyncService:
    """Propagates an election's eligibility list from the store to the ledger.

    record_eligibility() only touches the store and may be repeated freely.
    sync_to_ledger() pushes the full current eligible set in one authorization
    batch; already-authorized wallets are no-ops on the contract, so repeated
    or lagging runs converge on the same authorized set.
    """

    def __init__(self, store, ledger: LedgerClient) -> None:
        self.store = store
        self.ledger = ledger
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _election_lock(self, election_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(election_id, threading.Lock())

    def record_eligibility(self, election_id: int, identities: Iterable[str]) -> EligibilityResult:
        election = self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFound(f"Election {election_id} not found", election_id=election_id)

        wanted = {normalize_identity(i) for i in identities if isinstance(i, str) and i.strip()}
        principals = self.store.resolve_principals(wanted)
        unresolved = tuple(sorted(wanted - set(principals)))
        added = self.store.add_eligibility_links(election_id, [p.id for p in principals.values()])
        if unresolved:
            logger.info("Election %s: %d identities could not be resolved", election_id, len(unresolved))
        logger.info("Election %s: %d eligibility link(s) added", election_id, added)
        return EligibilityResult(
            election_id=election_id,
            resolved_count=len(principals),
            added_count=added,
            unresolved_identities=unresolved,
        )

    def sync_to_ledger(self, election_id: int) -> SyncResult:
        election = self.store.get_election(election_id)
        if election is None or not election.contract_address:
            raise ElectionNotFound(f"Election {election_id} has no deployed contract", election_id=election_id)

        with self._election_lock(election_id):
            wallets = sorted(set(self.store.eligible_wallets(election_id)))
            if not wallets:
                raise NoEligibleVoters(
                    "No eligible voters recorded for this election",
                    election_id=election_id,
                    contract_address=election.contract_address,
                )

            logger.info(
                "Authorizing %d wallet(s) for election %s on contract %s",
                len(wallets),
                election_id,
                election.contract_address,
            )
            try:
                receipt = self.ledger.authorize_addresses(election.contract_address, wallets)
            except LedgerError as exc:
                logger.error("Authorization sync for election %s failed: %s", election_id, exc)
                raise exc.with_context(election_id=election_id, contract_address=election.contract_address)

        return SyncResult(
            election_id=election_id,
            contract_address=election.contract_address,
            authorized_count=len(wallets),
            receipt=receipt,
        )
