from errors import ElectionNotFound, Forbidden
from models import Election, Principal


class AccessGate:
    """Read access is granted by the off-chain eligibility list alone.

    A principal may see an election before its wallet has been authorized on
    the ledger.
    """

    def __init__(self, store) -> None:
        self.store = store

    def can_view(self, principal: Principal, election_id: int) -> bool:
        return self.store.has_eligibility_link(election_id, principal.id)

    def can_monitor(self, principal: Principal, election: Election) -> bool:
        return principal.is_admin and election.admin_id == principal.id

    def ensure_can_view(self, principal: Principal, election_id: int) -> Election:
        election = self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFound(f"Election {election_id} not found", election_id=election_id)
        if not self.can_view(principal, election_id):
            raise Forbidden("You are not allowed to view this election", election_id=election_id)
        return election

    def ensure_can_monitor(self, principal: Principal, election_id: int) -> Election:
        election = self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFound(f"Election {election_id} not found", election_id=election_id)
        if not (self.can_monitor(principal, election) or self.can_view(principal, election_id)):
            raise Forbidden("You are not allowed to view this election", election_id=election_id)
        return election

    def list_visible_elections(self, principal: Principal) -> list[Election]:
        return self.store.elections_for_participant(principal.id)

    def list_admin_elections(self, principal: Principal) -> list[Election]:
        if not principal.is_admin:
            raise Forbidden("Only administrators have created elections")
        return self.store.elections_for_admin(principal.id)
