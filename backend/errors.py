from typing import Any


class ElectionError(Exception):
    kind = "election_error"
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def with_context(self, **context: Any) -> "ElectionError":
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            **self.context,
        }


class InvalidElectionSpec(ElectionError):
    kind = "invalid_election_spec"


class ElectionNotFound(ElectionError):
    kind = "election_not_found"


class NoEligibleVoters(ElectionError):
    kind = "no_eligible_voters"


class Forbidden(ElectionError):
    kind = "forbidden"


class Unauthenticated(ElectionError):
    kind = "unauthenticated"


class StoreUnavailable(ElectionError):
    kind = "store_unavailable"
    retryable = True


class ProvisioningInconsistency(ElectionError):
    """Deployed contract exists on the ledger but no election row references it."""

    kind = "provisioning_inconsistency"


class CandidateMismatch(ElectionError):
    kind = "candidate_mismatch"


class LedgerError(ElectionError):
    kind = "ledger_error"


class LedgerUnavailable(LedgerError):
    kind = "ledger_unavailable"
    retryable = True


class LedgerRejected(LedgerError):
    kind = "ledger_rejected"


class AlreadyVoted(LedgerError):
    kind = "already_voted"


class NotAuthorized(LedgerError):
    kind = "not_authorized"


class VotingClosed(LedgerError):
    kind = "voting_closed"


class AlreadyStopped(LedgerError):
    kind = "already_stopped"
