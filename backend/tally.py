from datetime import datetime, timezone
from fractions import Fraction
from typing import Sequence

from algorand_client import LedgerClient
from errors import CandidateMismatch, LedgerError
from models import Candidate, CandidateTally, ElectionResult, Phase


def tally_counts(names: Sequence[str], counts: Sequence[int]) -> tuple[tuple[CandidateTally, ...], int]:
    total = sum(counts)
    per_candidate = tuple(
        CandidateTally(
            index=index,
            name=name,
            count=count,
            percentage=Fraction(count * 100, total) if total else Fraction(0),
        )
        for index, (name, count) in enumerate(zip(names, counts))
    )
    return per_candidate, total


def pick_winner(per_candidate: Sequence[CandidateTally]) -> CandidateTally | None:
    """Highest count wins; equal counts go to the lowest candidate index."""
    winner = None
    for entry in per_candidate:
        if winner is None or entry.count > winner.count:
            winner = entry
    return winner


def classify_phase(is_active: bool, start_time: datetime | None = None, now: datetime | None = None) -> Phase:
    if not is_active:
        return Phase.STOPPED
    if start_time is not None:
        now = now or datetime.now(timezone.utc)
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if now < start_time:
            return Phase.CREATED
    return Phase.ACTIVE


class TallyAggregator:
    def __init__(self, ledger: LedgerClient) -> None:
        self.ledger = ledger

    def compute_result(
        self,
        contract_address: str,
        *,
        candidates: Sequence[Candidate] | None = None,
        start_time: datetime | None = None,
        now: datetime | None = None,
    ) -> ElectionResult:
        try:
            tally = self.ledger.get_tally(contract_address)
            active = self.ledger.is_active(contract_address)
        except LedgerError as exc:
            raise exc.with_context(contract_address=contract_address)

        names = [name for name, _ in tally]
        if candidates is not None:
            stored = [c.name for c in sorted(candidates, key=lambda c: c.position)]
            if stored != names:
                raise CandidateMismatch(
                    "On-chain candidates do not match the stored candidate order",
                    contract_address=contract_address,
                )

        per_candidate, total = tally_counts(names, [int(count) for _, count in tally])
        phase = classify_phase(active, start_time, now)
        winner = pick_winner(per_candidate) if phase is Phase.STOPPED and total > 0 else None
        return ElectionResult(
            contract_address=contract_address,
            per_candidate=per_candidate,
            total_votes=total,
            phase=phase,
            winner=winner,
        )
