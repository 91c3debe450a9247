from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from fractions import Fraction
from typing import Any


def normalize_identity(identity: str) -> str:
    return identity.strip().lower()


def normalize_wallet(wallet: str) -> str:
    return wallet.strip().upper()


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_unix_seconds(value: datetime) -> int:
    return int(as_utc(value).timestamp())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Phase(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Principal:
    id: int
    identity: str
    wallet_address: str
    is_admin: bool = False


@dataclass(frozen=True)
class Candidate:
    id: int
    election_id: int
    name: str
    position: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "position": self.position}


@dataclass(frozen=True)
class Election:
    id: int
    title: str
    description: str
    admin_id: int
    start_time: datetime
    end_time: datetime
    contract_address: str
    created_at: datetime | None = None
    candidates: tuple[Candidate, ...] = ()

    @property
    def candidate_names(self) -> list[str]:
        return [c.name for c in sorted(self.candidates, key=lambda c: c.position)]

    def to_dict(self, include_candidates: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "admin_id": self.admin_id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "contract_address": self.contract_address,
            "created_at": _iso(self.created_at),
        }
        if include_candidates:
            payload["candidates"] = [c.to_dict() for c in sorted(self.candidates, key=lambda c: c.position)]
        return payload


@dataclass(frozen=True)
class CandidateTally:
    index: int
    name: str
    count: int
    percentage: Fraction

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "votes": self.count,
            "percentage": round(float(self.percentage), 2),
        }


@dataclass(frozen=True)
class ElectionResult:
    contract_address: str
    per_candidate: tuple[CandidateTally, ...]
    total_votes: int
    phase: Phase
    winner: CandidateTally | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_address": self.contract_address,
            "source": "blockchain",
            "phase": self.phase.value,
            "total_votes": self.total_votes,
            "results": [c.to_dict() for c in self.per_candidate],
            "winner": self.winner.to_dict() if self.winner else None,
        }


@dataclass(frozen=True)
class EligibilityResult:
    election_id: int
    resolved_count: int
    added_count: int
    unresolved_identities: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "election_id": self.election_id,
            "resolved_count": self.resolved_count,
            "added_count": self.added_count,
            "unresolved": list(self.unresolved_identities),
        }
