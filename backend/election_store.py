import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator

import psycopg2
from psycopg2.extras import execute_values

from db import get_connection, release_connection
from errors import StoreUnavailable
from models import Candidate, Election, Principal

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    wallet_address TEXT UNIQUE NOT NULL,
    is_admin BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS elections (
    id SERIAL PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    admin_id INTEGER NOT NULL REFERENCES users(id),
    start_time TIMESTAMPTZ NOT NULL,
    end_time TIMESTAMPTZ NOT NULL,
    contract_address TEXT UNIQUE NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (start_time < end_time)
);

CREATE TABLE IF NOT EXISTS candidates (
    id SERIAL PRIMARY KEY,
    election_id INTEGER NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    position INTEGER NOT NULL,
    UNIQUE (election_id, position)
);

CREATE TABLE IF NOT EXISTS eligibility_links (
    election_id INTEGER NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (election_id, user_id)
);
"""

_ELECTION_COLUMNS = "e.id, e.title, e.description, e.admin_id, e.start_time, e.end_time, e.contract_address, e.created_at"


def _election_from_row(row, candidates: Iterable[Candidate] = ()) -> Election:
    return Election(
        id=row[0],
        title=row[1],
        description=row[2] or "",
        admin_id=row[3],
        start_time=row[4],
        end_time=row[5],
        contract_address=row[6],
        created_at=row[7],
        candidates=tuple(candidates),
    )


class PostgresElectionStore:
    """Off-chain source of truth for elections, candidates and eligibility links.

    Every method borrows a connection from the shared pool and returns it
    before leaving, so one instance is safe to share across request threads.
    """

    def __init__(self, pool=None) -> None:
        self.pool = pool

    @contextmanager
    def _cursor(self, commit: bool = False) -> Iterator:
        conn = None
        cur = None
        try:
            conn = get_connection(self.pool)
            cur = conn.cursor()
            yield cur
            if commit:
                conn.commit()
        except psycopg2.Error as exc:
            self._rollback(conn)
            logger.error("Election store query failed: %s", exc)
            raise StoreUnavailable(f"Election store error: {exc}") from exc
        finally:
            if cur is not None and not cur.closed:
                try:
                    cur.close()
                except psycopg2.Error as exc:
                    logger.warning("Could not close election store cursor: %s", exc)
            if conn is not None:
                release_connection(conn, self.pool)

    @staticmethod
    def _rollback(conn) -> None:
        # a dead connection has nothing to roll back
        if conn is None or conn.closed:
            return
        try:
            conn.rollback()
        except psycopg2.Error as exc:
            logger.warning("Election store rollback failed: %s", exc)

    def ensure_schema(self) -> None:
        with self._cursor(commit=True) as cur:
            cur.execute(SCHEMA_SQL)

    def insert_election(
        self,
        *,
        admin_id: int,
        title: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        contract_address: str,
        candidate_names: list[str],
    ) -> Election:
        with self._cursor(commit=True) as cur:
            cur.execute(
                """
                INSERT INTO elections (title, description, admin_id, start_time, end_time, contract_address)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, created_at
                """,
                (title, description, admin_id, start_time, end_time, contract_address),
            )
            election_id, created_at = cur.fetchone()
            candidates = []
            for position, name in enumerate(candidate_names):
                cur.execute(
                    "INSERT INTO candidates (election_id, name, position) VALUES (%s, %s, %s) RETURNING id",
                    (election_id, name, position),
                )
                candidates.append(Candidate(id=cur.fetchone()[0], election_id=election_id, name=name, position=position))
        return Election(
            id=election_id,
            title=title,
            description=description,
            admin_id=admin_id,
            start_time=start_time,
            end_time=end_time,
            contract_address=contract_address,
            created_at=created_at,
            candidates=tuple(candidates),
        )

    def get_election(self, election_id: int) -> Election | None:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_ELECTION_COLUMNS} FROM elections e WHERE e.id = %s", (election_id,))
            row = cur.fetchone()
            if not row:
                return None
            cur.execute(
                "SELECT id, name, position FROM candidates WHERE election_id = %s ORDER BY position",
                (election_id,),
            )
            candidates = [
                Candidate(id=r[0], election_id=election_id, name=r[1], position=r[2]) for r in cur.fetchall()
            ]
        return _election_from_row(row, candidates)

    def resolve_principals(self, identities: Iterable[str]) -> dict[str, Principal]:
        wanted = sorted(set(identities))
        if not wanted:
            return {}
        with self._cursor() as cur:
            cur.execute(
                "SELECT id, email, wallet_address, is_admin FROM users WHERE email = ANY(%s)",
                (wanted,),
            )
            rows = cur.fetchall()
        return {
            r[1]: Principal(id=r[0], identity=r[1], wallet_address=r[2], is_admin=bool(r[3])) for r in rows
        }

    def add_eligibility_links(self, election_id: int, principal_ids: Iterable[int]) -> int:
        values = [(election_id, pid) for pid in sorted(set(principal_ids))]
        if not values:
            return 0
        with self._cursor(commit=True) as cur:
            inserted = execute_values(
                cur,
                """
                INSERT INTO eligibility_links (election_id, user_id)
                VALUES %s
                ON CONFLICT (election_id, user_id) DO NOTHING
                RETURNING user_id
                """,
                values,
                fetch=True,
            )
        return len(inserted)

    def has_eligibility_link(self, election_id: int, principal_id: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "SELECT 1 FROM eligibility_links WHERE election_id = %s AND user_id = %s",
                (election_id, principal_id),
            )
            return cur.fetchone() is not None

    def eligible_wallets(self, election_id: int) -> list[str]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT u.wallet_address
                FROM users u
                JOIN eligibility_links el ON u.id = el.user_id
                WHERE el.election_id = %s
                ORDER BY u.id
                """,
                (election_id,),
            )
            return [r[0] for r in cur.fetchall()]

    def elections_for_participant(self, principal_id: int) -> list[Election]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_ELECTION_COLUMNS}
                FROM elections e
                JOIN eligibility_links el ON e.id = el.election_id
                WHERE el.user_id = %s
                ORDER BY e.end_time, e.id
                """,
                (principal_id,),
            )
            return [_election_from_row(r) for r in cur.fetchall()]

    def elections_for_admin(self, admin_id: int) -> list[Election]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_ELECTION_COLUMNS}
                FROM elections e
                WHERE e.admin_id = %s
                ORDER BY e.created_at DESC, e.id DESC
                """,
                (admin_id,),
            )
            return [_election_from_row(r) for r in cur.fetchall()]
