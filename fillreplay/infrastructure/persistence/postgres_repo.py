import asyncio
import logging
from typing import List, Optional

import psycopg2
from psycopg2.extras import execute_values

from fillreplay.core.interfaces.datasource import DataSourceError, IDataSource, IRawStore
from fillreplay.core.entities.trade import Trade
from fillreplay.core.entities.ledger import FundingEntry, LedgerEntry

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS fills (
        time_ms BIGINT,
        coin VARCHAR,
        side VARCHAR,
        px DOUBLE PRECISION,
        sz DOUBLE PRECISION,
        fee DOUBLE PRECISION,
        closed_pnl DOUBLE PRECISION,
        builder_id VARCHAR,
        hash VARCHAR,
        oid BIGINT,
        tid BIGINT,
        "user" VARCHAR
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS funding (
        time_ms BIGINT,
        coin VARCHAR,
        amount DOUBLE PRECISION,
        "user" VARCHAR
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_updates (
        time_ms BIGINT,
        kind VARCHAR,
        amount DOUBLE PRECISION,
        hash VARCHAR,
        "user" VARCHAR
    );
    """,
    # Natural keys: re-syncing the same history must not duplicate rows
    'CREATE UNIQUE INDEX IF NOT EXISTS fills_user_tid ON fills ("user", tid);',
    'CREATE UNIQUE INDEX IF NOT EXISTS funding_user_time_coin ON funding ("user", time_ms, coin);',
    'CREATE UNIQUE INDEX IF NOT EXISTS ledger_user_hash_time_kind ON ledger_updates ("user", hash, time_ms, kind);',
]


def _time_clause(column: str, start_time: Optional[int], end_time: Optional[int], params: list) -> str:
    clause = ""
    if start_time is not None:
        clause += f" AND {column} >= %s"
        params.append(start_time)
    if end_time is not None:
        clause += f" AND {column} <= %s"
        params.append(end_time)
    return clause


class PostgresRepo(IDataSource, IRawStore):
    """
    Local mirror of raw exchange records. Derived state (positions, PnL)
    is never stored; it is always recomputed from these rows.
    """

    def __init__(self, dsn: str):
        self.dsn = dsn
        self._init_db()

    def _connect(self):
        try:
            return psycopg2.connect(self.dsn)
        except psycopg2.Error as e:
            raise DataSourceError(f"Postgres connection failed: {e}") from e

    def _init_db(self):
        conn = self._connect()
        try:
            cur = conn.cursor()
            for statement in _SCHEMA:
                cur.execute(statement)
            conn.commit()
            cur.close()
            logger.info("Postgres mirror schema ready.")
        finally:
            conn.close()

    def _insert(self, query: str, rows: list) -> int:
        if not rows:
            return 0
        conn = self._connect()
        try:
            cur = conn.cursor()
            # RETURNING rows across all pages; conflicting rows return nothing
            inserted = execute_values(cur, query, rows, fetch=True)
            conn.commit()
            cur.close()
        except psycopg2.Error as e:
            raise DataSourceError(f"Postgres insert failed: {e}") from e
        finally:
            conn.close()
        return len(inserted)

    def _select(self, query: str, params: list) -> list:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(query, params)
            rows = cur.fetchall()
            cur.close()
            return rows
        except psycopg2.Error as e:
            raise DataSourceError(f"Postgres query failed: {e}") from e
        finally:
            conn.close()

    # IRawStore Implementation
    async def store_fills(self, user: str, trades: List[Trade]) -> int:
        data = [
            (t.time_ms, t.coin, t.side.value, t.px, t.sz, t.fee, t.closed_pnl, t.builder_id, t.hash, t.oid, t.tid, user)
            for t in trades
        ]
        insert_query = """
            INSERT INTO fills (time_ms, coin, side, px, sz, fee, closed_pnl, builder_id, hash, oid, tid, "user")
            VALUES %s
            ON CONFLICT DO NOTHING
            RETURNING 1
        """
        return await asyncio.to_thread(self._insert, insert_query, data)

    async def store_funding(self, user: str, entries: List[FundingEntry]) -> int:
        data = [(f.time_ms, f.coin or "", f.amount, user) for f in entries]
        insert_query = """
            INSERT INTO funding (time_ms, coin, amount, "user")
            VALUES %s
            ON CONFLICT DO NOTHING
            RETURNING 1
        """
        return await asyncio.to_thread(self._insert, insert_query, data)

    async def store_ledger_updates(self, user: str, entries: List[LedgerEntry]) -> int:
        data = [(e.time_ms, e.kind, e.amount, e.hash or "", user) for e in entries]
        insert_query = """
            INSERT INTO ledger_updates (time_ms, kind, amount, hash, "user")
            VALUES %s
            ON CONFLICT DO NOTHING
            RETURNING 1
        """
        return await asyncio.to_thread(self._insert, insert_query, data)

    # IDataSource Implementation
    async def get_user_fills(self, user: str, start_time: Optional[int] = None, end_time: Optional[int] = None) -> List[Trade]:
        params = [user]
        query = """
            SELECT time_ms, coin, side, px, sz, fee, closed_pnl, builder_id, hash, oid, tid
            FROM fills
            WHERE "user" = %s
        """ + _time_clause("time_ms", start_time, end_time, params) + " ORDER BY time_ms"

        rows = await asyncio.to_thread(self._select, query, params)
        return [
            Trade(
                time_ms=row[0],
                coin=row[1],
                side=row[2],
                px=row[3],
                sz=row[4],
                fee=row[5],
                closed_pnl=row[6],
                builder_id=row[7],
                hash=row[8] or "",
                oid=row[9],
                tid=row[10]
            )
            for row in rows
        ]

    async def get_user_funding(self, user: str, start_time: int, end_time: Optional[int] = None) -> List[FundingEntry]:
        params = [user]
        query = """
            SELECT time_ms, coin, amount
            FROM funding
            WHERE "user" = %s
        """ + _time_clause("time_ms", start_time, end_time, params) + " ORDER BY time_ms"

        rows = await asyncio.to_thread(self._select, query, params)
        return [FundingEntry(time_ms=row[0], coin=row[1] or None, amount=row[2]) for row in rows]

    async def get_user_ledger_updates(self, user: str, start_time: int, end_time: Optional[int] = None) -> List[LedgerEntry]:
        params = [user]
        query = """
            SELECT time_ms, kind, amount, hash
            FROM ledger_updates
            WHERE "user" = %s
        """ + _time_clause("time_ms", start_time, end_time, params) + " ORDER BY time_ms"

        rows = await asyncio.to_thread(self._select, query, params)
        return [LedgerEntry(time_ms=row[0], kind=row[1], amount=row[2], hash=row[3] or None) for row in rows]
