"""
Tests for the Postgres raw mirror against an in-memory stand-in for the
psycopg2 connection, enforcing the mirror's unique keys.
"""
import re

import pytest

from fillreplay.core.entities.ledger import FundingEntry, LedgerEntry
from fillreplay.core.services import SyncService
from fillreplay.infrastructure.gateways.local_mock import LocalMockDataSource
from fillreplay.infrastructure.persistence import postgres_repo
from fillreplay.infrastructure.persistence.postgres_repo import PostgresRepo

# Columns of each table's unique index, as positions in the inserted row
UNIQUE_KEYS = {
    "fills": lambda row: (row[11], row[10]),
    "funding": lambda row: (row[3], row[0], row[1]),
    "ledger_updates": lambda row: (row[4], row[3], row[0], row[2]),
}


class FakeCursor:
    def __init__(self, db):
        self.db = db

    def execute(self, statement, params=None):
        self.db.statements.append(statement)

    def close(self):
        pass


class FakeConnection:
    def __init__(self, db):
        self.db = db

    def cursor(self):
        return FakeCursor(self.db)

    def commit(self):
        pass

    def close(self):
        pass


class FakeDatabase:
    def __init__(self):
        self.statements = []
        self.tables = {name: {} for name in UNIQUE_KEYS}

    def execute_values(self, cur, query, rows, fetch=False):
        assert "ON CONFLICT DO NOTHING" in query
        assert fetch is True
        table = re.search(r"INSERT INTO (\w+)", query).group(1)
        returned = []
        for row in rows:
            key = UNIQUE_KEYS[table](row)
            if key not in self.tables[table]:
                self.tables[table][key] = row
                returned.append((1,))
        return returned


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDatabase()
    monkeypatch.setattr(postgres_repo.psycopg2, "connect", lambda dsn: FakeConnection(db))
    monkeypatch.setattr(postgres_repo, "execute_values", db.execute_values)
    return db


def test_schema_declares_unique_keys(fake_db):
    PostgresRepo("postgresql://mirror")

    indexes = [s for s in fake_db.statements if "CREATE UNIQUE INDEX" in s]
    assert len(indexes) == 3
    assert any('ON fills ("user", tid)' in s for s in indexes)


@pytest.mark.anyio
async def test_resync_does_not_duplicate_rows(fake_db, make_trade):
    source = LocalMockDataSource(
        trades=[make_trade(1, "B", 1).model_copy(update={"tid": 1}),
                make_trade(2, "A", 1).model_copy(update={"tid": 2})],
        funding=[FundingEntry(time_ms=3, amount=-0.5)],
        ledger=[LedgerEntry(time_ms=0, amount=100)],
    )
    sync = SyncService(source, PostgresRepo("postgresql://mirror"))

    first = await sync.sync_user("0xabc")
    second = await sync.sync_user("0xabc")

    assert first == {"fills": 2, "funding": 1, "ledger": 1}
    assert second == {"fills": 0, "funding": 0, "ledger": 0}
    assert {name: len(rows) for name, rows in fake_db.tables.items()} == {
        "fills": 2,
        "funding": 1,
        "ledger_updates": 1,
    }
