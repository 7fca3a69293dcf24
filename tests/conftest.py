# tests/conftest.py
"""
Shared test fixtures and configuration for pytest.
"""

import copy
import os
from pathlib import Path
from unittest.mock import patch

import pytest

import dbbridge.config
from dbbridge.database import Database
from dbbridge.defaults import settings

TEST_ENCRYPTION_KEY = '2YvTXI9DHQPy4d6-ZC9NxcypvLMsJ94OBdmoHyjmwbM='


@pytest.fixture(autouse=True)
def isolated_settings():
    """Restore global settings and the global config manager after every test."""
    saved = copy.deepcopy(settings)
    with patch.dict(os.environ, {'DBBRIDGE_ENCRYPTION_KEY': TEST_ENCRYPTION_KEY}):
        yield
    settings.clear()
    settings.update(saved)
    dbbridge.config._config_manager = None


@pytest.fixture
def test_config_file():
    """Path to test config file."""
    return Path(__file__).parent / 'test.yml'


@pytest.fixture
def sqlite_db():
    """Create in-memory SQLite database."""
    db = Database.create('sqlite', database=':memory:')
    yield db
    db.close()


@pytest.fixture
def cursor(sqlite_db):
    """Get cursor from SQLite database."""
    return sqlite_db.cursor()


@pytest.fixture
def air_nomads(sqlite_db):
    """Air Nomad roster with text, integer, real, date and null values."""
    cur = sqlite_db.cursor()
    cur.execute("""
                CREATE TABLE air_nomads
                (
                    nomad_id   INTEGER PRIMARY KEY,
                    name       TEXT NOT NULL,
                    temple     TEXT,
                    meditation REAL,
                    ordained   TEXT
                )
                """)
    cur.executemany("INSERT INTO air_nomads VALUES (?, ?, ?, ?, ?)", [
        (1, 'Aang', 'Southern Air Temple', 9.5, '2024-01-15'),
        (2, 'Gyatso', 'Southern Air Temple', 10.0, None),
        (3, 'Tenzin', None, 8.25, '2024-03-01'),
    ])
    sqlite_db.commit()
    return 'air_nomads'


@pytest.fixture
def soldiers_table(sqlite_db):
    """Empty Fire Nation army table with a primary key, for bulk loads."""
    cur = sqlite_db.cursor()
    cur.execute("""
                CREATE TABLE fire_nation_army
                (
                    soldier_id        INTEGER PRIMARY KEY,
                    name              TEXT NOT NULL,
                    rank              TEXT,
                    firebending_skill REAL
                )
                """)
    sqlite_db.commit()
    return 'fire_nation_army'


@pytest.fixture
def count_rows(sqlite_db):
    """Row count of a table in the sqlite_db fixture."""
    def count(table):
        cur = sqlite_db.cursor()
        cur.execute(f"SELECT COUNT(*) FROM {table}")
        return cur.fetchone()[0]
    return count
