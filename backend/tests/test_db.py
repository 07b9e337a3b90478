"""
Tests for engine creation and caching.
"""
from sqlalchemy import create_engine
from sqlalchemy.pool import QueuePool, StaticPool

from med1_analytics.db import check_engine_connection, dispose_all_engines, get_engine_from_dsn


class TestEngineCache:
    """Engines are created once per DSN"""

    def teardown_method(self):
        dispose_all_engines()

    def test_in_memory_sqlite_shares_one_connection(self):
        eng = get_engine_from_dsn("sqlite://")
        assert isinstance(eng.pool, StaticPool)
        assert get_engine_from_dsn("sqlite://") is eng
        assert check_engine_connection(eng) == (True, None)

    def test_file_sqlite_creates_its_directory(self, tmp_path):
        target = tmp_path / "nested" / "facts.sqlite"
        eng = get_engine_from_dsn(f"sqlite:///{target}")
        assert isinstance(eng.pool, QueuePool)
        assert target.parent.is_dir()
        ok, err = check_engine_connection(eng)
        assert ok and err is None

    def test_dispose_all(self):
        get_engine_from_dsn("sqlite://")
        get_engine_from_dsn("sqlite:///:memory:")
        assert dispose_all_engines() == 2
        assert dispose_all_engines() == 0

    def test_unreachable_database_reports_error(self, tmp_path):
        eng = create_engine(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'facts.sqlite'}")
        ok, err = check_engine_connection(eng)
        assert not ok
        assert "unable to open database file" in err
