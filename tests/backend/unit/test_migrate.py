import pytest

from swipematch.backend import migrate


class _FakeCursor:
    def __init__(self) -> None:
        self.executed: list[str] = []

    def execute(self, sql: str) -> None:
        self.executed.append(sql)

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _FakeConnection:
    def __init__(self) -> None:
        self.cursor_instance = _FakeCursor()
        self.committed = False

    def cursor(self) -> _FakeCursor:
        return self.cursor_instance

    def commit(self) -> None:
        self.committed = True

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


def test_main_requires_database_url(monkeypatch) -> None:
    monkeypatch.delenv("SWIPEMATCH_DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError, match="SWIPEMATCH_DATABASE_URL"):
        migrate.main()


def test_apply_schema_executes_schema_file_and_commits(monkeypatch, tmp_path) -> None:
    psycopg = pytest.importorskip("psycopg")
    connection = _FakeConnection()
    urls: list[str] = []

    def fake_connect(url: str) -> _FakeConnection:
        urls.append(url)
        return connection

    monkeypatch.setattr(psycopg, "connect", fake_connect)
    schema = tmp_path / "schema.sql"
    schema.write_text("CREATE TABLE parties (id BIGSERIAL PRIMARY KEY);", encoding="utf-8")

    migrate.apply_schema("postgresql://local/swipematch", schema_path=schema)

    assert urls == ["postgresql://local/swipematch"]
    assert connection.cursor_instance.executed == ["CREATE TABLE parties (id BIGSERIAL PRIMARY KEY);"]
    assert connection.committed is True


def test_bundled_schema_declares_unique_match_pair() -> None:
    schema_sql = migrate.SCHEMA_PATH.read_text(encoding="utf-8")

    assert "UNIQUE (party_a_id, party_b_id)" in schema_sql
