import pytest

from backend.scripts import bootstrap_admin, reset_user_password


class _SyncCursor:
    def __init__(self, results):
        self._results = list(results)
        self._rows = []
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        self._rows = self._results.pop(0) if self._results else []

    def fetchone(self):
        return self._rows[0] if self._rows else None


class _SyncConn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def transaction(self):
        return self

    def cursor(self):
        return self._cur


def _connect_with(results):
    cur = _SyncCursor(results)

    def connect(_url, **_kwargs):
        return _SyncConn(cur)

    return cur, connect


@pytest.fixture(autouse=True)
def _env(monkeypatch):
    monkeypatch.setenv("BOOTSTRAP_ADMIN", "1")
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/test")
    monkeypatch.delenv("BOOTSTRAP_ADMIN_PASSWORD", raising=False)
    monkeypatch.delenv("BOOTSTRAP_ADMIN_BRANCH", raising=False)


@pytest.mark.parametrize("raw,expected", [("1", True), (" Yes ", True), ("on", True), ("0", False), ("", False), (None, False)])
def test_truthy(raw, expected):
    assert bootstrap_admin._truthy(raw) is expected


def test_disabled_is_a_noop(monkeypatch):
    monkeypatch.delenv("BOOTSTRAP_ADMIN", raising=False)
    cur, connect = _connect_with([])
    assert bootstrap_admin.main(connect=connect) == 0
    assert cur.executed == []


def test_missing_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    _, connect = _connect_with([])
    assert bootstrap_admin.main(connect=connect) == 2


def test_existing_admin_is_left_alone():
    cur, connect = _connect_with([[{"id_usuario": "u-1"}]])
    assert bootstrap_admin.main(connect=connect) == 0
    assert len(cur.executed) == 1


def test_creates_admin_with_generated_password(capsys):
    cur, connect = _connect_with([[]])
    assert bootstrap_admin.main(connect=connect) == 0
    sql, params = cur.executed[-1]
    assert "INSERT INTO usuarios" in sql
    assert params["correo"] == "admin@moncar.local"
    assert params["must_change"] is True
    assert params["hash"].startswith("$2")
    assert "password: " in capsys.readouterr().out


def test_unknown_branch_aborts(monkeypatch):
    monkeypatch.setenv("BOOTSTRAP_ADMIN_BRANCH", "norte")
    monkeypatch.setenv("BOOTSTRAP_ADMIN_PASSWORD", "x" * 12)
    cur, connect = _connect_with([[], []])
    assert bootstrap_admin.main(connect=connect) == 2
    assert not any("INSERT" in sql for sql, _ in cur.executed)


def test_reset_password_unlocks_account():
    cur, connect = _connect_with([[{"id_usuario": "u-1"}]])
    rc = reset_user_password.main(["--email", " Ana@Moncar.mx ", "--password", "nuevo-secreto"], connect=connect)
    assert rc == 0
    sql, params = cur.executed[0]
    assert "locked_until = NULL" in sql
    assert params["correo"] == "ana@moncar.mx"
    assert params["must_change"] is True


def test_reset_password_unknown_user():
    _, connect = _connect_with([[]])
    assert reset_user_password.main(["--email", "x@y.z", "--password", "nuevo-secreto"], connect=connect) == 2


def test_reset_password_rejects_short_password():
    cur, connect = _connect_with([])
    assert reset_user_password.main(["--email", "x@y.z", "--password", "corta"], connect=connect) == 2
    assert cur.executed == []
