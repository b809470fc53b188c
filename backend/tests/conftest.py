import copy
import os
import sys
from contextlib import asynccontextmanager

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from psycopg import errors as pg_errors  # noqa: E402

from backend.app.importers import audit, sync_cursor, upsert  # noqa: E402
from backend.app.validation import PAYMENT_METHODS  # noqa: E402


_CANCELLATION_FIELDS = (
    "venta_id",
    "fecha_emision",
    "fecha_cancelacion",
    "motivo_cancelacion",
    "folio_sustitucion",
    "uuid_cfdi",
    "cliente_origen",
    "cliente_nombre",
    "importe",
)


class FakePosDb:
    """
    In-memory stand-in for the import tables.

    Understands exactly the statements issued by the importers (matched by text),
    applies Postgres' constraint behavior that matters to them (lines FK to
    productos, the payment method enum, payment PK) and rolls a transaction back
    to its snapshot when the block raises.
    """

    def __init__(self, skus=("A1", "B2", "C3")):
        self.productos = set(skus)
        self.ventas: dict[int, dict] = {}
        self.lineas: dict[tuple[int, int], dict] = {}
        self.pagos: dict[tuple[int, int], dict] = {}
        self.cancelaciones: dict[int, dict] = {}
        self.import_log: list[dict] = []
        self.cursors: dict[str, int] = {}
        self.fail_audit = False
        self.fail_cursor = False
        self.connections_opened = 0
        self.checked_out = 0
        self.commits = 0
        self.rollbacks = 0

    # -- state helpers

    _TABLES = ("ventas", "lineas", "pagos", "cancelaciones", "import_log", "cursors")

    def _snapshot(self):
        return {t: copy.deepcopy(getattr(self, t)) for t in self._TABLES}

    def _restore(self, snap):
        for t, v in snap.items():
            setattr(self, t, v)

    def lines_of(self, venta_id):
        return [self.lineas[k] for k in sorted(k for k in self.lineas if k[0] == venta_id)]

    def payments_of(self, venta_id):
        return [self.pagos[k] for k in sorted(k for k in self.pagos if k[0] == venta_id)]

    # -- connection protocol

    @asynccontextmanager
    async def connect(self):
        self.connections_opened += 1
        self.checked_out += 1
        try:
            yield _FakeConn(self)
        finally:
            self.checked_out -= 1

    # -- statement dispatch

    def run(self, sql, params):
        if sql == upsert.UPSERT_SALE_SQL:
            prev = self.ventas.get(params["venta_id"], {})
            row = dict(params)
            for k in ("cancelada", "fecha_cancelacion", "motivo_cancelacion", "folio_sustitucion", "uuid_cfdi"):
                row[k] = prev.get(k, False if k == "cancelada" else None)
            self.ventas[params["venta_id"]] = row
            return [], 1
        if sql == upsert.APPLY_STORED_CANCELLATION_SQL:
            sale = self.ventas.get(params["venta_id"])
            matches = [cid for cid, c in self.cancelaciones.items() if c.get("venta_id") == params["venta_id"]]
            if sale is None or not matches:
                return [], 0
            c = self.cancelaciones[max(matches)]
            sale["cancelada"] = True
            for f in ("fecha_cancelacion", "motivo_cancelacion", "folio_sustitucion", "uuid_cfdi"):
                if c.get(f) is not None:
                    sale[f] = c[f]
            return [], 1
        if sql == upsert.DELETE_LINES_SQL:
            keys = [k for k in self.lineas if k[0] == params["venta_id"]]
            for k in keys:
                del self.lineas[k]
            return [], len(keys)
        if sql == upsert.INSERT_LINE_SQL:
            if params["sku"] not in self.productos:
                raise pg_errors.ForeignKeyViolation(
                    f'insert or update on table "lineas_venta" violates foreign key constraint (sku={params["sku"]})'
                )
            self.lineas[(params["venta_id"], params["renglon"])] = dict(params)
            return [], 1
        if sql == upsert.DELETE_PAYMENTS_SQL:
            keys = [k for k in self.pagos if k[0] == params["venta_id"]]
            for k in keys:
                del self.pagos[k]
            return [], len(keys)
        if sql == upsert.INSERT_PAYMENT_SQL:
            if params["metodo"] not in PAYMENT_METHODS:
                raise pg_errors.InvalidTextRepresentation(
                    f'invalid input value for enum tipo_metodo_pago: "{params["metodo"]}"'
                )
            key = (params["venta_id"], params["idx"])
            if key in self.pagos:
                raise pg_errors.UniqueViolation('duplicate key value violates unique constraint "pagos_venta_pkey"')
            self.pagos[key] = dict(params)
            return [], 1
        if sql == upsert.UPSERT_CANCELLATION_SQL:
            cid = params["id_cancelacion_origen"]
            prev = self.cancelaciones.get(cid)
            if prev is None:
                self.cancelaciones[cid] = dict(params)
            else:
                for f in _CANCELLATION_FIELDS:
                    if params[f] is not None:
                        prev[f] = params[f]
            return [], 1
        if sql == upsert.FLAG_SALE_CANCELLED_SQL:
            sale = self.ventas.get(params["venta_id"])
            if sale is None:
                return [], 0
            if params["sucursal_id"] is not None and sale.get("sucursal_id") != params["sucursal_id"]:
                return [], 0
            sale["cancelada"] = True
            for f in ("fecha_cancelacion", "motivo_cancelacion", "folio_sustitucion", "uuid_cfdi"):
                if params[f] is not None:
                    sale[f] = params[f]
            return [], 1
        if sql == audit.INSERT_IMPORT_LOG_SQL:
            if self.fail_audit:
                raise pg_errors.OperationalError("connection lost")
            self.import_log.append(dict(params))
            return [], 1
        if sql == sync_cursor.ADVANCE_CURSOR_SQL:
            if self.fail_cursor:
                raise pg_errors.OperationalError("connection lost")
            current = self.cursors.get(params["id_fuente"])
            incoming = params["ultimo_id"]
            self.cursors[params["id_fuente"]] = incoming if current is None else max(current, incoming)
            return [], 1
        if sql == sync_cursor.READ_CURSOR_SQL:
            if params["id_fuente"] not in self.cursors:
                return [], 0
            return [{"ultimo_id": self.cursors[params["id_fuente"]]}], 1
        raise AssertionError(f"unexpected SQL: {sql[:80]!r}")


class _FakeConn:
    def __init__(self, db: FakePosDb):
        self._db = db

    @asynccontextmanager
    async def transaction(self):
        snap = self._db._snapshot()
        try:
            yield self
        except BaseException:
            self._db._restore(snap)
            self._db.rollbacks += 1
            raise
        self._db.commits += 1

    @asynccontextmanager
    async def cursor(self):
        yield _FakeCursor(self._db)


class _FakeCursor:
    def __init__(self, db: FakePosDb):
        self._db = db
        self._rows: list[dict] = []
        self.rowcount = -1
        self.executed: list[tuple[str, dict]] = []

    async def execute(self, sql, params=None):
        self.executed.append((sql, params))
        self._rows, self.rowcount = self._db.run(sql, params or {})

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)


@pytest.fixture
def fake_db():
    return FakePosDb()


class ScriptedCursor:
    """Answers every query with the next queued result; records what was executed."""

    def __init__(self, results=None):
        self._results = list(results or [])
        self._rows: list[dict] = []
        self.executed: list[tuple[str, dict]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, sql, params=None):
        self.executed.append((sql, params))
        self._rows = self._results.pop(0) if self._results else []

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)


class ScriptedConn:
    def __init__(self, cursor: ScriptedCursor):
        self._cursor = cursor

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def transaction(self):
        return self

    def cursor(self):
        return self._cursor


@pytest.fixture
def scripted_db(monkeypatch):
    """
    `scripted_db(module, results)` swaps `module.get_conn` for a connection whose
    cursor returns `results` in order. Returns the cursor.
    """

    def _install(module, results=None):
        cur = ScriptedCursor(results)
        conn = ScriptedConn(cur)
        monkeypatch.setattr(module, "get_conn", lambda: conn)
        return cur

    return _install
