import asyncio

import pytest
from fastapi import HTTPException

from backend.app import deps
from backend.app.security import issue_token

SECRET = "t" * 32


def _bearer(claims, secret=SECRET):
    return "Bearer " + issue_token(claims, secret, expires_minutes=5)


@pytest.fixture(autouse=True)
def _jwt_secret(monkeypatch):
    monkeypatch.setattr(deps.settings, "jwt_secret", SECRET)


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "Bearer not-a-jwt"])
def test_get_claims_rejects_missing_or_bad_token(header):
    with pytest.raises(HTTPException) as exc_info:
        deps.get_claims(header)
    assert exc_info.value.status_code == 401


def test_get_claims_rejects_foreign_secret():
    with pytest.raises(HTTPException) as exc_info:
        deps.get_claims(_bearer({"sub": "u-1"}, secret="o" * 32))
    assert exc_info.value.status_code == 401


def test_get_claims_without_server_secret(monkeypatch):
    monkeypatch.setattr(deps.settings, "jwt_secret", None)
    with pytest.raises(HTTPException) as exc_info:
        deps.get_claims(_bearer({"sub": "u-1"}))
    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == "SERVER_MISCONFIG_JWT_SECRET"


def test_get_claims_normalizes_role():
    claims = deps.get_claims(_bearer({"sub": " u-1 ", "rol": " Admin ", "sucursal_id": "s-1"}))
    assert claims == {"user_id": "u-1", "rol": "admin", "sucursal_id": "s-1", "correo": None}


def test_require_any_role():
    dep = deps.require_any_role("admin", "sync")
    assert dep({"rol": "sync"})["rol"] == "sync"
    with pytest.raises(HTTPException) as exc_info:
        dep({"rol": "cajero"})
    assert exc_info.value.status_code == 403
    with pytest.raises(HTTPException) as exc_info:
        dep({"rol": ""})
    assert exc_info.value.status_code == 401


def test_user_context_reads_current_branch(scripted_db):
    scripted_db(deps, [[{"user_id": "u-1", "rol": "GERENTE", "sucursal_id": "s-1", "sucursal_codigo": " centro "}]])
    ctx = asyncio.run(deps.get_user_context({"user_id": "u-1"}))
    assert ctx == {"user_id": "u-1", "rol": "gerente", "sucursal_id": "s-1", "sucursal_codigo": "centro"}


def test_user_context_maps_unknown_role_and_missing_user(scripted_db):
    scripted_db(deps, [[{"user_id": "u-1", "rol": "auditor", "sucursal_id": None, "sucursal_codigo": None}]])
    assert asyncio.run(deps.get_user_context({"user_id": "u-1"}))["rol"] == "user"

    scripted_db(deps, [[]])
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(deps.get_user_context({"user_id": "gone"}))
    assert exc_info.value.status_code == 401
