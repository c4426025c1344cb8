from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Dict, Generator

_TMP_ROOT = Path(tempfile.mkdtemp(prefix="gestor-om-tests-"))
os.environ.setdefault("GOM_SQLITE_PATH", str(_TMP_ROOT / "gestor_om.db"))
os.environ.setdefault("GOM_JSON_DIR", str(_TMP_ROOT / "state"))
os.environ.setdefault("GOM_LOG_DIR", str(_TMP_ROOT / "logs"))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from gestor_om.database import build_engine, build_sessionmaker
from gestor_om.main import create_app
from gestor_om.storage import SQLiteStateBackend, StateStore


@pytest.fixture()
def store(tmp_path: Path) -> StateStore:
    engine = build_engine(tmp_path / "state.db")
    return StateStore(SQLiteStateBackend(build_sessionmaker(engine)))


@pytest.fixture()
def app(store: StateStore) -> FastAPI:
    return create_app(store)


@pytest.fixture()
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


def login(client: TestClient, username: str, password: str) -> Dict[str, str]:
    response = client.post("/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture()
def manager_headers(client: TestClient) -> Dict[str, str]:
    return login(client, "rafael", "123")


def _create_user(client: TestClient, headers: Dict[str, str], username: str, role: str, shift: str = "A") -> None:
    response = client.post(
        "/users",
        json={"name": username.title(), "username": username, "password": "secret", "role": role, "shift": shift},
        headers=headers,
    )
    assert response.status_code == 201, response.text


@pytest.fixture()
def admin_headers(client: TestClient, manager_headers: Dict[str, str]) -> Dict[str, str]:
    _create_user(client, manager_headers, "ana", "admin")
    return login(client, "ana", "secret")


@pytest.fixture()
def executor_headers(client: TestClient, manager_headers: Dict[str, str]) -> Dict[str, str]:
    _create_user(client, manager_headers, "joao", "executor", "C")
    return login(client, "joao", "secret")
