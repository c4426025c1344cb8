from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from .config import Settings
from .database import db_session, session_factory_for
from .models import StateRecord
from .schemas import AppState, User, UserRole
from .security import DEFAULT_PASSWORD_HASH

logger = logging.getLogger(__name__)

STATE_KEY = "current_state"

DEFAULT_MANAGER = User(
    id="manager-1",
    name="Rafael",
    username="rafael",
    password_hash=DEFAULT_PASSWORD_HASH,
    role=UserRole.MANAGER,
)


def initial_state() -> AppState:
    return AppState(users=[DEFAULT_MANAGER.model_copy()])


class SQLiteStateBackend:
    """Keeps the snapshot as a JSON document in the ``app_state`` table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def read(self) -> Optional[Dict[str, Any]]:
        with db_session(self._session_factory) as session:
            record = session.get(StateRecord, STATE_KEY)
            if record is None:
                return None
            return json.loads(record.value)

    def write(self, payload: Dict[str, Any]) -> None:
        value = json.dumps(payload, ensure_ascii=False)
        with db_session(self._session_factory) as session:
            record = session.get(StateRecord, STATE_KEY)
            if record:
                record.value = value
            else:
                session.add(StateRecord(key=STATE_KEY, value=value))


class JsonFileStateBackend:
    """Keeps the snapshot in ``<directory>/current_state.json``."""

    def __init__(self, directory: Path):
        self.path = Path(directory) / f"{STATE_KEY}.json"

    def read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        return json.loads(self.path.read_text(encoding="utf-8"))

    def write(self, payload: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class StateStore:
    """Whole-snapshot reader/writer. Concurrent writers race; the last write wins."""

    def __init__(self, backend):
        self.backend = backend

    def load(self) -> AppState:
        try:
            stored = self.backend.read()
        except Exception:
            logger.warning("Erro ao carregar banco de dados; usando estado inicial", exc_info=True)
            return initial_state()

        if stored is None:
            state = initial_state()
            self.save(state)
            return state

        try:
            state = AppState.model_validate({**stored, "currentUser": None})
        except Exception:
            logger.warning("Snapshot armazenado inválido; usando estado inicial", exc_info=True)
            return initial_state()

        if not any(user.role == UserRole.MANAGER for user in state.users):
            logger.warning("Nenhum gerente encontrado; restaurando gerente padrão %s", DEFAULT_MANAGER.username)
            state.users.append(DEFAULT_MANAGER.model_copy())
        return state

    def save(self, state: AppState) -> bool:
        try:
            self.backend.write(state.persisted_payload())
        except Exception:
            logger.exception("Erro ao salvar no banco de dados")
            return False
        return True


def build_store(config: Settings, session_factory: Optional[sessionmaker] = None) -> StateStore:
    if config.storage_backend == "sqlite":
        return StateStore(SQLiteStateBackend(session_factory or session_factory_for(config.sqlite_path)))
    if config.storage_backend == "json":
        return StateStore(JsonFileStateBackend(config.json_dir))
    raise NotImplementedError(f"Unsupported storage backend: {config.storage_backend}")
