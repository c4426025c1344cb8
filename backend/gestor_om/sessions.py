from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from threading import RLock
from typing import Dict, Optional

from fastapi import HTTPException, status

from .schemas import AppState, User, UserRole
from .security import verify_password

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Identity of the logged-in user for the duration of one session."""

    token: str
    user: User

    @property
    def is_manager(self) -> bool:
        return self.user.role == UserRole.MANAGER

    @property
    def can_manage_status(self) -> bool:
        return self.user.role in (UserRole.MANAGER, UserRole.ADMIN)


def generate_token_value() -> str:
    raw = os.urandom(32)
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


class SessionRegistry:
    """Login sessions kept in process memory only; a restart logs everyone out."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._secret = os.urandom(32)
        self._sessions: Dict[str, str] = {}

    def _token_hash(self, token: str) -> str:
        digest = hmac.new(self._secret, msg=token.encode(), digestmod=hashlib.sha256)
        return digest.hexdigest()

    def login(self, state: AppState, username: str, password: str) -> SessionContext:
        user = next(
            (u for u in state.users if u.username == username and verify_password(password, u.password_hash)),
            None,
        )
        if user is None:
            logger.info("Falha de login para %r", username)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuário ou senha inválidos")
        token = generate_token_value()
        with self._lock:
            self._sessions[self._token_hash(token)] = user.id
        logger.info("Login de %s (%s)", user.username, user.role.value)
        return SessionContext(token=token, user=user)

    def logout(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(self._token_hash(token), None) is not None

    def resolve(self, state: AppState, token: str) -> Optional[SessionContext]:
        with self._lock:
            user_id = self._sessions.get(self._token_hash(token))
        if user_id is None:
            return None
        user = next((u for u in state.users if u.id == user_id), None)
        if user is None:
            self.logout(token)
            return None
        return SessionContext(token=token, user=user)

    def drop_user(self, user_id: str) -> None:
        with self._lock:
            for key in [k for k, v in self._sessions.items() if v == user_id]:
                del self._sessions[key]
