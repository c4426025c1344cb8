from __future__ import annotations

import secrets
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, Iterator, List, Optional

from .schemas import AppState, Task
from .storage import StateStore


@dataclass
class PendingImport:
    """Duplicate rows of an upload waiting for a yes/no answer."""

    id: str
    replacements: List[Task] = field(default_factory=list)
    requested_by: str = ""


class RuntimeState:
    """In-memory application snapshot; every mutation is written back wholesale."""

    def __init__(self, store: StateStore):
        self._lock = RLock()
        self.store = store
        self._state: AppState = store.load()
        self._pending_imports: Dict[str, PendingImport] = {}

    def snapshot(self) -> AppState:
        with self._lock:
            return self._state.model_copy(deep=True)

    @contextmanager
    def mutate(self) -> Iterator[AppState]:
        """Yield a working copy; it replaces the snapshot only if the block completes."""
        with self._lock:
            working = self._state.model_copy(deep=True)
            yield working
            self._state = working
            self.store.save(working)

    def add_pending_import(self, replacements: List[Task], requested_by: str) -> PendingImport:
        pending = PendingImport(
            id=secrets.token_urlsafe(12),
            replacements=list(replacements),
            requested_by=requested_by,
        )
        with self._lock:
            self._pending_imports[pending.id] = pending
        return pending

    def pop_pending_import(self, import_id: str) -> Optional[PendingImport]:
        with self._lock:
            return self._pending_imports.pop(import_id, None)
