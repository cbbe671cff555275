from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from worktrack.core.errors import NotFoundError
from worktrack.models.client import Client

_registry_lock = threading.Lock()
_client_locks: dict[int, threading.RLock] = {}


def _lock_for(client_id: int) -> threading.RLock:
    with _registry_lock:
        lock = _client_locks.get(client_id)
        if lock is None:
            lock = threading.RLock()
            _client_locks[client_id] = lock
        return lock


@contextmanager
def client_lock(client_id: int) -> Iterator[None]:
    """Serialise start/end/verify for one client within this process.

    Re-entrant so the session machine can call the biometric gate while
    holding it. Cross-process exclusion comes from ``lock_client_row``.
    """
    lock = _lock_for(client_id)
    with lock:
        yield


def lock_client_row(db: Session, client_id: int) -> Client:
    client = (
        db.query(Client)
        .filter(Client.id == client_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if client is None:
        raise NotFoundError("Client not found")
    return client
