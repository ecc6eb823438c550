"""Key/value persistence used by the orchestration engine.

Values are JSON-compatible structures. Read-modify-write sequences are the
caller's responsibility; neither backend offers transactions across keys.
"""

from __future__ import annotations

import json
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from sellerboard.errors import StoreError
from sellerboard.logging_config import get_logger

from .models_sql import KeyValueEntry

LOGGER = get_logger(__name__)


class PersistentStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """Process-local store; values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = deepcopy(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        try:
            # Same serialisability contract as the SQL backend.
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Value for {key!r} is not JSON serialisable: {exc}") from exc
        self._data[key] = deepcopy(value)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqlKeyValueStore:
    """Store JSON documents in the ``kv_entries`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, key: str, default: Any = None) -> Any:
        try:
            with self._session_factory() as session:
                entry = session.get(KeyValueEntry, key)
                if entry is None:
                    return default
                raw = entry.value
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {key!r}: {exc}") from exc
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StoreError(f"Corrupt JSON stored under {key!r}: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Value for {key!r} is not JSON serialisable: {exc}") from exc

        now = datetime.now(timezone.utc)
        session = None
        try:
            session = self._session_factory()
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=payload, updated_at=now))
            else:
                entry.value = payload
                entry.updated_at = now
            session.commit()
        except SQLAlchemyError as exc:
            if session is not None:
                session.rollback()
            raise StoreError(f"Failed to write {key!r}: {exc}") from exc
        finally:
            if session is not None:
                session.close()
        LOGGER.debug("Stored key %s (%d bytes)", key, len(payload))


__all__ = ["MemoryStore", "PersistentStore", "SqlKeyValueStore"]
