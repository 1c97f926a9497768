from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import redis
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import KeyValueEntry

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r'[^A-Za-z0-9_.-]')


class KeyValueStorage(Protocol):
    """Backing storage for the hydration store: JSON values under string keys."""

    def read_json(self, key: str) -> Any: ...

    def write_json(self, key: str, data: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class StorageService:
    """JSON key-value storage that defaults to the filesystem for local use.

    When a Redis URL is supplied every key is written to Redis instead; any
    Redis error falls back to the JSON file of the same name.
    """

    def __init__(self, data_dir: Path | str, redis_url: Optional[str] = None) -> None:
        self._redis: Optional[Any] = self._init_redis(redis_url)

        data_dir = Path(data_dir).expanduser()
        data_dir.mkdir(parents=True, exist_ok=True)
        self._data_dir = data_dir.resolve()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def read_json(self, key: str) -> Any:
        path = self._path(key)
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(key))
            except Exception:
                logger.warning('Redis read failed; using filesystem fallback', exc_info=True)
            else:
                if raw is not None:
                    if isinstance(raw, bytes):
                        raw = raw.decode('utf-8')
                    try:
                        return json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning('Redis value was not valid JSON for %s', key)
                # Redis miss should check filesystem fallback

        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError:
            logger.warning('Ignoring corrupt JSON file %s', path.name)
            return None

    def write_json(self, key: str, data: Any) -> None:
        if self._redis is not None:
            try:
                self._redis.set(self._redis_key(key), json.dumps(data))
                return
            except Exception:
                logger.warning('Redis write failed; using filesystem fallback', exc_info=True)

        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))

    def remove(self, key: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(self._redis_key(key))
            except Exception:
                logger.warning('Failed to delete redis key %s', key, exc_info=True)

        self._path(key).unlink(missing_ok=True)

    def _init_redis(self, redis_url: Optional[str]) -> Optional[Any]:
        if not redis_url:
            return None
        try:
            client = redis.from_url(redis_url, decode_responses=True)
        except Exception:
            logger.warning('Redis initialisation failed; using filesystem storage', exc_info=True)
            return None
        logger.info('Using Redis for hydration storage')
        return client

    def _redis_key(self, key: str) -> str:
        return f'aquadaily:{key}'

    def _path(self, key: str) -> Path:
        return self._data_dir / f'{_SAFE_KEY.sub("_", key)}.json'


class DatabaseStorage:
    """One ``kv_entries`` row per key, through the shared Flask-SQLAlchemy handle.

    Must be used inside an application context.
    """

    def read_json(self, key: str) -> Any:
        entry = db.session.get(KeyValueEntry, key)
        return entry.value if entry is not None else None

    def write_json(self, key: str, data: Any) -> None:
        entry = db.session.get(KeyValueEntry, key)
        if entry is None:
            entry = KeyValueEntry(key=key)
            db.session.add(entry)
        entry.value = data
        entry.touch()
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception('storage.database.write_failed', extra={'key': key})
            raise

    def remove(self, key: str) -> None:
        entry = db.session.get(KeyValueEntry, key)
        if entry is None:
            return
        db.session.delete(entry)
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception('storage.database.remove_failed', extra={'key': key})
            raise


class MemoryStorage:
    """In-process storage for tests and throwaway runs."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    def read_json(self, key: str) -> Any:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def write_json(self, key: str, data: Any) -> None:
        # Round-trip through JSON so callers never share mutable state with the store.
        self._data[key] = json.dumps(data)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)
