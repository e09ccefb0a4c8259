"""
Client Engagement Portal
Local progress cache — the optimistic, client-reported side of progress.

Backends (PROGRESS_CACHE_BACKEND):
    sql     ProgressRecord rows, optimistic version column (default)
    redis   one JSON value per client under ``progress:{client_id}``
    memory  process-local dict, for development and tests

Every backend implements ``merge_into`` as a read-merge-write cycle that
detects concurrent writers (version column, WATCH, or a lock) and retries,
so two writers never drop each other's completion flags.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from portal.core.exceptions import ConflictingState
from portal.models import db
from portal.models.progress import ProgressRecord
from portal.services.progress_snapshot import ProgressSnapshot

logger = logging.getLogger(__name__)

_MAX_MERGE_ATTEMPTS = 5

BACKENDS = ("sql", "redis", "memory")


class LocalProgressCache(ABC):
    """Snapshot storage keyed by client id."""

    @abstractmethod
    def get(self, client_id: str) -> ProgressSnapshot | None:
        """Stored snapshot, or None when nothing was ever recorded."""

    @abstractmethod
    def set(self, client_id: str, snapshot: ProgressSnapshot) -> None:
        """Blind overwrite. Prefer ``merge_into`` for anything user-driven."""

    @abstractmethod
    def discard(self, client_id: str) -> None:
        """Forget the client (teardown)."""

    @abstractmethod
    def merge_into(self, client_id: str, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        """Atomically store ``stored | snapshot`` and return it."""


# ── In-memory ────────────────────────────────────────────────────────────


class MemoryProgressCache(LocalProgressCache):

    def __init__(self) -> None:
        self._store: dict[str, ProgressSnapshot] = {}
        self._lock = threading.Lock()

    def get(self, client_id):
        return self._store.get(client_id)

    def set(self, client_id, snapshot):
        with self._lock:
            self._store[client_id] = snapshot

    def discard(self, client_id):
        with self._lock:
            self._store.pop(client_id, None)

    def merge_into(self, client_id, snapshot):
        with self._lock:
            merged = self._store.get(client_id, ProgressSnapshot.empty()).merge(snapshot)
            self._store[client_id] = merged
            return merged


# ── Redis ────────────────────────────────────────────────────────────────


class RedisProgressCache(LocalProgressCache):
    """Values are JSON objects keyed by step number: ``{"1": true, ..., "5": false}``."""

    def __init__(self, client) -> None:
        self._redis = client

    @staticmethod
    def _key(client_id: str) -> str:
        return f"progress:{client_id}"

    @staticmethod
    def _decode(raw) -> ProgressSnapshot | None:
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            data = None
        if not isinstance(data, dict):
            logger.warning("Discarding unreadable progress cache value: %r", raw)
            return None
        return ProgressSnapshot.from_mapping(data)

    @staticmethod
    def _encode(snapshot: ProgressSnapshot) -> str:
        return json.dumps(snapshot.to_mapping())

    def get(self, client_id):
        return self._decode(self._redis.get(self._key(client_id)))

    def set(self, client_id, snapshot):
        self._redis.set(self._key(client_id), self._encode(snapshot))

    def discard(self, client_id):
        self._redis.delete(self._key(client_id))

    def merge_into(self, client_id, snapshot):
        key = self._key(client_id)

        def _read_merge_write(pipe):
            current = self._decode(pipe.get(key)) or ProgressSnapshot.empty()
            merged = current.merge(snapshot)
            pipe.multi()
            pipe.set(key, self._encode(merged))
            return merged

        # WATCH/MULTI: redis-py re-runs the callable when the key changed underneath
        return self._redis.transaction(_read_merge_write, key, value_from_callable=True)


# ── SQL (ProgressRecord) ─────────────────────────────────────────────────


class SqlProgressCache(LocalProgressCache):
    """Stores snapshots in ``progress_records``; commits its own writes."""

    def get(self, client_id):
        record = db.session.get(ProgressRecord, client_id)
        if record is None:
            return None
        return ProgressSnapshot(record.flags())

    @staticmethod
    def _apply(record: ProgressRecord, snapshot: ProgressSnapshot) -> None:
        for n, flag in enumerate(snapshot.steps, start=1):
            setattr(record, f"step_{n}", flag)
        record.current_step = snapshot.current_step

    def set(self, client_id, snapshot):
        record = db.session.get(ProgressRecord, client_id)
        if record is None:
            record = ProgressRecord(client_id=client_id)
            db.session.add(record)
        self._apply(record, snapshot)
        db.session.commit()

    def discard(self, client_id):
        record = db.session.get(ProgressRecord, client_id)
        if record is not None:
            db.session.delete(record)
            db.session.commit()

    def merge_into(self, client_id, snapshot):
        for attempt in range(1, _MAX_MERGE_ATTEMPTS + 1):
            record = db.session.get(ProgressRecord, client_id, populate_existing=True)
            if record is None:
                record = ProgressRecord(client_id=client_id)
                db.session.add(record)
                current = ProgressSnapshot.empty()
            else:
                current = ProgressSnapshot(record.flags())
                merged = current.merge(snapshot)
                if merged == current:
                    return merged

            merged = current.merge(snapshot)

            self._apply(record, merged)
            try:
                db.session.commit()
                return merged
            except (StaleDataError, IntegrityError):
                # Another writer got there first; re-read and merge again
                db.session.rollback()
                logger.info("Progress merge conflict for client %s (attempt %d)", client_id, attempt,
                            extra={"client_id": client_id})

        raise ConflictingState("ProgressRecord", client_id, None,
                               reason="concurrent progress updates did not settle")


def build_progress_cache(backend: str, redis_url: str | None = None) -> LocalProgressCache:
    if backend not in BACKENDS:
        raise ValueError(f"Unknown PROGRESS_CACHE_BACKEND {backend!r}; expected one of {BACKENDS}")
    if backend == "memory":
        return MemoryProgressCache()
    if backend == "redis":
        if not redis_url or redis_url.startswith("memory://"):
            raise ValueError("PROGRESS_CACHE_BACKEND=redis requires a redis:// REDIS_URL")
        import redis as _redis
        return RedisProgressCache(_redis.from_url(redis_url, decode_responses=True))
    return SqlProgressCache()


def init_progress_cache(app) -> LocalProgressCache:
    backend = app.config.get("PROGRESS_CACHE_BACKEND", "sql")
    cache = build_progress_cache(backend, app.config.get("REDIS_URL"))
    app.extensions["progress_cache"] = cache
    logger.debug("Progress cache backend: %s", type(cache).__name__)
    return cache


def get_progress_cache() -> LocalProgressCache:
    return current_app.extensions["progress_cache"]
