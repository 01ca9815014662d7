"""
Assessment persistence with optimistic concurrency.

Every stored Assessment carries a `resource_version`. A status write succeeds only if
the caller's version matches the stored one; otherwise ConflictError is raised and the
caller re-reads and retries (see `retry_on_conflict` / `update_status`).
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Protocol, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from core.assessment.models import Assessment

logger = logging.getLogger(__name__)

T = TypeVar("T")

# mirrors client-go retry.DefaultRetry: 5 steps, 10ms, jitter 0.1
DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RETRY_DELAY = 0.01
DEFAULT_RETRY_JITTER = 0.1


class ConflictError(Exception):
    """The stored object changed since it was read."""


class AssessmentNotFoundError(LookupError):
    pass


class AssessmentExistsError(Exception):
    pass


class AssessmentStore(Protocol):
    def get(self, name: str) -> Assessment:
        ...

    def list(self) -> List[Assessment]:
        ...

    def create(self, assessment: Assessment) -> Assessment:
        ...

    def update_status(self, assessment: Assessment) -> Assessment:
        ...


# -----------------------------
# Retry combinator
# -----------------------------

def retry_on_conflict(
    fn: Callable[[], T],
    *,
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    delay: float = DEFAULT_RETRY_DELAY,
    jitter: float = DEFAULT_RETRY_JITTER,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a read-modify-write closure, re-running it from scratch on ConflictError.
    The last ConflictError is re-raised once `attempts` runs have conflicted.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    retrying = Retrying(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay) + wait_random(0, delay * jitter),
        sleep=sleep,
        before_sleep=_log_conflict,
        reraise=True,
    )
    try:
        return retrying(fn)
    except ConflictError:
        logger.warning("Giving up after %s conflicting attempts", attempts)
        raise


def _log_conflict(retry_state: RetryCallState) -> None:
    logger.debug("Conflict on attempt %s, retrying", retry_state.attempt_number)


def update_status(
    store: AssessmentStore,
    name: str,
    mutate: Callable[[Assessment], None],
    *,
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> Assessment:
    """Re-fetch the latest copy, apply `mutate` to its status, and write it back."""

    def attempt() -> Assessment:
        latest = store.get(name)
        mutate(latest)
        return store.update_status(latest)

    return retry_on_conflict(attempt, attempts=attempts, sleep=sleep)


# -----------------------------
# In-memory store
# -----------------------------

class InMemoryAssessmentStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[str, Assessment] = {}

    def get(self, name: str) -> Assessment:
        with self._lock:
            a = self._items.get(name)
            if a is None:
                raise AssessmentNotFoundError(name)
            return a.model_copy(deep=True)

    def list(self) -> List[Assessment]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._items.values()]

    def create(self, assessment: Assessment) -> Assessment:
        with self._lock:
            if assessment.name in self._items:
                raise AssessmentExistsError(assessment.name)
            stored = assessment.model_copy(deep=True)
            stored.resource_version = 1
            self._items[stored.name] = stored
            return stored.model_copy(deep=True)

    def update_status(self, assessment: Assessment) -> Assessment:
        with self._lock:
            current = self._items.get(assessment.name)
            if current is None:
                raise AssessmentNotFoundError(assessment.name)
            if current.resource_version != assessment.resource_version:
                raise ConflictError(
                    f"assessment {assessment.name!r} modified: have version "
                    f"{assessment.resource_version}, stored {current.resource_version}"
                )
            stored = current.model_copy(deep=True)
            stored.status = assessment.status.model_copy(deep=True)
            stored.resource_version += 1
            self._items[stored.name] = stored
            return stored.model_copy(deep=True)


# -----------------------------
# PostgreSQL store
# -----------------------------

ASSESSMENTS_DDL = """
CREATE TABLE IF NOT EXISTS cluster_assessments (
  name TEXT PRIMARY KEY,
  resource_version BIGINT NOT NULL DEFAULT 1,
  spec JSONB NOT NULL,
  status JSONB NOT NULL,
  created_at TIMESTAMPTZ NOT NULL,
  updated_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cluster_assessments_updated_at ON cluster_assessments(updated_at DESC);
"""


class PostgresAssessmentStore:
    """Assessment store on a psycopg2 ThreadedConnectionPool."""

    def __init__(self, pool):
        self._pool = pool

    @classmethod
    def connect(cls, dsn: str, minconn: int = 1, maxconn: int = 5) -> "PostgresAssessmentStore":
        from psycopg2 import pool

        db_pool = pool.ThreadedConnectionPool(minconn=minconn, maxconn=maxconn, dsn=dsn)
        logger.info("DB pool initialized (min=%s max=%s)", minconn, maxconn)
        return cls(db_pool)

    @property
    def pool(self):
        return self._pool

    def _conn(self):
        return self._pool.getconn()

    def _put(self, conn) -> None:
        try:
            self._pool.putconn(conn)
        except Exception:
            logger.exception("Failed to return DB connection")

    def ensure_schema(self) -> None:
        conn = self._conn()
        try:
            with conn.cursor() as cur:
                cur.execute(ASSESSMENTS_DDL)
            conn.commit()
            logger.info("DB ensured + indexes ready")
        except Exception:
            conn.rollback()
            raise
        finally:
            self._put(conn)

    def close(self) -> None:
        self._pool.closeall()

    @staticmethod
    def _row_to_assessment(row) -> Assessment:
        name, version, spec, status = row
        return Assessment.model_validate(
            {"name": name, "resourceVersion": version, "spec": spec, "status": status}
        )

    def get(self, name: str) -> Assessment:
        conn = self._conn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT name, resource_version, spec, status FROM cluster_assessments WHERE name = %s;",
                    (name,),
                )
                row = cur.fetchone()
            conn.commit()
        finally:
            self._put(conn)
        if row is None:
            raise AssessmentNotFoundError(name)
        return self._row_to_assessment(row)

    def list(self) -> List[Assessment]:
        conn = self._conn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT name, resource_version, spec, status FROM cluster_assessments ORDER BY name;")
                rows = cur.fetchall()
            conn.commit()
        finally:
            self._put(conn)
        return [self._row_to_assessment(r) for r in rows]

    def create(self, assessment: Assessment) -> Assessment:
        from psycopg2.extras import Json

        now = datetime.now(timezone.utc)
        conn = self._conn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO cluster_assessments (name, resource_version, spec, status, created_at, updated_at)
                    VALUES (%s, 1, %s, %s, %s, %s)
                    ON CONFLICT (name) DO NOTHING;
                    """,
                    (
                        assessment.name,
                        Json(assessment.spec.model_dump(mode="json", by_alias=True)),
                        Json(assessment.status.model_dump(mode="json", by_alias=True)),
                        now,
                        now,
                    ),
                )
                inserted = cur.rowcount
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._put(conn)
        if inserted == 0:
            raise AssessmentExistsError(assessment.name)
        created = assessment.model_copy(deep=True)
        created.resource_version = 1
        return created

    def update_status(self, assessment: Assessment) -> Assessment:
        from psycopg2.extras import Json

        conn = self._conn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE cluster_assessments
                       SET status = %s, resource_version = resource_version + 1, updated_at = %s
                     WHERE name = %s AND resource_version = %s
                    RETURNING resource_version;
                    """,
                    (
                        Json(assessment.status.model_dump(mode="json", by_alias=True)),
                        datetime.now(timezone.utc),
                        assessment.name,
                        assessment.resource_version,
                    ),
                )
                row = cur.fetchone()
                if row is None:
                    cur.execute("SELECT 1 FROM cluster_assessments WHERE name = %s;", (assessment.name,))
                    exists = cur.fetchone() is not None
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._put(conn)

        if row is None:
            if not exists:
                raise AssessmentNotFoundError(assessment.name)
            raise ConflictError(f"assessment {assessment.name!r} modified since version {assessment.resource_version}")

        updated = assessment.model_copy(deep=True)
        updated.resource_version = int(row[0])
        return updated
