"""
Module: toolcrib_kernel.store.sql
Responsibility: DocumentStore backed by a single SQLAlchemy table
    (``documents``).  Production runs it on PostgreSQL through psycopg;
    tests run it on SQLite.
Architecture position: Kernel > Store.  Implements store/base.py using
    models/document.py and a session factory from db/engine.py.

Invariants enforced:
    - Optimistic compare-and-set: every write is
      ``UPDATE documents SET ... WHERE path = :p AND version = :seen``;
      a zero rowcount is a version conflict and the attempt is retried.
    - Documents only read inside a transaction are re-validated at commit
      under ``SELECT ... FOR UPDATE`` (a no-op on SQLite).
    - One session per transaction attempt; a failed attempt is rolled back
      before the next one starts.
    - Datetimes are stored inside the JSON body as ``{"$datetime": iso}``
      and decoded back to aware datetimes on read.

Failure modes:
    - TransactionConflictError after ``max_attempts`` conflicts.
    - DocumentMissingError when ``update()`` targets an absent document.
    - SQLAlchemy errors other than IntegrityError propagate unchanged.

Limitations:
    - No push change feed: ``subscribe()`` returns None and caches fall
      back to staleness-bounded reloads.
    - ``find()`` filters client-side over the collection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, TypeVar
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from toolcrib_kernel.domain.clock import Clock, SystemClock
from toolcrib_kernel.exceptions import DocumentMissingError, TransactionConflictError
from toolcrib_kernel.logging_config import get_logger
from toolcrib_kernel.models.document import DocumentRecord
from toolcrib_kernel.store.base import (
    Committed,
    DocumentRef,
    DocumentStore,
    MonotonicStamp,
    Transaction,
    apply_write,
)

logger = get_logger("store.sql")

T = TypeVar("T")

_DATETIME_TAG = "$datetime"


def encode_value(value: Any) -> Any:
    """Make a document body JSON-safe."""
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of ``encode_value``."""
    if isinstance(value, dict):
        if len(value) == 1 and _DATETIME_TAG in value:
            return datetime.fromisoformat(value[_DATETIME_TAG])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class _VersionConflict(Exception):
    def __init__(self, path: str):
        self.path = path
        super().__init__(path)


class _SqlTransaction(Transaction):
    def __init__(self, session: Session):
        self._session = session
        self.reads: dict[DocumentRef, int] = {}
        self.writes: list[tuple[DocumentRef, dict[str, Any], str]] = []

    def get(self, ref: DocumentRef) -> dict[str, Any] | None:
        version, body = _load(self._session, ref)
        self.reads.setdefault(ref, version)
        return body

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        self.writes.append((ref, dict(data), "merge" if merge else "set"))

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self.writes.append((ref, dict(data), "update"))


def _load(
    session: Session, ref: DocumentRef, for_update: bool = False,
) -> tuple[int, dict[str, Any] | None]:
    stmt = select(DocumentRecord.version, DocumentRecord.data).where(
        DocumentRecord.path == ref.path
    )
    if for_update:
        stmt = stmt.with_for_update()
    row = session.execute(stmt).one_or_none()
    if row is None:
        return 0, None
    return row.version, decode_value(row.data)


class SqlDocumentStore(DocumentStore):
    """
    SQL-backed document store.

    Args:
        session_factory: ``sessionmaker`` bound to an initialized engine
            (see ``db.engine.get_session_factory``).
        clock: Source of server timestamps.
        max_attempts: Optimistic retries before TransactionConflictError.
    """

    backend_name = "sql"

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        max_attempts: int = 5,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._stamp = MonotonicStamp(self._clock)
        self._max_attempts = max_attempts

    @property
    def supports_atomic_array_union(self) -> bool:
        # Union is applied to the row read under compare-and-set.
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, ref: DocumentRef) -> dict[str, Any] | None:
        with self._session_factory() as session:
            return _load(session, ref)[1]

    def list_documents(self, collection: str) -> list[tuple[DocumentRef, dict[str, Any]]]:
        with self._session_factory() as session:
            rows = session.execute(
                select(DocumentRecord.doc_id, DocumentRecord.data)
                .where(DocumentRecord.collection == collection)
                .order_by(DocumentRecord.doc_id)
            ).all()
        return [
            (DocumentRef(collection, row.doc_id), decode_value(row.data))
            for row in rows
        ]

    def find(
        self, collection: str, field: str, value: Any,
    ) -> list[tuple[DocumentRef, dict[str, Any]]]:
        return [
            (ref, data)
            for ref, data in self.list_documents(collection)
            if data.get(field) == value
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> datetime:
        return self.run_transaction(lambda txn: txn.set(ref, data, merge=merge)).committed_at

    def run_transaction(self, fn: Callable[[Transaction], T]) -> Committed[T]:
        conflicted: set[str] = set()
        for attempt in range(1, self._max_attempts + 1):
            session = self._session_factory()
            try:
                txn = _SqlTransaction(session)
                value = fn(txn)
                committed_at = self._commit(session, txn)
            except _VersionConflict as exc:
                session.rollback()
                conflicted.add(exc.path)
                logger.debug(
                    "transaction_retry",
                    extra={"attempt": attempt, "path": exc.path},
                )
                continue
            except IntegrityError:
                # Concurrent insert of the same new path.
                session.rollback()
                conflicted.add("<insert>")
                logger.debug("transaction_retry", extra={"attempt": attempt})
                continue
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
            return Committed(value=value, committed_at=committed_at)

        logger.warning(
            "transaction_conflict_exhausted",
            extra={"attempts": self._max_attempts, "paths": sorted(conflicted)},
        )
        raise TransactionConflictError(self._max_attempts, tuple(sorted(conflicted)))

    def _commit(self, session: Session, txn: _SqlTransaction) -> datetime:
        written = {ref for ref, _, _ in txn.writes}

        for ref, seen_version in txn.reads.items():
            if ref in written:
                continue
            if _load(session, ref, for_update=True)[0] != seen_version:
                raise _VersionConflict(ref.path)

        timestamp = self._stamp.next()

        # ref -> (version the write is conditioned on, body after writes)
        state: dict[DocumentRef, tuple[int, dict[str, Any] | None]] = {}
        for ref, data, mode in txn.writes:
            if ref not in state:
                version, body = _load(session, ref)
                if ref in txn.reads and version != txn.reads[ref]:
                    raise _VersionConflict(ref.path)
                state[ref] = (version, body)
            version, body = state[ref]
            if mode == "update" and body is None:
                raise DocumentMissingError(ref.path)
            state[ref] = (
                version,
                apply_write(body, data, merge=(mode != "set"), timestamp=timestamp),
            )

        for ref, (version, body) in state.items():
            encoded = encode_value(body)
            if version == 0:
                session.execute(
                    insert(DocumentRecord).values(
                        id=uuid4(),
                        path=ref.path,
                        collection=ref.collection,
                        doc_id=ref.doc_id,
                        data=encoded,
                        version=1,
                        created_at=timestamp,
                        updated_at=timestamp,
                    )
                )
            else:
                result = session.execute(
                    update(DocumentRecord)
                    .where(
                        DocumentRecord.path == ref.path,
                        DocumentRecord.version == version,
                    )
                    .values(data=encoded, version=version + 1, updated_at=timestamp)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise _VersionConflict(ref.path)

        session.commit()
        return timestamp
