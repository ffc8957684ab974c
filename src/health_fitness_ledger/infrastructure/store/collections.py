"""
Collection-style document store backed by SQLAlchemy.

Provides the small subset of document-database operations the application
needs (find, count, bulk insert, bulk delete, upsert) over named
collections. Every document lives in one ``documents`` table as a JSON
column, keyed by ``(collection, doc_id)``. Any SQLAlchemy URL works; the
default is a SQLite file, and the in-memory store uses an in-memory SQLite
database.
"""

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, Integer, String, UniqueConstraint, create_engine, delete, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from health_fitness_ledger.utils.exceptions import StorageError
from health_fitness_ledger.utils.hashing import generate_object_id
from health_fitness_ledger.utils.parameters import StorageConfig

logger = logging.getLogger(__name__)

ID_FIELD = "_id"


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    """One stored document of a named collection."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc_id"),
    )

    # Autoincrement key doubles as insertion order.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    doc_id: Mapped[str] = mapped_column(String(64), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<DocumentRow(collection={self.collection}, doc_id={self.doc_id})>"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def _to_storable(document: dict[str, Any]) -> dict[str, Any]:
    """Round-trip a document through JSON so stored and compared values agree."""
    result: dict[str, Any] = json.loads(json.dumps(document, default=_json_default))
    return result


def _matches(document: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    if not filter:
        return True
    return all(document.get(key) == value for key, value in filter.items())


class CollectionStore:
    """
    Document store over named collections.

    Equality filters only. ``_id`` lookups and collection scans run in SQL;
    the remaining filter fields are compared on the decoded documents.

    Args:
        engine: SQLAlchemy engine or database URL.
    """

    def __init__(self, engine: Engine | str) -> None:
        self.engine = create_engine(engine) if isinstance(engine, str) else engine

        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialize document store: {e}") from e

        self._session_factory = sessionmaker(
            self.engine, expire_on_commit=False, autoflush=False
        )

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Session scoped to one store operation, committed on success."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise StorageError(f"Duplicate {ID_FIELD} rejected by document store: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Document store operation failed: {e}") from e
        finally:
            session.close()

    def _rows(
        self, session: Session, collection: str, filter: dict[str, Any] | None
    ) -> list[DocumentRow]:
        stmt = select(DocumentRow).where(DocumentRow.collection == collection)
        if filter and ID_FIELD in filter:
            stmt = stmt.where(DocumentRow.doc_id == str(filter[ID_FIELD]))
        stmt = stmt.order_by(DocumentRow.id)

        return [row for row in session.scalars(stmt) if _matches(row.data, filter)]

    def close(self) -> None:
        self.engine.dispose()

    def collection_names(self) -> list[str]:
        """Return the names of all collections holding at least one document."""
        with self._session() as session:
            stmt = select(DocumentRow.collection).distinct().order_by(DocumentRow.collection)
            return list(session.scalars(stmt))

    def exists(self, collection: str) -> bool:
        return collection in self.collection_names()

    def find(
        self, collection: str, filter: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """
        Return the documents matching an equality filter.

        Args:
            collection: Collection name.
            filter: Field to value mapping; all must match. None matches all.

        Returns:
            Matching documents in insertion order. Each call decodes fresh
            copies, so callers may mutate them.
        """
        with self._session() as session:
            return [row.data for row in self._rows(session, collection, filter)]

    def count(self, collection: str, filter: dict[str, Any] | None = None) -> int:
        with self._session() as session:
            if not filter:
                stmt = select(func.count()).where(DocumentRow.collection == collection)
                return int(session.scalar(stmt) or 0)
            return len(self._rows(session, collection, filter))

    def insert_many(self, collection: str, documents: Iterable[dict[str, Any]]) -> int:
        """
        Insert documents, assigning ``_id`` where missing.

        Args:
            collection: Collection name.
            documents: Documents to insert.

        Returns:
            Number of inserted documents.

        Raises:
            StorageError: If an ``_id`` already exists in the collection or
                repeats within the batch. Nothing is written in that case.
        """
        rows: list[DocumentRow] = []
        batch_ids: set[str] = set()

        for document in documents:
            stored = _to_storable(document)
            stored.setdefault(ID_FIELD, generate_object_id())
            doc_id = str(stored[ID_FIELD])
            if doc_id in batch_ids:
                raise StorageError(
                    f"Duplicate {ID_FIELD} {doc_id!r} in batch for collection {collection!r}"
                )
            batch_ids.add(doc_id)
            rows.append(DocumentRow(collection=collection, doc_id=doc_id, data=stored))

        if not rows:
            return 0

        with self._session() as session:
            session.add_all(rows)

        logger.debug(f"Inserted {len(rows)} documents into {collection}")
        return len(rows)

    def delete_many(self, collection: str, filter: dict[str, Any] | None = None) -> int:
        """
        Delete documents matching an equality filter.

        Returns:
            Number of deleted documents.
        """
        with self._session() as session:
            row_ids = [row.id for row in self._rows(session, collection, filter)]
            if row_ids:
                session.execute(delete(DocumentRow).where(DocumentRow.id.in_(row_ids)))

        if row_ids:
            logger.debug(f"Deleted {len(row_ids)} documents from {collection}")

        return len(row_ids)

    def update_one(
        self, collection: str, key: dict[str, Any], fields: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Set fields on the first document matching ``key``.

        ``_id`` cannot be changed.

        Returns:
            The updated document, or None if nothing matched.
        """
        stored = _to_storable(fields)
        stored.pop(ID_FIELD, None)

        with self._session() as session:
            matches = self._rows(session, collection, key)
            if not matches:
                return None

            row = matches[0]
            row.data = {**row.data, **stored}
            return dict(row.data)

    def upsert(self, collection: str, key: dict[str, Any], document: dict[str, Any]) -> bool:
        """
        Update the first document matching ``key`` or insert a new one.

        On update, fields of ``document`` overwrite stored fields while the
        stored ``_id`` and ``created_at`` are kept.

        Returns:
            True if a new document was inserted, False if one was updated.
        """
        stored = _to_storable(document)

        with self._session() as session:
            matches = self._rows(session, collection, key)

            if matches:
                row = matches[0]
                merged = {**row.data, **stored}
                merged[ID_FIELD] = row.data[ID_FIELD]
                if "created_at" in row.data:
                    merged["created_at"] = row.data["created_at"]
                # Reassign so the JSON column is marked dirty.
                row.data = merged
                return False

            new_doc = {**_to_storable(key), **stored}
            new_doc.setdefault(ID_FIELD, generate_object_id())
            new_doc.setdefault("created_at", new_doc.get("updated_at"))
            session.add(
                DocumentRow(collection=collection, doc_id=str(new_doc[ID_FIELD]), data=new_doc)
            )
            return True


class InMemoryCollectionStore(CollectionStore):
    """Document store kept in an in-memory SQLite database."""

    def __init__(self, initial: dict[str, list[dict[str, Any]]] | None = None) -> None:
        super().__init__(
            create_engine(
                "sqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        )
        for name, documents in (initial or {}).items():
            self.insert_many(name, documents)


def create_store(config: StorageConfig) -> CollectionStore:
    """
    Create the document store selected in configuration.

    Args:
        config: Storage configuration.

    Returns:
        Configured document store.
    """
    if config.backend == "memory":
        logger.info("Using in-memory document store")
        return InMemoryCollectionStore()

    url = make_url(config.url)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Using SQL document store at {url.render_as_string(hide_password=True)}")
    return CollectionStore(create_engine(config.url, echo=config.echo, pool_pre_ping=True))
