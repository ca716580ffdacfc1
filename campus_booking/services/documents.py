"""Document store on top of the ``documents`` table.

Collections hold JSON documents keyed by id. Queries are equality filters
on top-level fields. Listeners registered through :meth:`DocumentStore.subscribe`
receive the current matching documents immediately and again after every
committed write to their collection.
"""

import logging
import uuid
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_booking.database import SessionLocal
from campus_booking.models.document import Document
from campus_booking.services.subscriptions import Subscription

logger = logging.getLogger(__name__)

USERS = 'users'
TEACHER_SCHEDULES = 'teacher_schedules'
APPOINTMENTS = 'appointments'


class DocumentNotFound(LookupError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f'{collection}/{doc_id} does not exist')
        self.collection = collection
        self.doc_id = doc_id


@dataclass(frozen=True)
class Snapshot:
    id: str
    exists: bool
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Listener:
    collection: str
    filters: dict[str, Any]
    on_change: Callable[[list[Snapshot]], None]
    on_error: Callable[[Exception], None] | None
    subscription: Subscription


class ChangeFeed:
    """Registry of live listeners, shared by every store of one app."""

    def __init__(self):
        self._listeners: list[_Listener] = []
        self._lock = Lock()

    def add(self, listener: _Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            self._listeners = [
                listener for listener in self._listeners if listener.subscription is not subscription
            ]

    def listeners_for(self, collection: str) -> list[_Listener]:
        with self._lock:
            return [listener for listener in self._listeners if listener.collection == collection]


def _matches(data: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(data.get(name) == value for name, value in filters.items())


class DocumentStore:
    def __init__(self, db: Session, feed: ChangeFeed | None = None):
        self.db = db
        self.feed = feed if feed is not None else ChangeFeed()

    def _load(self, collection: str, doc_id: str) -> Document | None:
        return self.db.get(Document, (collection, doc_id))

    def get(self, collection: str, doc_id: str) -> Snapshot:
        document = self._load(collection, doc_id)
        if document is None:
            return Snapshot(id=doc_id, exists=False)
        return Snapshot(id=doc_id, exists=True, data=dict(document.data or {}))

    def query(self, collection: str, **equals: Any) -> list[Snapshot]:
        documents = self.db.query(Document).filter(
            Document.collection == collection,
        ).order_by(Document.created_at.asc(), Document.doc_id.asc()).all()

        return [
            Snapshot(id=document.doc_id, exists=True, data=dict(document.data or {}))
            for document in documents
            if _matches(document.data or {}, equals)
        ]

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> Snapshot:
        document = self._load(collection, doc_id)
        if document is None:
            document = Document(collection=collection, doc_id=doc_id, data=dict(data))
            self.db.add(document)
        else:
            document.data = dict(data)
        self._commit(collection)
        return Snapshot(id=doc_id, exists=True, data=dict(data))

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> Snapshot:
        document = self._load(collection, doc_id)
        if document is None:
            raise DocumentNotFound(collection, doc_id)

        # JSON columns only track reassignment, not in-place mutation.
        merged = {**(document.data or {}), **fields}
        document.data = merged
        self._commit(collection)
        return Snapshot(id=doc_id, exists=True, data=dict(merged))

    def array_union(self, collection: str, doc_id: str, field_name: str, values: list[Any]) -> Snapshot:
        document = self._load(collection, doc_id)
        if document is None:
            raise DocumentNotFound(collection, doc_id)

        current = list((document.data or {}).get(field_name) or [])
        for value in values:
            if value not in current:
                current.append(value)

        merged = {**(document.data or {}), field_name: current}
        document.data = merged
        self._commit(collection)
        return Snapshot(id=doc_id, exists=True, data=dict(merged))

    def delete(self, collection: str, doc_id: str) -> None:
        document = self._load(collection, doc_id)
        if document is None:
            return
        self.db.delete(document)
        self._commit(collection)

    def subscribe(
        self,
        collection: str,
        on_change: Callable[[list[Snapshot]], None],
        on_error: Callable[[Exception], None] | None = None,
        **equals: Any,
    ) -> Subscription:
        subscription = Subscription(on_cancel=self.feed.remove)
        listener = _Listener(
            collection=collection,
            filters=equals,
            on_change=on_change,
            on_error=on_error,
            subscription=subscription,
        )
        self.feed.add(listener)
        self._deliver(listener)
        return subscription

    def _commit(self, collection: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self._publish(collection)

    def _publish(self, collection: str) -> None:
        for listener in self.feed.listeners_for(collection):
            self._deliver(listener)

    def _deliver(self, listener: _Listener) -> None:
        if not listener.subscription.active:
            return
        try:
            snapshots = self.query(listener.collection, **listener.filters)
        except SQLAlchemyError as exc:
            if listener.on_error is None:
                logger.exception('Listener query failed for collection %s', listener.collection)
            else:
                listener.on_error(exc)
            return
        listener.on_change(snapshots)


class AsyncDocumentReader:
    """Read-only access for coroutines; each call uses its own session."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    async def get_record(self, collection: str, doc_id: str) -> Snapshot:
        return await run_in_threadpool(self._get_record, collection, doc_id)

    def _get_record(self, collection: str, doc_id: str) -> Snapshot:
        db = self._session_factory()
        try:
            return DocumentStore(db).get(collection, doc_id)
        finally:
            db.close()
