# sortebem/database/document_store.py
"""Key-value document store used by the raffle, payment and credential services.

Documents are plain JSON-compatible dicts carrying an ``id`` key. Each
collection supports whole-collection ``get_all``/``save_all`` plus
per-document ``get``/``put``/``delete``. ``apply`` writes a batch of puts and
deletes, possibly across collections, as a single all-or-nothing step.

Two backends:
- InMemoryDocumentStore: process-local, used by tests and scripts
- SqlDocumentStore: Flask-SQLAlchemy ``documents`` table
"""

import copy
import logging
import threading
from collections import OrderedDict, namedtuple
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from sortebem.errors import StorageError

logger = logging.getLogger(__name__)

RAFFLES = 'raffles'
PAYMENTS = 'payments'
PROOFS = 'proofs'
CREDENTIALS = 'credentials'
AUDIT_LOG = 'audit_log'

COLLECTIONS = (RAFFLES, PAYMENTS, PROOFS, CREDENTIALS, AUDIT_LOG)

StoreOp = namedtuple('StoreOp', 'kind collection doc_id doc')


def put_op(collection: str, doc: Dict) -> StoreOp:
    return StoreOp('put', collection, doc['id'], doc)


def delete_op(collection: str, doc_id: str) -> StoreOp:
    return StoreOp('delete', collection, doc_id, None)


class DocumentStore:
    def get_all(self, collection: str) -> List[Dict]:
        raise NotImplementedError

    def save_all(self, collection: str, docs: Iterable[Dict]) -> None:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        raise NotImplementedError

    def apply(self, ops: Iterable[StoreOp]) -> None:
        raise NotImplementedError

    def put(self, collection: str, doc: Dict) -> None:
        self.apply([put_op(collection, doc)])

    def delete(self, collection: str, doc_id: str) -> None:
        self.apply([delete_op(collection, doc_id)])

    def append(self, collection: str, doc: Dict) -> None:
        self.put(collection, doc)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._data = {}  # collection -> OrderedDict(doc_id -> doc)

    def get_all(self, collection):
        with self._lock:
            return [copy.deepcopy(d) for d in self._data.get(collection, {}).values()]

    def save_all(self, collection, docs):
        snapshot = OrderedDict((d['id'], copy.deepcopy(d)) for d in docs)
        with self._lock:
            self._data[collection] = snapshot

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def apply(self, ops):
        ops = list(ops)
        with self._lock:
            staged = {}
            for op in ops:
                if op.collection not in staged:
                    staged[op.collection] = OrderedDict(self._data.get(op.collection, {}))
                target = staged[op.collection]
                if op.kind == 'put':
                    target[op.doc_id] = copy.deepcopy(op.doc)
                elif op.kind == 'delete':
                    target.pop(op.doc_id, None)
                else:
                    raise StorageError(f"Unknown store operation: {op.kind}")
            self._data.update(staged)


class SqlDocumentStore(DocumentStore):
    """Documents persisted through Flask-SQLAlchemy.

    Every call opens its own application context so background threads
    (the payment poller) can use the store outside of a request.
    """

    def __init__(self, app, db, model):
        self.app = app
        self.db = db
        self.model = model

    def get_all(self, collection):
        with self.app.app_context():
            rows = (self.db.session.query(self.model)
                    .filter_by(collection=collection)
                    .order_by(self.model.id)
                    .all())
            return [copy.deepcopy(r.body) for r in rows]

    def save_all(self, collection, docs):
        docs = list(docs)
        keep = {d['id'] for d in docs}
        with self.app.app_context():
            try:
                rows = self.db.session.query(self.model).filter_by(collection=collection).all()
                for row in rows:
                    if row.doc_id not in keep:
                        self.db.session.delete(row)
                for doc in docs:
                    self._upsert(collection, doc)
                self.db.session.commit()
            except SQLAlchemyError as e:
                self.db.session.rollback()
                logger.error("Failed to save collection %s: %s", collection, e)
                raise StorageError(f"Could not save collection {collection}") from e

    def get(self, collection, doc_id):
        with self.app.app_context():
            row = (self.db.session.query(self.model)
                   .filter_by(collection=collection, doc_id=doc_id)
                   .first())
            return copy.deepcopy(row.body) if row is not None else None

    def apply(self, ops):
        ops = list(ops)
        for op in ops:
            if op.kind not in ('put', 'delete'):
                raise StorageError(f"Unknown store operation: {op.kind}")
        with self.app.app_context():
            try:
                for op in ops:
                    if op.kind == 'put':
                        self._upsert(op.collection, op.doc)
                    else:
                        (self.db.session.query(self.model)
                         .filter_by(collection=op.collection, doc_id=op.doc_id)
                         .delete(synchronize_session=False))
                self.db.session.commit()
            except SQLAlchemyError as e:
                self.db.session.rollback()
                logger.error("Failed to apply %d document operations: %s", len(ops), e)
                raise StorageError("Could not apply document operations") from e

    def _upsert(self, collection, doc):
        row = (self.db.session.query(self.model)
               .filter_by(collection=collection, doc_id=doc['id'])
               .first())
        if row is None:
            self.db.session.add(self.model(collection=collection, doc_id=doc['id'], body=copy.deepcopy(doc)))
        else:
            row.body = copy.deepcopy(doc)
