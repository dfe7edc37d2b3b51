import pytest

from sortebem import app, db
from sortebem.database.document_store import (
    PAYMENTS, RAFFLES, InMemoryDocumentStore, SqlDocumentStore, StoreOp, delete_op, put_op,
)
from sortebem.database.models import Document
from sortebem.errors import StorageError


@pytest.fixture
def sql_store():
    with app.app_context():
        db.drop_all()
        db.create_all()
    return SqlDocumentStore(app, db, Document)


@pytest.fixture(params=['memory', 'sql'])
def doc_store(request):
    if request.param == 'memory':
        return InMemoryDocumentStore()
    return request.getfixturevalue('sql_store')


def test_put_get_and_delete(doc_store):
    doc_store.put(RAFFLES, {'id': 'r1', 'name': 'Rifa'})
    assert doc_store.get(RAFFLES, 'r1') == {'id': 'r1', 'name': 'Rifa'}
    assert doc_store.get(PAYMENTS, 'r1') is None
    doc_store.delete(RAFFLES, 'r1')
    assert doc_store.get(RAFFLES, 'r1') is None


def test_put_replaces_existing_document(doc_store):
    doc_store.put(RAFFLES, {'id': 'r1', 'name': 'Rifa'})
    doc_store.put(RAFFLES, {'id': 'r1', 'name': 'Rifa 2'})
    assert doc_store.get_all(RAFFLES) == [{'id': 'r1', 'name': 'Rifa 2'}]


def test_get_all_keeps_insertion_order(doc_store):
    for doc_id in ('c', 'a', 'b'):
        doc_store.append(RAFFLES, {'id': doc_id})
    assert [d['id'] for d in doc_store.get_all(RAFFLES)] == ['c', 'a', 'b']
    assert doc_store.get_all(PAYMENTS) == []


def test_save_all_replaces_collection(doc_store):
    doc_store.put(RAFFLES, {'id': 'r1'})
    doc_store.put(RAFFLES, {'id': 'r2'})
    doc_store.save_all(RAFFLES, [{'id': 'r2', 'name': 'kept'}, {'id': 'r3'}])
    assert sorted(d['id'] for d in doc_store.get_all(RAFFLES)) == ['r2', 'r3']
    assert doc_store.get(RAFFLES, 'r2') == {'id': 'r2', 'name': 'kept'}


def test_apply_spans_collections(doc_store):
    doc_store.put(PAYMENTS, {'id': 'p0'})
    doc_store.apply([
        put_op(RAFFLES, {'id': 'r1'}),
        put_op(PAYMENTS, {'id': 'p1'}),
        delete_op(PAYMENTS, 'p0'),
    ])
    assert doc_store.get(RAFFLES, 'r1') == {'id': 'r1'}
    assert [d['id'] for d in doc_store.get_all(PAYMENTS)] == ['p1']


def test_returned_documents_are_copies(doc_store):
    doc_store.put(RAFFLES, {'id': 'r1', 'tickets': [1, 2]})
    doc = doc_store.get(RAFFLES, 'r1')
    doc['tickets'].append(3)
    assert doc_store.get(RAFFLES, 'r1')['tickets'] == [1, 2]


def test_failed_batch_leaves_store_unchanged():
    store = InMemoryDocumentStore()
    store.put(RAFFLES, {'id': 'r1'})
    with pytest.raises(StorageError):
        store.apply([delete_op(RAFFLES, 'r1'), StoreOp('rename', RAFFLES, 'r1', None)])
    assert store.get(RAFFLES, 'r1') == {'id': 'r1'}
