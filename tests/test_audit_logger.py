import pytest

from sortebem.audit.audit_logger import AuditLogger
from sortebem.database.document_store import AUDIT_LOG, InMemoryDocumentStore
from sortebem.security.input_validator import InputValidator


@pytest.fixture
def audit_store():
    return InMemoryDocumentStore()


@pytest.fixture
def audit(audit_store):
    return AuditLogger(audit_store, InputValidator())


def test_log_action_basic(audit, audit_store):
    entry = audit.log_action('LOGIN_ATTEMPT', 'raffle-1', {'status': 'ok'}, True)
    stored = audit_store.get_all(AUDIT_LOG)
    assert stored == [entry]
    assert entry['action'] == 'LOGIN_ATTEMPT'
    assert entry['raffle_id'] == 'raffle-1'
    assert entry['success'] is True
    assert entry['previous_hash'] is None
    assert 'timestamp' in entry and 'hash' in entry


def test_hash_chaining(audit):
    first = audit.log_action('EVENT1', 'raffle-1')
    second = audit.log_action('EVENT2', 'raffle-1')
    assert second['previous_hash'] == first['hash']
    assert audit.verify_log_integrity() is True


def test_chain_continues_across_instances(audit, audit_store):
    first = audit.log_action('EVENT1')
    restarted = AuditLogger(audit_store)
    second = restarted.log_action('EVENT2')
    assert second['previous_hash'] == first['hash']
    assert restarted.verify_log_integrity() is True


def test_details_are_sanitized(audit):
    entry = audit.log_action('RAFFLE_UPDATED', 'raffle-1', {'name': '<script>x</script>'})
    assert entry['details']['name'] == '&lt;script&gt;x&lt;/script&gt;'


def test_tampering_is_detected(audit, audit_store):
    audit.log_action('EVENT1', 'raffle-1', {'amount': 20})
    audit.log_action('EVENT2', 'raffle-1')
    entries = audit_store.get_all(AUDIT_LOG)
    entries[0]['details']['amount'] = 1
    audit_store.save_all(AUDIT_LOG, entries)
    assert audit.verify_log_integrity() is False


def test_removed_entry_is_detected(audit, audit_store):
    for action in ('EVENT1', 'EVENT2', 'EVENT3'):
        audit.log_action(action)
    entries = audit_store.get_all(AUDIT_LOG)
    audit_store.save_all(AUDIT_LOG, [entries[0], entries[2]])
    assert audit.verify_log_integrity() is False


def test_entries_filter_by_raffle(audit):
    audit.log_action('EVENT1', 'raffle-1')
    audit.log_action('EVENT2', 'raffle-2')
    audit.log_action('EVENT3', 'raffle-1')
    assert [e['action'] for e in audit.entries('raffle-1')] == ['EVENT1', 'EVENT3']
    assert len(audit.entries()) == 3


def test_failed_write_does_not_raise(audit, audit_store, monkeypatch, caplog):
    def broken_append(collection, doc):
        raise RuntimeError('disk full')
    monkeypatch.setattr(audit_store, 'append', broken_append)
    with caplog.at_level('ERROR', logger='sortebem.audit.audit_logger'):
        assert audit.log_action('EVENT1') is None
    assert 'Audit log error for EVENT1: disk full' in caplog.text
