# sortebem/audit/audit_logger.py

import json
import hashlib
import logging
import threading
import uuid
from datetime import datetime, timezone

from sortebem.database.document_store import AUDIT_LOG

logger = logging.getLogger(__name__)

# Append-only audit trail with hash chaining. Entries are never updated or
# deleted, and a failing write never blocks the operation being audited.


class AuditLogger:
    def __init__(self, store, validator=None):
        self.store = store
        self.validator = validator
        self.previous_hash = None
        self._chain_loaded = False
        self._lock = threading.Lock()

    def _load_previous_hash(self):
        try:
            entries = self.store.get_all(AUDIT_LOG)
            if entries:
                self.previous_hash = entries[-1].get('hash')
            self._chain_loaded = True
        except Exception as e:
            logger.warning("Could not load audit chain head: %s", e)
            self.previous_hash = None

    @staticmethod
    def _entry_hash(entry):
        body = {k: v for k, v in entry.items() if k != 'hash'}
        entry_json = json.dumps(body, sort_keys=True, default=str)
        return hashlib.sha256(entry_json.encode()).hexdigest()

    def log_action(self, action, raffle_id=None, details=None, success=True):
        """Append an audit entry. Returns the entry, or None when the write failed."""
        try:
            if self.validator is not None:
                details = self.validator.sanitize_details(details)
            with self._lock:
                if not self._chain_loaded:
                    self._load_previous_hash()
                entry = {
                    "id": uuid.uuid4().hex,
                    "action": action,
                    "raffle_id": raffle_id,
                    "details": dict(details or {}),
                    "success": bool(success),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "previous_hash": self.previous_hash,
                }
                entry['hash'] = self._entry_hash(entry)
                self.store.append(AUDIT_LOG, entry)
                self.previous_hash = entry['hash']
            return entry
        except Exception as e:
            logger.error("Audit log error for %s: %s", action, e)
            return None

    def entries(self, raffle_id=None):
        entries = self.store.get_all(AUDIT_LOG)
        if raffle_id is not None:
            entries = [e for e in entries if e.get('raffle_id') == raffle_id]
        return entries

    def verify_log_integrity(self):
        try:
            previous_hash = None
            for entry in self.store.get_all(AUDIT_LOG):
                if entry.get('previous_hash') != previous_hash:
                    return False
                if self._entry_hash(entry) != entry.get('hash'):
                    return False
                previous_hash = entry['hash']
            return True
        except Exception:
            return False
