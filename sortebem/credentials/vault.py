# sortebem/credentials/vault.py
"""Per-raffle admin credentials.

Each raffle has its own admin email/password pair, stored apart from the
raffle document in the ``credentials`` collection:

- the password as an Argon2id hash (per-record salt)
- the email encrypted with AES-256-GCM plus its IV

Plaintext password and email never reach the store or the logs. Login
attempts go through a sliding-window rate limiter keyed by raffle id, and
every operation leaves an audit entry.

Crypto and storage errors are converted to OperationResult failures; a
credential document is always written in one step, so a hash without its
encrypted email (or the reverse) is never persisted. A missing encryption
key is a configuration problem and raises ConfigurationError.
"""

import logging
from datetime import datetime, timezone

from pydantic import ValidationError

from sortebem.database.document_store import CREDENTIALS
from sortebem.database.locks import KeyedLock
from sortebem.encryption.data_encryption import DecryptionError
from sortebem.errors import ConfigurationError, StorageError
from sortebem.results import Failure, OperationResult
from sortebem.schemas import AdminCredential

logger = logging.getLogger(__name__)


class CredentialVault:
    def __init__(self, store, password_service, encryption_service, rate_limiter,
                 audit_logger, validator, locks=None):
        self.store = store
        self.passwords = password_service
        self.encryption = encryption_service
        self.rate_limiter = rate_limiter
        self.audit = audit_logger
        self.validator = validator
        self.locks = locks or KeyedLock()

    def _lock_key(self, raffle_id):
        return f"credential:{raffle_id}"

    def _load(self, raffle_id):
        doc = self.store.get(CREDENTIALS, raffle_id)
        if doc is None:
            return None
        return AdminCredential.model_validate(doc)

    def create_credential(self, raffle_id, email, password):
        safe_email = self.validator.sanitize_string(email, max_length=254)
        if not self.validator.validate_email(safe_email):
            self.audit.log_action('CREATE_ADMIN_FAILED', raffle_id, {'reason': 'invalid_email'}, False)
            return OperationResult.failure(Failure.INVALID_INPUT, field='email')
        if not self.passwords.is_acceptable_password(password):
            self.audit.log_action('CREATE_ADMIN_FAILED', raffle_id, {'reason': 'weak_password'}, False)
            return OperationResult.failure(Failure.WEAK_PASSWORD)

        with self.locks.hold(self._lock_key(raffle_id)):
            try:
                password_hash = self.passwords.hash_password(password)
                encrypted_email, iv = self.encryption.encrypt_field(safe_email)
                credential = AdminCredential(
                    raffle_id=raffle_id,
                    password_hash=password_hash,
                    encrypted_email=encrypted_email,
                    iv=iv,
                )
                self.store.put(CREDENTIALS, credential.to_document())
            except ConfigurationError:
                raise
            except StorageError as e:
                logger.error("Storing admin credential for raffle %s failed: %s", raffle_id, e)
                self.audit.log_action('CREATE_ADMIN_FAILED', raffle_id, {'reason': 'storage'}, False)
                return OperationResult.failure(Failure.STORAGE_ERROR)
            except (ValueError, ValidationError) as e:
                logger.error("Securing admin credential for raffle %s failed: %s", raffle_id, e)
                self.audit.log_action('CREATE_ADMIN_FAILED', raffle_id, {'reason': 'crypto'}, False)
                return OperationResult.failure(Failure.CRYPTO_ERROR)

        self.audit.log_action('CREATE_ADMIN', raffle_id,
                              {'email_masked': self.validator.mask_email(safe_email)}, True)
        return OperationResult.success(raffle_id)

    def verify_credential(self, raffle_id, password_attempt) -> bool:
        if self.rate_limiter.is_blocked(raffle_id):
            logger.warning("Rate limit exceeded for raffle login: %s", raffle_id)
            self.audit.log_action('LOGIN_BLOCKED_RATE_LIMIT', raffle_id, {}, False)
            return False

        try:
            credential = self._load(raffle_id)
        except (StorageError, ValidationError) as e:
            logger.error("Loading admin credential for raffle %s failed: %s", raffle_id, e)
            return False

        if credential is None:
            self.rate_limiter.record_failed_attempt(raffle_id)
            self.audit.log_action('LOGIN_ATTEMPT', raffle_id, {'status': 'not_found'}, False)
            return False

        is_valid = self.passwords.verify_password(password_attempt, credential.password_hash)
        if not is_valid:
            self.rate_limiter.record_failed_attempt(raffle_id)
        self.audit.log_action('LOGIN_ATTEMPT', raffle_id, {}, is_valid)
        if is_valid and self.passwords.needs_rehash(credential.password_hash):
            self._rehash(raffle_id, password_attempt)
        return is_valid

    def _rehash(self, raffle_id, password):
        # Hash cost changed since the credential was stored; upgrade it on login.
        result = self.update_credential(raffle_id, new_password=password)
        if not result.ok:
            logger.warning("Rehashing admin password for raffle %s failed: %s", raffle_id, result.error.value)

    def decrypt_email(self, raffle_id):
        try:
            credential = self._load(raffle_id)
        except (StorageError, ValidationError) as e:
            logger.error("Loading admin credential for raffle %s failed: %s", raffle_id, e)
            return OperationResult.failure(Failure.STORAGE_ERROR)
        if credential is None:
            return OperationResult.failure(Failure.NOT_FOUND)
        try:
            email = self.encryption.decrypt_field(credential.encrypted_email, credential.iv)
        except DecryptionError as e:
            logger.error("Admin email for raffle %s could not be decrypted: %s", raffle_id, type(e).__name__)
            self.audit.log_action('DECRYPT_EMAIL_FAILED', raffle_id, {'reason': type(e).__name__}, False)
            return OperationResult.failure(Failure.UNDECRYPTABLE)
        return OperationResult.success(email)

    def update_credential(self, raffle_id, new_email=None, new_password=None):
        with self.locks.hold(self._lock_key(raffle_id)):
            try:
                credential = self._load(raffle_id)
            except (StorageError, ValidationError) as e:
                logger.error("Loading admin credential for raffle %s failed: %s", raffle_id, e)
                return OperationResult.failure(Failure.STORAGE_ERROR)
            if credential is None:
                return OperationResult.failure(Failure.NOT_FOUND)

            updates = {'updated_at': datetime.now(timezone.utc)}
            try:
                if new_password:
                    if not self.passwords.is_acceptable_password(new_password):
                        return OperationResult.failure(Failure.WEAK_PASSWORD)
                    updates['password_hash'] = self.passwords.hash_password(new_password)
                if new_email:
                    safe_email = self.validator.sanitize_string(new_email, max_length=254)
                    if not self.validator.validate_email(safe_email):
                        return OperationResult.failure(Failure.INVALID_INPUT, field='email')
                    updates['encrypted_email'], updates['iv'] = self.encryption.encrypt_field(safe_email)
                updated = credential.model_copy(update=updates)
                self.store.put(CREDENTIALS, updated.to_document())
            except ConfigurationError:
                raise
            except StorageError as e:
                logger.error("Updating admin credential for raffle %s failed: %s", raffle_id, e)
                self.audit.log_action('UPDATE_CREDENTIALS_FAILED', raffle_id, {'reason': 'storage'}, False)
                return OperationResult.failure(Failure.STORAGE_ERROR)
            except ValueError as e:
                logger.error("Securing admin credential for raffle %s failed: %s", raffle_id, e)
                self.audit.log_action('UPDATE_CREDENTIALS_FAILED', raffle_id, {'reason': 'crypto'}, False)
                return OperationResult.failure(Failure.CRYPTO_ERROR)

        fields = sorted(updates)
        self.audit.log_action('UPDATE_CREDENTIALS', raffle_id, {'fields_updated': fields}, True)
        return OperationResult.success(raffle_id, fields_updated=fields)

