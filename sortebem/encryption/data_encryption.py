# sortebem/encryption/data_encryption.py
"""Field-level encryption for admin emails using AES-256-GCM.

Each call to ``encrypt_field`` draws a fresh random 12-byte nonce (the IV)
and returns the ciphertext (with the GCM tag appended) and the IV, both
base64 encoded, so they can be stored side by side in a credential document.

The key is provisioned out of band through ``ENCRYPTION_MASTER_KEY`` and
must be at least 32 bytes; the first 32 bytes are used. A missing or short
key raises ConfigurationError at the point of use; there is no fallback key.

Exception hierarchy:
- DecryptionError: Base class for all decryption failures
  - InvalidPackageError: Malformed input (bad base64, wrong IV length)
  - IntegrityError: Ciphertext/tag verification failed (wrong key or tampering)
"""

import os
import base64
import binascii
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sortebem.errors import ConfigurationError, report_configuration_error

KEY_LENGTH = 32
IV_LENGTH = 12


class DataEncryptionService:
    def __init__(self, master_key=None):
        self._master_key = master_key

    def _key(self) -> bytes:
        master_key = self._master_key
        if master_key is None:
            master_key = os.environ.get('ENCRYPTION_MASTER_KEY', '')
        if isinstance(master_key, str):
            master_key = master_key.encode()
        if len(master_key) < KEY_LENGTH:
            raise report_configuration_error(ConfigurationError(
                'ENCRYPTION_MASTER_KEY',
                f"ENCRYPTION_MASTER_KEY must be at least {KEY_LENGTH} bytes",
            ))
        return master_key[:KEY_LENGTH]

    def is_configured(self) -> bool:
        try:
            self._key()
            return True
        except ConfigurationError:
            return False

    def encrypt_field(self, plaintext: str) -> tuple:
        """Encrypt a text field. Returns (ciphertext_b64, iv_b64)."""
        aesgcm = AESGCM(self._key())
        iv = os.urandom(IV_LENGTH)
        ciphertext = aesgcm.encrypt(iv, plaintext.encode(), None)
        return base64.b64encode(ciphertext).decode(), base64.b64encode(iv).decode()

    def decrypt_field(self, ciphertext_b64: str, iv_b64: str) -> str:
        """Decrypt a text field (may raise DecryptionError subclasses)"""
        key = self._key()
        try:
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
            iv = base64.b64decode(iv_b64, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise InvalidPackageError(f"Invalid encrypted field: {e}")
        if len(iv) != IV_LENGTH:
            raise InvalidPackageError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")

        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise IntegrityError(f"GCM authentication failed: {e}")
        try:
            return plaintext.decode()
        except UnicodeDecodeError as e:
            raise IntegrityError(f"Decrypted field is not valid text: {e}")


class DecryptionError(Exception):
    """Base exception for decryption-related failures."""
    pass


class InvalidPackageError(DecryptionError):
    """Raised when the stored ciphertext or IV is malformed."""
    pass


class IntegrityError(DecryptionError):
    """Raised when ciphertext/tag authentication fails (wrong key or tampering)."""
    pass
