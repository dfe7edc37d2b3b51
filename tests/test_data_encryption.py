import base64
import pytest

from sortebem.encryption.data_encryption import (
    DataEncryptionService,
    DecryptionError,
    InvalidPackageError,
    IntegrityError,
)
from sortebem.errors import ConfigurationError


def test_encrypt_decrypt_roundtrip():
    svc = DataEncryptionService(master_key='0' * 32)
    ciphertext, iv = svc.encrypt_field('a@b.com')
    assert 'a@b.com' not in ciphertext
    assert len(base64.b64decode(iv)) == 12
    assert svc.decrypt_field(ciphertext, iv) == 'a@b.com'


def test_each_encryption_uses_a_fresh_iv():
    svc = DataEncryptionService(master_key='0' * 32)
    first = svc.encrypt_field('a@b.com')
    second = svc.encrypt_field('a@b.com')
    assert first[1] != second[1]
    assert first[0] != second[0]


def test_decrypt_with_wrong_master_key_fails():
    ciphertext, iv = DataEncryptionService(master_key='a' * 32).encrypt_field('a@b.com')
    with pytest.raises(IntegrityError):
        DataEncryptionService(master_key='b' * 32).decrypt_field(ciphertext, iv)


def test_tampered_ciphertext_fails():
    svc = DataEncryptionService(master_key='1' * 32)
    ciphertext, iv = svc.encrypt_field('a@b.com')
    tampered = bytearray(base64.b64decode(ciphertext))
    tampered[0] ^= 0xFF
    with pytest.raises(IntegrityError):
        svc.decrypt_field(base64.b64encode(bytes(tampered)).decode(), iv)


def test_malformed_package_fails():
    svc = DataEncryptionService(master_key='1' * 32)
    ciphertext, _ = svc.encrypt_field('a@b.com')
    with pytest.raises(InvalidPackageError):
        svc.decrypt_field('%%%not-base64%%%', base64.b64encode(b'x' * 12).decode())
    with pytest.raises(InvalidPackageError):
        svc.decrypt_field(ciphertext, base64.b64encode(b'short').decode())
    assert issubclass(InvalidPackageError, DecryptionError)


def test_short_key_is_a_configuration_error():
    svc = DataEncryptionService(master_key='too-short')
    assert svc.is_configured() is False
    with pytest.raises(ConfigurationError) as exc:
        svc.encrypt_field('a@b.com')
    assert exc.value.setting == 'ENCRYPTION_MASTER_KEY'


def test_key_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv('ENCRYPTION_MASTER_KEY', 'e' * 40)
    svc = DataEncryptionService()
    assert svc.is_configured()
    ciphertext, iv = svc.encrypt_field('x@y.com')
    assert DataEncryptionService(master_key='e' * 32).decrypt_field(ciphertext, iv) == 'x@y.com'
