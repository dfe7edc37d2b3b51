# sortebem/encryption/password_hashing.py

import os
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHashError, HashingError

# Admin password hashing and verification using Argon2id. Every hash carries
# its own random salt; time and memory cost are tunable per deployment.


class PasswordHashingService:
    def __init__(self, time_cost=None, memory_cost=None, parallelism=4, min_length=6):
        if time_cost is None:
            time_cost = int(os.environ.get('PASSWORD_HASH_TIME_COST', '3'))
        if memory_cost is None:
            memory_cost = int(os.environ.get('PASSWORD_HASH_MEMORY_COST', '65536'))
        self.min_length = min_length
        self.ph = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16,
        )

    def hash_password(self, password: str) -> str:
        if not self.is_acceptable_password(password):
            raise ValueError("Password does not meet security requirements")
        try:
            return self.ph.hash(password)
        except HashingError as e:
            raise ValueError(f"Password hashing failed: {str(e)}")

    def verify_password(self, password: str, hash_value: str) -> bool:
        # argon2 compares digests in constant time
        if not isinstance(password, str) or not hash_value:
            return False
        try:
            return self.ph.verify(hash_value, password)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hash_value: str) -> bool:
        return self.ph.check_needs_rehash(hash_value)

    def is_acceptable_password(self, password: str) -> bool:
        return isinstance(password, str) and len(password) >= self.min_length and bool(password.strip())
