from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from typing import Literal

import bcrypt
from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError

ARGON2_PREFIX = "argon2id$"
BCRYPT_PREFIX = "bcrypt$"
# Hashes written by earlier deployments carry no scheme prefix.
RAW_BCRYPT = re.compile(r"^\$2[ayb]\$")
RAW_ARGON2 = "$argon2id$"


def is_password_hashed(stored: str | None) -> bool:
    if not stored:
        return False
    return (
        stored.startswith(ARGON2_PREFIX)
        or stored.startswith(BCRYPT_PREFIX)
        or stored.startswith(RAW_ARGON2)
        or bool(RAW_BCRYPT.match(stored))
    )


@dataclass
class PasswordHasher:
    default_scheme: Literal["argon2id", "bcrypt"] = "argon2id"
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536
    argon2_parallelism: int = 2
    bcrypt_cost: int = 12

    def __post_init__(self) -> None:
        self._argon2 = Argon2Hasher(
            time_cost=self.argon2_time_cost,
            memory_cost=self.argon2_memory_cost,
            parallelism=self.argon2_parallelism,
            hash_len=32,
            salt_len=16,
        )

    def hash(self, password: str | None) -> str:
        if password is None:
            return ""
        if self.default_scheme == "bcrypt":
            return self._hash_bcrypt(password)
        return self._hash_argon2(password)

    def verify(self, password: str, stored: str | None) -> tuple[bool, str | None]:
        """Check a password against a stored value.

        Returns ``(valid, upgraded_hash)``. A stored value that is not a
        recognized hash is a plaintext roster password; a match is always
        upgraded to the default scheme.
        """
        if not stored:
            return False, None
        if stored.startswith(ARGON2_PREFIX) or stored.startswith(RAW_ARGON2):
            return self._verify_argon2(password, stored)
        if stored.startswith(BCRYPT_PREFIX) or RAW_BCRYPT.match(stored):
            return self._verify_bcrypt(password, stored)
        return self._verify_plaintext(password, stored)

    def _hash_argon2(self, password: str) -> str:
        raw = self._argon2.hash(password).lstrip("$")
        return f"{ARGON2_PREFIX}{raw}"

    def _hash_bcrypt(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.bcrypt_cost)
        digest = bcrypt.hashpw(password.encode(), salt).decode().lstrip("$")
        return f"{BCRYPT_PREFIX}{digest}"

    def _verify_argon2(self, password: str, stored: str) -> tuple[bool, str | None]:
        encoded = stored.removeprefix(ARGON2_PREFIX)
        if not encoded.startswith("$"):
            encoded = f"${encoded}"
        try:
            self._argon2.verify(encoded, password)
        except (VerificationError, InvalidHashError):
            return False, None
        if self._argon2.check_needs_rehash(encoded) or self.default_scheme != "argon2id":
            return True, self.hash(password)
        if not stored.startswith(ARGON2_PREFIX):
            return True, self._hash_argon2(password)
        return True, None

    def _verify_bcrypt(self, password: str, stored: str) -> tuple[bool, str | None]:
        encoded = stored.removeprefix(BCRYPT_PREFIX)
        if not encoded.startswith("$"):
            encoded = f"${encoded}"
        try:
            valid = bcrypt.checkpw(password.encode(), encoded.encode())
        except ValueError:
            return False, None
        if not valid:
            return False, None
        if self.default_scheme != "bcrypt":
            return True, self.hash(password)
        current_rounds = encoded.split("$")[2] if encoded.count("$") >= 3 else ""
        if current_rounds != f"{self.bcrypt_cost:02d}" or not stored.startswith(BCRYPT_PREFIX):
            return True, self._hash_bcrypt(password)
        return True, None

    def _verify_plaintext(self, password: str, stored: str) -> tuple[bool, str | None]:
        if not secrets.compare_digest(password.encode(), stored.encode()):
            return False, None
        return True, self.hash(password)


def password_hasher_from_settings(settings) -> PasswordHasher:
    return PasswordHasher(
        default_scheme=getattr(settings, "password_hash_scheme", "argon2id"),
        argon2_time_cost=getattr(settings, "password_hash_argon2_time_cost", 3),
        argon2_memory_cost=getattr(settings, "password_hash_argon2_memory_cost", 65536),
        argon2_parallelism=getattr(settings, "password_hash_argon2_parallelism", 2),
        bcrypt_cost=getattr(settings, "password_hash_bcrypt_cost", 12),
    )
