import base64
import binascii
import secrets
from typing import Tuple

from passlib.crypto.digest import pbkdf2_hmac
from passlib.utils import consteq

SALT_SIZE = 16
HASH_SIZE = 32
ITERATION_COUNT = 100_000


class InvalidInput(ValueError):
    """Raised for empty or malformed secrets, hashes or salts"""


class CredentialHasher:
    """
    Salted PBKDF2-HMAC-SHA256 for short secrets (OTP codes, reset tokens).
    Hash and salt are returned separately, both base64 encoded.
    """

    def __init__(self, iterations: int = ITERATION_COUNT):
        if iterations < ITERATION_COUNT:
            raise InvalidInput(f"iterations must be at least {ITERATION_COUNT}")
        self.iterations = iterations

    def _derive(self, secret: str, salt: bytes) -> bytes:
        return pbkdf2_hmac("sha256", secret.encode("utf-8"), salt, self.iterations, HASH_SIZE)

    def hash(self, secret: str) -> Tuple[str, str]:
        if not secret or not secret.strip():
            raise InvalidInput("secret must not be empty")

        salt = secrets.token_bytes(SALT_SIZE)
        digest = self._derive(secret, salt)
        return (
            base64.b64encode(digest).decode("ascii"),
            base64.b64encode(salt).decode("ascii"),
        )

    def verify(self, secret: str, hashed: str, salt: str) -> bool:
        for name, value in (("secret", secret), ("hash", hashed), ("salt", salt)):
            if not value or not value.strip():
                raise InvalidInput(f"{name} must not be empty")

        try:
            salt_bytes = base64.b64decode(salt, validate=True)
            stored = base64.b64decode(hashed, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidInput("hash and salt must be base64 encoded") from exc

        if len(stored) != HASH_SIZE:
            return False
        return consteq(self._derive(secret, salt_bytes), stored)
