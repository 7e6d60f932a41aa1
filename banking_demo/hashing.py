"""
Credential Hashing Module

Slow, salted one-way hashing (scrypt) for passwords and SSNs, and as the
mixing function behind account-number generation. Encoded hashes are
self-describing: ``scrypt$<n>$<r>$<p>$<salt hex>$<hash hex>``.
"""

import hashlib
import hmac
import secrets
from typing import Optional

from .config import get_config


SCHEME = "scrypt"


class CredentialHasher:
    """scrypt hasher with a configurable work factor"""

    def __init__(self, work_factor: Optional[int] = None, block_size: Optional[int] = None,
                 parallelism: Optional[int] = None, salt_bytes: int = 16):
        config = get_config()
        self.n = work_factor or config.hash_work_factor
        self.r = block_size or config.hash_block_size
        self.p = parallelism or config.hash_parallelism
        self.salt_bytes = salt_bytes

        if self.n < 2 or self.n & (self.n - 1):
            raise ValueError("Work factor must be a power of two greater than 1")

    def _derive(self, value: str, salt: bytes, n: int, r: int, p: int) -> bytes:
        return hashlib.scrypt(
            value.encode("utf-8"),
            salt=salt,
            n=n, r=r, p=p,
            maxmem=128 * n * r * p + 1024 * 1024,
            dklen=64,
        )

    def hash(self, value: str) -> str:
        """Hash value with a fresh random salt"""
        salt = secrets.token_bytes(self.salt_bytes)
        digest = self._derive(value, salt, self.n, self.r, self.p)
        return f"{SCHEME}${self.n}${self.r}${self.p}${salt.hex()}${digest.hex()}"

    def verify(self, value: str, encoded: str) -> bool:
        """Check value against an encoded hash produced by ``hash``"""
        try:
            scheme, n, r, p, salt_hex, digest_hex = encoded.split("$")
            if scheme != SCHEME:
                return False
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(digest_hex)
            n, r, p = int(n), int(r), int(p)
        except ValueError:
            return False

        actual = self._derive(value, salt, n, r, p)
        return hmac.compare_digest(actual, expected)
