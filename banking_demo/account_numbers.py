"""
Account Number Generation

Produces 10-digit candidate account numbers. A nanosecond timestamp and an
independent random token are fed through the slow credential hash and the
digits of the result are kept. Candidates are not guaranteed unique; the
account manager retries until storage accepts one.
"""

import re
import secrets
import time
from typing import Optional

from .hashing import CredentialHasher


ACCOUNT_NUMBER_LENGTH = 10
PAD_DIGIT = "0"


def digits_from_hash(encoded_hash: str, length: int = ACCOUNT_NUMBER_LENGTH) -> str:
    """First ``length`` digits of the hash output, right-padded with zeros"""
    # Only the digest part; the parameter prefix would make every number alike
    digest = encoded_hash.rsplit("$", 1)[-1]
    digits = re.sub(r'[^0-9]', '', digest)
    return digits[:length].ljust(length, PAD_DIGIT)


class AccountNumberGenerator:
    """Hash-derived 10-digit account numbers"""

    def __init__(self, hasher: Optional[CredentialHasher] = None):
        self.hasher = hasher or CredentialHasher()

    def generate(self) -> str:
        seed = f"{time.time_ns()}-{secrets.token_hex(16)}"
        return digits_from_hash(self.hasher.hash(seed))
