"""
Deterministic hashing for migration checksums.

Manifesto:
    A checksum is how the engine notices that an applied migration was edited
    afterwards. It must be:
    - **Deterministic:** Same inputs always produce the same hash
    - **Order-dependent:** (a, b) ≠ (b, a)
    - **Fixed width:** 32 hex chars, stored in a ``CHAR(32)`` column

Examples:
    >>> compute_hash("a", "b") != compute_hash("b", "a")
    True
    >>> len(compute_hash("CREATE TABLE t (id INT)"))
    32

Tags:
    hashing, checksum, drift-detection, strata
"""

import hashlib
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Concatenates the string form of all values with a ``|`` delimiter and
    returns the first ``length`` hex characters of the SHA-256 digest.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def chain_checksum(previous: str, content: str) -> str:
    """Fold one more piece of content into a rolling checksum.

    ``chain_checksum(chain_checksum("", a), b)`` differs from the same calls
    with ``a`` and ``b`` swapped.
    """
    return compute_hash(previous + compute_hash(content))
