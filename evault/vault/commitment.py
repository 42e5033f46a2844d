"""
Deletion Commitments — Commit-then-reveal authorization for entry removal.

The entry owner submits ``commit(preimage)`` when an entry is created; the
server keeps only that digest. Revealing the pre-image later authorizes
deletion.

Security Note:
    Never log pre-images or digests.
"""
from cryptography.hazmat.primitives import constant_time, hashes

DIGEST_SIZE = 32  # SHA-256


def commit(preimage: bytes) -> bytes:
    """Compute the deletion commitment for a pre-image.

    Args:
        preimage: Secret bytes chosen by the entry owner.

    Returns:
        32-byte SHA-256 digest.
    """
    digest = hashes.Hash(hashes.SHA256())
    digest.update(preimage)
    return digest.finalize()


def verify(commitment: bytes, preimage: bytes) -> bool:
    """Check a revealed pre-image against a stored commitment.

    Comparison is constant-time. A commitment of the wrong length never
    verifies.

    Args:
        commitment: Digest stored with the entry.
        preimage: Pre-image revealed by the caller.

    Returns:
        True iff ``commit(preimage) == commitment``.
    """
    if len(commitment) != DIGEST_SIZE:
        return False
    return constant_time.bytes_eq(commit(preimage), bytes(commitment))
