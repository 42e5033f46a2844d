"""
Tests for deletion commitments.

Tests cover:
- SHA-256 digest computation
- Constant-time verification of revealed pre-images
- Rejection of wrong pre-images and malformed commitments
"""
import hashlib

from evault.vault.commitment import DIGEST_SIZE, commit, verify


class TestCommit:
    """Tests for commit()."""

    def test_commit_is_sha256(self):
        """Test that the commitment is the SHA-256 digest of the pre-image."""
        assert commit(b"secret") == hashlib.sha256(b"secret").digest()

    def test_commit_size(self):
        """Test that commitments are 32 bytes."""
        assert len(commit(b"")) == DIGEST_SIZE == 32

    def test_commit_is_deterministic(self):
        """Test that the same pre-image always yields the same commitment."""
        assert commit(b"abc") == commit(b"abc")
        assert commit(b"abc") != commit(b"abd")


class TestVerify:
    """Tests for verify()."""

    def test_matching_preimage(self):
        """Test that the original pre-image verifies."""
        assert verify(commit(b"P"), b"P") is True

    def test_wrong_preimage(self):
        """Test that any other pre-image is rejected."""
        assert verify(commit(b"P"), b"Q") is False
        assert verify(commit(b"P"), b"") is False

    def test_digest_is_not_its_own_preimage(self):
        """Test that revealing the commitment itself does not authorize."""
        stored = commit(b"P")
        assert verify(stored, stored) is False

    def test_wrong_length_commitment(self):
        """Test that truncated or oversized commitments never verify."""
        stored = commit(b"P")
        assert verify(stored[:16], b"P") is False
        assert verify(stored + b"\x00", b"P") is False
        assert verify(b"", b"") is False
