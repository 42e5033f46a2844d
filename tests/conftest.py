"""Shared fixtures for the vault test-suite."""
import pytest

from evault.storage.memory import MemoryBackend
from evault.vault.commitment import commit
from evault.vault.service import VaultService


@pytest.fixture
def backend():
    """Fresh in-memory backend."""
    return MemoryBackend()


@pytest.fixture
async def service(backend):
    """VaultService over the in-memory backend with user ``u1`` created."""
    svc = VaultService(backend)
    await svc.ensure_user("u1", "u1@example.com", "google")
    return svc


@pytest.fixture
def preimage():
    return b"deletion-secret-for-note1"


@pytest.fixture
def deletion_hash(preimage):
    return commit(preimage)
