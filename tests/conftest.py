"""
Shared fixtures for walvault tests.

Everything runs against the in-memory Walrus network with short poll
intervals so the suite stays fast.
"""

import pytest

from walvault.backends import InMemoryWalrusNetwork, MockSigner
from walvault.core import VerificationContext
from walvault.storage import VaultManager


def build_context(network=None, signer=None, poll_interval=0.01):
    """In-memory network, vault and signer wired into one context."""
    network = network or InMemoryWalrusNetwork()
    return VerificationContext(
        storage=network,
        ledger=network,
        tracking_store=VaultManager(),
        signer=signer or MockSigner(),
        poll_interval=poll_interval,
    )


@pytest.fixture
def network():
    return InMemoryWalrusNetwork()


@pytest.fixture
def context(network):
    return build_context(network)


@pytest.fixture
def test_data():
    return (b"test data" * 114)[:1024]
