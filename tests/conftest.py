import pytest

from linkr.core import LinkBuilder
from linkr.observability import get_metrics


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def nostr_keys():
    """(private_key_hex, pubkey_hex) for a fresh Nostr identity."""
    return LinkBuilder.generate_schnorr_keypair()


@pytest.fixture
def account_keys():
    """(private_key_hex, account) for a fresh account."""
    return LinkBuilder.generate_account_keypair()
