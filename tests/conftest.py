"""
Shared fixtures for the NanoTDF and entitlement test suite.
"""

import pytest

from tdf_crypto.key_generation import generate_ec_keypair

KAS_URL = "https://kas.example.org/kas"
SECRET = "https://example.org/attr/classification/value/secret"
RELEASABLE_USA = "https://example.org/attr/releasable/value/usa"


@pytest.fixture
def kas_url():
    return KAS_URL


@pytest.fixture(scope="session")
def kas_keypair():
    """(private, public) P-256 keys playing the KAS."""
    return generate_ec_keypair()


@pytest.fixture(scope="session")
def signer_keypair():
    """(private, public) P-256 keys of the envelope creator for ECDSA binding."""
    return generate_ec_keypair()


@pytest.fixture
def attributes():
    return [SECRET, RELEASABLE_USA]
