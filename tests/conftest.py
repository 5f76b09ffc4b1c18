import sys
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# Ensure project root is on sys.path so `import app` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tests.fixtures.payments import FakeAdapterFactories, make_tenant_config  # noqa: E402


@pytest.fixture
def fake_factories():
    return FakeAdapterFactories()


@pytest.fixture
def all_enabled_config():
    return make_tenant_config("acme-bank", "selcom", "tips", "gepg")


@pytest.fixture
def no_integrations_config():
    return make_tenant_config("empty-sacco")


@pytest.fixture
def tips_only_config():
    return make_tenant_config("tips-mfi", "tips")


@pytest.fixture(scope="session")
def rsa_keys():
    """PEM private/public key pair for GePG signing tests."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = (
        key.public_key()
        .public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )
    return private_pem, public_pem
