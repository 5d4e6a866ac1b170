import pytest
from eth_account import Account

from x402_core.clients.base import x402Client
from x402_core.schemes.exact_evm import ExactEvmSigner
from x402_core.types import PaymentRequirements

PAY_TO = "0x1111111111111111111111111111111111111111"
USDC_BASE_SEPOLIA = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


def make_requirements(**overrides) -> PaymentRequirements:
    fields = {
        "scheme": "exact",
        "network": "base-sepolia",
        "max_amount_required": "10000",
        "resource": "https://example.com/weather",
        "description": "test",
        "mime_type": "application/json",
        "pay_to": PAY_TO,
        "max_timeout_seconds": 1000,
        "asset": USDC_BASE_SEPOLIA,
        "extra": {"name": "USDC", "version": "2"},
    }
    fields.update(overrides)
    return PaymentRequirements(**fields)


@pytest.fixture
def account():
    return Account.create()


@pytest.fixture
def signer(account):
    return ExactEvmSigner(account, networks="base-sepolia")


@pytest.fixture
def payment_requirements():
    return make_requirements()


@pytest.fixture
def payment_header(signer, payment_requirements):
    return x402Client(signer).create_payment_header(payment_requirements)


@pytest.fixture
def requirements_factory():
    return make_requirements
