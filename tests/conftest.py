import pytest

from tests.mocks import PAY_TO
from x402_aptos import PriceSpec, SimulatedLedgerVerifier
from x402_aptos.mechanisms.aptos import LocalEd25519Signer


@pytest.fixture
def signer():
    return LocalEd25519Signer.generate()


@pytest.fixture
def pay_to():
    return PAY_TO


@pytest.fixture
def weather_price():
    return PriceSpec(pattern="GET /weather", amount="1000000")


@pytest.fixture
def simulated_verifier():
    return SimulatedLedgerVerifier(pay_to=PAY_TO)
