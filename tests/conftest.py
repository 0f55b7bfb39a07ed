# tests/conftest.py
import pytest

from tests.fakes import FakeIdentity, FakeLedger, FakeWalletProvider
from x402test.x402.replay import ReplayLedger


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def identity(ledger):
    return FakeIdentity(ledger)


@pytest.fixture
def wallet_provider(identity):
    return FakeWalletProvider(identity)


@pytest.fixture
def replay_path(tmp_path):
    return tmp_path / "signatures.json"


@pytest.fixture
def replay_ledger(replay_path):
    return ReplayLedger(replay_path)
