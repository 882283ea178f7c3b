"""
Shared pytest fixtures for the Lumina test suite.
"""

import pytest

from lumina_core.crypto_utils import SecureRandom
from lumina_core.ledger_client import GENESIS_ADDRESS, Block, BlockTransaction, SimulatedLedger
from lumina_core.precision import UNITS_PER_TOKEN
from lumina_core.storage import WalletStore
from lumina_core.sync import SyncEngine
from lumina_core.wallet import Wallet

# Low iteration count keeps PBKDF2 fast in tests.
TEST_KDF_ITERATIONS = 1_000
PASSWORD = "correct horse battery"


def _credit(wallet: Wallet, amount: int, token: str = "LMT", tx_id: str = "fund-1") -> None:
    wallet.apply_blocks([Block(wallet.sync_height, (
        BlockTransaction(tx_id, GENESIS_ADDRESS, wallet.address, amount, token),
    ))])


@pytest.fixture
def credit():
    """Apply one block crediting a wallet at its current height."""
    return _credit


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def rng():
    return SecureRandom()


@pytest.fixture
def db_path(tmp_path):
    """Path for a fresh SQLite wallet store."""
    return str(tmp_path / "wallet.db")


@pytest.fixture
def store(db_path):
    s = WalletStore(db_path)
    yield s
    s.close()


@pytest.fixture
def wallet(rng):
    """Uninitialized in-memory wallet."""
    return Wallet(rng=rng, kdf_iterations=TEST_KDF_ITERATIONS)


@pytest.fixture
def created_wallet(wallet):
    """Wallet with a fresh identity, unlocked, zero balance."""
    wallet.create(PASSWORD)
    return wallet


@pytest.fixture
def funded_wallet(created_wallet):
    """Unlocked wallet holding 10 LMT."""
    _credit(created_wallet, 10 * UNITS_PER_TOKEN)
    return created_wallet


@pytest.fixture
def ledger():
    return SimulatedLedger()


@pytest.fixture
def engine(created_wallet, ledger):
    """Sync engine without retry backoff."""
    return SyncEngine(created_wallet, ledger, retry_backoff=0.0, request_timeout=1.0)
