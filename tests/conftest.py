import pytest

from keyvault.config import KdfSettings, VaultConfig
from keyvault.wallet.crypto import EncryptionService
from keyvault.wallet.derivation import ChainDerivationEngine
from keyvault.wallet.manager import WalletManager
from keyvault.wallet.mnemonic import MnemonicService
from keyvault.wallet.storage import SecureStorage

ABANDON_PHRASE = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
PASSWORD = "Secure123!"

# Fast Argon2id parameters; only accepted with allow_weak_kdf
WEAK_KDF = KdfSettings(time_cost=1, memory_cost=8, parallelism=1)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return VaultConfig(data_dir=tmp_path / "vault", kdf=WEAK_KDF, allow_weak_kdf=True)


@pytest.fixture
def manager(config, clock):
    m = WalletManager(config, clock=clock)
    yield m
    m.close()


@pytest.fixture
def mnemonics():
    return MnemonicService()


@pytest.fixture
def encryption():
    return EncryptionService(WEAK_KDF, allow_weak_kdf=True)


@pytest.fixture
def engine():
    return ChainDerivationEngine()


@pytest.fixture
def storage(tmp_path):
    return SecureStorage(tmp_path / "wallets")


@pytest.fixture
def abandon_seed(mnemonics):
    mnemonic = mnemonics.validate(ABANDON_PHRASE)
    seed = mnemonics.to_seed(mnemonic)
    yield seed
    seed.wipe()


# Reference addresses for ABANDON_PHRASE, account 0
ETH_ADDRESS_0 = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
BTC_ADDRESS_0 = "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"
SOL_ADDRESS_0 = "HAgk14JpMQLgt6rVgv7cBQFJWFto5Dqxi472uT3DKpqk"
