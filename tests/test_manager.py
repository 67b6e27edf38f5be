import asyncio
import json
import re

import pytest

from keyvault.exceptions import (
    InvalidPasswordOrCorrupted,
    SessionExpired,
    UnknownWord,
    UnsupportedChain,
    WalletExists,
    WalletNotFound,
    WrongWordCount,
)
from keyvault.models.envelope import VERSION_ARGON2ID, VERSION_PBKDF2
from keyvault.services.session import SessionState
from keyvault.services.signing import verify_message
from keyvault.wallet.manager import WalletManager, compute_wallet_id

from conftest import ABANDON_PHRASE, BTC_ADDRESS_0, ETH_ADDRESS_0, PASSWORD, SOL_ADDRESS_0

CHAINS = ["ethereum", "bitcoin", "solana", "ton"]


@pytest.fixture
def imported(manager):
    return asyncio.run(manager.import_wallet("Main", ABANDON_PHRASE, PASSWORD, CHAINS))


def wallet_files(manager):
    return list(manager.storage.wallet_dir.glob("wallet_*.json"))


# ============================================
# Create / Import
# ============================================

def test_create_wallet(manager, clock):
    created = asyncio.run(manager.create_wallet("Main", PASSWORD, 12, CHAINS))

    assert created.mnemonic.word_count == 12
    assert set(created.addresses) == set(CHAINS)
    assert re.fullmatch(r"[0-9a-f]{16}", created.wallet_id)
    assert created.expires_at == clock.now + 900
    assert manager.session_state(created.wallet_id) is SessionState.UNLOCKED

    # The phrase never reaches disk
    raw = wallet_files(manager)[0].read_text()
    assert created.mnemonic.phrase() not in raw
    assert " ".join(created.mnemonic.words()[:3]) not in raw

    events = manager.audit_events(created.wallet_id)
    assert [e.operation for e in events] == ["create"]
    assert events[0].metadata == {"chains": CHAINS, "word_count": 12}


def test_create_wallet_24_words_default_chains(manager):
    created = asyncio.run(manager.create_wallet("Big", PASSWORD, 24))
    assert created.mnemonic.word_count == 24
    assert list(created.addresses) == list(manager.config.default_chains)


def test_create_wallet_validation(manager):
    with pytest.raises(ValueError):
        asyncio.run(manager.create_wallet("Main", "", 12))
    with pytest.raises(ValueError):
        asyncio.run(manager.create_wallet("Main", PASSWORD, 18))
    with pytest.raises(UnsupportedChain):
        asyncio.run(manager.create_wallet("Main", PASSWORD, 12, ["dogecoin"]))
    with pytest.raises(ValueError):
        asyncio.run(manager.create_wallet("Main", PASSWORD, 12, []))

    assert wallet_files(manager) == []
    failures = manager.audit.query(operation="create", outcome="failure")
    assert [e.reason for e in failures] == ["ValueError", "ValueError", "unsupported_chain", "ValueError"]


def test_import_reference_addresses(manager, imported):
    assert imported.addresses["ethereum"] == ETH_ADDRESS_0
    assert imported.addresses["bitcoin"] == BTC_ADDRESS_0
    assert imported.addresses["solana"] == SOL_ADDRESS_0
    assert imported.wallet_id == compute_wallet_id(manager.get_accounts(imported.wallet_id))


def test_import_twice_is_rejected(manager, imported):
    with pytest.raises(WalletExists):
        asyncio.run(manager.import_wallet("Again", ABANDON_PHRASE, PASSWORD, CHAINS))
    assert len(wallet_files(manager)) == 1


def test_import_eleven_words_writes_nothing(manager):
    eleven = " ".join(ABANDON_PHRASE.split()[:11])
    with pytest.raises(WrongWordCount):
        asyncio.run(manager.import_wallet("Bad", eleven, PASSWORD, CHAINS))

    assert wallet_files(manager) == []
    failure = manager.audit.query(operation="import")[0]
    assert failure.outcome == "failure"
    assert failure.reason == "wrong_word_count"


def test_import_unknown_word(manager):
    with pytest.raises(UnknownWord):
        asyncio.run(manager.import_wallet("Bad", ABANDON_PHRASE.replace("about", "aboot"), PASSWORD))


def test_wallet_id_depends_on_chain_selection(manager):
    eth_only = asyncio.run(manager.import_wallet("A", ABANDON_PHRASE, PASSWORD, ["ethereum"]))
    with_sol = asyncio.run(manager.import_wallet("B", ABANDON_PHRASE, PASSWORD, ["ethereum", "solana"]))
    assert eth_only.wallet_id != with_sol.wallet_id


# ============================================
# Derive / Sign
# ============================================

def test_derive_address_matches_stored(manager, imported):
    for chain in CHAINS:
        assert manager.derive_or_sign(imported.wallet_id, chain) == imported.addresses[chain]


def test_derive_twice_is_identical(manager):
    created = asyncio.run(manager.create_wallet("Main", PASSWORD, 12, ["ethereum"]))
    first = manager.derive_or_sign(created.wallet_id, "ethereum", account_index=0)
    second = manager.derive_or_sign(created.wallet_id, "ethereum", account_index=0)
    assert first == second
    assert re.fullmatch(r"0x[0-9a-fA-F]{40}", first)


@pytest.mark.parametrize("chain,length", [
    ("ethereum", 65), ("bitcoin", 65), ("solana", 64), ("ton", 64),
])
def test_sign_and_verify(manager, imported, chain, length):
    signature = bytes.fromhex(manager.derive_or_sign(imported.wallet_id, chain, b"hello vault"))
    assert len(signature) == length

    account = next(a for a in manager.get_accounts(imported.wallet_id) if a.chain == chain)
    assert verify_message(chain, account.public_key, b"hello vault", signature)
    assert not verify_message(chain, account.public_key, b"hello vault!", signature)


def test_evm_signature_is_personal_sign(manager, imported):
    from eth_account import Account
    from eth_account.messages import encode_defunct

    signature = manager.derive_or_sign(imported.wallet_id, "ethereum", "hello")
    recovered = Account.recover_message(encode_defunct(text="hello"), signature=bytes.fromhex(signature))
    assert recovered == ETH_ADDRESS_0


def test_bitcoin_signature_uses_segwit_header(manager, imported):
    signature = bytes.fromhex(manager.derive_or_sign(imported.wallet_id, "bitcoin", "hello"))
    # 39..42 marks a P2WPKH key
    assert 39 <= signature[0] <= 42

    account = next(a for a in manager.get_accounts(imported.wallet_id) if a.chain == "bitcoin")
    assert verify_message("bitcoin", account.public_key, "hello", signature)


def test_derive_or_sign_after_lock(manager, imported, monkeypatch):
    manager.lock_wallet(imported.wallet_id)

    def fail(*args, **kwargs):
        raise AssertionError("key material touched")

    monkeypatch.setattr(manager.engine, "derive_private_key", fail)
    monkeypatch.setattr(manager.engine, "derive_account", fail)

    with pytest.raises(SessionExpired):
        manager.derive_or_sign(imported.wallet_id, "ethereum", b"payload")
    with pytest.raises(SessionExpired):
        manager.derive_or_sign(imported.wallet_id, "ethereum")

    sign_failure = manager.audit.query(wallet_id=imported.wallet_id, operation="sign")[-1]
    assert sign_failure.outcome == "failure"
    assert sign_failure.reason == "session_expired"


def test_derive_audit_metadata(manager, imported):
    manager.derive_or_sign(imported.wallet_id, "solana", account_index=2)
    event = manager.audit.query(wallet_id=imported.wallet_id, operation="derive")[-1]
    assert event.metadata == {"chain": "solana", "account_index": 2}


def test_add_account_persists(manager, imported):
    account = manager.add_account(imported.wallet_id, "ethereum", 1)
    assert account.derivation_path == "m/44'/60'/1'/0/0"
    assert account.address != ETH_ADDRESS_0

    stored = manager.get_accounts(imported.wallet_id)
    assert account in stored
    assert manager.add_account(imported.wallet_id, "ethereum", 1) == account
    assert len(manager.get_accounts(imported.wallet_id)) == len(stored)


# ============================================
# Export / Password / Delete
# ============================================

def test_export_mnemonic(manager, imported):
    with asyncio.run(manager.export_mnemonic(imported.wallet_id, PASSWORD)) as mnemonic:
        assert mnemonic.phrase() == ABANDON_PHRASE

    event = manager.audit.query(wallet_id=imported.wallet_id, operation="export")[-1]
    assert event.severity == "elevated"
    assert event.outcome == "success"
    assert "abandon" not in json.dumps(event.to_dict())


def test_export_with_wrong_password(manager, imported):
    with pytest.raises(InvalidPasswordOrCorrupted):
        asyncio.run(manager.export_mnemonic(imported.wallet_id, "wrong"))
    event = manager.audit.query(wallet_id=imported.wallet_id, operation="export")[-1]
    assert event.severity == "elevated"
    assert event.outcome == "failure"


def test_change_password(manager, imported):
    wallet_id = imported.wallet_id
    asyncio.run(manager.change_password(wallet_id, PASSWORD, "N3w-password"))
    manager.lock_wallet(wallet_id)

    with pytest.raises(InvalidPasswordOrCorrupted):
        asyncio.run(manager.unlock_wallet(wallet_id, PASSWORD))
    asyncio.run(manager.unlock_wallet(wallet_id, "N3w-password"))
    assert manager.derive_or_sign(wallet_id, "ethereum") == ETH_ADDRESS_0


def test_change_password_requires_old_password(manager, imported):
    with pytest.raises(InvalidPasswordOrCorrupted):
        asyncio.run(manager.change_password(imported.wallet_id, "wrong", "N3w-password"))
    with pytest.raises(ValueError):
        asyncio.run(manager.change_password(imported.wallet_id, PASSWORD, ""))


def test_concurrent_password_changes_are_serialised(manager, imported):
    wallet_id = imported.wallet_id

    async def change_twice():
        return await asyncio.gather(
            manager.change_password(wallet_id, PASSWORD, "first-N3w"),
            manager.change_password(wallet_id, PASSWORD, "second-N3w"),
            return_exceptions=True,
        )

    first, second = asyncio.run(change_twice())
    assert first is None
    assert isinstance(second, InvalidPasswordOrCorrupted)

    manager.lock_wallet(wallet_id)
    asyncio.run(manager.unlock_wallet(wallet_id, "first-N3w"))
    assert manager.derive_or_sign(wallet_id, "ethereum") == ETH_ADDRESS_0


def store_legacy_envelope(manager, wallet_id):
    record = manager.storage.load_record(wallet_id)
    with manager.mnemonics.validate(ABANDON_PHRASE) as mnemonic:
        legacy = manager.encryption.encrypt_legacy(mnemonic, PASSWORD, iterations=1000)
    manager.storage.save(wallet_id, legacy, record.accounts)
    manager.lock_wallet(wallet_id)
    return legacy


def test_legacy_envelope_upgraded_on_unlock(manager, imported):
    wallet_id = imported.wallet_id
    legacy = store_legacy_envelope(manager, wallet_id)

    asyncio.run(manager.unlock_wallet(wallet_id, PASSWORD))

    upgraded = manager.storage.load_record(wallet_id).encrypted_mnemonic
    assert legacy.version == VERSION_PBKDF2
    assert upgraded.version == VERSION_ARGON2ID
    assert not manager.encryption.needs_upgrade(upgraded)
    unlock = manager.audit.query(wallet_id=wallet_id, operation="unlock")[-1]
    assert unlock.metadata["envelope_upgraded"] is True


def test_delete_wallet(manager, imported):
    wallet_id = imported.wallet_id
    asyncio.run(manager.delete_wallet(wallet_id))

    assert manager.list_wallets() == []
    assert manager.session_state(wallet_id) is SessionState.LOCKED
    with pytest.raises(SessionExpired):
        manager.derive_or_sign(wallet_id, "ethereum")
    with pytest.raises(WalletNotFound):
        asyncio.run(manager.unlock_wallet(wallet_id, PASSWORD))

    delete_event = manager.audit.query(wallet_id=wallet_id, operation="delete")[0]
    assert delete_event.severity == "elevated"


def test_delete_wallet_purging_audit(manager, imported):
    asyncio.run(manager.delete_wallet(imported.wallet_id, purge_audit=True))
    events = manager.audit_events(imported.wallet_id)
    assert [e.operation for e in events] == ["delete"]
    assert events[0].metadata["audit_purged"] > 0


def test_delete_unknown_wallet(manager):
    with pytest.raises(WalletNotFound):
        asyncio.run(manager.delete_wallet("0123456789abcdef"))


def test_delete_waits_for_unlock_in_flight(manager, imported):
    wallet_id = imported.wallet_id
    store_legacy_envelope(manager, wallet_id)

    async def unlock_then_delete():
        unlock = asyncio.create_task(manager.unlock_wallet(wallet_id, PASSWORD))
        await asyncio.sleep(0)
        assert manager.session_state(wallet_id) is SessionState.UNLOCKING
        await manager.delete_wallet(wallet_id)
        await unlock

    asyncio.run(unlock_then_delete())

    # The upgraded envelope must not bring the record back
    assert wallet_files(manager) == []
    assert not manager.storage.exists(wallet_id)
    assert manager.session_state(wallet_id) is SessionState.LOCKED
    with pytest.raises(SessionExpired):
        manager.derive_or_sign(wallet_id, "ethereum")


def test_unlock_fails_if_record_removed_while_decrypting(manager, imported):
    wallet_id = imported.wallet_id
    store_legacy_envelope(manager, wallet_id)

    async def unlock_while_removed():
        unlock = asyncio.create_task(manager.unlock_wallet(wallet_id, PASSWORD))
        await asyncio.sleep(0)
        manager.storage.delete(wallet_id)
        with pytest.raises(WalletNotFound):
            await unlock

    asyncio.run(unlock_while_removed())

    assert wallet_files(manager) == []
    assert manager.session_state(wallet_id) is SessionState.LOCKED
    failure = manager.audit.query(wallet_id=wallet_id, operation="unlock")[-1]
    assert failure.outcome == "failure"
    assert failure.reason == "wallet_not_found"


# ============================================
# Listing and persistence
# ============================================

def test_list_wallets_public_only(manager, imported):
    summaries = manager.list_wallets()
    assert len(summaries) == 1
    assert summaries[0].wallet_id == imported.wallet_id
    assert summaries[0].name == "Main"
    assert summaries[0].addresses == imported.addresses


def test_wallets_survive_restart(config, clock, manager, imported):
    manager.close()

    restarted = WalletManager(config, clock=clock)
    assert [s.wallet_id for s in restarted.list_wallets()] == [imported.wallet_id]
    assert restarted.session_state(imported.wallet_id) is SessionState.LOCKED

    asyncio.run(restarted.unlock_wallet(imported.wallet_id, PASSWORD))
    assert restarted.derive_or_sign(imported.wallet_id, "bitcoin") == BTC_ADDRESS_0
    assert len(restarted.audit_events(imported.wallet_id)) > 1
