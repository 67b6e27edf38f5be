import copy
import json
import pickle

import pytest

from keyvault.exceptions import (
    ChecksumMismatch,
    EntropyError,
    InvalidMnemonic,
    UnknownWord,
    WrongWordCount,
)
from keyvault.wallet.mnemonic import Mnemonic, MnemonicService
from keyvault.wallet.secure import SecretBytes

from conftest import ABANDON_PHRASE

ABANDON_SEED = (
    "5eb00bbddcf069084889a8ab9155568165f5c453ccb85e70811aaed6f6da5fc1"
    "9a5ac40b389cd370d086206dec8aa6c43daea6690f20ad3d8d48b2d2ce9e38e4"
)
ABANDON_TREZOR_SEED = (
    "c55257c360c07c72029aebc1b53c05ed0362ada38ead3e3e9efa3708e5349553"
    "1f09a6987599d18264c1e1c92f2cf141630c7a3c4ab7c81b2f001698e7463b04"
)


@pytest.mark.parametrize("word_count", [12, 24])
def test_generate_word_counts(mnemonics, word_count):
    with mnemonics.generate(word_count) as mnemonic:
        assert mnemonic.word_count == word_count
        assert all(word in mnemonics.wordlist for word in mnemonic.words())


def test_generate_rejects_other_counts(mnemonics):
    with pytest.raises(ValueError):
        mnemonics.generate(15)


def test_generated_phrase_validates(mnemonics):
    for _ in range(10):
        generated = mnemonics.generate(12)
        checked = mnemonics.validate(generated.phrase())
        assert checked == generated


def test_generate_from_fixed_entropy():
    service = MnemonicService(entropy_source=lambda n: b"\x00" * n)
    assert service.generate(12).phrase() == ABANDON_PHRASE


def test_entropy_source_unavailable():
    def broken(n):
        raise OSError("no /dev/urandom")

    with pytest.raises(EntropyError):
        MnemonicService(entropy_source=broken).generate(12)


def test_short_entropy_is_rejected():
    with pytest.raises(EntropyError):
        MnemonicService(entropy_source=lambda n: b"\x00" * (n - 1)).generate(12)


def test_validate_wrong_word_count(mnemonics):
    eleven = " ".join(ABANDON_PHRASE.split()[:11])
    with pytest.raises(WrongWordCount) as exc:
        mnemonics.validate(eleven)
    assert exc.value.word_count == 11
    assert isinstance(exc.value, InvalidMnemonic)


def test_validate_appended_garbage(mnemonics):
    with pytest.raises(WrongWordCount):
        mnemonics.validate(ABANDON_PHRASE + " zzzz")


def test_validate_unknown_word_reports_position(mnemonics):
    words = ABANDON_PHRASE.split()
    words[10] = "notaword"
    with pytest.raises(UnknownWord) as exc:
        mnemonics.validate(" ".join(words))
    assert exc.value.position == 10
    assert "notaword" not in str(exc.value)


def test_validate_checksum_mismatch(mnemonics):
    words = ABANDON_PHRASE.split()
    words[-1] = "abandon"
    with pytest.raises(ChecksumMismatch):
        mnemonics.validate(" ".join(words))


def test_validate_normalizes_case_and_whitespace(mnemonics):
    messy = "  " + ABANDON_PHRASE.upper().replace(" ", "   \t") + "\n"
    assert mnemonics.validate(messy).phrase() == ABANDON_PHRASE


def test_is_valid(mnemonics):
    assert mnemonics.is_valid(ABANDON_PHRASE)
    assert not mnemonics.is_valid("abandon about")


def test_to_seed_vectors(mnemonics):
    mnemonic = mnemonics.validate(ABANDON_PHRASE)
    assert mnemonics.to_seed(mnemonic).reveal().hex() == ABANDON_SEED
    assert mnemonics.to_seed(mnemonic, "TREZOR").reveal().hex() == ABANDON_TREZOR_SEED


def test_to_seed_is_deterministic(mnemonics):
    mnemonic = mnemonics.generate(24)
    first = mnemonics.to_seed(mnemonic, "pass")
    second = mnemonics.to_seed(mnemonic, "pass")
    assert first == second
    assert len(first) == 64


# ============================================
# Secret containers
# ============================================

def test_secret_bytes_wipe():
    secret = SecretBytes(b"top secret")
    assert secret.reveal() == b"top secret"
    secret.wipe()
    assert secret.wiped
    assert len(secret) == 0
    with pytest.raises(ValueError):
        secret.reveal()


def test_secret_bytes_context_manager_wipes():
    with SecretBytes(b"abc") as secret:
        assert secret.reveal() == b"abc"
    assert secret.wiped


def test_secret_bytes_clears_source_bytearray():
    source = bytearray(b"\x01\x02\x03")
    secret = SecretBytes(source)
    assert source == bytearray(3)
    assert secret.reveal() == b"\x01\x02\x03"


def test_secret_repr_is_redacted():
    mnemonic = Mnemonic.from_str(ABANDON_PHRASE)
    assert "abandon" not in repr(mnemonic)
    assert "abandon" not in str(mnemonic)
    assert "redacted" in repr(mnemonic)


def test_secret_cannot_be_serialized_or_copied():
    mnemonic = Mnemonic.from_str(ABANDON_PHRASE)
    with pytest.raises(TypeError):
        pickle.dumps(mnemonic)
    with pytest.raises(TypeError):
        copy.copy(mnemonic)
    with pytest.raises(TypeError):
        copy.deepcopy(mnemonic)
    with pytest.raises(TypeError):
        json.dumps(mnemonic)


def test_secret_equality():
    assert SecretBytes(b"abc") == SecretBytes(b"abc")
    assert SecretBytes(b"abc") != SecretBytes(b"abd")
    wiped = SecretBytes(b"abc")
    wiped.wipe()
    assert wiped != SecretBytes(b"abc")
