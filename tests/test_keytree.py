"""
KeyTree tests: phrase handling, BIP-44 derivation, signing, wiping.
"""

import coincurve
import pytest
from bip_utils import Base58Decoder
from mnemonic import Mnemonic

from conftest import ABANDON_12, ABANDON_12_BTC_0, ABANDON_24, P2SH_ADDRESS
from networks import get_currency
from wallet.errors import InvalidMnemonicError, ValidationError
from wallet.keytree import KeyTree, pubkey_hash
from wallet.transaction import TransactionTemplate, p2pkh_script, script_for_address

FUNDING_TXID = "11" * 32


def _split_script_sig(script_sig: bytes) -> tuple[bytes, int, bytes]:
    """(DER signature, hash type, public key) from a P2PKH unlocking script."""
    sig_len = script_sig[0]
    sig_with_type = script_sig[1:1 + sig_len]
    rest = script_sig[1 + sig_len:]
    return sig_with_type[:-1], sig_with_type[-1], rest[1:1 + rest[0]]


class TestPhrase:
    """Phrase generation and validation."""

    def test_generated_phrase_is_24_words(self):
        tree = KeyTree()
        assert tree.word_count == 24
        assert KeyTree.is_valid_phrase(tree.phrase)

    def test_generated_phrases_differ(self):
        assert KeyTree().phrase != KeyTree().phrase

    @pytest.mark.parametrize("phrase", [ABANDON_12, ABANDON_24])
    def test_accepts_12_and_24_words(self, phrase):
        assert KeyTree(phrase).phrase == phrase

    def test_rejects_bad_checksum(self):
        with pytest.raises(InvalidMnemonicError):
            KeyTree(" ".join(["abandon"] * 12))

    def test_rejects_other_word_counts(self):
        """Valid BIP-39 phrases of 15/18/21 words are still refused."""
        phrase = Mnemonic("english").generate(strength=160)
        assert len(phrase.split()) == 15
        with pytest.raises(InvalidMnemonicError):
            KeyTree(phrase)

    @pytest.mark.parametrize("phrase", ["", "not a phrase", None, 12])
    def test_is_valid_phrase_garbage(self, phrase):
        assert not KeyTree.is_valid_phrase(phrase)


class TestDerivation:
    """BIP-44 address derivation."""

    def test_known_vector(self, btc):
        address = KeyTree(ABANDON_12).derive_address(btc, 0)
        assert address.address == ABANDON_12_BTC_0
        assert address.derivation_path == "m/44'/0'/0'/0/0"
        assert address.index == 0
        assert address.currency is btc
        assert len(bytes.fromhex(address.public_key)) == 33

    def test_deterministic(self, btc):
        a = KeyTree(ABANDON_24).derive_address(btc, 7)
        b = KeyTree(ABANDON_24).derive_address(btc, 7)
        assert a.address == b.address
        assert a.public_key == b.public_key

    def test_distinct_indices(self, btc):
        addresses = KeyTree(ABANDON_12).derive_addresses(btc, 5)
        assert len({a.address for a in addresses}) == 5
        assert [a.index for a in addresses] == [0, 1, 2, 3, 4]

    def test_negative_index(self, btc):
        with pytest.raises(ValidationError):
            KeyTree(ABANDON_12).derive_address(btc, -1)

    @pytest.mark.parametrize("symbol,prefixes", [
        ("BTC", "1"),
        ("BCH", "1"),
        ("BTC-TEST", "mn"),
        ("LTC", "L"),
        ("DOGE", "D"),
        ("DASH", "X"),
    ])
    def test_address_prefixes(self, symbol, prefixes):
        address = KeyTree(ABANDON_12).derive_address(get_currency(symbol), 0)
        assert address.address[0] in prefixes

    def test_currencies_use_separate_accounts(self):
        tree = KeyTree(ABANDON_12)
        btc = tree.derive_address(get_currency("BTC"), 0)
        bch = tree.derive_address(get_currency("BCH"), 0)
        assert btc.public_key != bch.public_key

    def test_private_key_matches_public_key(self):
        tree = KeyTree(ABANDON_12)
        path = "m/44'/0'/0'/0/3"
        with tree.derive_private_key(path) as key:
            public = coincurve.PrivateKey(bytes(key)).public_key.format(compressed=True)
        assert public == tree.derive_public_key(path)

    def test_invalid_path(self):
        with pytest.raises(ValidationError):
            KeyTree(ABANDON_12).derive_public_key("m/not/a/path")

    def test_extended_public_keys(self):
        tree = KeyTree(ABANDON_12)
        assert tree.master_public_key().startswith("xpub")
        assert tree.extended_public_key(get_currency("BTC")).startswith("xpub")
        assert tree.extended_public_key(get_currency("BTC-TEST")).startswith("tpub")
        assert tree.extended_public_key(get_currency("LTC")).startswith("Ltub")

    def test_owns_address(self, btc):
        tree = KeyTree(ABANDON_12)
        mine = tree.derive_address(btc, 5).address
        assert tree.owns_address(mine, btc, max_index=10)
        assert not tree.owns_address(mine, btc, max_index=4)
        assert not tree.owns_address(KeyTree(ABANDON_24).derive_address(btc, 0).address, btc, 10)


class TestSigning:
    """Input signing."""

    def _template(self, tree, btc, index=0):
        address = tree.derive_address(btc, index)
        template = TransactionTemplate()
        template.add_input(FUNDING_TXID, 0, script_for_address(address.address, btc.params))
        template.add_output(90_000, script_for_address(P2SH_ADDRESS, btc.params))
        return template, address

    def test_signature_verifies(self, btc):
        tree = KeyTree(ABANDON_12)
        template, address = self._template(tree, btc)
        digest = template.signature_hash(0)

        signed = tree.sign(template, [(address.derivation_path, 0)])

        signature, hash_type, public_key = _split_script_sig(template.inputs[0].script_sig)
        assert hash_type == 0x01
        assert public_key.hex() == address.public_key
        assert coincurve.PublicKey(public_key).verify(signature, digest, hasher=None)
        assert signed.raw_tx == template.to_hex()
        assert signed.tx_id == template.tx_id()
        assert signed.inputs == 1

    def test_signature_is_deterministic(self, btc):
        tree = KeyTree(ABANDON_12)
        first, address = self._template(tree, btc)
        second, _ = self._template(tree, btc)
        tree.sign(first, [(address.derivation_path, 0)])
        tree.sign(second, [(address.derivation_path, 0)])
        assert first.to_hex() == second.to_hex()

    def test_wrong_key_rejected(self, btc):
        tree = KeyTree(ABANDON_12)
        template, _ = self._template(tree, btc)
        with pytest.raises(ValidationError):
            tree.sign(template, [("m/44'/0'/0'/0/1", 0)])

    def test_unsigned_input_rejected(self, btc):
        tree = KeyTree(ABANDON_12)
        template, _ = self._template(tree, btc)
        with pytest.raises(ValidationError):
            tree.sign(template, [])

    def test_pubkey_hash_matches_script(self, btc):
        tree = KeyTree(ABANDON_12)
        address = tree.derive_address(btc, 0)
        expected = script_for_address(address.address, btc.params)
        assert p2pkh_script(pubkey_hash(bytes.fromhex(address.public_key))) == expected

    def test_pubkey_hash_known_vector(self):
        """HASH160 of the compressed secp256k1 generator point."""
        generator = bytes.fromhex(
            "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
        )
        assert pubkey_hash(generator).hex() == "751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_pubkey_hash_is_address_payload(self, btc):
        address = KeyTree(ABANDON_12).derive_address(btc, 3)
        payload = Base58Decoder.CheckDecode(address.address)
        assert pubkey_hash(bytes.fromhex(address.public_key)) == payload[1:]


class TestForkIdSigning:
    """Replay-protected signing for Bitcoin Cash."""

    VALUE = 120_000

    def _template(self, tree, bch, value=VALUE):
        address = tree.derive_address(bch, 0)
        template = TransactionTemplate()
        template.add_input(
            FUNDING_TXID, 1, script_for_address(address.address, bch.params), value=value
        )
        template.add_output(100_000, script_for_address(P2SH_ADDRESS, bch.params))
        return template, address

    def test_signature_verifies_against_forkid_digest(self):
        bch = get_currency("BCH")
        tree = KeyTree(ABANDON_12)
        template, address = self._template(tree, bch)
        digest = template.signature_hash_forkid(0, bch.params.fork_id)

        tree.sign(template, [(address.derivation_path, 0)], fork_id=bch.params.fork_id)

        signature, hash_type, public_key = _split_script_sig(template.inputs[0].script_sig)
        assert hash_type == 0x41
        assert public_key.hex() == address.public_key
        assert coincurve.PublicKey(public_key).verify(signature, digest, hasher=None)
        assert not coincurve.PublicKey(public_key).verify(
            signature, template.signature_hash(0, 0x41), hasher=None
        )

    def test_input_without_value_rejected(self):
        bch = get_currency("BCH")
        tree = KeyTree(ABANDON_12)
        template, address = self._template(tree, bch, value=0)
        with pytest.raises(ValidationError):
            tree.sign(template, [(address.derivation_path, 0)], fork_id=0)
        assert template.inputs[0].script_sig == b""

    def test_legacy_chains_keep_sighash_all(self, btc):
        tree = KeyTree(ABANDON_12)
        template, address = self._template(tree, btc)
        tree.sign(template, [(address.derivation_path, 0)])
        _, hash_type, _ = _split_script_sig(template.inputs[0].script_sig)
        assert hash_type == 0x01


class TestWipe:
    """Secret cleanup."""

    def test_wipe_blocks_use(self, btc):
        tree = KeyTree(ABANDON_12)
        tree.wipe()
        with pytest.raises(ValidationError):
            tree.derive_address(btc, 0)
        with pytest.raises(ValidationError):
            tree.phrase

    def test_wipe_zeroes_seed(self):
        tree = KeyTree(ABANDON_12)
        seed = tree._seed
        tree.wipe()
        assert seed.wiped
