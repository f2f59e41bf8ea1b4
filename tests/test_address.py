"""
Tests for Bitcoin address and key decoding.
"""

import pytest
from coincurve import PrivateKey

from tbtc_client.address import (
    address_to_output_script,
    base58check_decode,
    bech32_decode,
)
from tbtc_client.errors import FatalError
from tbtc_client.signing import WalletKey, compress_public_key


class TestBech32Decode:
    def test_decode_mainnet_p2wpkh(self) -> None:
        """BIP-173 example."""
        result = bech32_decode("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
        assert result is not None
        hrp, version, program = result
        assert hrp == "bc"
        assert version == 0
        assert program.hex() == "751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_decode_testnet_p2wpkh(self) -> None:
        result = bech32_decode("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx")
        assert result is not None
        assert result[0] == "tb"

    def test_decode_taproot_bech32m(self) -> None:
        """BIP-350 example."""
        result = bech32_decode(
            "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
        )
        assert result is not None
        hrp, version, program = result
        assert version == 1
        assert len(program) == 32

    def test_decode_invalid_checksum(self) -> None:
        assert bech32_decode("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t5") is None

    def test_decode_invalid_chars(self) -> None:
        assert bech32_decode("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3ti") is None


class TestBase58CheckDecode:
    def test_decode_mainnet_p2pkh(self) -> None:
        result = base58check_decode("1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2")
        assert result is not None
        version, payload = result
        assert version == 0x00
        assert len(payload) == 20

    def test_decode_testnet_p2pkh(self) -> None:
        result = base58check_decode("mipcBbFg9gMiCh81Kj8tqqdgoZub1ZJRfn")
        assert result is not None
        assert result[0] == 0x6F

    def test_decode_invalid_checksum(self) -> None:
        assert base58check_decode("1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN3") is None


class TestAddressToOutputScript:
    def test_p2wpkh(self) -> None:
        script = address_to_output_script("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
        assert script == bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")

    def test_p2wsh(self) -> None:
        script = address_to_output_script(
            "bc1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3qccfmv3"
        )
        assert script is not None
        assert script[:2] == b"\x00\x20"
        assert len(script) == 34

    def test_taproot(self) -> None:
        script = address_to_output_script(
            "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0"
        )
        assert script is not None
        assert script[:2] == b"\x51\x20"

    def test_p2pkh(self) -> None:
        script = address_to_output_script("1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2")
        assert script is not None
        assert script[:3] == b"\x76\xa9\x14"
        assert script[-2:] == b"\x88\xac"

    def test_p2sh(self) -> None:
        script = address_to_output_script("3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy")
        assert script is not None
        assert script[:2] == b"\xa9\x14"
        assert script[-1:] == b"\x87"

    def test_unknown_hrp(self) -> None:
        # Valid bech32 with a foreign human readable part
        assert address_to_output_script("ltc1qw508d6qejxtdg4y5r3zarvary0c5xw7kgmn4n9") is None

    def test_invalid(self) -> None:
        assert address_to_output_script("notavalidaddress") is None
        assert address_to_output_script("") is None


class TestWif:
    def test_compressed_round_trip(self) -> None:
        key = WalletKey(PrivateKey(bytes.fromhex("11" * 32)))

        decoded = WalletKey.from_wif(key.to_wif())

        assert decoded.compressed
        assert decoded.public_key == key.public_key
        assert len(decoded.public_key) == 33

    def test_uncompressed_testnet(self) -> None:
        key = WalletKey(PrivateKey(bytes.fromhex("22" * 32)), compressed=False)

        decoded = WalletKey.from_wif(key.to_wif(testnet=True))

        assert not decoded.compressed
        assert len(decoded.public_key) == 65

    def test_address_is_not_a_wif(self) -> None:
        with pytest.raises(FatalError):
            WalletKey.from_wif("1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2")

    def test_garbage(self) -> None:
        with pytest.raises(FatalError):
            WalletKey.from_wif("not-a-key")


class TestCompressPublicKey:
    def test_registry_form(self, wallet_key: WalletKey) -> None:
        uncompressed = wallet_key.private_key.public_key.format(compressed=False)

        assert compress_public_key(uncompressed[1:]) == wallet_key.public_key
        assert compress_public_key(uncompressed) == wallet_key.public_key
        assert compress_public_key(wallet_key.public_key) == wallet_key.public_key

    def test_rejects_point_off_curve(self) -> None:
        with pytest.raises(FatalError):
            compress_public_key(b"\x04" + b"\x00" * 64)
