"""
Tests for BRC-20 texts and inscription redeemer scripts.
"""

import pytest

from tbtc_client.bitcoin import hash160
from tbtc_client.redeem_scripts import (
    inscription_redeemer_output_script,
    make_brc20,
    make_inscription_script,
    script_push,
)

PUBLIC_KEY = bytes.fromhex("03989d253b17a6a0f41838b84ff0d20e8898f9d7b1a98f2564da4cc29dcf8581d9")

ENVELOPE_HEAD = (
    b"\x03ord"
    + b"\x51"
    + bytes([len(b"text/plain;charset=utf-8")])
    + b"text/plain;charset=utf-8"
    + b"\x00"
)


class TestBrc20:
    def test_mint(self) -> None:
        assert make_brc20("mint", "ordi", "1000") == (
            '{ "p": "brc-20", "op": "mint", "tick": "ordi", "amt": 1000 }'
        )

    def test_transfer(self) -> None:
        assert make_brc20("transfer", "tbtc", "5") == (
            '{ "p": "brc-20", "op": "transfer", "tick": "tbtc", "amt": 5 }'
        )

    def test_deploy_with_max_and_limit(self) -> None:
        text = make_brc20("deploy", "tbtc", "1", max_supply="21000000", limit="1000")
        assert text == (
            '{ "p": "brc-20", "op": "deploy", "tick": "tbtc", "amt": 1, '
            '"max": 21000000, "lim": 1000 }'
        )

    def test_deploy_requires_max_and_limit(self) -> None:
        with pytest.raises(ValueError, match="max or limit"):
            make_brc20("deploy", "tbtc", "1", max_supply="21000000")

    @pytest.mark.parametrize("amt", ["1.5", "0", "-3", "abc"])
    def test_rejects_invalid_amount(self, amt: str) -> None:
        with pytest.raises(ValueError, match="Invalid amount"):
            make_brc20("mint", "ordi", amt)

    def test_rejects_unknown_operation(self) -> None:
        with pytest.raises(ValueError, match="Invalid operation"):
            make_brc20("burn", "ordi", "1")

    def test_rejects_empty_ticker(self) -> None:
        with pytest.raises(ValueError, match="Invalid ticker"):
            make_brc20("mint", "", "1")


class TestScriptPush:
    def test_small_integers_use_opcodes(self) -> None:
        assert script_push(b"") == b"\x00"
        assert script_push(b"\x01") == b"\x51"
        assert script_push(b"\x10") == b"\x60"
        assert script_push(b"\x81") == b"\x4f"

    def test_direct_and_pushdata(self) -> None:
        assert script_push(b"\x11") == b"\x01\x11"
        assert script_push(b"\xaa" * 75) == b"\x4b" + b"\xaa" * 75
        assert script_push(b"\xaa" * 76) == b"\x4c\x4c" + b"\xaa" * 76
        assert script_push(b"\xaa" * 256) == b"\x4d\x00\x01" + b"\xaa" * 256


class TestInscriptionScript:
    def test_reveal_is_bare_envelope(self) -> None:
        inscription = make_brc20("mint", "ordi", "1000")
        body = inscription.encode()

        script = make_inscription_script(inscription, PUBLIC_KEY)

        assert script == ENVELOPE_HEAD + b"\x3c" + body
        assert len(body) == 0x3C

    def test_commit_locks_to_public_key(self) -> None:
        script = make_inscription_script("hello", PUBLIC_KEY, is_commit=True)

        assert script.startswith(b"\x21" + PUBLIC_KEY + b"\xac\x00\x63")
        assert script.endswith(b"\x05hello\x68")
        assert ENVELOPE_HEAD in script

    def test_long_inscription_uses_pushdata(self) -> None:
        inscription = "x" * 100

        script = make_inscription_script(inscription, PUBLIC_KEY)

        assert script.endswith(b"\x4c\x64" + b"x" * 100)

    def test_redeemer_output_script_is_p2sh_of_commit(self) -> None:
        commit = make_inscription_script("hello", PUBLIC_KEY, is_commit=True)

        script = inscription_redeemer_output_script("hello", PUBLIC_KEY)

        assert script == b"\xa9\x14" + hash160(commit) + b"\x87"
