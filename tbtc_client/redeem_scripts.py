"""
Redeemer scripts carrying ord inscriptions.

A redeemer may ask for its BTC to land in a P2SH output whose redeem
script commits to an inscription (for example a BRC-20 transfer), so the
redemption payout can be spent straight into an inscription reveal.
"""

from typing import Optional

from .bitcoin import hash160, push_data

BRC20_OPERATIONS = ("deploy", "mint", "transfer")

ORD_TAG = b"ord"
TEXT_CONTENT_TYPE = b"text/plain;charset=utf-8"

OP_0 = 0x00
OP_1 = 0x51
OP_IF = 0x63
OP_ENDIF = 0x68
OP_EQUAL = 0x87
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC


def make_brc20(
    op: str,
    tick: str,
    amt: str,
    max_supply: Optional[str] = None,
    limit: Optional[str] = None,
) -> str:
    """
    Build the BRC-20 JSON text for an operation.

    Amounts are integer strings and are written unquoted. A deploy needs
    both max_supply and limit.
    """
    if op not in BRC20_OPERATIONS:
        raise ValueError(f"Invalid operation: {op}")
    if "." in amt:
        raise ValueError(f"Invalid amount: {amt}")
    try:
        amount = int(amt)
    except ValueError:
        raise ValueError(f"Invalid amount: {amt}")
    if amount <= 0:
        raise ValueError(f"Invalid amount: {amt}")
    if len(tick) < 1:
        raise ValueError("Invalid ticker")

    text = f'{{ "p": "brc-20", "op": "{op}", "tick": "{tick}", "amt": {amt}'
    if op == "deploy":
        if max_supply is None or limit is None:
            raise ValueError("Invalid max or limit on deploy operation")
        text += f', "max": {max_supply}, "lim": {limit}'
    return text + " }"


def script_push(data: bytes) -> bytes:
    """Push as a script compiler emits it: small integers become OP_N."""
    if len(data) == 0:
        return bytes([OP_0])
    if len(data) == 1 and 1 <= data[0] <= 16:
        return bytes([OP_1 + data[0] - 1])
    if data == b"\x81":
        return b"\x4f"  # OP_1NEGATE
    return push_data(data)


def make_inscription_script(
    inscription: str, public_key: bytes, is_commit: bool = False
) -> bytes:
    """
    Script carrying a text inscription in the ord envelope.

    The commit form locks to public_key and wraps the envelope in
    OP_FALSE OP_IF ... OP_ENDIF. The reveal form is the bare envelope.
    """
    envelope = (
        script_push(ORD_TAG)
        + bytes([OP_1])
        + script_push(TEXT_CONTENT_TYPE)
        + bytes([OP_0])
        + script_push(inscription.encode("utf-8"))
    )
    if not is_commit:
        return envelope
    return (
        script_push(public_key)
        + bytes([OP_CHECKSIG, OP_0, OP_IF])
        + envelope
        + bytes([OP_ENDIF])
    )


def p2sh_output_script(redeem_script: bytes) -> bytes:
    """OP_HASH160 <hash160(redeem_script)> OP_EQUAL."""
    return bytes([OP_HASH160, 20]) + hash160(redeem_script) + bytes([OP_EQUAL])


def inscription_redeemer_output_script(inscription: str, public_key: bytes) -> bytes:
    """Unprefixed redeemer output script paying to the commit script of an inscription."""
    return p2sh_output_script(make_inscription_script(inscription, public_key, is_commit=True))
