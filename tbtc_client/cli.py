"""
CLI for the tBTC bridge client.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import structlog
import typer
from dotenv import load_dotenv

from .address import address_to_output_script
from .bitcoin import BitcoinUtxo, hash160
from .chain import DepositReceipt, EventQueryOptions
from .config import ClientConfig
from .deposit import prove_deposit_sweep, reveal_deposit
from .errors import BridgeClientError
from .ethereum import EthereumBridge
from .keys import build_deposit_key, build_redemption_key
from .proof import ProofBuilder
from .redeem_scripts import inscription_redeemer_output_script, make_brc20, make_inscription_script
from .redemption import make_redemptions, prove_redemption
from .rpc import BitcoinRPC

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="tbtc-client",
    help="tBTC bridge client: redemptions, deposits and SPV proofs",
    add_completion=False,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to .env configuration file")


def main() -> None:
    """Entry point."""
    load_dotenv()
    app()


def parse_hex(value: str) -> bytes:
    try:
        return bytes.fromhex(value.removeprefix("0x"))
    except ValueError:
        raise typer.BadParameter(f"Not a hex string: {value}")


def parse_utxo(value: str) -> BitcoinUtxo:
    """Parse a UTXO given as <tx_hash>:<output_index>:<value>."""
    try:
        tx_hash, index, amount = value.split(":")
        return BitcoinUtxo(transaction_hash=tx_hash, output_index=int(index), value=int(amount))
    except ValueError:
        raise typer.BadParameter(f"Expected <tx_hash>:<output_index>:<value>, got {value}")


def parse_output_script(value: str) -> bytes:
    """Accept a Bitcoin address or a hex-encoded unprefixed output script."""
    script = address_to_output_script(value)
    if script is not None:
        return script
    try:
        return bytes.fromhex(value.removeprefix("0x"))
    except ValueError:
        raise typer.BadParameter(f"Not a supported address or hex script: {value}")


def load_config(config_path: Optional[Path]) -> ClientConfig:
    config = ClientConfig.from_env(config_path)
    if not config.ethereum.bridge_address:
        typer.echo("Error: BRIDGE_ADDRESS env var required", err=True)
        raise typer.Exit(1)
    return config


@app.command()
def redemption_key(
    wallet_public_key_hash: str = typer.Argument(..., help="20-byte wallet public key hash (hex)"),
    redeemer: str = typer.Argument(..., help="Redeemer address or output script (hex)"),
) -> None:
    """
    Print the key the Bridge indexes a redemption request under.
    """
    try:
        key = build_redemption_key(parse_hex(wallet_public_key_hash), parse_output_script(redeemer))
    except BridgeClientError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"0x{key.hex()}")


@app.command()
def deposit_key(
    tx_hash: str = typer.Argument(..., help="Deposit transaction hash (display format)"),
    output_index: int = typer.Argument(..., help="Deposit output index"),
) -> None:
    """
    Print the key the Bridge indexes a revealed deposit under.
    """
    typer.echo(f"0x{build_deposit_key(tx_hash, output_index).hex()}")


@app.command()
def build_proof(
    tx_hash: str = typer.Argument(..., help="Transaction hash (display format)"),
    confirmations: Optional[int] = typer.Option(
        None,
        "--confirmations",
        "-n",
        help="Required confirmations (read from the Bridge when omitted)",
    ),
    config_path: Optional[Path] = ConfigOption,
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file for proof JSON"
    ),
    hex_output: bool = typer.Option(False, "--hex", help="Output ABI-encoded hex for contract"),
) -> None:
    """
    Build an SPV proof for a mined Bitcoin transaction.

    Example:
        tbtc-client build-proof abc123...txid... --confirmations 6
    """
    if confirmations is None:
        config = load_config(config_path)
    else:
        config = ClientConfig.from_env(config_path)

    async def _build() -> None:
        required = confirmations
        if required is None:
            bridge = EthereumBridge(config.ethereum)
            required = await bridge.tx_proof_difficulty_factor()

        async with BitcoinRPC(config.bitcoin) as rpc:
            proof = await ProofBuilder(rpc).assemble_transaction_proof(tx_hash, required)

        typer.echo(f"Proof built for {tx_hash}")
        typer.echo(f"  Header chain length: {len(proof.headers())}")
        typer.echo(f"  Merkle proof depth:  {len(proof.merkle_hashes())}")

        if hex_output:
            typer.echo(f"0x{proof.encode_for_contract().hex()}")
            return

        proof_json = json.dumps(proof.to_dict(), indent=2)
        if output_file:
            with open(output_file, "w") as f:
                f.write(proof_json)
            typer.echo(f"\nProof saved to {output_file}")
        else:
            typer.echo(proof_json)

    try:
        asyncio.run(_build())
    except Exception as e:
        typer.echo(f"Error building proof: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def pending_redemption(
    wallet_public_key: str = typer.Argument(..., help="Compressed wallet public key (hex)"),
    redeemer: str = typer.Argument(..., help="Redeemer address or output script (hex)"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Show a pending redemption request.
    """
    public_key = parse_hex(wallet_public_key)
    script = parse_output_script(redeemer)
    config = load_config(config_path)

    async def _show() -> None:
        bridge = EthereumBridge(config.ethereum)
        request = await bridge.pending_redemptions(public_key, script)
        typer.echo(f"Redeemer:         {request.redeemer}")
        typer.echo(f"Requested amount: {request.requested_amount} sats")
        typer.echo(f"Treasury fee:     {request.treasury_fee} sats")
        typer.echo(f"Max tx fee:       {request.tx_max_fee} sats")
        typer.echo(f"Requested at:     {request.requested_at}")

    try:
        asyncio.run(_show())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="make-redemptions")
def make_redemptions_cmd(
    main_utxo: str = typer.Argument(..., help="Wallet main UTXO as <tx_hash>:<index>:<value>"),
    redeemers: list[str] = typer.Argument(..., help="Redeemer addresses or output scripts (hex)"),
    wallet_private_key: str = typer.Option(
        ..., "--wallet-private-key", envvar="WALLET_PRIVATE_KEY", help="Wallet key in WIF format"
    ),
    witness: bool = typer.Option(True, "--witness/--legacy", help="Change output type"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Build, sign and broadcast a redemption transaction for pending requests.
    """
    utxo = parse_utxo(main_utxo)
    scripts = [parse_output_script(r) for r in redeemers]
    config = load_config(config_path)

    async def _redeem() -> None:
        bridge = EthereumBridge(config.ethereum)
        async with BitcoinRPC(config.bitcoin) as rpc:
            transaction = await make_redemptions(
                rpc,
                bridge,
                wallet_private_key,
                utxo,
                scripts,
                witness,
            )
        typer.echo("Redemption transaction broadcast:")
        typer.echo(transaction.transaction_hex)

    try:
        asyncio.run(_redeem())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="prove-redemption")
def prove_redemption_cmd(
    tx_hash: str = typer.Argument(..., help="Redemption transaction hash (display format)"),
    main_utxo: str = typer.Argument(..., help="Wallet main UTXO as <tx_hash>:<index>:<value>"),
    wallet_public_key: str = typer.Argument(..., help="Compressed wallet public key (hex)"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Submit the SPV proof of a mined redemption transaction.
    """
    utxo = parse_utxo(main_utxo)
    public_key = parse_hex(wallet_public_key)
    config = load_config(config_path)

    async def _prove() -> None:
        bridge = EthereumBridge(config.ethereum)
        async with BitcoinRPC(config.bitcoin) as rpc:
            await prove_redemption(tx_hash, utxo, public_key, bridge, rpc)
        typer.echo(f"Redemption proof submitted for wallet 0x{hash160(public_key).hex()}")

    try:
        asyncio.run(_prove())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="reveal-deposit")
def reveal_deposit_cmd(
    tx_hash: str = typer.Argument(..., help="Deposit funding transaction hash (display format)"),
    output_index: int = typer.Argument(..., help="Deposit output index"),
    depositor: str = typer.Option(..., "--depositor", help="Depositor Ethereum address"),
    blinding_factor: str = typer.Option(..., "--blinding-factor", help="8-byte blinding factor (hex)"),
    wallet_public_key_hash: str = typer.Option(
        ..., "--wallet-pkh", help="20-byte wallet public key hash (hex)"
    ),
    refund_public_key_hash: str = typer.Option(
        ..., "--refund-pkh", help="20-byte refund public key hash (hex)"
    ),
    refund_locktime: str = typer.Option(
        ..., "--refund-locktime", help="4-byte refund locktime, little endian (hex)"
    ),
    vault: Optional[str] = typer.Option(None, "--vault", help="Vault address"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Reveal a broadcast deposit funding transaction to the Bridge.
    """
    receipt = DepositReceipt(
        depositor=depositor,
        blinding_factor=parse_hex(blinding_factor),
        wallet_public_key_hash=parse_hex(wallet_public_key_hash),
        refund_public_key_hash=parse_hex(refund_public_key_hash),
        refund_locktime=parse_hex(refund_locktime),
    )
    config = load_config(config_path)

    async def _reveal() -> None:
        bridge = EthereumBridge(config.ethereum)
        async with BitcoinRPC(config.bitcoin) as rpc:
            ledger_tx_hash = await reveal_deposit(rpc, bridge, tx_hash, output_index, receipt, vault)
        if ledger_tx_hash is None:
            typer.echo(f"Deposit {tx_hash}:{output_index} was already revealed")
        else:
            typer.echo(f"Deposit revealed in {ledger_tx_hash}")

    try:
        asyncio.run(_reveal())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="prove-deposit-sweep")
def prove_deposit_sweep_cmd(
    tx_hash: str = typer.Argument(..., help="Sweep transaction hash (display format)"),
    main_utxo: str = typer.Argument(..., help="Wallet main UTXO as <tx_hash>:<index>:<value>"),
    vault: Optional[str] = typer.Option(None, "--vault", help="Vault the deposits are routed to"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Submit the SPV proof of a mined deposit sweep transaction.
    """
    utxo = parse_utxo(main_utxo)
    config = load_config(config_path)

    async def _prove() -> None:
        bridge = EthereumBridge(config.ethereum)
        async with BitcoinRPC(config.bitcoin) as rpc:
            await prove_deposit_sweep(tx_hash, utxo, bridge, rpc, vault)
        typer.echo(f"Deposit sweep proof submitted for {tx_hash}")

    try:
        asyncio.run(_prove())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="redemption-requests")
def redemption_requests_cmd(
    from_block: int = typer.Option(..., "--from-block", help="First block to scan"),
    to_block: Optional[int] = typer.Option(None, "--to-block", help="Last block (default: latest)"),
    wallet_public_key_hash: Optional[str] = typer.Option(
        None, "--wallet-pkh", help="Only requests against this wallet (hex)"
    ),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    List RedemptionRequested events.
    """
    options = EventQueryOptions(from_block=from_block, to_block=to_block)
    filters = {}
    if wallet_public_key_hash:
        filters["walletPubKeyHash"] = parse_hex(wallet_public_key_hash)
    config = load_config(config_path)

    async def _list() -> None:
        bridge = EthereumBridge(config.ethereum)
        async for event in bridge.get_redemption_requested_events(options, **filters):
            typer.echo(
                f"{event.block_number} 0x{event.wallet_public_key_hash.hex()} "
                f"{event.redeemer_output_script.hex()} {event.requested_amount} "
                f"{event.treasury_fee} {event.tx_max_fee}"
            )

    try:
        asyncio.run(_list())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="active-wallet")
def active_wallet_cmd(config_path: Optional[Path] = ConfigOption) -> None:
    """
    Print the compressed public key of the Bridge's active wallet.
    """
    config = load_config(config_path)

    async def _show() -> None:
        bridge = EthereumBridge(config.ethereum)
        public_key = await bridge.active_wallet_public_key()
        if public_key is None:
            typer.echo("No active wallet")
        else:
            typer.echo(public_key.hex())

    try:
        asyncio.run(_show())
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="inscription-script")
def inscription_script_cmd(
    public_key: str = typer.Argument(..., help="Compressed public key locking the commit (hex)"),
    op: str = typer.Option(..., "--op", help="BRC-20 operation: deploy, mint or transfer"),
    tick: str = typer.Option(..., "--tick", help="BRC-20 ticker"),
    amt: str = typer.Option(..., "--amt", help="Integer amount"),
    max_supply: Optional[str] = typer.Option(None, "--max", help="Max supply (deploy only)"),
    limit: Optional[str] = typer.Option(None, "--lim", help="Mint limit (deploy only)"),
) -> None:
    """
    Print the BRC-20 commit script and the redeemer output script paying to it.
    """
    key = parse_hex(public_key)
    try:
        inscription = make_brc20(op, tick, amt, max_supply, limit)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Inscription:     {inscription}")
    typer.echo(f"Commit script:   {make_inscription_script(inscription, key, is_commit=True).hex()}")
    typer.echo(f"Redeemer script: {inscription_redeemer_output_script(inscription, key).hex()}")
