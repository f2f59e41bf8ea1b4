"""
tBTC bridge client

Builds and signs Bitcoin redemption transactions for bridge wallets,
assembles SPV proofs of mined transactions and talks to the Bridge
contract on Ethereum.

Usage:
    # Key of a redemption request
    tbtc-client redemption-key <wallet_pubkey_hash> bc1q...

    # Handle pending redemptions of a wallet
    tbtc-client make-redemptions <tx_hash>:<index>:<value> bc1q... 1A1z...

    # Prove a mined redemption
    tbtc-client prove-redemption <tx_hash> <tx_hash>:<index>:<value> <wallet_pubkey>

    # Reveal a deposit and prove its sweep
    tbtc-client reveal-deposit <tx_hash> <index> --depositor 0x... --blinding-factor ...
    tbtc-client prove-deposit-sweep <tx_hash> <tx_hash>:<index>:<value>
"""

__version__ = "0.1.0"

from .bitcoin import BitcoinUtxo, RawTransaction, RawTransactionVectors
from .chain import Bridge, DepositReceipt, EventQueryOptions, RedemptionRequest
from .config import ClientConfig, Settings
from .errors import (
    AlreadyDone,
    BridgeClientError,
    FatalError,
    InsufficientConfirmations,
    InvalidRequestList,
    NotFound,
    TransientError,
)
from .ethereum import EthereumBridge, EthereumConfig
from .keys import build_deposit_key, build_redemption_key, build_utxo_hash
from .proof import ProofBuilder, SpvProof
from .redeem_scripts import inscription_redeemer_output_script, make_brc20, make_inscription_script
from .redemption import create_redemption_transaction, make_redemptions, prove_redemption
from .rpc import BitcoinRPC, BitcoinRPCConfig

__all__ = [
    "__version__",
    "BitcoinUtxo",
    "RawTransaction",
    "RawTransactionVectors",
    "Bridge",
    "DepositReceipt",
    "EventQueryOptions",
    "RedemptionRequest",
    "ClientConfig",
    "Settings",
    "AlreadyDone",
    "BridgeClientError",
    "FatalError",
    "InsufficientConfirmations",
    "InvalidRequestList",
    "NotFound",
    "TransientError",
    "EthereumBridge",
    "EthereumConfig",
    "build_deposit_key",
    "build_redemption_key",
    "build_utxo_hash",
    "ProofBuilder",
    "SpvProof",
    "inscription_redeemer_output_script",
    "make_brc20",
    "make_inscription_script",
    "create_redemption_transaction",
    "make_redemptions",
    "prove_redemption",
    "BitcoinRPC",
    "BitcoinRPCConfig",
]
