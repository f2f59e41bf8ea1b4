"""
Chain-agnostic view of the bridge ledger.

Transaction building and proof assembly depend only on the Bridge protocol
defined here; each target chain provides its own implementation (see
ethereum.py).
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, AsyncIterator, Optional, Protocol

from .bitcoin import BitcoinUtxo, RawTransactionVectors
from .proof import SpvProof


@dataclass(frozen=True)
class RedemptionRequest:
    """
    Pending redemption request as stored by the ledger.

    The output value paid to the redeemer is
    requested_amount - tx_max_fee - treasury_fee.
    """

    redeemer: str  # ledger identifier of the redeemer
    redeemer_output_script: bytes  # unprefixed, no length byte
    requested_amount: int  # satoshis
    treasury_fee: int  # satoshis
    tx_max_fee: int  # satoshis
    requested_at: int  # unix timestamp


@dataclass(frozen=True)
class DepositReceipt:
    """Data the depositor commits to when revealing a funding transaction."""

    depositor: str
    blinding_factor: bytes  # 8 bytes
    wallet_public_key_hash: bytes  # 20 bytes
    refund_public_key_hash: bytes  # 20 bytes
    refund_locktime: bytes  # 4 bytes, little endian


@dataclass(frozen=True)
class DepositRequest:
    """Revealed deposit as stored by the ledger."""

    depositor: str
    amount: int  # satoshis
    vault: Optional[str]
    revealed_at: int
    swept_at: int
    treasury_fee: int


class WalletState(IntEnum):
    UNKNOWN = 0
    LIVE = 1
    MOVING_FUNDS = 2
    CLOSING = 3
    CLOSED = 4
    TERMINATED = 5


@dataclass(frozen=True)
class Wallet:
    ecdsa_wallet_id: bytes
    wallet_public_key: bytes  # compressed, 33 bytes
    main_utxo_hash: bytes
    pending_redemptions_value: int
    created_at: int
    moving_funds_requested_at: int
    closing_started_at: int
    pending_moved_funds_sweep_requests_count: int
    state: WalletState
    moving_funds_target_wallets_commitment_hash: bytes


@dataclass(frozen=True)
class EventQueryOptions:
    """
    Block range for event queries.

    from_block is mandatory; to_block defaults to the latest block at the
    time the query starts. The range is fetched in pages of batch_size
    blocks.
    """

    from_block: int
    to_block: Optional[int] = None
    batch_size: int = 10_000

    def __post_init__(self) -> None:
        if self.from_block < 0:
            raise ValueError(f"from_block must be non-negative, got {self.from_block}")
        if self.to_block is not None and self.to_block < self.from_block:
            raise ValueError(
                f"to_block ({self.to_block}) must be >= from_block ({self.from_block})"
            )
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")


@dataclass(frozen=True)
class ChainEvent:
    block_number: int
    block_hash: str
    transaction_hash: str


@dataclass(frozen=True)
class DepositRevealedEvent(ChainEvent):
    funding_tx_hash: str  # display byte order
    funding_output_index: int
    depositor: str
    amount: int
    blinding_factor: bytes
    wallet_public_key_hash: bytes
    refund_public_key_hash: bytes
    refund_locktime: bytes
    vault: Optional[str]


@dataclass(frozen=True)
class RedemptionRequestedEvent(ChainEvent):
    wallet_public_key_hash: bytes
    redeemer_output_script: bytes  # unprefixed, no length byte
    redeemer: str
    requested_amount: int
    treasury_fee: int
    tx_max_fee: int


@dataclass(frozen=True)
class NewWalletRegisteredEvent(ChainEvent):
    ecdsa_wallet_id: bytes
    wallet_public_key_hash: bytes


class WalletRegistry(Protocol):
    """Registry of the ECDSA signing groups backing bridge wallets."""

    async def get_wallet_public_key(self, ecdsa_wallet_id: bytes) -> bytes: ...


class Bridge(Protocol):
    """Capabilities of the bridge ledger used by the client."""

    async def pending_redemptions(
        self, wallet_public_key: bytes, redeemer_output_script: bytes
    ) -> RedemptionRequest: ...

    async def timed_out_redemptions(
        self, wallet_public_key: bytes, redeemer_output_script: bytes
    ) -> RedemptionRequest: ...

    async def reveal_deposit(
        self,
        deposit_tx: RawTransactionVectors,
        deposit_output_index: int,
        deposit: DepositReceipt,
        vault: Optional[str] = None,
    ) -> Optional[str]: ...

    async def submit_deposit_sweep_proof(
        self,
        sweep_tx: RawTransactionVectors,
        sweep_proof: SpvProof,
        main_utxo: BitcoinUtxo,
        vault: Optional[str] = None,
    ) -> None: ...

    async def submit_redemption_proof(
        self,
        redemption_tx: RawTransactionVectors,
        redemption_proof: SpvProof,
        main_utxo: BitcoinUtxo,
        wallet_public_key: bytes,
    ) -> None: ...

    async def request_redemption(
        self,
        wallet_public_key: bytes,
        main_utxo: BitcoinUtxo,
        redeemer_output_script: bytes,
        amount: int,
    ) -> None: ...

    async def tx_proof_difficulty_factor(self) -> int: ...

    async def deposits(self, deposit_tx_hash: str, deposit_output_index: int) -> DepositRequest: ...

    async def wallets(self, wallet_public_key_hash: bytes) -> Wallet: ...

    async def active_wallet_public_key(self) -> Optional[bytes]: ...

    async def wallet_registry(self) -> WalletRegistry: ...

    def get_chain_identifier(self) -> str: ...

    def build_utxo_hash(self, utxo: BitcoinUtxo) -> bytes: ...

    def get_deposit_revealed_events(
        self, options: EventQueryOptions, **filters: Any
    ) -> AsyncIterator[DepositRevealedEvent]: ...

    def get_redemption_requested_events(
        self, options: EventQueryOptions, **filters: Any
    ) -> AsyncIterator[RedemptionRequestedEvent]: ...

    def get_new_wallet_registered_events(
        self, options: EventQueryOptions, **filters: Any
    ) -> AsyncIterator[NewWalletRegisteredEvent]: ...
