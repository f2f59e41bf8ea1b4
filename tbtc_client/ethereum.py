"""
Ethereum implementation of the Bridge ledger handle.
"""

from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

import structlog
from eth_account import Account
from pydantic import BaseModel, Field
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .bitcoin import (
    BitcoinUtxo,
    RawTransactionVectors,
    hash160,
    prefix_output_script,
    strip_output_script_prefix,
    txid_display_to_internal,
    txid_internal_to_display,
)
from .chain import (
    DepositReceipt,
    DepositRequest,
    DepositRevealedEvent,
    EventQueryOptions,
    NewWalletRegisteredEvent,
    RedemptionRequest,
    RedemptionRequestedEvent,
    Wallet,
    WalletState,
)
from .errors import FatalError, NotFound, TransientError
from .keys import build_deposit_key, build_redemption_key, build_utxo_hash
from .proof import SpvProof
from .retry import DEFAULT_BACKOFF_STEP, backoff_retrier, send_with_retry
from .signing import compress_public_key

logger = structlog.get_logger()

T = TypeVar("T")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def default_expected_errors() -> dict[str, list[str]]:
    # "already known": the same signed transaction is already in the mempool
    return {
        "reveal_deposit": ["Deposit already revealed", "already known"],
        "submit_deposit_sweep_proof": ["already known"],
        "submit_redemption_proof": ["already known"],
        "request_redemption": ["already known"],
    }


class EthereumConfig(BaseModel):
    """
    Configuration for the Ethereum Bridge handle.

    Resolved once by the caller; the bridge address selects the deployment.
    """

    rpc_url: str = "http://localhost:8545"
    chain_id: int = 1
    private_key: str = ""
    bridge_address: str
    total_retry_attempts: int = 3
    backoff_step: float = DEFAULT_BACKOFF_STEP
    gas_limit: Optional[int] = None  # estimated per transaction when unset
    receipt_timeout: float = 120.0
    # Error substrings that mean a mutating call already took effect, per operation
    expected_errors: dict[str, list[str]] = Field(default_factory=default_expected_errors)


_TX_INFO = {
    "components": [
        {"name": "version", "type": "bytes4"},
        {"name": "inputVector", "type": "bytes"},
        {"name": "outputVector", "type": "bytes"},
        {"name": "locktime", "type": "bytes4"},
    ],
    "type": "tuple",
}

_TX_PROOF = {
    "components": [
        {"name": "merkleProof", "type": "bytes"},
        {"name": "txIndexInBlock", "type": "uint256"},
        {"name": "bitcoinHeaders", "type": "bytes"},
    ],
    "type": "tuple",
}

_UTXO = {
    "components": [
        {"name": "txHash", "type": "bytes32"},
        {"name": "txOutputIndex", "type": "uint32"},
        {"name": "txOutputValue", "type": "uint64"},
    ],
    "type": "tuple",
}

_REDEMPTION_REQUEST = {
    "components": [
        {"name": "redeemer", "type": "address"},
        {"name": "requestedAmount", "type": "uint64"},
        {"name": "treasuryFee", "type": "uint64"},
        {"name": "txMaxFee", "type": "uint64"},
        {"name": "requestedAt", "type": "uint32"},
    ],
    "name": "",
    "type": "tuple",
}

# Minimal Bridge ABI for the calls and events used by the client
BRIDGE_ABI = [
    {
        "inputs": [{"name": "redemptionKey", "type": "uint256"}],
        "name": "pendingRedemptions",
        "outputs": [_REDEMPTION_REQUEST],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "redemptionKey", "type": "uint256"}],
        "name": "timedOutRedemptions",
        "outputs": [_REDEMPTION_REQUEST],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "depositKey", "type": "uint256"}],
        "name": "deposits",
        "outputs": [
            {
                "components": [
                    {"name": "depositor", "type": "address"},
                    {"name": "amount", "type": "uint64"},
                    {"name": "revealedAt", "type": "uint32"},
                    {"name": "vault", "type": "address"},
                    {"name": "treasuryFee", "type": "uint64"},
                    {"name": "sweptAt", "type": "uint32"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "walletPubKeyHash", "type": "bytes20"}],
        "name": "wallets",
        "outputs": [
            {
                "components": [
                    {"name": "ecdsaWalletID", "type": "bytes32"},
                    {"name": "mainUtxoHash", "type": "bytes32"},
                    {"name": "pendingRedemptionsValue", "type": "uint64"},
                    {"name": "createdAt", "type": "uint32"},
                    {"name": "movingFundsRequestedAt", "type": "uint32"},
                    {"name": "closingStartedAt", "type": "uint32"},
                    {"name": "pendingMovedFundsSweepRequestsCount", "type": "uint32"},
                    {"name": "state", "type": "uint8"},
                    {"name": "movingFundsTargetWalletsCommitmentHash", "type": "bytes32"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "activeWalletPubKeyHash",
        "outputs": [{"name": "", "type": "bytes20"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "contractReferences",
        "outputs": [
            {"name": "bank", "type": "address"},
            {"name": "relay", "type": "address"},
            {"name": "ecdsaWalletRegistry", "type": "address"},
            {"name": "reimbursementPool", "type": "address"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "txProofDifficultyFactor",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {**_TX_INFO, "name": "fundingTx"},
            {
                "components": [
                    {"name": "fundingOutputIndex", "type": "uint32"},
                    {"name": "blindingFactor", "type": "bytes8"},
                    {"name": "walletPubKeyHash", "type": "bytes20"},
                    {"name": "refundPubKeyHash", "type": "bytes20"},
                    {"name": "refundLocktime", "type": "bytes4"},
                    {"name": "vault", "type": "address"},
                ],
                "name": "reveal",
                "type": "tuple",
            },
        ],
        "name": "revealDeposit",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {**_TX_INFO, "name": "sweepTx"},
            {**_TX_PROOF, "name": "sweepProof"},
            {**_UTXO, "name": "mainUtxo"},
            {"name": "vault", "type": "address"},
        ],
        "name": "submitDepositSweepProof",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {**_TX_INFO, "name": "redemptionTx"},
            {**_TX_PROOF, "name": "redemptionProof"},
            {**_UTXO, "name": "mainUtxo"},
            {"name": "walletPubKeyHash", "type": "bytes20"},
        ],
        "name": "submitRedemptionProof",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "walletPubKeyHash", "type": "bytes20"},
            {**_UTXO, "name": "mainUtxo"},
            {"name": "redeemerOutputScript", "type": "bytes"},
            {"name": "amount", "type": "uint64"},
        ],
        "name": "requestRedemption",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "depositor", "type": "address"},
            {"indexed": False, "name": "fundingTxHash", "type": "bytes32"},
            {"indexed": False, "name": "fundingOutputIndex", "type": "uint32"},
            {"indexed": False, "name": "amount", "type": "uint64"},
            {"indexed": False, "name": "blindingFactor", "type": "bytes8"},
            {"indexed": True, "name": "walletPubKeyHash", "type": "bytes20"},
            {"indexed": False, "name": "refundPubKeyHash", "type": "bytes20"},
            {"indexed": False, "name": "refundLocktime", "type": "bytes4"},
            {"indexed": False, "name": "vault", "type": "address"},
        ],
        "name": "DepositRevealed",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "walletPubKeyHash", "type": "bytes20"},
            {"indexed": False, "name": "redeemerOutputScript", "type": "bytes"},
            {"indexed": True, "name": "redeemer", "type": "address"},
            {"indexed": False, "name": "requestedAmount", "type": "uint64"},
            {"indexed": False, "name": "treasuryFee", "type": "uint64"},
            {"indexed": False, "name": "txMaxFee", "type": "uint64"},
        ],
        "name": "RedemptionRequested",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "ecdsaWalletID", "type": "bytes32"},
            {"indexed": True, "name": "walletPubKeyHash", "type": "bytes20"},
        ],
        "name": "NewWalletRegistered",
        "type": "event",
    },
]

WALLET_REGISTRY_ABI = [
    {
        "inputs": [{"name": "walletID", "type": "bytes32"}],
        "name": "getWalletPublicKey",
        "outputs": [{"name": "", "type": "bytes"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def tx_vectors_param(tx: RawTransactionVectors) -> tuple:
    return (tx.version, tx.inputs, tx.outputs, tx.locktime)


def proof_param(proof: SpvProof) -> tuple:
    return (proof.merkle_proof, proof.tx_index_in_block, proof.bitcoin_headers)


def utxo_param(utxo: BitcoinUtxo) -> tuple:
    # The Bridge expects the hash in the Bitcoin internal byte order
    return (txid_display_to_internal(utxo.transaction_hash), utxo.output_index, utxo.value)


def vault_param(vault: Optional[str]) -> str:
    return Web3.to_checksum_address(vault) if vault else ZERO_ADDRESS


def optional_address(address: str) -> Optional[str]:
    return None if int(address, 16) == 0 else Web3.to_checksum_address(address)


class EthereumWalletRegistry:
    """Read-only handle to the ECDSA wallet registry the Bridge references."""

    def __init__(self, w3: AsyncWeb3, address: str, config: EthereumConfig):
        self.config = config
        self._contract = w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=WALLET_REGISTRY_ABI,
        )

    @property
    def address(self) -> str:
        return self._contract.address

    async def get_wallet_public_key(self, ecdsa_wallet_id: bytes) -> bytes:
        """Uncompressed public key of a wallet, as 64 bytes X||Y."""
        retrier = backoff_retrier(self.config.total_retry_attempts, self.config.backoff_step)
        public_key = await retrier(
            lambda: self._contract.functions.getWalletPublicKey(ecdsa_wallet_id).call()
        )
        return bytes(public_key)


class EthereumBridge:
    """
    Async handle to the Bridge contract on Ethereum.

    Reads are retried with backoff. Writes are retried as well, with the
    configured expected-error substrings treated as "already done".
    """

    def __init__(self, config: EthereumConfig, w3: Optional[AsyncWeb3] = None):
        self.config = config
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        self.account = Account.from_key(config.private_key) if config.private_key else None
        self._contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(config.bridge_address),
            abi=BRIDGE_ABI,
        )

    @property
    def address(self) -> str:
        """Get account address."""
        if not self.account:
            raise FatalError("No private key configured")
        return self.account.address

    async def _read(self, operation: Callable[[], Awaitable[T]]) -> T:
        retrier = backoff_retrier(self.config.total_retry_attempts, self.config.backoff_step)
        return await retrier(operation)

    async def _write(self, name: str, function: Any) -> Optional[str]:
        return await send_with_retry(
            lambda: self._transact(function),
            self.config.total_retry_attempts,
            self.config.expected_errors.get(name, ()),
            self.config.backoff_step,
        )

    async def _transact(self, function: Any) -> str:
        """Build, sign and send a contract call; returns the transaction hash."""
        params: dict[str, Any] = {
            "from": self.address,
            "chainId": self.config.chain_id,
            "nonce": await self.w3.eth.get_transaction_count(self.address),
            "gasPrice": await self.w3.eth.gas_price,
        }
        if self.config.gas_limit is not None:
            params["gas"] = self.config.gas_limit

        tx = await function.build_transaction(params)
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.config.receipt_timeout
        )

        if receipt["status"] != 1:
            logger.error("bridge_tx_reverted", tx_hash=Web3.to_hex(tx_hash))
            raise TransientError(f"Transaction {Web3.to_hex(tx_hash)} reverted")

        logger.info(
            "bridge_tx_confirmed",
            function=function.fn_name,
            tx_hash=Web3.to_hex(tx_hash),
            gas_used=receipt["gasUsed"],
        )
        return Web3.to_hex(tx_hash)

    # Redemptions

    async def pending_redemptions(
        self, wallet_public_key: bytes, redeemer_output_script: bytes
    ) -> RedemptionRequest:
        """
        Fetch a pending redemption request.

        Raises NotFound if the wallet key and output script do not identify
        a pending request.
        """
        key = build_redemption_key(hash160(wallet_public_key), redeemer_output_script)
        request = await self._read(
            lambda: self._contract.functions.pendingRedemptions(int.from_bytes(key, "big")).call()
        )
        return self._parse_redemption_request(request, redeemer_output_script)

    async def timed_out_redemptions(
        self, wallet_public_key: bytes, redeemer_output_script: bytes
    ) -> RedemptionRequest:
        key = build_redemption_key(hash160(wallet_public_key), redeemer_output_script)
        request = await self._read(
            lambda: self._contract.functions.timedOutRedemptions(int.from_bytes(key, "big")).call()
        )
        return self._parse_redemption_request(request, redeemer_output_script)

    def _parse_redemption_request(
        self, request: tuple, redeemer_output_script: bytes
    ) -> RedemptionRequest:
        redeemer, requested_amount, treasury_fee, tx_max_fee, requested_at = request
        if requested_at == 0:
            raise NotFound(
                "Provided redeemer output script and wallet public key "
                "do not identify a redemption request"
            )
        return RedemptionRequest(
            redeemer=redeemer,
            redeemer_output_script=redeemer_output_script,
            requested_amount=requested_amount,
            treasury_fee=treasury_fee,
            tx_max_fee=tx_max_fee,
            requested_at=requested_at,
        )

    async def request_redemption(
        self,
        wallet_public_key: bytes,
        main_utxo: BitcoinUtxo,
        redeemer_output_script: bytes,
        amount: int,
    ) -> None:
        function = self._contract.functions.requestRedemption(
            hash160(wallet_public_key),
            utxo_param(main_utxo),
            prefix_output_script(redeemer_output_script),
            amount,
        )
        await self._write("request_redemption", function)

    async def submit_redemption_proof(
        self,
        redemption_tx: RawTransactionVectors,
        redemption_proof: SpvProof,
        main_utxo: BitcoinUtxo,
        wallet_public_key: bytes,
    ) -> None:
        function = self._contract.functions.submitRedemptionProof(
            tx_vectors_param(redemption_tx),
            proof_param(redemption_proof),
            utxo_param(main_utxo),
            hash160(wallet_public_key),
        )
        await self._write("submit_redemption_proof", function)

    # Deposits

    async def reveal_deposit(
        self,
        deposit_tx: RawTransactionVectors,
        deposit_output_index: int,
        deposit: DepositReceipt,
        vault: Optional[str] = None,
    ) -> Optional[str]:
        """
        Reveal a deposit. Returns the transaction hash, or None if the
        deposit had already been revealed.
        """
        reveal = (
            deposit_output_index,
            deposit.blinding_factor,
            deposit.wallet_public_key_hash,
            deposit.refund_public_key_hash,
            deposit.refund_locktime,
            vault_param(vault),
        )
        function = self._contract.functions.revealDeposit(tx_vectors_param(deposit_tx), reveal)
        return await self._write("reveal_deposit", function)

    async def submit_deposit_sweep_proof(
        self,
        sweep_tx: RawTransactionVectors,
        sweep_proof: SpvProof,
        main_utxo: BitcoinUtxo,
        vault: Optional[str] = None,
    ) -> None:
        function = self._contract.functions.submitDepositSweepProof(
            tx_vectors_param(sweep_tx),
            proof_param(sweep_proof),
            utxo_param(main_utxo),
            vault_param(vault),
        )
        await self._write("submit_deposit_sweep_proof", function)

    async def deposits(self, deposit_tx_hash: str, deposit_output_index: int) -> DepositRequest:
        """Fetch a revealed deposit. Raises NotFound if it was never revealed."""
        key = build_deposit_key(deposit_tx_hash, deposit_output_index)
        depositor, amount, revealed_at, vault, treasury_fee, swept_at = await self._read(
            lambda: self._contract.functions.deposits(int.from_bytes(key, "big")).call()
        )
        if revealed_at == 0:
            raise NotFound(
                f"Deposit {deposit_tx_hash}:{deposit_output_index} has not been revealed"
            )
        return DepositRequest(
            depositor=depositor,
            amount=amount,
            vault=optional_address(vault),
            revealed_at=revealed_at,
            swept_at=swept_at,
            treasury_fee=treasury_fee,
        )

    # Parameters and wallets

    async def tx_proof_difficulty_factor(self) -> int:
        """Number of confirmations the Bridge requires in a proof. Not cached."""
        return await self._read(lambda: self._contract.functions.txProofDifficultyFactor().call())

    async def wallets(self, wallet_public_key_hash: bytes) -> Wallet:
        """
        Fetch a registered wallet.

        The compressed wallet public key is looked up in the wallet registry.
        Raises NotFound if the wallet is not registered.
        """
        wallet = await self._read(
            lambda: self._contract.functions.wallets(wallet_public_key_hash).call()
        )
        if wallet[7] == WalletState.UNKNOWN:
            raise NotFound(f"Wallet {wallet_public_key_hash.hex()} is not registered")

        ecdsa_wallet_id = bytes(wallet[0])
        registry = await self.wallet_registry()
        public_key = await registry.get_wallet_public_key(ecdsa_wallet_id)

        return Wallet(
            ecdsa_wallet_id=ecdsa_wallet_id,
            wallet_public_key=compress_public_key(public_key),
            main_utxo_hash=bytes(wallet[1]),
            pending_redemptions_value=wallet[2],
            created_at=wallet[3],
            moving_funds_requested_at=wallet[4],
            closing_started_at=wallet[5],
            pending_moved_funds_sweep_requests_count=wallet[6],
            state=WalletState(wallet[7]),
            moving_funds_target_wallets_commitment_hash=bytes(wallet[8]),
        )

    async def active_wallet_public_key(self) -> Optional[bytes]:
        """Compressed public key of the active wallet, or None if there is none."""
        wallet_public_key_hash = bytes(
            await self._read(lambda: self._contract.functions.activeWalletPubKeyHash().call())
        )
        if wallet_public_key_hash == b"\x00" * 20:
            return None
        wallet = await self.wallets(wallet_public_key_hash)
        return wallet.wallet_public_key

    async def wallet_registry(self) -> EthereumWalletRegistry:
        references = await self._read(
            lambda: self._contract.functions.contractReferences().call()
        )
        return EthereumWalletRegistry(self.w3, references[2], self.config)

    def get_chain_identifier(self) -> str:
        """Address of the Bridge contract."""
        return Web3.to_checksum_address(self.config.bridge_address)

    def build_utxo_hash(self, utxo: BitcoinUtxo) -> bytes:
        return build_utxo_hash(utxo)

    # Events

    async def _get_events(
        self, event_name: str, options: EventQueryOptions, filters: dict[str, Any]
    ) -> AsyncIterator[Any]:
        """Yield raw logs of an event over the requested range, page by page."""
        to_block = options.to_block
        if to_block is None:
            to_block = await self._read(lambda: self.w3.eth.block_number)

        event = getattr(self._contract.events, event_name)
        start = options.from_block
        while start <= to_block:
            end = min(start + options.batch_size - 1, to_block)
            logs = await self._read(
                lambda s=start, e=end: event.get_logs(
                    from_block=s, to_block=e, argument_filters=filters or None
                )
            )
            logger.debug(
                "events_page_fetched", event_name=event_name, start=start, end=end, count=len(logs)
            )
            for log in logs:
                yield log
            start = end + 1

    async def get_deposit_revealed_events(
        self, options: EventQueryOptions, **filters: Any
    ) -> AsyncIterator[DepositRevealedEvent]:
        async for log in self._get_events("DepositRevealed", options, filters):
            args = log["args"]
            yield DepositRevealedEvent(
                block_number=log["blockNumber"],
                block_hash=Web3.to_hex(log["blockHash"]),
                transaction_hash=Web3.to_hex(log["transactionHash"]),
                funding_tx_hash=txid_internal_to_display(bytes(args["fundingTxHash"])),
                funding_output_index=args["fundingOutputIndex"],
                depositor=args["depositor"],
                amount=args["amount"],
                blinding_factor=bytes(args["blindingFactor"]),
                wallet_public_key_hash=bytes(args["walletPubKeyHash"]),
                refund_public_key_hash=bytes(args["refundPubKeyHash"]),
                refund_locktime=bytes(args["refundLocktime"]),
                vault=optional_address(args["vault"]),
            )

    async def get_redemption_requested_events(
        self, options: EventQueryOptions, **filters: Any
    ) -> AsyncIterator[RedemptionRequestedEvent]:
        async for log in self._get_events("RedemptionRequested", options, filters):
            args = log["args"]
            yield RedemptionRequestedEvent(
                block_number=log["blockNumber"],
                block_hash=Web3.to_hex(log["blockHash"]),
                transaction_hash=Web3.to_hex(log["transactionHash"]),
                wallet_public_key_hash=bytes(args["walletPubKeyHash"]),
                redeemer_output_script=strip_output_script_prefix(
                    bytes(args["redeemerOutputScript"])
                ),
                redeemer=args["redeemer"],
                requested_amount=args["requestedAmount"],
                treasury_fee=args["treasuryFee"],
                tx_max_fee=args["txMaxFee"],
            )

    async def get_new_wallet_registered_events(
        self, options: EventQueryOptions, **filters: Any
    ) -> AsyncIterator[NewWalletRegisteredEvent]:
        async for log in self._get_events("NewWalletRegistered", options, filters):
            args = log["args"]
            yield NewWalletRegisteredEvent(
                block_number=log["blockNumber"],
                block_hash=Web3.to_hex(log["blockHash"]),
                transaction_hash=Web3.to_hex(log["transactionHash"]),
                ecdsa_wallet_id=bytes(args["ecdsaWalletID"]),
                wallet_public_key_hash=bytes(args["walletPubKeyHash"]),
            )
