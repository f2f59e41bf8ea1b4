"""
Bitcoin data source: Bitcoin Core JSON-RPC client and an in-memory mock.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel

from .bitcoin import RawTransaction, generate_merkle_proof, hex_le_to_bytes
from .errors import BridgeClientError
from .retry import DEFAULT_BACKOFF_STEP, backoff_retrier

logger = structlog.get_logger()


class BitcoinRPCConfig(BaseModel):
    """Configuration for Bitcoin RPC connection."""

    url: str = "http://localhost:8332"
    user: str = ""
    password: str = ""
    timeout: float = 30.0
    total_retry_attempts: int = 3
    backoff_step: float = DEFAULT_BACKOFF_STEP


class BitcoinRPCError(BridgeClientError):
    """Error returned by the node for an RPC call. Not retried."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"RPC Error {code}: {message}")


@dataclass(frozen=True)
class TransactionMerkleBranch:
    """Merkle inclusion path of a transaction within its block."""

    block_height: int
    merkle: List[bytes]  # sibling hashes, internal byte order
    position: int  # index of the transaction within the block


class BitcoinClient(Protocol):
    """Bitcoin data source used by the transaction builder and proof assembler."""

    async def get_raw_transaction(self, tx_hash: str) -> RawTransaction: ...

    async def get_transaction_confirmations(self, tx_hash: str) -> int: ...

    async def get_transaction_block_height(self, tx_hash: str) -> int: ...

    async def latest_block_height(self) -> int: ...

    async def get_headers_chain(self, block_height: int, chain_length: int) -> bytes: ...

    async def get_transaction_merkle(
        self, tx_hash: str, block_height: int
    ) -> TransactionMerkleBranch: ...

    async def broadcast(self, transaction: RawTransaction) -> None: ...


class BitcoinRPC:
    """
    Async Bitcoin Core RPC client.

    Requires a node with -txindex for lookups of arbitrary transactions.
    Transport failures are retried with backoff; node-side errors are not.
    """

    def __init__(self, config: BitcoinRPCConfig):
        self.config = config
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    async def __aenter__(self) -> "BitcoinRPC":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            auth = None
            if self.config.user and self.config.password:
                auth = httpx.BasicAuth(self.config.user, self.config.password)
            self._client = httpx.AsyncClient(
                base_url=self.config.url,
                auth=auth,
                timeout=self.config.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _call_once(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "1.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        client = await self._get_client()
        response = await client.post("/", json=payload)
        # Bitcoin Core answers RPC errors with HTTP 500 and a JSON body
        if response.status_code != 500:
            response.raise_for_status()
        result = response.json()

        if result.get("error"):
            error = result["error"]
            raise BitcoinRPCError(error.get("code", -1), error.get("message", "Unknown error"))

        return result.get("result")

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """Make an RPC call."""
        retrier = backoff_retrier(self.config.total_retry_attempts, self.config.backoff_step)
        return await retrier(lambda: self._call_once(method, params or []))

    async def get_block_count(self) -> int:
        """Get current block height."""
        return await self.call("getblockcount")

    async def latest_block_height(self) -> int:
        return await self.get_block_count()

    async def get_block_hash(self, height: int) -> str:
        """Get block hash at height (display format, reversed)."""
        return await self.call("getblockhash", [height])

    async def get_block_header(self, block_hash: str) -> dict[str, Any]:
        """Get decoded block header."""
        return await self.call("getblockheader", [block_hash, True])

    async def get_block_header_hex(self, block_hash: str) -> str:
        """Get block header as hex string (80 bytes = 160 hex chars)."""
        return await self.call("getblockheader", [block_hash, False])

    async def get_block_txids(self, block_hash: str) -> list[str]:
        """Get list of transaction IDs in a block."""
        block = await self.call("getblock", [block_hash, 1])
        return block.get("tx", [])

    async def get_raw_transaction(self, tx_hash: str) -> RawTransaction:
        transaction_hex = await self.call("getrawtransaction", [tx_hash, False])
        return RawTransaction(transaction_hex=transaction_hex)

    async def get_transaction_confirmations(self, tx_hash: str) -> int:
        """Confirmations of a transaction, 0 while it is in the mempool."""
        tx = await self.call("getrawtransaction", [tx_hash, True])
        return tx.get("confirmations", 0)

    async def get_transaction_block_height(self, tx_hash: str) -> int:
        tx = await self.call("getrawtransaction", [tx_hash, True])
        block_hash = tx.get("blockhash")
        if not block_hash:
            raise BitcoinRPCError(-5, f"Transaction {tx_hash} is not mined yet")
        header = await self.get_block_header(block_hash)
        return header["height"]

    async def get_headers_chain(self, block_height: int, chain_length: int) -> bytes:
        """Concatenated headers from block_height to block_height + chain_length."""
        headers = b""
        for height in range(block_height, block_height + chain_length + 1):
            block_hash = await self.get_block_hash(height)
            headers += bytes.fromhex(await self.get_block_header_hex(block_hash))
        return headers

    async def get_transaction_merkle(
        self, tx_hash: str, block_height: int
    ) -> TransactionMerkleBranch:
        block_hash = await self.get_block_hash(block_height)
        txids = await self.get_block_txids(block_hash)
        return merkle_branch_from_txids(tx_hash, block_height, block_hash, txids)

    async def broadcast(self, transaction: RawTransaction) -> None:
        """
        Send a transaction to the network without waiting for acceptance.

        Node rejections (e.g. an already spent input) are logged and not
        raised: a failed broadcast shows up later as a missing confirmation.
        """
        try:
            tx_hash = await self.call("sendrawtransaction", [transaction.transaction_hex])
            logger.info("transaction_broadcast", tx_hash=tx_hash)
        except BitcoinRPCError as e:
            logger.warning("transaction_broadcast_rejected", code=e.code, error=e.message)


def merkle_branch_from_txids(
    tx_hash: str, block_height: int, block_hash: str, txids: list[str]
) -> TransactionMerkleBranch:
    """Compute the Merkle path of tx_hash from the block's display-order txids."""
    try:
        position = txids.index(tx_hash)
    except ValueError:
        raise BitcoinRPCError(-5, f"Transaction {tx_hash} not found in block {block_hash}")

    merkle, _ = generate_merkle_proof([hex_le_to_bytes(t) for t in txids], position)
    return TransactionMerkleBranch(block_height=block_height, merkle=merkle, position=position)


class MockBitcoinRPC:
    """
    Mock Bitcoin RPC for testing without a real node.
    Provides predefined test data.
    """

    def __init__(self) -> None:
        self._blocks: dict[str, dict[str, Any]] = {}
        self._headers: dict[str, str] = {}
        self._txs: dict[str, str] = {}
        self._tx_blocks: dict[str, str] = {}
        self._height_to_hash: dict[int, str] = {}
        self.broadcasts: list[str] = []

    def add_block(
        self,
        height: int,
        block_hash: str,
        header_hex: str,
        txids: list[str],
    ) -> None:
        """Add a mock block."""
        self._height_to_hash[height] = block_hash
        self._headers[block_hash] = header_hex
        self._blocks[block_hash] = {
            "hash": block_hash,
            "height": height,
            "tx": txids,
        }
        for txid in txids:
            self._tx_blocks[txid] = block_hash

    def add_transaction(self, txid: str, raw_tx_hex: str) -> None:
        """Add a mock transaction."""
        self._txs[txid] = raw_tx_hex

    async def get_block_count(self) -> int:
        return max(self._height_to_hash.keys()) if self._height_to_hash else 0

    async def latest_block_height(self) -> int:
        return await self.get_block_count()

    async def get_block_hash(self, height: int) -> str:
        if height not in self._height_to_hash:
            raise BitcoinRPCError(-8, f"Block height {height} not found")
        return self._height_to_hash[height]

    async def get_block_header_hex(self, block_hash: str) -> str:
        if block_hash not in self._headers:
            raise BitcoinRPCError(-5, f"Block {block_hash} not found")
        return self._headers[block_hash]

    async def get_block_txids(self, block_hash: str) -> list[str]:
        if block_hash not in self._blocks:
            raise BitcoinRPCError(-5, f"Block {block_hash} not found")
        return self._blocks[block_hash]["tx"]

    async def get_raw_transaction(self, tx_hash: str) -> RawTransaction:
        if tx_hash not in self._txs:
            raise BitcoinRPCError(-5, f"Transaction {tx_hash} not found")
        return RawTransaction(transaction_hex=self._txs[tx_hash])

    async def get_transaction_confirmations(self, tx_hash: str) -> int:
        if tx_hash not in self._txs:
            raise BitcoinRPCError(-5, f"Transaction {tx_hash} not found")
        if tx_hash not in self._tx_blocks:
            return 0
        height = self._blocks[self._tx_blocks[tx_hash]]["height"]
        return await self.get_block_count() - height + 1

    async def get_transaction_block_height(self, tx_hash: str) -> int:
        if tx_hash not in self._tx_blocks:
            raise BitcoinRPCError(-5, f"Transaction {tx_hash} is not mined yet")
        return self._blocks[self._tx_blocks[tx_hash]]["height"]

    async def get_headers_chain(self, block_height: int, chain_length: int) -> bytes:
        headers = b""
        for height in range(block_height, block_height + chain_length + 1):
            block_hash = await self.get_block_hash(height)
            headers += bytes.fromhex(await self.get_block_header_hex(block_hash))
        return headers

    async def get_transaction_merkle(
        self, tx_hash: str, block_height: int
    ) -> TransactionMerkleBranch:
        block_hash = await self.get_block_hash(block_height)
        txids = await self.get_block_txids(block_hash)
        return merkle_branch_from_txids(tx_hash, block_height, block_hash, txids)

    async def broadcast(self, transaction: RawTransaction) -> None:
        self.broadcasts.append(transaction.transaction_hex)
