import itertools
import logging
import re
import time
from decimal import ROUND_UP, Decimal
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from ..exceptions import ChainRPCError
from ..utils.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def to_base_units(amount: Decimal, decimals: int = 18) -> int:
    """Token amount -> smallest unit (USDT on BSC has 18 decimals)"""
    scaled = Decimal(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_UP))


def _hex_to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 16)


class ChainClient:
    """Minimal JSON-RPC client for an EVM chain endpoint"""

    _ids = itertools.count(1)

    def __init__(self, rpc_url: str, timeout: float = 10.0):
        self.rpc_url = rpc_url
        self.timeout = timeout

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    raise ChainRPCError(f"{method} returned HTTP {response.status}")
                data = await response.json(content_type=None)

        if data.get("error"):
            raise ChainRPCError(f"{method} failed: {data['error']}")
        return data.get("result")

    async def get_transaction(self, tx_hash: str) -> Optional[Dict]:
        return await self.call("eth_getTransactionByHash", [tx_hash])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_block(self, block_number: str) -> Optional[Dict]:
        return await self.call("eth_getBlockByNumber", [block_number, False])


class PaymentVerifier:
    """Checks that a transaction paid the platform contract enough.

    Every failure path returns False; nothing is retried here, the client
    has to resubmit with a corrected hash.
    """

    def __init__(self, chain: ChainClient, contract_address: str,
                 breaker: CircuitBreaker, token_decimals: int = 18,
                 cache_seconds: int = 3600, clock: Callable[[], float] = time.time):
        self.chain = chain
        self.contract_address = contract_address.lower()
        self.breaker = breaker
        self.token_decimals = token_decimals
        self.cache_seconds = cache_seconds
        self._clock = clock
        # tx_hash -> {"sender", "value", "timestamp"}
        self._verified: Dict[str, Dict] = {}

    @staticmethod
    def is_valid_hash(tx_hash: Optional[str]) -> bool:
        return bool(tx_hash) and bool(TX_HASH_RE.match(tx_hash))

    def _cached(self, tx_hash: str, sender: str, expected: int) -> bool:
        entry = self._verified.get(tx_hash)
        if not entry:
            return False
        if self._clock() - entry["timestamp"] >= self.cache_seconds:
            del self._verified[tx_hash]
            return False
        return entry["sender"] == sender and entry["value"] >= expected

    def purge_cache(self):
        now = self._clock()
        expired = [h for h, e in self._verified.items() if now - e["timestamp"] >= self.cache_seconds]
        for tx_hash in expired:
            del self._verified[tx_hash]

    async def verify_payment(self, tx_hash: str, sender: str, expected_amount: Decimal,
                             max_age_seconds: Optional[int] = None) -> bool:
        if not self.is_valid_hash(tx_hash):
            logger.warning(f"Malformed transaction hash: {tx_hash!r}")
            return False

        sender = (sender or "").lower()
        expected = to_base_units(expected_amount, self.token_decimals)

        if self._cached(tx_hash, sender, expected):
            return True

        try:
            return await self.breaker.call(
                lambda: self._check(tx_hash, sender, expected, max_age_seconds)
            )
        except Exception as e:
            logger.error(f"Payment verification error for {tx_hash}: {e}")
            return False

    async def _check(self, tx_hash: str, sender: str, expected: int,
                     max_age_seconds: Optional[int]) -> bool:
        tx = await self.chain.get_transaction(tx_hash)
        if not tx:
            logger.warning(f"Transaction not found: {tx_hash}")
            return False

        if (tx.get("to") or "").lower() != self.contract_address:
            logger.warning(f"Invalid contract address. Expected: {self.contract_address}, got: {tx.get('to')}")
            return False

        if sender and (tx.get("from") or "").lower() != sender:
            logger.warning(f"Wallet mismatch. Expected: {sender}, got: {tx.get('from')}")
            return False

        receipt = await self.chain.get_transaction_receipt(tx_hash)
        if not receipt or _hex_to_int(receipt.get("status")) != 1:
            logger.warning(f"Transaction failed or not confirmed: {tx_hash}")
            return False

        value = _hex_to_int(tx.get("value")) or 0
        if value < expected:
            logger.warning(f"Insufficient amount for {tx_hash}: expected {expected}, got {value}")
            return False

        if max_age_seconds is not None:
            block = await self.chain.get_block(receipt.get("blockNumber"))
            if not block:
                logger.warning(f"Block not found: {receipt.get('blockNumber')}")
                return False
            age = self._clock() - _hex_to_int(block.get("timestamp"))
            if age > max_age_seconds:
                logger.warning(f"Transaction too old: {int(age)} seconds")
                return False

        self._verified[tx_hash] = {
            "sender": sender,
            "value": value,
            "timestamp": self._clock(),
        }
        logger.info(f"Verified payment {tx_hash} ({value} base units)")
        return True
