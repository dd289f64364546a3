from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from eth_utils import to_checksum_address

from .config import VAULT_KEY
from .context import Context
from .errors import UnknownAccountError, WaitTimeout
from .rpc import ChainClient

logger = logging.getLogger(__name__)

GWEI = 10**9
ETHER = 10**18

FUNDING_GAS_LIMIT = 75000
FUNDING_TIP_CAP = 1 * GWEI
FUNDING_FEE_CAP = 30 * GWEI
RECEIPT_ATTEMPTS = 60
RECEIPT_INTERVAL = 1.0


def _hex_key(key: str) -> str:
    return key[2:] if key.startswith("0x") else key


def tx_hash(signed: SignedTransaction) -> str:
    return "0x" + bytes(signed.hash).hex()


class Vault:
    """
    Creates accounts for testing and funds them on one chain.

    Funding transactions are sent from a pre-seeded source account whose nonce
    is tracked locally: every funding call takes the next nonce exactly once,
    even when the submission later fails, so concurrent callers never collide.
    """

    def __init__(
        self,
        chain_id: int,
        source_key_hex: str = VAULT_KEY,
        start_nonce: int = 0,
        receipt_attempts: int = RECEIPT_ATTEMPTS,
        receipt_interval: float = RECEIPT_INTERVAL,
    ) -> None:
        self.chain_id = chain_id
        self._lock = threading.Lock()
        self._nonce = start_nonce
        self._accounts: Dict[str, str] = {}
        self._source = Account.from_key(bytes.fromhex(_hex_key(source_key_hex)))
        self.receipt_attempts = receipt_attempts
        self.receipt_interval = receipt_interval

    @property
    def source_address(self) -> str:
        return self._source.address

    @property
    def nonce(self) -> int:
        with self._lock:
            return self._nonce

    def generate_key(self) -> str:
        account = Account.create()
        with self._lock:
            self._accounts[account.address] = account.key.hex()
        return account.address

    def insert_key(self, private_key_hex: str) -> str:
        account = Account.from_key(bytes.fromhex(_hex_key(private_key_hex)))
        with self._lock:
            self._accounts[account.address] = _hex_key(account.key.hex())
        return account.address

    def find_key(self, address: str) -> Optional[str]:
        with self._lock:
            return self._accounts.get(to_checksum_address(address))

    def sign_transaction(self, sender: str, tx: Dict[str, Any]) -> SignedTransaction:
        key = self.find_key(sender)
        if key is None:
            raise UnknownAccountError(sender)
        tx = dict(tx)
        tx.setdefault("chainId", self.chain_id)
        return Account.sign_transaction(tx, bytes.fromhex(_hex_key(key)))

    def next_nonce(self) -> int:
        with self._lock:
            nonce = self._nonce
            self._nonce += 1
            return nonce

    def make_funding_tx(self, recipient: str, amount: int) -> SignedTransaction:
        tx = {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": self.next_nonce(),
            "gas": FUNDING_GAS_LIMIT,
            "maxPriorityFeePerGas": FUNDING_TIP_CAP,
            "maxFeePerGas": FUNDING_FEE_CAP,
            "to": to_checksum_address(recipient),
            "value": amount,
            "data": b"",
        }
        return Account.sign_transaction(tx, self._source.key)

    def fund(self, ctx: Context, client: ChainClient, address: str, amount: int) -> Dict[str, Any]:
        """
        Send ``amount`` wei to ``address`` and wait for the funding receipt.
        """
        signed = self.make_funding_tx(address, amount)
        tx_hash = client.send_raw_transaction(signed.raw_transaction)
        logger.debug("funding %s with %d wei, tx %s", address, amount, tx_hash)

        for _ in range(self.receipt_attempts):
            receipt = client.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if not ctx.sleep(self.receipt_interval):
                ctx.raise_if_done()
        raise WaitTimeout(f"timeout getting receipt of funding transaction {tx_hash}")

    def create_account(self, ctx: Context, client: ChainClient, amount: int = 0) -> str:
        address = self.generate_key()
        self.fund(ctx, client, address, amount)
        return address

    def send_test_tx(self, ctx: Context, client: ChainClient) -> str:
        """Put one funding transaction into the pool without waiting for it."""
        ctx.raise_if_done()
        signed = self.make_funding_tx(self.generate_key(), 1)
        return client.send_raw_transaction(signed.raw_transaction)

    def transact(
        self,
        ctx: Context,
        client: ChainClient,
        sender: str,
        to: str,
        data: bytes = b"",
        value: int = 0,
        gas: Optional[int] = None,
        tip: int = FUNDING_TIP_CAP,
        nonce: Optional[int] = None,
        send: bool = True,
    ) -> SignedTransaction:
        """
        Build, sign and (unless ``send`` is false) submit a dynamic fee
        transaction from a vault account.
        """
        ctx.raise_if_done()
        to = to_checksum_address(to)
        sender = to_checksum_address(sender)
        if nonce is None:
            nonce = client.pending_nonce_at(sender)
        if gas is None:
            gas = client.estimate_gas({"from": sender, "to": to, "data": "0x" + data.hex(), "value": hex(value)})
        latest = client.get_block_by_number() or {}
        base_fee = latest.get("baseFeePerGas")
        fee_cap = FUNDING_FEE_CAP if base_fee is None else 2 * int(base_fee, 16) + tip
        tx = {
            "type": 2,
            "nonce": nonce,
            "gas": gas,
            "maxPriorityFeePerGas": tip,
            "maxFeePerGas": max(fee_cap, tip),
            "to": to,
            "value": value,
            "data": data,
        }
        signed = self.sign_transaction(sender, tx)
        if send:
            client.send_raw_transaction(signed.raw_transaction)
        return signed
