from __future__ import annotations

import base64
import hashlib
import hmac
import itertools
import json
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from .errors import RPCError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

_ids = itertools.count(1)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class JsonRpcClient:
    """
    Minimal JSON-RPC 2.0 client over HTTP.

    Errors returned by the node raise :class:`RPCError`; transport errors are
    left as ``requests`` exceptions.
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
        log_traffic: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self.log_traffic = log_traffic
        self.session = session or requests.Session()

    def _request_headers(self) -> Dict[str, str]:
        return dict(self.headers)

    def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(_ids), "method": method, "params": params or []}
        if self.log_traffic:
            logger.debug(">>  %s %s", self.url, json.dumps(body, separators=(",", ":")))
        r = self.session.post(self.url, json=body, headers=self._request_headers(), timeout=self.timeout)
        r.raise_for_status()
        data = r.json()
        if self.log_traffic:
            logger.debug("<<  %s %s", self.url, json.dumps(data, separators=(",", ":")))
        if "error" in data:
            raise RPCError(self.url, method, data["error"])
        return data.get("result")

    def close(self) -> None:
        self.session.close()


class ChainClient(JsonRpcClient):
    """Typed helpers over the ``eth_`` namespace used by the harness."""

    def chain_id(self) -> int:
        return _to_int(self.request("eth_chainId"))

    def block_number(self) -> int:
        return _to_int(self.request("eth_blockNumber"))

    def get_block_by_number(self, number: Optional[int] = None, full: bool = False) -> Optional[Dict[str, Any]]:
        tag = "latest" if number is None else hex(number)
        return self.request("eth_getBlockByNumber", [tag, full])

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Return the receipt, or ``None`` while the transaction is not mined."""
        return self.request("eth_getTransactionReceipt", [tx_hash])

    def get_raw_transaction_by_hash(self, tx_hash: str) -> bytes:
        result = self.request("eth_getRawTransactionByHash", [tx_hash]) or "0x"
        return bytes.fromhex(result[2:])

    def send_raw_transaction(self, raw: bytes | str) -> str:
        if isinstance(raw, (bytes, bytearray)):
            raw = "0x" + bytes(raw).hex()
        return self.request("eth_sendRawTransaction", [raw])

    def get_transaction_count(self, address: str, block: str = "latest") -> int:
        return _to_int(self.request("eth_getTransactionCount", [address, block]))

    def pending_nonce_at(self, address: str) -> int:
        return self.get_transaction_count(address, "pending")

    def get_balance(self, address: str, block: str = "latest") -> int:
        return _to_int(self.request("eth_getBalance", [address, block]))

    def call(self, tx: Dict[str, Any], block: str = "latest") -> bytes:
        result = self.request("eth_call", [tx, block])
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return _to_int(self.request("eth_estimateGas", [tx]))

    def max_priority_fee(self) -> int:
        return _to_int(self.request("eth_maxPriorityFeePerGas"))

    def get_logs(self, filter_params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.request("eth_getLogs", [filter_params]) or []

    def node_info(self) -> Dict[str, Any]:
        return self.request("admin_nodeInfo") or {}

    def txpool_content(self) -> Dict[str, Any]:
        return self.request("txpool_content") or {}


def _b64url(b: bytes) -> bytes:
    return base64.urlsafe_b64encode(b).rstrip(b"=")


def jwt_token(secret_hex: str, issued_at: Optional[int] = None) -> str:
    """Mint an HS256 engine API token for ``secret_hex``."""
    secret = bytes.fromhex(secret_hex.strip().replace("0x", ""))
    header = _b64url(b'{"alg":"HS256","typ":"JWT"}')
    iat = int(time.time()) if issued_at is None else issued_at
    payload = _b64url(json.dumps({"iat": iat}).encode())
    unsigned = header + b"." + payload
    sig = hmac.new(secret, unsigned, hashlib.sha256).digest()
    return (unsigned + b"." + _b64url(sig)).decode()


class EngineClient(JsonRpcClient):
    """Engine API client; a fresh token is minted for every request."""

    def __init__(self, url: str, jwt_secret: str, **kwargs: Any) -> None:
        super().__init__(url, **kwargs)
        self.jwt_secret = jwt_secret

    def _request_headers(self) -> Dict[str, str]:
        headers = dict(self.headers)
        headers["Authorization"] = f"Bearer {jwt_token(self.jwt_secret)}"
        return headers

    def exchange_capabilities(self, capabilities: List[str]) -> List[str]:
        return self.request("engine_exchangeCapabilities", [capabilities]) or []
