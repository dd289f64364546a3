from __future__ import annotations

import itertools
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from eth_utils import keccak

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rollup_devnet.config import default_config
from rollup_devnet.docker import Container, ExecResult
from rollup_devnet.roles import ImageDefinition


class FakeChainClient:
    """
    In-memory stand-in for :class:`rollup_devnet.rpc.ChainClient`.

    Every submitted transaction is mined into its own block once
    ``mine_after`` receipt polls have happened.
    """

    def __init__(self, url: str = "http://fake:8545", timeout: float = 1.0, log_traffic: bool = False, **_: Any) -> None:
        self.url = url
        self.timeout = timeout
        self.height = 0
        self.chain = 1
        self.mine_after = 0
        self.receipt_status = 1
        self.sent: List[bytes] = []
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.polls: Dict[str, int] = {}
        self.call_results: Dict[str, bytes] = {}
        self.logs: List[Dict[str, Any]] = []
        self.nonces: Dict[str, int] = {}
        self.enode = "enode://abcd@10.0.0.1:30303"
        self.pool: Dict[str, Any] = {}
        self.raw_by_hash: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def chain_id(self) -> int:
        return self.chain

    def block_number(self) -> int:
        return self.height

    def get_block_by_number(self, number: Optional[int] = None, full: bool = False) -> Optional[Dict[str, Any]]:
        number = self.height if number is None else number
        if number > self.height:
            return None
        return {"number": hex(number), "hash": "0x" + number.to_bytes(32, "big").hex(), "baseFeePerGas": "0x7"}

    def send_raw_transaction(self, raw: bytes) -> str:
        with self._lock:
            tx_hash = "0x" + keccak(raw).hex()
            self.sent.append(raw)
            self.raw_by_hash[tx_hash] = raw
            by_nonce = self.pool.setdefault("0xsender", {})
            n = len(by_nonce)
            by_nonce[str(n)] = {"hash": tx_hash, "nonce": hex(n), "gas": hex(21000)}
            self.receipts[tx_hash] = {
                "transactionHash": tx_hash,
                "status": hex(self.receipt_status),
                "blockNumber": None,
            }
            self.polls[tx_hash] = 0
            return tx_hash

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            receipt = self.receipts.get(tx_hash)
            if receipt is None:
                return None
            self.polls[tx_hash] += 1
            if self.polls[tx_hash] <= self.mine_after:
                return None
            if receipt["blockNumber"] is None:
                self.height += 1
                receipt["blockNumber"] = hex(self.height)
            return dict(receipt)

    def get_raw_transaction_by_hash(self, tx_hash: str) -> bytes:
        return self.raw_by_hash.get(tx_hash, b"")

    def pending_nonce_at(self, address: str) -> int:
        return self.nonces.get(address, 0)

    def get_transaction_count(self, address: str, block: str = "latest") -> int:
        return self.pending_nonce_at(address)

    def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return 50000

    def call(self, tx: Dict[str, Any], block: str = "latest") -> bytes:
        return self.call_results.get(tx["data"][:10], b"\x00" * 128)

    def get_logs(self, filter_params: Dict[str, Any]) -> List[Dict[str, Any]]:
        start = int(filter_params["fromBlock"], 16)
        return [log for log in self.logs if int(log["blockNumber"], 16) >= start]

    def node_info(self) -> Dict[str, Any]:
        return {"enode": self.enode} if self.enode else {}

    def txpool_content(self) -> Dict[str, Any]:
        return {"pending": self.pool, "queued": {}}

    def close(self) -> None:
        pass


class FakeRuntime:
    def __init__(self) -> None:
        self.started: List[Dict[str, Any]] = []
        self.stopped: List[str] = []
        self.execs: List[tuple] = []
        self.exec_result = ExecResult(0, "TaikoL1 deployed to 0x232e1128a21BBfFbC8d6BefaCb10137F37A653a0\n", "")
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def start(self, image: ImageDefinition, env: Dict[str, str], files=None, name=None) -> Container:
        with self._lock:
            n = next(self._ids)
            self.started.append({"image": image, "env": dict(env)})
        return Container(id=f"c{n}", name=name or f"{image.name}-{n}", image=image.image, ip=f"10.0.0.{n}", client_type=image.client_type)

    def exec(self, container: Container, *cmd: str) -> ExecResult:
        self.execs.append((container.id, cmd))
        return self.exec_result

    def stop(self, container: Container) -> None:
        self.stopped.append(container.id)

    def stop_all(self) -> None:
        pass

    def roles_started(self) -> List[str]:
        return [s["env"]["DEVNET_ROLE"] for s in self.started]


def make_images() -> List[ImageDefinition]:
    return [
        ImageDefinition("geth", "hive/geth", ("taiko-l1",), "geth"),
        ImageDefinition("taiko-geth", "hive/taiko-geth", ("taiko-geth",), "taiko-geth"),
        ImageDefinition("taiko-client", "hive/taiko-client", ("taiko-driver", "taiko-proposer", "taiko-prover"), "taiko-client"),
        ImageDefinition("taiko-protocol", "hive/taiko-mono", ("taiko-protocol",), "taiko-protocol"),
    ]


@pytest.fixture
def fake_chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def devnet_config(tmp_path):
    config = default_config()
    config.images = make_images()
    config.genesis_path = tmp_path / "genesis.json"
    config.node_up_timeout = 1.0
    return config


@pytest.fixture
def fake_clients(monkeypatch) -> Dict[str, FakeChainClient]:
    """Replace the chain client of every node handle with a fake, keyed by url."""
    clients: Dict[str, FakeChainClient] = {}

    def factory(url: str, **kwargs: Any) -> FakeChainClient:
        client = FakeChainClient(url, **kwargs)
        clients[url] = client
        return client

    monkeypatch.setattr("rollup_devnet.node.ChainClient", factory)
    return clients
