"""
Node configuration, the validating node builder and the launched node handles.

A :class:`NodeBuilder` collects the options of one container, checks that the
options its role needs are present and launches exactly one container through
the runtime. Settlement and rollup engines come back as :class:`ExecutionNode`
handles exposing their endpoints and chain clients; agents and the deployer
come back as plain :class:`Node` handles.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from . import envs
from .config import ZERO_ADDRESS
from .contracts import RollupL1Client, RollupL2Client
from .docker import Container, DockerRuntime, ExecResult
from .errors import FatalSetupError, MissingOptionError, TopologyError
from .roles import ImageDefinition, Role
from .rpc import ChainClient, EngineClient

logger = logging.getLogger(__name__)

HTTP_RPC_PORT = 8545
WS_RPC_PORT = 8546
ENGINE_PORT = 8551

_ROLE_NAMES = {
    Role.L1: "L1Engine",
    Role.L2: "L2Engine",
    Role.DRIVER: "driver",
    Role.PROPOSER: "proposer",
    Role.PROVER: "prover",
    Role.PROTOCOL: "protocol",
}

_AGENT_REQUIRED = ("l1_endpoint", "l2_endpoint", "l1_rollup_address", "l2_rollup_address")

_REQUIRED: Dict[Role, tuple] = {
    Role.L1: ("network_id", "l1_chain_id"),
    Role.L2: ("network_id", "jwt_secret"),
    Role.DRIVER: _AGENT_REQUIRED + ("l2_engine_endpoint", "jwt_secret", "throwaway_key"),
    Role.PROPOSER: _AGENT_REQUIRED + ("proposer_key", "fee_recipient", "propose_interval"),
    Role.PROVER: _AGENT_REQUIRED + ("prover_key",),
    Role.PROTOCOL: ("deployer_key", "deployer_address", "l2_genesis_hash", "l2_rollup_address", "mainnet_url", "l2_chain_id"),
}


def _go_duration(seconds: float) -> str:
    return f"{seconds:g}s"


@dataclass(slots=True)
class NodeConfig:
    role: Role
    log_level: Optional[str] = None
    network_id: Optional[int] = None
    node_type: Optional[str] = None
    bootnodes: List[str] = field(default_factory=list)
    l1_chain_id: Optional[int] = None
    l1_clique_period: Optional[int] = None
    l2_chain_id: Optional[int] = None
    jwt_secret: Optional[str] = None
    l1_endpoint: Optional[str] = None
    l2_endpoint: Optional[str] = None
    l2_engine_endpoint: Optional[str] = None
    l1_rollup_address: Optional[str] = None
    l2_rollup_address: Optional[str] = None
    proposer_key: Optional[str] = None
    fee_recipient: Optional[str] = None
    propose_interval: Optional[float] = None
    produce_invalid_blocks_interval: int = 0
    prover_key: Optional[str] = None
    throwaway_key: Optional[str] = None
    enable_l2_p2p: bool = False
    check_live_port: bool = True
    deployer_key: Optional[str] = None
    deployer_address: Optional[str] = None
    l2_genesis_hash: Optional[str] = None
    mainnet_url: Optional[str] = None
    files: Dict[Path, str] = field(default_factory=dict)

    def missing(self) -> List[str]:
        out = []
        for name in _REQUIRED[self.role]:
            value = getattr(self, name)
            if value is None or value == "":
                out.append(name)
        return out

    def env(self) -> Dict[str, str]:
        """Flatten the options into the container environment."""
        out: Dict[str, str] = {envs.ROLE: _ROLE_NAMES[self.role]}
        scalar = {
            envs.LOG_LEVEL: self.log_level,
            envs.NETWORK_ID: self.network_id,
            envs.NODE_TYPE: self.node_type,
            envs.L1_CHAIN_ID: self.l1_chain_id,
            envs.L1_CLIQUE_PERIOD: self.l1_clique_period,
            envs.L2_CHAIN_ID: self.l2_chain_id,
            envs.JWT_SECRET: self.jwt_secret,
            envs.L1_RPC_ENDPOINT: self.l1_endpoint,
            envs.L2_RPC_ENDPOINT: self.l2_endpoint,
            envs.L2_ENGINE_ENDPOINT: self.l2_engine_endpoint,
            envs.L1_ROLLUP_ADDRESS: self.l1_rollup_address,
            envs.L2_ROLLUP_ADDRESS: self.l2_rollup_address,
            envs.PROPOSER_PRIVATE_KEY: self.proposer_key,
            envs.SUGGESTED_FEE_RECIPIENT: self.fee_recipient,
            envs.PROVER_PRIVATE_KEY: self.prover_key,
            envs.THROWAWAY_BLOCK_BUILDER_PRIVATE_KEY: self.throwaway_key,
            envs.PRIVATE_KEY: self.deployer_key,
            envs.L1_DEPLOYER_ADDRESS: self.deployer_address,
            envs.L2_GENESIS_BLOCK_HASH: self.l2_genesis_hash,
            envs.MAINNET_URL: self.mainnet_url,
        }
        for key, value in scalar.items():
            if value is not None:
                out[key] = str(value)
        if self.bootnodes:
            out[envs.BOOTNODE] = ",".join(self.bootnodes)
        if self.propose_interval is not None:
            out[envs.PROPOSE_INTERVAL] = _go_duration(self.propose_interval)
        if self.produce_invalid_blocks_interval:
            out[envs.PRODUCE_INVALID_BLOCKS_INTERVAL] = str(self.produce_invalid_blocks_interval)
        if self.enable_l2_p2p:
            out[envs.ENABLE_L2_P2P] = "true"
        if not self.check_live_port:
            out[envs.CHECK_LIVE_PORT] = "0"
        return out


class Node:
    """Handle of one launched container."""

    def __init__(self, role: Role, container: Container) -> None:
        self.role = role
        self.container = container
        self.stopped = False
        # rollup engine driven by this node, set for relay agents
        self.paired: Optional["ExecutionNode"] = None

    @property
    def ip(self) -> str:
        return self.container.ip

    @property
    def client_type(self) -> str:
        return self.container.client_type

    def exec(self, runtime: DockerRuntime, *cmd: str) -> ExecResult:
        return runtime.exec(self.container, *cmd)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.role.name} {self.container.name} {self.ip}>"


class ExecutionNode(Node):
    """
    Handle of a settlement or rollup engine.

    The chain client (and, when a JWT secret is known, the engine client) is
    created together with the handle. The rollup contract address and the
    genesis hash are assigned once, after deployment.
    """

    def __init__(
        self,
        role: Role,
        container: Container,
        jwt_secret: Optional[str] = None,
        rpc_timeout: float = 10.0,
        log_rpc_traffic: bool = False,
    ) -> None:
        super().__init__(role, container)
        self.rpc = ChainClient(self.http_endpoint, timeout=rpc_timeout, log_traffic=log_rpc_traffic)
        self.engine: Optional[EngineClient] = None
        if jwt_secret:
            self.engine = EngineClient(
                self.engine_endpoint, jwt_secret, timeout=rpc_timeout, log_traffic=log_rpc_traffic
            )
        self._assign_lock = threading.Lock()
        self.rollup_address: Optional[str] = None
        self.genesis_hash: Optional[str] = None
        self._rollup: Union[RollupL1Client, RollupL2Client, None] = None

    @property
    def http_endpoint(self) -> str:
        return f"http://{self.ip}:{HTTP_RPC_PORT}"

    @property
    def ws_endpoint(self) -> str:
        # besu and nethermind serve websockets under /ws
        if self.client_type == "besu":
            return f"ws://{self.ip}:{WS_RPC_PORT}/ws"
        if self.client_type == "nethermind":
            return f"http://{self.ip}:{WS_RPC_PORT}/ws"
        return f"ws://{self.ip}:{WS_RPC_PORT}"

    @property
    def engine_endpoint(self) -> str:
        return f"http://{self.ip}:{ENGINE_PORT}"

    def assign_rollup(self, address: str, genesis_hash: str) -> None:
        with self._assign_lock:
            if self.rollup_address is not None:
                raise TopologyError(f"rollup contract of {self!r} already assigned to {self.rollup_address}")
            if int(address, 16) == 0:
                raise TopologyError(f"zero rollup contract address for {self!r}")
            if self.role == Role.L1:
                self._rollup = RollupL1Client(address, self.rpc)
            else:
                self._rollup = RollupL2Client(address, self.rpc)
            self.rollup_address = self._rollup.address
            self.genesis_hash = genesis_hash

    @property
    def has_rollup(self) -> bool:
        return self.rollup_address is not None and self.rollup_address != ZERO_ADDRESS

    @property
    def rollup(self) -> Union[RollupL1Client, RollupL2Client]:
        if self._rollup is None:
            raise TopologyError(f"no rollup contract assigned to {self!r}")
        return self._rollup

    def enode_url(self) -> str:
        info = self.rpc.node_info()
        enode = info.get("enode", "")
        if not enode:
            raise FatalSetupError(f"{self!r} did not report an enode URL")
        return enode


class NodeBuilder:
    def __init__(self, role: Role) -> None:
        self.config = NodeConfig(role=role)

    def with_log_level(self, level: str) -> "NodeBuilder":
        self.config.log_level = level
        return self

    def with_network_id(self, network_id: int) -> "NodeBuilder":
        self.config.network_id = network_id
        return self

    def with_node_type(self, node_type: str) -> "NodeBuilder":
        self.config.node_type = node_type
        return self

    def with_bootnodes(self, bootnodes: List[str]) -> "NodeBuilder":
        self.config.bootnodes = list(bootnodes)
        return self

    def with_l1_chain_id(self, chain_id: int) -> "NodeBuilder":
        self.config.l1_chain_id = chain_id
        return self

    def with_clique_period(self, seconds: int) -> "NodeBuilder":
        self.config.l1_clique_period = seconds
        return self

    def with_l2_chain_id(self, chain_id: int) -> "NodeBuilder":
        self.config.l2_chain_id = chain_id
        return self

    def with_jwt_secret(self, secret: str) -> "NodeBuilder":
        self.config.jwt_secret = secret
        return self

    def with_l1_endpoint(self, url: str) -> "NodeBuilder":
        self.config.l1_endpoint = url
        return self

    def with_l2_endpoint(self, url: str) -> "NodeBuilder":
        self.config.l2_endpoint = url
        return self

    def with_l2_engine_endpoint(self, url: str) -> "NodeBuilder":
        self.config.l2_engine_endpoint = url
        return self

    def with_rollup_addresses(self, l1_address: str, l2_address: str) -> "NodeBuilder":
        self.config.l1_rollup_address = l1_address
        self.config.l2_rollup_address = l2_address
        return self

    def with_l2_rollup_address(self, address: str) -> "NodeBuilder":
        self.config.l2_rollup_address = address
        return self

    def with_proposer(self, private_key: str, fee_recipient: str, interval: float) -> "NodeBuilder":
        self.config.proposer_key = private_key
        self.config.fee_recipient = fee_recipient
        self.config.propose_interval = interval
        return self

    def with_produce_invalid_blocks_interval(self, interval: int) -> "NodeBuilder":
        self.config.produce_invalid_blocks_interval = interval
        return self

    def with_prover_key(self, private_key: str) -> "NodeBuilder":
        self.config.prover_key = private_key
        return self

    def with_throwaway_key(self, private_key: str) -> "NodeBuilder":
        self.config.throwaway_key = private_key
        return self

    def with_l2_p2p(self, enabled: bool = True) -> "NodeBuilder":
        self.config.enable_l2_p2p = enabled
        return self

    def with_no_live_port_check(self) -> "NodeBuilder":
        self.config.check_live_port = False
        return self

    def with_deployer(self, private_key: str, address: str) -> "NodeBuilder":
        self.config.deployer_key = private_key
        self.config.deployer_address = address
        return self

    def with_l2_genesis_hash(self, block_hash: str) -> "NodeBuilder":
        self.config.l2_genesis_hash = block_hash
        return self

    def with_mainnet_url(self, url: str) -> "NodeBuilder":
        self.config.mainnet_url = url
        return self

    def with_file(self, host_path: Path, container_path: str) -> "NodeBuilder":
        self.config.files[Path(host_path)] = container_path
        return self

    def validate(self) -> None:
        missing = self.config.missing()
        if missing:
            raise MissingOptionError(
                f"{self.config.role.value} node is missing required options: {', '.join(missing)}"
            )

    def build(
        self,
        runtime: DockerRuntime,
        image: ImageDefinition,
        rpc_timeout: float = 10.0,
        log_rpc_traffic: bool = False,
    ) -> Node:
        self.validate()
        container = runtime.start(image, self.config.env(), files=self.config.files)
        if self.config.role in (Role.L1, Role.L2):
            return ExecutionNode(
                self.config.role,
                container,
                jwt_secret=self.config.jwt_secret,
                rpc_timeout=rpc_timeout,
                log_rpc_traffic=log_rpc_traffic,
            )
        return Node(self.config.role, container)
