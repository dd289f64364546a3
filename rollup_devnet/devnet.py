"""
Devnet topology: settlement engines, rollup engines, relay agents, proposers,
provers and the one-shot contract deployer, brought up in dependency order.

Each role has an append-only arena; index 0 is the primary node used by
single-topology scenarios. The devnet lock only guards arena mutation and
reads. Container launches and RPC calls happen outside of it.
"""
from __future__ import annotations

import logging
import re
import threading
from typing import Dict, List, Optional

from .config import DevnetConfig
from .context import Context
from .contracts import ProtocolConstants, RollupL1Client
from .docker import DockerRuntime
from .errors import FatalSetupError, TopologyError
from .node import ExecutionNode, Node, NodeBuilder
from .roles import ClientsByRole, ImageDefinition, Role, classify
from .vault import Vault, tx_hash
from .waits import get_block_hash_by_number, wait_node_up, wait_receipt_ok

logger = logging.getLogger(__name__)

DEPLOY_COMMAND = "deploy.sh"
WHITELIST_TIP = 1500000000

_DEPLOYED_RE = re.compile(r"TaikoL1\b.*?(0x[0-9a-fA-F]{40})")


def parse_deployed_address(output: str) -> Optional[str]:
    """Find the rollup contract address in the deployer's output, if printed."""
    match = _DEPLOYED_RE.search(output)
    return match.group(1) if match else None


class Devnet:
    def __init__(
        self,
        config: DevnetConfig,
        runtime: DockerRuntime,
        clients: Optional[ClientsByRole] = None,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.clients = clients if clients is not None else classify(config.images)
        logger.info("creating devnet with roles: %s", self.clients)

        self._lock = threading.Lock()
        self._arenas: Dict[Role, List[Node]] = {role: [] for role in Role}

        self.l1_vault = Vault(config.l1.chain_id, config.vault_key_hex)
        self.l2_vault = Vault(config.l2.chain_id, config.vault_key_hex)
        self.l1_vault.insert_key(config.l1.deployer.private_key_hex)
        self.l1_vault.insert_key(config.l2.proposer.private_key_hex)
        self.l2_vault.insert_key(config.l2.proposer.private_key_hex)

        self.protocol_constants: Optional[ProtocolConstants] = None

    # -- arenas --------------------------------------------------------

    def _append(self, role: Role, node: Node) -> int:
        with self._lock:
            self._arenas[role].append(node)
            return len(self._arenas[role]) - 1

    def _get(self, role: Role, index: int) -> Node:
        with self._lock:
            arena = self._arenas[role]
            if index < 0 or index >= len(arena):
                raise TopologyError(f"only have {len(arena)} {role.value} nodes, cannot find {index}")
            return arena[index]

    def nodes(self, role: Role) -> List[Node]:
        with self._lock:
            return list(self._arenas[role])

    def get_l1_node(self, index: int = 0) -> ExecutionNode:
        return self._get(Role.L1, index)  # type: ignore[return-value]

    def get_l2_node(self, index: int = 0) -> ExecutionNode:
        return self._get(Role.L2, index)  # type: ignore[return-value]

    def get_driver(self, index: int = 0) -> Node:
        return self._get(Role.DRIVER, index)

    def get_proposer(self, index: int = 0) -> Node:
        return self._get(Role.PROPOSER, index)

    def get_prover(self, index: int = 0) -> Node:
        return self._get(Role.PROVER, index)

    def _image(self, role: Role, index: int = 0) -> ImageDefinition:
        images = self.clients.get(role)
        if not images:
            raise FatalSetupError(f"no {role.value} client types found")
        if index < 0 or index >= len(images):
            raise TopologyError(f"only have {len(images)} {role.value} client types, cannot use {index}")
        return images[index]

    def _build(self, builder: NodeBuilder, image: ImageDefinition) -> Node:
        return builder.build(
            self.runtime,
            image,
            rpc_timeout=self.config.rpc_timeout,
            log_rpc_traffic=self.config.log_rpc_traffic,
        )

    def l2_enode_urls(self) -> List[str]:
        return [node.enode_url() for node in self.nodes(Role.L2) if not node.stopped]

    def stop_node(self, node: Node) -> None:
        self.runtime.stop(node.container)
        node.stopped = True

    # -- bring-up steps ------------------------------------------------

    def add_l2(
        self,
        ctx: Context,
        bootstrap: bool = False,
        node_type: str = "full",
        image_index: int = 0,
    ) -> ExecutionNode:
        """Launch a rollup engine, optionally peered with every existing one."""
        image = self._image(Role.L2, image_index)
        l2 = self.config.l2
        builder = (
            NodeBuilder(Role.L2)
            .with_network_id(l2.network_id)
            .with_jwt_secret(l2.jwt_secret)
            .with_node_type(node_type)
            .with_log_level(self.config.node_log_level)
        )
        if bootstrap:
            builder.with_bootnodes(self.l2_enode_urls())
        ctx.raise_if_done()
        node = self._build(builder, image)
        wait_node_up(ctx, node, self.config.node_up_timeout)
        self._append(Role.L2, node)
        return node

    def add_l1(self, ctx: Context, l2: ExecutionNode, image_index: int = 0) -> ExecutionNode:
        """
        Launch a settlement engine and deploy the rollup contract onto it.

        The deployment needs the genesis hash of ``l2``, so the rollup engine
        must already be up.
        """
        image = self._image(Role.L1, image_index)
        l1 = self.config.l1
        builder = (
            NodeBuilder(Role.L1)
            .with_l1_chain_id(l1.chain_id)
            .with_network_id(l1.network_id)
            .with_clique_period(l1.clique_period)
        )
        if self.config.genesis_path.exists():
            builder.with_file(self.config.genesis_path, "/genesis.json")
        ctx.raise_if_done()
        node = self._build(builder, image)
        wait_node_up(ctx, node, self.config.node_up_timeout)
        self.deploy_contracts(ctx, node, l2)
        self._append(Role.L1, node)
        return node

    def deploy_contracts(self, ctx: Context, l1: ExecutionNode, l2: ExecutionNode) -> str:
        genesis_hash = get_block_hash_by_number(ctx, l2.rpc, 0)
        deployer = self.config.l1.deployer
        builder = (
            NodeBuilder(Role.PROTOCOL)
            .with_no_live_port_check()
            .with_deployer(deployer.private_key_hex, deployer.address)
            .with_l2_genesis_hash(genesis_hash)
            .with_l2_rollup_address(self.config.l2.rollup_address)
            .with_mainnet_url(l1.http_endpoint)
            .with_l2_chain_id(self.config.l2.chain_id)
        )
        ctx.raise_if_done()
        node = self._build(builder, self._image(Role.PROTOCOL))
        self._append(Role.PROTOCOL, node)
        try:
            result = node.exec(self.runtime, DEPLOY_COMMAND)
        finally:
            self.stop_node(node)
        if result.exit_code != 0:
            raise FatalSetupError(
                f"failed to deploy contract on engine node {l1.container.name}, "
                f"exit code {result.exit_code}: {result.stderr.strip() or result.stdout.strip()}"
            )

        address = parse_deployed_address(result.stdout) or self.config.l1.rollup_address
        l1.assign_rollup(address, genesis_hash)
        if l2.rollup_address is None:
            l2.assign_rollup(self.config.l2.rollup_address, genesis_hash)
        logger.info("deployed contracts on %s %s(%s) at %s", l1.client_type, l1.container.name, l1.ip, address)

        if self.protocol_constants is None:
            self.protocol_constants = self._l1_rollup(l1).constants()
        return address

    def _l1_rollup(self, l1: ExecutionNode) -> RollupL1Client:
        rollup = l1.rollup
        if not isinstance(rollup, RollupL1Client):
            raise TopologyError(f"{l1!r} is not a settlement engine")
        return rollup

    def _agent_builder(self, role: Role, l1: ExecutionNode, l2: ExecutionNode) -> NodeBuilder:
        if not (l1.has_rollup and l2.has_rollup):
            raise TopologyError(f"rollup contracts are not deployed, can not start {role.value}")
        return (
            NodeBuilder(role)
            .with_no_live_port_check()
            .with_l1_endpoint(l1.ws_endpoint)
            .with_l2_endpoint(l2.ws_endpoint)
            .with_rollup_addresses(l1.rollup_address, l2.rollup_address)
        )

    def add_driver(self, ctx: Context, l1: ExecutionNode, l2: ExecutionNode, enable_p2p: bool = False) -> Node:
        """Launch a relay agent driving ``l2`` from the commitments on ``l1``."""
        l2_cfg = self.config.l2
        builder = (
            self._agent_builder(Role.DRIVER, l1, l2)
            .with_l2_engine_endpoint(l2.engine_endpoint)
            .with_jwt_secret(l2_cfg.jwt_secret)
            .with_throwaway_key(l2_cfg.throwawayer.private_key_hex)
            .with_l2_p2p(enable_p2p)
        )
        with self._lock:
            conflict = self._driver_conflict(l2)
        if conflict:
            raise TopologyError(conflict)

        image = self._image(Role.DRIVER)
        ctx.raise_if_done()
        node = self._build(builder, image)
        node.paired = l2
        # the launch ran unlocked, so another driver may have taken the slot
        with self._lock:
            conflict = self._driver_conflict(l2)
            if not conflict:
                self._arenas[Role.DRIVER].append(node)
        if conflict:
            self.stop_node(node)
            raise TopologyError(conflict)
        return node

    def _driver_conflict(self, l2: ExecutionNode) -> Optional[str]:
        # caller holds self._lock
        live = [d for d in self._arenas[Role.DRIVER] if not d.stopped]
        engines = len(self._arenas[Role.L2])
        if engines != len(live) + 1:
            return f"have {engines} rollup engines and {len(live)} drivers, add a rollup engine first"
        if any(d.paired is l2 for d in live):
            return f"{l2!r} already has a running driver"
        return None

    def add_proposer(self, ctx: Context, l1: ExecutionNode, l2: ExecutionNode) -> Node:
        l2_cfg = self.config.l2
        builder = self._agent_builder(Role.PROPOSER, l1, l2).with_proposer(
            l2_cfg.proposer.private_key_hex,
            l2_cfg.fee_recipient.address,
            l2_cfg.propose_interval,
        )
        if l2_cfg.produce_invalid_blocks_interval:
            builder.with_produce_invalid_blocks_interval(l2_cfg.produce_invalid_blocks_interval)
        ctx.raise_if_done()
        node = self._build(builder, self._image(Role.PROPOSER))
        self._append(Role.PROPOSER, node)
        return node

    def add_prover(self, ctx: Context, l1: ExecutionNode, l2: ExecutionNode) -> Node:
        """Whitelist the prover account on ``l1``, then launch the prover."""
        builder = self._agent_builder(Role.PROVER, l1, l2).with_prover_key(
            self.config.l2.prover.private_key_hex
        )
        image = self._image(Role.PROVER)
        self.whitelist_prover(ctx, l1)
        ctx.raise_if_done()
        node = self._build(builder, image)
        self._append(Role.PROVER, node)
        return node

    def whitelist_prover(self, ctx: Context, l1: ExecutionNode) -> None:
        rollup = self._l1_rollup(l1)
        signed = self.l1_vault.transact(
            ctx,
            l1.rpc,
            self.config.l1.deployer.address,
            rollup.address,
            rollup.whitelist_prover_data(self.config.l2.prover.address),
            tip=WHITELIST_TIP,
        )
        receipt = wait_receipt_ok(ctx, l1.rpc, tx_hash(signed))
        logger.info("add prover to whitelist finished, height %d", int(receipt["blockNumber"], 16))

    # -- pipelines -----------------------------------------------------

    def start_l1_l2(self, ctx: Context, node_type: str = "full") -> None:
        l2 = self.add_l2(ctx, node_type=node_type)
        self.add_l1(ctx, l2)

    def start_l1_l2_driver(self, ctx: Context, node_type: str = "full") -> None:
        self.start_l1_l2(ctx, node_type)
        self.add_driver(ctx, self.get_l1_node(0), self.get_l2_node(0))

    def start_l1_l2_proposer_driver(self, ctx: Context, node_type: str = "full") -> None:
        self.start_l1_l2_driver(ctx, node_type)
        self.add_proposer(ctx, self.get_l1_node(0), self.get_l2_node(0))

    def start_single_node_net(self, ctx: Context, node_type: str = "full") -> None:
        self.start_l1_l2_driver(ctx, node_type)
        self.add_prover(ctx, self.get_l1_node(0), self.get_l2_node(0))
        self.add_proposer(ctx, self.get_l1_node(0), self.get_l2_node(0))

    def shutdown(self) -> None:
        for role in Role:
            for node in self.nodes(role):
                if not node.stopped:
                    self.stop_node(node)
                if isinstance(node, ExecutionNode):
                    node.rpc.close()
