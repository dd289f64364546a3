"""
Operational scenarios: block production, proving, L2 sync and the proposal
limits of the rollup contract. Every scenario brings up its own devnet.
"""
from __future__ import annotations

import logging
import os
import random
from typing import Callable, Tuple

from eth_account.datastructures import SignedTransaction

from ..contracts import RollupL1Client, RollupL2Client
from ..errors import RPCError, TopologyError
from ..proposer import Proposer, encode_tx_list
from ..runner import TestEnv
from ..vault import ETHER
from ..waits import (
    get_block_hash_by_number,
    greater_equal,
    wait_height,
    wait_prove_event,
    wait_state,
)

logger = logging.getLogger(__name__)

SYNC_BLOCK_COUNT = 10
INVALID_TX_GAS = 300000
INVALID_NONCE_GAP = 1024
TOO_MANY_PENDING = "L1:tooMany"
# seconds the settlement chain must stay still after a rejected proposal
REJECTED_PROPOSAL_SETTLE = 2.0


def _l1_rollup(env: TestEnv) -> RollupL1Client:
    l1 = env.net.get_l1_node(0)
    rollup = l1.rollup
    if not isinstance(rollup, RollupL1Client):
        raise TopologyError(f"{l1!r} is not a settlement engine")
    return rollup


def first_l2_block(env: TestEnv) -> None:
    net = env.start_devnet()
    net.start_single_node_net(env.context)

    # the first L2 transaction
    env.l2_vault.create_account(env.context, net.get_l2_node(0).rpc, ETHER)

    env.run("first L1 block", first_l1_block)
    env.run(
        "firstVerifiedL2Block",
        first_verified_l2_block,
        "watch prove event of the first L2 block on L1",
    )


def first_l1_block(env: TestEnv) -> None:
    env.gen_commit_delay_blocks()
    wait_height(env.context, env.net.get_l1_node(0).rpc, greater_equal(1))


def first_verified_l2_block(env: TestEnv) -> None:
    """Wait until an L2 transaction was proposed and proved as an L2 block."""
    l1, l2 = env.net.get_l1_node(0), env.net.get_l2_node(0)
    block_hash = get_block_hash_by_number(env.context, l2.rpc, 1, need_wait=True)
    wait_prove_event(env.context, l1, block_hash)
    wait_state(env.context, _l1_rollup(env), lambda s: s.latest_verified_height == 1)


def sync_l2_block(env: TestEnv) -> None:
    net = env.start_devnet()
    net.start_single_node_net(env.context)
    env.gen_some_l2_blocks(SYNC_BLOCK_COUNT)

    env.run(
        "sync from L1",
        sync_all_from_l1(SYNC_BLOCK_COUNT),
        "completes sync purely from L1 data to generate L2 block",
    )
    env.run(
        "sync by snap",
        sync_by_p2p("snap"),
        "L2 chain head determined by L1, but sync block completes through snap mode",
    )
    env.run(
        "sync by full",
        sync_by_p2p("full"),
        "L2 chain head determined by L1, but sync block completes through full mode",
    )
    env.run(
        "sync by p2p and one by one",
        sync_by_both_p2p_and_one_by_one,
        "first sync to the latest verified height through P2P, then one by one from L1, "
        "with a driver disconnection in the middle",
    )


def sync_all_from_l1(height: int) -> Callable[[TestEnv], None]:
    def run(env: TestEnv) -> None:
        net = env.net
        l2 = net.add_l2(env.context, node_type="full")
        net.add_driver(env.context, net.get_l1_node(0), l2)
        wait_height(env.context, l2.rpc, greater_equal(height))

    return run


def sync_by_p2p(node_type: str) -> Callable[[TestEnv], None]:
    def run(env: TestEnv) -> None:
        net = env.net
        new_l2 = net.add_l2(env.context, bootstrap=True, node_type=node_type)
        net.add_driver(env.context, net.get_l1_node(0), new_l2, enable_p2p=True)
        target = _l1_rollup(env).state_variables().latest_verified_height
        wait_height(env.context, new_l2.rpc, greater_equal(target))

    return run


def sync_by_both_p2p_and_one_by_one(env: TestEnv) -> None:
    net = env.net
    l1 = net.get_l1_node(0)

    new_l2 = net.add_l2(env.context, bootstrap=True, node_type="full")
    new_driver = net.add_driver(env.context, l1, new_l2, enable_p2p=True)
    p2p_height = _l1_rollup(env).state_variables().latest_verified_height
    wait_height(env.context, new_l2.rpc, greater_equal(p2p_height))

    env.gen_some_l2_blocks(SYNC_BLOCK_COUNT)
    one_by_one_height = p2p_height + SYNC_BLOCK_COUNT
    wait_height(env.context, new_l2.rpc, greater_equal(one_by_one_height))

    # driver disconnects, blocks keep coming, then it resumes
    net.stop_node(new_driver)
    env.gen_some_l2_blocks(SYNC_BLOCK_COUNT)
    net.add_driver(env.context, l1, new_l2, enable_p2p=True)
    wait_height(env.context, new_l2.rpc, greater_equal(one_by_one_height + SYNC_BLOCK_COUNT))


def can_propose(env: TestEnv, rollup: RollupL1Client) -> bool:
    state = rollup.state_variables()
    return state.next_block_id < state.latest_verified_id + env.protocol_constants.max_num_blocks


def too_many_pending_blocks(env: TestEnv) -> None:
    """
    Without a prover the latest verified id stays at 0, so proposing past the
    pending block limit has to fail.
    """
    net = env.start_devnet()
    net.start_l1_l2_driver(env.context, node_type="full")
    l1, l2 = net.get_l1_node(0), net.get_l2_node(0)
    prop = Proposer.for_devnet(net, l1, l2)
    rollup = _l1_rollup(env)

    while can_propose(env, rollup):
        env.l2_vault.send_test_tx(env.context, l2.rpc)
        prop.propose_op(env.context)
        env.context.sleep(0.01)
    logger.info("pending block limit reached: %s", rollup.state_variables())

    env.l2_vault.send_test_tx(env.context, l2.rpc)
    batch = prop.pending_tx_list()
    if batch is None:
        raise AssertionError("no pending L2 transaction to propose")
    tx_list, gas_limit = batch
    # committing is still allowed at the limit, only the proposal is rejected
    meta, commit_tx = prop.commit_tx_list(env.context, tx_list, gas_limit)
    env.gen_commit_delay_blocks()

    nonce_before = l1.rpc.pending_nonce_at(prop.address)
    next_before = rollup.state_variables().next_block_id
    height_before = l1.rpc.block_number()
    try:
        prop.propose_tx_list(env.context, meta, commit_tx, tx_list)
    except RPCError as exc:
        if TOO_MANY_PENDING not in str(exc):
            raise AssertionError(f"unexpected proposal error: {exc}") from exc
    else:
        raise AssertionError("proposal past the pending block limit succeeded")

    env.context.sleep(REJECTED_PROPOSAL_SETTLE)
    if l1.rpc.pending_nonce_at(prop.address) != nonce_before:
        raise AssertionError("rejected proposal reached the chain")
    next_after = rollup.state_variables().next_block_id
    if next_after != next_before:
        raise AssertionError(f"next block id moved from {next_before} to {next_after} after the rejected proposal")
    height_after = l1.rpc.block_number()
    if height_after != height_before:
        raise AssertionError(f"L1 height moved from {height_before} to {height_after} after the rejected proposal")


def propose_invalid_tx_list_bytes(env: TestEnv) -> None:
    """Commit and propose tx list bytes that do not decode."""
    net = env.start_devnet()
    net.start_l1_l2(env.context, node_type="full")
    l1, l2 = net.get_l1_node(0), net.get_l2_node(0)
    prop = Proposer.for_devnet(net, l1, l2)

    tx_list = os.urandom(256)
    gas_limit = random.randrange(env.protocol_constants.block_max_gas_limit)
    meta, commit_tx = prop.commit_tx_list(env.context, tx_list, gas_limit)
    env.gen_commit_delay_blocks()
    prop.propose_tx_list(env.context, meta, commit_tx, tx_list)

    wait_height(env.context, l1.rpc, greater_equal(1))
    wait_state(env.context, _l1_rollup(env), lambda s: s.next_block_id == 2)


def generate_invalid_transaction(env: TestEnv) -> Tuple[SignedTransaction, int]:
    """
    Sign, without sending, an anchor call whose nonce is far ahead of the L2
    world state. Returns the transaction and its nonce.
    """
    l2 = env.net.get_l2_node(0)
    rollup = l2.rollup
    if not isinstance(rollup, RollupL2Client):
        raise TopologyError(f"{l2!r} is not a rollup engine")
    proposer = env.config.l2.proposer.address
    nonce = l2.rpc.pending_nonce_at(proposer) + INVALID_NONCE_GAP
    signed = env.l2_vault.transact(
        env.context,
        l2.rpc,
        proposer,
        rollup.address,
        rollup.anchor_data(0, os.urandom(32)),
        gas=INVALID_TX_GAS,
        nonce=nonce,
        send=False,
    )
    return signed, nonce


def propose_tx_list_including_invalid_tx(env: TestEnv) -> None:
    """Commit and propose a well formed tx list holding one invalid transaction."""
    net = env.start_devnet()
    net.start_l1_l2_driver(env.context, node_type="full")
    l1, l2 = net.get_l1_node(0), net.get_l2_node(0)
    prop = Proposer.for_devnet(net, l1, l2)

    invalid_tx, invalid_nonce = generate_invalid_transaction(env)
    tx_list = encode_tx_list([invalid_tx.raw_transaction])

    meta, commit_tx = prop.commit_tx_list(env.context, tx_list, INVALID_TX_GAS)
    env.gen_commit_delay_blocks()
    prop.propose_tx_list(env.context, meta, commit_tx, tx_list)

    wait_height(env.context, l1.rpc, greater_equal(1))
    wait_state(env.context, _l1_rollup(env), lambda s: s.next_block_id == 2)

    pending = l2.rpc.pending_nonce_at(env.config.l2.proposer.address)
    if pending == invalid_nonce:
        raise AssertionError(f"invalid transaction with nonce {invalid_nonce} was included")
