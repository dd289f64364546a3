"""
Blocking "wait until" helpers over eventually consistent chain state.

Every waiter takes a :class:`~rollup_devnet.context.Context`; the caller
composes the timeout by handing in a bounded context. Polling loops observe
the deadline at their next iteration boundary.
"""
from __future__ import annotations

import logging
import queue
from typing import Any, Callable, Dict, Optional

import requests

from .context import Context
from .contracts import BlockProven, ProtocolStateVariables, RollupL1Client, decode_block_proven
from .errors import FatalSetupError, ReceiptStatusError, RPCError, SubscriptionError, WaitTimeout
from .node import ExecutionNode
from .rpc import ChainClient
from .subscription import LogSubscription
from .vault import GWEI, Vault

logger = logging.getLogger(__name__)

RECEIPT_STATUS_FAILED = 0
RECEIPT_STATUS_SUCCESSFUL = 1

HEIGHT_INTERVAL = 0.1
RECEIPT_INTERVAL = 0.1
STATE_INTERVAL = 0.5
STATE_ATTEMPTS = 60
NODE_UP_INTERVAL = 0.2
EVENT_POLL = 0.1


def greater(want: int) -> Callable[[int], bool]:
    return lambda got: got > want


def greater_equal(want: int) -> Callable[[int], bool]:
    return lambda got: got >= want


def _timeout(ctx: Context, what: str) -> WaitTimeout:
    return WaitTimeout(f"{what}: {ctx.err()}")


def wait_node_up(ctx: Context, node: ExecutionNode, timeout: float = 10.0) -> int:
    """Poll ``eth_chainId`` until the node answers; fatal after ``timeout``."""
    last_err: Optional[Exception] = None
    with ctx.with_timeout(timeout) as up_ctx:
        while True:
            try:
                return node.rpc.chain_id()
            except (requests.RequestException, RPCError) as exc:
                last_err = exc
            if not up_ctx.sleep(NODE_UP_INTERVAL):
                raise FatalSetupError(f"{node!r} should be up within {timeout}s, err={last_err}")


def wait_height(
    ctx: Context,
    client: ChainClient,
    predicate: Callable[[int], bool],
    interval: float = HEIGHT_INTERVAL,
) -> int:
    while True:
        height = client.block_number()
        if predicate(height):
            return height
        if not ctx.sleep(interval):
            raise _timeout(ctx, f"waiting for height on {client.url}, last {height}")


def wait_latest_block_changed(ctx: Context, client: ChainClient, height: int) -> int:
    """Wait until the head moves away from ``height``."""
    return wait_height(ctx, client, lambda got: got != height)


def get_block_hash_by_number(ctx: Context, client: ChainClient, number: int, need_wait: bool = False) -> str:
    if need_wait:
        wait_height(ctx, client, greater_equal(number))
    block = client.get_block_by_number(number)
    if block is None:
        raise WaitTimeout(f"block {number} not found on {client.url}")
    return block["hash"]


def wait_receipt(
    ctx: Context,
    client: ChainClient,
    tx_hash: str,
    status: int = RECEIPT_STATUS_SUCCESSFUL,
    interval: float = RECEIPT_INTERVAL,
) -> Dict[str, Any]:
    """
    Wait for the receipt of ``tx_hash``.

    A missing receipt is retried until the deadline. Any RPC error, or a
    receipt with a status other than ``status``, fails immediately.
    """
    while True:
        receipt = client.get_transaction_receipt(tx_hash)
        if receipt is not None:
            got = int(receipt.get("status", "0x0"), 16)
            if got != status:
                raise ReceiptStatusError(tx_hash, status, got)
            return receipt
        if not ctx.sleep(interval):
            raise _timeout(ctx, f"waiting for receipt of {tx_hash}")


def wait_receipt_ok(ctx: Context, client: ChainClient, tx_hash: str) -> Dict[str, Any]:
    return wait_receipt(ctx, client, tx_hash, RECEIPT_STATUS_SUCCESSFUL)


def wait_receipt_failed(ctx: Context, client: ChainClient, tx_hash: str) -> Dict[str, Any]:
    return wait_receipt(ctx, client, tx_hash, RECEIPT_STATUS_FAILED)


def wait_event(ctx: Context, sub: LogSubscription, match: Callable[[Any], bool]) -> Optional[Any]:
    """
    Block until an event accepted by ``match`` arrives on ``sub``.

    A failed subscription raises :class:`SubscriptionError`. When the context
    ends first the wait is logged and ``None`` is returned.
    """
    while True:
        try:
            event = sub.events.get(timeout=EVENT_POLL)
        except queue.Empty:
            event = None
        else:
            if match(event):
                return event
            continue
        if sub.failed.is_set():
            raise SubscriptionError(f"event subscription failed: {sub.error}") from sub.error
        if ctx.done():
            logger.info("context finished before the awaited event arrived: %s", ctx.err())
            return None


def wait_prove_event(ctx: Context, l1: ExecutionNode, block_hash: str) -> Optional[BlockProven]:
    rollup = l1.rollup
    if not isinstance(rollup, RollupL1Client):
        raise FatalSetupError(f"{l1!r} is not a settlement engine")
    want = block_hash.lower()
    with LogSubscription(l1.rpc, rollup.block_proven_filter, decode_block_proven, start_block=0) as sub:
        return wait_event(ctx, sub, lambda e: e.block_hash.lower() == want)


def wait_state(
    ctx: Context,
    rollup: RollupL1Client,
    predicate: Callable[[ProtocolStateVariables], bool],
    attempts: int = STATE_ATTEMPTS,
    interval: float = STATE_INTERVAL,
) -> ProtocolStateVariables:
    """
    Poll the protocol state until ``predicate`` holds.

    Raises :class:`WaitTimeout` once ``attempts`` polls failed or the
    context ended.
    """
    state = None
    for _ in range(attempts):
        state = rollup.state_variables()
        if predicate(state):
            return state
        if not ctx.sleep(interval):
            raise _timeout(ctx, f"waiting for protocol state, last {state}")
    raise WaitTimeout(f"protocol state predicate not met after {attempts} attempts, last {state}")


def gen_some_blocks(ctx: Context, node: ExecutionNode, vault: Vault, count: int) -> None:
    """Produce ``count`` blocks on ``node`` by funding throwaway accounts."""
    start = node.rpc.block_number()
    for i in range(count):
        vault.create_account(ctx, node.rpc, GWEI)
        wait_height(ctx, node.rpc, greater(start + i))
