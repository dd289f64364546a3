from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import rlp
from eth_utils import keccak

from .context import Context
from .contracts import BlockMetadata, ProtocolConstants, RollupL1Client
from .devnet import Devnet
from .errors import TopologyError
from .node import ExecutionNode
from .vault import Vault, tx_hash
from .waits import gen_some_blocks, wait_receipt_ok

logger = logging.getLogger(__name__)

ZERO32 = b"\x00" * 32


def encode_tx_list(raw_txs: List[bytes]) -> bytes:
    """
    RLP-encode a list of signed transactions.

    Legacy transactions are embedded as RLP lists, typed transactions as
    byte strings holding their envelope.
    """
    items: List[Any] = []
    for raw in raw_txs:
        if raw and raw[0] >= 0xC0:
            items.append(rlp.decode(raw))
        else:
            items.append(raw)
    return rlp.encode(items)


class Proposer:
    """
    Commits and proposes transaction lists on the settlement chain the way
    the proposer agent does, so scenarios can feed it arbitrary payloads.
    """

    def __init__(
        self,
        l1: ExecutionNode,
        l2: ExecutionNode,
        vault: Vault,
        proposer_address: str,
        fee_recipient: str,
        constants: ProtocolConstants,
    ) -> None:
        rollup = l1.rollup
        if not isinstance(rollup, RollupL1Client):
            raise TopologyError(f"{l1!r} has no rollup contract")
        self.l1 = l1
        self.l2 = l2
        self.rollup = rollup
        self.vault = vault
        self.address = proposer_address
        self.fee_recipient = fee_recipient
        self.constants = constants

    @classmethod
    def for_devnet(cls, devnet: Devnet, l1: ExecutionNode, l2: ExecutionNode) -> "Proposer":
        if devnet.protocol_constants is None:
            raise TopologyError("protocol constants are unknown, deploy the contracts first")
        l2_cfg = devnet.config.l2
        return cls(
            l1,
            l2,
            devnet.l1_vault,
            l2_cfg.proposer.address,
            l2_cfg.fee_recipient.address,
            devnet.protocol_constants,
        )

    def _send(self, ctx: Context, data: bytes) -> str:
        # surface revert reasons before spending gas
        self.l1.rpc.call({"from": self.address, "to": self.rollup.address, "data": "0x" + data.hex()})
        signed = self.vault.transact(ctx, self.l1.rpc, self.address, self.rollup.address, data)
        return tx_hash(signed)

    def commit_tx_list(
        self,
        ctx: Context,
        tx_list: bytes,
        gas_limit: int,
        commit_slot: int = 0,
    ) -> Tuple[BlockMetadata, Optional[str]]:
        """
        Build the block metadata for ``tx_list`` and, when the protocol asks for
        commit confirmations, commit its hash on L1.

        Returns the metadata and the commit transaction hash, if one was sent.
        """
        meta = BlockMetadata(
            id=0,
            l1_height=0,
            l1_hash=ZERO32,
            beneficiary=self.fee_recipient,
            tx_list_hash=keccak(tx_list),
            mix_hash=ZERO32,
            extra_data=b"",
            gas_limit=gas_limit,
            timestamp=0,
            commit_height=0,
            commit_slot=commit_slot,
        )
        if self.constants.commit_confirmations == 0:
            return meta, None

        commit_hash = self._send(ctx, self.rollup.commit_block_data(commit_slot, meta.commit_hash()))
        receipt = wait_receipt_ok(ctx, self.l1.rpc, commit_hash)
        meta.commit_height = int(receipt["blockNumber"], 16)
        logger.info("committed tx list %s at height %d", commit_hash, meta.commit_height)
        return meta, commit_hash

    def propose_tx_list(
        self,
        ctx: Context,
        meta: BlockMetadata,
        commit_tx: Optional[str],
        tx_list: bytes,
    ) -> Dict[str, Any]:
        if commit_tx is not None and meta.commit_height == 0:
            receipt = wait_receipt_ok(ctx, self.l1.rpc, commit_tx)
            meta.commit_height = int(receipt["blockNumber"], 16)
        propose_hash = self._send(ctx, self.rollup.propose_block_data(meta, tx_list))
        receipt = wait_receipt_ok(ctx, self.l1.rpc, propose_hash)
        logger.info("proposed tx list %s at height %s", propose_hash, receipt["blockNumber"])
        return receipt

    def pending_transactions(self) -> List[Dict[str, Any]]:
        content = self.l2.rpc.txpool_content()
        txs: List[Dict[str, Any]] = []
        for by_nonce in (content.get("pending") or {}).values():
            txs.extend(sorted(by_nonce.values(), key=lambda tx: int(tx["nonce"], 16)))
        return txs

    def pending_tx_list(self) -> Optional[Tuple[bytes, int]]:
        """Encode the L2 pending pool as one tx list, with its gas limit."""
        txs = self.pending_transactions()
        if not txs:
            return None
        gas_limit = min(sum(int(tx["gas"], 16) for tx in txs), self.constants.block_max_gas_limit)
        tx_list = encode_tx_list([self.l2.rpc.get_raw_transaction_by_hash(tx["hash"]) for tx in txs])
        return tx_list, gas_limit

    def propose_op(self, ctx: Context) -> Optional[Dict[str, Any]]:
        """Batch the L2 pending pool into one proposal."""
        batch = self.pending_tx_list()
        if batch is None:
            logger.info("no pending transactions to propose")
            return None
        tx_list, gas_limit = batch

        meta, commit_tx = self.commit_tx_list(ctx, tx_list, gas_limit)
        if commit_tx is not None:
            gen_some_blocks(ctx, self.l1, self.vault, self.constants.commit_confirmations)
        return self.propose_tx_list(ctx, meta, commit_tx, tx_list)
