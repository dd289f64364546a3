"""
Typed clients for the rollup contracts.

Only the parts of the contract surface the scenarios observe are described
here: the protocol state variables and constants, prover whitelisting, the
commit/propose entry points and the ``BlockProven`` event on L1, and
``anchor`` on L2.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import decode, encode
from eth_utils import (
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
    keccak,
    to_checksum_address,
)

from .rpc import ChainClient

STATE_VARIABLES_SIG = "getStateVariables()"
CONFIG_SIG = "getConfig()"
WHITELIST_PROVER_SIG = "whitelistProver(address,bool)"
COMMIT_BLOCK_SIG = "commitBlock(uint64,bytes32)"
PROPOSE_BLOCK_SIG = "proposeBlock(bytes[])"
ANCHOR_SIG = "anchor(uint64,bytes32)"
BLOCK_PROVEN_SIG = "BlockProven(uint256,bytes32,bytes32,address,uint64)"

BLOCK_METADATA_TYPE = "(uint64,uint64,bytes32,address,bytes32,bytes32,bytes,uint64,uint64,uint64,uint64)"

BLOCK_PROVEN_TOPIC = "0x" + event_signature_to_log_topic(BLOCK_PROVEN_SIG).hex()


def _selector(signature: str) -> bytes:
    return function_signature_to_4byte_selector(signature)


def encode_call(signature: str, types: Sequence[str] = (), args: Sequence[Any] = ()) -> bytes:
    return _selector(signature) + encode(list(types), list(args))


def _hex32(value: bytes) -> str:
    return "0x" + value.rjust(32, b"\x00").hex()


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


@dataclass(slots=True)
class ProtocolStateVariables:
    genesis_height: int
    latest_verified_height: int
    latest_verified_id: int
    next_block_id: int


@dataclass(slots=True)
class ProtocolConstants:
    max_num_blocks: int
    block_max_gas_limit: int
    commit_confirmations: int


@dataclass(slots=True)
class BlockMetadata:
    id: int
    l1_height: int
    l1_hash: bytes
    beneficiary: str
    tx_list_hash: bytes
    mix_hash: bytes
    extra_data: bytes
    gas_limit: int
    timestamp: int
    commit_height: int
    commit_slot: int

    def encode(self) -> bytes:
        return encode(
            [BLOCK_METADATA_TYPE],
            [(
                self.id,
                self.l1_height,
                self.l1_hash,
                self.beneficiary,
                self.tx_list_hash,
                self.mix_hash,
                self.extra_data,
                self.gas_limit,
                self.timestamp,
                self.commit_height,
                self.commit_slot,
            )],
        )

    def commit_hash(self) -> bytes:
        return keccak(encode(["address", "bytes32"], [self.beneficiary, self.tx_list_hash]))


@dataclass(slots=True)
class BlockProven:
    id: int
    parent_hash: str
    block_hash: str
    prover: str
    proven_at: int
    block_number: int
    tx_hash: str


class RollupL1Client:
    def __init__(self, address: str, client: ChainClient) -> None:
        self.address = to_checksum_address(address)
        self.client = client

    def _call(self, data: bytes, block: str = "latest") -> bytes:
        return self.client.call({"to": self.address, "data": "0x" + data.hex()}, block)

    def state_variables(self) -> ProtocolStateVariables:
        raw = self._call(_selector(STATE_VARIABLES_SIG))
        values = decode(["uint64", "uint64", "uint64", "uint64"], raw)
        return ProtocolStateVariables(*values)

    def constants(self) -> ProtocolConstants:
        raw = self._call(_selector(CONFIG_SIG))
        values = decode(["uint256", "uint256", "uint256"], raw)
        return ProtocolConstants(*values)

    def whitelist_prover_data(self, prover: str, whitelisted: bool = True) -> bytes:
        return encode_call(WHITELIST_PROVER_SIG, ["address", "bool"], [to_checksum_address(prover), whitelisted])

    def commit_block_data(self, commit_slot: int, commit_hash: bytes) -> bytes:
        return encode_call(COMMIT_BLOCK_SIG, ["uint64", "bytes32"], [commit_slot, commit_hash])

    def propose_block_data(self, meta: BlockMetadata, tx_list: bytes) -> bytes:
        return encode_call(PROPOSE_BLOCK_SIG, ["bytes[]"], [[meta.encode(), tx_list]])

    def block_proven_filter(self, from_block: int, to_block: Optional[int] = None) -> Dict[str, Any]:
        return {
            "address": self.address,
            "fromBlock": hex(from_block),
            "toBlock": "latest" if to_block is None else hex(to_block),
            "topics": [BLOCK_PROVEN_TOPIC],
        }

    def block_proven_events(self, from_block: int = 0, to_block: Optional[int] = None) -> List[BlockProven]:
        logs = self.client.get_logs(self.block_proven_filter(from_block, to_block))
        return [decode_block_proven(log) for log in logs]


def decode_block_proven(log: Dict[str, Any]) -> BlockProven:
    topics = log["topics"]
    parent_hash, block_hash, prover, proven_at = decode(
        ["bytes32", "bytes32", "address", "uint64"], _to_bytes(log["data"])
    )
    block_number = log.get("blockNumber", 0)
    if isinstance(block_number, str):
        block_number = int(block_number, 16)
    return BlockProven(
        id=int.from_bytes(_to_bytes(topics[1]), "big"),
        parent_hash=_hex32(parent_hash),
        block_hash=_hex32(block_hash),
        prover=to_checksum_address(prover),
        proven_at=proven_at,
        block_number=block_number,
        tx_hash=log.get("transactionHash", ""),
    )


class RollupL2Client:
    def __init__(self, address: str, client: ChainClient) -> None:
        self.address = to_checksum_address(address)
        self.client = client

    def anchor_data(self, l1_height: int, l1_hash: bytes) -> bytes:
        return encode_call(ANCHOR_SIG, ["uint64", "bytes32"], [l1_height, l1_hash])
