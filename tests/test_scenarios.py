import pytest
from eth_abi import encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from rollup_devnet.config import L2_ROLLUP_ADDRESS
from rollup_devnet.context import Context
from rollup_devnet.contracts import BLOCK_PROVEN_TOPIC, CONFIG_SIG, PROPOSE_BLOCK_SIG, STATE_VARIABLES_SIG
from rollup_devnet.devnet import Devnet
from rollup_devnet.errors import RPCError, TopologyError
from rollup_devnet.roles import Role
from rollup_devnet.runner import RunTestsParams, Scenario, TestEnv, run_scenario
from rollup_devnet.scenarios import ops

from conftest import FakeChainClient


def _selector(signature):
    return "0x" + function_signature_to_4byte_selector(signature).hex()


def block_hash(number):
    return "0x" + number.to_bytes(32, "big").hex()


class Protocol:
    """Rollup contract state behind the settlement chain's eth_call."""

    def __init__(self):
        self.max_num_blocks = 3
        self.block_max_gas_limit = 6000000
        self.commit_confirmations = 1
        self.verified_height = 0
        self.proposed = 0
        self.reject_too_many = True
        # proposals are accepted but never recorded
        self.frozen = False
        # side effect of a rejected proposal: None, "state" or "height"
        self.leak = None
        self.chain = None
        self.logs = []

    @property
    def next_block_id(self):
        return 1 + self.proposed

    def call(self, url, data):
        selector = data[:10]
        if selector == _selector(STATE_VARIABLES_SIG):
            return encode(["uint64"] * 4, [0, self.verified_height, 0, self.next_block_id])
        if selector == _selector(CONFIG_SIG):
            return encode(["uint256"] * 3, [self.max_num_blocks, self.block_max_gas_limit, self.commit_confirmations])
        if selector == _selector(PROPOSE_BLOCK_SIG):
            if self.reject_too_many and self.next_block_id >= self.max_num_blocks:
                if self.leak == "state":
                    self.proposed += 1
                elif self.leak == "height":
                    self.chain.height += 1
                raise RPCError(url, "eth_call", {"code": 3, "message": "execution reverted: " + ops.TOO_MANY_PENDING})
            if not self.frozen:
                self.proposed += 1
        return b"\x00" * 32

    def prove(self, number, prover="0x" + "22" * 20):
        data = encode(["bytes32", "bytes32", "address", "uint64"], [b"\x00" * 32, bytes.fromhex(block_hash(number)[2:]), prover, 5])
        self.logs.append(
            {
                "topics": [BLOCK_PROVEN_TOPIC, block_hash(number)],
                "data": "0x" + data.hex(),
                "blockNumber": "0x1",
                "transactionHash": "0x" + "33" * 32,
            }
        )


class ScriptedChain(FakeChainClient):
    def __init__(self, url, protocol=None, leader=None, **kwargs):
        super().__init__(url, **kwargs)
        self.protocol = protocol
        self.leader = leader
        self.nonce_script = []

    def block_number(self):
        if self.leader is not None:
            return max(self.height, self.leader.height)
        return self.height

    def call(self, tx, block="latest"):
        if self.protocol is None:
            return super().call(tx, block)
        return self.protocol.call(self.url, tx["data"])

    def pending_nonce_at(self, address):
        if self.nonce_script:
            return self.nonce_script.pop(0)
        sender = to_checksum_address(address)
        return sum(1 for raw in list(self.sent) if Account.recover_transaction(raw) == sender)


class ScriptedNet:
    """
    Client factory for the node handles. Clients are handed out in launch
    order: the first rollup engine, then the settlement engine, then any
    further rollup engines, which follow the first one's head when
    ``follow`` is set.
    """

    def __init__(self):
        self.protocol = Protocol()
        self.clients = []
        self.follow = True
        self.l2_nonces = []

    def client(self, url, **kwargs):
        index = len(self.clients)
        if index == 1:
            chain = ScriptedChain(url, protocol=self.protocol, **kwargs)
            chain.logs = self.protocol.logs
            self.protocol.chain = chain
        elif index > 1 and self.follow:
            chain = ScriptedChain(url, leader=self.clients[0], **kwargs)
        else:
            chain = ScriptedChain(url, **kwargs)
        if index == 0:
            chain.nonce_script = list(self.l2_nonces)
        self.clients.append(chain)
        return chain


@pytest.fixture
def chains(monkeypatch):
    net = ScriptedNet()
    monkeypatch.setattr("rollup_devnet.node.ChainClient", net.client)
    return net


@pytest.fixture
def run(devnet_config, fake_runtime):
    def run(fn, timeout=10.0):
        params = RunTestsParams(tests=[], config=devnet_config, runtime=fake_runtime)
        return run_scenario(Context.background(), Scenario(fn.__name__, "", fn, timeout), params)

    return run


def test_first_l2_block_is_proved(chains, run, fake_runtime):
    chains.protocol.verified_height = 1
    chains.protocol.prove(1)

    result = run(ops.first_l2_block)

    assert result.passed, result.error
    assert [s.name for s in result.steps] == ["first L1 block", "firstVerifiedL2Block"]
    assert fake_runtime.roles_started()[-3:] == ["driver", "prover", "proposer"]


def test_first_l2_block_without_proof_fails(chains, run):
    result = run(ops.first_l2_block, timeout=1.5)

    assert not result.passed
    assert result.steps[0].passed
    assert result.error.startswith("firstVerifiedL2Block")


def test_sync_from_l1_and_peers(chains, run, fake_runtime):
    chains.protocol.verified_height = 5

    result = run(ops.sync_l2_block)

    assert result.passed, result.error
    assert len(result.steps) == 4
    assert fake_runtime.roles_started().count("L2Engine") == 5
    assert fake_runtime.roles_started().count("driver") == 6


def test_engine_that_never_syncs_fails_the_step(chains, run):
    chains.follow = False

    result = run(ops.sync_l2_block, timeout=1.5)

    assert not result.passed
    assert result.error.startswith("sync from L1")
    assert not result.steps[0].passed


def test_rejected_proposal_leaves_settlement_chain_untouched(chains, run, monkeypatch, devnet_config):
    monkeypatch.setattr(ops, "REJECTED_PROPOSAL_SETTLE", 0.05)

    result = run(ops.too_many_pending_blocks)

    assert result.passed, result.error
    assert chains.protocol.next_block_id == chains.protocol.max_num_blocks
    # two commits and two proposals below the limit, then the last commit
    assert chains.clients[1].pending_nonce_at(devnet_config.l2.proposer.address) == 5


def test_proposal_past_the_limit_must_be_rejected(chains, run, monkeypatch):
    monkeypatch.setattr(ops, "REJECTED_PROPOSAL_SETTLE", 0.05)
    chains.protocol.reject_too_many = False

    result = run(ops.too_many_pending_blocks)

    assert not result.passed
    assert result.error == "AssertionError: proposal past the pending block limit succeeded"


@pytest.mark.parametrize(
    "leak, message",
    [("state", "next block id moved from 3 to 4"), ("height", "L1 height moved")],
)
def test_rejected_proposal_must_not_change_the_chain(chains, run, monkeypatch, leak, message):
    monkeypatch.setattr(ops, "REJECTED_PROPOSAL_SETTLE", 0.05)
    chains.protocol.leak = leak

    result = run(ops.too_many_pending_blocks)

    assert not result.passed
    assert message in result.error


def test_propose_invalid_tx_list_bytes(chains, run):
    result = run(ops.propose_invalid_tx_list_bytes)

    assert result.passed, result.error
    assert chains.protocol.next_block_id == 2


def test_unrecorded_proposal_times_out(chains, run):
    chains.protocol.frozen = True

    result = run(ops.propose_invalid_tx_list_bytes, timeout=1.5)

    assert not result.passed
    assert result.error.startswith("WaitTimeout: waiting for protocol state")


def test_invalid_transaction_is_not_included(chains, run):
    result = run(ops.propose_tx_list_including_invalid_tx)

    assert result.passed, result.error
    assert chains.protocol.next_block_id == 2


def test_included_invalid_transaction_fails(chains, run):
    chains.l2_nonces = [0, ops.INVALID_NONCE_GAP]

    result = run(ops.propose_tx_list_including_invalid_tx)

    assert not result.passed
    assert result.error == f"AssertionError: invalid transaction with nonce {ops.INVALID_NONCE_GAP} was included"


def test_settlement_rollup_must_be_an_l1_contract(devnet_config, fake_runtime, fake_clients):
    net = Devnet(devnet_config, fake_runtime)
    l2 = net.add_l2(Context.background())
    l2.assign_rollup(L2_ROLLUP_ADDRESS, block_hash(0))
    net._append(Role.L1, l2)
    env = TestEnv(Context.background(), devnet_config, devnet=net)

    with pytest.raises(TopologyError, match="not a settlement engine"):
        ops._l1_rollup(env)


def test_rollup_engine_must_hold_an_l2_contract(devnet_config, fake_runtime, fake_clients):
    deployed = Devnet(devnet_config, fake_runtime)
    deployed.start_l1_l2(Context.background().with_timeout(10))
    net = Devnet(devnet_config, fake_runtime)
    net._append(Role.L2, deployed.get_l1_node())
    env = TestEnv(Context.background(), devnet_config, devnet=net)

    with pytest.raises(TopologyError, match="not a rollup engine"):
        ops.generate_invalid_transaction(env)
