import pytest

from rollup_devnet import envs
from rollup_devnet.config import L1_ROLLUP_ADDRESS, L2_ROLLUP_ADDRESS
from rollup_devnet.context import Context
from rollup_devnet.devnet import Devnet, parse_deployed_address
from rollup_devnet.docker import ExecResult
from rollup_devnet.errors import Cancelled, FatalSetupError, TopologyError
from rollup_devnet.roles import Role


@pytest.fixture
def devnet(devnet_config, fake_runtime, fake_clients):
    net = Devnet(devnet_config, fake_runtime)
    yield net
    net.shutdown()


def ctx():
    return Context.background().with_timeout(10)


def test_single_node_net_starts_in_dependency_order(devnet, fake_runtime):
    devnet.start_single_node_net(ctx())

    assert fake_runtime.roles_started() == ["L2Engine", "L1Engine", "protocol", "driver", "prover", "proposer"]
    # the deployer is stopped once the contracts are in place
    assert fake_runtime.stopped == [devnet.nodes(Role.PROTOCOL)[0].container.id]
    assert fake_runtime.execs[0][1] == ("deploy.sh",)


def test_deployer_gets_l2_genesis_and_l1_url(devnet, fake_runtime):
    devnet.start_l1_l2(ctx())
    env = fake_runtime.started[2]["env"]
    l1 = devnet.get_l1_node()
    assert env[envs.L2_GENESIS_BLOCK_HASH] == "0x" + "00" * 32
    assert env[envs.MAINNET_URL] == l1.http_endpoint
    assert env[envs.CHECK_LIVE_PORT] == "0"


def test_agents_see_deployed_contracts(devnet, fake_runtime):
    devnet.start_single_node_net(ctx())

    l1, l2 = devnet.get_l1_node(), devnet.get_l2_node()
    assert l1.rollup_address == L1_ROLLUP_ADDRESS
    assert l2.rollup_address == L2_ROLLUP_ADDRESS
    for started in fake_runtime.started[3:]:
        assert int(started["env"][envs.L1_ROLLUP_ADDRESS], 16) != 0
        assert int(started["env"][envs.L2_ROLLUP_ADDRESS], 16) != 0
        assert started["env"][envs.L1_RPC_ENDPOINT] == l1.ws_endpoint


def test_driver_is_wired_to_its_engine(devnet, fake_runtime):
    devnet.start_l1_l2_driver(ctx())
    env = fake_runtime.started[3]["env"]
    l2 = devnet.get_l2_node()
    assert env[envs.L2_ENGINE_ENDPOINT] == l2.engine_endpoint
    assert env[envs.JWT_SECRET] == devnet.config.l2.jwt_secret
    assert devnet.get_driver().paired is l2


def test_prover_is_whitelisted_before_launch(devnet, fake_clients):
    devnet.start_single_node_net(ctx())
    l1_chain = fake_clients[devnet.get_l1_node().http_endpoint]
    assert len(l1_chain.sent) == 1
    assert all(r["status"] == "0x1" for r in l1_chain.receipts.values())


def test_accessors_return_the_same_handle(devnet):
    devnet.start_l1_l2(ctx())
    assert devnet.get_l2_node(0) is devnet.get_l2_node(0)
    assert devnet.get_l1_node() is devnet.nodes(Role.L1)[0]


def test_out_of_range_index_is_an_error(devnet):
    with pytest.raises(TopologyError, match="only have 0"):
        devnet.get_l1_node(0)
    devnet.start_l1_l2(ctx())
    with pytest.raises(TopologyError, match="cannot find 1"):
        devnet.get_l2_node(1)


def test_agents_need_deployed_contracts(devnet):
    l2 = devnet.add_l2(ctx())
    with pytest.raises(TopologyError, match="not deployed"):
        devnet.add_driver(ctx(), l2, l2)


def test_second_driver_for_one_engine_is_rejected(devnet):
    devnet.start_l1_l2_driver(ctx())
    with pytest.raises(TopologyError):
        devnet.add_driver(ctx(), devnet.get_l1_node(), devnet.get_l2_node())


def test_driver_can_be_restarted_and_paired_with_a_new_engine(devnet):
    devnet.start_l1_l2_driver(ctx())
    l1 = devnet.get_l1_node()

    peer = devnet.add_l2(ctx(), bootstrap=True)
    peer.assign_rollup(L2_ROLLUP_ADDRESS, devnet.get_l2_node().genesis_hash)
    devnet.add_driver(ctx(), l1, peer)

    devnet.stop_node(devnet.get_driver(0))
    restarted = devnet.add_driver(ctx(), l1, devnet.get_l2_node(0))
    assert restarted.paired is devnet.get_l2_node(0)
    assert len(devnet.nodes(Role.DRIVER)) == 3


def test_bootstrap_peers_with_running_engines(devnet, fake_runtime):
    devnet.start_l1_l2(ctx())
    devnet.add_l2(ctx(), bootstrap=True, node_type="snap")
    env = fake_runtime.started[-1]["env"]
    assert env[envs.BOOTNODE] == "enode://abcd@10.0.0.1:30303"
    assert env[envs.NODE_TYPE] == "snap"


def test_failed_deployment_is_fatal(devnet, fake_runtime):
    fake_runtime.exec_result = ExecResult(1, "", "revert")
    with pytest.raises(FatalSetupError, match="failed to deploy contract"):
        devnet.start_l1_l2(ctx())
    assert len(fake_runtime.stopped) == 1
    assert devnet.nodes(Role.L1) == []


def test_missing_role_image_is_fatal(devnet_config, fake_runtime, fake_clients):
    devnet_config.images = [i for i in devnet_config.images if i.name != "taiko-client"]
    net = Devnet(devnet_config, fake_runtime)
    net.start_l1_l2(ctx())
    with pytest.raises(FatalSetupError, match="no taiko-driver client types found"):
        net.add_driver(ctx(), net.get_l1_node(), net.get_l2_node())


def test_parse_deployed_address():
    out = "compiling...\nTaikoL1 deployed to 0xAbCdEf0123456789aBcDeF0123456789AbCdEf01\n"
    assert parse_deployed_address(out) == "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
    assert parse_deployed_address("nothing here") is None


def test_driver_slot_taken_during_launch_is_released(devnet, fake_runtime):
    devnet.start_l1_l2(ctx())
    l1, l2 = devnet.get_l1_node(), devnet.get_l2_node()
    build = devnet._build
    rival = {}

    def racing_build(builder, image):
        node = build(builder, image)
        if builder.config.role == Role.DRIVER and not rival:
            # a concurrent add_driver wins the slot while this launch is in flight
            rival["node"] = build(builder, image)
            rival["node"].paired = l2
            devnet._append(Role.DRIVER, rival["node"])
        return node

    devnet._build = racing_build
    with pytest.raises(TopologyError):
        devnet.add_driver(ctx(), l1, l2)

    assert devnet.nodes(Role.DRIVER) == [rival["node"]]
    assert len(fake_runtime.stopped) == 2
    assert fake_runtime.stopped[-1] != rival["node"].container.id


def test_finished_context_launches_nothing(devnet, fake_runtime):
    done = Context.background().with_cancel()
    done.cancel()
    with pytest.raises(Cancelled):
        devnet.add_l2(done)
    assert fake_runtime.started == []


def test_expired_context_stops_bring_up_before_agents(devnet, fake_runtime):
    devnet.start_l1_l2(ctx())
    started = len(fake_runtime.started)
    done = Context.background().with_cancel()
    done.cancel()

    for add in (devnet.add_driver, devnet.add_proposer, devnet.add_prover):
        with pytest.raises(Cancelled):
            add(done, devnet.get_l1_node(), devnet.get_l2_node())
    assert len(fake_runtime.started) == started
