import pytest

from rollup_devnet.errors import FatalSetupError
from rollup_devnet.roles import ImageDefinition, Role, classify

from conftest import make_images


def test_classify_partitions_images_by_tag():
    clients = classify(make_images())

    assert [i.name for i in clients.get(Role.L1)] == ["geth"]
    assert [i.name for i in clients.get(Role.L2)] == ["taiko-geth"]
    assert [i.name for i in clients.get(Role.DRIVER)] == ["taiko-client"]
    assert [i.name for i in clients.get(Role.PROVER)] == ["taiko-client"]
    assert clients.require(Role.PROTOCOL).image == "hive/taiko-mono"


def test_multiple_images_for_one_role_keep_manifest_order():
    images = [
        ImageDefinition("geth", "a", ("taiko-l1",)),
        ImageDefinition("besu", "b", ("taiko-l1",)),
    ]
    clients = classify(images)
    assert [i.name for i in clients.get(Role.L1)] == ["geth", "besu"]
    assert clients.require(Role.L1).name == "geth"


def test_empty_role_is_only_an_error_when_required():
    clients = classify([ImageDefinition("geth", "a", ("taiko-l1",))])

    assert clients.get(Role.PROVER) == []
    with pytest.raises(FatalSetupError, match="no taiko-prover client types found"):
        clients.require(Role.PROVER)


def test_unknown_tags_are_ignored():
    clients = classify([ImageDefinition("tool", "x", ("something-else",))])
    assert all(clients.get(role) == [] for role in Role)


def test_str_lists_every_role():
    text = str(classify(make_images()))
    assert "l1=geth" in text
    assert "prover=taiko-client" in text
