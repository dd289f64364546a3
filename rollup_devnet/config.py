from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from eth_account import Account as EthAccount

from .errors import FatalSetupError
from .roles import ImageDefinition

ZERO_ADDRESS = "0x" + "00" * 20
ZERO_HASH = "0x" + "00" * 32

# Well-known devnet keys. They only ever hold funds on throwaway chains.
VAULT_KEY = "ac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEPLOYER_KEY = "2bdd21761a483f71054e14f5b827213567971c676928d9a1808cbfa4b7501200"
PROVER_KEY = "6bff9a8ffd7f94f43f4f5f642be8a3f32a94c1f316d90862884b2e276293b6ee"
THROWAWAY_KEY = "92954368afd3caa1f3ce3ead0069c1af414054aefe1ef9aeacc1bf426222ce38"
JWT_SECRET = "c49690b5a9bc72c7b451b48c5fee2b542e66559d840a133d090769abc56e39e7"

L1_NETWORK_ID = 31336
L2_NETWORK_ID = 167003
L1_ROLLUP_ADDRESS = "0x232e1128a21BBfFbC8d6BefaCb10137F37A653a0"
L2_ROLLUP_ADDRESS = "0x0000777700000000000000000000000000000001"

DEFAULT_GENESIS_PATH = Path("/genesis.json")


@dataclass(slots=True)
class Account:
    private_key_hex: str
    address: str

    @staticmethod
    def from_key(private_key_hex: str) -> "Account":
        key = private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex
        try:
            address = EthAccount.from_key(bytes.fromhex(key)).address
        except ValueError as exc:
            raise FatalSetupError(f"failed to parse private key: {exc}") from exc
        return Account(private_key_hex=key, address=address)


@dataclass(slots=True)
class L1Config:
    chain_id: int
    network_id: int
    clique_period: int
    deployer: Account
    rollup_address: str = L1_ROLLUP_ADDRESS


@dataclass(slots=True)
class L2Config:
    chain_id: int
    network_id: int
    jwt_secret: str
    proposer: Account
    fee_recipient: Account
    prover: Account
    # L2 driver account used to build throwaway blocks for invalid proposals
    throwawayer: Account
    rollup_address: str = L2_ROLLUP_ADDRESS
    propose_interval: float = 1.0
    produce_invalid_blocks_interval: int = 0


@dataclass(slots=True)
class DevnetConfig:
    l1: L1Config
    l2: L2Config
    vault_key_hex: str = VAULT_KEY
    genesis_path: Path = DEFAULT_GENESIS_PATH
    docker_network: Optional[str] = None
    node_log_level: str = "3"
    rpc_timeout: float = 10.0
    node_up_timeout: float = 10.0
    log_rpc_traffic: bool = False
    images: List[ImageDefinition] = field(default_factory=list)


def default_config() -> DevnetConfig:
    deployer = Account.from_key(DEPLOYER_KEY)
    return DevnetConfig(
        l1=L1Config(
            chain_id=L1_NETWORK_ID,
            network_id=L1_NETWORK_ID,
            clique_period=0,
            deployer=deployer,
        ),
        l2=L2Config(
            chain_id=L2_NETWORK_ID,
            network_id=L2_NETWORK_ID,
            jwt_secret=JWT_SECRET,
            proposer=deployer,
            fee_recipient=deployer,
            prover=Account.from_key(PROVER_KEY),
            throwawayer=Account.from_key(THROWAWAY_KEY),
        ),
    )


_ACCOUNT_FIELDS = {"deployer", "proposer", "fee_recipient", "prover", "throwawayer"}


def _overlay(target: Any, values: Dict[str, Any], section: str) -> None:
    known = {f.name for f in fields(target)}
    for key, value in values.items():
        if key not in known:
            raise FatalSetupError(f"unknown config key '{section}.{key}'")
        current = getattr(target, key)
        if key in _ACCOUNT_FIELDS:
            setattr(target, key, Account.from_key(str(value)))
        elif is_dataclass(current) and isinstance(value, dict):
            _overlay(current, value, f"{section}.{key}")
        elif isinstance(current, Path):
            setattr(target, key, Path(value))
        else:
            setattr(target, key, value)


def load_images(data: Dict[str, Any]) -> List[ImageDefinition]:
    images: List[ImageDefinition] = []
    for name, entry in (data.get("images") or {}).items():
        if isinstance(entry, str):
            raise FatalSetupError(f"image '{name}' has no role tags")
        images.append(
            ImageDefinition(
                name=name,
                image=entry["image"],
                roles=tuple(entry.get("roles", [])),
                client_type=entry.get("client", name.split("_")[0]),
            )
        )
    return images


def load_config(path: Path | str, base: Optional[DevnetConfig] = None) -> DevnetConfig:
    """
    Read an image manifest and overlay its ``devnet`` section on ``base``.

    The returned config is a fresh object; ``base`` is never mutated.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise FatalSetupError(f"can not read manifest {path}: {exc}") from exc

    config = copy.deepcopy(base) if base is not None else default_config()
    overrides = data.get("devnet") or {}
    _overlay(config, overrides, "devnet")
    config.images = load_images(data)
    return config
