"""
Orchestration of short-lived rollup devnets and the scenarios run against them.

The package is split into small modules: node images are classified by role
(``roles``), launched through the docker CLI (``docker``, ``node``), wired
into a topology (``devnet``) and observed through the blocking helpers in
``waits``. ``runner`` executes scenarios under a concurrency budget.
"""

from . import config, contracts, devnet, errors, node, rpc, runner, system, vault, waits
from .config import DevnetConfig, default_config, load_config
from .context import Context
from .devnet import Devnet
from .errors import DevnetError, FatalSetupError
from .roles import Role, classify
from .runner import RunReport, RunTestsParams, Scenario, run_tests

__all__ = [
    "config",
    "contracts",
    "devnet",
    "errors",
    "node",
    "rpc",
    "runner",
    "system",
    "vault",
    "waits",
    "Context",
    "Devnet",
    "DevnetConfig",
    "DevnetError",
    "FatalSetupError",
    "Role",
    "RunReport",
    "RunTestsParams",
    "Scenario",
    "classify",
    "default_config",
    "load_config",
    "run_tests",
]
