"""
Scenario suites.

``ops`` runs every scenario one after another. ``client`` runs the same
scenarios under a concurrency budget, each on its own devnet.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from ..runner import Scenario
from . import ops

MINUTE = 60.0


@dataclass(slots=True)
class Suite:
    name: str
    description: str
    scenarios: List[Scenario] = field(default_factory=list)
    concurrency: int = 1

    def select(self, names: List[str]) -> List[Scenario]:
        if not names:
            return list(self.scenarios)
        known = {s.name: s for s in self.scenarios}
        missing = [n for n in names if n not in known]
        if missing:
            raise KeyError(f"unknown scenarios in suite {self.name}: {', '.join(missing)}")
        return [known[n] for n in names]


def _ops_scenarios() -> List[Scenario]:
    return [
        Scenario("firstL2Block", "Relevant tests for the generation of the first L2 block", ops.first_l2_block, 30 * MINUTE),
        Scenario("sync test", "L2 block synchronization related tests", ops.sync_l2_block, 30 * MINUTE),
        Scenario(
            "tooManyPendingBlocks",
            "Too many pending blocks will block further proposes",
            ops.too_many_pending_blocks,
            60 * MINUTE,
        ),
        Scenario(
            "proposeInvalidTxListBytes",
            "Commits and proposes an invalid transaction list bytes to the rollup contract.",
            ops.propose_invalid_tx_list_bytes,
            60 * MINUTE,
        ),
        Scenario(
            "proposeTxListIncludingInvalidTx",
            "Commits and proposes a validly encoded transaction list which including an invalid transaction.",
            ops.propose_tx_list_including_invalid_tx,
            60 * MINUTE,
        ),
    ]


def _client_scenarios() -> List[Scenario]:
    renamed = {
        "firstL2Block": ("Generate the first rollup block", "Relevant tests for the generation of the first rollup block"),
        "sync test": ("Sync rollup block", "L2 block synchronization related tests"),
    }
    out = []
    for s in _ops_scenarios():
        name, description = renamed.get(s.name, (s.name, s.description))
        out.append(Scenario(name, description, s.run, s.timeout))
    return out


SUITES: Dict[str, Suite] = {
    "ops": Suite("rollup ops", "Test propose, sync and other things", _ops_scenarios(), concurrency=1),
    "client": Suite("rollup client", "Test propose, sync and other things", _client_scenarios(), concurrency=15),
}

__all__ = ["SUITES", "Suite", "ops"]
