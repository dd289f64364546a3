"""
Scenario runner.

Every scenario runs exactly once in its own thread, admitted through a
bounded semaphore, with a fresh :class:`TestEnv`. A fatal setup error stops
admitting new scenarios; the scenarios already running are allowed to finish.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import DevnetConfig
from .context import Context
from .contracts import ProtocolConstants
from .devnet import Devnet
from .docker import DockerRuntime
from .errors import FatalSetupError, TopologyError
from .vault import Vault
from .waits import gen_some_blocks

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Scenario:
    name: str
    description: str
    run: Callable[["TestEnv"], None]
    # seconds; bounds the whole scenario including devnet bring-up
    timeout: Optional[float] = None


@dataclass(slots=True)
class ScenarioResult:
    name: str
    description: str = ""
    passed: bool = True
    error: Optional[str] = None
    duration: float = 0.0
    steps: List["ScenarioResult"] = field(default_factory=list)


@dataclass(slots=True)
class RunReport:
    results: List[ScenarioResult] = field(default_factory=list)
    fatal: Optional[str] = None
    timed_out: bool = False
    duration: float = 0.0
    host: Dict[str, str] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.fatal is None and not self.timed_out and all(r.passed for r in self.results)

    def failed(self) -> List[ScenarioResult]:
        return [r for r in self.results if not r.passed]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class RunTestsParams:
    tests: List[Scenario]
    config: DevnetConfig
    concurrency: int = 1
    devnet: Optional[Devnet] = None
    runtime: Optional[DockerRuntime] = None


class TestEnv:
    """
    Environment handed to one scenario.

    ``ctx()`` and ``timeout_ctx()`` share one slot: asking for a new bounded
    context cancels the previous one.
    """

    __test__ = False

    def __init__(
        self,
        context: Context,
        config: DevnetConfig,
        devnet: Optional[Devnet] = None,
        runtime: Optional[DockerRuntime] = None,
    ) -> None:
        self.context = context
        self.config = config
        self.runtime = runtime
        self._net = devnet
        self._owns_net = False
        self._last_ctx: Optional[Context] = None
        self.steps: List[ScenarioResult] = []

    @property
    def net(self) -> Devnet:
        if self._net is None:
            raise TopologyError("no devnet started for this scenario")
        return self._net

    def start_devnet(self) -> Devnet:
        """Create a fresh devnet owned by this environment."""
        if self.runtime is None:
            raise FatalSetupError("no container runtime configured")
        self._net = Devnet(self.config, self.runtime)
        self._owns_net = True
        return self._net

    @property
    def l1_vault(self) -> Vault:
        return self.net.l1_vault

    @property
    def l2_vault(self) -> Vault:
        return self.net.l2_vault

    @property
    def protocol_constants(self) -> ProtocolConstants:
        constants = self.net.protocol_constants
        if constants is None:
            raise TopologyError("protocol constants are unknown, deploy the contracts first")
        return constants

    def ctx(self) -> Context:
        return self.timeout_ctx(self.config.rpc_timeout)

    def timeout_ctx(self, seconds: float) -> Context:
        if self._last_ctx is not None:
            self._last_ctx.cancel()
        self._last_ctx = self.context.with_timeout(seconds)
        return self._last_ctx

    def gen_some_l1_blocks(self, count: int) -> None:
        gen_some_blocks(self.context, self.net.get_l1_node(0), self.l1_vault, count)

    def gen_some_l2_blocks(self, count: int) -> None:
        gen_some_blocks(self.context, self.net.get_l2_node(0), self.l2_vault, count)

    def gen_commit_delay_blocks(self) -> None:
        count = self.protocol_constants.commit_confirmations
        if count:
            self.gen_some_l1_blocks(count)

    def run(self, name: str, fn: Callable[["TestEnv"], None], description: str = "") -> bool:
        """
        Run ``fn`` as an attributable sub-step. A failing step is recorded
        and does not stop the enclosing scenario.
        """
        step = ScenarioResult(name=name, description=description)
        self.steps.append(step)
        start = time.monotonic()
        try:
            fn(self)
        except FatalSetupError:
            step.passed = False
            raise
        except Exception as exc:
            step.passed = False
            step.error = _describe(exc)
            logger.error("step %r failed: %s", name, step.error)
        finally:
            step.duration = time.monotonic() - start
        return step.passed

    def close(self) -> None:
        if self._last_ctx is not None:
            self._last_ctx.cancel()
            self._last_ctx = None
        if self._owns_net and self._net is not None:
            self._net.shutdown()


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def run_scenario(ctx: Context, scenario: Scenario, params: RunTestsParams) -> ScenarioResult:
    scenario_ctx = ctx.with_timeout(scenario.timeout) if scenario.timeout else ctx.with_cancel()
    env = TestEnv(scenario_ctx, params.config, devnet=params.devnet, runtime=params.runtime)
    result = ScenarioResult(name=scenario.name, description=scenario.description)
    start = time.monotonic()
    logger.info("running %s", scenario.name)
    try:
        scenario.run(env)
    except FatalSetupError as exc:
        result.passed = False
        result.error = _describe(exc)
        raise
    except Exception as exc:
        result.passed = False
        result.error = _describe(exc)
    finally:
        env.close()
        scenario_ctx.cancel()
        result.duration = time.monotonic() - start
        result.steps = env.steps
        failed = [s for s in env.steps if not s.passed]
        if failed:
            result.passed = False
            if result.error is None:
                result.error = f"{failed[0].name}: {failed[0].error}"
    return result


def run_tests(ctx: Context, params: RunTestsParams) -> RunReport:
    if params.concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    gate = threading.BoundedSemaphore(params.concurrency)
    abort = threading.Event()
    done: "queue.Queue[tuple]" = queue.Queue()

    def worker(scenario: Scenario) -> None:
        with gate:
            if abort.is_set() or ctx.done():
                result = ScenarioResult(scenario.name, scenario.description, False, "not run: run aborted")
                done.put((result, None))
                return
            try:
                result = run_scenario(ctx, scenario, params)
            except FatalSetupError as exc:
                abort.set()
                result = ScenarioResult(scenario.name, scenario.description, False, _describe(exc))
                done.put((result, exc))
                return
        done.put((result, None))

    start = time.monotonic()
    for scenario in params.tests:
        threading.Thread(target=worker, args=(scenario,), name=f"scenario-{scenario.name}", daemon=True).start()

    report = RunReport()
    while len(report.results) < len(params.tests):
        remaining = ctx.remaining()
        try:
            result, fatal = done.get(timeout=None if remaining is None else max(remaining, 0.0))
        except queue.Empty:
            report.timed_out = True
            logger.error("run deadline reached with %d of %d scenarios finished", len(report.results), len(params.tests))
            break
        report.results.append(result)
        if fatal is not None and report.fatal is None:
            report.fatal = _describe(fatal)
            logger.error("fatal setup error in %s, aborting run: %s", result.name, fatal)
        status = "passed" if result.passed else f"failed: {result.error}"
        logger.info("%s %s (%.1fs)", result.name, status, result.duration)

    report.duration = time.monotonic() - start
    return report
