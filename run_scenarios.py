import argparse
import json
import logging
import os
import sys
from pathlib import Path

from rollup_devnet.config import load_config
from rollup_devnet.context import Context
from rollup_devnet.docker import DockerRuntime
from rollup_devnet.errors import FatalSetupError
from rollup_devnet.runner import RunTestsParams, run_tests
from rollup_devnet.scenarios import SUITES
from rollup_devnet.system import log_host_specs

logger = logging.getLogger("run_scenarios")


def write_report(report, output_dir: str, suite: str) -> Path:
    os.makedirs(output_dir, exist_ok=True)
    path = Path(output_dir) / f"{suite}_report.json"
    with open(path, "w") as f:
        json.dump(report.to_dict(), f, indent=2)
    return path


def main():
    parser = argparse.ArgumentParser(description="Run rollup devnet scenarios")
    parser.add_argument("--manifest", type=str, default="images.yaml", help="Image manifest with role tags")
    parser.add_argument("--suite", type=str, default="ops", choices=sorted(SUITES), help="Scenario suite to run")
    parser.add_argument("--scenario", action="append", default=[], help="Scenario name to run, repeatable")
    parser.add_argument("--concurrency", type=int, help="Scenarios running at once, defaults to the suite's budget")
    parser.add_argument("--timeout", type=float, default=90, help="Overall run timeout in minutes")
    parser.add_argument("--output", type=str, default="results", help="Folder for the JSON run report")
    parser.add_argument("--list", action="store_true", help="List the scenarios of the suite and exit")
    parser.add_argument("--logLevel", type=str, default="INFO", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.logLevel.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    suite = SUITES[args.suite]
    if args.list:
        for scenario in suite.scenarios:
            print(f"{scenario.name}: {scenario.description}")
        return 0

    try:
        scenarios = suite.select(args.scenario)
    except KeyError as exc:
        print(f"[ERROR] {exc.args[0]}")
        return 1

    try:
        config = load_config(args.manifest)
        runtime = DockerRuntime(network=config.docker_network)
    except FatalSetupError as exc:
        print(f"[ERROR] {exc}")
        return 1

    host = log_host_specs()
    params = RunTestsParams(
        tests=scenarios,
        config=config,
        concurrency=args.concurrency or suite.concurrency,
        runtime=runtime,
    )

    ctx = Context.background().with_timeout(args.timeout * 60)
    try:
        report = run_tests(ctx, params)
    except KeyboardInterrupt:
        print("[WARN] Interrupted, stopping containers")
        runtime.stop_all()
        return 1
    finally:
        ctx.cancel()
    runtime.stop_all()
    report.host = host

    path = write_report(report, args.output, args.suite)
    for result in report.results:
        if result.passed:
            print(f"[OK] {result.name} ({result.duration:.1f}s)")
        else:
            print(f"[ERROR] {result.name}: {result.error}")
            for step in result.steps:
                if not step.passed:
                    print(f"        {step.name}: {step.error}")
    if report.fatal:
        print(f"[ERROR] Run aborted: {report.fatal}")
    if report.timed_out:
        print(f"[WARN] Run timed out after {args.timeout} minutes")
    print(f"[OK] Report written to {path}")
    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(main())
