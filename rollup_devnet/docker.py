from __future__ import annotations

import logging
import shutil
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .errors import FatalSetupError
from .roles import ImageDefinition

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Container:
    id: str
    name: str
    image: str
    ip: str
    client_type: str = ""


@dataclass(slots=True)
class ExecResult:
    exit_code: int
    stdout: str
    stderr: str


def _run(cmd: List[str], check: bool = True) -> subprocess.CompletedProcess:
    logger.debug("+ %s", " ".join(cmd))
    return subprocess.run(cmd, check=check, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)


class DockerRuntime:
    """
    Launches node containers through the ``docker`` CLI.

    Every container started here is tracked so that ``stop_all`` can tear the
    devnet down at the end of a run.
    """

    def __init__(self, network: Optional[str] = None, docker: str = "docker") -> None:
        if shutil.which(docker) is None:
            raise FatalSetupError(f"{docker} executable not found in PATH")
        self.network = network
        self.docker = docker
        self._started: Dict[str, Container] = {}

    def start(
        self,
        image: ImageDefinition,
        env: Dict[str, str],
        files: Optional[Dict[Path, str]] = None,
        name: Optional[str] = None,
    ) -> Container:
        name = name or f"devnet-{image.name}-{uuid.uuid4().hex[:8]}"
        cmd = [self.docker, "run", "-d", "--name", name]
        if self.network:
            cmd += ["--network", self.network]
        for key, value in sorted(env.items()):
            cmd += ["-e", f"{key}={value}"]
        for host_path, container_path in (files or {}).items():
            cmd += ["-v", f"{Path(host_path).resolve()}:{container_path}:ro"]
        cmd.append(image.image)

        try:
            cp = _run(cmd)
        except subprocess.CalledProcessError as exc:
            raise FatalSetupError(f"failed to start {image.name}: {exc.stderr.strip()}") from exc
        container_id = cp.stdout.strip()

        inspect = _run(
            [self.docker, "inspect", "--format", "{{range .NetworkSettings.Networks}}{{.IPAddress}} {{end}}", container_id],
            check=False,
        )
        ip = inspect.stdout.split()[0] if inspect.returncode == 0 and inspect.stdout.split() else ""
        if not ip:
            self.stop(Container(container_id, name, image.image, ""))
            raise FatalSetupError(f"container {name} has no IP address")

        container = Container(id=container_id, name=name, image=image.image, ip=ip, client_type=image.client_type)
        self._started[container_id] = container
        logger.info("started %s (%s) at %s", name, image.image, ip)
        return container

    def exec(self, container: Container, *cmd: str) -> ExecResult:
        cp = _run([self.docker, "exec", container.id, *cmd], check=False)
        return ExecResult(exit_code=cp.returncode, stdout=cp.stdout, stderr=cp.stderr)

    def stop(self, container: Container) -> None:
        _run([self.docker, "rm", "-f", container.id], check=False)
        self._started.pop(container.id, None)
        logger.info("stopped %s", container.name)

    def logs(self, container: Container) -> str:
        cp = subprocess.run(
            [self.docker, "logs", container.id],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
        return cp.stdout

    def stop_all(self) -> None:
        for container in list(self._started.values()):
            self.stop(container)
