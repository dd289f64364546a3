from __future__ import annotations

import logging
import platform
import shutil
from typing import Dict

import cpuinfo
import psutil

logger = logging.getLogger(__name__)


def host_specs() -> Dict[str, str]:
    cpu = cpuinfo.get_cpu_info()
    memory_gb = psutil.virtual_memory().total / (1024 ** 3)
    return {
        "System": platform.system(),
        "Release": platform.release(),
        "Machine": platform.machine(),
        "Python": platform.python_version(),
        "RAM": f"{memory_gb:.2f} GB",
        "CPU": cpu.get("brand_raw", "Unknown CPU"),
        "Numbers of CPU": str(psutil.cpu_count(logical=True) or ""),
        "CPU GHz": cpu.get("hz_actual_friendly", "N/A"),
        "Docker": shutil.which("docker") or "not found",
    }


def log_host_specs() -> Dict[str, str]:
    """
    Log the current host specifications and return them for the run report.
    """
    specs = host_specs()
    logger.info("Host specs:")
    for key, value in specs.items():
        logger.info("  %s: %s", key, value)
    return specs
