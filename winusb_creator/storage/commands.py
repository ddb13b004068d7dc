"""Subprocess helpers shared by the platform disk/image services."""

from __future__ import annotations

import subprocess
from typing import Sequence

from winusb_creator.logging import LoggerFactory


log = LoggerFactory.for_disk()


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
    input_text: str | None = None,
) -> subprocess.CompletedProcess:
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            list(command),
            check=check,
            text=True,
            capture_output=True,
            input=input_text,
        )
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def combined_output(result: subprocess.CompletedProcess) -> str:
    """stdout and stderr joined, the way a terminal would show them."""
    parts = [result.stdout or "", result.stderr or ""]
    return "\n".join(part.strip() for part in parts if part and part.strip())
