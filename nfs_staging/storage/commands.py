"""External command execution with loguru debug/trace logging."""

from __future__ import annotations

import subprocess
from typing import Sequence

from nfs_staging.logging import LoggerFactory
from nfs_staging.storage.exceptions import CommandFailedError


log = LoggerFactory.for_system()
output_log = LoggerFactory.for_command_output()


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command with an argument list and captured text output.

    Raises:
        CommandFailedError: If the command cannot be started, or exits
            non-zero while ``check`` is set.
    """
    command = list(command)
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(command, check=False, text=True, capture_output=True)
    except OSError as error:
        log.debug(f"Command could not be started: {' '.join(command)}: {error}")
        raise CommandFailedError(command, None, str(error)) from error
    if result.stdout and (log_output or result.returncode != 0):
        output_log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.trace(f"stderr: {result.stderr.strip()}")
    if result.returncode != 0 and check:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        log.debug(f"Command failed: {' '.join(command)} (rc={result.returncode})")
        raise CommandFailedError(command, result.returncode, stderr or stdout)
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result
