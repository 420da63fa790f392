# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Utility functions for command checks, kubectl, privileged calls, and polling."""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import sh
from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential, wait_fixed

from kind_manager import logger
from kind_manager.constants import KUBECTL_TIMEOUT_SECONDS
from kind_manager.errors import CommandFailedError, ConfigurationError


def command_exists(cmd: str) -> bool:
    """Return True if ``cmd`` resolves on the system PATH."""
    return shutil.which(cmd) is not None


def require_command(cmd: str, hint: str = "") -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.
        hint: Optional remediation appended to the error message.

    Raises:
        ConfigurationError: If the command is not found.
    """
    if not command_exists(cmd):
        message = f"Required command '{cmd}' not found."
        raise ConfigurationError(f"{message} {hint}".strip())


def command_error_text(err: sh.ErrorReturnCode) -> str:
    """Extract a one-line diagnostic from a failed ``sh`` invocation."""
    for stream in (err.stderr, err.stdout):
        if stream:
            text = stream.decode(errors="replace").strip()
            if text:
                return text.splitlines()[-1]
    return f"exit code {err.exit_code}"


def run_kubectl(args: list[str], timeout: int = KUBECTL_TIMEOUT_SECONDS) -> tuple[bool, str, str]:
    """Run a kubectl command via subprocess and return (success, stdout, stderr).

    Uses subprocess instead of sh because callers parse JSON from stdout and
    must keep stderr out of it.

    Args:
        args: kubectl arguments (e.g. ``["get", "nodes", "-o", "json"]``).
        timeout: Maximum seconds to wait for the command to complete.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    try:
        result = subprocess.run(
            ["kubectl", *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)


def is_root() -> bool:
    return os.geteuid() == 0


def privileged(cmd: str, *args: str, **kwargs: Any) -> str:
    """Run a host command, going through sudo unless already root.

    Args:
        cmd: Executable name.
        *args: Arguments for the executable.
        **kwargs: ``sh`` special keyword arguments such as ``_in``.

    Returns:
        The command's stdout.
    """
    if is_root():
        return str(sh.Command(cmd)(*args, **kwargs))
    return str(sh.sudo(cmd, *args, **kwargs))


def write_file(path: Path, content: str, *, append: bool = False) -> None:
    """Write a host file directly when permitted, otherwise through ``sudo tee``.

    Raises:
        CommandFailedError: If neither the direct write nor ``tee`` succeeded.
    """
    target_writable = os.access(path, os.W_OK) if path.exists() else os.access(path.parent, os.W_OK)
    if target_writable:
        try:
            with open(path, "a" if append else "w") as f:
                f.write(content)
        except OSError as err:
            raise CommandFailedError(f"Failed to write {path}: {err}") from err
        return
    tee_args = ["-a", str(path)] if append else [str(path)]
    try:
        privileged("tee", *tee_args, _in=content)
    except sh.ErrorReturnCode as err:
        raise CommandFailedError(f"Failed to write {path}: {command_error_text(err)}") from err


@contextmanager
def transient_file(content: str, prefix: str = "kind-manager-", suffix: str = "") -> Iterator[Path]:
    """Write ``content`` to a temporary file removed on exit, error, or interrupt."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    path = Path(name)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        yield path
    finally:
        path.unlink(missing_ok=True)
        logger.debug("Removed transient file %s", path)


# ============================================================================
# Polling
# ============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded polling schedule for transient readiness checks.

    Attributes:
        max_attempts: Number of checks before giving up.
        delay: Seconds to wait after the first failed check.
        backoff: Multiplier applied to the delay after each failure; 1 keeps it fixed.
    """

    max_attempts: int
    delay: float
    backoff: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("RetryPolicy.max_attempts must be at least 1")
        if self.delay < 0 or self.backoff < 1:
            raise ConfigurationError("RetryPolicy needs delay >= 0 and backoff >= 1")

    @classmethod
    def from_timeout(cls, timeout: float, interval: float) -> RetryPolicy:
        """Fixed-interval policy that checks roughly every ``interval`` for ``timeout`` seconds."""
        return cls(max_attempts=max(1, int(timeout // interval)), delay=interval)

    def retrying(self) -> Retrying:
        """Build a tenacity controller that retries while the check returns False.

        Raises:
            tenacity.RetryError: From the controller once attempts are exhausted.
        """
        if self.backoff == 1:
            wait = wait_fixed(self.delay)
        else:
            wait = wait_exponential(multiplier=self.delay, exp_base=self.backoff)
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait,
            retry=retry_if_result(lambda ok: not ok),
        )

    def wait_until(self, check: Callable[[], bool]) -> None:
        """Call ``check`` until it returns True.

        Raises:
            tenacity.RetryError: If ``check`` never returned True.
        """
        self.retrying()(check)
