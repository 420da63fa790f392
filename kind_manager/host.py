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

"""Host preparation: kubeconfig directory, kernel limits, IPv6 address, /etc/hosts."""

from __future__ import annotations

from pathlib import Path

import sh

from kind_manager import console, logger
from kind_manager.constants import (
    HOST_HOSTS_FILE,
    INOTIFY_MAX_USER_INSTANCES,
    INOTIFY_MAX_USER_WATCHES,
    INOTIFY_SYSCTL_CONF,
    IPTABLES_MODULES,
    IPV6_HOST_PREFIX_LEN,
)
from kind_manager.errors import CommandFailedError, Outcome
from kind_manager.utils import command_error_text, privileged, write_file

PROC_ROOT = Path("/proc/sys")


def setup_kube_directory(home: Path | None = None) -> Path:
    """Create ``~/.kube`` (0700) and an empty ``~/.kube/config`` (0600) if missing.

    Returns:
        Path of the kubeconfig file.
    """
    kube_dir = (home or Path.home()) / ".kube"
    if not kube_dir.is_dir():
        console.print(f"[yellow]\u2139\ufe0f  Creating {kube_dir}[/yellow]")
        kube_dir.mkdir(parents=True, exist_ok=True)
    config = kube_dir / "config"
    config.touch(exist_ok=True)
    kube_dir.chmod(0o700)
    config.chmod(0o600)
    return config


def _read_limit(path: Path) -> int:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return 0


def adjust_inotify_limits(
    os_name: str,
    proc_root: Path = PROC_ROOT,
    sysctl_conf: Path = INOTIFY_SYSCTL_CONF,
) -> Outcome:
    """Raise the inotify limits multi-node clusters need, Linux only.

    Applies the limits with ``sysctl -w`` and persists them to
    ``sysctl_conf`` unless that file already exists.

    Args:
        os_name: Normalized host OS name.
        proc_root: Root of the sysctl tree, ``/proc/sys`` on a real host.
        sysctl_conf: Drop-in file persisting the limits.

    Returns:
        ``Outcome.NOOP`` when nothing needed changing, ``Outcome.CREATED`` otherwise.
    """
    if os_name != "linux":
        logger.debug("Skipping inotify adjustment on %s", os_name)
        return Outcome.NOOP

    watches = _read_limit(proc_root / "fs/inotify/max_user_watches")
    instances = _read_limit(proc_root / "fs/inotify/max_user_instances")
    if watches >= INOTIFY_MAX_USER_WATCHES and instances >= INOTIFY_MAX_USER_INSTANCES:
        console.print(
            f"[green]\u2705 inotify limits already sufficient (watches={watches}, instances={instances})[/green]"
        )
        return Outcome.NOOP

    console.print(
        f"[yellow]\u2139\ufe0f  Raising inotify limits to watches={INOTIFY_MAX_USER_WATCHES}, "
        f"instances={INOTIFY_MAX_USER_INSTANCES} (current: {watches}, {instances})[/yellow]"
    )
    try:
        privileged("sysctl", "-w", f"fs.inotify.max_user_watches={INOTIFY_MAX_USER_WATCHES}")
        privileged("sysctl", "-w", f"fs.inotify.max_user_instances={INOTIFY_MAX_USER_INSTANCES}")
    except sh.ErrorReturnCode as err:
        raise CommandFailedError(f"Failed to raise inotify limits: {command_error_text(err)}") from err

    if not sysctl_conf.exists():
        write_file(
            sysctl_conf,
            "# kind cluster inotify settings\n"
            f"fs.inotify.max_user_watches = {INOTIFY_MAX_USER_WATCHES}\n"
            f"fs.inotify.max_user_instances = {INOTIFY_MAX_USER_INSTANCES}\n",
        )
    console.print("[green]\u2705 inotify limits adjusted[/green]")
    return Outcome.CREATED


def load_iptables_modules(is_podman: bool, os_name: str) -> list[str]:
    """Load the iptables kernel modules Podman networking needs.

    Failures are printed as warnings.

    Returns:
        Modules that were loaded by this call.
    """
    if not is_podman or os_name != "linux":
        return []

    try:
        loaded = {line.split()[0] for line in str(sh.lsmod()).splitlines()[1:] if line.strip()}
    except sh.ErrorReturnCode as err:
        logger.debug("lsmod failed: %s", command_error_text(err))
        loaded = set()

    newly_loaded: list[str] = []
    for module in IPTABLES_MODULES:
        if module in loaded:
            logger.debug("%s module already loaded", module)
            continue
        try:
            privileged("modprobe", module)
            newly_loaded.append(module)
        except sh.ErrorReturnCode as err:
            console.print(f"[yellow]\u26a0\ufe0f  Failed to load {module} module: {command_error_text(err)}[/yellow]")
    return newly_loaded


def ipv6_assign_address(address: str, interface: str, prefix_len: int = IPV6_HOST_PREFIX_LEN) -> Outcome:
    """Add ``address/prefix_len`` to ``interface`` unless it is already assigned.

    Raises:
        CommandFailedError: If ``ip -6 addr`` fails.
    """
    try:
        current = str(sh.ip("-6", "addr", "show", "dev", interface))
    except sh.ErrorReturnCode as err:
        raise CommandFailedError(
            f"Failed to list IPv6 addresses on {interface}: {command_error_text(err)}"
        ) from err
    if address in current:
        console.print(f"[green]\u2705 IPv6 address {address} already assigned to {interface}[/green]")
        return Outcome.NOOP
    console.print(f"[yellow]\u2139\ufe0f  Assigning {address}/{prefix_len} to {interface}...[/yellow]")
    try:
        privileged("ip", "-6", "addr", "add", f"{address}/{prefix_len}", "dev", interface)
    except sh.ErrorReturnCode as err:
        raise CommandFailedError(
            f"Failed to assign {address} to {interface}: {command_error_text(err)}"
        ) from err
    console.print("[green]\u2705 IPv6 address assigned[/green]")
    return Outcome.CREATED


def add_hosts_entry(ip: str, hostname: str, hosts_file: Path = HOST_HOSTS_FILE) -> Outcome:
    """Append ``<ip>    <hostname>`` to the hosts file unless the hostname is present.

    Raises:
        CommandFailedError: If the hosts file could not be written.
    """
    existing = hosts_file.read_text() if hosts_file.exists() else ""
    if hostname in existing:
        console.print(f"[green]\u2705 Hosts entry for {hostname} already exists[/green]")
        return Outcome.NOOP
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    write_file(hosts_file, f"{prefix}{ip}    {hostname}\n", append=True)
    console.print(f"[green]\u2705 Added hosts entry {ip} {hostname}[/green]")
    return Outcome.CREATED
