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

"""Runtime daemon trust files for the insecure local registry.

Docker keeps insecure registries in ``daemon.json``, Podman in
``registries.conf``. Both files belong to the host administrator, so
existing content is merged, and a file that cannot be merged safely is left
untouched with a warning.
"""

from __future__ import annotations

import json
import tomllib
from collections.abc import Callable
from pathlib import Path

import sh
from rich.panel import Panel

from kind_manager import console, logger
from kind_manager.errors import CommandFailedError, Outcome
from kind_manager.runtime import CAPABILITIES, RuntimeBackend
from kind_manager.utils import command_error_text, privileged, write_file


def trust_addresses(
    *,
    ipv6_only: bool,
    host_ip: str,
    port: int,
    ula_address: str,
    registry_dns: str,
) -> list[str]:
    """Registry addresses the host daemon must trust for pushes.

    IPv4 and dual-stack clusters push through the host IPv4 address. An IPv6
    cluster pushes through both the bracketed ULA address and the registry
    DNS name.
    """
    if ipv6_only:
        return [f"[{ula_address}]:{port}", f"{registry_dns}:{port}"]
    return [f"{host_ip}:{port}"]


def merge_daemon_json(existing: str, addresses: list[str], ipv6_prefix: str | None = None) -> str | None:
    """Merge insecure registries into Docker's ``daemon.json``.

    Args:
        existing: Current file content, empty if the file does not exist.
        addresses: Registry addresses to trust.
        ipv6_prefix: ULA prefix; when set, IPv6 daemon settings are added if absent.

    Returns:
        The new file content, or None if the existing content cannot be merged.
    """
    if existing.strip():
        try:
            config = json.loads(existing)
        except json.JSONDecodeError as err:
            logger.debug("daemon.json is not valid JSON: %s", err)
            return None
        if not isinstance(config, dict):
            return None
    else:
        config = {}

    registries = config.setdefault("insecure-registries", [])
    if not isinstance(registries, list):
        return None
    for address in addresses:
        if address not in registries:
            registries.append(address)

    if ipv6_prefix:
        config.setdefault("experimental", True)
        config.setdefault("ip6tables", True)
        config.setdefault("fixed-cidr-v6", f"{ipv6_prefix}::/80")
    return json.dumps(config, indent=2) + "\n"


def merge_registries_conf(existing: str, addresses: list[str]) -> str | None:
    """Append one insecure ``[[registry]]`` table per address to ``registries.conf``.

    Args:
        existing: Current file content, empty if the file does not exist.
        addresses: Registry addresses to trust.

    Returns:
        The new file content, or None if the file is not v2 TOML.
    """
    try:
        parsed = tomllib.loads(existing)
    except tomllib.TOMLDecodeError as err:
        logger.debug("registries.conf is not valid TOML: %s", err)
        return None
    if "registries" in parsed:
        # v1 layout ([registries.insecure] etc.) cannot be mixed with [[registry]]
        return None

    known = {entry.get("location") for entry in parsed.get("registry", []) if isinstance(entry, dict)}
    tables = [
        f'\n[[registry]]\nlocation = "{address}"\ninsecure = true\n'
        for address in addresses
        if address not in known
    ]
    if not tables:
        return existing
    prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
    return prefix + "".join(tables)


_MERGERS: dict[RuntimeBackend, Callable[[str, list[str], str | None], str | None]] = {
    RuntimeBackend.DOCKER: merge_daemon_json,
    RuntimeBackend.PODMAN: lambda existing, addresses, _prefix: merge_registries_conf(existing, addresses),
}


def _read(path: Path) -> str:
    if not path.exists():
        return ""
    try:
        return path.read_text()
    except PermissionError:
        try:
            return privileged("cat", str(path))
        except sh.ErrorReturnCode as err:
            raise CommandFailedError(f"Failed to read {path}: {command_error_text(err)}") from err


def configure_insecure_registry(
    backend: RuntimeBackend,
    addresses: list[str],
    *,
    ipv6_prefix: str | None = None,
    path: Path | None = None,
    restart: bool = True,
) -> Outcome:
    """Add the registry addresses to the runtime daemon's trust file.

    Args:
        backend: Runtime whose daemon should trust the registry.
        addresses: Registry addresses; the first one is the idempotency key.
        ipv6_prefix: ULA prefix for Docker IPv6 settings, or None.
        path: Trust file override; defaults to the backend's file.
        restart: Whether to restart the daemon service after writing.

    Returns:
        ``Outcome.NOOP`` if already trusted, ``Outcome.WARNED`` if the file
        could not be merged, ``Outcome.CREATED`` after writing.

    Raises:
        CommandFailedError: If the file could not be written or the daemon restarted.
    """
    capabilities = CAPABILITIES[backend]
    path = path or capabilities.trust_file
    console.print(Panel.fit(f"Insecure registry trust ({path})", style="bold blue"))

    existing = _read(path)
    if addresses[0] in existing:
        console.print(f"[green]\u2705 {addresses[0]} already trusted[/green]")
        return Outcome.NOOP

    merged = _MERGERS[backend](existing, addresses, ipv6_prefix)
    if merged is None:
        console.print(
            f"[yellow]\u26a0\ufe0f  Cannot safely merge {path}; add {', '.join(addresses)} "
            "as insecure registries manually[/yellow]"
        )
        return Outcome.WARNED

    if not path.parent.exists():
        try:
            privileged("mkdir", "-p", str(path.parent))
        except sh.ErrorReturnCode as err:
            raise CommandFailedError(f"Failed to create {path.parent}: {command_error_text(err)}") from err
    write_file(path, merged)
    console.print(f"[green]\u2705 Added {', '.join(addresses)} to {path}[/green]")
    if restart:
        console.print(f"[yellow]\u2139\ufe0f  Restarting {capabilities.service}...[/yellow]")
        try:
            privileged("systemctl", "restart", capabilities.service)
        except sh.ErrorReturnCode as err:
            raise CommandFailedError(
                f"Failed to restart {capabilities.service}: {command_error_text(err)}"
            ) from err
    return Outcome.CREATED
