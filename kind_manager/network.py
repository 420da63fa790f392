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

"""Container network lifecycle."""

from __future__ import annotations

from rich.panel import Panel

from kind_manager import console
from kind_manager.config import NetworkDescriptor
from kind_manager.errors import CommandFailedError, Outcome
from kind_manager.runtime import ContainerRuntime, ResourceKind


def ensure_network(runtime: ContainerRuntime, network: NetworkDescriptor) -> Outcome:
    """Create the network if it is absent.

    An existing network is never recreated. If its IPv6 capability differs
    from the requested one a warning is printed and the network is left as is.

    Args:
        runtime: Runtime probe for the active backend.
        network: Desired network.

    Returns:
        ``Outcome.NOOP`` if the network already matched, ``Outcome.WARNED`` on
        an IPv6 mismatch, ``Outcome.CREATED`` after creation.

    Raises:
        CommandFailedError: If ``network create`` fails.
    """
    console.print(Panel.fit(f"Network '{network.name}'", style="bold blue"))
    if runtime.exists(ResourceKind.NETWORK, network.name):
        if network.ipv6_enabled and not runtime.network_ipv6_enabled(network.name):
            console.print(
                f"[yellow]\u26a0\ufe0f  Network '{network.name}' exists without IPv6; "
                "delete it manually to recreate it with IPv6[/yellow]"
            )
            return Outcome.WARNED
        console.print(f"[green]\u2705 Network '{network.name}' already exists[/green]")
        return Outcome.NOOP

    warning = runtime.capabilities.ipv6_network_warning
    if network.ipv6_enabled and warning:
        console.print(f"[yellow]\u26a0\ufe0f  {warning}[/yellow]")
    console.print(f"[yellow]\u2139\ufe0f  Creating network '{network.name}'...[/yellow]")
    runtime.network_create(network.name, ipv6=network.ipv6_enabled)
    console.print(f"[green]\u2705 Network '{network.name}' created[/green]")
    return Outcome.CREATED


def delete_network(runtime: ContainerRuntime, name: str) -> Outcome:
    """Remove the network; a missing network or a failed removal is not fatal."""
    if not runtime.exists(ResourceKind.NETWORK, name):
        console.print(f"[yellow]\u2139\ufe0f  Network '{name}' does not exist[/yellow]")
        return Outcome.NOOP
    try:
        runtime.network_rm(name)
    except CommandFailedError as err:
        console.print(f"[yellow]\u26a0\ufe0f  Could not delete network '{name}' (it may still be in use): {err}[/yellow]")
        return Outcome.FAILED
    console.print(f"[green]\u2705 Network '{name}' deleted[/green]")
    return Outcome.REMOVED
