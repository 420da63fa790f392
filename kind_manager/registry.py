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

"""Local image registry container and per-node registry configuration."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import Enum

import requests
from rich.panel import Panel
from tenacity import RetryError

from kind_manager import console, logger
from kind_manager.address import is_ipv6
from kind_manager.config import RegistryDescriptor
from kind_manager.constants import (
    CONTAINERD_CERTS_DIR,
    CONTAINERD_HOSTS_FILE,
    NODE_HOSTS_FILE,
    REGISTRY_CONTAINER_PORT,
    REGISTRY_HEALTH_REQUEST_TIMEOUT_SECONDS,
    REGISTRY_READY_POLL_INTERVAL_SECONDS,
    REGISTRY_READY_TIMEOUT_SECONDS,
    REGISTRY_RESTART_POLICY,
)
from kind_manager.errors import Outcome, PreconditionError, ReadinessTimeoutError
from kind_manager.runtime import ContainerRuntime, ResourceKind
from kind_manager.utils import RetryPolicy

DEFAULT_REGISTRY_POLICY = RetryPolicy.from_timeout(
    REGISTRY_READY_TIMEOUT_SECONDS, REGISTRY_READY_POLL_INTERVAL_SECONDS
)


class RegistryState(str, Enum):
    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING = "running"
    HEALTHY = "healthy"


# ============================================================================
# Addressing
# ============================================================================

def port_mapping(host_bind_ip: str | None, port: int) -> str:
    """Build the ``-p`` value publishing the registry's port 5000 on the host.

    Examples:
        >>> port_mapping("192.168.1.100", 5001)
        '192.168.1.100:5001:5000'
        >>> port_mapping("fd01:2345:6789::1", 5001)
        '[fd01:2345:6789::1]:5001:5000'
        >>> port_mapping(None, 5001)
        '5001:5000'
    """
    if not host_bind_ip:
        return f"{port}:{REGISTRY_CONTAINER_PORT}"
    if ":" in host_bind_ip:
        return f"[{host_bind_ip}]:{port}:{REGISTRY_CONTAINER_PORT}"
    return f"{host_bind_ip}:{port}:{REGISTRY_CONTAINER_PORT}"


def health_url(descriptor: RegistryDescriptor) -> str:
    host = descriptor.host_bind_ip or "localhost"
    if is_ipv6(host):
        host = f"[{host}]"
    return f"http://{host}:{descriptor.port}/v2/"


def probe_health(url: str) -> bool:
    """Return True if the registry API answers ``GET /v2/`` with a 2xx status."""
    try:
        response = requests.get(url, timeout=REGISTRY_HEALTH_REQUEST_TIMEOUT_SECONDS)
    except requests.RequestException as err:
        logger.debug("Registry probe %s failed: %s", url, err)
        return False
    return response.ok


# ============================================================================
# Container lifecycle
# ============================================================================

def registry_state(
    runtime: ContainerRuntime,
    descriptor: RegistryDescriptor,
    probe: Callable[[str], bool] = probe_health,
) -> RegistryState:
    if not runtime.exists(ResourceKind.CONTAINER, descriptor.name):
        return RegistryState.ABSENT
    if not runtime.is_running(descriptor.name):
        return RegistryState.STOPPED
    if probe(health_url(descriptor)):
        return RegistryState.HEALTHY
    return RegistryState.RUNNING


def wait_for_registry(
    descriptor: RegistryDescriptor,
    policy: RetryPolicy = DEFAULT_REGISTRY_POLICY,
    probe: Callable[[str], bool] = probe_health,
) -> None:
    """Poll the registry API until it answers.

    Raises:
        ReadinessTimeoutError: If the registry never answered; the container is kept.
    """
    url = health_url(descriptor)
    try:
        with console.status(f"Waiting for registry '{descriptor.name}' at {url}..."):
            policy.wait_until(lambda: probe(url))
    except RetryError as err:
        raise ReadinessTimeoutError(
            f"Registry '{descriptor.name}' did not become healthy at {url}; "
            f"the container was left in place, inspect it with 'logs {descriptor.name}'"
        ) from err
    console.print(f"[green]\u2705 Registry '{descriptor.name}' is healthy[/green]")


def ensure_registry(
    runtime: ContainerRuntime,
    descriptor: RegistryDescriptor,
    policy: RetryPolicy = DEFAULT_REGISTRY_POLICY,
    probe: Callable[[str], bool] = probe_health,
) -> Outcome:
    """Bring the registry container to a running state.

    A running container is left untouched, a stopped one is started, and an
    absent one is created and then polled until its API answers.

    Args:
        runtime: Runtime probe for the active backend.
        descriptor: Desired registry container.
        policy: Polling schedule for the health check after creation.
        probe: Health check taking the ``/v2/`` URL.

    Returns:
        The outcome of the reconciliation.

    Raises:
        CommandFailedError: If ``run`` or ``start`` fails.
        ReadinessTimeoutError: If a new registry never becomes healthy.
    """
    console.print(Panel.fit(f"Registry '{descriptor.name}'", style="bold blue"))
    state = registry_state(runtime, descriptor, probe)
    if state in (RegistryState.HEALTHY, RegistryState.RUNNING):
        console.print(f"[green]\u2705 Registry '{descriptor.name}' already running[/green]")
        return Outcome.NOOP
    if state is RegistryState.STOPPED:
        console.print(f"[yellow]\u2139\ufe0f  Starting existing registry '{descriptor.name}'...[/yellow]")
        runtime.start(descriptor.name)
        console.print(f"[green]\u2705 Registry '{descriptor.name}' started[/green]")
        return Outcome.STARTED

    mapping = port_mapping(descriptor.host_bind_ip, descriptor.port)
    console.print(f"[yellow]\u2139\ufe0f  Creating registry '{descriptor.name}' ({mapping})...[/yellow]")
    runtime.run(
        descriptor.name,
        descriptor.image,
        f"--restart={REGISTRY_RESTART_POLICY}",
        "-p", mapping,
        "--network", descriptor.network,
    )
    wait_for_registry(descriptor, policy, probe)
    return Outcome.CREATED


def remove_registry(runtime: ContainerRuntime, name: str) -> Outcome:
    """Stop and remove the registry container if it exists.

    Raises:
        CommandFailedError: If ``stop`` or ``rm`` fails.
    """
    if not runtime.exists(ResourceKind.CONTAINER, name):
        console.print(f"[yellow]\u2139\ufe0f  Registry '{name}' does not exist[/yellow]")
        return Outcome.NOOP
    if runtime.is_running(name):
        runtime.stop(name)
    runtime.rm(name)
    console.print(f"[green]\u2705 Registry '{name}' deleted[/green]")
    return Outcome.REMOVED


# ============================================================================
# Node-side configuration
# ============================================================================

def hosts_toml(registry_name: str, insecure: bool) -> str:
    """Render the containerd ``hosts.toml`` pointing a node at the registry."""
    body = f'[host."http://{registry_name}:{REGISTRY_CONTAINER_PORT}"]\n'
    if insecure:
        body += "  skip_verify = true\n"
    return body


def configure_nodes(
    runtime: ContainerRuntime,
    nodes: Iterable[str],
    descriptor: RegistryDescriptor,
    insecure: bool = False,
) -> list[str]:
    """Write the containerd registry host file on every node that lacks one.

    The host file lives under ``certs.d/<registry-ip>:5000``. A node counts as
    configured once the file exists; its content is not compared.

    Args:
        runtime: Runtime probe for the active backend.
        nodes: Node container names from ``kind get nodes``.
        descriptor: Registry whose internal address the nodes should use.
        insecure: Whether to add ``skip_verify = true``.

    Returns:
        Names of the nodes that were written.

    Raises:
        PreconditionError: If the registry has no address on its network.
        CommandFailedError: If writing to a node fails.
    """
    registry_ip = runtime.ip_address(descriptor.name, descriptor.network)
    if not registry_ip:
        raise PreconditionError(
            f"Registry '{descriptor.name}' has no address on network '{descriptor.network}'; "
            "cannot configure nodes"
        )
    host_dir = f"{CONTAINERD_CERTS_DIR}/{registry_ip}:{REGISTRY_CONTAINER_PORT}"
    host_file = f"{host_dir}/{CONTAINERD_HOSTS_FILE}"
    content = hosts_toml(descriptor.name, insecure)

    written: list[str] = []
    for node in nodes:
        if runtime.exec_succeeds(node, "test", "-f", host_file):
            console.print(f"[green]  \u2713 {node} already configured[/green]")
            continue
        runtime.exec(node, "mkdir", "-p", host_dir)
        runtime.exec(node, "cp", "/dev/stdin", host_file, stdin=content)
        console.print(f"[green]  \u2713 {node} configured for {registry_ip}:{REGISTRY_CONTAINER_PORT}[/green]")
        written.append(node)
    return written


def configure_nodes_ipv6(
    runtime: ContainerRuntime,
    nodes: Iterable[str],
    registry_address: str,
    registry_dns: str,
) -> list[str]:
    """Point ``registry_dns`` at the registry's ULA address in every node's /etc/hosts.

    Returns:
        Names of the nodes that were written.

    Raises:
        CommandFailedError: If writing to a node fails.
    """
    entry = f"{registry_address}    {registry_dns}\n"
    written: list[str] = []
    for node in nodes:
        if runtime.exec_succeeds(node, "grep", "-q", registry_dns, NODE_HOSTS_FILE):
            console.print(f"[green]  \u2713 {node} already resolves {registry_dns}[/green]")
            continue
        runtime.exec(node, "tee", "-a", NODE_HOSTS_FILE, stdin=entry)
        console.print(f"[green]  \u2713 {node} resolves {registry_dns} to {registry_address}[/green]")
        written.append(node)
    return written
