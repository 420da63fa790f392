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

"""Orchestration functions that compose domain modules into workflows."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from rich.panel import Panel
from rich.table import Table

from kind_manager import console
from kind_manager.address import detect_os, host_ipv4, ipv6_enabled, primary_interface
from kind_manager.cluster import (
    DEFAULT_CLUSTER_POLICY,
    ClusterState,
    KindCli,
    Kubectl,
    cluster_state,
    create_admin_binding,
    delete_cluster,
    ensure_cluster,
    label_nodes,
)
from kind_manager.config import IpFamily, KindConfig, display_config
from kind_manager.errors import KindManagerError, Outcome, PreconditionError
from kind_manager.host import (
    add_hosts_entry,
    adjust_inotify_limits,
    ipv6_assign_address,
    load_iptables_modules,
    setup_kube_directory,
)
from kind_manager.installer import install_kind, install_kubectl
from kind_manager.network import delete_network, ensure_network
from kind_manager.registry import (
    DEFAULT_REGISTRY_POLICY,
    RegistryState,
    configure_nodes,
    configure_nodes_ipv6,
    ensure_registry,
    probe_health,
    registry_state,
    remove_registry,
)
from kind_manager.runtime import ContainerRuntime, ResourceKind, RuntimeBackend
from kind_manager.sidecar import ensure_sidecar, remove_sidecar
from kind_manager.trust import configure_insecure_registry, trust_addresses
from kind_manager.utils import RetryPolicy, require_command

INSTALL_DEPS_HINT = "Run 'kind-manager install-deps' to install it."


@dataclass
class Toolchain:
    """External tool handles for one run, built from the configuration.

    Attributes:
        runtime: Runtime probe for the configured backend.
        kind: kind CLI bound to the backend and network.
        kubectl: kubectl bound to the cluster context.
        registry_probe: Registry ``/v2/`` health check.
        cluster_policy: Cluster readiness polling schedule.
        registry_policy: Registry health polling schedule.
    """

    runtime: ContainerRuntime
    kind: KindCli
    kubectl: Kubectl
    registry_probe: Callable[[str], bool] = probe_health
    cluster_policy: RetryPolicy = field(default=DEFAULT_CLUSTER_POLICY)
    registry_policy: RetryPolicy = field(default=DEFAULT_REGISTRY_POLICY)

    @classmethod
    def from_config(cls, cfg: KindConfig) -> Toolchain:
        return cls(
            runtime=ContainerRuntime(cfg.docker_cmd),
            kind=KindCli(cfg.docker_cmd, cfg.network_name),
            kubectl=Kubectl.for_cluster(cfg.kind_cluster_name),
        )


# ============================================================================
# Internal helpers
# ============================================================================

def _check_prerequisites(cfg: KindConfig, tools: Toolchain, os_name: str) -> None:
    """Check the runtime, kind, kubectl, and host IPv6 support before any mutation.

    Raises:
        ConfigurationError: If a required binary is missing.
        PreconditionError: If the runtime daemon is down or IPv6 is disabled.
    """
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    runtime = tools.runtime
    require_command(runtime.binary, "Please install Docker or Podman.")
    if not runtime.daemon_reachable():
        raise PreconditionError(f"{runtime.binary} is not running or not accessible")
    console.print(f"[green]  \u2713 {runtime.version_string() or runtime.binary}[/green]")

    require_command("kind", INSTALL_DEPS_HINT)
    require_command("kubectl", INSTALL_DEPS_HINT)
    console.print(f"[green]  \u2713 {tools.kind.version() or 'kind'}[/green]")

    if cfg.ip_family.wants_ipv6:
        if cfg.docker_cmd is RuntimeBackend.PODMAN:
            console.print("[yellow]\u26a0\ufe0f  IPv6/dual stack with Podman has limited support[/yellow]")
        if os_name == "linux" and not ipv6_enabled(os_name):
            raise PreconditionError(
                "IPv6 is disabled on this system. Enable it with: sysctl net.ipv6.conf.all.disable_ipv6=0"
            )
    console.print("[green]\u2705 All prerequisites are available[/green]")


def _registry_bind_address(cfg: KindConfig, host_ip: str) -> str:
    """The ULA address for IPv6-only clusters, the host IPv4 otherwise."""
    return cfg.ipv6_registry_address if cfg.ip_family is IpFamily.IPV6 else host_ip


def _run_registry(cfg: KindConfig, tools: Toolchain, host_ip: str) -> None:
    """Run the registry and point every node at it."""
    nodes = tools.kind.nodes(cfg.kind_cluster_name)
    bind_address = _registry_bind_address(cfg, host_ip)
    if cfg.ip_family is IpFamily.IPV6:
        ula = bind_address
        ensure_registry(tools.runtime, cfg.registry_descriptor(ula), tools.registry_policy, tools.registry_probe)
        add_hosts_entry(ula, cfg.ipv6_registry_dns)
        console.print("[yellow]\u2139\ufe0f  Configuring IPv6 registry DNS on kind nodes[/yellow]")
        configure_nodes_ipv6(tools.runtime, nodes, ula, cfg.ipv6_registry_dns)
    else:
        descriptor = cfg.registry_descriptor(bind_address)
        ensure_registry(tools.runtime, descriptor, tools.registry_policy, tools.registry_probe)
        console.print("[yellow]\u2139\ufe0f  Configuring kind nodes to use the registry[/yellow]")
        configure_nodes(tools.runtime, nodes, descriptor, insecure=cfg.configure_insecure_registry)


def _print_summary(cfg: KindConfig, host_ip: str) -> None:
    console.print(Panel.fit("Cluster Ready", style="bold green"))
    console.print(f"[green]\u2705 Cluster '{cfg.kind_cluster_name}' is ready![/green]")
    console.print("\nTo use the cluster:")
    console.print(f"  kubectl cluster-info --context {cfg.kube_context}")
    if not cfg.enable_registry:
        return
    host = cfg.ipv6_registry_dns if cfg.ip_family is IpFamily.IPV6 else host_ip
    address = f"{host}:{cfg.registry_port}"
    console.print("\nLocal registry available at:")
    console.print(f"  {address}")
    console.print("\nTo push images:")
    console.print(f"  {cfg.docker_cmd.value} tag my-image {address}/my-image")
    console.print(f"  {cfg.docker_cmd.value} push {address}/my-image")


# ============================================================================
# Public API
# ============================================================================

def run_create(cfg: KindConfig, tools: Toolchain | None = None, os_name: str | None = None) -> None:
    """Create or reconcile the whole environment; any failure stops the run.

    Args:
        cfg: Resolved run configuration.
        tools: External tool handles, built from ``cfg`` when None.
        os_name: Host OS override, detected when None.

    Raises:
        KindManagerError: If any step fails.
    """
    tools = tools or Toolchain.from_config(cfg)
    os_name = os_name or detect_os()

    display_config(cfg)
    _check_prerequisites(cfg, tools, os_name)

    setup_kube_directory()
    if cfg.control_nodes > 1 or cfg.worker_nodes > 2:
        adjust_inotify_limits(os_name)
    load_iptables_modules(cfg.docker_cmd is RuntimeBackend.PODMAN, os_name)

    ensure_network(tools.runtime, cfg.network_descriptor())
    host_ip = host_ipv4(os_name)
    console.print(f"[yellow]\u2139\ufe0f  Host IP: {host_ip}[/yellow]")

    ipv6_only = cfg.ip_family is IpFamily.IPV6
    if cfg.configure_insecure_registry and cfg.enable_registry:
        addresses = trust_addresses(
            ipv6_only=ipv6_only,
            host_ip=host_ip,
            port=cfg.registry_port,
            ula_address=cfg.ipv6_registry_address,
            registry_dns=cfg.ipv6_registry_dns,
        )
        configure_insecure_registry(
            cfg.docker_cmd, addresses, ipv6_prefix=cfg.ipv6_ula_prefix if ipv6_only else None
        )

    if ipv6_only and os_name == "linux":
        interface = primary_interface(os_name)
        if interface:
            ipv6_assign_address(cfg.ipv6_registry_address, interface)

    ensure_cluster(
        tools.kind,
        tools.kubectl,
        cfg.cluster_spec(),
        registry_name=cfg.registry_name if cfg.enable_registry else None,
        registry_port=cfg.registry_port,
        policy=tools.cluster_policy,
    )

    if cfg.enable_registry:
        _run_registry(cfg, tools, host_ip)
    if cfg.enable_admin_binding:
        create_admin_binding(tools.kubectl)
    if cfg.enable_node_labels:
        label_nodes(tools.kubectl)
    if cfg.enable_cloud_provider:
        ensure_sidecar(tools.runtime, cfg.sidecar_descriptor())

    _print_summary(cfg, host_ip)


def run_delete(cfg: KindConfig, tools: Toolchain | None = None) -> bool:
    """Tear the environment down; every step runs even if an earlier one failed.

    Sidecar and network failures are warnings. Registry and cluster failures
    are reported and make the run unsuccessful.

    Args:
        cfg: Resolved run configuration.
        tools: External tool handles, built from ``cfg`` when None.

    Returns:
        True if the registry and cluster were removed or already absent.
    """
    tools = tools or Toolchain.from_config(cfg)
    console.print(Panel.fit("Deleting kind cluster environment", style="bold blue"))
    ok = True

    if cfg.enable_cloud_provider:
        try:
            remove_sidecar(tools.runtime, cfg.sidecar_descriptor().container_name)
        except KindManagerError as err:
            console.print(f"[yellow]\u26a0\ufe0f  {err}[/yellow]")

    if cfg.enable_registry:
        try:
            remove_registry(tools.runtime, cfg.registry_name)
        except KindManagerError as err:
            console.print(f"[red]\u274c {err}[/red]")
            ok = False

    try:
        delete_cluster(tools.kind, cfg.kind_cluster_name)
    except KindManagerError as err:
        console.print(f"[red]\u274c {err}[/red]")
        ok = False

    delete_network(tools.runtime, cfg.network_name)

    if ok:
        console.print("[green]\u2705 Cleanup complete[/green]")
    else:
        console.print("[red]\u274c Cleanup finished with errors[/red]")
    return ok


@dataclass(frozen=True)
class EnvironmentStatus:
    """Point-in-time view of every managed resource."""

    cluster: ClusterState
    registry: RegistryState
    sidecar: str
    network_exists: bool
    network_ipv6: bool


def collect_status(
    cfg: KindConfig, tools: Toolchain | None = None, os_name: str | None = None
) -> EnvironmentStatus:
    tools = tools or Toolchain.from_config(cfg)
    bind_address = _registry_bind_address(cfg, host_ipv4(os_name or detect_os()))
    runtime = tools.runtime
    sidecar_name = cfg.sidecar_descriptor().container_name
    if not runtime.exists(ResourceKind.CONTAINER, sidecar_name):
        sidecar = "not found"
    elif runtime.is_running(sidecar_name):
        sidecar = "running"
    else:
        sidecar = "stopped"
    network_exists = runtime.exists(ResourceKind.NETWORK, cfg.network_name)
    return EnvironmentStatus(
        cluster=cluster_state(tools.kind, tools.kubectl, cfg.kind_cluster_name),
        registry=registry_state(runtime, cfg.registry_descriptor(bind_address), tools.registry_probe),
        sidecar=sidecar,
        network_exists=network_exists,
        network_ipv6=network_exists and runtime.network_ipv6_enabled(cfg.network_name),
    )


_STATE_STYLES = {
    "ready": "green", "healthy": "green", "running": "green", "exists": "green",
    "not ready": "yellow", "stopped": "yellow",
    "not found": "red",
}


def _styled(text: str) -> str:
    return f"[{_STATE_STYLES.get(text, 'white')}]{text}[/]"


def display_status(cfg: KindConfig, tools: Toolchain | None = None) -> EnvironmentStatus:
    """Print a status table, plus cluster-info and nodes when the cluster is ready."""
    tools = tools or Toolchain.from_config(cfg)
    status = collect_status(cfg, tools)

    table = Table(title="kind environment status")
    table.add_column("Resource", style="bold")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Details")

    if status.cluster.exists:
        state = "ready" if status.cluster.ready else "not ready"
        details = f"{len(status.cluster.node_names)} nodes"
    else:
        state, details = "not found", ""
    table.add_row("Cluster", cfg.kind_cluster_name, _styled(state), details)

    registry = "not found" if status.registry is RegistryState.ABSENT else status.registry.value
    registry_details = f"port {cfg.registry_port}" if status.registry in (
        RegistryState.RUNNING, RegistryState.HEALTHY
    ) else ""
    table.add_row("Registry", cfg.registry_name, _styled(registry), registry_details)

    table.add_row("Cloud provider", cfg.sidecar_descriptor().container_name, _styled(status.sidecar), "")

    if status.network_exists:
        table.add_row("Network", cfg.network_name, _styled("exists"),
                      f"IPv6 {'enabled' if status.network_ipv6 else 'disabled'}")
    else:
        table.add_row("Network", cfg.network_name, _styled("not found"), "")
    console.print(table)

    if status.cluster.ready:
        for args in (("cluster-info",), ("get", "nodes")):
            ok, stdout, _ = tools.kubectl.run(*args)
            if ok:
                console.print(stdout.rstrip())
    return status


def run_install_deps(kind_version: str, kubectl_version: str | None = None) -> dict[str, Outcome]:
    """Install kind and kubectl.

    Raises:
        KindManagerError: If a download or install fails.
    """
    console.print(Panel.fit("Installing dependencies", style="bold blue"))
    outcomes = {
        "kind": install_kind(kind_version),
        "kubectl": install_kubectl(kubectl_version),
    }
    console.print("[green]\u2705 Dependencies installed[/green]")
    return outcomes
